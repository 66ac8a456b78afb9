"""Pytest configuration and fixtures."""

import asyncio
import sys
from pathlib import Path

import pytest

# Add src directory to Python path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from onchange_core.config import EngineConfig, RuleTable  # noqa: E402
from onchange_core.models import ExecutionMode, WatchTarget  # noqa: E402
from onchange_core.template import PathTemplate  # noqa: E402


class RecordingNotifier:
    """Notifier that keeps every message for assertions."""

    def __init__(self):
        self.changes: list[str] = []
        self.runs: list[str] = []
        self.failures: list[tuple[str, str, str]] = []
        self.infos: list[str] = []
        self.warnings: list[str] = []
        self.errors: list[str] = []

    def changed(self, message):
        self.changes.append(message)

    def running(self, command):
        self.runs.append(command)

    def failed(self, path, command, reason):
        self.failures.append((path, command, reason))

    def info(self, message):
        self.infos.append(message)

    def warning(self, message):
        self.warnings.append(message)

    def error(self, message):
        self.errors.append(message)


class FakeRunner:
    """Command runner that records start/finish order instead of spawning."""

    def __init__(self, returncode=0, duration=0.0, raises=None):
        self.returncode = returncode
        self.duration = duration
        self.raises = raises
        self.started: list[str] = []
        self.finished: list[str] = []

    async def run(self, command):
        self.started.append(command)
        if self.raises is not None:
            raise self.raises
        if self.duration:
            await asyncio.sleep(self.duration)
        self.finished.append(command)
        return self.returncode


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def make_config(tmp_path):
    """Build an EngineConfig with test-friendly defaults."""

    def _make(
        targets=None,
        template="Change Detected: {path}",
        command=None,
        mode=ExecutionMode.SERIAL,
        rule_table=None,
        **kwargs,
    ):
        if targets is None:
            targets = (WatchTarget(tmp_path),)
        return EngineConfig(
            watch_targets=tuple(targets),
            message_template=PathTemplate(template),
            rule_table=rule_table or RuleTable(),
            explicit_command=PathTemplate(command) if command is not None else None,
            execution_mode=mode,
            **kwargs,
        )

    return _make
