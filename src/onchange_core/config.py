"""Rule configuration loading for onchange.

A config file is TOML with one table per rule:

    [latex]
    extensions = "tex sty"
    command = "latexmk -pdf {rpath}"

    [scratch]
    extensions = "tmp"          # no command: report the change, run nothing
"""

import logging
import os
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

try:
    import tomllib
except ImportError:
    import tomli as tomllib  # type: ignore

from onchange_core.models import ExecutionMode, WatchTarget
from onchange_core.template import PathTemplate, TemplateError

logger = logging.getLogger(__name__)

SYSTEM_CONFIG = Path("/etc/onchange.toml")
USER_CONFIG_NAME = Path(".config") / "onchange.toml"
LOCAL_CONFIG_NAME = ".onchange.toml"

_KNOWN_KEYS = {"extensions", "command"}


class ConfigError(Exception):
    """Raised when a config file is unreadable or invalid."""


@dataclass(frozen=True)
class Rule:
    """Default action for a set of file extensions."""

    section: str
    """Name of the TOML table the rule came from."""

    extensions: frozenset[str]
    """Extensions without leading dot."""

    command: PathTemplate | None = None
    """Command template, or None for an ignore rule."""

    @property
    def is_ignore(self) -> bool:
        return self.command is None


@dataclass(frozen=True)
class ConfigSources:
    """Ordered config files to load, decided once at startup."""

    paths: tuple[Path, ...]
    replace: bool = False
    """True for a single --config file, which must exist."""

    @classmethod
    def default(cls, home: str | Path | None = None, cwd: str | Path | None = None) -> "ConfigSources":
        """System, user then working-directory config, later overriding earlier."""
        if home is None:
            home = os.environ.get("HOME", "")
        cwd = Path(cwd) if cwd is not None else Path.cwd()
        paths = [SYSTEM_CONFIG]
        if home:
            paths.append(Path(home) / USER_CONFIG_NAME)
        paths.append(cwd / LOCAL_CONFIG_NAME)
        return cls(paths=tuple(paths))

    @classmethod
    def explicit(cls, path: str | Path) -> "ConfigSources":
        return cls(paths=(Path(path),), replace=True)


class RuleTable:
    """Extension -> Rule mapping merged from config sources."""

    def __init__(self) -> None:
        self._rules: dict[str, Rule] = {}

    @classmethod
    def from_sources(cls, sources: ConfigSources) -> "RuleTable":
        """Build a table from config sources in precedence order.

        Raises:
            ConfigError: If an explicit file is missing or any existing file is invalid
        """
        table = cls()
        for path in sources.paths:
            if not sources.replace and not path.exists():
                logger.debug(f"Config file not present, skipping: {path}")
                continue
            table.load(path)
        return table

    def load(self, path: str | Path) -> None:
        """Parse a TOML file and merge its rules over the current ones."""
        path = Path(path)
        try:
            with open(path, "rb") as f:
                raw = tomllib.load(f)
        except OSError as e:
            raise ConfigError(f"Cannot read config file {path}: {e.strerror or e}") from e
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Failed to parse config file {path}: {e}") from e

        self.merge(raw, origin=str(path))
        logger.info(f"Loaded config {path}")

    def merge(self, data: Mapping[str, Any], origin: str = "<config>") -> None:
        """Merge parsed config data; each extension it names replaces the prior rule.

        The whole source is validated before any of it is merged.
        """
        incoming: dict[str, Rule] = {}
        for section, body in data.items():
            rule = _parse_rule(section, body, origin)
            for ext in sorted(rule.extensions):
                incoming[ext] = rule
        self._rules.update(incoming)

    def resolve(self, extension: str) -> Rule | None:
        """Look up the rule for an extension (leading dot optional)."""
        return self._rules.get(extension.lstrip("."))

    def rules(self) -> list[Rule]:
        """Distinct rules still referenced by at least one extension."""
        seen: list[Rule] = []
        for rule in self._rules.values():
            if rule not in seen:
                seen.append(rule)
        return seen

    def describe(self, rule: Rule) -> str:
        """One-line listing of a rule with the extensions it still owns."""
        owned = sorted(ext for ext, r in self._rules.items() if r is rule)
        line = f"{rule.section} ({' '.join(owned)})"
        if rule.command is not None:
            line += f" ⇒ {rule.command.source}"
        return line

    @property
    def extensions(self) -> list[str]:
        return sorted(self._rules)

    def __len__(self) -> int:
        return len(self._rules)

    def __contains__(self, extension: object) -> bool:
        return isinstance(extension, str) and extension.lstrip(".") in self._rules

    def __iter__(self) -> Iterator[str]:
        return iter(self._rules)


def _parse_rule(section: str, body: Any, origin: str) -> Rule:
    if not isinstance(body, dict):
        raise ConfigError(f"{origin}: '{section}' must be a table with 'extensions' and 'command'")

    for key in body:
        if key not in _KNOWN_KEYS:
            logger.warning(f"{origin}: ignoring unknown key '{key}' in [{section}]")

    extensions = _parse_extensions(body.get("extensions"), section, origin)

    command_raw = body.get("command")
    command = None
    if command_raw is not None:
        if not isinstance(command_raw, str):
            raise ConfigError(f"{origin}: [{section}].command must be a string")
        try:
            command = PathTemplate(command_raw)
        except TemplateError as e:
            raise ConfigError(f"{origin}: [{section}].command: {e}") from e

    return Rule(section=section, extensions=extensions, command=command)


def _parse_extensions(value: Any, section: str, origin: str) -> frozenset[str]:
    if isinstance(value, str):
        items = value.split()
    elif isinstance(value, list) and all(isinstance(v, str) for v in value):
        items = value
    else:
        raise ConfigError(f"{origin}: [{section}].extensions must be a string or list of strings")

    extensions = frozenset(ext.strip().lstrip(".") for ext in items if ext.strip().lstrip("."))
    if not extensions:
        raise ConfigError(f"{origin}: [{section}].extensions is empty")
    return extensions


@dataclass(frozen=True)
class EngineConfig:
    """Everything the engine needs, fixed for the process lifetime."""

    watch_targets: tuple[WatchTarget, ...]
    message_template: PathTemplate
    rule_table: RuleTable = field(default_factory=RuleTable)
    explicit_command: PathTemplate | None = None
    execution_mode: ExecutionMode = ExecutionMode.SERIAL
    debounce_window: float = 0.5
    """Seconds of quiet before a path's change is emitted."""

    poll_interval: float = 0.5
    """Seconds between scans when the polling backend is used."""

    ignore_patterns: tuple[str, ...] = ()
    delay: float = 0.0
    """Seconds to wait before each command execution."""

    render_only: bool = False
    force_polling: bool = False
