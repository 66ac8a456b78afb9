#!/usr/bin/env python3
"""
Example: Headless Embedding
Shows how to drive OnchangeController from another asyncio program.

This example demonstrates:
- Building an EngineConfig in code instead of from the command line
- Collecting changes through a custom notifier
- Stopping the engine after a fixed time
"""

import asyncio
import logging
from pathlib import Path

from onchange import OnchangeController
from onchange_core import EngineConfig, ExecutionMode, PathTemplate, RuleTable, WatchTarget


class CollectingNotifier:
    """Keeps every line the engine would have printed."""

    def __init__(self):
        self.lines: list[str] = []

    def changed(self, message: str) -> None:
        self.lines.append(message)
        print(f"changed: {message}")

    def running(self, command: str) -> None:
        print(f"run: {command}")

    def failed(self, path: str, command: str, reason: str) -> None:
        print(f"failed: {command} ({reason})")

    def info(self, msg: str) -> None:
        print(msg)

    def warning(self, msg: str) -> None:
        print(f"warning: {msg}")

    def error(self, msg: str) -> None:
        print(f"error: {msg}")


async def watch_for(seconds: float, root: Path) -> list[str]:
    rules = RuleTable()
    rules.merge({"python": {"extensions": ["py"], "command": "python -m py_compile {rpath}"}})

    config = EngineConfig(
        watch_targets=(WatchTarget(root, recursive=True),),
        message_template=PathTemplate("{rpath} changed"),
        rule_table=rules,
        execution_mode=ExecutionMode.CONCURRENT,
        ignore_patterns=("*/.git/*", "*/__pycache__/*"),
    )
    notifier = CollectingNotifier()
    controller = OnchangeController(config, notifier, cwd=root)

    task = asyncio.create_task(controller.run_forever())
    await asyncio.sleep(seconds)
    controller.request_stop()
    await task
    return notifier.lines


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    changes = asyncio.run(watch_for(10.0, Path.cwd()))
    print(f"{len(changes)} change(s) seen")
