"""Abstract watcher protocol for file watching implementations."""

from collections.abc import Callable
from typing import Protocol

from onchange_core.models import RawEvent, WatchTarget

RawEventSink = Callable[[RawEvent], None]
"""Receives raw events; may be called from a watcher thread."""


class WatchError(Exception):
    """Raised when a watch target cannot be watched."""

    def __init__(self, target: WatchTarget | None, reason: str):
        self.target = target
        self.reason = reason
        if target is None:
            super().__init__(reason)
        else:
            super().__init__(f"Cannot watch {target.path}: {reason}")


class Watcher(Protocol):
    """Protocol for file watcher implementations."""

    def add_watch(self, target: WatchTarget) -> None:
        """Add a target. Raises WatchError if it cannot be watched."""
        ...

    def start(self) -> None:
        """Start watching."""
        ...

    def stop(self) -> None:
        """Stop watching."""
        ...
