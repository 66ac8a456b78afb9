"""Pluggable notification protocol for onchange_core.

All user-facing output goes through a notifier, so the engine stays
decoupled from the terminal. Can be replaced with custom handlers for
testing or embedding.
"""

import logging
import threading
from typing import Protocol

from rich.console import Console
from rich.text import Text


def printable(message: str) -> str:
    """Replace undecodable file name bytes so the line can be written to any UTF-8 stream."""
    try:
        raw = message.encode("utf-8", "surrogateescape")
    except UnicodeEncodeError:
        raw = message.encode("utf-8", "surrogatepass")
    return raw.decode("utf-8", "replace")


class OnchangeNotifier(Protocol):
    """Protocol for notifications - host can provide custom implementation."""

    def changed(self, message: str) -> None:
        """A rendered change-notification line."""
        ...

    def running(self, command: str) -> None:
        """A rendered command about to run (or that would run, in render-only mode)."""
        ...

    def failed(self, path: str, command: str, reason: str) -> None:
        """A command that could not be spawned or exited non-zero."""
        ...

    def info(self, message: str) -> None:
        """Informational message."""
        ...

    def warning(self, message: str) -> None:
        """Warning message."""
        ...

    def error(self, message: str) -> None:
        """Error message."""
        ...


class ConsoleNotifier:
    """Terminal output via rich.

    Change, Run and informational lines go to stdout, warnings and failures
    to stderr. A single lock serializes writes so concurrent commands never
    interleave lines.
    """

    def __init__(self, console: Console | None = None, err_console: Console | None = None):
        self.console = console or Console(highlight=False)
        self.err_console = err_console or Console(stderr=True, highlight=False)
        self._lock = threading.Lock()

    def _emit(self, console: Console, text: Text) -> None:
        with self._lock:
            console.print(text, soft_wrap=True)

    def changed(self, message: str) -> None:
        self._emit(self.console, Text(printable(message)))

    def running(self, command: str) -> None:
        self._emit(self.console, Text.assemble(("Run", "bold red"), ": ", printable(command)))

    def failed(self, path: str, command: str, reason: str) -> None:
        self._emit(
            self.err_console,
            Text.assemble(("Failed", "bold red"), printable(f": {command} ({reason}) for {path}")),
        )

    def info(self, message: str) -> None:
        label, sep, rest = printable(message).partition(": ")
        if sep:
            self._emit(self.console, Text.assemble((label, "bold yellow"), sep, rest))
        else:
            self._emit(self.console, Text(label))

    def warning(self, message: str) -> None:
        self._emit(self.err_console, Text.assemble(("Warning", "bold yellow"), ": ", printable(message)))

    def error(self, message: str) -> None:
        self._emit(self.err_console, Text.assemble(("Error", "bold red"), ": ", printable(message)))


class NoOpNotifier:
    """Silent notifier - default for embedded mode."""

    def changed(self, message: str) -> None:
        pass

    def running(self, command: str) -> None:
        pass

    def failed(self, path: str, command: str, reason: str) -> None:
        pass

    def info(self, msg: str) -> None:
        pass

    def warning(self, msg: str) -> None:
        pass

    def error(self, msg: str) -> None:
        pass


class LoggingNotifier:
    """Implementation using stdlib logging - for debugging/development."""

    def changed(self, message: str) -> None:
        logging.info(message)

    def running(self, command: str) -> None:
        logging.info(f"Run: {command}")

    def failed(self, path: str, command: str, reason: str) -> None:
        logging.error(f"Failed: {command} ({reason}) for {path}")

    def info(self, msg: str) -> None:
        logging.info(msg)

    def warning(self, msg: str) -> None:
        logging.warning(msg)

    def error(self, msg: str) -> None:
        logging.error(msg)
