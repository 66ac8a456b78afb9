"""File watcher implementation using watchdog."""

import fnmatch
import logging
import os
import time
from collections.abc import Iterable
from pathlib import Path

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver
from watchdog.observers.polling import PollingObserver

from onchange_core.models import RawEvent, WatchTarget
from onchange_core.watchers import RawEventSink, Watcher, WatchError

logger = logging.getLogger(__name__)


def matches_ignore(path: str, patterns: Iterable[str]) -> str | None:
    """Return the first shell glob matching the path or its file name."""
    name = os.path.basename(path)
    for pattern in patterns:
        if fnmatch.fnmatch(path, pattern) or fnmatch.fnmatch(name, pattern):
            return pattern
    return None


class _RawEventHandler(FileSystemEventHandler):
    """Turns watchdog file events into RawEvents for one watch target."""

    def __init__(
        self,
        sink: RawEventSink,
        only: Path | None = None,
        ignore_patterns: Iterable[str] = (),
    ):
        """Initialize handler.

        Args:
            sink: Receiver for raw events (called on the observer thread)
            only: If set, report only this exact file (file targets)
            ignore_patterns: Shell globs matched against the path and file name
        """
        self.sink = sink
        self.only = str(only) if only is not None else None
        self.ignore_patterns = tuple(ignore_patterns)

    def _matches_filters(self, path: str) -> bool:
        if self.only is not None and path != self.only:
            return False
        pattern = matches_ignore(path, self.ignore_patterns)
        if pattern is not None:
            logger.debug(f"Ignoring {path} (matches {pattern!r})")
            return False
        return True

    def _emit(self, raw_path: str | bytes) -> None:
        path = os.path.abspath(os.fsdecode(raw_path))
        if self._matches_filters(path):
            logger.debug(f"File change detected: {path}")
            self.sink(RawEvent(path=path, observed_at=time.monotonic()))

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._emit(event.src_path)

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._emit(event.src_path)

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._emit(event.src_path)

    def on_moved(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._emit(event.dest_path)


class WatchdogWatcher(Watcher):
    """File watcher using watchdog's native observer, or its polling observer."""

    def __init__(
        self,
        sink: RawEventSink,
        poll_interval: float = 0.5,
        use_polling: bool = False,
        ignore_patterns: Iterable[str] = (),
    ):
        """Initialize watcher.

        Args:
            sink: Receiver for raw events
            poll_interval: Seconds between scans for the polling backend
            use_polling: Skip the native backend
            ignore_patterns: Shell globs of paths never reported
        """
        self.sink = sink
        self.poll_interval = poll_interval
        self.use_polling = use_polling
        self.ignore_patterns = tuple(ignore_patterns)
        self.observer: BaseObserver = self._make_observer()
        self.targets: list[WatchTarget] = []
        self._schedule: list[tuple[_RawEventHandler, str, bool]] = []

    def _make_observer(self) -> BaseObserver:
        if self.use_polling:
            return PollingObserver(timeout=self.poll_interval)
        return Observer()

    @property
    def backend(self) -> str:
        return "polling" if self.use_polling else "native"

    def add_watch(self, target: WatchTarget) -> None:
        """Add a watch target.

        Raises:
            WatchError: If the target does not exist or cannot be listed
        """
        path = Path(os.path.abspath(target.path))
        if not path.exists():
            raise WatchError(target, "path does not exist")

        if path.is_dir():
            watch_dir, only, recursive = path, None, target.recursive
        else:
            # Watch the parent directory and filter down to the file
            watch_dir, only, recursive = path.parent, path, False

        try:
            with os.scandir(watch_dir):
                pass
        except OSError as e:
            raise WatchError(target, e.strerror or str(e)) from e

        handler = _RawEventHandler(self.sink, only=only, ignore_patterns=self.ignore_patterns)
        try:
            self.observer.schedule(handler, str(watch_dir), recursive=recursive)
        except OSError as e:
            raise WatchError(target, e.strerror or str(e)) from e

        self._schedule.append((handler, str(watch_dir), recursive))
        self.targets.append(target)
        logger.info(f"Watching {path} (recursive: {recursive}, backend: {self.backend})")

    def start(self) -> None:
        """Start the observer, falling back to polling if the native backend fails."""
        if not self.targets:
            logger.debug("No watch targets configured")
            return

        try:
            self.observer.start()
        except OSError as e:
            if self.use_polling:
                raise WatchError(None, f"Failed to start file watcher: {e}") from e
            logger.warning(f"Native file watching unavailable ({e}), falling back to polling")
            self.observer.unschedule_all()
            self.use_polling = True
            self.observer = self._make_observer()
            try:
                for handler, watch_dir, recursive in self._schedule:
                    self.observer.schedule(handler, watch_dir, recursive=recursive)
                self.observer.start()
            except OSError as poll_error:
                raise WatchError(None, f"Failed to start file watcher: {poll_error}") from poll_error

        logger.info(f"Started file watcher for {len(self.targets)} target(s)")

    def stop(self) -> None:
        """Stop the observer."""
        if self.observer.is_alive():
            self.observer.stop()
            self.observer.join(timeout=2.0)
            logger.info("Stopped file watcher")
