"""Engine controller: wires watcher -> debouncer -> dispatcher on one event loop."""

import asyncio
import logging
import os
import time
from collections.abc import Callable
from pathlib import Path

from onchange_core.config import EngineConfig
from onchange_core.debouncer import Debouncer
from onchange_core.dispatcher import CommandRunner, Dispatcher
from onchange_core.file_watcher import WatchdogWatcher, matches_ignore
from onchange_core.models import ChangeEvent, DispatchState, RawEvent, WatchTarget
from onchange_core.notifier import NoOpNotifier, OnchangeNotifier
from onchange_core.watchers import RawEventSink, Watcher, WatchError

logger = logging.getLogger(__name__)

WatcherFactory = Callable[[EngineConfig, RawEventSink], Watcher]


def default_watcher_factory(config: EngineConfig, sink: RawEventSink) -> Watcher:
    """Watchdog-backed watcher configured from the engine config."""
    return WatchdogWatcher(
        sink,
        poll_interval=config.poll_interval,
        use_polling=config.force_polling,
        ignore_patterns=config.ignore_patterns,
    )


class OnchangeController:
    """Runs the change-detection engine. Primary embed point.

    The event loop is the single coordination flow: raw events from the
    watcher thread are handed to it with call_soon_threadsafe, debounce
    timers fire on it, and the dispatcher consumes settled changes from a
    FIFO queue on it.
    """

    def __init__(
        self,
        config: EngineConfig,
        notifier: OnchangeNotifier | None = None,
        runner: CommandRunner | None = None,
        watcher_factory: WatcherFactory | None = None,
        cwd: str | Path | None = None,
    ):
        """Initialize controller.

        Args:
            config: Engine configuration
            notifier: Output sink (defaults to NoOpNotifier - silent)
            runner: Command runner passed to the dispatcher
            watcher_factory: Builds the watcher (defaults to watchdog)
            cwd: Working directory for relative path variables
        """
        self.config = config
        self.notifier = notifier or NoOpNotifier()
        self.dispatcher = Dispatcher(config, self.notifier, runner=runner, cwd=cwd)
        self.watcher_factory = watcher_factory or default_watcher_factory
        self.active_targets: list[WatchTarget] = []

        self._loop: asyncio.AbstractEventLoop | None = None
        self._watcher: Watcher | None = None
        self._debouncer: Debouncer | None = None
        self._queue: asyncio.Queue[ChangeEvent] | None = None
        self._dispatch_task: asyncio.Task | None = None
        self._stopping = False

    def attach(self, loop: asyncio.AbstractEventLoop) -> None:
        """Start watching on a running loop.

        Targets that cannot be watched are reported and dropped.

        Raises:
            RuntimeError: If the loop is not running
            WatchError: If no target could be watched
        """
        if self._loop is not None:
            return  # Already attached

        if not loop.is_running():
            raise RuntimeError("Event loop must be running before attach().")

        self._announce_rules()

        queue: asyncio.Queue[ChangeEvent] = asyncio.Queue()
        debouncer = Debouncer(self.config.debounce_window, queue.put_nowait, loop)
        watcher = self.watcher_factory(self.config, self._on_raw_event)

        active: list[WatchTarget] = []
        for target in self.config.watch_targets:
            try:
                watcher.add_watch(target)
            except WatchError as e:
                logger.warning(str(e))
                self.notifier.error(str(e))
                continue
            active.append(target)

        if not active:
            raise WatchError(None, "No valid watch targets")

        self._loop = loop
        self._queue = queue
        self._debouncer = debouncer
        try:
            watcher.start()
        except WatchError:
            self._loop = self._queue = self._debouncer = None
            raise

        self._watcher = watcher
        self.active_targets = active
        self._stopping = False
        self._dispatch_task = loop.create_task(self.dispatcher.run(queue))
        self.notifier.info("Watching: " + " ".join(str(t.path) for t in active))

    def detach(self) -> None:
        """Stop the watcher, drop pending debounce timers and stop dispatching.

        Concurrent commands already running are left to finish on their own.
        """
        if self._watcher:
            try:
                self._watcher.stop()
            except Exception as e:
                logger.error(f"Error stopping file watcher: {e}")
            self._watcher = None
        if self._debouncer:
            self._debouncer.cancel_all()
            self._debouncer = None
        if self._dispatch_task and not self._dispatch_task.done():
            self._dispatch_task.cancel()
        self._dispatch_task = None
        self._queue = None
        self._loop = None

    def request_stop(self) -> None:
        """Make run_forever() return after the current event."""
        self._stopping = True
        if self._dispatch_task and not self._dispatch_task.done():
            self._dispatch_task.cancel()

    async def run_forever(self) -> None:
        """Attach to the running loop and dispatch changes until stopped."""
        self.attach(asyncio.get_running_loop())
        task = self._dispatch_task
        try:
            await task
        except asyncio.CancelledError:
            if not self._stopping:
                raise
        finally:
            self.detach()

    async def trial_run(self) -> list[DispatchState]:
        """Dispatch one change per watch path right away, without watching."""
        self._announce_rules()
        states: list[DispatchState] = []
        for target in self.config.watch_targets:
            path = os.path.abspath(target.path)
            if matches_ignore(path, self.config.ignore_patterns):
                continue
            now = time.monotonic()
            states.append(await self.dispatcher.dispatch(ChangeEvent(path, now, now)))
        await self.dispatcher.drain()
        return states

    def _announce_rules(self) -> None:
        if self.config.explicit_command is not None:
            return
        table = self.config.rule_table
        for rule in table.rules():
            self.notifier.info(f"Rule: {table.describe(rule)}")

    # Called on the watcher thread
    def _on_raw_event(self, event: RawEvent) -> None:
        loop = self._loop
        if loop is None:
            logger.debug(f"Change for {event.path} ignored - controller not attached")
            return
        try:
            loop.call_soon_threadsafe(self._push, event)
        except RuntimeError:
            logger.debug(f"Change for {event.path} dropped - event loop closed")

    def _push(self, event: RawEvent) -> None:
        if self._debouncer is not None:
            self._debouncer.push(event)

    @property
    def pending_count(self) -> int:
        """Paths waiting for their debounce window to close."""
        return self._debouncer.pending_count if self._debouncer else 0
