"""Per-path debouncing of raw filesystem events.

Editors and compilers often write a file several times in quick succession.
Each path gets its own timer on the event loop; every new raw event for the
path pushes the deadline back, and one ChangeEvent is emitted once the path
has been quiet for the whole window.
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass

from onchange_core.models import ChangeEvent, RawEvent

logger = logging.getLogger(__name__)


@dataclass
class _PendingChange:
    first_seen: float
    last_seen: float
    handle: asyncio.TimerHandle


class Debouncer:
    """Collapse bursts of RawEvents into one ChangeEvent per path.

    All methods must be called from the loop's thread; timers fire there too,
    so emission is linearized with the rest of the coordination flow.
    """

    def __init__(
        self,
        window: float,
        on_change: Callable[[ChangeEvent], None],
        loop: asyncio.AbstractEventLoop,
    ):
        """Initialize debouncer.

        Args:
            window: Seconds of quiet required before a change is emitted
            on_change: Called with each settled ChangeEvent
            loop: Loop the timers are scheduled on
        """
        self.window = max(window, 0.0)
        self.on_change = on_change
        self.loop = loop
        self._pending: dict[str, _PendingChange] = {}

    def push(self, event: RawEvent) -> None:
        """Record a raw event, starting or extending the path's window."""
        pending = self._pending.get(event.path)
        handle = self.loop.call_later(self.window, self._fire, event.path)
        if pending is None:
            self._pending[event.path] = _PendingChange(
                first_seen=event.observed_at,
                last_seen=event.observed_at,
                handle=handle,
            )
            return

        pending.handle.cancel()
        pending.handle = handle
        pending.last_seen = max(pending.last_seen, event.observed_at)

    def _fire(self, path: str) -> None:
        pending = self._pending.pop(path, None)
        if pending is None:
            return
        change = ChangeEvent(path=path, first_seen=pending.first_seen, last_seen=pending.last_seen)
        logger.debug(f"Debounced change for {path}")
        try:
            self.on_change(change)
        except Exception as e:
            logger.exception(f"Error handling change for {path}: {e}")

    def cancel_all(self) -> None:
        """Drop every pending timer without emitting."""
        for pending in self._pending.values():
            pending.handle.cancel()
        if self._pending:
            logger.debug(f"Dropped {len(self._pending)} pending change(s)")
        self._pending.clear()

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def pending_paths(self) -> list[str]:
        return list(self._pending)
