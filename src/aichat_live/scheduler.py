"""Batch decoded events into fixed flush windows.

Events that share a dedup key collapse to one slot holding the newest data;
the slot keeps the position of the key's first event in the window, and
events without a key keep their arrival order. Each flush hands the whole
window to the apply callback at once.
"""

import asyncio
import logging
import time
from collections.abc import Callable, Hashable
from typing import Optional

from .events import Event, MessageRemoved, PartRemoved, PartUpdated, SessionStatusChanged

logger = logging.getLogger(__name__)

DEFAULT_WINDOW = 0.016  # one animation frame


def dedup_key(event: Event) -> Optional[Hashable]:
    """Key under which repeated events collapse, or None to never collapse."""
    if isinstance(event, SessionStatusChanged):
        return ("session.status", event.session_id)
    if isinstance(event, PartUpdated):
        return ("message.part.updated", event.message_id, event.part_id)
    return None


def coalesce(earlier: Event, later: Event) -> Event:
    """Fold two events that share a key into the one that stays in the slot."""
    if isinstance(earlier, PartUpdated) and isinstance(later, PartUpdated):
        return PartUpdated(
            session_id=later.session_id,
            message_id=later.message_id,
            part_id=later.part_id,
            update=later.update.merged_over(earlier.update),
            delta=later.delta,
        )
    return later


def _is_invalidated(key: Hashable, event: Event) -> bool:
    if not (isinstance(key, tuple) and key[0] == "message.part.updated"):
        return False
    if isinstance(event, MessageRemoved):
        return key[1] == event.message_id
    if isinstance(event, PartRemoved):
        return key[1] == event.message_id and key[2] == event.part_id
    return False


class CoalescingScheduler:
    """Buffer events and apply them in batches at most once per window.

    Runs on a single asyncio loop; ``enqueue`` and the flush both execute
    on that loop, so the buffer/swap/apply sequence needs no lock.
    Without a running loop, events wait for an explicit ``flush()``.
    """

    def __init__(
        self,
        apply: Callable[[list[Event]], None],
        window: float = DEFAULT_WINDOW,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._apply = apply
        self._window = window
        self._clock = clock
        self._queue: list[Optional[Event]] = []
        self._buffer: list[Optional[Event]] = []
        self._index: dict[Hashable, int] = {}
        self._timer: Optional[asyncio.TimerHandle] = None
        self._last_flush = float("-inf")

    @property
    def pending(self) -> list[Event]:
        return [event for event in self._queue if event is not None]

    @property
    def scheduled(self) -> bool:
        return self._timer is not None

    def enqueue(self, event: Event) -> None:
        key = dedup_key(event)
        if key is not None and key in self._index:
            slot = self._index[key]
            self._queue[slot] = coalesce(self._queue[slot], event)
        else:
            if isinstance(event, (MessageRemoved, PartRemoved)):
                for stale in [k for k in self._index if _is_invalidated(k, event)]:
                    del self._index[stale]
            if key is not None:
                self._index[key] = len(self._queue)
            self._queue.append(event)
        self._schedule()

    def flush(self) -> None:
        """Apply everything buffered so far, synchronously."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if not self._queue:
            return

        events, self._queue = self._queue, self._buffer
        self._buffer = events
        self._queue.clear()
        self._index.clear()
        self._last_flush = self._clock()
        try:
            self._apply([event for event in events if event is not None])
        finally:
            events.clear()

    def close(self) -> None:
        """Cancel the timer and flush whatever is left."""
        self.flush()

    def _schedule(self) -> None:
        if self._timer is not None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop: the caller flushes explicitly.
            return
        elapsed = self._clock() - self._last_flush
        delay = max(0.0, self._window - elapsed)
        self._timer = loop.call_later(delay, self._fire)

    def _fire(self) -> None:
        self._timer = None
        try:
            self.flush()
        except Exception:
            logger.exception("Failed to apply event batch")
