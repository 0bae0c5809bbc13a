"""
Browser slot manager.

Bounds the number of concurrent browser sessions. Requests beyond capacity wait
in a FIFO queue for up to ``queue_timeout`` seconds; a released slot is handed
straight to the oldest waiter.

Usage:
    slots = SlotManager(capacity=3, queue_timeout=300)
    async with slots.slot() as token:
        ...
"""

import asyncio
import time
import uuid
import logging
from collections import deque
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, Optional

from .error_handler import QueueTimeout

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SlotToken:
    """One unit of browser capacity."""
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    acquired_at: float = field(default_factory=time.monotonic)


@dataclass
class QueueEntry:
    """A pending acquisition."""
    future: asyncio.Future
    enqueued_at: float = field(default_factory=time.monotonic)
    timer: Optional[asyncio.TimerHandle] = None


class SlotManager:
    """FIFO-fair counting limiter for browser sessions."""

    def __init__(self, capacity: int = 3, queue_timeout: float = 300.0):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self.queue_timeout = queue_timeout
        self._active: Dict[str, SlotToken] = {}
        self._queue: Deque[QueueEntry] = deque()
        self._draining = False
        self._stats = {
            "total_acquired": 0,
            "total_released": 0,
            "total_timeouts": 0,
        }

    @property
    def active(self) -> int:
        return len(self._active)

    @property
    def queued(self) -> int:
        return sum(1 for entry in self._queue if not entry.future.done())

    def _grant(self) -> SlotToken:
        token = SlotToken()
        self._active[token.id] = token
        self._stats["total_acquired"] += 1
        return token

    async def acquire(self) -> SlotToken:
        """
        Acquire a slot, waiting in line if all slots are busy.

        Raises:
            QueueTimeout: no slot became free within the wait budget
        """
        if len(self._active) < self.capacity and self.queued == 0:
            token = self._grant()
            logger.info(f"[Slots] Acquired {token.id} immediately ({self.active}/{self.capacity} active)")
            return token

        loop = asyncio.get_running_loop()
        entry = QueueEntry(future=loop.create_future())
        entry.timer = loop.call_later(self.queue_timeout, self._expire, entry)
        self._queue.append(entry)
        logger.info(f"[Slots] All {self.capacity} slots busy, queued at position {self.queued}")

        try:
            token = await entry.future
        except asyncio.CancelledError:
            self._abandon(entry)
            raise

        waited = time.monotonic() - entry.enqueued_at
        logger.info(f"[Slots] Acquired {token.id} after {waited:.1f}s in queue")
        return token

    def _abandon(self, entry: QueueEntry) -> None:
        """Clean up after a waiter that was cancelled."""
        if entry.timer:
            entry.timer.cancel()
        if entry in self._queue:
            self._queue.remove(entry)
        fut = entry.future
        # Granted just before the cancellation landed: give the slot back.
        if fut.done() and not fut.cancelled() and fut.exception() is None:
            self.release(fut.result())
        logger.debug("[Slots] Queued acquisition cancelled")

    def _expire(self, entry: QueueEntry) -> None:
        if entry.future.done():
            return
        if entry in self._queue:
            self._queue.remove(entry)
        self._stats["total_timeouts"] += 1
        logger.warning(f"[Slots] Queue wait exceeded {self.queue_timeout:.0f}s, giving up")
        entry.future.set_exception(QueueTimeout(f"No browser slot free after {self.queue_timeout:.0f}s"))

    def release(self, token: Optional[SlotToken]) -> None:
        """Return a slot. Unknown or already-released tokens are ignored with a warning."""
        if token is None or token.id not in self._active:
            logger.warning(f"[Slots] Release of unknown slot {getattr(token, 'id', None)} ignored")
            return
        del self._active[token.id]
        self._stats["total_released"] += 1
        held = time.monotonic() - token.acquired_at
        logger.info(f"[Slots] Released {token.id} after {held:.1f}s ({self.active}/{self.capacity} active)")
        self._drain()

    def _drain(self) -> None:
        """Hand free slots to waiters in FIFO order."""
        if self._draining:
            return
        self._draining = True
        try:
            while self._queue and len(self._active) < self.capacity:
                entry = self._queue.popleft()
                if entry.timer:
                    entry.timer.cancel()
                if entry.future.done():
                    continue
                entry.future.set_result(self._grant())
        finally:
            self._draining = False

    @asynccontextmanager
    async def slot(self):
        """Acquire a slot for the duration of the block."""
        token = await self.acquire()
        try:
            yield token
        finally:
            self.release(token)

    def stats(self) -> Dict[str, Any]:
        """Get slot usage statistics."""
        return {
            "active": self.active,
            "capacity": self.capacity,
            "queued": self.queued,
            "queue_timeout_seconds": self.queue_timeout,
            **self._stats,
        }
