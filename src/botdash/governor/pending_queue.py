"""
Deferred-retry queue with a single serial drain loop.

Queued retries run one at a time in FIFO order, separated by the global
minimum delay, so a batch of released retries cannot turn into a new burst.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from botdash.governor.endpoints import EndpointKey
from botdash.governor.errors import GovernorClosedError
from botdash.governor.rate_gate import SleepFn, asyncio_sleep_ms

logger = logging.getLogger(__name__)

Thunk = Callable[[], Awaitable[Any]]


@dataclass
class QueueItem:
    """A deferred operation and the future that hands its outcome back."""

    thunk: Thunk
    future: asyncio.Future[Any]
    enqueued_at_ms: int
    key: EndpointKey = EndpointKey.DEFAULT
    seq: int = 0


@dataclass
class PendingQueue:
    """
    FIFO of deferred retries drained by at most one loop at a time.

    Usage:
        result = await queue.submit(lambda: attempt(), key)
    """

    spacing_ms: int = 2000

    _items: deque[QueueItem] = field(default_factory=deque, init=False)
    _drain_task: asyncio.Task[None] | None = field(default=None, init=False)
    _running: QueueItem | None = field(default=None, init=False)
    _seq: int = field(default=0, init=False)
    _closed: bool = field(default=False, init=False)

    # Counters
    items_completed: int = field(default=0, init=False)
    items_failed: int = field(default=0, init=False)
    items_abandoned: int = field(default=0, init=False)

    _time_fn: Callable[[], int] | None = field(default=None)
    _sleep_fn: SleepFn | None = field(default=None)

    def _now_ms(self) -> int:
        """Get current time in milliseconds."""
        if self._time_fn is not None:
            return self._time_fn()
        return int(time.monotonic() * 1000)

    async def _sleep_ms(self, delay_ms: int) -> None:
        if self._sleep_fn is not None:
            await self._sleep_fn(delay_ms)
        else:
            await asyncio_sleep_ms(delay_ms)

    def __len__(self) -> int:
        return len(self._items)

    @property
    def is_draining(self) -> bool:
        return self._drain_task is not None and not self._drain_task.done()

    @property
    def is_busy(self) -> bool:
        """True while the drain loop runs or items are waiting."""
        return self.is_draining or bool(self._items)

    def submit(self, thunk: Thunk, key: EndpointKey = EndpointKey.DEFAULT) -> asyncio.Future[Any]:
        """
        Append a deferred operation and make sure a drain loop is running.

        Args:
            thunk: Zero-argument coroutine factory run by the drain loop.
            key: Endpoint key, for logging only.

        Returns:
            Future resolved (or failed) with the thunk's outcome. Cancelling it
            abandons the item.

        Raises:
            GovernorClosedError: If the queue was closed.
        """
        if self._closed:
            raise GovernorClosedError("Pending queue is closed", queue_depth=len(self._items))

        loop = asyncio.get_running_loop()
        self._seq += 1
        item = QueueItem(
            thunk=thunk,
            future=loop.create_future(),
            enqueued_at_ms=self._now_ms(),
            key=key,
            seq=self._seq,
        )
        self._items.append(item)
        logger.debug(
            "Retry queued",
            extra={"endpoint_key": key.value, "queue_depth": len(self._items), "seq": item.seq},
        )
        self.kick()
        return item.future

    def kick(self) -> None:
        """Start the drain loop if there is work and no loop is running."""
        if self._closed or not self._items or self.is_draining:
            return
        self._drain_task = asyncio.get_running_loop().create_task(self._drain())

    async def _drain(self) -> None:
        while self._items:
            item = self._items.popleft()
            if item.future.done():
                # Caller went away while the item was queued
                self.items_abandoned += 1
                continue

            await self._run_item(item)

            if self._items and self.spacing_ms > 0:
                await self._sleep_ms(self.spacing_ms)

    async def _run_item(self, item: QueueItem) -> None:
        self._running = item
        task = asyncio.ensure_future(item.thunk())

        def _abandon(fut: asyncio.Future[Any]) -> None:
            if fut.cancelled():
                task.cancel()

        item.future.add_done_callback(_abandon)
        try:
            # wait() never raises the task's exception, so a cancelled or
            # failed item cannot break the loop
            await asyncio.wait([task])
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            item.future.remove_done_callback(_abandon)
            self._running = None

        if item.future.done():
            self.items_abandoned += 1
            if not task.cancelled():
                # Retrieve the outcome so it is not reported as never retrieved
                task.exception()
            return
        if task.cancelled():
            item.future.cancel()
            self.items_abandoned += 1
            return
        exc = task.exception()
        if exc is not None:
            self.items_failed += 1
            item.future.set_exception(exc)
        else:
            self.items_completed += 1
            item.future.set_result(task.result())

    async def aclose(self) -> None:
        """Stop draining and fail every item still waiting."""
        self._closed = True
        task = self._drain_task
        running = self._running
        self._drain_task = None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        depth = len(self._items)
        pending = list(self._items)
        self._items.clear()
        if running is not None:
            pending.insert(0, running)
        for item in pending:
            if not item.future.done():
                item.future.set_exception(
                    GovernorClosedError("Governor closed with retries pending", queue_depth=depth)
                )

    def reopen(self) -> None:
        self._closed = False
