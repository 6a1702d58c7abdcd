"""Result channel between background workers and the main loop."""

from __future__ import annotations

import asyncio

from snapdash.models import OperationResult

__all__ = ["ResultChannel"]


class ResultChannel:
    """Single ordered channel carrying operation results to the reconciler.

    Workers publish finished results; the main loop consumes them in FIFO
    order. Closing the channel sends a None sentinel so a blocking consumer
    can exit.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[OperationResult | None] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def publish(self, result: OperationResult) -> None:
        """Enqueue a result (non-blocking, the queue is unbounded).

        Results are dropped silently once the channel is closed.
        """
        if self._closed:
            return
        self._queue.put_nowait(result)

    def get_nowait(self) -> OperationResult | None:
        """Return the next queued result, or None when nothing is waiting."""
        try:
            return self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None

    async def get(self) -> OperationResult | None:
        """Wait for the next result; None means the channel was closed."""
        return await self._queue.get()

    def pending(self) -> int:
        return self._queue.qsize()

    def close(self) -> None:
        """Signal the consumer to drain and exit.

        Further publish() calls are silently ignored.
        """
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(None)  # Sentinel value
