"""Progress types for chunked transfers.

This module provides:
- ProgressEvent: progress information emitted after each chunk
- ProgressObserver: type alias for progress callbacks
- ProgressReporter: fans events out to an observer and to subscriber queues
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass

from dracolink.core.types import TransferDirection

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProgressEvent:
    """Progress information for a transfer."""

    transfer_id: str
    direction: TransferDirection
    chunk_index: int
    bytes_transferred: int
    total_size: int

    @property
    def percent(self) -> float:
        """Get progress percentage."""
        if self.total_size == 0:
            return 100.0
        return (self.bytes_transferred / self.total_size) * 100


# Type alias for progress callback
ProgressObserver = Callable[[ProgressEvent], None]


class ProgressReporter:
    """Delivers progress events without ever blocking the transfer."""

    def __init__(self, observer: ProgressObserver | None = None) -> None:
        self._observer = observer
        self._subscribers: list[asyncio.Queue[ProgressEvent | None]] = []
        self._closed = False

    def emit(self, event: ProgressEvent) -> None:
        """Send an event to the observer and every subscriber."""
        if self._observer is not None:
            try:
                self._observer(event)
            except Exception as e:
                logger.warning(f"Progress observer raised {type(e).__name__}: {e}")
        for queue in self._subscribers:
            queue.put_nowait(event)

    def subscribe(self) -> AsyncIterator[ProgressEvent]:
        """Iterate over events emitted from this call on until the transfer ends.

        The subscription is registered immediately, so events emitted before
        the first iteration are kept.
        """
        queue: asyncio.Queue[ProgressEvent | None] = asyncio.Queue()
        if self._closed:
            queue.put_nowait(None)
        else:
            self._subscribers.append(queue)
        return self._drain(queue)

    async def _drain(
        self, queue: asyncio.Queue[ProgressEvent | None]
    ) -> AsyncIterator[ProgressEvent]:
        try:
            while True:
                event = await queue.get()
                if event is None:
                    return
                yield event
        finally:
            if queue in self._subscribers:
                self._subscribers.remove(queue)

    def close(self) -> None:
        """End every subscription."""
        self._closed = True
        for queue in self._subscribers:
            queue.put_nowait(None)
