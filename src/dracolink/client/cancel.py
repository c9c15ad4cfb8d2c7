"""Cooperative cancellation for long-running operations."""

from __future__ import annotations

import asyncio

from dracolink.client.errors import TransferCancelledError


class CancellationToken:
    """Caller-controlled cancellation signal.

    Checked between chunks and before every retry sleep. Requests already in
    flight are not torn down; they finish or hit the transport timeout.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason = "cancelled"

    def cancel(self, reason: str = "cancelled") -> None:
        """Request cancellation."""
        self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        """Whether cancellation was requested."""
        return self._event.is_set()

    def raise_if_cancelled(self, what: str = "operation") -> None:
        """Raise TransferCancelledError if cancellation was requested."""
        if self._event.is_set():
            raise TransferCancelledError(f"{what} {self.reason}")

    async def wait(self) -> None:
        """Wait until cancellation is requested."""
        await self._event.wait()
