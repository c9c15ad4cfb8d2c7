"""Transfer session state machine.

States:
    INITIATED -> IN_PROGRESS -> COMPLETING -> COMPLETED
    any non-terminal state -> FAILED (resumable) / ABORTED
    FAILED -> IN_PROGRESS (resume)

All state transitions are validated.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from typing import Any

from dracolink.core.chunking import chunk_count, chunk_range
from dracolink.core.config import DEFAULT_CHUNK_SIZE
from dracolink.core.types import TransferDirection, TransferState

# Valid state transitions
VALID_TRANSITIONS: dict[TransferState, set[TransferState]] = {
    TransferState.INITIATED: {
        TransferState.IN_PROGRESS,
        TransferState.FAILED,
        TransferState.ABORTED,
    },
    TransferState.IN_PROGRESS: {
        TransferState.COMPLETING,
        TransferState.FAILED,
        TransferState.ABORTED,
    },
    TransferState.COMPLETING: {
        TransferState.COMPLETED,
        TransferState.FAILED,
        TransferState.ABORTED,
    },
    TransferState.FAILED: {TransferState.IN_PROGRESS, TransferState.ABORTED},
    TransferState.COMPLETED: set(),  # Terminal
    TransferState.ABORTED: set(),  # Terminal
}

TERMINAL_STATES = frozenset({TransferState.COMPLETED, TransferState.ABORTED})
ACTIVE_STATES = frozenset(
    {TransferState.INITIATED, TransferState.IN_PROGRESS, TransferState.COMPLETING}
)


class InvalidTransitionError(Exception):
    """Raised when attempting invalid state transition."""

    pass


@dataclass
class TransferSession:
    """A chunked upload or download, resumable while not terminal.

    Attributes:
        transfer_id: Client-side identifier, stable across resume and
            persistence. The id the service assigns to an upload channel is
            kept in metadata["upload_id"] once the channel is open.
        total_size: Plaintext size in bytes.
        chunk_size: Plaintext bytes per chunk.
        direction: Upload or download.
        completed_chunks: Indices confirmed by the server (upload) or
            verified and delivered (download).
        checksums: SHA-256 of each completed chunk's ciphertext.
        state: Current state.
        error: Message of the error that failed the transfer.
        metadata: Endpoint data (channel token, node id, file name...).
    """

    total_size: int
    direction: TransferDirection
    chunk_size: int = DEFAULT_CHUNK_SIZE
    transfer_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    completed_chunks: set[int] = field(default_factory=set)
    checksums: dict[int, str] = field(default_factory=dict)
    state: TransferState = TransferState.INITIATED
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.total_size < 0:
            raise ValueError("total_size must be >= 0")
        if self.chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        out_of_range = [i for i in self.completed_chunks if not 0 <= i < self.chunk_count]
        if out_of_range:
            raise ValueError(f"Completed chunk indices out of range: {sorted(out_of_range)}")

    @property
    def chunk_count(self) -> int:
        return chunk_count(self.total_size, self.chunk_size)

    @property
    def missing_chunks(self) -> list[int]:
        """Indices not yet completed, in increasing order."""
        return [i for i in range(self.chunk_count) if i not in self.completed_chunks]

    @property
    def bytes_completed(self) -> int:
        """Plaintext bytes covered by completed chunks."""
        return sum(
            chunk_range(i, self.total_size, self.chunk_size)[1]
            for i in self.completed_chunks
        )

    @property
    def is_terminal(self) -> bool:
        """Check if the session is in a terminal state."""
        return self.state in TERMINAL_STATES

    @property
    def is_complete(self) -> bool:
        """True when every chunk has been transferred."""
        return len(self.completed_chunks) == self.chunk_count

    def transition_to(self, new_state: TransferState) -> None:
        """Transition to a new state with validation."""
        if new_state not in VALID_TRANSITIONS[self.state]:
            raise InvalidTransitionError(
                f"Cannot transition from {self.state.name} to {new_state.name}"
            )
        self.state = new_state

    def start(self) -> None:
        """Start or resume transferring chunks."""
        self.transition_to(TransferState.IN_PROGRESS)
        self.error = None

    def begin_completion(self) -> None:
        """All chunks are transferred; finalization pending."""
        self.transition_to(TransferState.COMPLETING)

    def complete(self) -> None:
        """Mark transfer as completed."""
        self.transition_to(TransferState.COMPLETED)

    def fail(self, error: BaseException | str) -> None:
        """Mark transfer as failed, keeping completed chunks."""
        self.transition_to(TransferState.FAILED)
        self.error = str(error)

    def fail_if_active(self, error: BaseException | str) -> bool:
        """Fail the transfer unless it already failed or ended.

        Returns:
            True if the state changed.
        """
        if self.state in ACTIVE_STATES:
            self.fail(error)
            return True
        return False

    def abort(self) -> None:
        """Mark transfer as aborted."""
        self.transition_to(TransferState.ABORTED)

    async def record_chunk(self, index: int, checksum: str) -> int:
        """Record a completed chunk.

        Returns:
            Plaintext bytes completed so far.
        """
        if not 0 <= index < self.chunk_count:
            raise IndexError(f"Chunk index {index} out of range")
        async with self._lock:
            self.completed_chunks.add(index)
            self.checksums[index] = checksum
            return self.bytes_completed

    def to_dict(self) -> dict[str, Any]:
        """Serialize for persistence by the caller."""
        return {
            "transfer_id": self.transfer_id,
            "total_size": self.total_size,
            "chunk_size": self.chunk_size,
            "direction": self.direction.value,
            "completed_chunks": sorted(self.completed_chunks),
            "checksums": {str(i): c for i, c in sorted(self.checksums.items())},
            "state": self.state.value,
            "error": self.error,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TransferSession:
        """Create from a dictionary produced by to_dict()."""
        return cls(
            transfer_id=data["transfer_id"],
            total_size=data["total_size"],
            chunk_size=data["chunk_size"],
            direction=TransferDirection(data["direction"]),
            completed_chunks={int(i) for i in data.get("completed_chunks", [])},
            checksums={int(i): c for i, c in data.get("checksums", {}).items()},
            state=TransferState(data.get("state", TransferState.INITIATED.value)),
            error=data.get("error"),
            metadata=dict(data.get("metadata", {})),
        )
