"""Tests for the TransferSession state machine."""

from __future__ import annotations

import asyncio

import pytest

from dracolink.client.transfer.session import (
    VALID_TRANSITIONS,
    InvalidTransitionError,
    TransferSession,
)
from dracolink.core.types import TransferDirection, TransferState


def make_session(**kwargs: object) -> TransferSession:
    """Upload session of 2500 bytes in 1000-byte chunks."""
    kwargs.setdefault("total_size", 2500)
    kwargs.setdefault("chunk_size", 1000)
    kwargs.setdefault("direction", TransferDirection.UPLOAD)
    return TransferSession(**kwargs)  # type: ignore[arg-type]


class TestTransitions:
    """Tests for state transitions."""

    def test_happy_path(self) -> None:
        """INITIATED -> IN_PROGRESS -> COMPLETING -> COMPLETED."""
        session = make_session()
        session.start()
        session.begin_completion()
        session.complete()
        assert session.state is TransferState.COMPLETED
        assert session.is_terminal

    @pytest.mark.parametrize("terminal", [TransferState.COMPLETED, TransferState.ABORTED])
    def test_terminal_states_have_no_exit(self, terminal: TransferState) -> None:
        assert VALID_TRANSITIONS[terminal] == set()
        session = make_session(state=terminal)
        for target in TransferState:
            with pytest.raises(InvalidTransitionError):
                session.transition_to(target)

    def test_cannot_skip_in_progress(self) -> None:
        """Completion requires chunks to have been transferred first."""
        with pytest.raises(InvalidTransitionError, match="INITIATED to COMPLETING"):
            make_session().begin_completion()

    def test_failed_is_resumable(self) -> None:
        """A failed session returns to IN_PROGRESS and forgets its error."""
        session = make_session()
        session.start()
        session.fail(RuntimeError("network down"))
        assert session.state is TransferState.FAILED
        assert session.error == "network down"
        assert not session.is_terminal

        session.start()
        assert session.state is TransferState.IN_PROGRESS
        assert session.error is None

    def test_failed_can_be_aborted(self) -> None:
        session = make_session(state=TransferState.FAILED)
        session.abort()
        assert session.state is TransferState.ABORTED

    def test_fail_if_active(self) -> None:
        """Only active sessions are moved to FAILED."""
        session = make_session()
        assert session.fail_if_active("boom") is True
        assert session.fail_if_active("again") is False
        assert session.error == "boom"

        aborted = make_session(state=TransferState.ABORTED)
        assert aborted.fail_if_active("late") is False
        assert aborted.state is TransferState.ABORTED


class TestChunks:
    """Tests for chunk bookkeeping."""

    def test_geometry(self) -> None:
        session = make_session()
        assert session.chunk_count == 3
        assert session.missing_chunks == [0, 1, 2]
        assert session.bytes_completed == 0

    def test_empty_session(self) -> None:
        """An empty file has no chunks and is complete from the start."""
        session = make_session(total_size=0)
        assert session.chunk_count == 0
        assert session.is_complete

    @pytest.mark.asyncio
    async def test_record_chunk(self) -> None:
        """Recording returns the plaintext bytes completed so far."""
        session = make_session()
        assert await session.record_chunk(2, "c2") == 500
        assert await session.record_chunk(0, "c0") == 1500
        assert session.missing_chunks == [1]
        assert session.checksums == {0: "c0", 2: "c2"}

    @pytest.mark.asyncio
    async def test_record_chunk_is_idempotent(self) -> None:
        session = make_session()
        await session.record_chunk(1, "a")
        assert await session.record_chunk(1, "b") == 1000
        assert session.checksums[1] == "b"

    @pytest.mark.asyncio
    async def test_record_out_of_range(self) -> None:
        with pytest.raises(IndexError):
            await make_session().record_chunk(3, "x")

    @pytest.mark.asyncio
    async def test_concurrent_records(self) -> None:
        """Concurrent workers never lose a completed chunk."""
        session = make_session(total_size=100_000, chunk_size=100)
        await asyncio.gather(*(session.record_chunk(i, f"c{i}") for i in range(1000)))
        assert session.is_complete
        assert session.bytes_completed == 100_000

    def test_invalid_sizes(self) -> None:
        with pytest.raises(ValueError):
            make_session(total_size=-1)
        with pytest.raises(ValueError):
            make_session(chunk_size=0)

    def test_completed_chunks_must_be_in_range(self) -> None:
        with pytest.raises(ValueError, match="out of range"):
            make_session(completed_chunks={0, 5})


class TestSerialization:
    """Tests for to_dict/from_dict."""

    @pytest.mark.asyncio
    async def test_failed_session_survives_serialization(self) -> None:
        """A persisted failed session restores its chunks and endpoint data."""
        session = make_session(metadata={"token": "channel-1", "name": "a.bin"})
        session.start()
        await session.record_chunk(0, "c0")
        session.fail("timeout")

        data = session.to_dict()
        assert data["state"] == "failed"
        assert data["checksums"] == {"0": "c0"}

        restored = TransferSession.from_dict(data)
        assert restored == session
        assert restored.missing_chunks == [1, 2]
        assert restored.direction is TransferDirection.UPLOAD
