"""Fixed-size chunking for dracolink transfers.

This module provides:
- PlaintextChunk / Chunk: a slice of the source before and after encryption
- chunk_count / chunk_range: chunk geometry for a given total size
- read_chunk / iter_chunks: lazy reads from a seekable binary source
"""

from __future__ import annotations

import hashlib
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from typing import BinaryIO

from dracolink.core.config import DEFAULT_CHUNK_SIZE


@dataclass
class PlaintextChunk:
    """A slice of the source, as read by the producer."""

    index: int
    offset: int
    data: bytes

    @property
    def size(self) -> int:
        """Return the size of this chunk in bytes."""
        return len(self.data)


@dataclass
class Chunk:
    """An encrypted chunk ready for transmission.

    The checksum is the SHA-256 of the ciphertext, i.e. of the bytes
    actually stored by the service.
    """

    index: int
    offset: int
    plaintext_length: int
    ciphertext: bytes
    checksum: str

    @property
    def size(self) -> int:
        """Return the size of the ciphertext in bytes."""
        return len(self.ciphertext)


def get_chunk_hash(data: bytes) -> str:
    """Compute SHA-256 hash of data.

    Args:
        data: Raw bytes to hash.

    Returns:
        Hex-encoded SHA-256 hash string (64 characters).
    """
    return hashlib.sha256(data).hexdigest()


def chunk_count(total_size: int, chunk_size: int = DEFAULT_CHUNK_SIZE) -> int:
    """Number of chunks needed for total_size bytes (0 for an empty source)."""
    if total_size < 0 or chunk_size <= 0:
        raise ValueError("total_size must be >= 0 and chunk_size > 0")
    return -(-total_size // chunk_size)


def chunk_range(
    index: int, total_size: int, chunk_size: int = DEFAULT_CHUNK_SIZE
) -> tuple[int, int]:
    """Return (offset, length) of a chunk.

    Raises:
        IndexError: If index is outside [0, chunk_count).
    """
    if not 0 <= index < chunk_count(total_size, chunk_size):
        raise IndexError(f"Chunk index {index} out of range")
    offset = index * chunk_size
    return offset, min(chunk_size, total_size - offset)


def read_chunk(
    source: BinaryIO, index: int, total_size: int, chunk_size: int = DEFAULT_CHUNK_SIZE
) -> PlaintextChunk:
    """Read one chunk from a seekable source.

    Raises:
        ValueError: If the source ends before the expected chunk length.
    """
    offset, length = chunk_range(index, total_size, chunk_size)
    source.seek(offset)
    data = source.read(length)
    if len(data) != length:
        raise ValueError(
            f"Source too short: chunk {index} expected {length} bytes, got {len(data)}"
        )
    return PlaintextChunk(index=index, offset=offset, data=data)


def iter_chunks(
    source: BinaryIO,
    total_size: int,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    indices: Iterable[int] | None = None,
) -> Iterator[PlaintextChunk]:
    """Lazily read chunks from a seekable source.

    Args:
        source: Binary file-like object supporting seek().
        total_size: Number of bytes to transfer.
        chunk_size: Plaintext bytes per chunk.
        indices: Chunk indices to read (default: all, in order).

    Yields:
        PlaintextChunk objects, one at a time.
    """
    if indices is None:
        indices = range(chunk_count(total_size, chunk_size))
    for index in indices:
        yield read_chunk(source, index, total_size, chunk_size)
