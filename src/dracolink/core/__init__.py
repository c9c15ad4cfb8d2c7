"""Core module - Shared config, crypto, chunking, and types."""

from dracolink.core.chunking import (
    Chunk,
    PlaintextChunk,
    chunk_count,
    chunk_range,
    get_chunk_hash,
    iter_chunks,
    read_chunk,
)
from dracolink.core.config import (
    DEFAULT_CHUNK_SIZE,
    ClientConfig,
    RetryConfig,
    TransferConfig,
)
from dracolink.core.crypto import (
    AesGcmChunkCipher,
    ChunkCipher,
    ChunkContext,
    decrypt_chunk,
    derive_key,
    encrypt_chunk,
    generate_salt,
)
from dracolink.core.types import TransferDirection, TransferState

__all__ = [
    # Chunking
    "Chunk",
    "DEFAULT_CHUNK_SIZE",
    "PlaintextChunk",
    "chunk_count",
    "chunk_range",
    "get_chunk_hash",
    "iter_chunks",
    "read_chunk",
    # Config
    "ClientConfig",
    "RetryConfig",
    "TransferConfig",
    # Crypto
    "AesGcmChunkCipher",
    "ChunkCipher",
    "ChunkContext",
    "decrypt_chunk",
    "derive_key",
    "encrypt_chunk",
    "generate_salt",
    # Types
    "TransferDirection",
    "TransferState",
]
