"""Chunk encryption capability for dracolink.

This module provides:
- ChunkCipher: the per-chunk encryption interface used by the transfer engine
- AesGcmChunkCipher: AES-256-GCM implementation with Argon2id key derivation
- run_cipher: invoke a sync or async cipher method without blocking the loop
"""

from __future__ import annotations

import asyncio
import inspect
import os
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from argon2.low_level import Type, hash_secret_raw
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

# Argon2id parameters (OWASP recommendations for password hashing)
ARGON2_TIME_COST = 3
ARGON2_MEMORY_COST = 65536  # 64 MiB
ARGON2_PARALLELISM = 4
ARGON2_HASH_LEN = 32  # 256 bits

# AES-GCM constants
NONCE_SIZE = 12  # 96 bits (recommended for AES-GCM)
TAG_SIZE = 16
SALT_SIZE = 16  # 128 bits


@dataclass(frozen=True)
class ChunkContext:
    """Position of a chunk inside its transfer."""

    index: int
    offset: int

    def associated_data(self) -> bytes:
        """Bytes bound to the ciphertext so chunks cannot be swapped."""
        return f"{self.index}:{self.offset}".encode("ascii")


class ChunkCipher(ABC):
    """Per-chunk encryption capability.

    Implementations may be synchronous (run in a worker thread by the
    engine) or define async methods (awaited directly).
    """

    #: True if chunk N can only be decrypted after chunks 0..N-1.
    requires_ordered_decryption: bool = True

    @abstractmethod
    def encrypt_chunk(self, plaintext: bytes, context: ChunkContext) -> bytes:
        """Encrypt one chunk."""

    @abstractmethod
    def decrypt_chunk(self, ciphertext: bytes, context: ChunkContext) -> bytes:
        """Decrypt one chunk."""


def generate_salt() -> bytes:
    """Generate a cryptographically secure random salt.

    Returns:
        16 bytes of random data for use as salt in key derivation.
    """
    return os.urandom(SALT_SIZE)


def derive_key(password: str, salt: bytes) -> bytes:
    """Derive a 256-bit encryption key from a password using Argon2id.

    Args:
        password: The user's encryption password.
        salt: A 16-byte random salt (use generate_salt()).

    Returns:
        32 bytes (256 bits) derived key suitable for AES-256.
    """
    return hash_secret_raw(
        secret=password.encode("utf-8"),
        salt=salt,
        time_cost=ARGON2_TIME_COST,
        memory_cost=ARGON2_MEMORY_COST,
        parallelism=ARGON2_PARALLELISM,
        hash_len=ARGON2_HASH_LEN,
        type=Type.ID,
    )


def encrypt_chunk(data: bytes, key: bytes, associated_data: bytes | None = None) -> bytes:
    """Encrypt data using AES-256-GCM with a random nonce.

    Args:
        data: Plaintext data to encrypt.
        key: 32-byte encryption key.
        associated_data: Optional authenticated, unencrypted data.

    Returns:
        Encrypted data in format: nonce (12 bytes) || ciphertext || auth_tag (16 bytes)
    """
    nonce = os.urandom(NONCE_SIZE)
    aesgcm = AESGCM(key)
    return nonce + aesgcm.encrypt(nonce, data, associated_data)


def decrypt_chunk(
    encrypted: bytes, key: bytes, associated_data: bytes | None = None
) -> bytes:
    """Decrypt data encrypted with encrypt_chunk.

    Args:
        encrypted: Data in format: nonce (12 bytes) || ciphertext || auth_tag (16 bytes)
        key: 32-byte encryption key.
        associated_data: The associated data given at encryption time.

    Returns:
        Decrypted plaintext data.

    Raises:
        cryptography.exceptions.InvalidTag: If authentication fails (wrong key,
            wrong position or tampered data).
    """
    nonce = encrypted[:NONCE_SIZE]
    ciphertext = encrypted[NONCE_SIZE:]
    aesgcm = AESGCM(key)
    return aesgcm.decrypt(nonce, ciphertext, associated_data)


class AesGcmChunkCipher(ChunkCipher):
    """AES-256-GCM with an independent nonce per chunk.

    Chunks decrypt independently, so downloads may be parallelized.
    """

    requires_ordered_decryption = False

    def __init__(self, key: bytes) -> None:
        if len(key) != 32:
            raise ValueError("AES-256 requires a 32-byte key")
        self._key = key

    @classmethod
    def from_password(cls, password: str, salt: bytes) -> AesGcmChunkCipher:
        """Build a cipher from a password using Argon2id."""
        return cls(derive_key(password, salt))

    def encrypt_chunk(self, plaintext: bytes, context: ChunkContext) -> bytes:
        return encrypt_chunk(plaintext, self._key, context.associated_data())

    def decrypt_chunk(self, ciphertext: bytes, context: ChunkContext) -> bytes:
        return decrypt_chunk(ciphertext, self._key, context.associated_data())


async def run_cipher(
    method: Callable[[bytes, ChunkContext], bytes | Awaitable[bytes]],
    data: bytes,
    context: ChunkContext,
) -> bytes:
    """Run a cipher method without blocking the event loop.

    Coroutine methods are awaited; plain methods run in a worker thread.
    """
    if inspect.iscoroutinefunction(method):
        result: bytes = await method(data, context)
        return result
    return await asyncio.to_thread(method, data, context)  # type: ignore[arg-type]
