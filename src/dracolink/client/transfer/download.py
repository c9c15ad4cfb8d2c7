"""Chunked download with verification and decryption.

This module provides:
- ChunkedDownloader: streams the plaintext of a TransferSession in order

Chunks are verified against the checksum advertised by the server and the
cipher's authentication tag. A chunk failing verification is fetched once
more; a second failure fails the transfer.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncGenerator
from typing import TYPE_CHECKING

from cryptography.exceptions import InvalidTag

from dracolink.client.errors import IntegrityError
from dracolink.client.transfer.types import ProgressEvent
from dracolink.core.chunking import chunk_range, get_chunk_hash
from dracolink.core.config import TransferConfig
from dracolink.core.crypto import ChunkContext, run_cipher

if TYPE_CHECKING:
    from dracolink.client.api import StorageApi
    from dracolink.client.cancel import CancellationToken
    from dracolink.client.transfer.session import TransferSession
    from dracolink.client.transfer.types import ProgressReporter
    from dracolink.core.crypto import ChunkCipher

logger = logging.getLogger(__name__)

MAX_INTEGRITY_REFETCHES = 1


class ChunkedDownloader:
    """Runs the download side of the transfer engine."""

    def __init__(
        self,
        api: StorageApi,
        cipher: ChunkCipher | None = None,
        config: TransferConfig | None = None,
    ) -> None:
        """Initialize the downloader.

        Args:
            api: Endpoint layer used for every request.
            cipher: Chunk cipher (None for plaintext content).
            config: Download window settings.
        """
        self._api = api
        self._cipher = cipher
        self._config = config or TransferConfig()

    @property
    def window(self) -> int:
        """Chunks fetched ahead of the consumer."""
        if self._cipher is not None and self._cipher.requires_ordered_decryption:
            return 1
        return self._config.download_concurrency

    async def stream(
        self,
        session: TransferSession,
        reporter: ProgressReporter,
        cancel: CancellationToken,
    ) -> AsyncGenerator[bytes, None]:
        """Yield the plaintext of every missing chunk in index order.

        Each chunk is recorded in the session before it is yielded. Closing
        the generator early fails the session, which stays resumable.

        Args:
            session: Download session with ``token`` in its metadata
                (INITIATED, or FAILED to resume).
            reporter: Receives a ProgressEvent per delivered chunk.
            cancel: Checked before each chunk.

        Raises:
            IntegrityError: If a chunk fails verification twice.
            ApiError: If a request fails for good.
            TransferCancelledError: If cancelled or aborted.
        """
        cancel.raise_if_cancelled(f"download {session.transfer_id}")
        session.start()
        logger.info(
            f"Downloading {session.transfer_id} "
            f"({session.total_size} bytes, {len(session.missing_chunks)} chunks to fetch)"
        )
        if self.window == 1:
            chunks = self._fetch_ordered(session, cancel)
        else:
            chunks = self._fetch_windowed(session, cancel)
        try:
            async for index, plaintext, checksum in chunks:
                done = await session.record_chunk(index, checksum)
                reporter.emit(
                    ProgressEvent(
                        transfer_id=session.transfer_id,
                        direction=session.direction,
                        chunk_index=index,
                        bytes_transferred=done,
                        total_size=session.total_size,
                    )
                )
                yield plaintext

            session.begin_completion()
            session.complete()
            logger.info(f"Downloaded {session.transfer_id}")
        except (GeneratorExit, asyncio.CancelledError):
            session.fail_if_active("download stream closed before completion")
            raise
        except Exception as e:
            if session.fail_if_active(e):
                logger.error(f"Download {session.transfer_id} failed: {e}")
            raise
        finally:
            await chunks.aclose()

    async def _fetch_ordered(
        self, session: TransferSession, cancel: CancellationToken
    ) -> AsyncGenerator[tuple[int, bytes, str], None]:
        # Next request only after the previous chunk was consumed
        for index in session.missing_chunks:
            cancel.raise_if_cancelled(f"download {session.transfer_id}")
            plaintext, checksum = await self.fetch_verified(session, index, cancel)
            yield index, plaintext, checksum

    async def _fetch_windowed(
        self, session: TransferSession, cancel: CancellationToken
    ) -> AsyncGenerator[tuple[int, bytes, str], None]:
        # Finished tasks ahead of the head act as the resequencing buffer
        missing = session.missing_chunks
        upcoming = iter(missing)
        pending: dict[int, asyncio.Task[tuple[bytes, str]]] = {}

        def fill() -> None:
            while len(pending) < self.window:
                index = next(upcoming, None)
                if index is None:
                    return
                pending[index] = asyncio.create_task(self.fetch_verified(session, index, cancel))

        try:
            fill()
            for index in missing:
                cancel.raise_if_cancelled(f"download {session.transfer_id}")
                plaintext, checksum = await pending.pop(index)
                fill()
                yield index, plaintext, checksum
        finally:
            for task in pending.values():
                task.cancel()
            if pending:
                await asyncio.gather(*pending.values(), return_exceptions=True)

    async def fetch_verified(
        self, session: TransferSession, index: int, cancel: CancellationToken | None = None
    ) -> tuple[bytes, str]:
        """Fetch, verify and decrypt one chunk.

        Returns:
            (plaintext, checksum of the ciphertext)

        Raises:
            IntegrityError: If verification fails after the re-fetch.
        """
        offset, length = chunk_range(index, session.total_size, session.chunk_size)
        context = ChunkContext(index=index, offset=offset)
        token = session.metadata["token"]

        for attempt in range(MAX_INTEGRITY_REFETCHES + 1):
            ciphertext, advertised = await self._api.download_chunk(token, index, cancel=cancel)
            checksum = get_chunk_hash(ciphertext)
            try:
                if advertised is not None and advertised.lower() != checksum:
                    raise IntegrityError(f"Checksum mismatch for chunk {index}", index)
                plaintext = await self._open(ciphertext, context)
                if len(plaintext) != length:
                    raise IntegrityError(
                        f"Chunk {index} has {len(plaintext)} bytes, expected {length}", index
                    )
            except IntegrityError as e:
                if attempt < MAX_INTEGRITY_REFETCHES:
                    logger.warning(f"{e}, fetching it again")
                    continue
                raise
            logger.debug(f"Fetched chunk {index} of {session.transfer_id} ({len(ciphertext)} bytes)")
            return plaintext, checksum

        raise IntegrityError(f"Chunk {index} failed verification", index)

    async def _open(self, ciphertext: bytes, context: ChunkContext) -> bytes:
        if self._cipher is None:
            return ciphertext
        try:
            return await run_cipher(self._cipher.decrypt_chunk, ciphertext, context)
        except InvalidTag as e:
            raise IntegrityError(
                f"Authentication tag mismatch for chunk {context.index}", context.index
            ) from e
