"""Chunked upload with encryption.

This module provides:
- ChunkedUploader: uploads the missing chunks of a TransferSession

One producer reads plaintext chunks into a bounded queue; upload workers
take them one at a time, encrypt, send and record them. On cancellation or
error no new chunk is started, but chunks already being sent finish and are
recorded. A failed session keeps its completed chunks, so running it again
uploads only the rest.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, BinaryIO

from dracolink.client.errors import ApiError, TransferCancelledError
from dracolink.client.transfer.types import ProgressEvent
from dracolink.core.chunking import Chunk, PlaintextChunk, get_chunk_hash, read_chunk
from dracolink.core.config import TransferConfig
from dracolink.core.crypto import ChunkContext, run_cipher
from dracolink.core.types import TransferState

if TYPE_CHECKING:
    from dracolink.client.api import Node, StorageApi
    from dracolink.client.cancel import CancellationToken
    from dracolink.client.transfer.session import TransferSession
    from dracolink.client.transfer.types import ProgressReporter
    from dracolink.core.crypto import ChunkCipher

logger = logging.getLogger(__name__)


class ChunkedUploader:
    """Runs the upload side of the transfer engine."""

    def __init__(
        self,
        api: StorageApi,
        cipher: ChunkCipher | None = None,
        config: TransferConfig | None = None,
    ) -> None:
        """Initialize the uploader.

        Args:
            api: Endpoint layer used for every request.
            cipher: Chunk cipher (None uploads plaintext).
            config: Concurrency and ordering settings.
        """
        self._api = api
        self._cipher = cipher
        self._config = config or TransferConfig()

    async def seal(self, plain: PlaintextChunk) -> Chunk:
        """Encrypt a plaintext chunk and compute its checksum."""
        if self._cipher is None:
            ciphertext = plain.data
        else:
            context = ChunkContext(index=plain.index, offset=plain.offset)
            ciphertext = await run_cipher(self._cipher.encrypt_chunk, plain.data, context)
        return Chunk(
            index=plain.index,
            offset=plain.offset,
            plaintext_length=plain.size,
            ciphertext=ciphertext,
            checksum=get_chunk_hash(ciphertext),
        )

    async def run(
        self,
        session: TransferSession,
        source: BinaryIO,
        reporter: ProgressReporter,
        cancel: CancellationToken,
    ) -> Node:
        """Upload every missing chunk, then finalize.

        Args:
            session: Upload session (INITIATED, or FAILED to resume).
                metadata must hold ``parent_id`` and ``name``.
            source: Seekable binary source of session.total_size bytes.
            reporter: Receives a ProgressEvent per uploaded chunk.
            cancel: Checked between chunks.

        Returns:
            The node created by the server.

        Raises:
            ApiError: If a request fails for good; the session is FAILED
                and keeps its completed chunks.
            TransferCancelledError: If cancelled or aborted.
        """
        try:
            return await self._run(session, source, reporter, cancel)
        except asyncio.CancelledError:
            session.fail_if_active("upload task cancelled")
            raise
        except Exception as e:
            if session.fail_if_active(e):
                logger.error(
                    f"Upload {session.transfer_id} failed "
                    f"({len(session.completed_chunks)}/{session.chunk_count} chunks done): {e}"
                )
            raise

    async def _run(
        self,
        session: TransferSession,
        source: BinaryIO,
        reporter: ProgressReporter,
        cancel: CancellationToken,
    ) -> Node:
        name = session.metadata.get("name", session.transfer_id)
        if session.state is TransferState.FAILED:
            logger.info(
                f"Resuming upload of {name}: "
                f"{len(session.completed_chunks)}/{session.chunk_count} chunks already uploaded"
            )
        else:
            logger.info(f"Uploading {name} ({session.total_size} bytes, {session.chunk_count} chunks)")

        if "token" not in session.metadata:
            cancel.raise_if_cancelled(f"upload of {name}")
            channel = await self._api.create_upload_channel(
                parent_id=session.metadata["parent_id"],
                name=name,
                size=session.total_size,
                chunk_size=session.chunk_size,
                cancel=cancel,
            )
            session.metadata["token"] = channel.token
            session.metadata["upload_id"] = channel.upload_id
            if session.state is TransferState.ABORTED:
                # Aborted while the channel was being opened
                await self._release_channel(session, channel.token)
                raise TransferCancelledError(f"upload of {name} aborted")
        cancel.raise_if_cancelled(f"upload of {name}")
        session.start()

        missing = session.missing_chunks
        if missing:
            await self._upload_chunks(session, source, missing, reporter, cancel)

        cancel.raise_if_cancelled(f"upload of {name}")
        session.begin_completion()
        node = await self._api.complete_upload(
            session.metadata["token"], dict(session.checksums), cancel=cancel
        )
        if session.state is TransferState.ABORTED:
            raise TransferCancelledError(f"upload of {name} aborted")
        session.complete()
        session.metadata["node_id"] = node.id
        logger.info(f"Uploaded {name} as node {node.id}")
        return node

    async def _release_channel(self, session: TransferSession, token: str) -> None:
        try:
            await self._api.cancel_upload(token)
        except ApiError as e:
            logger.warning(f"Failed to release upload channel of {session.transfer_id}: {e}")

    async def _upload_chunks(
        self,
        session: TransferSession,
        source: BinaryIO,
        indices: list[int],
        reporter: ProgressReporter,
        cancel: CancellationToken,
    ) -> None:
        """Run the producer and workers until every chunk is sent or they stop.

        Cancellation and worker errors stop new chunks from being taken;
        requests already in flight finish and are recorded first.
        """
        workers = min(self._config.effective_upload_concurrency, len(indices))
        queue: asyncio.Queue[PlaintextChunk | None] = asyncio.Queue(maxsize=workers)
        stop = asyncio.Event()

        producer = asyncio.create_task(
            self._produce(session, source, indices, queue, workers, stop, cancel)
        )
        consumers = [
            asyncio.create_task(self._consume(session, queue, reporter, stop, cancel))
            for _ in range(workers)
        ]
        try:
            results = await asyncio.gather(*consumers, return_exceptions=True)
            # Still running only if blocked on a queue nobody reads anymore
            producer.cancel()
            results += await asyncio.gather(producer, return_exceptions=True)
        except asyncio.CancelledError:
            for task in [producer, *consumers]:
                task.cancel()
            await asyncio.gather(producer, *consumers, return_exceptions=True)
            raise

        errors = [r for r in results if isinstance(r, Exception)]
        if errors:
            raise errors[0]

    async def _produce(
        self,
        session: TransferSession,
        source: BinaryIO,
        indices: list[int],
        queue: asyncio.Queue[PlaintextChunk | None],
        workers: int,
        stop: asyncio.Event,
        cancel: CancellationToken,
    ) -> None:
        try:
            for index in indices:
                if stop.is_set() or cancel.cancelled:
                    break
                plain = await asyncio.to_thread(
                    read_chunk, source, index, session.total_size, session.chunk_size
                )
                await queue.put(plain)
            else:
                # One stop signal per worker
                for _ in range(workers):
                    await queue.put(None)
                return
        except Exception:
            stop.set()
            raise
        finally:
            if stop.is_set() or cancel.cancelled:
                # Idle workers block on an empty queue, so this wakes all of them
                while not queue.full():
                    queue.put_nowait(None)

    async def _consume(
        self,
        session: TransferSession,
        queue: asyncio.Queue[PlaintextChunk | None],
        reporter: ProgressReporter,
        stop: asyncio.Event,
        cancel: CancellationToken,
    ) -> None:
        token = session.metadata["token"]
        while True:
            plain = await queue.get()
            if plain is None or stop.is_set() or cancel.cancelled:
                return
            try:
                chunk = await self.seal(plain)
                await self._api.upload_chunk(token, chunk, session.total_size, cancel=cancel)
            except Exception:
                stop.set()
                raise
            done = await session.record_chunk(chunk.index, chunk.checksum)
            logger.debug(f"Uploaded chunk {chunk.index} of {session.transfer_id} ({chunk.size} bytes)")
            reporter.emit(
                ProgressEvent(
                    transfer_id=session.transfer_id,
                    direction=session.direction,
                    chunk_index=chunk.index,
                    bytes_transferred=done,
                    total_size=session.total_size,
                )
            )
