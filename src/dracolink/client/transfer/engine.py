"""Chunked transfer engine.

This module provides:
- TransferHandle: a running upload (progress, wait, cancel)
- DownloadStream: a lazy async sequence of downloaded plaintext
- ChunkedTransferEngine: starts, resumes and aborts transfers
"""

from __future__ import annotations

import asyncio
import io
import logging
from collections.abc import AsyncGenerator, AsyncIterator
from typing import TYPE_CHECKING, BinaryIO

from dracolink.client.cancel import CancellationToken
from dracolink.client.errors import ApiError
from dracolink.client.transfer.download import ChunkedDownloader
from dracolink.client.transfer.session import TransferSession
from dracolink.client.transfer.types import ProgressObserver, ProgressReporter
from dracolink.client.transfer.upload import ChunkedUploader
from dracolink.core.config import TransferConfig
from dracolink.core.types import TransferDirection, TransferState

if TYPE_CHECKING:
    from dracolink.client.api import Node, StorageApi
    from dracolink.client.transfer.types import ProgressEvent
    from dracolink.core.crypto import ChunkCipher

logger = logging.getLogger(__name__)


class TransferHandle:
    """A running upload.

    Usage:
        handle = await engine.start_upload(data, parent_id=1, name="a.bin")
        async for event in handle.progress():
            print(f"{event.percent:.0f}%")
        node = await handle.wait()
    """

    def __init__(
        self,
        session: TransferSession,
        task: asyncio.Task[Node],
        reporter: ProgressReporter,
        cancel_token: CancellationToken,
    ) -> None:
        self.session = session
        self.task = task
        self._reporter = reporter
        self._cancel = cancel_token

    def progress(self) -> AsyncIterator[ProgressEvent]:
        """Progress events from now until the transfer ends."""
        return self._reporter.subscribe()

    async def wait(self) -> Node:
        """Wait for the upload to finish.

        Cancelling the waiter does not cancel the upload.
        """
        return await asyncio.shield(self.task)

    def cancel(self, reason: str = "cancelled") -> None:
        """Request cancellation; the session ends FAILED and stays resumable."""
        self._cancel.cancel(reason)

    def done(self) -> bool:
        return self.task.done()


class DownloadStream:
    """Plaintext chunks of a download, in order, fetched on demand.

    Usage:
        stream = await engine.start_download(node_id)
        async for data in stream:
            out.write(data)
    """

    def __init__(
        self,
        session: TransferSession,
        chunks: AsyncGenerator[bytes, None],
        reporter: ProgressReporter,
        cancel_token: CancellationToken,
    ) -> None:
        self.session = session
        self._chunks = chunks
        self._reporter = reporter
        self._cancel = cancel_token

    def __aiter__(self) -> DownloadStream:
        return self

    async def __anext__(self) -> bytes:
        try:
            return await self._chunks.__anext__()
        except BaseException:
            self._reporter.close()
            raise

    async def aclose(self) -> None:
        """Stop the download; an unfinished session ends FAILED."""
        await self._chunks.aclose()
        self._reporter.close()

    def progress(self) -> AsyncIterator[ProgressEvent]:
        """Progress events from now until the stream ends."""
        return self._reporter.subscribe()

    def cancel(self, reason: str = "cancelled") -> None:
        """Request cancellation before the next chunk."""
        self._cancel.cancel(reason)

    async def read_all(self) -> bytes:
        """Drain the stream into memory."""
        return b"".join([data async for data in self])


class ChunkedTransferEngine:
    """Starts, resumes and aborts chunked transfers."""

    def __init__(
        self,
        api: StorageApi,
        cipher: ChunkCipher | None = None,
        config: TransferConfig | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            api: Endpoint layer (all requests go through RetryingTransport).
            cipher: Per-chunk cipher; None transfers plaintext.
            config: Chunk size and concurrency settings.
        """
        self._api = api
        self._cipher = cipher
        self._config = config or TransferConfig()
        self._uploader = ChunkedUploader(api, cipher, self._config)
        self._downloader = ChunkedDownloader(api, cipher, self._config)

    @property
    def config(self) -> TransferConfig:
        return self._config

    async def start_upload(
        self,
        source: bytes | BinaryIO,
        size: int | None = None,
        *,
        parent_id: int,
        name: str,
        chunk_size: int | None = None,
        session: TransferSession | None = None,
        observer: ProgressObserver | None = None,
        cancel: CancellationToken | None = None,
    ) -> TransferHandle:
        """Start uploading a file in the background.

        Args:
            source: File content, or a seekable binary file object.
            size: Bytes to upload (default: size of the source).
            parent_id: Target room or folder.
            name: File name on the server.
            chunk_size: Plaintext bytes per chunk (default: from config).
            session: Existing session to continue (see resume_upload).
            observer: Progress callback; exceptions are logged and ignored.
            cancel: Cancellation token (created if omitted).

        Returns:
            Handle of the running upload.
        """
        if isinstance(source, (bytes, bytearray)):
            source = io.BytesIO(source)
        if size is None:
            size = source.seek(0, io.SEEK_END)

        if session is None:
            session = TransferSession(
                total_size=size,
                direction=TransferDirection.UPLOAD,
                chunk_size=chunk_size or self._config.chunk_size,
                metadata={"parent_id": parent_id, "name": name},
            )
        elif session.direction is not TransferDirection.UPLOAD:
            raise ValueError("Cannot upload with a download session")
        elif session.total_size != size:
            raise ValueError(
                f"Source has {size} bytes, session expects {session.total_size}"
            )

        cancel = cancel or CancellationToken()
        reporter = ProgressReporter(observer)
        task = asyncio.create_task(self._run_upload(session, source, reporter, cancel))
        return TransferHandle(session, task, reporter, cancel)

    async def _run_upload(
        self,
        session: TransferSession,
        source: BinaryIO,
        reporter: ProgressReporter,
        cancel: CancellationToken,
    ) -> Node:
        try:
            return await self._uploader.run(session, source, reporter, cancel)
        finally:
            reporter.close()

    async def resume_upload(
        self,
        session: TransferSession,
        source: bytes | BinaryIO,
        *,
        observer: ProgressObserver | None = None,
        cancel: CancellationToken | None = None,
    ) -> TransferHandle:
        """Continue a failed upload; only missing chunks are sent.

        Raises:
            ValueError: If the session is not a resumable upload.
        """
        if session.state not in (TransferState.FAILED, TransferState.INITIATED):
            raise ValueError(f"Cannot resume an upload in state {session.state.name}")
        return await self.start_upload(
            source,
            session.total_size,
            parent_id=session.metadata["parent_id"],
            name=session.metadata["name"],
            session=session,
            observer=observer,
            cancel=cancel,
        )

    async def start_download(
        self,
        node_id: int,
        *,
        session: TransferSession | None = None,
        observer: ProgressObserver | None = None,
        cancel: CancellationToken | None = None,
    ) -> DownloadStream:
        """Open a download; chunks are fetched as the stream is consumed.

        Args:
            node_id: File to download.
            session: Failed session to continue; only its missing chunks
                are delivered.
            observer: Progress callback; exceptions are logged and ignored.
            cancel: Cancellation token (created if omitted).
        """
        cancel = cancel or CancellationToken()
        if session is None:
            channel = await self._api.create_download_channel(node_id, cancel=cancel)
            session = TransferSession(
                total_size=channel.size,
                direction=TransferDirection.DOWNLOAD,
                chunk_size=channel.chunk_size,
                metadata={"node_id": node_id, "token": channel.token},
            )
        elif session.direction is not TransferDirection.DOWNLOAD:
            raise ValueError("Cannot download with an upload session")
        elif "token" not in session.metadata:
            channel = await self._api.create_download_channel(node_id, cancel=cancel)
            session.metadata["token"] = channel.token

        reporter = ProgressReporter(observer)
        chunks = self._downloader.stream(session, reporter, cancel)
        return DownloadStream(session, chunks, reporter, cancel)

    def progress(self, handle: TransferHandle | DownloadStream) -> AsyncIterator[ProgressEvent]:
        """Subscribe to the progress of a transfer."""
        return handle.progress()

    async def abort(self, handle: TransferHandle | DownloadStream) -> bool:
        """Abort a transfer and release its server-side channel.

        Server notification is best effort: failures are logged.

        Returns:
            False if the transfer had already ended.
        """
        session = handle.session
        if session.is_terminal:
            logger.debug(f"Transfer {session.transfer_id} already {session.state.value}")
            return False

        session.abort()
        handle.cancel("aborted")
        logger.info(f"Aborted {session.direction.value} {session.transfer_id}")

        token = session.metadata.get("token")
        if token is None:
            return True
        try:
            if session.direction is TransferDirection.UPLOAD:
                await self._api.cancel_upload(token)
            else:
                await self._api.cancel_download(token)
        except ApiError as e:
            logger.warning(f"Failed to notify server of abort for {session.transfer_id}: {e}")
        return True
