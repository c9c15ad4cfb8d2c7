"""Endpoint functions used by the transfer engine.

This module provides:
- Node, UploadChannel, DownloadChannel: response models
- StorageApi: node listing plus upload/download channel operations

Every call goes through RetryingTransport.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from dracolink.client.pagination import DEFAULT_PAGE_LIMIT, Paginator

if TYPE_CHECKING:
    from dracolink.client.cancel import CancellationToken
    from dracolink.client.transport import RetryingTransport
    from dracolink.core.chunking import Chunk

logger = logging.getLogger(__name__)

NODES_BASE = "nodes"
FILES_BASE = "nodes/files"
UPLOADS_BASE = "uploads"
DOWNLOADS_BASE = "downloads"

CHECKSUM_HEADER = "X-Chunk-Checksum"


@dataclass
class Node:
    """Node metadata from the server."""

    id: int
    name: str
    type: str
    parent_id: int | None = None
    size: int | None = None
    is_encrypted: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Node:
        """Create from API response dictionary."""
        return cls(
            id=data["id"],
            name=data["name"],
            type=data.get("type", "file"),
            parent_id=data.get("parentId"),
            size=data.get("size"),
            is_encrypted=bool(data.get("isEncrypted", False)),
        )


@dataclass
class UploadChannel:
    """Server-side upload session."""

    upload_id: str
    token: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UploadChannel:
        return cls(upload_id=str(data["uploadId"]), token=str(data["token"]))


@dataclass
class DownloadChannel:
    """Server-side download session."""

    token: str
    size: int
    chunk_size: int

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DownloadChannel:
        return cls(
            token=str(data["token"]),
            size=int(data["size"]),
            chunk_size=int(data["chunkSize"]),
        )


class StorageApi:
    """Endpoint functions for nodes and chunked transfers."""

    def __init__(self, transport: RetryingTransport) -> None:
        self._transport = transport

    @property
    def transport(self) -> RetryingTransport:
        return self._transport

    # === Nodes ===

    def list_nodes(
        self,
        parent_id: int = 0,
        *,
        name_filter: str | None = None,
        limit: int = DEFAULT_PAGE_LIMIT,
    ) -> Paginator[Node]:
        """List child nodes of a room or folder, lazily.

        Args:
            parent_id: Parent node id (0 lists the top-level rooms).
            name_filter: Optional ``name:cn:<value>`` filter.
            limit: Page size.
        """
        params: dict[str, Any] = {"parent_id": parent_id}
        if name_filter:
            params["filter"] = f"name:cn:{name_filter}"
        return Paginator(
            self._transport,
            NODES_BASE,
            params=params,
            limit=limit,
            parse_item=Node.from_dict,
        )

    async def get_node(self, node_id: int) -> Node:
        """Get node metadata.

        Raises:
            NotFoundError: If the node does not exist.
        """
        response = await self._transport.request("GET", f"{NODES_BASE}/{node_id}")
        return Node.from_dict(response.json())

    # === Uploads ===

    async def create_upload_channel(
        self,
        parent_id: int,
        name: str,
        size: int,
        chunk_size: int,
        cancel: CancellationToken | None = None,
    ) -> UploadChannel:
        """Open an upload channel for a new file."""
        response = await self._transport.request(
            "POST",
            f"{FILES_BASE}/{UPLOADS_BASE}",
            json={"parentId": parent_id, "name": name, "size": size, "chunkSize": chunk_size},
            cancel=cancel,
        )
        channel = UploadChannel.from_dict(response.json())
        logger.debug(f"Opened upload channel {channel.upload_id} for {name}")
        return channel

    async def upload_chunk(
        self,
        token: str,
        chunk: Chunk,
        total_size: int,
        cancel: CancellationToken | None = None,
    ) -> None:
        """Upload one encrypted chunk."""
        end = chunk.offset + chunk.plaintext_length - 1
        await self._transport.request(
            "POST",
            f"{UPLOADS_BASE}/{token}/chunks/{chunk.index}",
            content=chunk.ciphertext,
            headers={
                "Content-Type": "application/octet-stream",
                "Content-Range": f"bytes {chunk.offset}-{end}/{total_size}",
                CHECKSUM_HEADER: chunk.checksum,
            },
            authenticated=False,
            cancel=cancel,
        )

    async def complete_upload(
        self,
        token: str,
        checksums: dict[int, str],
        cancel: CancellationToken | None = None,
    ) -> Node:
        """Finalize an upload once every chunk is stored."""
        response = await self._transport.request(
            "PUT",
            f"{UPLOADS_BASE}/{token}",
            json={
                "chunkCount": len(checksums),
                "chunks": [
                    {"index": index, "checksum": checksums[index]}
                    for index in sorted(checksums)
                ],
                "resolutionStrategy": "autorename",
            },
            authenticated=False,
            cancel=cancel,
        )
        return Node.from_dict(response.json())

    async def cancel_upload(self, token: str) -> None:
        """Release a server-side upload channel."""
        await self._transport.request("DELETE", f"{UPLOADS_BASE}/{token}", authenticated=False)

    # === Downloads ===

    async def create_download_channel(
        self, node_id: int, cancel: CancellationToken | None = None
    ) -> DownloadChannel:
        """Open a download channel for a file."""
        response = await self._transport.request(
            "POST", f"{FILES_BASE}/{node_id}/{DOWNLOADS_BASE}", cancel=cancel
        )
        return DownloadChannel.from_dict(response.json())

    async def download_chunk(
        self,
        token: str,
        index: int,
        cancel: CancellationToken | None = None,
    ) -> tuple[bytes, str | None]:
        """Fetch one stored chunk.

        Returns:
            (ciphertext, checksum advertised by the server or None)
        """
        response = await self._transport.request(
            "GET",
            f"{DOWNLOADS_BASE}/{token}/chunks/{index}",
            authenticated=False,
            cancel=cancel,
        )
        return response.content, response.headers.get(CHECKSUM_HEADER)

    async def cancel_download(self, token: str) -> None:
        """Release a server-side download channel."""
        await self._transport.request("DELETE", f"{DOWNLOADS_BASE}/{token}", authenticated=False)
