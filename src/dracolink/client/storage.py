"""Storage client facade.

This module provides:
- StorageClient: wires the raw transport, token store, retrying transport,
  endpoint layer and transfer engine into one object
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from dracolink.client.api import StorageApi
from dracolink.client.auth import OAuth2Client, TokenStore
from dracolink.client.pagination import Paginator
from dracolink.client.transfer import ChunkedTransferEngine
from dracolink.client.transport import HttpxTransport, RetryingTransport

if TYPE_CHECKING:
    from dracolink.client.auth import Credentials
    from dracolink.client.transport import HTTPTransport
    from dracolink.core.config import ClientConfig
    from dracolink.core.crypto import ChunkCipher

logger = logging.getLogger(__name__)


class StorageClient:
    """Authenticated client for the storage service.

    Usage:
        async with StorageClient(config, Credentials.from_refresh_token(rt)) as client:
            async for node in client.api.list_nodes(0):
                print(node.name)
            handle = await client.transfers.start_upload(data, parent_id=1, name="a.bin")
            await handle.wait()
    """

    def __init__(
        self,
        config: ClientConfig,
        credentials: Credentials,
        cipher: ChunkCipher | None = None,
        http: HTTPTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            config: Connection, retry and transfer settings.
            credentials: Initial session credentials.
            cipher: Chunk cipher for transfers (None for plaintext).
            http: Raw HTTP transport (default: HttpxTransport).
        """
        self.config = config
        self._owns_http = http is None
        self.http: HTTPTransport = http or HttpxTransport(config)
        self.tokens = TokenStore(
            credentials,
            OAuth2Client(self.http, config),
            refresh_margin=config.token_refresh_margin,
        )
        self.transport = RetryingTransport(self.http, config, self.tokens)
        self.api = StorageApi(self.transport)
        self.transfers = ChunkedTransferEngine(self.api, cipher, config.transfer)

    def paginate(self, path: str, **kwargs: Any) -> Paginator[Any]:
        """Iterate over any offset/limit list endpoint."""
        return Paginator(self.transport, path, **kwargs)

    async def close(self, revoke: bool = False) -> None:
        """End the session.

        Args:
            revoke: Also revoke the refresh token on the server.
        """
        await self.tokens.close(revoke_access_token=revoke, revoke_refresh_token=revoke)
        if self._owns_http and isinstance(self.http, HttpxTransport):
            await self.http.aclose()
        logger.debug("Storage client closed")

    async def __aenter__(self) -> StorageClient:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()
