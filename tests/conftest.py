"""Shared pytest fixtures.

This module provides FakeStorageServer, an in-memory implementation of the
HTTPTransport contract that speaks the token, node, upload and download
endpoints used by dracolink. Tests script failures on it to exercise the
retry, refresh and integrity paths without a network.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any
from urllib.parse import parse_qs

import httpx
import pytest

from dracolink.client.api import CHECKSUM_HEADER
from dracolink.client.auth import Credentials
from dracolink.client.errors import TransportError
from dracolink.client.storage import StorageClient
from dracolink.client.transport import ApiResponse
from dracolink.core.config import ClientConfig, RetryConfig, TransferConfig
from dracolink.core.crypto import ChunkCipher

BASE_URL = "https://dracoon.test"
API_ROOT = "/api/v4/"


@dataclass
class ScriptedFailure:
    """A failure returned instead of the real response."""

    method: str
    path: str
    status_code: int | None = None
    headers: dict[str, str] = field(default_factory=dict)
    body: dict[str, Any] | None = None
    retryable: bool = True
    times: int = 1


@dataclass
class StoredFile:
    """A file held by the fake server (chunks as stored, i.e. ciphertext)."""

    node_id: int
    name: str
    parent_id: int
    size: int
    chunk_size: int
    chunks: dict[int, bytes] = field(default_factory=dict)


class FakeStorageServer:
    """In-memory storage service implementing HTTPTransport.send."""

    def __init__(self) -> None:
        self.requests: list[tuple[str, str]] = []
        self.failures: list[ScriptedFailure] = []
        self.delays: list[tuple[str, str, float]] = []
        self.corruptions: dict[int, int] = {}
        self.nodes: list[dict[str, Any]] = []
        self.page_limit: int | None = None
        self.report_total = True
        self.files: dict[int, StoredFile] = {}
        self.uploads: dict[str, dict[str, Any]] = {}
        self.downloads: dict[str, int] = {}
        self.cancelled: list[str] = []
        self.revoked: list[tuple[str, str]] = []
        self.refresh_delay = 0.0
        self.refresh_calls = 0
        self.reject_refresh = False
        self.valid_tokens = {"access-0"}
        self.refresh_token = "refresh-0"
        self._next_node_id = 100
        self._next_channel = 0

    # === Scripting ===

    def fail(
        self,
        method: str,
        path: str,
        status_code: int | None = None,
        *,
        times: int = 1,
        headers: dict[str, str] | None = None,
        body: dict[str, Any] | None = None,
        retryable: bool = True,
    ) -> None:
        """Answer the next `times` matching requests with an error.

        A status_code of None raises a TransportError instead.
        """
        self.failures.append(
            ScriptedFailure(method, path, status_code, headers or {}, body, retryable, times)
        )

    def delay(self, method: str, path: str, seconds: float) -> None:
        """Hold every matching request for `seconds` before answering."""
        self.delays.append((method, path, seconds))

    def corrupt_chunk(self, index: int, times: int = 1) -> None:
        """Serve a wrong checksum for chunk `index` the next `times` fetches."""
        self.corruptions[index] = times

    def expire_access_tokens(self) -> None:
        """Reject every access token issued so far."""
        self.valid_tokens.clear()

    def add_file(
        self, name: str, chunks: list[bytes], size: int, chunk_size: int, parent_id: int = 1
    ) -> int:
        """Store a file from already-sealed chunks; returns its node id."""
        node_id = self._new_node_id()
        self.files[node_id] = StoredFile(
            node_id, name, parent_id, size, chunk_size, dict(enumerate(chunks))
        )
        return node_id

    def count(self, method: str, fragment: str) -> int:
        """Number of requests with this method whose path contains fragment."""
        return sum(1 for m, p in self.requests if m == method and fragment in p)

    # === HTTPTransport ===

    async def send(
        self,
        method: str,
        url: str,
        *,
        headers: Any = None,
        content: bytes | None = None,
        params: Any = None,
    ) -> ApiResponse:
        path = httpx.URL(url).path
        headers = httpx.Headers(headers or {})
        params = dict(params or {})
        self.requests.append((method, path))
        await asyncio.sleep(0)
        for delay_method, fragment, seconds in self.delays:
            if delay_method == method and fragment in path:
                await asyncio.sleep(seconds)

        for failure in self.failures:
            if failure.times > 0 and failure.method == method and failure.path in path:
                failure.times -= 1
                if failure.status_code is None:
                    raise TransportError("connection reset", retryable=failure.retryable)
                return self._json(failure.status_code, failure.body or {}, failure.headers)

        if path == "/oauth/token":
            return await self._token(content or b"")
        if path == "/oauth/revoke":
            form = parse_qs((content or b"").decode())
            self.revoked.append((form["token"][0], form["token_type_hint"][0]))
            return ApiResponse(200)

        if not path.startswith(API_ROOT):
            return self._json(404, {"message": "Not found"})
        route = path[len(API_ROOT):]

        if route.startswith(("uploads/", "downloads/")):
            return self._transfer_route(method, route, headers, content)

        auth = headers.get("authorization", "")
        if auth.removeprefix("Bearer ") not in self.valid_tokens:
            return self._json(401, {"code": 401, "message": "Unauthorized", "errorCode": -10006})

        if method == "GET" and route == "nodes":
            return self._list_nodes(params)
        if method == "GET" and route.startswith("nodes/"):
            node_id = int(route.split("/")[1])
            for node in self.nodes:
                if node["id"] == node_id:
                    return self._json(200, node)
            return self._json(404, {"code": 404, "message": "Node not found", "errorCode": -41000})
        if method == "POST" and route == "nodes/files/uploads":
            data = json.loads(content or b"{}")
            token = self._new_channel()
            self.uploads[token] = {**data, "chunks": {}}
            return self._json(201, {"uploadId": f"up-{token}", "token": token})
        if method == "POST" and route.startswith("nodes/files/") and route.endswith("/downloads"):
            node_id = int(route.split("/")[2])
            if node_id not in self.files:
                return self._json(404, {"code": 404, "message": "Node not found"})
            stored = self.files[node_id]
            token = self._new_channel()
            self.downloads[token] = node_id
            return self._json(
                200, {"token": token, "size": stored.size, "chunkSize": stored.chunk_size}
            )
        return self._json(404, {"message": f"No route for {method} {route}"})

    # === Handlers ===

    async def _token(self, content: bytes) -> ApiResponse:
        self.refresh_calls += 1
        if self.refresh_delay:
            await asyncio.sleep(self.refresh_delay)
        form = parse_qs(content.decode())
        if self.reject_refresh or form.get("refresh_token", [""])[0] != self.refresh_token:
            return self._json(
                400, {"error": "invalid_grant", "error_description": "Invalid refresh token"}
            )
        access = f"access-{self.refresh_calls}"
        self.valid_tokens.add(access)
        self.refresh_token = f"refresh-{self.refresh_calls}"
        return self._json(
            200,
            {
                "access_token": access,
                "refresh_token": self.refresh_token,
                "token_type": "bearer",
                "expires_in": 28800,
            },
        )

    def _list_nodes(self, params: dict[str, Any]) -> ApiResponse:
        offset = int(params.get("offset", 0))
        limit = int(params.get("limit", 500))
        if self.page_limit is not None:
            limit = min(limit, self.page_limit)
        items = self.nodes[offset:offset + limit]
        page_range: dict[str, Any] = {"offset": offset, "limit": limit}
        if self.report_total:
            page_range["total"] = len(self.nodes)
        return self._json(200, {"range": page_range, "items": items})

    def _transfer_route(
        self, method: str, route: str, headers: httpx.Headers, content: bytes | None
    ) -> ApiResponse:
        parts = route.split("/")
        kind, token = parts[0], parts[1]

        if kind == "uploads":
            upload = self.uploads.get(token)
            if upload is None:
                return self._json(404, {"message": "Upload channel not found"})
            if method == "POST" and len(parts) == 4:
                body = content or b""
                if headers.get(CHECKSUM_HEADER) != hashlib.sha256(body).hexdigest():
                    return self._json(400, {"message": "Checksum mismatch"})
                upload["chunks"][int(parts[3])] = body
                return ApiResponse(201)
            if method == "PUT":
                data = json.loads(content or b"{}")
                if data["chunkCount"] != len(upload["chunks"]):
                    return self._json(400, {"message": "Missing chunks"})
                node_id = self._new_node_id()
                self.files[node_id] = StoredFile(
                    node_id,
                    upload["name"],
                    upload["parentId"],
                    upload["size"],
                    upload["chunkSize"],
                    dict(upload["chunks"]),
                )
                del self.uploads[token]
                return self._json(
                    201,
                    {
                        "id": node_id,
                        "name": upload["name"],
                        "type": "file",
                        "parentId": upload["parentId"],
                        "size": upload["size"],
                    },
                )
            if method == "DELETE":
                self.cancelled.append(token)
                del self.uploads[token]
                return ApiResponse(204)

        if kind == "downloads":
            node_id = self.downloads.get(token)
            if node_id is None:
                return self._json(404, {"message": "Download channel not found"})
            if method == "GET" and len(parts) == 4:
                index = int(parts[3])
                data = self.files[node_id].chunks[index]
                checksum = hashlib.sha256(data).hexdigest()
                if self.corruptions.get(index, 0) > 0:
                    self.corruptions[index] -= 1
                    checksum = "0" * 64
                return ApiResponse(
                    200,
                    {"content-type": "application/octet-stream", CHECKSUM_HEADER: checksum},
                    data,
                )
            if method == "DELETE":
                self.cancelled.append(token)
                del self.downloads[token]
                return ApiResponse(204)

        return self._json(404, {"message": f"No route for {method} {route}"})

    # === Helpers ===

    def _new_node_id(self) -> int:
        self._next_node_id += 1
        return self._next_node_id

    def _new_channel(self) -> str:
        self._next_channel += 1
        return f"channel-{self._next_channel}"

    @staticmethod
    def _json(
        status_code: int, body: Any, headers: dict[str, str] | None = None
    ) -> ApiResponse:
        return ApiResponse(
            status_code,
            {"content-type": "application/json", **(headers or {})},
            json.dumps(body).encode(),
        )


def make_config(**transfer: Any) -> ClientConfig:
    """Create a ClientConfig with tiny retry delays."""
    return ClientConfig(
        base_url=BASE_URL,
        client_id="dracolink-test",
        client_secret="secret",
        retry=RetryConfig(base_delay=0.001, max_delay=0.01),
        transfer=TransferConfig(**transfer),
    )


def valid_credentials() -> Credentials:
    """Credentials the fake server accepts, valid for an hour."""
    return Credentials(
        access_token="access-0",
        refresh_token="refresh-0",
        expires_at=datetime.now(UTC) + timedelta(hours=1),
    )


@pytest.fixture
def server() -> FakeStorageServer:
    """Fresh in-memory storage server."""
    return FakeStorageServer()


@pytest.fixture
def config() -> ClientConfig:
    """Client configuration pointing at the fake server."""
    return make_config(chunk_size=1024)


@pytest.fixture
def credentials() -> Credentials:
    """Credentials the fake server accepts."""
    return valid_credentials()


@pytest.fixture
def client(server: FakeStorageServer, config: ClientConfig) -> StorageClient:
    """StorageClient wired to the fake server."""
    return StorageClient(config, valid_credentials(), http=server)


@pytest.fixture
def make_client(server: FakeStorageServer) -> Callable[..., StorageClient]:
    """Factory for StorageClients with custom transfer settings and cipher."""

    def _make(cipher: ChunkCipher | None = None, **transfer: Any) -> StorageClient:
        transfer.setdefault("chunk_size", 1024)
        return StorageClient(make_config(**transfer), valid_credentials(), cipher, http=server)

    return _make
