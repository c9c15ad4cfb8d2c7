"""HTTP transport with retry, backoff and token handling.

This module provides:
- ApiResponse: status, headers and body of a completed request
- HTTPTransport / HttpxTransport: the raw transport contract and its httpx implementation
- RequestSpec: a re-creatable description of one logical request
- RetryingTransport: executes a RequestSpec under the BackoffPolicy
"""

from __future__ import annotations

import asyncio
import json as jsonlib
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

import httpx

from dracolink.client.errors import ApiError, TransportError, error_from_response
from dracolink.client.retry import BackoffPolicy, RetryContext

if TYPE_CHECKING:
    from dracolink.client.auth import TokenStore
    from dracolink.client.cancel import CancellationToken
    from dracolink.core.config import ClientConfig

logger = logging.getLogger(__name__)

Body = bytes | Callable[[], bytes]


@dataclass
class ApiResponse:
    """A completed HTTP exchange."""

    status_code: int
    headers: httpx.Headers = field(default_factory=httpx.Headers)
    content: bytes = b""

    def __post_init__(self) -> None:
        if not isinstance(self.headers, httpx.Headers):
            self.headers = httpx.Headers(self.headers)

    @property
    def is_success(self) -> bool:
        """True for 2xx responses."""
        return 200 <= self.status_code < 300

    def json(self) -> Any:
        """Decode the body as JSON."""
        return jsonlib.loads(self.content)


class HTTPTransport(Protocol):
    """Raw HTTP transport: one request, no retries."""

    async def send(
        self,
        method: str,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        content: bytes | None = None,
        params: Mapping[str, Any] | None = None,
    ) -> ApiResponse:
        """Send a request.

        Raises:
            TransportError: If no response was received.
        """
        ...


class HttpxTransport:
    """HTTPTransport backed by httpx.AsyncClient (pooling and TLS live there)."""

    def __init__(
        self,
        config: ClientConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the transport.

        Args:
            config: Client configuration (timeout, SSL verification).
            client: Pre-built AsyncClient; takes precedence over config.
        """
        if client is None:
            client = httpx.AsyncClient(
                timeout=config.timeout if config else 30.0,
                verify=config.verify_ssl if config else True,
            )
        self._client = client

    async def send(
        self,
        method: str,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        content: bytes | None = None,
        params: Mapping[str, Any] | None = None,
    ) -> ApiResponse:
        try:
            response = await self._client.request(
                method, url, headers=headers, content=content, params=params
            )
        except (httpx.TimeoutException, httpx.NetworkError, httpx.RemoteProtocolError) as e:
            raise TransportError(f"{type(e).__name__}: {e}", retryable=True) from e
        except httpx.HTTPError as e:
            raise TransportError(f"{type(e).__name__}: {e}", retryable=False) from e
        return ApiResponse(
            status_code=response.status_code,
            headers=response.headers,
            content=response.content,
        )

    async def aclose(self) -> None:
        """Close the underlying client."""
        await self._client.aclose()

    async def __aenter__(self) -> HttpxTransport:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()


@dataclass(frozen=True)
class RequestSpec:
    """One logical request, replayable for every attempt.

    Attributes:
        method: HTTP method.
        path: API path relative to the API prefix, or an absolute URL.
        params: Query parameters.
        headers: Extra request headers.
        json: JSON body (encoded per attempt).
        content: Raw body, or a zero-argument callable producing it.
        authenticated: Attach a bearer token from the TokenStore.
    """

    method: str
    path: str
    params: Mapping[str, Any] | None = None
    headers: Mapping[str, str] = field(default_factory=dict)
    json: Any = None
    content: Body | None = None
    authenticated: bool = True

    def __post_init__(self) -> None:
        if self.content is not None and not isinstance(self.content, bytes) and not callable(self.content):
            raise TypeError(
                "Streaming bodies cannot be retried; pass bytes or a callable returning bytes"
            )
        if self.content is not None and self.json is not None:
            raise ValueError("Pass either json or content, not both")

    def build_body(self) -> tuple[bytes | None, dict[str, str]]:
        """Produce a fresh body and its implied headers for one attempt."""
        if self.json is not None:
            return jsonlib.dumps(self.json).encode("utf-8"), {"Content-Type": "application/json"}
        if callable(self.content):
            return self.content(), {}
        return self.content, {}


class RetryingTransport:
    """Executes requests with authentication, backoff and a single auth retry."""

    def __init__(
        self,
        http: HTTPTransport,
        config: ClientConfig,
        token_store: TokenStore | None = None,
        policy: BackoffPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        """Initialize the transport.

        Args:
            http: Raw transport used for every attempt.
            config: Client configuration (URLs, user agent, retry settings).
            token_store: Source of bearer tokens for authenticated requests.
            policy: Backoff policy (default: built from config.retry).
            sleep: Awaitable sleep used between attempts.
        """
        self._http = http
        self._config = config
        self._tokens = token_store
        self._policy = policy or BackoffPolicy.from_config(config.retry)
        self._sleep = sleep or asyncio.sleep

    @property
    def policy(self) -> BackoffPolicy:
        return self._policy

    def build_url(self, path: str) -> str:
        """Resolve a path against the API prefix (absolute URLs pass through)."""
        if path.startswith(("http://", "https://")):
            return path
        return self._config.api_url(path)

    async def execute_with_retry(
        self, spec: RequestSpec, cancel: CancellationToken | None = None
    ) -> ApiResponse:
        """Execute a request until it succeeds or the policy gives up.

        Args:
            spec: The request to execute.
            cancel: Optional cancellation token checked before each attempt
                and before each backoff sleep.

        Returns:
            The successful (2xx) response.

        Raises:
            Unauthenticated: Token refresh failed or the retried call got 401 again.
            RateLimited, ServerError, TransportError: Retries exhausted.
            ClientError: Request rejected (never retried).
            TransferCancelledError: Cancelled by the caller.
        """
        url = self.build_url(spec.path)
        context = RetryContext()

        while True:
            if cancel is not None:
                cancel.raise_if_cancelled(f"{spec.method} {spec.path}")

            body, body_headers = spec.build_body()
            headers = {"User-Agent": self._config.user_agent, **body_headers, **spec.headers}
            token: str | None = None
            if spec.authenticated and self._tokens is not None:
                token = (await self._tokens.get_valid_token()).access_token
                headers["Authorization"] = f"Bearer {token}"

            try:
                response = await self._http.send(
                    spec.method, url, headers=headers, content=body, params=spec.params
                )
                if response.is_success:
                    return response
                raise error_from_response(response)
            except ApiError as error:
                decision = self._policy.decide(context, error)
                context.last_error = error

                if decision.refresh_auth and token is not None and self._tokens is not None:
                    logger.info(f"{spec.method} {spec.path}: token rejected, refreshing")
                    context.auth_refreshed = True
                    await self._tokens.force_refresh(failed_token=token)
                    continue

                if not decision.retry or decision.refresh_auth:
                    error.attempts = context.attempt + 1
                    if context.attempt:
                        logger.error(
                            f"{spec.method} {spec.path} failed after "
                            f"{error.attempts} attempts: {error}"
                        )
                    raise

                context.attempt += 1
                logger.warning(
                    f"{spec.method} {spec.path} attempt {context.attempt}/"
                    f"{self._policy.max_retries + 1} failed: {error}. "
                    f"Retrying in {decision.delay:.1f}s..."
                )

            if cancel is not None:
                cancel.raise_if_cancelled(f"{spec.method} {spec.path}")
            await self._sleep(decision.delay)

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        json: Any = None,
        content: Body | None = None,
        headers: Mapping[str, str] | None = None,
        authenticated: bool = True,
        cancel: CancellationToken | None = None,
    ) -> ApiResponse:
        """Build a RequestSpec and execute it with retry."""
        spec = RequestSpec(
            method=method,
            path=path,
            params=params,
            headers=dict(headers or {}),
            json=json,
            content=content,
            authenticated=authenticated,
        )
        return await self.execute_with_retry(spec, cancel)
