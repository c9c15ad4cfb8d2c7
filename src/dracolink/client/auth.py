"""OAuth2 session handling.

This module provides:
- Credentials: an access/refresh token pair with its expiry hint
- OAuth2Client: refresh and revoke calls against the token endpoints
- TokenStore: shared credentials with single-flight refresh
"""

from __future__ import annotations

import asyncio
import base64
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any, Protocol
from urllib.parse import urlencode

from dracolink.client.errors import ApiError, TransportError, Unauthenticated, error_from_response

if TYPE_CHECKING:
    from dracolink.client.transport import HTTPTransport
    from dracolink.core.config import ClientConfig

logger = logging.getLogger(__name__)

GRANT_TYPE_REFRESH_TOKEN = "refresh_token"
TOKEN_TYPE_HINT_ACCESS_TOKEN = "access_token"
TOKEN_TYPE_HINT_REFRESH_TOKEN = "refresh_token"

_EPOCH = datetime.fromtimestamp(0, UTC)


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class Credentials:
    """OAuth2 tokens.

    expires_at is a hint: the server may reject a token before it.
    """

    access_token: str = field(repr=False)
    refresh_token: str = field(repr=False)
    expires_at: datetime

    @classmethod
    def from_token_response(
        cls, data: dict[str, Any], now: datetime | None = None
    ) -> Credentials:
        """Create from an OAuth2 token response."""
        now = now or _utcnow()
        return cls(
            access_token=data["access_token"],
            refresh_token=data["refresh_token"],
            expires_at=now + timedelta(seconds=int(data.get("expires_in", 0))),
        )

    @classmethod
    def from_refresh_token(cls, refresh_token: str) -> Credentials:
        """Bootstrap credentials that refresh on first use."""
        return cls(access_token="", refresh_token=refresh_token, expires_at=_EPOCH)

    def expires_within(self, margin: float, now: datetime | None = None) -> bool:
        """True if the token expires in less than margin seconds."""
        now = now or _utcnow()
        return self.expires_at - now <= timedelta(seconds=margin)


class TokenRefresher(Protocol):
    """Anything able to exchange a refresh token for new credentials."""

    async def refresh(self, refresh_token: str) -> Credentials: ...


class OAuth2Client:
    """Token endpoint calls. Never retried: failures surface as Unauthenticated."""

    def __init__(self, http: HTTPTransport, config: ClientConfig) -> None:
        self._http = http
        self._config = config

    def _headers(self) -> dict[str, str]:
        basic = base64.b64encode(
            f"{self._config.client_id}:{self._config.client_secret}".encode()
        ).decode("ascii")
        return {
            "Authorization": f"Basic {basic}",
            "Content-Type": "application/x-www-form-urlencoded",
            "User-Agent": self._config.user_agent,
        }

    async def refresh(self, refresh_token: str) -> Credentials:
        """Exchange a refresh token for new credentials.

        Raises:
            Unauthenticated: If the refresh is rejected or the server is unreachable.
        """
        form = urlencode(
            {"grant_type": GRANT_TYPE_REFRESH_TOKEN, "refresh_token": refresh_token}
        ).encode("ascii")
        try:
            response = await self._http.send(
                "POST", self._config.token_url, headers=self._headers(), content=form
            )
        except TransportError as e:
            raise Unauthenticated(f"Token refresh failed: {e}") from e

        if not response.is_success:
            error = error_from_response(response)
            raise Unauthenticated(
                f"Token refresh rejected: {error}", response.status_code
            ) from error

        try:
            return Credentials.from_token_response(response.json())
        except (KeyError, TypeError, ValueError) as e:
            raise Unauthenticated(f"Malformed token response: {e}") from e

    async def revoke(self, token: str, token_type_hint: str) -> None:
        """Revoke a token.

        Raises:
            ApiError: If the revocation fails.
        """
        form = urlencode({"token": token, "token_type_hint": token_type_hint}).encode("ascii")
        response = await self._http.send(
            "POST", self._config.revoke_url, headers=self._headers(), content=form
        )
        if not response.is_success:
            raise error_from_response(response)


class TokenStore:
    """Holds the session credentials and refreshes them single-flight.

    Reading a still-valid token takes no lock. When a refresh is needed the
    first caller installs the refresh task in a shared slot; concurrent
    callers await that same task instead of issuing their own request.
    """

    def __init__(
        self,
        credentials: Credentials,
        refresher: TokenRefresher,
        refresh_margin: float = 30.0,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the store.

        Args:
            credentials: Initial credentials supplied by the caller.
            refresher: Performs the actual refresh request.
            refresh_margin: Refresh tokens expiring within this many seconds.
            clock: Returns the current UTC time (injectable for tests).
        """
        self._credentials: Credentials | None = credentials
        self._refresher = refresher
        self._margin = refresh_margin
        self._clock = clock or _utcnow
        self._lock = asyncio.Lock()
        self._inflight: asyncio.Task[Credentials] | None = None
        self._refresh_count = 0

    @property
    def credentials(self) -> Credentials | None:
        """Current credentials (None after close)."""
        return self._credentials

    @property
    def refresh_count(self) -> int:
        """Number of completed refreshes."""
        return self._refresh_count

    def _require(self) -> Credentials:
        credentials = self._credentials
        if credentials is None:
            raise Unauthenticated("Session closed, re-authentication required")
        return credentials

    async def get_valid_token(self) -> Credentials:
        """Return credentials believed valid, refreshing if near expiry.

        Raises:
            Unauthenticated: If the session is closed or refresh fails.
        """
        credentials = self._require()
        if not credentials.expires_within(self._margin, self._clock()):
            return credentials
        return await self._refresh(credentials)

    async def force_refresh(self, failed_token: str | None = None) -> Credentials:
        """Refresh regardless of the expiry hint.

        Args:
            failed_token: Access token the server just rejected. If the
                store already holds a different one, it is returned as is.

        Raises:
            Unauthenticated: If the session is closed or refresh fails.
        """
        credentials = self._require()
        if failed_token is not None and credentials.access_token != failed_token:
            return credentials
        return await self._refresh(credentials)

    async def _refresh(self, stale: Credentials) -> Credentials:
        async with self._lock:
            current = self._require()
            if current is not stale:
                return current
            if self._inflight is None:
                self._inflight = asyncio.create_task(self._do_refresh(stale))
            inflight = self._inflight
        # shield: a cancelled waiter must not cancel the shared refresh
        return await asyncio.shield(inflight)

    async def _do_refresh(self, stale: Credentials) -> Credentials:
        try:
            logger.debug("Refreshing access token")
            credentials = await self._refresher.refresh(stale.refresh_token)
            if self._credentials is not None:
                self._credentials = credentials
            self._refresh_count += 1
            logger.info(f"Access token refreshed, expires at {credentials.expires_at.isoformat()}")
            return credentials
        except Unauthenticated:
            logger.error("Token refresh failed, re-authentication required")
            raise
        finally:
            self._inflight = None

    def clear(self) -> None:
        """Drop the credentials from memory."""
        self._credentials = None

    async def close(
        self,
        revoke_access_token: bool = True,
        revoke_refresh_token: bool = False,
    ) -> None:
        """End the session, optionally revoking tokens (best effort)."""
        credentials = self._credentials
        self.clear()
        if credentials is None:
            return
        revoke = getattr(self._refresher, "revoke", None)
        if revoke is None:
            return
        targets = []
        if revoke_access_token and credentials.access_token:
            targets.append((credentials.access_token, TOKEN_TYPE_HINT_ACCESS_TOKEN))
        if revoke_refresh_token:
            targets.append((credentials.refresh_token, TOKEN_TYPE_HINT_REFRESH_TOKEN))
        for token, hint in targets:
            try:
                await revoke(token, hint)
            except ApiError as e:
                logger.warning(f"Failed to revoke {hint}: {e}")
