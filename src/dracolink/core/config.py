"""Shared configuration classes for dracolink.

This module defines the configuration used by the token store, the retrying
transport and the chunked transfer engine.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from dracolink import __version__

API_PREFIX = "api/v4"
TOKEN_PATH = "oauth/token"
REVOKE_PATH = "oauth/revoke"

# Retry defaults
DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY = 0.6  # seconds
DEFAULT_MAX_DELAY = 20.0  # seconds
DEFAULT_JITTER = 0.2

# Transfer defaults
DEFAULT_CHUNK_SIZE = 32 * 1024 * 1024  # 32 MiB
DEFAULT_UPLOAD_CONCURRENCY = 4
DEFAULT_DOWNLOAD_CONCURRENCY = 1

APP_USER_AGENT = f"dracolink|{__version__}"


@dataclass
class RetryConfig:
    """Backoff settings for RetryingTransport.

    Attributes:
        max_retries: Transient retries allowed per logical request.
        base_delay: Delay before the first retry, in seconds.
        max_delay: Upper bound of the exponential delay before jitter, in seconds.
        jitter: Relative jitter applied to each delay (0.2 = ±20%).
        max_elapsed: Optional budget in seconds for the whole operation.
    """

    max_retries: int = DEFAULT_MAX_RETRIES
    base_delay: float = DEFAULT_BASE_DELAY
    max_delay: float = DEFAULT_MAX_DELAY
    jitter: float = DEFAULT_JITTER
    max_elapsed: float | None = None

    def __post_init__(self) -> None:
        """Validate retry settings."""
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.base_delay < 0 or self.max_delay < self.base_delay:
            raise ValueError("delays must satisfy 0 <= base_delay <= max_delay")
        if not 0 <= self.jitter < 1:
            raise ValueError("jitter must be in [0, 1)")


@dataclass
class TransferConfig:
    """Chunked transfer settings.

    Attributes:
        chunk_size: Plaintext bytes per chunk.
        upload_concurrency: Chunk uploads in flight per transfer.
        ordered_upload: Upload chunks strictly in index order (forces
            a concurrency of 1).
        download_concurrency: Chunk downloads in flight per transfer. Only
            used when the cipher does not require ordered decryption.
    """

    chunk_size: int = DEFAULT_CHUNK_SIZE
    upload_concurrency: int = DEFAULT_UPLOAD_CONCURRENCY
    ordered_upload: bool = False
    download_concurrency: int = DEFAULT_DOWNLOAD_CONCURRENCY

    def __post_init__(self) -> None:
        """Validate transfer settings."""
        if self.chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if self.upload_concurrency < 1 or self.download_concurrency < 1:
            raise ValueError("concurrency limits must be >= 1")

    @property
    def effective_upload_concurrency(self) -> int:
        """Number of upload workers actually started."""
        return 1 if self.ordered_upload else self.upload_concurrency


@dataclass
class ClientConfig:
    """Configuration for connecting to the storage service.

    Attributes:
        base_url: Base URL of the service (e.g., "https://dracoon.example.com").
        client_id: OAuth2 client id.
        client_secret: OAuth2 client secret.
        timeout: Request/connection timeout in seconds.
        verify_ssl: Whether to verify SSL certificates (default True).
        user_agent: Value of the User-Agent header.
        token_refresh_margin: Refresh access tokens this many seconds
            before their advertised expiry.
        retry: Backoff settings.
        transfer: Chunked transfer settings.
    """

    base_url: str
    client_id: str
    client_secret: str = field(default="", repr=False)
    timeout: float = 30.0
    verify_ssl: bool = True
    user_agent: str = APP_USER_AGENT
    token_refresh_margin: float = 30.0
    retry: RetryConfig = field(default_factory=RetryConfig)
    transfer: TransferConfig = field(default_factory=TransferConfig)

    def __post_init__(self) -> None:
        """Normalize and validate the base URL."""
        self.base_url = self.base_url.rstrip("/")
        if not self.base_url.startswith(("http://", "https://")):
            raise ValueError(f"Invalid base URL: {self.base_url!r}")
        if not self.client_id:
            raise ValueError("client_id is required")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ClientConfig:
        """Create from a configuration dictionary (e.g. config.json)."""
        retry = RetryConfig(**data.get("retry", {}))
        transfer = TransferConfig(**data.get("transfer", {}))
        known = {
            key: data[key]
            for key in (
                "client_secret",
                "timeout",
                "verify_ssl",
                "user_agent",
                "token_refresh_margin",
            )
            if key in data
        }
        return cls(
            base_url=data["base_url"],
            client_id=data["client_id"],
            retry=retry,
            transfer=transfer,
            **known,
        )

    def api_url(self, path: str) -> str:
        """Build an absolute API URL from a path relative to the API prefix."""
        return f"{self.base_url}/{API_PREFIX}/{path.lstrip('/')}"

    @property
    def token_url(self) -> str:
        """OAuth2 token endpoint."""
        return f"{self.base_url}/{TOKEN_PATH}"

    @property
    def revoke_url(self) -> str:
        """OAuth2 token revocation endpoint."""
        return f"{self.base_url}/{REVOKE_PATH}"

    @property
    def is_secure(self) -> bool:
        """Check if using HTTPS.

        Returns:
            True if the service uses HTTPS.
        """
        return self.base_url.startswith("https://")
