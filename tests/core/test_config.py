"""Tests for core configuration classes."""

from __future__ import annotations

import pytest

from dracolink.core.config import (
    APP_USER_AGENT,
    ClientConfig,
    RetryConfig,
    TransferConfig,
)


class TestClientConfig:
    """Tests for ClientConfig class."""

    def test_init_basic(self) -> None:
        """Should initialize with required fields and defaults."""
        config = ClientConfig(base_url="https://example.com", client_id="app")
        assert config.base_url == "https://example.com"
        assert config.timeout == 30.0
        assert config.verify_ssl is True
        assert config.user_agent == APP_USER_AGENT
        assert config.retry.max_retries == 3
        assert config.transfer.chunk_size == 32 * 1024 * 1024

    def test_url_trailing_slash_removed(self) -> None:
        """Should strip trailing slash from the base URL."""
        config = ClientConfig(base_url="https://example.com/", client_id="app")
        assert config.base_url == "https://example.com"

    def test_invalid_scheme_rejected(self) -> None:
        """Should reject URLs without http(s) scheme."""
        with pytest.raises(ValueError, match="Invalid base URL"):
            ClientConfig(base_url="ftp://example.com", client_id="app")

    def test_client_id_required(self) -> None:
        """Should reject an empty client id."""
        with pytest.raises(ValueError):
            ClientConfig(base_url="https://example.com", client_id="")

    def test_urls(self) -> None:
        """Should build API and OAuth endpoint URLs."""
        config = ClientConfig(base_url="https://example.com", client_id="app")
        assert config.api_url("/nodes") == "https://example.com/api/v4/nodes"
        assert config.token_url == "https://example.com/oauth/token"
        assert config.revoke_url == "https://example.com/oauth/revoke"

    def test_secret_not_in_repr(self) -> None:
        """Client secret must not leak through repr."""
        config = ClientConfig(base_url="https://example.com", client_id="app", client_secret="s3cr3t")
        assert "s3cr3t" not in repr(config)

    def test_is_secure(self) -> None:
        """Should report HTTPS."""
        assert ClientConfig(base_url="https://example.com", client_id="a").is_secure is True
        assert ClientConfig(base_url="http://localhost:8000", client_id="a").is_secure is False

    def test_from_dict(self) -> None:
        """Should build nested settings from a dictionary."""
        config = ClientConfig.from_dict(
            {
                "base_url": "https://example.com",
                "client_id": "app",
                "client_secret": "secret",
                "timeout": 10,
                "retry": {"max_retries": 5},
                "transfer": {"chunk_size": 1024, "ordered_upload": True},
                "salt": "ignored",
            }
        )
        assert config.client_secret == "secret"
        assert config.timeout == 10
        assert config.retry.max_retries == 5
        assert config.transfer.chunk_size == 1024
        assert config.transfer.effective_upload_concurrency == 1


class TestRetryConfig:
    """Tests for RetryConfig validation."""

    def test_defaults(self) -> None:
        """Defaults match the documented backoff schedule."""
        config = RetryConfig()
        assert (config.base_delay, config.max_delay, config.jitter) == (0.6, 20.0, 0.2)

    @pytest.mark.parametrize(
        "kwargs",
        [{"max_retries": -1}, {"base_delay": 5, "max_delay": 1}, {"jitter": 1.5}],
    )
    def test_invalid_values(self, kwargs: dict[str, float]) -> None:
        """Invalid settings are rejected."""
        with pytest.raises(ValueError):
            RetryConfig(**kwargs)


class TestTransferConfig:
    """Tests for TransferConfig validation."""

    def test_effective_upload_concurrency(self) -> None:
        """Ordered uploads use a single worker."""
        assert TransferConfig(upload_concurrency=6).effective_upload_concurrency == 6
        assert TransferConfig(upload_concurrency=6, ordered_upload=True).effective_upload_concurrency == 1

    def test_invalid_values(self) -> None:
        """Chunk size and concurrency must be positive."""
        with pytest.raises(ValueError):
            TransferConfig(chunk_size=0)
        with pytest.raises(ValueError):
            TransferConfig(download_concurrency=0)
