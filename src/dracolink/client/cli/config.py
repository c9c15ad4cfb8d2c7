"""Configuration utilities for the dracolink CLI.

This module provides shared configuration functions used across CLI commands.
Settings come from ~/.dracolink/config.json, overridden by environment
variables and command line options.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from dracolink.core.config import ClientConfig
from dracolink.core.crypto import AesGcmChunkCipher, generate_salt

ENV_SERVER_URL = "DRACOLINK_SERVER_URL"
ENV_CLIENT_ID = "DRACOLINK_CLIENT_ID"
ENV_CLIENT_SECRET = "DRACOLINK_CLIENT_SECRET"
ENV_REFRESH_TOKEN = "DRACOLINK_REFRESH_TOKEN"
ENV_PASSWORD = "DRACOLINK_PASSWORD"


class CliConfigError(Exception):
    """Missing or invalid CLI settings."""


def get_config_dir() -> Path:
    """Get the configuration directory for dracolink.

    Returns:
        Path to ~/.dracolink.
    """
    return Path.home() / ".dracolink"


def get_config_file() -> Path:
    """Get the path to the config file."""
    return get_config_dir() / "config.json"


def load_config() -> dict[str, Any]:
    """Load configuration from config file."""
    config_file = get_config_file()
    if config_file.exists():
        return dict(json.loads(config_file.read_text()))
    return {}


def save_config(config: dict[str, Any]) -> None:
    """Save configuration to config file."""
    config_file = get_config_file()
    config_file.parent.mkdir(parents=True, exist_ok=True)
    config_file.write_text(json.dumps(config, indent=2))


def build_client_config(
    server_url: str | None,
    client_id: str | None,
    client_secret: str | None,
) -> ClientConfig:
    """Merge command line values over config.json.

    Raises:
        CliConfigError: If the server URL or client id is missing or invalid.
    """
    data = load_config()
    if server_url:
        data["base_url"] = server_url
    if client_id:
        data["client_id"] = client_id
    if client_secret:
        data["client_secret"] = client_secret
    if not data.get("base_url"):
        raise CliConfigError(f"No server URL. Use --server or set {ENV_SERVER_URL}.")
    if not data.get("client_id"):
        raise CliConfigError(f"No OAuth client id. Use --client-id or set {ENV_CLIENT_ID}.")
    try:
        return ClientConfig.from_dict(data)
    except (TypeError, ValueError) as e:
        raise CliConfigError(f"Invalid configuration: {e}") from e


def get_or_create_salt() -> bytes:
    """Return the key derivation salt stored in config.json, creating it once."""
    config = load_config()
    if config.get("salt"):
        return bytes.fromhex(config["salt"])
    salt = generate_salt()
    config["salt"] = salt.hex()
    save_config(config)
    return salt


def build_cipher(password: str | None) -> AesGcmChunkCipher | None:
    """Build the chunk cipher for a password (None disables encryption)."""
    if not password:
        return None
    return AesGcmChunkCipher.from_password(password, get_or_create_salt())
