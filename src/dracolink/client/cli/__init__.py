"""Command-line interface for dracolink.

This module provides the main CLI entry point and assembles all commands.

Commands:
- ls: List the nodes of a room or folder
- upload: Upload a file in chunks
- download: Download a file
"""

from __future__ import annotations

import logging

import click

from dracolink.client.cli.config import (
    ENV_CLIENT_ID,
    ENV_CLIENT_SECRET,
    ENV_PASSWORD,
    ENV_REFRESH_TOKEN,
    ENV_SERVER_URL,
    get_config_dir,
    get_config_file,
    load_config,
    save_config,
)
from dracolink.client.cli.transfer import download, ls, upload


@click.group()
@click.version_option(package_name="dracolink")
@click.option("--server", envvar=ENV_SERVER_URL, default=None, help="Server URL.")
@click.option("--client-id", envvar=ENV_CLIENT_ID, default=None, help="OAuth client id.")
@click.option("--client-secret", envvar=ENV_CLIENT_SECRET, default=None, help="OAuth client secret.")
@click.option("--refresh-token", envvar=ENV_REFRESH_TOKEN, default=None, help="OAuth refresh token.")
@click.option("--password", envvar=ENV_PASSWORD, default=None, help="Encryption password.")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
@click.pass_context
def cli(
    ctx: click.Context,
    server: str | None,
    client_id: str | None,
    client_secret: str | None,
    refresh_token: str | None,
    password: str | None,
    verbose: bool,
) -> None:
    """dracolink - chunked, encrypted transfers for DRACOON-style storage."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = {
        "server": server,
        "client_id": client_id,
        "client_secret": client_secret,
        "refresh_token": refresh_token,
        "password": password,
    }


cli.add_command(ls)
cli.add_command(upload)
cli.add_command(download)


def main() -> None:
    """Entry point for the dracolink command."""
    cli()


__all__ = [
    "cli",
    "main",
    "get_config_dir",
    "get_config_file",
    "load_config",
    "save_config",
]
