"""Listing and transfer commands for the dracolink CLI.

Commands:
- ls: List the nodes of a room or folder
- upload: Upload a file in encrypted chunks
- download: Download a file atomically
"""

from __future__ import annotations

import asyncio
import contextlib
import os
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any

import click

from dracolink.client.cli.config import (
    ENV_REFRESH_TOKEN,
    CliConfigError,
    build_cipher,
    build_client_config,
)
from dracolink.client.errors import ApiError

if TYPE_CHECKING:
    from dracolink.client.storage import StorageClient
    from dracolink.client.transfer import ProgressEvent


def _open_client(settings: dict[str, Any]) -> StorageClient:
    """Build a StorageClient from the group options, or exit."""
    from dracolink.client.auth import Credentials
    from dracolink.client.storage import StorageClient

    try:
        config = build_client_config(
            settings.get("server"), settings.get("client_id"), settings.get("client_secret")
        )
    except CliConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    refresh_token = settings.get("refresh_token")
    if not refresh_token:
        click.echo(
            f"Error: No refresh token. Use --refresh-token or set {ENV_REFRESH_TOKEN}.", err=True
        )
        sys.exit(1)

    return StorageClient(
        config,
        Credentials.from_refresh_token(refresh_token),
        cipher=build_cipher(settings.get("password")),
    )


def _format_size(size: int | None) -> str:
    if size is None:
        return "-"
    if size < 1024:
        return f"{size} B"
    value = float(size)
    for unit in ("KB", "MB", "GB"):
        value /= 1024
        if value < 1024:
            return f"{value:.1f} {unit}"
    return f"{value / 1024:.1f} TB"


@click.command(name="ls")
@click.option("--parent-id", type=int, default=0, show_default=True, help="Room or folder id.")
@click.option("--filter", "name_filter", default=None, help="Only names containing this text.")
@click.pass_obj
def ls(settings: dict[str, Any], parent_id: int, name_filter: str | None) -> None:
    """List the nodes of a room or folder."""

    async def _run() -> int:
        async with _open_client(settings) as client:
            count = 0
            async for node in client.api.list_nodes(parent_id, name_filter=name_filter):
                click.echo(f"{node.id}\t{node.type}\t{_format_size(node.size)}\t{node.name}")
                count += 1
            return count

    try:
        count = asyncio.run(_run())
    except ApiError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    if count == 0:
        click.echo("No nodes found.")


@click.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--parent-id", type=int, required=True, help="Target room or folder id.")
@click.option("--name", default=None, help="Name on the server (default: file name).")
@click.option("--chunk-size", type=int, default=None, help="Chunk size in bytes.")
@click.pass_obj
def upload(
    settings: dict[str, Any],
    path: Path,
    parent_id: int,
    name: str | None,
    chunk_size: int | None,
) -> None:
    """Upload a file in chunks.

    Chunks are encrypted client-side when a password is given
    (--password or $DRACOLINK_PASSWORD).
    """
    name = name or path.name
    size = path.stat().st_size

    async def _run() -> int:
        async with _open_client(settings) as client:
            with (
                path.open("rb") as source,
                click.progressbar(length=size, label=f"Uploading {name}") as bar,
            ):
                last = 0

                def on_progress(event: ProgressEvent) -> None:
                    nonlocal last
                    bar.update(event.bytes_transferred - last)
                    last = event.bytes_transferred

                handle = await client.transfers.start_upload(
                    source,
                    size,
                    parent_id=parent_id,
                    name=name,
                    chunk_size=chunk_size,
                    observer=on_progress,
                )
                node = await handle.wait()
            return node.id

    try:
        node_id = asyncio.run(_run())
    except (ApiError, ValueError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    click.echo(f"Uploaded {name} as node {node_id}")


@click.command()
@click.argument("node_id", type=int)
@click.argument("output", type=click.Path(dir_okay=False, path_type=Path))
@click.pass_obj
def download(settings: dict[str, Any], node_id: int, output: Path) -> None:
    """Download a file.

    Data is written to OUTPUT.tmp and renamed once complete, so no partial
    file is left behind.
    """
    output.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = output.with_name(output.name + ".tmp")

    async def _run() -> int:
        async with _open_client(settings) as client:
            stream = await client.transfers.start_download(node_id)
            with tmp_path.open("wb") as f:
                async for data in stream:
                    f.write(data)
            return stream.session.total_size

    try:
        size = asyncio.run(_run())
        os.replace(tmp_path, output)
    except ApiError as e:
        with contextlib.suppress(FileNotFoundError):
            tmp_path.unlink()
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    click.echo(f"Downloaded {_format_size(size)} to {output}")

