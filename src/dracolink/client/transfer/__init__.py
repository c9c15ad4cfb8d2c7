"""Chunked, encrypted, resumable transfers."""

from dracolink.client.transfer.download import MAX_INTEGRITY_REFETCHES, ChunkedDownloader
from dracolink.client.transfer.engine import ChunkedTransferEngine, DownloadStream, TransferHandle
from dracolink.client.transfer.session import (
    VALID_TRANSITIONS,
    InvalidTransitionError,
    TransferSession,
)
from dracolink.client.transfer.types import ProgressEvent, ProgressObserver, ProgressReporter
from dracolink.client.transfer.upload import ChunkedUploader

__all__ = [
    # Engine
    "ChunkedTransferEngine",
    "DownloadStream",
    "TransferHandle",
    "ChunkedUploader",
    "ChunkedDownloader",
    "MAX_INTEGRITY_REFETCHES",
    # Session
    "TransferSession",
    "InvalidTransitionError",
    "VALID_TRANSITIONS",
    # Progress
    "ProgressEvent",
    "ProgressObserver",
    "ProgressReporter",
]
