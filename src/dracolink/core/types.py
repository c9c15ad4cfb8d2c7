"""Shared types for dracolink.

This module defines enums used by the transfer engine and its callers.
"""

from __future__ import annotations

from enum import Enum


class TransferState(str, Enum):
    """Lifecycle state of a chunked transfer.

    FAILED keeps the completed chunks so the transfer can be resumed;
    COMPLETED and ABORTED are terminal.
    """

    INITIATED = "initiated"
    IN_PROGRESS = "in_progress"
    COMPLETING = "completing"
    COMPLETED = "completed"
    FAILED = "failed"
    ABORTED = "aborted"


class TransferDirection(str, Enum):
    """Direction of a chunked transfer."""

    UPLOAD = "upload"
    DOWNLOAD = "download"
