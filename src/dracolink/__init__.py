"""dracolink - session and chunked transfer engine for a cloud-storage REST API."""

__version__ = "0.1.0"
