"""Client module - Session, retry, pagination and transfer engine."""

from dracolink.client.api import DownloadChannel, Node, StorageApi, UploadChannel
from dracolink.client.auth import Credentials, OAuth2Client, TokenStore
from dracolink.client.cancel import CancellationToken
from dracolink.client.errors import (
    ApiError,
    ClientError,
    ConflictError,
    IntegrityError,
    NotFoundError,
    RateLimited,
    ServerError,
    TransferCancelledError,
    TransportError,
    Unauthenticated,
)
from dracolink.client.pagination import PageCursor, Paginator, PaginatorState, paginate
from dracolink.client.retry import BackoffPolicy, RetryContext, RetryDecision
from dracolink.client.storage import StorageClient
from dracolink.client.transport import (
    ApiResponse,
    HTTPTransport,
    HttpxTransport,
    RequestSpec,
    RetryingTransport,
)

__all__ = [
    # Facade
    "StorageClient",
    # Session
    "Credentials",
    "OAuth2Client",
    "TokenStore",
    # Transport
    "ApiResponse",
    "HTTPTransport",
    "HttpxTransport",
    "RequestSpec",
    "RetryingTransport",
    "BackoffPolicy",
    "RetryContext",
    "RetryDecision",
    "CancellationToken",
    # Endpoints
    "StorageApi",
    "Node",
    "UploadChannel",
    "DownloadChannel",
    # Pagination
    "Paginator",
    "PageCursor",
    "PaginatorState",
    "paginate",
    # Errors
    "ApiError",
    "Unauthenticated",
    "RateLimited",
    "ServerError",
    "ClientError",
    "NotFoundError",
    "ConflictError",
    "TransportError",
    "IntegrityError",
    "TransferCancelledError",
]
