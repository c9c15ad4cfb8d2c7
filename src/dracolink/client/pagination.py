"""Lazy pagination over offset/limit list endpoints.

List endpoints answer with::

    {"range": {"offset": 0, "limit": 500, "total": 1200}, "items": [...]}

Paginator turns the successive pages into one forward-only async sequence.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import Enum, auto
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from dracolink.client.transport import RequestSpec

if TYPE_CHECKING:
    from dracolink.client.cancel import CancellationToken
    from dracolink.client.transport import RetryingTransport

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_PAGE_LIMIT = 500


class PaginatorState(Enum):
    """State of a Paginator."""

    FETCHING = auto()
    HAS_ITEMS = auto()
    EXHAUSTED = auto()


@dataclass
class PageCursor:
    """Position in a paged listing."""

    offset: int = 0
    limit: int = DEFAULT_PAGE_LIMIT
    total: int | None = None

    def advance(self, count: int) -> None:
        self.offset += count

    @property
    def exhausted(self) -> bool:
        """True once the offset reached the last known total."""
        return self.total is not None and self.offset >= self.total


class Paginator(Generic[T]):
    """Forward-only async sequence of the items of a list endpoint.

    Pages are fetched on demand; a consumer that stops early never triggers
    the remaining requests. The latest ``total`` reported by the server wins;
    earlier pages are never re-fetched. To restart, create a new Paginator.

    Usage:
        async for node in Paginator(transport, "nodes", params={"parent_id": 0}):
            ...
    """

    def __init__(
        self,
        transport: RetryingTransport,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        limit: int = DEFAULT_PAGE_LIMIT,
        offset: int = 0,
        parse_item: Callable[[Any], T] | None = None,
        items_key: str = "items",
        cancel: CancellationToken | None = None,
    ) -> None:
        if limit <= 0:
            raise ValueError("limit must be positive")
        self._transport = transport
        self._path = path
        self._params = dict(params or {})
        self._parse_item = parse_item
        self._items_key = items_key
        self._cancel = cancel
        self._cursor = PageCursor(offset=offset, limit=limit)
        self._buffer: deque[T] = deque()
        self._state = PaginatorState.FETCHING
        self._pages_fetched = 0

    @property
    def state(self) -> PaginatorState:
        return self._state

    @property
    def cursor(self) -> PageCursor:
        return self._cursor

    @property
    def pages_fetched(self) -> int:
        return self._pages_fetched

    async def next_page(self) -> list[T]:
        """Fetch the next page.

        Returns:
            The items of the page (empty once exhausted).
        """
        if self._state is PaginatorState.EXHAUSTED:
            return []

        self._state = PaginatorState.FETCHING
        cursor = self._cursor
        params = {**self._params, "offset": cursor.offset, "limit": cursor.limit}
        response = await self._transport.execute_with_retry(
            RequestSpec(method="GET", path=self._path, params=params), self._cancel
        )
        data = response.json()
        self._pages_fetched += 1

        raw_items = data.get(self._items_key) or []
        total = (data.get("range") or {}).get("total")
        if total is not None:
            cursor.total = int(total)

        items: list[T] = (
            [self._parse_item(raw) for raw in raw_items]
            if self._parse_item
            else list(raw_items)
        )
        cursor.advance(len(items))

        short_page = cursor.total is None and len(items) < cursor.limit
        if not items or cursor.exhausted or short_page:
            self._state = PaginatorState.EXHAUSTED
            logger.debug(f"{self._path}: exhausted after {self._pages_fetched} pages")
        else:
            self._state = PaginatorState.HAS_ITEMS
        return items

    def __aiter__(self) -> Paginator[T]:
        return self

    async def __anext__(self) -> T:
        while not self._buffer:
            if self._state is PaginatorState.EXHAUSTED:
                raise StopAsyncIteration
            self._buffer.extend(await self.next_page())
        return self._buffer.popleft()

    async def collect(self) -> list[T]:
        """Drain the remaining items into a list."""
        return [item async for item in self]


def paginate(
    transport: RetryingTransport, path: str, **kwargs: Any
) -> Paginator[Any]:
    """Create a Paginator for a list endpoint."""
    return Paginator(transport, path, **kwargs)
