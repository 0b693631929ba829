#!/usr/bin/env python3
"""Lazy iteration over paged list responses.

The API pages collections in one of two ways:

    - Offset paging: the body carries ``offset``, ``limit`` and usually
      ``total_count``; the next page starts at ``offset + limit``.
    - Marker paging: the body carries an opaque ``next_marker``; an empty or
      missing marker means the last page was reached.

PagingIterator takes the first page's response, decides the mode once, and
replays the original request with the next cursor whenever its buffer runs
dry. Consumers see a flat sequence of entries.

Usage:
    response = await client.get("/folders/0/items", params={"limit": 100})
    async for item in PagingIterator(response, client):
        print(item["name"])
"""
import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from .exceptions import NotPageableError, build_unexpected_response_error
from .request import APIResponse

logger = logging.getLogger(__name__)


class PagingMode(Enum):
    """Which cursor the collection is paged by; the value is the request field."""
    OFFSET = "offset"
    MARKER = "marker"


@dataclass(frozen=True)
class IteratorResult:
    """One step of the iterator: an entry, or done=True once exhausted."""
    value: Any = None
    done: bool = False


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


class PagingIterator:
    """Single-consumer-safe async iterator over a paged collection.

    Concurrent calls to next() are serialized: at most one page request is
    in flight per iterator, and entries are handed out exactly once in
    server order.

    Attributes:
        paging_mode: PagingMode decided from the first response
        page_size: Entries per page (the first response's limit, or its entry count)
    """

    def __init__(self, response: APIResponse, client):
        if not self.is_iterable(response):
            raise NotPageableError(
                details={"status_code": response.status_code},
            )
        if response.request is None:
            raise NotPageableError(
                "Cannot page a response without its originating request",
            )

        body = response.body
        entries = body["entries"]

        self._client = client
        self._request = response.request.without_auth()
        self._buffer: deque = deque()
        self._lock = asyncio.Lock()
        self._done = False

        limit = body.get("limit")
        self._page_size = limit if _is_int(limit) else len(entries)

        if _is_int(body.get("offset")):
            self._mode = PagingMode.OFFSET
            self._cursor: Any = body["offset"]
        else:
            self._mode = PagingMode.MARKER
            self._cursor = None

        self._consume_page(body)
        logger.debug(
            f"Paging {self._request.method} {self._request.url} by {self._mode.value} "
            f"(page_size={self._page_size}, done={self._done})"
        )

    @staticmethod
    def is_iterable(response: APIResponse) -> bool:
        """Check whether a response is a page of a collection."""
        body = response.body
        return isinstance(body, dict) and isinstance(body.get("entries"), list)

    @property
    def paging_mode(self) -> PagingMode:
        return self._mode

    @property
    def page_size(self) -> int:
        return self._page_size

    @property
    def done(self) -> bool:
        """True once the last page was fetched and every entry handed out."""
        return self._done and not self._buffer

    def current_cursor(self) -> Any:
        """The offset or marker the next page request will carry (None when exhausted)."""
        return self._cursor

    # ----------------------------------------
    # Page Handling
    # ----------------------------------------

    def _consume_page(self, body: dict) -> None:
        entries = body.get("entries")
        if not isinstance(entries, list):
            entries = []

        if self._mode is PagingMode.OFFSET:
            offset = body.get("offset")
            if not _is_int(offset):
                offset = self._cursor
            self._cursor = offset + self._page_size

            total_count = body.get("total_count")
            if self._page_size == 0:
                self._done = True
            elif _is_int(total_count):
                self._done = offset + self._page_size >= total_count
            else:
                self._done = len(entries) == 0
        else:
            next_marker = body.get("next_marker")
            if next_marker:
                self._cursor = next_marker
            else:
                self._cursor = None
                self._done = True

        self._buffer.extend(entries)

    async def _fetch_next_page(self) -> None:
        request = self._request.with_param(self._mode.value, self._cursor)
        logger.debug(f"Fetching page at {self._mode.value}={self._cursor!r}")

        response = await self._client.send(request)
        if response.status_code != 200 or not isinstance(response.body, dict):
            raise build_unexpected_response_error(response)

        self._consume_page(response.body)

    # ----------------------------------------
    # Iteration
    # ----------------------------------------

    async def next(self) -> IteratorResult:
        """Return the next entry, fetching pages as needed.

        Pages that come back empty while more remain are skipped by fetching
        again. Once exhausted every call returns IteratorResult(None, True).

        Raises:
            UnexpectedResponseError: If a page request returns a non-200 status;
                the iterator is unchanged and the next call retries that page
        """
        if self._buffer:
            return IteratorResult(self._buffer.popleft(), False)

        async with self._lock:
            while not self._buffer:
                if self._done:
                    return IteratorResult(None, True)
                await self._fetch_next_page()
            return IteratorResult(self._buffer.popleft(), False)

    def __aiter__(self) -> "PagingIterator":
        return self

    async def __anext__(self) -> Any:
        result = await self.next()
        if result.done:
            raise StopAsyncIteration
        return result.value

    async def collect(self, limit: Optional[int] = None) -> list:
        """Drain the iterator into a list, stopping after limit entries if given."""
        items = []
        while limit is None or len(items) < limit:
            result = await self.next()
            if result.done:
                break
            items.append(result.value)
        return items
