"""
Cursor - Async cursor for iterating over query results.

Documents are fetched lazily in batches. A cursor is consumed once, by one
task, and releases its server-side state as soon as it is exhausted, fails,
is cancelled, outlives its deadline or is closed.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from types import TracebackType
from typing import TYPE_CHECKING, Any, AsyncIterator, Generic, TypeVar

from .types import (
    CursorError,
    CursorTimeout,
    Deadline,
    OperationTimeout,
    StoreError,
)

if TYPE_CHECKING:
    from .collection import Collection
    from .types import Filter, Projection, Sort

T = TypeVar("T")

__all__ = ["Cursor", "build_find_options"]

logger = logging.getLogger(__name__)


def build_find_options(projection: Projection) -> dict[str, Any]:
    """Translate a projection argument into transport find options."""
    options: dict[str, Any] = {}
    if projection:
        if isinstance(projection, (list, tuple)):
            # Convert list of field names to projection dict
            options["projection"] = {field: 1 for field in projection}
        else:
            options["projection"] = dict(projection)
    return options


class Cursor(Generic[T]):
    """
    Async cursor for iterating over query results.

    Options like sort, limit, skip and projection can be chained before
    iteration begins. The first task to iterate owns the cursor; iterating
    it from anywhere else raises CursorError.

    Example:
        async for doc in collection.find({"status": "active"}):
            print(doc)

        # With chaining and guaranteed cleanup
        async with collection.find({}).sort("created_at", -1).limit(10) as cursor:
            async for doc in cursor:
                print(doc)
    """

    __slots__ = (
        "_collection",
        "_client",
        "_filter",
        "_projection",
        "_sort",
        "_limit",
        "_skip",
        "_batch_size",
        "_deadline",
        "_buffer",
        "_cursor_id",
        "_started",
        "_exhausted",
        "_closed",
        "_returned",
        "_owner",
        "_busy",
    )

    def __init__(
        self,
        collection: Collection[T],
        filter: Filter | None = None,
        projection: Projection = None,
        *,
        batch_size: int = 100,
        deadline: Deadline | None = None,
    ) -> None:
        """
        Initialize a cursor.

        Args:
            collection: Collection the query runs against.
            filter: Query filter.
            projection: Fields to include/exclude.
            batch_size: Documents per round trip.
            deadline: Point after which iteration fails with CursorTimeout.
        """
        self._collection = collection
        self._client = collection.database.client
        self._filter: dict[str, Any] = dict(filter or {})
        self._projection: Projection = projection
        self._sort: Sort = None
        self._limit: int = 0
        self._skip: int = 0
        self._batch_size: int = self._check_batch_size(batch_size)
        self._deadline = deadline or Deadline(None)
        self._buffer: deque[Any] = deque()
        self._cursor_id: Any = None
        self._started = False
        self._exhausted = False
        self._closed = False
        self._returned = 0
        self._owner: asyncio.Task[Any] | None = None
        self._busy = False

    @staticmethod
    def _check_batch_size(size: int) -> int:
        if not isinstance(size, int) or size < 1:
            raise ValueError(f"batch_size must be a positive integer, got {size!r}")
        return size

    def _check_unstarted(self) -> None:
        if self._started or self._closed:
            raise CursorError("Cannot change cursor options after iteration has started")

    def sort(self, key_or_list: str | list[tuple[str, int]], direction: int = 1) -> Cursor[T]:
        """
        Sort the results.

        Args:
            key_or_list: Field name or list of (field, direction) tuples.
            direction: Sort direction (1 for ascending, -1 for descending).
                       Only used if key_or_list is a string.

        Returns:
            Self for chaining.
        """
        self._check_unstarted()
        if isinstance(key_or_list, str):
            self._sort = [(key_or_list, direction)]
        else:
            self._sort = list(key_or_list)
        return self

    def limit(self, limit: int) -> Cursor[T]:
        """Return at most ``limit`` documents (0 means no limit)."""
        self._check_unstarted()
        if limit < 0:
            raise ValueError("limit must be >= 0")
        self._limit = limit
        return self

    def skip(self, skip: int) -> Cursor[T]:
        """Skip the first ``skip`` results."""
        self._check_unstarted()
        if skip < 0:
            raise ValueError("skip must be >= 0")
        self._skip = skip
        return self

    def batch_size(self, size: int) -> Cursor[T]:
        """Set the number of documents fetched per round trip."""
        self._check_unstarted()
        self._batch_size = self._check_batch_size(size)
        return self

    def project(self, projection: Projection) -> Cursor[T]:
        """Set field projection."""
        self._check_unstarted()
        self._projection = projection
        return self

    @property
    def alive(self) -> bool:
        """Check if the cursor can still yield documents."""
        return not (self._exhausted or self._closed)

    @property
    def collection(self) -> Collection[T]:
        return self._collection

    def _find_options(self) -> dict[str, Any]:
        options = build_find_options(self._projection)
        if self._sort:
            options["sort"] = self._sort
        if self._limit > 0:
            options["limit"] = self._limit
        if self._skip > 0:
            options["skip"] = self._skip
        options["batchSize"] = self._batch_size
        return options

    def _absorb(self, result: Any) -> None:
        """Take a batch reply from find or getMore."""
        if isinstance(result, list):
            self._buffer.extend(result)
            self._cursor_id = None
        elif isinstance(result, dict):
            if result.get("error"):
                raise CursorError(result.get("message", "Query failed"), result.get("code"))
            self._buffer.extend(result.get("batch") or [])
            self._cursor_id = result.get("cursorId") or None
        else:
            raise CursorError(f"Unexpected reply of type {type(result).__name__}")

    async def _fetch(self) -> None:
        if not self._started:
            self._started = True
            result = await self._client._call(
                "find",
                self._collection.database.name,
                self._collection.name,
                self._filter,
                self._find_options(),
                deadline=self._deadline,
            )
        else:
            result = await self._client._call(
                "getMore",
                self._cursor_id,
                self._batch_size,
                deadline=self._deadline,
            )
        self._absorb(result)

    def _claim(self) -> None:
        """Bind the cursor to the current task and reject overlapping use."""
        task = asyncio.current_task()
        if self._owner is None:
            self._owner = task
        elif self._owner is not task:
            raise CursorError("Cursor is owned by another task and cannot be shared")
        if self._busy:
            raise CursorError("Cursor is already being iterated")

    async def _advance(self) -> T:
        if self._deadline.expired:
            raise OperationTimeout("cursor deadline exceeded")

        if not self._started:
            await self._fetch()

        while True:
            if self._limit and self._returned >= self._limit:
                raise StopAsyncIteration
            if self._buffer:
                break
            if self._cursor_id is None:
                raise StopAsyncIteration
            await self._fetch()

        doc = self._buffer.popleft()
        self._returned += 1
        return self._collection._decode(doc)

    def __aiter__(self) -> AsyncIterator[T]:
        """Return async iterator."""
        return self

    async def __anext__(self) -> T:
        """
        Get the next document.

        Raises:
            StopAsyncIteration: When the cursor is exhausted or closed.
            CursorTimeout: When the cursor outlives its deadline.
            CursorError: When fetching or decoding fails.
        """
        if not self.alive:
            raise StopAsyncIteration

        self._claim()
        self._busy = True
        try:
            return await self._advance()
        except StopAsyncIteration:
            self._exhausted = True
            await self._release(quiet=False)
            raise
        except asyncio.CancelledError:
            await self._release(quiet=True)
            raise
        except CursorError:
            await self._release(quiet=True)
            raise
        except OperationTimeout as e:
            await self._release(quiet=True)
            raise CursorTimeout(
                f"Cursor on '{self._collection.full_name}' exceeded its "
                f"{self._deadline.timeout}s deadline"
            ) from e
        except StoreError as e:
            await self._release(quiet=True)
            raise CursorError(f"{type(e).__name__}: {e}", e.code) from e
        except Exception as e:
            await self._release(quiet=True)
            raise CursorError(str(e)) from e
        finally:
            self._busy = False

    async def next(self) -> T:
        """
        Get the next document.

        Raises:
            StopAsyncIteration: When all documents have been iterated.
        """
        return await self.__anext__()

    async def to_list(self, length: int | None = None) -> list[T]:
        """
        Drain the cursor into a list.

        Args:
            length: Maximum number of documents to return. The cursor is
                    closed afterwards either way.

        Returns:
            List of documents.
        """
        results: list[T] = []
        try:
            if length is None or length > 0:
                async for doc in self:
                    results.append(doc)
                    if length is not None and len(results) >= length:
                        break
        finally:
            await self.close()
        return results

    async def _release(self, quiet: bool) -> None:
        """Drop buffered documents and kill the server cursor, if any."""
        cursor_id, self._cursor_id = self._cursor_id, None
        self._closed = True
        self._buffer.clear()
        if cursor_id is None or self._client.is_broken or not self._client.is_connected:
            return

        try:
            await self._client._call("killCursors", [cursor_id])
        except StoreError as e:
            if not quiet:
                raise
            logger.warning(
                f"failed to kill cursor {cursor_id!r} on '{self._collection.full_name}': {e}"
            )

    async def close(self) -> None:
        """Close the cursor and release server resources. Idempotent."""
        if self._closed and self._cursor_id is None:
            return
        await self._release(quiet=False)

    async def __aenter__(self) -> Cursor[T]:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self._release(quiet=exc_type is not None)

    def clone(self) -> Cursor[T]:
        """
        Clone this cursor.

        Returns:
            A new, unstarted cursor with the same query options and a fresh
            deadline of the same length.
        """
        cursor = Cursor[T](
            self._collection,
            self._filter,
            self._projection,
            batch_size=self._batch_size,
            deadline=Deadline(self._deadline.timeout),
        )
        cursor._sort = self._sort
        cursor._limit = self._limit
        cursor._skip = self._skip
        return cursor

    def __repr__(self) -> str:
        state = "alive" if self.alive else "closed"
        return f"Cursor({self._collection.full_name!r}, {state})"
