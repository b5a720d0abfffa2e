"""
Type definitions for the docstore client.

Provides the result types returned by write operations, the deadline helper
shared by multi-call operations, and the exception taxonomy.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence


@dataclass
class InsertOneResult:
    """
    Result of an insert_one operation.

    Attributes:
        inserted_id: The _id of the inserted document.
        acknowledged: Whether the write was acknowledged.
    """

    inserted_id: Any
    acknowledged: bool = True


@dataclass
class InsertManyResult:
    """
    Result of an insert_many operation.

    Attributes:
        inserted_ids: _ids of the stored documents, in input order.
        acknowledged: Whether the write was acknowledged.
    """

    inserted_ids: list[Any] = field(default_factory=list)
    acknowledged: bool = True


@dataclass
class UpdateResult:
    """
    Result of an update_one or update_many operation.

    Attributes:
        matched_count: Number of documents matched.
        modified_count: Number of documents modified.
        upserted_id: The _id of the upserted document (if any).
        acknowledged: Whether the write was acknowledged.
    """

    matched_count: int = 0
    modified_count: int = 0
    upserted_id: Any = None
    acknowledged: bool = True

    @property
    def raw_result(self) -> dict[str, Any]:
        """Return raw result dict for compatibility."""
        return {
            "n": self.matched_count,
            "nModified": self.modified_count,
            "upserted": self.upserted_id,
            "ok": 1.0 if self.acknowledged else 0.0,
        }


@dataclass
class DeleteResult:
    """
    Result of a delete_one or delete_many operation.

    Attributes:
        deleted_count: Number of documents deleted.
        acknowledged: Whether the write was acknowledged.
    """

    deleted_count: int = 0
    acknowledged: bool = True

    @property
    def raw_result(self) -> dict[str, Any]:
        """Return raw result dict for compatibility."""
        return {
            "n": self.deleted_count,
            "ok": 1.0 if self.acknowledged else 0.0,
        }


@dataclass
class BulkWriteResult:
    """
    Result of a bulk_write operation.

    Counts only cover models that completed.

    Attributes:
        inserted_count: Number of documents inserted.
        matched_count: Number of documents matched for update.
        modified_count: Number of documents modified.
        deleted_count: Number of documents deleted.
        upserted_count: Number of documents upserted.
        upserted_ids: Mapping of model index to upserted _id.
        inserted_ids: Mapping of model index to inserted _id.
        acknowledged: Whether the write was acknowledged.
    """

    inserted_count: int = 0
    matched_count: int = 0
    modified_count: int = 0
    deleted_count: int = 0
    upserted_count: int = 0
    upserted_ids: dict[int, Any] = field(default_factory=dict)
    inserted_ids: dict[int, Any] = field(default_factory=dict)
    acknowledged: bool = True


@dataclass(frozen=True)
class WriteErrorDetail:
    """
    A single failed item of a batched write.

    Attributes:
        index: Position of the failed item in the caller's input.
        message: Error message reported for the item.
        code: Error code, if the store reported one.
    """

    index: int
    message: str
    code: int | None = None


class Deadline:
    """
    Absolute point in time shared by every call of one operation.

    Multi-call operations (bulk writes, cursor batches) take one deadline up
    front and hand each call whatever time is left.
    """

    __slots__ = ("_expires_at", "_timeout")

    def __init__(self, timeout: float | None) -> None:
        self._timeout = timeout
        if timeout is None:
            self._expires_at: float | None = None
        else:
            self._expires_at = time.monotonic() + timeout

    @property
    def timeout(self) -> float | None:
        """The timeout this deadline was created with."""
        return self._timeout

    def remaining(self) -> float | None:
        """Seconds left, or None for no deadline. Never negative."""
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - time.monotonic())

    @property
    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0.0

    def __repr__(self) -> str:
        return f"Deadline(timeout={self._timeout!r}, remaining={self.remaining()!r})"


# Type aliases for clarity
Document = Mapping[str, Any]
Filter = Mapping[str, Any]
Update = Mapping[str, Any]
Projection = Mapping[str, Any] | Sequence[str] | None
Sort = list[tuple[str, int]] | None


class StoreError(Exception):
    """Base exception for document store operations."""

    def __init__(self, message: str, code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code


class ConfigError(StoreError):
    """Error raised for an invalid connection string, option or name."""

    pass


class ConnectionError(StoreError):
    """Error raised when the connection fails or has been marked broken."""

    pass


class OperationTimeout(StoreError):
    """Error raised when an operation's timeout expires."""

    pass


class ConnectTimeout(ConnectionError, OperationTimeout):
    """Error raised when the handshake does not finish before the timeout."""

    pass


class QueryError(StoreError):
    """Error raised when a query fails."""

    pass


class NotFoundError(StoreError):
    """Error raised when find_one matches no document."""

    pass


class DecodeError(StoreError):
    """Error raised when a stored document cannot be mapped to a record."""

    pass


class CursorError(StoreError):
    """Error raised while iterating a cursor."""

    pass


class CursorTimeout(CursorError, OperationTimeout):
    """Error raised when a cursor outlives the timeout of its find."""

    pass


class WriteError(StoreError):
    """Error raised when a write operation fails."""

    pass


class DuplicateKeyError(WriteError):
    """Error raised when inserting a document with a duplicate key."""

    pass


class BulkWriteError(WriteError):
    """
    Error raised when a batched write fails part-way.

    Attributes:
        details: One entry per failed item, identified by input index.
        partial_result: Result describing only the items that completed.
    """

    def __init__(
        self,
        message: str,
        details: list[WriteErrorDetail],
        partial_result: InsertManyResult | BulkWriteResult,
        code: int | None = None,
    ) -> None:
        super().__init__(message, code)
        self.details = details
        self.partial_result = partial_result

    @property
    def failed_indexes(self) -> list[int]:
        """Input positions of the items that failed."""
        return [detail.index for detail in self.details]
