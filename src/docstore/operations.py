"""
Write models for Collection.bulk_write.

Each model describes one unit of a batched write. Models are immutable and
validate their arguments when constructed, so a bad request fails before any
part of the batch is sent.

Example:
    from docstore import DeleteMany, InsertOne, UpdateMany

    await posts.bulk_write([
        InsertOne({"title": "post five", "tags": ["postgresql"]}),
        UpdateMany({"tags": "golang"}, {"$set": {"updated_at": now}}),
        DeleteMany({"_id": stale_id}),
    ])
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Union

from .types import Document, Filter, Update

__all__ = [
    "InsertOne",
    "UpdateOne",
    "UpdateMany",
    "DeleteOne",
    "DeleteMany",
    "WriteModel",
    "validate_update",
]


def validate_update(update: Update) -> dict[str, Any]:
    """
    Check that an update specification is non-empty and uses only operators.

    Returns:
        A plain dict copy of the update.

    Raises:
        ValueError: If the update is empty, mixes in plain fields, or
            modifies the _id field.
    """
    if not isinstance(update, Mapping) or not update:
        raise ValueError("update must be a non-empty mapping of update operators")

    for op, fields in update.items():
        if not isinstance(op, str) or not op.startswith("$"):
            raise ValueError(f"update only works with $ operators, got {op!r}")
        if isinstance(fields, Mapping) and "_id" in fields:
            raise ValueError("the _id field is immutable and cannot be updated")

    return dict(update)


@dataclass(frozen=True)
class InsertOne:
    """Insert a single document."""

    document: Document | Any


@dataclass(frozen=True)
class UpdateOne:
    """Update the first document matching the filter."""

    filter: Filter
    update: Update
    upsert: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "update", validate_update(self.update))


@dataclass(frozen=True)
class UpdateMany:
    """Update every document matching the filter."""

    filter: Filter
    update: Update
    upsert: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "update", validate_update(self.update))


@dataclass(frozen=True)
class DeleteOne:
    """Delete the first document matching the filter."""

    filter: Filter


@dataclass(frozen=True)
class DeleteMany:
    """Delete every document matching the filter."""

    filter: Filter


WriteModel = Union[InsertOne, UpdateOne, UpdateMany, DeleteOne, DeleteMany]
