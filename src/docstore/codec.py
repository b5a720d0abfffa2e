"""
Record codec - declared mapping between documents and typed records.

A codec converts stored documents into caller-defined record objects and
back. The mapping is spelled out field by field; the record type itself is
never inspected.

Example:
    from dataclasses import dataclass
    from datetime import datetime

    from docstore import Field, RecordCodec

    @dataclass
    class Post:
        id: str
        title: str
        tags: list[str]
        created_at: datetime
        updated_at: datetime | None = None

    post_codec = RecordCodec(Post, [
        Field("id", "_id"),
        Field("title", type=str),
        Field("tags", type=list),
        Field("created_at", type=datetime),
        Field("updated_at", type=datetime, optional=True),
    ])

    posts = db.get_collection("posts", codec=post_codec)
    post = await posts.find_one({"title": "Post one"})  # -> Post
"""

from __future__ import annotations

from typing import Any, Callable, Generic, Iterable, Mapping, TypeVar

from .types import DecodeError

R = TypeVar("R")

__all__ = ["Field", "RecordCodec"]

_MISSING: Any = object()


class Field:
    """
    One record attribute and the document key it is stored under.

    Args:
        attr: Attribute name on the record.
        key: Document key. Defaults to ``attr``.
        type: Expected value type (or tuple of types). Checked in both
            directions when given.
        optional: If True, a missing key or a None value decodes to the
            default and a None attribute is left out of the document.
        default: Value used for an optional field that is absent.
    """

    __slots__ = ("attr", "key", "type", "optional", "default")

    def __init__(
        self,
        attr: str,
        key: str | None = None,
        type: type | tuple[type, ...] | None = None,
        optional: bool = False,
        default: Any = None,
    ) -> None:
        if not attr:
            raise ValueError("Field attr must be a non-empty string")
        self.attr = attr
        self.key = key or attr
        self.type = type
        self.optional = optional
        self.default = default

    def check(self, value: Any) -> bool:
        if value is None:
            return self.optional
        if self.type is None:
            return True
        # bool is an int subclass; keep the two apart
        if isinstance(value, bool) and self.type in (int, float):
            return False
        if self.type is float and isinstance(value, int):
            return True
        return isinstance(value, self.type)

    def __repr__(self) -> str:
        return f"Field({self.attr!r}, key={self.key!r})"


class RecordCodec(Generic[R]):
    """
    Two-way conversion between documents and records of one type.

    Args:
        record_type: Callable building a record from keyword arguments,
            usually a dataclass.
        fields: Declared fields. Only these are read or written.
    """

    def __init__(
        self,
        record_type: Callable[..., R],
        fields: Iterable[Field],
    ) -> None:
        self._record_type = record_type
        self._fields = tuple(fields)
        if not self._fields:
            raise ValueError("RecordCodec needs at least one field")

        keys = [f.key for f in self._fields]
        if len(set(keys)) != len(keys):
            raise ValueError("RecordCodec fields map to duplicate document keys")

    @property
    def record_type(self) -> Callable[..., R]:
        return self._record_type

    @property
    def fields(self) -> tuple[Field, ...]:
        return self._fields

    def decode(self, document: Mapping[str, Any]) -> R:
        """
        Build a record from a stored document.

        Raises:
            DecodeError: If a required key is missing, a value has the wrong
                type, or the record type rejects the values.
        """
        if not isinstance(document, Mapping):
            raise DecodeError(f"Expected a document, got {type(document).__name__}")

        kwargs: dict[str, Any] = {}
        for f in self._fields:
            value = document.get(f.key, _MISSING)
            if value is _MISSING or value is None:
                if not f.optional:
                    raise DecodeError(f"Document is missing required field {f.key!r}")
                kwargs[f.attr] = f.default
                continue
            if not f.check(value):
                raise DecodeError(
                    f"Field {f.key!r} has type {type(value).__name__}, "
                    f"which does not match {f.attr!r}"
                )
            kwargs[f.attr] = value

        try:
            return self._record_type(**kwargs)
        except (TypeError, ValueError) as e:
            raise DecodeError(f"Cannot build {self._type_name()}: {e}") from e

    def encode(self, record: R | Mapping[str, Any]) -> dict[str, Any]:
        """
        Build a document from a record. Mappings are passed through as-is.

        Raises:
            DecodeError: If a required attribute is missing or has the wrong
                type.
        """
        if isinstance(record, Mapping):
            return dict(record)

        document: dict[str, Any] = {}
        for f in self._fields:
            value = getattr(record, f.attr, _MISSING)
            if value is _MISSING or value is None:
                if not f.optional:
                    raise DecodeError(
                        f"{self._type_name()} is missing required attribute {f.attr!r}"
                    )
                continue
            if not f.check(value):
                raise DecodeError(
                    f"Attribute {f.attr!r} has type {type(value).__name__}, "
                    f"which does not match field {f.key!r}"
                )
            document[f.key] = value
        return document

    def _type_name(self) -> str:
        return getattr(self._record_type, "__name__", repr(self._record_type))

    def __repr__(self) -> str:
        return f"RecordCodec({self._type_name()}, {len(self._fields)} fields)"
