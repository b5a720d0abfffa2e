"""
Database - a named group of collections.

Provides collection access with eager name validation, plus the few
database-level operations the client needs.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, TypeVar, overload

from .collection import Collection
from .types import ConfigError, QueryError, StoreError, WriteError

if TYPE_CHECKING:
    from .client import DocumentStoreClient
    from .codec import RecordCodec

R = TypeVar("R")

__all__ = ["Database", "validate_database_name", "validate_collection_name"]

logger = logging.getLogger(__name__)

_INVALID_DATABASE_CHARS = frozenset('/\\. "$\x00')


def validate_database_name(name: str) -> None:
    """Raise ConfigError unless name is a usable database name."""
    if not isinstance(name, str) or not name:
        raise ConfigError("Database name must be a non-empty string")
    bad = sorted(_INVALID_DATABASE_CHARS.intersection(name))
    if bad:
        raise ConfigError(f"Database name {name!r} contains invalid characters: {bad!r}")


def validate_collection_name(name: str) -> None:
    """Raise ConfigError unless name is a usable collection name."""
    if not isinstance(name, str) or not name:
        raise ConfigError("Collection name must be a non-empty string")
    if "$" in name or "\x00" in name:
        raise ConfigError(f"Collection name {name!r} must not contain '$' or NUL")
    if name.startswith("system."):
        raise ConfigError(f"Collection name {name!r} is reserved")


class Database:
    """
    Document store database.

    Collections can be accessed using either attribute access or subscript
    notation. Names are case-sensitive.

    Example:
        db = client["blog"]

        # Access collections
        posts = db.posts
        posts = db["posts"]

        # Typed access
        posts = db.get_collection("posts", codec=post_codec)

        # Check the server answers
        await db.ping()
    """

    __slots__ = ("_client", "_name", "_collections")

    def __init__(
        self,
        client: DocumentStoreClient,
        name: str,
    ) -> None:
        """
        Initialize a database.

        Args:
            client: Parent client; every call goes through it.
            name: Database name.
        """
        validate_database_name(name)
        self._client = client
        self._name = name
        self._collections: dict[tuple[str, Any], Collection[Any]] = {}

    @property
    def name(self) -> str:
        """Get the database name."""
        return self._name

    @property
    def client(self) -> DocumentStoreClient:
        """Get the parent client."""
        return self._client

    def __getitem__(self, name: str) -> Collection[dict[str, Any]]:
        """
        Get a collection by name using subscript notation.

        Example:
            posts = db["posts"]
        """
        return self.get_collection(name)

    def __getattr__(self, name: str) -> Collection[dict[str, Any]]:
        """
        Get a collection by name using attribute access.

        Example:
            posts = db.posts
        """
        if name.startswith("_"):
            raise AttributeError(f"'{type(self).__name__}' has no attribute '{name}'")

        return self[name]

    @overload
    def get_collection(self, name: str) -> Collection[dict[str, Any]]: ...

    @overload
    def get_collection(self, name: str, codec: RecordCodec[R]) -> Collection[R]: ...

    def get_collection(
        self,
        name: str,
        codec: RecordCodec[Any] | None = None,
    ) -> Collection[Any]:
        """
        Get a collection, optionally typed by a record codec.

        Args:
            name: Collection name.
            codec: Optional codec. Reads then return records and writes
                accept records as well as mappings.

        Returns:
            Collection instance, cached per (name, codec).

        Raises:
            ConfigError: If the name is invalid.
        """
        validate_collection_name(name)

        key = (name, codec)
        if key not in self._collections:
            self._collections[key] = Collection(self, name, codec=codec)
        return self._collections[key]

    async def list_collection_names(self, *, timeout: float | None = None) -> list[str]:
        """
        List all collection names in the database.

        Returns:
            List of collection names.

        Raises:
            QueryError: If the listing fails.
        """
        try:
            result = await self._client._call(
                "listCollectionNames",
                self._name,
                {},
                timeout=timeout,
            )
        except StoreError:
            raise
        except Exception as e:
            raise QueryError(str(e)) from e
        return result if isinstance(result, list) else []

    async def drop_collection(self, name: str, *, timeout: float | None = None) -> None:
        """
        Drop a collection.

        Args:
            name: Name of the collection to drop.

        Raises:
            WriteError: If the drop fails.
        """
        validate_collection_name(name)
        logger.info(f"dropCollection on '{self._name}.{name}'")
        try:
            await self._client._call("dropCollection", self._name, name, timeout=timeout)
        except StoreError:
            raise
        except Exception as e:
            raise WriteError(str(e)) from e
        for key in [k for k in self._collections if k[0] == name]:
            del self._collections[key]
        logger.info(f"finished dropCollection on '{self._name}.{name}'")

    async def drop_database(self, *, timeout: float | None = None) -> None:
        """Drop the database."""
        await self._client.drop_database(self._name, timeout=timeout)
        self._collections.clear()

    async def ping(self, *, timeout: float | None = None) -> bool:
        """
        Check that the server answers commands.

        Returns:
            True if the server replied ok.

        Raises:
            QueryError: If the command fails.
        """
        try:
            result = await self._client._call("command", self._name, {"ping": 1}, timeout=timeout)
        except StoreError:
            raise
        except Exception as e:
            raise QueryError(str(e)) from e
        return isinstance(result, dict) and bool(result.get("ok"))

    def __repr__(self) -> str:
        return f"Database({self._name!r})"
