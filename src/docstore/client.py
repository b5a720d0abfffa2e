"""
DocumentStoreClient - connection owner for a document store.

Owns the transport session, validates configuration up front, and runs every
store call under a timeout. A transport failure marks the client broken so
later calls fail fast until the caller reconnects.
"""

from __future__ import annotations

import asyncio
import logging
import os
from types import TracebackType
from typing import Any

from .database import Database, validate_database_name
from .types import (
    ConfigError,
    ConnectionError,
    ConnectTimeout,
    Deadline,
    OperationTimeout,
    StoreError,
    WriteError,
)
from .uri import ParsedUri, parse_uri

__all__ = ["DocumentStoreClient", "DEFAULT_URI", "DEFAULT_TIMEOUT"]

logger = logging.getLogger(__name__)

DEFAULT_URI = "mongodb://localhost:27017/"
DEFAULT_TIMEOUT = 30.0


def _resolve_timeout(value: Any) -> float:
    try:
        timeout = float(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid timeout {value!r}") from e
    if timeout <= 0:
        raise ConfigError(f"Timeout must be positive, got {timeout}")
    return timeout


class DocumentStoreClient:
    """
    Client for a collection-oriented document store.

    Databases can be accessed using either attribute access or subscript
    notation. The client is explicitly constructed and passed around; there
    is no process-wide instance.

    Example:
        # Create client
        client = DocumentStoreClient("mongodb://localhost:27017/", timeout=10)
        await client.connect()

        # Access databases
        db = client["blog"]
        db = client.blog

        # Close connection
        await client.close()

        # Or use as async context manager
        async with DocumentStoreClient("mongodb://localhost:27017/") as client:
            posts = client["blog"]["posts"]
            ...
    """

    __slots__ = (
        "_uri",
        "_parsed",
        "_rpc",
        "_connected",
        "_broken",
        "_databases",
        "_options",
        "_timeout",
        "_connect_lock",
    )

    def __init__(
        self,
        uri: str | None = None,
        **options: Any,
    ) -> None:
        """
        Initialize the client. No I/O happens until connect().

        Args:
            uri: Connection string (e.g., "mongodb://localhost:27017/").
                 If not provided, uses the DOCSTORE_URL environment variable.
            **options: Additional connection options.
                - timeout: Default timeout in seconds for connect and every
                  operation (default: DOCSTORE_TIMEOUT or 30.0).

        Raises:
            ConfigError: If the connection string or an option is invalid.
        """
        self._uri = uri or os.environ.get("DOCSTORE_URL", DEFAULT_URI)
        self._parsed: ParsedUri = parse_uri(self._uri)
        if "timeout" in options:
            self._timeout = _resolve_timeout(options.pop("timeout"))
        else:
            self._timeout = _resolve_timeout(os.environ.get("DOCSTORE_TIMEOUT", DEFAULT_TIMEOUT))
        self._rpc: Any = None
        self._connected = False
        self._broken = False
        self._databases: dict[str, Database] = {}
        self._options = options
        self._connect_lock: asyncio.Lock | None = None

    @property
    def uri(self) -> str:
        """Get the connection URI."""
        return self._uri

    @property
    def address(self) -> str:
        """Get the host[:port] the client points at."""
        return self._parsed.address

    @property
    def timeout(self) -> float:
        """Get the default operation timeout in seconds."""
        return self._timeout

    @property
    def is_connected(self) -> bool:
        """Check if the client is connected and usable."""
        return self._connected and not self._broken

    @property
    def is_broken(self) -> bool:
        """Check if a connection failure has made the client unusable."""
        return self._broken

    async def connect(self, timeout: float | None = None) -> DocumentStoreClient:
        """
        Connect to the document store.

        Args:
            timeout: Seconds allowed for the handshake. Defaults to the
                client timeout.

        Returns:
            Self for chaining.

        Raises:
            ConnectTimeout: If the handshake does not finish in time.
            ConnectionError: If connection fails.
        """
        if self._connect_lock is None:
            self._connect_lock = asyncio.Lock()

        async with self._connect_lock:
            if self._connected and not self._broken:
                return self

            if self._broken:
                logger.info(f"reconnecting to {self.address}")
                await self._discard_transport()

            budget = self._timeout if timeout is None else timeout
            if budget <= 0:
                raise ConnectTimeout(f"Timed out connecting to {self.address}: timeout already expired")

            try:
                from rpc_do import connect
            except ImportError as e:
                raise ConnectionError(
                    "rpc-do package is required. Install with: pip install rpc-do"
                ) from e

            logger.info(f"connecting to {self.address}")
            try:
                self._rpc = await asyncio.wait_for(
                    connect(self._uri, timeout=budget, **self._options),
                    timeout=budget,
                )
            except asyncio.TimeoutError as e:
                raise ConnectTimeout(
                    f"Timed out connecting to {self.address} after {budget}s"
                ) from e
            except Exception as e:
                raise ConnectionError(f"Failed to connect to {self.address}: {e}") from e

            self._connected = True
            self._broken = False
            logger.info(f"connected to {self.address}")
            return self

    async def close(self) -> None:
        """Close the connection. Safe to call more than once."""
        was_open = self._rpc is not None
        try:
            await self._discard_transport()
        finally:
            self._connected = False
            self._broken = False
            self._databases.clear()
        if was_open:
            logger.info(f"closed connection to {self.address}")

    async def _discard_transport(self) -> None:
        rpc, self._rpc = self._rpc, None
        if rpc is None:
            return
        try:
            await rpc.close()
        except Exception as e:
            # the handle is released either way
            logger.warning(f"closing transport to {self.address} failed: {e}")

    def _ensure_connected(self) -> None:
        """Ensure the client is connected."""
        if self._broken:
            raise ConnectionError(
                f"Connection to {self.address} is broken. Call connect() to reconnect."
            )
        if not self._connected or self._rpc is None:
            raise ConnectionError("Client is not connected. Call connect() first.")

    def _mark_broken(self, error: BaseException) -> None:
        if not self._broken:
            logger.warning(f"connection to {self.address} marked broken: {error}")
        self._broken = True

    def deadline(self, timeout: float | None = None) -> Deadline:
        """Start a deadline for one operation, using the default timeout if None."""
        return Deadline(self._timeout if timeout is None else timeout)

    async def _call(
        self,
        method: str,
        *args: Any,
        timeout: float | None = None,
        deadline: Deadline | None = None,
    ) -> Any:
        """
        Invoke one transport method under a timeout.

        Args:
            method: Name of the method in the transport's store namespace.
            *args: Positional arguments for the method.
            timeout: Seconds allowed for this call.
            deadline: Shared deadline of a multi-call operation. Takes
                precedence over timeout.

        Raises:
            ConnectionError: If the client is not usable or the transport
                fails; the client is then marked broken.
            OperationTimeout: If the time budget is spent, before or during
                the call.
        """
        self._ensure_connected()

        if deadline is None:
            deadline = self.deadline(timeout)
        remaining = deadline.remaining()
        if remaining is not None and remaining <= 0:
            raise OperationTimeout(f"{method} not attempted: timeout already expired")

        try:
            return await asyncio.wait_for(
                getattr(self._rpc.mongo, method)(*args),
                timeout=remaining,
            )
        except asyncio.TimeoutError as e:
            raise OperationTimeout(
                f"{method} did not complete within {deadline.timeout}s"
            ) from e
        except StoreError:
            raise
        except OSError as e:
            self._mark_broken(e)
            raise ConnectionError(f"Connection to {self.address} failed during {method}: {e}") from e

    def __getitem__(self, name: str) -> Database:
        """
        Get a database by name using subscript notation.

        Args:
            name: Database name.

        Returns:
            Database instance.

        Raises:
            ConfigError: If the name is invalid.
            ConnectionError: If the client is not connected.

        Example:
            db = client["blog"]
        """
        validate_database_name(name)
        self._ensure_connected()

        if name not in self._databases:
            self._databases[name] = Database(self, name)
        return self._databases[name]

    def __getattr__(self, name: str) -> Database:
        """
        Get a database by name using attribute access.

        Example:
            db = client.blog
        """
        if name.startswith("_"):
            raise AttributeError(f"'{type(self).__name__}' has no attribute '{name}'")

        return self[name]

    def get_database(self, name: str) -> Database:
        """
        Get a database by name.

        Args:
            name: Database name.

        Returns:
            Database instance.
        """
        return self[name]

    async def drop_database(self, name: str, *, timeout: float | None = None) -> None:
        """
        Drop a database.

        Args:
            name: Name of the database to drop.
            timeout: Seconds allowed for the call.
        """
        validate_database_name(name)
        logger.info(f"dropDatabase on '{name}'")
        try:
            await self._call("dropDatabase", name, timeout=timeout)
        except StoreError:
            raise
        except Exception as e:
            raise WriteError(str(e)) from e
        self._databases.pop(name, None)
        logger.info(f"finished dropDatabase on '{name}'")

    async def __aenter__(self) -> DocumentStoreClient:
        """Async context manager entry."""
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Async context manager exit."""
        await self.close()

    def __repr__(self) -> str:
        if self._broken:
            status = "broken"
        elif self._connected:
            status = "connected"
        else:
            status = "disconnected"
        return f"DocumentStoreClient({self._uri!r}, {status})"
