"""Connection string parsing."""

from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import urlsplit

from .types import ConfigError

__all__ = ["SUPPORTED_SCHEMES", "ParsedUri", "parse_uri"]

SUPPORTED_SCHEMES = frozenset({"mongodb", "mongodb+srv", "http", "https", "ws", "wss"})


@dataclass(frozen=True)
class ParsedUri:
    """Validated pieces of a ``scheme://host[:port]/`` connection string."""

    scheme: str
    host: str
    port: int | None
    path: str

    @property
    def address(self) -> str:
        """host:port, or just host when no port was given."""
        if self.port is None:
            return self.host
        return f"{self.host}:{self.port}"


def parse_uri(uri: str) -> ParsedUri:
    """
    Validate a connection string.

    Args:
        uri: Connection string such as ``mongodb://localhost:27017/``.

    Returns:
        The parsed connection string.

    Raises:
        ConfigError: If the string is empty, uses an unsupported scheme,
            has no host, or has an invalid port.
    """
    if not isinstance(uri, str) or not uri.strip():
        raise ConfigError("Connection string must be a non-empty string")

    if "://" not in uri:
        raise ConfigError(f"Connection string {uri!r} is missing a scheme")

    parts = urlsplit(uri)
    scheme = parts.scheme.lower()
    if scheme not in SUPPORTED_SCHEMES:
        supported = ", ".join(sorted(SUPPORTED_SCHEMES))
        raise ConfigError(
            f"Unsupported scheme {parts.scheme!r} in {uri!r} (expected one of: {supported})"
        )

    if not parts.hostname:
        raise ConfigError(f"Connection string {uri!r} has no host")

    try:
        port = parts.port
    except ValueError as e:
        raise ConfigError(f"Connection string {uri!r} has an invalid port") from e

    if port == 0:
        raise ConfigError(f"Connection string {uri!r} has an invalid port")

    return ParsedUri(scheme=scheme, host=parts.hostname, port=port, path=parts.path)
