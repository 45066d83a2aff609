"""MongoDB connection URI construction.

Standard and SRV connections get a URI assembled from host, port and
credentials.  Custom URIs are validated and receive the password, which
is always configured separately from the URI itself.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Tuple
from urllib.parse import parse_qsl, quote, unquote, urlencode, urlsplit

from mongo_extractor.lib.errors import ConfigurationError
from mongo_extractor.lib.models import ConnectionParams, Protocol

__all__ = ["MongoUri", "create_uri"]


@dataclass
class MongoUri:
    """Parsed pieces of a ``mongodb://`` or ``mongodb+srv://`` URI."""

    scheme: str
    host: str
    database: str = ""
    user: Optional[str] = None
    password: Optional[str] = None
    port: Optional[int] = None
    query: List[Tuple[str, str]] = field(default_factory=list)

    def _build(self, with_password: bool) -> str:
        auth = ""
        if self.user:
            auth = quote(self.user, safe="")
            if self.password and with_password:
                auth += ":" + quote(self.password, safe="")
            auth += "@"
        netloc = self.host
        if self.port:
            netloc = f"{netloc}:{self.port}"
        uri = f"{self.scheme}://{auth}{netloc}/{quote(self.database, safe='')}"
        if self.query:
            uri += "?" + urlencode(self.query)
        return uri

    def __str__(self) -> str:
        return self._build(with_password=True)

    def redacted(self) -> str:
        """Connection string safe for logs."""
        return self._build(with_password=False)


def _from_custom_uri(params: ConnectionParams) -> MongoUri:
    parts = urlsplit(params.uri or "")

    if not parts.username:
        raise ConfigurationError(
            'Connection URI must contain user, eg: "mongodb://user@hostname/database".',
            field="uri",
        )
    if parts.password:
        raise ConfigurationError(
            "Connection URI must not contain the password. "
            "The password is a separate item for security reasons.",
            field="uri",
        )
    database = unquote(parts.path.lstrip("/"))
    if not database:
        raise ConfigurationError(
            'Connection URI must contain the database, eg: "mongodb://user@hostname/database".',
            field="uri",
        )

    # hostname loses case and the port; keep the raw host list instead
    hosts = parts.netloc.rsplit("@", 1)[-1]
    return MongoUri(
        scheme=parts.scheme,
        host=hosts,
        database=database,
        user=unquote(parts.username),
        password=params.password,
        query=parse_qsl(parts.query, keep_blank_values=True),
    )


def _from_params(params: ConnectionParams) -> MongoUri:
    if params.protocol is Protocol.MONGODB and not params.port:
        raise ConfigurationError('Missing connection parameter "port".', field="port")

    query: List[Tuple[str, str]] = []
    if (
        params.user
        and params.password
        and params.auth_database
        and params.auth_database.strip()
    ):
        query.append(("authSource", params.auth_database))

    return MongoUri(
        scheme=params.protocol.value,
        host=params.host or "",
        # mongodb+srv:// URIs must not include a port number
        port=None if params.protocol is Protocol.SRV else params.port,
        database=params.database or "",
        user=params.user,
        password=params.password,
        query=query,
    )


def create_uri(params: ConnectionParams) -> MongoUri:
    """Build the connection URI for ``params``.

    Raises:
        ConfigurationError: If a custom URI is incomplete or carries a password,
            or a standard connection has no port
    """
    if params.protocol is Protocol.CUSTOM_URI:
        return _from_custom_uri(params)
    return _from_params(params)
