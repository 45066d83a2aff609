"""mongoexport command line construction."""

from __future__ import annotations

import shlex
from typing import List, Sequence

from mongo_extractor.lib.ejson import literal_id_to_extended, quote_bare_keys
from mongo_extractor.lib.models import ConnectionParams, ExportQuery, Protocol
from mongo_extractor.lib.uri import create_uri

__all__ = ["CommandBuilder", "DEFAULT_SORT", "REDACTED"]

DEFAULT_SORT = "{_id: 1}"
REDACTED = "*****"


def _present(value: object) -> bool:
    return value is not None and str(value).strip() != ""


class CommandBuilder:
    """Builds the argument vector for one mongoexport run.

    Example:
        builder = CommandBuilder()
        args = builder.build_args(connection, spec.to_query())
        # ['mongoexport', '--host', 'localhost', '--port', '27017', ...]
    """

    def __init__(
        self,
        executable: Sequence[str] = ("mongoexport",),
    ) -> None:
        self.executable = list(executable)

    def build_args(
        self,
        connection: ConnectionParams,
        query: ExportQuery,
        *,
        redact: bool = False,
    ) -> List[str]:
        """Return the argv list; ``redact`` masks credentials for display."""
        args = list(self.executable)
        args.extend(self._connection_args(connection, redact))
        args.extend(self._export_args(query))
        if connection.quiet:
            args.append("--quiet")
        return args

    def build(self, connection: ConnectionParams, query: ExportQuery, *, redact: bool = False) -> str:
        """Shell-escaped command line."""
        return shlex.join(self.build_args(connection, query, redact=redact))

    def _connection_args(self, connection: ConnectionParams, redact: bool) -> List[str]:
        args: List[str] = []

        if connection.protocol in (Protocol.SRV, Protocol.CUSTOM_URI):
            # mongodb+srv:// can only be passed through --uri
            uri = create_uri(connection)
            args.extend(["--uri", uri.redacted() if redact else str(uri)])
        else:
            args.extend(["--host", connection.host or ""])
            args.extend(["--port", str(connection.port or "")])
            args.extend(["--db", connection.database or ""])
            if connection.user and connection.password is not None:
                args.extend(["--username", connection.user])
                args.extend(["--password", REDACTED if redact else connection.password])
            if _present(connection.auth_database):
                args.extend(["--authenticationDatabase", str(connection.auth_database)])

        if connection.tls.enabled:
            args.append("--ssl")
            if connection.tls.ca_file:
                args.append(f"--sslCAFile={connection.tls.ca_file}")
            if connection.tls.cert_key_file:
                args.append(f"--sslPEMKeyFile={connection.tls.cert_key_file}")

        return args

    def _export_args(self, query: ExportQuery) -> List[str]:
        args = ["--collection", query.collection]

        if _present(query.query):
            text = literal_id_to_extended(quote_bare_keys(query.query))
            args.extend(["--query", text])

        # Deterministic paging for exports without their own order
        args.extend(["--sort", query.sort if _present(query.sort) else DEFAULT_SORT])

        if _present(query.limit):
            args.extend(["--limit", str(query.limit)])
        if _present(query.skip):
            args.extend(["--skip", str(query.skip)])

        args.extend(["--type", "json"])
        return args
