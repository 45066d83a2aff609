"""Runtime data model shared by the extraction pipeline.

These dataclasses are built once from the validated configuration
(see ``mongo_extractor.lib.config``) and handed to the command builder,
the process runner and the table writers.
"""

from __future__ import annotations

import json
import re
import unicodedata
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Optional

__all__ = [
    "ConnectionParams",
    "ExportMode",
    "ExportQuery",
    "ExportSpec",
    "Protocol",
    "TlsOptions",
    "webalize",
]


class Protocol(Enum):
    """How the extractor reaches the server."""

    MONGODB = "mongodb"  # host + port
    SRV = "mongodb+srv"  # DNS seed list, no port
    CUSTOM_URI = "custom_uri"  # user supplied URI, password kept apart


class ExportMode(Enum):
    """How documents become table rows."""

    MAPPING = "mapping"  # declarative flattening
    RAW = "raw"  # one (id, json) row per document


def webalize(value: str) -> str:
    """Turn an export name into a lowercase, dash separated file name.

    >>> webalize("My Export #1")
    'my-export-1'
    """
    ascii_value = (
        unicodedata.normalize("NFKD", value).encode("ascii", "ignore").decode("ascii")
    )
    return re.sub(r"[^a-z0-9]+", "-", ascii_value.lower()).strip("-")


def _sort_spec(column: str, direction: int) -> str:
    return json.dumps({column: direction}, separators=(",", ":"))


@dataclass
class TlsOptions:
    """TLS settings; file paths point at material written to disk."""

    enabled: bool = False
    ca_file: Optional[str] = None
    cert_key_file: Optional[str] = None


@dataclass
class ConnectionParams:
    """Everything needed to reach one MongoDB deployment."""

    protocol: Protocol = Protocol.MONGODB
    host: Optional[str] = None
    port: Optional[int] = None
    database: Optional[str] = None
    user: Optional[str] = None
    password: Optional[str] = None
    auth_database: Optional[str] = None
    uri: Optional[str] = None
    tls: TlsOptions = field(default_factory=TlsOptions)
    quiet: bool = False


@dataclass
class ExportQuery:
    """The query part of one mongoexport invocation."""

    collection: str
    query: str = ""
    sort: str = ""
    limit: Optional[int] = None
    skip: Optional[int] = None

    def probe(self, column: str) -> "ExportQuery":
        """Narrow query returning the document holding the next watermark.

        Without a limit this is the maximum of ``column``.  With a limit N
        it is the Nth document in ascending order, the same one the main
        export stops at.
        """
        if self.limit:
            return replace(
                self,
                sort=_sort_spec(column, 1),
                skip=self.limit - 1,
                limit=1,
            )
        return replace(self, sort=_sort_spec(column, -1), skip=None, limit=1)


@dataclass
class ExportSpec:
    """One logical export: a collection plus how to turn it into tables."""

    name: str
    collection: str
    id: Optional[str] = None
    query: str = ""
    sort: str = ""
    limit: Optional[int] = None
    skip: Optional[int] = None
    mode: ExportMode = ExportMode.MAPPING
    mapping: Dict[str, Any] = field(default_factory=dict)
    include_parent_in_pk: bool = False
    incremental_column: Optional[str] = None
    incremental: bool = False
    enabled: bool = True

    @property
    def table_name(self) -> str:
        return webalize(self.name)

    @property
    def has_incremental_column(self) -> bool:
        return bool(self.incremental_column)

    def apply_incremental_filter(self, query: str, sort: str) -> None:
        """Replace query and sort with the watermark filter."""
        self.query = query
        self.sort = sort

    def to_query(self) -> ExportQuery:
        return ExportQuery(
            collection=self.collection,
            query=self.query,
            sort=self.sort,
            limit=self.limit,
            skip=self.skip,
        )
