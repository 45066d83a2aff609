"""Raw export mode: one ``(id, data)`` row per document."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, List, Optional

from mongo_extractor.lib.models import webalize
from mongo_extractor.lib.tables import OutputTable

logger = logging.getLogger(__name__)

__all__ = ["RawWriter", "document_id"]

RAW_COLUMNS = ["id", "data"]


def document_id(document: Any) -> Optional[str]:
    """Usable identifier of a document, or None.

    Strings and numbers are used as they are; an ``{"$oid": ...}`` wrapper
    contributes its hex value.
    """
    if not isinstance(document, dict) or "_id" not in document:
        return None
    value = document["_id"]
    if isinstance(value, dict) and "$oid" in value:
        return str(value["$oid"])
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)):
        return json.dumps(value)
    return None


class RawWriter:
    """Writes documents verbatim into a two column table.

    The primary key is ``["id"]`` until the first document without a usable
    id arrives; from then on the table has no primary key, even if later
    documents carry one.
    """

    transform = None

    def __init__(self, name: str, output_dir: Path) -> None:
        self.table = OutputTable(webalize(name), Path(output_dir), RAW_COLUMNS, ["id"])
        self.document_count = 0

    def write(self, document: Any) -> None:
        identifier = document_id(document)
        if not identifier and self.table.primary_key:
            logger.debug(
                "Document without usable _id in %s, dropping primary key", self.table.name
            )
            self.table.primary_key = []
        data = json.dumps(document, separators=(",", ":"), ensure_ascii=False)
        self.table.write_row([identifier or "", data])
        self.document_count += 1

    def finish(self) -> List[OutputTable]:
        self.table.ensure_created()
        self.table.close()
        return [self.table]

    def close(self) -> None:
        self.table.close()
