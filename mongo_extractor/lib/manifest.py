"""Table manifests written next to each output CSV."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict

from mongo_extractor.lib.errors import WriteError
from mongo_extractor.lib.tables import OutputTable

logger = logging.getLogger(__name__)

__all__ = ["build_manifest", "manifest_path", "write_manifest"]


def manifest_path(table: OutputTable) -> Path:
    return table.path.with_name(table.path.name + ".manifest")


def build_manifest(table: OutputTable, *, incremental: bool, include_columns: bool) -> Dict[str, Any]:
    manifest: Dict[str, Any] = {
        "primary_key": list(table.primary_key),
        "incremental": incremental,
    }
    if include_columns:
        manifest["columns"] = list(table.columns)
    return manifest


def write_manifest(table: OutputTable, *, incremental: bool, include_columns: bool) -> Path:
    """Write ``<table>.csv.manifest`` and return its path."""
    path = manifest_path(table)
    manifest = build_manifest(table, incremental=incremental, include_columns=include_columns)
    try:
        path.write_text(json.dumps(manifest, indent=2), encoding="utf-8")
    except OSError as e:
        raise WriteError(f'Failed write to file "{path}"', path=str(path), cause=e) from e
    logger.debug("Wrote manifest %s", path)
    return path
