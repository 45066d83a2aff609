"""Watermark tracking for incremental fetching.

An export with an incremental column only fetches documents whose column
value is greater than or equal to the watermark saved by the previous run.
The next watermark comes from a narrow probe export returning the single
document the main export ends at.

State is kept in a JSON file shaped ``{"lastFetchedRow": <value>}``, or
``{"lastFetchedRow": {<export id>: <value>}}`` for configurations with a
list of exports.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

from mongo_extractor.lib.ejson import to_display, to_query
from mongo_extractor.lib.errors import WatermarkResolutionError, WriteError
from mongo_extractor.lib.models import ConnectionParams, ExportSpec
from mongo_extractor.lib.process import ProcessRunner

logger = logging.getLogger(__name__)

__all__ = [
    "WatermarkTracker",
    "build_incremental_filter",
    "load_state",
    "normalize_column",
    "prior_watermark",
    "save_state",
]

STATE_KEY = "lastFetchedRow"

Scalar = Union[str, int, float, bool]


def normalize_column(column: str) -> str:
    """Drop a trailing ``.$date``; the probe reads dates in display form."""
    suffix = ".$date"
    return column[: -len(suffix)] if column.endswith(suffix) else column


def build_incremental_filter(column: str, prior: Optional[Any]) -> Tuple[str, str]:
    """Return ``(query, sort)`` for the main export of an incremental export.

    >>> build_incremental_filter("id", None)
    ('{}', '{"id":1}')
    >>> build_incremental_filter("id", 5)
    ('{"id":{"$gte":5}}', '{"id":1}')
    """
    query = "{}"
    if prior is not None:
        query = to_query(json.dumps({column: {"$gte": prior}}, separators=(",", ":")))
    sort = json.dumps({column: 1}, separators=(",", ":"))
    return query, sort


def _traverse(document: Any, column: str) -> Scalar:
    segments = column.split(".")
    value = document
    for segment in segments:
        if isinstance(value, dict):
            value = value.get(segment)
        elif isinstance(value, list) and segment.isdigit() and int(segment) < len(value):
            value = value[int(segment)]
        else:
            value = None
        if value is None:
            full_path = f' ("{column}")' if len(segments) > 1 else ""
            raise WatermarkResolutionError(
                f'Column "{segment}"{full_path} does not exists.',
                column=column,
            )

    if isinstance(value, (dict, list)):
        raise WatermarkResolutionError(
            f'Unexpected value "{json.dumps(value)}" in output of incremental fetching.',
            column=column,
        )
    return value


class WatermarkTracker:
    """Resolves the next watermark with a probe export."""

    def __init__(self, runner: ProcessRunner) -> None:
        self.runner = runner

    def probe(self, connection: ConnectionParams, spec: ExportSpec) -> Optional[Scalar]:
        """Value of the incremental column in the last document the export will fetch.

        Returns:
            The scalar value, or None when the probe returns no document

        Raises:
            WatermarkResolutionError: If the column path is missing or not scalar
        """
        column = spec.incremental_column
        if not column:
            raise WatermarkResolutionError(f'Export "{spec.name}" has no incremental fetching column.')
        query = spec.to_query().probe(column)
        output = self.runner.run(connection, query, export_name=spec.table_name)

        lines = [line for line in output.splitlines() if line.strip()]
        if not lines:
            logger.info('Incremental fetching probe of "%s" returned no document', spec.name)
            return None

        try:
            document = json.loads(to_display(lines[0]))
        except ValueError as e:
            raise WatermarkResolutionError(
                f"Could not decode output of incremental fetching: {lines[0][:80]}...",
                column=column,
            ) from e

        value = _traverse(document, column)
        logger.debug('Probe of "%s" resolved %s = %r', spec.name, column, value)
        return value


def load_state(path: Path) -> Dict[str, Any]:
    """Read the state file; a missing or invalid file is an empty state."""
    if not path.exists():
        logger.debug("No state file at %s", path)
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8") or "{}")
    except json.JSONDecodeError as e:
        logger.warning("Invalid state file %s: %s", path, e)
        return {}
    if not isinstance(data, dict):
        logger.warning("Invalid state file %s: expected an object", path)
        return {}
    return data


def prior_watermark(state: Dict[str, Any], export_id: Optional[str], legacy: bool) -> Optional[Any]:
    """Watermark saved for one export by the previous run."""
    saved = state.get(STATE_KEY)
    if legacy:
        return saved.get(export_id) if isinstance(saved, dict) and export_id else None
    if isinstance(saved, (dict, list)):
        return None
    return saved


def save_state(path: Path, value: Any) -> None:
    """Persist ``{"lastFetchedRow": value}``."""
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps({STATE_KEY: value}), encoding="utf-8")
    except OSError as e:
        raise WriteError(f'Failed write to file "{path}"', path=str(path), cause=e) from e
    logger.info("Saved watermark state to %s: %s", path, json.dumps(value))
