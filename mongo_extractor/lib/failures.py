"""Classification of mongoexport failures.

mongoexport reports problems only through its exit code and free-form
error output.  ``classify_failure`` turns that text into an actionable
``ClassifiedExportError`` where the cause is known, and into an
``UnclassifiedExportError`` carrying the raw output otherwise.
"""

from __future__ import annotations

import re
from typing import Callable, List, Optional, Tuple

from mongo_extractor.lib.errors import (
    ClassifiedExportError,
    ExtractorError,
    UnclassifiedExportError,
)

__all__ = ["classify_failure"]

# (matcher, message factory); first match wins
_Rule = Tuple[Callable[[str], Optional[str]], Callable[[str, str, str], str]]


def _contains(needle: str) -> Callable[[str], Optional[str]]:
    return lambda text: needle if needle in text else None


def _search(pattern: "re.Pattern[str]") -> Callable[[str], Optional[str]]:
    def match(text: str) -> Optional[str]:
        found = pattern.search(text)
        return found.group(0) if found else None

    return match


_RULES: List[_Rule] = [
    (
        _contains("Failed: EOF"),
        lambda name, query, excerpt: (
            f'Export "{name}" failed. Timeout occurred while waiting for data. '
            "Please check your query. Problem can be a typo in the field name or missing index."
            "In these cases, the full scan is made and it can take too long."
        ),
    ),
    (
        _contains("QueryExceededMemoryLimitNoDiskUseAllowed"),
        lambda name, query, excerpt: (
            "Sort exceeded memory limit, but did not opt in to external sorting. "
            "The field should be set as an index, so there will be no sorting in the "
            "incremental fetching query, because the index will be used"
        ),
    ),
    (
        _contains("dial tcp: i/o timeout"),
        lambda name, query, excerpt: (
            "Could not connect to server: connection() error occurred during "
            "connection handshake: dial tcp: i/o timeout"
        ),
    ),
    (
        _contains("sort key ordering must be 1 (for ascending) or -1 (for descending)"),
        lambda name, query, excerpt: (
            "$sort key ordering must be 1 (for ascending) or -1 (for descending)"
        ),
    ),
    (
        _contains("FieldPath field names may not start with '$'"),
        lambda name, query, excerpt: "FieldPath field names may not start with '$'",
    ),
    (
        _search(re.compile(r"Failed:.*?command", re.DOTALL)),
        lambda name, query, excerpt: excerpt.strip(),
    ),
    (
        _search(re.compile(r"query '\[[^\]]*\]' is not valid JSON", re.IGNORECASE)),
        lambda name, query, excerpt: (
            f'Export "{name}" failed. Query "{query}" is not valid JSON'
        ),
    ),
]


def classify_failure(
    stderr: str,
    *,
    export_name: str,
    query: str = "",
    command: Optional[str] = None,
    exit_code: Optional[int] = None,
) -> ExtractorError:
    """Map failure output to a typed error.

    Args:
        stderr: Error output of the failed process
        export_name: Export the process belonged to
        query: Filter the export ran with, quoted in the invalid JSON message
        command: Command line with credentials already redacted
        exit_code: Process exit code, for diagnostics

    Returns:
        ClassifiedExportError for known causes, UnclassifiedExportError otherwise
    """
    for matcher, message in _RULES:
        excerpt = matcher(stderr)
        if excerpt is not None:
            return ClassifiedExportError(message(export_name, query, excerpt))

    return UnclassifiedExportError(
        f'Export "{export_name}" failed.',
        command=command,
        stderr=stderr,
        exit_code=exit_code,
    )
