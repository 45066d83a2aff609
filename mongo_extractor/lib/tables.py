"""Append-only CSV output tables.

Every value is quoted and the header row is written once, when the file
is first created.  Later writes in the same run (or later runs writing
into the same directory) only append data rows.
"""

from __future__ import annotations

import csv
import logging
from pathlib import Path
from typing import IO, Any, List, Optional, Sequence

from mongo_extractor.lib.errors import WriteError

logger = logging.getLogger(__name__)

__all__ = ["OutputTable"]


class OutputTable:
    """One CSV file plus the metadata its manifest needs."""

    def __init__(
        self,
        name: str,
        directory: Path,
        columns: Sequence[str],
        primary_key: Optional[Sequence[str]] = None,
    ) -> None:
        self.name = name
        self.directory = Path(directory)
        self.columns: List[str] = list(columns)
        self.primary_key: List[str] = list(primary_key or [])
        self.row_count = 0
        self._handle: Optional[IO[str]] = None
        self._writer: Optional[Any] = None

    @property
    def path(self) -> Path:
        return self.directory / f"{self.name}.csv"

    def _open(self) -> Any:
        if self._writer is not None:
            return self._writer
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            is_new = not self.path.exists()
            self._handle = open(self.path, "a", encoding="utf-8", newline="")
            self._writer = csv.writer(
                self._handle, quoting=csv.QUOTE_ALL, lineterminator="\n"
            )
            if is_new:
                self._writer.writerow(self.columns)
                logger.debug("Created %s with columns %s", self.path, self.columns)
        except OSError as e:
            raise WriteError(f'Failed write to file "{self.path}"', path=str(self.path), cause=e) from e
        return self._writer

    def ensure_created(self) -> None:
        """Create the file with its header if no row was written yet."""
        self._open()

    def write_row(self, values: Sequence[str]) -> None:
        writer = self._open()
        try:
            writer.writerow(values)
        except OSError as e:
            raise WriteError(f'Failed write to file "{self.path}"', path=str(self.path), cause=e) from e
        self.row_count += 1

    def close(self) -> None:
        if self._handle is not None:
            try:
                self._handle.close()
            except OSError as e:
                raise WriteError(f'Failed write to file "{self.path}"', path=str(self.path), cause=e) from e
            finally:
                self._handle = None
                self._writer = None
