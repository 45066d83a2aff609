"""Declarative document-to-table mapping.

A mapping is a JSON object whose keys are dot-separated paths into the
document and whose values describe what to do with the value found
there::

    {
        "_id.$oid": {"type": "column", "mapping": {"destination": "id", "primaryKey": true}},
        "name": "name",
        "borough": null,
        "grades": {
            "type": "table",
            "destination": "restaurant-grades",
            "tableMapping": {"date": "date", "score": "score"}
        }
    }

Shorthand forms:

- ``"path": "dest"`` writes the value into column ``dest``
- ``"path": null`` writes the value into a column named after the path;
  ``"_id": null`` also makes it the primary key

A ``table`` node turns an array into a child table, one row per element,
each row linked to its parent row through a parent key column
(``<parent>_pk`` unless ``parentKey.destination`` says otherwise).
Inside ``tableMapping`` the path ``.`` refers to the element itself.
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union

from mongo_extractor.lib.ejson import strip_type_suffixes, unwrap_scalars
from mongo_extractor.lib.errors import MappingConfigError
from mongo_extractor.lib.models import webalize
from mongo_extractor.lib.tables import OutputTable

logger = logging.getLogger(__name__)

__all__ = [
    "ColumnNode",
    "MappingEngine",
    "MappingNode",
    "ParentKey",
    "TableNode",
    "parse_mapping",
]

PARENT_ID_COLUMN = "parentId"

# Sentinel for a path that does not exist in the document
_MISSING = object()


@dataclass
class ColumnNode:
    """Leaf: one value written into one column."""

    path: str
    destination: str
    primary_key: bool = False
    force_type: bool = False


@dataclass
class ParentKey:
    """How a child row points back at its parent row."""

    destination: Optional[str] = None
    primary_key: bool = False
    disable: bool = False


@dataclass
class TableNode:
    """Internal node: an array (or object) becoming a child table."""

    path: str
    destination: str
    children: List["MappingNode"] = field(default_factory=list)
    parent_key: ParentKey = field(default_factory=ParentKey)


MappingNode = Union[ColumnNode, TableNode]


def _invalid(message: str) -> MappingConfigError:
    return MappingConfigError(f"Invalid mapping configuration: {message}")


def _parse_node(path: str, value: Any) -> MappingNode:
    if value is None:
        return ColumnNode(path=path, destination=path, primary_key=path == "_id")

    if isinstance(value, str):
        if not value:
            raise _invalid(f'Destination of "{path}" must not be empty.')
        return ColumnNode(path=path, destination=value)

    if not isinstance(value, dict):
        raise _invalid(f'Unsupported mapping of "{path}": {json.dumps(value)}')

    node_type = value.get("type", "column")

    if node_type == "column":
        mapping = value.get("mapping")
        if not isinstance(mapping, dict) or not mapping.get("destination"):
            raise _invalid(f'Key "mapping.destination" is not set for column "{path}".')
        return ColumnNode(
            path=path,
            destination=str(mapping["destination"]),
            primary_key=bool(mapping.get("primaryKey", False)),
            force_type=bool(value.get("forceType", False)),
        )

    if node_type == "table":
        destination = value.get("destination")
        if not destination:
            raise _invalid(f'Key "destination" must be set for table "{path}".')
        table_mapping = value.get("tableMapping")
        if not isinstance(table_mapping, dict) or not table_mapping:
            raise _invalid(f'Key "tableMapping" must be set for table "{path}".')
        parent_key = value.get("parentKey") or {}
        if not isinstance(parent_key, dict):
            raise _invalid(f'Key "parentKey" of table "{path}" must be an object.')
        return TableNode(
            path=path,
            destination=str(destination),
            children=parse_mapping(table_mapping),
            parent_key=ParentKey(
                destination=parent_key.get("destination"),
                primary_key=bool(parent_key.get("primaryKey", False)),
                disable=bool(parent_key.get("disable", False)),
            ),
        )

    raise _invalid(f'Unknown type "{node_type}" of "{path}".')


def parse_mapping(mapping: Dict[str, Any]) -> List[MappingNode]:
    """Parse a mapping object into nodes, in declaration order."""
    return [_parse_node(path, value) for path, value in mapping.items()]


def resolve_path(source: Any, path: str) -> Any:
    """Read a dot-separated path; numeric segments index arrays."""
    if path == ".":
        return source
    current = source
    for segment in path.split("."):
        if isinstance(current, dict) and segment in current:
            current = current[segment]
        elif isinstance(current, list) and segment.isdigit() and int(segment) < len(current):
            current = current[int(segment)]
        else:
            return _MISSING
    return current


def _is_object_id(value: Any) -> bool:
    return (
        isinstance(value, dict)
        and len(value) == 1
        and isinstance(value.get("$oid"), str)
    )


def _digest(value: Any) -> str:
    serialized = json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.md5(serialized.encode("utf-8")).hexdigest()


class _TableSchema:
    """A table of the mapping tree, with its resolved column layout."""

    def __init__(
        self,
        name: str,
        nodes: List[MappingNode],
        *,
        parent_key_column: Optional[str],
        parent_key_in_pk: bool,
        include_parent_id: bool,
    ) -> None:
        self.name = name
        self.columns = [n for n in nodes if isinstance(n, ColumnNode)]
        self.children: List[Tuple[TableNode, "_TableSchema"]] = []
        self.parent_key_column = parent_key_column

        header = [c.destination for c in self.columns]
        primary_key = [c.destination for c in self.columns if c.primary_key]
        if parent_key_column:
            header.append(parent_key_column)
            if parent_key_in_pk:
                primary_key.append(parent_key_column)
        if include_parent_id:
            header.append(PARENT_ID_COLUMN)
            primary_key.append(PARENT_ID_COLUMN)

        duplicates = sorted({c for c in header if header.count(c) > 1})
        if duplicates:
            raise _invalid(
                f'Table "{name}" maps more than one value into column(s): {", ".join(duplicates)}'
            )

        self.header = header
        self.primary_key = primary_key


class MappingEngine:
    """Writes documents into the tables described by a mapping.

    Args:
        name: Export name; the root table is named after it
        mapping: Mapping object (type suffixes are stripped here)
        output_dir: Directory for the CSV files
        include_parent_in_pk: Add a ``parentId`` column, the hash of the whole
            document, to every table and to every table's primary key

    Example:
        engine = MappingEngine("restaurants", {"_id": None}, Path("out/tables"))
        for document in documents:
            engine.write(document)
        tables = engine.finish()
    """

    # Text transform for the decoder: wrappers whose suffix is stripped from
    # mapping keys must be unwrapped in the data as well
    transform = staticmethod(unwrap_scalars)

    def __init__(
        self,
        name: str,
        mapping: Dict[str, Any],
        output_dir: Path,
        *,
        include_parent_in_pk: bool = False,
    ) -> None:
        if not mapping:
            raise MappingConfigError('Mapping cannot be empty in "mapping" export mode.')

        self.include_parent_in_pk = include_parent_in_pk
        self.tables: Dict[str, OutputTable] = {}
        self.document_count = 0
        nodes = parse_mapping(strip_type_suffixes(mapping))
        self.root = self._build(webalize(name), nodes, parent_key=None, parent_name=None, output_dir=Path(output_dir))

    def _build(
        self,
        name: str,
        nodes: List[MappingNode],
        *,
        parent_key: Optional[ParentKey],
        parent_name: Optional[str],
        output_dir: Path,
    ) -> _TableSchema:
        if name in self.tables:
            raise _invalid(f'Table "{name}" is defined more than once.')

        parent_key_column = None
        if parent_key is not None and not parent_key.disable:
            parent_key_column = parent_key.destination or f"{parent_name}_pk"

        schema = _TableSchema(
            name,
            nodes,
            parent_key_column=parent_key_column,
            parent_key_in_pk=bool(parent_key and parent_key.primary_key),
            include_parent_id=self.include_parent_in_pk,
        )
        self.tables[name] = OutputTable(name, output_dir, schema.header, schema.primary_key)

        for node in nodes:
            if isinstance(node, TableNode):
                child = self._build(
                    webalize(node.destination),
                    node.children,
                    parent_key=node.parent_key,
                    parent_name=name,
                    output_dir=output_dir,
                )
                schema.children.append((node, child))
        return schema

    def write(self, document: Any) -> None:
        """Map one decoded document into rows of every table."""
        parent_id = _digest(document) if self.include_parent_in_pk else None
        self._write(self.root, document, parent_ref=None, parent_id=parent_id)
        self.document_count += 1

    def _write(
        self,
        schema: _TableSchema,
        source: Any,
        *,
        parent_ref: Optional[str],
        parent_id: Optional[str],
    ) -> None:
        row: Dict[str, str] = {}
        for column in schema.columns:
            row[column.destination] = self._cell(schema, column, resolve_path(source, column.path))
        if schema.parent_key_column:
            row[schema.parent_key_column] = parent_ref or ""
        if parent_id is not None:
            row[PARENT_ID_COLUMN] = parent_id

        self.tables[schema.name].write_row([row[c] for c in schema.header])

        if not schema.children:
            return

        if schema.primary_key:
            reference = ",".join(row[c] for c in schema.primary_key)
        else:
            reference = _digest(row)

        for node, child in schema.children:
            for element in self._elements(resolve_path(source, node.path)):
                self._write(child, element, parent_ref=reference, parent_id=parent_id)

    @staticmethod
    def _elements(value: Any) -> Iterator[Any]:
        if value is _MISSING or value is None:
            return iter(())
        if isinstance(value, list):
            return iter(value)
        return iter((value,))

    @staticmethod
    def _cell(schema: _TableSchema, column: ColumnNode, value: Any) -> str:
        if value is _MISSING or value is None:
            return ""
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, str):
            return value
        if isinstance(value, (int, float)):
            return json.dumps(value)
        if _is_object_id(value):
            return value["$oid"]
        if column.force_type:
            return json.dumps(value, separators=(",", ":"), ensure_ascii=False)
        raise _invalid(
            f'Error writing "{column.destination}" column of table "{schema.name}": '
            f"Cannot write data into column: {json.dumps(value, ensure_ascii=False)}"
        )

    def finish(self) -> List[OutputTable]:
        """Close files; tables that got no row are created header-only."""
        for table in self.tables.values():
            table.ensure_created()
            table.close()
        return list(self.tables.values())

    def close(self) -> None:
        for table in self.tables.values():
            table.close()
