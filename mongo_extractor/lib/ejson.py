"""Text transforms for MongoDB extended JSON.

mongoexport writes dates, object ids and 64-bit numbers as single-key
wrapper objects (``{"$date": "..."}``).  The functions here rewrite those
wrappers as plain text so numeric and date values reach the output
without passing through a JSON parse/re-emit cycle.

All patterns step over JSON string literals as a whole, so text inside a
string value is never rewritten.  A transform that cannot complete raises
``CodecError`` instead of handing back the input unchanged.
"""

from __future__ import annotations

import re
from typing import Any, Callable, Dict, Pattern

from mongo_extractor.lib.errors import CodecError, MappingConfigError

__all__ = [
    "to_display",
    "to_query",
    "quote_bare_keys",
    "literal_id_to_extended",
    "strip_type_suffixes",
    "unwrap_scalars",
    "addslashes",
    "stripslashes",
]

# A complete JSON string literal, quotes included
STRING = r'"(?:\\.|[^"\\])*"'

_SKIP = rf"(?P<skip>{STRING})"

_DISPLAY_PATTERN = re.compile(
    rf'\{{"\$(?P<type>date|oid)":\s*(?P<value>{STRING})\s*\}}|{_SKIP}'
)

_QUERY_PATTERN = re.compile(
    r'(?P<gte>"\$gte":\s*)"(?P<type>ISODate|ObjectId)\((?P<value>(?:\\.|[^"\\])*)\)"'
    rf"|{_SKIP}"
)

_BARE_KEY_PATTERN = re.compile(
    rf"{_SKIP}|(?P<open>[{{,])\s*(?P<key>[A-Za-z\d_\-$.]+?)\s*:"
)

_OBJECT_ID_PATTERN = re.compile(
    r"ObjectId\(\s*(?P<quote>[\"'])(?P<value>[^\"'\\]*)(?P=quote)\s*\)"
    rf"|{_SKIP}"
)

_NUMBER_PATTERN = re.compile(
    rf'\{{"\$number(?:Long|Int|Double|Decimal)":\s*(?P<value>{STRING})\s*\}}|{_SKIP}'
)

_DATE_PATTERN = re.compile(
    rf'\{{"\$date":\s*(?P<value>{STRING})\s*\}}|{_SKIP}'
)

_BINARY_PATTERN = re.compile(
    rf'\{{"\$binary":\s*\{{\s*"base64":\s*(?P<value>{STRING})\s*,\s*"subType":\s*{STRING}\s*\}}\s*\}}'
    rf'|\{{"\$binary":\s*(?P<legacy>{STRING})\s*,\s*"\$type":\s*{STRING}\s*\}}'
    rf"|{_SKIP}"
)

_TYPE_SUFFIX = re.compile(
    r"(?:\.\$(?:numberLong|numberInt|numberDouble|numberDecimal|date|binary\.base64))+$"
)

_DISPLAY_NAMES = {"date": "ISODate", "oid": "ObjectId"}
_QUERY_NAMES = {"ISODate": "$date", "ObjectId": "$oid"}


def addslashes(value: str) -> str:
    """Escape backslashes and double quotes."""
    return value.replace("\\", "\\\\").replace('"', '\\"')


def stripslashes(value: str) -> str:
    """Undo ``addslashes``."""
    return re.sub(r"\\(.)", r"\1", value, flags=re.DOTALL)


def _rewrite(
    name: str,
    pattern: Pattern[str],
    replace: Callable[["re.Match[str]"], str],
    text: str,
) -> str:
    def replacer(match: "re.Match[str]") -> str:
        if match.group("skip") is not None:
            return match.group("skip")
        return replace(match)

    try:
        return pattern.sub(replacer, text)
    except (re.error, TypeError, RecursionError) as e:
        raise CodecError(
            f"Extended JSON transform '{name}' failed",
            transform=name,
            cause=e,
        ) from e


def to_display(text: str) -> str:
    """Rewrite ``{"$date": "v"}`` and ``{"$oid": "v"}`` as literal strings.

    ``{"$date": "2024-01-02T00:00:00Z"}`` becomes
    ``"ISODate(\\"2024-01-02T00:00:00Z\\")"``; the result is still valid
    JSON and escaping inside the value is preserved.
    """

    def replace(match: "re.Match[str]") -> str:
        literal = _DISPLAY_NAMES[match.group("type")]
        return f'"{literal}({addslashes(match.group("value"))})"'

    return _rewrite("to_display", _DISPLAY_PATTERN, replace, text)


def to_query(text: str) -> str:
    """Turn a ``$gte`` operand written by ``to_display`` back into a wrapper.

    ``"$gte":"ISODate(\\"v\\")"`` becomes ``"$gte":{"$date": "v"}`` and the
    ``ObjectId`` form becomes ``{"$oid": ...}``.
    """

    def replace(match: "re.Match[str]") -> str:
        wrapper = _QUERY_NAMES[match.group("type")]
        value = stripslashes(match.group("value"))
        return f'{match.group("gte")}{{"{wrapper}": {value}}}'

    return _rewrite("to_query", _QUERY_PATTERN, replace, text)


def quote_bare_keys(text: str) -> str:
    """Quote unquoted object keys in a hand-written query.

    Dotted field paths count as one key.

    >>> quote_bare_keys('{borough: "Bronx"}')
    '{"borough": "Bronx"}'
    >>> quote_bare_keys('{address.zipcode: "10462"}')
    '{"address.zipcode": "10462"}'
    """

    def replace(match: "re.Match[str]") -> str:
        return f'{match.group("open")}"{match.group("key")}":'

    return _rewrite("quote_bare_keys", _BARE_KEY_PATTERN, replace, text)


def literal_id_to_extended(text: str) -> str:
    """Rewrite ``ObjectId("x")`` literals as ``{"$oid": "x"}``."""

    def replace(match: "re.Match[str]") -> str:
        return f'{{"$oid": "{match.group("value")}"}}'

    return _rewrite("literal_id_to_extended", _OBJECT_ID_PATTERN, replace, text)


def unwrap_scalars(text: str) -> str:
    """Replace number, date and binary wrappers by their string value.

    Used on mapping-mode input so that paths with a stripped type suffix
    (``updatedAt.$date`` -> ``updatedAt``) resolve to a scalar.  Numbers
    go first so that ``{"$date": {"$numberLong": "..."}}`` collapses fully.
    ``$oid`` wrappers are left alone.
    """

    def value(match: "re.Match[str]") -> str:
        return match.group("value")

    def binary(match: "re.Match[str]") -> str:
        return match.group("value") or match.group("legacy")

    text = _rewrite("unwrap_numbers", _NUMBER_PATTERN, value, text)
    text = _rewrite("unwrap_dates", _DATE_PATTERN, value, text)
    return _rewrite("unwrap_binary", _BINARY_PATTERN, binary, text)


def strip_type_suffixes(tree: Dict[str, Any]) -> Dict[str, Any]:
    """Remove BSON type-tag suffixes from mapping keys, recursively.

    ``updatedAt.$date`` becomes ``updatedAt``; ``_id.$oid`` is kept as is.
    """
    result: Dict[str, Any] = {}
    for key, value in tree.items():
        try:
            stripped = _TYPE_SUFFIX.sub("", key) if isinstance(key, str) else key
        except (re.error, TypeError, RecursionError) as e:
            raise CodecError(
                "Extended JSON transform 'strip_type_suffixes' failed",
                transform="strip_type_suffixes",
                cause=e,
            ) from e
        if stripped in result:
            raise MappingConfigError(
                f'Invalid mapping configuration: key "{key}" duplicates "{stripped}"'
            )
        result[stripped] = strip_type_suffixes(value) if isinstance(value, dict) else value
    return result
