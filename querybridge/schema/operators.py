"""The operator codec: canonical operator tags and value literalization.

``OPERATOR_TABLE`` maps every canonical tag to its SQL operator (and, for
full-text search, the text-to-query function).  It is built once at import
time and exposed as a read-only mapping.

:func:`literalize` is the single routine that turns a filter or body value
into a token, either a SQL literal (``LiteralTarget.SQL``) or a REST wire
token (``LiteralTarget.WIRE``).  :func:`decode_token` is its inverse for wire
tokens.  Builders never format values themselves so that escaping is
identical in every direction.
"""
from __future__ import annotations

import json
import re
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any

from querybridge.errors import QuerySyntaxError, UnsupportedError

# ---------------------------------------------------------------------------
# Operator tags
# ---------------------------------------------------------------------------


class OperatorTag(str, Enum):
    """Canonical filter operator tags (PostgREST spelling)."""

    EQ = "eq"
    NEQ = "neq"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    LIKE = "like"
    ILIKE = "ilike"
    MATCH = "match"
    IMATCH = "imatch"
    CS = "cs"
    CD = "cd"
    OV = "ov"
    SL = "sl"
    SR = "sr"
    NXR = "nxr"
    NXL = "nxl"
    ADJ = "adj"
    IS = "is"
    IN = "in"
    FTS = "fts"
    PLFTS = "plfts"
    PHFTS = "phfts"
    WFTS = "wfts"


class LiteralTarget(str, Enum):
    """Where a literalized value is going to be written."""

    SQL = "sql"
    WIRE = "wire"


@dataclass(frozen=True)
class OperatorSpec:
    """One row of the operator table.

    Attributes:
        tag: Canonical tag.
        sql: SQL operator keyword or symbol.
        function: Text-to-query function for full-text tags.
        dsl_method: Dedicated client-DSL method, if the DSL has one.
    """

    tag: OperatorTag
    sql: str
    function: str | None = None
    dsl_method: str | None = None


def _spec(tag: OperatorTag, sql: str, dsl_method: str | None = None, function: str | None = None):
    return tag, OperatorSpec(tag=tag, sql=sql, function=function, dsl_method=dsl_method)


#: Canonical tag → operator spec.  Read-only.
OPERATOR_TABLE: Mapping[OperatorTag, OperatorSpec] = MappingProxyType(
    dict(
        [
            _spec(OperatorTag.EQ, "=", "eq"),
            _spec(OperatorTag.NEQ, "!=", "neq"),
            _spec(OperatorTag.GT, ">", "gt"),
            _spec(OperatorTag.GTE, ">=", "gte"),
            _spec(OperatorTag.LT, "<", "lt"),
            _spec(OperatorTag.LTE, "<=", "lte"),
            _spec(OperatorTag.LIKE, "LIKE", "like"),
            _spec(OperatorTag.ILIKE, "ILIKE", "ilike"),
            _spec(OperatorTag.MATCH, "~"),
            _spec(OperatorTag.IMATCH, "~*"),
            _spec(OperatorTag.CS, "@>", "contains"),
            _spec(OperatorTag.CD, "<@", "containedBy"),
            _spec(OperatorTag.OV, "&&", "overlaps"),
            _spec(OperatorTag.SL, "<<", "rangeLt"),
            _spec(OperatorTag.SR, ">>", "rangeGt"),
            _spec(OperatorTag.NXR, "&<", "rangeLte"),
            _spec(OperatorTag.NXL, "&>", "rangeGte"),
            _spec(OperatorTag.ADJ, "-|-", "rangeAdjacent"),
            _spec(OperatorTag.IS, "IS", "is"),
            _spec(OperatorTag.IN, "IN", "in"),
            _spec(OperatorTag.FTS, "@@", "textSearch", "to_tsquery"),
            _spec(OperatorTag.PLFTS, "@@", "textSearch", "plainto_tsquery"),
            _spec(OperatorTag.PHFTS, "@@", "textSearch", "phraseto_tsquery"),
            _spec(OperatorTag.WFTS, "@@", "textSearch", "websearch_to_tsquery"),
        ]
    )
)

#: Full-text search tags.
FULL_TEXT_TAGS: frozenset[OperatorTag] = frozenset(
    {OperatorTag.FTS, OperatorTag.PLFTS, OperatorTag.PHFTS, OperatorTag.WFTS}
)

#: Tags whose list values are Postgres array literals rather than JSON.
ARRAY_TAGS: frozenset[OperatorTag] = frozenset({OperatorTag.CS, OperatorTag.CD, OperatorTag.OV})

#: Range operators; their operands are range literals such as ``[1,10)``.
RANGE_TAGS: frozenset[OperatorTag] = frozenset(
    {OperatorTag.SL, OperatorTag.SR, OperatorTag.NXR, OperatorTag.NXL, OperatorTag.ADJ}
)

#: Pattern tags whose wire form uses ``*`` in place of ``%``.
PATTERN_TAGS: frozenset[OperatorTag] = frozenset({OperatorTag.LIKE, OperatorTag.ILIKE})

#: Values accepted by the ``is`` operator.
IS_KEYWORDS: Mapping[str, str] = MappingProxyType(
    {"null": "NULL", "true": "TRUE", "false": "FALSE", "unknown": "UNKNOWN"}
)

_NUMBER_RE = re.compile(r"-?\d+(?:\.\d+)?")
_CANONICAL_NUMBER_RE = re.compile(r"-?(?:0|[1-9]\d*)(?:\.\d+)?")
_WIRE_CONSTANTS: Mapping[str, Any] = MappingProxyType({"null": None, "true": True, "false": False})
_IN_ITEM_NEEDS_QUOTES = re.compile(r'[,()"\\]|^\s|\s$')
_ARRAY_ITEM_NEEDS_QUOTES = re.compile(r'[,{}"\\\s]')
_OPERATOR_RE = re.compile(r"^(?P<op>[a-z]+)(?:\((?P<config>[\w-]+)\))?$")


# ---------------------------------------------------------------------------
# Lookup
# ---------------------------------------------------------------------------


def lookup(tag: str | OperatorTag) -> OperatorSpec:
    """Return the operator spec for ``tag``.

    Raises:
        UnsupportedError: If ``tag`` is not a canonical operator tag.
    """
    try:
        return OPERATOR_TABLE[OperatorTag(tag)]
    except (ValueError, KeyError):
        raise UnsupportedError(
            f"unsupported operator: {tag}",
            code="UNSUPPORTED_OPERATOR",
            fragment=str(tag),
            hint=f"supported operators: {', '.join(t.value for t in OPERATOR_TABLE)}",
        ) from None


def parse_operator(text: str) -> tuple[OperatorTag, str | None]:
    """Split a wire operator such as ``fts(english)`` into tag and config."""
    m = _OPERATOR_RE.match(text)
    if m is None:
        lookup(text)  # raises with the standard message
    spec = lookup(m.group("op"))
    config = m.group("config")
    if config and spec.tag not in FULL_TEXT_TAGS:
        raise QuerySyntaxError(
            f"operator '{spec.tag.value}' does not take a configuration",
            code="INVALID_FILTER",
            fragment=text,
            hint="only fts, plfts, phfts and wfts accept a (config) suffix",
        )
    return spec.tag, config


def wire_operator(tag: OperatorTag, config: str | None = None) -> str:
    """Render a tag (plus optional text-search config) for the wire."""
    return f"{tag.value}({config})" if config else tag.value


def is_full_text(tag: OperatorTag) -> bool:
    return tag in FULL_TEXT_TAGS


def is_number_token(text: str) -> bool:
    """True if ``text`` matches the integer/decimal literal grammar."""
    return _NUMBER_RE.fullmatch(text) is not None


# ---------------------------------------------------------------------------
# Literalization
# ---------------------------------------------------------------------------


def literalize(
    value: Any,
    tag: OperatorTag | str | None = None,
    *,
    target: LiteralTarget = LiteralTarget.SQL,
    sniff: bool = True,
    config: str | None = None,
) -> str:
    """Format ``value`` as a SQL literal or a REST wire token.

    Args:
        value: The typed value (``None``, bool, number, str, list or dict).
        tag: The operator the value belongs to, if any.
        target: ``SQL`` for a SQL literal, ``WIRE`` for a query-string token.
        sniff: When true, string tokens spelling ``null``, booleans or numbers
            are emitted bare.  Body values are typed JSON and pass ``False``.
        config: Text-search configuration for full-text tags.

    Returns:
        The formatted token.
    """
    op = OperatorTag(tag) if tag is not None else None
    if target is LiteralTarget.WIRE:
        return _wire_token(value, op)

    if op is OperatorTag.IN:
        items = value if isinstance(value, (list, tuple)) else split_in_list(str(value))
        return "(" + ", ".join(_sql_scalar(item, sniff) for item in items) + ")"
    if op is not None and op in FULL_TEXT_TAGS:
        query = _quote(_scalar_text(value))
        args = f"{_quote(config)}, {query}" if config else query
        return f"{OPERATOR_TABLE[op].function}({args})"
    if isinstance(value, (list, tuple)):
        if op in ARRAY_TAGS:
            return _quote(_array_literal(value))
        return _quote(_compact_json(value))
    if isinstance(value, dict):
        return _quote(_compact_json(value))
    return _sql_scalar(value, sniff)


def is_keyword(value: Any) -> str:
    """Return the SQL keyword for an ``is`` operand.

    Raises:
        QuerySyntaxError: If the value is not null/true/false/unknown.
    """
    text = _scalar_text(value).lower()
    keyword = IS_KEYWORDS.get(text)
    if keyword is None:
        raise QuerySyntaxError(
            f"invalid value for 'is' operator: {text}",
            code="INVALID_IS_VALUE",
            fragment=text,
            hint="use one of: null, true, false, unknown",
        )
    return keyword


def decode_token(token: str, tag: OperatorTag) -> Any:
    """Decode a wire token for ``tag`` into its IR value.

    The inverse of ``literalize(..., target=LiteralTarget.WIRE)``: bare
    ``null`` / ``true`` / ``false`` and canonical numbers come back typed,
    ``in`` lists and array literals come back as lists.  Quoted list items,
    pattern, full-text and range operands stay strings.

    Raises:
        QuerySyntaxError: ``INVALID_FILTER`` for an empty ``in`` list.
    """
    if tag is OperatorTag.IN:
        items = _split_quoted(token, "(", ")")
        if not items:
            raise QuerySyntaxError(
                "in() needs at least one value",
                code="INVALID_FILTER",
                fragment=f"in.{token}",
                hint="write in.(a,b) with one or more values",
            )
        return [item if quoted else _typed_scalar(item) for item, quoted in items]
    if tag in PATTERN_TAGS:
        return token.replace("*", "%")
    if tag in ARRAY_TAGS and token.startswith("{") and token.endswith("}"):
        inner = token[1:-1]
        if "{" not in inner and "}" not in inner:
            return [item if quoted else _typed_scalar(item) for item, quoted in _split_quoted(token, "{", "}")]
        return token
    if tag in FULL_TEXT_TAGS or tag in RANGE_TAGS:
        return token
    return _typed_scalar(token)


def _typed_scalar(text: str) -> Any:
    if text in _WIRE_CONSTANTS:
        return _WIRE_CONSTANTS[text]
    if _CANONICAL_NUMBER_RE.fullmatch(text):
        number = float(text) if "." in text else int(text)
        # "1.50" or "-0" would not come back verbatim; keep the token instead.
        if _number_text(number) == text:
            return number
    return text


def split_in_list(text: str) -> list[str]:
    """Split a PostgREST ``in`` list such as ``(a,"b,c",d)``.

    Double-quoted items may contain commas and parentheses; a backslash
    escapes the next character inside quotes.
    """
    return [item for item, _ in _split_quoted(text, "(", ")")]


def _split_quoted(text: str, opening: str, closing: str) -> list[tuple[str, bool]]:
    """Split a bracketed, comma-separated list into ``(item, was_quoted)``."""
    text = text.strip()
    if text.startswith(opening) and text.endswith(closing):
        text = text[1:-1]
    if not text.strip():
        return []

    items: list[tuple[str, bool]] = []
    current: list[str] = []
    quoted = False
    in_quotes = False
    escaped = False
    for ch in text:
        if escaped:
            current.append(ch)
            escaped = False
        elif in_quotes:
            if ch == "\\":
                escaped = True
            elif ch == '"':
                in_quotes = False
            else:
                current.append(ch)
        elif ch == '"':
            in_quotes = True
            quoted = True
        elif ch == ",":
            items.append(_finish_item(current, quoted))
            current, quoted = [], False
        else:
            current.append(ch)
    items.append(_finish_item(current, quoted))
    return items


def _finish_item(chars: list[str], quoted: bool) -> tuple[str, bool]:
    item = "".join(chars)
    return (item, True) if quoted else (item.strip(), False)


def _sql_scalar(value: Any, sniff: bool) -> str:
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return _number_text(value)
    if isinstance(value, (list, tuple, dict)):
        return _quote(_compact_json(value))
    text = str(value)
    if sniff:
        if text.lower() == "null":
            return "NULL"
        if text in ("true", "false"):
            return text
        if is_number_token(text):
            return text
    return _quote(text)


def _wire_token(value: Any, op: OperatorTag | None) -> str:
    if op is OperatorTag.IN:
        items = value if isinstance(value, (list, tuple)) else split_in_list(str(value))
        return "(" + ",".join(_wire_in_item(item) for item in items) + ")"
    if isinstance(value, (list, tuple)):
        if op in ARRAY_TAGS:
            return _array_literal(value)
        return _compact_json(value)
    if isinstance(value, dict):
        return _compact_json(value)
    text = _scalar_text(value)
    if op in PATTERN_TAGS:
        return text.replace("%", "*")
    return text


def _wire_in_item(value: Any) -> str:
    text = _scalar_text(value)
    if _IN_ITEM_NEEDS_QUOTES.search(text):
        escaped = text.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'
    return text


def _array_literal(values: list | tuple) -> str:
    parts: list[str] = []
    for item in values:
        if isinstance(item, (list, tuple)):
            parts.append(_array_literal(item))
            continue
        text = _scalar_text(item)
        if _ARRAY_ITEM_NEEDS_QUOTES.search(text) or text == "":
            text = '"' + text.replace("\\", "\\\\").replace('"', '\\"') + '"'
        parts.append(text)
    return "{" + ",".join(parts) + "}"


def _scalar_text(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return _number_text(value)
    return str(value)


def _number_text(value: int | float) -> str:
    return str(value) if isinstance(value, int) else repr(value)


def _compact_json(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def _quote(text: str) -> str:
    return "'" + text.replace("'", "''") + "'"
