"""Parser for PostgREST-style wire requests.

``RestParser.parse("GET", "/users", "select=name,posts(title)&age=gte.18")``
produces a :class:`~querybridge.schema.query.Query`.  Query-string pairs are
read in order with repeated keys kept; every key that is not a reserved
modifier is a filter of the form ``[not.]operator.value``.
"""
from __future__ import annotations

import json
import logging
import re
from typing import Any
from urllib.parse import parse_qsl, unquote, urlsplit

from querybridge.errors import QuerySyntaxError, SemanticError, UnsupportedError
from querybridge.parse.scanner import DEFAULT_MAX_DEPTH, split_top_level
from querybridge.schema.operators import decode_token, parse_operator
from querybridge.schema.profile import DEFAULT_PROFILE, ConversionProfile
from querybridge.schema.query import (
    EmbeddedResource,
    Filter,
    Operation,
    OrderSpec,
    Query,
    RangeSpec,
)

logger = logging.getLogger(__name__)

#: HTTP method → operation, before header refinement.
METHOD_OPERATIONS: dict[str, Operation] = {
    "GET": Operation.SELECT,
    "POST": Operation.INSERT,
    "PATCH": Operation.UPDATE,
    "DELETE": Operation.DELETE,
}

#: Query-string keys that are never filters.
RESERVED_KEYS: frozenset[str] = frozenset({"select", "order", "limit", "offset", "on_conflict", "columns"})

#: Logical-group keys, with the error code each one raises.
_LOGIC_KEYS: dict[str, str] = {
    "or": "OR_CONDITION",
    "not.or": "OR_CONDITION",
    "and": "NESTED_LOGIC",
    "not.and": "NESTED_LOGIC",
}

_ORDER_DIRECTIONS: frozenset[str] = frozenset({"asc", "desc"})
_ORDER_NULLS: frozenset[str] = frozenset({"nullsfirst", "nullslast"})
_OBJECT_MEDIA_TYPE = "application/vnd.pgrst.object+json"
_API_PREFIX = ("rest", "v1")
# ``count()``, ``amount.sum()``, ``total:amount.sum()``.
_AGGREGATE_RE = re.compile(r"^(?:[A-Za-z_$][\w$]*:)?(?:[^():,]+\.)?(?:count|sum|avg|min|max)\(\)$")


# ---------------------------------------------------------------------------
# Shared select-list parsing
# ---------------------------------------------------------------------------


def parse_select(
    text: str, max_depth: int = DEFAULT_MAX_DEPTH
) -> tuple[list[str], list[EmbeddedResource]]:
    """Split a select list into plain columns and embedded resources.

    ``name,posts(title,year)`` gives ``(["name"], [posts[title, year]])``.
    Entries are split on top-level commas only; the inner list of each embed
    is parsed recursively.  ``alias:column``, ``column::cast`` and aggregate
    entries such as ``count()`` or ``amount.sum()`` are kept verbatim.

    Raises:
        QuerySyntaxError: ``INVALID_SELECT`` for an entry with text after
            its closing parenthesis.
    """
    columns: list[str] = []
    embeds: list[EmbeddedResource] = []
    for item in split_top_level(text, max_depth=max_depth):
        paren = item.find("(")
        if paren == -1 or _AGGREGATE_RE.match(item):
            columns.append(item)
            continue
        if not item.endswith(")") or paren == 0:
            raise QuerySyntaxError(
                f"malformed embedded resource: {item}",
                code="INVALID_SELECT",
                fragment=item,
                hint="write embeds as relation(col1,col2)",
            )
        inner_columns, inner_embeds = parse_select(item[paren + 1: -1], max_depth)
        embeds.append(
            EmbeddedResource(
                relation=item[:paren].strip(),
                columns=inner_columns,
                embeds=inner_embeds,
            )
        )
    return columns, embeds


def find_embed(embeds: list[EmbeddedResource], path: str) -> EmbeddedResource | None:
    """Find an embed by dotted relation path (``posts`` or ``posts.comments``).

    Aliased relations (``author:users``) match on the alias or the table.
    """
    head, _, rest = path.partition(".")
    for embed in embeds:
        if head in _relation_names(embed.relation):
            return find_embed(embed.embeds, rest) if rest else embed
    return None


def _relation_names(relation: str) -> set[str]:
    alias, _, table = relation.rpartition(":")
    table = table.split("!", 1)[0]
    return {relation, table, alias} - {""}


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


class RestParser:
    """Parses one wire request into a Query.

    Args:
        profile: Conversion profile; supplies the nesting bound.

    Attributes:
        warnings: Non-fatal notes gathered during the last :meth:`parse`.
    """

    def __init__(self, profile: ConversionProfile | None = None) -> None:
        self._profile = profile or DEFAULT_PROFILE
        self.warnings: list[str] = []

    def parse(
        self,
        method: str,
        path: str,
        query: str = "",
        body: str | bytes | dict[str, Any] | list[Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> Query:
        """Parse a request.

        Args:
            method: HTTP method (case-insensitive).
            path: ``/<table>`` or ``/rpc/<fn>``; a query string or an
                absolute URL is accepted and split off.
            query: URL-encoded query string, with or without ``?``.
            body: Raw JSON text, bytes, or an already-decoded payload.
            headers: Optional request headers (case-insensitive).

        Returns:
            The parsed :class:`Query`.

        Raises:
            SemanticError: ``INVALID_METHOD`` or ``NO_TABLE``.
            QuerySyntaxError: Malformed filter, order, limit, offset, range
                or body.
            UnsupportedError: OR / nested logic or an unknown operator.
        """
        self.warnings = []
        method = method.strip().upper()
        operation = METHOD_OPERATIONS.get(method)
        if operation is None:
            raise SemanticError(
                f"unsupported HTTP method: {method}",
                code="INVALID_METHOD",
                fragment=method,
                hint=f"use one of: {', '.join(METHOD_OPERATIONS)}",
            )

        path, query = _split_target(path, query)
        fields: dict[str, Any] = {"operation": operation}
        segments = [unquote(s) for s in path.split("/") if s]
        if tuple(segments[:2]) == _API_PREFIX:
            segments = segments[2:]
        if not segments:
            raise SemanticError(
                "request path names no table",
                code="NO_TABLE",
                fragment=path,
                hint="use /<table> or /rpc/<function>",
            )
        if segments[0] == "rpc":
            if len(segments) < 2:
                raise SemanticError(
                    "rpc path names no function",
                    code="NO_TABLE",
                    fragment=path,
                    hint="use /rpc/<function>",
                )
            fields.update(operation=Operation.RPC, rpc_function=segments[1])
        else:
            fields["table"] = segments[0]

        pairs = parse_qsl(query, keep_blank_values=True)
        self._apply_params(pairs, fields)
        self._apply_headers(_lower_keys(headers), fields)

        if method in ("POST", "PATCH"):
            fields["body"] = _decode_body(body)
        elif body not in (None, "", b""):
            self.warnings.append(f"request body ignored for {method}")

        if fields["operation"] is Operation.SELECT and not fields.get("columns") and not fields.get("embeds"):
            fields["columns"] = ["*"]

        result = Query(**fields)
        logger.debug(
            "parsed %s %s: %d filter(s), %d embed(s)",
            method, path, len(result.filters), len(result.embeds),
        )
        return result

    # ------------------------------------------------------------------
    # Query string
    # ------------------------------------------------------------------

    def _apply_params(self, pairs: list[tuple[str, str]], fields: dict[str, Any]) -> None:
        max_depth = self._profile.max_nesting_depth
        # select first: embed-scoped keys below need to know the embeds.
        for key, value in pairs:
            if key == "select":
                fields["columns"], fields["embeds"] = parse_select(value, max_depth)
        embeds: list[EmbeddedResource] = fields.get("embeds", [])

        for key, value in pairs:
            if key == "select":
                continue
            if key in _LOGIC_KEYS:
                raise _logic_error(key, value, _LOGIC_KEYS[key])
            if key == "order":
                fields.setdefault("order", []).extend(parse_order(value))
            elif key == "limit":
                fields["limit"] = _parse_int(value, "limit", "INVALID_LIMIT")
            elif key == "offset":
                fields["offset"] = _parse_int(value, "offset", "INVALID_OFFSET")
            elif key == "on_conflict":
                fields["on_conflict"] = [c.strip() for c in value.split(",") if c.strip()]
            elif key == "columns":
                self.warnings.append("the 'columns' parameter is ignored; columns come from the body")
            elif not self._apply_embed_param(key, value, embeds):
                fields.setdefault("filters", []).append(parse_filter(key, value))

    def _apply_embed_param(self, key: str, value: str, embeds: list[EmbeddedResource]) -> bool:
        """Route ``rel.col=op.v``, ``rel.order=...`` and ``rel.limit=n``."""
        path, dot, leaf = key.rpartition(".")
        if not dot or path == "not":
            return False
        embed = find_embed(embeds, path)
        if embed is None:
            return False
        if leaf in _LOGIC_KEYS:
            raise _logic_error(key, value, _LOGIC_KEYS[leaf])
        if leaf == "order":
            embed.order.extend(parse_order(value))
        elif leaf == "limit":
            embed.limit = _parse_int(value, key, "INVALID_LIMIT")
        else:
            embed.filters.append(parse_filter(leaf, value))
        return True

    # ------------------------------------------------------------------
    # Headers
    # ------------------------------------------------------------------

    def _apply_headers(self, headers: dict[str, str], fields: dict[str, Any]) -> None:
        for pref in _split_header(headers.get("prefer", "")):
            name, _, value = pref.partition("=")
            name, value = name.strip(), value.strip()
            if name == "resolution" and value in ("merge-duplicates", "ignore-duplicates"):
                fields["resolution"] = value
                if fields["operation"] is Operation.INSERT:
                    fields["operation"] = Operation.UPSERT
            elif name == "count" and value in ("exact", "planned", "estimated"):
                fields["count"] = value
            elif name == "return" and value == "representation":
                fields["return_representation"] = True
            elif name:
                self.warnings.append(f"Prefer value ignored: {pref.strip()}")

        if "range" in headers:
            fields["range"] = parse_range(headers["range"])
        if _OBJECT_MEDIA_TYPE in headers.get("accept", ""):
            fields["single"] = True


# ---------------------------------------------------------------------------
# Token-level parsers
# ---------------------------------------------------------------------------


def parse_filter(column: str, value: str) -> Filter:
    """Parse ``[not.]operator[(config)].value`` for ``column``.

    Raises:
        QuerySyntaxError: ``INVALID_FILTER`` when there is no ``.``.
        UnsupportedError: ``UNSUPPORTED_OPERATOR`` for an unknown operator,
            ``OR_CONDITION`` / ``NESTED_LOGIC`` for logical groups.
    """
    negated = False
    text = value
    if text.startswith("not."):
        negated, text = True, text[4:]
    for prefix, code in (("or(", "OR_CONDITION"), ("and(", "NESTED_LOGIC")):
        if text.startswith(prefix):
            raise _logic_error(column, value, code)
    op_text, dot, token = text.partition(".")
    if not dot or not column:
        raise QuerySyntaxError(
            f"invalid filter {column}={value}",
            code="INVALID_FILTER",
            fragment=f"{column}={value}",
            hint="filters are written column=operator.value, e.g. age=gte.18",
        )
    tag, config = parse_operator(op_text)
    return Filter(
        column=column,
        operator=tag,
        value=decode_token(token, tag),
        negated=negated,
        config=config,
    )


def parse_order(value: str) -> list[OrderSpec]:
    """Parse ``col.[asc|desc][.nullsfirst|.nullslast]`` entries.

    Raises:
        QuerySyntaxError: ``INVALID_ORDER`` for an unknown modifier, an
            empty column, or conflicting modifiers.
    """
    specs: list[OrderSpec] = []
    for entry in (e.strip() for e in value.split(",")):
        if not entry:
            continue
        column, *modifiers = entry.split(".")
        descending = False
        nulls: str | None = None
        seen_direction = False
        for mod in modifiers:
            if mod in _ORDER_DIRECTIONS and not seen_direction:
                descending, seen_direction = mod == "desc", True
            elif mod in _ORDER_NULLS and nulls is None:
                nulls = mod
            else:
                raise QuerySyntaxError(
                    f"invalid order modifier '{mod}' in '{entry}'",
                    code="INVALID_ORDER",
                    fragment=entry,
                    hint="use column.asc|desc[.nullsfirst|.nullslast]",
                )
        if not column:
            raise QuerySyntaxError(
                f"order entry '{entry}' has no column",
                code="INVALID_ORDER",
                fragment=entry,
            )
        specs.append(
            OrderSpec(
                column=column,
                descending=descending,
                nulls_first=nulls == "nullsfirst",
                nulls_last=nulls == "nullslast",
            )
        )
    return specs


def parse_range(value: str) -> RangeSpec:
    """Parse a ``Range: a-b`` header value."""
    start, dash, end = value.strip().partition("-")
    if not dash or not start.isdigit() or not end.isdigit() or int(end) < int(start):
        raise QuerySyntaxError(
            f"invalid Range header: {value}",
            code="INVALID_RANGE",
            fragment=value,
            hint="use Range: <start>-<end> with start <= end",
        )
    return RangeSpec(start=int(start), end=int(end))


def _parse_int(value: str, name: str, code: str) -> int:
    text = value.strip()
    if not text.isdigit():
        raise QuerySyntaxError(
            f"{name} must be a non-negative integer, got '{value}'",
            code=code,
            fragment=f"{name}={value}",
        )
    return int(text)


def _decode_body(body: str | bytes | dict[str, Any] | list[Any] | None) -> Any:
    if body is None or isinstance(body, (dict, list)):
        return body
    if isinstance(body, bytes):
        try:
            body = body.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise QuerySyntaxError(
                f"request body is not valid UTF-8: {exc.reason}",
                code="INVALID_BODY",
                fragment=repr(body[:40]),
                hint="send the JSON body UTF-8 encoded",
            ) from exc
    if not body.strip():
        return None
    try:
        decoded = json.loads(body)
    except json.JSONDecodeError as exc:
        raise QuerySyntaxError(
            f"request body is not valid JSON: {exc.msg}",
            code="INVALID_BODY",
            fragment=body[:40],
            hint="send a JSON object or an array of objects",
        ) from exc
    if not isinstance(decoded, (dict, list)):
        raise QuerySyntaxError(
            "request body must be a JSON object or array",
            code="INVALID_BODY",
            fragment=body[:40],
        )
    return decoded


def _split_target(path: str, query: str) -> tuple[str, str]:
    if "://" in path or "?" in path:
        parts = urlsplit(path)
        path = parts.path
        query = "&".join(q for q in (parts.query, query.lstrip("?")) if q)
    return path, query.lstrip("?")


def _split_header(value: str) -> list[str]:
    return [v for v in (p.strip() for p in value.split(",")) if v]


def _lower_keys(headers: dict[str, str] | None) -> dict[str, str]:
    return {k.lower(): v for k, v in (headers or {}).items()}


def _logic_error(key: str, value: str, code: str) -> UnsupportedError:
    kind = "OR conditions" if code == "OR_CONDITION" else "nested logical groups"
    return UnsupportedError(
        f"{kind} are not supported",
        code=code,
        fragment=f"{key}={value}",
        hint="rewrite the condition as separate AND-joined filters",
    )
