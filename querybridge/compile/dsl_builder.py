"""Query IR → client method chain.

The output is the chain :class:`~querybridge.parse.dsl_parser.DslParser`
reads back, e.g.::

    supabase.from('users').select('id,name').gte('age', 18).order('name').limit(10)

Mutations are emitted before their filters, and a trailing ``select()`` is
added when the query asks for the affected rows back.
"""
from __future__ import annotations

import logging
import re
from typing import Any

from querybridge.compile.rest_builder import embed_paths, select_text
from querybridge.schema.operators import (
    FULL_TEXT_TAGS,
    OPERATOR_TABLE,
    OperatorTag,
    is_keyword,
    wire_operator,
)
from querybridge.schema.profile import DEFAULT_PROFILE, ConversionProfile
from querybridge.schema.query import Filter, Operation, OrderSpec, Query
from querybridge.schema.result import ConversionResult

logger = logging.getLogger(__name__)

_IDENT_RE = re.compile(r"^[A-Za-z_$][\w$]*$")
# No leading zeros: "007" stays a string.
_JS_NUMBER_RE = re.compile(r"-?(?:0|[1-9]\d*)(?:\.\d+)?")
_JS_ESCAPES = {"\\": "\\\\", "'": "\\'", "\n": "\\n", "\r": "\\r", "\t": "\\t"}

#: Full-text tag → ``textSearch`` ``type`` option.
TEXT_SEARCH_OPTIONS: dict[OperatorTag, str | None] = {
    OperatorTag.FTS: None,
    OperatorTag.PLFTS: "plain",
    OperatorTag.PHFTS: "phrase",
    OperatorTag.WFTS: "websearch",
}


# ---------------------------------------------------------------------------
# JavaScript literals
# ---------------------------------------------------------------------------


def js_literal(value: Any) -> str:
    """Format a typed value as a JavaScript literal."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value) if isinstance(value, int) else repr(value)
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(js_literal(v) for v in value) + "]"
    if isinstance(value, dict):
        if not value:
            return "{}"
        items = [f"{_js_key(k)}: {js_literal(v)}" for k, v in value.items()]
        return "{ " + ", ".join(items) + " }"
    return "'" + "".join(_JS_ESCAPES.get(ch, ch) for ch in str(value)) + "'"


def _js_key(key: Any) -> str:
    text = str(key)
    return text if _IDENT_RE.match(text) else js_literal(text)


def _filter_literal(value: Any) -> str:
    # Wire-decoded values are strings; emit the ones that look typed bare.
    if isinstance(value, str):
        if value == "null":
            return "null"
        if value in ("true", "false") or _JS_NUMBER_RE.fullmatch(value):
            return value
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(_filter_literal(v) for v in value) + "]"
    return js_literal(value)


def _call(name: str, *args: str) -> str:
    return f".{name}({', '.join(args)})"


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------


class DslBuilder:
    """Builds client method chains from validated Queries.

    Args:
        profile: Conversion profile; supplies the client variable name.
    """

    def __init__(self, profile: ConversionProfile | None = None) -> None:
        self._profile = profile or DEFAULT_PROFILE

    def build(self, query: Query) -> ConversionResult:
        """Render ``query`` as a single-line method chain."""
        warnings: list[str] = []
        client = self._profile.client_name
        if query.service is not None:
            text = self._service(query)
        elif query.operation is Operation.RPC:
            text = f"{client}.rpc({self._rpc_args(query)})" + "".join(self._filters(query))
        else:
            text = f"{client}.from({js_literal(query.table)})" + "".join(self._chain(query, warnings))
        logger.debug("built DSL chain %s", text)
        return ConversionResult(output=text, warnings=warnings)

    # ------------------------------------------------------------------
    # Chain sections
    # ------------------------------------------------------------------

    def _chain(self, query: Query, warnings: list[str]) -> list[str]:
        calls: list[str] = []
        count = {"count": query.count} if query.count else {}
        select = select_text(query.columns, query.embeds) or "*"

        if query.operation is Operation.SELECT:
            args = [js_literal(select)] + ([js_literal(count)] if count else [])
            calls.append(_call("select", *args))
        elif query.operation is Operation.DELETE:
            calls.append(_call("delete", *([js_literal(count)] if count else [])))
        else:
            options: dict[str, Any] = {}
            if query.operation is Operation.UPSERT:
                if query.on_conflict:
                    options["onConflict"] = ",".join(query.on_conflict)
                if query.resolution == "ignore-duplicates":
                    options["ignoreDuplicates"] = True
            options.update(count)
            args = [js_literal(query.body)] + ([js_literal(options)] if options else [])
            calls.append(_call(query.operation.value, *args))

        calls.extend(self._filters(query))
        if query.is_mutation and query.return_representation:
            calls.append(_call("select", js_literal(select)))

        calls.extend(self._order(query))
        calls.extend(self._paging(query, warnings))
        if query.single:
            calls.append(_call("single"))
        elif query.maybe_single:
            calls.append(_call("maybeSingle"))
        return calls

    def _filters(self, query: Query) -> list[str]:
        calls = [self._filter(flt, flt.column) for flt in query.filters]
        for path, embed in embed_paths(query.embeds, ""):
            calls.extend(self._filter(flt, f"{path}.{flt.column}") for flt in embed.filters)
        return calls

    def _filter(self, flt: Filter, column: str) -> str:
        col = js_literal(column)
        tag = flt.operator
        if tag is OperatorTag.IS:
            keyword = is_keyword(flt.value)
            value = keyword.lower() if keyword != "UNKNOWN" else js_literal("unknown")
            return _call("not", col, js_literal("is"), value) if flt.negated else _call("is", col, value)

        if tag in FULL_TEXT_TAGS and not flt.negated:
            options: dict[str, Any] = {}
            if TEXT_SEARCH_OPTIONS[tag]:
                options["type"] = TEXT_SEARCH_OPTIONS[tag]
            if flt.config:
                options["config"] = flt.config
            args = [col, js_literal(flt.value)] + ([js_literal(options)] if options else [])
            return _call("textSearch", *args)

        method = OPERATOR_TABLE[tag].dsl_method
        if flt.negated or method is None or tag in FULL_TEXT_TAGS:
            operator = wire_operator(tag, flt.config)
            if flt.negated and not flt.config:
                return _call("not", col, js_literal(operator), _filter_literal(flt.value))
            prefix = "not." if flt.negated else ""
            return _call("filter", col, js_literal(prefix + operator), _filter_literal(flt.value))
        return _call(method, col, _filter_literal(flt.value))

    def _order(self, query: Query) -> list[str]:
        calls = [self._order_call(spec, None) for spec in query.order]
        for path, embed in embed_paths(query.embeds, ""):
            calls.extend(self._order_call(spec, path) for spec in embed.order)
            if embed.limit is not None:
                calls.append(_call("limit", str(embed.limit), js_literal({"referencedTable": path})))
        return calls

    def _order_call(self, spec: OrderSpec, relation: str | None) -> str:
        options: dict[str, Any] = {}
        if spec.descending:
            options["ascending"] = False
        if spec.nulls_first:
            options["nullsFirst"] = True
        elif spec.nulls_last:
            options["nullsFirst"] = False
        if relation:
            options["referencedTable"] = relation
        args = [js_literal(spec.column)] + ([js_literal(options)] if options else [])
        return _call("order", *args)

    def _paging(self, query: Query, warnings: list[str]) -> list[str]:
        if query.range is not None:
            return [_call("range", str(query.range.start), str(query.range.end))]
        if query.offset is not None:
            if query.limit is None:
                warnings.append("offset without limit has no client equivalent and was dropped")
                return []
            if query.limit == 0:
                return [_call("limit", "0")]
            return [_call("range", str(query.offset), str(query.offset + query.limit - 1))]
        if query.limit is not None:
            return [_call("limit", str(query.limit))]
        return []

    # ------------------------------------------------------------------
    # RPC and service calls
    # ------------------------------------------------------------------

    def _rpc_args(self, query: Query) -> str:
        args = [js_literal(query.rpc_function)]
        if query.body is not None:
            args.append(js_literal(query.body))
        return ", ".join(args)

    def _service(self, query: Query) -> str:
        call = query.service
        text = f"{self._profile.client_name}.{call.namespace}"
        if call.bucket is not None:
            text += f".from({js_literal(call.bucket)})"
        return text + f".{call.method}({', '.join(js_literal(a) for a in call.args)})"
