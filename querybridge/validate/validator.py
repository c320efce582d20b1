"""Structural validation of a parsed Query.

``QueryValidator`` runs between parsing and building in every conversion
direction.  It raises the first violation found; it never repairs the
query.

Checks, in order
----------------
1. Target     – a table is present and the operation is known.
2. Filters    – no OR connectives, valid ``is`` operands, non-empty ``in``
   lists, finite numbers, and at least one filter on DELETE.
3. Embeds     – nesting within ``profile.max_embed_depth``.
4. Paging     – limit / offset are non-negative.
5. Body       – INSERT/UPSERT rows and UPDATE assignments are present,
   non-empty and made of mappings.  Numbers must be finite.
"""
from __future__ import annotations

import logging
import math
from typing import Any

from querybridge.errors import QuerySyntaxError, SemanticError, UnsupportedError
from querybridge.schema.operators import OperatorTag, is_keyword
from querybridge.schema.profile import DEFAULT_PROFILE, ConversionProfile
from querybridge.schema.query import LogicalOp, Operation, Query

logger = logging.getLogger(__name__)


class QueryValidator:
    """Validates a Query against a ConversionProfile.

    Args:
        profile: Supplies ``max_embed_depth``.
    """

    def __init__(self, profile: ConversionProfile | None = None) -> None:
        self._profile = profile or DEFAULT_PROFILE

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def validate(self, query: Query) -> None:
        """Validate ``query`` and raise on the first violation found.

        Raises:
            SemanticError: Missing table or operation, DELETE without a
                filter, or a bad mutation body.
            UnsupportedError: OR filters or embeds nested too deeply.
            QuerySyntaxError: Invalid ``is`` operand or negative paging.
        """
        self._validate_target(query)
        self._validate_filters(query)
        self._validate_embeds(query)
        self._validate_paging(query)
        self._validate_body(query)
        logger.debug("validated %s on %s", query.operation, query.table)

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    def _validate_target(self, query: Query) -> None:
        if query.operation is Operation.RPC:
            if not query.rpc_function:
                raise SemanticError("rpc call names no function", code="NO_TABLE")
            return
        if not query.table:
            raise SemanticError(
                "query has no target table",
                code="NO_TABLE",
                hint="name a table: /<table>, from('<table>') or FROM <table>",
            )
        if query.operation is None:
            raise SemanticError(
                f"no operation given for table '{query.table}'",
                code="NO_OPERATION",
                fragment=query.table,
                hint="add select(), insert(), update(), upsert() or delete()",
            )

    def _validate_filters(self, query: Query) -> None:
        for relation, flt in query.iter_filters():
            if flt.logical is LogicalOp.OR:
                raise UnsupportedError(
                    "OR conditions are not supported",
                    code="OR_CONDITION",
                    fragment=_qualified(relation, flt.column),
                    hint="rewrite the condition as separate AND-joined filters",
                )
            if flt.operator is OperatorTag.IS:
                is_keyword(flt.value)
            if flt.operator is OperatorTag.IN and isinstance(flt.value, list) and not flt.value:
                raise QuerySyntaxError(
                    "in() needs at least one value",
                    code="INVALID_FILTER",
                    fragment=_qualified(relation, flt.column),
                    hint="an empty IN list matches nothing; drop the filter instead",
                )
            if not _finite(flt.value):
                raise QuerySyntaxError(
                    "NaN and Infinity have no SQL or wire literal",
                    code="INVALID_FILTER",
                    fragment=_qualified(relation, flt.column),
                )

        if query.operation is Operation.DELETE:
            require_filters(query)

    def _validate_embeds(self, query: Query) -> None:
        depth = query.embed_depth()
        if depth > self._profile.max_embed_depth:
            raise UnsupportedError(
                f"embedded resources nested {depth} levels deep; "
                f"at most {self._profile.max_embed_depth} supported",
                code="DEEP_EMBED",
                fragment=", ".join(e.relation for e in query.embeds),
                hint="flatten the select list or raise max_embed_depth",
            )

    def _validate_paging(self, query: Query) -> None:
        if query.limit is not None and query.limit < 0:
            raise QuerySyntaxError(
                f"limit must not be negative, got {query.limit}",
                code="INVALID_LIMIT",
                fragment=str(query.limit),
            )
        if query.offset is not None and query.offset < 0:
            raise QuerySyntaxError(
                f"offset must not be negative, got {query.offset}",
                code="INVALID_OFFSET",
                fragment=str(query.offset),
            )

    def _validate_body(self, query: Query) -> None:
        if query.operation in (Operation.INSERT, Operation.UPSERT):
            require_rows(query)
        elif query.operation is Operation.UPDATE:
            require_assignments(query)
        if not _finite(query.body):
            raise QuerySyntaxError(
                "NaN and Infinity have no JSON or SQL literal",
                code="INVALID_BODY",
                fragment=query.table or query.rpc_function or "",
            )


# ---------------------------------------------------------------------------
# Body shape checks shared with the SQL builder
# ---------------------------------------------------------------------------


def require_rows(query: Query) -> list[dict[str, Any]]:
    """Return the INSERT/UPSERT body as a non-empty list of non-empty rows.

    Raises:
        SemanticError: ``NO_BODY``, ``EMPTY_BODY`` or ``INVALID_BODY_SHAPE``.
    """
    body = query.body
    if body is None:
        raise _no_body(query)
    rows = body if isinstance(body, list) else [body]
    if not rows:
        raise _empty_body(query)
    for index, row in enumerate(rows):
        if not isinstance(row, dict):
            raise SemanticError(
                f"row {index} of the {_verb(query)} body is not an object",
                code="INVALID_BODY_SHAPE",
                fragment=repr(row)[:40],
                hint="send an object or an array of objects",
            )
        if not row:
            raise _empty_body(query)
    return rows


def require_filters(query: Query) -> None:
    """Raise ``DELETE_NO_WHERE`` when a DELETE has no filter."""
    if not query.filters:
        raise SemanticError(
            f"DELETE on '{query.table}' has no filter and would remove every row",
            code="DELETE_NO_WHERE",
            fragment=query.table or "",
            hint="add a filter, e.g. ?id=eq.1 or .eq('id', 1)",
        )


def require_assignments(query: Query) -> dict[str, Any]:
    """Return the UPDATE body as a non-empty mapping.

    Raises:
        SemanticError: ``NO_BODY``, ``EMPTY_BODY`` or ``INVALID_BODY_SHAPE``.
    """
    body = query.body
    if body is None:
        raise _no_body(query)
    if not isinstance(body, dict):
        raise SemanticError(
            "UPDATE body must be a single object",
            code="INVALID_BODY_SHAPE",
            fragment=repr(body)[:40],
            hint="PATCH with one JSON object of column values",
        )
    if not body:
        raise _empty_body(query)
    return body


def _verb(query: Query) -> str:
    return query.operation.value.upper() if query.operation else "mutation"


def _no_body(query: Query) -> SemanticError:
    return SemanticError(
        f"{_verb(query)} on '{query.table}' has no body",
        code="NO_BODY",
        fragment=query.table or "",
        hint="provide the column values to write",
    )


def _empty_body(query: Query) -> SemanticError:
    return SemanticError(
        f"{_verb(query)} on '{query.table}' has an empty body",
        code="EMPTY_BODY",
        fragment=query.table or "",
        hint="provide at least one column value",
    )


def _finite(value: Any) -> bool:
    """False if ``value`` holds a NaN or infinite float at any depth."""
    if isinstance(value, float):
        return math.isfinite(value)
    if isinstance(value, (list, tuple)):
        return all(_finite(v) for v in value)
    if isinstance(value, dict):
        return all(_finite(v) for v in value.values())
    return True


def _qualified(relation: str | None, column: str) -> str:
    return f"{relation}.{column}" if relation else column
