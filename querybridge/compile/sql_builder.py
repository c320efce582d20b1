"""Query IR → SQL statement.

``SqlBuilder`` is the top-level orchestrator.  It picks the statement
builder registered for the query's operation and collects the warnings and
metadata the clause builders produce.

Sub-builder hierarchy
---------------------
SqlBuilder
  └── BuilderRegistry (registry.py)
        ├── GET    SelectStatementBuilder
        ├── POST   InsertStatementBuilder  (INSERT and upsert)
        ├── PATCH  UpdateStatementBuilder
        └── DELETE DeleteStatementBuilder
Clause builders live in clause_builders.py.
"""
from __future__ import annotations

import logging

from querybridge.compile.clause_builders import (
    ConflictClauseBuilder,
    FromClauseBuilder,
    GroupByClauseBuilder,
    OrderByClauseBuilder,
    SelectClauseBuilder,
    SetClauseBuilder,
    ValuesClauseBuilder,
    WhereClauseBuilder,
    render_column,
    walk_embeds,
)
from querybridge.compile.context import CompilationContext, RuntimeContext
from querybridge.compile.conventions import default_conflict_target
from querybridge.compile.registry import BuilderRegistry, method_for
from querybridge.errors import SemanticError
from querybridge.schema.profile import DEFAULT_PROFILE, ConversionProfile
from querybridge.schema.query import Filter, Operation, OrderSpec, Query
from querybridge.schema.result import ConversionResult
from querybridge.validate.validator import require_assignments, require_filters, require_rows

logger = logging.getLogger(__name__)


class StatementBuilder:
    """Base class for per-operation statement builders."""

    def __init__(self, ctx: CompilationContext, runtime: RuntimeContext) -> None:
        self._ctx = ctx
        self._runtime = runtime

    def build(self, query: Query) -> str:
        raise NotImplementedError

    def _where(self, query: Query) -> str:
        return WhereClauseBuilder(self._ctx, self._runtime).build([(None, f) for f in query.filters])

    def _returning(self, query: Query) -> str:
        if not query.return_representation:
            return ""
        columns = [c for c in query.columns if c != "*"]
        return "RETURNING " + (", ".join(render_column(c) for c in columns) if columns else "*")


@BuilderRegistry.register("GET")
class SelectStatementBuilder(StatementBuilder):
    """``SELECT … FROM … [JOIN …] [WHERE …] [GROUP BY …] [ORDER BY …] [LIMIT] [OFFSET]``."""

    def build(self, query: Query) -> str:
        qualify = bool(query.embeds)
        main = self._ctx.table if qualify else None

        filters: list[tuple[str | None, Filter]] = [(main, f) for f in query.filters]
        order: list[tuple[str | None, OrderSpec]] = [(main, o) for o in query.order]
        for _, name, embed in walk_embeds(query.embeds, self._ctx.table):
            filters.extend((name, f) for f in embed.filters)
            order.extend((name, o) for o in embed.order)

        limit, offset = query.limit, query.offset
        if query.range is not None:
            if limit is None:
                limit = query.range.limit
            if offset is None and query.range.start:
                offset = query.range.start

        parts = [
            SelectClauseBuilder(self._ctx, self._runtime).build(query),
            FromClauseBuilder(self._ctx, self._runtime).build(query),
            WhereClauseBuilder(self._ctx, self._runtime).build(filters),
            GroupByClauseBuilder(self._ctx).build(query),
            OrderByClauseBuilder().build(order),
            f"LIMIT {limit}" if limit is not None else "",
            f"OFFSET {offset}" if offset is not None else "",
        ]
        if query.count:
            self._runtime.annotate("count", query.count)
        return " ".join(p for p in parts if p)


@BuilderRegistry.register("POST")
class InsertStatementBuilder(StatementBuilder):
    """``INSERT INTO … VALUES …`` with ``ON CONFLICT`` for upserts."""

    def build(self, query: Query) -> str:
        rows = require_rows(query)
        values = ValuesClauseBuilder(self._runtime)
        parts = [f"INSERT INTO {self._ctx.table}", values.build(rows)]

        if query.operation is Operation.UPSERT:
            target = list(query.on_conflict)
            if not target:
                target, warning = default_conflict_target(self._ctx.table, self._ctx.profile)
                self._runtime.warn(warning)
            parts.append(
                ConflictClauseBuilder().build(
                    target,
                    values.columns(rows),
                    ignore=query.resolution == "ignore-duplicates",
                )
            )
        parts.append(self._returning(query))
        return " ".join(p for p in parts if p)


@BuilderRegistry.register("PATCH")
class UpdateStatementBuilder(StatementBuilder):
    """``UPDATE … SET … [WHERE …]``; warns when there is no WHERE."""

    def build(self, query: Query) -> str:
        assignments = require_assignments(query)
        if not query.filters:
            self._runtime.warn("UPDATE without WHERE clause will affect all rows")
        parts = [
            f"UPDATE {self._ctx.table}",
            SetClauseBuilder().build(assignments),
            self._where(query),
            self._returning(query),
        ]
        return " ".join(p for p in parts if p)


@BuilderRegistry.register("DELETE")
class DeleteStatementBuilder(StatementBuilder):
    """``DELETE FROM … WHERE …``; a filter is mandatory."""

    def build(self, query: Query) -> str:
        require_filters(query)
        parts = [f"DELETE FROM {self._ctx.table}", self._where(query), self._returning(query)]
        return " ".join(p for p in parts if p)


class SqlBuilder:
    """Builds a SQL statement from a validated Query.

    Args:
        profile: Conversion profile (FK convention, text-search default).
    """

    def __init__(self, profile: ConversionProfile | None = None) -> None:
        self._profile = profile or DEFAULT_PROFILE

    def build(self, query: Query) -> ConversionResult:
        """Build SQL for ``query``.

        Returns:
            :class:`ConversionResult` with the SQL in ``output`` and any
            convention warnings.

        Raises:
            SemanticError: No table, or a missing/invalid mutation body.
            UnsupportedError: RPC or an unknown operation.
        """
        if not query.table:
            raise SemanticError("query has no target table", code="NO_TABLE")
        ctx = CompilationContext(profile=self._profile, table=query.table)
        runtime = RuntimeContext()
        builder = BuilderRegistry.create(_statement_tag(query), ctx, runtime)
        sql = builder.build(query)
        logger.debug("built SQL for %s: %s", query.operation, sql)
        return ConversionResult(output=sql, warnings=runtime.warnings, metadata=runtime.metadata)


def _statement_tag(query: Query) -> str:
    if query.operation is Operation.RPC:
        return "RPC"
    return method_for(query.operation)
