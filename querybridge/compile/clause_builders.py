"""Clause-level SQL builders.

Each class handles exactly one SQL clause and receives the shared
:class:`CompilationContext` (static settings) and :class:`RuntimeContext`
(warnings and metadata for this build).  Every value is formatted by
:func:`~querybridge.schema.operators.literalize`.

Classes
-------
SelectClauseBuilder    - ``SELECT <columns>``
FromClauseBuilder      - ``FROM <table> [LEFT JOIN … ON …]``
WhereClauseBuilder     - ``WHERE <cond> AND …``
GroupByClauseBuilder   - ``GROUP BY <plain columns>`` beside aggregates
OrderByClauseBuilder   - ``ORDER BY <col> [DESC] [NULLS FIRST|LAST]``
SetClauseBuilder       - ``SET <col> = <value>, …``
ValuesClauseBuilder    - ``(<cols>) VALUES (…), (…)``
ConflictClauseBuilder  - ``ON CONFLICT (…) DO UPDATE SET … | DO NOTHING``
"""
from __future__ import annotations

import re
from collections.abc import Iterator
from typing import Any

from querybridge.compile.context import CompilationContext, RuntimeContext
from querybridge.compile.conventions import assume_foreign_key, split_relation
from querybridge.errors import UnsupportedError
from querybridge.schema.operators import (
    OPERATOR_TABLE,
    OperatorTag,
    is_full_text,
    is_keyword,
    literalize,
)
from querybridge.schema.query import (
    EmbeddedResource,
    Filter,
    LogicalOp,
    OrderSpec,
    Query,
)

# ``alias:column`` where the colon is not part of a ``::`` cast.
_ALIAS_RE = re.compile(r"^(?P<alias>[A-Za-z_$][\w$]*):(?!:)(?P<column>.+)$")
# ``count()`` or ``<column>.<fn>()``.
_AGGREGATE_RE = re.compile(r"^(?:(?P<column>[^()]+)\.)?(?P<fn>count|sum|avg|min|max)\(\)$")
_JSON_ARROW_RE = re.compile(r"(->>?)")


def walk_embeds(
    embeds: list[EmbeddedResource], parent: str
) -> Iterator[tuple[str, str, EmbeddedResource]]:
    """Yield ``(parent_name, embed_name, embed)`` depth-first."""
    for embed in embeds:
        name = split_relation(embed.relation).name
        yield parent, name, embed
        yield from walk_embeds(embed.embeds, name)


def render_column(entry: str, qualifier: str | None = None) -> str:
    """Render a select-list entry, optionally table-qualified.

    ``alias:col`` becomes ``col AS alias``; ``*`` becomes ``t.*`` when
    qualified; entries that already contain a ``.`` are left unqualified.
    Aggregates (``amount.sum()``, ``count()``) become function calls and
    JSON paths (``data->a->>b``) get their keys quoted.
    """
    alias = None
    m = _ALIAS_RE.match(entry)
    if m:
        alias, entry = m.group("alias"), m.group("column")
    agg = _AGGREGATE_RE.match(entry)
    if agg:
        column = agg.group("column")
        entry = f"{agg.group('fn')}({_qualify(column, qualifier) if column else '*'})"
    else:
        entry = _json_path_sql(_qualify(entry, qualifier))
    return f"{entry} AS {alias}" if alias else entry


def is_aggregate(entry: str) -> bool:
    m = _ALIAS_RE.match(entry)
    return _AGGREGATE_RE.match(m.group("column") if m else entry) is not None


def _qualify(entry: str, qualifier: str | None) -> str:
    return f"{qualifier}.{entry}" if qualifier and "." not in entry else entry


def _json_path_sql(entry: str) -> str:
    if "->" not in entry:
        return entry
    entry, sep, cast = entry.partition("::")
    base, *steps = _JSON_ARROW_RE.split(entry)
    parts = [base]
    for arrow, key in zip(steps[::2], steps[1::2]):
        parts.append(arrow + literalize(int(key) if key.isdigit() else key, sniff=False))
    return "".join(parts) + sep + cast


class SelectClauseBuilder:
    """Builds the ``SELECT …`` clause."""

    def __init__(self, ctx: CompilationContext, runtime: RuntimeContext) -> None:
        self._ctx = ctx
        self._runtime = runtime

    def build(self, query: Query) -> str:
        if not query.embeds:
            columns = query.columns or ["*"]
            return "SELECT " + ", ".join(render_column(c) for c in columns)

        items = [render_column(c, self._ctx.table) for c in query.columns]
        for _, name, embed in walk_embeds(query.embeds, self._ctx.table):
            items.extend(render_column(c, name) for c in (embed.columns or ["*"]))
        return "SELECT " + ", ".join(items)


class FromClauseBuilder:
    """Builds ``FROM <table>`` plus one guessed JOIN per embedded resource."""

    def __init__(self, ctx: CompilationContext, runtime: RuntimeContext) -> None:
        self._ctx = ctx
        self._runtime = runtime

    def build(self, query: Query) -> str:
        parts = [f"FROM {self._ctx.table}"]
        for parent, _, embed in walk_embeds(query.embeds, self._ctx.table):
            guess = assume_foreign_key(parent, embed.relation, self._ctx.profile)
            ref = guess.relation
            target = f"{ref.table} AS {ref.alias}" if ref.alias else ref.table
            join = "INNER JOIN" if ref.inner else "LEFT JOIN"
            parts.append(f"{join} {target} ON {guess.condition}")
            self._runtime.warn(guess.warning)
            self._runtime.annotate("fk_convention", guess.convention)
            if embed.limit is not None:
                self._runtime.warn(
                    f"limit on embedded resource '{ref.name}' has no SQL equivalent and was dropped"
                )
        return " ".join(parts)


class WhereClauseBuilder:
    """Builds ``WHERE`` from AND-joined filters.

    Filters are given as ``(qualifier, filter)`` pairs; a ``None``
    qualifier leaves the column as written.
    """

    def __init__(self, ctx: CompilationContext, runtime: RuntimeContext) -> None:
        self._ctx = ctx
        self._runtime = runtime

    def build(self, filters: list[tuple[str | None, Filter]]) -> str:
        if not filters:
            return ""
        return "WHERE " + " AND ".join(self.condition(f, q) for q, f in filters)

    def condition(self, flt: Filter, qualifier: str | None = None) -> str:
        """Render a single filter as a SQL condition.

        Raises:
            UnsupportedError: ``OR_CONDITION`` for an OR-joined filter.
            QuerySyntaxError: ``INVALID_IS_VALUE`` for a bad ``is`` operand.
        """
        if flt.logical is LogicalOp.OR:
            raise UnsupportedError(
                "OR conditions are not supported",
                code="OR_CONDITION",
                fragment=flt.column,
                hint="rewrite the condition as separate AND-joined filters",
            )
        column = render_column(flt.column, qualifier)
        if flt.operator is OperatorTag.IS:
            keyword = is_keyword(flt.value)
            return f"{column} IS NOT {keyword}" if flt.negated else f"{column} IS {keyword}"

        spec = OPERATOR_TABLE[flt.operator]
        config = flt.config
        if config is None and is_full_text(flt.operator):
            config = self._ctx.profile.text_search_config
        value = literalize(flt.value, flt.operator, config=config)
        cond = f"{column} {spec.sql} {value}"
        return f"NOT ({cond})" if flt.negated else cond


class GroupByClauseBuilder:
    """Builds ``GROUP BY`` when aggregates sit beside plain columns.

    PostgREST groups by every non-aggregate column in the select list; SQL
    needs that spelled out.
    """

    def __init__(self, ctx: CompilationContext) -> None:
        self._ctx = ctx

    def build(self, query: Query) -> str:
        qualify = self._ctx.table if query.embeds else None
        entries = [(qualify, c) for c in query.columns]
        for _, name, embed in walk_embeds(query.embeds, self._ctx.table):
            entries.extend((name, c) for c in embed.columns)
        if not any(is_aggregate(c) for _, c in entries):
            return ""
        plain = [
            render_column(_ALIAS_RE.sub(r"\g<column>", c), q)
            for q, c in entries
            if c != "*" and not is_aggregate(c)
        ]
        return "GROUP BY " + ", ".join(plain) if plain else ""


class OrderByClauseBuilder:
    """Builds ``ORDER BY`` from ``(qualifier, OrderSpec)`` pairs."""

    def build(self, order: list[tuple[str | None, OrderSpec]]) -> str:
        if not order:
            return ""
        return "ORDER BY " + ", ".join(self._item(spec, q) for q, spec in order)

    def _item(self, spec: OrderSpec, qualifier: str | None) -> str:
        parts = [render_column(spec.column, qualifier)]
        if spec.descending:
            parts.append("DESC")
        if spec.nulls_first:
            parts.append("NULLS FIRST")
        elif spec.nulls_last:
            parts.append("NULLS LAST")
        return " ".join(parts)


class SetClauseBuilder:
    """Builds ``SET col = value, …`` for UPDATE."""

    def build(self, assignments: dict[str, Any]) -> str:
        pairs = [f"{col} = {literalize(val, sniff=False)}" for col, val in assignments.items()]
        return "SET " + ", ".join(pairs)


class ValuesClauseBuilder:
    """Builds ``(cols) VALUES (…), …`` for INSERT.

    Columns come from the first row in first-seen order; later rows missing
    a column get ``NULL`` and extra columns in later rows are dropped with
    a warning.
    """

    def __init__(self, runtime: RuntimeContext) -> None:
        self._runtime = runtime

    def columns(self, rows: list[dict[str, Any]]) -> list[str]:
        return list(rows[0])

    def build(self, rows: list[dict[str, Any]]) -> str:
        columns = self.columns(rows)
        known = set(columns)
        tuples: list[str] = []
        for index, row in enumerate(rows):
            extra = [c for c in row if c not in known]
            if extra:
                self._runtime.warn(
                    f"row {index} has column(s) not in the first row and they were dropped: "
                    + ", ".join(extra)
                )
            values = [literalize(row[c], sniff=False) if c in row else "NULL" for c in columns]
            tuples.append("(" + ", ".join(values) + ")")
        return f"({', '.join(columns)}) VALUES " + ", ".join(tuples)


class ConflictClauseBuilder:
    """Builds ``ON CONFLICT (…) DO UPDATE SET …`` or ``DO NOTHING``."""

    def build(self, target: list[str], columns: list[str], ignore: bool) -> str:
        head = f"ON CONFLICT ({', '.join(target)})"
        updates = [c for c in columns if c not in target]
        if ignore or not updates:
            return f"{head} DO NOTHING"
        return f"{head} DO UPDATE SET " + ", ".join(f"{c} = EXCLUDED.{c}" for c in updates)
