"""SQL → Query IR using sqlglot.

sqlglot does the grammar work; this module walks the resulting tree and
accepts only the CRUD subset that has a PostgREST equivalent.  The select
list may hold columns, casts, JSON paths (``->`` / ``->>``) and the
aggregates PostgREST understands (count, sum, avg, min, max).  Anything else
(OR, CTEs, window functions, subqueries, GROUP BY, set operations, other
functions) raises :class:`UnsupportedError` rather than being approximated.
"""
from __future__ import annotations

import logging
from typing import Any

import sqlglot
from sqlglot import exp
from sqlglot.errors import ParseError, TokenError

from querybridge.errors import QuerySyntaxError, SemanticError, UnsupportedError
from querybridge.parse.scanner import check_length
from querybridge.schema.operators import OperatorTag
from querybridge.schema.profile import DEFAULT_PROFILE, ConversionProfile
from querybridge.schema.query import (
    EmbeddedResource,
    Filter,
    Operation,
    OrderSpec,
    Query,
)

logger = logging.getLogger(__name__)

#: sqlglot node key → operator tag for binary predicates.
BINARY_OPERATORS: dict[str, OperatorTag] = {
    "eq": OperatorTag.EQ,
    "neq": OperatorTag.NEQ,
    "gt": OperatorTag.GT,
    "gte": OperatorTag.GTE,
    "lt": OperatorTag.LT,
    "lte": OperatorTag.LTE,
    "like": OperatorTag.LIKE,
    "ilike": OperatorTag.ILIKE,
    "regexplike": OperatorTag.MATCH,
    "regexpilike": OperatorTag.IMATCH,
    "arraycontainsall": OperatorTag.CS,
    "arraycontains": OperatorTag.CS,
    "arraycontainedby": OperatorTag.CD,
    "arraycontained": OperatorTag.CD,
    "arrayoverlaps": OperatorTag.OV,
}

#: Aggregate node class → PostgREST aggregate name.
AGGREGATES_BY_CLASS: dict[type[exp.Expression], str] = {
    exp.Count: "count",
    exp.Sum: "sum",
    exp.Avg: "avg",
    exp.Min: "min",
    exp.Max: "max",
}
AGGREGATES = tuple(AGGREGATES_BY_CLASS)

#: Operator to use when the literal is on the left (``18 < age``).
_MIRRORED: dict[OperatorTag, OperatorTag] = {
    OperatorTag.EQ: OperatorTag.EQ,
    OperatorTag.NEQ: OperatorTag.NEQ,
    OperatorTag.GT: OperatorTag.LT,
    OperatorTag.GTE: OperatorTag.LTE,
    OperatorTag.LT: OperatorTag.GT,
    OperatorTag.LTE: OperatorTag.GTE,
}


def _arg(node: exp.Expression, *names: str) -> Any:
    """First present arg among ``names`` (sqlglot renamed some keys)."""
    for name in names:
        value = node.args.get(name)
        if value is not None:
            return value
    return None


def _unsupported(feature: str, code: str, node: exp.Expression | None = None) -> UnsupportedError:
    return UnsupportedError(
        f"{feature} is not supported",
        code=code,
        fragment=node.sql(dialect="postgres")[:80] if node is not None else "",
        hint="only single-table CRUD with AND-joined filters and simple joins converts to REST",
    )


class SqlParser:
    """Parses one SQL statement into a Query.

    Args:
        profile: Conversion profile; supplies the input length bound.

    Attributes:
        warnings: Non-fatal notes gathered during the last :meth:`parse`.
    """

    def __init__(self, profile: ConversionProfile | None = None) -> None:
        self._profile = profile or DEFAULT_PROFILE
        self.warnings: list[str] = []
        # alias/table name -> embed, for the statement being parsed
        self._embeds: dict[str, EmbeddedResource] = {}
        self._main_names: set[str] = set()

    def parse(self, sql: str) -> Query:
        """Parse ``sql``.

        Raises:
            QuerySyntaxError: ``INVALID_SQL`` when sqlglot cannot parse it.
            UnsupportedError: For statements or clauses with no REST form.
        """
        self.warnings = []
        self._embeds = {}
        self._main_names = set()
        check_length(sql, self._profile.max_input_length)

        try:
            statements = [s for s in sqlglot.parse(sql, read="postgres") if s is not None]
        except (ParseError, TokenError) as exc:
            raise QuerySyntaxError(
                f"failed to parse SQL: {exc}",
                code="INVALID_SQL",
                fragment=sql[:80],
            ) from exc
        if not statements:
            raise QuerySyntaxError("no SQL statement found", code="INVALID_SQL", fragment=sql[:80])
        if len(statements) > 1:
            raise UnsupportedError(
                f"{len(statements)} statements found; only one is converted at a time",
                code="MULTIPLE_STATEMENTS",
                fragment=sql[:80],
            )

        ast = statements[0]
        self._reject_global_features(ast)
        if isinstance(ast, exp.Select):
            query = self._parse_select(ast)
        elif isinstance(ast, exp.Insert):
            query = self._parse_insert(ast)
        elif isinstance(ast, exp.Update):
            query = self._parse_update(ast)
        elif isinstance(ast, exp.Delete):
            query = self._parse_delete(ast)
        else:
            raise _unsupported(f"{type(ast).__name__.upper()} statement", "UNSUPPORTED_STATEMENT", ast)
        logger.debug("parsed SQL %s on %s", query.operation, query.table)
        return query

    # ------------------------------------------------------------------
    # Whole-statement checks
    # ------------------------------------------------------------------

    def _reject_global_features(self, ast: exp.Expression) -> None:
        if isinstance(ast, (exp.Union, exp.Intersect, exp.Except)):
            raise _unsupported("set operation", "SET_OPERATION", ast)
        if ast.find(exp.CTE) is not None:
            raise _unsupported("WITH (CTE)", "CTE", ast)
        if ast.find(exp.Window) is not None:
            raise _unsupported("window function", "WINDOW_FUNCTION", ast)
        nested = [s for s in ast.find_all(exp.Select) if s is not ast]
        if nested or ast.find(exp.Subquery) is not None:
            raise _unsupported("subquery", "SUBQUERY", ast)

    # ------------------------------------------------------------------
    # SELECT
    # ------------------------------------------------------------------

    def _parse_select(self, node: exp.Select) -> Query:
        if _arg(node, "group"):
            raise _unsupported("GROUP BY", "GROUP_BY", node.args["group"])
        if _arg(node, "having"):
            raise _unsupported("HAVING", "HAVING", node.args["having"])
        if _arg(node, "distinct"):
            self.warnings.append("DISTINCT has no REST equivalent and was dropped")

        from_ = _arg(node, "from", "from_")
        if from_ is None or not isinstance(from_.this, exp.Table):
            raise SemanticError(
                "SELECT has no FROM table",
                code="NO_TABLE",
                fragment=node.sql(dialect="postgres")[:80],
            )
        table = self._register_main(from_.this)
        for join in _arg(node, "joins") or []:
            self._register_join(join)

        columns = self._select_columns(node)
        filters = self._where(node)
        order = self._order(node)
        limit = _int_arg(_arg(node, "limit"), "LIMIT", "INVALID_LIMIT")
        offset = _int_arg(_arg(node, "offset"), "OFFSET", "INVALID_OFFSET")
        return Query(
            table=table,
            operation=Operation.SELECT,
            columns=columns,
            embeds=list(self._embeds_in_order()),
            filters=filters,
            order=order,
            limit=limit,
            offset=offset,
        )

    def _register_main(self, table: exp.Table) -> str:
        name = _table_name(table)
        self._main_names = {name, table.name}
        if table.alias:
            self._main_names.add(table.alias)
        return name

    def _register_join(self, join: exp.Join) -> None:
        target = join.this
        if not isinstance(target, exp.Table):
            raise _unsupported("JOIN on a derived table", "SUBQUERY", join)
        side = (join.args.get("side") or "").upper()
        kind = (join.args.get("kind") or "").upper()
        if side in ("RIGHT", "FULL") or kind == "CROSS":
            raise _unsupported(f"{side or kind} JOIN", "UNSUPPORTED_JOIN", join)
        relation = target.name
        if target.alias:
            relation = f"{target.alias}:{relation}"
        if side != "LEFT":
            relation = f"{relation}!inner"
        embed = EmbeddedResource(relation=relation)
        self._embeds[target.alias or target.name] = embed
        self.warnings.append(
            f"JOIN condition on {target.name} dropped; PostgREST resolves the relationship"
        )

    def _embeds_in_order(self) -> list[EmbeddedResource]:
        seen: list[EmbeddedResource] = []
        for embed in self._embeds.values():
            if not embed.columns:
                embed.columns.append("*")
            seen.append(embed)
        return seen

    def _select_columns(self, node: exp.Select) -> list[str]:
        columns: list[str] = []
        for item in node.expressions:
            alias = ""
            target = item
            if isinstance(item, exp.Alias):
                alias, target = item.alias, item.this
            if isinstance(target, exp.Star):
                columns.append("*")
                continue
            if isinstance(target, exp.Cast) and isinstance(target.this, exp.Column):
                text = f"{target.this.name}::{target.to.sql(dialect='postgres').lower()}"
                owner = target.this.table
            elif isinstance(target, exp.Column):
                text = "*" if isinstance(target.this, exp.Star) else target.name
                owner = target.table
            elif isinstance(target, (exp.JSONExtract, exp.JSONExtractScalar)):
                column, text = _json_path(target, item)
                owner = column.table
            elif isinstance(target, AGGREGATES):
                text, owner = _aggregate(target, item)
            else:
                raise _unsupported("expression in the select list", "FUNCTION_IN_SELECT", item)
            if alias:
                text = f"{alias}:{text}"
            embed = self._owner_embed(owner)
            if embed is not None:
                embed.columns.append(text)
            else:
                columns.append(text)
        return columns

    def _owner_embed(self, owner: str) -> EmbeddedResource | None:
        if not owner or owner in self._main_names:
            return None
        embed = self._embeds.get(owner)
        if embed is None:
            raise SemanticError(
                f"column qualifier '{owner}' does not name a table in FROM or JOIN",
                code="UNKNOWN_TABLE",
                fragment=owner,
            )
        return embed

    def _order(self, node: exp.Select) -> list[OrderSpec]:
        order = _arg(node, "order")
        if order is None:
            return []
        specs: list[OrderSpec] = []
        for item in order.expressions:
            column = item.this if isinstance(item, exp.Ordered) else item
            if not isinstance(column, exp.Column):
                raise _unsupported("ORDER BY expression", "UNSUPPORTED_ORDER", item)
            desc = bool(item.args.get("desc"))
            nulls_first = bool(item.args.get("nulls_first"))
            # Postgres default: NULLS LAST ascending, NULLS FIRST descending.
            spec = OrderSpec(
                column=column.name,
                descending=desc,
                nulls_first=nulls_first and not desc,
                nulls_last=not nulls_first and desc,
            )
            embed = self._owner_embed(column.table)
            if embed is not None:
                embed.order.append(spec)
            else:
                specs.append(spec)
        return specs

    # ------------------------------------------------------------------
    # WHERE
    # ------------------------------------------------------------------

    def _where(self, node: exp.Expression) -> list[Filter]:
        where = _arg(node, "where")
        if where is None:
            return []
        filters: list[Filter] = []
        for condition in _conjuncts(where.this):
            for column, flt in self._condition(condition, negated=False):
                embed = self._owner_embed(column.table)
                if embed is not None:
                    embed.filters.append(flt)
                else:
                    filters.append(flt)
        return filters

    def _condition(self, node: exp.Expression, negated: bool) -> list[tuple[exp.Column, Filter]]:
        # Newer sqlglot folds IS NOT / NOT LIKE / NOT IN into a negate flag.
        if node.args.get("negate"):
            negated = not negated
        if isinstance(node, exp.Paren):
            inner = _conjuncts(node.this)
            if len(inner) != 1:
                if negated:
                    raise _unsupported("NOT over a group of conditions", "NESTED_LOGIC", node)
                return [pair for part in inner for pair in self._condition(part, negated)]
            return self._condition(inner[0], negated)
        if isinstance(node, exp.Or):
            raise _unsupported("OR condition", "OR_CONDITION", node)
        if isinstance(node, exp.And):
            raise _unsupported("NOT over a group of conditions", "NESTED_LOGIC", node)
        if isinstance(node, exp.Not):
            return self._condition(node.this, not negated)
        if isinstance(node, exp.Between):
            if negated:
                raise _unsupported("NOT BETWEEN", "NESTED_LOGIC", node)
            column = _column(node.this, node)
            return [
                (column, Filter(column=column.name, operator=OperatorTag.GTE, value=_literal(node.args["low"]))),
                (column, Filter(column=column.name, operator=OperatorTag.LTE, value=_literal(node.args["high"]))),
            ]
        if isinstance(node, exp.In):
            if _arg(node, "query") is not None:
                raise _unsupported("IN (subquery)", "SUBQUERY", node)
            column = _column(node.this, node)
            values = [_literal(v) for v in node.expressions]
            return [(column, Filter(column=column.name, operator=OperatorTag.IN, value=values, negated=negated))]
        if isinstance(node, exp.Is):
            column = _column(node.this, node)
            return [(column, Filter(column=column.name, operator=OperatorTag.IS, value=_literal(node.expression), negated=negated))]

        tag = BINARY_OPERATORS.get(node.key)
        if tag is None or not isinstance(node, exp.Binary):
            raise _unsupported(f"condition '{node.key}'", "UNSUPPORTED_OPERATOR", node)
        left, right = node.left, node.right
        if not isinstance(left, exp.Column) and isinstance(right, exp.Column) and tag in _MIRRORED:
            left, right, tag = right, left, _MIRRORED[tag]
        column = _column(left, node)
        return [(column, Filter(column=column.name, operator=tag, value=_literal(right), negated=negated))]

    # ------------------------------------------------------------------
    # INSERT / UPDATE / DELETE
    # ------------------------------------------------------------------

    def _parse_insert(self, node: exp.Insert) -> Query:
        target = node.this
        if isinstance(target, exp.Schema):
            table_node = target.this
            columns = [c.name for c in target.expressions]
        else:
            table_node, columns = target, []
        table = self._register_main(table_node)

        values = node.expression
        if not isinstance(values, exp.Values):
            raise _unsupported("INSERT without VALUES", "SUBQUERY", node)
        if not columns:
            raise SemanticError(
                "INSERT must list its columns",
                code="INVALID_BODY_SHAPE",
                fragment=node.sql(dialect="postgres")[:80],
                hint="write INSERT INTO t (col1, col2) VALUES (...)",
            )
        rows: list[dict[str, Any]] = []
        for row in values.expressions:
            cells = row.expressions if isinstance(row, exp.Tuple) else [row]
            if len(cells) != len(columns):
                raise SemanticError(
                    f"VALUES row has {len(cells)} value(s) for {len(columns)} column(s)",
                    code="INVALID_BODY_SHAPE",
                    fragment=row.sql(dialect="postgres")[:80],
                )
            rows.append({col: _literal(cell) for col, cell in zip(columns, cells)})

        fields: dict[str, Any] = {
            "table": table,
            "operation": Operation.INSERT,
            "body": rows[0] if len(rows) == 1 else rows,
        }
        fields.update(_returning(node))
        conflict = _arg(node, "conflict")
        if conflict is not None:
            keys = _arg(conflict, "conflict_keys", "expressions") or []
            fields["operation"] = Operation.UPSERT
            # Keys arrive as Column, Identifier or Ordered(Column) by sqlglot release.
            keys = [k.this if isinstance(k, exp.Ordered) else k for k in keys]
            fields["on_conflict"] = [k.name for k in keys if isinstance(k, (exp.Column, exp.Identifier))]
            nothing = "DO NOTHING" in conflict.sql(dialect="postgres").upper()
            fields["resolution"] = "ignore-duplicates" if nothing else "merge-duplicates"
        return Query(**fields)

    def _parse_update(self, node: exp.Update) -> Query:
        table = self._register_main(node.this)
        body: dict[str, Any] = {}
        for assignment in node.expressions:
            if not isinstance(assignment, exp.EQ) or not isinstance(assignment.left, exp.Column):
                raise _unsupported("SET expression", "UNSUPPORTED_EXPRESSION", assignment)
            body[assignment.left.name] = _literal(assignment.right)
        return Query(
            table=table,
            operation=Operation.UPDATE,
            body=body,
            filters=self._where(node),
            **_returning(node),
        )

    def _parse_delete(self, node: exp.Delete) -> Query:
        table = self._register_main(node.this)
        return Query(
            table=table,
            operation=Operation.DELETE,
            filters=self._where(node),
            **_returning(node),
        )


# ---------------------------------------------------------------------------
# Node helpers
# ---------------------------------------------------------------------------


def _conjuncts(node: exp.Expression) -> list[exp.Expression]:
    """Flatten an AND tree, looking through parentheses."""
    while isinstance(node, exp.Paren) and isinstance(node.this, exp.And):
        node = node.this
    if isinstance(node, exp.And):
        return [part for child in node.flatten() for part in _conjuncts(child)]
    return [node]


def _returning(node: exp.Expression) -> dict[str, Any]:
    """Map a RETURNING clause onto ``return_representation`` and ``columns``."""
    returning = _arg(node, "returning")
    if returning is None:
        return {}
    columns: list[str] = []
    for item in returning.expressions:
        target = item.this if isinstance(item, exp.Alias) else item
        if isinstance(target, exp.Star) or (isinstance(target, exp.Column) and target.is_star):
            columns.append("*")
        elif isinstance(target, exp.Column):
            columns.append(f"{item.alias}:{target.name}" if isinstance(item, exp.Alias) else target.name)
        else:
            raise _unsupported("expression in RETURNING", "FUNCTION_IN_SELECT", item)
    return {"return_representation": True, "columns": columns}


def _aggregate(node: exp.Expression, item: exp.Expression) -> tuple[str, str]:
    """``count(*)`` → ``count()``, ``sum(amount)`` → ``amount.sum()``."""
    name = next(n for cls, n in AGGREGATES_BY_CLASS.items() if isinstance(node, cls))
    arg = node.this
    if isinstance(node, exp.Count) and (arg is None or isinstance(arg, exp.Star)):
        return "count()", ""
    if not isinstance(arg, exp.Column) or isinstance(arg.this, exp.Star) or node.expressions:
        raise _unsupported(f"{name}() over an expression", "FUNCTION_IN_SELECT", item)
    return f"{arg.name}.{name}()", arg.table


def _json_path(node: exp.Expression, item: exp.Expression) -> tuple[exp.Column, str]:
    """``data->'a'->>'b'`` → ``data->a->>b``."""
    base = node.this
    if isinstance(base, (exp.JSONExtract, exp.JSONExtractScalar)):
        column, prefix = _json_path(base, item)
    elif isinstance(base, exp.Column):
        column, prefix = base, base.name
    else:
        raise _unsupported("JSON path on an expression", "FUNCTION_IN_SELECT", item)

    path = node.expression
    if isinstance(path, exp.JSONPath):
        keys = [
            str(part.this)
            for part in path.expressions
            if isinstance(part, (exp.JSONPathKey, exp.JSONPathSubscript))
        ]
    elif isinstance(path, exp.Literal):
        keys = [str(path.this)]
    else:
        keys = []
    if not keys:
        raise _unsupported("JSON path with a computed key", "FUNCTION_IN_SELECT", item)

    arrow = "->>" if isinstance(node, exp.JSONExtractScalar) else "->"
    steps = [f"->{key}" for key in keys[:-1]] + [f"{arrow}{keys[-1]}"]
    return column, prefix + "".join(steps)


def _table_name(table: exp.Table) -> str:
    return f"{table.db}.{table.name}" if table.db else table.name


def _column(node: exp.Expression, context: exp.Expression) -> exp.Column:
    if not isinstance(node, exp.Column):
        raise _unsupported("condition on an expression", "UNSUPPORTED_EXPRESSION", context)
    return node


def _literal(node: exp.Expression) -> Any:
    """Convert a literal node into a Python value."""
    if isinstance(node, exp.Paren):
        return _literal(node.this)
    if isinstance(node, exp.Cast):
        return _literal(node.this)
    if isinstance(node, exp.Null):
        return None
    if isinstance(node, exp.Boolean):
        return bool(node.this)
    if isinstance(node, exp.Neg):
        value = _literal(node.this)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return -value
    if isinstance(node, exp.Literal):
        if node.is_string:
            return node.this
        text = node.this
        try:
            return int(text)
        except ValueError:
            return float(text)
    if isinstance(node, exp.Array):
        return [_literal(v) for v in node.expressions]
    raise _unsupported("non-literal value", "UNSUPPORTED_EXPRESSION", node)


def _int_arg(node: exp.Expression | None, clause: str, code: str) -> int | None:
    if node is None:
        return None
    value_node = _arg(node, "expression", "this")
    value = _literal(value_node) if value_node is not None else None
    if not isinstance(value, int) or isinstance(value, bool) or value < 0:
        raise QuerySyntaxError(
            f"{clause} must be a non-negative integer literal",
            code=code,
            fragment=node.sql(dialect="postgres"),
        )
    return value


def parse_sql(sql: str, profile: ConversionProfile | None = None) -> Query:
    """Convenience wrapper: parse ``sql`` with a fresh :class:`SqlParser`."""
    return SqlParser(profile).parse(sql)
