"""Client method chain → Query IR.

Parsing happens in two passes.  :func:`classify` turns each tokenized
:class:`~querybridge.parse.dsl_tokenizer.MethodCall` into a typed variant
(``FilterCall``, ``OrderCall``...), checking argument shapes as it goes.
:class:`DslParser` then folds the variants into a ``Query`` with one
``isinstance`` dispatch, so every variant is handled in exactly one place.
"""
from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Union

from querybridge.errors import QuerySyntaxError, SemanticError, UnsupportedError
from querybridge.parse.dsl_tokenizer import MethodCall, TokenizedChain, tokenize
from querybridge.parse.rest_parser import find_embed, parse_select
from querybridge.schema.operators import (
    OPERATOR_TABLE,
    OperatorTag,
    decode_token,
    parse_operator,
)
from querybridge.schema.profile import DEFAULT_PROFILE, ConversionProfile
from querybridge.schema.query import (
    EmbeddedResource,
    Filter,
    Operation,
    OrderSpec,
    Query,
    RangeSpec,
    ServiceCall,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Call variants
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TableCall:
    table: str


@dataclass(frozen=True)
class RpcCall:
    function: str
    params: dict[str, Any] | None = None


@dataclass(frozen=True)
class SelectCall:
    columns: str = "*"


@dataclass(frozen=True)
class FilterCall:
    column: str
    operator: OperatorTag
    value: Any = None
    config: str | None = None
    negated: bool = False


@dataclass(frozen=True)
class NotCall:
    """``.not(column, operator, value)``."""

    column: str
    operator: OperatorTag
    value: Any = None


@dataclass(frozen=True)
class MatchCall:
    """``.match({col: value, ...})``: one equality filter per key."""

    values: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class OrderCall:
    column: str
    descending: bool = False
    nulls_first: bool = False
    nulls_last: bool = False
    relation: str | None = None


@dataclass(frozen=True)
class LimitCall:
    count: int
    relation: str | None = None


@dataclass(frozen=True)
class RangeCall:
    start: int
    end: int


@dataclass(frozen=True)
class SingleCall:
    maybe: bool = False


@dataclass(frozen=True)
class CountCall:
    mode: str


@dataclass(frozen=True)
class MutationCall:
    operation: Operation
    body: Any
    on_conflict: tuple[str, ...] = ()
    ignore_duplicates: bool = False


@dataclass(frozen=True)
class DeleteCall:
    pass


@dataclass(frozen=True)
class UnknownCall:
    name: str


CallVariant = Union[
    TableCall,
    RpcCall,
    SelectCall,
    FilterCall,
    NotCall,
    MatchCall,
    OrderCall,
    LimitCall,
    RangeCall,
    SingleCall,
    CountCall,
    MutationCall,
    DeleteCall,
    UnknownCall,
]

# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

#: DSL keyword → operator tag, derived from the operator table.
KEYWORD_OPERATORS: dict[str, OperatorTag] = {
    spec.dsl_method: tag
    for tag, spec in OPERATOR_TABLE.items()
    if spec.dsl_method and spec.dsl_method != "textSearch"
}
KEYWORD_OPERATORS.update({"match": OperatorTag.MATCH, "imatch": OperatorTag.IMATCH})

#: ``textSearch`` ``type`` option → full-text tag.
TEXT_SEARCH_TYPES: dict[str | None, OperatorTag] = {
    None: OperatorTag.FTS,
    "plain": OperatorTag.PLFTS,
    "phrase": OperatorTag.PHFTS,
    "websearch": OperatorTag.WFTS,
}

_COUNT_MODES: frozenset[str] = frozenset({"exact", "planned", "estimated"})

Classifier = Callable[[MethodCall], list[CallVariant]]
_CLASSIFIERS: dict[str, Classifier] = {}


def _classifier(*names: str) -> Callable[[Classifier], Classifier]:
    def decorator(fn: Classifier) -> Classifier:
        for name in names:
            _CLASSIFIERS[name] = fn
        return fn

    return decorator


def classify(call: MethodCall) -> list[CallVariant]:
    """Classify one method call into zero or more variants."""
    classifier = _CLASSIFIERS.get(call.name)
    if classifier is None:
        if call.name in KEYWORD_OPERATORS:
            return [_keyword_filter(call)]
        return [UnknownCall(name=call.name)]
    return classifier(call)


def _keyword_filter(call: MethodCall) -> FilterCall:
    column, value = _args(call, 2)
    return FilterCall(
        column=_column(call, column),
        operator=KEYWORD_OPERATORS[call.name],
        value=_filter_value(value, KEYWORD_OPERATORS[call.name]),
    )


@_classifier("from")
def _classify_from(call: MethodCall) -> list[CallVariant]:
    (table,) = _args(call, 1)
    if not isinstance(table, str) or not table:
        raise QuerySyntaxError(
            "from() needs a table name",
            code="MALFORMED_CHAIN",
            fragment=f"from({call.raw_args})",
        )
    return [TableCall(table=table)]


@_classifier("rpc")
def _classify_rpc(call: MethodCall) -> list[CallVariant]:
    function, params = _args(call, 1, 2)
    if not isinstance(function, str) or not function:
        raise QuerySyntaxError(
            "rpc() needs a function name",
            code="MALFORMED_CHAIN",
            fragment=f"rpc({call.raw_args})",
        )
    return [RpcCall(function=function, params=params if isinstance(params, dict) else None)]


@_classifier("select")
def _classify_select(call: MethodCall) -> list[CallVariant]:
    columns, options = _args(call, 0, 2)
    variants: list[CallVariant] = [SelectCall(columns=columns if isinstance(columns, str) and columns else "*")]
    mode = _options(options).get("count")
    if mode is not None:
        variants.append(CountCall(mode=_count_mode(call, mode)))
    return variants


@_classifier("not")
def _classify_not(call: MethodCall) -> list[CallVariant]:
    column, operator, value = _args(call, 3)
    if not isinstance(operator, str):
        raise _invalid_filter(call, "operator must be a string")
    tag, _ = parse_operator(operator)
    return [NotCall(column=_column(call, column), operator=tag, value=_filter_value(value, tag))]


@_classifier("filter")
def _classify_filter(call: MethodCall) -> list[CallVariant]:
    column, operator, value = _args(call, 3)
    if not isinstance(operator, str):
        raise _invalid_filter(call, "operator must be a string")
    negated = operator.startswith("not.")
    tag, config = parse_operator(operator[4:] if negated else operator)
    return [
        FilterCall(
            column=_column(call, column),
            operator=tag,
            value=_filter_value(value, tag),
            config=config,
            negated=negated,
        )
    ]


@_classifier("match")
def _classify_match(call: MethodCall) -> list[CallVariant]:
    if len(call.args) == 1 and isinstance(call.args[0], dict):
        return [MatchCall(values=dict(call.args[0]))]
    return [_keyword_filter(call)]


@_classifier("textSearch")
def _classify_text_search(call: MethodCall) -> list[CallVariant]:
    column, query, options = _args(call, 2, 3)
    opts = _options(options)
    search_type = opts.get("type")
    if search_type not in TEXT_SEARCH_TYPES:
        raise _invalid_filter(call, f"unknown textSearch type '{search_type}'")
    config = opts.get("config")
    return [
        FilterCall(
            column=_column(call, column),
            operator=TEXT_SEARCH_TYPES[search_type],
            value=query,
            config=config if isinstance(config, str) else None,
        )
    ]


@_classifier("or")
def _classify_or(call: MethodCall) -> list[CallVariant]:
    raise UnsupportedError(
        "OR conditions are not supported",
        code="OR_CONDITION",
        fragment=f"or({call.raw_args})",
        hint="rewrite the condition as separate AND-joined filters",
    )


@_classifier("order")
def _classify_order(call: MethodCall) -> list[CallVariant]:
    column, options = _args(call, 1, 2)
    if not isinstance(column, str) or not column:
        raise QuerySyntaxError(
            "order() needs a column name",
            code="INVALID_ORDER",
            fragment=f"order({call.raw_args})",
        )
    opts = _options(options)
    nulls_first = opts.get("nullsFirst")
    return [
        OrderCall(
            column=column,
            descending=opts.get("ascending", True) is False,
            nulls_first=nulls_first is True,
            nulls_last=nulls_first is False,
            relation=_relation_option(opts),
        )
    ]


@_classifier("limit")
def _classify_limit(call: MethodCall) -> list[CallVariant]:
    count, options = _args(call, 1, 2)
    if not _is_count(count):
        raise QuerySyntaxError(
            f"limit must be a non-negative integer, got {call.raw_args}",
            code="INVALID_LIMIT",
            fragment=f"limit({call.raw_args})",
        )
    return [LimitCall(count=count, relation=_relation_option(_options(options)))]


@_classifier("range")
def _classify_range(call: MethodCall) -> list[CallVariant]:
    start, end, _ = _args(call, 2, 3)
    if not (_is_count(start) and _is_count(end)) or end < start:
        raise QuerySyntaxError(
            f"range needs two integers with from <= to, got {call.raw_args}",
            code="INVALID_RANGE",
            fragment=f"range({call.raw_args})",
        )
    return [RangeCall(start=start, end=end)]


@_classifier("single", "maybeSingle")
def _classify_single(call: MethodCall) -> list[CallVariant]:
    return [SingleCall(maybe=call.name == "maybeSingle")]


@_classifier("insert", "update", "upsert")
def _classify_mutation(call: MethodCall) -> list[CallVariant]:
    body, options = _args(call, 1, 2)
    if not isinstance(body, (dict, list)):
        raise QuerySyntaxError(
            f"{call.name}() body is not a literal object or array",
            code="INVALID_BODY",
            fragment=call.raw_args[:40],
            hint="inline the values, e.g. insert({ name: 'Alice' })",
        )
    opts = _options(options)
    variants: list[CallVariant] = []
    on_conflict = opts.get("onConflict")
    variants.append(
        MutationCall(
            operation=Operation(call.name),
            body=body,
            on_conflict=tuple(c.strip() for c in on_conflict.split(",") if c.strip())
            if isinstance(on_conflict, str)
            else (),
            ignore_duplicates=opts.get("ignoreDuplicates") is True,
        )
    )
    if opts.get("count") is not None:
        variants.append(CountCall(mode=_count_mode(call, opts["count"])))
    return variants


@_classifier("delete")
def _classify_delete(call: MethodCall) -> list[CallVariant]:
    (options,) = _args(call, 0, 1)
    variants: list[CallVariant] = [DeleteCall()]
    mode = _options(options).get("count")
    if mode is not None:
        variants.append(CountCall(mode=_count_mode(call, mode)))
    return variants


# ---------------------------------------------------------------------------
# Argument helpers
# ---------------------------------------------------------------------------


def _args(call: MethodCall, minimum: int, maximum: int | None = None) -> tuple[Any, ...]:
    """Return exactly ``maximum`` args, padding optional ones with ``None``."""
    maximum = minimum if maximum is None else maximum
    if not minimum <= len(call.args) <= maximum:
        expected = str(minimum) if minimum == maximum else f"{minimum}-{maximum}"
        raise QuerySyntaxError(
            f"{call.name}() takes {expected} argument(s), got {len(call.args)}",
            code="INVALID_FILTER" if call.name in KEYWORD_OPERATORS else "MALFORMED_CHAIN",
            fragment=f"{call.name}({call.raw_args})",
        )
    return call.args + (None,) * (maximum - len(call.args))


def _column(call: MethodCall, column: Any) -> str:
    if not isinstance(column, str) or not column:
        raise _invalid_filter(call, "column must be a non-empty string")
    return column


def _filter_value(value: Any, tag: OperatorTag) -> Any:
    # Wire-form strings such as '(1,2)' for in() decode like query-string tokens.
    if isinstance(value, str) and tag is OperatorTag.IN:
        return decode_token(value, tag)
    return value


def _options(options: Any) -> dict[str, Any]:
    return options if isinstance(options, dict) else {}


def _relation_option(opts: dict[str, Any]) -> str | None:
    relation = opts.get("referencedTable", opts.get("foreignTable"))
    return relation if isinstance(relation, str) and relation else None


def _count_mode(call: MethodCall, mode: Any) -> str:
    if mode not in _COUNT_MODES:
        raise QuerySyntaxError(
            f"unknown count mode '{mode}'",
            code="MALFORMED_CHAIN",
            fragment=f"{call.name}({call.raw_args})",
            hint="use exact, planned or estimated",
        )
    return mode


def _is_count(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def _invalid_filter(call: MethodCall, reason: str) -> QuerySyntaxError:
    return QuerySyntaxError(
        f"invalid {call.name}() call: {reason}",
        code="INVALID_FILTER",
        fragment=f"{call.name}({call.raw_args})",
    )


# ---------------------------------------------------------------------------
# Folding
# ---------------------------------------------------------------------------


@dataclass
class _ChainState:
    """Mutable accumulator for one fold."""

    table: str | None = None
    operation: Operation | None = None
    columns: list[str] = field(default_factory=list)
    embeds: list[EmbeddedResource] = field(default_factory=list)
    filters: list[Filter] = field(default_factory=list)
    order: list[OrderSpec] = field(default_factory=list)
    limit: int | None = None
    range: RangeSpec | None = None
    body: Any = None
    single: bool = False
    maybe_single: bool = False
    count: str | None = None
    on_conflict: list[str] = field(default_factory=list)
    resolution: str | None = None
    rpc_function: str | None = None
    return_representation: bool = False

    def to_query(self) -> Query:
        return Query(**vars(self))


class DslParser:
    """Parses one client expression into a Query.

    Args:
        profile: Conversion profile; ``strict_methods`` turns unknown
            methods into errors.

    Attributes:
        warnings: Non-fatal notes gathered during the last :meth:`parse`.
    """

    def __init__(self, profile: ConversionProfile | None = None) -> None:
        self._profile = profile or DEFAULT_PROFILE
        self.warnings: list[str] = []

    def parse(self, text: str) -> Query:
        """Tokenize, classify and fold ``text``.

        Raises:
            QuerySyntaxError: Malformed chain or arguments.
            UnsupportedError: ``or()``, or an unknown method in strict mode.
            SemanticError: A modifier names a relation that is not embedded.
        """
        self.warnings = []
        chain = tokenize(text, self._profile)
        if chain.root in ("auth", "storage"):
            return Query(service=_service_call(chain))

        state = _ChainState()
        for call in chain.calls:
            for variant in classify(call):
                self._apply(state, variant)

        if state.table is not None and state.operation is None:
            state.operation = Operation.SELECT
        if state.operation is Operation.SELECT and not state.columns and not state.embeds:
            state.columns = ["*"]
        query = state.to_query()
        logger.debug(
            "parsed DSL chain: table=%s operation=%s filters=%d",
            query.table, query.operation, len(query.filters),
        )
        return query

    def _apply(self, state: _ChainState, variant: CallVariant) -> None:
        max_depth = self._profile.max_nesting_depth
        if isinstance(variant, TableCall):
            state.table = variant.table
        elif isinstance(variant, RpcCall):
            state.operation = Operation.RPC
            state.rpc_function = variant.function
            state.body = variant.params
        elif isinstance(variant, SelectCall):
            if state.operation in (Operation.INSERT, Operation.UPDATE, Operation.UPSERT, Operation.DELETE):
                state.return_representation = True
            elif state.operation is None:
                state.operation = Operation.SELECT
            state.columns, state.embeds = parse_select(variant.columns, max_depth)
        elif isinstance(variant, FilterCall):
            config = variant.config
            if config is None and variant.operator in TEXT_SEARCH_TYPES.values():
                config = self._profile.text_search_config
            self._add_filter(state, Filter(
                column=variant.column,
                operator=variant.operator,
                value=variant.value,
                negated=variant.negated,
                config=config,
            ))
        elif isinstance(variant, NotCall):
            self._add_filter(state, Filter(
                column=variant.column,
                operator=variant.operator,
                value=variant.value,
                negated=True,
            ))
        elif isinstance(variant, MatchCall):
            for column, value in variant.values.items():
                self._add_filter(state, Filter(column=column, operator=OperatorTag.EQ, value=value))
        elif isinstance(variant, OrderCall):
            spec = OrderSpec(
                column=variant.column,
                descending=variant.descending,
                nulls_first=variant.nulls_first,
                nulls_last=variant.nulls_last,
            )
            if variant.relation:
                _require_embed(state, variant.relation, "order").order.append(spec)
            else:
                state.order.append(spec)
        elif isinstance(variant, LimitCall):
            if variant.relation:
                _require_embed(state, variant.relation, "limit").limit = variant.count
            else:
                state.limit = variant.count
        elif isinstance(variant, RangeCall):
            state.range = RangeSpec(start=variant.start, end=variant.end)
        elif isinstance(variant, SingleCall):
            state.single = not variant.maybe
            state.maybe_single = variant.maybe
        elif isinstance(variant, CountCall):
            state.count = variant.mode
        elif isinstance(variant, MutationCall):
            state.operation = variant.operation
            state.body = variant.body
            if variant.operation is Operation.UPSERT:
                state.on_conflict = list(variant.on_conflict)
                state.resolution = "ignore-duplicates" if variant.ignore_duplicates else "merge-duplicates"
        elif isinstance(variant, DeleteCall):
            state.operation = Operation.DELETE
        elif isinstance(variant, UnknownCall):
            self._unknown(variant)
        else:
            raise TypeError(f"unhandled call variant: {type(variant).__name__}")

    def _add_filter(self, state: _ChainState, flt: Filter) -> None:
        relation, dot, leaf = flt.column.rpartition(".")
        embed = find_embed(state.embeds, relation) if dot else None
        if embed is not None:
            embed.filters.append(flt.model_copy(update={"column": leaf}))
        else:
            state.filters.append(flt)

    def _unknown(self, variant: UnknownCall) -> None:
        if self._profile.strict_methods:
            raise UnsupportedError(
                f"unknown method: {variant.name}",
                code="UNKNOWN_METHOD",
                fragment=variant.name,
                hint="remove the call or disable strict_methods",
            )
        self.warnings.append(f"Ignored unsupported method: {variant.name}()")
        logger.debug("ignored unknown DSL method %s", variant.name)


def _require_embed(state: _ChainState, relation: str, modifier: str) -> EmbeddedResource:
    embed = find_embed(state.embeds, relation)
    if embed is None:
        raise SemanticError(
            f"{modifier}() targets '{relation}', which is not embedded",
            code="UNKNOWN_EMBED",
            fragment=relation,
            hint=f"select the relation first, e.g. select('*, {relation}(*)')",
        )
    return embed


def _service_call(chain: TokenizedChain) -> ServiceCall:
    """Collapse an auth/storage chain into a single service call."""
    calls = list(chain.calls[1:])
    bucket: str | None = None
    if chain.root == "storage" and calls and calls[0].name == "from" and calls[0].args:
        bucket = str(calls[0].args[0])
        calls = calls[1:]
    invoked = [c for c in calls if c.invoked]
    names = [c.name for c in calls]
    return ServiceCall(
        namespace=chain.root,
        bucket=bucket,
        method=".".join(names),
        args=list(invoked[-1].args) if invoked else [],
    )


def parse_dsl(text: str, profile: ConversionProfile | None = None) -> Query:
    """Convenience wrapper: parse ``text`` with a fresh :class:`DslParser`."""
    return DslParser(profile).parse(text)
