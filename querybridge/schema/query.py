"""Pydantic models for the canonical query IR.

Every surface syntax (SQL, REST wire, client DSL) is parsed into a ``Query``
and every surface syntax is generated from one.  A ``Query`` is built fresh
per conversion and never shared between calls.
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from querybridge.schema.operators import OperatorTag

#: JSON-compatible filter and body values.
FilterValue = None | bool | int | float | str | list | dict

#: ``Prefer: count=`` modes.
CountMode = Literal["exact", "planned", "estimated"]

#: ``Prefer: resolution=`` modes for upserts.
Resolution = Literal["merge-duplicates", "ignore-duplicates"]


class Operation(str, Enum):
    """The statement a query performs."""

    SELECT = "select"
    INSERT = "insert"
    UPDATE = "update"
    UPSERT = "upsert"
    DELETE = "delete"
    RPC = "rpc"


class LogicalOp(str, Enum):
    """How a filter joins the ones before it.  Only AND is convertible."""

    AND = "AND"
    OR = "OR"


#: Operations that write rows.
MUTATIONS: frozenset[Operation] = frozenset(
    {Operation.INSERT, Operation.UPDATE, Operation.UPSERT, Operation.DELETE}
)


class Filter(BaseModel):
    """One row predicate.

    Attributes:
        column: Column the predicate applies to.
        operator: Canonical operator tag.
        value: Typed operand.  Lists for ``in`` and array operators.
        negated: Render as ``NOT (...)`` / ``not.`` / ``.not(...)``.
        logical: Joining connective; OR is rejected by validation.
        config: Text-search configuration for full-text operators.
    """

    model_config = ConfigDict(extra="forbid")

    column: str
    operator: OperatorTag
    value: FilterValue = None
    negated: bool = False
    logical: LogicalOp = LogicalOp.AND
    config: str | None = None


class OrderSpec(BaseModel):
    """A single ORDER BY entry.

    Both null-placement flags false means the database default.
    """

    model_config = ConfigDict(extra="forbid")

    column: str
    descending: bool = False
    nulls_first: bool = False
    nulls_last: bool = False

    @model_validator(mode="after")
    def _check_null_placement(self) -> OrderSpec:
        if self.nulls_first and self.nulls_last:
            raise ValueError("nulls_first and nulls_last are mutually exclusive")
        return self


class RangeSpec(BaseModel):
    """Inclusive row window, as in ``Range: 0-9``."""

    model_config = ConfigDict(extra="forbid")

    start: int = Field(ge=0)
    end: int = Field(ge=0)

    @model_validator(mode="after")
    def _check_bounds(self) -> RangeSpec:
        if self.end < self.start:
            raise ValueError(f"range end {self.end} is before start {self.start}")
        return self

    @property
    def limit(self) -> int:
        return self.end - self.start + 1


class EmbeddedResource(BaseModel):
    """A related table nested inside the select list, e.g. ``posts(title)``.

    Attributes:
        relation: Related table name.
        columns: Columns selected from the relation.
        filters: Filters scoped to the relation.
        order: Ordering scoped to the relation.
        limit: Row limit scoped to the relation.
        embeds: Further nested relations.
    """

    model_config = ConfigDict(extra="forbid")

    relation: str
    columns: list[str] = Field(default_factory=list)
    filters: list[Filter] = Field(default_factory=list)
    order: list[OrderSpec] = Field(default_factory=list)
    limit: int | None = None
    embeds: list[EmbeddedResource] = Field(default_factory=list)

    def depth(self) -> int:
        """Nesting depth of this embed, counting itself as 1."""
        return 1 + max((e.depth() for e in self.embeds), default=0)


class ServiceCall(BaseModel):
    """A client call into the auth or storage namespace.

    Attributes:
        namespace: ``auth`` or ``storage``.
        bucket: Storage bucket from ``storage.from('<bucket>')``.
        method: Final method name (``signUp``, ``upload``...).
        args: Decoded method arguments.
    """

    model_config = ConfigDict(extra="forbid")

    namespace: Literal["auth", "storage"]
    bucket: str | None = None
    method: str = ""
    args: list[Any] = Field(default_factory=list)


class Query(BaseModel):
    """The canonical query IR.

    Attributes:
        table: Target table.  ``None`` only for service calls.
        operation: Statement kind; ``None`` until a parser sets it.
        columns: Ordered output columns, ``*`` allowed.  Embeds are kept
            separately in ``embeds`` and never duplicated here.
        filters: Row predicates, AND-joined.
        order: Ordering entries.
        limit: Row limit.
        offset: Rows to skip.
        range: Inclusive row window.
        body: Mutation payload (mapping or list of mappings) or RPC params.
        embeds: Embedded resources.
        single: Expect exactly one row.
        maybe_single: Expect zero or one row.
        count: Requested row-count mode.
        on_conflict: Upsert conflict target columns.
        resolution: Upsert duplicate resolution.
        rpc_function: Stored procedure name for ``rpc``.
        service: Auth/storage call, for HTTP-only conversions.
        return_representation: Ask mutations to return affected rows.
    """

    model_config = ConfigDict(extra="forbid")

    table: str | None = None
    operation: Operation | None = None
    columns: list[str] = Field(default_factory=list)
    filters: list[Filter] = Field(default_factory=list)
    order: list[OrderSpec] = Field(default_factory=list)
    limit: int | None = None
    offset: int | None = None
    range: RangeSpec | None = None
    body: dict[str, Any] | list[Any] | None = None
    embeds: list[EmbeddedResource] = Field(default_factory=list)
    single: bool = False
    maybe_single: bool = False
    count: CountMode | None = None
    on_conflict: list[str] = Field(default_factory=list)
    resolution: Resolution | None = None
    rpc_function: str | None = None
    service: ServiceCall | None = None
    return_representation: bool = False

    # ------------------------------------------------------------------
    # Domain helpers
    # ------------------------------------------------------------------

    @property
    def is_http_only(self) -> bool:
        """True for RPC and auth/storage calls, which have no SQL form."""
        return self.operation is Operation.RPC or self.service is not None

    @property
    def is_mutation(self) -> bool:
        return self.operation in MUTATIONS

    def embed_depth(self) -> int:
        """Deepest embed nesting level (0 when there are no embeds)."""
        return max((e.depth() for e in self.embeds), default=0)

    def iter_filters(self) -> list[tuple[str | None, Filter]]:
        """All filters, main-table ones first, paired with the owning relation.

        Embed filters are returned with their relation name; main filters
        with ``None``.
        """
        pairs: list[tuple[str | None, Filter]] = [(None, f) for f in self.filters]
        for embed in self.embeds:
            _collect_embed_filters(embed, pairs)
        return pairs


def _collect_embed_filters(
    embed: EmbeddedResource, pairs: list[tuple[str | None, Filter]]
) -> None:
    pairs.extend((embed.relation, f) for f in embed.filters)
    for child in embed.embeds:
        _collect_embed_filters(child, pairs)


# Resolve forward references created by the recursive embed type.
EmbeddedResource.model_rebuild()
Query.model_rebuild()
