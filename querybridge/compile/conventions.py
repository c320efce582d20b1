"""Naming-convention policies used where no schema is available.

No database schema is consulted during conversion, so join conditions and
upsert conflict targets are guessed from names.  Every guess is returned
together with a warning so callers can surface it.

The default FK convention is ``<relation>.<table>_id = <table>.id``: the
embedded relation carries a column named after the parent table.  Both the
column template and the primary key are profile settings.
"""
from __future__ import annotations

from dataclasses import dataclass

from querybridge.schema.profile import DEFAULT_PROFILE, ConversionProfile


@dataclass(frozen=True)
class RelationRef:
    """An embedded relation spec split into its parts.

    ``author:users!inner`` gives ``table="users"``, ``alias="author"``,
    ``hint="inner"``.
    """

    table: str
    alias: str | None = None
    hint: str | None = None

    @property
    def name(self) -> str:
        """Name the relation is referred to by in SQL (alias, else table)."""
        return self.alias or self.table

    @property
    def inner(self) -> bool:
        return self.hint == "inner"


@dataclass(frozen=True)
class JoinGuess:
    """A guessed join condition.

    Attributes:
        relation: The embedded relation.
        condition: SQL ``ON`` condition.
        warning: Human-readable statement of the assumption.
        convention: Short form for result metadata.
    """

    relation: RelationRef
    condition: str
    warning: str
    convention: str


def split_relation(relation: str) -> RelationRef:
    """Split ``[alias:]table[!hint]`` into a :class:`RelationRef`."""
    alias, _, rest = relation.rpartition(":")
    table, _, hint = rest.partition("!")
    return RelationRef(table=table.strip(), alias=alias.strip() or None, hint=hint.strip() or None)


def assume_foreign_key(
    table: str,
    relation: str,
    profile: ConversionProfile | None = None,
) -> JoinGuess:
    """Guess the join between ``table`` and an embedded ``relation``.

    Args:
        table: Parent table (or alias) the relation is embedded in.
        relation: Embedded relation spec as written in the select list.
        profile: Supplies ``fk_template`` and ``primary_key``.

    Returns:
        A :class:`JoinGuess` with the ``ON`` condition and its warning.
    """
    profile = profile or DEFAULT_PROFILE
    ref = split_relation(relation)
    fk_column = profile.fk_template.format(table=table)
    left = f"{ref.name}.{fk_column}"
    right = f"{table}.{profile.primary_key}"
    return JoinGuess(
        relation=ref,
        condition=f"{left} = {right}",
        warning=f"Assuming FK convention: {left} references {right}",
        convention=f"{left} -> {right}",
    )


def default_conflict_target(
    table: str | None, profile: ConversionProfile | None = None
) -> tuple[list[str], str]:
    """Conflict columns for an upsert that names none, plus a warning."""
    profile = profile or DEFAULT_PROFILE
    return (
        [profile.primary_key],
        f"No conflict target given for upsert on '{table}'; "
        f"assuming primary key '{profile.primary_key}'",
    )
