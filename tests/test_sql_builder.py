"""Unit tests for SqlBuilder and its clause builders."""
from __future__ import annotations

import pytest

from querybridge.compile import BuilderRegistry, SqlBuilder
from querybridge.compile.clause_builders import (
    ConflictClauseBuilder,
    OrderByClauseBuilder,
    render_column,
)
from querybridge.errors import SemanticError, UnsupportedError
from querybridge.schema.operators import OperatorTag
from querybridge.schema.profile import ConversionProfile
from querybridge.schema.query import (
    EmbeddedResource,
    Filter,
    Operation,
    OrderSpec,
    Query,
    RangeSpec,
)


def _select(**kwargs) -> Query:
    return Query(table="users", operation=Operation.SELECT, **kwargs)


def test_registered_targets():
    assert BuilderRegistry.registered_targets() == ["DELETE", "GET", "PATCH", "POST"]


def test_rpc_has_no_sql_builder():
    with pytest.raises(UnsupportedError) as info:
        SqlBuilder().build(Query(table="users", operation=Operation.RPC, rpc_function="f"))
    assert info.value.code == "UNSUPPORTED_OPERATION"


def test_missing_table():
    with pytest.raises(SemanticError) as info:
        SqlBuilder().build(Query(operation=Operation.SELECT))
    assert info.value.code == "NO_TABLE"


# ---------------------------------------------------------------------------
# SELECT
# ---------------------------------------------------------------------------


def test_select_defaults_to_star():
    assert SqlBuilder().build(_select()).output == "SELECT * FROM users"


def test_range_becomes_limit_and_offset():
    result = SqlBuilder().build(_select(columns=["*"], range=RangeSpec(start=10, end=19)))
    assert result.output == "SELECT * FROM users LIMIT 10 OFFSET 10"


def test_explicit_limit_wins_over_range():
    result = SqlBuilder().build(_select(limit=5, range=RangeSpec(start=0, end=19)))
    assert result.output == "SELECT * FROM users LIMIT 5"


def test_aliased_embed_is_qualified():
    query = _select(
        columns=["name"],
        embeds=[EmbeddedResource(relation="author:profiles", columns=["bio"])],
    )
    result = SqlBuilder().build(query)
    assert result.output == (
        "SELECT users.name, author.bio FROM users "
        "LEFT JOIN profiles AS author ON author.users_id = users.id"
    )
    assert result.warnings == ["Assuming FK convention: author.users_id references users.id"]


def test_inner_embed_with_filter_and_order():
    query = _select(
        columns=["name"],
        filters=[Filter(column="active", operator=OperatorTag.IS, value="true")],
        embeds=[
            EmbeddedResource(
                relation="posts!inner",
                columns=["title"],
                filters=[Filter(column="year", operator=OperatorTag.GTE, value=2020)],
                order=[OrderSpec(column="year", descending=True)],
            )
        ],
    )
    assert SqlBuilder().build(query).output == (
        "SELECT users.name, posts.title FROM users "
        "INNER JOIN posts ON posts.users_id = users.id "
        "WHERE users.active IS TRUE AND posts.year >= 2020 "
        "ORDER BY posts.year DESC"
    )


def test_nested_embeds_join_on_their_parent():
    query = _select(
        columns=["name"],
        embeds=[
            EmbeddedResource(
                relation="posts",
                columns=["title"],
                embeds=[EmbeddedResource(relation="comments", columns=["body"])],
            )
        ],
    )
    result = SqlBuilder().build(query)
    assert result.output == (
        "SELECT users.name, posts.title, comments.body FROM users "
        "LEFT JOIN posts ON posts.users_id = users.id "
        "LEFT JOIN comments ON comments.posts_id = posts.id"
    )
    assert result.metadata["fk_convention"] == (
        "posts.users_id -> users.id; comments.posts_id -> posts.id"
    )


def test_custom_fk_convention():
    profile = ConversionProfile.builder().foreign_keys(template="{table}_fk", primary_key="pk").build()
    query = _select(embeds=[EmbeddedResource(relation="posts", columns=["*"])])
    assert SqlBuilder(profile).build(query).output == (
        "SELECT posts.* FROM users LEFT JOIN posts ON posts.users_fk = users.pk"
    )


def test_full_text_uses_profile_config(fts_profile):
    query = _select(filters=[Filter(column="body", operator=OperatorTag.PLFTS, value="fat cat")])
    assert SqlBuilder(fts_profile).build(query).output == (
        "SELECT * FROM users WHERE body @@ plainto_tsquery('english', 'fat cat')"
    )


def test_array_and_negated_filters():
    query = _select(
        filters=[
            Filter(column="tags", operator=OperatorTag.CS, value=["a", "b"]),
            Filter(column="name", operator=OperatorTag.LIKE, value="A%", negated=True),
            Filter(column="email", operator=OperatorTag.IS, value=None, negated=True),
        ]
    )
    assert SqlBuilder().build(query).output == (
        "SELECT * FROM users WHERE tags @> '{a,b}' AND NOT (name LIKE 'A%') "
        "AND email IS NOT NULL"
    )


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------


def test_insert_rows_fill_missing_and_drop_extra_columns():
    query = Query(
        table="t",
        operation=Operation.INSERT,
        body=[{"a": 1, "b": "x"}, {"a": 2}, {"a": 3, "b": "y", "c": True}],
    )
    result = SqlBuilder().build(query)
    assert result.output == "INSERT INTO t (a, b) VALUES (1, 'x'), (2, NULL), (3, 'y')"
    assert result.warnings == ["row 2 has column(s) not in the first row and they were dropped: c"]


def test_body_strings_are_not_sniffed():
    query = Query(table="t", operation=Operation.INSERT, body={"code": "42", "flag": "true"})
    assert SqlBuilder().build(query).output == "INSERT INTO t (code, flag) VALUES ('42', 'true')"


def test_upsert_defaults_to_primary_key():
    query = Query(
        table="users",
        operation=Operation.UPSERT,
        body={"email": "a@b.co", "name": "A"},
        resolution="merge-duplicates",
    )
    result = SqlBuilder().build(query)
    assert result.output == (
        "INSERT INTO users (email, name) VALUES ('a@b.co', 'A') "
        "ON CONFLICT (id) DO UPDATE SET email = EXCLUDED.email, name = EXCLUDED.name"
    )
    assert result.warnings == [
        "No conflict target given for upsert on 'users'; assuming primary key 'id'"
    ]


def test_upsert_ignore_duplicates_returning():
    query = Query(
        table="users",
        operation=Operation.UPSERT,
        body={"email": "a@b.co"},
        on_conflict=["email"],
        resolution="ignore-duplicates",
        return_representation=True,
        columns=["id", "email"],
    )
    assert SqlBuilder().build(query).output == (
        "INSERT INTO users (email) VALUES ('a@b.co') ON CONFLICT (email) DO NOTHING RETURNING id, email"
    )


def test_update_with_json_value():
    query = Query(
        table="users",
        operation=Operation.UPDATE,
        body={"settings": {"theme": "dark"}},
        filters=[Filter(column="id", operator=OperatorTag.EQ, value=1)],
    )
    assert SqlBuilder().build(query).output == (
        "UPDATE users SET settings = '{\"theme\":\"dark\"}' WHERE id = 1"
    )


def test_delete_returning_star():
    query = Query(
        table="users",
        operation=Operation.DELETE,
        filters=[Filter(column="id", operator=OperatorTag.IN, value=[1, 2])],
        return_representation=True,
        columns=["*"],
    )
    assert SqlBuilder().build(query).output == "DELETE FROM users WHERE id IN (1, 2) RETURNING *"


# ---------------------------------------------------------------------------
# Clause helpers
# ---------------------------------------------------------------------------


class TestClauseHelpers:
    def test_render_column(self):
        assert render_column("n:name") == "name AS n"
        assert render_column("price::text") == "price::text"
        assert render_column("name", "users") == "users.name"
        assert render_column("*", "posts") == "posts.*"

    def test_render_aggregates_and_json_paths(self):
        assert render_column("count()") == "count(*)"
        assert render_column("total:amount.sum()") == "sum(amount) AS total"
        assert render_column("amount.max()", "orders") == "max(orders.amount)"
        assert render_column("data->tags->0") == "data->'tags'->0"
        assert render_column("data->>age::int", "users") == "users.data->>'age'::int"

    def test_order_by_nulls(self):
        clause = OrderByClauseBuilder().build(
            [(None, OrderSpec(column="a", nulls_first=True)), (None, OrderSpec(column="b", descending=True, nulls_last=True))]
        )
        assert clause == "ORDER BY a NULLS FIRST, b DESC NULLS LAST"

    def test_conflict_with_only_key_columns_does_nothing(self):
        assert ConflictClauseBuilder().build(["id"], ["id"], ignore=False) == "ON CONFLICT (id) DO NOTHING"


def test_embedded_aggregate_groups_by_qualified_columns():
    query = _select(
        columns=["name"],
        embeds=[EmbeddedResource(relation="posts", columns=["id.count()"])],
    )
    assert SqlBuilder().build(query).output == (
        "SELECT users.name, count(posts.id) FROM users "
        "LEFT JOIN posts ON posts.users_id = users.id GROUP BY users.name"
    )
