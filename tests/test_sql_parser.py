"""Unit tests for SqlParser (SQL → Query IR)."""
from __future__ import annotations

import pytest

from querybridge.errors import QuerySyntaxError, SemanticError, UnsupportedError
from querybridge.parse.sql_parser import SqlParser, parse_sql
from querybridge.schema.operators import OperatorTag
from querybridge.schema.query import EmbeddedResource, Filter, Operation, OrderSpec


def test_select_with_filters():
    q = parse_sql("SELECT id, name FROM users WHERE age >= 18 AND status = 'active'")
    assert q.table == "users"
    assert q.operation is Operation.SELECT
    assert q.columns == ["id", "name"]
    assert q.filters == [
        Filter(column="age", operator=OperatorTag.GTE, value=18),
        Filter(column="status", operator=OperatorTag.EQ, value="active"),
    ]


def test_star_and_schema_qualified_table():
    q = parse_sql("SELECT * FROM public.users")
    assert q.table == "public.users"
    assert q.columns == ["*"]


def test_alias_and_cast_columns():
    q = parse_sql("SELECT name AS n, price::text FROM items")
    assert q.columns == ["n:name", "price::text"]


def test_between_expands_to_two_filters():
    q = parse_sql("SELECT * FROM users WHERE age BETWEEN 18 AND 65")
    assert q.filters == [
        Filter(column="age", operator=OperatorTag.GTE, value=18),
        Filter(column="age", operator=OperatorTag.LTE, value=65),
    ]


def test_in_and_not_in():
    q = parse_sql("SELECT * FROM users WHERE id IN (1, 2, 3) AND role NOT IN ('a', 'b')")
    assert q.filters == [
        Filter(column="id", operator=OperatorTag.IN, value=[1, 2, 3]),
        Filter(column="role", operator=OperatorTag.IN, value=["a", "b"], negated=True),
    ]


def test_is_null_and_is_not_null():
    q = parse_sql("SELECT * FROM users WHERE deleted_at IS NULL AND email IS NOT NULL")
    assert q.filters == [
        Filter(column="deleted_at", operator=OperatorTag.IS, value=None),
        Filter(column="email", operator=OperatorTag.IS, value=None, negated=True),
    ]


def test_literal_on_the_left_is_mirrored():
    q = parse_sql("SELECT * FROM users WHERE 18 < age")
    assert q.filters == [Filter(column="age", operator=OperatorTag.GT, value=18)]


def test_like_and_negative_numbers():
    q = parse_sql("SELECT * FROM users WHERE name ILIKE 'a%' AND balance < -5")
    assert q.filters == [
        Filter(column="name", operator=OperatorTag.ILIKE, value="a%"),
        Filter(column="balance", operator=OperatorTag.LT, value=-5),
    ]


def test_not_like_and_not_ilike_keep_negation():
    q = parse_sql("SELECT * FROM users WHERE name NOT LIKE 'a%' AND email NOT ILIKE '%@x.io'")
    assert q.filters == [
        Filter(column="name", operator=OperatorTag.LIKE, value="a%", negated=True),
        Filter(column="email", operator=OperatorTag.ILIKE, value="%@x.io", negated=True),
    ]


def test_double_negation_cancels():
    q = parse_sql("SELECT * FROM users WHERE NOT (email IS NOT NULL)")
    assert q.filters == [Filter(column="email", operator=OperatorTag.IS, value=None)]


@pytest.mark.parametrize(
    "sql, columns",
    [
        ("SELECT count(*) FROM users", ["count()"]),
        ("SELECT count(id) AS n FROM users", ["n:id.count()"]),
        ("SELECT sum(amount), avg(amount), min(amount), max(amount) FROM orders",
         ["amount.sum()", "amount.avg()", "amount.min()", "amount.max()"]),
    ],
)
def test_aggregates_in_select(sql, columns):
    assert parse_sql(sql).columns == columns


def test_aggregate_over_expression_rejected():
    with pytest.raises(UnsupportedError) as info:
        parse_sql("SELECT sum(price * qty) FROM orders")
    assert info.value.code == "FUNCTION_IN_SELECT"


def test_json_paths_in_select():
    q = parse_sql("SELECT data->>'name', data->'address'->>'city' AS city FROM users")
    assert q.columns == ["data->>name", "city:data->address->>city"]


def test_order_limit_offset():
    q = parse_sql("SELECT * FROM users ORDER BY created_at DESC NULLS LAST, name LIMIT 10 OFFSET 5")
    assert q.order == [
        OrderSpec(column="created_at", descending=True, nulls_last=True),
        OrderSpec(column="name"),
    ]
    assert q.limit == 10
    assert q.offset == 5


def test_plain_descending_keeps_default_null_order():
    q = parse_sql("SELECT * FROM users ORDER BY name DESC")
    assert q.order == [OrderSpec(column="name", descending=True)]


def test_left_join_becomes_embed():
    parser = SqlParser()
    q = parser.parse(
        "SELECT u.name, p.title FROM users u LEFT JOIN posts p ON p.user_id = u.id "
        "WHERE p.published = true"
    )
    assert q.columns == ["name"]
    assert q.embeds == [
        EmbeddedResource(
            relation="p:posts",
            columns=["title"],
            filters=[Filter(column="published", operator=OperatorTag.EQ, value=True)],
        )
    ]
    assert q.filters == []
    assert parser.warnings == ["JOIN condition on posts dropped; PostgREST resolves the relationship"]


def test_inner_join_without_columns_selects_star():
    q = parse_sql("SELECT users.name FROM users JOIN posts ON posts.users_id = users.id")
    assert q.embeds[0].relation == "posts!inner"
    assert q.embeds[0].columns == ["*"]


def test_distinct_dropped_with_warning():
    parser = SqlParser()
    q = parser.parse("SELECT DISTINCT status FROM users")
    assert q.columns == ["status"]
    assert parser.warnings == ["DISTINCT has no REST equivalent and was dropped"]


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------


def test_insert_single_and_multi_row():
    q = parse_sql("INSERT INTO users (name, age) VALUES ('Alice', 30)")
    assert q.operation is Operation.INSERT
    assert q.body == {"name": "Alice", "age": 30}

    q = parse_sql("INSERT INTO users (name) VALUES ('A'), ('B')")
    assert q.body == [{"name": "A"}, {"name": "B"}]


def test_insert_on_conflict():
    q = parse_sql(
        "INSERT INTO users (email, name) VALUES ('a@b.co', 'A') ON CONFLICT (email) DO NOTHING"
    )
    assert q.operation is Operation.UPSERT
    assert q.on_conflict == ["email"]
    assert q.resolution == "ignore-duplicates"


def test_insert_on_conflict_do_update():
    q = parse_sql(
        "INSERT INTO users (email, name) VALUES ('a', 'b') "
        "ON CONFLICT (email, org_id) DO UPDATE SET name = EXCLUDED.name"
    )
    assert q.operation is Operation.UPSERT
    assert q.on_conflict == ["email", "org_id"]
    assert q.resolution == "merge-duplicates"


def test_update_with_returning():
    q = parse_sql("UPDATE users SET name = 'B', age = 31 WHERE id = 1 RETURNING id, name AS label")
    assert q.operation is Operation.UPDATE
    assert q.body == {"name": "B", "age": 31}
    assert q.filters == [Filter(column="id", operator=OperatorTag.EQ, value=1)]
    assert q.return_representation
    assert q.columns == ["id", "label:name"]


def test_delete():
    q = parse_sql("DELETE FROM users WHERE id = 5 RETURNING *")
    assert q.operation is Operation.DELETE
    assert q.filters == [Filter(column="id", operator=OperatorTag.EQ, value=5)]
    assert q.columns == ["*"]


def test_delete_without_where_parses():
    q = parse_sql("DELETE FROM users")
    assert q.filters == []


# ---------------------------------------------------------------------------
# Rejections
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "sql, code",
    [
        ("SELECT 1; SELECT 2", "MULTIPLE_STATEMENTS"),
        ("SELECT status FROM users GROUP BY status", "GROUP_BY"),
        ("WITH t AS (SELECT id FROM users) SELECT id FROM t", "CTE"),
        ("SELECT id, row_number() OVER (ORDER BY id) FROM users", "WINDOW_FUNCTION"),
        ("SELECT * FROM users WHERE id IN (SELECT user_id FROM posts)", "SUBQUERY"),
        ("SELECT * FROM users WHERE age < 18 OR age > 65", "OR_CONDITION"),
        ("SELECT upper(name) FROM users", "FUNCTION_IN_SELECT"),
        ("SELECT id FROM a UNION SELECT id FROM b", "SET_OPERATION"),
        ("SELECT * FROM users RIGHT JOIN posts ON posts.users_id = users.id", "UNSUPPORTED_JOIN"),
    ],
)
def test_unsupported_sql(sql, code):
    with pytest.raises(UnsupportedError) as info:
        parse_sql(sql)
    assert info.value.code == code


def test_invalid_sql():
    with pytest.raises(QuerySyntaxError) as info:
        parse_sql("SELECT * FROM users WHERE name = 'abc")
    assert info.value.code == "INVALID_SQL"


@pytest.mark.parametrize(
    "sql, code",
    [
        ("SELECT 1", "NO_TABLE"),
        ("SELECT x.name FROM users", "UNKNOWN_TABLE"),
        ("INSERT INTO users VALUES (1, 2)", "INVALID_BODY_SHAPE"),
        ("INSERT INTO users (a, b) VALUES (1)", "INVALID_BODY_SHAPE"),
    ],
)
def test_semantic_errors(sql, code):
    with pytest.raises(SemanticError) as info:
        parse_sql(sql)
    assert info.value.code == code
