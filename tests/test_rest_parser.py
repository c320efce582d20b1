"""Unit tests for RestParser and the select-list parser."""
from __future__ import annotations

import pytest

from querybridge.errors import QuerySyntaxError
from querybridge.parse.rest_parser import RestParser, find_embed, parse_order, parse_select
from querybridge.schema.operators import OperatorTag
from querybridge.schema.query import Filter, Operation, OrderSpec, RangeSpec


def _parse(method: str = "GET", path: str = "/users", query: str = "", **kwargs):
    return RestParser().parse(method, path, query, **kwargs)


class TestParseSelect:
    def test_columns_and_embed(self):
        columns, embeds = parse_select("name,posts(title,year)")
        assert columns == ["name"]
        assert len(embeds) == 1
        assert embeds[0].relation == "posts"
        assert embeds[0].columns == ["title", "year"]

    def test_nested_and_aliased(self):
        columns, embeds = parse_select("id,author:users!inner(name,org(name))")
        assert columns == ["id"]
        assert embeds[0].relation == "author:users!inner"
        assert embeds[0].embeds[0].relation == "org"
        assert embeds[0].depth() == 2

    def test_embeds_never_duplicated_into_columns(self):
        columns, _ = parse_select("posts(*),name")
        assert columns == ["name"]

    def test_malformed_embed(self):
        with pytest.raises(QuerySyntaxError) as info:
            parse_select("posts(title)x")
        assert info.value.code == "INVALID_SELECT"

    def test_find_embed_by_alias_or_table(self):
        _, embeds = parse_select("author:users(name,org(name))")
        assert find_embed(embeds, "author") is embeds[0]
        assert find_embed(embeds, "users") is embeds[0]
        assert find_embed(embeds, "author.org") is embeds[0].embeds[0]
        assert find_embed(embeds, "posts") is None


def test_parse_order_entries():
    assert parse_order("a,b.desc,c.asc.nullsfirst") == [
        OrderSpec(column="a"),
        OrderSpec(column="b", descending=True),
        OrderSpec(column="c", nulls_first=True),
    ]


def test_filters_keep_order_and_repeated_keys():
    q = _parse(query="age=gte.18&age=lte.65&name=not.like.A*")
    assert q.filters == [
        Filter(column="age", operator=OperatorTag.GTE, value=18),
        Filter(column="age", operator=OperatorTag.LTE, value=65),
        Filter(column="name", operator=OperatorTag.LIKE, value="A%", negated=True),
    ]


def test_full_text_config():
    q = _parse(query="body=wfts(english).fat%20cat")
    assert q.filters == [Filter(column="body", operator=OperatorTag.WFTS, value="fat cat", config="english")]


def test_embed_scoped_params():
    q = _parse(query="select=name,posts(title)&posts.published=is.true&posts.order=title.desc&posts.limit=5")
    embed = q.embeds[0]
    assert embed.filters == [Filter(column="published", operator=OperatorTag.IS, value=True)]
    assert embed.order == [OrderSpec(column="title", descending=True)]
    assert embed.limit == 5
    assert q.filters == []


def test_dotted_column_without_embed_is_a_filter():
    q = _parse(query="data.name=eq.x")
    assert q.filters[0].column == "data.name"


def test_absolute_url_and_prefix():
    q = _parse(path="http://localhost:3000/rest/v1/users?id=eq.1")
    assert q.table == "users"
    assert q.filters[0].value == 1


def test_headers():
    q = _parse(
        "POST",
        "/users",
        "on_conflict=email",
        body='{"email": "a@b.co"}',
        headers={"prefer": "resolution=merge-duplicates, count=exact, return=representation"},
    )
    assert q.operation is Operation.UPSERT
    assert q.on_conflict == ["email"]
    assert q.count == "exact"
    assert q.return_representation


def test_range_and_accept_headers():
    q = _parse(headers={"Range": "0-24", "Accept": "application/vnd.pgrst.object+json"})
    assert q.range == RangeSpec(start=0, end=24)
    assert q.single


def test_unknown_prefer_value_warns():
    parser = RestParser()
    parser.parse("GET", "/users", headers={"Prefer": "tx=rollback"})
    assert parser.warnings == ["Prefer value ignored: tx=rollback"]


def test_columns_param_warns():
    parser = RestParser()
    parser.parse("POST", "/users", "columns=name", body='{"name": "A"}')
    assert parser.warnings == ["the 'columns' parameter is ignored; columns come from the body"]


def test_rpc_path():
    q = _parse("POST", "/rpc/search", body='{"term": "x"}')
    assert q.operation is Operation.RPC
    assert q.rpc_function == "search"
    assert q.body == {"term": "x"}


def test_body_bytes():
    q = _parse("PATCH", "/users", "id=eq.1", body=b'{"name": "B"}')
    assert q.body == {"name": "B"}


def test_scalar_json_body_rejected():
    with pytest.raises(QuerySyntaxError) as info:
        _parse("POST", "/users", body="42")
    assert info.value.code == "INVALID_BODY"


def test_invalid_utf8_body_rejected():
    with pytest.raises(QuerySyntaxError) as info:
        _parse("POST", "/users", body=b"\xff\xfe{")
    assert info.value.code == "INVALID_BODY"


def test_filter_values_are_typed():
    q = _parse(query="a=eq.null&b=eq.false&c=gt.2.5&d=eq.007&e=eq.1.50&f=in.(1,\"2\",x)&g=cs.{a,\"b c\",3}")
    assert [f.value for f in q.filters] == [None, False, 2.5, "007", "1.50", [1, "2", "x"], ["a", "b c", 3]]


def test_text_operands_stay_strings():
    q = _parse(query="name=like.1*&body=fts.2020&during=adj.[1,5)")
    assert [f.value for f in q.filters] == ["1%", "2020", "[1,5)"]


def test_empty_in_list_rejected():
    with pytest.raises(QuerySyntaxError) as info:
        _parse(query="id=in.()")
    assert info.value.code == "INVALID_FILTER"


def test_aggregates_in_select():
    assert parse_select("count(),total:amount.sum(),posts(title)")[0] == ["count()", "total:amount.sum()"]
