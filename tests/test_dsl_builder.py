"""Unit tests for DslBuilder."""
from __future__ import annotations

from querybridge.compile import DslBuilder
from querybridge.compile.dsl_builder import js_literal
from querybridge.parse.dsl_parser import parse_dsl
from querybridge.schema.operators import OperatorTag
from querybridge.schema.query import (
    EmbeddedResource,
    Filter,
    Operation,
    OrderSpec,
    Query,
    RangeSpec,
    ServiceCall,
)


def _build(**kwargs) -> str:
    kwargs.setdefault("table", "users")
    kwargs.setdefault("operation", Operation.SELECT)
    return DslBuilder().build(Query(**kwargs)).output


def _filter(**kwargs) -> str:
    return _build(columns=["*"], filters=[Filter(**kwargs)])


class TestJsLiteral:
    def test_scalars(self):
        assert js_literal(None) == "null"
        assert js_literal(False) == "false"
        assert js_literal(2.5) == "2.5"
        assert js_literal("it's\n") == "'it\\'s\\n'"

    def test_collections(self):
        assert js_literal([1, "a"]) == "[1, 'a']"
        assert js_literal({"name": "A", "first-name": "B"}) == "{ name: 'A', 'first-name': 'B' }"
        assert js_literal({}) == "{}"


def test_select_with_count_and_paging():
    assert _build(columns=["id"], count="exact", limit=5) == (
        "supabase.from('users').select('id', { count: 'exact' }).limit(5)"
    )


def test_wire_strings_are_emitted_typed():
    assert _filter(column="age", operator=OperatorTag.GTE, value="18") == (
        "supabase.from('users').select('*').gte('age', 18)"
    )
    assert _filter(column="zip", operator=OperatorTag.IN, value=["1", "2"]) == (
        "supabase.from('users').select('*').in('zip', [1, 2])"
    )
    assert _filter(column="code", operator=OperatorTag.EQ, value="007").endswith(".eq('code', '007')")


def test_is_and_negations():
    assert _filter(column="deleted_at", operator=OperatorTag.IS, value=None).endswith(".is('deleted_at', null)")
    assert _filter(column="ok", operator=OperatorTag.IS, value="true", negated=True).endswith(
        ".not('ok', 'is', true)"
    )
    assert _filter(column="status", operator=OperatorTag.EQ, value="x", negated=True).endswith(
        ".not('status', 'eq', 'x')"
    )


def test_operators_without_a_method_use_filter():
    assert _filter(column="name", operator=OperatorTag.MATCH, value="^A").endswith(".filter('name', 'match', '^A')")


def test_text_search():
    assert _filter(column="body", operator=OperatorTag.WFTS, value="fat cat", config="english").endswith(
        ".textSearch('body', 'fat cat', { type: 'websearch', config: 'english' })"
    )
    assert _filter(column="body", operator=OperatorTag.FTS, value="cat").endswith(".textSearch('body', 'cat')")
    assert _filter(
        column="body", operator=OperatorTag.PLFTS, value="cat", config="simple", negated=True
    ).endswith(".filter('body', 'not.plfts(simple)', 'cat')")


def test_order_options():
    chain = _build(
        columns=["*"],
        order=[OrderSpec(column="a", descending=True, nulls_last=True), OrderSpec(column="b", nulls_first=True)],
    )
    assert chain.endswith(".order('a', { ascending: false, nullsFirst: false }).order('b', { nullsFirst: true })")


def test_offset_and_limit_become_range():
    assert _build(limit=10, offset=20).endswith(".range(20, 29)")
    assert _build(limit=0, offset=20).endswith(".limit(0)")
    assert _build(range=RangeSpec(start=0, end=4)).endswith(".range(0, 4)")


def test_offset_without_limit_is_dropped():
    result = DslBuilder().build(Query(table="users", operation=Operation.SELECT, offset=5))
    assert result.output == "supabase.from('users').select('*')"
    assert result.warnings == ["offset without limit has no client equivalent and was dropped"]


def test_embed_modifiers():
    chain = _build(
        columns=["name"],
        embeds=[
            EmbeddedResource(
                relation="posts",
                columns=["title"],
                filters=[Filter(column="published", operator=OperatorTag.EQ, value=True)],
                order=[OrderSpec(column="title")],
                limit=3,
            )
        ],
    )
    assert chain == (
        "supabase.from('users').select('name,posts(title)').eq('posts.published', true)"
        ".order('title', { referencedTable: 'posts' }).limit(3, { referencedTable: 'posts' })"
    )


def test_mutations():
    assert _build(operation=Operation.INSERT, body={"name": "A"}) == "supabase.from('users').insert({ name: 'A' })"
    assert _build(
        operation=Operation.UPSERT,
        body=[{"email": "a@b.co"}],
        on_conflict=["email"],
        resolution="ignore-duplicates",
    ) == "supabase.from('users').upsert([{ email: 'a@b.co' }], { onConflict: 'email', ignoreDuplicates: true })"
    assert _build(
        operation=Operation.UPDATE,
        body={"name": "B"},
        filters=[Filter(column="id", operator=OperatorTag.EQ, value=1)],
        return_representation=True,
        columns=["*"],
    ) == "supabase.from('users').update({ name: 'B' }).eq('id', 1).select('*')"
    assert _build(
        operation=Operation.DELETE,
        count="exact",
        filters=[Filter(column="id", operator=OperatorTag.EQ, value=1)],
    ) == "supabase.from('users').delete({ count: 'exact' }).eq('id', 1)"


def test_single_modifiers():
    assert _build(single=True).endswith(".single()")
    assert _build(maybe_single=True).endswith(".maybeSingle()")


def test_rpc_and_service_calls():
    assert _build(table=None, operation=Operation.RPC, rpc_function="stats", body={"days": 7}) == (
        "supabase.rpc('stats', { days: 7 })"
    )
    query = Query(service=ServiceCall(namespace="storage", bucket="avatars", method="download", args=["a.png"]))
    assert DslBuilder().build(query).output == "supabase.storage.from('avatars').download('a.png')"


def test_output_parses_back():
    query = Query(
        table="users",
        operation=Operation.SELECT,
        columns=["id", "name"],
        filters=[
            Filter(column="age", operator=OperatorTag.GTE, value=18),
            Filter(column="name", operator=OperatorTag.ILIKE, value="%ann%"),
        ],
        order=[OrderSpec(column="name", descending=True)],
        limit=10,
    )
    parsed = parse_dsl(DslBuilder().build(query).output)
    assert parsed.columns == query.columns
    assert parsed.filters == query.filters
    assert parsed.order == query.order
    assert parsed.limit == 10
