"""Unit tests for the scanner, literal decoder and chain tokenizer."""
from __future__ import annotations

import pytest

from querybridge.errors import QuerySyntaxError
from querybridge.parse.dsl_tokenizer import tokenize
from querybridge.parse.literals import decode_literal
from querybridge.parse.scanner import (
    check_balanced,
    check_length,
    find_closing,
    normalize_whitespace,
    split_top_level,
)
from querybridge.schema.profile import ConversionProfile

# ---------------------------------------------------------------------------
# Scanner
# ---------------------------------------------------------------------------


class TestScanner:
    def test_split_respects_brackets(self):
        assert split_top_level("name, posts(title, year)") == ["name", "posts(title, year)"]

    def test_split_respects_quotes(self):
        assert split_top_level("'a, b', c") == ["'a, b'", "c"]

    def test_split_drops_empty_entries(self):
        assert split_top_level("a,,b, ") == ["a", "b"]

    def test_unbalanced(self):
        with pytest.raises(QuerySyntaxError) as info:
            check_balanced("from('users'")
        assert info.value.code == "MALFORMED_CHAIN"

    def test_mismatched(self):
        with pytest.raises(QuerySyntaxError) as info:
            check_balanced("f([)]")
        assert info.value.code == "MALFORMED_CHAIN"

    def test_unterminated_string(self):
        with pytest.raises(QuerySyntaxError) as info:
            check_balanced("eq('id, 1)")
        assert info.value.code == "MALFORMED_CHAIN"

    def test_nesting_bound(self):
        check_balanced("((x))", max_depth=2)
        with pytest.raises(QuerySyntaxError) as info:
            check_balanced("(((x)))", max_depth=2)
        assert info.value.code == "NESTING_TOO_DEEP"

    def test_length_bound(self):
        with pytest.raises(QuerySyntaxError) as info:
            check_length("x" * 11, 10)
        assert info.value.code == "INPUT_TOO_LARGE"

    def test_find_closing(self):
        text = "eq('a)', f(1))"
        assert find_closing(text, 2) == len(text) - 1

    def test_normalize_whitespace_keeps_strings(self):
        assert normalize_whitespace("a  \n  .b('x   y')") == "a .b('x   y')"


# ---------------------------------------------------------------------------
# Literal decoding
# ---------------------------------------------------------------------------


class TestDecodeLiteral:
    def test_json(self):
        assert decode_literal('{"a": [1, 2.5, -3]}') == {"a": [1, 2.5, -3]}

    def test_js_object_with_bare_keys_and_trailing_comma(self):
        assert decode_literal("{ name: 'Alice', age: 30, }") == {"name": "Alice", "age": 30}

    def test_key_order_preserved(self):
        assert list(decode_literal("{ b: 1, a: 2, c: 3 }")) == ["b", "a", "c"]

    def test_single_quote_escape(self):
        assert decode_literal("'it\\'s'") == "it's"

    def test_undefined_is_none(self):
        assert decode_literal("undefined") is None

    def test_plain_template_string(self):
        assert decode_literal("`hello`") == "hello"

    def test_unknown_text_returned_raw(self):
        assert decode_literal("  userId ") == "userId"
        assert decode_literal("`id-${n}`") == "`id-${n}`"
        assert decode_literal("(x) => x") == "(x) => x"

    def test_depth_bound_falls_back_to_raw(self):
        assert decode_literal("[[[1]]]", max_depth=1) == [[[1]]]  # strict JSON path
        assert decode_literal("[[['a']]]", max_depth=1) == "[[['a']]]"


# ---------------------------------------------------------------------------
# Tokenizer
# ---------------------------------------------------------------------------


class TestTokenize:
    def test_basic_chain(self):
        chain = tokenize("await supabase.from('users').select('*').eq('id', 1);")
        assert chain.client == "supabase"
        assert chain.root == "from"
        assert [c.name for c in chain.calls] == ["from", "select", "eq"]
        assert chain.calls[2].args == ("id", 1)

    def test_multiline_chain(self):
        chain = tokenize(
            """
            const { data } = await db
              .from('users')
              .select('id, name')
              .limit(5)
            """
        )
        assert chain.client == "db"
        assert [c.name for c in chain.calls] == ["from", "select", "limit"]
        assert chain.calls[1].args == ("id, name",)

    def test_property_roots_are_not_invoked(self):
        chain = tokenize("supabase.auth.getUser()")
        assert chain.root == "auth"
        assert chain.calls[0].invoked is False
        assert chain.calls[1].name == "getUser"

    def test_no_root(self):
        with pytest.raises(QuerySyntaxError) as info:
            tokenize("supabase.fromage('x')")
        assert info.value.code == "NO_QUERY_ROOT"

    def test_trailing_garbage(self):
        with pytest.raises(QuerySyntaxError) as info:
            tokenize("supabase.from('users').select('*') garbage")
        assert info.value.code == "MALFORMED_CHAIN"

    def test_input_length_from_profile(self):
        profile = ConversionProfile.builder().limits(max_input_length=20).build()
        with pytest.raises(QuerySyntaxError) as info:
            tokenize("supabase.from('a_rather_long_table_name')", profile)
        assert info.value.code == "INPUT_TOO_LARGE"
