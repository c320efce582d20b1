"""Unit tests for the operator codec."""
from __future__ import annotations

import pytest

from querybridge.errors import QuerySyntaxError, UnsupportedError
from querybridge.schema.operators import (
    OPERATOR_TABLE,
    LiteralTarget,
    OperatorTag,
    decode_token,
    is_keyword,
    literalize,
    lookup,
    parse_operator,
    split_in_list,
    wire_operator,
)

WIRE = LiteralTarget.WIRE


def test_table_covers_every_tag():
    assert set(OPERATOR_TABLE) == set(OperatorTag)


def test_table_is_read_only():
    with pytest.raises(TypeError):
        OPERATOR_TABLE[OperatorTag.EQ] = OPERATOR_TABLE[OperatorTag.NEQ]  # type: ignore[index]


def test_lookup_unknown_operator():
    with pytest.raises(UnsupportedError) as info:
        lookup("between")
    assert info.value.code == "UNSUPPORTED_OPERATOR"


def test_parse_operator_with_config():
    assert parse_operator("fts(english)") == (OperatorTag.FTS, "english")
    assert parse_operator("eq") == (OperatorTag.EQ, None)


def test_parse_operator_config_only_for_full_text():
    with pytest.raises(QuerySyntaxError) as info:
        parse_operator("eq(english)")
    assert info.value.code == "INVALID_FILTER"


def test_wire_operator():
    assert wire_operator(OperatorTag.WFTS, "simple") == "wfts(simple)"
    assert wire_operator(OperatorTag.GT) == "gt"


# ---------------------------------------------------------------------------
# SQL literals
# ---------------------------------------------------------------------------


class TestSqlLiterals:
    def test_integer_unquoted(self):
        assert literalize(42, OperatorTag.EQ) == "42"

    def test_numeric_string_unquoted(self):
        assert literalize("18", OperatorTag.GTE) == "18"
        assert literalize("-2.5") == "-2.5"

    def test_single_quote_doubled(self):
        assert literalize("O'Brien") == "'O''Brien'"

    def test_booleans_and_null(self):
        assert literalize(True) == "true"
        assert literalize(None) == "NULL"
        assert literalize("null") == "NULL"

    def test_no_sniffing_for_body_values(self):
        assert literalize("42", sniff=False) == "'42'"
        assert literalize("true", sniff=False) == "'true'"

    def test_in_list(self):
        assert literalize(["1", "2"], OperatorTag.IN) == "(1, 2)"
        assert literalize(["a", "b"], OperatorTag.IN) == "('a', 'b')"

    def test_in_from_wire_text(self):
        assert literalize('(a,"b,c")', OperatorTag.IN) == "('a', 'b,c')"

    def test_array_literal(self):
        assert literalize(["a", "b c"], OperatorTag.CS) == "'{a,\"b c\"}'"

    def test_json_value(self):
        assert literalize({"k": [1, 2]}) == "'{\"k\":[1,2]}'"

    def test_full_text(self):
        assert literalize("cat", OperatorTag.FTS, config="english") == "to_tsquery('english', 'cat')"
        assert literalize("fat cat", OperatorTag.WFTS) == "websearch_to_tsquery('fat cat')"


# ---------------------------------------------------------------------------
# Wire tokens
# ---------------------------------------------------------------------------


class TestWireTokens:
    def test_scalars(self):
        assert literalize(18, OperatorTag.GTE, target=WIRE) == "18"
        assert literalize(None, OperatorTag.IS, target=WIRE) == "null"
        assert literalize(False, OperatorTag.IS, target=WIRE) == "false"

    def test_pattern_wildcards(self):
        assert literalize("A%", OperatorTag.LIKE, target=WIRE) == "A*"

    def test_in_list_quotes_reserved_characters(self):
        assert literalize(["a", "b,c", 'say "hi"'], OperatorTag.IN, target=WIRE) == '(a,"b,c","say \\"hi\\"")'

    def test_array(self):
        assert literalize(["x", "y"], OperatorTag.OV, target=WIRE) == "{x,y}"


class TestDecodeToken:
    def test_in(self):
        assert decode_token("(1,2,3)", OperatorTag.IN) == [1, 2, 3]
        assert decode_token('(1,"2",x)', OperatorTag.IN) == [1, "2", "x"]

    def test_empty_in_rejected(self):
        with pytest.raises(QuerySyntaxError) as info:
            decode_token("()", OperatorTag.IN)
        assert info.value.code == "INVALID_FILTER"

    def test_pattern(self):
        assert decode_token("*@example.com", OperatorTag.ILIKE) == "%@example.com"

    @pytest.mark.parametrize(
        "token, value",
        [
            ("null", None),
            ("true", True),
            ("false", False),
            ("18", 18),
            ("-0.5", -0.5),
            ("007", "007"),
            ("1.50", "1.50"),
            ("1e3", "1e3"),
            ("2024-01-01", "2024-01-01"),
        ],
    )
    def test_scalars_typed_by_the_literal_grammar(self, token, value):
        assert decode_token(token, OperatorTag.EQ) == value

    def test_array_literal(self):
        assert decode_token('{a,"b c",2}', OperatorTag.CS) == ["a", "b c", 2]
        assert decode_token("{{1,2},{3,4}}", OperatorTag.CS) == "{{1,2},{3,4}}"

    def test_text_operands_verbatim(self):
        assert decode_token("42", OperatorTag.FTS) == "42"
        assert decode_token("[1,10)", OperatorTag.ADJ) == "[1,10)"


def test_split_in_list_quotes_and_escapes():
    assert split_in_list('(a,"b,c",d)') == ["a", "b,c", "d"]
    assert split_in_list('("x\\"y")') == ['x"y']
    assert split_in_list("()") == []


def test_is_keyword():
    assert is_keyword(None) == "NULL"
    assert is_keyword("TRUE") == "TRUE"
    assert is_keyword("unknown") == "UNKNOWN"
    with pytest.raises(QuerySyntaxError) as info:
        is_keyword("maybe")
    assert info.value.code == "INVALID_IS_VALUE"
