"""Conversion orchestrators.

Every direction runs the same stages::

    surface text → parser → Query → QueryValidator → builder → ConversionResult

RPC, auth and storage calls skip validation and building; they are
described as HTTP-only results instead.  Parser warnings come first in the
result, followed by builder warnings.
"""
from __future__ import annotations

import logging
from typing import Any, Protocol

from querybridge.compile.dsl_builder import DslBuilder
from querybridge.compile.rest_builder import RestBuilder
from querybridge.compile.sql_builder import SqlBuilder
from querybridge.parse.dsl_parser import DslParser
from querybridge.parse.rest_parser import RestParser
from querybridge.parse.sql_parser import SqlParser
from querybridge.schema.profile import DEFAULT_PROFILE, ConversionProfile
from querybridge.schema.query import Query
from querybridge.schema.result import ConversionResult
from querybridge.validate.validator import QueryValidator

logger = logging.getLogger(__name__)


class _Builder(Protocol):
    def build(self, query: Query) -> ConversionResult: ...


def _finish(
    query: Query,
    builder: _Builder,
    profile: ConversionProfile,
    parser_warnings: list[str],
) -> ConversionResult:
    if query.is_http_only:
        result = RestBuilder(profile).build_http_only(query)
    else:
        QueryValidator(profile).validate(query)
        result = builder.build(query)
    warnings = list(parser_warnings)
    warnings.extend(w for w in result.warnings if w not in warnings)
    for warning in warnings:
        logger.debug("conversion warning: %s", warning)
    return result.model_copy(update={"warnings": warnings})


# ---------------------------------------------------------------------------
# Public directions
# ---------------------------------------------------------------------------


def rest_to_sql(
    method: str,
    path: str,
    query: str = "",
    body: str | bytes | dict[str, Any] | list[Any] | None = None,
    headers: dict[str, str] | None = None,
    profile: ConversionProfile | None = None,
) -> ConversionResult:
    """Convert a wire request to SQL.

    Example::

        rest_to_sql("GET", "/users", "age=gte.18&status=eq.active").output
        # "SELECT * FROM users WHERE age >= 18 AND status = 'active'"

    Raises:
        QuerySyntaxError, SemanticError, UnsupportedError: On the first
            problem found; no partial result is returned.
    """
    profile = profile or DEFAULT_PROFILE
    parser = RestParser(profile)
    parsed = parser.parse(method, path, query, body, headers)
    return _finish(parsed, SqlBuilder(profile), profile, parser.warnings)


def rest_to_dsl(
    method: str,
    path: str,
    query: str = "",
    body: str | bytes | dict[str, Any] | list[Any] | None = None,
    headers: dict[str, str] | None = None,
    profile: ConversionProfile | None = None,
) -> ConversionResult:
    """Convert a wire request to a client method chain."""
    profile = profile or DEFAULT_PROFILE
    parser = RestParser(profile)
    parsed = parser.parse(method, path, query, body, headers)
    result = _finish(parsed, DslBuilder(profile), profile, parser.warnings)
    if result.http_only:
        # RPC keeps its HTTP descriptor and gains its client form as output.
        result = result.model_copy(update={"output": DslBuilder(profile).build(parsed).output})
    return result


def dsl_to_rest(text: str, profile: ConversionProfile | None = None) -> ConversionResult:
    """Convert a client method chain to a wire request.

    Example::

        dsl_to_rest("supabase.from('users').insert({name: 'Alice', age: 30})").request.body
        # '{"name":"Alice","age":30}'
    """
    profile = profile or DEFAULT_PROFILE
    parser = DslParser(profile)
    parsed = parser.parse(text)
    return _finish(parsed, RestBuilder(profile), profile, parser.warnings)


def dsl_to_sql(text: str, profile: ConversionProfile | None = None) -> ConversionResult:
    """Convert a client method chain to SQL."""
    profile = profile or DEFAULT_PROFILE
    parser = DslParser(profile)
    parsed = parser.parse(text)
    return _finish(parsed, SqlBuilder(profile), profile, parser.warnings)


def sql_to_rest(sql: str, profile: ConversionProfile | None = None) -> ConversionResult:
    """Convert one SQL statement to a wire request."""
    profile = profile or DEFAULT_PROFILE
    parser = SqlParser(profile)
    parsed = parser.parse(sql)
    return _finish(parsed, RestBuilder(profile), profile, parser.warnings)
