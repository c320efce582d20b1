"""querybridge – convert between SQL, PostgREST-style requests and client chains.

Parse any surface. Build any other.

Public API
----------
``rest_to_sql``, ``rest_to_dsl``
    Convert a wire request (method, path, query string, body, headers).

``dsl_to_rest``, ``dsl_to_sql``
    Convert a ``supabase.from('t')...`` method chain.

``sql_to_rest``
    Convert one SQL statement.

Every direction returns a ``ConversionResult`` and raises a
``ConversionError`` subclass on the first problem found.

Re-exported types
-----------------
``Query``, ``ConversionProfile``, ``ConversionResult``, ``RestRequest``,
``HTTPRequest`` and all error classes.

Extensibility
-------------
SQL statement builders are looked up by HTTP method via::

    from querybridge.compile.registry import BuilderRegistry

    @BuilderRegistry.register("GET")
    class SelectStatementBuilder(StatementBuilder):
        ...
"""

from __future__ import annotations

import logging

from querybridge.compile.dsl_builder import DslBuilder
from querybridge.compile.registry import BuilderRegistry
from querybridge.compile.rest_builder import RestBuilder
from querybridge.compile.sql_builder import SqlBuilder
from querybridge.errors import (
    ConversionError,
    ErrorKind,
    ProfileConfigError,
    QueryBridgeError,
    QuerySyntaxError,
    SemanticError,
    UnsupportedError,
)
from querybridge.parse.dsl_parser import DslParser
from querybridge.parse.rest_parser import RestParser
from querybridge.parse.sql_parser import SqlParser
from querybridge.pipeline import dsl_to_rest, dsl_to_sql, rest_to_dsl, rest_to_sql, sql_to_rest
from querybridge.schema.operators import OPERATOR_TABLE, OperatorTag
from querybridge.schema.profile import DEFAULT_PROFILE, ConversionProfile, ConversionProfileBuilder
from querybridge.schema.query import (
    EmbeddedResource,
    Filter,
    Operation,
    OrderSpec,
    Query,
    RangeSpec,
    ServiceCall,
)
from querybridge.schema.result import ConversionResult, HTTPRequest, RestRequest
from querybridge.validate.validator import QueryValidator

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    # Conversions
    "rest_to_sql",
    "rest_to_dsl",
    "dsl_to_rest",
    "dsl_to_sql",
    "sql_to_rest",
    # IR
    "Query",
    "Filter",
    "OrderSpec",
    "RangeSpec",
    "EmbeddedResource",
    "ServiceCall",
    "Operation",
    "OperatorTag",
    "OPERATOR_TABLE",
    # Configuration
    "ConversionProfile",
    "ConversionProfileBuilder",
    "DEFAULT_PROFILE",
    # Results
    "ConversionResult",
    "RestRequest",
    "HTTPRequest",
    # Stages
    "DslParser",
    "RestParser",
    "SqlParser",
    "QueryValidator",
    "SqlBuilder",
    "RestBuilder",
    "DslBuilder",
    "BuilderRegistry",
    # Errors
    "QueryBridgeError",
    "ConversionError",
    "ErrorKind",
    "QuerySyntaxError",
    "SemanticError",
    "UnsupportedError",
    "ProfileConfigError",
]
