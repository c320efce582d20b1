"""querybridge parsing layer: SQL, wire requests and client chains → Query IR."""
from querybridge.parse.dsl_parser import DslParser, parse_dsl
from querybridge.parse.rest_parser import RestParser
from querybridge.parse.sql_parser import SqlParser, parse_sql

__all__ = [
    "DslParser",
    "RestParser",
    "SqlParser",
    "parse_dsl",
    "parse_sql",
]
