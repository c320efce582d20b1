"""querybridge building layer: Query IR → SQL, wire request or client chain."""
from querybridge.compile.dsl_builder import DslBuilder
from querybridge.compile.registry import BuilderRegistry
from querybridge.compile.rest_builder import RestBuilder
from querybridge.compile.sql_builder import SqlBuilder, StatementBuilder

__all__ = [
    "BuilderRegistry",
    "DslBuilder",
    "RestBuilder",
    "SqlBuilder",
    "StatementBuilder",
]
