"""Statement-builder registry.

SQL statement builders are registered under the HTTP method that performs
the same operation on the wire (``GET``, ``POST``, ``PATCH``, ``DELETE``),
so both output directions agree on what an operation is.  Upserts share the
``POST`` builder with inserts.

Usage::

    from querybridge.compile.registry import BuilderRegistry

    @BuilderRegistry.register("GET")
    class SelectStatementBuilder(StatementBuilder):
        ...
"""
from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, ClassVar

from querybridge.errors import UnsupportedError
from querybridge.schema.query import Operation

if TYPE_CHECKING:
    from querybridge.compile.context import CompilationContext, RuntimeContext
    from querybridge.compile.sql_builder import StatementBuilder

#: Operation → HTTP method.  Shared by the SQL and REST builders.
OPERATION_METHODS: dict[Operation, str] = {
    Operation.SELECT: "GET",
    Operation.INSERT: "POST",
    Operation.UPSERT: "POST",
    Operation.UPDATE: "PATCH",
    Operation.DELETE: "DELETE",
    Operation.RPC: "POST",
}


def method_for(operation: Operation | None) -> str:
    """Return the HTTP method for ``operation``.

    Raises:
        UnsupportedError: ``UNSUPPORTED_OPERATION`` when there is none.
    """
    method = OPERATION_METHODS.get(operation) if operation is not None else None
    if method is None:
        raise UnsupportedError(
            f"unsupported operation: {operation}",
            code="UNSUPPORTED_OPERATION",
            fragment=str(operation),
        )
    return method


class BuilderRegistry:
    """Registry mapping HTTP method tags to statement builder classes.

    Example::

        builder = BuilderRegistry.create("GET", ctx, runtime)
        sql = builder.build(query)
    """

    _builders: ClassVar[dict[str, type[StatementBuilder]]] = {}

    @classmethod
    def register(cls, name: str) -> Callable[[type[StatementBuilder]], type[StatementBuilder]]:
        """Decorator that registers a builder class under ``name``.

        Args:
            name: HTTP method tag (e.g. ``"PATCH"``).

        Returns:
            A decorator that registers and returns the builder class.
        """

        def decorator(builder_cls: type[StatementBuilder]) -> type[StatementBuilder]:
            cls._builders[name] = builder_cls
            return builder_cls

        return decorator

    @classmethod
    def create(
        cls, name: str, ctx: CompilationContext, runtime: RuntimeContext
    ) -> StatementBuilder:
        """Instantiate the builder registered for ``name``.

        Raises:
            UnsupportedError: If no builder is registered for ``name``.
        """
        builder_cls = cls._builders.get(name)
        if builder_cls is None:
            raise UnsupportedError(
                f"no SQL builder for '{name}'. Registered: {sorted(cls._builders)}.",
                code="UNSUPPORTED_OPERATION",
                fragment=name,
            )
        return builder_cls(ctx, runtime)

    @classmethod
    def registered_targets(cls) -> list[str]:
        """Return the sorted list of registered method tags."""
        return sorted(cls._builders)
