"""Custom exception hierarchy for querybridge.

All public errors inherit from QueryBridgeError so callers can catch the base
class for any querybridge-specific failure.

Conversion failures come in three kinds, applied uniformly across every
direction:

* ``syntax``      – malformed input (bad body, unparsable filter, no DSL root).
* ``semantic``    – structurally valid but meaningless (no table, DELETE
  without a filter, empty mutation body).
* ``unsupported`` – recognised but intentionally unimplemented (OR groups,
  CTEs, window functions, deep embeds).
"""
from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """The three conversion error categories."""

    SYNTAX = "syntax"
    SEMANTIC = "semantic"
    UNSUPPORTED = "unsupported"


class QueryBridgeError(Exception):
    """Base exception for all querybridge errors."""


class ConversionError(QueryBridgeError):
    """Raised when a conversion cannot produce a result.

    Args:
        message: Human-readable description.
        code: Stable machine-readable error code (e.g. ``DELETE_NO_WHERE``).
        fragment: The offending piece of input.
        hint: Suggestion for fixing the input.
    """

    kind: ErrorKind = ErrorKind.SYNTAX

    def __init__(
        self,
        message: str,
        code: str,
        fragment: str = "",
        hint: str = "",
    ) -> None:
        super().__init__(message)
        self.code = code
        self.fragment = fragment
        self.hint = hint

    @property
    def message(self) -> str:
        return str(self)

    def to_error_response(self) -> dict[str, Any]:
        """Returns a structured error payload for API responses."""
        return {
            "error": self.code,
            "type": self.kind.value,
            "message": str(self),
            "input": self.fragment,
            "hint": self.hint,
        }


class QuerySyntaxError(ConversionError):
    """Raised when the input is malformed and cannot be parsed."""

    kind = ErrorKind.SYNTAX


class SemanticError(ConversionError):
    """Raised when the input parses but describes a meaningless query."""

    kind = ErrorKind.SEMANTIC


class UnsupportedError(ConversionError):
    """Raised for recognised shapes that are deliberately not converted."""

    kind = ErrorKind.UNSUPPORTED


class ProfileConfigError(QueryBridgeError):
    """Raised when a ConversionProfile is misconfigured.

    Detected at :meth:`ConversionProfileBuilder.build` time, before any
    conversion runs.

    Args:
        message: Human-readable description.
        setting: Name of the offending profile setting.
    """

    def __init__(self, message: str, setting: str | None = None) -> None:
        super().__init__(message)
        self.setting = setting or ""
