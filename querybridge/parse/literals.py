"""Decoding of DSL call arguments.

Arguments are tried as strict JSON first, then as the JavaScript literal
subset that appears in client code: single- or double-quoted strings,
numbers, ``true``/``false``/``null``/``undefined``, arrays, and objects with
bare or quoted keys and trailing commas.  Anything else (a variable name, an
arrow function, a template string with substitutions) is returned as the raw
text.  Decoding never raises.
"""
from __future__ import annotations

import json
import logging
import re
from typing import Any

from querybridge.parse.scanner import DEFAULT_MAX_DEPTH

logger = logging.getLogger(__name__)

_NUMBER_RE = re.compile(r"[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?")
_IDENT_RE = re.compile(r"[A-Za-z_$][\w$]*")
_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "b": "\b", "f": "\f", "v": "\v", "0": "\0"}


class _DecodeFailure(Exception):
    """Internal signal: the text is not a literal we understand."""


def decode_literal(text: str, max_depth: int = DEFAULT_MAX_DEPTH) -> Any:
    """Decode one argument's source text into a Python value.

    Args:
        text: Argument source, e.g. ``{ name: 'Alice', age: 30 }``.
        max_depth: Deepest array/object nesting the decoder will follow.

    Returns:
        The decoded value, or ``text`` stripped of surrounding whitespace
        when it is not a recognizable literal.
    """
    stripped = text.strip()
    try:
        return json.loads(stripped)
    except ValueError:
        pass
    try:
        return _LiteralParser(stripped, max_depth).parse()
    except _DecodeFailure:
        logger.debug("argument kept as raw text: %.40s", stripped)
        return stripped


class _LiteralParser:
    """Recursive-descent parser for the JS literal subset."""

    def __init__(self, text: str, max_depth: int) -> None:
        self._text = text
        self._pos = 0
        self._max_depth = max_depth

    def parse(self) -> Any:
        value = self._value(0)
        self._skip_ws()
        if self._pos != len(self._text):
            raise _DecodeFailure
        return value

    # ------------------------------------------------------------------
    # Productions
    # ------------------------------------------------------------------

    def _value(self, depth: int) -> Any:
        if depth > self._max_depth:
            raise _DecodeFailure
        self._skip_ws()
        ch = self._peek()
        if ch in ("'", '"', "`"):
            return self._string()
        if ch == "[":
            return self._array(depth)
        if ch == "{":
            return self._object(depth)
        m = _NUMBER_RE.match(self._text, self._pos)
        if m:
            self._pos = m.end()
            token = m.group()
            if any(c in token for c in ".eE"):
                return float(token)
            return int(token)
        word = self._identifier()
        if word == "true":
            return True
        if word == "false":
            return False
        if word in ("null", "undefined"):
            return None
        raise _DecodeFailure

    def _array(self, depth: int) -> list[Any]:
        self._expect("[")
        items: list[Any] = []
        while True:
            self._skip_ws()
            if self._peek() == "]":
                self._pos += 1
                return items
            items.append(self._value(depth + 1))
            self._skip_ws()
            if self._peek() == ",":
                self._pos += 1
            elif self._peek() != "]":
                raise _DecodeFailure

    def _object(self, depth: int) -> dict[str, Any]:
        self._expect("{")
        result: dict[str, Any] = {}
        while True:
            self._skip_ws()
            if self._peek() == "}":
                self._pos += 1
                return result
            key = self._key()
            self._skip_ws()
            self._expect(":")
            result[key] = self._value(depth + 1)
            self._skip_ws()
            if self._peek() == ",":
                self._pos += 1
            elif self._peek() != "}":
                raise _DecodeFailure

    def _key(self) -> str:
        ch = self._peek()
        if ch in ("'", '"'):
            return self._string()
        m = _NUMBER_RE.match(self._text, self._pos)
        if m:
            self._pos = m.end()
            return m.group()
        return self._identifier()

    def _string(self) -> str:
        quote = self._text[self._pos]
        self._pos += 1
        out: list[str] = []
        while self._pos < len(self._text):
            ch = self._text[self._pos]
            self._pos += 1
            if ch == quote:
                return "".join(out)
            if ch == "\\":
                out.append(self._escape())
            elif quote == "`" and ch == "$" and self._peek() == "{":
                # Template substitution: value unknown at conversion time.
                raise _DecodeFailure
            else:
                out.append(ch)
        raise _DecodeFailure

    def _escape(self) -> str:
        if self._pos >= len(self._text):
            raise _DecodeFailure
        ch = self._text[self._pos]
        self._pos += 1
        if ch == "u":
            digits = self._text[self._pos: self._pos + 4]
            if len(digits) != 4:
                raise _DecodeFailure
            self._pos += 4
            try:
                return chr(int(digits, 16))
            except ValueError:
                raise _DecodeFailure from None
        return _ESCAPES.get(ch, ch)

    # ------------------------------------------------------------------
    # Lexical helpers
    # ------------------------------------------------------------------

    def _identifier(self) -> str:
        m = _IDENT_RE.match(self._text, self._pos)
        if m is None:
            raise _DecodeFailure
        self._pos = m.end()
        return m.group()

    def _expect(self, ch: str) -> None:
        if self._peek() != ch:
            raise _DecodeFailure
        self._pos += 1

    def _peek(self) -> str:
        return self._text[self._pos] if self._pos < len(self._text) else ""

    def _skip_ws(self) -> None:
        while self._pos < len(self._text) and self._text[self._pos].isspace():
            self._pos += 1
