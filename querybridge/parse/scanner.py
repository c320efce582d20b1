"""Depth-aware scanning shared by the DSL and REST parsers.

One pass over the text tracks the active quote character (``'``, ``"`` or a
backtick, with backslash escapes) and the bracket stack.  Only unquoted
characters at depth zero are split points, so ``name, posts(title, year)``
splits into two entries and ``'a, b'`` stays whole.
"""
from __future__ import annotations

from collections.abc import Iterator

from querybridge.errors import QuerySyntaxError

_OPENERS: dict[str, str] = {"(": ")", "[": "]", "{": "}"}
_CLOSERS: dict[str, str] = {v: k for k, v in _OPENERS.items()}
_QUOTES: frozenset[str] = frozenset({"'", '"', "`"})

DEFAULT_MAX_DEPTH = 32


def scan(text: str, max_depth: int = DEFAULT_MAX_DEPTH) -> Iterator[tuple[int, str, int]]:
    """Yield ``(index, char, depth)`` for every character outside quotes.

    Brackets are reported at the depth of the text that contains them, so
    the opener and closer of a top-level group both have depth 0.

    Raises:
        QuerySyntaxError: ``NESTING_TOO_DEEP`` when nesting exceeds
            ``max_depth``; ``MALFORMED_CHAIN`` for a mismatched bracket or
            an unterminated string.
    """
    stack: list[str] = []
    quote: str | None = None
    quote_start = 0
    escaped = False
    for i, ch in enumerate(text):
        if quote is not None:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == quote:
                quote = None
            continue
        if ch in _QUOTES:
            quote, quote_start = ch, i
            continue
        if ch in _OPENERS:
            yield i, ch, len(stack)
            stack.append(ch)
            if len(stack) > max_depth:
                raise QuerySyntaxError(
                    f"nesting deeper than {max_depth} levels",
                    code="NESTING_TOO_DEEP",
                    fragment=_excerpt(text, i),
                    hint="flatten the expression or raise max_nesting_depth",
                )
        elif ch in _CLOSERS:
            if not stack or stack[-1] != _CLOSERS[ch]:
                raise QuerySyntaxError(
                    f"unbalanced '{ch}' at position {i}",
                    code="MALFORMED_CHAIN",
                    fragment=_excerpt(text, i),
                    hint="check that every bracket is closed in order",
                )
            stack.pop()
            yield i, ch, len(stack)
        else:
            yield i, ch, len(stack)

    if quote is not None:
        raise QuerySyntaxError(
            f"unterminated string starting at position {quote_start}",
            code="MALFORMED_CHAIN",
            fragment=_excerpt(text, quote_start),
            hint=f"close the string with {quote}",
        )
    if stack:
        raise QuerySyntaxError(
            f"unclosed '{stack[-1]}'",
            code="MALFORMED_CHAIN",
            fragment=_excerpt(text, len(text) - 1),
            hint=f"add the missing '{_OPENERS[stack[-1]]}'",
        )


def check_balanced(text: str, max_depth: int = DEFAULT_MAX_DEPTH) -> None:
    """Scan ``text`` to the end, raising on bad nesting or quoting."""
    for _ in scan(text, max_depth):
        pass


def check_length(text: str, max_length: int) -> None:
    if len(text) > max_length:
        raise QuerySyntaxError(
            f"input is {len(text)} characters; the limit is {max_length}",
            code="INPUT_TOO_LARGE",
            fragment=text[:40],
            hint="split the query or raise max_input_length",
        )


def split_top_level(
    text: str, sep: str = ",", max_depth: int = DEFAULT_MAX_DEPTH
) -> list[str]:
    """Split on ``sep`` where it appears unquoted at depth zero.

    Entries are stripped and empty entries dropped.
    """
    parts: list[str] = []
    start = 0
    for i, ch, depth in scan(text, max_depth):
        if ch == sep and depth == 0:
            parts.append(text[start:i])
            start = i + 1
    parts.append(text[start:])
    return [p.strip() for p in parts if p.strip()]


def find_closing(text: str, open_index: int, max_depth: int = DEFAULT_MAX_DEPTH) -> int:
    """Return the index of the bracket closing the one at ``open_index``."""
    for i, ch, depth in scan(text[open_index:], max_depth):
        if ch in _CLOSERS and depth == 0:
            return open_index + i
    raise QuerySyntaxError(
        f"unclosed '{text[open_index]}' at position {open_index}",
        code="MALFORMED_CHAIN",
        fragment=_excerpt(text, open_index),
    )


def normalize_whitespace(text: str) -> str:
    """Collapse runs of whitespace outside string literals to one space."""
    out: list[str] = []
    quote: str | None = None
    escaped = False
    pending_space = False
    for ch in text:
        if quote is not None:
            out.append(ch)
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == quote:
                quote = None
            continue
        if ch.isspace():
            pending_space = True
            continue
        if pending_space and out:
            out.append(" ")
        pending_space = False
        if ch in _QUOTES:
            quote = ch
        out.append(ch)
    return "".join(out)


def _excerpt(text: str, index: int, width: int = 20) -> str:
    return text[max(0, index - width): index + width]
