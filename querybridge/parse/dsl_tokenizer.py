"""Tokenizer for client method chains.

Turns ``await supabase.from('users').select('*').eq('id', 1);`` into the root
kind plus an ordered list of :class:`MethodCall` objects.  Only linear chains
are understood; the first recognized root wins.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any

from querybridge.errors import QuerySyntaxError
from querybridge.parse.literals import decode_literal
from querybridge.parse.scanner import (
    check_balanced,
    check_length,
    find_closing,
    normalize_whitespace,
    split_top_level,
)
from querybridge.schema.profile import DEFAULT_PROFILE, ConversionProfile

logger = logging.getLogger(__name__)

#: Root accessors that start a chain.
ROOTS: frozenset[str] = frozenset({"from", "rpc", "auth", "storage"})

#: Roots that must be invoked, as opposed to property namespaces.
_CALLABLE_ROOTS: frozenset[str] = frozenset({"from", "rpc"})

_ROOT_RE = re.compile(r"(?P<client>[A-Za-z_$][\w$]*)\s*\.\s*(?P<root>from|rpc|auth|storage)\b")
_NAME_RE = re.compile(r"[A-Za-z_$][\w$]*")


@dataclass(frozen=True)
class MethodCall:
    """One link of a method chain.

    Attributes:
        name: Method or property name.
        args: Decoded arguments.
        raw_args: Argument source text between the parentheses.
        invoked: False for a bare property access such as ``.auth``.
    """

    name: str
    args: tuple[Any, ...] = ()
    raw_args: str = ""
    invoked: bool = True


@dataclass(frozen=True)
class TokenizedChain:
    """A tokenized chain: client identifier, root kind, and calls in order.

    The root itself is the first entry of ``calls``.
    """

    client: str
    root: str
    calls: tuple[MethodCall, ...] = field(default_factory=tuple)


def tokenize(text: str, profile: ConversionProfile | None = None) -> TokenizedChain:
    """Tokenize one DSL expression.

    Args:
        text: The client expression.  A leading ``await`` or variable
            declaration and a trailing ``;`` are tolerated.
        profile: Supplies the input length and nesting bounds.

    Returns:
        The :class:`TokenizedChain`.

    Raises:
        QuerySyntaxError: ``INPUT_TOO_LARGE``, ``NESTING_TOO_DEEP``,
            ``MALFORMED_CHAIN`` or ``NO_QUERY_ROOT``.
    """
    profile = profile or DEFAULT_PROFILE
    check_length(text, profile.max_input_length)
    text = normalize_whitespace(text.strip())
    check_balanced(text, profile.max_nesting_depth)

    match = _find_root(text)
    if match is None:
        raise QuerySyntaxError(
            "no recognized query root",
            code="NO_QUERY_ROOT",
            fragment=text[:40],
            hint="start the chain with <client>.from('table'), .rpc('fn'), .auth or .storage",
        )

    calls = _split_calls(text, match.start("root"), profile.max_nesting_depth)
    chain = TokenizedChain(client=match.group("client"), root=match.group("root"), calls=calls)
    logger.debug(
        "tokenized %s chain with %d call(s): %s",
        chain.root, len(calls), [c.name for c in calls],
    )
    return chain


def _find_root(text: str) -> re.Match[str] | None:
    for match in _ROOT_RE.finditer(text):
        if match.group("root") not in _CALLABLE_ROOTS:
            return match
        rest = text[match.end():].lstrip()
        if rest.startswith("("):
            return match
    return None


def _split_calls(text: str, pos: int, max_depth: int) -> tuple[MethodCall, ...]:
    calls: list[MethodCall] = []
    length = len(text)
    while True:
        name_match = _NAME_RE.match(text, pos)
        if name_match is None:
            raise _malformed(text, pos, "expected a method name")
        name = name_match.group()
        pos = _skip_spaces(text, name_match.end())

        if pos < length and text[pos] == "(":
            close = find_closing(text, pos, max_depth)
            raw = text[pos + 1: close]
            args = tuple(decode_literal(part, max_depth) for part in split_top_level(raw, max_depth=max_depth))
            calls.append(MethodCall(name=name, args=args, raw_args=raw.strip()))
            pos = _skip_spaces(text, close + 1)
        else:
            calls.append(MethodCall(name=name, invoked=False))

        if pos >= length or text[pos] == ";":
            trailing = text[pos:].lstrip(";").strip()
            if trailing:
                raise _malformed(text, pos, "unexpected text after the chain")
            return tuple(calls)
        if text[pos] != ".":
            raise _malformed(text, pos, f"expected '.' but found '{text[pos]}'")
        pos = _skip_spaces(text, pos + 1)


def _skip_spaces(text: str, pos: int) -> int:
    while pos < len(text) and text[pos].isspace():
        pos += 1
    return pos


def _malformed(text: str, pos: int, message: str) -> QuerySyntaxError:
    return QuerySyntaxError(
        f"{message} at position {pos}",
        code="MALFORMED_CHAIN",
        fragment=text[max(0, pos - 20): pos + 20],
        hint="only linear chains of .method(args) calls are supported",
    )
