"""Tokenizer for PromQL expressions."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List

from src.alerting.errors import ExprSyntaxError

NUMBER = "NUMBER"
DURATION = "DURATION"
STRING = "STRING"
IDENT = "IDENT"
OP = "OP"
PUNCT = "PUNCT"
EOF = "EOF"

_DURATION_RE = re.compile(r"(?:\d+(?:ms|[smhdwy]))+")
_NUMBER_RE = re.compile(r"0[xX][0-9a-fA-F]+|(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")
_IDENT_RE = re.compile(r"[a-zA-Z_:][a-zA-Z0-9_:]*")

# Longest first so "=~" wins over "=".
_OPERATORS = ("==", "!=", "<=", ">=", "=~", "!~", "=", "<", ">", "+", "-", "*", "/", "%", "^")
_PUNCTUATION = "(){}[],:@"

_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "\\": "\\", '"': '"', "'": "'", "a": "\a", "b": "\b", "f": "\f", "v": "\v"}


@dataclass(frozen=True)
class Token:
    kind: str
    text: str
    pos: int
    value: str = ""


def _is_ident_char(ch: str) -> bool:
    return ch.isalnum() or ch in "_:"


def _ends_duration(src: str, end: int, bracket_depth: int) -> bool:
    if end >= len(src):
        return True
    nxt = src[end]
    # Inside brackets ':' separates subquery range and step.
    if bracket_depth > 0:
        return not (nxt.isalnum() or nxt == "_")
    return not _is_ident_char(nxt)


def _read_string(src: str, pos: int) -> Token:
    quote = src[pos]
    i = pos + 1
    if quote == "`":
        end = src.find("`", i)
        if end < 0:
            raise ExprSyntaxError(f"unterminated raw string at position {pos}")
        return Token(STRING, src[pos : end + 1], pos, src[i:end])

    out: List[str] = []
    while i < len(src):
        ch = src[i]
        if ch == "\\":
            if i + 1 >= len(src):
                break
            nxt = src[i + 1]
            out.append(_ESCAPES.get(nxt, nxt))
            i += 2
            continue
        if ch == quote:
            return Token(STRING, src[pos : i + 1], pos, "".join(out))
        if ch == "\n":
            break
        out.append(ch)
        i += 1
    raise ExprSyntaxError(f"unterminated quoted string at position {pos}")


# PUBLIC_INTERFACE
def tokenize(src: str) -> List[Token]:
    """Split a PromQL expression into tokens, ending with an EOF token."""
    tokens: List[Token] = []
    i = 0
    bracket_depth = 0
    n = len(src)
    while i < n:
        ch = src[i]
        if ch.isspace():
            i += 1
            continue
        if ch == "#":
            nl = src.find("\n", i)
            i = n if nl < 0 else nl + 1
            continue
        if ch in "\"'`":
            tok = _read_string(src, i)
            tokens.append(tok)
            i += len(tok.text)
            continue
        if ch.isdigit() or (ch == "." and i + 1 < n and src[i + 1].isdigit()):
            m = _DURATION_RE.match(src, i)
            if m and _ends_duration(src, m.end(), bracket_depth):
                tokens.append(Token(DURATION, m.group(0), i))
                i = m.end()
                continue
            m = _NUMBER_RE.match(src, i)
            if m:
                tokens.append(Token(NUMBER, m.group(0), i))
                i = m.end()
                continue
        if ch == ":" and bracket_depth > 0:
            tokens.append(Token(PUNCT, ch, i))
            i += 1
            continue
        m = _IDENT_RE.match(src, i)
        if m:
            tokens.append(Token(IDENT, m.group(0), i))
            i = m.end()
            continue
        if ch in _PUNCTUATION:
            if ch == "[":
                bracket_depth += 1
            elif ch == "]":
                bracket_depth = max(0, bracket_depth - 1)
            tokens.append(Token(PUNCT, ch, i))
            i += 1
            continue
        for op in _OPERATORS:
            if src.startswith(op, i):
                tokens.append(Token(OP, op, i))
                i += len(op)
                break
        else:
            raise ExprSyntaxError(f"unexpected character {ch!r} at position {i}")
    tokens.append(Token(EOF, "", n))
    return tokens
