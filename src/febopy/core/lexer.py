"""Tokenizer for ``febo_expr_v1`` expression text."""

from __future__ import annotations

import math
import re
from dataclasses import dataclass

from febopy.errors import CompileError


NUMBER = "NUMBER"
IDENT = "IDENT"
OP = "OP"
LPAREN = "("
RPAREN = ")"
LBRACKET = "["
RBRACKET = "]"
COMMA = ","
END = "END"

_OPERATORS = set("+-*/^")
_PUNCT = {"(": LPAREN, ")": RPAREN, "[": LBRACKET, "]": RBRACKET, ",": COMMA}

# Digit groups may be separated by single underscores; mantissa needs a digit.
_DIGITS = r"\d+(?:_\d+)*"
_NUMBER_RE = re.compile(rf"^(?:{_DIGITS}(?:\.(?:{_DIGITS})?)?|\.{_DIGITS})(?:[eE][+-]?{_DIGITS})?$")


@dataclass(frozen=True)
class Token:
    kind: str
    text: str
    start: int
    end: int
    value: int | float | None = None


def _scan_number(text: str, start: int) -> int:
    """Return the end of the numeric-looking chunk starting at ``start``.

    The chunk is scanned greedily (digits, letters, ``_``, ``.`` and an
    exponent sign) so that malformed literals such as ``1__0`` or ``3e`` are
    reported whole instead of being split into several tokens.
    """

    i = start
    n = len(text)
    while i < n:
        ch = text[i]
        if ch.isalnum() or ch in "._":
            i += 1
            continue
        if ch in "+-" and text[i - 1] in "eE":
            i += 1
            continue
        break
    return i


def _number_value(text: str) -> int | float:
    cleaned = text.replace("_", "")
    if any(ch in cleaned for ch in ".eE"):
        return float(cleaned)
    return int(cleaned)


def _literal(source: str, raw: str, start: int, end: int) -> int | float:
    value = _number_value(raw)
    if isinstance(value, float) and not math.isfinite(value):
        raise CompileError("BadLiteral", f"Numeric literal '{raw}' is not a finite double.", source=source, span=(start, end))
    return value


def tokenize(text: str) -> list[Token]:
    tokens: list[Token] = []
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if ch.isspace():
            i += 1
            continue
        if ch.isdigit() or (ch == "." and i + 1 < n and text[i + 1].isdigit()):
            end = _scan_number(text, i)
            raw = text[i:end]
            if not _NUMBER_RE.match(raw):
                raise CompileError("BadLiteral", f"Malformed numeric literal '{raw}'.", source=text, span=(i, end))
            tokens.append(Token(NUMBER, raw, i, end, _literal(text, raw, i, end)))
            i = end
            continue
        if ch.isalpha() or ch == "_":
            j = i + 1
            while j < n and (text[j].isalnum() or text[j] == "_"):
                j += 1
            tokens.append(Token(IDENT, text[i:j], i, j))
            i = j
            continue
        if ch in _OPERATORS:
            tokens.append(Token(OP, ch, i, i + 1))
            i += 1
            continue
        if ch in _PUNCT:
            tokens.append(Token(_PUNCT[ch], ch, i, i + 1))
            i += 1
            continue
        raise CompileError("Syntax", f"Unexpected character '{ch}'.", source=text, span=(i, i + 1))
    tokens.append(Token(END, "", n, n))
    return tokens
