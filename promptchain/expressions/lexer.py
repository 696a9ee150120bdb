"""
Tokenizer for chain expressions.

Produces a flat token list terminated by an EOF token.  Whitespace is
insignificant.  ``$name`` is lexed as a single VARIABLE token so variable
references can never be confused with bare identifiers.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from promptchain.exceptions import EvaluationError

# Longest operators first so "===" wins over "==" and "<=" over "<".
OPERATORS = (
    "===", "!==",
    "==", "!=", "<=", ">=", "&&", "||",
    "<", ">", "!", "+", "-", "*", "/", "%",
)

PUNCTUATION = {
    "(": "LPAREN",
    ")": "RPAREN",
    "[": "LBRACKET",
    "]": "RBRACKET",
    "{": "LBRACE",
    "}": "RBRACE",
    ",": "COMMA",
    ":": "COLON",
    ".": "DOT",
    "?": "QUESTION",
}

KEYWORDS = {"true", "false", "null"}

_ESCAPES = {
    '"': '"',
    "'": "'",
    "\\": "\\",
    "/": "/",
    "b": "\b",
    "f": "\f",
    "n": "\n",
    "r": "\r",
    "t": "\t",
}


@dataclass
class Token:
    type: str
    value: Any
    position: int


def _is_ident_start(ch: str) -> bool:
    return ch.isalpha() or ch == "_"


def _is_ident_char(ch: str) -> bool:
    return ch.isalnum() or ch == "_"


def tokenize(source: str) -> list[Token]:
    """Split an expression string into tokens.

    Raises:
        EvaluationError: on an unterminated string, bad escape, malformed
            number, or any character outside the grammar.
    """
    tokens: list[Token] = []
    i = 0
    length = len(source)

    while i < length:
        ch = source[i]

        if ch.isspace():
            i += 1
            continue

        # Variable reference
        if ch == "$":
            start = i
            i += 1
            if i >= length or not _is_ident_start(source[i]):
                raise EvaluationError(
                    f"Expected variable name after '$' at position {start}",
                    expression=source, position=start,
                )
            while i < length and _is_ident_char(source[i]):
                i += 1
            tokens.append(Token("VARIABLE", source[start + 1:i], start))
            continue

        # Number: 12, 3.5, .5, 1e3
        if ch.isdigit() or (ch == "." and i + 1 < length and source[i + 1].isdigit()):
            start = i
            while i < length and source[i].isdigit():
                i += 1
            if i < length and source[i] == "." and i + 1 < length and source[i + 1].isdigit():
                i += 1
                while i < length and source[i].isdigit():
                    i += 1
            if i < length and source[i] in "eE":
                j = i + 1
                if j < length and source[j] in "+-":
                    j += 1
                if j < length and source[j].isdigit():
                    i = j
                    while i < length and source[i].isdigit():
                        i += 1
            text = source[start:i]
            if i < length and _is_ident_start(source[i]):
                raise EvaluationError(
                    f"Malformed number '{text}{source[i]}' at position {start}",
                    expression=source, position=start,
                )
            is_float = any(c in text for c in ".eE")
            tokens.append(Token("NUMBER", float(text) if is_float else int(text), start))
            continue

        # String literal
        if ch in ("'", '"'):
            start = i
            value, i = _read_string(source, i)
            tokens.append(Token("STRING", value, start))
            continue

        # Identifier / keyword
        if _is_ident_start(ch):
            start = i
            while i < length and _is_ident_char(source[i]):
                i += 1
            word = source[start:i]
            tokens.append(Token("KEYWORD" if word in KEYWORDS else "IDENT", word, start))
            continue

        op = next((o for o in OPERATORS if source.startswith(o, i)), None)
        if op is not None:
            tokens.append(Token("OP", op, i))
            i += len(op)
            continue

        if ch in PUNCTUATION:
            tokens.append(Token(PUNCTUATION[ch], ch, i))
            i += 1
            continue

        raise EvaluationError(
            f"Unexpected character {ch!r} at position {i}",
            expression=source, position=i,
        )

    tokens.append(Token("EOF", None, length))
    return tokens


def _read_string(source: str, start: int) -> tuple[str, int]:
    """Read a quoted string starting at ``start``. Returns (value, next_index)."""
    quote = source[start]
    i = start + 1
    chars: list[str] = []
    while i < len(source):
        ch = source[i]
        if ch == quote:
            return "".join(chars), i + 1
        if ch == "\\":
            i += 1
            if i >= len(source):
                break
            esc = source[i]
            if esc == "u":
                hex_digits = source[i + 1:i + 5]
                if len(hex_digits) != 4:
                    raise EvaluationError(
                        f"Bad unicode escape at position {i - 1}",
                        expression=source, position=i - 1,
                    )
                try:
                    chars.append(json.loads(f'"\\u{hex_digits}"'))
                except ValueError as exc:
                    raise EvaluationError(
                        f"Bad unicode escape at position {i - 1}",
                        expression=source, position=i - 1,
                    ) from exc
                i += 5
                continue
            if esc not in _ESCAPES:
                raise EvaluationError(
                    f"Unknown escape '\\{esc}' at position {i - 1}",
                    expression=source, position=i - 1,
                )
            chars.append(_ESCAPES[esc])
            i += 1
            continue
        chars.append(ch)
        i += 1
    raise EvaluationError(
        f"Unterminated string starting at position {start}",
        expression=source, position=start,
    )
