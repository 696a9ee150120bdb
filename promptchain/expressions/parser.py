"""
Recursive-descent parser for chain expressions.

Grammar (lowest to highest precedence, JavaScript-compatible)::

    expression  := conditional
    conditional := or ( "?" expression ":" expression )?
    or          := and ( "||" and )*
    and         := equality ( "&&" equality )*
    equality    := comparison ( ("==" | "!=" | "===" | "!==") comparison )*
    comparison  := additive ( ("<" | "<=" | ">" | ">=") additive )*
    additive    := multiplicative ( ("+" | "-") multiplicative )*
    multiplicative := unary ( ("*" | "/" | "%") unary )*
    unary       := ("!" | "-" | "+") unary | postfix
    postfix     := primary ( "." IDENT | "[" expression "]" )*
    primary     := NUMBER | STRING | true | false | null | $VARIABLE
                 | "(" expression ")" | array | object
    array       := "[" ( expression ( "," expression )* ","? )? "]"
    object      := "{" ( key ":" expression ( "," key ":" expression )* ","? )? "}"
    key         := STRING | IDENT | NUMBER

There are no call expressions and no bare-identifier lookups, so an
expression can only reach the variables it is handed.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Union

from promptchain.exceptions import EvaluationError

from .lexer import Token, tokenize


# ── AST ───────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Literal:
    value: Any


@dataclass(frozen=True)
class Variable:
    name: str
    position: int = 0


@dataclass(frozen=True)
class Unary:
    op: str
    operand: "Expr"


@dataclass(frozen=True)
class Binary:
    op: str
    left: "Expr"
    right: "Expr"


@dataclass(frozen=True)
class Logical:
    op: str  # "&&" or "||"
    left: "Expr"
    right: "Expr"


@dataclass(frozen=True)
class Conditional:
    test: "Expr"
    consequent: "Expr"
    alternate: "Expr"


@dataclass(frozen=True)
class Member:
    target: "Expr"
    name: str


@dataclass(frozen=True)
class Index:
    target: "Expr"
    index: "Expr"


@dataclass(frozen=True)
class ArrayLiteral:
    items: tuple["Expr", ...]


@dataclass(frozen=True)
class ObjectLiteral:
    entries: tuple[tuple[str, "Expr"], ...]


Expr = Union[
    Literal, Variable, Unary, Binary, Logical, Conditional,
    Member, Index, ArrayLiteral, ObjectLiteral,
]

_KEYWORD_VALUES = {"true": True, "false": False, "null": None}

# Parenthesis, bracket and unary-operator nesting allowed in one expression.
MAX_NESTING = 32


# ── Parser ────────────────────────────────────────────────────────────────────


class Parser:
    """Parses one expression string into an AST.

    Usage::

        tree = Parser("$score > 0.5 && !$flagged").parse()
    """

    def __init__(self, source: str) -> None:
        self.source = source
        self.tokens: list[Token] = tokenize(source)
        self.pos = 0
        self.depth = 0

    # ── Token helpers ─────────────────────────────────────────────────────────

    def peek(self) -> Token:
        return self.tokens[self.pos]

    def advance(self) -> Token:
        token = self.tokens[self.pos]
        if token.type != "EOF":
            self.pos += 1
        return token

    def match(self, type_: str, *values: str) -> Optional[Token]:
        token = self.peek()
        if token.type == type_ and (not values or token.value in values):
            return self.advance()
        return None

    def expect(self, type_: str, value: Optional[str] = None) -> Token:
        token = self.peek()
        if token.type != type_ or (value is not None and token.value != value):
            wanted = value or type_
            raise self.error(f"Expected {wanted!r}", token)
        return self.advance()

    def error(self, message: str, token: Token) -> EvaluationError:
        found = "end of expression" if token.type == "EOF" else repr(token.value)
        return EvaluationError(
            f"{message} but found {found} at position {token.position} in {self.source!r}",
            expression=self.source,
            position=token.position,
        )

    def enter(self) -> None:
        self.depth += 1
        if self.depth > MAX_NESTING:
            raise self.error(f"Expression nested deeper than {MAX_NESTING} levels", self.peek())

    # ── Entry point ───────────────────────────────────────────────────────────

    def parse(self) -> Expr:
        if self.peek().type == "EOF":
            raise EvaluationError("Empty expression", expression=self.source, position=0)
        expr = self.parse_expression()
        token = self.peek()
        if token.type != "EOF":
            raise self.error("Expected end of expression", token)
        return expr

    # ── Precedence levels ─────────────────────────────────────────────────────

    def parse_expression(self) -> Expr:
        self.enter()
        try:
            return self.parse_conditional()
        finally:
            self.depth -= 1

    def parse_conditional(self) -> Expr:
        test = self.parse_or()
        if self.match("QUESTION"):
            consequent = self.parse_expression()
            self.expect("COLON")
            alternate = self.parse_expression()
            return Conditional(test, consequent, alternate)
        return test

    def parse_or(self) -> Expr:
        expr = self.parse_and()
        while self.match("OP", "||"):
            expr = Logical("||", expr, self.parse_and())
        return expr

    def parse_and(self) -> Expr:
        expr = self.parse_equality()
        while self.match("OP", "&&"):
            expr = Logical("&&", expr, self.parse_equality())
        return expr

    def parse_equality(self) -> Expr:
        expr = self.parse_comparison()
        while True:
            token = self.match("OP", "==", "!=", "===", "!==")
            if token is None:
                return expr
            expr = Binary(token.value, expr, self.parse_comparison())

    def parse_comparison(self) -> Expr:
        expr = self.parse_additive()
        while True:
            token = self.match("OP", "<", "<=", ">", ">=")
            if token is None:
                return expr
            expr = Binary(token.value, expr, self.parse_additive())

    def parse_additive(self) -> Expr:
        expr = self.parse_multiplicative()
        while True:
            token = self.match("OP", "+", "-")
            if token is None:
                return expr
            expr = Binary(token.value, expr, self.parse_multiplicative())

    def parse_multiplicative(self) -> Expr:
        expr = self.parse_unary()
        while True:
            token = self.match("OP", "*", "/", "%")
            if token is None:
                return expr
            expr = Binary(token.value, expr, self.parse_unary())

    def parse_unary(self) -> Expr:
        token = self.match("OP", "!", "-", "+")
        if token is not None:
            self.enter()
            try:
                return Unary(token.value, self.parse_unary())
            finally:
                self.depth -= 1
        return self.parse_postfix(self.parse_primary())

    def parse_postfix(self, expr: Expr) -> Expr:
        while True:
            if self.match("DOT"):
                name_tok = self.peek()
                if name_tok.type not in ("IDENT", "KEYWORD"):
                    raise self.error("Expected property name after '.'", name_tok)
                self.advance()
                expr = Member(expr, name_tok.value)
            elif self.match("LBRACKET"):
                index = self.parse_expression()
                self.expect("RBRACKET")
                expr = Index(expr, index)
            else:
                return expr

    def parse_primary(self) -> Expr:
        token = self.peek()

        if token.type in ("NUMBER", "STRING"):
            self.advance()
            return Literal(token.value)
        if token.type == "KEYWORD":
            self.advance()
            return Literal(_KEYWORD_VALUES[token.value])
        if token.type == "VARIABLE":
            self.advance()
            return Variable(token.value, token.position)
        if token.type == "LPAREN":
            self.advance()
            expr = self.parse_expression()
            self.expect("RPAREN")
            return expr
        if token.type == "LBRACKET":
            return self.parse_array()
        if token.type == "LBRACE":
            return self.parse_object()
        if token.type == "IDENT":
            raise self.error(
                "Unknown identifier (reference variables as $name)", token
            )
        raise self.error("Expected a value", token)

    def parse_array(self) -> ArrayLiteral:
        self.expect("LBRACKET")
        items: list[Expr] = []
        while self.peek().type != "RBRACKET":
            items.append(self.parse_expression())
            if not self.match("COMMA"):
                break
        self.expect("RBRACKET")
        return ArrayLiteral(tuple(items))

    def parse_object(self) -> ObjectLiteral:
        self.expect("LBRACE")
        entries: list[tuple[str, Expr]] = []
        while self.peek().type != "RBRACE":
            key_tok = self.peek()
            if key_tok.type not in ("STRING", "IDENT", "KEYWORD", "NUMBER"):
                raise self.error("Expected object key", key_tok)
            self.advance()
            self.expect("COLON")
            entries.append((str(key_tok.value), self.parse_expression()))
            if not self.match("COMMA"):
                break
        self.expect("RBRACE")
        return ObjectLiteral(tuple(entries))


def parse(source: str) -> Expr:
    """Parse ``source`` into an AST, raising EvaluationError on bad syntax."""
    if not isinstance(source, str):
        raise EvaluationError(
            f"Expression must be a string, got {type(source).__name__}",
            expression=str(source),
        )
    try:
        return Parser(source).parse()
    except RecursionError as exc:
        raise EvaluationError(
            "Expression is nested too deeply to parse", expression=source
        ) from exc
