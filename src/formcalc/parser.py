"""Tokenizer and recursive descent parser for form expressions.

Grammar:
    expr        = ternary
    ternary     = or_expr ("?" expr ":" expr)?
    or_expr     = and_expr (("||" | "or") and_expr)*
    and_expr    = cmp_expr (("&&" | "and") cmp_expr)*
    cmp_expr    = add_expr (("==" | "!=" | "<" | ">" | "<=" | ">=") add_expr)?
    add_expr    = mul_expr (("+" | "-") mul_expr)*
    mul_expr    = unary (("*" | "/" | "%") unary)*
    unary       = ("-" | "+" | "!" | "not") unary | postfix
    postfix     = primary ("(" args ")")? ("." NAME)*
    primary     = NUMBER | STRING | "true" | "false" | "null" | NAME | SCOPED
                | "(" expr ")"

"===" and "!==" are accepted as "==" and "!=". Only bare names can be
called, so "Math.round(x)" is rejected while "round(x)" is fine.
"""

import re
from dataclasses import dataclass

from . import ast
from .errors import ParseError

__all__ = ["Lexer", "ParseError", "Parser", "Token", "parse"]


@dataclass
class Token:
    type: str
    value: str
    pos: int


class Lexer:
    """Regex lexer for expressions."""

    KEYWORDS = {"true", "false", "null", "and", "or", "not"}

    TOKEN_PATTERNS = [
        (re.compile(r"\s+"), "WS"),
        (re.compile(r"\d+\.\d*(?:[eE][+-]?\d+)?|\.\d+(?:[eE][+-]?\d+)?|\d+[eE][+-]?\d+"), "FLOAT"),
        (re.compile(r"\d+"), "INT"),
        (re.compile(r'"(?:[^"\\]|\\.)*"'), "STRING"),
        (re.compile(r"'(?:[^'\\]|\\.)*'"), "STRING"),
        # products[2].quantity is one identifier, not an index expression
        (re.compile(r"[a-zA-Z_$][\w$]*\[\d+\](?:\.[a-zA-Z_$][\w$]*)+"), "SCOPED"),
        (re.compile(r"[a-zA-Z_$][\w$]*"), "IDENT"),
        (re.compile(r"===|=="), "EQ"),
        (re.compile(r"!==|!="), "NE"),
        (re.compile(r"<="), "LE"),
        (re.compile(r">="), "GE"),
        (re.compile(r"&&"), "AND"),
        (re.compile(r"\|\|"), "OR"),
        (re.compile(r"!"), "NOT"),
        (re.compile(r"\?"), "QUESTION"),
        (re.compile(r":"), "COLON"),
        (re.compile(r"\+"), "PLUS"),
        (re.compile(r"-"), "MINUS"),
        (re.compile(r"\*"), "STAR"),
        (re.compile(r"/"), "SLASH"),
        (re.compile(r"%"), "PERCENT"),
        (re.compile(r"<"), "LT"),
        (re.compile(r">"), "GT"),
        (re.compile(r"\("), "LPAREN"),
        (re.compile(r"\)"), "RPAREN"),
        (re.compile(r","), "COMMA"),
        (re.compile(r"\."), "DOT"),
    ]

    def __init__(self, source: str):
        self.source = source
        self.pos = 0
        self.tokens: list[Token] = []
        self._tokenise()

    def _tokenise(self) -> None:
        while self.pos < len(self.source):
            for pattern, ttype in self.TOKEN_PATTERNS:
                m = pattern.match(self.source, self.pos)
                if m:
                    value = m.group(0)
                    if ttype != "WS":
                        if ttype == "IDENT" and value in self.KEYWORDS:
                            ttype = value.upper()
                        self.tokens.append(Token(ttype, value, self.pos))
                    self.pos += len(value)
                    break
            else:
                raise ParseError(f"unexpected char: {self.source[self.pos]!r}", self.pos)

        self.tokens.append(Token("EOF", "", self.pos))


_ESCAPES = {"n": "\n", "t": "\t", "r": "\r"}


def _unquote(raw: str) -> str:
    body = raw[1:-1]
    return re.sub(r"\\(.)", lambda m: _ESCAPES.get(m.group(1), m.group(1)), body)


class Parser:
    """Recursive descent parser producing ast.Expr trees."""

    def __init__(self, tokens: list[Token]):
        self.tokens = tokens
        self.pos = 0

    def peek(self, offset: int = 0) -> Token:
        idx = self.pos + offset
        if idx >= len(self.tokens):
            return self.tokens[-1]
        return self.tokens[idx]

    def at(self, *types: str) -> bool:
        return self.peek().type in types

    def consume(self, ttype: str) -> Token:
        tok = self.peek()
        if tok.type != ttype:
            raise ParseError(f"expected {ttype}, got {tok.type or 'end of input'}", tok.pos)
        self.pos += 1
        return tok

    def match(self, *types: str) -> Token | None:
        if self.at(*types):
            tok = self.peek()
            self.pos += 1
            return tok
        return None

    def parse(self) -> ast.Expr:
        """Parse a complete expression; trailing tokens are an error."""
        if self.at("EOF"):
            raise ParseError("empty expression", self.peek().pos)
        expr = self.parse_expr()
        tok = self.peek()
        if tok.type != "EOF":
            raise ParseError(f"unexpected token: {tok.value!r}", tok.pos)
        return expr

    def parse_expr(self) -> ast.Expr:
        condition = self.parse_or()
        if self.match("QUESTION"):
            then_expr = self.parse_expr()
            self.consume("COLON")
            else_expr = self.parse_expr()
            return ast.Cond(condition=condition, then_expr=then_expr, else_expr=else_expr)
        return condition

    def parse_or(self) -> ast.Expr:
        left = self.parse_and()
        while self.match("OR"):
            right = self.parse_and()
            left = ast.BinOp(op="||", left=left, right=right)
        return left

    def parse_and(self) -> ast.Expr:
        left = self.parse_cmp()
        while self.match("AND"):
            right = self.parse_cmp()
            left = ast.BinOp(op="&&", left=left, right=right)
        return left

    def parse_cmp(self) -> ast.Expr:
        left = self.parse_add()
        op_map = {
            "LT": "<",
            "GT": ">",
            "LE": "<=",
            "GE": ">=",
            "EQ": "==",
            "NE": "!=",
        }
        if tok := self.match("LT", "GT", "LE", "GE", "EQ", "NE"):
            right = self.parse_add()
            return ast.BinOp(op=op_map[tok.type], left=left, right=right)
        return left

    def parse_add(self) -> ast.Expr:
        left = self.parse_mul()
        op_map = {"PLUS": "+", "MINUS": "-"}
        while tok := self.match("PLUS", "MINUS"):
            right = self.parse_mul()
            left = ast.BinOp(op=op_map[tok.type], left=left, right=right)
        return left

    def parse_mul(self) -> ast.Expr:
        left = self.parse_unary()
        op_map = {"STAR": "*", "SLASH": "/", "PERCENT": "%"}
        while tok := self.match("STAR", "SLASH", "PERCENT"):
            right = self.parse_unary()
            left = ast.BinOp(op=op_map[tok.type], left=left, right=right)
        return left

    def parse_unary(self) -> ast.Expr:
        if self.match("MINUS"):
            return ast.UnaryOp(op="-", operand=self.parse_unary())
        if self.match("PLUS"):
            return ast.UnaryOp(op="+", operand=self.parse_unary())
        if self.match("NOT"):
            return ast.UnaryOp(op="!", operand=self.parse_unary())
        return self.parse_postfix()

    def parse_postfix(self) -> ast.Expr:
        """Parse postfix operations (function calls, dotted access)."""
        expr = self.parse_primary()

        while True:
            if self.at("LPAREN"):
                if not isinstance(expr, ast.Var) or "[" in expr.name:
                    tok = self.peek()
                    raise ParseError("can only call named functions", tok.pos)
                self.consume("LPAREN")
                args = []
                if not self.at("RPAREN"):
                    args.append(self.parse_expr())
                    while self.match("COMMA"):
                        args.append(self.parse_expr())
                self.consume("RPAREN")
                expr = ast.Call(func=expr.name, args=args)
            elif self.at("DOT"):
                self.consume("DOT")
                fld = self.consume("IDENT").value
                expr = ast.FieldAccess(obj=expr, field=fld)
            else:
                break

        return expr

    def parse_primary(self) -> ast.Expr:
        if tok := self.match("INT"):
            return ast.Literal(value=int(tok.value))
        if tok := self.match("FLOAT"):
            return ast.Literal(value=float(tok.value))
        if tok := self.match("STRING"):
            return ast.Literal(value=_unquote(tok.value))
        if self.match("TRUE"):
            return ast.Literal(value=True)
        if self.match("FALSE"):
            return ast.Literal(value=False)
        if self.match("NULL"):
            return ast.Literal(value=None)
        if tok := self.match("SCOPED", "IDENT"):
            return ast.Var(name=tok.value)
        if self.match("LPAREN"):
            expr = self.parse_expr()
            self.consume("RPAREN")
            return expr

        tok = self.peek()
        if tok.type == "EOF":
            raise ParseError("unexpected end of expression", tok.pos)
        raise ParseError(f"unexpected token in expression: {tok.value!r}", tok.pos)


def parse(source: str) -> ast.Expr:
    """Parse expression text into an AST."""
    lexer = Lexer(source)
    return Parser(lexer.tokens).parse()
