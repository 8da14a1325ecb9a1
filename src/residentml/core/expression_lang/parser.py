"""
Recursive descent parser for attribute expressions.

Grammar (precedence low to high):
    expr        → or_expr
    or_expr     → and_expr ("||" and_expr)*
    and_expr    → equality ("&&" equality)*
    equality    → relational (("==" | "!=" | "===" | "!==") relational)*
    relational  → additive (("<" | ">" | "<=" | ">=") additive)*
    additive    → multiply (("+" | "-") multiply)*
    multiply    → unary (("*" | "/" | "%") unary)*
    unary       → ("!" | "-" | "+") unary | postfix
    postfix     → primary ("." IDENT call_args? | "[" expr "]")*
    call_args   → "(" (expr ("," expr)*)? ")"        only for allow-listed methods
    primary     → literal | var_ref | IDENT | "(" expr ")"
    var_ref     → "$vars" ("." IDENT | "[" STRING "]")
    literal     → INT | FLOAT | STRING | "true" | "false" | "null" | "undefined"

There are no free function calls, assignments or other statements; markup is
untrusted and the grammar is the sandbox.
"""

from __future__ import annotations

from collections.abc import Callable
from functools import lru_cache

from residentml.core.expression_lang.tokenizer import (
    ExpressionTokenError,
    Token,
    TokenKind,
    tokenize,
)
from residentml.core.ir.expressions import (
    ALLOWED_METHODS,
    BinaryExpr,
    BinaryOp,
    Expr,
    Identifier,
    IndexExpr,
    Literal,
    MemberExpr,
    MethodCall,
    UnaryExpr,
    UnaryOp,
    VarRef,
    iter_children,
)

DEFAULT_MAX_NODES = 1000


class ExpressionParseError(Exception):
    """Error during expression parsing."""

    def __init__(self, message: str, pos: int = 0) -> None:
        super().__init__(message)
        self.message = message
        self.pos = pos


_EQUALITY_OPS: dict[TokenKind, BinaryOp] = {
    TokenKind.EQ: BinaryOp.EQ,
    TokenKind.NE: BinaryOp.NE,
    TokenKind.STRICT_EQ: BinaryOp.STRICT_EQ,
    TokenKind.STRICT_NE: BinaryOp.STRICT_NE,
}

_RELATIONAL_OPS: dict[TokenKind, BinaryOp] = {
    TokenKind.LT: BinaryOp.LT,
    TokenKind.GT: BinaryOp.GT,
    TokenKind.LE: BinaryOp.LE,
    TokenKind.GE: BinaryOp.GE,
}

_MULTIPLY_OPS: dict[TokenKind, BinaryOp] = {
    TokenKind.STAR: BinaryOp.MUL,
    TokenKind.SLASH: BinaryOp.DIV,
    TokenKind.PERCENT: BinaryOp.MOD,
}

_UNARY_OPS: dict[TokenKind, UnaryOp] = {
    TokenKind.NOT: UnaryOp.NOT,
    TokenKind.MINUS: UnaryOp.NEG,
    TokenKind.PLUS: UnaryOp.POS,
}


class _Parser:
    """Recursive descent parser for expressions."""

    def __init__(self, tokens: list[Token]) -> None:
        self.tokens = tokens
        self.pos = 0

    @property
    def current(self) -> Token:
        return self.tokens[self.pos]

    def peek(self, offset: int = 0) -> Token:
        idx = self.pos + offset
        if idx < len(self.tokens):
            return self.tokens[idx]
        return self.tokens[-1]  # EOF

    def advance(self) -> Token:
        tok = self.tokens[self.pos]
        if self.pos < len(self.tokens) - 1:
            self.pos += 1
        return tok

    def expect(self, kind: TokenKind) -> Token:
        tok = self.current
        if tok.kind != kind:
            raise ExpressionParseError(
                f"Expected {kind}, got {tok.kind} ({tok.value!r})",
                tok.pos,
            )
        return self.advance()

    def match(self, *kinds: TokenKind) -> Token | None:
        if self.current.kind in kinds:
            return self.advance()
        return None

    # -- Grammar rules --

    def parse_expr(self) -> Expr:
        return self.parse_or_expr()

    def parse_or_expr(self) -> Expr:
        """and_expr ("||" and_expr)*"""
        left = self.parse_and_expr()
        while self.match(TokenKind.OR):
            right = self.parse_and_expr()
            left = BinaryExpr(op=BinaryOp.OR, left=left, right=right)
        return left

    def parse_and_expr(self) -> Expr:
        """equality ("&&" equality)*"""
        left = self.parse_equality()
        while self.match(TokenKind.AND):
            right = self.parse_equality()
            left = BinaryExpr(op=BinaryOp.AND, left=left, right=right)
        return left

    def parse_equality(self) -> Expr:
        return self._parse_binary_level(_EQUALITY_OPS, self.parse_relational)

    def parse_relational(self) -> Expr:
        return self._parse_binary_level(_RELATIONAL_OPS, self.parse_addition)

    def parse_addition(self) -> Expr:
        """multiply (('+' | '-') multiply)*"""
        left = self.parse_multiply()
        while self.current.kind in (TokenKind.PLUS, TokenKind.MINUS):
            op = BinaryOp.ADD if self.current.kind == TokenKind.PLUS else BinaryOp.SUB
            self.advance()
            right = self.parse_multiply()
            left = BinaryExpr(op=op, left=left, right=right)
        return left

    def parse_multiply(self) -> Expr:
        return self._parse_binary_level(_MULTIPLY_OPS, self.parse_unary)

    def _parse_binary_level(
        self, ops: dict[TokenKind, BinaryOp], operand: Callable[[], Expr]
    ) -> Expr:
        left = operand()
        while self.current.kind in ops:
            op = ops[self.advance().kind]
            right = operand()
            left = BinaryExpr(op=op, left=left, right=right)
        return left

    def parse_unary(self) -> Expr:
        """('!' | '-' | '+') unary | postfix"""
        if self.current.kind in _UNARY_OPS:
            op = _UNARY_OPS[self.advance().kind]
            return UnaryExpr(op=op, operand=self.parse_unary())
        return self.parse_postfix()

    def parse_postfix(self) -> Expr:
        """primary ('.' IDENT call_args? | '[' expr ']')*"""
        expr = self.parse_primary()
        while True:
            if self.match(TokenKind.DOT):
                name = self.expect(TokenKind.IDENT)
                if self.current.kind == TokenKind.LPAREN:
                    if name.value not in ALLOWED_METHODS:
                        raise ExpressionParseError(
                            f"Method '{name.value}' is not allowed",
                            name.pos,
                        )
                    expr = MethodCall(object=expr, method=name.value, args=self._parse_call_args())
                else:
                    expr = MemberExpr(object=expr, name=name.value)
            elif self.match(TokenKind.LBRACKET):
                index = self.parse_expr()
                self.expect(TokenKind.RBRACKET)
                expr = IndexExpr(object=expr, index=index)
            else:
                return expr

    def _parse_call_args(self) -> list[Expr]:
        self.expect(TokenKind.LPAREN)
        args: list[Expr] = []
        if self.current.kind != TokenKind.RPAREN:
            args.append(self.parse_expr())
            while self.match(TokenKind.COMMA):
                args.append(self.parse_expr())
        self.expect(TokenKind.RPAREN)
        return args

    def parse_primary(self) -> Expr:
        """literal | var_ref | IDENT | '(' expr ')'"""
        tok = self.current

        if tok.kind == TokenKind.LPAREN:
            self.advance()
            expr = self.parse_expr()
            self.expect(TokenKind.RPAREN)
            return expr

        if tok.kind == TokenKind.INT:
            self.advance()
            return Literal(value=int(tok.value))
        if tok.kind == TokenKind.FLOAT:
            self.advance()
            return Literal(value=float(tok.value))
        if tok.kind == TokenKind.STRING:
            self.advance()
            return Literal(value=tok.value)
        if tok.kind == TokenKind.TRUE:
            self.advance()
            return Literal(value=True)
        if tok.kind == TokenKind.FALSE:
            self.advance()
            return Literal(value=False)
        if tok.kind == TokenKind.NULL:
            self.advance()
            return Literal(value=None)

        if tok.kind == TokenKind.VARS:
            return self._parse_var_ref()

        if tok.kind == TokenKind.IDENT:
            self.advance()
            if self.current.kind == TokenKind.LPAREN:
                raise ExpressionParseError(
                    f"Function calls are not allowed: {tok.value}()",
                    tok.pos,
                )
            return Identifier(name=tok.value)

        raise ExpressionParseError(
            f"Unexpected token: {tok.kind} ({tok.value!r})",
            tok.pos,
        )

    def _parse_var_ref(self) -> VarRef:
        """'$vars' ('.' IDENT | '[' STRING ']')"""
        vars_tok = self.expect(TokenKind.VARS)
        if self.match(TokenKind.DOT):
            return VarRef(name=self.expect(TokenKind.IDENT).value)
        if self.match(TokenKind.LBRACKET):
            name = self.expect(TokenKind.STRING)
            self.expect(TokenKind.RBRACKET)
            return VarRef(name=name.value)
        raise ExpressionParseError("$vars must be followed by a variable name", vars_tok.pos)


def count_nodes(expr: Expr) -> int:
    """Number of AST nodes in an expression."""
    total = 0
    stack = [expr]
    while stack:
        node = stack.pop()
        total += 1
        stack.extend(iter_children(node))
    return total


@lru_cache(maxsize=1024)
def parse_expr(source: str, max_nodes: int = DEFAULT_MAX_NODES) -> Expr:
    """Parse an expression string into an AST.

    Results are cached; the returned nodes are frozen and safe to share.

    Args:
        source: Expression string (e.g., "$vars.price * $vars.quantity")
        max_nodes: Upper bound on the AST size

    Returns:
        Parsed expression AST.

    Raises:
        ExpressionParseError: If the expression is invalid or too large.
    """
    if not source.strip():
        raise ExpressionParseError("Empty expression", 0)

    try:
        tokens = tokenize(source)
    except ExpressionTokenError as e:
        raise ExpressionParseError(str(e), e.pos) from e

    parser = _Parser(tokens)
    try:
        expr = parser.parse_expr()
    except RecursionError as e:
        raise ExpressionParseError("Expression is nested too deeply", parser.current.pos) from e

    if parser.current.kind != TokenKind.EOF:
        raise ExpressionParseError(
            f"Unexpected token after expression: {parser.current.value!r}",
            parser.current.pos,
        )

    size = count_nodes(expr)
    if size > max_nodes:
        raise ExpressionParseError(f"Expression has {size} nodes, limit is {max_nodes}", 0)

    return expr
