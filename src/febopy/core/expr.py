"""Recursive-descent compiler for ``febo_expr_v1`` expressions.

Compilation is independent of any interaction: it produces a typed AST and
records which identifiers are used as index symbols, reduction targets or
plain names. Binding those symbols to an interaction's ``bind`` list is a
separate pass (see :mod:`febopy.modeling.validators.binding`).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache

from febopy.errors import CompileError

from .builtins import BUILTINS, REDUCTION_OPS
from .expr_ast import BinOp, Call, Literal, Node, Ref, Reduction, UnaryOp, walk
from .lexer import COMMA, END, IDENT, LBRACKET, LPAREN, NUMBER, OP, RBRACKET, RPAREN, Token, tokenize


logger = logging.getLogger(__name__)

EXPR_LANG = "febo_expr_v1"
Arity = int | str | None


@dataclass(frozen=True)
class CompiledExpr:
    """A compiled expression; immutable and shareable across evaluations."""

    source: str
    ast: Node
    declared_arity: Arity = None

    @property
    def index_symbols(self) -> tuple[str, ...]:
        """Identifiers used in index positions, in first-appearance order."""

        seen: dict[str, None] = {}
        for node in walk(self.ast):
            if isinstance(node, Ref):
                for idx in node.indices:
                    if isinstance(idx, Ref):
                        seen.setdefault(idx.name, None)
        return tuple(seen)

    @property
    def reduction_symbols(self) -> tuple[str, ...]:
        seen: dict[str, None] = {}
        for node in walk(self.ast):
            if isinstance(node, Reduction):
                seen.setdefault(node.symbol, None)
        return tuple(seen)

    @property
    def names(self) -> tuple[str, ...]:
        """Referenced names outside index positions (arrays, scalars, symbols)."""

        index_nodes = {
            id(idx) for node in walk(self.ast) if isinstance(node, Ref) for idx in node.indices
        }
        seen: dict[str, None] = {}
        for node in walk(self.ast):
            if isinstance(node, Ref) and id(node) not in index_nodes:
                seen.setdefault(node.name, None)
        return tuple(seen)

    @property
    def is_constant(self) -> bool:
        return not any(isinstance(node, Ref) for node in walk(self.ast))

    def substitute(self, values: dict[str, float | int], *, protected: frozenset[str] = frozenset()) -> CompiledExpr:
        """Replace un-indexed references to ``values`` keys by literals.

        Names in ``protected`` (bound index symbols) and reduction symbols are
        left untouched, as are index positions.
        """

        if not values:
            return self
        shadowed = set(protected) | set(self.reduction_symbols)
        new_ast = _substitute(self.ast, values, shadowed)
        if new_ast is self.ast:
            return self
        return CompiledExpr(source=self.source, ast=new_ast, declared_arity=self.declared_arity)


def _substitute(node: Node, values: dict[str, float | int], shadowed: set[str]) -> Node:
    # Index lists stay symbolic: substitution never descends into them.
    if isinstance(node, Ref):
        if node.indices or node.name not in values or node.name in shadowed:
            return node
        return Literal(values[node.name], node.span)
    if isinstance(node, Reduction):
        body = _substitute(node.body, values, shadowed)
        return node if body is node.body else Reduction(node.op, node.symbol, body, node.span)
    if isinstance(node, Call):
        args = tuple(_substitute(a, values, shadowed) for a in node.args)
        return node if all(a is b for a, b in zip(args, node.args)) else Call(node.name, args, node.span)
    if isinstance(node, BinOp):
        left = _substitute(node.left, values, shadowed)
        right = _substitute(node.right, values, shadowed)
        if left is node.left and right is node.right:
            return node
        return BinOp(node.op, left, right, node.span)
    if isinstance(node, UnaryOp):
        operand = _substitute(node.operand, values, shadowed)
        return node if operand is node.operand else UnaryOp(node.op, operand, node.span)
    return node


class _Parser:
    def __init__(self, text: str) -> None:
        self.text = text
        self.tokens = tokenize(text)
        self.pos = 0

    @property
    def current(self) -> Token:
        return self.tokens[self.pos]

    def _advance(self) -> Token:
        tok = self.tokens[self.pos]
        self.pos += 1
        return tok

    def _error(self, code: str, message: str, tok: Token | None = None) -> CompileError:
        tok = tok or self.current
        return CompileError(code, message, source=self.text, span=(tok.start, max(tok.end, tok.start + 1)))

    def parse(self) -> Node:
        if self.current.kind == END:
            raise self._error("Syntax", "Empty expression.")
        node = self._expr()
        if self.current.kind != END:
            tok = self.current
            if tok.kind in (RPAREN, RBRACKET):
                raise self._error("Syntax", f"Unbalanced '{tok.text}'.")
            raise self._error("Syntax", f"Unexpected token '{tok.text}'.")
        return node

    def _expr(self) -> Node:
        node = self._term()
        while self.current.kind == OP and self.current.text in "+-":
            op = self._advance().text
            right = self._term()
            node = BinOp(op, node, right, (node.span[0], right.span[1]))
        return node

    def _term(self) -> Node:
        node = self._factor()
        while self.current.kind == OP and self.current.text in "*/":
            op = self._advance().text
            right = self._factor()
            node = BinOp(op, node, right, (node.span[0], right.span[1]))
        return node

    def _factor(self) -> Node:
        base = self._unary()
        if self.current.kind == OP and self.current.text == "^":
            self._advance()
            exponent = self._factor()
            return BinOp("^", base, exponent, (base.span[0], exponent.span[1]))
        return base

    def _unary(self) -> Node:
        tok = self.current
        if tok.kind == OP and tok.text in "+-":
            self._advance()
            operand = self._unary()
            if tok.text == "+":
                return operand
            return UnaryOp("-", operand, (tok.start, operand.span[1]))
        return self._base()

    def _base(self) -> Node:
        tok = self.current
        if tok.kind == NUMBER:
            self._advance()
            return Literal(tok.value, (tok.start, tok.end))
        if tok.kind == LPAREN:
            self._advance()
            node = self._expr()
            if self.current.kind != RPAREN:
                raise self._error("Syntax", "Unbalanced '(': missing ')'.", tok)
            self._advance()
            return node
        if tok.kind == IDENT:
            self._advance()
            if self.current.kind == LPAREN:
                return self._call(tok)
            if self.current.kind == LBRACKET:
                return self._indexed(tok)
            return Ref(tok.text, (), (tok.start, tok.end))
        if tok.kind == END:
            raise self._error("Syntax", "Unexpected end of expression.")
        raise self._error("Syntax", f"Unexpected token '{tok.text}'.")

    def _indexed(self, name_tok: Token) -> Node:
        open_tok = self._advance()
        indices = [self._index()]
        while self.current.kind == COMMA:
            self._advance()
            indices.append(self._index())
        if self.current.kind != RBRACKET:
            raise self._error("Syntax", "Unbalanced '[': missing ']'.", open_tok)
        close = self._advance()
        return Ref(name_tok.text, tuple(indices), (name_tok.start, close.end))

    def _index(self) -> Ref | Literal:
        tok = self.current
        if tok.kind == IDENT:
            self._advance()
            return Ref(tok.text, (), (tok.start, tok.end))
        if tok.kind == NUMBER:
            if not isinstance(tok.value, int):
                raise self._error("Syntax", f"Index literal '{tok.text}' must be an integer.")
            self._advance()
            return Literal(tok.value, (tok.start, tok.end))
        raise self._error("Syntax", "Index must be a symbol or an integer literal.")

    def _call(self, name_tok: Token) -> Node:
        open_tok = self._advance()
        args: list[Node] = []
        if self.current.kind != RPAREN:
            args.append(self._expr())
            while self.current.kind == COMMA:
                self._advance()
                args.append(self._expr())
        if self.current.kind != RPAREN:
            if self.current.kind == END:
                raise self._error("Syntax", "Unbalanced '(': missing ')'.", open_tok)
            raise self._error("Syntax", f"Unexpected token '{self.current.text}' in argument list.")
        close = self._advance()
        span = (name_tok.start, close.end)
        name = name_tok.text

        op, sep, symbol = name.partition("_")
        if sep and op in REDUCTION_OPS and name not in BUILTINS:
            if not symbol or not (symbol[0].isalpha()):
                raise CompileError(
                    "Syntax",
                    f"Reduction target in '{name}' must be an identifier.",
                    source=self.text,
                    span=(name_tok.start, name_tok.end),
                )
            if len(args) != 1:
                raise CompileError(
                    "Arity",
                    f"Reduction '{name}' takes exactly one argument, got {len(args)}.",
                    source=self.text,
                    span=span,
                )
            return Reduction(op, symbol, args[0], span)

        builtin = BUILTINS.get(name)
        if builtin is None:
            raise CompileError(
                "UnknownFunction",
                f"Unknown function '{name}'.",
                source=self.text,
                span=(name_tok.start, name_tok.end),
            )
        if not builtin.accepts(len(args)):
            expected = str(builtin.min_args) if builtin.max_args == builtin.min_args else f"at least {builtin.min_args}"
            raise CompileError(
                "Arity",
                f"Function '{name}' expects {expected} argument(s), got {len(args)}.",
                source=self.text,
                span=span,
            )
        return Call(name, tuple(args), span)


def parse_expression(text: str) -> Node:
    return _Parser(text).parse()


@lru_cache(maxsize=4096)
def _compile_cached(text: str, declared_arity: Arity) -> CompiledExpr:
    compiled = CompiledExpr(source=text, ast=parse_expression(text), declared_arity=declared_arity)
    logger.debug("Compiled expression %r (arity=%r)", text, declared_arity)
    if isinstance(declared_arity, int):
        symbols = set(compiled.index_symbols) | set(compiled.reduction_symbols)
        if len(symbols) > declared_arity:
            raise CompileError(
                "Arity",
                f"Expression uses {len(symbols)} index symbol(s) {sorted(symbols)} "
                f"but declares arity {declared_arity}.",
                source=text,
                span=(0, len(text)),
            )
    return compiled


def compile_expression(text: str | int | float, declared_arity: Arity = None) -> CompiledExpr:
    """Compile ``febo_expr_v1`` text into a :class:`CompiledExpr`.

    Numbers are accepted directly and compile to a literal. Raises
    :class:`~febopy.errors.CompileError` on malformed input.
    """

    if isinstance(text, bool):
        raise CompileError("BadLiteral", f"Boolean {text!r} is not a numeric expression.", source=str(text))
    if isinstance(text, (int, float)):
        return CompiledExpr(source=repr(text), ast=Literal(text, (0, 0)), declared_arity=declared_arity)
    if not isinstance(text, str):
        raise CompileError("Syntax", f"Expression must be a string, got {type(text).__name__}.", source=str(text))
    if isinstance(declared_arity, int) and declared_arity < 0:
        raise CompileError("Arity", f"Declared arity must be non-negative, got {declared_arity}.", source=text)
    return _compile_cached(text, declared_arity)

