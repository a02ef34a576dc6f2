"""Abstract syntax tree for ``febo_expr_v1`` expressions."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Union


Span = tuple[int, int]


@dataclass(frozen=True)
class Literal:
    value: int | float
    span: Span = field(default=(0, 0), compare=False)

    @property
    def is_integer(self) -> bool:
        return isinstance(self.value, int)


@dataclass(frozen=True)
class Ref:
    """Named reference, optionally indexed: ``x``, ``i``, ``Q[i, 2]``.

    Each index is either a bare ``Ref`` (a symbol) or an integer ``Literal``.
    """

    name: str
    indices: tuple[Index, ...] = ()
    span: Span = field(default=(0, 0), compare=False)

    @property
    def is_indexed(self) -> bool:
        return len(self.indices) > 0


@dataclass(frozen=True)
class Reduction:
    op: str
    symbol: str
    body: Node
    span: Span = field(default=(0, 0), compare=False)


@dataclass(frozen=True)
class Call:
    name: str
    args: tuple[Node, ...]
    span: Span = field(default=(0, 0), compare=False)


@dataclass(frozen=True)
class BinOp:
    op: str
    left: Node
    right: Node
    span: Span = field(default=(0, 0), compare=False)


@dataclass(frozen=True)
class UnaryOp:
    op: str
    operand: Node
    span: Span = field(default=(0, 0), compare=False)


Node = Union[Literal, Ref, Reduction, Call, BinOp, UnaryOp]
Index = Union[Ref, Literal]


def children(node: Node) -> tuple[Node, ...]:
    if isinstance(node, Ref):
        return tuple(node.indices)
    if isinstance(node, Reduction):
        return (node.body,)
    if isinstance(node, Call):
        return node.args
    if isinstance(node, BinOp):
        return (node.left, node.right)
    if isinstance(node, UnaryOp):
        return (node.operand,)
    return ()


def walk(node: Node) -> Iterator[Node]:
    """Yield ``node`` and all of its descendants, depth first."""

    stack = [node]
    while stack:
        current = stack.pop()
        yield current
        stack.extend(reversed(children(current)))


def unparse(node: Node) -> str:
    """Render an AST back to canonical expression text."""

    if isinstance(node, Literal):
        return repr(node.value)
    if isinstance(node, Ref):
        if not node.indices:
            return node.name
        return f"{node.name}[{', '.join(unparse(i) for i in node.indices)}]"
    if isinstance(node, Reduction):
        return f"{node.op}_{node.symbol}({unparse(node.body)})"
    if isinstance(node, Call):
        return f"{node.name}({', '.join(unparse(a) for a in node.args)})"
    if isinstance(node, BinOp):
        return f"({unparse(node.left)} {node.op} {unparse(node.right)})"
    if isinstance(node, UnaryOp):
        return f"({node.op}{unparse(node.operand)})"
    raise TypeError(f"Unknown AST node: {node!r}")
