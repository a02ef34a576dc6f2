"""Scalar evaluation of compiled expression trees."""

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

import numpy as np

from .builtins import BUILTINS, DomainViolation, divide, power
from .expr_ast import BinOp, Call, Literal, Node, Ref, Reduction, UnaryOp


Array = np.ndarray


class LookupViolation(LookupError):
    """A reference could not be resolved against the evaluation context."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


@dataclass
class EvalContext:
    """Per-instance bindings; owned by a single evaluation call."""

    arrays: Mapping[str, Array]
    index_base: int = 0
    symbols: dict[str, int] = field(default_factory=dict)
    reductions: Mapping[str, Sequence[int]] = field(default_factory=dict)


def _array_item(name: str, arr: Array, indices: tuple[int, ...], base: int) -> float:
    if len(indices) != arr.ndim:
        raise LookupViolation(
            "ShapeMismatch",
            f"'{name}' has {arr.ndim} dimension(s) but was indexed with {len(indices)}.",
        )
    offsets = []
    for axis, k in enumerate(indices):
        pos = k - base
        if pos < 0 or pos >= arr.shape[axis]:
            raise LookupViolation(
                "IndexOutOfBounds",
                f"Index {k} on axis {axis} of '{name}' is outside {base}..{base + arr.shape[axis] - 1}.",
            )
        offsets.append(pos)
    return float(arr[tuple(offsets)])


def _check_overflow(value: float, left: float, right: float, op: str) -> float:
    if math.isinf(value) and math.isfinite(left) and math.isfinite(right):
        raise DomainViolation(f"overflow in {left!r} {op} {right!r}")
    return value


def evaluate_node(node: Node, ctx: EvalContext) -> float:
    if isinstance(node, Literal):
        return float(node.value)

    if isinstance(node, BinOp):
        left = evaluate_node(node.left, ctx)
        right = evaluate_node(node.right, ctx)
        if node.op == "+":
            return _check_overflow(left + right, left, right, "+")
        if node.op == "-":
            return _check_overflow(left - right, left, right, "-")
        if node.op == "*":
            return _check_overflow(left * right, left, right, "*")
        if node.op == "/":
            return divide(left, right)
        if node.op == "^":
            return power(left, right)
        raise ValueError(f"Unknown binary operator '{node.op}'.")

    if isinstance(node, UnaryOp):
        value = evaluate_node(node.operand, ctx)
        return -value if node.op == "-" else value

    if isinstance(node, Ref):
        if not node.indices:
            if node.name in ctx.symbols:
                return float(ctx.symbols[node.name])
            arr = ctx.arrays.get(node.name)
            if arr is None:
                raise LookupViolation("UnresolvedReference", f"Unresolved name '{node.name}'.")
            if arr.ndim != 0 and arr.size != 1:
                raise LookupViolation(
                    "ShapeMismatch",
                    f"'{node.name}' has shape {tuple(arr.shape)} and cannot be used as a scalar.",
                )
            return float(arr.reshape(()))
        arr = ctx.arrays.get(node.name)
        if arr is None:
            raise LookupViolation("UnresolvedReference", f"Unresolved array '{node.name}'.")
        keys = []
        for idx in node.indices:
            if isinstance(idx, Literal):
                keys.append(int(idx.value))
            else:
                try:
                    keys.append(ctx.symbols[idx.name])
                except KeyError as exc:
                    raise LookupViolation("UnboundSymbol", f"Index symbol '{idx.name}' is not bound.") from exc
        return _array_item(node.name, arr, tuple(keys), ctx.index_base)

    if isinstance(node, Reduction):
        try:
            domain = ctx.reductions[node.symbol]
        except KeyError as exc:
            raise LookupViolation("UnboundSymbol", f"No reduction domain for symbol '{node.symbol}'.") from exc
        previous = ctx.symbols.get(node.symbol)
        acc = 0.0 if node.op == "sum" else 1.0
        try:
            for k in domain:
                ctx.symbols[node.symbol] = int(k)
                term = evaluate_node(node.body, ctx)
                acc = acc + term if node.op == "sum" else acc * term
        finally:
            if previous is None:
                ctx.symbols.pop(node.symbol, None)
            else:
                ctx.symbols[node.symbol] = previous
        return acc

    if isinstance(node, Call):
        args = [evaluate_node(arg, ctx) for arg in node.args]
        return float(BUILTINS[node.name].fn(*args))

    raise TypeError(f"Unknown AST node: {node!r}")


def evaluate_scalar(node: Node, arrays: Mapping[str, Array] | None = None, *, index_base: int = 0) -> float:
    """Evaluate an expression with no bound index symbols."""

    return evaluate_node(node, EvalContext(arrays=arrays or {}, index_base=index_base))
