"""Built-in scalar functions of ``febo_expr_v1`` with IEEE domain checks."""

from __future__ import annotations

import math
from collections.abc import Callable
from dataclasses import dataclass


REDUCTION_OPS = ("sum", "prod")


class DomainViolation(ArithmeticError):
    """Raised by scalar kernels; the evaluator attaches instance context."""


@dataclass(frozen=True)
class Builtin:
    name: str
    min_args: int
    max_args: int | None
    fn: Callable[..., float]

    def accepts(self, n_args: int) -> bool:
        if n_args < self.min_args:
            return False
        return self.max_args is None or n_args <= self.max_args


def _sqrt(x: float) -> float:
    if x < 0.0:
        raise DomainViolation(f"sqrt of negative argument {x!r}")
    return math.sqrt(x)


def _log(x: float) -> float:
    if x <= 0.0:
        raise DomainViolation(f"log of non-positive argument {x!r}")
    return math.log(x)


def _exp(x: float) -> float:
    try:
        return math.exp(x)
    except OverflowError as exc:
        raise DomainViolation(f"exp overflow for argument {x!r}") from exc


def _trig(fn: Callable[[float], float], name: str) -> Callable[[float], float]:
    def inner(x: float) -> float:
        try:
            return fn(x)
        except ValueError as exc:
            raise DomainViolation(f"{name} undefined for argument {x!r}") from exc

    return inner


def _sum(*args: float) -> float:
    total = 0.0
    for a in args:
        total += a
    return total


def _prod(*args: float) -> float:
    total = 1.0
    for a in args:
        total *= a
    return total


BUILTINS: dict[str, Builtin] = {
    "sqrt": Builtin("sqrt", 1, 1, _sqrt),
    "exp": Builtin("exp", 1, 1, _exp),
    "log": Builtin("log", 1, 1, _log),
    "abs": Builtin("abs", 1, 1, abs),
    "sin": Builtin("sin", 1, 1, _trig(math.sin, "sin")),
    "cos": Builtin("cos", 1, 1, _trig(math.cos, "cos")),
    "tan": Builtin("tan", 1, 1, _trig(math.tan, "tan")),
    "max": Builtin("max", 1, None, max),
    "min": Builtin("min", 1, None, min),
    "sum": Builtin("sum", 1, None, _sum),
    "prod": Builtin("prod", 1, None, _prod),
}


def power(base: float, exponent: float) -> float:
    """Real exponentiation ``base ^ exponent``."""

    if base < 0.0 and not float(exponent).is_integer():
        raise DomainViolation(f"negative base {base!r} with non-integer exponent {exponent!r}")
    if base == 0.0 and exponent < 0.0:
        raise DomainViolation(f"zero base with negative exponent {exponent!r}")
    try:
        out = math.pow(base, exponent)
    except OverflowError as exc:
        raise DomainViolation(f"overflow in {base!r} ^ {exponent!r}") from exc
    return out


def divide(num: float, den: float) -> float:
    if den == 0.0:
        raise DomainViolation(f"division of {num!r} by zero")
    return num / den
