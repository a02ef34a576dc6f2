"""Streaming aggregators that reduce term-instance values to one scalar."""

from __future__ import annotations

import math
from collections.abc import Iterable
from dataclasses import dataclass

import numpy as np
from scipy.special import logsumexp as _scipy_logsumexp

from febopy.errors import EvalError


AGGREGATOR_KINDS = ("identity", "sum", "prod", "max", "min", "mean", "logsumexp", "logprod", "cvar")
STREAMING_KINDS = frozenset(AGGREGATOR_KINDS) - {"cvar"}

# Floor applied before the log in ``logprod`` so zeros contribute log(1e-12).
LOGPROD_FLOOR = 1e-12


@dataclass(frozen=True)
class AggregatorSpec:
    """Aggregator kind plus its parameters (``beta`` for logsumexp, ``alpha`` for cvar)."""

    kind: str
    beta: float = 1.0
    alpha: float = 0.95

    def __post_init__(self) -> None:
        if self.kind not in AGGREGATOR_KINDS:
            raise ValueError(f"Unknown aggregator '{self.kind}'. Expected one of: {', '.join(AGGREGATOR_KINDS)}.")
        if self.kind == "logsumexp" and (self.beta == 0.0 or not math.isfinite(self.beta)):
            raise ValueError("logsumexp beta must be finite and non-zero.")
        if self.kind == "cvar" and not (0.0 <= self.alpha < 1.0):
            raise ValueError("cvar alpha must be in [0, 1).")

    def fold(self) -> Fold:
        if self.kind == "identity":
            return IdentityFold()
        if self.kind == "sum":
            return SumFold()
        if self.kind == "prod":
            return ProdFold()
        if self.kind in ("max", "min"):
            return ExtremumFold(self.kind)
        if self.kind == "mean":
            return MeanFold()
        if self.kind == "logsumexp":
            return LogSumExpFold(self.beta)
        if self.kind == "logprod":
            return LogProdFold()
        return CVaRFold(self.alpha)

    def to_dict(self) -> dict[str, object]:
        out: dict[str, object] = {"kind": self.kind}
        if self.kind == "logsumexp":
            out["beta"] = self.beta
        if self.kind == "cvar":
            out["alpha"] = self.alpha
        return out


def _empty(kind: str) -> EvalError:
    return EvalError("EmptyDomain", f"Aggregator '{kind}' is undefined over an empty domain.", context={"aggregator": kind})


class Fold:
    """Single-pass reduction; ``push`` each value, then read ``result``."""

    kind = ""

    def __init__(self) -> None:
        self.count = 0

    def push(self, value: float) -> None:
        raise NotImplementedError

    def result(self) -> float:
        raise NotImplementedError


class IdentityFold(Fold):
    kind = "identity"

    def __init__(self) -> None:
        super().__init__()
        self.value = 0.0

    def push(self, value: float) -> None:
        self.count += 1
        self.value = value

    def result(self) -> float:
        if self.count != 1:
            raise EvalError(
                "ArityMismatch",
                f"Aggregator 'identity' requires exactly one term instance, got {self.count}.",
                context={"aggregator": "identity", "expected": 1, "actual": self.count},
            )
        return self.value


class SumFold(Fold):
    kind = "sum"

    def __init__(self) -> None:
        super().__init__()
        self.total = 0.0

    def push(self, value: float) -> None:
        self.count += 1
        self.total += value

    def result(self) -> float:
        return self.total


class ProdFold(Fold):
    kind = "prod"

    def __init__(self) -> None:
        super().__init__()
        self.total = 1.0
        self.has_zero = False

    def push(self, value: float) -> None:
        self.count += 1
        if value == 0.0:
            self.has_zero = True
        self.total *= value

    def result(self) -> float:
        # inf * 0 would give nan; a zero factor makes the product exactly zero.
        return 0.0 if self.has_zero else self.total


class ExtremumFold(Fold):
    def __init__(self, kind: str) -> None:
        super().__init__()
        self.kind = kind
        self.best = 0.0

    def push(self, value: float) -> None:
        if self.count == 0:
            self.best = value
        elif self.kind == "max":
            if value > self.best:
                self.best = value
        elif value < self.best:
            self.best = value
        self.count += 1

    def result(self) -> float:
        if self.count == 0:
            raise _empty(self.kind)
        return self.best


class MeanFold(SumFold):
    kind = "mean"

    def result(self) -> float:
        if self.count == 0:
            raise _empty(self.kind)
        return self.total / self.count


class LogSumExpFold(Fold):
    """Online ``(1/beta) * log(sum(exp(beta * t)))`` with running max shift."""

    kind = "logsumexp"

    def __init__(self, beta: float) -> None:
        super().__init__()
        self.beta = beta
        self.shift = -math.inf
        self.scaled = 0.0

    def push(self, value: float) -> None:
        self.count += 1
        y = self.beta * value
        if y > self.shift:
            self.scaled = self.scaled * math.exp(self.shift - y) + 1.0
            self.shift = y
        elif y == self.shift:
            self.scaled += 1.0
        elif y != -math.inf:
            self.scaled += math.exp(y - self.shift)

    def result(self) -> float:
        if self.count == 0:
            raise _empty(self.kind)
        if self.shift == -math.inf:
            return -math.inf / self.beta
        return (self.shift + math.log(self.scaled)) / self.beta


class LogProdFold(Fold):
    kind = "logprod"

    def __init__(self) -> None:
        super().__init__()
        self.total = 0.0

    def push(self, value: float) -> None:
        self.count += 1
        self.total += math.log(max(value, LOGPROD_FLOOR))

    def result(self) -> float:
        return self.total


class CVaRFold(Fold):
    """Upper-tail conditional value at risk at level ``alpha``.

    Materializes the domain (sorting is required), unlike the other folds.
    """

    kind = "cvar"

    def __init__(self, alpha: float) -> None:
        super().__init__()
        self.alpha = alpha
        self.values: list[float] = []

    def push(self, value: float) -> None:
        self.count += 1
        self.values.append(value)

    def result(self) -> float:
        if self.count == 0:
            raise _empty(self.kind)
        return cvar(self.values, self.alpha)


def cvar(values: Iterable[float], alpha: float) -> float:
    """Mean of the worst ``(1 - alpha)`` fraction of ``values`` (fractional tail)."""

    ordered = sorted((float(v) for v in values), reverse=True)
    n = len(ordered)
    if n == 0:
        raise _empty("cvar")
    tail = (1.0 - alpha) * n
    full = int(math.floor(tail))
    acc = sum(ordered[:full])
    frac = tail - full
    if frac > 0.0 and full < n:
        acc += frac * ordered[full]
    return acc / tail


def aggregate(spec: AggregatorSpec, values: Iterable[float]) -> float:
    fold = spec.fold()
    for value in values:
        fold.push(float(value))
    return fold.result()


def replay_aggregate(spec: AggregatorSpec, values: Iterable[float]) -> float:
    """Recompute an aggregate with vectorized reference formulas.

    Independent of the streaming folds; used to audit recorded decompositions.
    """

    arr = np.asarray(list(values), dtype=float)
    kind = spec.kind
    if kind == "identity":
        if arr.size != 1:
            raise EvalError("ArityMismatch", f"identity replay expects one value, got {arr.size}.")
        return float(arr[0])
    if kind == "sum":
        return float(np.sum(arr))
    if kind == "prod":
        return 0.0 if np.any(arr == 0.0) else float(np.prod(arr))
    if kind == "logprod":
        return float(np.sum(np.log(np.maximum(arr, LOGPROD_FLOOR))))
    if arr.size == 0:
        raise _empty(kind)
    if kind == "max":
        return float(np.max(arr))
    if kind == "min":
        return float(np.min(arr))
    if kind == "mean":
        return float(np.mean(arr))
    if kind == "logsumexp":
        return float(_scipy_logsumexp(spec.beta * arr) / spec.beta)
    return cvar(arr, spec.alpha)
