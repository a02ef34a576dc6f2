"""Parameter resolution: overrides, defaults, type and bounds checks."""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from febopy.core.builtins import DomainViolation
from febopy.core.evaluator import LookupViolation, evaluate_scalar
from febopy.core.expr import compile_expression
from febopy.errors import CompileError, ErrorSink, ResolveError, ValidationError
from febopy.modeling.schema import Document, Parameter


logger = logging.getLogger(__name__)

_INFINITIES = {"inf": math.inf, "+inf": math.inf, "-inf": -math.inf, "infinity": math.inf, "-infinity": -math.inf}


@dataclass(frozen=True)
class ResolvedParameters:
    """Concrete parameter values plus where each one came from."""

    values: Mapping[str, Any] = field(default_factory=dict)
    origins: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "values", MappingProxyType(dict(self.values)))
        object.__setattr__(self, "origins", MappingProxyType(dict(self.origins)))

    def __getitem__(self, name: str) -> Any:
        return self.values[name]

    def __contains__(self, name: object) -> bool:
        return name in self.values

    def numeric(self) -> dict[str, int | float]:
        """Values usable inside expressions (``int``/``float``, not ``bool``)."""

        return {
            k: v for k, v in self.values.items() if isinstance(v, (int, float)) and not isinstance(v, bool)
        }


def _coerce(param: Parameter, value: Any) -> Any:
    """Type-check ``value`` against the parameter type; returns the normalized value."""

    ptype = param.type
    if ptype == "bool":
        if isinstance(value, bool):
            return value
    elif ptype == "string":
        if isinstance(value, str):
            return value
    elif ptype == "int":
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, float) and value.is_integer():
            return int(value)
    elif ptype == "float":
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
    raise ResolveError(
        "TypeMismatch",
        f"Parameter '{param.name}' expects {ptype}, got {type(value).__name__} {value!r}.",
        path=("parameters", param.name),
        context={"parameter": param.name, "expected": ptype, "actual": type(value).__name__},
    )


def _check_bounds(param: Parameter, value: Any) -> None:
    if param.bounds is None or param.type not in ("int", "float"):
        return
    lo, hi = param.bounds
    if (lo is not None and value < lo) or (hi is not None and value > hi):
        raise ResolveError(
            "BoundsViolation",
            f"Parameter '{param.name}' = {value!r} is outside [{lo}, {hi}].",
            path=("parameters", param.name),
            context={"parameter": param.name, "value": value, "bounds": [lo, hi]},
        )


def resolve_parameter_values(
    parameters: Iterable[Parameter],
    overrides: Mapping[str, Any] | None = None,
    *,
    collect: bool = False,
) -> ResolvedParameters:
    """Resolve every parameter from overrides, then defaults.

    Overrides naming undeclared parameters raise
    ``ResolveError:UnknownParameter``; a parameter with neither override nor
    default raises ``ResolveError:MissingRequiredParameter``.
    """

    sink = ErrorSink(collect=collect)
    overrides = dict(overrides or {})
    declared = {p.name: p for p in parameters}
    for name in overrides:
        if name not in declared:
            sink.report(
                ResolveError(
                    "UnknownParameter",
                    f"Override names undeclared parameter '{name}'.",
                    path=("parameters", str(name)),
                    context={"parameter": name, "declared": sorted(declared)},
                )
            )

    values: dict[str, Any] = {}
    origins: dict[str, str] = {}
    for name, param in declared.items():
        if name in overrides:
            raw, origin = overrides[name], "override"
        elif param.has_default:
            raw, origin = param.default, "default"
        else:
            sink.report(
                ResolveError(
                    "MissingRequiredParameter",
                    f"Parameter '{name}' has no override and no default.",
                    path=("parameters", name),
                    context={"parameter": name},
                )
            )
            continue
        try:
            value = _coerce(param, raw)
            _check_bounds(param, value)
        except ResolveError as exc:
            sink.report(exc)
            continue
        values[name] = value
        origins[name] = origin
    sink.raise_if_any()
    logger.debug("Resolved %d parameter(s) (%d from overrides).", len(values), sum(o == "override" for o in origins.values()))
    return ResolvedParameters(values=values, origins=origins)


def resolve_parameters(
    document: Document,
    overrides: Mapping[str, Any] | None = None,
    *,
    collect: bool = False,
) -> ResolvedParameters:
    return resolve_parameter_values(document.parameters, overrides, collect=collect)


def evaluate_constant(
    raw: Any,
    parameters: Mapping[str, Any],
    *,
    path: tuple[str, ...] = (),
    what: str = "value",
) -> float:
    """Evaluate a literal, ``inf`` token, parameter name or constant expression."""

    if isinstance(raw, bool):
        raise ValidationError("InvalidField", f"{what} must be numeric, got {raw!r}.", path=path)
    if isinstance(raw, (int, float)):
        return raw
    if not isinstance(raw, str):
        raise ValidationError("InvalidField", f"{what} must be a number or an expression, got {raw!r}.", path=path)
    token = raw.strip().lower()
    if token in _INFINITIES:
        return _INFINITIES[token]
    try:
        expr = compile_expression(raw, 0)
    except CompileError as exc:
        raise exc.with_path(*path) from exc
    numeric = {k: v for k, v in parameters.items() if isinstance(v, (int, float)) and not isinstance(v, bool)}
    folded = expr.substitute(numeric)
    if not folded.is_constant:
        missing = [n for n in folded.names if n not in numeric]
        raise ResolveError(
            "UnknownParameter",
            f"{what} '{raw}' references unknown parameter(s) {missing}.",
            path=path,
            context={"expression": raw, "names": missing},
        )
    try:
        value = evaluate_scalar(folded.ast)
    except (DomainViolation, LookupViolation) as exc:
        raise ValidationError("InvalidField", f"{what} '{raw}' cannot be evaluated: {exc}.", path=path) from exc
    return value


def evaluate_int(raw: Any, parameters: Mapping[str, Any], *, path: tuple[str, ...] = (), what: str = "value") -> int:
    value = evaluate_constant(raw, parameters, path=path, what=what)
    if isinstance(value, float):
        if not math.isfinite(value):
            raise ValidationError("InvalidField", f"{what} must be finite, got {value!r}.", path=path)
        if not value.is_integer():
            raise ValidationError(
                "InvalidField",
                f"{what} must be an integer, got {value!r}.",
                path=path,
                context={"value": value},
            )
        value = int(value)
    return value
