"""Evaluate a built graph against a variable assignment.

Evaluation is single-threaded per call: the graph is never mutated, each call
owns its folds and instance buffers, and ``all_indices``/``laplacian`` domains
are enumerated lazily. :func:`evaluate_batch` runs independent calls on a
thread pool against the same graph.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any

import numpy as np

from febopy.errors import EvalError
from febopy.modeling.schema.config import EvaluationConfig

from .audit import AuditTree, ComponentAudit, Contribution, HamiltonianAudit, InstanceRecord
from .builtins import DomainViolation
from .evaluator import EvalContext, LookupViolation, evaluate_node, evaluate_scalar
from .graph import ComponentNode, Graph, ResolvedInteraction, TermNode, VariableSpec
from .types import DataProvider, EmptyDataProvider, FunctionRegistry, VariableAssignment


logger = logging.getLogger(__name__)

Array = np.ndarray


@dataclass(frozen=True)
class EvaluationResult:
    total: float
    audit: AuditTree


def _lookup(assignment: VariableAssignment, name: str) -> Any:
    try:
        return assignment.get(name)
    except KeyError:
        return None


def normalize_assignment(graph: Graph, assignment: VariableAssignment) -> dict[str, Array]:
    """Copy every declared variable into a float64 array of its declared shape."""

    out: dict[str, Array] = {}
    for spec in graph.variables:
        raw = _lookup(assignment, spec.name)
        if raw is None:
            raise EvalError(
                "UnresolvedReference",
                f"Assignment has no value for variable '{spec.name}'.",
                path=("variables", spec.name),
                context={"variable": spec.name},
            )
        try:
            arr = np.array(raw, dtype=np.float64)
        except (TypeError, ValueError) as exc:
            raise EvalError(
                "TypeMismatch",
                f"Value for variable '{spec.name}' is not numeric: {exc}",
                path=("variables", spec.name),
                context={"variable": spec.name},
            ) from exc
        if spec.shape == () and arr.size == 1:
            arr = arr.reshape(())
        if tuple(arr.shape) != tuple(spec.shape):
            raise EvalError(
                "ShapeMismatch",
                f"Variable '{spec.name}' expects shape {list(spec.shape)}, got {list(arr.shape)}.",
                path=("variables", spec.name),
                context={"variable": spec.name, "expected": list(spec.shape), "actual": list(arr.shape)},
            )
        arr.setflags(write=False)
        out[spec.name] = arr
    return out


def check_feasibility(spec: VariableSpec, values: Array) -> None:
    """Declared bounds and binary/integer domains of one variable."""

    path = ("variables", spec.name)
    lower = np.broadcast_to(np.asarray(spec.lower, dtype=float), values.shape)
    upper = np.broadcast_to(np.asarray(spec.upper, dtype=float), values.shape)
    bad = np.argwhere((values < lower) | (values > upper))
    if bad.size:
        pos = tuple(int(k) for k in bad[0])
        raise EvalError(
            "BoundsViolation",
            f"Variable '{spec.name}' at {list(pos)} = {float(values[pos])!r} is outside its bounds.",
            path=path,
            context={"variable": spec.name, "index": list(pos), "value": float(values[pos])},
        )
    if spec.type == "binary":
        bad = np.argwhere((values != 0.0) & (values != 1.0))
    elif spec.type == "integer":
        bad = np.argwhere(values != np.round(values))
    else:
        return
    if bad.size:
        pos = tuple(int(k) for k in bad[0])
        raise EvalError(
            "TypeMismatch",
            f"Variable '{spec.name}' is {spec.type} but holds {float(values[pos])!r} at {list(pos)}.",
            path=path,
            context={"variable": spec.name, "index": list(pos), "expected": spec.type},
        )


class _Evaluation:
    """State of one evaluation call: arrays, cached component audits."""

    def __init__(
        self,
        graph: Graph,
        arrays: Mapping[str, Array],
        registry: FunctionRegistry | None,
        config: EvaluationConfig,
    ) -> None:
        self.graph = graph
        self.arrays = arrays
        self.registry = registry
        self.cap = config.audit_instance_cap
        self.components: dict[int, ComponentAudit] = {}

    def _wrap(self, exc: Exception, comp: ComponentNode, term: TermNode, binding: Mapping[str, Any]) -> EvalError:
        code = exc.code if isinstance(exc, LookupViolation) else "DomainError"
        return EvalError(
            code,
            f"Component '{comp.id}', term '{term.id}' at {dict(binding)}: {exc}",
            path=("components", comp.id),
            context={"component": comp.id, "term": term.id, "index": dict(binding)},
        )

    def term_value(self, comp: ComponentNode, term: TermNode, ctx: EvalContext) -> float:
        try:
            if term.kind != "functional":
                return evaluate_node(term.expr.ast, ctx)
            args = [evaluate_node(arg.ast, ctx) for arg in term.args]
        except (DomainViolation, LookupViolation) as exc:
            raise self._wrap(exc, comp, term, ctx.symbols) from exc
        if self.registry is None:
            raise EvalError(
                "FunctionFailure",
                f"Component '{comp.id}': no function registry for '{term.function}'.",
                path=("components", comp.id),
                context={"component": comp.id, "term": term.id, "function": term.function, "cause": "no registry"},
            )
        try:
            return float(self.registry.invoke(term.function, args))
        except Exception as exc:
            raise EvalError(
                "FunctionFailure",
                f"Component '{comp.id}': function '{term.function}' failed: {exc!r}",
                path=("components", comp.id),
                context={
                    "component": comp.id,
                    "term": term.id,
                    "function": term.function,
                    "index": dict(ctx.symbols),
                    "cause": repr(exc),
                },
            ) from exc

    def _instances(
        self, comp: ComponentNode, term: TermNode, inter: ResolvedInteraction
    ) -> Iterable[tuple[tuple[int, ...], float, int | None]]:
        base = self.graph.index_base
        if inter.kind == "groups":
            symbol = inter.symbols[0]
            for g, members in enumerate(inter.groups or ()):
                ctx = EvalContext(self.arrays, base, {}, {symbol: members})
                yield members, self.term_value(comp, term, ctx), g
            return
        if inter.kind == "low_rank":
            yield from self._low_rank(comp, term, inter)
            return
        reductions = {sym: inter.range_of(sym) for sym in comp.reduction_symbols}
        if inter.kind == "all_indices":
            symbols = comp.free_symbols
            tuples = inter.iter_tuples(symbols)
        else:
            symbols = inter.symbols
            tuples = inter.iter_tuples()
        ctx = EvalContext(self.arrays, base, {}, reductions)
        for tup in tuples:
            ctx.symbols = dict(zip(symbols, tup))
            yield tup, self.term_value(comp, term, ctx), None

    def _low_rank(
        self, comp: ComponentNode, term: TermNode, inter: ResolvedInteraction
    ) -> Iterable[tuple[tuple[int, ...], float, int | None]]:
        if "low_rank" not in term.compat:
            raise EvalError(
                "IncompatibleInteraction",
                f"Term '{term.id}' cannot be used with low_rank interaction '{inter.id}'.",
                path=("components", comp.id),
                context={"component": comp.id, "term": term.id, "interaction": inter.id},
            )
        base = self.graph.index_base
        symbol = inter.symbols[0]
        factor = inter.factor
        n_rows, n_cols = (int(d) for d in factor.shape)
        ctx = EvalContext(self.arrays, base, {}, {})
        v = np.empty(n_cols, dtype=np.float64)
        for col in range(n_cols):
            ctx.symbols = {symbol: base + col}
            v[col] = self.term_value(comp, term, ctx)
        projected = np.asarray(factor @ v, dtype=np.float64).reshape(n_rows)
        for row in range(n_rows):
            yield (base + row,), float(projected[row] * projected[row]), None

    def component(self, slot: int) -> ComponentAudit:
        if slot in self.components:
            return self.components[slot]
        comp = self.graph.components[slot]
        term = self.graph.terms[comp.term]
        inter = self.graph.interactions[comp.interaction]
        fold = comp.aggregator.fold()
        kept: list[InstanceRecord] = []
        truncated = False
        for index, value, group in self._instances(comp, term, inter):
            fold.push(value)
            if len(kept) < self.cap:
                kept.append(InstanceRecord(index=tuple(index), value=value, group=group))
            else:
                truncated = True
        try:
            value = fold.result()
        except EvalError as exc:
            raise EvalError(
                exc.code,
                f"Component '{comp.id}': {exc.message}",
                path=("components", comp.id),
                context={**exc.context, "component": comp.id, "term": term.id, "interaction": inter.id},
            ) from exc
        audit = ComponentAudit(
            id=comp.id,
            value=value,
            aggregator=comp.aggregator,
            term=term.id,
            interaction=inter.id,
            count=fold.count,
            instances=tuple(kept),
            truncated=truncated,
        )
        self.components[slot] = audit
        return audit

    def weight(self, expr, path: tuple[str, ...]) -> float:
        try:
            return evaluate_scalar(expr.ast, self.arrays, index_base=self.graph.index_base)
        except (DomainViolation, LookupViolation) as exc:
            code = exc.code if isinstance(exc, LookupViolation) else "DomainError"
            raise EvalError(code, f"Weight '{expr.source}': {exc}", path=path, context={"weight": expr.source}) from exc

    def run(self) -> AuditTree:
        hamiltonians: dict[str, HamiltonianAudit] = {}
        ensemble = []
        total = 0.0
        for pos, ref in enumerate(self.graph.ensemble):
            ham = self.graph.hamiltonians[ref.index]
            if ham.id not in hamiltonians:
                parts = []
                h_value = 0.0
                for cpos, cref in enumerate(ham.components):
                    alpha = self.weight(cref.weight, ("hamiltonians", ham.id, "components", str(cpos)))
                    comp = self.component(cref.index)
                    parts.append(Contribution(id=comp.id, weight=alpha, value=comp.value))
                    h_value += alpha * comp.value
                hamiltonians[ham.id] = HamiltonianAudit(
                    id=ham.id, type=ham.type, value=h_value, components=tuple(parts), couples=ham.couples
                )
            weight = self.weight(ref.weight, ("ensemble", str(pos)))
            h_value = hamiltonians[ham.id].value
            ensemble.append(Contribution(id=ham.id, weight=weight, value=h_value))
            total += weight * h_value
        components = {audit.id: audit for _, audit in sorted(self.components.items())}
        return AuditTree(total=total, ensemble=tuple(ensemble), hamiltonians=hamiltonians, components=components)


def _load_data(graph: Graph, provider: DataProvider) -> dict[str, Array]:
    needed = graph.referenced_arrays
    out: dict[str, Array] = {}
    for name in graph.data_names:
        if name not in needed:
            continue
        try:
            raw = provider.get(name)
        except KeyError as exc:
            raise EvalError(
                "UnresolvedReference",
                f"Data '{name}' is not available from the data provider.",
                path=("data", name),
                context={"data": name},
            ) from exc
        out[name] = np.asarray(raw, dtype=np.float64)
    return out


def evaluate(
    graph: Graph,
    assignment: VariableAssignment,
    data_provider: DataProvider | None = None,
    function_registry: FunctionRegistry | None = None,
    config: EvaluationConfig | None = None,
) -> EvaluationResult:
    """Compute ``H_total`` and its audit tree for one assignment.

    Raises :class:`~febopy.errors.EvalError` for malformed input, numeric
    domain errors and function failures; nothing is retried.
    """

    config = config or EvaluationConfig()
    variables = normalize_assignment(graph, assignment)
    if config.check_variable_bounds:
        for spec in graph.variables:
            check_feasibility(spec, variables[spec.name])
    arrays = _load_data(graph, data_provider if data_provider is not None else EmptyDataProvider())
    arrays.update(variables)
    audit = _Evaluation(graph, arrays, function_registry, config).run()
    logger.debug("Evaluated graph '%s': total=%r over %d component(s).", graph.name, audit.total, len(audit.components))
    return EvaluationResult(total=audit.total, audit=audit)


def evaluate_batch(
    graph: Graph,
    assignments: Sequence[VariableAssignment],
    data_provider: DataProvider | None = None,
    function_registry: FunctionRegistry | None = None,
    config: EvaluationConfig | None = None,
) -> list[EvaluationResult]:
    """Evaluate many assignments on a thread pool; results keep input order."""

    config = config or EvaluationConfig()
    if len(assignments) <= 1 or config.max_workers == 1:
        return [evaluate(graph, a, data_provider, function_registry, config) for a in assignments]
    with ThreadPoolExecutor(max_workers=config.max_workers) as pool:
        futures = [pool.submit(evaluate, graph, a, data_provider, function_registry, config) for a in assignments]
        return [f.result() for f in futures]
