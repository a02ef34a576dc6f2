"""Build the immutable evaluation graph from a parsed document."""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping
from types import MappingProxyType
from typing import Any

import numpy as np

from febopy.core.expr import CompiledExpr
from febopy.core.expr_ast import Ref, walk
from febopy.core.graph import ComponentNode, Graph, HamiltonianNode, ResolvedInteraction, TermNode, VariableSpec, WeightedRef
from febopy.core.types import DataProvider, Shape
from febopy.errors import ErrorSink, FeboError, ResolveError, ValidationError
from febopy.io.provider import data_provider_from_document
from febopy.modeling.builders.interactions import resolve_interaction
from febopy.modeling.parameters import ResolvedParameters, evaluate_constant, evaluate_int, resolve_parameters
from febopy.modeling.schema import BuildConfig, ComponentDecl, Document, InteractionDecl, TermDecl, WeightedUse
from febopy.modeling.validators import bind_component, check_index_bounds


logger = logging.getLogger(__name__)

_NONE_INTERACTION = InteractionDecl(id="none", kind="none")


def _unknown(kind: str, ref: str, path: tuple[str, ...]) -> ValidationError:
    return ValidationError(
        "UnknownReference",
        f"Unknown {kind} reference '{ref}'.",
        path=path,
        context={"kind": kind, "id": ref},
    )


class _GraphBuilder:
    def __init__(
        self,
        document: Document,
        parameters: ResolvedParameters,
        provider: DataProvider,
        config: BuildConfig,
    ) -> None:
        self.doc = document
        self.params = parameters
        self.numeric = parameters.numeric()
        self.provider = provider
        self.config = config
        self.sink = ErrorSink(collect=config.collect_errors)
        self.base = document.index_base

        self.terms: list[TermNode] = []
        self.term_slots: dict[tuple[str, frozenset[str]], int] = {}
        self.interactions: list[ResolvedInteraction] = []
        self.interaction_slots: dict[str, int | None] = {}
        self.components: list[ComponentNode] = []
        self.component_slots: dict[str, int] = {}
        self.hamiltonians: list[HamiltonianNode] = []
        self.hamiltonian_slots: dict[str, int] = {}

        self.term_decls = document.term_map()
        self.interaction_decls = document.interaction_map()
        self.function_ids = set(document.function_map())
        self.variable_specs: dict[str, VariableSpec] = {}
        self.shapes: dict[str, Shape] = {}
        self.scalar_names: set[str] = set()

    # Step 1: variable shapes and bounds.
    def resolve_variables(self) -> None:
        for var in self.doc.variables:
            path = ("variables", var.name)
            try:
                shape = tuple(evaluate_int(d, self.numeric, path=path, what="shape dimension") for d in var.shape)
                if any(d < 0 for d in shape):
                    raise ValidationError("InvalidField", f"Variable '{var.name}' has a negative dimension.", path=path)
                lower = self._bound(var.bounds[0], -math.inf, shape, path)
                upper = self._bound(var.bounds[1], math.inf, shape, path)
            except FeboError as exc:
                self.sink.report(exc)
                continue
            self.variable_specs[var.name] = VariableSpec(name=var.name, type=var.type, shape=shape, lower=lower, upper=upper)
            self.shapes[var.name] = shape

    def _bound(self, raw: Any, default: float, shape: Shape, path: tuple[str, ...]) -> Any:
        if raw is None:
            return default
        if isinstance(raw, str) and raw.startswith("data:"):
            name = raw[len("data:"):]
            try:
                arr = np.asarray(self.provider.get(name), dtype=float)
            except KeyError as exc:
                raise ResolveError(
                    "BadSourceReference",
                    f"Bound references unknown data '{name}'.",
                    path=path,
                    context={"data": name},
                ) from exc
            if arr.ndim != 0 and tuple(arr.shape) != tuple(shape):
                raise ValidationError(
                    "ShapeMismatch",
                    f"Bound data '{name}' has shape {tuple(arr.shape)}, variable shape is {tuple(shape)}.",
                    path=path,
                    context={"expected": list(shape), "actual": list(arr.shape)},
                )
            return arr
        return float(evaluate_constant(raw, self.numeric, path=path, what="bound"))

    def referenced_data(self) -> set[str]:
        """Declared data names used by components, weights or variable bounds."""

        names: set[str] = set()
        exprs: list[CompiledExpr] = []
        for cdecl in self.doc.components:
            tdecl = cdecl.term if isinstance(cdecl.term, TermDecl) else self.term_decls.get(cdecl.term)
            if tdecl is not None:
                exprs.extend(tdecl.expressions)
            idecl = (
                cdecl.interaction
                if isinstance(cdecl.interaction, InteractionDecl)
                else self.interaction_decls.get(cdecl.interaction)
            )
            if idecl is not None:
                for key in ("source", "factor", "U"):
                    raw = idecl.spec.get(key)
                    if isinstance(raw, str):
                        names.add(raw[len("data:"):] if raw.startswith("data:") else raw)
        exprs.extend(use.weight for hdecl in self.doc.hamiltonians for use in hdecl.components)
        exprs.extend(use.weight for use in self.doc.ensemble)
        for expr in exprs:
            names.update(node.name for node in walk(expr.ast) if isinstance(node, Ref))
        for var in self.doc.variables:
            for raw in var.bounds:
                if isinstance(raw, str) and raw.startswith("data:"):
                    names.add(raw[len("data:"):])
        return names & {decl.name for decl in self.doc.data}

    # Step 2: shapes of the data arrays something refers to.
    def resolve_data(self) -> None:
        referenced = self.referenced_data()
        for decl in self.doc.data:
            if decl.name not in referenced:
                logger.debug("Data '%s' is not referenced; skipped.", decl.name)
                continue
            path = ("data", decl.name)
            try:
                shape = tuple(int(d) for d in self.provider.get_shape(decl.name))
            except FeboError as exc:
                self.sink.report(exc)
                continue
            except KeyError as exc:
                self.sink.report(
                    ResolveError(
                        "BadSourceReference",
                        f"Data '{decl.name}' is not available from the data provider.",
                        path=path,
                        context={"data": decl.name},
                    )
                )
                logger.debug("Data provider lookup failed for '%s': %s", decl.name, exc)
                continue
            if decl.shape is not None:
                try:
                    declared = tuple(evaluate_int(d, self.numeric, path=path, what="shape dimension") for d in decl.shape)
                except FeboError as exc:
                    self.sink.report(exc)
                    continue
                if declared != shape:
                    self.sink.report(
                        ValidationError(
                            "ShapeMismatch",
                            f"Data '{decl.name}' has shape {list(shape)}, declared {list(declared)}.",
                            path=path,
                            context={"data": decl.name, "expected": list(declared), "actual": list(shape)},
                        )
                    )
                    continue
            self.shapes[decl.name] = shape

    # Step 3: interactions referenced by components, each resolved once.
    def interaction_for(self, decl: ComponentDecl) -> int | None:
        key = decl.interaction_id
        if isinstance(decl.interaction, InteractionDecl):
            idecl: InteractionDecl | None = decl.interaction
        elif key == "none" and key not in self.interaction_decls:
            idecl = _NONE_INTERACTION
        else:
            idecl = self.interaction_decls.get(key)
        if idecl is None:
            return None
        if key in self.interaction_slots:
            return self.interaction_slots[key]
        try:
            resolved = resolve_interaction(
                idecl,
                self.provider,
                self.numeric,
                index_base=self.base,
                base_dir=self.config.base_dir,
            )
        except FeboError as exc:
            self.interaction_slots[key] = None
            self.sink.report(exc)
            return None
        self.interactions.append(resolved)
        self.interaction_slots[key] = len(self.interactions) - 1
        return self.interaction_slots[key]

    def _term_node(self, tdecl: TermDecl, bound: frozenset[str]) -> int:
        key = (tdecl.id, bound)
        if key not in self.term_slots:
            expr = None if tdecl.expr is None else tdecl.expr.substitute(self.numeric, protected=bound)
            args = tuple(arg.substitute(self.numeric, protected=bound) for arg in tdecl.args)
            self.terms.append(
                TermNode(id=tdecl.id, kind=tdecl.kind, expr=expr, function=tdecl.function, args=args, compat=tdecl.compat)
            )
            self.term_slots[key] = len(self.terms) - 1
        return self.term_slots[key]

    def _check_names(self, component_id: str, names: Mapping[str, Any], arrays: Mapping[str, int]) -> None:
        for name in names:
            if name in self.shapes and name not in self.scalar_names:
                raise ValidationError(
                    "ShapeMismatch",
                    f"Component '{component_id}': '{name}' has shape {list(self.shapes[name])} and must be indexed.",
                    path=("components", component_id),
                    context={"component": component_id, "array": name, "shape": list(self.shapes[name])},
                )
            if name not in self.numeric and name not in self.scalar_names:
                raise ValidationError(
                    "UnknownReference",
                    f"Component '{component_id}': name '{name}' is not a parameter, variable, data or bound symbol.",
                    path=("components", component_id),
                    context={"kind": "name", "id": name, "component": component_id},
                )
        for name in arrays:
            if name not in self.shapes:
                raise ValidationError(
                    "UnknownReference",
                    f"Component '{component_id}': indexed name '{name}' is not a variable or data array.",
                    path=("components", component_id),
                    context={"kind": "array", "id": name, "component": component_id},
                )

    # Step 4: components.
    def build_components(self) -> None:
        for cdecl in self.doc.components:
            tdecl = cdecl.term if isinstance(cdecl.term, TermDecl) else self.term_decls.get(cdecl.term)
            islot = self.interaction_for(cdecl)
            if tdecl is None or islot is None:
                continue
            interaction = self.interactions[islot]
            try:
                binding = bind_component(
                    cdecl.id,
                    tdecl.id,
                    tdecl.expressions,
                    tdecl.arity,
                    tdecl.compat,
                    interaction,
                    cdecl.aggregator,
                )
                bound = frozenset(interaction.symbols) | frozenset(binding.reduction_symbols)
                slot = self._term_node(tdecl, bound)
                node = self.terms[slot]
                exprs = ((node.expr,) if node.expr is not None else ()) + node.args
                self._check_names(cdecl.id, binding.usage.scalars, binding.usage.arrays)
                check_index_bounds(cdecl.id, exprs, interaction, self.shapes, self.base)
            except FeboError as exc:
                self.sink.report(exc)
                continue
            self.components.append(
                ComponentNode(
                    id=cdecl.id,
                    term=slot,
                    interaction=islot,
                    aggregator=binding.aggregator,
                    free_symbols=binding.free_symbols,
                    reduction_symbols=binding.reduction_symbols,
                )
            )
            self.component_slots[cdecl.id] = len(self.components) - 1

    def _weight(self, use: WeightedUse, path: tuple[str, ...]) -> CompiledExpr:
        weight = use.weight.substitute(self.numeric)
        if weight.index_symbols or weight.reduction_symbols:
            raise ValidationError(
                "UnboundSymbol",
                f"Weight '{weight.source}' may not use index symbols.",
                path=path,
                context={"symbols": list(weight.index_symbols + weight.reduction_symbols)},
            )
        for name in weight.names:
            if name not in self.scalar_names:
                raise ValidationError(
                    "UnboundSymbol",
                    f"Weight '{weight.source}' references unknown name '{name}'.",
                    path=path,
                    context={"name": name},
                )
        return weight

    # Step 5: hamiltonians.
    def build_hamiltonians(self) -> None:
        for hdecl in self.doc.hamiltonians:
            path = ("hamiltonians", hdecl.id)
            try:
                derived = hdecl.derived_type
                if hdecl.type is not None and hdecl.type != derived:
                    raise ValidationError(
                        "TypeMismatch",
                        f"Hamiltonian '{hdecl.id}' declares type '{hdecl.type}' but is a {derived} "
                        f"({'non-empty' if hdecl.couples else 'empty'} couples).",
                        path=path,
                        context={"hamiltonian": hdecl.id, "expected": derived, "actual": hdecl.type},
                    )
                refs = []
                for pos, use in enumerate(hdecl.components):
                    weight = self._weight(use, (*path, "components", str(pos)))
                    slot = self.component_slots.get(use.use)
                    if slot is not None:
                        refs.append(WeightedRef(index=slot, weight=weight))
            except FeboError as exc:
                self.sink.report(exc)
                continue
            self.hamiltonians.append(HamiltonianNode(id=hdecl.id, type=derived, components=tuple(refs), couples=hdecl.couples))
            self.hamiltonian_slots[hdecl.id] = len(self.hamiltonians) - 1

    # Step 6: ensemble.
    def build_ensemble(self) -> tuple[WeightedRef, ...]:
        if not self.doc.ensemble:
            self.sink.report(ValidationError("EmptyEnsemble", "The ensemble needs at least one hamiltonian.", path=("ensemble",)))
            return ()
        refs = []
        for pos, use in enumerate(self.doc.ensemble):
            try:
                weight = self._weight(use, ("ensemble", str(pos)))
            except FeboError as exc:
                self.sink.report(exc)
                continue
            slot = self.hamiltonian_slots.get(use.use)
            if slot is not None:
                refs.append(WeightedRef(index=slot, weight=weight))
        return tuple(refs)

    # Step 7: reference closure.
    def check_references(self) -> None:
        components = self.doc.component_map()
        hamiltonians = self.doc.hamiltonian_map()
        for tdecl in self.doc.terms:
            if tdecl.kind == "functional" and tdecl.function not in self.function_ids:
                self.sink.report(_unknown("function", str(tdecl.function), ("terms", tdecl.id)))
        for cdecl in self.doc.components:
            path = ("components", cdecl.id)
            if isinstance(cdecl.term, TermDecl):
                if cdecl.term.kind == "functional" and cdecl.term.function not in self.function_ids:
                    self.sink.report(_unknown("function", str(cdecl.term.function), path))
            elif cdecl.term not in self.term_decls:
                self.sink.report(_unknown("term", cdecl.term, path))
            if (
                isinstance(cdecl.interaction, str)
                and cdecl.interaction != "none"
                and cdecl.interaction not in self.interaction_decls
            ):
                self.sink.report(_unknown("interaction", cdecl.interaction, path))
        for hdecl in self.doc.hamiltonians:
            for use in hdecl.components:
                if use.use not in components:
                    self.sink.report(_unknown("component", use.use, ("hamiltonians", hdecl.id)))
        for use in self.doc.ensemble:
            if use.use not in hamiltonians:
                self.sink.report(_unknown("hamiltonian", use.use, ("ensemble",)))

    def build(self) -> Graph:
        self.resolve_variables()
        self.resolve_data()
        self.scalar_names = {
            name for name, shape in self.shapes.items() if math.prod(shape) == 1
        } | set(self.numeric)
        self.build_components()
        self.build_hamiltonians()
        ensemble = self.build_ensemble()
        self.check_references()
        self.sink.raise_if_any()
        return Graph(
            name=self.doc.name,
            version=self.doc.version,
            index_base=self.base,
            parameters=MappingProxyType(dict(self.params.values)),
            variables=tuple(self.variable_specs[v.name] for v in self.doc.variables),
            data_names=tuple(d.name for d in self.doc.data),
            terms=tuple(self.terms),
            interactions=tuple(self.interactions),
            components=tuple(self.components),
            hamiltonians=tuple(self.hamiltonians),
            ensemble=ensemble,
        )


def build_graph(
    document: Document,
    resolved_parameters: ResolvedParameters | None = None,
    data_provider: DataProvider | None = None,
    config: BuildConfig | None = None,
    *,
    collect: bool | None = None,
) -> Graph:
    """Resolve, bind and validate ``document`` into an immutable :class:`Graph`.

    Without ``resolved_parameters`` the declared defaults are used; without a
    ``data_provider`` the document's own ``data`` declarations are read on
    demand, so sources nothing references are never opened.
    Normal mode raises the first error in build-step order; collect mode
    (``collect=True`` or ``BuildConfig(collect_errors=True)``) raises a
    :class:`~febopy.errors.FeboErrorGroup` with all of them.
    """

    config = config or BuildConfig()
    if collect is not None:
        config = BuildConfig(collect_errors=collect, base_dir=config.base_dir)
    if resolved_parameters is None:
        resolved_parameters = resolve_parameters(document, collect=config.collect_errors)
    if data_provider is None:
        data_provider = data_provider_from_document(document, base_dir=config.base_dir)

    graph = _GraphBuilder(document, resolved_parameters, data_provider, config).build()
    logger.debug(
        "Built graph '%s': %d terms, %d interactions, %d components, %d hamiltonians.",
        graph.name,
        len(graph.terms),
        len(graph.interactions),
        len(graph.components),
        len(graph.hamiltonians),
    )
    return graph
