"""Immutable document model for FEBO energy specifications."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from febopy.core.aggregators import AggregatorSpec
from febopy.core.expr import CompiledExpr


PARAMETER_TYPES = ("int", "float", "string", "bool")
VARIABLE_TYPES = ("continuous", "binary", "integer")
TERM_KINDS = ("constant", "analytic", "functional")
INTERACTION_KINDS = ("none", "all_indices", "sparse", "groups", "laplacian", "low_rank")
FUNCTION_KINDS = ("python", "wasm", "shared_lib", "http")
HAMILTONIAN_TYPES = ("subsystem", "coupling")

# Shape dimensions and bounds may be literal numbers or parameter-dependent text.
Dim = int | str
Bound = float | str | None


@dataclass(frozen=True)
class Conventions:
    index_base: int = 0
    expr_lang: str = "febo_expr_v1"


@dataclass(frozen=True)
class Parameter:
    name: str
    type: str = "float"
    default: Any = None
    required: bool = True
    bounds: tuple[float | None, float | None] | None = None
    description: str = ""

    @property
    def has_default(self) -> bool:
        return not self.required


@dataclass(frozen=True)
class Variable:
    name: str
    type: str = "continuous"
    shape: tuple[Dim, ...] = ()
    bounds: tuple[Bound, Bound] = (None, None)


@dataclass(frozen=True)
class DataDecl:
    name: str
    source: str | None = None
    values: Any = None
    shape: tuple[Dim, ...] | None = None


@dataclass(frozen=True)
class FunctionDecl:
    id: str
    kind: str
    locator: str = ""


@dataclass(frozen=True)
class TermDecl:
    """One atomic per-index-tuple energy contribution."""

    id: str
    kind: str
    arity: int | str | None = None
    expr: CompiledExpr | None = None
    function: str | None = None
    args: tuple[CompiledExpr, ...] = ()
    compat: tuple[str, ...] = ()
    inline: bool = False

    @property
    def expressions(self) -> tuple[CompiledExpr, ...]:
        if self.kind == "functional":
            return self.args
        return () if self.expr is None else (self.expr,)


@dataclass(frozen=True)
class InteractionDecl:
    """Interaction declaration; ``spec`` holds the kind-specific raw fields."""

    id: str
    kind: str
    bind: tuple[str, ...] | None = None
    spec: dict[str, Any] = field(default_factory=dict)
    inline: bool = False


@dataclass(frozen=True)
class ComponentDecl:
    id: str
    term: str | TermDecl
    interaction: str | InteractionDecl = "none"
    aggregator: AggregatorSpec | None = None

    @property
    def term_id(self) -> str:
        return self.term.id if isinstance(self.term, TermDecl) else self.term

    @property
    def interaction_id(self) -> str:
        return self.interaction.id if isinstance(self.interaction, InteractionDecl) else self.interaction


@dataclass(frozen=True)
class WeightedUse:
    """Reference to a lower level with a scalar-or-expression weight."""

    use: str
    weight: CompiledExpr


@dataclass(frozen=True)
class HamiltonianDecl:
    id: str
    components: tuple[WeightedUse, ...]
    couples: tuple[str, ...] = ()
    type: str | None = None

    @property
    def derived_type(self) -> str:
        return "coupling" if self.couples else "subsystem"


@dataclass(frozen=True)
class Document:
    version: str
    name: str
    conventions: Conventions = field(default_factory=Conventions)
    parameters: tuple[Parameter, ...] = ()
    variables: tuple[Variable, ...] = ()
    data: tuple[DataDecl, ...] = ()
    functions: tuple[FunctionDecl, ...] = ()
    interactions: tuple[InteractionDecl, ...] = ()
    terms: tuple[TermDecl, ...] = ()
    components: tuple[ComponentDecl, ...] = ()
    hamiltonians: tuple[HamiltonianDecl, ...] = ()
    ensemble: tuple[WeightedUse, ...] = ()

    @property
    def index_base(self) -> int:
        return self.conventions.index_base

    def parameter_map(self) -> dict[str, Parameter]:
        return {p.name: p for p in self.parameters}

    def function_map(self) -> dict[str, FunctionDecl]:
        return {f.id: f for f in self.functions}

    def interaction_map(self) -> dict[str, InteractionDecl]:
        return {i.id: i for i in self.interactions}

    def term_map(self) -> dict[str, TermDecl]:
        return {t.id: t for t in self.terms}

    def component_map(self) -> dict[str, ComponentDecl]:
        return {c.id: c for c in self.components}

    def hamiltonian_map(self) -> dict[str, HamiltonianDecl]:
        return {h.id: h for h in self.hamiltonians}
