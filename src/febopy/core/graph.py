"""Resolved interactions and the immutable evaluation graph."""

from __future__ import annotations

import itertools
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any

import numpy as np

from .aggregators import AggregatorSpec
from .expr import CompiledExpr
from .types import IndexTuple, Shape


Array = np.ndarray


def grid_offsets(ndim: int, connectivity: str) -> tuple[tuple[int, ...], ...]:
    """Neighbour offsets for a grid; ``axis`` (2n neighbours) or ``full`` (3^n - 1)."""

    if connectivity == "axis":
        out = []
        for axis in range(ndim):
            for step in (-1, 1):
                off = [0] * ndim
                off[axis] = step
                out.append(tuple(off))
        return tuple(sorted(out))
    if connectivity == "full":
        return tuple(off for off in itertools.product((-1, 0, 1), repeat=ndim) if any(off))
    raise ValueError(f"Unknown grid connectivity '{connectivity}'.")


def grid_neighbor_pairs(dims: Shape, connectivity: str, index_base: int = 0) -> Iterator[IndexTuple]:
    """Yield each undirected neighbour pair of a row-major grid exactly once.

    Cells are numbered by their row-major flat index plus ``index_base``;
    pairs come out ordered by first cell, then by neighbour offset.
    """

    offsets = grid_offsets(len(dims), connectivity)
    strides = [1] * len(dims)
    for axis in range(len(dims) - 2, -1, -1):
        strides[axis] = strides[axis + 1] * dims[axis + 1]
    for cell in itertools.product(*(range(d) for d in dims)):
        p = sum(c * s for c, s in zip(cell, strides))
        for off in offsets:
            nb = [c + o for c, o in zip(cell, off)]
            if any(v < 0 or v >= d for v, d in zip(nb, dims)):
                continue
            q = sum(c * s for c, s in zip(nb, strides))
            if q > p:
                yield (p + index_base, q + index_base)


@dataclass(frozen=True)
class ResolvedInteraction:
    """Concrete domain of an interaction structure.

    ``all_indices`` keeps per-symbol ranges and ``laplacian`` its grid so both
    enumerate lazily; ``sparse`` keeps its tuples, ``groups`` its member lists
    and ``low_rank`` an opaque factor matrix.
    """

    id: str
    kind: str
    symbols: tuple[str, ...] = ()
    ranges: tuple[tuple[int, int], ...] = ()
    tuples: tuple[IndexTuple, ...] | None = None
    groups: tuple[tuple[int, ...], ...] | None = None
    grid_dims: Shape | None = None
    connectivity: str = "axis"
    index_base: int = 0
    factor: Any = field(default=None, compare=False, repr=False)

    def range_of(self, symbol: str) -> range:
        lo, hi = self.ranges[self.symbols.index(symbol)]
        return range(lo, hi + 1)

    def iter_tuples(self, symbols: tuple[str, ...] | None = None) -> Iterator[IndexTuple]:
        """Enumerate index tuples; for ``all_indices`` over a subset of symbols."""

        if self.kind == "none":
            yield ()
        elif self.kind == "all_indices":
            chosen = self.symbols if symbols is None else symbols
            yield from itertools.product(*(self.range_of(sym) for sym in chosen))
        elif self.kind == "sparse":
            yield from self.tuples or ()
        elif self.kind == "laplacian":
            yield from grid_neighbor_pairs(self.grid_dims or (), self.connectivity, self.index_base)
        else:
            raise ValueError(f"Interaction '{self.id}' of kind '{self.kind}' has no index-tuple enumeration.")

    def size(self, symbols: tuple[str, ...] | None = None) -> int:
        if self.kind == "none":
            return 1
        if self.kind == "all_indices":
            chosen = self.symbols if symbols is None else symbols
            n = 1
            for sym in chosen:
                n *= len(self.range_of(sym))
            return n
        if self.kind == "sparse":
            return len(self.tuples or ())
        if self.kind == "groups":
            return len(self.groups or ())
        if self.kind == "low_rank":
            return int(np.shape(self.factor)[0])
        return sum(1 for _ in self.iter_tuples())


@dataclass(frozen=True)
class TermNode:
    id: str
    kind: str
    expr: CompiledExpr | None = None
    function: str | None = None
    args: tuple[CompiledExpr, ...] = ()
    compat: tuple[str, ...] = ()


@dataclass(frozen=True)
class ComponentNode:
    """Aggregator applied to a term over an interaction, by arena index."""

    id: str
    term: int
    interaction: int
    aggregator: AggregatorSpec
    free_symbols: tuple[str, ...] = ()
    reduction_symbols: tuple[str, ...] = ()


@dataclass(frozen=True)
class WeightedRef:
    index: int
    weight: CompiledExpr


@dataclass(frozen=True)
class HamiltonianNode:
    id: str
    type: str
    components: tuple[WeightedRef, ...]
    couples: tuple[str, ...] = ()


@dataclass(frozen=True)
class VariableSpec:
    name: str
    type: str
    shape: Shape
    lower: Any = field(default=-np.inf, compare=False)
    upper: Any = field(default=np.inf, compare=False)


@dataclass(frozen=True)
class Graph:
    """Immutable DAG: ensemble -> hamiltonians -> components -> {term, interaction}."""

    name: str
    version: str
    index_base: int
    parameters: Mapping[str, Any]
    variables: tuple[VariableSpec, ...]
    data_names: tuple[str, ...]
    terms: tuple[TermNode, ...]
    interactions: tuple[ResolvedInteraction, ...]
    components: tuple[ComponentNode, ...]
    hamiltonians: tuple[HamiltonianNode, ...]
    ensemble: tuple[WeightedRef, ...]

    def variable(self, name: str) -> VariableSpec:
        for var in self.variables:
            if var.name == name:
                return var
        raise KeyError(f"Unknown variable '{name}'.")

    def component_index(self, component_id: str) -> int:
        for idx, comp in enumerate(self.components):
            if comp.id == component_id:
                return idx
        raise KeyError(f"Unknown component '{component_id}'.")

    def hamiltonian_index(self, hamiltonian_id: str) -> int:
        for idx, ham in enumerate(self.hamiltonians):
            if ham.id == hamiltonian_id:
                return idx
        raise KeyError(f"Unknown hamiltonian '{hamiltonian_id}'.")

    @property
    def referenced_arrays(self) -> frozenset[str]:
        names: set[str] = set()
        for term in self.terms:
            for expr in ((term.expr,) if term.expr is not None else ()) + term.args:
                names.update(expr.names)
        for ham in self.hamiltonians:
            for ref in ham.components:
                names.update(ref.weight.names)
        for ref in self.ensemble:
            names.update(ref.weight.names)
        return frozenset(names)

