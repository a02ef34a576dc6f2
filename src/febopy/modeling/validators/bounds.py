"""Index-bound checks for component domains against array shapes."""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping

from febopy.core.expr import CompiledExpr
from febopy.core.expr_ast import Literal, Ref, walk
from febopy.core.graph import ResolvedInteraction
from febopy.core.types import Shape
from febopy.errors import ResolveError, ValidationError


def symbol_extents(interaction: ResolvedInteraction) -> dict[str, tuple[int, int]]:
    """Smallest and largest value each bound symbol takes; empty domains are omitted.

    ``all_indices`` only looks at range endpoints; explicit lists are scanned.
    """

    out: dict[str, tuple[int, int]] = {}
    kind = interaction.kind
    base = interaction.index_base
    if kind == "all_indices":
        for sym, (lo, hi) in zip(interaction.symbols, interaction.ranges):
            if lo <= hi:
                out[sym] = (lo, hi)
    elif kind == "sparse":
        for col, sym in enumerate(interaction.symbols):
            values = [t[col] for t in interaction.tuples or ()]
            if values:
                out[sym] = (min(values), max(values))
    elif kind == "groups":
        members = [k for group in interaction.groups or () for k in group]
        if members:
            out[interaction.symbols[0]] = (min(members), max(members))
    elif kind == "laplacian":
        cells = math.prod(interaction.grid_dims or ())
        if cells > 1:
            for sym in interaction.symbols:
                out[sym] = (base, base + cells - 1)
    elif kind == "low_rank":
        n = int(interaction.factor.shape[1])
        if n > 0:
            out[interaction.symbols[0]] = (base, base + n - 1)
    return out


def check_index_bounds(
    component_id: str,
    exprs: Iterable[CompiledExpr],
    interaction: ResolvedInteraction,
    shapes: Mapping[str, Shape],
    index_base: int,
) -> None:
    """Every concrete index must satisfy ``base <= k <= base + dim - 1``."""

    extents = symbol_extents(interaction)
    for expr in exprs:
        for node in walk(expr.ast):
            if not isinstance(node, Ref) or not node.indices or node.name not in shapes:
                continue
            shape = shapes[node.name]
            if len(node.indices) != len(shape):
                raise ValidationError(
                    "ShapeMismatch",
                    f"Component '{component_id}': '{node.name}' has {len(shape)} dimension(s) "
                    f"but is indexed with {len(node.indices)}.",
                    path=("components", component_id),
                    context={"component": component_id, "array": node.name, "expected": len(shape), "actual": len(node.indices)},
                )
            for axis, (idx, dim) in enumerate(zip(node.indices, shape)):
                if isinstance(idx, Literal):
                    candidates = (int(idx.value),)
                elif idx.name in extents:
                    candidates = extents[idx.name]
                else:
                    continue
                for k in candidates:
                    if k < index_base or k > index_base + dim - 1:
                        raise ResolveError(
                            "IndexOutOfBounds",
                            f"Component '{component_id}': index {k} on axis {axis} of '{node.name}' "
                            f"is outside {index_base}..{index_base + dim - 1} (interaction '{interaction.id}').",
                            path=("components", component_id),
                            context={
                                "component": component_id,
                                "interaction": interaction.id,
                                "array": node.name,
                                "index": k,
                                "axis": axis,
                                "dimension": dim,
                            },
                        )
