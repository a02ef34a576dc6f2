"""Bind a term's symbols against the interaction that consumes it."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

from febopy.core.aggregators import AggregatorSpec
from febopy.core.expr import CompiledExpr
from febopy.core.expr_ast import Node, Ref, Reduction, children
from febopy.core.graph import ResolvedInteraction
from febopy.errors import ValidationError


@dataclass
class SymbolUsage:
    """Symbols of a term split by role, each in first-appearance order."""

    free: dict[str, None] = field(default_factory=dict)
    reductions: dict[str, None] = field(default_factory=dict)
    scalars: dict[str, None] = field(default_factory=dict)
    arrays: dict[str, int] = field(default_factory=dict)


def _scan(node: Node, scope: frozenset[str], bind: frozenset[str], usage: SymbolUsage) -> None:
    if isinstance(node, Ref):
        if node.indices:
            usage.arrays.setdefault(node.name, len(node.indices))
            for idx in node.indices:
                if isinstance(idx, Ref) and idx.name not in scope:
                    usage.free.setdefault(idx.name, None)
        elif node.name in scope:
            pass
        elif node.name in bind:
            usage.free.setdefault(node.name, None)
        else:
            usage.scalars.setdefault(node.name, None)
        return
    if isinstance(node, Reduction):
        usage.reductions.setdefault(node.symbol, None)
        _scan(node.body, scope | {node.symbol}, bind, usage)
        return
    for child in children(node):
        _scan(child, scope, bind, usage)


def analyze_symbols(exprs: Iterable[CompiledExpr], bind: Iterable[str] = ()) -> SymbolUsage:
    usage = SymbolUsage()
    bound = frozenset(bind)
    for expr in exprs:
        _scan(expr.ast, frozenset(), bound, usage)
    return usage


def _error(code: str, component_id: str, message: str, **context) -> ValidationError:
    return ValidationError(
        code,
        f"Component '{component_id}': {message}",
        path=("components", component_id),
        context={"component": component_id, **context},
    )


@dataclass(frozen=True)
class Binding:
    free_symbols: tuple[str, ...]
    reduction_symbols: tuple[str, ...]
    aggregator: AggregatorSpec
    usage: SymbolUsage = field(compare=False, repr=False)


def bind_component(
    component_id: str,
    term_id: str,
    exprs: tuple[CompiledExpr, ...],
    arity: int | str | None,
    compat: tuple[str, ...],
    interaction: ResolvedInteraction,
    aggregator: AggregatorSpec | None,
) -> Binding:
    """Validate the term/interaction/aggregator triple of one component.

    Free index symbols must be bound by the interaction; reductions may only
    range over ``all_indices`` symbols or a ``groups`` member symbol, and
    every bound symbol must be used by the term.
    """

    bind = interaction.symbols
    usage = analyze_symbols(exprs, bind)
    ctx = {"term": term_id, "interaction": interaction.id}

    for sym in usage.free:
        if sym not in bind:
            raise _error(
                "UnboundSymbol",
                component_id,
                f"index symbol '{sym}' of term '{term_id}' is not bound by interaction '{interaction.id}' {list(bind)}.",
                symbol=sym,
                **ctx,
            )

    for sym in usage.reductions:
        if sym not in bind:
            raise _error(
                "UnboundSymbol",
                component_id,
                f"reduction symbol '{sym}' of term '{term_id}' is not bound by interaction '{interaction.id}'.",
                symbol=sym,
                **ctx,
            )
        if interaction.kind not in ("all_indices", "groups"):
            raise _error(
                "InvalidReduction",
                component_id,
                f"cannot reduce over '{sym}': it is bound by a {interaction.kind} interaction.",
                symbol=sym,
                kind=interaction.kind,
                **ctx,
            )
        if sym in usage.free:
            raise _error(
                "InvalidReduction",
                component_id,
                f"symbol '{sym}' is used both as a free index and as a reduction target.",
                symbol=sym,
                **ctx,
            )

    unused = [sym for sym in bind if sym not in usage.free and sym not in usage.reductions]
    if unused:
        raise _error(
            "UnboundSymbol",
            component_id,
            f"interaction '{interaction.id}' binds {unused} which term '{term_id}' never uses.",
            expected=list(bind),
            actual=list(usage.free) + list(usage.reductions),
            **ctx,
        )
    if interaction.kind == "groups" and usage.free:
        raise _error(
            "InvalidReduction",
            component_id,
            f"groups member symbol '{bind[0]}' may only appear inside a reduction.",
            symbol=bind[0],
            **ctx,
        )
    used = len(usage.free) + len(usage.reductions)
    if isinstance(arity, int) and arity != used:
        raise _error(
            "ArityMismatch",
            component_id,
            f"term '{term_id}' declares arity {arity} but binds {used} symbol(s).",
            expected=arity,
            actual=used,
            **ctx,
        )

    if interaction.kind == "low_rank":
        if "low_rank" not in compat:
            raise _error(
                "IncompatibleInteraction",
                component_id,
                f"term '{term_id}' does not declare compat [low_rank].",
                **ctx,
            )
        if aggregator is not None and aggregator.kind != "sum":
            raise _error(
                "InvalidField",
                component_id,
                f"low_rank components aggregate with 'sum', not '{aggregator.kind}'.",
                aggregator=aggregator.kind,
                **ctx,
            )

    if aggregator is None:
        if interaction.kind == "none":
            aggregator = AggregatorSpec("identity")
        elif interaction.kind == "low_rank":
            aggregator = AggregatorSpec("sum")
        else:
            raise _error(
                "MissingAggregator",
                component_id,
                f"an aggregator is required over {interaction.kind} interaction '{interaction.id}'.",
                **ctx,
            )

    return Binding(
        free_symbols=tuple(s for s in bind if s in usage.free),
        reduction_symbols=tuple(usage.reductions),
        aggregator=aggregator,
        usage=usage,
    )
