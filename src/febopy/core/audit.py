"""Per-level energy decomposition returned with every evaluation."""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from .aggregators import AggregatorSpec, replay_aggregate
from .types import IndexTuple


@dataclass(frozen=True)
class InstanceRecord:
    """One term instance: its index binding and value.

    For ``groups`` components ``group`` is the group position and ``index``
    its member list; for ``low_rank`` components ``index`` is the factor row.
    """

    index: IndexTuple
    value: float
    group: int | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"index": list(self.index), "value": self.value}
        if self.group is not None:
            out["group"] = self.group
        return out


@dataclass(frozen=True)
class ComponentAudit:
    id: str
    value: float
    aggregator: AggregatorSpec
    term: str
    interaction: str
    count: int
    instances: tuple[InstanceRecord, ...] = ()
    truncated: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "value": self.value,
            "aggregator": self.aggregator.to_dict(),
            "term": self.term,
            "interaction": self.interaction,
            "count": self.count,
            "truncated": self.truncated,
            "instances": [rec.to_dict() for rec in self.instances],
        }


@dataclass(frozen=True)
class Contribution:
    """``weight * value`` of one lower-level node inside its parent."""

    id: str
    weight: float
    value: float

    @property
    def weighted(self) -> float:
        return self.weight * self.value


@dataclass(frozen=True)
class HamiltonianAudit:
    id: str
    type: str
    value: float
    components: tuple[Contribution, ...] = ()
    couples: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "value": self.value,
            "couples": list(self.couples),
            "components": [{"use": c.id, "alpha": c.weight, "value": c.value} for c in self.components],
        }


@dataclass(frozen=True)
class AuditTree:
    """Ensemble total with every Hamiltonian and component keyed by id."""

    total: float
    ensemble: tuple[Contribution, ...] = ()
    hamiltonians: Mapping[str, HamiltonianAudit] = field(default_factory=dict)
    components: Mapping[str, ComponentAudit] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "ensemble": [{"use": c.id, "weight": c.weight, "value": c.value} for c in self.ensemble],
            "hamiltonians": {hid: h.to_dict() for hid, h in self.hamiltonians.items()},
            "components": {cid: c.to_dict() for cid, c in self.components.items()},
        }


@dataclass(frozen=True)
class AuditMismatch:
    level: str
    id: str
    recorded: float
    recomputed: float


def _close(a: float, b: float, rtol: float, atol: float) -> bool:
    if math.isinf(a) or math.isinf(b):
        return a == b
    return math.isclose(a, b, rel_tol=rtol, abs_tol=atol)


def verify_audit(audit: AuditTree, rtol: float = 1e-9, atol: float = 1e-12) -> list[AuditMismatch]:
    """Replay the decomposition identities of an audit tree.

    Checks ``H = sum alpha * C`` for every Hamiltonian, ``total = sum w * H``,
    and, for components whose instances were all retained, the aggregate
    recomputed from those instances. Returns the mismatches (empty if none).
    """

    out: list[AuditMismatch] = []
    for comp in audit.components.values():
        if comp.truncated or comp.count != len(comp.instances):
            continue
        recomputed = replay_aggregate(comp.aggregator, [rec.value for rec in comp.instances])
        if not _close(comp.value, recomputed, rtol, atol):
            out.append(AuditMismatch("component", comp.id, comp.value, recomputed))
    for ham in audit.hamiltonians.values():
        recomputed = math.fsum(c.weighted for c in ham.components)
        if not _close(ham.value, recomputed, rtol, atol):
            out.append(AuditMismatch("hamiltonian", ham.id, ham.value, recomputed))
    recomputed = math.fsum(c.weighted for c in audit.ensemble)
    if not _close(audit.total, recomputed, rtol, atol):
        out.append(AuditMismatch("ensemble", "total", audit.total, recomputed))
    return out
