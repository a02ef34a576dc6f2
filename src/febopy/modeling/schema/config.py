"""Config knobs for graph construction and energy evaluation."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class BuildConfig:
    """Graph-builder options."""

    collect_errors: bool = False
    base_dir: Path | None = None


@dataclass(frozen=True)
class EvaluationConfig:
    """Evaluation-engine options."""

    audit_instance_cap: int = 10_000
    check_variable_bounds: bool = False
    max_workers: int | None = None

    def __post_init__(self) -> None:
        if self.audit_instance_cap < 0:
            raise ValueError("audit_instance_cap must be non-negative.")
        if self.max_workers is not None and self.max_workers <= 0:
            raise ValueError("max_workers must be positive when provided.")
