from .config import BuildConfig, EvaluationConfig
from .document import (
    Conventions,
    ComponentDecl,
    DataDecl,
    Document,
    FunctionDecl,
    HamiltonianDecl,
    InteractionDecl,
    Parameter,
    TermDecl,
    Variable,
    WeightedUse,
)

__all__ = [
    "BuildConfig",
    "EvaluationConfig",
    "Conventions",
    "ComponentDecl",
    "DataDecl",
    "Document",
    "FunctionDecl",
    "HamiltonianDecl",
    "InteractionDecl",
    "Parameter",
    "TermDecl",
    "Variable",
    "WeightedUse",
]
