from .builders import build_graph, resolve_interaction
from .parameters import ResolvedParameters, evaluate_constant, evaluate_int, resolve_parameter_values, resolve_parameters
from .parser import parse_document
from .schema import (
    BuildConfig,
    ComponentDecl,
    Conventions,
    DataDecl,
    Document,
    EvaluationConfig,
    FunctionDecl,
    HamiltonianDecl,
    InteractionDecl,
    Parameter,
    TermDecl,
    Variable,
    WeightedUse,
)
from .validators import analyze_symbols, bind_component, check_index_bounds

__all__ = [
    "parse_document",
    "resolve_parameters",
    "resolve_parameter_values",
    "ResolvedParameters",
    "evaluate_constant",
    "evaluate_int",
    "resolve_interaction",
    "build_graph",
    "analyze_symbols",
    "bind_component",
    "check_index_bounds",
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
