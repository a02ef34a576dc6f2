from .core import (
    AggregatorSpec,
    AuditTree,
    CompiledExpr,
    EvaluationResult,
    Graph,
    ResolvedInteraction,
    compile_expression,
    evaluate,
    evaluate_batch,
    verify_audit,
)
from .errors import CompileError, EvalError, FeboError, FeboErrorGroup, ResolveError, ValidationError
from .io import ArrayDataProvider, PythonFunctionRegistry, load_document
from .modeling import (
    BuildConfig,
    Document,
    EvaluationConfig,
    ResolvedParameters,
    build_graph,
    parse_document,
    resolve_interaction,
    resolve_parameters,
)

__all__ = [
    "parse_document",
    "resolve_parameters",
    "build_graph",
    "evaluate",
    "compile_expression",
    "resolve_interaction",
    "evaluate_batch",
    "verify_audit",
    "load_document",
    "AggregatorSpec",
    "AuditTree",
    "CompiledExpr",
    "EvaluationResult",
    "Graph",
    "ResolvedInteraction",
    "Document",
    "ResolvedParameters",
    "BuildConfig",
    "EvaluationConfig",
    "ArrayDataProvider",
    "PythonFunctionRegistry",
    "FeboError",
    "CompileError",
    "ResolveError",
    "ValidationError",
    "EvalError",
    "FeboErrorGroup",
]
