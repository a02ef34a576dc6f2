from .aggregators import AGGREGATOR_KINDS, LOGPROD_FLOOR, AggregatorSpec, aggregate, cvar, replay_aggregate
from .audit import AuditMismatch, AuditTree, ComponentAudit, Contribution, HamiltonianAudit, InstanceRecord, verify_audit
from .evaluator import EvalContext, evaluate_scalar
from .expr import EXPR_LANG, CompiledExpr, compile_expression, parse_expression
from .expr_ast import BinOp, Call, Literal, Ref, Reduction, UnaryOp, unparse, walk
from .graph import ComponentNode, Graph, HamiltonianNode, ResolvedInteraction, TermNode, VariableSpec, WeightedRef
from .types import DataProvider, EmptyDataProvider, FunctionRegistry, VariableAssignment

# The engine reads EvaluationConfig from the modeling schema, which itself
# imports the modules above.
from .engine import EvaluationResult, evaluate, evaluate_batch, normalize_assignment  # noqa: E402

__all__ = [
    "AGGREGATOR_KINDS",
    "LOGPROD_FLOOR",
    "AggregatorSpec",
    "aggregate",
    "cvar",
    "replay_aggregate",
    "AuditMismatch",
    "AuditTree",
    "ComponentAudit",
    "Contribution",
    "HamiltonianAudit",
    "InstanceRecord",
    "verify_audit",
    "EvalContext",
    "evaluate_scalar",
    "EXPR_LANG",
    "CompiledExpr",
    "compile_expression",
    "parse_expression",
    "BinOp",
    "Call",
    "Literal",
    "Ref",
    "Reduction",
    "UnaryOp",
    "unparse",
    "walk",
    "ComponentNode",
    "Graph",
    "HamiltonianNode",
    "ResolvedInteraction",
    "TermNode",
    "VariableSpec",
    "WeightedRef",
    "DataProvider",
    "EmptyDataProvider",
    "FunctionRegistry",
    "VariableAssignment",
    "EvaluationResult",
    "evaluate",
    "evaluate_batch",
    "normalize_assignment",
]
