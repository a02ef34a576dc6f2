import math
from pathlib import Path

import numpy as np
import pytest

from febopy import (
    EvaluationConfig,
    EvalError,
    PythonFunctionRegistry,
    build_graph,
    evaluate,
    evaluate_batch,
    load_document,
    parse_document,
    resolve_parameters,
    verify_audit,
)
from febopy.io import data_provider_from_document


EXAMPLES = Path(__file__).parents[1] / "examples"


def _doc(**overrides) -> dict:
    doc = {
        "version": "1.0.0",
        "name": "toy",
        "parameters": {"n": {"type": "int", "default": 3}},
        "variables": {"x": {"type": "continuous", "shape": ["n"]}},
        "interactions": {"all": {"type": "all_indices", "range": [0, "n - 1"]}},
        "terms": {"sq": {"kind": "analytic", "arity": 1, "expr": "x[i]^2"}},
        "components": {"c": {"term": "sq", "interaction": "all", "agg": "sum"}},
        "hamiltonians": {"H": {"components": [{"use": "c", "alpha": 1}]}},
        "ensemble": [{"use": "H", "weight": 1}],
    }
    doc.update(overrides)
    return doc


def _graph(doc: dict, overrides: dict | None = None):
    document = parse_document(doc)
    return build_graph(document, resolve_parameters(document, overrides))


def test_griewank_example_matches_closed_form() -> None:
    doc = load_document(EXAMPLES / "griewank.febo.yaml")
    graph = build_graph(doc)

    origin = evaluate(graph, {"x": [0.0, 0.0]})
    assert origin.total == pytest.approx(0.0, abs=1e-15)

    ones = evaluate(graph, {"x": np.ones(2)})
    expected = 2.0 / 4000.0 - math.cos(1.0) * math.cos(1.0 / math.sqrt(2.0)) + 1.0
    assert ones.total == pytest.approx(expected, rel=1e-12)
    assert ones.total == pytest.approx(0.5898, abs=1e-4)

    audit = ones.audit
    assert audit.components["quadratic"].value == pytest.approx(2.0)
    assert [rec.index for rec in audit.components["oscill"].instances] == [(1,), (2,)]
    assert audit.components["offset"].aggregator.kind == "identity"
    assert audit.hamiltonians["H_bowl"].components[0].weight == pytest.approx(1.0 / 4000.0)
    assert verify_audit(audit) == []


def test_minimax_example() -> None:
    doc = load_document(EXAMPLES / "minimax.febo.yaml")
    provider = data_provider_from_document(doc)
    result = evaluate(build_graph(doc, data_provider=provider), {}, data_provider=provider)
    assert result.total == 7.5
    assert result.audit.components["worst_case"].count == 2


def test_ring_smoothness_example() -> None:
    doc = load_document(EXAMPLES / "ring_smoothness.febo.yaml")
    graph = build_graph(doc)
    result = evaluate(graph, {"u": np.arange(12.0)})
    comps = result.audit.components
    assert comps["smoothness"].value == pytest.approx(137.0)
    assert comps["cluster_spread"].value == pytest.approx(13.0)
    assert result.audit.hamiltonians["H_smooth"].value == pytest.approx(143.5)
    assert result.audit.hamiltonians["H_peak"].type == "coupling"
    assert verify_audit(result.audit) == []


def test_weights_compose_through_levels() -> None:
    doc = _doc(
        hamiltonians={"H": {"components": [{"use": "c", "alpha": 3}]}},
        ensemble=[{"use": "H", "weight": 2}, {"use": "H", "weight": -1}],
    )
    result = evaluate(_graph(doc), {"x": [1.0, 2.0, 3.0]})
    assert result.audit.hamiltonians["H"].value == pytest.approx(42.0)
    assert result.total == pytest.approx(42.0)
    assert [c.weight for c in result.audit.ensemble] == [2.0, -1.0]


@pytest.mark.parametrize("agg, expected", [("max", 7.0), ("mean", 5.0), ("sum", 10.0)])
def test_groups_reduce_members(agg: str, expected: float) -> None:
    doc = _doc(
        parameters={"n": {"type": "int", "default": 4}},
        interactions={"g": {"type": "groups", "groups": [[0, 1], [2, 3]]}},
        terms={"s": {"expr": "sum_i(x[i])"}},
        components={"c": {"term": "s", "interaction": "g", "agg": agg}},
    )
    result = evaluate(_graph(doc), {"x": [1.0, 2.0, 3.0, 4.0]})
    assert result.total == pytest.approx(expected)
    records = result.audit.components["c"].instances
    assert [(r.group, r.index) for r in records] == [(0, (0, 1)), (1, (2, 3))]


@pytest.mark.parametrize(
    "interaction",
    [
        {"type": "sparse", "pairs": [[0, 1], [1, 2]]},
        {"type": "laplacian", "dims": ["n"]},
    ],
)
def test_pairwise_differences(interaction: dict) -> None:
    doc = _doc(
        interactions={"edges": interaction},
        terms={"d": {"arity": 2, "expr": "(x[i] - x[j])^2"}},
        components={"c": {"term": "d", "interaction": "edges", "agg": "sum"}},
    )
    result = evaluate(_graph(doc), {"x": [0.0, 1.0, 3.0]})
    assert result.total == pytest.approx(5.0)
    assert [r.index for r in result.audit.components["c"].instances] == [(0, 1), (1, 2)]


def test_low_rank_projects_term_vector() -> None:
    doc = _doc(
        interactions={"lr": {"type": "low_rank", "factor": [[1.0, 0.0, 1.0], [0.0, 1.0, 0.0]]}},
        terms={"v": {"expr": "x[i]", "compat": ["low_rank"]}},
        components={"c": {"term": "v", "interaction": "lr"}},
    )
    result = evaluate(_graph(doc), {"x": [1.0, 2.0, 3.0]})
    assert result.total == pytest.approx(20.0)
    comp = result.audit.components["c"]
    assert [(r.index, r.value) for r in comp.instances] == [((0,), 16.0), ((1,), 4.0)]
    assert verify_audit(result.audit) == []


def test_bound_symbol_shadows_parameter() -> None:
    doc = _doc(
        parameters={"n": {"type": "int", "default": 3}, "i": {"type": "float", "default": 10.0}},
        terms={"sq": {"expr": "x[i] * i"}},
        hamiltonians={"H": {"components": [{"use": "c", "alpha": "i"}]}},
    )
    result = evaluate(_graph(doc), {"x": [1.0, 1.0, 1.0]})
    assert result.audit.components["c"].value == pytest.approx(3.0)
    assert result.total == pytest.approx(30.0)


def test_scalar_variable_used_bare() -> None:
    doc = _doc(
        variables={"x": {"shape": ["n"]}, "s": {"shape": []}},
        terms={"sq": {"expr": "s * x[i]"}},
    )
    result = evaluate(_graph(doc), {"x": [1.0, 2.0, 3.0], "s": 2.0})
    assert result.total == pytest.approx(12.0)


def test_functional_terms_call_registry() -> None:
    doc = _doc(
        functions={"f": {"kind": "python", "locator": "operator:mul"}},
        terms={"sq": {"kind": "functional", "function": "f", "arity": 1, "args": ["x[i]", "2"]}},
    )
    graph = _graph(doc)
    registry = PythonFunctionRegistry({"f": lambda a, b: a * b})
    assert evaluate(graph, {"x": [1.0, 2.0, 3.0]}, function_registry=registry).total == pytest.approx(12.0)

    with pytest.raises(EvalError) as err:
        evaluate(graph, {"x": [1.0, 2.0, 3.0]})
    assert err.value.code == "FunctionFailure"

    failing = PythonFunctionRegistry({"f": lambda a, b: a / 0.0})
    with pytest.raises(EvalError) as err:
        evaluate(graph, {"x": [1.0, 2.0, 3.0]}, function_registry=failing)
    assert err.value.code == "FunctionFailure"
    assert err.value.context["index"] == {"i": 0}
    assert "ZeroDivisionError" in err.value.context["cause"]


def test_domain_error_carries_instance_context() -> None:
    graph = _graph(_doc(terms={"sq": {"expr": "log(x[i])"}}))
    with pytest.raises(EvalError) as err:
        evaluate(graph, {"x": [1.0, 0.0, 2.0]})
    assert err.value.code == "DomainError"
    assert err.value.context == {"component": "c", "term": "sq", "index": {"i": 1}}


@pytest.mark.parametrize(
    "assignment, code",
    [
        ({}, "UnresolvedReference"),
        ({"x": [1.0, 2.0]}, "ShapeMismatch"),
        ({"x": ["a", "b", "c"]}, "TypeMismatch"),
    ],
)
def test_malformed_assignments(assignment: dict, code: str) -> None:
    with pytest.raises(EvalError) as err:
        evaluate(_graph(_doc()), assignment)
    assert err.value.code == code


def test_variable_bounds_and_domains_are_opt_in() -> None:
    doc = _doc(variables={"x": {"type": "integer", "shape": ["n"], "bounds": [-1, 1]}})
    graph = _graph(doc)
    checked = EvaluationConfig(check_variable_bounds=True)
    assert evaluate(graph, {"x": [0.0, 2.0, 0.5]}).total == pytest.approx(4.25)
    with pytest.raises(EvalError) as err:
        evaluate(graph, {"x": [0.0, 2.0, 0.0]}, config=checked)
    assert err.value.code == "BoundsViolation"
    assert err.value.context["index"] == [1]
    with pytest.raises(EvalError) as err:
        evaluate(graph, {"x": [0.0, 0.5, 0.0]}, config=checked)
    assert err.value.code == "TypeMismatch"


def test_identity_requires_single_instance() -> None:
    graph = _graph(_doc(components={"c": {"term": "sq", "interaction": "all", "agg": "identity"}}))
    with pytest.raises(EvalError) as err:
        evaluate(graph, {"x": [1.0, 2.0, 3.0]})
    assert err.value.code == "ArityMismatch"
    assert err.value.context["component"] == "c"


def test_empty_domain_is_rejected_for_max() -> None:
    doc = _doc(
        interactions={"all": {"type": "all_indices", "range": [0, -1]}},
        components={"c": {"term": "sq", "interaction": "all", "agg": "max"}},
    )
    with pytest.raises(EvalError) as err:
        evaluate(_graph(doc), {"x": [1.0, 2.0, 3.0]})
    assert err.value.code == "EmptyDomain"
    assert err.value.path == ("components", "c")


def test_empty_domain_sum_is_zero() -> None:
    doc = _doc(interactions={"all": {"type": "all_indices", "range": [0, -1]}})
    assert evaluate(_graph(doc), {"x": [1.0, 2.0, 3.0]}).total == 0.0


def test_audit_instance_cap_truncates_records_only() -> None:
    graph = _graph(_doc())
    result = evaluate(graph, {"x": [1.0, 2.0, 3.0]}, config=EvaluationConfig(audit_instance_cap=2))
    comp = result.audit.components["c"]
    assert comp.value == pytest.approx(14.0)
    assert comp.count == 3
    assert len(comp.instances) == 2
    assert comp.truncated
    assert verify_audit(result.audit) == []


def test_evaluation_is_deterministic_and_graph_is_reusable() -> None:
    graph = _graph(_doc(terms={"sq": {"expr": "sin(x[i]) * 1e3"}}))
    x = np.array([0.1, 0.2, 0.3])
    first = evaluate(graph, {"x": x})
    second = evaluate(graph, {"x": x})
    assert first.total == second.total
    assert first.audit.to_dict() == second.audit.to_dict()
    assert x.flags.writeable


def test_evaluate_batch_keeps_input_order() -> None:
    graph = _graph(_doc())
    assignments = [{"x": [float(k)] * 3} for k in range(6)]
    results = evaluate_batch(graph, assignments, config=EvaluationConfig(max_workers=3))
    assert [r.total for r in results] == [3.0 * k * k for k in range(6)]
