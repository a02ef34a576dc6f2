import math

import pytest

from febopy.errors import FeboErrorGroup, ResolveError
from febopy.modeling import evaluate_constant, evaluate_int, parse_document, resolve_parameter_values, resolve_parameters
from febopy.modeling.schema import Parameter


PARAMS = (
    Parameter(name="n", type="int", default=2, required=False, bounds=(1, 10)),
    Parameter(name="scale", type="float", default=0.5, required=False),
    Parameter(name="label", type="string", default="toy", required=False),
    Parameter(name="flag", type="bool", required=True),
)


def test_overrides_then_defaults() -> None:
    resolved = resolve_parameter_values(PARAMS, {"n": 4, "flag": True})
    assert resolved["n"] == 4
    assert resolved["scale"] == 0.5
    assert resolved["label"] == "toy"
    assert resolved["flag"] is True
    assert resolved.origins["n"] == "override"
    assert resolved.origins["scale"] == "default"
    assert resolved.numeric() == {"n": 4, "scale": 0.5}


def test_integral_float_is_accepted_for_int() -> None:
    assert resolve_parameter_values(PARAMS, {"n": 3.0, "flag": False})["n"] == 3


@pytest.mark.parametrize(
    "overrides, code",
    [
        ({"n": "3", "flag": True}, "TypeMismatch"),
        ({"n": True, "flag": True}, "TypeMismatch"),
        ({"n": 2.5, "flag": True}, "TypeMismatch"),
        ({"scale": "big", "flag": True}, "TypeMismatch"),
        ({"flag": 1}, "TypeMismatch"),
        ({"n": 11, "flag": True}, "BoundsViolation"),
        ({"n": 0, "flag": True}, "BoundsViolation"),
        ({}, "MissingRequiredParameter"),
        ({"flag": True, "m": 1}, "UnknownParameter"),
    ],
)
def test_resolution_errors(overrides: dict, code: str) -> None:
    with pytest.raises(ResolveError) as err:
        resolve_parameter_values(PARAMS, overrides)
    assert err.value.code == code


def test_defaults_are_type_checked() -> None:
    bad = (Parameter(name="n", type="int", default="two", required=False),)
    with pytest.raises(ResolveError) as err:
        resolve_parameter_values(bad)
    assert err.value.code == "TypeMismatch"


def test_collect_mode_gathers_all_parameter_errors() -> None:
    with pytest.raises(FeboErrorGroup) as err:
        resolve_parameter_values(PARAMS, {"n": 99, "m": 1}, collect=True)
    assert sorted(e.code for e in err.value) == ["BoundsViolation", "MissingRequiredParameter", "UnknownParameter"]


def test_resolve_parameters_from_document_does_not_mutate_it() -> None:
    doc = parse_document(
        {
            "version": "0.1.0",
            "name": "p",
            "parameters": {"n": {"type": "int", "default": 2}},
            "hamiltonians": {},
            "ensemble": [],
        }
    )
    resolved = resolve_parameters(doc, {"n": 5})
    assert resolved["n"] == 5
    assert doc.parameters[0].default == 2


def test_constant_expressions() -> None:
    params = {"n": 3, "w": 0.5, "label": "x"}
    assert evaluate_constant("n * w + 1", params) == 2.5
    assert evaluate_constant(4, params) == 4
    assert evaluate_constant("-inf", params) == -math.inf
    assert evaluate_int("n - 1", params) == 2
    with pytest.raises(ResolveError) as err:
        evaluate_constant("m + 1", params)
    assert err.value.code == "UnknownParameter"
