import pytest

from febopy.errors import CompileError, FeboErrorGroup, ValidationError
from febopy.modeling import parse_document
from febopy.modeling.schema import TermDecl


def _minimal(**overrides) -> dict:
    doc = {
        "version": "1.0.0",
        "name": "toy",
        "variables": {"x": {"type": "continuous", "shape": [3]}},
        "interactions": {"all": {"type": "all_indices", "range": [0, 2]}},
        "terms": {"sq": {"kind": "analytic", "arity": 1, "expr": "x[i]^2"}},
        "components": {"c": {"term": "sq", "interaction": "all", "agg": "sum"}},
        "hamiltonians": {"H": {"components": [{"use": "c", "alpha": 2}]}},
        "ensemble": [{"use": "H", "weight": 1}],
    }
    doc.update(overrides)
    return doc


def test_parse_minimal_document() -> None:
    doc = parse_document(_minimal())
    assert doc.name == "toy"
    assert doc.index_base == 0
    assert doc.conventions.expr_lang == "febo_expr_v1"
    assert doc.terms[0].expr.index_symbols == ("i",)
    assert doc.components[0].aggregator.kind == "sum"
    assert doc.interactions[0].spec == {"range": [0, 2]}
    assert doc.hamiltonians[0].derived_type == "subsystem"


def test_list_form_collections_and_shorthands() -> None:
    doc = parse_document(
        _minimal(
            parameters=[{"name": "n", "type": "int", "default": 3}, {"name": "scale", "default": 0.5}],
            terms=[{"id": "sq", "expr": "x[i]^2"}, {"id": "k", "value": 4}],
            hamiltonians={"H": {"components": ["c"], "couples": ["x"]}},
            ensemble={"hamiltonians": ["H"]},
        )
    )
    params = doc.parameter_map()
    assert params["n"].type == "int" and params["n"].default == 3
    assert params["scale"].type == "float"
    terms = doc.term_map()
    assert terms["sq"].kind == "analytic"
    assert terms["k"].kind == "constant"
    assert doc.hamiltonians[0].derived_type == "coupling"
    assert doc.ensemble[0].use == "H"


def test_component_aliases_and_inline_declarations() -> None:
    doc = parse_document(
        _minimal(
            components={
                "c": {
                    "term": {"kind": "analytic", "arity": 1, "expr": "x[i]"},
                    "interaction": {"kind": "all_indices", "range": [0, 2]},
                    "aggregator": {"kind": "logsumexp", "beta": 2},
                }
            }
        )
    )
    comp = doc.components[0]
    assert isinstance(comp.term, TermDecl) and comp.term.inline
    assert comp.term_id == "c.term"
    assert comp.interaction_id == "c.interaction"
    assert comp.aggregator.kind == "logsumexp" and comp.aggregator.beta == 2.0


def test_missing_interaction_defaults_to_none() -> None:
    doc = parse_document(_minimal(components={"c": {"term": "sq"}}))
    assert doc.components[0].interaction == "none"
    assert doc.components[0].aggregator is None


def test_duplicate_ids_are_rejected() -> None:
    with pytest.raises(ValidationError) as err:
        parse_document(_minimal(terms=[{"id": "sq", "expr": "1"}, {"id": "sq", "expr": "2"}]))
    assert err.value.code == "DuplicateId"


def test_scalar_namespaces_must_be_disjoint() -> None:
    with pytest.raises(ValidationError) as err:
        parse_document(_minimal(parameters={"x": {"type": "float", "default": 1.0}}))
    assert err.value.code == "DuplicateId"
    assert err.value.context["id"] == "x"


@pytest.mark.parametrize(
    "overrides, code",
    [
        ({"version": "1.0"}, "InvalidField"),
        ({"name": "Bad-Name"}, "InvalidField"),
        ({"conventions": {"index_base": 2}}, "InvalidField"),
        ({"conventions": {"expr_lang": "other"}}, "InvalidField"),
        ({"solver": {}}, "InvalidField"),
        ({"components": {"c": {"interaction": "all"}}}, "MissingField"),
        ({"components": {"c": {"term": "sq", "interaction": "all", "agg": "median"}}}, "InvalidField"),
        ({"interactions": {"all": {"range": [0, 2]}}}, "MissingField"),
        ({"interactions": {"all": {"type": "ring"}}}, "InvalidField"),
        ({"hamiltonians": {"H": {"components": ["c"], "type": "mixed"}}}, "InvalidField"),
        ({"functions": {"f": {"kind": "fortran"}}}, "InvalidField"),
    ],
)
def test_structural_errors(overrides: dict, code: str) -> None:
    with pytest.raises(ValidationError) as err:
        parse_document(_minimal(**overrides))
    assert err.value.code == code


def test_missing_version_and_name() -> None:
    doc = _minimal()
    del doc["version"]
    with pytest.raises(ValidationError) as err:
        parse_document(doc)
    assert err.value.code == "MissingField"
    assert err.value.context["field"] == "version"


def test_compile_errors_carry_declaration_path() -> None:
    with pytest.raises(CompileError) as err:
        parse_document(_minimal(terms={"sq": {"expr": "x[i]^"}}))
    assert err.value.code == "Syntax"
    assert err.value.path == ("terms", "sq", "expr")


def test_alpha_expressions_are_compiled() -> None:
    doc = parse_document(_minimal(hamiltonians={"H": {"components": [{"use": "c", "alpha": "1/4000"}]}}))
    assert doc.hamiltonians[0].components[0].weight.source == "1/4000"
    with pytest.raises(CompileError):
        parse_document(_minimal(hamiltonians={"H": {"components": [{"use": "c", "alpha": "1/"}]}}))


def test_collect_mode_reports_every_error() -> None:
    bad = _minimal(
        name="Bad",
        terms={"sq": {"expr": "foo(x)"}, "t2": {"expr": "(1"}},
        components={"c": {"interaction": "all"}},
    )
    with pytest.raises(FeboErrorGroup) as err:
        parse_document(bad, collect=True)
    kinds = [e.kind for e in err.value]
    assert "ValidationError:InvalidField" in kinds
    assert "CompileError:UnknownFunction" in kinds
    assert "CompileError:Syntax" in kinds
    assert "ValidationError:MissingField" in kinds
    assert len(err.value) == 4


def test_normal_mode_raises_first_error() -> None:
    bad = _minimal(name="Bad", terms={"sq": {"expr": "foo(x)"}})
    with pytest.raises(ValidationError) as err:
        parse_document(bad)
    assert err.value.path == ("name",)
