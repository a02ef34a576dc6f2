import json
from pathlib import Path

import numpy as np
import pytest

from febopy.errors import ResolveError, ValidationError
from febopy.io import (
    ArrayDataProvider,
    DocumentDataProvider,
    PythonFunctionRegistry,
    data_provider_from_document,
    get_reader,
    import_locator,
    list_readers,
    load_document,
    load_document_mapping,
    read_source,
    register_reader,
)
from febopy.modeling import parse_document


EXAMPLES = Path(__file__).parents[1] / "examples"


def test_builtin_readers_are_registered() -> None:
    assert {"csv", "json", "npy"} <= set(list_readers())
    with pytest.raises(KeyError):
        get_reader("parquet")


def test_read_npy_csv_json(tmp_path) -> None:
    np.save(tmp_path / "a.npy", np.arange(6.0).reshape(2, 3))
    (tmp_path / "b.csv").write_text("1\n2\n\n3\n", encoding="utf-8")
    (tmp_path / "c.json").write_text(json.dumps({"values": [[0, 1], [2]]}), encoding="utf-8")

    a = read_source("a.npy", base_dir=tmp_path)
    assert a.shape == (2, 3)
    b = read_source(tmp_path / "b.csv")
    assert np.array_equal(b, [1, 2, 3])
    c = read_source("c.json", base_dir=tmp_path)
    assert c == [[0, 1], [2]]


def test_read_source_errors(tmp_path) -> None:
    with pytest.raises(FileNotFoundError):
        read_source("missing.csv", base_dir=tmp_path)
    (tmp_path / "d.txt").write_text("1", encoding="utf-8")
    with pytest.raises(KeyError):
        read_source(tmp_path / "d.txt")
    (tmp_path / "e.json").write_text(json.dumps({"rows": []}), encoding="utf-8")
    with pytest.raises(ValueError):
        read_source(tmp_path / "e.json")


def test_custom_reader_can_be_registered(tmp_path) -> None:
    register_reader(".ints", lambda path: [int(t) for t in Path(path).read_text().split()])
    (tmp_path / "f.ints").write_text("4 5 6", encoding="utf-8")
    assert read_source(tmp_path / "f.ints") == [4, 5, 6]
    assert read_source(tmp_path / "f.ints", reader="ints") == [4, 5, 6]


def test_array_provider() -> None:
    provider = ArrayDataProvider({"w": [1.0, 2.0], "groups": [[0, 1], [2]]})
    assert provider.get_shape("w") == (2,)
    assert provider.get_shape("groups") == (2,)
    assert "w" in provider and "v" not in provider
    assert provider.names == ("w", "groups")
    with pytest.raises(KeyError):
        provider.get("v")


def test_data_provider_from_document_reads_on_demand(tmp_path) -> None:
    np.save(tmp_path / "w.npy", np.array([0.5, 1.5]))
    doc = parse_document(
        {
            "version": "1.0.0",
            "name": "d",
            "data": {"w": "w.npy", "v": [1, 2, 3], "missing": {"source": "nope.npy"}},
            "hamiltonians": {},
            "ensemble": [],
        }
    )
    provider = data_provider_from_document(doc, base_dir=tmp_path)
    assert isinstance(provider, DocumentDataProvider)
    assert provider.names == ("v", "w", "missing")
    assert "missing" in provider
    assert np.allclose(provider.get("w"), [0.5, 1.5])
    assert provider.get_shape("v") == (3,)
    with pytest.raises(ResolveError) as err:
        provider.get_shape("missing")
    assert err.value.code == "BadSourceReference"
    assert err.value.path == ("data", "missing")

    np.save(tmp_path / "nope.npy", np.zeros(1))
    assert provider.get_shape("missing") == (1,)
    with pytest.raises(KeyError):
        provider.get("other")


def test_load_document_yaml_example() -> None:
    doc = load_document(EXAMPLES / "griewank.febo.yaml")
    assert doc.name == "griewank"
    assert doc.index_base == 1
    assert [c.id for c in doc.components] == ["quadratic", "oscill", "offset"]


def test_load_document_json_and_bad_inputs(tmp_path) -> None:
    mapping = load_document_mapping(EXAMPLES / "minimax.febo.yaml")
    (tmp_path / "doc.json").write_text(json.dumps(mapping), encoding="utf-8")
    assert load_document(tmp_path / "doc.json").name == "minimax"

    (tmp_path / "doc.toml").write_text("", encoding="utf-8")
    with pytest.raises(ValueError):
        load_document_mapping(tmp_path / "doc.toml")
    (tmp_path / "list.yaml").write_text("- 1\n- 2\n", encoding="utf-8")
    with pytest.raises(ValidationError):
        load_document_mapping(tmp_path / "list.yaml")


def test_function_registry() -> None:
    registry = PythonFunctionRegistry()
    registry.register("hyp", import_locator("math:hypot"))
    assert "hyp" in registry
    assert registry.invoke("hyp", [3.0, 4.0]) == pytest.approx(5.0)
    with pytest.raises(KeyError):
        registry.invoke("nope", [])
    with pytest.raises(ValueError):
        import_locator("math.hypot")
    with pytest.raises(TypeError):
        registry.register("bad", 3)


def test_function_registry_from_document() -> None:
    def _doc(locator: str):
        return parse_document(
            {
                "version": "1.0.0",
                "name": "f",
                "functions": {"g": {"kind": "python", "locator": locator}, "h": {"kind": "http", "url": "x"}},
                "hamiltonians": {},
                "ensemble": [],
            }
        )

    registry = PythonFunctionRegistry.from_document(_doc("operator:add"), extra={"h": lambda a: a})
    assert registry.invoke("g", [1.0, 2.0]) == 3.0
    assert registry.invoke("h", [4.0]) == 4.0
    with pytest.raises(ResolveError) as err:
        PythonFunctionRegistry.from_document(_doc("operator:nothing_here"))
    assert err.value.code == "BadSourceReference"
