import numpy as np
import pytest
from scipy import sparse

from febopy.errors import ResolveError, ValidationError
from febopy.io import ArrayDataProvider
from febopy.modeling import InteractionDecl, resolve_interaction


def _decl(kind: str, bind=None, **spec) -> InteractionDecl:
    return InteractionDecl(id="it", kind=kind, bind=bind, spec=spec)


def test_all_indices_range_is_lazy_and_parameterized() -> None:
    res = resolve_interaction(_decl("all_indices", range=[1, "n"]), parameters={"n": 4}, index_base=1)
    assert res.symbols == ("i",)
    assert res.ranges == ((1, 4),)
    assert list(res.iter_tuples()) == [(1,), (2,), (3,), (4,)]
    assert res.size() == 4


def test_all_indices_ranges_mapping_and_cartesian_product() -> None:
    res = resolve_interaction(_decl("all_indices", ranges={"i": [0, 1], "j": [0, 2]}))
    assert res.symbols == ("i", "j")
    assert res.size() == 6
    assert list(res.iter_tuples())[:3] == [(0, 0), (0, 1), (0, 2)]
    assert list(res.iter_tuples(("j",))) == [(0,), (1,), (2,)]


def test_all_indices_bind_must_match_ranges() -> None:
    with pytest.raises(ValidationError) as err:
        resolve_interaction(_decl("all_indices", bind=("i",), ranges=[[0, 1], [0, 1]]))
    assert err.value.code == "ArityMismatch"
    assert err.value.path[:2] == ("interactions", "it")


def test_sparse_inline_pairs_default_bind() -> None:
    res = resolve_interaction(_decl("sparse", pairs=[[0, 1], [1, 2]]))
    assert res.symbols == ("i", "j")
    assert list(res.iter_tuples()) == [(0, 1), (1, 2)]
    single = resolve_interaction(_decl("sparse", tuples=[0, 2]))
    assert single.symbols == ("i",)
    assert single.tuples == ((0,), (2,))


def test_sparse_from_data_key_and_plain_name() -> None:
    provider = ArrayDataProvider({"edges": [[0, 1], [2, 3]]})
    res = resolve_interaction(_decl("sparse", source="data:edges"), provider)
    assert res.tuples == ((0, 1), (2, 3))
    res = resolve_interaction(_decl("sparse", source="edges"), provider)
    assert res.tuples == ((0, 1), (2, 3))


def test_sparse_from_csv_file(tmp_path) -> None:
    (tmp_path / "edges.csv").write_text("# i,j\n0,1\n1,2\n", encoding="utf-8")
    res = resolve_interaction(_decl("sparse", source="edges.csv"), base_dir=tmp_path)
    assert res.tuples == ((0, 1), (1, 2))


def test_sparse_bad_source() -> None:
    with pytest.raises(ResolveError) as err:
        resolve_interaction(_decl("sparse", source="missing.csv"))
    assert err.value.code == "BadSourceReference"
    with pytest.raises(ResolveError) as err:
        resolve_interaction(_decl("sparse", source="data:nope"))
    assert err.value.code == "BadSourceReference"


def test_sparse_width_rules() -> None:
    with pytest.raises(ValidationError) as err:
        resolve_interaction(_decl("sparse", pairs=[[0, 1], [0, 1, 2]]))
    assert err.value.code == "ShapeMismatch"
    with pytest.raises(ValidationError) as err:
        resolve_interaction(_decl("sparse", tuples=[[0, 1, 2]]))
    assert err.value.code == "MissingField"
    res = resolve_interaction(_decl("sparse", bind=("a", "b", "c"), tuples=[[0, 1, 2]]))
    assert res.symbols == ("a", "b", "c")
    with pytest.raises(ResolveError) as err:
        resolve_interaction(_decl("sparse", pairs=[[0, 1.5]]))
    assert err.value.code == "TypeMismatch"


def test_groups_members_and_duplicate_index() -> None:
    res = resolve_interaction(_decl("groups", groups=[[0, 1], [2]]))
    assert res.groups == ((0, 1), (2,))
    assert res.size() == 2
    with pytest.raises(ResolveError) as err:
        resolve_interaction(_decl("groups", groups=[[0, 1], [2, 3, 2]]))
    assert err.value.code == "DuplicateIndex"
    assert err.value.context["group"] == 1
    assert err.value.context["index"] == 2


def test_groups_ragged_data_source() -> None:
    provider = ArrayDataProvider({"clusters": [[0, 1, 2], [3]]})
    res = resolve_interaction(_decl("groups", source="data:clusters"), provider)
    assert res.groups == ((0, 1, 2), (3,))


def test_laplacian_axis_neighbours() -> None:
    res = resolve_interaction(_decl("laplacian", dims=[2, 2]))
    assert res.symbols == ("i", "j")
    assert list(res.iter_tuples()) == [(0, 1), (0, 2), (1, 3), (2, 3)]


def test_laplacian_full_connectivity_and_base() -> None:
    res = resolve_interaction(_decl("laplacian", dims=[2, 2], connectivity=8))
    assert list(res.iter_tuples()) == [(0, 1), (0, 2), (0, 3), (1, 2), (1, 3), (2, 3)]
    based = resolve_interaction(_decl("laplacian", dims=[3]), index_base=1)
    assert list(based.iter_tuples()) == [(1, 2), (2, 3)]


def test_laplacian_invalid_connectivity() -> None:
    with pytest.raises(ValidationError) as err:
        resolve_interaction(_decl("laplacian", dims=[4], connectivity=4))
    assert err.value.code == "InvalidField"
    with pytest.raises(ValidationError):
        resolve_interaction(_decl("laplacian", dims=[2, 2], connectivity="diagonal"))


def test_low_rank_factor_sources() -> None:
    provider = ArrayDataProvider({"U": [[1.0, 0.0, 1.0], [0.0, 1.0, 0.0]]})
    res = resolve_interaction(_decl("low_rank", factor="data:U"), provider)
    assert res.factor.shape == (2, 3)
    assert res.size() == 2
    inline = resolve_interaction(_decl("low_rank", factor=[[1.0, 2.0]]))
    assert np.allclose(inline.factor, [[1.0, 2.0]])
    csr = sparse.csr_matrix(np.eye(3))
    res = resolve_interaction(InteractionDecl(id="lr", kind="low_rank", spec={"factor": "M"}), _SparseProvider(csr))
    assert sparse.issparse(res.factor)


def test_low_rank_shape_checks() -> None:
    with pytest.raises(ValidationError) as err:
        resolve_interaction(_decl("low_rank", factor=[1.0, 2.0]))
    assert err.value.code == "ShapeMismatch"
    with pytest.raises(ValidationError) as err:
        resolve_interaction(_decl("low_rank"))
    assert err.value.code == "MissingField"


def test_none_cannot_bind() -> None:
    assert list(resolve_interaction(_decl("none")).iter_tuples()) == [()]
    with pytest.raises(ValidationError) as err:
        resolve_interaction(_decl("none", bind=("i",)))
    assert err.value.code == "ArityMismatch"


class _SparseProvider:
    def __init__(self, matrix) -> None:
        self.matrix = matrix

    def get(self, name: str):
        if name != "M":
            raise KeyError(name)
        return self.matrix

    def get_shape(self, name: str):
        return self.matrix.shape
