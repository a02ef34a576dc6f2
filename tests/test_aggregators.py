import math

import numpy as np
import pytest

from febopy.core.aggregators import LOGPROD_FLOOR, AggregatorSpec, aggregate, cvar, replay_aggregate
from febopy.errors import EvalError


def test_basic_folds() -> None:
    values = [3.0, -1.0, 4.0, 1.5]
    assert aggregate(AggregatorSpec("sum"), values) == 7.5
    assert aggregate(AggregatorSpec("prod"), values) == -18.0
    assert aggregate(AggregatorSpec("max"), values) == 4.0
    assert aggregate(AggregatorSpec("min"), values) == -1.0
    assert aggregate(AggregatorSpec("mean"), values) == 1.875


def test_prod_with_zero_is_exactly_zero() -> None:
    assert aggregate(AggregatorSpec("prod"), [2.0, 0.0, 5.0]) == 0.0
    assert aggregate(AggregatorSpec("prod"), [math.inf, 0.0]) == 0.0


@pytest.mark.parametrize("kind", ["max", "min", "mean", "logsumexp", "cvar"])
def test_empty_domain_is_fatal(kind: str) -> None:
    with pytest.raises(EvalError) as err:
        aggregate(AggregatorSpec(kind), [])
    assert err.value.code == "EmptyDomain"


def test_empty_sum_prod_logprod_have_neutral_values() -> None:
    assert aggregate(AggregatorSpec("sum"), []) == 0.0
    assert aggregate(AggregatorSpec("prod"), []) == 1.0
    assert aggregate(AggregatorSpec("logprod"), []) == 0.0


def test_logsumexp_is_stable_for_large_values() -> None:
    assert aggregate(AggregatorSpec("logsumexp"), [1000.0, 1000.0]) == pytest.approx(1000.0 + math.log(2.0))
    assert aggregate(AggregatorSpec("logsumexp", beta=2.0), [1000.0, 1000.0]) == pytest.approx(
        1000.0 + math.log(2.0) / 2.0
    )
    assert aggregate(AggregatorSpec("logsumexp"), [-1000.0, 0.0]) == pytest.approx(0.0)


def test_logsumexp_is_order_independent() -> None:
    spec = AggregatorSpec("logsumexp", beta=0.5)
    assert aggregate(spec, [1.0, 50.0, -3.0]) == pytest.approx(aggregate(spec, [50.0, -3.0, 1.0]))


def test_logprod_floors_non_positive_values() -> None:
    assert aggregate(AggregatorSpec("logprod"), [0.0, 1.0]) == math.log(LOGPROD_FLOOR)
    assert aggregate(AggregatorSpec("logprod"), [math.e, math.e]) == pytest.approx(2.0)


def test_identity_requires_exactly_one_instance() -> None:
    assert aggregate(AggregatorSpec("identity"), [4.25]) == 4.25
    for values in ([], [1.0, 2.0]):
        with pytest.raises(EvalError) as err:
            aggregate(AggregatorSpec("identity"), values)
        assert err.value.code == "ArityMismatch"


def test_cvar_upper_tail() -> None:
    values = [1.0, 2.0, 3.0, 4.0]
    assert cvar(values, 0.5) == 3.5
    assert cvar(values, 0.75) == 4.0
    assert cvar(values, 0.0) == 2.5
    assert cvar(values, 0.6) == pytest.approx((4.0 + 0.6 * 3.0) / 1.6)
    assert aggregate(AggregatorSpec("cvar", alpha=0.5), [4.0, 1.0, 3.0, 2.0]) == 3.5


@pytest.mark.parametrize(
    "kwargs",
    [{"kind": "median"}, {"kind": "cvar", "alpha": 1.0}, {"kind": "logsumexp", "beta": 0.0}],
)
def test_invalid_aggregator_specs(kwargs) -> None:
    with pytest.raises(ValueError):
        AggregatorSpec(**kwargs)


def test_replay_matches_streaming_folds() -> None:
    rng = np.random.default_rng(0)
    values = rng.normal(size=257).tolist()
    positive = np.abs(values).tolist()
    for spec in (
        AggregatorSpec("sum"),
        AggregatorSpec("max"),
        AggregatorSpec("min"),
        AggregatorSpec("mean"),
        AggregatorSpec("logsumexp", beta=3.0),
        AggregatorSpec("cvar", alpha=0.9),
    ):
        assert replay_aggregate(spec, values) == pytest.approx(aggregate(spec, values), rel=1e-12, abs=1e-12)
    for spec in (AggregatorSpec("prod"), AggregatorSpec("logprod")):
        assert replay_aggregate(spec, positive[:20]) == pytest.approx(aggregate(spec, positive[:20]), rel=1e-12)


def test_to_dict_keeps_only_relevant_parameters() -> None:
    assert AggregatorSpec("sum").to_dict() == {"kind": "sum"}
    assert AggregatorSpec("logsumexp", beta=2.0).to_dict() == {"kind": "logsumexp", "beta": 2.0}
    assert AggregatorSpec("cvar", alpha=0.9).to_dict() == {"kind": "cvar", "alpha": 0.9}
