"""
Test M-estimator policies
"""
import numpy as np
import pytest
from scipy.stats import chi2

from optexpr.mestimators import (
    BlakeZissermanMEstimator,
    CauchyMEstimator,
    FixedWeightMEstimator,
    GaussianMEstimator,
    HuberMEstimator,
    NoMEstimator,
)

ERRORS = [0.0, 1e-3, 0.5, 1.0, 4.0, 25.0, 1e4]


@pytest.mark.parametrize(
    "policy",
    [HuberMEstimator(1.0), CauchyMEstimator(2.0), BlakeZissermanMEstimator(3)],
)
class TestRobust:
    def test_nonIncreasing(self, policy):
        weights = [policy.getWeight(s) for s in ERRORS]
        assert all(w1 >= w2 for w1, w2 in zip(weights[:-1], weights[1:]))

    def test_bounded(self, policy):
        for s in ERRORS:
            assert 0.0 <= policy.getWeight(s) <= 1.0

    def test_name(self, policy):
        assert policy.name == policy.__class__.__name__


class TestValues:
    @pytest.mark.parametrize("s", ERRORS)
    def test_none(self, s):
        assert NoMEstimator().getWeight(s) == 1.0

    def test_fixed(self):
        assert FixedWeightMEstimator(0.25).getWeight(100.0) == 0.25

    def test_gaussian(self):
        assert GaussianMEstimator(4.0).getWeight(3.0) == pytest.approx(0.25)

    @pytest.mark.parametrize("s, w", [[0.25, 1.0], [4.0, 0.5], [16.0, 0.25]])
    def test_huber(self, s, w):
        assert HuberMEstimator(1.0).getWeight(s) == pytest.approx(w)

    def test_cauchy(self):
        assert CauchyMEstimator(2.0).getWeight(2.0) == pytest.approx(0.5)

    def test_blakeZisserman(self):
        policy = BlakeZissermanMEstimator(2, p=0.99, e=0.2)
        k2 = chi2.ppf(0.99, 2)
        assert policy.getWeight(k2) == pytest.approx(0.2)
        assert policy.getWeight(0.0) == pytest.approx(1.0, abs=1e-3)


class TestInvalid:
    @pytest.mark.parametrize(
        "factory",
        [
            lambda: FixedWeightMEstimator(-1.0),
            lambda: GaussianMEstimator(0.0),
            lambda: HuberMEstimator(-2.0),
            lambda: CauchyMEstimator(0.0),
            lambda: BlakeZissermanMEstimator(0),
            lambda: BlakeZissermanMEstimator(3, p=1.0),
            lambda: BlakeZissermanMEstimator(3, e=0.0),
            lambda: HuberMEstimator(np.nan),
        ],
    )
    def test_raises(self, factory):
        with pytest.raises(ValueError):
            factory()
