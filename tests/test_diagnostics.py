"""Tests for residual normality and homogeneity diagnostics."""

from __future__ import annotations

import numpy as np
import pytest

from pysars.domain.protocols import CorrelationTest, NormalityTest
from pysars.sar_engine.diagnostics import (
    PearsonCorrelationTest,
    ResidualNormalityTest,
    homogeneity_test,
    normality_test,
)


@pytest.fixture()
def normal_sample() -> np.ndarray:
    return np.random.default_rng(seed=42).normal(0.0, 1.0, size=40)


class TestNormality:
    """Normality tests on residuals."""

    def test_protocol(self):
        assert isinstance(ResidualNormalityTest(), NormalityTest)

    @pytest.mark.parametrize("kind", ["shapiro", "kolmo", "lillie"])
    def test_normal_sample_defined(self, normal_sample, kind):
        result = normality_test(normal_sample, kind)
        assert result is not None
        assert result.kind == kind
        assert result.is_defined
        assert 0.0 <= result.p_value <= 1.0

    @pytest.mark.parametrize("kind", ["shapiro", "kolmo", "lillie"])
    def test_constant_residuals_undefined(self, kind):
        result = normality_test(np.zeros(10), kind)
        assert result is not None
        assert not result.is_defined
        assert np.isnan(result.p_value)

    def test_none_selector(self, normal_sample):
        assert normality_test(normal_sample, "none") is None

    def test_strongly_skewed_sample_rejected(self):
        skewed = np.random.default_rng(seed=1).exponential(size=200) ** 3
        result = normality_test(skewed, "shapiro")
        assert result.p_value < 0.01

    def test_too_few_points_undefined(self):
        result = normality_test(np.array([0.1, -0.2]), "shapiro")
        assert not result.is_defined


class TestHomogeneity:
    """Residual correlation tests."""

    def test_protocol(self):
        assert isinstance(PearsonCorrelationTest(), CorrelationTest)

    def test_cor_area_uses_area(self):
        area = np.arange(1.0, 11.0)
        residuals = 0.5 * area
        fitted = np.array([3.0, 1.0, 4.0, 1.0, 5.0, 9.0, 2.0, 6.0, 5.0, 3.0])
        result = homogeneity_test(residuals, fitted, area, "cor.area")
        assert result.kind == "cor.area"
        assert result.statistic == pytest.approx(1.0)
        assert result.p_value < 1e-6

    def test_cor_fitted_uses_fitted(self):
        fitted = np.arange(1.0, 11.0)
        residuals = -fitted
        area = np.ones(10)
        result = homogeneity_test(residuals, fitted, area, "cor.fitted")
        assert result.statistic == pytest.approx(-1.0)

    def test_constant_input_undefined(self):
        result = homogeneity_test(np.arange(5.0), np.full(5, 2.0), np.arange(5.0),
                                  "cor.fitted")
        assert not result.is_defined

    def test_none_selector(self):
        assert homogeneity_test(np.arange(5.0), np.arange(5.0), np.arange(5.0),
                                "none") is None
