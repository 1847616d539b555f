"""Tests for the log-log linear power model."""

from __future__ import annotations

import numpy as np
import numpy.testing as npt
import pytest

from pysars.domain.exceptions import DegenerateDataWarning, InvalidRequestError
from pysars.domain.models import Dataset, FitOptions
from pysars.sar_engine.fitting import fit_one
from pysars.sar_engine.linear import lin_pow

POWER_Z = 0.3


class TestLinPow:
    """OLS of log richness on log area."""

    def test_exact_power(self, exact_power):
        result = lin_pow(exact_power, norm_test="none")
        assert result.slope == pytest.approx(0.25)
        assert result.intercept == pytest.approx(np.log(10.0))
        assert result.r2 == pytest.approx(1.0)
        assert result.con is None
        assert result.normality is None

    def test_slope_recovered(self, islands):
        result = lin_pow(islands)
        assert result.slope == pytest.approx(POWER_Z, abs=0.01)
        assert result.slope_se > 0
        assert result.intercept_se > 0
        assert result.normality is not None
        assert result.normality.kind == "lillie"

    def test_slope_invariant_to_log_base(self, islands):
        ln = lin_pow(islands, log_transform="log")
        l10 = lin_pow(islands, log_transform="log10")
        l2 = lin_pow(islands, log_transform="log2")
        assert l10.slope == pytest.approx(ln.slope, rel=1e-10)
        assert l2.slope == pytest.approx(ln.slope, rel=1e-10)
        assert l10.intercept == pytest.approx(ln.intercept / np.log(10.0))
        assert l2.intercept == pytest.approx(ln.intercept / np.log(2.0))
        assert l10.log_transform == "log10"

    def test_callable_transform(self, islands):
        result = lin_pow(islands, log_transform=np.log10)
        assert result.log_transform == "log10"
        assert result.slope == pytest.approx(lin_pow(islands).slope)

    def test_fitted_plus_residuals(self, islands):
        result = lin_pow(islands)
        npt.assert_allclose(result.fitted + result.residuals, np.log(islands.richness))

    def test_con_only_applied_with_zeros(self, islands):
        assert lin_pow(islands, con=5.0).con is None
        with_zero = Dataset.from_arrays([1.0, 2.0, 4.0, 8.0, 16.0], [0.0, 2.0, 3.0, 5.0, 6.0])
        result = lin_pow(with_zero, con=1.0)
        assert result.con == 1.0
        npt.assert_allclose(result.fitted + result.residuals,
                            np.log(with_zero.richness + 1.0))

    def test_zero_richness_without_con(self):
        data = Dataset.from_arrays([1.0, 2.0, 4.0, 8.0, 16.0], [0.0, 2.0, 3.0, 5.0, 6.0])
        with pytest.raises(InvalidRequestError, match="con"):
            lin_pow(data, con=0)

    def test_unknown_transform(self, islands):
        with pytest.raises(InvalidRequestError, match="log_transform"):
            lin_pow(islands, log_transform="sqrt")

    def test_unknown_norm_test(self, islands):
        with pytest.raises(InvalidRequestError, match="norm_test"):
            lin_pow(islands, norm_test="jarque")

    def test_compare_with_power(self, islands):
        result = lin_pow(islands, compare=True)
        assert result.power_fit is not None
        assert result.power_fit.model_name == "power"
        assert result.power_fit.converged

    def test_power_and_log_linear_slopes_agree(self, islands):
        nonlinear = fit_one("power", islands, FitOptions())
        linear = lin_pow(islands)
        assert nonlinear.converged
        assert abs(nonlinear.params[1] - linear.slope) < 0.01

    def test_lilliefors_undefined_below_five_points(self, four_points):
        result = lin_pow(four_points, compare=True)
        assert result.slope > 0
        assert result.normality.kind == "lillie"
        assert not result.normality.is_defined
        assert result.power_fit.norm_test == "lillie"
        if result.power_fit.converged:
            assert not result.power_fit.normality.is_defined

    def test_three_points_minimum(self):
        data = Dataset.from_arrays([1.0, 2.0], [1.0, 2.0])
        with pytest.raises(InvalidRequestError, match="at least 3"):
            lin_pow(data, norm_test="none")


class TestLinPowDegenerate:
    """Warnings for constant richness."""

    def test_all_zero_with_compare(self, zero_richness):
        with pytest.warns(DegenerateDataWarning, match="All richness values are zero"):
            result = lin_pow(zero_richness, compare=True)
        assert result.slope == pytest.approx(0.0)
        assert result.con == 1.0

    def test_all_zero_without_compare(self, zero_richness):
        with pytest.warns(DegenerateDataWarning, match="All richness values identical"):
            lin_pow(zero_richness)

    def test_constant_nonzero(self, constant_richness):
        with pytest.warns(DegenerateDataWarning, match="All richness values identical"):
            result = lin_pow(constant_richness, compare=True)
        assert result.slope == pytest.approx(0.0)

    def test_four_zero_points_warn(self):
        data = Dataset.from_arrays([1.0, 2.0, 3.0, 4.0], [0.0] * 4)
        with pytest.warns(DegenerateDataWarning, match="All richness values are zero"):
            result = lin_pow(data, compare=True)
        assert result.slope == pytest.approx(0.0)
        assert not result.normality.is_defined

    def test_four_zero_points_without_compare(self):
        data = Dataset.from_arrays([1.0, 2.0, 3.0, 4.0], [0.0] * 4)
        with pytest.warns(DegenerateDataWarning, match="All richness values identical"):
            lin_pow(data, compare=False)
