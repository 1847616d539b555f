"""Tests for bootstrap confidence intervals."""

from __future__ import annotations

import numpy as np
import numpy.testing as npt
import pytest

from pysars.domain.exceptions import BootstrapError, InsufficientModelsError, InvalidRequestError
from pysars.domain.models import AverageOptions, ConfidenceInterval
from pysars.sar_engine import uncertainty
from pysars.sar_engine.averaging import average
from pysars.sar_engine.fitting import fit_one
from pysars.sar_engine.uncertainty import (
    adjusted_residuals,
    confidence_intervals,
    leverage,
)

CHEAP = ["power", "loga", "linear"]
QUIET = AverageOptions(norm_test="none", homo_test="none", crit="AIC")


@pytest.fixture()
def ensemble(islands):
    return average(CHEAP, islands, QUIET)


class TestResiduals:
    """Leverage-adjusted residuals."""

    def test_leverage_trace_equals_parameters(self, islands):
        result = fit_one("linear", islands, QUIET.fit_options())
        h = leverage(result)
        assert h.sum() == pytest.approx(2.0, rel=1e-6)
        assert np.all((h > 0) & (h < 1))

    def test_adjusted_residuals_centred(self, islands):
        result = fit_one("power", islands, QUIET.fit_options())
        adj = adjusted_residuals(result)
        assert np.all(np.isfinite(adj))
        assert adj.mean() == pytest.approx(0.0, abs=1e-9)


class TestConfidenceIntervals:
    """Residual bootstrap around the multi-model curve."""

    def test_bounds_ordered(self, ensemble):
        ci = confidence_intervals(ensemble, n_replicates=20, seed=1)
        assert isinstance(ci, ConfidenceInterval)
        assert ci.lower.shape == ensemble.mmi.shape
        assert np.all(ci.lower <= ci.upper)
        assert ci.level == 0.95
        npt.assert_array_equal(ci.area, ensemble.dataset.area)

    def test_replicate_matrix(self, ensemble):
        ci = confidence_intervals(ensemble, n_replicates=12, seed=3)
        assert ci.replicates.shape == (12, ensemble.n_points)
        npt.assert_array_equal(ci.n_retained, np.full(ensemble.n_points, 12))

    def test_seed_stable(self, ensemble):
        first = confidence_intervals(ensemble, n_replicates=15, seed=7)
        second = confidence_intervals(ensemble, n_replicates=15, seed=7)
        npt.assert_array_equal(first.lower, second.lower)
        npt.assert_array_equal(first.upper, second.upper)

    def test_worker_count_does_not_change_result(self, ensemble):
        serial = confidence_intervals(ensemble, n_replicates=10, seed=11)
        parallel = confidence_intervals(ensemble, n_replicates=10, seed=11,
                                        options=QUIET.replace(n_workers=3))
        npt.assert_allclose(parallel.replicates, serial.replicates)

    def test_wider_level_wider_interval(self, ensemble):
        narrow = confidence_intervals(ensemble, n_replicates=30, seed=5, level=0.5)
        wide = confidence_intervals(ensemble, n_replicates=30, seed=5, level=0.99)
        assert np.all(wide.upper - wide.lower >= narrow.upper - narrow.lower - 1e-12)

    def test_defaults_from_options(self, ensemble):
        ci = confidence_intervals(ensemble, options=QUIET.replace(ci_n=6, ci_level=0.9))
        assert ci.n_replicates == 6
        assert ci.level == 0.9

    @pytest.mark.parametrize("n", [0, -1, 2.5])
    def test_invalid_replicate_count(self, ensemble, n):
        with pytest.raises(InvalidRequestError, match="n_replicates"):
            confidence_intervals(ensemble, n_replicates=n)

    def test_invalid_level(self, ensemble):
        with pytest.raises(InvalidRequestError, match="level"):
            confidence_intervals(ensemble, n_replicates=5, level=1.0)

    def test_every_replicate_discarded(self, ensemble, monkeypatch):
        def always_fails(collection, options, log=None):
            raise InsufficientModelsError("forced")

        monkeypatch.setattr(uncertainty, "build_ensemble", always_fails)
        with pytest.raises(BootstrapError):
            confidence_intervals(ensemble, n_replicates=4, seed=0)
