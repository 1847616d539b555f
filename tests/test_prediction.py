"""Tests for predictions at new areas."""

from __future__ import annotations

from dataclasses import replace

import numpy as np
import numpy.testing as npt
import pytest

from pysars.domain.exceptions import InvalidRequestError, ModelAlignmentError
from pysars.domain.models import AverageOptions, FitOptions, Prediction
from pysars.sar_engine.averaging import average
from pysars.sar_engine.collection import fit_many
from pysars.sar_engine.fitting import fit_one
from pysars.sar_engine.prediction import predict

CHEAP = ["power", "loga", "linear"]
QUIET = AverageOptions(norm_test="none", homo_test="none", crit="AIC")


class TestPredictFit:
    """Single fitted model."""

    def test_linear_exact(self, exact_linear):
        result = fit_one("linear", exact_linear, FitOptions(norm_test="none"))
        pred = predict(result, [10.0, 20.0])
        assert isinstance(pred, Prediction)
        npt.assert_allclose(pred.value, [32.0, 62.0], rtol=1e-10)
        assert pred.model == ("Linear model", "Linear model")

    def test_scalar_area(self, exact_power):
        result = fit_one("power", exact_power, FitOptions(norm_test="none"))
        pred = predict(result, 16.0)
        assert pred.value[0] == pytest.approx(20.0, rel=1e-4)

    def test_rows(self, exact_linear):
        result = fit_one("linear", exact_linear, FitOptions(norm_test="none"))
        rows = predict(result, [1.0]).rows()
        assert rows[0][0] == "Linear model"
        assert rows[0][1] == 1.0
        assert rows[0][2] == pytest.approx(5.0)

    @pytest.mark.parametrize("areas", [[-1.0], [-1.0, 2.0], [np.nan], [np.inf], []])
    def test_invalid_areas(self, exact_linear, areas):
        result = fit_one("linear", exact_linear, FitOptions(norm_test="none"))
        with pytest.raises(InvalidRequestError):
            predict(result, areas)

    def test_zero_area_gives_intercept(self, exact_linear):
        result = fit_one("linear", exact_linear, FitOptions(norm_test="none"))
        assert predict(result, 0.0).value[0] == pytest.approx(2.0)

    def test_unsupported_object(self):
        with pytest.raises(InvalidRequestError, match="cannot predict"):
            predict({"power": None}, [1.0])


class TestPredictCollection:
    """One block of rows per model."""

    def test_rows_per_model_in_order(self, islands):
        collection = fit_many(islands, CHEAP, FitOptions(norm_test="none"))
        pred = predict(collection, [1.0, 10.0])
        assert pred.model == ("power", "power", "loga", "loga", "linear", "linear")
        npt.assert_array_equal(pred.area, [1.0, 10.0] * 3)
        npt.assert_allclose(pred.for_model("loga"),
                            collection["loga"].spec([1.0, 10.0], collection["loga"].params))

    def test_failed_fit_gives_nan(self, islands):
        collection = fit_many(islands, CHEAP, FitOptions(norm_test="none"))
        failed = replace(collection["power"], converged=False)
        broken = replace(collection, fits={**collection.fits, "power": failed})
        pred = predict(broken, [1.0, 10.0])
        assert np.all(np.isnan(pred.for_model("power")))
        assert np.all(np.isfinite(pred.for_model("loga")))


class TestPredictEnsemble:
    """Weighted sum of surviving models."""

    def test_matches_mmi_at_observed_areas(self, islands):
        ensemble = average(CHEAP, islands, QUIET)
        pred = predict(ensemble, islands.area)
        npt.assert_allclose(pred.value, ensemble.mmi, rtol=1e-10)
        assert set(pred.model) == {"Multi"}

    def test_weighted_sum(self, islands):
        ensemble = average(CHEAP, islands, QUIET)
        areas = np.array([3.0, 300.0])
        expected = sum(
            w * ensemble.fits[m].spec(areas, ensemble.fits[m].params)
            for m, w in zip(ensemble.mod_names, ensemble.weights)
        )
        npt.assert_allclose(predict(ensemble, areas).value, expected)

    def test_misaligned_names(self, islands):
        ensemble = average(CHEAP, islands, QUIET)
        shuffled = replace(ensemble, mod_names=tuple(reversed(ensemble.mod_names)))
        with pytest.raises(ModelAlignmentError):
            predict(shuffled, [1.0])

    def test_misaligned_weights(self, islands):
        ensemble = average(CHEAP, islands, QUIET)
        truncated = replace(ensemble, weights=ensemble.weights[:-1])
        with pytest.raises(ModelAlignmentError):
            predict(truncated, [1.0])
