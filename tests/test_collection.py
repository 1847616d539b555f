"""Tests for fitting several models to one dataset."""

from __future__ import annotations

import warnings

import numpy as np
import numpy.testing as npt
import pytest
import yaml

from pysars.config import get_typed_config
from pysars.domain.events import MODEL_FAILED, MODEL_FITTED
from pysars.domain.exceptions import (
    DegenerateDataWarning,
    InvalidRequestError,
    UnknownModelError,
)
from pysars.domain.models import Dataset, FitCollection, FitOptions, SolverResult
from pysars.sar_engine import registry
from pysars.sar_engine.collection import fit_collection, fit_many

CHEAP = ["loga", "power", "linear"]


class _PowerFailsSolver:
    """Solver stub that fails for the power model only."""

    def __init__(self, inner):
        self.inner = inner

    def minimize(self, model, area, observed, start, domains, max_nfev):
        if getattr(model, "name", "") == "power":
            return SolverResult(params=np.asarray(start), message="forced failure")
        return self.inner.minimize(model, area, observed, start, domains, max_nfev)


class TestFitMany:
    """Collection building."""

    def test_preserves_request_order(self, islands):
        collection = fit_many(islands, CHEAP, FitOptions(norm_test="none"))
        assert isinstance(collection, FitCollection)
        assert collection.names == tuple(CHEAP)
        assert list(collection) == CHEAP
        assert len(collection) == 3

    def test_stores_selectors_and_dataset(self, islands):
        collection = fit_many(islands, CHEAP, FitOptions(norm_test="shapiro",
                                                         homo_test="cor.area"))
        assert collection.norm_test == "shapiro"
        assert collection.homo_test == "cor.area"
        assert collection.dataset is islands
        assert collection["power"].homogeneity.kind == "cor.area"

    def test_all_models_by_default(self, islands):
        collection = fit_many(islands, options=FitOptions(norm_test="none"))
        assert collection.names == tuple(registry.list_models())
        for name in ("power", "loga", "linear"):
            assert collection[name].converged

    def test_fitted_events(self, islands):
        collection = fit_many(islands, CHEAP, FitOptions(norm_test="none"))
        fitted = [e.model_name for e in collection.events if e.type == MODEL_FITTED]
        assert fitted == CHEAP

    def test_parallel_matches_serial(self, islands):
        serial = fit_many(islands, CHEAP, FitOptions(norm_test="none"))
        parallel = fit_many(islands, CHEAP, FitOptions(norm_test="none", n_workers=3))
        assert parallel.names == serial.names
        for name in CHEAP:
            npt.assert_allclose(parallel[name].params, serial[name].params)

    def test_failure_kept_and_recorded(self, islands):
        from pysars.sar_engine.fitting import ScipyLeastSquaresSolver

        specs = [registry.get(n) for n in CHEAP]
        collection = fit_collection(islands, specs, FitOptions(norm_test="none"),
                                    _PowerFailsSolver(ScipyLeastSquaresSolver()))
        assert collection.failed_names == ("power",)
        assert not collection["power"].converged
        failed = [e for e in collection.events if e.type == MODEL_FAILED]
        assert [e.model_name for e in failed] == ["power"]
        assert failed[0].level == "warning"

    def test_without(self, islands):
        collection = fit_many(islands, CHEAP, FitOptions(norm_test="none"))
        smaller = collection.without(["power"])
        assert smaller.names == ("loga", "linear")
        assert collection.names == tuple(CHEAP)


class TestFitManyValidation:
    """Structural request checks."""

    def test_three_points_rejected(self):
        data = Dataset.from_arrays([1.0, 2.0, 4.0], [2.0, 3.0, 4.0])
        with pytest.raises(InvalidRequestError, match="at least 4"):
            fit_many(data, CHEAP, FitOptions(norm_test="none"))

    def test_four_points_accepted_without_lilliefors(self, four_points):
        collection = fit_many(four_points, ["power", "loga"], FitOptions(norm_test="none"))
        assert len(collection) == 2

    def test_four_points_rejected_with_lilliefors(self, four_points):
        with pytest.raises(InvalidRequestError, match="Lilliefors"):
            fit_many(four_points, ["power", "loga"], FitOptions(norm_test="lillie"))

    def test_five_points_lilliefors(self, five_points):
        collection = fit_many(five_points, ["power", "loga"], FitOptions(norm_test="lillie"))
        assert collection.norm_test == "lillie"

    def test_single_model_rejected(self, islands):
        with pytest.raises(InvalidRequestError, match="More than 1 model"):
            fit_many(islands, ["power"])
        with pytest.raises(InvalidRequestError, match="More than 1 model"):
            fit_many(islands, "power")

    def test_unknown_model_rejected(self, islands):
        with pytest.raises(UnknownModelError, match="'powr'"):
            fit_many(islands, ["power", "powr"])

    def test_duplicate_models_rejected(self, islands):
        with pytest.raises(InvalidRequestError, match="duplicate"):
            fit_many(islands, ["power", "power"])

    @pytest.mark.parametrize("grid_n", [None, -1])
    def test_bad_grid_n(self, islands, grid_n):
        with pytest.raises(InvalidRequestError, match="grid_n"):
            fit_many(islands, CHEAP, FitOptions(grid_start=True, grid_n=grid_n))

    def test_custom_start_rejected(self, islands):
        with pytest.raises(InvalidRequestError, match="single-model"):
            fit_many(islands, CHEAP, FitOptions(start=(1.0, 0.3)))


class TestFitManyDegenerate:
    """Constant richness emits exactly one warning."""

    def test_single_warning(self, constant_richness):
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            collection = fit_many(constant_richness, ["linear", "loga"],
                                  FitOptions(norm_test="none"))
        degenerate = [w for w in caught if issubclass(w.category, DegenerateDataWarning)]
        assert len(degenerate) == 1
        assert "All richness values identical" in str(degenerate[0].message)
        assert any(e.type == "data.degenerate" for e in collection.events)


class TestFitManyConfiguration:
    """Omitted options come from the configuration."""

    def test_overlay_selectors_used(self, islands, tmp_path, monkeypatch):
        overlay = tmp_path / "overlay.yaml"
        with open(overlay, "w") as fh:
            yaml.dump({"fitting": {"norm_test": "shapiro", "homo_test": "none"}}, fh)
        monkeypatch.setenv("PYSARS_CONFIG", str(overlay))
        get_typed_config.cache_clear()
        try:
            collection = fit_many(islands, CHEAP)
        finally:
            get_typed_config.cache_clear()
        assert collection.norm_test == "shapiro"
        assert collection.homo_test == "none"
        assert collection["power"].normality.kind == "shapiro"
