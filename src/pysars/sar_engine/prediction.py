"""Predict richness at new areas from a fit, a collection or an ensemble."""

from __future__ import annotations

from typing import Any

import numpy as np

from pysars.domain.exceptions import InvalidRequestError, ModelAlignmentError
from pysars.domain.models import EnsembleResult, FitCollection, FitResult, Prediction

ENSEMBLE_LABEL = "Multi"


def _check_areas(areas: Any) -> np.ndarray:
    a = np.atleast_1d(np.asarray(areas, dtype=np.float64)).ravel()
    if a.size == 0:
        raise InvalidRequestError("at least one area is required")
    if not np.all(np.isfinite(a)) or np.any(a < 0):
        raise InvalidRequestError("areas must be finite and non-negative")
    return a


def _evaluate(fit: FitResult, areas: np.ndarray) -> np.ndarray:
    if not fit.converged:
        return np.full(areas.size, np.nan)
    return fit.spec(areas, fit.params)


def _predict_fit(fit: FitResult, areas: np.ndarray) -> Prediction:
    return Prediction(model=(fit.spec.label,) * areas.size, area=areas,
                      value=_evaluate(fit, areas))


def _predict_collection(collection: FitCollection, areas: np.ndarray) -> Prediction:
    names = collection.names
    return Prediction(
        model=tuple(name for name in names for _ in areas),
        area=np.tile(areas, len(names)),
        value=np.concatenate([_evaluate(collection[n], areas) for n in names])
        if names else np.empty(0),
    )


def _predict_ensemble(ensemble: EnsembleResult, areas: np.ndarray) -> Prediction:
    names = ensemble.mod_names
    if tuple(ensemble.fits.names) != tuple(names) or len(ensemble.weights) != len(names):
        raise ModelAlignmentError(
            f"model names {tuple(ensemble.fits.names)} do not match the weighted "
            f"models {tuple(names)}"
        )
    preds = np.vstack([_evaluate(ensemble.fits[n], areas) for n in names])
    return Prediction(model=(ENSEMBLE_LABEL,) * areas.size, area=areas,
                      value=np.asarray(ensemble.weights) @ preds)


def predict(obj: FitResult | FitCollection | EnsembleResult, areas: Any) -> Prediction:
    """Predict richness at *areas*.

    Parameters
    ----------
    obj:
        A single fit (rows labelled with the model label), a fit collection
        (one block of rows per model, in collection order, NaN for failed
        fits) or an ensemble (rows labelled ``"Multi"``).
    areas:
        Scalar or array of non-negative areas.  Models with a logarithm of
        area are not finite at zero.

    Returns
    -------
    Prediction
        Long-format ``(model, area, value)`` rows.

    Raises
    ------
    InvalidRequestError
        For negative or non-finite areas, or an unsupported *obj*.
    ModelAlignmentError
        If an ensemble's stored model names and weights disagree.
    """
    a = _check_areas(areas)
    if isinstance(obj, EnsembleResult):
        return _predict_ensemble(obj, a)
    if isinstance(obj, FitCollection):
        return _predict_collection(obj, a)
    if isinstance(obj, FitResult):
        return _predict_fit(obj, a)
    raise InvalidRequestError(f"cannot predict from {type(obj).__name__}")
