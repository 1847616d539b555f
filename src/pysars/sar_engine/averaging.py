"""Model screening and information-criterion weighted averaging.

Fits that did not converge, whose residuals fail the selected normality or
homogeneity test, that predict negative richness (optional) or whose
criterion is undefined are removed.  The survivors are weighted by

    w_i = exp(-0.5 * delta_IC_i) / sum_j exp(-0.5 * delta_IC_j)

where ``delta_IC_i = IC_i - min(IC)``, and the multi-model curve is the
weighted sum of their fitted values.
"""

from __future__ import annotations

import logging
import math
import warnings
from collections.abc import Iterable
from dataclasses import replace

import numpy as np

from pysars.domain.events import (
    ENSEMBLE_BUILT,
    MODEL_EXCLUDED,
    SELECTOR_MISMATCH,
    WARNING,
    EventLog,
)
from pysars.domain.exceptions import (
    ConsistencyWarning,
    InsufficientModelsError,
    InvalidRequestError,
    NoConvergenceError,
)
from pysars.domain.models import (
    AverageOptions,
    Dataset,
    EnsembleResult,
    ExclusionReason,
    ExclusionRecord,
    FitCollection,
    FitResult,
)
from pysars.sar_engine.collection import fit_many

logger = logging.getLogger(__name__)

# Ratio n / n_params below which AICc replaces AIC for ``crit="Info"``.
_SMALL_SAMPLE_RATIO = 40

_EXCLUSION_MESSAGES = {
    ExclusionReason.NO_CONVERGENCE: "could not be fitted",
    ExclusionReason.NORMALITY_UNDEFINED: "normality test could not be computed",
    ExclusionReason.NORMALITY_FAILED: "residuals are not normally distributed",
    ExclusionReason.HOMOGENEITY_UNDEFINED: "homogeneity test could not be computed",
    ExclusionReason.HOMOGENEITY_FAILED: "residuals are heteroscedastic",
    ExclusionReason.NEGATIVE_PREDICTION: "predicts negative richness",
    ExclusionReason.UNDEFINED_IC: "information criterion is not finite",
}


def resolve_criterion(crit: str, n: int) -> str:
    """Map the requested criterion to ``"AIC"``, ``"AICc"`` or ``"BIC"``."""
    if crit == "Info":
        return "AICc" if n / 3 < _SMALL_SAMPLE_RATIO else "AIC"
    if crit == "Bayes":
        return "BIC"
    return crit


def ic_weights(ics: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Return ``(delta_ics, weights)`` for finite criterion values."""
    ics = np.asarray(ics, dtype=np.float64)
    delta = ics - np.min(ics)
    raw = np.exp(-0.5 * delta)
    return delta, raw / raw.sum()


def exclusion_reason(
    fit: FitResult,
    options: AverageOptions,
    ic: str,
) -> ExclusionReason | None:
    """First screening check that *fit* fails, or ``None`` if it passes."""
    if not fit.converged:
        return ExclusionReason.NO_CONVERGENCE
    if options.norm_test != "none":
        p = fit.normality.p_value if fit.normality is not None else math.nan
        if not math.isfinite(p):
            return ExclusionReason.NORMALITY_UNDEFINED
        if p < options.alpha_normtest:
            return ExclusionReason.NORMALITY_FAILED
    if options.homo_test != "none":
        p = fit.homogeneity.p_value if fit.homogeneity is not None else math.nan
        if not math.isfinite(p):
            return ExclusionReason.HOMOGENEITY_UNDEFINED
        if p < options.alpha_homotest:
            return ExclusionReason.HOMOGENEITY_FAILED
    if options.neg_check and np.any(fit.fitted < 0):
        return ExclusionReason.NEGATIVE_PREDICTION
    if not math.isfinite(fit.ic(ic)):
        return ExclusionReason.UNDEFINED_IC
    return None


def build_ensemble(
    collection: FitCollection,
    options: AverageOptions,
    log: EventLog | None = None,
) -> EnsembleResult:
    """Screen *collection* and weight the survivors.

    *options* must already carry the collection's test selectors.  No
    warnings are emitted; exclusions are recorded in *log*.

    Raises
    ------
    NoConvergenceError
        If no model in the collection converged.
    InsufficientModelsError
        If fewer than two models survive screening.
    """
    log = log if log is not None else EventLog()
    n = collection.dataset.n
    ic = resolve_criterion(options.crit, n)

    if not any(f.converged for f in collection.values()):
        raise NoConvergenceError("No models could be fitted")

    excluded: list[ExclusionRecord] = []
    for name, fit in collection.items():
        reason = exclusion_reason(fit, options, ic)
        if reason is None:
            continue
        excluded.append(ExclusionRecord(model_name=name, reason=reason))
        payload: dict[str, object] = {"reason": reason.value}
        if fit.normality is not None:
            payload["normality_p"] = fit.normality.p_value
        if fit.homogeneity is not None:
            payload["homogeneity_p"] = fit.homogeneity.p_value
        log.record(MODEL_EXCLUDED, model_name=name,
                   message=f"{name} {_EXCLUSION_MESSAGES[reason]}", payload=payload)

    screened = collection.without(r.model_name for r in excluded)
    if len(screened) < 2:
        raise InsufficientModelsError(
            "Fewer than two models could be fitted and/or passed the model checks"
        )

    mod_names = screened.names
    ics = np.array([screened[m].ic(ic) for m in mod_names])
    delta, weights = ic_weights(ics)
    fitted = np.vstack([screened[m].fitted for m in mod_names])
    mmi = weights @ fitted

    log.record(ENSEMBLE_BUILT, message=f"{len(mod_names)} models averaged by {ic}",
               payload={"n_mods": len(mod_names), "n_excluded": len(excluded), "ic": ic})
    return EnsembleResult(
        mmi=mmi,
        fits=screened,
        crit=options.crit,
        ic=ic,
        norm_test=collection.norm_test,
        homo_test=collection.homo_test,
        alpha_norm_test=options.alpha_normtest if collection.norm_test != "none" else None,
        alpha_homo_test=options.alpha_homotest if collection.homo_test != "none" else None,
        mod_names=mod_names,
        ics=ics,
        delta_ics=delta,
        weights=weights,
        n_points=n,
        n_mods=len(mod_names),
        excluded=tuple(excluded),
        events=collection.events + log.events,
    )


def average(
    obj: FitCollection | str | Iterable[str] | None = None,
    dataset: Dataset | None = None,
    options: AverageOptions | None = None,
) -> EnsembleResult:
    """Build the multi-model SAR curve.

    Parameters
    ----------
    obj:
        A :class:`FitCollection`, or catalog model names (``None`` or
        ``"all"`` for every model) to fit to *dataset* first.
    dataset:
        Observations; required when *obj* names models, ignored for a
        collection.
    options:
        Fitting, screening, weighting and bootstrap options; read from the
        configuration when omitted.

    Returns
    -------
    EnsembleResult
        Weighted ensemble; carries a confidence interval when
        ``options.conf_int`` is set.

    Raises
    ------
    InvalidRequestError
        Malformed request (see :func:`~pysars.sar_engine.collection.fit_many`).
    NoConvergenceError
        No model converged.
    InsufficientModelsError
        Fewer than two models survived screening.
    """
    options = options or AverageOptions.from_config()
    log = EventLog()

    if isinstance(obj, FitCollection):
        collection = obj
        if dataset is not None:
            logger.debug("average: dataset ignored, the collection carries its own")
        stored = (collection.norm_test, collection.homo_test)
        if stored != (options.norm_test, options.homo_test):
            message = (
                f"requested tests ({options.norm_test}, {options.homo_test}) differ "
                f"from those stored in the fit collection {stored}; using the stored tests"
            )
            warnings.warn(message, ConsistencyWarning, stacklevel=2)
            log.record(SELECTOR_MISMATCH, level=WARNING, message=message,
                       payload={"requested": (options.norm_test, options.homo_test),
                                "stored": stored})
            options = options.replace(norm_test=collection.norm_test,
                                      homo_test=collection.homo_test)
    else:
        if dataset is None:
            raise InvalidRequestError("a dataset is required when models are given by name")
        collection = fit_many(dataset, obj, options.fit_options())

    ensemble = build_ensemble(collection, options, log)
    logger.info("averaged %d models by %s, excluded: %s", ensemble.n_mods, ensemble.ic,
                ", ".join(ensemble.no_fit) or "none")

    if options.conf_int:
        from pysars.sar_engine.uncertainty import confidence_intervals

        ensemble = replace(ensemble, confidence_interval=confidence_intervals(
            ensemble, options=options))
    return ensemble
