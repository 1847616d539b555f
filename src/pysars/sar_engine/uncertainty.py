"""Bootstrap confidence intervals for the multi-model SAR curve.

Residual bootstrap after Guilhaumon et al. (2010):

1. Each surviving model contributes leverage-adjusted, centred residuals
   ``r / sqrt(1 - h)`` to a resampling pool.
2. A replicate draws one model by its weight, adds residuals resampled with
   replacement to that model's fitted values, and reruns the full
   fit + screening + weighting pipeline on the pseudo-data.
3. The ensemble predictions at the observed areas are collected and the
   bounds are the empirical quantiles over retained replicates.

Each replicate owns a generator spawned from one
:class:`numpy.random.SeedSequence`, so results do not depend on the number
of workers.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor

import numpy as np

from pysars.domain.events import (
    REPLICATE_DISCARDED,
    RESIDUALS_UNUSABLE,
    WARNING,
    Event,
    EventLog,
)
from pysars.domain.exceptions import (
    BootstrapError,
    InsufficientModelsError,
    InvalidRequestError,
    NoConvergenceError,
)
from pysars.domain.models import (
    AverageOptions,
    ConfidenceInterval,
    EnsembleResult,
    FitResult,
)
from pysars.sar_engine.averaging import build_ensemble
from pysars.sar_engine.collection import fit_collection
from pysars.sar_engine.fitting import numeric_jacobian

logger = logging.getLogger(__name__)


def leverage(fit: FitResult) -> np.ndarray:
    """Diagonal of the hat matrix ``J (J'J)^-1 J'`` at the fitted parameters."""
    jac = numeric_jacobian(fit.spec, fit.dataset.area, fit.params)
    if not np.all(np.isfinite(jac)):
        return np.full(fit.dataset.n, np.nan)
    return np.sum(jac * (jac @ np.linalg.pinv(jac.T @ jac)), axis=1)


def adjusted_residuals(fit: FitResult) -> np.ndarray:
    """Leverage-adjusted residuals, centred on zero (may be non-finite)."""
    with np.errstate(all="ignore"):
        adj = fit.residuals / np.sqrt(1.0 - leverage(fit))
    return adj - np.mean(adj)


def _replicate_options(ensemble: EnsembleResult, options: AverageOptions | None) -> AverageOptions:
    """Options that reproduce the screening of *ensemble*."""
    options = options or AverageOptions.from_config()
    changes: dict[str, object] = {
        "norm_test": ensemble.norm_test,
        "homo_test": ensemble.homo_test,
        "crit": ensemble.crit,
        "conf_int": False,
        "start": None,
    }
    if ensemble.alpha_norm_test is not None:
        changes["alpha_normtest"] = ensemble.alpha_norm_test
    if ensemble.alpha_homo_test is not None:
        changes["alpha_homotest"] = ensemble.alpha_homo_test
    return options.replace(**changes)


def confidence_intervals(
    ensemble: EnsembleResult,
    n_replicates: int | None = None,
    options: AverageOptions | None = None,
    seed: int | None = None,
    level: float | None = None,
) -> ConfidenceInterval:
    """Bootstrap confidence bounds for ``ensemble.mmi``.

    Parameters
    ----------
    ensemble:
        Result of :func:`~pysars.sar_engine.averaging.average`.
    n_replicates:
        Number of bootstrap replicates (default ``options.ci_n``).
    options:
        Supplies the replicate count, level, seed, solver limits and
        ``n_workers``.  Test selectors, alphas and the criterion are taken
        from *ensemble*.
    seed:
        Root seed (default ``options.seed``).
    level:
        Two-sided coverage (default ``options.ci_level``).

    Returns
    -------
    ConfidenceInterval
        Lower and upper bounds per observed area, the retained counts and
        the replicate matrix (NaN for discarded cells).

    Raises
    ------
    BootstrapError
        If no model has usable residuals or an area retained no replicate.
    """
    options = _replicate_options(ensemble, options)
    n_rep = options.ci_n if n_replicates is None else n_replicates
    level = options.ci_level if level is None else level
    seed = options.seed if seed is None else seed
    if isinstance(n_rep, bool) or not isinstance(n_rep, (int, np.integer)) or n_rep < 1:
        raise InvalidRequestError("n_replicates must be a positive integer")
    if not 0.0 < level < 1.0:
        raise InvalidRequestError("level must lie in (0, 1)")

    log = EventLog()
    dataset = ensemble.dataset
    mod_names = ensemble.mod_names
    specs = [ensemble.fits[m].spec for m in mod_names]

    # -- resampling pool ---------------------------------------------------
    pool_names: list[str] = []
    pool_weights: list[float] = []
    pool: dict[str, tuple[np.ndarray, np.ndarray]] = {}
    for name, weight in zip(mod_names, ensemble.weights):
        fit = ensemble.fits[name]
        adj = adjusted_residuals(fit)
        if not np.all(np.isfinite(adj)):
            log.record(RESIDUALS_UNUSABLE, level=WARNING, model_name=name,
                       message=f"{name} residuals cannot be leverage-adjusted")
            continue
        pool_names.append(name)
        pool_weights.append(float(weight))
        pool[name] = (fit.fitted, adj)
    if not pool:
        raise BootstrapError("no model has usable residuals for resampling")
    probs = np.asarray(pool_weights) / np.sum(pool_weights)

    fit_options = options.fit_options().replace(n_workers=1)

    def worker(rng: np.random.Generator) -> tuple[np.ndarray, str, str]:
        name = pool_names[int(rng.choice(len(pool_names), p=probs))]
        fitted, adj = pool[name]
        pseudo = dataset.with_richness(fitted + rng.choice(adj, size=dataset.n, replace=True))
        try:
            collection = fit_collection(pseudo, specs, fit_options)
            replicate = build_ensemble(collection, options)
        except (NoConvergenceError, InsufficientModelsError) as exc:
            return np.full(dataset.n, np.nan), name, str(exc)
        values = np.array(replicate.mmi, dtype=np.float64)
        preds = np.vstack([replicate.fits[m].fitted for m in replicate.mod_names])
        values[~np.all(np.isfinite(preds), axis=0)] = np.nan
        return values, name, ""

    rngs = [np.random.default_rng(s) for s in np.random.SeedSequence(seed).spawn(n_rep)]
    if options.n_workers > 1:
        with ThreadPoolExecutor(max_workers=options.n_workers) as executor:
            outcomes = list(executor.map(worker, rngs))
    else:
        outcomes = [worker(rng) for rng in rngs]

    for i, (_, name, reason) in enumerate(outcomes):
        if reason:
            log.record(Event(type=REPLICATE_DISCARDED, level=WARNING,
                             message=reason, payload={"replicate": i, "drawn_model": name}))

    replicates = np.vstack([values for values, _, _ in outcomes])
    retained = np.sum(np.isfinite(replicates), axis=0)
    if np.any(retained == 0):
        raise BootstrapError(
            "every bootstrap replicate was discarded at areas "
            f"{dataset.area[retained == 0].tolist()}"
        )

    tail = (1.0 - level) / 2.0
    lower = np.nanquantile(replicates, tail, axis=0)
    upper = np.nanquantile(replicates, 1.0 - tail, axis=0)
    logger.info("bootstrap: %d replicates, %d discarded, min retained per area %d",
                n_rep, len(log.of_type(REPLICATE_DISCARDED)), int(retained.min()))

    return ConfidenceInterval(
        area=np.array(dataset.area),
        lower=lower,
        upper=upper,
        level=level,
        n_replicates=n_rep,
        n_retained=retained,
        replicates=replicates,
        events=log.events,
    )
