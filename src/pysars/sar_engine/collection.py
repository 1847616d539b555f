"""Fit several SAR models to one dataset.

Structural problems with the request are raised up front; per-model
convergence failures are kept in the returned
:class:`~pysars.domain.models.FitCollection` as non-converged results and
recorded as events.
"""
from __future__ import annotations

import logging
import warnings
from collections.abc import Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor

import numpy as np

from pysars.domain.events import (
    DEGENERATE_DATA,
    MODEL_FAILED,
    MODEL_FITTED,
    PARAM_STATS_UNAVAILABLE,
    WARNING,
    EventLog,
)
from pysars.domain.exceptions import DegenerateDataWarning, InvalidRequestError
from pysars.domain.models import Dataset, FitCollection, FitOptions, ModelSpec
from pysars.domain.protocols import LeastSquaresSolver
from pysars.sar_engine import registry
from pysars.sar_engine.fitting import DEGENERATE_MESSAGE, check_grid, check_points, fit

logger = logging.getLogger(__name__)

MIN_POINTS = 4
MIN_MODELS = 2


def resolve_models(model_names: str | Iterable[str] | None) -> list[ModelSpec]:
    """Look up *model_names* (``None`` or ``"all"`` for the whole catalog).

    Raises
    ------
    UnknownModelError
        For a name outside the catalog.
    InvalidRequestError
        For fewer than two or duplicated names.
    """
    if model_names is None or model_names == "all":
        names = registry.list_models()
    elif isinstance(model_names, str):
        names = [model_names]
    else:
        names = list(model_names)
    if len(names) < MIN_MODELS:
        raise InvalidRequestError("More than 1 model is required for multi-model fitting")
    if len(set(names)) != len(names):
        raise InvalidRequestError(f"duplicate model names in {names}")
    return [registry.get(name) for name in names]


def validate_request(dataset: Dataset, options: FitOptions) -> None:
    """Raise :class:`InvalidRequestError` for a malformed collection request."""
    check_points(dataset, options.norm_test, minimum=MIN_POINTS)
    check_grid(options)
    if options.start is not None:
        raise InvalidRequestError("custom starting values apply to single-model fits only")


def fit_collection(
    dataset: Dataset,
    specs: Sequence[ModelSpec],
    options: FitOptions,
    solver: LeastSquaresSolver | None = None,
) -> FitCollection:
    """Fit *specs* without validation or user-facing warnings.

    Used directly by the bootstrap, whose pseudo-datasets are known to be
    well formed.
    """
    def worker(spec: ModelSpec):
        return fit(spec, dataset, options, solver)

    if options.n_workers > 1 and len(specs) > 1:
        with ThreadPoolExecutor(max_workers=options.n_workers) as executor:
            results = list(executor.map(worker, specs))
    else:
        results = [worker(spec) for spec in specs]

    log = EventLog()
    if dataset.is_constant:
        log.record(DEGENERATE_DATA, level=WARNING, message=DEGENERATE_MESSAGE)
    for result in results:
        if not result.converged:
            log.record(MODEL_FAILED, level=WARNING, model_name=result.model_name,
                       message=f"{result.model_name} could not be fitted",
                       payload={"solver_message": result.message})
            continue
        log.record(MODEL_FITTED, model_name=result.model_name,
                   payload={"rss": result.objective})
        if not np.all(np.isfinite(result.param_se)):
            log.record(PARAM_STATS_UNAVAILABLE, level=WARNING,
                       model_name=result.model_name,
                       message="parameter standard errors could not be computed")

    return FitCollection(
        fits={r.model_name: r for r in results},
        dataset=dataset,
        norm_test=options.norm_test,
        homo_test=options.homo_test,
        events=log.events,
    )


def fit_many(
    dataset: Dataset,
    model_names: str | Iterable[str] | None = None,
    options: FitOptions | None = None,
) -> FitCollection:
    """Fit every model in *model_names* to *dataset*.

    Parameters
    ----------
    dataset:
        Observations (at least four points, five for the Lilliefors test).
    model_names:
        Catalog names in the order results should be kept; ``None`` or
        ``"all"`` for the whole catalog.
    options:
        Shared fitting options; read from the configuration when
        omitted.

    Returns
    -------
    FitCollection
        One entry per requested model, in request order.  Failed fits are
        kept with ``converged=False``.

    Raises
    ------
    InvalidRequestError
        Too few points or models, unknown names, malformed options.
    """
    options = options or FitOptions.from_config()
    validate_request(dataset, options)
    specs = resolve_models(model_names)
    if dataset.is_constant:
        warnings.warn(DEGENERATE_MESSAGE, DegenerateDataWarning, stacklevel=2)

    collection = fit_collection(dataset, specs, options)
    failed = collection.failed_names
    logger.info("fitted %d models, %d failed%s", len(collection), len(failed),
                f": {', '.join(failed)}" if failed else "")
    return collection
