"""Single-model SAR fitting.

Each model is fitted by nonlinear least squares on the untransformed
richness scale.  Parameter domains are enforced by reparameterisation
(positive parameters through ``exp``, unit-interval parameters through the
logistic function) so the solver works unconstrained.  An optional grid
start adds Latin Hypercube starting points around the heuristic start and
keeps the converged attempt with the smallest residual sum of squares.

Convergence failure is *not* an exception: the returned
:class:`~pysars.domain.models.FitResult` has ``converged=False`` and
``objective=NaN``.
"""
from __future__ import annotations

import logging
import warnings
from typing import Callable

import numpy as np
from scipy.optimize import least_squares
from scipy.special import expit, logit
from scipy.stats.qmc import LatinHypercube

from pysars.domain.exceptions import DegenerateDataWarning, InvalidRequestError
from pysars.domain.models import (
    LILLIEFORS_MIN_POINTS,
    Dataset,
    FitOptions,
    FitResult,
    ModelSpec,
    ParamDomain,
    SolverResult,
)
from pysars.domain.protocols import CorrelationTest, LeastSquaresSolver, NormalityTest
from pysars.sar_engine import registry
from pysars.sar_engine.diagnostics import homogeneity_test, normality_test, undefined_test

logger = logging.getLogger(__name__)

MIN_POINTS = 3

# Residual substituted where the model is not finite during the search.
_PENALTY = 1e10
# RSS floor keeping the log-likelihood finite for exact fits.
_RSS_FLOOR = 1e-12
_JAC_STEP = 1e-6
# Reciprocal condition number below which J'J is treated as singular.
_RCOND = 1e-12

DEGENERATE_MESSAGE = "All richness values identical"

# ---------------------------------------------------------------------------
# Request validation
# ---------------------------------------------------------------------------

def check_points(dataset: Dataset, norm_test: str, minimum: int = MIN_POINTS) -> None:
    """Raise :class:`InvalidRequestError` when *dataset* is too small."""
    if dataset.n < minimum:
        raise InvalidRequestError(
            f"at least {minimum} data points are required, got {dataset.n}"
        )
    if norm_test == "lillie" and dataset.n < LILLIEFORS_MIN_POINTS:
        raise InvalidRequestError(
            "The Lilliefors test cannot be performed with less than "
            f"{LILLIEFORS_MIN_POINTS} data points"
        )


def check_grid(options: FitOptions) -> None:
    """Reject a grid start without a positive integer ``grid_n``."""
    if not options.grid_start:
        return
    n = options.grid_n
    if n is None or isinstance(n, bool) or not isinstance(n, (int, np.integer)) or n <= 0:
        raise InvalidRequestError("grid_n should be a positive integer")


# ---------------------------------------------------------------------------
# Reparameterisation and solver
# ---------------------------------------------------------------------------

def _to_internal(params: np.ndarray, domains: tuple[ParamDomain, ...]) -> np.ndarray:
    theta = np.array(params, dtype=np.float64)
    with np.errstate(all="ignore"):
        for j, dom in enumerate(domains):
            if dom is ParamDomain.POSITIVE:
                theta[j] = np.log(theta[j])
            elif dom is ParamDomain.UNIT:
                theta[j] = logit(theta[j])
    return theta


def _to_external(theta: np.ndarray, domains: tuple[ParamDomain, ...]) -> np.ndarray:
    params = np.array(theta, dtype=np.float64)
    with np.errstate(all="ignore"):
        for j, dom in enumerate(domains):
            if dom is ParamDomain.POSITIVE:
                params[j] = np.exp(params[j])
            elif dom is ParamDomain.UNIT:
                params[j] = expit(params[j])
    return params


class ScipyLeastSquaresSolver:
    """Trust-region reflective least squares in unconstrained coordinates."""

    def __init__(self, method: str = "trf") -> None:
        self.method = method

    def minimize(
        self,
        model: Callable[[np.ndarray, np.ndarray], np.ndarray],
        area: np.ndarray,
        observed: np.ndarray,
        start: np.ndarray,
        domains: tuple[ParamDomain, ...],
        max_nfev: int,
    ) -> SolverResult:
        theta0 = _to_internal(start, domains)
        if not np.all(np.isfinite(theta0)):
            return SolverResult(params=np.asarray(start, dtype=np.float64),
                                message="start outside parameter domain")

        def residuals(theta: np.ndarray) -> np.ndarray:
            with np.errstate(all="ignore"):
                r = np.asarray(model(area, _to_external(theta, domains))) - observed
            return np.where(np.isfinite(r), r, _PENALTY)

        try:
            with warnings.catch_warnings():
                warnings.simplefilter("ignore")
                res = least_squares(residuals, theta0, method=self.method,
                                    max_nfev=max_nfev)
        except (ValueError, np.linalg.LinAlgError) as exc:
            logger.warning("least_squares raised for start %s", start, exc_info=True)
            return SolverResult(params=np.asarray(start, dtype=np.float64),
                                message=str(exc))

        params = _to_external(res.x, domains)
        with np.errstate(all="ignore"):
            fitted = np.asarray(model(area, params))
            rss = float(np.sum((observed - fitted) ** 2))
        converged = bool(res.success) and np.isfinite(rss) and np.all(np.isfinite(params))
        return SolverResult(
            params=params,
            objective=rss if converged else float("nan"),
            converged=bool(converged),
            message=str(res.message),
            n_eval=int(res.nfev),
        )


_DEFAULT_SOLVER: LeastSquaresSolver = ScipyLeastSquaresSolver()

# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------

def information_criteria(rss: float, n: int, n_params: int) -> tuple[float, float, float, float]:
    """Return ``(log_lik, aic, aicc, bic)`` for a least-squares fit.

    The residual variance counts as an extra parameter, so ``k = n_params + 1``.
    AICc is infinite when ``n - k - 1 <= 0``.
    """
    rss = max(float(rss), _RSS_FLOOR)
    k = n_params + 1
    log_lik = -0.5 * n * (np.log(2.0 * np.pi) + 1.0 - np.log(n) + np.log(rss))
    aic = 2.0 * k - 2.0 * log_lik
    denom = n - k - 1
    aicc = aic + 2.0 * k * (k + 1) / denom if denom > 0 else float("inf")
    bic = k * np.log(n) - 2.0 * log_lik
    return float(log_lik), float(aic), float(aicc), float(bic)


def numeric_jacobian(
    model: Callable[[np.ndarray, np.ndarray], np.ndarray],
    area: np.ndarray,
    params: np.ndarray,
) -> np.ndarray:
    """Central-difference Jacobian of *model* at *params*, shape ``(n, P)``."""
    params = np.asarray(params, dtype=np.float64)
    steps = _JAC_STEP * np.maximum(np.abs(params), 1.0)
    jac = np.empty((np.size(area), params.size))
    for j, h in enumerate(steps):
        up, down = params.copy(), params.copy()
        up[j] += h
        down[j] -= h
        with np.errstate(all="ignore"):
            jac[:, j] = (np.asarray(model(area, up)) - np.asarray(model(area, down))) / (2.0 * h)
    return jac


def _param_standard_errors(spec: ModelSpec, area: np.ndarray, params: np.ndarray,
                           rss: float) -> np.ndarray:
    n, p = area.size, spec.n_params
    nan = np.full(p, np.nan)
    if n <= p:
        return nan
    jac = numeric_jacobian(spec, area, params)
    if not np.all(np.isfinite(jac)):
        return nan
    jtj = jac.T @ jac
    if np.linalg.cond(jtj) * _RCOND > 1.0:
        return nan
    try:
        cov = np.linalg.inv(jtj) * (rss / (n - p))
    except np.linalg.LinAlgError:
        return nan
    var = np.diag(cov)
    return np.where(var >= 0, np.sqrt(np.abs(var)), np.nan)


def _r_squared(observed: np.ndarray, rss: float, n_params: int) -> tuple[float, float]:
    n = observed.size
    tss = float(np.sum((observed - observed.mean()) ** 2))
    if tss == 0:
        return float("nan"), float("nan")
    r2 = 1.0 - rss / tss
    r2a = 1.0 - (1.0 - r2) * (n - 1) / (n - n_params) if n > n_params else float("nan")
    return float(r2), float(r2a)


# ---------------------------------------------------------------------------
# Fitting
# ---------------------------------------------------------------------------

def _grid_points(spec: ModelSpec, dataset: Dataset, start: np.ndarray,
                 options: FitOptions) -> np.ndarray:
    """Latin Hypercube starting points over the model's sampling ranges."""
    bounds = registry.sampling_bounds(spec, dataset, start)
    n = options.grid_n
    sample = LatinHypercube(d=spec.n_params, seed=options.seed).random(n=n)
    points = np.empty_like(sample)
    for j, ((lo, hi), dom) in enumerate(zip(bounds, spec.domains)):
        if dom is ParamDomain.POSITIVE:
            lo_log, hi_log = np.log(lo), np.log(hi)
            points[:, j] = np.exp(lo_log + sample[:, j] * (hi_log - lo_log))
        else:
            points[:, j] = lo + sample[:, j] * (hi - lo)
    return points


def _closed_form(dataset: Dataset) -> SolverResult:
    design = np.column_stack([np.ones(dataset.n), dataset.area])
    coef, _, rank, _ = np.linalg.lstsq(design, dataset.richness, rcond=None)
    if rank < 2:
        return SolverResult(params=coef, message="singular design matrix")
    rss = float(np.sum((dataset.richness - design @ coef) ** 2))
    return SolverResult(params=coef, objective=rss, converged=True,
                        message="closed form", n_eval=1)


def _user_start(spec: ModelSpec, start: tuple[float, ...]) -> np.ndarray:
    values = np.asarray(start, dtype=np.float64)
    if values.shape != (spec.n_params,):
        raise InvalidRequestError(
            f"{spec.name} needs {spec.n_params} starting values, got {values.size}"
        )
    if not np.all(np.isfinite(_to_internal(values, spec.domains))):
        raise InvalidRequestError(
            f"starting values {tuple(values)} lie outside the domain of {spec.name}"
        )
    return values


def fit(
    spec: ModelSpec,
    dataset: Dataset,
    options: FitOptions | None = None,
    solver: LeastSquaresSolver | None = None,
    *,
    normality: NormalityTest | None = None,
    correlation: CorrelationTest | None = None,
) -> FitResult:
    """Fit one model to *dataset*.

    Parameters
    ----------
    spec:
        Catalog entry to fit.
    dataset:
        Observations (at least three points, five for the Lilliefors test).
    options:
        Fitting options; defaults to :class:`FitOptions`.
    solver:
        Least-squares solver; defaults to :class:`ScipyLeastSquaresSolver`.
    normality, correlation:
        Replacement residual tests.

    Returns
    -------
    FitResult
        Converged or failed fit.  Failed fits carry no diagnostics.

    Raises
    ------
    InvalidRequestError
        If the dataset is too small or the options are malformed.
    """
    options = options or FitOptions.from_config()
    check_points(dataset, options.norm_test)
    check_grid(options)
    solver = solver or _DEFAULT_SOLVER
    area, observed = dataset.area, dataset.richness

    if spec.closed_form:
        start = np.full(spec.n_params, np.nan)
        best = _closed_form(dataset)
    else:
        start = (_user_start(spec, options.start) if options.start is not None
                 else registry.initial_values(spec, dataset))
        attempts = [start]
        if options.grid_start and spec.grid_start:
            attempts.extend(_grid_points(spec, dataset, start, options))
        best = None
        first: SolverResult | None = None
        for x0 in attempts:
            res = solver.minimize(spec, area, observed, np.asarray(x0),
                                  spec.domains, options.max_nfev)
            logger.debug("%s: start=%s converged=%s rss=%s nfev=%d",
                         spec.name, x0, res.converged, res.objective, res.n_eval)
            first = first or res
            if res.converged and (best is None or res.objective < best.objective):
                best = res
        best = best or first

    if best is None or not best.converged:
        message = best.message if best is not None else "no attempt"
        logger.info("%s: fit did not converge (%s)", spec.name, message)
        return FitResult(spec=spec, dataset=dataset, start=start, message=message,
                         norm_test=options.norm_test, homo_test=options.homo_test)

    params = np.asarray(best.params, dtype=np.float64)
    fitted = spec(area, params)
    residuals = observed - fitted
    rss = float(best.objective)
    log_lik, aic, aicc, bic = information_criteria(rss, dataset.n, spec.n_params)
    r2, r2a = _r_squared(observed, rss, spec.n_params)
    param_se = _param_standard_errors(spec, area, params, rss)
    if not np.all(np.isfinite(param_se)):
        logger.debug("%s: parameter standard errors unavailable", spec.name)

    if dataset.is_constant:
        # Residuals of constant richness carry no distributional information.
        norm_result = undefined_test(options.norm_test)
        homo_result = undefined_test(options.homo_test)
    else:
        norm_result = normality_test(residuals, options.norm_test, normality)
        homo_result = homogeneity_test(residuals, fitted, area, options.homo_test,
                                       correlation)

    return FitResult(
        spec=spec,
        dataset=dataset,
        params=params,
        objective=rss,
        converged=True,
        fitted=fitted,
        residuals=residuals,
        log_lik=log_lik,
        aic=aic,
        aicc=aicc,
        bic=bic,
        r2=r2,
        r2a=r2a,
        normality=norm_result,
        homogeneity=homo_result,
        norm_test=options.norm_test,
        homo_test=options.homo_test,
        param_se=param_se,
        start=start,
        message=best.message,
    )


def fit_one(
    model_name: str,
    dataset: Dataset,
    options: FitOptions | None = None,
) -> FitResult:
    """Fit the catalog model *model_name* to *dataset*.

    Emits :class:`DegenerateDataWarning` when every richness value is
    identical, then fits anyway.

    Raises
    ------
    UnknownModelError
        If *model_name* is not in the catalog.
    InvalidRequestError
        If the dataset is too small or the options are malformed.
    """
    spec = registry.get(model_name)
    if dataset.is_constant:
        warnings.warn(DEGENERATE_MESSAGE, DegenerateDataWarning, stacklevel=2)
    return fit(spec, dataset, options)
