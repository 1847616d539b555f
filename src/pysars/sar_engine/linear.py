"""Log-log linear regression of the power model.

``log(S) = log(c) + z * log(A)`` fitted by ordinary least squares with
:func:`scipy.stats.linregress`.  The slope ``z`` is the same for every log
base; the intercept scales with ``1 / ln(base)``.
"""
from __future__ import annotations

import logging
import warnings
from dataclasses import replace
from typing import Callable

import numpy as np
from scipy.stats import linregress

from pysars.domain.exceptions import DegenerateDataWarning, InvalidRequestError
from pysars.domain.models import (
    LILLIEFORS_MIN_POINTS,
    NORM_TESTS,
    Dataset,
    DiagnosticTest,
    FitOptions,
    FitResult,
    LinPowResult,
)
from pysars.sar_engine import registry
from pysars.sar_engine.diagnostics import normality_test
from pysars.sar_engine.fitting import DEGENERATE_MESSAGE, check_points, fit

logger = logging.getLogger(__name__)

_TRANSFORMS: dict[str, Callable[[np.ndarray], np.ndarray]] = {
    "log": np.log,
    "log10": np.log10,
    "log2": np.log2,
}

ZERO_RICHNESS_MESSAGE = (
    "All richness values are zero: parameter estimates of non-linear models "
    "should be interpreted with caution"
)


def _resolve_transform(
    log_transform: str | Callable[[np.ndarray], np.ndarray],
) -> tuple[str, Callable[[np.ndarray], np.ndarray]]:
    if callable(log_transform):
        return getattr(log_transform, "__name__", "custom"), log_transform
    try:
        return log_transform, _TRANSFORMS[log_transform]
    except KeyError:
        raise InvalidRequestError(
            f"log_transform must be one of {tuple(_TRANSFORMS)} or a callable, "
            f"got {log_transform!r}"
        ) from None


def _compare_power(dataset: Dataset, norm_test: str) -> FitResult:
    """Nonlinear power fit; Lilliefors is undefined below its minimum size."""
    short = norm_test == "lillie" and dataset.n < LILLIEFORS_MIN_POINTS
    result = fit(registry.get("power"), dataset,
                 FitOptions(norm_test="none" if short else norm_test, homo_test="none"))
    if short:
        result = replace(result, norm_test=norm_test,
                         normality=DiagnosticTest(kind=norm_test) if result.converged else None)
    return result


def lin_pow(
    dataset: Dataset,
    con: float | None = 1.0,
    log_transform: str | Callable[[np.ndarray], np.ndarray] = "log",
    compare: bool = False,
    norm_test: str = "lillie",
) -> LinPowResult:
    """Fit the log-log power model.

    Parameters
    ----------
    dataset:
        Observations.
    con:
        Constant added to every richness value when at least one richness
        value is zero.  Ignored otherwise.
    log_transform:
        ``"log"``, ``"log10"``, ``"log2"`` or a callable applied to both
        area and richness.
    compare:
        Also fit the nonlinear power model for comparison.
    norm_test:
        Normality test applied to the log-scale residuals.  Lilliefors on
        fewer than five points gives an undefined result.

    Returns
    -------
    LinPowResult
        Regression coefficients, their standard errors, R² and the
        log-scale fitted values and residuals.

    Raises
    ------
    InvalidRequestError
        For too few points, an unknown transform or test, or zero richness
        without a positive ``con``.
    """
    if norm_test not in NORM_TESTS:
        raise InvalidRequestError(
            f"norm_test must be one of {NORM_TESTS}, got {norm_test!r}"
        )
    if dataset.is_constant:
        message = (ZERO_RICHNESS_MESSAGE if compare and dataset.all_zero
                   else DEGENERATE_MESSAGE)
        warnings.warn(message, DegenerateDataWarning, stacklevel=2)
    check_points(dataset, "none")
    name, transform = _resolve_transform(log_transform)

    richness = dataset.richness
    used_con: float | None = None
    if np.any(richness == 0):
        if con is None or con <= 0:
            raise InvalidRequestError(
                "richness contains zeros: a positive con is required"
            )
        used_con = float(con)
        richness = richness + used_con
        logger.debug("lin_pow: added con=%s to richness", used_con)

    with np.errstate(all="ignore"):
        x = np.asarray(transform(dataset.area), dtype=np.float64)
        y = np.asarray(transform(richness), dtype=np.float64)
    if not (np.all(np.isfinite(x)) and np.all(np.isfinite(y))):
        raise InvalidRequestError(f"the {name} transform produced non-finite values")

    try:
        reg = linregress(x, y)
    except ValueError as exc:
        raise InvalidRequestError(str(exc)) from exc

    fitted = reg.intercept + reg.slope * x
    residuals = y - fitted
    power_fit = None
    if compare:
        power_fit = _compare_power(dataset, norm_test)

    return LinPowResult(
        intercept=float(reg.intercept),
        slope=float(reg.slope),
        intercept_se=float(reg.intercept_stderr),
        slope_se=float(reg.stderr),
        r2=float(reg.rvalue ** 2),
        log_transform=name,
        con=used_con,
        dataset=dataset,
        fitted=fitted,
        residuals=residuals,
        normality=normality_test(residuals, norm_test),
        power_fit=power_fit,
    )
