"""Residual diagnostics: normality and homogeneity of variance.

The default test implementations wrap :mod:`scipy.stats` and
:func:`statsmodels.stats.diagnostic.lilliefors`.  Degenerate input (constant
residuals, fewer points than a test needs) produces a NaN p-value rather
than an exception so that screening can record it as *undefined*.
"""
from __future__ import annotations

import logging
import warnings

import numpy as np
from scipy import stats
from statsmodels.stats.diagnostic import lilliefors

from pysars.domain.models import LILLIEFORS_MIN_POINTS, DiagnosticTest
from pysars.domain.protocols import CorrelationTest, NormalityTest

logger = logging.getLogger(__name__)

_MIN_POINTS = {"shapiro": 3, "kolmo": 2, "lillie": LILLIEFORS_MIN_POINTS}


def _undefined(kind: str) -> DiagnosticTest:
    return DiagnosticTest(kind=kind)


def undefined_test(kind: str) -> DiagnosticTest | None:
    """Placeholder result for a test that cannot be computed (``None`` for ``"none"``)."""
    return None if kind == "none" else _undefined(kind)


class ResidualNormalityTest:
    """Shapiro-Wilk, Kolmogorov-Smirnov or Lilliefors test of residuals.

    The Kolmogorov-Smirnov variant compares against a normal distribution
    with the sample mean and standard deviation.
    """

    def __call__(self, residuals: np.ndarray, kind: str) -> DiagnosticTest:
        if kind == "none":
            return _undefined(kind)
        x = np.asarray(residuals, dtype=np.float64)
        if (
            x.size < _MIN_POINTS[kind]
            or not np.all(np.isfinite(x))
            or np.ptp(x) == 0
        ):
            return _undefined(kind)

        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            if kind == "shapiro":
                stat, p = stats.shapiro(x)
            elif kind == "kolmo":
                stat, p = stats.kstest(x, "norm", args=(x.mean(), x.std(ddof=1)))
            else:
                stat, p = lilliefors(x, dist="norm", pvalmethod="table")
        return DiagnosticTest(kind=kind, statistic=float(stat), p_value=float(p))


class PearsonCorrelationTest:
    """Pearson product-moment correlation test."""

    def __call__(self, x: np.ndarray, y: np.ndarray, kind: str) -> DiagnosticTest:
        x = np.asarray(x, dtype=np.float64)
        y = np.asarray(y, dtype=np.float64)
        if (
            x.size < 3
            or not (np.all(np.isfinite(x)) and np.all(np.isfinite(y)))
            or np.ptp(x) == 0
            or np.ptp(y) == 0
        ):
            return _undefined(kind)
        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            r, p = stats.pearsonr(x, y)
        return DiagnosticTest(kind=kind, statistic=float(r), p_value=float(p))


_NORMALITY: NormalityTest = ResidualNormalityTest()
_CORRELATION: CorrelationTest = PearsonCorrelationTest()


def normality_test(
    residuals: np.ndarray,
    kind: str,
    test: NormalityTest | None = None,
) -> DiagnosticTest | None:
    """Run the normality test selected by *kind* (``None`` for ``"none"``)."""
    if kind == "none":
        return None
    return (test or _NORMALITY)(residuals, kind)


def homogeneity_test(
    residuals: np.ndarray,
    fitted: np.ndarray,
    area: np.ndarray,
    kind: str,
    test: CorrelationTest | None = None,
) -> DiagnosticTest | None:
    """Correlate residuals with fitted values or with area.

    Parameters
    ----------
    residuals, fitted, area:
        Arrays of equal length.
    kind:
        ``"cor.fitted"``, ``"cor.area"`` or ``"none"``.
    test:
        Optional replacement correlation test.

    Returns
    -------
    DiagnosticTest | None
        ``None`` when *kind* is ``"none"``.
    """
    if kind == "none":
        return None
    other = fitted if kind == "cor.fitted" else area
    return (test or _CORRELATION)(residuals, other, kind)
