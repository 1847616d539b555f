"""Protocol interfaces for the numerical collaborators of pysars.

The fitting engine depends on a least-squares solver and on statistical test
primitives only through these contracts.  Using :class:`typing.Protocol`
enables structural subtyping -- implementations do not need to explicitly
inherit from these classes.  Default scipy/statsmodels implementations live in
:mod:`pysars.sar_engine.fitting` and :mod:`pysars.sar_engine.diagnostics`.
"""

from __future__ import annotations

from typing import Callable, Protocol, runtime_checkable

import numpy as np

from pysars.domain.models import DiagnosticTest, ParamDomain, SolverResult


# ---------------------------------------------------------------------------
# Least squares
# ---------------------------------------------------------------------------

@runtime_checkable
class LeastSquaresSolver(Protocol):
    """Minimise the residual sum of squares of a model."""

    def minimize(
        self,
        model: Callable[[np.ndarray, np.ndarray], np.ndarray],
        area: np.ndarray,
        observed: np.ndarray,
        start: np.ndarray,
        domains: tuple[ParamDomain, ...],
        max_nfev: int,
    ) -> SolverResult:
        """Fit *model* to *observed* starting from *start*.

        Parameters
        ----------
        model:
            Closed-form function ``f(area, params) -> richness``.
        area, observed:
            The observations.
        start:
            Starting parameter vector, inside the declared domains.
        domains:
            One :class:`ParamDomain` per parameter.
        max_nfev:
            Upper bound on function evaluations.

        Returns
        -------
        SolverResult
            Fitted parameters, RSS and convergence status.  Implementations
            report failure through ``converged=False`` rather than raising.
        """
        ...


# ---------------------------------------------------------------------------
# Statistical tests
# ---------------------------------------------------------------------------

@runtime_checkable
class NormalityTest(Protocol):
    """Test residuals for normality."""

    def __call__(self, residuals: np.ndarray, kind: str) -> DiagnosticTest:
        """Return the test statistic and p-value (NaN when undefined)."""
        ...


@runtime_checkable
class CorrelationTest(Protocol):
    """Test two samples for linear correlation."""

    def __call__(self, x: np.ndarray, y: np.ndarray, kind: str) -> DiagnosticTest:
        """Return the correlation and p-value (NaN when undefined)."""
        ...
