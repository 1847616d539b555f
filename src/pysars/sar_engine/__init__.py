"""SAR engine -- model catalog, fitting, averaging and uncertainty.

This package provides the computational core of pysars:

- **Registry**: the twenty-model catalog with starting-value heuristics.
- **Fitting**: constrained nonlinear least squares, information criteria
  and residual diagnostics for one model.
- **Log-linear power model**: OLS on log-transformed area and richness.
- **Collection**: several models fitted to one dataset.
- **Averaging**: model screening and information-criterion weights.
- **Uncertainty**: residual-bootstrap confidence intervals.
- **Prediction**: richness at new areas.
"""

from __future__ import annotations

from pysars.sar_engine import registry
from pysars.sar_engine.registry import get, list_models, model_table
from pysars.sar_engine.fitting import ScipyLeastSquaresSolver, fit, fit_one
from pysars.sar_engine.diagnostics import (
    PearsonCorrelationTest,
    ResidualNormalityTest,
)
from pysars.sar_engine.linear import lin_pow
from pysars.sar_engine.collection import fit_many
from pysars.sar_engine.averaging import average
from pysars.sar_engine.uncertainty import confidence_intervals
from pysars.sar_engine.prediction import predict

__all__ = [
    "registry",
    # Registry
    "get",
    "list_models",
    "model_table",
    # Fitting
    "ScipyLeastSquaresSolver",
    "PearsonCorrelationTest",
    "ResidualNormalityTest",
    "fit",
    "fit_one",
    "lin_pow",
    "fit_many",
    # Averaging and uncertainty
    "average",
    "confidence_intervals",
    "predict",
]
