"""pysars -- multi-model species-area relationship fitting.

Fits the twenty nonlinear SAR models to (area, richness) data, screens the
fits, weights them by information criteria and builds a multi-model curve
with optional bootstrap confidence intervals.

Quick usage::

    import pysars

    data = pysars.Dataset.from_arrays(area, richness)
    ensemble = pysars.average(dataset=data)
    pysars.predict(ensemble, [10.0, 100.0])
"""

from __future__ import annotations

__version__ = "0.1.0"

from pysars.domain import *  # noqa: F401,F403
from pysars.domain import __all__ as _domain_all
from pysars.sar_engine import (
    average,
    confidence_intervals,
    fit,
    fit_many,
    fit_one,
    get,
    lin_pow,
    list_models,
    model_table,
    predict,
)

__all__ = [
    "__version__",
    "average",
    "confidence_intervals",
    "fit",
    "fit_many",
    "fit_one",
    "get",
    "lin_pow",
    "list_models",
    "model_table",
    "predict",
    *_domain_all,
]
