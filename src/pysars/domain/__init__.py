"""Domain layer -- models, protocols, events and exceptions.

Re-exports all public domain types for convenient access::

    from pysars.domain import Dataset, FitResult, EnsembleResult
"""

from __future__ import annotations

from pysars.domain.events import (
    DEGENERATE_DATA,
    ENSEMBLE_BUILT,
    MODEL_EXCLUDED,
    MODEL_FAILED,
    MODEL_FITTED,
    PARAM_STATS_UNAVAILABLE,
    REPLICATE_DISCARDED,
    RESIDUALS_UNUSABLE,
    SELECTOR_MISMATCH,
    Event,
    EventLog,
)
from pysars.domain.exceptions import (
    BootstrapError,
    ConsistencyWarning,
    DegenerateDataWarning,
    InsufficientModelsError,
    InvalidRequestError,
    ModelAlignmentError,
    NoConvergenceError,
    SarsError,
    SarsWarning,
    UnknownModelError,
)
from pysars.domain.models import (
    AppConfig,
    AverageOptions,
    ConfidenceInterval,
    Dataset,
    DiagnosticTest,
    EnsembleResult,
    ExclusionReason,
    ExclusionRecord,
    FitCollection,
    FitOptions,
    FitResult,
    LinPowResult,
    ModelSpec,
    ParamDomain,
    Prediction,
    SolverResult,
)
from pysars.domain.protocols import (
    CorrelationTest,
    LeastSquaresSolver,
    NormalityTest,
)

__all__ = [
    # Models
    "AppConfig",
    "AverageOptions",
    "ConfidenceInterval",
    "Dataset",
    "DiagnosticTest",
    "EnsembleResult",
    "ExclusionReason",
    "ExclusionRecord",
    "FitCollection",
    "FitOptions",
    "FitResult",
    "LinPowResult",
    "ModelSpec",
    "ParamDomain",
    "Prediction",
    "SolverResult",
    # Event constants
    "DEGENERATE_DATA",
    "ENSEMBLE_BUILT",
    "MODEL_EXCLUDED",
    "MODEL_FAILED",
    "MODEL_FITTED",
    "PARAM_STATS_UNAVAILABLE",
    "REPLICATE_DISCARDED",
    "RESIDUALS_UNUSABLE",
    "SELECTOR_MISMATCH",
    # Events
    "Event",
    "EventLog",
    # Exceptions and warnings
    "BootstrapError",
    "ConsistencyWarning",
    "DegenerateDataWarning",
    "InsufficientModelsError",
    "InvalidRequestError",
    "ModelAlignmentError",
    "NoConvergenceError",
    "SarsError",
    "SarsWarning",
    "UnknownModelError",
    # Protocols
    "CorrelationTest",
    "LeastSquaresSolver",
    "NormalityTest",
]
