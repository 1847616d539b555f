"""Exception and warning hierarchy for pysars.

Structural problems with a request are raised before any fitting starts.
Per-model convergence failures are *not* exceptions -- they are carried as
non-converged :class:`~pysars.domain.models.FitResult` values so that batch
operations keep going.  Exhaustion of the candidate set during screening
aborts averaging.
"""

from __future__ import annotations


class SarsError(Exception):
    """Base class for all pysars errors."""


class InvalidRequestError(SarsError, ValueError):
    """Malformed request: too few points, bad options, too few models."""


class UnknownModelError(InvalidRequestError):
    """Model name is not part of the catalog."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Unknown model: {name!r}")
        self.name = name


class NoConvergenceError(SarsError):
    """No model in the collection could be fitted."""


class InsufficientModelsError(SarsError):
    """Fewer than two models survived fitting and screening."""


class ModelAlignmentError(SarsError):
    """Stored model names and information-criterion weights disagree."""


class BootstrapError(SarsError):
    """Every bootstrap replicate was discarded for at least one area."""


# ---------------------------------------------------------------------------
# Warnings
# ---------------------------------------------------------------------------


class SarsWarning(UserWarning):
    """Base class for pysars warnings."""


class DegenerateDataWarning(SarsWarning):
    """All richness values in the dataset are identical."""


class ConsistencyWarning(SarsWarning):
    """Requested test selectors differ from those stored in a fit collection."""
