"""Domain models for species-area relationship fitting.

All models are frozen dataclasses to enforce immutability. Mutable default
values (e.g. numpy arrays, dicts, lists) use ``field(default_factory=...)``.
"""

from __future__ import annotations

import enum
import math
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Callable, Literal

import numpy as np
import yaml

from pysars.domain.events import Event
from pysars.domain.exceptions import InvalidRequestError


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _empty_array() -> np.ndarray:
    """Return an empty float64 array."""
    return np.empty(0, dtype=np.float64)


def _empty_dict() -> dict[str, Any]:
    """Return an empty dictionary."""
    return {}


def _frozen(values: Any) -> np.ndarray:
    """Return a read-only float64 copy of *values*."""
    arr = np.array(values, dtype=np.float64)
    arr.setflags(write=False)
    return arr


NormTest = Literal["none", "shapiro", "kolmo", "lillie"]
HomoTest = Literal["none", "cor.fitted", "cor.area"]
Criterion = Literal["Info", "AIC", "AICc", "BIC", "Bayes"]
Shape = Literal["convex", "sigmoid", "linear"]

NORM_TESTS: tuple[str, ...] = ("none", "shapiro", "kolmo", "lillie")
HOMO_TESTS: tuple[str, ...] = ("none", "cor.fitted", "cor.area")
CRITERIA: tuple[str, ...] = ("Info", "AIC", "AICc", "BIC", "Bayes")

# Minimum sample size for the Lilliefors normality test.
LILLIEFORS_MIN_POINTS = 5


# ---------------------------------------------------------------------------
# Dataset
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Dataset:
    """Paired (area, richness) observations sorted by increasing area.

    Use :meth:`from_arrays` to build a validated instance.
    """

    area: np.ndarray = field(default_factory=_empty_array)
    richness: np.ndarray = field(default_factory=_empty_array)

    @classmethod
    def from_arrays(cls, area: Any, richness: Any) -> Dataset:
        """Validate and sort the observations.

        Raises
        ------
        InvalidRequestError
            If the columns differ in length, contain non-finite values,
            non-positive areas or negative richness.
        """
        a = np.asarray(area, dtype=np.float64).ravel()
        s = np.asarray(richness, dtype=np.float64).ravel()
        if a.shape != s.shape:
            raise InvalidRequestError(
                f"area and richness must have the same length: {a.size} vs {s.size}"
            )
        if not (np.all(np.isfinite(a)) and np.all(np.isfinite(s))):
            raise InvalidRequestError("area and richness must be finite")
        if np.any(a <= 0):
            raise InvalidRequestError("area values must be strictly positive")
        if np.any(s < 0):
            raise InvalidRequestError("richness values must be non-negative")
        order = np.argsort(a, kind="stable")
        return cls(area=_frozen(a[order]), richness=_frozen(s[order]))

    @classmethod
    def from_pairs(cls, pairs: Any) -> Dataset:
        """Build from an (n, 2) sequence of ``(area, richness)`` rows."""
        arr = np.asarray(pairs, dtype=np.float64)
        if arr.ndim != 2 or arr.shape[1] != 2:
            raise InvalidRequestError("pairs must be a two-column table")
        return cls.from_arrays(arr[:, 0], arr[:, 1])

    def with_richness(self, richness: Any) -> Dataset:
        """Return a copy with replaced richness values (no sign check)."""
        s = np.asarray(richness, dtype=np.float64)
        if s.shape != self.area.shape:
            raise InvalidRequestError("replacement richness has the wrong length")
        return Dataset(area=self.area, richness=_frozen(s))

    @property
    def n(self) -> int:
        return int(self.area.size)

    @property
    def is_constant(self) -> bool:
        """True when every richness value is identical."""
        return self.n > 0 and float(np.ptp(self.richness)) == 0.0

    @property
    def all_zero(self) -> bool:
        return self.n > 0 and bool(np.all(self.richness == 0))


# ---------------------------------------------------------------------------
# Model catalog entries
# ---------------------------------------------------------------------------

class ParamDomain(str, enum.Enum):
    """Admissible range of a model parameter."""

    POSITIVE = "positive"
    REAL = "real"
    UNIT = "unit"


@dataclass(frozen=True)
class ModelSpec:
    """Immutable definition of one SAR model."""

    name: str
    label: str
    formula: str
    param_names: tuple[str, ...]
    shape: Shape
    mod_fun: Callable[[np.ndarray, np.ndarray], np.ndarray]
    domains: tuple[ParamDomain, ...]
    init: Callable[[Dataset], np.ndarray]
    custom_start: Callable[[Dataset], np.ndarray] | None = None
    grid_start: bool = True
    grid_bounds: Callable[[Dataset, np.ndarray], dict[int, tuple[float, float]]] | None = None
    asymptote: Callable[[np.ndarray], float] | None = None
    closed_form: bool = False

    @property
    def n_params(self) -> int:
        return len(self.param_names)

    def __call__(self, area: Any, params: Any) -> np.ndarray:
        """Evaluate the model at *area* with parameter vector *params*."""
        a = np.asarray(area, dtype=np.float64)
        with np.errstate(all="ignore"):
            return np.asarray(self.mod_fun(a, np.asarray(params, dtype=np.float64)),
                              dtype=np.float64)


# ---------------------------------------------------------------------------
# Options
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FitOptions:
    """Options controlling a single fit or a fit collection."""

    norm_test: NormTest = "lillie"
    homo_test: HomoTest = "cor.fitted"
    grid_start: bool = False
    grid_n: int | None = None
    start: tuple[float, ...] | None = None
    seed: int | None = 42
    max_nfev: int = 2000
    n_workers: int = 1

    def __post_init__(self) -> None:
        if self.norm_test not in NORM_TESTS:
            raise InvalidRequestError(
                f"norm_test must be one of {NORM_TESTS}, got {self.norm_test!r}"
            )
        if self.homo_test not in HOMO_TESTS:
            raise InvalidRequestError(
                f"homo_test must be one of {HOMO_TESTS}, got {self.homo_test!r}"
            )
        if not isinstance(self.grid_start, bool):
            raise InvalidRequestError("grid_start should be a boolean")

    @classmethod
    def from_config(cls, config: AppConfig | None = None, **overrides: Any):
        """Build options from configuration, then apply *overrides*."""
        if config is None:
            from pysars.config.settings import get_typed_config

            config = get_typed_config()
        names = {f.name for f in fields(cls)}
        values: dict[str, Any] = {}
        for section in ("fitting", "averaging", "bootstrap", "compute"):
            for key, value in config.section(section).items():
                if key in names:
                    values[key] = value
        values.update(overrides)
        return cls(**values)

    def fit_options(self) -> FitOptions:
        """Return only the fitting-related subset of these options."""
        return FitOptions(**{f.name: getattr(self, f.name) for f in fields(FitOptions)})

    def replace(self, **changes: Any):
        return replace(self, **changes)


@dataclass(frozen=True)
class AverageOptions(FitOptions):
    """Options for model screening, weighting and confidence intervals."""

    crit: Criterion = "Info"
    neg_check: bool = False
    alpha_normtest: float = 0.05
    alpha_homotest: float = 0.05
    conf_int: bool = False
    ci_n: int = 100
    ci_level: float = 0.95

    def __post_init__(self) -> None:
        super().__post_init__()
        if self.crit not in CRITERIA:
            raise InvalidRequestError(
                f"crit must be one of {CRITERIA}, got {self.crit!r}"
            )
        if not 0.0 < self.ci_level < 1.0:
            raise InvalidRequestError("ci_level must lie in (0, 1)")


# ---------------------------------------------------------------------------
# Fit results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SolverResult:
    """Outcome of one least-squares minimisation."""

    params: np.ndarray = field(default_factory=_empty_array)
    objective: float = float("nan")
    converged: bool = False
    message: str = ""
    n_eval: int = 0


@dataclass(frozen=True)
class DiagnosticTest:
    """Outcome of a residual diagnostic test."""

    kind: str
    statistic: float = float("nan")
    p_value: float = float("nan")

    @property
    def is_defined(self) -> bool:
        return math.isfinite(self.p_value)


@dataclass(frozen=True)
class FitResult:
    """Result of fitting one SAR model to one dataset.

    A failed fit has ``converged=False`` and ``objective=NaN``; its
    diagnostics are absent and its information criteria are NaN.
    """

    spec: ModelSpec
    dataset: Dataset
    params: np.ndarray = field(default_factory=_empty_array)
    objective: float = float("nan")
    converged: bool = False
    fitted: np.ndarray = field(default_factory=_empty_array)
    residuals: np.ndarray = field(default_factory=_empty_array)
    log_lik: float = float("nan")
    aic: float = float("nan")
    aicc: float = float("nan")
    bic: float = float("nan")
    r2: float = float("nan")
    r2a: float = float("nan")
    normality: DiagnosticTest | None = None
    homogeneity: DiagnosticTest | None = None
    norm_test: str = "none"
    homo_test: str = "none"
    param_se: np.ndarray = field(default_factory=_empty_array)
    start: np.ndarray = field(default_factory=_empty_array)
    message: str = ""

    @property
    def model_name(self) -> str:
        return self.spec.name

    @property
    def param_dict(self) -> dict[str, float]:
        return {n: float(v) for n, v in zip(self.spec.param_names, self.params)}

    @property
    def asymptote(self) -> float | None:
        """Upper asymptote of the fitted curve, for asymptotic models."""
        if self.spec.asymptote is None or not self.converged:
            return None
        return float(self.spec.asymptote(self.params))

    def ic(self, name: str) -> float:
        """Return the information criterion ``"AIC"``, ``"AICc"`` or ``"BIC"``."""
        return {"AIC": self.aic, "AICc": self.aicc, "BIC": self.bic}[name]


@dataclass(frozen=True, eq=False)
class FitCollection(Mapping[str, FitResult]):
    """Ordered, read-only mapping of model name to :class:`FitResult`.

    Screening never mutates a collection; it derives smaller ones with
    :meth:`without`.
    """

    fits: dict[str, FitResult] = field(default_factory=_empty_dict)
    dataset: Dataset = field(default_factory=Dataset)
    norm_test: str = "none"
    homo_test: str = "none"
    events: tuple[Event, ...] = ()

    def __getitem__(self, name: str) -> FitResult:
        return self.fits[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self.fits)

    def __len__(self) -> int:
        return len(self.fits)

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(self.fits)

    @property
    def failed_names(self) -> tuple[str, ...]:
        return tuple(n for n, f in self.fits.items() if not f.converged)

    def without(self, names: Any) -> FitCollection:
        """Return a collection with *names* removed."""
        drop = set(names)
        return replace(self, fits={n: f for n, f in self.fits.items() if n not in drop})


class ExclusionReason(str, enum.Enum):
    """First screening check a model failed."""

    NO_CONVERGENCE = "no_convergence"
    NORMALITY_UNDEFINED = "normality_undefined"
    NORMALITY_FAILED = "normality_failed"
    HOMOGENEITY_UNDEFINED = "homogeneity_undefined"
    HOMOGENEITY_FAILED = "homogeneity_failed"
    NEGATIVE_PREDICTION = "negative_prediction"
    UNDEFINED_IC = "undefined_ic"


@dataclass(frozen=True)
class ExclusionRecord:
    """A model removed from the ensemble and why."""

    model_name: str
    reason: ExclusionReason


@dataclass(frozen=True)
class ConfidenceInterval:
    """Bootstrap bounds around the multi-model curve."""

    area: np.ndarray = field(default_factory=_empty_array)
    lower: np.ndarray = field(default_factory=_empty_array)
    upper: np.ndarray = field(default_factory=_empty_array)
    level: float = 0.95
    n_replicates: int = 0
    n_retained: np.ndarray = field(default_factory=lambda: np.empty(0, dtype=np.int64))
    replicates: np.ndarray = field(default_factory=lambda: np.empty((0, 0)))
    events: tuple[Event, ...] = ()


@dataclass(frozen=True)
class EnsembleResult:
    """Information-criterion weighted multi-model SAR curve."""

    mmi: np.ndarray
    fits: FitCollection
    crit: str
    ic: str
    norm_test: str
    homo_test: str
    alpha_norm_test: float | None
    alpha_homo_test: float | None
    mod_names: tuple[str, ...]
    ics: np.ndarray
    delta_ics: np.ndarray
    weights: np.ndarray
    n_points: int
    n_mods: int
    excluded: tuple[ExclusionRecord, ...] = ()
    events: tuple[Event, ...] = ()
    confidence_interval: ConfidenceInterval | None = None

    @property
    def dataset(self) -> Dataset:
        return self.fits.dataset

    @property
    def no_fit(self) -> tuple[str, ...]:
        return tuple(r.model_name for r in self.excluded)

    def weight_of(self, name: str) -> float:
        return float(self.weights[self.mod_names.index(name)])


@dataclass(frozen=True)
class Prediction:
    """Long-format prediction table: one row per (model, area)."""

    model: tuple[str, ...] = ()
    area: np.ndarray = field(default_factory=_empty_array)
    value: np.ndarray = field(default_factory=_empty_array)

    def rows(self) -> list[tuple[str, float, float]]:
        return [(m, float(a), float(v)) for m, a, v in zip(self.model, self.area, self.value)]

    def for_model(self, name: str) -> np.ndarray:
        mask = np.array([m == name for m in self.model], dtype=bool)
        return self.value[mask]


@dataclass(frozen=True)
class LinPowResult:
    """Ordinary least-squares fit of the log-log power model."""

    intercept: float
    slope: float
    intercept_se: float
    slope_se: float
    r2: float
    log_transform: str
    con: float | None
    dataset: Dataset
    fitted: np.ndarray = field(default_factory=_empty_array)
    residuals: np.ndarray = field(default_factory=_empty_array)
    normality: DiagnosticTest | None = None
    power_fit: FitResult | None = None


# ---------------------------------------------------------------------------
# Configuration model
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class AppConfig:
    """Configuration loaded from YAML with optional overlay and env overrides.

    Configuration is resolved in order:
      1. the packaged ``config/default.yaml``
      2. an overlay file (e.g. named by ``PYSARS_CONFIG``)
      3. environment variables prefixed with ``PYSARS_``
    """

    data: dict[str, Any] = field(default_factory=_empty_dict)

    # -- factory -----------------------------------------------------------

    @staticmethod
    def load(
        default_path: str | Path,
        overlay_path: str | Path | None = None,
        env_prefix: str = "PYSARS_",
    ) -> AppConfig:
        """Load configuration from YAML files and environment variables.

        Parameters
        ----------
        default_path:
            Path to the base configuration file.
        overlay_path:
            Optional path to a user overlay.
        env_prefix:
            Prefix for environment variable overrides.  A variable named
            ``PYSARS_FITTING__NORM_TEST`` maps to
            ``config["fitting"]["norm_test"]``.

        Returns
        -------
        AppConfig
            Frozen configuration object exposing the merged dictionary via
            ``data`` and typed helpers.
        """
        import os

        merged: dict[str, Any] = {}

        # 1. Load default
        default = Path(default_path)
        if default.exists():
            with open(default, "r", encoding="utf-8") as fh:
                raw = yaml.safe_load(fh) or {}
            merged = _deep_merge(merged, raw)

        # 2. Load overlay
        if overlay_path is not None:
            overlay = Path(overlay_path)
            if overlay.exists():
                with open(overlay, "r", encoding="utf-8") as fh:
                    raw = yaml.safe_load(fh) or {}
                merged = _deep_merge(merged, raw)

        # 3. Apply environment variable overrides
        for key, value in os.environ.items():
            if key.startswith(env_prefix) and "__" in key:
                parts = key[len(env_prefix):].lower().split("__")
                _set_nested(merged, parts, _coerce(value))

        return AppConfig(data=merged)

    # -- typed accessors ---------------------------------------------------

    def get(self, dotted_key: str, default: Any = None) -> Any:
        """Retrieve a value using dot-separated path, e.g. ``fitting.norm_test``."""
        parts = dotted_key.split(".")
        node: Any = self.data
        for part in parts:
            if isinstance(node, dict) and part in node:
                node = node[part]
            else:
                return default
        return node

    def section(self, name: str) -> dict[str, Any]:
        """Return a top-level section as a dict (empty dict if missing)."""
        val = self.data.get(name)
        if isinstance(val, dict):
            return dict(val)
        return {}


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _deep_merge(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge *overlay* into *base* (non-destructive)."""
    merged = dict(base)
    for key, value in overlay.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _set_nested(d: dict[str, Any], parts: list[str], value: Any) -> None:
    """Set a value in a nested dict using a list of keys."""
    for part in parts[:-1]:
        d = d.setdefault(part, {})
    if parts:
        d[parts[-1]] = value


def _coerce(value: str) -> Any:
    """Best-effort coercion from string to bool / null / int / float / str."""
    if value.lower() in ("true", "yes"):
        return True
    if value.lower() in ("false", "no"):
        return False
    if value.lower() == "null":
        return None
    try:
        return int(value)
    except ValueError:
        pass
    try:
        return float(value)
    except ValueError:
        pass
    return value
