"""Catalog of the twenty species-area relationship models.

Each entry is an immutable :class:`~pysars.domain.models.ModelSpec` holding
the closed-form function, parameter domains, the general curve shape and a
pure starting-value heuristic.  Heuristics linearise the model (log-log
regression for the power family, an asymptote guess followed by a linear
regression of the transformed richness for the saturating models) and fall
back on the model's ``custom_start`` when the data are too degenerate for the
linearisation to be finite.

Lookup is by name through :func:`get`; there is no string-built dispatch.
"""

from __future__ import annotations

import logging

import numpy as np

from pysars.domain.exceptions import UnknownModelError
from pysars.domain.models import Dataset, ModelSpec, ParamDomain

logger = logging.getLogger(__name__)

POS = ParamDomain.POSITIVE
REAL = ParamDomain.REAL

_NAN = float("nan")

# Asymptote guess relative to the largest observed richness.
_ASYMPTOTE_FACTOR = 1.25

# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

_REGISTRY: dict[str, ModelSpec] = {}


def register_model(spec: ModelSpec) -> ModelSpec:
    """Add *spec* to the catalog."""
    _REGISTRY[spec.name] = spec
    return spec


def get(name: str) -> ModelSpec:
    """Return the model definition called *name*.

    Raises
    ------
    UnknownModelError
        If *name* is not in the catalog.
    """
    try:
        return _REGISTRY[name]
    except KeyError:
        raise UnknownModelError(name) from None


def list_models() -> list[str]:
    """Return the catalog model names in canonical order."""
    return list(_REGISTRY)


def model_table() -> list[dict[str, object]]:
    """Return one summary row (name, label, formula, parameters, shape) per model."""
    return [
        {
            "name": spec.name,
            "label": spec.label,
            "formula": spec.formula,
            "n_params": spec.n_params,
            "shape": spec.shape,
            "asymptotic": spec.asymptote is not None,
        }
        for spec in _REGISTRY.values()
    ]


# ---------------------------------------------------------------------------
# Starting-value helpers
# ---------------------------------------------------------------------------

def _linfit(x: np.ndarray, y: np.ndarray) -> tuple[float, float]:
    """Ordinary least-squares intercept and slope, NaN when undetermined."""
    x = np.asarray(x, dtype=np.float64)
    y = np.asarray(y, dtype=np.float64)
    ok = np.isfinite(x) & np.isfinite(y)
    x, y = x[ok], y[ok]
    if x.size < 2 or np.ptp(x) == 0:
        return _NAN, _NAN
    xm = x.mean()
    slope = float(np.sum((x - xm) * (y - y.mean())) / np.sum((x - xm) ** 2))
    return float(y.mean() - slope * xm), slope


def _scale(ds: Dataset) -> tuple[float, float, float]:
    """Richness scale (>= 1), median area and maximum area."""
    smax = max(float(np.max(ds.richness)), 1.0)
    return smax, float(np.median(ds.area)), float(np.max(ds.area))


def _asymptote(ds: Dataset) -> float:
    smax = float(np.max(ds.richness))
    return _ASYMPTOTE_FACTOR * smax if smax > 0 else 1.0


def _loglog(ds: Dataset) -> tuple[float, float]:
    """``c`` and ``z`` of ``S = c A^z`` from a regression on positive richness."""
    pos = ds.richness > 0
    if np.count_nonzero(pos) < 2:
        return _NAN, _NAN
    b0, b1 = _linfit(np.log(ds.area[pos]), np.log(ds.richness[pos]))
    return float(np.exp(b0)), b1


def _mmf_start(ds: Dataset) -> tuple[float, float, float]:
    """``d``, ``c``, ``z`` of ``S = d / (1 + c A^-z)``."""
    d = _asymptote(ds)
    pos = ds.richness > 0
    with np.errstate(all="ignore"):
        y = np.log(d / ds.richness[pos] - 1.0)
    b0, b1 = _linfit(np.log(ds.area[pos]), y)
    return d, float(np.exp(b0)), -b1


def _weibull_start(ds: Dataset) -> tuple[float, float, float]:
    """``d``, ``c``, ``z`` of ``S = d (1 - exp(-c A^z))``."""
    d = _asymptote(ds)
    pos = ds.richness > 0
    with np.errstate(all="ignore"):
        y = np.log(-np.log(1.0 - ds.richness[pos] / d))
    b0, b1 = _linfit(np.log(ds.area[pos]), y)
    return d, float(np.exp(b0)), b1


def _negexpo_rate(ds: Dataset, d: float) -> float:
    """Least-squares ``z`` through the origin of ``-log(1 - S/d) = z A``."""
    with np.errstate(all="ignore"):
        y = -np.log(1.0 - ds.richness / d)
    ok = np.isfinite(y)
    if not np.any(ok):
        return _NAN
    a = ds.area[ok]
    return float(np.sum(y[ok] * a) / np.sum(a ** 2))


# ---------------------------------------------------------------------------
# Start values and grid sampling ranges
# ---------------------------------------------------------------------------

_MIN_POSITIVE = 1e-8
_UNIT_MARGIN = 1e-6


def clamp_to_domains(values: np.ndarray, domains: tuple[ParamDomain, ...]) -> np.ndarray:
    """Move *values* inside their parameter domains."""
    out = np.array(values, dtype=np.float64)
    for j, dom in enumerate(domains):
        if dom is ParamDomain.POSITIVE:
            out[j] = max(abs(out[j]), _MIN_POSITIVE)
        elif dom is ParamDomain.UNIT:
            out[j] = min(max(out[j], _UNIT_MARGIN), 1.0 - _UNIT_MARGIN)
    return out


def initial_values(spec: ModelSpec, ds: Dataset) -> np.ndarray:
    """Starting parameters for *spec* on *ds*.

    Uses the model's linearisation heuristic; when that is not finite the
    model's fallback start is used.  The result always lies inside the
    declared parameter domains.
    """
    with np.errstate(all="ignore"):
        values = np.asarray(spec.init(ds), dtype=np.float64)
    if not np.all(np.isfinite(values)) and spec.custom_start is not None:
        logger.debug("%s: heuristic start %s not finite, using fallback", spec.name, values)
        with np.errstate(all="ignore"):
            values = np.asarray(spec.custom_start(ds), dtype=np.float64)
    return clamp_to_domains(values, spec.domains)


def sampling_bounds(
    spec: ModelSpec, ds: Dataset, start: np.ndarray,
) -> list[tuple[float, float]]:
    """Ranges sampled by the grid start, one ``(low, high)`` per parameter.

    Positive parameters span two orders of magnitude either side of the
    start, real parameters ten units (or ten times the start) either side
    and unit-interval parameters ``(0.01, 0.99)``.  A model's
    ``grid_bounds`` hook may replace individual ranges.
    """
    bounds: list[tuple[float, float]] = []
    for v, dom in zip(np.asarray(start, dtype=np.float64), spec.domains):
        if dom is ParamDomain.POSITIVE:
            v = max(abs(float(v)), _MIN_POSITIVE)
            bounds.append((v * 1e-2, v * 1e2))
        elif dom is ParamDomain.UNIT:
            bounds.append((0.01, 0.99))
        else:
            span = 10.0 * max(abs(float(v)), 1.0)
            bounds.append((float(v) - span, float(v) + span))
    if spec.grid_bounds is not None:
        for j, rng in spec.grid_bounds(ds, start).items():
            bounds[j] = rng
    return bounds


def _exponent_bounds(index: int):
    """Keep a real power exponent within one unit of its start."""

    def bounds(ds: Dataset, start: np.ndarray) -> dict[int, tuple[float, float]]:
        z = float(start[index])
        return {index: (z - 1.0, z + 1.0)}

    return bounds


def _asymptote_bounds(index: int = 0):
    """Search the asymptote between the observed maximum and ten times it."""

    def bounds(ds: Dataset, start: np.ndarray) -> dict[int, tuple[float, float]]:
        smax = max(float(np.max(ds.richness)), 1e-3)
        return {index: (smax, 10.0 * smax)}

    return bounds


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------

def _power_init(ds: Dataset) -> np.ndarray:
    c, z = _loglog(ds)
    return np.array([c, z])


def _power_family_custom(ds: Dataset, extra: int) -> np.ndarray:
    smax, _, amax = _scale(ds)
    return np.array([smax / amax ** 0.25, 0.25] + [0.0] * extra)


register_model(ModelSpec(
    name="power",
    label="Power",
    formula="S == c*A^z",
    param_names=("c", "z"),
    shape="convex",
    mod_fun=lambda a, p: p[0] * a ** p[1],
    domains=(POS, REAL),
    init=_power_init,
    custom_start=lambda ds: _power_family_custom(ds, 0),
    grid_bounds=_exponent_bounds(1),
))

register_model(ModelSpec(
    name="powerR",
    label="PowerR",
    formula="S == f + c*A^z",
    param_names=("c", "z", "f"),
    shape="convex",
    mod_fun=lambda a, p: p[2] + p[0] * a ** p[1],
    domains=(POS, REAL, REAL),
    init=lambda ds: np.append(_power_init(ds), 0.0),
    custom_start=lambda ds: _power_family_custom(ds, 1),
    grid_bounds=_exponent_bounds(1),
))

register_model(ModelSpec(
    name="epm1",
    label="Extended Power model 1",
    formula="S == c*A^(z*A^-d)",
    param_names=("c", "z", "d"),
    shape="convex",
    mod_fun=lambda a, p: p[0] * a ** (p[1] * a ** (-p[2])),
    domains=(POS, REAL, REAL),
    init=lambda ds: np.append(_power_init(ds), 0.0),
    custom_start=lambda ds: _power_family_custom(ds, 1),
    grid_bounds=_exponent_bounds(1),
))

register_model(ModelSpec(
    name="epm2",
    label="Extended Power model 2",
    formula="S == c*A^(z-(d/A))",
    param_names=("c", "z", "d"),
    shape="sigmoid",
    mod_fun=lambda a, p: p[0] * a ** (p[1] - p[2] / a),
    domains=(POS, REAL, REAL),
    init=lambda ds: np.append(_power_init(ds), 0.0),
    custom_start=lambda ds: _power_family_custom(ds, 1),
    grid_bounds=_exponent_bounds(1),
))

register_model(ModelSpec(
    name="p1",
    label="Persistence function 1",
    formula="S == c*A^z * exp(-d*A)",
    param_names=("c", "z", "d"),
    shape="sigmoid",
    mod_fun=lambda a, p: p[0] * a ** p[1] * np.exp(-p[2] * a),
    domains=(POS, REAL, REAL),
    init=lambda ds: np.append(_power_init(ds), 0.0),
    custom_start=lambda ds: _power_family_custom(ds, 1),
    grid_bounds=_exponent_bounds(1),
))

register_model(ModelSpec(
    name="p2",
    label="Persistence function 2",
    formula="S == c*A^z * exp(-d/A)",
    param_names=("c", "z", "d"),
    shape="sigmoid",
    mod_fun=lambda a, p: p[0] * a ** p[1] * np.exp(-p[2] / a),
    domains=(POS, REAL, REAL),
    init=lambda ds: np.append(_power_init(ds), 0.0),
    custom_start=lambda ds: _power_family_custom(ds, 1),
    grid_bounds=_exponent_bounds(1),
))

register_model(ModelSpec(
    name="loga",
    label="Logarithmic",
    formula="S == c+z*log(A)",
    param_names=("c", "z"),
    shape="convex",
    mod_fun=lambda a, p: p[0] + p[1] * np.log(a),
    domains=(REAL, REAL),
    init=lambda ds: np.array(_linfit(np.log(ds.area), ds.richness)),
    custom_start=lambda ds: np.array([float(np.mean(ds.richness)), 0.0]),
))


def _koba_init(ds: Dataset) -> np.ndarray:
    # large-area behaviour: S ~ c*log(A) - c*log(z)
    b0, c = _linfit(np.log(ds.area), ds.richness)
    if not c > 0:
        return np.array([_NAN, _NAN])
    return np.array([c, float(np.exp(-b0 / c))])


def _koba_custom(ds: Dataset) -> np.ndarray:
    smax, amed, amax = _scale(ds)
    return np.array([smax / np.log1p(amax / amed), amed])


register_model(ModelSpec(
    name="koba",
    label="Kobayashi",
    formula="S == c*log(1+A/z)",
    param_names=("c", "z"),
    shape="convex",
    mod_fun=lambda a, p: p[0] * np.log1p(a / p[1]),
    domains=(POS, POS),
    init=_koba_init,
    custom_start=_koba_custom,
))

register_model(ModelSpec(
    name="mmf",
    label="MMF",
    formula="S == d/(1+c*A^(-z))",
    param_names=("d", "c", "z"),
    shape="sigmoid",
    mod_fun=lambda a, p: p[0] / (1.0 + p[1] * a ** (-p[2])),
    domains=(POS, POS, POS),
    init=lambda ds: np.array(_mmf_start(ds)),
    custom_start=lambda ds: np.array([_asymptote(ds), _scale(ds)[1] ** 0.5, 0.5]),
    grid_bounds=_asymptote_bounds(0),
    asymptote=lambda p: p[0],
))


def _monod_init(ds: Dataset) -> np.ndarray:
    d = _asymptote(ds)
    pos = ds.richness > 0
    if not np.any(pos):
        return np.array([d, _NAN])
    y = d / ds.richness[pos] - 1.0
    x = 1.0 / ds.area[pos]
    return np.array([d, float(np.sum(y * x) / np.sum(x ** 2))])


register_model(ModelSpec(
    name="monod",
    label="Monod",
    formula="S == d/(1+c*A^(-1))",
    param_names=("d", "c"),
    shape="convex",
    mod_fun=lambda a, p: p[0] * a / (p[1] + a),
    domains=(POS, POS),
    init=_monod_init,
    custom_start=lambda ds: np.array([_asymptote(ds), _scale(ds)[1]]),
    grid_bounds=_asymptote_bounds(0),
    asymptote=lambda p: p[0],
))

register_model(ModelSpec(
    name="negexpo",
    label="Negative exponential",
    formula="S == d*(1-exp(-z*A))",
    param_names=("d", "z"),
    shape="convex",
    mod_fun=lambda a, p: -p[0] * np.expm1(-p[1] * a),
    domains=(POS, POS),
    init=lambda ds: np.array([_asymptote(ds), _negexpo_rate(ds, _asymptote(ds))]),
    custom_start=lambda ds: np.array([_asymptote(ds), 1.0 / _scale(ds)[1]]),
    grid_bounds=_asymptote_bounds(0),
    asymptote=lambda p: p[0],
))

register_model(ModelSpec(
    name="chapman",
    label="Chapman Richards",
    formula="S == d * (1 - exp(-z*A))^c",
    param_names=("d", "z", "c"),
    shape="sigmoid",
    mod_fun=lambda a, p: p[0] * (-np.expm1(-p[1] * a)) ** p[2],
    domains=(POS, POS, POS),
    init=lambda ds: np.array([_asymptote(ds), _negexpo_rate(ds, _asymptote(ds)), 1.0]),
    custom_start=lambda ds: np.array([_asymptote(ds), 1.0 / _scale(ds)[1], 1.0]),
    grid_bounds=_asymptote_bounds(0),
    asymptote=lambda p: p[0],
))

register_model(ModelSpec(
    name="weibull3",
    label="Cumulative Weibull 3 par.",
    formula="S == d(1 - exp(-c*A^z))",
    param_names=("d", "c", "z"),
    shape="sigmoid",
    mod_fun=lambda a, p: -p[0] * np.expm1(-p[1] * a ** p[2]),
    domains=(POS, POS, POS),
    init=lambda ds: np.array(_weibull_start(ds)),
    custom_start=lambda ds: np.array([_asymptote(ds), 1.0 / _scale(ds)[1], 1.0]),
    grid_start=False,
    asymptote=lambda p: p[0],
))


def _asymp_init(ds: Dataset) -> np.ndarray:
    # Ratkowsky (1983): log(d - S) = log(c) + A*log(z)
    d = _asymptote(ds)
    with np.errstate(all="ignore"):
        b0, b1 = _linfit(ds.area, np.log(d - ds.richness))
    return np.array([d, float(np.exp(b0)), float(np.exp(b1))])


register_model(ModelSpec(
    name="asymp",
    label="Asymptotic regression",
    formula="S == d - c*z^A",
    param_names=("d", "c", "z"),
    shape="convex",
    mod_fun=lambda a, p: p[0] - p[1] * p[2] ** a,
    domains=(POS, REAL, POS),
    init=_asymp_init,
    custom_start=lambda ds: np.array([2.0 * _scale(ds)[0], _scale(ds)[0], 0.9]),
    grid_bounds=_asymptote_bounds(0),
    asymptote=lambda p: p[0],
))


def _ratio_init(ds: Dataset) -> np.ndarray:
    # S*(1 + d*A) = c + z*A  ->  S = c + z*A - d*(A*S)
    a, s = ds.area, ds.richness
    design = np.column_stack([np.ones_like(a), a, -a * s])
    coef, _, rank, _ = np.linalg.lstsq(design, s, rcond=None)
    if rank < 3:
        return np.array([_NAN, _NAN, _NAN])
    return coef.astype(np.float64)


register_model(ModelSpec(
    name="ratio",
    label="Rational function",
    formula="S == (c + z*A)/(1+d*A)",
    param_names=("c", "z", "d"),
    shape="convex",
    mod_fun=lambda a, p: (p[0] + p[1] * a) / (1.0 + p[2] * a),
    domains=(REAL, POS, POS),
    init=_ratio_init,
    custom_start=lambda ds: np.array(
        [0.0, _scale(ds)[0] / _scale(ds)[1], 1.0 / _scale(ds)[1]]
    ),
    asymptote=lambda p: p[1] / p[2],
))


def _gompertz_init(ds: Dataset) -> np.ndarray:
    # log(-log(S/d)) = z*c - z*A
    d = _asymptote(ds)
    pos = ds.richness > 0
    with np.errstate(all="ignore"):
        y = np.log(-np.log(ds.richness[pos] / d))
    b0, b1 = _linfit(ds.area[pos], y)
    z = -b1
    return np.array([d, z, b0 / z if z != 0 else _NAN])


register_model(ModelSpec(
    name="gompertz",
    label="Gompertz",
    formula="S == d*exp(-exp(-z*(A-c)))",
    param_names=("d", "z", "c"),
    shape="sigmoid",
    mod_fun=lambda a, p: p[0] * np.exp(-np.exp(-p[1] * (a - p[2]))),
    domains=(POS, POS, REAL),
    init=_gompertz_init,
    custom_start=lambda ds: np.array([_asymptote(ds), 1.0 / _scale(ds)[1], _scale(ds)[1]]),
    grid_bounds=_asymptote_bounds(0),
    asymptote=lambda p: p[0],
))

register_model(ModelSpec(
    name="weibull4",
    label="Cumulative Weibull 4 par.",
    formula="S == d(1 - exp(-c*A^z))^f",
    param_names=("d", "c", "z", "f"),
    shape="sigmoid",
    mod_fun=lambda a, p: p[0] * (-np.expm1(-p[1] * a ** p[2])) ** p[3],
    domains=(POS, POS, POS, POS),
    init=lambda ds: np.append(_weibull_start(ds), 1.0),
    custom_start=lambda ds: np.array([_asymptote(ds), 1.0 / _scale(ds)[1], 1.0, 1.0]),
    grid_bounds=_asymptote_bounds(0),
    asymptote=lambda p: p[0],
))


def _betap_init(ds: Dataset) -> np.ndarray:
    # with f = 1: logit(S/d) = z*log(A) - z*log(c)
    d = _asymptote(ds)
    pos = ds.richness > 0
    with np.errstate(all="ignore"):
        y = np.log(ds.richness[pos] / (d - ds.richness[pos]))
    b0, z = _linfit(np.log(ds.area[pos]), y)
    c = float(np.exp(-b0 / z)) if z != 0 else _NAN
    return np.array([d, c, z, 1.0])


register_model(ModelSpec(
    name="betap",
    label="Beta-P cumulative",
    formula="S == d*(1-(1+(A/c)^z)^-f)",
    param_names=("d", "c", "z", "f"),
    shape="sigmoid",
    mod_fun=lambda a, p: p[0] * (1.0 - (1.0 + (a / p[1]) ** p[2]) ** (-p[3])),
    domains=(POS, POS, POS, POS),
    init=_betap_init,
    custom_start=lambda ds: np.array([_asymptote(ds), _scale(ds)[1], 1.0, 1.0]),
    grid_bounds=_asymptote_bounds(0),
    asymptote=lambda p: p[0],
))


def _heleg_init(ds: Dataset) -> np.ndarray:
    # c/(f + A^-z) is the MMF curve with d = c/f and c_mmf = 1/f
    d, c_mmf, z = _mmf_start(ds)
    f = 1.0 / c_mmf if c_mmf > 0 else _NAN
    return np.array([d * f, f, z])


register_model(ModelSpec(
    name="heleg",
    label="Heleg(Logistic)",
    formula="S == c/(f + A^(-z))",
    param_names=("c", "f", "z"),
    shape="sigmoid",
    mod_fun=lambda a, p: p[0] / (p[1] + a ** (-p[2])),
    domains=(POS, POS, POS),
    init=_heleg_init,
    custom_start=lambda ds: np.array([_asymptote(ds), 1.0, 0.5]),
    asymptote=lambda p: p[0] / p[1],
))

register_model(ModelSpec(
    name="linear",
    label="Linear model",
    formula="S == c + m*A",
    param_names=("c", "m"),
    shape="linear",
    mod_fun=lambda a, p: p[0] + p[1] * a,
    domains=(REAL, REAL),
    init=lambda ds: np.array(_linfit(ds.area, ds.richness)),
    custom_start=lambda ds: np.array([float(np.mean(ds.richness)), 0.0]),
    grid_start=False,
    closed_form=True,
))
