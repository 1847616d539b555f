"""Shared pytest fixtures for the pysars test suite."""

from __future__ import annotations

import numpy as np
import pytest

from pysars.domain.models import Dataset


# ---------------------------------------------------------------------------
# Synthetic island datasets
# ---------------------------------------------------------------------------

ISLAND_AREAS = np.array([
    0.2, 0.5, 0.9, 1.8, 2.5, 4.4, 5.2, 9.0,
    17.2, 23.8, 46.2, 58.3, 129.0, 172.0, 551.0, 4670.0,
])

# Fixed multiplicative noise (percent) so every run sees the same data.
_NOISE_PCT = np.array([
    0.8, -1.0, 0.3, 0.9, -0.6, -0.2, 1.0, -0.9,
    0.4, -0.3, 0.7, -0.8, 0.1, -0.5, 0.6, -0.4,
])

POWER_C = 30.0
POWER_Z = 0.3


@pytest.fixture()
def islands() -> Dataset:
    """Sixteen islands following S = 30 * A^0.3 with about 1% noise."""
    richness = POWER_C * ISLAND_AREAS ** POWER_Z * (1.0 + _NOISE_PCT / 100.0)
    return Dataset.from_arrays(ISLAND_AREAS, richness)


@pytest.fixture()
def exact_power() -> Dataset:
    """Ten points lying exactly on S = 10 * A^0.25."""
    area = np.geomspace(1.0, 1000.0, 10)
    return Dataset.from_arrays(area, 10.0 * area ** 0.25)


@pytest.fixture()
def exact_linear() -> Dataset:
    """Eight points lying exactly on S = 2 + 3A."""
    area = np.arange(1.0, 9.0)
    return Dataset.from_arrays(area, 2.0 + 3.0 * area)


@pytest.fixture()
def constant_richness() -> Dataset:
    """Eight islands that all hold five species."""
    return Dataset.from_arrays(np.geomspace(1.0, 100.0, 8), np.full(8, 5.0))


@pytest.fixture()
def zero_richness() -> Dataset:
    """Eight islands without any species."""
    return Dataset.from_arrays(np.geomspace(1.0, 100.0, 8), np.zeros(8))


@pytest.fixture()
def four_points() -> Dataset:
    return Dataset.from_arrays([1.0, 2.0, 4.0, 8.0], [2.0, 3.1, 3.9, 5.2])


@pytest.fixture()
def five_points() -> Dataset:
    return Dataset.from_arrays([1.0, 2.0, 4.0, 8.0, 16.0], [2.0, 3.1, 3.9, 5.2, 6.1])
