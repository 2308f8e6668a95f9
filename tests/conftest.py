"""Shared fixtures for the Bayesian GWR test suite."""

import numpy as np
import pytest

from bgwr_regimes.models import SpatialData
from bgwr_regimes.simulate import simulate_regimes


def pytest_configure(config):
    config.addinivalue_line(
        "markers", "slow: compiles and samples a PyMC model (deselect with '-m \"not slow\"')"
    )


@pytest.fixture
def lattice_data() -> SpatialData:
    """4x4 lattice, intercept + 1 covariate, left/right regimes."""
    return simulate_regimes(n_side=4, n_predictors=1, seed=7)


@pytest.fixture
def tiny_data() -> SpatialData:
    """Three units on a line with hand-picked values.

    Distances are 0/5/10 so W(lambda) is easy to check by hand.
    """
    return SpatialData(
        unit_ids=["a", "b", "c"],
        coords=np.array([[0.0, 0.0], [1.0, 0.0], [2.0, 0.0]]),
        X=np.array([[1.0, 0.5], [1.0, -1.0], [1.0, 2.0]]),
        y=np.array([1.2, -0.4, 3.1]),
        distances=np.array([[0.0, 5.0, 10.0], [5.0, 0.0, 5.0], [10.0, 5.0, 0.0]]),
        truth=np.array([1, 1, 2]),
    )
