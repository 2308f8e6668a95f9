"""Synthetic lattices with known spatial regimes.

Units sit on a regular lon/lat grid. Each unit belongs to a regime (left and
right halves, or four quadrants) and its response is generated from that
regime's coefficients, so the ground-truth partition is known exactly.
"""

import numpy as np

from bgwr_regimes.config import DISTANCE_MAX, RANDOM_SEED
from bgwr_regimes.kernel import great_circle_distances, normalize_distances
from bgwr_regimes.models import SpatialData

# Rows: regimes. Columns: intercept, then predictors.
REGIME_COEFFICIENTS = np.array(
    [
        [1.0, -2.0, 1.5, 0.5],
        [-1.0, 2.0, -1.5, -0.5],
        [2.5, 0.5, -2.5, 1.5],
        [-2.5, -0.5, 2.5, -1.5],
    ]
)

GRID_ORIGIN = (-98.0, 37.0)  # lon, lat of the south-west unit
GRID_SPACING = 0.25  # degrees


def regime_labels(n_side: int, pattern: str = "halves") -> np.ndarray:
    """Ground-truth labels (1-based) for an n_side x n_side lattice, row-major."""
    rows, cols = np.divmod(np.arange(n_side * n_side), n_side)
    half = n_side // 2
    if pattern == "halves":
        return np.where(cols < half, 1, 2)
    if pattern == "quadrants":
        return 1 + (cols >= half).astype(int) + 2 * (rows >= half).astype(int)
    raise ValueError(f"Unknown regime pattern: {pattern!r}")


def simulate_regimes(
    n_side: int = 8,
    n_predictors: int = 2,
    pattern: str = "halves",
    noise_sd: float = 0.5,
    coef_jitter: float = 0.1,
    seed: int = RANDOM_SEED,
    max_distance: float = DISTANCE_MAX,
) -> SpatialData:
    """Simulate one observation per lattice unit from regime-specific coefficients.

    The design matrix has an intercept column followed by n_predictors
    standard-normal covariates. Unit coefficients are the regime's row of
    REGIME_COEFFICIENTS plus small Normal(0, coef_jitter) perturbations.
    """
    if n_side < 2:
        raise ValueError("n_side must be at least 2")
    if not 1 <= n_predictors < REGIME_COEFFICIENTS.shape[1]:
        raise ValueError(f"n_predictors must be between 1 and {REGIME_COEFFICIENTS.shape[1] - 1}")

    rng = np.random.default_rng(seed)
    S = n_side * n_side
    P = n_predictors + 1

    truth = regime_labels(n_side, pattern)
    rows, cols = np.divmod(np.arange(S), n_side)
    lon = GRID_ORIGIN[0] + GRID_SPACING * cols
    lat = GRID_ORIGIN[1] + GRID_SPACING * rows

    X = np.column_stack([np.ones(S), rng.standard_normal((S, n_predictors))])
    coefs = REGIME_COEFFICIENTS[truth - 1, :P] + coef_jitter * rng.standard_normal((S, P))
    y = np.sum(X * coefs, axis=1) + noise_sd * rng.standard_normal(S)

    dist = normalize_distances(great_circle_distances(lon, lat), max_distance)
    return SpatialData(
        unit_ids=[f"u{i:03d}" for i in range(S)],
        coords=np.column_stack([lon, lat]),
        X=X,
        y=y,
        distances=dist,
        truth=truth,
    )
