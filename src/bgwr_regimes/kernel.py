"""Spatial distances and the exponential GWR kernel."""

import numpy as np

from bgwr_regimes.config import DISTANCE_MAX, EARTH_RADIUS_KM
from bgwr_regimes.errors import ModelSpecError


def great_circle_distances(
    lon: np.ndarray,
    lat: np.ndarray,
    radius: float = EARTH_RADIUS_KM,
) -> np.ndarray:
    """Pairwise haversine distances between centroids given in degrees."""
    lon = np.radians(np.asarray(lon, dtype=float))
    lat = np.radians(np.asarray(lat, dtype=float))
    if lon.shape != lat.shape or lon.ndim != 1:
        raise ModelSpecError("lon and lat must be 1-D arrays of equal length")

    dlon = lon[:, None] - lon[None, :]
    dlat = lat[:, None] - lat[None, :]
    a = np.sin(dlat / 2) ** 2 + np.cos(lat[:, None]) * np.cos(lat[None, :]) * np.sin(dlon / 2) ** 2
    dist = 2 * radius * np.arcsin(np.sqrt(np.clip(a, 0.0, 1.0)))
    np.fill_diagonal(dist, 0.0)
    return dist


def normalize_distances(dist: np.ndarray, max_value: float = DISTANCE_MAX) -> np.ndarray:
    """Rescale a distance matrix so its largest entry equals max_value.

    An all-zero matrix (a single unit, or co-located units) is returned as is.
    """
    _check_distances(dist)
    dist = np.asarray(dist, dtype=float)
    largest = dist.max() if dist.size else 0.0
    if largest == 0:
        return dist.copy()
    return dist * (max_value / largest)


def build_kernel(dist: np.ndarray, bandwidth: float) -> np.ndarray:
    """Exponential kernel weights W[i, j] = exp(-dist[i, j] / bandwidth).

    Pure function of its inputs; the sampler calls it for every proposed
    bandwidth. W[i, i] == 1 and W is symmetric whenever dist is.
    """
    if not bandwidth > 0:
        raise ModelSpecError(f"kernel bandwidth must be positive, got {bandwidth}")
    _check_distances(dist)
    return np.exp(-np.asarray(dist, dtype=float) / bandwidth)


def _check_distances(dist: np.ndarray) -> None:
    dist = np.asarray(dist)
    if dist.ndim != 2 or dist.shape[0] != dist.shape[1]:
        raise ModelSpecError(f"distance matrix must be square, got shape {dist.shape}")
    if not np.all(np.isfinite(dist)):
        raise ModelSpecError("distance matrix contains non-finite entries")
    if np.any(dist < 0):
        raise ModelSpecError("distance matrix contains negative entries")
