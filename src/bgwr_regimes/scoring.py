"""Agreement between an inferred partition and a reference partition."""

import numpy as np
from sklearn.metrics import adjusted_rand_score

from bgwr_regimes.errors import LengthMismatchError


def _check_lengths(a: np.ndarray, b: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    a = np.asarray(a).ravel()
    b = np.asarray(b).ravel()
    if a.shape != b.shape:
        raise LengthMismatchError(f"partitions cover {a.size} and {b.size} units")
    return a, b


def rand_index(inferred: np.ndarray, truth: np.ndarray) -> float:
    """Fraction of unordered unit pairs on which two partitions agree.

    A pair agrees when both partitions put it in one group or both split it.
    Label names and counts may differ between the partitions. With fewer
    than two units there are no pairs and the index is 1.0.
    """
    a, b = _check_lengths(inferred, truth)
    n = a.size
    if n < 2:
        return 1.0
    same_a = a[:, None] == a[None, :]
    same_b = b[:, None] == b[None, :]
    upper = np.triu_indices(n, k=1)
    agreements = int(np.sum(same_a[upper] == same_b[upper]))
    return agreements / (n * (n - 1) // 2)


def adjusted_rand_index(inferred: np.ndarray, truth: np.ndarray) -> float:
    """Chance-corrected Rand Index (0 for random labelings, 1 for identical)."""
    a, b = _check_lengths(inferred, truth)
    return float(adjusted_rand_score(b, a))


def score_partitions(partitions: dict[str, np.ndarray], truth: np.ndarray) -> dict[str, dict]:
    """Rand and adjusted Rand index of each named partition against the truth."""
    scores = {}
    for name, labels in partitions.items():
        scores[name] = {
            "rand_index": rand_index(labels, truth),
            "adjusted_rand_index": adjusted_rand_index(labels, truth),
            "n_clusters": int(np.unique(labels).size),
        }
    return scores
