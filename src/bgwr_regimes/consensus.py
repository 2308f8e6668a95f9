"""Point-estimate partitions from an ensemble of per-draw partitions.

Mixture labels are not identifiable across draws (label switching), so the
ensemble is summarized through co-membership: whether two units share a
label, not which label they share.
"""

import numpy as np

from bgwr_regimes.models import ConsensusResult, PartitionEnsemble


def co_membership(labels: np.ndarray) -> np.ndarray:
    """Binary S x S matrix: 1 where two units share a label."""
    labels = np.asarray(labels)
    return (labels[:, None] == labels[None, :]).astype(float)


def comembership_counts(labels: np.ndarray) -> np.ndarray:
    """Integer S x S matrix: number of partitions in which each pair co-clusters."""
    labels = _as_matrix(labels)
    total = np.zeros((labels.shape[1], labels.shape[1]), dtype=np.int64)
    for row in labels:
        total += row[:, None] == row[None, :]
    return total


def comembership_mean(labels: np.ndarray) -> np.ndarray:
    """bBar: fraction of partitions in which each pair of units co-clusters.

    labels: (M, S) matrix, one partition per row.
    """
    labels = _as_matrix(labels)
    return comembership_counts(labels) / labels.shape[0]


def dahl_consensus(ensemble) -> ConsensusResult:
    """Select the observed partition closest to the mean co-membership matrix.

    Distance is the squared Frobenius norm sum_ij (B_m[i,j] - bBar[i,j])^2.
    Ties go to the lowest ensemble row, so the result is always one of the
    input partitions and is reproducible. Rows are compared on the exact
    integer score sum_ij (M * B_m[i,j] - C[i,j])^2 = M^2 * d_m, with C the
    co-membership counts, so equal distances compare equal.

    Accepts a PartitionEnsemble or a bare (M, S) label matrix. Memory use is
    O(S^2) regardless of M.
    """
    labels, draw_indices = _unpack(ensemble)
    n = labels.shape[0]
    counts = comembership_counts(labels)

    scores = np.empty(n, dtype=np.int64)
    for m, row in enumerate(labels):
        scaled = n * (row[:, None] == row[None, :]).astype(np.int64)
        scores[m] = np.sum((scaled - counts) ** 2)

    best = int(np.argmin(scores))
    return ConsensusResult(
        partition=labels[best].copy(),
        ensemble_index=best,
        draw_index=int(draw_indices[best]),
        distances=scores / n**2,
        comembership=counts / n,
    )


def mode_partition(ensemble) -> np.ndarray:
    """Per-unit most frequent label; ties go to the smallest label.

    Each unit is decided independently, so the result need not match any
    single observed partition.
    """
    labels, _ = _unpack(ensemble)
    out = np.empty(labels.shape[1], dtype=labels.dtype)
    for i in range(labels.shape[1]):
        values, counts = np.unique(labels[:, i], return_counts=True)
        # np.unique sorts values, so argmax picks the smallest tied label
        out[i] = values[np.argmax(counts)]
    return out


def _as_matrix(labels: np.ndarray) -> np.ndarray:
    labels = np.asarray(labels)
    if labels.ndim != 2 or labels.shape[0] == 0:
        raise ValueError(f"expected a non-empty (draws, units) label matrix, got {labels.shape}")
    return labels


def _unpack(ensemble) -> tuple[np.ndarray, np.ndarray]:
    if isinstance(ensemble, PartitionEnsemble):
        return _as_matrix(ensemble.labels), ensemble.draw_indices
    labels = _as_matrix(ensemble)
    return labels, np.arange(labels.shape[0])
