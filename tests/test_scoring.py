"""
Tests for partition agreement scores in scoring.py.

Run: uv run pytest tests/test_scoring.py -v
"""

import numpy as np
import pytest

from bgwr_regimes.errors import LengthMismatchError
from bgwr_regimes.scoring import adjusted_rand_index, rand_index, score_partitions


class TestRandIndex:
    def test_pure_relabeling(self) -> None:
        assert rand_index(np.array([2, 2, 1]), np.array([1, 1, 2])) == 1.0

    def test_identical(self) -> None:
        labels = np.array([1, 2, 3, 1, 2])
        assert rand_index(labels, labels) == 1.0

    def test_symmetric(self) -> None:
        a = np.array([1, 1, 2, 2, 3])
        b = np.array([1, 2, 2, 3, 3])
        assert rand_index(a, b) == pytest.approx(rand_index(b, a))

    def test_partial_agreement(self) -> None:
        # only the pair (2, 3) disagrees
        assert rand_index(np.array([1, 2, 2]), np.array([1, 2, 3])) == pytest.approx(2 / 3)
        assert rand_index(np.array([1, 1, 2]), np.array([1, 2, 2])) == pytest.approx(1 / 3)

    def test_different_cluster_counts(self) -> None:
        assert rand_index(np.array([1, 1, 1, 1]), np.array([1, 2, 3, 4])) == 0.0

    def test_bounded(self) -> None:
        rng = np.random.default_rng(3)
        a = rng.integers(1, 5, size=30)
        b = rng.integers(1, 5, size=30)
        assert 0.0 <= rand_index(a, b) <= 1.0

    def test_fewer_than_two_units(self) -> None:
        assert rand_index(np.array([4]), np.array([1])) == 1.0

    def test_length_mismatch(self) -> None:
        with pytest.raises(LengthMismatchError):
            rand_index(np.array([1, 1, 2]), np.array([1, 2]))


class TestAdjustedRandIndex:
    def test_relabeling(self) -> None:
        assert adjusted_rand_index(np.array([2, 2, 1, 1]), np.array([1, 1, 2, 2])) == 1.0

    def test_length_mismatch(self) -> None:
        with pytest.raises(LengthMismatchError):
            adjusted_rand_index(np.array([1]), np.array([1, 2]))


class TestScorePartitions:
    def test_scores_every_partition(self) -> None:
        truth = np.array([1, 1, 2, 2])
        scores = score_partitions(
            {"dahl": np.array([5, 5, 6, 6]), "mode": np.array([1, 1, 1, 2])}, truth
        )
        assert set(scores) == {"dahl", "mode"}
        assert scores["dahl"] == {"rand_index": 1.0, "adjusted_rand_index": 1.0, "n_clusters": 2}
        assert scores["mode"]["rand_index"] == pytest.approx(3 / 6)
        assert scores["mode"]["n_clusters"] == 2
