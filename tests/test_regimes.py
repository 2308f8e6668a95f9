"""
Tests for the regime-recovery analysis helpers in analysis/regimes.py.

Run: uv run pytest tests/test_regimes.py -v
"""

import sys
from pathlib import Path

import numpy as np
import pytest

# Add project root to path so we can import analysis.regimes
sys.path.insert(0, str(Path(__file__).parent.parent))

from analysis.regimes import print_scores, regime_assignments
from bgwr_regimes.consensus import dahl_consensus, mode_partition
from bgwr_regimes.models import PartitionEnsemble
from bgwr_regimes.pipeline import RegimeSummary
from bgwr_regimes.scoring import score_partitions

# ── Fixtures ─────────────────────────────────────────────────────────────────


@pytest.fixture
def summary(tiny_data) -> RegimeSummary:
    ensemble = PartitionEnsemble(
        labels=np.array([[1, 1, 2], [1, 1, 2], [1, 2, 2]]),
        draw_indices=np.array([0, 1, 2]),
        n_components=np.array([2, 2, 2]),
        n_requested=3,
    )
    dahl = dahl_consensus(ensemble)
    mode = mode_partition(ensemble)
    scores = score_partitions({"dahl": dahl.partition, "mode": mode}, tiny_data.truth)
    return RegimeSummary(ensemble=ensemble, dahl=dahl, mode=mode, scores=scores)


# ── Assignments ──────────────────────────────────────────────────────────────


class TestRegimeAssignments:
    def test_columns(self, summary, tiny_data) -> None:
        df = regime_assignments(summary, tiny_data)
        assert df.columns == [
            "unit_id", "lon", "lat", "dahl", "mode", "co_membership_mean", "truth"
        ]
        assert df.height == 3

    def test_values(self, summary, tiny_data) -> None:
        df = regime_assignments(summary, tiny_data)
        assert df["dahl"].to_list() == [1, 1, 2]
        assert df["truth"].to_list() == [1, 1, 2]
        assert df["co_membership_mean"][0] == pytest.approx((1 + 2 / 3 + 0) / 3)


class TestPrintScores:
    def test_prints_each_partition(self, summary, capsys) -> None:
        print_scores(summary)
        out = capsys.readouterr().out
        assert "dahl" in out and "mode" in out
        assert "Rand = 1.0000" in out

    def test_no_truth(self, summary, capsys) -> None:
        summary.scores = None
        print_scores(summary)
        assert "No ground truth" in capsys.readouterr().out
