"""
Tests for the posterior-sampling analysis helpers in analysis/gwr_mcmc.py.

Sampling itself is covered in test_sampler.py; these tests check the
convergence table and the coefficient summaries on hand-built draws.

Run: uv run pytest tests/test_gwr_mcmc.py -v
"""

import sys
from pathlib import Path

import numpy as np
import pytest

# Add project root to path so we can import analysis.gwr_mcmc
sys.path.insert(0, str(Path(__file__).parent.parent))

from analysis.gwr_mcmc import (
    RHAT_THRESHOLD,
    check_convergence,
    summarize_coefficients,
)
from bgwr_regimes.models import PosteriorDraws

# ── Fixtures ─────────────────────────────────────────────────────────────────


@pytest.fixture
def iid_draws() -> PosteriorDraws:
    """Two chains of 50 independent draws: well mixed, but too few for the ESS bar."""
    rng = np.random.default_rng(0)
    n = 100
    return PosteriorDraws(
        samples={
            "b": rng.normal(size=(n, 3, 2)),
            "psi_y": rng.gamma(2.0, size=(n, 3)),
            "lambda": rng.uniform(1, 9, size=n),
            "tau": rng.gamma(2.0, size=n),
        },
        chain=np.repeat([0, 1], 50),
        stats={"lambda_accept_rate": [0.3, 0.35]},
    )


@pytest.fixture
def rj_draws() -> PosteriorDraws:
    """Four draws with b = draw number; unit 0 drops predictor 1 in the first two."""
    n, S, P = 4, 3, 2
    b = np.broadcast_to(np.arange(1.0, n + 1)[:, None, None], (n, S, P)).copy()
    gamma = np.ones((n, S, P), dtype=np.int64)
    gamma[:2, 0, 1] = 0
    return PosteriorDraws(
        samples={
            "b": b,
            "gamma": gamma,
            "psi_y": np.ones((n, S)),
            "lambda": np.ones(n),
            "tau": np.ones(n),
        },
        chain=np.zeros(n, dtype=np.int64),
    )


# ── Convergence ──────────────────────────────────────────────────────────────


class TestCheckConvergence:
    def test_reports_every_parameter(self, iid_draws) -> None:
        diag = check_convergence(iid_draws)
        for name in ("lambda", "tau", "b"):
            assert np.isfinite(diag[f"{name}_rhat_max"])
            assert np.isfinite(diag[f"{name}_ess_min"])

    def test_iid_chains_agree(self, iid_draws) -> None:
        diag = check_convergence(iid_draws)
        assert diag["lambda_rhat_max"] < RHAT_THRESHOLD + 0.1

    def test_too_few_draws_for_ess(self, iid_draws) -> None:
        assert check_convergence(iid_draws)["all_ok"] is False


# ── Coefficient summaries ────────────────────────────────────────────────────


class TestSummarizeCoefficients:
    def test_long_format(self, rj_draws, tiny_data) -> None:
        df = summarize_coefficients(rj_draws, tiny_data)
        assert df.height == 6
        assert df["unit_id"].to_list() == ["a", "a", "b", "b", "c", "c"]
        assert df["predictor"].to_list() == [0, 1, 0, 1, 0, 1]

    def test_included_draws_only(self, rj_draws, tiny_data) -> None:
        df = summarize_coefficients(rj_draws, tiny_data)
        row = df.row(1, named=True)
        assert row["b_mean"] == pytest.approx(3.5)
        assert row["b_sd"] == pytest.approx(np.std([3.0, 4.0], ddof=1))
        assert row["inclusion_rate"] == pytest.approx(0.5)

    def test_always_included(self, rj_draws, tiny_data) -> None:
        row = summarize_coefficients(rj_draws, tiny_data).row(0, named=True)
        assert row["b_mean"] == pytest.approx(2.5)
        assert row["b_sd"] == pytest.approx(np.std([1.0, 2.0, 3.0, 4.0], ddof=1))
        assert row["inclusion_rate"] == 1.0

    def test_without_indicators(self, iid_draws, tiny_data) -> None:
        df = summarize_coefficients(iid_draws, tiny_data)
        np.testing.assert_allclose(df["inclusion_rate"].to_numpy(), 1.0)
        np.testing.assert_allclose(
            df["b_mean"].to_numpy(), iid_draws.b.mean(axis=0).ravel()
        )
