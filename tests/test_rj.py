"""
Tests for reversible-jump variable selection in rj.py and through GibbsSampler.

Run: uv run pytest tests/test_rj.py -v
"""

import numpy as np
import pytest
from scipy import stats

from bgwr_regimes.errors import ModelSpecError
from bgwr_regimes.kernel import build_kernel
from bgwr_regimes.model import GWRState
from bgwr_regimes.models import Priors, RJConfig, SamplerConfig
from bgwr_regimes.rj import (
    birth_log_ratio,
    death_log_ratio,
    free_predictors,
    rj_sweep,
    update_inclusion_probabilities,
)
from bgwr_regimes.sampler import GibbsSampler

# ── Fixtures ─────────────────────────────────────────────────────────────────


@pytest.fixture
def short_run() -> SamplerConfig:
    return SamplerConfig(iterations=40, burnin=10, thin=1, chains=2, seed=11)


@pytest.fixture
def rj_state(lattice_data) -> GWRState:
    S, P = lattice_data.n_units, lattice_data.n_predictors
    rng = np.random.default_rng(0)
    gamma = np.ones((S, P), dtype=np.int64)
    gamma[::2, 1] = 0
    return GWRState(
        b=rng.normal(size=(S, P)),
        psi=np.ones(S),
        lam=3.0,
        tau=1.0,
        gamma=gamma,
        pi=np.array([0.5, 0.5]),
    )


# ── Acceptance ratios ────────────────────────────────────────────────────────


class TestAcceptanceRatios:
    def test_birth_matches_closed_form(self) -> None:
        rj = RJConfig(proposal_mean=0.2, proposal_scale=1.5)
        value, pi_j, tau = 0.8, 0.3, 2.0
        expected = (
            (-10.0 - -12.5)
            + np.log(pi_j / (1 - pi_j))
            + stats.norm.logpdf(value, 0.0, 1 / np.sqrt(tau))
            - stats.norm.logpdf(value, 0.2, 1.5)
        )
        got = birth_log_ratio(-10.0, -12.5, value, pi_j, tau, rj)
        assert got == pytest.approx(expected)

    def test_death_reverses_birth(self) -> None:
        rj = RJConfig()
        birth = birth_log_ratio(-3.0, -4.0, 0.4, 0.6, 1.2, rj)
        death = death_log_ratio(-3.0, -4.0, 0.4, 0.6, 1.2, rj)
        assert death == pytest.approx(-birth)

    def test_better_fit_favours_birth(self) -> None:
        rj = RJConfig()
        good = birth_log_ratio(-5.0, -20.0, 0.5, 0.5, 1.0, rj)
        bad = birth_log_ratio(-20.0, -5.0, 0.5, 0.5, 1.0, rj)
        assert good > 0 > bad


class TestRJConfig:
    def test_free_predictors(self) -> None:
        rj = RJConfig(forced_indicators={0: 1, 2: 0})
        assert free_predictors(4, rj) == [1, 3]

    def test_invalid_scale(self) -> None:
        with pytest.raises(ModelSpecError):
            RJConfig(proposal_scale=0.0)

    def test_invalid_forced_value(self) -> None:
        with pytest.raises(ModelSpecError):
            RJConfig(forced_indicators={0: 2})


# ── Sweeps ───────────────────────────────────────────────────────────────────


class TestSweep:
    def test_excluded_coefficients_keep_their_values(self, lattice_data, rj_state) -> None:
        before = rj_state.b.copy()
        gamma_before = rj_state.gamma.copy()
        W = build_kernel(lattice_data.distances, rj_state.lam)
        rj_sweep(np.random.default_rng(3), lattice_data, W, rj_state, RJConfig())
        stayed_out = (gamma_before == 0) & (rj_state.gamma == 0)
        assert np.array_equal(rj_state.b[stayed_out], before[stayed_out])
        assert set(np.unique(rj_state.gamma)) <= {0, 1}

    def test_death_does_not_touch_value(self, lattice_data, rj_state) -> None:
        before = rj_state.b.copy()
        gamma_before = rj_state.gamma.copy()
        W = build_kernel(lattice_data.distances, rj_state.lam)
        rj_sweep(np.random.default_rng(5), lattice_data, W, rj_state, RJConfig())
        died = (gamma_before == 1) & (rj_state.gamma == 0)
        assert np.array_equal(rj_state.b[died], before[died])

    def test_counts_match_indicator_changes(self, lattice_data, rj_state) -> None:
        gamma_before = rj_state.gamma.copy()
        W = build_kernel(lattice_data.distances, rj_state.lam)
        births, deaths = rj_sweep(np.random.default_rng(9), lattice_data, W, rj_state, RJConfig())
        assert births == int(np.sum((gamma_before == 0) & (rj_state.gamma == 1)))
        assert deaths == int(np.sum((gamma_before == 1) & (rj_state.gamma == 0)))

    def test_forced_columns_never_flip(self, lattice_data, rj_state) -> None:
        rj = RJConfig(forced_indicators={1: 0})
        rj_state.gamma[:, 1] = 0
        W = build_kernel(lattice_data.distances, rj_state.lam)
        rng = np.random.default_rng(1)
        for _ in range(5):
            rj_sweep(rng, lattice_data, W, rj_state, rj)
        assert np.all(rj_state.gamma[:, 1] == 0)

    def test_inclusion_probabilities_stay_inside_unit_interval(self, rj_state) -> None:
        rng = np.random.default_rng(2)
        update_inclusion_probabilities(rng, rj_state, Priors())
        assert rj_state.pi.shape == (2,)
        assert np.all((rj_state.pi > 0) & (rj_state.pi < 1))


# ── Forced indicators through the sampler ────────────────────────────────────


class TestForcedIndicators:
    def test_forced_exclusion_freezes_coefficients(self, lattice_data, short_run) -> None:
        S, P = lattice_data.n_units, lattice_data.n_predictors
        b0 = np.full((S, P), 0.7)
        rj = RJConfig(forced_indicators={1: 0})
        draws = GibbsSampler().sample(lattice_data, Priors(), short_run, rj=rj, inits={"b": b0})
        assert np.all(draws.gamma[:, :, 1] == 0)
        np.testing.assert_array_equal(draws.b[:, :, 1], 0.7)
        # the free intercept still moves
        assert not np.allclose(draws.b[:, :, 0], 0.7)

    def test_forced_inclusion(self, lattice_data, short_run) -> None:
        rj = RJConfig(forced_indicators={0: 1, 1: 1})
        draws = GibbsSampler().sample(lattice_data, Priors(), short_run, rj=rj)
        assert np.all(draws.gamma == 1)
        assert draws.stats["births"] == [0, 0]
        assert draws.stats["deaths"] == [0, 0]

    def test_rj_outputs(self, lattice_data, short_run) -> None:
        draws = GibbsSampler().sample(lattice_data, Priors(), short_run, rj=RJConfig())
        n = short_run.n_retained * short_run.chains
        assert draws.gamma.shape == (n, lattice_data.n_units, lattice_data.n_predictors)
        assert draws["pi"].shape == (n, lattice_data.n_predictors)
        assert np.all((draws["pi"] > 0) & (draws["pi"] < 1))
        assert "births" in draws.stats and "deaths" in draws.stats
