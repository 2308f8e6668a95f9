"""Reversible-jump variable selection for the local GWR coefficients.

Each (unit, predictor) pair has an inclusion indicator gamma_ij ~ Bernoulli(pi_j)
with pi_j ~ Beta. A move flips one indicator:

- birth (0 -> 1) draws a fresh coefficient from the proposal q = Normal(mean, scale);
- death (1 -> 0) removes the coefficient from the linear predictor.

An excluded coefficient keeps its last value and is not updated until a
birth move replaces it. The dimension change is a single coordinate drawn
directly from q, so the Jacobian is 1.
"""

import numpy as np

from bgwr_regimes.model import GWRState, unit_log_likelihood
from bgwr_regimes.models import Priors, RJConfig, SpatialData

_LOG_2PI = np.log(2 * np.pi)
_PI_EPS = 1e-10


def _normal_logpdf(x: float, mean: float, sd: float) -> float:
    z = (x - mean) / sd
    return -0.5 * (z * z + _LOG_2PI) - np.log(sd)


def birth_log_ratio(
    ll_with: float,
    ll_without: float,
    value: float,
    pi_j: float,
    tau: float,
    rj: RJConfig,
) -> float:
    """Log acceptance ratio for adding a coefficient with the proposed value."""
    prior = _normal_logpdf(value, 0.0, 1.0 / np.sqrt(tau))
    proposal = _normal_logpdf(value, rj.proposal_mean, rj.proposal_scale)
    return (ll_with - ll_without) + np.log(pi_j) - np.log1p(-pi_j) + prior - proposal


def death_log_ratio(
    ll_with: float,
    ll_without: float,
    value: float,
    pi_j: float,
    tau: float,
    rj: RJConfig,
) -> float:
    """Log acceptance ratio for removing the coefficient currently at value."""
    return -birth_log_ratio(ll_with, ll_without, value, pi_j, tau, rj)


def free_predictors(n_predictors: int, rj: RJConfig) -> list[int]:
    """Predictor columns whose indicators the sampler is allowed to flip."""
    return [j for j in range(n_predictors) if j not in rj.forced_indicators]


def rj_sweep(
    rng: np.random.Generator,
    data: SpatialData,
    W: np.ndarray,
    state: GWRState,
    rj: RJConfig,
) -> tuple[int, int]:
    """Propose one birth-or-death move for every free (unit, predictor) pair.

    Updates ``state`` in place. Returns (accepted births, accepted deaths).
    """
    y, X = data.y, data.X
    births = deaths = 0
    columns = free_predictors(data.n_predictors, rj)
    if not columns:
        return births, deaths

    for i in range(data.n_units):
        w = W[:, i]
        eff = state.b[i] * state.gamma[i]
        ll_cur = unit_log_likelihood(y, X, w, eff, state.psi[i])

        for j in columns:
            proposed = eff.copy()
            if state.gamma[i, j] == 0:
                value = rng.normal(rj.proposal_mean, rj.proposal_scale)
                proposed[j] = value
                ll_new = unit_log_likelihood(y, X, w, proposed, state.psi[i])
                log_a = birth_log_ratio(ll_new, ll_cur, value, state.pi[j], state.tau, rj)
                if np.log(rng.uniform()) < log_a:
                    state.b[i, j] = value
                    state.gamma[i, j] = 1
                    eff, ll_cur = proposed, ll_new
                    births += 1
            else:
                proposed[j] = 0.0
                ll_new = unit_log_likelihood(y, X, w, proposed, state.psi[i])
                log_a = death_log_ratio(ll_cur, ll_new, state.b[i, j], state.pi[j], state.tau, rj)
                if np.log(rng.uniform()) < log_a:
                    state.gamma[i, j] = 0
                    eff, ll_cur = proposed, ll_new
                    deaths += 1

    return births, deaths


def update_inclusion_probabilities(
    rng: np.random.Generator,
    state: GWRState,
    priors: Priors,
) -> None:
    """Conjugate Beta update of pi_j given the indicators of every unit."""
    included = state.gamma.sum(axis=0)
    n_units = state.gamma.shape[0]
    pi = rng.beta(priors.pi_alpha + included, priors.pi_beta + n_units - included)
    # keep log(pi) and log(1 - pi) finite
    state.pi = np.clip(pi, _PI_EPS, 1 - _PI_EPS)
