"""Hierarchical Bayesian GWR: likelihood, priors and sampler state.

For every spatial unit i the full response vector is modeled as

    y ~ Normal(X b_i, diag(1 / (psi_i * W(lambda)[:, i])))

with b_ij ~ Normal(0, 1/tau), psi_i ~ Gamma, lambda ~ Uniform(0, D_max) and
tau ~ Gamma. The likelihood is evaluated as a sum of independent
per-observation Normal log-densities over the (N, S) observation grid. It is
never collapsed into a multivariate Normal: that would need a covariance
factorization per unit per step.
"""

from dataclasses import dataclass, replace
from typing import Optional

import numpy as np
from scipy import stats

from bgwr_regimes.errors import ModelSpecError
from bgwr_regimes.kernel import build_kernel
from bgwr_regimes.models import Priors, RJConfig, SpatialData

_LOG_2PI = np.log(2 * np.pi)


@dataclass
class GWRState:
    """Current values of every sampled parameter."""

    b: np.ndarray  # (S, P)
    psi: np.ndarray  # (S,)
    lam: float
    tau: float
    gamma: Optional[np.ndarray] = None  # (S, P) 0/1, RJ only
    pi: Optional[np.ndarray] = None  # (P,), RJ only

    def copy(self) -> "GWRState":
        return replace(
            self,
            b=self.b.copy(),
            psi=self.psi.copy(),
            gamma=None if self.gamma is None else self.gamma.copy(),
            pi=None if self.pi is None else self.pi.copy(),
        )

    def effective_b(self) -> np.ndarray:
        """Coefficients entering the linear predictor (excluded terms zeroed)."""
        if self.gamma is None:
            return self.b
        return self.b * self.gamma


def validate_inputs(data: SpatialData, priors: Priors) -> None:
    """Check that data, constants and priors describe one well-formed model."""
    X, y, dist = data.X, data.y, data.distances
    if X.ndim != 2:
        raise ModelSpecError(f"covariates must be a 2-D array, got {X.ndim} dims")
    if y.ndim != 1:
        raise ModelSpecError(f"response must be a 1-D array, got {y.ndim} dims")
    if X.shape[0] != y.shape[0]:
        raise ModelSpecError(f"covariates have {X.shape[0]} rows but response has {y.shape[0]}")
    if dist.ndim != 2 or dist.shape[0] != dist.shape[1]:
        raise ModelSpecError(f"distance matrix must be square, got {dist.shape}")
    if dist.shape[0] != y.shape[0]:
        raise ModelSpecError(
            f"distance matrix covers {dist.shape[0]} units but there are "
            f"{y.shape[0]} observations"
        )
    if len(data.unit_ids) != dist.shape[0]:
        raise ModelSpecError("unit id count does not match the distance matrix")
    if not (np.all(np.isfinite(X)) and np.all(np.isfinite(y))):
        raise ModelSpecError("covariates and response must be finite")
    if np.any(dist < 0) or not np.all(np.isfinite(dist)):
        raise ModelSpecError("distances must be finite and non-negative")

    positive = {
        "tau_shape": priors.tau_shape,
        "tau_rate": priors.tau_rate,
        "psi_shape": priors.psi_shape,
        "psi_rate": priors.psi_rate,
        "lambda_max": priors.lambda_max,
        "pi_alpha": priors.pi_alpha,
        "pi_beta": priors.pi_beta,
    }
    for name, value in positive.items():
        if not value > 0:
            raise ModelSpecError(f"prior constant {name} must be positive, got {value}")


def initial_state(
    data: SpatialData,
    priors: Priors,
    rj: Optional[RJConfig] = None,
    inits: Optional[dict] = None,
) -> GWRState:
    """Default starting values, overridden by any entries of ``inits``.

    ``inits`` uses the monitored parameter names ("b", "psi_y", "lambda",
    "tau", "gamma", "pi").
    """
    S, P = data.n_units, data.n_predictors
    inits = inits or {}

    state = GWRState(
        b=np.zeros((S, P)),
        psi=np.ones(S),
        lam=priors.lambda_max / 2,
        tau=1.0,
    )
    if rj is not None:
        state.gamma = np.ones((S, P), dtype=np.int64)
        state.pi = np.full(P, 0.5)

    expected = {"b": (S, P), "psi_y": (S,), "gamma": (S, P), "pi": (P,)}
    for name, value in inits.items():
        if name in ("lambda", "tau"):
            value = float(value)
            setattr(state, "lam" if name == "lambda" else "tau", value)
            continue
        if name not in expected:
            raise ModelSpecError(f"unknown initial value {name!r}")
        if name in ("gamma", "pi") and rj is None:
            raise ModelSpecError(f"initial value {name!r} given without a reversible-jump layer")
        arr = np.array(value, dtype=np.int64 if name == "gamma" else float)
        if arr.shape != expected[name]:
            raise ModelSpecError(
                f"initial value {name!r} has shape {arr.shape}, expected {expected[name]}"
            )
        setattr(state, "psi" if name == "psi_y" else name, arr)

    if rj is not None:
        for j, value in rj.forced_indicators.items():
            if not 0 <= j < P:
                raise ModelSpecError(f"forced indicator for unknown predictor {j}")
            state.gamma[:, j] = value

    if not 0 < state.lam < priors.lambda_max:
        raise ModelSpecError(f"initial bandwidth {state.lam} outside (0, {priors.lambda_max})")
    if state.tau <= 0 or np.any(state.psi <= 0):
        raise ModelSpecError("initial tau and psi must be positive")
    return state


def log_likelihood_matrix(
    y: np.ndarray,
    X: np.ndarray,
    W: np.ndarray,
    b: np.ndarray,
    psi: np.ndarray,
) -> np.ndarray:
    """Per-observation log-densities, shape (N, S).

    Entry [k, i] is the log-density of observation k under unit i's local
    regression, with precision psi_i * W[k, i].
    """
    mu = X @ b.T
    precision = W * psi[None, :]
    resid = y[:, None] - mu
    with np.errstate(divide="ignore"):
        return 0.5 * (np.log(precision) - _LOG_2PI) - 0.5 * precision * resid**2


def unit_log_likelihood(
    y: np.ndarray,
    X: np.ndarray,
    w: np.ndarray,
    b_i: np.ndarray,
    psi_i: float,
) -> float:
    """Log-likelihood of unit i's local regression; ``w`` is W[:, i]."""
    precision = psi_i * w
    resid = y - X @ b_i
    with np.errstate(divide="ignore"):
        return float(np.sum(0.5 * (np.log(precision) - _LOG_2PI) - 0.5 * precision * resid**2))


def log_likelihood(data: SpatialData, state: GWRState, W: Optional[np.ndarray] = None) -> float:
    if W is None:
        W = build_kernel(data.distances, state.lam)
    return float(log_likelihood_matrix(data.y, data.X, W, state.effective_b(), state.psi).sum())


def log_prior(state: GWRState, priors: Priors) -> float:
    """Joint log prior density of the current state.

    In RJ mode only included coefficients carry a prior term: an excluded
    coefficient is not part of the model at that iteration.
    """
    if not 0 < state.lam < priors.lambda_max:
        return -np.inf

    coef_sd = 1.0 / np.sqrt(state.tau)
    coef_lp = stats.norm.logpdf(state.b, 0.0, coef_sd)
    if state.gamma is not None:
        coef_lp = coef_lp[state.gamma == 1]
    lp = float(np.sum(coef_lp))
    lp += float(np.sum(stats.gamma.logpdf(state.psi, a=priors.psi_shape, scale=1 / priors.psi_rate)))
    lp += float(stats.gamma.logpdf(state.tau, a=priors.tau_shape, scale=1 / priors.tau_rate))
    lp -= np.log(priors.lambda_max)

    if state.gamma is not None:
        lp += float(np.sum(stats.bernoulli.logpmf(state.gamma, state.pi[None, :])))
        lp += float(np.sum(stats.beta.logpdf(state.pi, priors.pi_alpha, priors.pi_beta)))
    return lp


def log_posterior(data: SpatialData, priors: Priors, state: GWRState) -> float:
    """Unnormalized log posterior; -inf outside the support."""
    lp = log_prior(state, priors)
    if not np.isfinite(lp):
        return lp
    return lp + log_likelihood(data, state)
