"""MCMC drivers for the Bayesian GWR model.

Any object with a ``sample(data, priors, config, rj=None, inits=None,
cancel_event=None)`` method returning PosteriorDraws can drive the pipeline.
Two engines ship:

- GibbsSampler: conjugate Gibbs updates for b, tau, psi and pi, random-walk
  Metropolis for the bandwidth, and reversible-jump birth/death moves when a
  variable-selection layer is given. Chains run concurrently.
- PyMCSampler: the same (non-RJ) model compiled by PyMC and sampled with NUTS.
"""

import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Optional, Protocol

import numpy as np
import pymc as pm
import pytensor.tensor as pt
from pymc.exceptions import SamplingError
from scipy.linalg import cho_factor, cho_solve, solve_triangular
from tqdm import tqdm

from bgwr_regimes.errors import ModelSpecError, NumericalInstabilityError, RunCancelled
from bgwr_regimes.kernel import build_kernel
from bgwr_regimes.model import (
    GWRState,
    initial_state,
    log_likelihood_matrix,
    log_posterior,
    validate_inputs,
)
from bgwr_regimes.models import (
    MONITORS,
    RJ_MONITORS,
    PosteriorDraws,
    Priors,
    RJConfig,
    SamplerConfig,
    SpatialData,
)
from bgwr_regimes.rj import rj_sweep, update_inclusion_probabilities
from bgwr_regimes.workers import worker_count

TARGET_ACCEPT = 0.9


class Sampler(Protocol):
    def sample(
        self,
        data: SpatialData,
        priors: Priors,
        config: SamplerConfig,
        rj: Optional[RJConfig] = None,
        inits: Optional[dict] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> PosteriorDraws: ...


def chain_seed(seed: int, chain: int) -> np.random.SeedSequence:
    """Independent, reproducible random stream for one chain."""
    return np.random.SeedSequence([seed, chain])


# ── Gibbs / Metropolis engine ───────────────────────────────────────────────


class GibbsSampler:
    """Metropolis-within-Gibbs sampler with optional reversible-jump moves."""

    def sample(
        self,
        data: SpatialData,
        priors: Priors,
        config: SamplerConfig,
        rj: Optional[RJConfig] = None,
        inits: Optional[dict] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> PosteriorDraws:
        validate_inputs(data, priors)
        start = initial_state(data, priors, rj=rj, inits=inits)

        # Set on the first chain failure so sibling chains stop early
        abort = threading.Event()
        events = [abort] if cancel_event is None else [abort, cancel_event]

        results: list[Optional[tuple[dict, dict]]] = [None] * config.chains
        n_workers = worker_count(config.chains, config.max_workers)
        first_error: Optional[BaseException] = None

        with ThreadPoolExecutor(max_workers=n_workers) as executor:
            future_to_chain = {
                executor.submit(
                    self._run_chain, chain, data, priors, config, rj, start.copy(), events
                ): chain
                for chain in range(config.chains)
            }
            for future in as_completed(future_to_chain):
                chain = future_to_chain[future]
                try:
                    results[chain] = future.result()
                except Exception as err:
                    abort.set()
                    # A sibling's RunCancelled is a consequence, not the cause
                    if first_error is None or isinstance(first_error, RunCancelled):
                        first_error = err

        if first_error is not None:
            raise first_error

        names = MONITORS + (RJ_MONITORS if rj is not None else ())
        samples = {name: np.concatenate([r[0][name] for r in results]) for name in names}
        chain_ids = np.repeat(np.arange(config.chains), config.n_retained)
        stats = {key: [r[1][key] for r in results] for key in results[0][1]}
        return PosteriorDraws(samples=samples, chain=chain_ids, stats=stats)

    def _run_chain(
        self,
        chain: int,
        data: SpatialData,
        priors: Priors,
        config: SamplerConfig,
        rj: Optional[RJConfig],
        state: GWRState,
        events: list[threading.Event],
    ) -> tuple[dict, dict]:
        rng = np.random.default_rng(chain_seed(config.seed, chain))
        S, P = data.n_units, data.n_predictors
        n = config.n_retained

        out = {
            "b": np.empty((n, S, P)),
            "psi_y": np.empty((n, S)),
            "lambda": np.empty(n),
            "tau": np.empty(n),
        }
        if rj is not None:
            out["gamma"] = np.empty((n, S, P), dtype=np.int64)
            out["pi"] = np.empty((n, P))

        if not np.isfinite(log_posterior(data, priors, state)):
            raise NumericalInstabilityError("initial values have non-finite log density", chain, 0)

        W = build_kernel(data.distances, state.lam)
        lambda_accepted = births = deaths = 0
        row = 0

        for t in tqdm(
            range(1, config.iterations + 1),
            desc=f"Chain {chain}",
            unit="iter",
            position=chain,
            disable=not config.progress,
        ):
            if any(e.is_set() for e in events):
                raise RunCancelled(f"chain {chain} cancelled before iteration {t}")

            try:
                self._update_coefficients(rng, data, W, state)
            except np.linalg.LinAlgError as err:
                raise NumericalInstabilityError(f"coefficient update failed: {err}", chain, t)
            self._update_tau(rng, priors, state)
            self._update_psi(rng, data, priors, W, state)
            W, accepted = self._update_bandwidth(rng, data, priors, config, W, state)
            lambda_accepted += accepted
            if rj is not None:
                born, died = rj_sweep(rng, data, W, state, rj)
                births += born
                deaths += died
                update_inclusion_probabilities(rng, state, priors)

            lp = log_posterior(data, priors, state)
            if not np.isfinite(lp):
                raise NumericalInstabilityError(f"log posterior became {lp}", chain, t)

            if config.is_retained(t):
                out["b"][row] = state.b
                out["psi_y"][row] = state.psi
                out["lambda"][row] = state.lam
                out["tau"][row] = state.tau
                if rj is not None:
                    out["gamma"][row] = state.gamma
                    out["pi"][row] = state.pi
                row += 1

        stats = {"lambda_accept_rate": lambda_accepted / config.iterations}
        if rj is not None:
            stats["births"] = births
            stats["deaths"] = deaths
        return out, stats

    @staticmethod
    def _update_coefficients(
        rng: np.random.Generator,
        data: SpatialData,
        W: np.ndarray,
        state: GWRState,
    ) -> None:
        """Draw each unit's included coefficients from their Normal full conditional.

        Precision: tau * I + X' D_i X with D_i = diag(psi_i * W[:, i]).
        Excluded coefficients (gamma == 0) are left untouched.
        """
        X, y = data.X, data.y
        for i in range(data.n_units):
            if state.gamma is None:
                cols = slice(None)
                k = data.n_predictors
            else:
                cols = np.flatnonzero(state.gamma[i])
                k = cols.size
                if k == 0:
                    continue
            Xc = X[:, cols]
            d = state.psi[i] * W[:, i]
            Q = state.tau * np.eye(k) + Xc.T @ (d[:, None] * Xc)
            factor = cho_factor(Q, lower=True)
            mean = cho_solve(factor, Xc.T @ (d * y))
            noise = solve_triangular(factor[0], rng.standard_normal(k), lower=True, trans="T")
            state.b[i, cols] = mean + noise

    @staticmethod
    def _update_tau(rng: np.random.Generator, priors: Priors, state: GWRState) -> None:
        if state.gamma is None:
            included = state.b.ravel()
        else:
            included = state.b[state.gamma == 1]
        shape = priors.tau_shape + included.size / 2
        rate = priors.tau_rate + 0.5 * float(np.sum(included**2))
        state.tau = rng.gamma(shape, 1.0 / rate)

    @staticmethod
    def _update_psi(
        rng: np.random.Generator,
        data: SpatialData,
        priors: Priors,
        W: np.ndarray,
        state: GWRState,
    ) -> None:
        resid = data.y[:, None] - data.X @ state.effective_b().T
        shape = priors.psi_shape + data.n_obs / 2
        rate = priors.psi_rate + 0.5 * np.sum(W * resid**2, axis=0)
        state.psi = rng.gamma(shape, 1.0 / rate)

    @staticmethod
    def _update_bandwidth(
        rng: np.random.Generator,
        data: SpatialData,
        priors: Priors,
        config: SamplerConfig,
        W: np.ndarray,
        state: GWRState,
    ) -> tuple[np.ndarray, int]:
        """Random-walk Metropolis step for lambda under its flat prior."""
        proposal = state.lam + config.lambda_step * rng.standard_normal()
        if not 0 < proposal < priors.lambda_max:
            return W, 0

        b = state.effective_b()
        ll_cur = log_likelihood_matrix(data.y, data.X, W, b, state.psi).sum()
        W_new = build_kernel(data.distances, proposal)
        ll_new = log_likelihood_matrix(data.y, data.X, W_new, b, state.psi).sum()
        # -inf (underflowed weights) or nan proposals are rejected
        if np.log(rng.uniform()) < ll_new - ll_cur:
            state.lam = proposal
            return W_new, 1
        return W, 0


# ── PyMC engine ─────────────────────────────────────────────────────────────


class PyMCSampler:
    """NUTS sampling of the GWR model through PyMC.

    NUTS cannot make trans-dimensional moves, so the reversible-jump layer is
    rejected. Cancellation is honored before and after the PyMC run only.
    """

    def __init__(self, target_accept: float = TARGET_ACCEPT):
        self.target_accept = target_accept

    def build_model(self, data: SpatialData, priors: Priors) -> pm.Model:
        S, N = data.n_units, data.n_obs
        coords = {
            "unit": list(data.unit_ids),
            "predictor": [f"x{j}" for j in range(data.n_predictors)],
            "obs": np.arange(N),
        }
        with pm.Model(coords=coords) as model:
            tau = pm.Gamma("tau", alpha=priors.tau_shape, beta=priors.tau_rate)
            b = pm.Normal("b", mu=0.0, sigma=1.0 / pt.sqrt(tau), dims=("unit", "predictor"))
            psi = pm.Gamma("psi_y", alpha=priors.psi_shape, beta=priors.psi_rate, dims="unit")
            lam = pm.Uniform("lambda", lower=0.0, upper=priors.lambda_max)

            dist = pt.as_tensor_variable(np.array(data.distances))
            X = pt.as_tensor_variable(np.array(data.X))
            W = pt.exp(-dist / lam)
            mu = pt.dot(X, b.T)
            sigma = 1.0 / pt.sqrt(W * psi[None, :])

            # Element-wise Normal over the (obs, unit) grid: a sum of
            # independent log-densities, no covariance factorization
            pm.Normal(
                "y",
                mu=mu,
                sigma=sigma,
                observed=np.repeat(data.y[:, None], S, axis=1),
                dims=("obs", "unit"),
            )
        return model

    def sample(
        self,
        data: SpatialData,
        priors: Priors,
        config: SamplerConfig,
        rj: Optional[RJConfig] = None,
        inits: Optional[dict] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> PosteriorDraws:
        if rj is not None:
            raise ModelSpecError(
                "the PyMC engine cannot make birth/death moves; use the gibbs engine "
                "for reversible-jump variable selection"
            )
        validate_inputs(data, priors)
        start = initial_state(data, priors, inits=inits)
        if cancel_event is not None and cancel_event.is_set():
            raise RunCancelled("PyMC run cancelled before sampling")

        model = self.build_model(data, priors)
        initvals = {"b": start.b, "psi_y": start.psi, "lambda": start.lam, "tau": start.tau}
        with model:
            try:
                idata = pm.sample(
                    draws=config.iterations - config.burnin,
                    tune=config.burnin,
                    chains=config.chains,
                    cores=worker_count(config.chains, config.max_workers),
                    target_accept=self.target_accept,
                    random_seed=config.seed,
                    initvals=initvals,
                    progressbar=config.progress,
                    compute_convergence_checks=False,
                )
            except SamplingError as err:
                # PyMC does not report which chain or draw failed
                raise NumericalInstabilityError(str(err), chain=None, iteration=None) from err

        if cancel_event is not None and cancel_event.is_set():
            raise RunCancelled("PyMC run cancelled")

        samples = {}
        for name in MONITORS:
            arr = idata.posterior[name].values[:, config.thin - 1 :: config.thin]
            samples[name] = arr.reshape((-1,) + arr.shape[2:])
        n_per_chain = samples["tau"].shape[0] // config.chains
        chain_ids = np.repeat(np.arange(config.chains), n_per_chain)

        stats = {}
        if "diverging" in idata.sample_stats:
            diverging = idata.sample_stats["diverging"].values
            stats["divergences"] = [int(d.sum()) for d in diverging]
        return PosteriorDraws(samples=samples, chain=chain_ids, stats=stats)


SAMPLERS = {
    "gibbs": GibbsSampler,
    "pymc": PyMCSampler,
}


def get_sampler(name: str) -> Sampler:
    try:
        return SAMPLERS[name]()
    except KeyError:
        raise ValueError(f"Unknown sampler engine: {name!r} (choose from {sorted(SAMPLERS)})")
