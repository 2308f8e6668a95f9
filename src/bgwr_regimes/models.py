"""Data classes for spatial inputs, sampler settings, posterior draws and partitions."""

from collections import Counter
from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from bgwr_regimes.config import (
    DEFAULT_BURNIN,
    DEFAULT_CHAINS,
    DEFAULT_ITERATIONS,
    DEFAULT_THIN,
    DISTANCE_MAX,
    LAMBDA_STEP,
    MAX_WORKERS,
    PI_ALPHA,
    PI_BETA,
    PSI_RATE,
    PSI_SHAPE,
    RANDOM_SEED,
    RJ_PROPOSAL_MEAN,
    RJ_PROPOSAL_SCALE,
    TAU_RATE,
    TAU_SHAPE,
)
from bgwr_regimes.errors import ModelSpecError

# Parameter names reported by every sampler
MONITORS = ("b", "psi_y", "lambda", "tau")
RJ_MONITORS = ("gamma", "pi")


def _frozen_array(values, dtype=float) -> np.ndarray:
    arr = np.array(values, dtype=dtype)
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True)
class SpatialData:
    """Spatial units with their covariates, response and pairwise distances.

    Every unit's local regression sees all N observations, so N must equal
    the number of units S (one observation per unit).
    """

    unit_ids: tuple
    coords: np.ndarray  # (S, 2)
    X: np.ndarray  # (N, P)
    y: np.ndarray  # (N,)
    distances: np.ndarray  # (S, S), normalized
    truth: Optional[np.ndarray] = None  # (S,) ground-truth regime labels

    def __post_init__(self) -> None:
        object.__setattr__(self, "unit_ids", tuple(self.unit_ids))
        object.__setattr__(self, "coords", _frozen_array(self.coords))
        object.__setattr__(self, "X", _frozen_array(self.X))
        object.__setattr__(self, "y", _frozen_array(self.y))
        object.__setattr__(self, "distances", _frozen_array(self.distances))
        if self.truth is not None:
            object.__setattr__(self, "truth", _frozen_array(self.truth, dtype=np.int64))

    @property
    def n_units(self) -> int:
        return self.distances.shape[0]

    @property
    def n_obs(self) -> int:
        return self.y.shape[0]

    @property
    def n_predictors(self) -> int:
        return self.X.shape[1]


@dataclass(frozen=True)
class Priors:
    """Hyperparameters of the hierarchical GWR priors (Gamma is shape/rate)."""

    tau_shape: float = TAU_SHAPE
    tau_rate: float = TAU_RATE
    psi_shape: float = PSI_SHAPE
    psi_rate: float = PSI_RATE
    lambda_max: float = DISTANCE_MAX
    pi_alpha: float = PI_ALPHA
    pi_beta: float = PI_BETA


@dataclass(frozen=True)
class RJConfig:
    """Reversible-jump variable selection settings.

    forced_indicators pins the inclusion indicator of a predictor (column
    index -> 0 or 1) for every unit and every iteration of the chain.
    """

    proposal_mean: float = RJ_PROPOSAL_MEAN
    proposal_scale: float = RJ_PROPOSAL_SCALE
    forced_indicators: dict = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.proposal_scale <= 0:
            raise ModelSpecError(f"RJ proposal scale must be positive, got {self.proposal_scale}")
        for j, value in self.forced_indicators.items():
            if value not in (0, 1):
                raise ModelSpecError(f"forced indicator for predictor {j} must be 0 or 1")


@dataclass(frozen=True)
class SamplerConfig:
    """Iteration schedule and execution settings for an MCMC run.

    Iterations are numbered 1..iterations; iteration t is retained when
    t > burnin and (t - burnin) is a multiple of thin.
    """

    iterations: int = DEFAULT_ITERATIONS
    burnin: int = DEFAULT_BURNIN
    thin: int = DEFAULT_THIN
    chains: int = DEFAULT_CHAINS
    seed: int = RANDOM_SEED
    max_workers: int = MAX_WORKERS
    lambda_step: float = LAMBDA_STEP
    progress: bool = False

    def __post_init__(self) -> None:
        if self.burnin < 0 or self.iterations <= self.burnin:
            raise ModelSpecError(
                f"need 0 <= burnin < iterations (got burnin={self.burnin}, "
                f"iterations={self.iterations})"
            )
        if self.thin < 1 or self.chains < 1:
            raise ModelSpecError("thin and chains must both be >= 1")
        if self.n_retained < 1:
            raise ModelSpecError("schedule retains no draws; lower thin or burnin")
        if self.lambda_step <= 0:
            raise ModelSpecError("lambda_step must be positive")

    @property
    def n_retained(self) -> int:
        """Retained draws per chain."""
        return (self.iterations - self.burnin) // self.thin

    def is_retained(self, iteration: int) -> bool:
        return iteration > self.burnin and (iteration - self.burnin) % self.thin == 0


@dataclass
class PosteriorDraws:
    """Monitored parameter tensors, each with a leading retained-draw axis.

    Chains are concatenated in chain order; ``chain`` gives the chain id of
    every retained draw.
    """

    samples: dict
    chain: np.ndarray
    stats: dict = field(default_factory=dict)  # per-chain sampler diagnostics

    def __post_init__(self) -> None:
        for arr in self.samples.values():
            arr.setflags(write=False)

    def __getitem__(self, name: str) -> np.ndarray:
        return self.samples[name]

    def __contains__(self, name: str) -> bool:
        return name in self.samples

    @property
    def b(self) -> np.ndarray:
        return self.samples["b"]

    @property
    def gamma(self) -> Optional[np.ndarray]:
        return self.samples.get("gamma")

    @property
    def n_draws(self) -> int:
        return self.chain.shape[0]

    @property
    def n_chains(self) -> int:
        return int(np.unique(self.chain).size)

    def by_chain(self, name: str) -> np.ndarray:
        """Reshape a monitored tensor to (chains, draws_per_chain, ...)."""
        arr = self.samples[name]
        return arr.reshape((self.n_chains, -1) + arr.shape[1:])


@dataclass(frozen=True)
class OracleResult:
    """Model-order choice and partition returned by a clustering oracle."""

    n_components: int
    labels: np.ndarray  # (S,), positive integers


@dataclass(frozen=True)
class DroppedDraw:
    """Record of a draw excluded from the ensemble after repeated fit failures."""

    draw_index: int
    reason: str
    attempts: int


@dataclass
class PartitionEnsemble:
    """Partitions of the retained draws that clustered successfully."""

    labels: np.ndarray  # (M, S)
    draw_indices: np.ndarray  # (M,), source draw of each row
    n_components: np.ndarray  # (M,), oracle model-order choice per row
    dropped: list = field(default_factory=list)
    n_requested: int = 0

    @property
    def n_draws(self) -> int:
        return self.labels.shape[0]

    @property
    def n_units(self) -> int:
        return self.labels.shape[1]

    @property
    def n_dropped(self) -> int:
        return len(self.dropped)

    def drop_reasons(self) -> dict[str, int]:
        return dict(Counter(d.reason for d in self.dropped))


@dataclass(frozen=True)
class ConsensusResult:
    """Dahl's consensus partition and the quantities it was selected from."""

    partition: np.ndarray  # (S,)
    ensemble_index: int  # row of the ensemble that was selected
    draw_index: int  # source draw of that row
    distances: np.ndarray  # (M,) squared Frobenius distance per row
    comembership: np.ndarray  # (S, S) bBar
