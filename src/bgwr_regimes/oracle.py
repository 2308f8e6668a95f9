"""Per-draw clustering of posterior coefficient surfaces.

Every retained MCMC draw gives an (S, P) matrix of local coefficients. A
clustering oracle fits a mixture to that matrix and returns a partition of
the S units. Draws whose fits keep failing are dropped from the ensemble and
recorded; they are never replaced by a default partition.
"""

import threading
import warnings
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Optional, Protocol, Union

import numpy as np
from sklearn.exceptions import ConvergenceWarning
from sklearn.mixture import BayesianGaussianMixture, GaussianMixture
from tqdm import tqdm

from bgwr_regimes.config import (
    GMM_COVARIANCE,
    GMM_N_INIT,
    GMM_REG_COVAR,
    MAX_COMPONENTS,
    MAX_RETRIES,
    MAX_WORKERS,
    MIN_SUCCESS_FRACTION,
    RANDOM_SEED,
    SELECTION_CRITERION,
)
from bgwr_regimes.errors import EnsembleTooSparseError, FitFailure, RunCancelled
from bgwr_regimes.models import DroppedDraw, OracleResult, PartitionEnsemble
from bgwr_regimes.workers import worker_count

DP_MAX_ITER = 500


class ClusteringOracle(Protocol):
    max_components: int

    def fit(self, matrix: np.ndarray, seed: int) -> OracleResult: ...


def _check_matrix(matrix: np.ndarray) -> np.ndarray:
    matrix = np.asarray(matrix, dtype=float)
    if matrix.ndim != 2 or matrix.shape[0] == 0:
        raise FitFailure(f"expected a non-empty 2-D matrix, got shape {matrix.shape}")
    if not np.all(np.isfinite(matrix)):
        raise FitFailure("coefficient matrix contains non-finite values")
    return matrix


def _positive_labels(labels: np.ndarray) -> np.ndarray:
    """Map arbitrary integer labels onto 1..k, preserving their order."""
    _, inverse = np.unique(labels, return_inverse=True)
    return inverse.astype(np.int64) + 1


class GaussianMixtureOracle:
    """Finite Gaussian mixture with the order chosen by an information criterion.

    Candidate orders 1..min(max_components, S) are fitted with the same seed.
    Orders whose fit raises or does not converge are excluded from the search;
    if none remain the draw fails.
    """

    def __init__(
        self,
        max_components: int = MAX_COMPONENTS,
        criterion: str = SELECTION_CRITERION,
        covariance_type: str = GMM_COVARIANCE,
        n_init: int = GMM_N_INIT,
        reg_covar: float = GMM_REG_COVAR,
    ):
        if criterion not in ("bic", "aic"):
            raise ValueError(f"Unknown selection criterion: {criterion!r}")
        if max_components < 1:
            raise ValueError("max_components must be >= 1")
        self.max_components = max_components
        self.criterion = criterion
        self.covariance_type = covariance_type
        self.n_init = n_init
        self.reg_covar = reg_covar

    def fit(self, matrix: np.ndarray, seed: int) -> OracleResult:
        matrix = _check_matrix(matrix)
        k_max = min(self.max_components, matrix.shape[0])

        best_gmm: Optional[GaussianMixture] = None
        best_score = np.inf
        errors: list[str] = []
        for k in range(1, k_max + 1):
            gmm = GaussianMixture(
                n_components=k,
                covariance_type=self.covariance_type,
                n_init=self.n_init,
                reg_covar=self.reg_covar,
                random_state=seed,
            )
            with warnings.catch_warnings():
                warnings.simplefilter("ignore", ConvergenceWarning)
                try:
                    gmm.fit(matrix)
                except (ValueError, np.linalg.LinAlgError) as err:
                    errors.append(f"k={k}: {err}")
                    continue
            if not gmm.converged_:
                errors.append(f"k={k}: did not converge")
                continue
            score = gmm.bic(matrix) if self.criterion == "bic" else gmm.aic(matrix)
            if not np.isfinite(score):
                errors.append(f"k={k}: non-finite {self.criterion}")
                continue
            if score < best_score:
                best_gmm, best_score = gmm, score

        if best_gmm is None:
            raise FitFailure("no mixture order could be fitted; " + "; ".join(errors[:3]))
        labels = _positive_labels(best_gmm.predict(matrix))
        return OracleResult(n_components=best_gmm.n_components, labels=labels)


class DirichletProcessOracle:
    """Truncated Dirichlet-process mixture; the order is the number of occupied components."""

    def __init__(
        self,
        max_components: int = MAX_COMPONENTS,
        covariance_type: str = GMM_COVARIANCE,
        reg_covar: float = GMM_REG_COVAR,
        max_iter: int = DP_MAX_ITER,
    ):
        if max_components < 1:
            raise ValueError("max_components must be >= 1")
        self.max_components = max_components
        self.covariance_type = covariance_type
        self.reg_covar = reg_covar
        self.max_iter = max_iter

    def fit(self, matrix: np.ndarray, seed: int) -> OracleResult:
        matrix = _check_matrix(matrix)
        dpmm = BayesianGaussianMixture(
            n_components=min(self.max_components, matrix.shape[0]),
            weight_concentration_prior_type="dirichlet_process",
            covariance_type=self.covariance_type,
            reg_covar=self.reg_covar,
            max_iter=self.max_iter,
            random_state=seed,
        )
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", ConvergenceWarning)
            try:
                dpmm.fit(matrix)
            except (ValueError, np.linalg.LinAlgError) as err:
                raise FitFailure(f"Dirichlet-process fit failed: {err}") from err
        if not dpmm.converged_:
            raise FitFailure("Dirichlet-process fit did not converge")
        labels = _positive_labels(dpmm.predict(matrix))
        return OracleResult(n_components=int(labels.max()), labels=labels)


ORACLES = {
    "gmm": GaussianMixtureOracle,
    "dpmm": DirichletProcessOracle,
}


def get_oracle(name: str, max_components: int = MAX_COMPONENTS) -> ClusteringOracle:
    try:
        return ORACLES[name](max_components=max_components)
    except KeyError:
        raise ValueError(f"Unknown clustering oracle: {name!r} (choose from {sorted(ORACLES)})")


def draw_seed(seed: int, draw: int, attempt: int = 0) -> int:
    """Deterministic oracle seed for one attempt on one draw."""
    return int(np.random.SeedSequence([seed, draw, attempt]).generate_state(1)[0])


def _validate_result(result: OracleResult, n_units: int, max_components: int) -> None:
    labels = np.asarray(result.labels)
    if labels.shape != (n_units,):
        raise ValueError(f"oracle returned {labels.shape} labels for {n_units} units")
    if labels.min() < 1:
        raise ValueError("oracle labels must be positive integers")
    if np.unique(labels).size > max_components:
        raise ValueError(f"oracle returned more than {max_components} clusters")


def _cluster_draw(
    oracle: ClusteringOracle,
    matrix: np.ndarray,
    seed: int,
    draw: int,
    max_retries: int,
    cancel_event: Optional[threading.Event],
) -> Union[tuple[OracleResult, int], DroppedDraw]:
    """Fit one draw, retrying with perturbed seeds. Returns (result, attempts) or a drop record."""
    reason = ""
    for attempt in range(max_retries + 1):
        if cancel_event is not None and cancel_event.is_set():
            raise RunCancelled(f"oracle batch cancelled before draw {draw}")
        try:
            result = oracle.fit(matrix, draw_seed(seed, draw, attempt))
        except FitFailure as err:
            reason = str(err)
            continue
        _validate_result(result, matrix.shape[0], oracle.max_components)
        return result, attempt + 1
    return DroppedDraw(draw_index=draw, reason=reason, attempts=max_retries + 1)


def cluster_draws(
    b: np.ndarray,
    oracle: ClusteringOracle,
    seed: int = RANDOM_SEED,
    max_retries: int = MAX_RETRIES,
    min_success_fraction: float = MIN_SUCCESS_FRACTION,
    max_workers: int = MAX_WORKERS,
    cancel_event: Optional[threading.Event] = None,
    progress: bool = False,
) -> PartitionEnsemble:
    """Cluster every draw of a (draws, S, P) coefficient tensor.

    Oracle calls run concurrently; each result is stored at its source draw
    index, so ensemble rows follow draw order regardless of completion order.
    """
    b = np.asarray(b)
    if b.ndim != 3:
        raise ValueError(f"coefficient tensor must be (draws, units, predictors), got {b.shape}")
    n_draws, n_units, _ = b.shape

    results: list = [None] * n_draws
    with ThreadPoolExecutor(max_workers=worker_count(n_draws, max_workers)) as executor:
        future_to_draw = {
            executor.submit(_cluster_draw, oracle, b[d], seed, d, max_retries, cancel_event): d
            for d in range(n_draws)
        }
        for future in tqdm(
            as_completed(future_to_draw),
            total=n_draws,
            desc="Clustering draws",
            unit="draw",
            disable=not progress,
        ):
            draw = future_to_draw[future]
            if future.cancelled():
                continue
            try:
                results[draw] = future.result()
            except Exception as err:
                # Stop queued draws; running ones finish their current fit
                for pending in future_to_draw:
                    pending.cancel()
                if not isinstance(err, RunCancelled):
                    raise

    if cancel_event is not None and cancel_event.is_set():
        finished = sum(r is not None for r in results)
        raise RunCancelled(f"oracle batch cancelled after {finished}/{n_draws} draws")

    dropped = [r for r in results if isinstance(r, DroppedDraw)]
    kept = [(d, r[0]) for d, r in enumerate(results) if not isinstance(r, DroppedDraw)]

    n_success = len(kept)
    if n_success == 0 or n_success / n_draws < min_success_fraction:
        raise EnsembleTooSparseError(n_success, n_draws, min_success_fraction)

    return PartitionEnsemble(
        labels=np.vstack([r.labels for _, r in kept]).astype(np.int64),
        draw_indices=np.array([d for d, _ in kept], dtype=np.int64),
        n_components=np.array([r.n_components for _, r in kept], dtype=np.int64),
        dropped=dropped,
        n_requested=n_draws,
    )
