"""End-to-end orchestration: sample the GWR posterior, then recover its regimes."""

import threading
from collections import Counter
from dataclasses import dataclass
from typing import Optional

import numpy as np

from bgwr_regimes.config import MAX_RETRIES, MAX_WORKERS, MIN_SUCCESS_FRACTION, RANDOM_SEED
from bgwr_regimes.consensus import dahl_consensus, mode_partition
from bgwr_regimes.models import (
    ConsensusResult,
    PartitionEnsemble,
    PosteriorDraws,
    Priors,
    RJConfig,
    SamplerConfig,
    SpatialData,
)
from bgwr_regimes.oracle import ClusteringOracle, cluster_draws
from bgwr_regimes.sampler import Sampler
from bgwr_regimes.scoring import score_partitions


@dataclass
class RegimeSummary:
    """Everything the regimes report needs from one clustering run."""

    ensemble: PartitionEnsemble
    dahl: ConsensusResult
    mode: np.ndarray
    scores: Optional[dict] = None

    def manifest(self) -> dict:
        """JSON-ready summary, including how many draws were dropped and why."""
        out = {
            "n_draws": self.ensemble.n_requested,
            "n_clustered": self.ensemble.n_draws,
            "n_dropped": self.ensemble.n_dropped,
            "drop_reasons": self.ensemble.drop_reasons(),
            "components_chosen": {
                int(k): int(v) for k, v in sorted(Counter(self.ensemble.n_components).items())
            },
            "dahl_draw_index": self.dahl.draw_index,
            "dahl_distance": float(self.dahl.distances[self.dahl.ensemble_index]),
            "dahl_partition": self.dahl.partition.tolist(),
            "mode_partition": self.mode.tolist(),
        }
        if self.scores is not None:
            out["scores"] = self.scores
        return out


def summarize_regimes(
    draws: PosteriorDraws,
    oracle: ClusteringOracle,
    truth: Optional[np.ndarray] = None,
    seed: int = RANDOM_SEED,
    max_retries: int = MAX_RETRIES,
    min_success_fraction: float = MIN_SUCCESS_FRACTION,
    max_workers: int = MAX_WORKERS,
    cancel_event: Optional[threading.Event] = None,
    progress: bool = False,
) -> RegimeSummary:
    """Cluster every retained draw, then reduce the ensemble to point partitions."""
    ensemble = cluster_draws(
        draws.b,
        oracle,
        seed=seed,
        max_retries=max_retries,
        min_success_fraction=min_success_fraction,
        max_workers=max_workers,
        cancel_event=cancel_event,
        progress=progress,
    )
    dahl = dahl_consensus(ensemble)
    mode = mode_partition(ensemble)
    scores = None
    if truth is not None:
        scores = score_partitions({"dahl": dahl.partition, "mode": mode}, truth)
    return RegimeSummary(ensemble=ensemble, dahl=dahl, mode=mode, scores=scores)


def run_pipeline(
    data: SpatialData,
    sampler: Sampler,
    oracle: ClusteringOracle,
    priors: Priors,
    config: SamplerConfig,
    rj: Optional[RJConfig] = None,
    cancel_event: Optional[threading.Event] = None,
    **cluster_kwargs,
) -> tuple[PosteriorDraws, RegimeSummary]:
    draws = sampler.sample(data, priors, config, rj=rj, cancel_event=cancel_event)
    summary = summarize_regimes(
        draws,
        oracle,
        truth=data.truth,
        seed=config.seed,
        cancel_event=cancel_event,
        progress=config.progress,
        **cluster_kwargs,
    )
    return draws, summary


def format_drop_report(ensemble: PartitionEnsemble) -> list[str]:
    lines = [
        f"Draws clustered: {ensemble.n_draws} / {ensemble.n_requested} "
        f"({ensemble.n_dropped} dropped)"
    ]
    for reason, count in sorted(ensemble.drop_reasons().items(), key=lambda kv: -kv[1]):
        lines.append(f"  {count:5d} x {reason}")
    return lines
