"""
Bayesian GWR — Spatial Regime Recovery (Phase 2)

Clusters the coefficient surface of every retained posterior draw, then
reduces the resulting ensemble of partitions to one point estimate with
Dahl's method (and the per-unit mode as a baseline). Scores both against the
ground-truth regimes when the dataset carries them.

Usage:
  uv run python analysis/regimes.py [--dataset data/synthetic_regimes.parquet]
      [--draws-dir ...] [--oracle gmm|dpmm] [--max-components 10]
      [--max-retries 2] [--min-success 0.5]

Outputs (in results/<dataset>/regimes/<date>/):
  - data/:   Parquet files (partition ensemble, dropped draws, regime assignments)
  - regimes_manifest.json, run_info.json, run_log.txt
"""

from __future__ import annotations

import argparse
import json
from pathlib import Path

import numpy as np
import polars as pl

from bgwr_regimes.config import (
    MAX_COMPONENTS,
    MAX_RETRIES,
    MAX_WORKERS,
    MIN_SUCCESS_FRACTION,
    RANDOM_SEED,
)
from bgwr_regimes.models import SpatialData
from bgwr_regimes.oracle import ORACLES, get_oracle
from bgwr_regimes.output import load_dataset, load_draws, save_ensemble
from bgwr_regimes.pipeline import RegimeSummary, format_drop_report, summarize_regimes

try:
    from analysis.run_context import RunContext
except ModuleNotFoundError:
    from run_context import RunContext

# ── Primer ───────────────────────────────────────────────────────────────────

REGIMES_PRIMER = """\
# Spatial Regime Recovery

## Purpose

The GWR posterior gives thousands of draws of the local coefficient surface.
Units whose coefficients move together belong to the same latent regime.
This phase turns the draws into one spatial partition.

## Method

1. For every retained draw, fit a Gaussian mixture to the S x P coefficient
   matrix, choosing the number of components (1..10) by BIC (or a truncated
   Dirichlet-process mixture with `--oracle dpmm`).
2. Draws whose fit fails are retried with a perturbed seed; persistent
   failures are dropped and reported, never replaced by a default partition.
3. Build the co-membership matrix of every partition and average them (bBar).
4. **Dahl's method**: report the observed partition with the smallest squared
   distance to bBar. Ties go to the earliest draw.
5. **Mode baseline**: each unit's most frequent label.
6. Score both with the Rand Index (and ARI) against ground truth.

Comparing co-membership instead of labels side-steps label switching.

## Outputs

| File | Description |
|------|-------------|
| `data/partition_ensemble.parquet` | Label of every unit in every clustered draw |
| `data/dropped_draws.parquet` | Draws that failed to cluster, with reasons |
| `data/regime_assignments.parquet` | Dahl and mode labels per unit (+ truth) |
| `regimes_manifest.json` | Drop counts, chosen orders, scores |

## Interpretation Guide

- **Rand Index 1.0**: identical partitions up to relabeling.
- **Dahl vs mode**: Dahl's partition was actually sampled; the mode can mix
  labels from incompatible draws.
"""

# ── Constants ────────────────────────────────────────────────────────────────

DEFAULT_DATASET = Path("data") / "synthetic_regimes.parquet"


# ── Helpers ──────────────────────────────────────────────────────────────────


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Spatial regimes from GWR posterior draws")
    parser.add_argument("--dataset", type=Path, default=DEFAULT_DATASET)
    parser.add_argument(
        "--draws-dir", default=None, help="Override draws directory (default: latest gwr_mcmc)"
    )
    parser.add_argument("--oracle", choices=sorted(ORACLES), default="gmm")
    parser.add_argument("--max-components", type=int, default=MAX_COMPONENTS)
    parser.add_argument("--max-retries", type=int, default=MAX_RETRIES)
    parser.add_argument("--min-success", type=float, default=MIN_SUCCESS_FRACTION)
    parser.add_argument("--workers", type=int, default=MAX_WORKERS)
    parser.add_argument("--seed", type=int, default=RANDOM_SEED)
    return parser.parse_args()


def print_header(title: str) -> None:
    width = 80
    print(f"\n{'=' * width}")
    print(f"  {title}")
    print(f"{'=' * width}")


def regime_assignments(summary: RegimeSummary, data: SpatialData) -> pl.DataFrame:
    """One row per unit with its Dahl, mode and (if known) true regime."""
    columns = {
        "unit_id": list(data.unit_ids),
        "lon": data.coords[:, 0],
        "lat": data.coords[:, 1],
        "dahl": summary.dahl.partition,
        "mode": summary.mode,
        "co_membership_mean": summary.dahl.comembership.mean(axis=1),
    }
    if data.truth is not None:
        columns["truth"] = data.truth
    return pl.DataFrame(columns)


def print_scores(summary: RegimeSummary) -> None:
    if summary.scores is None:
        print("  No ground truth in dataset; skipping scores")
        return
    for name, score in summary.scores.items():
        print(f"  {name:5s} Rand = {score['rand_index']:.4f}   "
              f"ARI = {score['adjusted_rand_index']:.4f}   k = {score['n_clusters']}")


def save_manifest(manifest: dict, out_dir: Path) -> None:
    path = out_dir / "regimes_manifest.json"
    with open(path, "w") as f:
        json.dump(manifest, f, indent=2, default=str)
    print(f"  Saved: {path.name}")


# ── Main ─────────────────────────────────────────────────────────────────────


def main() -> None:
    args = parse_args()
    dataset_name = args.dataset.stem

    if args.draws_dir:
        draws_dir = Path(args.draws_dir)
    else:
        draws_dir = Path(f"results/{dataset_name}/gwr_mcmc/latest/data/draws")

    with RunContext(
        dataset=args.dataset,
        analysis_name="regimes",
        params=vars(args),
        primer=REGIMES_PRIMER,
    ) as ctx:
        print(f"Spatial regime recovery — {args.dataset}")
        print(f"Draws:     {draws_dir}")
        print(f"Output:    {ctx.run_dir}")

        # ── Phase 1: Load ──
        print_header("PHASE 1: LOADING DATA")
        data = load_dataset(args.dataset)
        draws = load_draws(draws_dir)
        print(f"  Units: {data.n_units}, retained draws: {draws.n_draws}")

        # ── Phase 2: Cluster every draw ──
        print_header(f"PHASE 2: PER-DRAW CLUSTERING ({args.oracle.upper()})")
        summary = summarize_regimes(
            draws,
            get_oracle(args.oracle, max_components=args.max_components),
            truth=data.truth,
            seed=args.seed,
            max_retries=args.max_retries,
            min_success_fraction=args.min_success,
            max_workers=args.workers,
            progress=True,
        )
        for line in format_drop_report(summary.ensemble):
            print(f"  {line}")
        orders, counts = np.unique(summary.ensemble.n_components, return_counts=True)
        for k, c in zip(orders, counts):
            print(f"    k={k}: {c} draws")

        # ── Phase 3: Consensus ──
        print_header("PHASE 3: CONSENSUS PARTITIONS")
        print(f"  Dahl: draw {summary.dahl.draw_index}, "
              f"{np.unique(summary.dahl.partition).size} regimes, "
              f"distance {summary.dahl.distances[summary.dahl.ensemble_index]:.3f}")
        print(f"  Mode: {np.unique(summary.mode).size} regimes")

        # ── Phase 4: Scores ──
        print_header("PHASE 4: ACCURACY")
        print_scores(summary)

        # ── Phase 5: Save ──
        print_header("PHASE 5: SAVE")
        save_ensemble(summary.ensemble, list(data.unit_ids), ctx.data_dir)
        regime_assignments(summary, data).write_parquet(ctx.data_dir / "regime_assignments.parquet")
        print("  Saved: regime_assignments.parquet")
        save_manifest(summary.manifest(), ctx.run_dir)


if __name__ == "__main__":
    main()
