"""Command-line interface for the Bayesian GWR regime pipeline."""

import argparse
import json
from pathlib import Path

from bgwr_regimes.config import (
    DEFAULT_BURNIN,
    DEFAULT_CHAINS,
    DEFAULT_ITERATIONS,
    DEFAULT_THIN,
    MAX_COMPONENTS,
    MAX_RETRIES,
    MIN_SUCCESS_FRACTION,
    PSI_RATE,
    PSI_SHAPE,
    RANDOM_SEED,
)
from bgwr_regimes.models import Priors, RJConfig, SamplerConfig
from bgwr_regimes.oracle import ORACLES, get_oracle
from bgwr_regimes.output import load_dataset, save_dataset, save_draws, save_ensemble
from bgwr_regimes.pipeline import format_drop_report, run_pipeline
from bgwr_regimes.sampler import SAMPLERS, get_sampler
from bgwr_regimes.simulate import simulate_regimes

DEFAULT_DATASET = Path("data") / "synthetic_regimes.parquet"


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bgwr-regimes",
        description="Bayesian GWR with consensus clustering of posterior coefficient surfaces.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sim = sub.add_parser("simulate", help="Write a synthetic lattice with known regimes")
    sim.add_argument("--n-side", type=int, default=8, help="Lattice side length (default: 8)")
    sim.add_argument("--predictors", type=int, default=2, help="Covariates besides the intercept")
    sim.add_argument("--pattern", choices=["halves", "quadrants"], default="halves")
    sim.add_argument("--noise", type=float, default=0.5, help="Response noise sd (default: 0.5)")
    sim.add_argument("--seed", type=int, default=RANDOM_SEED)
    sim.add_argument(
        "--output",
        "-o",
        type=Path,
        default=DEFAULT_DATASET,
        help=f"Parquet output path (default: {DEFAULT_DATASET})",
    )

    run = sub.add_parser("run", help="Sample the GWR posterior and cluster its draws")
    run.add_argument("dataset", type=Path, help="Parquet unit table written by 'simulate'")
    run.add_argument("--engine", choices=sorted(SAMPLERS), default="gibbs")
    run.add_argument("--rj", action="store_true", help="Enable reversible-jump variable selection")
    run.add_argument("--iterations", type=int, default=DEFAULT_ITERATIONS)
    run.add_argument("--burnin", type=int, default=DEFAULT_BURNIN)
    run.add_argument("--thin", type=int, default=DEFAULT_THIN)
    run.add_argument("--chains", type=int, default=DEFAULT_CHAINS)
    run.add_argument("--seed", type=int, default=RANDOM_SEED)
    run.add_argument(
        "--psi-shape",
        type=float,
        default=PSI_SHAPE,
        help=f"Shape of the Gamma prior on psi (default: {PSI_SHAPE})",
    )
    run.add_argument(
        "--psi-rate",
        type=float,
        default=PSI_RATE,
        help=f"Rate of the Gamma prior on psi (default: {PSI_RATE})",
    )
    run.add_argument("--oracle", choices=sorted(ORACLES), default="gmm")
    run.add_argument("--max-components", type=int, default=MAX_COMPONENTS)
    run.add_argument("--max-retries", type=int, default=MAX_RETRIES)
    run.add_argument("--min-success", type=float, default=MIN_SUCCESS_FRACTION)
    run.add_argument(
        "--output",
        "-o",
        type=Path,
        default=None,
        help="Directory for draws, partitions and the manifest (default: don't save)",
    )
    run.add_argument("--progress", action="store_true", help="Show progress bars")
    return parser


def main(argv: list[str] | None = None) -> None:
    args = _build_parser().parse_args(argv)

    if args.command == "simulate":
        data = simulate_regimes(
            n_side=args.n_side,
            n_predictors=args.predictors,
            pattern=args.pattern,
            noise_sd=args.noise,
            seed=args.seed,
        )
        print("Writing synthetic dataset:")
        save_dataset(data, args.output)
        return

    data = load_dataset(args.dataset)
    priors = Priors(psi_shape=args.psi_shape, psi_rate=args.psi_rate)
    config = SamplerConfig(
        iterations=args.iterations,
        burnin=args.burnin,
        thin=args.thin,
        chains=args.chains,
        seed=args.seed,
        progress=args.progress,
    )
    rj = RJConfig() if args.rj else None

    print(f"Units: {data.n_units}, predictors: {data.n_predictors}")
    print(f"Engine: {args.engine}{' + reversible jump' if rj else ''}, oracle: {args.oracle}")
    draws, summary = run_pipeline(
        data,
        get_sampler(args.engine),
        get_oracle(args.oracle, max_components=args.max_components),
        priors,
        config,
        rj=rj,
        max_retries=args.max_retries,
        min_success_fraction=args.min_success,
    )

    for line in format_drop_report(summary.ensemble):
        print(line)
    print(f"Dahl consensus: draw {summary.dahl.draw_index}, "
          f"{len(set(summary.dahl.partition.tolist()))} regimes")
    if summary.scores is not None:
        for name, score in summary.scores.items():
            print(f"  {name:5s} Rand={score['rand_index']:.3f} "
                  f"ARI={score['adjusted_rand_index']:.3f} k={score['n_clusters']}")

    if args.output is not None:
        save_draws(draws, args.output / "draws")
        save_ensemble(summary.ensemble, list(data.unit_ids), args.output)
        manifest_path = args.output / "regimes_manifest.json"
        with open(manifest_path, "w") as f:
            json.dump(summary.manifest(), f, indent=2, default=str)
        print(f"  Saved: {manifest_path.name}")
