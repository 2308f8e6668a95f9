"""
Bayesian GWR — Posterior Sampling (Phase 1)

Fits the hierarchical Bayesian geographically weighted regression to a unit
table and saves the posterior draws of the local coefficients, the kernel
bandwidth, and the precision parameters. Optionally adds reversible-jump
variable selection over the local coefficients.

Usage:
  uv run python analysis/gwr_mcmc.py [--dataset data/synthetic_regimes.parquet]
      [--engine gibbs|pymc] [--rj] [--iterations 3000] [--burnin 1000]
      [--thin 2] [--chains 2] [--psi-shape 1] [--psi-rate 1]

Outputs (in results/<dataset>/gwr_mcmc/<date>/):
  - data/:   Parquet files (draw tensors + JSON shape header, coefficient summaries)
  - sampling_manifest.json, run_info.json, run_log.txt
"""

from __future__ import annotations

import argparse
import json
import time
from pathlib import Path

import arviz as az
import numpy as np
import polars as pl

from bgwr_regimes.config import (
    DEFAULT_BURNIN,
    DEFAULT_CHAINS,
    DEFAULT_ITERATIONS,
    DEFAULT_THIN,
    PSI_RATE,
    PSI_SHAPE,
    RANDOM_SEED,
)
from bgwr_regimes.models import PosteriorDraws, Priors, RJConfig, SamplerConfig, SpatialData
from bgwr_regimes.output import load_dataset, save_draws
from bgwr_regimes.sampler import SAMPLERS, get_sampler

try:
    from analysis.run_context import RunContext
except ModuleNotFoundError:
    from run_context import RunContext

# ── Primer ───────────────────────────────────────────────────────────────────
# Written to results/<dataset>/gwr_mcmc/README.md by RunContext on each run.

GWR_PRIMER = """\
# Bayesian GWR Posterior Sampling

## Purpose

Geographically weighted regression lets every spatial unit carry its own
regression coefficients, borrowing strength from nearby units through a
distance kernel. The Bayesian version puts priors on the coefficients, the
kernel bandwidth and the observation precision, so every quantity comes with a
full posterior. The draws saved here feed the regimes phase, which clusters
each draw's coefficient surface.

## Method

```
y ~ Normal(X b_i, diag(1 / (psi_i * W[:, i])))   -- one local regression per unit i
W[k, i] = exp(-dist[k, i] / lambda)               -- exponential kernel
b_ij    ~ Normal(0, 1/tau)
psi_i   ~ Gamma(a_psi, b_psi)                      -- default Gamma(1, 1)
lambda  ~ Uniform(0, D_max)                        -- distances normalized to D_max = 10
tau     ~ Gamma(1, 1)
```

The likelihood is a sum of independent per-observation Normal log-densities,
so no covariance matrix is ever factorized.

With `--rj`, every coefficient gets an inclusion indicator
`gamma_ij ~ Bernoulli(pi_j)`, `pi_j ~ Beta(1, 1)`, updated by reversible-jump
birth/death moves. Excluded coefficients keep their last value and do not
enter the likelihood.

## Engines

- `gibbs`: conjugate Gibbs updates plus random-walk Metropolis on lambda;
  supports `--rj`.
- `pymc`: NUTS through PyMC; no `--rj`.

## Outputs

| File | Description |
|------|-------------|
| `data/draws/draws_<name>.parquet` | Flat draw tensors (b, psi_y, lambda, tau, gamma, pi, chain) |
| `data/draws/draws_header.json` | Tensor shapes and dtypes |
| `data/coefficients.parquet` | Per unit/predictor posterior mean, sd, inclusion rate |
| `sampling_manifest.json` | Settings, timing, convergence diagnostics |

## Caveats

- R-hat needs at least two chains to be meaningful.
- The Gamma(1, 1) and Gamma(100, 100) psi priors both appear in practice;
  the prior is a flag, not a constant.
"""

# ── Constants ────────────────────────────────────────────────────────────────

DEFAULT_DATASET = Path("data") / "synthetic_regimes.parquet"
SCALAR_PARAMS = ("lambda", "tau")

# Convergence thresholds
RHAT_THRESHOLD = 1.01
ESS_THRESHOLD = 400


# ── Helpers ──────────────────────────────────────────────────────────────────


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Bayesian GWR posterior sampling")
    parser.add_argument("--dataset", type=Path, default=DEFAULT_DATASET)
    parser.add_argument("--engine", choices=sorted(SAMPLERS), default="gibbs")
    parser.add_argument("--rj", action="store_true", help="Reversible-jump variable selection")
    parser.add_argument("--iterations", type=int, default=DEFAULT_ITERATIONS)
    parser.add_argument("--burnin", type=int, default=DEFAULT_BURNIN)
    parser.add_argument("--thin", type=int, default=DEFAULT_THIN)
    parser.add_argument("--chains", type=int, default=DEFAULT_CHAINS)
    parser.add_argument("--seed", type=int, default=RANDOM_SEED)
    parser.add_argument("--psi-shape", type=float, default=PSI_SHAPE)
    parser.add_argument("--psi-rate", type=float, default=PSI_RATE)
    return parser.parse_args()


def print_header(title: str) -> None:
    width = 80
    print(f"\n{'=' * width}")
    print(f"  {title}")
    print(f"{'=' * width}")


# ── Phase 2: Convergence Diagnostics ────────────────────────────────────────


def check_convergence(draws: PosteriorDraws) -> dict:
    """R-hat and bulk ESS for the scalar parameters and the coefficient surface."""
    print_header("CONVERGENCE DIAGNOSTICS")

    idata = az.from_dict(
        posterior={name: draws.by_chain(name) for name in SCALAR_PARAMS + ("b",)}
    )
    rhat = az.rhat(idata)
    ess = az.ess(idata)

    diag: dict = {}
    for name in SCALAR_PARAMS + ("b",):
        rhat_max = float(rhat[name].max())
        ess_min = float(ess[name].min())
        diag[f"{name}_rhat_max"] = rhat_max
        diag[f"{name}_ess_min"] = ess_min
        rhat_status = "OK" if rhat_max < RHAT_THRESHOLD else "WARNING"
        ess_status = "OK" if ess_min > ESS_THRESHOLD else "WARNING"
        print(f"  {name:7s} R-hat max = {rhat_max:.4f} {rhat_status:8s}"
              f"ESS min = {ess_min:8.1f} {ess_status}")

    diag["all_ok"] = all(
        diag[f"{n}_rhat_max"] < RHAT_THRESHOLD and diag[f"{n}_ess_min"] > ESS_THRESHOLD
        for n in SCALAR_PARAMS + ("b",)
    )
    for key, values in draws.stats.items():
        print(f"  {key}: {values}")
    return diag


# ── Phase 3: Posterior Summaries ────────────────────────────────────────────


def summarize_coefficients(draws: PosteriorDraws, data: SpatialData) -> pl.DataFrame:
    """Long table of per-unit, per-predictor coefficient summaries.

    In RJ runs, the coefficient mean and sd are taken over the draws in which
    the coefficient was included; inclusion_rate is the share of such draws.
    """
    b = draws.b
    n_draws, S, P = b.shape
    if draws.gamma is not None:
        included = draws.gamma == 1
    else:
        included = np.ones_like(b, dtype=bool)

    counts = included.sum(axis=0)
    masked = np.where(included, b, np.nan)
    with np.errstate(invalid="ignore"):
        means = np.where(counts > 0, np.nansum(masked, axis=0) / np.maximum(counts, 1), np.nan)
        sq = np.where(included, (b - means[None]) ** 2, 0.0).sum(axis=0)
        sds = np.where(counts > 1, np.sqrt(sq / np.maximum(counts - 1, 1)), np.nan)

    return pl.DataFrame(
        {
            "unit_id": np.repeat(np.asarray(data.unit_ids), P),
            "predictor": np.tile(np.arange(P), S),
            "b_mean": means.ravel(),
            "b_sd": sds.ravel(),
            "inclusion_rate": (counts / n_draws).ravel(),
        }
    )


def save_manifest(manifest: dict, out_dir: Path) -> None:
    path = out_dir / "sampling_manifest.json"
    with open(path, "w") as f:
        json.dump(manifest, f, indent=2, default=str)
    print(f"  Saved: {path.name}")


# ── Main ─────────────────────────────────────────────────────────────────────


def main() -> None:
    args = parse_args()

    with RunContext(
        dataset=args.dataset,
        analysis_name="gwr_mcmc",
        params=vars(args),
        primer=GWR_PRIMER,
    ) as ctx:
        print(f"Bayesian GWR sampling — {args.dataset}")
        print(f"Output:    {ctx.run_dir}")

        # ── Phase 1: Load data and sample ──
        print_header("PHASE 1: LOAD DATA AND SAMPLE")
        data = load_dataset(args.dataset)
        print(f"  Units: {data.n_units}, predictors: {data.n_predictors}")

        priors = Priors(psi_shape=args.psi_shape, psi_rate=args.psi_rate)
        config = SamplerConfig(
            iterations=args.iterations,
            burnin=args.burnin,
            thin=args.thin,
            chains=args.chains,
            seed=args.seed,
            progress=True,
        )
        rj = RJConfig() if args.rj else None
        print(f"  Engine: {args.engine}{' + reversible jump' if rj else ''}")
        print(f"  Schedule: {config.iterations} iterations, burn-in {config.burnin}, "
              f"thin {config.thin}, {config.chains} chains, seed {config.seed}")

        t0 = time.time()
        draws = get_sampler(args.engine).sample(data, priors, config, rj=rj)
        sampling_time = time.time() - t0
        print(f"  Sampling complete in {sampling_time:.1f}s ({draws.n_draws} retained draws)")

        # ── Phase 2: Convergence ──
        diag = check_convergence(draws)

        # ── Phase 3: Summaries ──
        print_header("PHASE 3: POSTERIOR SUMMARIES")
        lam = draws["lambda"]
        print(f"  lambda: mean={lam.mean():.3f}, 95% interval "
              f"[{np.quantile(lam, 0.025):.3f}, {np.quantile(lam, 0.975):.3f}]")
        coefs = summarize_coefficients(draws, data)
        coefs.write_parquet(ctx.data_dir / "coefficients.parquet")
        print("  Saved: coefficients.parquet")

        # ── Phase 4: Save ──
        print_header("PHASE 4: SAVE DRAWS")
        save_draws(draws, ctx.data_dir / "draws")
        save_manifest(
            {
                "engine": args.engine,
                "reversible_jump": rj is not None,
                "priors": vars(priors),
                "n_draws": draws.n_draws,
                "sampling_time_s": sampling_time,
                "convergence": diag,
                "sampler_stats": draws.stats,
            },
            ctx.run_dir,
        )


if __name__ == "__main__":
    main()
