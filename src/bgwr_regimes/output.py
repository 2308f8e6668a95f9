"""Parquet persistence for datasets, posterior draws and partition ensembles.

Tensors are stored as flat parquet columns; their shapes and dtypes live in
a JSON header next to them so they can be restored exactly.
"""

import json
from dataclasses import asdict
from pathlib import Path

import numpy as np
import polars as pl

from bgwr_regimes.config import DISTANCE_MAX
from bgwr_regimes.kernel import great_circle_distances, normalize_distances
from bgwr_regimes.models import DroppedDraw, PartitionEnsemble, PosteriorDraws, SpatialData

DRAWS_HEADER = "draws_header.json"


# ── Datasets ────────────────────────────────────────────────────────────────


def dataset_to_frame(data: SpatialData) -> pl.DataFrame:
    columns = {
        "unit_id": list(data.unit_ids),
        "lon": data.coords[:, 0],
        "lat": data.coords[:, 1],
    }
    for j in range(data.n_predictors):
        columns[f"x{j}"] = data.X[:, j]
    columns["y"] = data.y
    if data.truth is not None:
        columns["truth"] = data.truth
    return pl.DataFrame(columns)


def save_dataset(data: SpatialData, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    dataset_to_frame(data).write_parquet(path)
    print(f"  {path} ({data.n_units} units, {data.n_predictors} predictors)")


def load_dataset(path: Path, max_distance: float = DISTANCE_MAX) -> SpatialData:
    """Read a unit table and rebuild its normalized great-circle distances."""
    df = pl.read_parquet(path)
    x_cols = sorted((c for c in df.columns if c.startswith("x")), key=lambda c: int(c[1:]))
    lon = df["lon"].to_numpy()
    lat = df["lat"].to_numpy()
    return SpatialData(
        unit_ids=df["unit_id"].to_list(),
        coords=np.column_stack([lon, lat]),
        X=df.select(x_cols).to_numpy(),
        y=df["y"].to_numpy(),
        distances=normalize_distances(great_circle_distances(lon, lat), max_distance),
        truth=df["truth"].to_numpy() if "truth" in df.columns else None,
    )


# ── Posterior draws ─────────────────────────────────────────────────────────


def save_draws(draws: PosteriorDraws, out_dir: Path) -> None:
    out_dir.mkdir(parents=True, exist_ok=True)
    header = {"tensors": {}, "stats": draws.stats}
    tensors = dict(draws.samples, chain=draws.chain)
    for name, arr in tensors.items():
        pl.DataFrame({"value": arr.ravel()}).write_parquet(out_dir / f"draws_{name}.parquet")
        header["tensors"][name] = {"shape": list(arr.shape), "dtype": str(arr.dtype)}
    with open(out_dir / DRAWS_HEADER, "w") as f:
        json.dump(header, f, indent=2, default=str)
    print(f"  Saved: {len(tensors)} tensors, {draws.n_draws} draws -> {out_dir}")


def load_draws(out_dir: Path) -> PosteriorDraws:
    with open(out_dir / DRAWS_HEADER) as f:
        header = json.load(f)
    tensors = {}
    for name, meta in header["tensors"].items():
        flat = pl.read_parquet(out_dir / f"draws_{name}.parquet")["value"].to_numpy()
        tensors[name] = flat.astype(meta["dtype"]).reshape(meta["shape"])
    chain = tensors.pop("chain")
    return PosteriorDraws(samples=tensors, chain=chain, stats=header.get("stats", {}))


# ── Partitions ──────────────────────────────────────────────────────────────


def ensemble_to_frame(ensemble: PartitionEnsemble, unit_ids: list[str]) -> pl.DataFrame:
    """Long table: one row per (draw, unit)."""
    m, s = ensemble.labels.shape
    return pl.DataFrame(
        {
            "draw_index": np.repeat(ensemble.draw_indices, s),
            "n_components": np.repeat(ensemble.n_components, s),
            "unit_id": list(unit_ids) * m,
            "label": ensemble.labels.ravel(),
        }
    )


def dropped_to_frame(dropped: list[DroppedDraw]) -> pl.DataFrame:
    schema = {"draw_index": pl.Int64, "reason": pl.Utf8, "attempts": pl.Int64}
    return pl.DataFrame([asdict(d) for d in dropped], schema=schema)


def save_ensemble(ensemble: PartitionEnsemble, unit_ids: list[str], out_dir: Path) -> None:
    out_dir.mkdir(parents=True, exist_ok=True)
    ensemble_to_frame(ensemble, unit_ids).write_parquet(out_dir / "partition_ensemble.parquet")
    dropped_to_frame(ensemble.dropped).write_parquet(out_dir / "dropped_draws.parquet")
    print(f"  Saved: partition_ensemble.parquet ({ensemble.n_draws} draws)")
    print(f"  Saved: dropped_draws.parquet ({ensemble.n_dropped} draws)")


def load_ensemble(out_dir: Path) -> PartitionEnsemble:
    df = pl.read_parquet(out_dir / "partition_ensemble.parquet")
    per_draw = df.group_by("draw_index", maintain_order=True).agg(
        pl.col("n_components").first(), pl.col("label")
    )
    dropped_df = pl.read_parquet(out_dir / "dropped_draws.parquet")
    dropped = [DroppedDraw(**row) for row in dropped_df.iter_rows(named=True)]
    labels = np.vstack([np.asarray(row, dtype=np.int64) for row in per_draw["label"].to_list()])
    return PartitionEnsemble(
        labels=labels,
        draw_indices=per_draw["draw_index"].to_numpy().astype(np.int64),
        n_components=per_draw["n_components"].to_numpy().astype(np.int64),
        dropped=dropped,
        n_requested=labels.shape[0] + len(dropped),
    )
