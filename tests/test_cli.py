"""
Tests for CLI argument parsing in cli.py.

Uses monkeypatch to intercept run_pipeline, verifying that flag combinations
reach the sampler, priors and oracle settings without running any MCMC.

Run: uv run pytest tests/test_cli.py -v
"""

import json

import numpy as np
import pytest

from bgwr_regimes.cli import main
from bgwr_regimes.consensus import dahl_consensus, mode_partition
from bgwr_regimes.models import PartitionEnsemble, PosteriorDraws
from bgwr_regimes.oracle import DirichletProcessOracle, GaussianMixtureOracle
from bgwr_regimes.output import load_dataset
from bgwr_regimes.pipeline import RegimeSummary
from bgwr_regimes.sampler import GibbsSampler, PyMCSampler

# ── Helpers ──────────────────────────────────────────────────────────────────


@pytest.fixture
def dataset(tmp_path):
    path = tmp_path / "lattice.parquet"
    main(["simulate", "--n-side", "4", "--predictors", "1", "--output", str(path)])
    return path


@pytest.fixture
def mock_pipeline(monkeypatch):
    """Patch run_pipeline to capture its arguments and return a tiny result."""
    calls = []

    def fake_run_pipeline(data, sampler, oracle, priors, config, rj=None, **kwargs):
        calls.append(
            {
                "data": data,
                "sampler": sampler,
                "oracle": oracle,
                "priors": priors,
                "config": config,
                "rj": rj,
                "kwargs": kwargs,
            }
        )
        S, P = data.n_units, data.n_predictors
        draws = PosteriorDraws(
            samples={
                "b": np.zeros((2, S, P)),
                "psi_y": np.ones((2, S)),
                "lambda": np.full(2, 5.0),
                "tau": np.ones(2),
            },
            chain=np.array([0, 1]),
        )
        labels = np.tile(data.truth, (2, 1))
        ensemble = PartitionEnsemble(
            labels=labels,
            draw_indices=np.arange(2),
            n_components=np.array([2, 2]),
            n_requested=2,
        )
        summary = RegimeSummary(
            ensemble=ensemble,
            dahl=dahl_consensus(ensemble),
            mode=mode_partition(ensemble),
            scores={"dahl": {"rand_index": 1.0, "adjusted_rand_index": 1.0, "n_clusters": 2}},
        )
        return draws, summary

    monkeypatch.setattr("bgwr_regimes.cli.run_pipeline", fake_run_pipeline)
    return calls


# ── simulate ─────────────────────────────────────────────────────────────────


class TestSimulate:
    def test_writes_dataset(self, dataset) -> None:
        data = load_dataset(dataset)
        assert data.n_units == 16
        assert data.n_predictors == 2
        assert set(np.unique(data.truth)) == {1, 2}

    def test_quadrants(self, tmp_path) -> None:
        path = tmp_path / "quad.parquet"
        main(["simulate", "--n-side", "4", "--pattern", "quadrants", "-o", str(path)])
        assert set(np.unique(load_dataset(path).truth)) == {1, 2, 3, 4}


# ── run ──────────────────────────────────────────────────────────────────────


class TestRun:
    def test_defaults(self, dataset, mock_pipeline) -> None:
        main(["run", str(dataset)])
        call = mock_pipeline[0]
        assert isinstance(call["sampler"], GibbsSampler)
        assert isinstance(call["oracle"], GaussianMixtureOracle)
        assert call["rj"] is None
        assert call["priors"].psi_shape == 1.0
        assert call["config"].iterations == 3000
        assert call["kwargs"] == {"max_retries": 2, "min_success_fraction": 0.5}

    def test_reversible_jump_flag(self, dataset, mock_pipeline) -> None:
        main(["run", str(dataset), "--rj"])
        assert mock_pipeline[0]["rj"] is not None

    def test_engine_and_oracle(self, dataset, mock_pipeline) -> None:
        main(["run", str(dataset), "--engine", "pymc", "--oracle", "dpmm", "--max-components", "4"])
        call = mock_pipeline[0]
        assert isinstance(call["sampler"], PyMCSampler)
        assert isinstance(call["oracle"], DirichletProcessOracle)
        assert call["oracle"].max_components == 4

    def test_psi_prior_flags(self, dataset, mock_pipeline) -> None:
        main(["run", str(dataset), "--psi-shape", "100", "--psi-rate", "100"])
        priors = mock_pipeline[0]["priors"]
        assert priors.psi_shape == 100.0
        assert priors.psi_rate == 100.0

    def test_schedule_flags(self, dataset, mock_pipeline) -> None:
        main(["run", str(dataset), "--iterations", "50", "--burnin", "10", "--thin", "5",
              "--chains", "3", "--seed", "8"])
        config = mock_pipeline[0]["config"]
        assert (config.iterations, config.burnin, config.thin, config.chains, config.seed) == (
            50, 10, 5, 3, 8
        )

    def test_prints_report(self, dataset, mock_pipeline, capsys) -> None:
        main(["run", str(dataset)])
        out = capsys.readouterr().out
        assert "Draws clustered: 2 / 2 (0 dropped)" in out
        assert "Rand=1.000" in out

    def test_output_dir(self, dataset, mock_pipeline, tmp_path) -> None:
        out_dir = tmp_path / "run"
        main(["run", str(dataset), "--output", str(out_dir)])
        assert (out_dir / "draws" / "draws_header.json").exists()
        assert (out_dir / "partition_ensemble.parquet").exists()
        manifest = json.loads((out_dir / "regimes_manifest.json").read_text())
        assert manifest["n_dropped"] == 0
        assert manifest["dahl_partition"] == load_dataset(dataset).truth.tolist()

    def test_unknown_engine(self, dataset) -> None:
        with pytest.raises(SystemExit):
            main(["run", str(dataset), "--engine", "stan"])

    def test_missing_command(self) -> None:
        with pytest.raises(SystemExit):
            main([])
