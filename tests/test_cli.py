"""Smoke tests for the command line interface."""

import json

import numpy as np
import pytest

from mixgibbs.cli import main


def test_generate_and_run_gaussian(tmp_path, capsys):
    """Generate a data set, run chains on it and save the summary."""
    data_dir = tmp_path / "example"
    main(["generate", "--data", str(data_dir), "--K", "2", "--n", "50", "--dim", "2"])
    assert np.load(data_dir / "data.npy").shape == (50, 2)
    assert not (data_dir / "known.npy").exists()

    output = tmp_path / "summary.json"
    main(
        [
            "run",
            "--data",
            str(data_dir),
            "--K",
            "2",
            "--n_iter",
            "20",
            "--burn",
            "5",
            "--chains",
            "2",
            "--output",
            str(output),
        ]
    )
    out = capsys.readouterr().out
    assert "GIBBS SUMMARY" in out
    with open(output, encoding="utf-8") as f:
        summary = json.load(f)
    assert len(summary["weights"]["mean"]) == 2
    assert len(summary["rand_index"]) == 2
    assert len(summary["runtimes"]) == 2


def test_generate_and_run_bernoulli_with_known_labels(tmp_path, capsys):
    """Known labels saved by generate are honored by run."""
    data_dir = tmp_path / "binary"
    main(
        [
            "generate",
            "--data",
            str(data_dir),
            "--model",
            "bernoulli",
            "--K",
            "3",
            "--n",
            "40",
            "--dim",
            "6",
            "--known_fraction",
            "0.5",
        ]
    )
    X = np.load(data_dir / "data.npy")
    assert set(np.unique(X)) <= {0, 1}
    assert np.load(data_dir / "known.npy").sum() == 20

    main(
        [
            "run",
            "--data",
            str(data_dir),
            "--model",
            "bernoulli",
            "--K",
            "3",
            "--n_iter",
            "10",
            "--burn",
            "0",
            "--chains",
            "1",
        ]
    )
    assert "Posterior mean weights" in capsys.readouterr().out


def test_no_command_prints_help(capsys):
    """Without a command the help text is printed."""
    main([])
    assert "generate" in capsys.readouterr().out


def test_burn_must_leave_sweeps(tmp_path, capsys):
    """A burn-in as long as the run is rejected before any chain starts."""
    data_dir = tmp_path / "example"
    main(["generate", "--data", str(data_dir), "--K", "2", "--n", "20", "--dim", "1"])
    with pytest.raises(SystemExit):
        main(["run", "--data", str(data_dir), "--K", "2", "--n_iter", "5", "--burn", "5"])
    assert "--burn must be smaller than --n_iter" in capsys.readouterr().err
