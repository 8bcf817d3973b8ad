from __future__ import annotations

import json
from pathlib import Path

import anndata as ad
import numpy as np
import pandas as pd
import pytest

from cellqc import cli
from cellqc.core.metrics import calculate_qc_metrics
from cellqc.pipeline import run as run_module
from cellqc.pipeline.run import QCRunSummary


def _tiny_adata() -> ad.AnnData:
    counts = np.arange(1.0, 25.0).reshape(6, 4)
    return ad.AnnData(
        X=counts.copy(),
        obs=pd.DataFrame(index=[f"c{i}" for i in range(6)]),
        var=pd.DataFrame(index=["a", "b", "c", "d"]),
        layers={"counts": counts},
    )


def _capture_run_qc(monkeypatch, tmp_path: Path) -> dict:
    captured: dict = {}

    def _fake_run_qc(cfg):
        captured.update(cfg)
        return QCRunSummary(
            outdir=tmp_path,
            n_cells=6,
            n_genes=4,
            n_flagged={"filter_on_total_counts": 1},
            n_flagged_any=1,
        )

    monkeypatch.setattr(run_module, "run_qc", _fake_run_qc)
    return captured


def test_qc_subcommand_applies_cli_overrides(monkeypatch, tmp_path: Path, capsys):
    captured = _capture_run_qc(monkeypatch, tmp_path)
    rc = cli.main(
        [
            "qc",
            "--h5ad",
            "in.h5ad",
            "--outdir",
            str(tmp_path),
            "--assay",
            "tpm",
            "--nmads",
            "3",
            "--no-plots",
            "--write-h5ad",
        ]
    )
    assert rc == 0
    assert captured["h5ad_path"] == "in.h5ad"
    assert captured["qc"] == {"detection_assay": "tpm"}
    assert captured["nmads"] == 3.0
    assert captured["plots"] is False
    assert captured["write_h5ad"] is True
    out = capsys.readouterr().out
    assert "filter_on_total_counts=1" in out
    assert "n_flagged_any=1" in out


def test_qc_subcommand_merges_json_config(monkeypatch, tmp_path: Path):
    captured = _capture_run_qc(monkeypatch, tmp_path)
    cfg_path = tmp_path / "cfg.json"
    cfg_path.write_text(
        json.dumps({"h5ad_path": "from_cfg.h5ad", "qc": {"feature_controls": {"mt": ["a"]}}}),
        encoding="utf-8",
    )
    rc = cli.main(["qc", "--config", str(cfg_path), "--assay", "X"])
    assert rc == 0
    assert captured["h5ad_path"] == "from_cfg.h5ad"
    assert captured["qc"] == {"feature_controls": {"mt": ["a"]}, "detection_assay": "X"}


def test_qc_subcommand_requires_input():
    with pytest.raises(SystemExit, match="h5ad"):
        cli.main(["qc"])


def test_check_stale_reports_current_stale_and_missing(tmp_path: Path, capsys):
    adata = _tiny_adata()
    missing_path = tmp_path / "missing.h5ad"
    adata.write_h5ad(missing_path)

    calculate_qc_metrics(adata)
    current_path = tmp_path / "current.h5ad"
    adata.write_h5ad(current_path)
    stale_path = tmp_path / "stale.h5ad"
    adata[:3].copy().write_h5ad(stale_path)

    assert cli.main(["check-stale", "--h5ad", str(current_path)]) == 0
    assert "qc_metrics=current" in capsys.readouterr().out
    assert cli.main(["check-stale", "--h5ad", str(stale_path)]) == 1
    assert "qc_metrics=stale" in capsys.readouterr().out
    assert cli.main(["check-stale", "--h5ad", str(missing_path)]) == 1
    assert "qc_metrics=missing" in capsys.readouterr().out


def test_check_stale_missing_file(tmp_path: Path):
    with pytest.raises(FileNotFoundError):
        cli.main(["check-stale", "--h5ad", str(tmp_path / "absent.h5ad")])
