from __future__ import annotations

import json
import logging
from pathlib import Path

import anndata as ad
import numpy as np
import pandas as pd
import pytest

from cellqc.core.metrics import calculate_qc_metrics, metrics_are_current
from cellqc.pipeline.run import run_qc


def _make_tiny_adata(n_cells: int = 40, n_genes: int = 30) -> ad.AnnData:
    rng = np.random.default_rng(0)
    counts = rng.poisson(4.0, size=(n_cells, n_genes)).astype(float)
    # A damaged cell: few counts, mostly mitochondrial.
    counts[0] = 0.0
    counts[0, :2] = 30.0
    obs = pd.DataFrame(
        {
            "plate_position": [f"{'ABCDEFGH'[i // 12]}{i % 12 + 1:02d}" for i in range(n_cells)],
            "batch": pd.Categorical(["b1", "b2"] * (n_cells // 2)),
        },
        index=[f"cell{i}" for i in range(n_cells)],
    )
    var = pd.DataFrame(
        {"length": np.linspace(300.0, 6000.0, n_genes)},
        index=[f"g{i}" for i in range(n_genes)],
    )
    return ad.AnnData(X=np.log1p(counts), obs=obs, var=var, layers={"counts": counts})


def _config(tmp_path: Path, h5ad_path: Path) -> dict:
    return {
        "h5ad_path": str(h5ad_path),
        "outdir": str(tmp_path / "out"),
        "qc": {"feature_controls": {"mt": ["g0", "g1"]}},
        "nmads": 3,
        "outliers": {"pct_counts_mt": {"mad_threshold": 3, "side": "upper"}},
        "reduced_dims": ["pca", "tsne", "qc_pca"],
        "color_by": "batch",
        "length_column": "length",
        "plate_position_column": "plate_position",
        "write_h5ad": True,
    }


def test_run_qc_writes_tables_figures_and_summary(tmp_path: Path):
    h5ad_path = tmp_path / "tiny.h5ad"
    _make_tiny_adata().write_h5ad(h5ad_path)

    summary = run_qc(_config(tmp_path, h5ad_path))
    outdir = tmp_path / "out"

    assert summary.n_cells == 40
    assert summary.n_genes == 30
    assert summary.n_flagged["filter_on_pct_counts_mt"] >= 1
    assert summary.n_flagged_any >= 1
    assert (outdir / "logs" / "cellqc.log").exists()
    assert (outdir / "summary.json").exists()

    obs_table = pd.read_csv(outdir / "tables" / "obs_qc_metrics.csv", index_col="cell")
    assert obs_table.shape[0] == 40
    for col in (
        "total_counts",
        "pct_counts_mt",
        "filter_on_total_counts",
        "filter_on_total_features_by_counts",
        "filter_on_pct_counts_mt",
        "outlier_pct_counts_mt",
    ):
        assert col in obs_table.columns
    assert bool(obs_table.loc["cell0", "filter_on_pct_counts_mt"])

    var_table = pd.read_csv(outdir / "tables" / "var_qc_metrics.csv", index_col="gene")
    assert var_table.shape[0] == 30
    assert var_table["is_feature_control"].sum() == 2

    names = {p.name for p in summary.figures}
    for expected in (
        "highest_expression_counts.png",
        "qc_scatter_counts.png",
        "hist_filter_on_pct_counts_mt.png",
        "pca.png",
        "tsne.png",
        "qc_metric_pca.png",
        "expression_vs_length.png",
        "plate_position.png",
    ):
        assert expected in names
    assert all(p.exists() for p in summary.figures)

    payload = json.loads((outdir / "summary.json").read_text(encoding="utf-8"))
    assert payload["feature_controls"] == ["mt"]
    assert payload["n_flagged_any"] == summary.n_flagged_any
    cutoffs = payload["outlier_cutoffs"]["filter_on_total_counts"]
    assert cutoffs["upper"] is None
    assert payload["plot_style"] is not None

    written = ad.read_h5ad(summary.h5ad_path)
    assert metrics_are_current(written)
    assert "filter_on_total_counts" in written.obs.columns


def test_run_qc_from_json_config_without_plots(tmp_path: Path):
    h5ad_path = tmp_path / "tiny.h5ad"
    _make_tiny_adata().write_h5ad(h5ad_path)
    cfg = _config(tmp_path, h5ad_path)
    cfg["plots"] = False
    cfg["write_h5ad"] = False
    cfg_path = tmp_path / "cfg.json"
    cfg_path.write_text(json.dumps(cfg), encoding="utf-8")

    summary = run_qc(cfg_path)
    assert summary.figures == []
    assert summary.h5ad_path is None
    payload = json.loads((tmp_path / "out" / "summary.json").read_text(encoding="utf-8"))
    assert payload["plot_style"] is None


def test_run_qc_recomputes_stale_metrics_and_logs(tmp_path: Path, caplog):
    adata = _make_tiny_adata()
    calculate_qc_metrics(adata)
    subset = adata[10:].copy()
    cfg = {"h5ad_path": "unused.h5ad", "outdir": str(tmp_path / "out"), "plots": False}

    caplog.set_level(logging.WARNING)
    summary = run_qc(cfg, adata=subset)
    assert summary.n_cells == 30
    assert "do not match" in caplog.text
    assert metrics_are_current(subset)


def test_run_qc_rejects_bad_config(tmp_path: Path):
    with pytest.raises(KeyError, match="h5ad_path"):
        run_qc({"outdir": str(tmp_path / "out")})
    with pytest.raises(TypeError):
        run_qc(["not", "a", "config"])
    with pytest.raises(ValueError, match="reduced_dims"):
        run_qc(
            {"h5ad_path": "unused.h5ad", "outdir": str(tmp_path / "out"), "reduced_dims": ["umap"]},
            adata=_make_tiny_adata(),
        )


def test_run_qc_rejects_unknown_top_level_key(tmp_path: Path):
    adata = _make_tiny_adata()
    cfg = {"h5ad_path": "unused.h5ad", "outdir": str(tmp_path / "out"), "n_tops": 10}
    with pytest.raises(ValueError, match="n_tops"):
        run_qc(cfg, adata=adata)
    assert "total_counts" not in adata.obs.columns
