"""QC pipeline: metrics -> outlier flags -> tables, figures and a run summary."""

from __future__ import annotations

import importlib.metadata as importlib_metadata
import platform
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import matplotlib

# Use a non-interactive backend for reproducible headless runs.
matplotlib.use("Agg")
import numpy as np
import pandas as pd

from cellqc._version import __version__
from cellqc.config import (
    check_pipeline_keys,
    load_json_config,
    outlier_config_from_dict,
    qc_config_from_dict,
)
from cellqc.core.metrics import UNS_KEY, calculate_qc_metrics, metrics_are_current
from cellqc.core.outliers import annotate_outliers, flag_low_quality_cells
from cellqc.core.types import OutlierResult, QCConfig
from cellqc.pipeline.io import close_logger, read_h5ad, setup_logger, write_json, write_table
from cellqc.plotting.expression import plot_expression_vs_length, plot_plate_position
from cellqc.plotting.qc import plot_highest_expression, plot_outlier_histogram, plot_qc_scatter
from cellqc.plotting.reduced_dims import (
    plot_diffusion_map,
    plot_pca,
    plot_reduced_dim,
    plot_tsne,
    run_qc_metric_pca,
)
from cellqc.plotting.styles import apply_plot_style, plot_style_dict
from cellqc.plotting.utils import sanitize_label, save_figure

REDUCED_DIMS = ("pca", "tsne", "diffmap", "qc_pca")


@dataclass(frozen=True)
class QCRunSummary:
    outdir: Path
    n_cells: int
    n_genes: int
    n_flagged: dict[str, int]
    n_flagged_any: int
    tables: list[Path] = field(default_factory=list)
    figures: list[Path] = field(default_factory=list)
    h5ad_path: Path | None = None


def _now_utc_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _finite_or_none(value: float) -> float | None:
    return float(value) if np.isfinite(value) else None


def _package_version(name: str) -> str:
    try:
        return importlib_metadata.version(name)
    except importlib_metadata.PackageNotFoundError:
        return "not installed"


def _resolve_config(config: dict[str, Any] | str | Path) -> dict[str, Any]:
    if isinstance(config, (str, Path)):
        cfg = load_json_config(config)
    elif isinstance(config, dict):
        cfg = dict(config)
    else:
        raise TypeError(f"config must be a dict or a path, got {type(config).__name__}.")
    check_pipeline_keys(cfg)
    return cfg


def _collect_outlier_results(
    adata: Any,
    cfg: dict[str, Any],
    qc_cfg: QCConfig,
    feature_control_names: tuple[str, ...],
    logger: Any,
) -> dict[str, tuple[str, OutlierResult, bool]]:
    """Run configured flags; returns obs flag column -> (metric, result, log scale)."""
    collected: dict[str, tuple[str, OutlierResult, bool]] = {}
    if bool(cfg.get("flag_low_quality", True)):
        results = flag_low_quality_cells(
            adata,
            assay=qc_cfg.detection_assay,
            nmads=float(cfg.get("nmads", 5.0)),
            log=True,
            control_sets=feature_control_names,
            logger=logger,
        )
        for metric, result in results.items():
            is_library_metric = not metric.startswith("pct_")
            collected[f"filter_on_{metric}"] = (metric, result, is_library_metric)

    configured = cfg.get("outliers") or {}
    if not isinstance(configured, dict):
        raise ValueError("'outliers' must map obs columns to outlier settings.")
    plan = {str(col): outlier_config_from_dict(settings) for col, settings in configured.items()}
    if plan:
        results = annotate_outliers(adata, plan, logger=logger)
        for metric, result in results.items():
            collected[f"outlier_{metric}"] = (metric, result, plan[metric].log_transform)
    return collected


def _draw_figures(
    adata: Any,
    cfg: dict[str, Any],
    qc_cfg: QCConfig,
    flags: dict[str, tuple[str, OutlierResult, bool]],
    fig_dir: Path,
    logger: Any,
) -> list[Path]:
    apply_plot_style()
    assay = qc_cfg.detection_assay
    color_by = cfg.get("color_by")
    seed = int(cfg.get("seed", 0))
    written: list[Path] = []

    def _save(fig: Any, stem: str) -> None:
        out = fig_dir / f"{sanitize_label(stem, max_len=64)}.png"
        save_figure(fig, out, bbox_tight=True)
        written.append(out)

    fig, _ = plot_highest_expression(adata, assay=assay, n_top=int(cfg.get("n_top", 50)))
    _save(fig, f"highest_expression_{assay}")

    scatter_color = next((col for col in flags if col.startswith("filter_on_total_")), None)
    fig, _ = plot_qc_scatter(
        adata, f"total_{assay}", f"total_features_by_{assay}", color=scatter_color
    )
    _save(fig, f"qc_scatter_{assay}")

    for flag_col, (metric, result, log_scale) in flags.items():
        fig, _ = plot_outlier_histogram(
            adata.obs[metric].to_numpy(dtype=float),
            result,
            log_transform=log_scale,
            title=metric,
        )
        _save(fig, f"hist_{flag_col}")

    reduced = [str(name) for name in cfg.get("reduced_dims", ["pca"])]
    unknown = sorted(set(reduced) - set(REDUCED_DIMS))
    if unknown:
        raise ValueError(f"Unknown reduced_dims: {unknown}. Use {list(REDUCED_DIMS)}.")
    plot_assay = str(cfg.get("plot_assay", "X"))
    if "pca" in reduced:
        fig, _ = plot_pca(adata, assay=plot_assay, color_by=color_by, recompute=True)
        _save(fig, "pca")
    if "tsne" in reduced:
        fig, _ = plot_tsne(
            adata, assay=plot_assay, color_by=color_by, seed=seed, recompute=True
        )
        _save(fig, "tsne")
    if "diffmap" in reduced:
        fig, _ = plot_diffusion_map(
            adata, assay=plot_assay, color_by=color_by, seed=seed, recompute=True
        )
        _save(fig, "diffusion_map")
    if "qc_pca" in reduced:
        run_qc_metric_pca(adata, assay=assay)
        fig, _ = plot_reduced_dim(
            adata, "X_pca_qc", color_by=scatter_color or color_by, title="PCA of QC metrics"
        )
        _save(fig, "qc_metric_pca")

    length_col = cfg.get("length_column")
    if length_col:
        fig, _ = plot_expression_vs_length(
            adata, length_column=str(length_col), assay=plot_assay
        )
        _save(fig, f"expression_vs_{length_col}")

    plate_col = cfg.get("plate_position_column")
    if plate_col:
        fig, _ = plot_plate_position(
            adata, position_column=str(plate_col), color_by=f"total_{assay}"
        )
        _save(fig, "plate_position")

    logger.info("Wrote %d figures to %s", len(written), fig_dir.as_posix())
    return written


def run_qc(config: dict[str, Any] | str | Path, *, adata: Any = None) -> QCRunSummary:
    """Run the QC pipeline described by `config` (dict or JSON path).

    `adata` may be passed to skip reading `h5ad_path`; it is modified in place.
    """
    cfg = _resolve_config(config)
    if adata is None and "h5ad_path" not in cfg:
        raise KeyError("Config must define 'h5ad_path'.")

    outdir = Path(cfg.get("outdir", "cellqc_out"))
    logger = setup_logger(outdir / "logs" / "cellqc.log", "cellqc")
    try:
        if adata is None:
            logger.info("Reading %s", cfg["h5ad_path"])
            adata = read_h5ad(cfg["h5ad_path"])
        logger.info("Input: %d cells x %d genes", adata.n_obs, adata.n_vars)

        if UNS_KEY in adata.uns and not metrics_are_current(adata):
            logger.warning(
                "Stored QC metrics do not match the current cells/genes; recomputing."
            )

        qc_cfg = qc_config_from_dict(cfg.get("qc"))
        result = calculate_qc_metrics(adata, qc_cfg, logger=logger)

        flags = _collect_outlier_results(
            adata, cfg, qc_cfg, result.feature_control_names, logger
        )
        flag_cols = list(flags)
        any_flag = (
            np.logical_or.reduce([adata.obs[col].to_numpy(dtype=bool) for col in flag_cols])
            if flag_cols
            else np.zeros(adata.n_obs, dtype=bool)
        )
        n_flagged = {col: int(adata.obs[col].sum()) for col in flag_cols}
        logger.info("%d/%d cells flagged by at least one rule", int(any_flag.sum()), adata.n_obs)

        obs_table = pd.concat([result.obs, adata.obs[flag_cols]], axis=1)
        tables = [
            write_table(outdir / "tables" / "obs_qc_metrics.csv", obs_table, index_label="cell"),
            write_table(outdir / "tables" / "var_qc_metrics.csv", result.var, index_label="gene"),
        ]

        figures: list[Path] = []
        if bool(cfg.get("plots", True)):
            figures = _draw_figures(adata, cfg, qc_cfg, flags, outdir / "figures", logger)

        h5ad_out: Path | None = None
        if bool(cfg.get("write_h5ad", False)):
            h5ad_out = outdir / "qc.h5ad"
            adata.write_h5ad(h5ad_out)
            logger.info("Wrote annotated data to %s", h5ad_out.as_posix())

        write_json(
            outdir / "summary.json",
            {
                "created_utc": _now_utc_iso(),
                "cellqc_version": __version__,
                "n_cells": int(adata.n_obs),
                "n_genes": int(adata.n_vars),
                "assays": list(result.assays),
                "feature_controls": list(result.feature_control_names),
                "sample_controls": list(result.sample_control_names),
                "detection_threshold": float(qc_cfg.detection_threshold),
                "n_flagged": n_flagged,
                "n_flagged_any": int(any_flag.sum()),
                "outlier_cutoffs": {
                    col: {
                        "center": r.center,
                        "spread": r.spread,
                        "lower": _finite_or_none(r.lower),
                        "upper": _finite_or_none(r.upper),
                    }
                    for col, (_, r, _) in flags.items()
                },
                "figures": [p.name for p in figures],
                "plot_style": plot_style_dict() if figures else None,
                "environment": {
                    "python": platform.python_version(),
                    "anndata": _package_version("anndata"),
                    "scanpy": _package_version("scanpy"),
                    "numpy": _package_version("numpy"),
                    "pandas": _package_version("pandas"),
                },
            },
        )
        logger.info("QC run complete. Results in %s", outdir.as_posix())
    finally:
        close_logger(logger)

    return QCRunSummary(
        outdir=outdir,
        n_cells=int(adata.n_obs),
        n_genes=int(adata.n_vars),
        n_flagged=n_flagged,
        n_flagged_any=int(any_flag.sum()),
        tables=tables,
        figures=figures,
        h5ad_path=h5ad_out,
    )
