"""QC summary figure factories."""

from __future__ import annotations

from typing import Any

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
from matplotlib.patches import Patch

from cellqc.core.container import get_assay
from cellqc.core.metrics import calculate_qc_metrics
from cellqc.core.types import OutlierResult, QCConfig
from cellqc.core.utils import axis_sum, safe_pct, to_dense
from cellqc.plotting.styles import DEFAULT_PLOT_STYLE, PlotStyle
from cellqc.plotting.utils import finite_pairs, is_categorical, new_axes, obs_vector


def _feature_pct_total(adata: Any, assay: str) -> pd.Series:
    col = f"pct_total_{assay}"
    if col in adata.var.columns:
        return adata.var[col].astype(float)
    result = calculate_qc_metrics(
        adata, QCConfig(detection_assay=assay, percent_top=()), inplace=False
    )
    return result.var[col]


def plot_highest_expression(
    adata: Any,
    *,
    assay: str = "counts",
    n_top: int = 50,
    ax: plt.Axes | None = None,
    style: PlotStyle = DEFAULT_PLOT_STYLE,
) -> tuple[plt.Figure, plt.Axes]:
    """Per-cell share of total signal for the most highly expressed genes.

    Genes are ranked by `pct_total_{assay}`; feature controls (when
    `is_feature_control` is present in `var`) are drawn in the control colour.
    """
    if int(n_top) <= 0:
        raise ValueError("n_top must be positive.")
    pct_total = _feature_pct_total(adata, assay)
    n_show = min(int(n_top), int(pct_total.size))
    top_idx = np.argsort(-pct_total.to_numpy(dtype=float), kind="mergesort")[:n_show]

    matrix = get_assay(adata, assay)
    totals = axis_sum(matrix, axis=1)
    sub = to_dense(matrix[:, top_idx])
    per_cell_pct = safe_pct(sub, totals[:, np.newaxis])

    if "is_feature_control" in adata.var.columns:
        is_control = adata.var["is_feature_control"].to_numpy(dtype=bool)[top_idx]
    else:
        is_control = np.zeros(n_show, dtype=bool)
    names = [str(name) for name in np.asarray(adata.var_names)[top_idx]]

    height = max(3.0, style.highest_expr_row_height * n_show + 1.0)
    fig, ax = new_axes(ax, (7.0, height))
    # Highest gene at the top.
    positions = np.arange(n_show, 0, -1)
    q25, median, q75 = np.percentile(per_cell_pct, [25.0, 50.0, 75.0], axis=0)
    colors = [style.control_color if c else style.kept_color for c in is_control]
    ax.hlines(
        positions,
        per_cell_pct.min(axis=0),
        per_cell_pct.max(axis=0),
        colors=colors,
        lw=0.8,
        alpha=style.alpha_bg,
    )
    ax.hlines(positions, q25, q75, colors=colors, lw=5.0, alpha=style.alpha_fg)
    ax.scatter(median, positions, s=12.0, color="black", zorder=3)
    ax.set_yticks(positions)
    ax.set_yticklabels(names, fontsize=style.legend_fontsize)
    ax.set_xlabel(f"% of total {assay} per cell", fontsize=style.axis_label_fontsize)
    ax.set_title(f"Top {n_show} genes by {assay}", fontsize=style.title_fontsize)
    if is_control.any():
        ax.legend(
            handles=[
                Patch(facecolor=style.kept_color, label="endogenous"),
                Patch(facecolor=style.control_color, label="feature control"),
            ],
            loc="lower right",
            fontsize=style.legend_fontsize,
        )
    fig.tight_layout()
    return fig, ax


def plot_outlier_histogram(
    values: np.ndarray,
    result: OutlierResult,
    *,
    log_transform: bool = False,
    title: str = "QC metric",
    ax: plt.Axes | None = None,
    style: PlotStyle = DEFAULT_PLOT_STYLE,
) -> tuple[plt.Figure, plt.Axes]:
    """Histogram of a metric with the MAD center and cut-offs from `result`."""
    x = np.asarray(values, dtype=float).ravel()
    if log_transform:
        x = np.log10(x + 1.0)
    fig, ax = new_axes(ax, style.figsize_hist)
    ax.hist(
        x[~result.mask],
        bins=style.hist_bins,
        color=style.kept_color,
        alpha=style.alpha_fg,
        label="kept",
    )
    if result.mask.any():
        ax.hist(
            x[result.mask],
            bins=style.hist_bins,
            color=style.flagged_color,
            alpha=style.alpha_fg,
            label=f"flagged (n={result.n_flagged})",
        )
    ax.axvline(result.center, color="black", lw=1.2, ls="-", label="median")
    for bound in (result.lower, result.upper):
        if np.isfinite(bound):
            ax.axvline(bound, color=style.cutoff_color, lw=1.2, ls="--")
    ax.set_xlabel(
        f"log10({title} + 1)" if log_transform else title,
        fontsize=style.axis_label_fontsize,
    )
    ax.set_ylabel("cells", fontsize=style.axis_label_fontsize)
    ax.set_title(title, fontsize=style.title_fontsize)
    ax.legend(loc="best", fontsize=style.legend_fontsize, frameon=True)
    fig.tight_layout()
    return fig, ax


def plot_qc_scatter(
    adata: Any,
    x: str,
    y: str,
    *,
    color: str | None = None,
    ax: plt.Axes | None = None,
    style: PlotStyle = DEFAULT_PLOT_STYLE,
) -> tuple[plt.Figure, plt.Axes]:
    """Scatter two per-cell metrics, e.g. library size vs detected genes."""
    xv = obs_vector(adata, x).to_numpy(dtype=float)
    yv = obs_vector(adata, y).to_numpy(dtype=float)
    keep = finite_pairs(xv, yv)
    fig, ax = new_axes(ax, style.figsize_scatter)

    if color is None:
        ax.scatter(xv[keep], yv[keep], s=style.s_fg, color=style.kept_color, alpha=style.alpha_fg)
    else:
        cv = obs_vector(adata, color)
        if is_categorical(cv):
            labels = cv.astype("string").fillna("NA").astype(str).to_numpy()
            cats = sorted(set(labels[keep]))
            cmap = plt.get_cmap("tab10")
            for i, cat in enumerate(cats):
                mask = keep & (labels == cat)
                if set(cats) <= {"True", "False"}:
                    c = style.flagged_color if cat == "True" else style.kept_color
                else:
                    c = cmap(i % 10)
                ax.scatter(
                    xv[mask], yv[mask], s=style.s_fg, color=c, alpha=style.alpha_fg, label=cat
                )
            ax.legend(title=color, fontsize=style.legend_fontsize, frameon=True)
        else:
            pts = ax.scatter(
                xv[keep],
                yv[keep],
                s=style.s_fg,
                c=cv.to_numpy(dtype=float)[keep],
                cmap="viridis",
                alpha=style.alpha_fg,
            )
            cbar = fig.colorbar(pts, ax=ax, shrink=style.colorbar_shrink, pad=style.colorbar_pad)
            cbar.set_label(color, fontsize=style.axis_label_fontsize)

    ax.set_xlabel(x, fontsize=style.axis_label_fontsize)
    ax.set_ylabel(y, fontsize=style.axis_label_fontsize)
    ax.set_title(f"{y} vs {x}", fontsize=style.title_fontsize)
    fig.tight_layout()
    return fig, ax
