"""Gene-level expression figures and plate-layout views of per-cell metrics."""

from __future__ import annotations

import re
from typing import Any, Sequence

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd

from cellqc.core.container import get_assay
from cellqc.core.utils import to_dense
from cellqc.plotting.embedding import color_scatter
from cellqc.plotting.styles import DEFAULT_PLOT_STYLE, PlotStyle
from cellqc.plotting.utils import new_axes, obs_vector

_WELL = re.compile(r"^\s*([A-Za-z]+)\s*0*(\d+)\s*$")


def _row_index(letters: str) -> int:
    # Bijective base-26: A=0, Z=25, AA=26, ...
    idx = 0
    for ch in letters.upper():
        idx = idx * 26 + (ord(ch) - ord("A") + 1)
    return idx - 1


def parse_plate_position(labels: Sequence[str]) -> tuple[np.ndarray, np.ndarray]:
    """Parse well labels such as ``"A01"`` or ``"P24"`` into 0-based (row, column)."""
    rows: list[int] = []
    cols: list[int] = []
    bad: list[str] = []
    for label in labels:
        match = _WELL.match(str(label))
        if match is None or int(match.group(2)) == 0:
            bad.append(str(label))
            continue
        rows.append(_row_index(match.group(1)))
        cols.append(int(match.group(2)) - 1)
    if bad:
        raise ValueError(f"Unparseable plate positions (expected e.g. 'A01'): {bad[:5]}")
    return np.asarray(rows, dtype=int), np.asarray(cols, dtype=int)


def _row_letter(idx: int) -> str:
    out = ""
    n = int(idx) + 1
    while n > 0:
        n, rem = divmod(n - 1, 26)
        out = chr(ord("A") + rem) + out
    return out


def plot_plate_position(
    adata: Any,
    *,
    position_column: str = "plate_position",
    color_by: str | None = "total_counts",
    ax: plt.Axes | None = None,
    style: PlotStyle = DEFAULT_PLOT_STYLE,
) -> tuple[plt.Figure, plt.Axes]:
    """Draw cells at their plate wells, coloured by a QC metric or annotation."""
    rows, cols = parse_plate_position(obs_vector(adata, position_column).tolist())
    xy = np.column_stack([cols + 1, rows]).astype(float)
    values = obs_vector(adata, color_by) if color_by is not None else None

    fig, ax = new_axes(ax, style.figsize_plate)
    color_scatter(
        ax,
        xy,
        values,
        title=f"Plate position{f' ({color_by})' if color_by else ''}",
        xlabel="column",
        ylabel="row",
        s=style.s_plate,
        show_ticks=True,
        style=style,
    )
    n_rows = int(rows.max()) + 1
    n_cols = int(cols.max()) + 1
    ax.set_xticks(np.arange(1, n_cols + 1))
    ax.set_yticks(np.arange(n_rows))
    ax.set_yticklabels([_row_letter(i) for i in range(n_rows)])
    ax.set_xlim(0.5, n_cols + 0.5)
    ax.set_ylim(n_rows - 0.5, -0.5)
    ax.set_aspect("equal")
    fig.tight_layout()
    return fig, ax


def plot_expression_vs_length(
    adata: Any,
    *,
    length_column: str = "length",
    assay: str = "logcounts",
    show_sd: bool = True,
    ax: plt.Axes | None = None,
    style: PlotStyle = DEFAULT_PLOT_STYLE,
) -> tuple[plt.Figure, plt.Axes]:
    """Mean expression of each gene against its (log10) transcript length.

    Genes with missing or non-positive length are dropped. Feature controls
    are highlighted when `is_feature_control` is present in `var`.
    """
    if length_column not in adata.var.columns:
        raise KeyError(f"adata.var['{length_column}'] not found.")
    lengths = pd.to_numeric(adata.var[length_column], errors="coerce").to_numpy(dtype=float)
    keep = np.isfinite(lengths) & (lengths > 0)
    if not keep.any():
        raise ValueError(f"adata.var['{length_column}'] has no positive lengths.")

    matrix = to_dense(get_assay(adata, assay))[:, keep]
    means = matrix.mean(axis=0)
    sds = matrix.std(axis=0)
    x = np.log10(lengths[keep])
    if "is_feature_control" in adata.var.columns:
        is_control = adata.var["is_feature_control"].to_numpy(dtype=bool)[keep]
    else:
        is_control = np.zeros(x.size, dtype=bool)

    fig, ax = new_axes(ax, style.figsize_scatter)
    for mask, color, label in (
        (~is_control, style.kept_color, "endogenous"),
        (is_control, style.control_color, "feature control"),
    ):
        if not mask.any():
            continue
        if show_sd:
            ax.errorbar(
                x[mask],
                means[mask],
                yerr=sds[mask],
                fmt="none",
                ecolor=color,
                alpha=style.alpha_bg,
                lw=0.8,
            )
        ax.scatter(
            x[mask], means[mask], s=style.s_fg, color=color, alpha=style.alpha_fg, label=label
        )
    ax.set_xlabel(f"log10({length_column})", fontsize=style.axis_label_fontsize)
    ax.set_ylabel(f"mean {assay}", fontsize=style.axis_label_fontsize)
    ax.set_title(f"{assay} vs {length_column}", fontsize=style.title_fontsize)
    if is_control.any():
        ax.legend(loc="best", fontsize=style.legend_fontsize, frameon=True)
    fig.tight_layout()
    return fig, ax
