"""Shared plotting style settings for deterministic figure outputs."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any

import matplotlib
import matplotlib.pyplot as plt
import numpy as np


@dataclass(frozen=True)
class PlotStyle:
    """Centralized plotting defaults used across QC figures."""

    dpi: int = 200
    figsize_embedding: tuple[float, float] = (6.0, 5.0)
    figsize_scatter: tuple[float, float] = (6.0, 5.0)
    figsize_hist: tuple[float, float] = (6.5, 4.5)
    figsize_plate: tuple[float, float] = (9.0, 6.0)
    highest_expr_row_height: float = 0.18
    s_fg: float = 7.0
    s_plate: float = 140.0
    alpha_bg: float = 0.30
    alpha_fg: float = 0.85
    hist_bins: int = 50
    kept_color: str = "#4C72B0"
    flagged_color: str = "#C44E52"
    control_color: str = "#DD8452"
    cutoff_color: str = "#8B0000"
    legend_fontsize: int = 8
    axis_label_fontsize: int = 10
    title_fontsize: int = 11
    colorbar_shrink: float = 0.8
    colorbar_pad: float = 0.02
    categorical_legend_trigger: int = 25
    categorical_legend_top_k: int = 20


DEFAULT_PLOT_STYLE = PlotStyle()


def apply_plot_style(style: PlotStyle = DEFAULT_PLOT_STYLE) -> None:
    """Apply deterministic matplotlib rcParams for pipeline plots."""
    plt.rcParams.update(
        {
            "figure.dpi": style.dpi,
            "savefig.dpi": style.dpi,
            "savefig.facecolor": "white",
            "font.family": "DejaVu Sans",
            "axes.titlesize": style.title_fontsize,
            "axes.labelsize": style.axis_label_fontsize,
            "legend.fontsize": style.legend_fontsize,
            "axes.grid": False,
            "axes.spines.top": False,
            "axes.spines.right": False,
        }
    )


def plot_style_dict(style: PlotStyle = DEFAULT_PLOT_STYLE) -> dict[str, Any]:
    """Return style + dependency versions for run summaries."""
    d = asdict(style)
    d["matplotlib_version"] = str(matplotlib.__version__)
    d["numpy_version"] = str(np.__version__)
    return d
