"""Coloured 2D scatter primitives shared by embedding and plate figures."""

from __future__ import annotations

from typing import Any

import matplotlib.axes
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd

from cellqc.plotting.styles import DEFAULT_PLOT_STYLE, PlotStyle
from cellqc.plotting.utils import is_categorical


def _is_rgba(value: Any) -> bool:
    if isinstance(value, (str, bytes)) or value is None:
        return False
    arr = np.asarray(value, dtype=object)
    if arr.ndim != 1 or arr.size not in (3, 4):
        return False
    try:
        _ = np.asarray(value, dtype=float)
    except (TypeError, ValueError):
        return False
    return True


def plot_points(
    ax: matplotlib.axes.Axes,
    xy: np.ndarray,
    *,
    color: Any = None,
    cmap: str | None = None,
    s: float | None = None,
    alpha: float | None = None,
    label: str | None = None,
    rasterized: bool = True,
    linewidths: float = 0.0,
    edgecolors: str | None = None,
    marker: str = "o",
    style: PlotStyle = DEFAULT_PLOT_STYLE,
) -> Any:
    """Plot points with shared defaults."""
    scatter_kwargs: dict[str, Any] = {
        "s": style.s_fg if s is None else s,
        "alpha": style.alpha_fg if alpha is None else alpha,
        "linewidths": linewidths,
        "edgecolors": edgecolors,
        "marker": marker,
        "rasterized": rasterized,
        "label": label,
    }
    if isinstance(color, str) or _is_rgba(color):
        scatter_kwargs["color"] = color
    else:
        scatter_kwargs["c"] = color
        if cmap is not None:
            scatter_kwargs["cmap"] = cmap
    return ax.scatter(xy[:, 0], xy[:, 1], **scatter_kwargs)


def finalize_axes(
    ax: matplotlib.axes.Axes,
    title: str,
    *,
    show_ticks: bool = False,
    xlabel: str = "",
    ylabel: str = "",
    style: PlotStyle = DEFAULT_PLOT_STYLE,
) -> None:
    ax.set_title(title, fontsize=style.title_fontsize)
    ax.set_xlabel(xlabel, fontsize=style.axis_label_fontsize)
    ax.set_ylabel(ylabel, fontsize=style.axis_label_fontsize)
    if not show_ticks:
        ax.set_xticks([])
        ax.set_yticks([])


def _compressed_categorical_labels(
    labels: pd.Series,
    *,
    style: PlotStyle = DEFAULT_PLOT_STYLE,
) -> tuple[pd.Series, list[str]]:
    labels_str = labels.astype("string").fillna("NA").astype(str)
    counts = (
        labels_str.value_counts(sort=False)
        .rename_axis("category")
        .reset_index(name="count")
        .sort_values(
            by=["count", "category"], ascending=[False, True], kind="mergesort"
        )
    )
    ordered_categories = counts["category"].astype(str).tolist()
    if int(len(ordered_categories)) <= style.categorical_legend_trigger:
        return labels_str, ordered_categories
    top = ordered_categories[: style.categorical_legend_top_k]
    n_more = int(len(ordered_categories) - len(top))
    other_label = f"Other ({n_more} categories)"
    compressed = labels_str.where(labels_str.isin(top), other_label)
    return compressed, top + [other_label]


def _palette_for_categories(
    categories: list[str],
    style: PlotStyle = DEFAULT_PLOT_STYLE,
) -> dict[str, Any]:
    if set(categories) <= {"True", "False"}:
        return {"False": style.kept_color, "True": style.flagged_color}
    cmap = plt.get_cmap("tab20")
    palette: dict[str, Any] = {cat: cmap(i % 20) for i, cat in enumerate(categories)}
    if categories and categories[-1].startswith("Other ("):
        palette[categories[-1]] = (0.7, 0.7, 0.7, 1.0)
    return palette


def color_scatter(
    ax: matplotlib.axes.Axes,
    xy: np.ndarray,
    values: pd.Series | None,
    *,
    title: str,
    xlabel: str,
    ylabel: str,
    s: float | None = None,
    show_ticks: bool = False,
    colorbar_label: str | None = None,
    style: PlotStyle = DEFAULT_PLOT_STYLE,
) -> None:
    """Scatter `xy`, coloured by nothing, a categorical or a numeric series."""
    size = style.s_fg if s is None else s
    if values is None:
        plot_points(ax, xy, color=style.kept_color, s=size, style=style)
    elif is_categorical(values):
        labels, categories = _compressed_categorical_labels(values, style=style)
        palette = _palette_for_categories(categories, style=style)
        labels_np = labels.to_numpy()
        for cat in categories:
            mask = labels_np == cat
            if not mask.any():
                continue
            plot_points(ax, xy[mask], color=palette[cat], s=size, label=cat, style=style)
        ax.legend(
            loc="upper left",
            bbox_to_anchor=(1.02, 1.0),
            borderaxespad=0.0,
            fontsize=style.legend_fontsize,
            frameon=True,
            title=str(values.name) if values.name is not None else None,
        )
    else:
        vals = pd.to_numeric(values, errors="coerce").to_numpy(dtype=float)
        # Draw high values last so they stay visible.
        order = np.argsort(np.nan_to_num(vals, nan=-np.inf), kind="mergesort")
        pts = plot_points(
            ax, xy[order], color=vals[order], cmap="viridis", s=size, style=style
        )
        cbar = ax.figure.colorbar(
            pts, ax=ax, shrink=style.colorbar_shrink, pad=style.colorbar_pad
        )
        cbar.set_label(
            colorbar_label or str(values.name or "value"),
            fontsize=style.axis_label_fontsize,
        )
    finalize_axes(
        ax, title, show_ticks=show_ticks, xlabel=xlabel, ylabel=ylabel, style=style
    )
