"""Shared plotting utilities used by figure factories."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import matplotlib.figure
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd

from cellqc.plotting.styles import DEFAULT_PLOT_STYLE, PlotStyle


def sanitize_label(label: str, max_len: int = 40) -> str:
    """Create deterministic filesystem-safe stems for figure names."""
    clean = "".join(ch if (ch.isalnum() or ch == "_") else "_" for ch in str(label))
    clean = clean.strip("_") or "figure"
    return clean[:max_len]


def obs_vector(adata: Any, key: str) -> pd.Series:
    if key not in adata.obs.columns:
        raise KeyError(f"adata.obs['{key}'] not found.")
    return adata.obs[key]


def is_categorical(values: pd.Series) -> bool:
    return bool(
        isinstance(values.dtype, pd.CategoricalDtype)
        or pd.api.types.is_bool_dtype(values)
        or pd.api.types.is_object_dtype(values)
        or pd.api.types.is_string_dtype(values)
    )


def new_axes(
    ax: plt.Axes | None, figsize: tuple[float, float]
) -> tuple[plt.Figure, plt.Axes]:
    if ax is None:
        fig, ax = plt.subplots(figsize=figsize)
        return fig, ax
    return ax.figure, ax


def finite_pairs(x: np.ndarray, y: np.ndarray) -> np.ndarray:
    return np.isfinite(np.asarray(x, dtype=float)) & np.isfinite(np.asarray(y, dtype=float))


def save_figure(
    fig: matplotlib.figure.Figure,
    out_path: Path,
    *,
    style: PlotStyle = DEFAULT_PLOT_STYLE,
    bbox_tight: bool = False,
    close: bool = True,
) -> None:
    """Save figure deterministically and optionally close it."""
    out_path.parent.mkdir(parents=True, exist_ok=True)
    save_kwargs: dict[str, object] = {
        "dpi": style.dpi,
        "facecolor": "white",
        "pad_inches": 0.02,
    }
    if bbox_tight:
        save_kwargs["bbox_inches"] = "tight"
    fig.savefig(out_path, **save_kwargs)
    if close:
        plt.close(fig)
