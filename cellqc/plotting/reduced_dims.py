"""Dimensionality reductions (PCA, t-SNE, diffusion map) and their scatter plots.

Embeddings are stored in `adata.obsm` and reused when present; plotting never
recomputes an existing embedding unless asked to.
"""

from __future__ import annotations

from typing import Any, Sequence

import matplotlib.pyplot as plt
import numpy as np
from sklearn.decomposition import PCA
from sklearn.manifold import TSNE
from sklearn.preprocessing import StandardScaler

from cellqc.core.container import get_assay
from cellqc.core.errors import EmptyInputError
from cellqc.core.utils import to_dense
from cellqc.plotting.embedding import color_scatter
from cellqc.plotting.styles import DEFAULT_PLOT_STYLE, PlotStyle
from cellqc.plotting.utils import new_axes, obs_vector

BASIS_LABELS: dict[str, str] = {
    "X_pca": "PC",
    "X_pca_qc": "QC-PC",
    "X_tsne": "tSNE",
    "X_diffmap": "DC",
}

QC_PCA_METRICS: tuple[str, ...] = (
    "log10_total_{assay}",
    "log10_total_features_by_{assay}",
    "pct_{assay}_in_top_100_features",
    "pct_{assay}_feature_control",
)


def run_pca(
    adata: Any,
    *,
    assay: str = "X",
    n_comps: int = 10,
    log_transform: bool = False,
    seed: int = 0,
    key_added: str = "X_pca",
) -> np.ndarray:
    """PCA of one assay; writes `obsm[key_added]` and `uns[key_added]`."""
    x = to_dense(get_assay(adata, assay))
    if log_transform:
        x = np.log1p(x)
    n = min(int(n_comps), x.shape[0], x.shape[1])
    if n < 2:
        raise EmptyInputError(f"PCA needs at least 2 cells and 2 genes, got {x.shape}.")
    pca = PCA(n_components=n, random_state=int(seed))
    coords = pca.fit_transform(x)
    adata.obsm[key_added] = coords
    adata.uns[key_added] = {
        "assay": assay,
        "variance_ratio": pca.explained_variance_ratio_.tolist(),
    }
    return coords


def run_qc_metric_pca(
    adata: Any,
    columns: Sequence[str] | None = None,
    *,
    assay: str = "counts",
    n_comps: int = 2,
    key_added: str = "X_pca_qc",
) -> np.ndarray:
    """PCA of standardized per-cell QC metrics, to spot cells unlike the rest."""
    if columns is None:
        columns = [
            tmpl.format(assay=assay)
            for tmpl in QC_PCA_METRICS
            if tmpl.format(assay=assay) in adata.obs.columns
        ]
    columns = list(columns)
    if len(columns) < 2:
        raise KeyError(
            "QC-metric PCA needs at least two metric columns in adata.obs; "
            "run calculate_qc_metrics first."
        )
    values = np.column_stack([obs_vector(adata, col).to_numpy(dtype=float) for col in columns])
    if not np.isfinite(values).all():
        raise ValueError("QC metric columns must be finite for PCA.")
    scaled = StandardScaler().fit_transform(values)
    n = min(int(n_comps), scaled.shape[0], scaled.shape[1])
    pca = PCA(n_components=n)
    coords = pca.fit_transform(scaled)
    adata.obsm[key_added] = coords
    adata.uns[key_added] = {
        "columns": columns,
        "variance_ratio": pca.explained_variance_ratio_.tolist(),
    }
    return coords


def _ensure_pca(adata: Any, use_rep: str, assay: str, seed: int) -> None:
    meta = adata.uns.get(use_rep)
    stale = isinstance(meta, dict) and "assay" in meta and meta["assay"] != assay
    if use_rep not in adata.obsm or stale:
        run_pca(adata, assay=assay, seed=seed, key_added=use_rep)


def run_tsne(
    adata: Any,
    *,
    assay: str = "X",
    use_rep: str = "X_pca",
    perplexity: float = 30.0,
    seed: int = 0,
    key_added: str = "X_tsne",
) -> np.ndarray:
    """Two-dimensional t-SNE of `obsm[use_rep]`.

    PCA of `assay` is run first when `use_rep` is missing or was computed from
    another assay.
    """
    _ensure_pca(adata, use_rep, assay, seed)
    rep = np.asarray(adata.obsm[use_rep], dtype=float)
    n_cells = rep.shape[0]
    if n_cells < 4:
        raise EmptyInputError("t-SNE needs at least 4 cells.")
    # sklearn requires perplexity < n_samples.
    perp = float(min(float(perplexity), max(1.0, (n_cells - 1) / 3.0)))
    tsne = TSNE(n_components=2, perplexity=perp, init="pca", random_state=int(seed))
    coords = tsne.fit_transform(rep)
    adata.obsm[key_added] = coords
    return coords


def run_diffusion_map(
    adata: Any,
    *,
    assay: str = "X",
    use_rep: str = "X_pca",
    n_neighbors: int = 15,
    n_comps: int = 10,
    seed: int = 0,
) -> np.ndarray:
    """Diffusion map via scanpy's neighbour graph; writes `obsm["X_diffmap"]`."""
    import scanpy as sc

    _ensure_pca(adata, use_rep, assay, seed)
    n_cells = int(adata.n_obs)
    if n_cells < 5:
        raise EmptyInputError("Diffusion map needs at least 5 cells.")
    sc.pp.neighbors(
        adata,
        n_neighbors=min(int(n_neighbors), n_cells - 1),
        use_rep=use_rep,
        random_state=int(seed),
    )
    sc.tl.diffmap(adata, n_comps=min(int(n_comps), n_cells - 2))
    return np.asarray(adata.obsm["X_diffmap"])


def _axis_label(adata: Any, basis: str, component: int) -> str:
    prefix = BASIS_LABELS.get(basis, basis.removeprefix("X_"))
    label = f"{prefix}{component + 1}"
    meta = adata.uns.get(basis) if hasattr(adata, "uns") else None
    if isinstance(meta, dict) and "variance_ratio" in meta:
        ratios = list(meta["variance_ratio"])
        if component < len(ratios):
            label += f" ({100.0 * float(ratios[component]):.1f}%)"
    return label


def plot_reduced_dim(
    adata: Any,
    basis: str,
    *,
    color_by: str | None = None,
    components: tuple[int, int] = (0, 1),
    title: str | None = None,
    ax: plt.Axes | None = None,
    style: PlotStyle = DEFAULT_PLOT_STYLE,
) -> tuple[plt.Figure, plt.Axes]:
    """Scatter two components of `obsm[basis]`, optionally coloured by an obs column."""
    if basis not in adata.obsm:
        raise KeyError(f"adata.obsm['{basis}'] not found.")
    coords = np.asarray(adata.obsm[basis], dtype=float)
    c0, c1 = (int(c) for c in components)
    if coords.ndim != 2 or max(c0, c1) >= coords.shape[1]:
        raise ValueError(
            f"Components {components} out of range for obsm['{basis}'] with shape {coords.shape}."
        )
    values = obs_vector(adata, color_by) if color_by is not None else None
    fig, ax = new_axes(ax, style.figsize_embedding)
    color_scatter(
        ax,
        coords[:, [c0, c1]],
        values,
        title=title or BASIS_LABELS.get(basis, basis),
        xlabel=_axis_label(adata, basis, c0),
        ylabel=_axis_label(adata, basis, c1),
        style=style,
    )
    fig.tight_layout()
    return fig, ax


def plot_pca(
    adata: Any,
    *,
    assay: str = "X",
    color_by: str | None = None,
    n_comps: int = 10,
    components: tuple[int, int] = (0, 1),
    recompute: bool = False,
    style: PlotStyle = DEFAULT_PLOT_STYLE,
) -> tuple[plt.Figure, plt.Axes]:
    if recompute or "X_pca" not in adata.obsm:
        run_pca(adata, assay=assay, n_comps=n_comps)
    return plot_reduced_dim(
        adata, "X_pca", color_by=color_by, components=components, title="PCA", style=style
    )


def plot_tsne(
    adata: Any,
    *,
    assay: str = "X",
    color_by: str | None = None,
    perplexity: float = 30.0,
    seed: int = 0,
    recompute: bool = False,
    style: PlotStyle = DEFAULT_PLOT_STYLE,
) -> tuple[plt.Figure, plt.Axes]:
    if recompute or "X_tsne" not in adata.obsm:
        run_tsne(adata, assay=assay, perplexity=perplexity, seed=seed)
    return plot_reduced_dim(adata, "X_tsne", color_by=color_by, title="t-SNE", style=style)


def plot_diffusion_map(
    adata: Any,
    *,
    assay: str = "X",
    color_by: str | None = None,
    components: tuple[int, int] = (1, 2),
    seed: int = 0,
    recompute: bool = False,
    style: PlotStyle = DEFAULT_PLOT_STYLE,
) -> tuple[plt.Figure, plt.Axes]:
    """Diffusion components; component 0 is the trivial stationary one and is skipped."""
    if recompute or "X_diffmap" not in adata.obsm:
        run_diffusion_map(adata, assay=assay, seed=seed)
    return plot_reduced_dim(
        adata,
        "X_diffmap",
        color_by=color_by,
        components=components,
        title="Diffusion map",
        style=style,
    )
