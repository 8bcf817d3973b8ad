"""Figure factories for QC metrics and reduced-dimension views."""

from cellqc.plotting.expression import (
    parse_plate_position,
    plot_expression_vs_length,
    plot_plate_position,
)
from cellqc.plotting.qc import (
    plot_highest_expression,
    plot_outlier_histogram,
    plot_qc_scatter,
)
from cellqc.plotting.reduced_dims import (
    plot_diffusion_map,
    plot_pca,
    plot_reduced_dim,
    plot_tsne,
    run_diffusion_map,
    run_pca,
    run_qc_metric_pca,
    run_tsne,
)
from cellqc.plotting.styles import (
    DEFAULT_PLOT_STYLE,
    PlotStyle,
    apply_plot_style,
    plot_style_dict,
)
from cellqc.plotting.utils import sanitize_label, save_figure

__all__ = [
    "PlotStyle",
    "DEFAULT_PLOT_STYLE",
    "apply_plot_style",
    "plot_style_dict",
    "save_figure",
    "sanitize_label",
    "plot_highest_expression",
    "plot_outlier_histogram",
    "plot_qc_scatter",
    "run_pca",
    "run_tsne",
    "run_diffusion_map",
    "run_qc_metric_pca",
    "plot_reduced_dim",
    "plot_pca",
    "plot_tsne",
    "plot_diffusion_map",
    "parse_plate_position",
    "plot_plate_position",
    "plot_expression_vs_length",
]
