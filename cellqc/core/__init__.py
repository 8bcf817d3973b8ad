"""Core QC computations: metrics, control sets and outlier flags."""

from cellqc.core.container import assay_names, get_assay, validate_assays
from cellqc.core.controls import resolve_control_sets
from cellqc.core.errors import (
    DimensionMismatchError,
    DuplicateControlSetNameError,
    EmptyInputError,
    InvalidThresholdError,
    QCError,
    UnknownAssayError,
    UnknownControlSetError,
)
from cellqc.core.metrics import (
    calculate_qc_metrics,
    metrics_are_current,
    warn_if_stale,
)
from cellqc.core.outliers import annotate_outliers, flag_low_quality_cells, is_outlier
from cellqc.core.types import OutlierConfig, OutlierResult, QCConfig, QCMetricsResult

__all__ = [
    "QCConfig",
    "OutlierConfig",
    "OutlierResult",
    "QCMetricsResult",
    "QCError",
    "UnknownAssayError",
    "UnknownControlSetError",
    "DuplicateControlSetNameError",
    "DimensionMismatchError",
    "EmptyInputError",
    "InvalidThresholdError",
    "assay_names",
    "get_assay",
    "validate_assays",
    "resolve_control_sets",
    "calculate_qc_metrics",
    "metrics_are_current",
    "warn_if_stale",
    "is_outlier",
    "annotate_outliers",
    "flag_low_quality_cells",
]
