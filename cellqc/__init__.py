"""cellqc public API."""

from cellqc._version import __version__
from cellqc.core.metrics import calculate_qc_metrics, metrics_are_current, warn_if_stale
from cellqc.core.outliers import annotate_outliers, flag_low_quality_cells, is_outlier
from cellqc.core.types import OutlierConfig, OutlierResult, QCConfig, QCMetricsResult


def run_qc(*args, **kwargs):
    """Lazy wrapper to avoid importing plotting dependencies at import time."""
    from cellqc.pipeline.run import run_qc as _run_qc

    return _run_qc(*args, **kwargs)


__all__ = [
    "__version__",
    "QCConfig",
    "OutlierConfig",
    "OutlierResult",
    "QCMetricsResult",
    "calculate_qc_metrics",
    "metrics_are_current",
    "warn_if_stale",
    "is_outlier",
    "annotate_outliers",
    "flag_low_quality_cells",
    "run_qc",
]
