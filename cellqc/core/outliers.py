"""Median-absolute-deviation outlier flags for per-cell QC metrics."""

from __future__ import annotations

import logging
import math
from dataclasses import replace
from typing import Any, Iterable, Mapping

import numpy as np

from cellqc.core.errors import EmptyInputError, InvalidThresholdError
from cellqc.core.types import OUTLIER_SIDES, OutlierConfig, OutlierResult
from cellqc.core.utils import log10p1

MAD_SCALE = 1.4826


def _validate_config(config: OutlierConfig) -> None:
    threshold = float(config.mad_threshold)
    if not math.isfinite(threshold) or threshold < 0:
        raise InvalidThresholdError(
            f"mad_threshold must be a finite value >= 0, got {config.mad_threshold}."
        )
    if config.min_diff is not None and not (float(config.min_diff) >= 0):
        raise InvalidThresholdError(f"min_diff must be >= 0, got {config.min_diff}.")
    if config.side not in OUTLIER_SIDES:
        raise ValueError(
            f"Unsupported side '{config.side}'. Use one of: {', '.join(OUTLIER_SIDES)}."
        )


def is_outlier(
    values: np.ndarray,
    config: OutlierConfig | None = None,
    **overrides: Any,
) -> OutlierResult:
    """Flag entries more than `mad_threshold` scaled MADs away from the median.

    `spread` is `1.4826 * median(|x - median(x)|)`, which estimates the standard
    deviation for normal data. When `spread` is 0 nothing is flagged.
    Keyword overrides replace fields of `config` (e.g. ``side="lower"``).
    """
    cfg = replace(config or OutlierConfig(), **overrides)
    _validate_config(cfg)

    arr = np.asarray(values, dtype=float).ravel()
    if arr.size == 0:
        raise EmptyInputError("values must contain at least one entry.")
    x = log10p1(arr) if cfg.log_transform else arr
    if not np.isfinite(x).all():
        raise ValueError("values must be finite after transformation.")

    center = float(np.median(x))
    spread = float(np.median(np.abs(x - center))) * MAD_SCALE
    if spread == 0.0:
        return OutlierResult(
            mask=np.zeros(arr.size, dtype=bool),
            center=center,
            spread=0.0,
            lower=-math.inf,
            upper=math.inf,
        )

    cutoff = float(cfg.mad_threshold) * spread
    if cfg.min_diff is not None:
        cutoff = max(cutoff, float(cfg.min_diff))
    lower = center - cutoff if cfg.side in ("both", "lower") else -math.inf
    upper = center + cutoff if cfg.side in ("both", "upper") else math.inf
    mask = (x < lower) | (x > upper)
    return OutlierResult(
        mask=mask, center=center, spread=spread, lower=float(lower), upper=float(upper)
    )


def annotate_outliers(
    adata: Any,
    metrics: Iterable[str] | Mapping[str, OutlierConfig],
    config: OutlierConfig | None = None,
    *,
    prefix: str = "outlier_",
    logger: logging.Logger | None = None,
) -> dict[str, OutlierResult]:
    """Write boolean `{prefix}{column}` flags into `adata.obs`.

    `metrics` is either a list of obs columns sharing `config`, or a mapping of
    column to its own config. Cells are never removed. All columns are checked
    before the first flag is written.
    """
    if isinstance(metrics, Mapping):
        plan = {str(col): cfg for col, cfg in metrics.items()}
    else:
        plan = {str(col): config or OutlierConfig() for col in metrics}

    missing = [col for col in plan if col not in adata.obs.columns]
    if missing:
        raise KeyError(f"adata.obs is missing QC metric columns: {missing}")

    results = {
        col: is_outlier(adata.obs[col].to_numpy(dtype=float), cfg) for col, cfg in plan.items()
    }
    for col, result in results.items():
        adata.obs[f"{prefix}{col}"] = result.mask
        if logger is not None:
            logger.info(
                "%s: %d/%d cells flagged (center=%.4g, spread=%.4g)",
                col,
                result.n_flagged,
                result.mask.size,
                result.center,
                result.spread,
            )
    return results


def flag_low_quality_cells(
    adata: Any,
    *,
    assay: str = "counts",
    nmads: float = 5.0,
    log: bool = True,
    control_sets: Iterable[str] = (),
    logger: logging.Logger | None = None,
) -> dict[str, OutlierResult]:
    """Library-size, detected-feature and control-percentage flags.

    Writes `filter_on_total_{assay}` and `filter_on_total_features_by_{assay}`
    (low side, optionally log scale) and `filter_on_pct_{assay}_{c}` (high side,
    linear) for each feature control set `c`. Expects `calculate_qc_metrics`
    to have run for `assay`.
    """
    low = OutlierConfig(log_transform=log, mad_threshold=nmads, side="lower")
    high = OutlierConfig(log_transform=False, mad_threshold=nmads, side="upper")
    plan: dict[str, OutlierConfig] = {
        f"total_{assay}": low,
        f"total_features_by_{assay}": low,
    }
    for name in control_sets:
        plan[f"pct_{assay}_{name}"] = high
    return annotate_outliers(adata, plan, prefix="filter_on_", logger=logger)
