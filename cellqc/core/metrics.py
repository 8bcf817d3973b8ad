"""QC metric computation (no plotting, no filesystem I/O).

Per-cell metrics land in `adata.obs`, per-gene metrics in `adata.var`. Column
names are suffixed with the assay they were computed from, so metrics for
several assays (``total_counts``, ``total_tpm``) coexist.
"""

from __future__ import annotations

import hashlib
import logging
import math
import warnings
from typing import Any

import numpy as np
import pandas as pd

from cellqc.core.container import assay_names, container_shape, validate_assays
from cellqc.core.controls import (
    RESERVED_FEATURE_SET_NAMES,
    RESERVED_SAMPLE_SET_NAMES,
    feature_metric_sets,
    resolve_control_sets,
    sample_metric_sets,
    union_mask,
)
from cellqc.core.errors import InvalidThresholdError
from cellqc.core.types import QCConfig, QCMetricsResult
from cellqc.core.utils import axis_sum, count_above, log10p1, row_top_cumsum, safe_pct

_LOGGER = logging.getLogger(__name__)

UNS_KEY = "qc_metrics"


def _names_fingerprint(names: Any) -> str:
    joined = "\n".join(str(name) for name in names)
    return hashlib.sha1(joined.encode("utf-8")).hexdigest()


def _top_feature_pct(
    matrix: Any, totals: np.ndarray, percent_top: list[int]
) -> dict[int, np.ndarray]:
    if not percent_top:
        return {}
    cumulative = row_top_cumsum(matrix, max(percent_top))
    return {n: safe_pct(cumulative[:, n - 1], totals) for n in percent_top}


def _sample_metrics(
    matrix: Any,
    assay: str,
    threshold: float,
    feature_sets: dict[str, np.ndarray],
    percent_top: tuple[int, ...],
) -> dict[str, np.ndarray]:
    totals = axis_sum(matrix, axis=1)
    n_detected = count_above(matrix, threshold, axis=1)
    cols: dict[str, np.ndarray] = {
        f"total_{assay}": totals,
        f"log10_total_{assay}": log10p1(totals),
        f"total_features_by_{assay}": n_detected,
        f"log10_total_features_by_{assay}": log10p1(n_detected),
    }

    valid_top = sorted({int(n) for n in percent_top if 0 < int(n) <= matrix.shape[1]})
    for n, pct in _top_feature_pct(matrix, totals, valid_top).items():
        cols[f"pct_{assay}_in_top_{n}_features"] = pct

    for set_name, mask in feature_sets.items():
        sub = matrix[:, mask]
        set_totals = axis_sum(sub, axis=1) if mask.any() else np.zeros_like(totals)
        set_detected = (
            count_above(sub, threshold, axis=1)
            if mask.any()
            else np.zeros(totals.size, dtype=int)
        )
        cols[f"total_{assay}_{set_name}"] = set_totals
        cols[f"log10_total_{assay}_{set_name}"] = log10p1(set_totals)
        cols[f"total_features_by_{assay}_{set_name}"] = set_detected
        cols[f"pct_{assay}_{set_name}"] = safe_pct(set_totals, totals)
    return cols


def _feature_metrics(matrix: Any, assay: str, threshold: float) -> dict[str, np.ndarray]:
    n_cells = int(matrix.shape[0])
    totals = axis_sum(matrix, axis=0)
    means = totals / float(n_cells)
    n_detected = count_above(matrix, threshold, axis=0)
    grand_total = float(totals.sum())
    return {
        f"mean_{assay}": means,
        f"log10_mean_{assay}": log10p1(means),
        f"total_{assay}": totals,
        f"log10_total_{assay}": log10p1(totals),
        f"pct_total_{assay}": safe_pct(totals, grand_total),
        f"n_cells_by_{assay}": n_detected,
        f"pct_dropout_by_{assay}": 100.0 * (1.0 - n_detected / float(n_cells)),
    }


def _feature_set_metrics(
    matrix: Any,
    assay: str,
    threshold: float,
    sample_sets: dict[str, np.ndarray],
    feature_totals: np.ndarray,
) -> dict[str, np.ndarray]:
    """Per-gene metrics restricted to the cells of each sample control set."""
    n_genes = int(matrix.shape[1])
    cols: dict[str, np.ndarray] = {}
    for set_name, mask in sample_sets.items():
        n_in_set = int(mask.sum())
        if n_in_set > 0:
            sub = matrix[mask, :]
            set_totals = axis_sum(sub, axis=0)
            set_detected = count_above(sub, threshold, axis=0)
            set_means = set_totals / float(n_in_set)
        else:
            set_totals = np.zeros(n_genes, dtype=float)
            set_detected = np.zeros(n_genes, dtype=int)
            set_means = np.zeros(n_genes, dtype=float)
        cols[f"total_{assay}_{set_name}"] = set_totals
        cols[f"log10_total_{assay}_{set_name}"] = log10p1(set_totals)
        cols[f"mean_{assay}_{set_name}"] = set_means
        cols[f"log10_mean_{assay}_{set_name}"] = log10p1(set_means)
        cols[f"n_cells_by_{assay}_{set_name}"] = set_detected
        cols[f"pct_{assay}_{set_name}"] = safe_pct(set_totals, feature_totals)
    return cols


def calculate_qc_metrics(
    adata: Any,
    config: QCConfig | None = None,
    *,
    inplace: bool = True,
    logger: logging.Logger | None = None,
) -> QCMetricsResult:
    """Compute per-cell and per-gene QC metrics.

    Every input is validated and every column computed before anything is
    written, so a failing call leaves `adata` untouched. With `inplace=True`
    the columns are merged into `adata.obs` / `adata.var` (existing columns of
    the same name are overwritten) and provenance is stored in
    `adata.uns["qc_metrics"]`.

    Raises:
        UnknownAssayError, DimensionMismatchError, EmptyInputError: bad assays.
        UnknownControlSetError, DuplicateControlSetNameError: bad control sets.
        InvalidThresholdError: non-finite detection threshold.
    """
    cfg = config or QCConfig()
    log = logger or _LOGGER
    threshold = float(cfg.detection_threshold)
    if not math.isfinite(threshold):
        raise InvalidThresholdError("detection_threshold must be finite.")

    assays = cfg.assays(assay_names(adata))
    matrices = validate_assays(adata, assays)
    n_cells, n_genes = container_shape(adata)

    feature_masks = resolve_control_sets(
        cfg.feature_controls,
        adata.var_names,
        kind="feature",
        reserved=RESERVED_FEATURE_SET_NAMES,
    )
    sample_masks = resolve_control_sets(
        cfg.sample_controls,
        adata.obs_names,
        kind="sample",
        reserved=RESERVED_SAMPLE_SET_NAMES,
    )
    feature_sets = feature_metric_sets(feature_masks, n_genes)
    sample_sets = sample_metric_sets(sample_masks, n_cells)

    obs_cols: dict[str, np.ndarray] = {}
    var_cols: dict[str, np.ndarray] = {}
    for assay in assays:
        matrix = matrices[assay]
        obs_cols.update(
            _sample_metrics(matrix, assay, threshold, feature_sets, cfg.percent_top)
        )
        feature_cols = _feature_metrics(matrix, assay, threshold)
        var_cols.update(feature_cols)
        var_cols.update(
            _feature_set_metrics(
                matrix, assay, threshold, sample_sets, feature_cols[f"total_{assay}"]
            )
        )
        log.debug("Computed QC metrics for assay '%s'", assay)

    var_cols["is_feature_control"] = union_mask(feature_masks, n_genes)
    for name, mask in feature_masks.items():
        var_cols[f"is_feature_control_{name}"] = mask
    obs_cols["is_cell_control"] = union_mask(sample_masks, n_cells)
    for name, mask in sample_masks.items():
        obs_cols[f"is_cell_control_{name}"] = mask

    obs_df = pd.DataFrame(obs_cols, index=pd.Index(adata.obs_names))
    var_df = pd.DataFrame(var_cols, index=pd.Index(adata.var_names))
    provenance: dict[str, Any] = {
        "assays": list(assays),
        "detection_threshold": threshold,
        "feature_controls": list(feature_masks),
        "sample_controls": list(sample_masks),
        "n_obs": n_cells,
        "n_vars": n_genes,
        "obs_fingerprint": _names_fingerprint(adata.obs_names),
        "var_fingerprint": _names_fingerprint(adata.var_names),
    }

    if inplace:
        for col in obs_df.columns:
            adata.obs[col] = obs_df[col].to_numpy()
        for col in var_df.columns:
            adata.var[col] = var_df[col].to_numpy()
        adata.uns[UNS_KEY] = provenance
        log.info(
            "QC metrics written for %d cells x %d genes (assays: %s)",
            n_cells,
            n_genes,
            ", ".join(assays),
        )

    return QCMetricsResult(
        obs=obs_df,
        var=var_df,
        assays=tuple(assays),
        feature_control_names=tuple(feature_masks),
        sample_control_names=tuple(sample_masks),
        metadata=provenance,
    )


def metrics_are_current(adata: Any) -> bool:
    """Whether stored QC metrics still describe the container's cells and genes.

    Subsetting keeps metric columns without recomputing them; this compares the
    provenance recorded at computation time against the current container.
    Returns False when no provenance is stored.
    """
    uns = getattr(adata, "uns", None)
    if uns is None or UNS_KEY not in uns:
        return False
    meta = uns[UNS_KEY]
    n_cells, n_genes = container_shape(adata)
    if int(meta.get("n_obs", -1)) != n_cells or int(meta.get("n_vars", -1)) != n_genes:
        return False
    return meta.get("obs_fingerprint") == _names_fingerprint(adata.obs_names) and meta.get(
        "var_fingerprint"
    ) == _names_fingerprint(adata.var_names)


def warn_if_stale(adata: Any) -> bool:
    """Warn when stored QC metrics no longer match the container. Returns staleness."""
    uns = getattr(adata, "uns", None)
    if uns is None or UNS_KEY not in uns:
        return False
    if metrics_are_current(adata):
        return False
    warnings.warn(
        (
            "QC metrics in obs/var were computed for a different set of cells or genes; "
            "call calculate_qc_metrics again to refresh them."
        ),
        RuntimeWarning,
        stacklevel=2,
    )
    return True
