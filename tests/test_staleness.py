from __future__ import annotations

import warnings

import anndata as ad
import numpy as np
import pandas as pd
import pytest

from cellqc.core.metrics import (
    UNS_KEY,
    calculate_qc_metrics,
    metrics_are_current,
    warn_if_stale,
)
from cellqc.core.types import QCConfig


def _adata() -> ad.AnnData:
    rng = np.random.default_rng(2)
    counts = rng.poisson(4.0, size=(10, 6)).astype(float)
    return ad.AnnData(
        X=counts.copy(),
        obs=pd.DataFrame(index=[f"c{i}" for i in range(10)]),
        var=pd.DataFrame(index=[f"g{i}" for i in range(6)]),
        layers={"counts": counts},
    )


def test_fresh_metrics_are_current() -> None:
    adata = _adata()
    calculate_qc_metrics(adata, QCConfig(feature_controls={"mt": ["g0"]}))
    meta = adata.uns[UNS_KEY]
    assert meta["assays"] == ["counts"]
    assert meta["feature_controls"] == ["mt"]
    assert (meta["n_obs"], meta["n_vars"]) == (10, 6)
    assert metrics_are_current(adata)
    with warnings.catch_warnings():
        warnings.simplefilter("error")
        assert warn_if_stale(adata) is False


def test_subsetting_cells_keeps_columns_but_marks_them_stale() -> None:
    adata = _adata()
    calculate_qc_metrics(adata)
    totals = adata.obs["total_counts"].to_numpy()

    subset = adata[:4].copy()
    np.testing.assert_array_equal(subset.obs["total_counts"], totals[:4])
    assert not metrics_are_current(subset)
    with pytest.warns(RuntimeWarning, match="calculate_qc_metrics"):
        assert warn_if_stale(subset) is True


def test_subsetting_genes_marks_metrics_stale_until_recomputed() -> None:
    adata = _adata()
    calculate_qc_metrics(adata)
    subset = adata[:, :3].copy()
    stale_totals = subset.obs["total_counts"].to_numpy()
    assert not metrics_are_current(subset)

    calculate_qc_metrics(subset)
    assert metrics_are_current(subset)
    assert (subset.obs["total_counts"].to_numpy() <= stale_totals).all()


def test_no_stored_metrics_is_not_current_and_not_warned() -> None:
    adata = _adata()
    assert not metrics_are_current(adata)
    with warnings.catch_warnings():
        warnings.simplefilter("error")
        assert warn_if_stale(adata) is False


def test_inplace_false_stores_no_provenance() -> None:
    adata = _adata()
    result = calculate_qc_metrics(adata, inplace=False)
    assert result.metadata["n_obs"] == 10
    assert not metrics_are_current(adata)
