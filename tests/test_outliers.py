from __future__ import annotations

import math

import anndata as ad
import numpy as np
import pandas as pd
import pytest

from cellqc.core.errors import EmptyInputError, InvalidThresholdError
from cellqc.core.metrics import calculate_qc_metrics
from cellqc.core.outliers import (
    MAD_SCALE,
    annotate_outliers,
    flag_low_quality_cells,
    is_outlier,
)
from cellqc.core.types import OutlierConfig, QCConfig


@pytest.mark.parametrize("threshold", [0.0, 1.0, 5.0])
def test_constant_values_are_never_flagged(threshold: float) -> None:
    result = is_outlier(np.full(6, 5.0), OutlierConfig(mad_threshold=threshold))
    assert not result.mask.any()
    assert result.spread == 0.0


def test_zero_mad_flags_nothing_even_with_extreme_value() -> None:
    result = is_outlier(np.array([1.0, 1.0, 1.0, 1.0, 100.0]))
    assert not result.mask.any()
    assert result.lower == -math.inf
    assert result.upper == math.inf


def test_center_and_spread_use_scaled_mad() -> None:
    values = np.array([10.0, 11.0, 9.0, 10.0, 12.0, 8.0, 10.0, 50.0])
    result = is_outlier(values, OutlierConfig(mad_threshold=5.0))
    assert result.center == pytest.approx(10.0)
    assert result.spread == pytest.approx(MAD_SCALE)
    assert result.mask.tolist() == [False] * 7 + [True]
    assert result.n_flagged == 1


@pytest.mark.parametrize(
    "side,expected",
    [
        ("both", [0, 8]),
        ("lower", [0]),
        ("upper", [8]),
    ],
)
def test_side_restricts_direction(side: str, expected: list[int]) -> None:
    values = np.array([1.0, 10.0, 11.0, 9.0, 10.0, 12.0, 8.0, 10.0, 50.0])
    result = is_outlier(values, OutlierConfig(mad_threshold=3.0, side=side))
    assert np.flatnonzero(result.mask).tolist() == expected


def test_log_transform_is_log10_plus_one() -> None:
    values = np.array([9.0, 99.0, 999.0, 9999.0, 99999.0])
    result = is_outlier(values, OutlierConfig(log_transform=True, mad_threshold=1.0))
    assert result.center == pytest.approx(3.0)
    assert result.spread == pytest.approx(MAD_SCALE)
    assert result.mask.tolist() == [True, False, False, False, True]


def test_min_diff_floors_the_cutoff() -> None:
    values = np.array([9.0, 99.0, 999.0, 9999.0, 99999.0])
    result = is_outlier(
        values, OutlierConfig(log_transform=True, mad_threshold=1.0, min_diff=2.5)
    )
    assert not result.mask.any()
    assert result.upper == pytest.approx(5.5)


def test_zero_threshold_flags_everything_off_center() -> None:
    values = np.array([1.0, 2.0, 3.0, 4.0, 5.0])
    result = is_outlier(values, mad_threshold=0.0)
    assert result.mask.tolist() == [True, True, False, True, True]


def test_keyword_overrides_replace_config_fields() -> None:
    values = np.array([1.0, 10.0, 11.0, 9.0, 10.0, 12.0, 8.0, 10.0, 50.0])
    base = OutlierConfig(mad_threshold=3.0)
    result = is_outlier(values, base, side="upper")
    assert np.flatnonzero(result.mask).tolist() == [8]
    assert base.side == "both"


def test_invalid_inputs_raise() -> None:
    with pytest.raises(EmptyInputError):
        is_outlier(np.array([]))
    with pytest.raises(InvalidThresholdError):
        is_outlier(np.array([1.0, 2.0]), mad_threshold=-1.0)
    with pytest.raises(InvalidThresholdError):
        is_outlier(np.array([1.0, 2.0]), mad_threshold=float("inf"))
    with pytest.raises(InvalidThresholdError):
        is_outlier(np.array([1.0, 2.0]), min_diff=-0.5)
    with pytest.raises(ValueError, match="side"):
        is_outlier(np.array([1.0, 2.0]), side="sideways")
    with pytest.raises(ValueError, match="finite"):
        is_outlier(np.array([1.0, np.nan, 2.0]))


def _metrics_adata() -> ad.AnnData:
    rng = np.random.default_rng(11)
    counts = rng.poisson(1.0, size=(40, 15)).astype(float)
    # One nearly empty cell and one cell dominated by the control genes.
    counts[0] = 0.0
    counts[0, 5] = 1.0
    counts[1, :2] = 5000.0
    obs = pd.DataFrame(index=[f"c{i}" for i in range(40)])
    var = pd.DataFrame(index=[f"g{i}" for i in range(15)])
    adata = ad.AnnData(X=np.log1p(counts), obs=obs, var=var, layers={"counts": counts})
    calculate_qc_metrics(adata, QCConfig(feature_controls={"mt": ["g0", "g1"]}))
    return adata


def test_annotate_outliers_writes_bool_columns_without_removing_cells() -> None:
    adata = _metrics_adata()
    results = annotate_outliers(
        adata, ["total_counts"], OutlierConfig(log_transform=True, mad_threshold=3.0)
    )
    assert adata.n_obs == 40
    flags = adata.obs["outlier_total_counts"]
    assert flags.dtype == bool
    assert bool(flags.iloc[0])
    assert results["total_counts"].n_flagged == int(flags.sum())


def test_annotate_outliers_missing_column_writes_nothing() -> None:
    adata = _metrics_adata()
    before = list(adata.obs.columns)
    with pytest.raises(KeyError, match="not_a_metric"):
        annotate_outliers(adata, ["total_counts", "not_a_metric"])
    assert list(adata.obs.columns) == before


def test_flag_low_quality_cells_uses_expected_sides() -> None:
    adata = _metrics_adata()
    results = flag_low_quality_cells(adata, nmads=3.0, control_sets=["mt"])
    assert set(results) == {"total_counts", "total_features_by_counts", "pct_counts_mt"}
    assert results["total_counts"].upper == math.inf
    assert results["pct_counts_mt"].lower == -math.inf
    assert bool(adata.obs["filter_on_total_counts"].iloc[0])
    assert bool(adata.obs["filter_on_total_features_by_counts"].iloc[0])
    assert bool(adata.obs["filter_on_pct_counts_mt"].iloc[1])
