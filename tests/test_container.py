from __future__ import annotations

from types import SimpleNamespace

import anndata as ad
import numpy as np
import pandas as pd
import pytest
import scipy.sparse as sp

from cellqc.core.container import assay_names, container_shape, get_assay, validate_assays
from cellqc.core.errors import (
    DimensionMismatchError,
    EmptyInputError,
    QCError,
    UnknownAssayError,
)


def _adata() -> ad.AnnData:
    counts = np.arange(12, dtype=float).reshape(3, 4)
    return ad.AnnData(
        X=np.log1p(counts),
        obs=pd.DataFrame(index=["c0", "c1", "c2"]),
        var=pd.DataFrame(index=["a", "b", "c", "d"]),
        layers={"counts": counts, "sparse": sp.csr_matrix(counts)},
    )


def test_assay_names_list_x_first() -> None:
    assert assay_names(_adata()) == ["X", "counts", "sparse"]


def test_get_assay_returns_layer_and_x() -> None:
    adata = _adata()
    assert get_assay(adata, "counts") is adata.layers["counts"]
    assert get_assay(adata, "X") is adata.X
    assert sp.issparse(get_assay(adata, "sparse"))


def test_unknown_assay_lists_available() -> None:
    with pytest.raises(UnknownAssayError, match="counts") as excinfo:
        get_assay(_adata(), "logcounts")
    assert isinstance(excinfo.value, KeyError)
    assert isinstance(excinfo.value, QCError)


def test_validate_assays_resolves_requested() -> None:
    adata = _adata()
    resolved = validate_assays(adata, ["counts", "X"])
    assert list(resolved) == ["counts", "X"]
    assert container_shape(adata) == (3, 4)


def test_mismatched_layer_shape_raises() -> None:
    duck = SimpleNamespace(
        X=np.zeros((3, 4)),
        layers={"counts": np.zeros((4, 3))},
        obs=pd.DataFrame(index=["c0", "c1", "c2"]),
        var=pd.DataFrame(index=["a", "b", "c", "d"]),
    )
    with pytest.raises(DimensionMismatchError, match=r"\(4, 3\)"):
        validate_assays(duck, ["X", "counts"])


def test_empty_container_raises() -> None:
    duck = SimpleNamespace(
        X=np.zeros((2, 0)),
        layers={},
        obs=pd.DataFrame(index=["c0", "c1"]),
        var=pd.DataFrame(index=[]),
    )
    with pytest.raises(EmptyInputError):
        validate_assays(duck, ["X"])
