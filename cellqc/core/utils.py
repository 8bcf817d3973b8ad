"""Small pure helpers for core computations."""

from __future__ import annotations

from typing import Any

import numpy as np
import scipy.sparse as sp


def log10p1(values: np.ndarray) -> np.ndarray:
    return np.log10(np.asarray(values, dtype=float) + 1.0)


def safe_pct(part: np.ndarray, whole: np.ndarray) -> np.ndarray:
    """Return `100 * part / whole`, with 0 wherever `whole` is 0."""
    num = 100.0 * np.asarray(part, dtype=float)
    den = np.broadcast_to(np.asarray(whole, dtype=float), num.shape)
    out = np.zeros(num.shape, dtype=float)
    np.divide(num, den, out=out, where=den != 0)
    return out


def axis_sum(matrix: Any, axis: int) -> np.ndarray:
    return np.asarray(matrix.sum(axis=axis), dtype=float).ravel()


def count_above(matrix: Any, threshold: float, axis: int) -> np.ndarray:
    """Count entries strictly greater than `threshold` along `axis`."""
    if sp.issparse(matrix):
        if threshold < 0:
            # Implicit zeros pass a negative threshold.
            return np.asarray((matrix.toarray() > threshold).sum(axis=axis)).ravel().astype(int)
        csr = sp.csr_matrix(matrix)
        above = csr > threshold
        return np.asarray(above.sum(axis=axis)).ravel().astype(int)
    return np.asarray(np.asarray(matrix) > threshold).sum(axis=axis).astype(int).ravel()


def to_dense(matrix: Any) -> np.ndarray:
    if sp.issparse(matrix):
        return matrix.toarray().astype(float)
    return np.asarray(matrix, dtype=float)


def row_top_cumsum(matrix: Any, n_max: int) -> np.ndarray:
    """Cumulative sums of each row's `n_max` largest entries, largest first.

    Sparse input is handled row by row on the stored values, so the matrix is
    never densified. `n_max` must not exceed the number of columns.
    """
    n_rows, n_cols = (int(n) for n in matrix.shape)
    if not sp.issparse(matrix):
        dense = np.asarray(matrix, dtype=float)
        if n_max < n_cols:
            # Largest n_max values of each row, unordered.
            dense = -np.partition(-dense, n_max - 1, axis=1)[:, :n_max]
        return np.cumsum(-np.sort(-dense, axis=1), axis=1)

    csr = sp.csr_matrix(matrix, dtype=float)
    csr.sum_duplicates()
    out = np.zeros((n_rows, n_max), dtype=float)
    for i in range(n_rows):
        row = csr.data[csr.indptr[i] : csr.indptr[i + 1]]
        # Implicit zeros can outrank negative stored values.
        n_zero = min(n_max, n_cols - row.size)
        if n_zero > 0:
            row = np.concatenate([row, np.zeros(n_zero)])
        top = -np.sort(-row)[:n_max]
        out[i] = np.cumsum(top)
    return out
