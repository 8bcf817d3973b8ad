"""Narrow read access to assays held in an AnnData-like container.

Assays are `adata.X` (addressed as ``"X"``) and every entry of `adata.layers`.
Matrices are cells x genes, as in AnnData; nothing here copies or mutates them.
"""

from __future__ import annotations

from typing import Any, Iterable

from cellqc.core.errors import DimensionMismatchError, EmptyInputError, UnknownAssayError

PRIMARY_ASSAY = "X"


def assay_names(adata: Any) -> list[str]:
    """Return all assay names, `X` first when it is set."""
    names: list[str] = []
    if getattr(adata, "X", None) is not None:
        names.append(PRIMARY_ASSAY)
    layers = getattr(adata, "layers", None)
    if layers is not None:
        names.extend(str(key) for key in layers.keys() if str(key) != PRIMARY_ASSAY)
    return names


def get_assay(adata: Any, name: str) -> Any:
    if name == PRIMARY_ASSAY and getattr(adata, "X", None) is not None:
        return adata.X
    layers = getattr(adata, "layers", None)
    if layers is not None and name in layers:
        return layers[name]
    available = ", ".join(assay_names(adata)) or "none"
    raise UnknownAssayError(f"Assay '{name}' not found. Available assays: {available}.")


def container_shape(adata: Any) -> tuple[int, int]:
    return int(adata.obs.shape[0]), int(adata.var.shape[0])


def validate_assays(adata: Any, names: Iterable[str]) -> dict[str, Any]:
    """Resolve the requested assays and check they share the container shape."""
    expected = container_shape(adata)
    if expected[0] == 0 or expected[1] == 0:
        raise EmptyInputError(
            f"Container must hold at least one cell and one gene, got shape {expected}."
        )
    resolved: dict[str, Any] = {}
    for name in names:
        matrix = get_assay(adata, name)
        shape = tuple(int(n) for n in matrix.shape)
        if shape != expected:
            raise DimensionMismatchError(
                f"Assay '{name}' has shape {shape}; expected {expected} (cells x genes)."
            )
        resolved[name] = matrix
    return resolved
