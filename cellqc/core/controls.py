"""Control-set resolution: names, positions or masks -> boolean masks."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import numpy as np
import pandas as pd

from cellqc.core.errors import DuplicateControlSetNameError, UnknownControlSetError
from cellqc.core.types import ControlMembers, ControlSets

FEATURE_CONTROL_UNION = "feature_control"
ENDOGENOUS = "endogenous"
RESERVED_FEATURE_SET_NAMES: tuple[str, ...] = (FEATURE_CONTROL_UNION, ENDOGENOUS)
CELL_CONTROL_UNION = "cell_control"
NON_CONTROL = "non_control"
RESERVED_SAMPLE_SET_NAMES: tuple[str, ...] = (CELL_CONTROL_UNION, NON_CONTROL)


def _control_items(control_sets: ControlSets | None) -> list[tuple[str, ControlMembers]]:
    if control_sets is None:
        return []
    if isinstance(control_sets, Mapping):
        return [(str(name), members) for name, members in control_sets.items()]
    items: list[tuple[str, ControlMembers]] = []
    for entry in control_sets:
        try:
            name, members = entry
        except (TypeError, ValueError) as exc:
            raise TypeError(
                "Control sets must be a mapping or a sequence of (name, members) pairs."
            ) from exc
        items.append((str(name), members))
    return items


def _members_to_mask(
    name: str,
    members: ControlMembers,
    index: pd.Index,
    kind: str,
) -> np.ndarray:
    n = len(index)
    if isinstance(members, (str, bytes)):
        members = [members]
    arr = np.asarray(list(members) if not isinstance(members, np.ndarray) else members)
    mask = np.zeros(n, dtype=bool)
    if arr.size == 0:
        return mask

    if arr.dtype == bool:
        if arr.ndim != 1 or arr.size != n:
            raise UnknownControlSetError(
                f"{kind} control set '{name}' mask has {arr.size} entries; expected {n}."
            )
        return arr.copy()

    if np.issubdtype(arr.dtype, np.integer):
        bad = arr[(arr < 0) | (arr >= n)]
        if bad.size > 0:
            raise UnknownControlSetError(
                f"{kind} control set '{name}' references positions outside [0, {n}): "
                f"{bad.tolist()[:5]}"
            )
        mask[arr] = True
        return mask

    labels = pd.Index(arr.astype(str))
    names = pd.Index(index.astype(str))
    missing = labels[~labels.isin(names)]
    if len(missing) > 0:
        raise UnknownControlSetError(
            f"{kind} control set '{name}' references unknown {kind}s: {list(missing[:5])}"
        )
    # Every copy of a repeated identifier is a member.
    return np.asarray(names.isin(labels), dtype=bool)


def resolve_control_sets(
    control_sets: ControlSets | None,
    index: pd.Index,
    *,
    kind: str,
    reserved: tuple[str, ...] = (),
) -> dict[str, np.ndarray]:
    """Resolve named control sets against `index` (obs_names or var_names).

    Returns an insertion-ordered mapping of set name to boolean mask.
    """
    resolved: dict[str, np.ndarray] = {}
    for name, members in _control_items(control_sets):
        if name in reserved:
            raise DuplicateControlSetNameError(
                f"{kind} control set name '{name}' is reserved ({', '.join(reserved)})."
            )
        if name in resolved:
            raise DuplicateControlSetNameError(
                f"Duplicate {kind} control set name '{name}'."
            )
        resolved[name] = _members_to_mask(name, members, pd.Index(index), kind)
    return resolved


def union_mask(masks: dict[str, np.ndarray], n: int) -> np.ndarray:
    out = np.zeros(int(n), dtype=bool)
    for mask in masks.values():
        out |= mask
    return out


def feature_metric_sets(
    masks: dict[str, np.ndarray], n_features: int
) -> dict[str, np.ndarray]:
    """Named feature sets plus the derived union and endogenous complement."""
    if not masks:
        return {}
    union = union_mask(masks, n_features)
    out: dict[str, Any] = dict(masks)
    out[FEATURE_CONTROL_UNION] = union
    out[ENDOGENOUS] = ~union
    return out


def sample_metric_sets(
    masks: dict[str, np.ndarray], n_samples: int
) -> dict[str, np.ndarray]:
    """Named sample sets plus the derived union and its non-control complement."""
    if not masks:
        return {}
    union = union_mask(masks, n_samples)
    out: dict[str, Any] = dict(masks)
    out[CELL_CONTROL_UNION] = union
    out[NON_CONTROL] = ~union
    return out
