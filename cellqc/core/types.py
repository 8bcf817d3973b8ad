"""Typed configuration and result containers for cellqc core operations."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence, Union

import numpy as np
import pandas as pd

# Members of a control set: identifiers, 0-based positions, or a boolean mask.
ControlMembers = Union[Sequence[Any], np.ndarray, pd.Index]
ControlSets = Union[Mapping[str, ControlMembers], Sequence[tuple[str, ControlMembers]]]

OUTLIER_SIDES: tuple[str, ...] = ("both", "lower", "upper")
ALL_ASSAYS = "all"


@dataclass(frozen=True)
class QCConfig:
    """Configuration for one `calculate_qc_metrics` call."""

    detection_assay: str = "counts"
    detection_threshold: float = 0.0
    feature_controls: ControlSets = field(default_factory=dict)
    sample_controls: ControlSets = field(default_factory=dict)
    # Extra assays, or "all" for every assay in the container.
    compute_for_assays: tuple[str, ...] | str | None = None
    percent_top: tuple[int, ...] = (50, 100, 200, 500)

    def assays(self, available: Sequence[str] = ()) -> list[str]:
        """Detection assay first, then any extra assays, without repeats.

        `available` lists the container's assays and is used for `"all"`.
        """
        extra = self.compute_for_assays
        if extra == ALL_ASSAYS:
            extra = tuple(available)
        elif isinstance(extra, str):
            extra = (extra,)
        ordered = [self.detection_assay]
        for name in extra or ():
            if name not in ordered:
                ordered.append(name)
        return ordered


@dataclass(frozen=True)
class OutlierConfig:
    """MAD outlier rule.

    - `log_transform`: apply `log10(x + 1)` before computing center/spread.
    - `mad_threshold`: number of scaled MADs from the median.
    - `side`: `both`, `lower` or `upper`.
    - `min_diff`: optional floor on the absolute cut-off distance.
    """

    log_transform: bool = False
    mad_threshold: float = 5.0
    side: str = "both"
    min_diff: float | None = None


@dataclass(frozen=True)
class OutlierResult:
    """Output of `is_outlier`; cut-offs are in transformed units."""

    mask: np.ndarray
    center: float
    spread: float
    lower: float
    upper: float

    @property
    def n_flagged(self) -> int:
        return int(np.sum(self.mask))


@dataclass(frozen=True)
class QCMetricsResult:
    """Per-cell (`obs`) and per-gene (`var`) metric frames from one call."""

    obs: pd.DataFrame
    var: pd.DataFrame
    assays: tuple[str, ...]
    feature_control_names: tuple[str, ...]
    sample_control_names: tuple[str, ...]
    metadata: dict[str, Any] = field(default_factory=dict)
