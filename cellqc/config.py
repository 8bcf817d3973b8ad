"""Configuration loading utilities for cellqc pipelines."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from cellqc.core.errors import DuplicateControlSetNameError, InvalidThresholdError
from cellqc.core.types import OUTLIER_SIDES, ControlSets, OutlierConfig, QCConfig

_QC_KEYS = {
    "detection_assay",
    "detection_threshold",
    "feature_controls",
    "sample_controls",
    "compute_for_assays",
    "percent_top",
}
_OUTLIER_KEYS = {"log_transform", "mad_threshold", "side", "min_diff"}
PIPELINE_KEYS = {
    "h5ad_path",
    "outdir",
    "qc",
    "flag_low_quality",
    "nmads",
    "outliers",
    "plots",
    "n_top",
    "reduced_dims",
    "color_by",
    "plot_assay",
    "seed",
    "length_column",
    "plate_position_column",
    "write_h5ad",
}


def _reject_duplicate_keys(pairs: list[tuple[str, Any]]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key, value in pairs:
        if key in out:
            raise ValueError(f"Duplicate key '{key}' in JSON object.")
        out[key] = value
    return out


def load_json_config(path: str | Path) -> dict[str, Any]:
    """Load and validate a pipeline config from a JSON file."""
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")
    if config_path.suffix.lower() != ".json":
        raise ValueError(
            f"Unsupported config format for '{config_path}'. Use a .json config file."
        )

    try:
        with open(config_path, "r", encoding="utf-8") as fh:
            data = json.load(fh, object_pairs_hook=_reject_duplicate_keys)
    except json.JSONDecodeError as exc:
        raise ValueError(
            f"Invalid JSON in config '{config_path}' at line {exc.lineno}, "
            f"column {exc.colno}: {exc.msg}"
        ) from exc

    if not isinstance(data, dict):
        raise ValueError(
            f"Invalid config root in '{config_path}': expected JSON object, got {type(data).__name__}."
        )
    return data


def _check_keys(section: str, data: dict[str, Any], allowed: set[str]) -> None:
    unknown = sorted(set(data) - allowed)
    if unknown:
        raise ValueError(f"Unknown keys in '{section}' config: {', '.join(unknown)}")


def check_pipeline_keys(cfg: dict[str, Any]) -> None:
    """Raise ValueError naming any unknown top-level pipeline keys."""
    _check_keys("pipeline", cfg, PIPELINE_KEYS)


def _members(section: str, name: str, raw: Any) -> list[Any]:
    if isinstance(raw, str):
        return [raw]
    if not isinstance(raw, (list, tuple)):
        raise ValueError(
            f"Members of '{name}' in '{section}' must be a list or a single name, "
            f"got {type(raw).__name__}."
        )
    return list(raw)


def _control_sets_from_config(section: str, raw: Any) -> ControlSets:
    """Accept `{"name": [...]}` or `[{"name": ..., "members": [...]}, ...]`."""
    if raw is None:
        return {}
    if isinstance(raw, dict):
        return {
            str(name): _members(section, str(name), members) for name, members in raw.items()
        }
    if isinstance(raw, list):
        pairs: list[tuple[str, list[Any]]] = []
        seen: set[str] = set()
        for entry in raw:
            if not isinstance(entry, dict) or "name" not in entry or "members" not in entry:
                raise ValueError(
                    f"Each entry of '{section}' must be an object with 'name' and 'members'."
                )
            name = str(entry["name"])
            if name in seen:
                raise DuplicateControlSetNameError(
                    f"Duplicate control set name '{name}' in '{section}'."
                )
            seen.add(name)
            pairs.append((name, _members(section, name, entry["members"])))
        return pairs
    raise ValueError(f"'{section}' must be an object or a list, got {type(raw).__name__}.")


def qc_config_from_dict(data: dict[str, Any] | None) -> QCConfig:
    """Build a `QCConfig` from the `qc` section of a pipeline config."""
    data = dict(data or {})
    _check_keys("qc", data, _QC_KEYS)
    kwargs: dict[str, Any] = {}
    if "detection_assay" in data:
        kwargs["detection_assay"] = str(data["detection_assay"])
    if "detection_threshold" in data:
        kwargs["detection_threshold"] = float(data["detection_threshold"])
    kwargs["feature_controls"] = _control_sets_from_config(
        "feature_controls", data.get("feature_controls")
    )
    kwargs["sample_controls"] = _control_sets_from_config(
        "sample_controls", data.get("sample_controls")
    )
    extra = data.get("compute_for_assays")
    if isinstance(extra, str):
        kwargs["compute_for_assays"] = extra
    elif extra is not None:
        kwargs["compute_for_assays"] = tuple(str(a) for a in extra)
    if "percent_top" in data:
        kwargs["percent_top"] = tuple(int(n) for n in data["percent_top"])
    return QCConfig(**kwargs)


def outlier_config_from_dict(data: dict[str, Any] | None) -> OutlierConfig:
    """Build a validated `OutlierConfig`."""
    data = dict(data or {})
    _check_keys("outliers", data, _OUTLIER_KEYS)
    cfg = OutlierConfig(
        log_transform=bool(data.get("log_transform", False)),
        mad_threshold=float(data.get("mad_threshold", 5.0)),
        side=str(data.get("side", "both")),
        min_diff=None if data.get("min_diff") is None else float(data["min_diff"]),
    )
    if cfg.mad_threshold < 0:
        raise InvalidThresholdError(f"mad_threshold must be >= 0, got {cfg.mad_threshold}.")
    if cfg.side not in OUTLIER_SIDES:
        raise ValueError(
            f"Unsupported side '{cfg.side}'. Use one of: {', '.join(OUTLIER_SIDES)}."
        )
    return cfg
