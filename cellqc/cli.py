"""Command-line interfaces for cellqc."""

from __future__ import annotations

import argparse
from typing import Any, Iterable

from cellqc.config import load_json_config


def _config_from_args(args: argparse.Namespace) -> dict[str, Any]:
    cfg: dict[str, Any] = load_json_config(args.config) if args.config else {}
    if args.h5ad is not None:
        cfg["h5ad_path"] = args.h5ad
    if args.outdir is not None:
        cfg["outdir"] = args.outdir
    if args.assay is not None:
        qc_section = dict(cfg.get("qc") or {})
        qc_section["detection_assay"] = args.assay
        cfg["qc"] = qc_section
    if args.nmads is not None:
        cfg["nmads"] = float(args.nmads)
    if args.no_plots:
        cfg["plots"] = False
    if args.write_h5ad:
        cfg["write_h5ad"] = True
    if "h5ad_path" not in cfg:
        raise SystemExit("Either --config with 'h5ad_path' or --h5ad is required.")
    return cfg


def qc_main(argv: Iterable[str] | None = None) -> int:
    """Compute QC metrics and outlier flags for one .h5ad file.

    Args:
        argv: Command-line arguments (if None, uses sys.argv).

    Returns:
        Exit code (0 for success).
    """
    parser = argparse.ArgumentParser(description="cellqc QC metrics and outlier flags")
    parser.add_argument("--config", default=None, help="Path to a JSON pipeline config")
    parser.add_argument("--h5ad", default=None, help="Path to .h5ad file")
    parser.add_argument("--outdir", default=None, help="Output directory root")
    parser.add_argument("--assay", default=None, help="Detection assay (layer name or X)")
    parser.add_argument("--nmads", type=float, default=None, help="MADs for default flags")
    parser.add_argument("--no-plots", action="store_true", help="Skip figures")
    parser.add_argument("--write-h5ad", action="store_true", help="Write annotated .h5ad")
    args = parser.parse_args(list(argv) if argv is not None else None)

    from cellqc.pipeline.run import run_qc

    summary = run_qc(_config_from_args(args))
    print(f"n_cells={summary.n_cells}")
    print(f"n_genes={summary.n_genes}")
    for col, n in summary.n_flagged.items():
        print(f"{col}={n}")
    print(f"n_flagged_any={summary.n_flagged_any}")
    print(f"outdir={summary.outdir.as_posix()}")
    return 0


def check_stale_main(argv: Iterable[str] | None = None) -> int:
    """Report whether stored QC metrics still match the file's cells and genes.

    Returns:
        0 when metrics are current, 1 when stale or missing.
    """
    parser = argparse.ArgumentParser(description="Check stored QC metrics for staleness")
    parser.add_argument("--h5ad", required=True, help="Path to .h5ad file")
    args = parser.parse_args(list(argv) if argv is not None else None)

    from cellqc.core.metrics import UNS_KEY, metrics_are_current
    from cellqc.pipeline.io import read_h5ad

    adata = read_h5ad(args.h5ad)
    if UNS_KEY not in adata.uns:
        print("qc_metrics=missing")
        return 1
    current = metrics_are_current(adata)
    print(f"qc_metrics={'current' if current else 'stale'}")
    return 0 if current else 1


def main(argv: Iterable[str] | None = None) -> int:
    """Main CLI entry point.

    Args:
        argv: Command-line arguments (if None, uses sys.argv).

    Returns:
        Exit code.
    """
    parser = argparse.ArgumentParser(description="cellqc CLI")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("qc", help="Compute QC metrics, flags, tables and figures")
    sub.add_parser("check-stale", help="Check stored QC metrics against the data")

    args, remainder = parser.parse_known_args(list(argv) if argv is not None else None)
    if args.command == "qc":
        return qc_main(remainder)
    if args.command == "check-stale":
        return check_stale_main(remainder)
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
