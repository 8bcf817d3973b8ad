"""Config-driven QC pipeline entrypoints."""


def run_qc(*args, **kwargs):
    from cellqc.pipeline.run import run_qc as _run_qc

    return _run_qc(*args, **kwargs)


__all__ = ["run_qc"]
