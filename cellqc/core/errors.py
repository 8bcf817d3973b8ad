"""Exception hierarchy for QC metric and outlier computations."""

from __future__ import annotations


class QCError(ValueError):
    """Base class for caller configuration errors raised by cellqc."""


class UnknownAssayError(QCError, KeyError):
    """Requested assay is not present in the container."""


class UnknownControlSetError(QCError, KeyError):
    """A control set references a feature/sample that does not exist."""


class DuplicateControlSetNameError(QCError):
    """Two control sets of the same kind share a name (or use a reserved one)."""


class DimensionMismatchError(QCError):
    """Assays in one container disagree on shape."""


class EmptyInputError(QCError):
    """Input has no entries to summarize."""


class InvalidThresholdError(QCError):
    """Threshold is negative or not finite."""
