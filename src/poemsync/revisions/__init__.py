"""Revision history for poem content."""

from .diff import (
    DiffSegment,
    DiffType,
    LineChanges,
    compute_line_changes,
    diff_segments,
)
from .ledger import RevisionError, RevisionLedger

__all__ = [
    "DiffSegment",
    "DiffType",
    "LineChanges",
    "compute_line_changes",
    "diff_segments",
    "RevisionError",
    "RevisionLedger",
]
