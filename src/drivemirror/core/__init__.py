"""Core reconciliation logic package."""

from .diff import SyncPlan, compute_plan
from .enumerator import LocalEnumerator, DirectoryUnreadable, LocalReadFailed, matches_extension
from .reconciler import (
    Reconciler,
    SyncFailed,
    SyncOutcome,
    SyncResult,
    SyncStage,
    guess_mime_type
)

__all__ = [
    "SyncPlan",
    "compute_plan",
    "LocalEnumerator",
    "DirectoryUnreadable",
    "LocalReadFailed",
    "matches_extension",
    "Reconciler",
    "SyncFailed",
    "SyncOutcome",
    "SyncResult",
    "SyncStage",
    "guess_mime_type"
]
