"""drivemirror: mirror a local directory onto a Google Drive folder."""

__version__ = "1.0.0"

from .core import Reconciler, SyncOutcome, SyncResult, SyncPlan, compute_plan
from .config import MirrorConfig, ServiceAccountCredentials

__all__ = [
    "__version__",
    "Reconciler",
    "SyncOutcome",
    "SyncResult",
    "SyncPlan",
    "compute_plan",
    "MirrorConfig",
    "ServiceAccountCredentials"
]
