"""Set difference between local files and the remote folder index."""

from dataclasses import dataclass, field
from typing import AbstractSet, Dict, FrozenSet, List, Mapping, Tuple


@dataclass(frozen=True)
class SyncPlan:
    """Work for one reconciliation pass."""

    to_upsert: FrozenSet[str] = frozenset()
    to_delete: Dict[str, str] = field(default_factory=dict)

    @property
    def upsert_order(self) -> List[str]:
        """Names to upsert, sorted so runs are reproducible."""
        return sorted(self.to_upsert)

    @property
    def delete_order(self) -> List[Tuple[str, str]]:
        """``(name, file_id)`` pairs to delete, sorted by name."""
        return sorted(self.to_delete.items())

    @property
    def is_empty(self) -> bool:
        return not self.to_upsert and not self.to_delete


def compute_plan(local: AbstractSet[str], remote: Mapping[str, str]) -> SyncPlan:
    """Every local file is upserted; remote names absent locally are deleted.

    Membership is by exact name only. No content or timestamp comparison
    takes place.
    """
    return SyncPlan(
        to_upsert=frozenset(local),
        to_delete={name: file_id for name, file_id in remote.items() if name not in local}
    )
