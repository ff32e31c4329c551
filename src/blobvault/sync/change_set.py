"""
Change-set resolution: decides what a container pass must fetch, may skip
and should delete.

Freshness is decided solely by equality of the remote last-modified
timestamp with the recorded one. The content hash is recorded but never
used as a freshness signal. A store that rewrites content without advancing
the timestamp will therefore not be re-fetched.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Set

from ..exceptions import UnsafeObjectKeyError
from ..storage.object_store import RemoteObject
from .materializer import validate_object_key
from .sync_state import ContainerSyncState

logger = logging.getLogger(__name__)

REASON_NEW = "new"
REASON_MODIFIED = "modified"
REASON_MISSING_LOCAL = "missing_local"


@dataclass(frozen=True)
class PlannedFetch:
    """A must-fetch object and why it must be fetched."""
    remote: RemoteObject
    reason: str


@dataclass
class ChangeSet:
    """Classification of one container's listing against its prior state."""
    must_fetch: List[PlannedFetch] = field(default_factory=list)
    unchanged: List[RemoteObject] = field(default_factory=list)
    stale_keys: List[str] = field(default_factory=list)
    invalid: List[UnsafeObjectKeyError] = field(default_factory=list)

    @property
    def remote_keys(self) -> Set[str]:
        keys = {p.remote.key for p in self.must_fetch}
        keys.update(obj.key for obj in self.unchanged)
        return keys

    def count(self, reason: str) -> int:
        return sum(1 for p in self.must_fetch if p.reason == reason)


def resolve_changes(
    listing: Iterable[RemoteObject],
    prior_state: ContainerSyncState,
    local_keys: Set[str],
) -> ChangeSet:
    """
    Classify a frozen container listing.

    Args:
        listing: Complete remote listing of the container
        prior_state: State recorded at the end of the last successful pass
        local_keys: Keys of files currently present in the container's
            local directory

    Returns:
        ChangeSet with must-fetch objects (new, modified, or missing
        locally despite matching metadata), unchanged objects, locally
        stale keys and rejected unsafe keys.
    """
    change_set = ChangeSet()
    seen: Set[str] = set()

    for remote in listing:
        seen.add(remote.key)
        try:
            validate_object_key(remote.key)
        except UnsafeObjectKeyError as e:
            e.container = remote.container
            change_set.invalid.append(e)
            continue

        record = prior_state.get(remote.key)
        if record is None:
            change_set.must_fetch.append(PlannedFetch(remote, REASON_NEW))
        elif record.last_modified != remote.last_modified:
            change_set.must_fetch.append(PlannedFetch(remote, REASON_MODIFIED))
        elif remote.key not in local_keys:
            # Matching metadata does not prove the local copy survived.
            change_set.must_fetch.append(PlannedFetch(remote, REASON_MISSING_LOCAL))
        else:
            change_set.unchanged.append(remote)

    change_set.stale_keys = sorted(local_keys - seen)

    logger.debug(
        f"Resolved {len(seen)} objects: {len(change_set.must_fetch)} to fetch "
        f"({change_set.count(REASON_NEW)} new, {change_set.count(REASON_MODIFIED)} modified, "
        f"{change_set.count(REASON_MISSING_LOCAL)} missing locally), "
        f"{len(change_set.unchanged)} unchanged, {len(change_set.stale_keys)} stale, "
        f"{len(change_set.invalid)} invalid"
    )
    return change_set
