"""
Change-set tracking for the network model.

Keeps three disjoint sets keyed by (object_type, id):
- created: objects that do not exist on the server yet
- updated: server objects whose geometry or properties changed
- deleted: tombstones {type, id} of server objects removed locally

Rules:
- an update of a created object refreshes the create payload instead of
  entering `updated`
- deleting a created object just forgets it (nothing to delete server-side),
  unless its create request is in flight: then it becomes a tombstone once
  that request succeeds
- a delete supersedes an earlier update

Every record bumps a revision number. The sync client takes a checkpoint of
the revisions it sent and clears only entries that did not change while the
request was in flight.
"""

import copy
import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Set, Tuple

logger = logging.getLogger(__name__)

ObjectKey = Tuple[str, int]
TrackerSnapshot = Tuple[Dict, Dict, Dict, int, int]


class ChangeKind(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


@dataclass(frozen=True)
class ChangeEntry:
    """One change-set entry. data is a snapshot dict (None for tombstones)."""
    kind: ChangeKind
    object_type: str
    object_id: int
    data: Optional[Dict[str, Any]] = None
    revision: int = 0

    @property
    def key(self) -> ObjectKey:
        return self.object_type, self.object_id

    def tombstone(self) -> Dict[str, Any]:
        return {"type": self.object_type, "id": self.object_id}


class ChangeSetTracker:
    """Pure bookkeeping over the created / updated / deleted sets."""

    def __init__(self):
        self._created: Dict[ObjectKey, ChangeEntry] = {}
        self._updated: Dict[ObjectKey, ChangeEntry] = {}
        self._deleted: Dict[ObjectKey, ChangeEntry] = {}
        self._revision = 0
        # Keys sent in create requests that have not been answered yet
        self._in_flight: Dict[ObjectKey, int] = {}
        # In-flight creates deleted locally: they need a tombstone once created
        self._orphaned: Set[ObjectKey] = set()
        # key -> (clear sequence, revision sent, kind) of the last acknowledged entry
        self._cleared: Dict[ObjectKey, Tuple[int, int, ChangeKind]] = {}
        self._clear_seq = 0

    def _next_revision(self) -> int:
        self._revision += 1
        return self._revision

    # --- Recording ---

    def record_created(self, object_type: str, object_id: int, data: Dict[str, Any]) -> None:
        key = (object_type, object_id)
        self._updated.pop(key, None)
        self._deleted.pop(key, None)
        self._orphaned.discard(key)
        self._created[key] = ChangeEntry(
            ChangeKind.CREATED, object_type, object_id, copy.deepcopy(data), self._next_revision()
        )

    def record_updated(self, object_type: str, object_id: int, data: Dict[str, Any]) -> None:
        key = (object_type, object_id)
        if key in self._deleted:
            logger.debug(f"Ignoring update of deleted object {key}")
            return
        if key in self._created:
            # The create payload carries the latest state
            self._created[key] = replace(
                self._created[key], data=copy.deepcopy(data), revision=self._next_revision()
            )
            return
        self._updated[key] = ChangeEntry(
            ChangeKind.UPDATED, object_type, object_id, copy.deepcopy(data), self._next_revision()
        )

    def record_deleted(self, object_type: str, object_id: int) -> None:
        key = (object_type, object_id)
        if self._created.pop(key, None) is not None:
            if key in self._in_flight:
                # The server may create it anyway; decided when the request settles
                self._orphaned.add(key)
            return
        self._updated.pop(key, None)
        self._deleted[key] = ChangeEntry(
            ChangeKind.DELETED, object_type, object_id, None, self._next_revision()
        )

    # --- Reading ---

    def get_created(self) -> List[ChangeEntry]:
        return list(self._created.values())

    def get_updated(self) -> List[ChangeEntry]:
        return list(self._updated.values())

    def get_deleted(self) -> List[ChangeEntry]:
        return list(self._deleted.values())

    def kind_of(self, object_type: str, object_id: int) -> Optional[ChangeKind]:
        key = (object_type, object_id)
        for kind, entries in ((ChangeKind.CREATED, self._created),
                              (ChangeKind.UPDATED, self._updated),
                              (ChangeKind.DELETED, self._deleted)):
            if key in entries:
                return kind
        return None

    @property
    def is_dirty(self) -> bool:
        return bool(self._created or self._updated or self._deleted)

    def __len__(self) -> int:
        return len(self._created) + len(self._updated) + len(self._deleted)

    # --- Checkpoints & clearing ---

    def checkpoint(self, kind: ChangeKind) -> Dict[ObjectKey, int]:
        """
        Revisions of the entries of one set, taken when a payload is composed.

        A created checkpoint marks its keys in flight until clear_created() or
        release() settles it.
        """
        entries = self._entries_for(kind)
        if kind == ChangeKind.CREATED:
            for key in entries:
                self._in_flight[key] = self._in_flight.get(key, 0) + 1
        return {key: entry.revision for key, entry in entries.items()}

    def _entries_for(self, kind: ChangeKind) -> Dict[ObjectKey, ChangeEntry]:
        if kind == ChangeKind.CREATED:
            return self._created
        if kind == ChangeKind.UPDATED:
            return self._updated
        return self._deleted

    def _land(self, key: ObjectKey) -> None:
        count = self._in_flight.pop(key, 0) - 1
        if count > 0:
            self._in_flight[key] = count
        elif key in self._orphaned:
            self._orphaned.discard(key)
            self._deleted[key] = ChangeEntry(
                ChangeKind.DELETED, key[0], key[1], None, self._next_revision()
            )

    def _acknowledge(self, key: ObjectKey, revision: int, kind: ChangeKind) -> None:
        self._clear_seq += 1
        self._cleared[key] = (self._clear_seq, revision, kind)

    def clear_created(self, checkpoint: Optional[Dict[ObjectKey, int]] = None) -> None:
        """
        Forget created entries after a successful create request.

        With a checkpoint, only the sent entries are cleared. One edited since
        the payload was composed now exists server-side with stale data, so it
        moves to `updated`. One deleted meanwhile exists server-side too and
        gets a tombstone.
        """
        if checkpoint is None:
            for key, entry in self._created.items():
                self._acknowledge(key, entry.revision, ChangeKind.CREATED)
            self._created.clear()
            return
        for key, revision in checkpoint.items():
            entry = self._created.pop(key, None)
            if entry is not None:
                self._acknowledge(key, revision, ChangeKind.CREATED)
                if entry.revision != revision:
                    self._updated[key] = replace(entry, kind=ChangeKind.UPDATED)
            self._land(key)

    def release(self, checkpoint: Dict[ObjectKey, int]) -> None:
        """Settle a create checkpoint whose request failed; its entries stay pending."""
        for key in checkpoint:
            count = self._in_flight.pop(key, 0) - 1
            if count > 0:
                self._in_flight[key] = count
            else:
                self._orphaned.discard(key)

    def clear_updated(self, checkpoint: Optional[Dict[ObjectKey, int]] = None) -> None:
        if checkpoint is None:
            for key, entry in self._updated.items():
                self._acknowledge(key, entry.revision, ChangeKind.UPDATED)
            self._updated.clear()
            return
        for key, revision in checkpoint.items():
            entry = self._updated.get(key)
            if entry is not None and entry.revision == revision:
                del self._updated[key]
                self._acknowledge(key, revision, ChangeKind.UPDATED)

    def clear_deleted(self, checkpoint: Optional[Dict[ObjectKey, int]] = None) -> None:
        if checkpoint is None:
            for key, entry in self._deleted.items():
                self._acknowledge(key, entry.revision, ChangeKind.DELETED)
            self._deleted.clear()
            return
        for key, revision in checkpoint.items():
            if self._deleted.pop(key, None) is not None:
                self._acknowledge(key, revision, ChangeKind.DELETED)

    def reset(self) -> None:
        self._created.clear()
        self._updated.clear()
        self._deleted.clear()
        self._in_flight.clear()
        self._orphaned.clear()
        self._cleared.clear()

    # --- Cancellation support ---

    def snapshot(self) -> TrackerSnapshot:
        return (dict(self._created), dict(self._updated), dict(self._deleted),
                self._revision, self._clear_seq)

    def restore(self, snapshot: TrackerSnapshot) -> None:
        created, updated, deleted, revision, _ = snapshot
        self._created = dict(created)
        self._updated = dict(updated)
        self._deleted = dict(deleted)
        # Revisions never go backwards: in-flight checkpoints must stay unambiguous
        self._revision = max(self._revision, revision)

    def rollback(self, snapshot: TrackerSnapshot) -> List[Tuple[ObjectKey, ChangeKind]]:
        """
        Undo the entries recorded after snapshot, leaving older ones alone.

        Entries a request acknowledged in the meantime stay cleared. When that
        request carried a post-snapshot revision the server now differs from
        the rolled-back model: those keys are returned with the acknowledged
        kind so the caller can record them again.
        """
        created, updated, deleted, revision, clear_seq = snapshot
        before: Dict[ObjectKey, ChangeEntry] = {**created, **updated, **deleted}
        current: Dict[ObjectKey, ChangeEntry] = {**self._created, **self._updated, **self._deleted}

        touched = {key for key, entry in current.items() if entry.revision > revision}
        touched.update(key for key in before if key not in current)
        touched.update(key for key, acknowledged in self._cleared.items() if acknowledged[0] > clear_seq)

        resync = []
        for key in sorted(touched):
            if key in current and current[key].revision <= revision:
                continue
            for entries in (self._created, self._updated, self._deleted):
                entries.pop(key, None)
            self._orphaned.discard(key)
            acknowledged = self._cleared.get(key)
            if acknowledged is not None and acknowledged[0] > clear_seq:
                if acknowledged[1] > revision:
                    resync.append((key, acknowledged[2]))
                continue
            entry = before.get(key)
            if entry is not None:
                self._entries_for(entry.kind)[key] = entry
        return resync
