# Copyright 2025 Vijaykumar Singh <singhvjd@gmail.com>
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""In-process registry of change sets and their status.

The store is injected into the engine rather than living in a module
global, so tests and multi-root hosts can hold independent instances.
Everything it knows is also written to snapshot manifests, which means a
fresh store can be rebuilt from disk with ``rebuild()``.

Thread-safe for concurrent access.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, List, Optional, Union

from patchwarden.engine.snapshots import SnapshotManager
from patchwarden.engine.types import ChangeSet, ChangeSetStatus

logger = logging.getLogger(__name__)


@dataclass
class ChangeSetRecord:
    """What the store remembers about one change set.

    Attributes:
        change_set_id: Id assigned at prepare time
        status: Last known status
        snapshot_id: Snapshot taken before the writes, if any
        applied_files: Files written by a successful apply
        applied_at: ISO timestamp of the successful apply
        project_root: Root the change set was applied to
        change_set: The live object (None for records rebuilt from disk)
    """

    change_set_id: str
    status: ChangeSetStatus
    snapshot_id: Optional[str] = None
    applied_files: List[str] = field(default_factory=list)
    applied_at: Optional[str] = None
    project_root: Optional[str] = None
    change_set: Optional[ChangeSet] = None


class ChangeSetStore:
    """Thread-safe mapping of change set id to ChangeSetRecord."""

    def __init__(self):
        self._records: Dict[str, ChangeSetRecord] = {}
        self._lock = threading.Lock()

    def put(self, change_set: ChangeSet, project_root: Optional[Union[str, Path]] = None) -> ChangeSetRecord:
        """Register (or re-register) a live change set."""
        record = ChangeSetRecord(
            change_set_id=change_set.id,
            status=change_set.status,
            snapshot_id=change_set.snapshot_id,
            project_root=str(project_root) if project_root is not None else None,
            change_set=change_set,
        )
        with self._lock:
            self._records[change_set.id] = record
        return replace(record)

    def get(self, change_set_id: str) -> Optional[ChangeSetRecord]:
        """Get a copy of the record for an exact id."""
        with self._lock:
            record = self._records.get(change_set_id)
            return replace(record, applied_files=list(record.applied_files)) if record else None

    def update(self, change_set_id: str, **changes) -> Optional[ChangeSetRecord]:
        """Update fields of an existing record.

        Returns:
            The updated copy, or None if the id is unknown
        """
        with self._lock:
            record = self._records.get(change_set_id)
            if record is None:
                return None
            for name, value in changes.items():
                if not hasattr(record, name):
                    raise AttributeError(f"ChangeSetRecord has no field '{name}'")
                setattr(record, name, value)
            return replace(record, applied_files=list(record.applied_files))

    def find_by_prefix(self, prefix: str) -> List[str]:
        """Ids starting with ``prefix``."""
        with self._lock:
            return [cs_id for cs_id in self._records if cs_id.startswith(prefix)]

    def remove(self, change_set_id: str) -> bool:
        with self._lock:
            return self._records.pop(change_set_id, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._records.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __contains__(self, change_set_id: object) -> bool:
        with self._lock:
            return change_set_id in self._records

    def rebuild(self, project_root: Union[str, Path], snapshot_dir_name: str = ".snapshots") -> int:
        """Load records for every manifest under ``project_root``.

        Live records already in the store are kept as they are.

        Returns:
            Number of records added
        """
        added = 0
        for snapshot in SnapshotManager(project_root, snapshot_dir_name).list_manifests():
            if not snapshot.change_set_id or not snapshot.status:
                continue
            try:
                status = ChangeSetStatus(snapshot.status)
            except ValueError:
                logger.warning(f"Manifest {snapshot.id} has unknown status {snapshot.status!r}")
                continue
            with self._lock:
                if snapshot.change_set_id in self._records:
                    continue
                self._records[snapshot.change_set_id] = ChangeSetRecord(
                    change_set_id=snapshot.change_set_id,
                    status=status,
                    snapshot_id=snapshot.id,
                    applied_files=list(snapshot.applied_files),
                    applied_at=snapshot.applied_at,
                    project_root=str(project_root),
                )
            added += 1
        logger.debug(f"Rebuilt {added} change set record(s) from {project_root}")
        return added
