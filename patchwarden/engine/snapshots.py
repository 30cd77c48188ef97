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

"""Pre-mutation snapshots of the files a change set touches.

Layout under the project root::

    .snapshots/
        snap-20250101T120000123456Z-1a2b3c4d5e6f/   mirrored tree of backed-up files
            src/a.js
        snap-20250101T120000123456Z-1a2b3c4d5e6f.json   manifest

Files that did not exist are recorded with ``backed_up=False`` so that a
restore deletes them, along with any parent directories the apply created. The manifest also carries the owning change set's
status, which makes it possible to answer status and rollback requests
after a restart.

Usage:
    from patchwarden.engine.snapshots import SnapshotManager

    manager = SnapshotManager(project_root)
    snapshot = manager.create(["src/a.js"], change_set_id="cs-123")
    if snapshot.success:
        ...
        manager.restore(snapshot)
"""

import hashlib
import json
import logging
import os
import shutil
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import Any, Dict, List, Optional, Tuple, Union

from patchwarden.core.errors import RollbackFailureError, ValidationError
from patchwarden.core.logging_utils import TRACE

logger = logging.getLogger(__name__)

SNAPSHOT_PREFIX = "snap-"
MANIFEST_SUFFIX = ".json"


def _sha256_file(path: Path) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(65536), b""):
            digest.update(chunk)
    return digest.hexdigest()


@dataclass
class FileEntry:
    """Snapshot record for one path."""

    path: str
    backed_up: bool
    snapshot_path: Optional[str] = None  # relative to the project root
    sha256: Optional[str] = None
    mode: Optional[int] = None
    # Ancestor directories that did not exist either, deepest first
    missing_dirs: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "backed_up": self.backed_up,
            "snapshot_path": self.snapshot_path,
            "sha256": self.sha256,
            "mode": self.mode,
            "missing_dirs": list(self.missing_dirs),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FileEntry":
        return cls(
            path=data["path"],
            backed_up=data.get("backed_up", False),
            snapshot_path=data.get("snapshot_path"),
            sha256=data.get("sha256"),
            mode=data.get("mode"),
            missing_dirs=list(data.get("missing_dirs") or []),
        )


@dataclass
class Snapshot:
    """Snapshot of every path in a change set's file list."""

    id: str
    change_set_id: Optional[str]
    created_at: str
    files: Dict[str, FileEntry] = field(default_factory=dict)
    success: bool = True
    error: Optional[str] = None
    # Change set bookkeeping stored in the manifest
    status: Optional[str] = None
    applied_files: List[str] = field(default_factory=list)
    applied_at: Optional[str] = None

    @property
    def file_count(self) -> int:
        return len(self.files)

    @property
    def absent_files(self) -> List[str]:
        """Paths that did not exist when the snapshot was taken."""
        return [p for p, entry in self.files.items() if not entry.backed_up]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "change_set_id": self.change_set_id,
            "created_at": self.created_at,
            "files": {p: entry.to_dict() for p, entry in self.files.items()},
            "success": self.success,
            "error": self.error,
            "status": self.status,
            "applied_files": list(self.applied_files),
            "applied_at": self.applied_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Snapshot":
        return cls(
            id=data["id"],
            change_set_id=data.get("change_set_id"),
            created_at=data.get("created_at", ""),
            files={p: FileEntry.from_dict(e) for p, e in data.get("files", {}).items()},
            success=data.get("success", True),
            error=data.get("error"),
            status=data.get("status"),
            applied_files=list(data.get("applied_files", [])),
            applied_at=data.get("applied_at"),
        )


class SnapshotManager:
    """Creates, persists and restores snapshots under ``<root>/.snapshots``."""

    def __init__(self, project_root: Union[str, Path], snapshot_dir_name: str = ".snapshots"):
        """Initialize snapshot manager.

        Args:
            project_root: Root of the project being mutated
            snapshot_dir_name: Directory (inside the root) that holds snapshots
        """
        self.project_root = Path(project_root)
        self.snapshot_dir_name = snapshot_dir_name

    @property
    def snapshot_root(self) -> Path:
        return self.project_root / self.snapshot_dir_name

    def _manifest_path(self, snapshot_id: str) -> Path:
        return self.snapshot_root / f"{snapshot_id}{MANIFEST_SUFFIX}"

    def _missing_dirs(self, rel_path: str) -> List[str]:
        missing = []
        for parent in PurePosixPath(rel_path).parents:
            if parent == PurePosixPath(".") or (self.project_root / parent).exists():
                break
            missing.append(parent.as_posix())
        return missing

    @staticmethod
    def generate_id(content: str = "") -> str:
        """Generate a collision-resistant snapshot id.

        Args:
            content: Serialized change set; mixed with a nanosecond clock
        """
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
        digest = hashlib.sha256(f"{content}{time.time_ns()}".encode("utf-8")).hexdigest()[:12]
        return f"{SNAPSHOT_PREFIX}{timestamp}-{digest}"

    def create(
        self,
        files: List[str],
        change_set_id: Optional[str] = None,
        content: str = "",
        status: Optional[str] = None,
    ) -> Snapshot:
        """Snapshot ``files`` before they are mutated.

        Never raises: on any I/O failure the partial snapshot directory is
        removed and a Snapshot with ``success=False`` is returned.

        Args:
            files: Paths relative to the project root
            change_set_id: Owning change set
            content: Serialized change set used to derive the id
            status: Change set status to record in the manifest

        Returns:
            Snapshot with one entry per path
        """
        snapshot_id = self.generate_id(content)
        snapshot = Snapshot(
            id=snapshot_id,
            change_set_id=change_set_id,
            created_at=datetime.now(timezone.utc).isoformat(),
            status=status,
        )
        snapshot_dir = self.snapshot_root / snapshot_id

        try:
            snapshot_dir.mkdir(parents=True, exist_ok=False)
            for rel_path in files:
                source = self.project_root / rel_path
                if source.is_file():
                    target = snapshot_dir / rel_path
                    target.parent.mkdir(parents=True, exist_ok=True)
                    shutil.copy2(source, target)
                    snapshot.files[rel_path] = FileEntry(
                        path=rel_path,
                        backed_up=True,
                        snapshot_path=target.relative_to(self.project_root).as_posix(),
                        sha256=_sha256_file(target),
                        mode=source.stat().st_mode & 0o7777,
                    )
                elif source.exists():
                    raise IsADirectoryError(f"Not a regular file: {rel_path}")
                else:
                    snapshot.files[rel_path] = FileEntry(
                        path=rel_path, backed_up=False, missing_dirs=self._missing_dirs(rel_path)
                    )
            self.write_manifest(snapshot)
        except OSError as e:
            logger.error(f"Snapshot {snapshot_id} failed: {e}")
            shutil.rmtree(snapshot_dir, ignore_errors=True)
            self._manifest_path(snapshot_id).unlink(missing_ok=True)
            snapshot.success = False
            snapshot.error = str(e)
            return snapshot

        logger.info(
            f"Created snapshot {snapshot_id}: {len(files)} file(s), "
            f"{len(snapshot.absent_files)} absent"
        )
        return snapshot

    def write_manifest(self, snapshot: Snapshot) -> Path:
        """Persist the manifest, replacing any previous version atomically."""
        path = self._manifest_path(snapshot.id)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(snapshot.to_dict(), indent=2), encoding="utf-8")
        os.replace(tmp, path)
        return path

    def update_manifest(
        self,
        snapshot_id: str,
        status: Optional[str] = None,
        applied_files: Optional[List[str]] = None,
        applied_at: Optional[str] = None,
    ) -> Optional[Snapshot]:
        """Update the change set bookkeeping stored in a manifest.

        Returns:
            Updated Snapshot, or None if the manifest could not be written
        """
        snapshot = self.load(snapshot_id)
        if snapshot is None:
            logger.warning(f"Cannot update missing manifest for {snapshot_id}")
            return None
        if status is not None:
            snapshot.status = status
        if applied_files is not None:
            snapshot.applied_files = list(applied_files)
        if applied_at is not None:
            snapshot.applied_at = applied_at
        try:
            self.write_manifest(snapshot)
        except OSError as e:
            logger.warning(f"Failed to update manifest {snapshot_id}: {e}")
            return None
        return snapshot

    def load(self, snapshot_id: str) -> Optional[Snapshot]:
        """Load a snapshot from its manifest."""
        path = self._manifest_path(snapshot_id)
        if not path.is_file():
            return None
        try:
            return Snapshot.from_dict(json.loads(path.read_text(encoding="utf-8")))
        except (OSError, ValueError, KeyError) as e:
            logger.warning(f"Unreadable manifest {path}: {e}")
            return None

    def list_manifests(self) -> List[Snapshot]:
        """All readable snapshots, oldest first."""
        if not self.snapshot_root.is_dir():
            return []
        snapshots = []
        for path in self.snapshot_root.glob(f"{SNAPSHOT_PREFIX}*{MANIFEST_SUFFIX}"):
            snapshot = self.load(path.name[: -len(MANIFEST_SUFFIX)])
            if snapshot is not None:
                snapshots.append(snapshot)
        return sorted(snapshots, key=lambda s: (s.created_at, s.id))

    def resolve(self, identifier: str) -> Optional[Snapshot]:
        """Find a snapshot by id, change set id, or unique prefix of either.

        Returns:
            The matching Snapshot, or None when nothing matches

        Raises:
            ValidationError: If a prefix matches more than one snapshot
        """
        if not identifier:
            return None

        exact = self.load(identifier) if identifier.startswith(SNAPSHOT_PREFIX) else None
        if exact is not None:
            return exact

        manifests = self.list_manifests()
        by_change_set = [s for s in manifests if s.change_set_id == identifier]
        if by_change_set:
            return by_change_set[-1]

        matches = [
            s
            for s in manifests
            if s.id.startswith(identifier) or (s.change_set_id or "").startswith(identifier)
        ]
        if len(matches) > 1:
            raise ValidationError(
                f"Identifier '{identifier}' is ambiguous: matches {len(matches)} snapshots",
                field="identifier",
                value=identifier,
            )
        return matches[0] if matches else None

    def restore(self, snapshot: Snapshot) -> Tuple[List[str], List[str]]:
        """Put every path in the snapshot back to its recorded state.

        Backed-up files are copied back and verified against their hash.
        Files recorded as absent are deleted if they now exist. Directories
        created for them are removed again once empty.

        Returns:
            (restored paths, removed paths)

        Raises:
            RollbackFailureError: If any path could not be restored
        """
        restored: List[str] = []
        removed: List[str] = []
        failed: List[str] = []

        for rel_path, entry in snapshot.files.items():
            target = self.project_root / rel_path
            try:
                if entry.backed_up:
                    source = self.project_root / (entry.snapshot_path or "")
                    target.parent.mkdir(parents=True, exist_ok=True)
                    shutil.copy2(source, target)
                    if entry.mode is not None:
                        os.chmod(target, entry.mode)
                    if entry.sha256 and _sha256_file(target) != entry.sha256:
                        raise OSError(f"Hash mismatch after restoring {rel_path}")
                    restored.append(rel_path)
                    logger.log(TRACE, f"Restored: {rel_path}")
                elif target.exists():
                    target.unlink()
                    removed.append(rel_path)
                    logger.log(TRACE, f"Deleted: {rel_path}")
            except OSError as e:
                failed.append(rel_path)
                logger.error(f"Failed to restore {rel_path}: {e}")

        self._remove_created_dirs(snapshot)

        if failed:
            raise RollbackFailureError(
                f"Could not restore {len(failed)} file(s) from snapshot {snapshot.id}",
                failed_paths=failed,
                snapshot_id=snapshot.id,
            )

        logger.info(f"Restored snapshot {snapshot.id}: {len(restored)} restored, {len(removed)} removed")
        return restored, removed

    def _remove_created_dirs(self, snapshot: Snapshot) -> None:
        created = {d for entry in snapshot.files.values() if not entry.backed_up for d in entry.missing_dirs}
        for rel_dir in sorted(created, key=lambda d: len(PurePosixPath(d).parts), reverse=True):
            path = self.project_root / rel_dir
            try:
                if path.is_dir() and not any(path.iterdir()):
                    path.rmdir()
                    logger.log(TRACE, f"Removed directory: {rel_dir}")
            except OSError as e:
                logger.warning(f"Could not remove directory {rel_dir}: {e}")

    def delete(self, snapshot_id: str) -> None:
        """Remove a snapshot directory and its manifest."""
        shutil.rmtree(self.snapshot_root / snapshot_id, ignore_errors=True)
        self._manifest_path(snapshot_id).unlink(missing_ok=True)

    def prune(self, keep_last: int) -> int:
        """Delete all but the newest ``keep_last`` snapshots.

        Returns:
            Number of snapshots removed
        """
        if keep_last < 0:
            raise ValidationError("keep_last must not be negative", field="keep_last", value=keep_last)
        manifests = self.list_manifests()
        stale = manifests[: max(len(manifests) - keep_last, 0)]
        for snapshot in stale:
            self.delete(snapshot.id)
        if stale:
            logger.info(f"Pruned {len(stale)} snapshot(s), kept {keep_last}")
        return len(stale)
