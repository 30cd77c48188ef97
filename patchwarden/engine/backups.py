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

"""Timestamped secondary copies of files about to be overwritten or deleted.

Backups are a convenience for humans, not part of the transaction: a failed
backup is logged and the apply carries on. Rollback always uses snapshots.
"""

import logging
import shutil
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Union

from patchwarden.core.errors import FileIOError, ValidationError

logger = logging.getLogger(__name__)


@dataclass
class BackupEntry:
    """A backup file on disk."""

    name: str
    path: Path
    created: float  # mtime

    def to_dict(self):
        return {"name": self.name, "path": str(self.path), "created": self.created}


class BackupManager:
    """Writes backups to ``<root>/.backups/<basename>_<timestamp><ext>``."""

    def __init__(self, project_root: Union[str, Path], backup_dir_name: str = ".backups"):
        self.project_root = Path(project_root)
        self.backup_dir = self.project_root / backup_dir_name

    @staticmethod
    def _timestamp() -> str:
        # ISO 8601 with ":" and "." made filename-safe, e.g. 2025-01-01T12-00-00-123Z
        now = datetime.now(timezone.utc)
        return now.strftime("%Y-%m-%dT%H-%M-%S-") + f"{now.microsecond // 1000:03d}Z"

    def backup_name(self, rel_path: str, timestamp: Optional[str] = None) -> str:
        name = Path(rel_path)
        return f"{name.stem}_{timestamp or self._timestamp()}{name.suffix}"

    def create_backup(self, rel_path: str) -> Optional[Path]:
        """Copy an existing file into the backup directory.

        Args:
            rel_path: Path relative to the project root

        Returns:
            Path of the backup, or None if the file is missing or the copy failed
        """
        source = self.project_root / rel_path
        if not source.is_file():
            return None

        try:
            self.backup_dir.mkdir(parents=True, exist_ok=True)
            name = self.backup_name(rel_path)
            target = self.backup_dir / name
            counter = 1
            while target.exists():
                target = self.backup_dir / f"{Path(name).stem}-{counter}{Path(rel_path).suffix}"
                counter += 1
            shutil.copy(source, target)
        except OSError as e:
            logger.warning(f"Backup of {rel_path} failed: {e}")
            return None

        logger.debug(f"Backed up {rel_path} -> {target.relative_to(self.project_root)}")
        return target

    def list_backups(self, rel_path: Optional[str] = None) -> List[BackupEntry]:
        """List backups, newest first.

        Args:
            rel_path: Only list backups taken of files with this basename
        """
        if not self.backup_dir.is_dir():
            return []

        prefix = suffix = None
        if rel_path:
            prefix = f"{Path(rel_path).stem}_"
            suffix = Path(rel_path).suffix

        entries = []
        for path in self.backup_dir.iterdir():
            if path.name.startswith(".") or not path.is_file():
                continue
            if prefix is not None and not (path.name.startswith(prefix) and path.suffix == suffix):
                continue
            entries.append(BackupEntry(name=path.name, path=path, created=path.stat().st_mtime))
        return sorted(entries, key=lambda e: (e.created, e.name), reverse=True)

    def restore_backup(self, backup_path: Union[str, Path], rel_path: str) -> Path:
        """Copy a backup over a project file.

        Raises:
            FileIOError: If the backup does not exist or cannot be copied
        """
        source = Path(backup_path)
        if not source.is_absolute():
            source = self.project_root / source
        if not source.is_file():
            raise FileIOError(f"Backup not found: {backup_path}", path=str(backup_path))

        target = self.project_root / rel_path
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(source, target)
        except OSError as e:
            raise FileIOError(f"Failed to restore {rel_path} from backup: {e}", path=rel_path, cause=e)
        logger.info(f"Restored {rel_path} from {source.name}")
        return target

    def prune(self, keep_last: int) -> int:
        """Delete all but the newest ``keep_last`` backups.

        Returns:
            Number of backups removed
        """
        if keep_last < 0:
            raise ValidationError("keep_last must not be negative", field="keep_last", value=keep_last)
        stale = self.list_backups()[keep_last:]
        for entry in stale:
            entry.path.unlink(missing_ok=True)
        return len(stale)
