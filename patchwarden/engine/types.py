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

"""Data model for the atomic apply engine.

Mutations are immutable instructions produced by a proposal generator.
A ChangeSet groups them with their diffs and carries the lifecycle status
that only the orchestrator advances.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from patchwarden.core.errors import ErrorInfo, InvalidStateError


class MutationType(str, Enum):
    """Kind of change applied to a single file."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class ChangeSetStatus(str, Enum):
    """Lifecycle status of a ChangeSet."""

    PREPARED = "prepared"
    APPLYING = "applying"
    APPLIED = "applied"
    ROLLED_BACK = "rolled_back"
    FAILED = "failed"


# Forward-only transitions. FAILED from PREPARED covers the pre-snapshot aborts.
ALLOWED_TRANSITIONS: Dict[ChangeSetStatus, FrozenSet[ChangeSetStatus]] = {
    ChangeSetStatus.PREPARED: frozenset({ChangeSetStatus.APPLYING, ChangeSetStatus.FAILED}),
    ChangeSetStatus.APPLYING: frozenset(
        {ChangeSetStatus.APPLIED, ChangeSetStatus.ROLLED_BACK, ChangeSetStatus.FAILED}
    ),
    ChangeSetStatus.APPLIED: frozenset({ChangeSetStatus.ROLLED_BACK}),
    ChangeSetStatus.ROLLED_BACK: frozenset(),
    ChangeSetStatus.FAILED: frozenset(),
}


class ApplyOutcome(str, Enum):
    """How an apply() call ended."""

    APPLIED = "applied"
    BLOCKED = "blocked"  # rejected before any file was touched
    ABORTED = "aborted"  # snapshot or state validation failed, nothing written
    REVERTED = "reverted"  # attempted and safely rolled back
    ROLLBACK_FAILED = "rollback_failed"  # manual intervention required


@dataclass(frozen=True)
class Mutation:
    """One create/update/delete instruction against a single file.

    Attributes:
        type: Kind of change
        path: POSIX path relative to the project root
        new_content: Content after the change (create/update)
        original_content: Content before the change, used for diffs
    """

    type: MutationType
    path: str
    new_content: Optional[str] = None
    original_content: Optional[str] = None

    @classmethod
    def create(cls, path: str, content: str) -> "Mutation":
        return cls(type=MutationType.CREATE, path=path, new_content=content)

    @classmethod
    def update(cls, path: str, content: str, original: Optional[str] = None) -> "Mutation":
        return cls(type=MutationType.UPDATE, path=path, new_content=content, original_content=original)

    @classmethod
    def delete(cls, path: str, original: Optional[str] = None) -> "Mutation":
        return cls(type=MutationType.DELETE, path=path, original_content=original)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "type": self.type.value,
            "path": self.path,
            "new_content": self.new_content,
            "original_content": self.original_content,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Mutation":
        """Create from dictionary.

        Accepts ``file``/``content`` as aliases for ``path``/``new_content``
        so proposal payloads can be passed through unchanged.
        """
        return cls(
            type=MutationType(data["type"]),
            path=data.get("path") or data["file"],
            new_content=data.get("new_content", data.get("content")),
            original_content=data.get("original_content", data.get("originalContent")),
        )


@dataclass(frozen=True)
class TestFile:
    """A test attached to a ChangeSet and executed in the sandbox."""

    __test__ = False  # not a pytest class

    path: str
    content: str

    def to_dict(self) -> Dict[str, Any]:
        return {"path": self.path, "content": self.content}


@dataclass(frozen=True)
class DiffRecord:
    """Line diff for one mutation.

    ``diff_text`` starts with header lines (``--- path`` and/or ``+++ path``)
    followed by one line per original/modified line prefixed with
    `` `` (unchanged), ``+`` (added) or ``-`` (deleted).
    """

    path: str
    change_type: MutationType
    diff_text: str
    additions: int
    deletions: int

    @property
    def header_count(self) -> int:
        return 2 if self.change_type == MutationType.UPDATE else 1

    def body_lines(self) -> List[str]:
        """Diff lines without the header."""
        return self.diff_text.split("\n")[self.header_count :]

    def reconstruct_original(self) -> str:
        """Rebuild the original text from unchanged and deleted lines."""
        return "\n".join(line[1:] for line in self.body_lines() if line[:1] in (" ", "-"))

    def reconstruct_modified(self) -> str:
        """Rebuild the modified text from unchanged and added lines."""
        return "\n".join(line[1:] for line in self.body_lines() if line[:1] in (" ", "+"))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "change_type": self.change_type.value,
            "diff": self.diff_text,
            "additions": self.additions,
            "deletions": self.deletions,
        }


@dataclass
class ChangeSet:
    """The atomic unit of application."""

    id: str
    mutations: Tuple[Mutation, ...]
    diffs: List[DiffRecord]
    tests: Tuple[TestFile, ...] = ()
    status: ChangeSetStatus = ChangeSetStatus.PREPARED
    snapshot_id: Optional[str] = None
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @property
    def file_list(self) -> List[str]:
        """Unique mutation paths in first-appearance order."""
        return list(dict.fromkeys(m.path for m in self.mutations))

    def transition(self, new_status: ChangeSetStatus) -> None:
        """Advance the status.

        Raises:
            InvalidStateError: If the transition is not forward-legal
        """
        if new_status not in ALLOWED_TRANSITIONS[self.status]:
            raise InvalidStateError(
                f"Illegal status transition {self.status.value} -> {new_status.value} "
                f"for change set {self.id}",
                current=self.status.value,
            )
        self.status = new_status

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status.value,
            "snapshot_id": self.snapshot_id,
            "created_at": self.created_at,
            "files": self.file_list,
            "mutations": [m.to_dict() for m in self.mutations],
            "tests": [t.to_dict() for t in self.tests],
            "diffs": [d.to_dict() for d in self.diffs],
        }


@dataclass
class PrepareResult:
    """Result of prepare()."""

    success: bool
    change_set: Optional[ChangeSet] = None
    error: Optional[ErrorInfo] = None

    @property
    def change_set_id(self) -> Optional[str]:
        return self.change_set.id if self.change_set else None


@dataclass
class WriteError:
    """A per-file failure during the write phase."""

    path: str
    error: str


@dataclass
class ApplyResult:
    """Result of apply().

    ``requires_intervention`` is only ever set when restoring the snapshot
    failed; callers must surface it rather than treat it as a plain failure.
    """

    success: bool
    outcome: ApplyOutcome
    change_set_id: Optional[str] = None
    applied_files: List[str] = field(default_factory=list)
    snapshot_id: Optional[str] = None
    check_result: Optional[Any] = None  # CheckResult
    security: Optional[Any] = None  # SecurityScanResult
    diffs: List[DiffRecord] = field(default_factory=list)
    write_errors: List[WriteError] = field(default_factory=list)
    error: Optional[ErrorInfo] = None
    requires_intervention: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "outcome": self.outcome.value,
            "change_set_id": self.change_set_id,
            "applied_files": list(self.applied_files),
            "snapshot_id": self.snapshot_id,
            "check_result": self.check_result.to_dict() if self.check_result else None,
            "security": self.security.to_dict() if self.security else None,
            "diffs": [d.to_dict() for d in self.diffs],
            "write_errors": [{"path": w.path, "error": w.error} for w in self.write_errors],
            "error": self.error.to_dict() if self.error else None,
            "requires_intervention": self.requires_intervention,
        }


@dataclass
class RollbackResult:
    """Result of rollback()."""

    success: bool
    change_set_id: Optional[str] = None
    snapshot_id: Optional[str] = None
    restored_files: List[str] = field(default_factory=list)
    removed_files: List[str] = field(default_factory=list)
    already_rolled_back: bool = False
    error: Optional[ErrorInfo] = None
    requires_intervention: bool = False


@dataclass
class StatusResult:
    """Result of get_status()."""

    found: bool
    change_set_id: Optional[str] = None
    status: Optional[ChangeSetStatus] = None
    applied_files: List[str] = field(default_factory=list)
    applied_at: Optional[str] = None
    snapshot_id: Optional[str] = None
    error: Optional[str] = None
