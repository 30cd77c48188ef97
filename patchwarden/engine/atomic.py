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

"""Atomic Apply Orchestrator.

Takes a prepared change set through the gates and onto disk:

    prepare -> security scan -> snapshot -> write -> checks -> applied
                    |              |                   |
                 blocked        aborted          restore snapshot
                                                       |
                                          rolled_back / rollback_failed

Either every file in the change set ends up in its new state, or every file
is put back exactly as the snapshot recorded it. The one exception is a
failed restore, which is surfaced as ``requires_intervention`` and logged at
CRITICAL.

Public operations never raise; failures come back inside the result.

Usage:
    from patchwarden.engine.atomic import AtomicApplyEngine
    from patchwarden.engine.types import Mutation

    engine = AtomicApplyEngine()
    prepared = engine.prepare([Mutation.create("src/a.js", "const x=1;")])
    result = engine.apply(project_root, prepared.change_set)
    if not result.success and result.requires_intervention:
        alert_operator(result.error)
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath, PureWindowsPath
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from patchwarden.config.settings import Settings, load_settings
from patchwarden.core.errors import (
    CheckFailureError,
    ErrorHandler,
    FileIOError,
    InvalidStateError,
    RollbackFailureError,
    SecurityBlockError,
    ValidationError,
    get_error_handler,
)
from patchwarden.core.logging_utils import configure_logging_levels
from patchwarden.engine.backups import BackupManager
from patchwarden.engine.checks import CheckContext, CheckResult, CheckRunner
from patchwarden.engine.diff import diff_mutation, diff_mutations
from patchwarden.engine.secrets import SecretScanner, SecurityScanResult
from patchwarden.engine.snapshots import Snapshot, SnapshotManager
from patchwarden.engine.store import ChangeSetRecord, ChangeSetStore
from patchwarden.engine.types import (
    ALLOWED_TRANSITIONS,
    ApplyOutcome,
    ApplyResult,
    ChangeSet,
    ChangeSetStatus,
    DiffRecord,
    Mutation,
    MutationType,
    PrepareResult,
    RollbackResult,
    StatusResult,
    TestFile,
    WriteError,
)

logger = logging.getLogger(__name__)

MutationLike = Union[Mutation, Dict[str, Any]]
TestLike = Union[TestFile, Dict[str, Any]]
PathLike = Union[str, Path]


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class AtomicApplyEngine:
    """Prepares, applies and rolls back change sets."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        store: Optional[ChangeSetStore] = None,
        check_runner: Optional[Any] = None,
        scanner: Optional[SecretScanner] = None,
        error_handler: Optional[ErrorHandler] = None,
    ):
        """Initialize the engine.

        Args:
            settings: Engine settings (defaults from environment)
            store: Change set registry; a private one is created if omitted
            check_runner: Object with ``run(CheckContext) -> CheckResult``
            scanner: Secret scanner
            error_handler: Converts exceptions into ErrorInfo
        """
        self.settings = settings or Settings()
        self.store = store if store is not None else ChangeSetStore()
        self.check_runner = check_runner or CheckRunner(self.settings)
        self.scanner = scanner or SecretScanner.from_settings(self.settings)
        self.error_handler = error_handler or get_error_handler()

    @classmethod
    def from_project(cls, project_root: PathLike, **overrides: Any) -> "AtomicApplyEngine":
        """Build an engine from ``<root>/.patchwarden.yaml`` and the environment.

        Also applies the configured log level and log file.

        Raises:
            ConfigurationError: If the project configuration is invalid
        """
        settings = load_settings(project_root, **overrides)
        configure_logging_levels(settings.log_level, settings.log_file)
        return cls(settings=settings)

    def _snapshots(self, project_root: PathLike) -> SnapshotManager:
        return SnapshotManager(project_root, self.settings.snapshot_dir_name)

    def _backups(self, project_root: PathLike) -> BackupManager:
        return BackupManager(project_root, self.settings.backup_dir_name)

    @staticmethod
    def generate_id() -> str:
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
        return f"cs-{timestamp}-{uuid.uuid4().hex[:8]}"

    # =========================================================================
    # Validation
    # =========================================================================

    def _normalize_path(self, path: Any) -> str:
        if not isinstance(path, str) or not path.strip():
            raise ValidationError("File path is required", field="path", value=path)
        posix = PurePosixPath(path.replace("\\", "/"))
        if posix.is_absolute() or PureWindowsPath(path).drive:
            raise ValidationError(f"Path must be relative to the project root: {path}", field="path", value=path)
        parts = [part for part in posix.parts if part not in ("", ".")]
        if not parts or ".." in parts:
            raise ValidationError(f"Path escapes the project root: {path}", field="path", value=path)
        if parts[0] in self.settings.reserved_dirs():
            raise ValidationError(f"Path is inside a reserved directory: {path}", field="path", value=path)
        return "/".join(parts)

    def _coerce_mutation(self, item: MutationLike) -> Mutation:
        if isinstance(item, dict):
            try:
                item = Mutation.from_dict(item)
            except (KeyError, ValueError) as e:
                raise ValidationError(f"Invalid mutation: {e}", field="mutations", value=item, cause=e)
        if not isinstance(item, Mutation):
            raise ValidationError(f"Not a mutation: {item!r}", field="mutations")
        if not isinstance(item.type, MutationType):
            try:
                item = replace(item, type=MutationType(item.type))
            except ValueError as e:
                raise ValidationError(f"Unknown mutation type: {item.type}", field="type", value=item.type, cause=e)

        path = self._normalize_path(item.path)
        if item.type != MutationType.DELETE and item.new_content is None:
            raise ValidationError(f"Content is required for {item.type.value}: {path}", field="new_content")
        return replace(item, path=path) if path != item.path else item

    def _coerce_test(self, item: TestLike) -> TestFile:
        if isinstance(item, dict):
            item = TestFile(path=item.get("path") or item.get("file"), content=item.get("content"))
        if not isinstance(item, TestFile) or item.content is None:
            raise ValidationError("Tests need a path and content", field="tests")
        return TestFile(path=self._normalize_path(item.path), content=item.content)

    # =========================================================================
    # Prepare / preview / scan
    # =========================================================================

    def prepare(
        self,
        mutations: Sequence[MutationLike],
        tests: Optional[Sequence[TestLike]] = None,
    ) -> PrepareResult:
        """Validate mutations and build a registered change set.

        Args:
            mutations: Mutations (or their dict form)
            tests: Tests to run in the sandbox before the change is kept

        Returns:
            PrepareResult with the new ChangeSet in PREPARED status
        """
        try:
            if not mutations:
                raise ValidationError("No mutations provided", field="mutations")
            items = tuple(self._coerce_mutation(m) for m in mutations)
            test_files = tuple(self._coerce_test(t) for t in tests or ())

            change_set = ChangeSet(
                id=self.generate_id(),
                mutations=items,
                diffs=diff_mutations(items),
                tests=test_files,
            )
            self.store.put(change_set)
        except Exception as e:
            return PrepareResult(success=False, error=self.error_handler.handle(e, {"operation": "prepare"}))

        logger.info(
            f"Prepared change set {change_set.id}: {len(items)} mutation(s), "
            f"{len(change_set.file_list)} file(s), {len(test_files)} test(s)"
        )
        return PrepareResult(success=True, change_set=change_set)

    def preview_diffs(self, mutations: Sequence[MutationLike]) -> List[DiffRecord]:
        """Diffs for ``mutations`` without registering or touching anything."""
        try:
            return diff_mutations([self._coerce_mutation(m) for m in mutations])
        except Exception as e:
            self.error_handler.handle(e, {"operation": "preview_diffs"})
            return []

    def scan_change_set(self, change_set: ChangeSet) -> SecurityScanResult:
        """Run the secret scanner gate on a change set."""
        return self.scanner.scan_change_set(change_set)

    # =========================================================================
    # Apply
    # =========================================================================

    def _lookup(self, change_set: Union[ChangeSet, str]) -> ChangeSet:
        if isinstance(change_set, ChangeSet):
            return change_set
        record = self.store.get(change_set)
        if record is None or record.change_set is None:
            raise ValidationError(f"Change set not found: {change_set}", field="change_set", value=change_set)
        return record.change_set

    def _advance(self, cs: ChangeSet, status: ChangeSetStatus, project_root: Optional[PathLike] = None, **extra) -> None:
        cs.transition(status)
        changes: Dict[str, Any] = {"status": status, "snapshot_id": cs.snapshot_id, **extra}
        if project_root is not None:
            changes["project_root"] = str(project_root)
        if self.store.update(cs.id, **changes) is None:
            self.store.put(cs, project_root)
            self.store.update(cs.id, **changes)
        if cs.snapshot_id and project_root is not None:
            self._snapshots(project_root).update_manifest(
                cs.snapshot_id,
                status=status.value,
                applied_files=extra.get("applied_files"),
                applied_at=extra.get("applied_at"),
            )

    def _refresh_diffs(self, project_root: Path, cs: ChangeSet, snapshot: Snapshot) -> None:
        """Re-diff mutations that came without original content against the snapshot."""
        for index, mutation in enumerate(cs.mutations):
            if mutation.original_content is not None or mutation.type == MutationType.CREATE:
                continue
            entry = snapshot.files.get(mutation.path)
            if entry is None or not entry.backed_up or not entry.snapshot_path:
                continue
            try:
                with open(project_root / entry.snapshot_path, encoding="utf-8", newline="") as f:
                    original = f.read()
            except (OSError, UnicodeDecodeError) as e:
                logger.debug(f"Keeping prepare-time diff for {mutation.path}: {e}")
                continue
            cs.diffs[index] = diff_mutation(mutation, original_override=original)

    def _write(self, project_root: Path, cs: ChangeSet, written: List[str]) -> List[WriteError]:
        """Write every mutation, appending each written path to ``written`` as it lands."""
        backups = self._backups(project_root) if self.settings.backups_enabled else None
        errors: List[WriteError] = []

        for mutation in cs.mutations:
            target = project_root / mutation.path
            try:
                if backups is not None:
                    backups.create_backup(mutation.path)
                if mutation.type == MutationType.DELETE:
                    target.unlink(missing_ok=True)
                else:
                    target.parent.mkdir(parents=True, exist_ok=True)
                    with open(target, "w", encoding="utf-8", newline="") as f:
                        f.write(mutation.new_content or "")
                if mutation.path not in written:
                    written.append(mutation.path)
                logger.debug(f"Applied {mutation.type.value}: {mutation.path}")
            except OSError as e:
                errors.append(WriteError(path=mutation.path, error=str(e)))
                logger.error(f"Error applying {mutation.type.value} to {mutation.path}: {e}")

        return errors

    def _wants_sandbox(self, cs: ChangeSet, run_sandbox: Optional[bool]) -> bool:
        return bool(run_sandbox) or bool(cs.tests) or self.settings.sandbox_enabled

    def _revert(
        self,
        project_root: Path,
        cs: ChangeSet,
        snapshot: Snapshot,
        cause: Exception,
        security: SecurityScanResult,
        check_result: Optional[CheckResult] = None,
        write_errors: Optional[List[WriteError]] = None,
        written: Optional[List[str]] = None,
    ) -> ApplyResult:
        """Restore the snapshot after a failed apply.

        ``applied_files`` on the result lists what was written and then reverted.
        """
        context = {"operation": "apply", "change_set_id": cs.id, "snapshot_id": snapshot.id}
        result = ApplyResult(
            success=False,
            outcome=ApplyOutcome.REVERTED,
            change_set_id=cs.id,
            snapshot_id=snapshot.id,
            applied_files=list(written or []),
            check_result=check_result,
            security=security,
            diffs=list(cs.diffs),
            write_errors=write_errors or [],
        )

        try:
            self._snapshots(project_root).restore(snapshot)
        except RollbackFailureError as e:
            self._advance(cs, ChangeSetStatus.FAILED, project_root)
            result.outcome = ApplyOutcome.ROLLBACK_FAILED
            result.requires_intervention = True
            result.error = self.error_handler.handle(e, context)
            return result

        self._advance(cs, ChangeSetStatus.ROLLED_BACK, project_root)
        result.error = self.error_handler.handle(cause, context)
        logger.info(f"Change set {cs.id} rolled back")
        return result

    def apply(
        self,
        project_root: PathLike,
        change_set: Union[ChangeSet, str],
        run_sandbox: Optional[bool] = None,
    ) -> ApplyResult:
        """Apply a prepared change set atomically.

        Args:
            project_root: Root of the project to mutate
            change_set: The ChangeSet or its id
            run_sandbox: Force the sandbox test gate on

        Returns:
            ApplyResult; ``outcome`` says how far the apply got
        """
        root = Path(project_root)
        cs: Optional[ChangeSet] = None
        context: Dict[str, Any] = {"operation": "apply"}

        try:
            cs = self._lookup(change_set)
            context["change_set_id"] = cs.id
            if cs.status != ChangeSetStatus.PREPARED:
                raise InvalidStateError(
                    f"Change set {cs.id} is {cs.status.value}, expected prepared",
                    current=cs.status.value,
                )
            if not root.is_dir():
                raise FileIOError(f"Project root is not a directory: {root}", path=str(root))

            security = self.scanner.scan_change_set(cs)
            if security.blocked:
                self._advance(cs, ChangeSetStatus.FAILED, root)
                error = SecurityBlockError(
                    security.reason or "Security violation",
                    score=security.score,
                    finding_count=len(security.findings),
                )
                return ApplyResult(
                    success=False,
                    outcome=ApplyOutcome.BLOCKED,
                    change_set_id=cs.id,
                    security=security,
                    diffs=list(cs.diffs),
                    error=self.error_handler.handle(error, context),
                )

            files = cs.file_list
            logger.info(f"Creating snapshot for change set {cs.id}: {', '.join(files)}")
            snapshot = self._snapshots(root).create(
                files,
                change_set_id=cs.id,
                content=json.dumps([m.to_dict() for m in cs.mutations], sort_keys=True),
                status=ChangeSetStatus.APPLYING.value,
            )
            if not snapshot.success:
                self._advance(cs, ChangeSetStatus.FAILED, root)
                error = FileIOError(f"Failed to create snapshot: {snapshot.error}", path=str(root))
                return ApplyResult(
                    success=False,
                    outcome=ApplyOutcome.ABORTED,
                    change_set_id=cs.id,
                    security=security,
                    diffs=list(cs.diffs),
                    error=self.error_handler.handle(error, context),
                )
        except Exception as e:
            if cs is not None and cs.status == ChangeSetStatus.PREPARED and not isinstance(e, ValidationError):
                cs.transition(ChangeSetStatus.FAILED)
                self.store.update(cs.id, status=cs.status)
            return ApplyResult(
                success=False,
                outcome=ApplyOutcome.ABORTED,
                change_set_id=cs.id if cs else None,
                error=self.error_handler.handle(e, context),
            )

        cs.snapshot_id = snapshot.id
        self._advance(cs, ChangeSetStatus.APPLYING, root)
        self._refresh_diffs(root, cs, snapshot)

        check_result: Optional[CheckResult] = None
        write_errors: List[WriteError] = []
        written: List[str] = []
        try:
            write_errors = self._write(root, cs, written)
            if write_errors and self.settings.rollback_on_write_error:
                error = FileIOError(
                    f"{len(write_errors)} write(s) failed: "
                    + "; ".join(f"{w.path}: {w.error}" for w in write_errors),
                    path=write_errors[0].path,
                )
                return self._revert(root, cs, snapshot, error, security, write_errors=write_errors, written=written)

            logger.info(f"Running checks for change set {cs.id}")
            check_result = self.check_runner.run(
                CheckContext(project_root=root, change_set=cs, run_sandbox=self._wants_sandbox(cs, run_sandbox))
            )
            if not check_result.ok:
                step = check_result.failed_step.value if check_result.failed_step else None
                error = CheckFailureError(f"Checks failed at step '{step}' - rolled back", step=step)
                return self._revert(root, cs, snapshot, error, security, check_result, write_errors, written)

            applied_at = _now()
            self._advance(cs, ChangeSetStatus.APPLIED, root, applied_files=written, applied_at=applied_at)
        except Exception as e:
            return self._revert(root, cs, snapshot, e, security, check_result, write_errors, written)

        if self.settings.max_snapshots:
            self._snapshots(root).prune(self.settings.max_snapshots)

        logger.info(f"Applied change set {cs.id}: {len(written)} file(s), snapshot {snapshot.id}")
        return ApplyResult(
            success=True,
            outcome=ApplyOutcome.APPLIED,
            change_set_id=cs.id,
            applied_files=written,
            snapshot_id=snapshot.id,
            check_result=check_result,
            security=security,
            diffs=list(cs.diffs),
            write_errors=write_errors,
        )

    # =========================================================================
    # Rollback / status
    # =========================================================================

    def _find_record(self, identifier: str) -> Optional[ChangeSetRecord]:
        record = self.store.get(identifier)
        if record is not None:
            return record
        matches = self.store.find_by_prefix(identifier)
        if len(matches) > 1:
            raise ValidationError(
                f"Identifier '{identifier}' is ambiguous: matches {len(matches)} change sets",
                field="identifier",
                value=identifier,
            )
        return self.store.get(matches[0]) if matches else None

    def _resolve(
        self, project_root: Optional[PathLike], identifier: str
    ) -> Tuple[Optional[ChangeSetRecord], Optional[Snapshot]]:
        """Find a change set by id or prefix in the store, then on disk."""
        record = self._find_record(identifier)
        snapshots = self._snapshots(project_root) if project_root is not None else None

        if record is not None:
            snapshot = snapshots.load(record.snapshot_id) if snapshots and record.snapshot_id else None
            return record, snapshot

        if snapshots is None:
            return None, None
        snapshot = snapshots.resolve(identifier)
        if snapshot is not None and snapshot.change_set_id:
            record = self.store.get(snapshot.change_set_id)
        return record, snapshot

    def rollback(self, project_root: PathLike, change_set_id: str) -> RollbackResult:
        """Restore every file of an applied change set from its snapshot.

        Rolling back an already rolled-back change set is a no-op that
        reports ``already_rolled_back``.

        Args:
            project_root: Root the change set was applied to
            change_set_id: Change set id, snapshot id, or a unique prefix

        Returns:
            RollbackResult
        """
        root = Path(project_root)
        context: Dict[str, Any] = {"operation": "rollback", "identifier": change_set_id}
        try:
            record, snapshot = self._resolve(root, change_set_id)
            if record is None and snapshot is None:
                raise ValidationError(f"Change set not found: {change_set_id}", field="change_set_id")

            cs_id = record.change_set_id if record else snapshot.change_set_id
            status = record.status if record else ChangeSetStatus(snapshot.status or "applying")
            context["change_set_id"] = cs_id

            if status == ChangeSetStatus.ROLLED_BACK:
                logger.info(f"Change set {cs_id} is already rolled back")
                return RollbackResult(
                    success=True,
                    change_set_id=cs_id,
                    snapshot_id=snapshot.id if snapshot else None,
                    already_rolled_back=True,
                )
            if ChangeSetStatus.ROLLED_BACK not in ALLOWED_TRANSITIONS[status]:
                raise InvalidStateError(
                    f"Change set {cs_id} is {status.value} and cannot be rolled back",
                    current=status.value,
                )
            if snapshot is None:
                raise FileIOError(f"No snapshot found for change set {cs_id}", path=str(root))

            restored, removed = self._snapshots(root).restore(snapshot)
        except RollbackFailureError as e:
            return RollbackResult(
                success=False,
                change_set_id=context.get("change_set_id"),
                snapshot_id=e.snapshot_id,
                error=self.error_handler.handle(e, context),
                requires_intervention=True,
            )
        except Exception as e:
            return RollbackResult(
                success=False,
                change_set_id=context.get("change_set_id"),
                error=self.error_handler.handle(e, context),
            )

        live = record.change_set if record else None
        if live is not None:
            self._advance(live, ChangeSetStatus.ROLLED_BACK, root)
        else:
            if record is not None:
                self.store.update(cs_id, status=ChangeSetStatus.ROLLED_BACK)
            self._snapshots(root).update_manifest(snapshot.id, status=ChangeSetStatus.ROLLED_BACK.value)

        logger.info(f"Rolled back change set {cs_id}: {len(restored)} restored, {len(removed)} removed")
        return RollbackResult(
            success=True,
            change_set_id=cs_id,
            snapshot_id=snapshot.id,
            restored_files=restored,
            removed_files=removed,
        )

    def get_status(self, change_set_id: str, project_root: Optional[PathLike] = None) -> StatusResult:
        """Look up a change set's status.

        Args:
            change_set_id: Change set id, snapshot id, or a unique prefix
            project_root: Also search snapshot manifests under this root
        """
        try:
            record, snapshot = self._resolve(project_root, change_set_id)
        except Exception as e:
            return StatusResult(found=False, error=self.error_handler.handle(e, {"operation": "get_status"}).message)

        if record is not None:
            return StatusResult(
                found=True,
                change_set_id=record.change_set_id,
                status=record.status,
                applied_files=list(record.applied_files),
                applied_at=record.applied_at,
                snapshot_id=record.snapshot_id,
            )
        if snapshot is not None and snapshot.status:
            return StatusResult(
                found=True,
                change_set_id=snapshot.change_set_id,
                status=ChangeSetStatus(snapshot.status),
                applied_files=list(snapshot.applied_files),
                applied_at=snapshot.applied_at,
                snapshot_id=snapshot.id,
            )
        return StatusResult(found=False, error=f"Change set not found: {change_set_id}")

    def prune_snapshots(self, project_root: PathLike, keep_last: int) -> int:
        """Delete all but the newest ``keep_last`` snapshots under a root."""
        return self._snapshots(project_root).prune(keep_last)


# =============================================================================
# Default engine
# =============================================================================

_default_engine: Optional[AtomicApplyEngine] = None


def get_default_engine() -> AtomicApplyEngine:
    """Get the engine behind the module-level functions."""
    global _default_engine
    if _default_engine is None:
        _default_engine = AtomicApplyEngine()
    return _default_engine


def set_default_engine(engine: Optional[AtomicApplyEngine]) -> None:
    """Replace (or with None, reset) the default engine."""
    global _default_engine
    _default_engine = engine


def prepare(mutations: Sequence[MutationLike], tests: Optional[Sequence[TestLike]] = None) -> PrepareResult:
    return get_default_engine().prepare(mutations, tests)


def apply(
    project_root: PathLike,
    change_set: Union[ChangeSet, str],
    run_sandbox: Optional[bool] = None,
) -> ApplyResult:
    return get_default_engine().apply(project_root, change_set, run_sandbox)


def rollback(project_root: PathLike, change_set_id: str) -> RollbackResult:
    return get_default_engine().rollback(project_root, change_set_id)


def get_status(change_set_id: str, project_root: Optional[PathLike] = None) -> StatusResult:
    return get_default_engine().get_status(change_set_id, project_root)


def preview_diffs(mutations: Sequence[MutationLike]) -> List[DiffRecord]:
    return get_default_engine().preview_diffs(mutations)


def scan_change_set(change_set: ChangeSet) -> SecurityScanResult:
    return get_default_engine().scan_change_set(change_set)
