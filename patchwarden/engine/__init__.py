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

"""Atomic apply engine: diffs, gates, snapshots, checks and rollback."""

from patchwarden.engine.atomic import (
    AtomicApplyEngine,
    apply,
    get_default_engine,
    get_status,
    prepare,
    preview_diffs,
    rollback,
    scan_change_set,
    set_default_engine,
)
from patchwarden.engine.backups import BackupEntry, BackupManager
from patchwarden.engine.checks import (
    CheckContext,
    CheckResult,
    CheckRunner,
    CheckStep,
    CommandStep,
    HeuristicStep,
    SandboxTestStep,
    StepKind,
    StepResult,
    StepStatus,
    detect_commands,
)
from patchwarden.engine.diff import diff_mutation, diff_mutations, diff_texts
from patchwarden.engine.sandbox import (
    SandboxResult,
    SandboxTestGate,
    detect_test_framework,
    generate_smoke_tests,
    requires_testing,
    validate_tests_in_sandbox,
)
from patchwarden.engine.secrets import (
    SecretScanner,
    SecretSeverity,
    SecurityFinding,
    SecurityScanResult,
    calculate_entropy,
    has_high_entropy,
    mask_secret,
    mask_secrets,
    scan_content,
)
from patchwarden.engine.snapshots import FileEntry, Snapshot, SnapshotManager
from patchwarden.engine.store import ChangeSetRecord, ChangeSetStore
from patchwarden.engine.types import (
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

__all__ = [
    # Orchestrator
    "AtomicApplyEngine",
    "apply",
    "get_default_engine",
    "get_status",
    "prepare",
    "preview_diffs",
    "rollback",
    "scan_change_set",
    "set_default_engine",
    # Data model
    "ApplyOutcome",
    "ApplyResult",
    "ChangeSet",
    "ChangeSetStatus",
    "DiffRecord",
    "Mutation",
    "MutationType",
    "PrepareResult",
    "RollbackResult",
    "StatusResult",
    "TestFile",
    "WriteError",
    # Components
    "BackupEntry",
    "BackupManager",
    "ChangeSetRecord",
    "ChangeSetStore",
    "CheckContext",
    "CheckResult",
    "CheckRunner",
    "CheckStep",
    "CommandStep",
    "FileEntry",
    "HeuristicStep",
    "SandboxResult",
    "SandboxTestGate",
    "SandboxTestStep",
    "SecretScanner",
    "SecretSeverity",
    "SecurityFinding",
    "SecurityScanResult",
    "Snapshot",
    "SnapshotManager",
    "StepKind",
    "StepResult",
    "StepStatus",
    # Functions
    "calculate_entropy",
    "detect_commands",
    "detect_test_framework",
    "diff_mutation",
    "diff_mutations",
    "diff_texts",
    "generate_smoke_tests",
    "has_high_entropy",
    "mask_secret",
    "mask_secrets",
    "requires_testing",
    "scan_content",
    "validate_tests_in_sandbox",
]
