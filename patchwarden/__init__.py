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

"""
patchwarden - transactional application of generated code changes.

A change set (a batch of create/update/delete mutations) is scanned for
secrets, snapshotted, written, and checked. If any check fails every file
is restored from the snapshot, so the project never stays half-patched.

Simple API:
    from patchwarden import Mutation, prepare, apply, rollback

    prepared = prepare([Mutation.update("src/a.js", "const x=2;")])
    result = apply("/path/to/project", prepared.change_set)
    if result.success:
        rollback("/path/to/project", result.change_set_id)

Configured API:
    from patchwarden import AtomicApplyEngine

    engine = AtomicApplyEngine.from_project("/path/to/project")
"""

__version__ = "0.1.0"
__author__ = "Vijaykumar Singh"
__email__ = "singhvjd@gmail.com"
__license__ = "Apache-2.0"

from patchwarden.config.settings import Settings, load_settings
from patchwarden.core.errors import PatchwardenError
from patchwarden.core.logging_utils import configure_logging_levels
from patchwarden.engine import (
    ApplyOutcome,
    ApplyResult,
    AtomicApplyEngine,
    ChangeSet,
    ChangeSetStatus,
    ChangeSetStore,
    Mutation,
    MutationType,
    TestFile,
    apply,
    get_status,
    prepare,
    preview_diffs,
    rollback,
    scan_change_set,
)

__all__ = [
    "__version__",
    "ApplyOutcome",
    "ApplyResult",
    "AtomicApplyEngine",
    "ChangeSet",
    "ChangeSetStatus",
    "ChangeSetStore",
    "Mutation",
    "MutationType",
    "PatchwardenError",
    "Settings",
    "TestFile",
    "apply",
    "configure_logging_levels",
    "get_status",
    "load_settings",
    "prepare",
    "preview_diffs",
    "rollback",
    "scan_change_set",
]
