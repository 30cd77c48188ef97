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

"""Shared pytest fixtures and configuration."""

import os

# Settings decides whether to read .env at class definition time
os.environ.setdefault("PATCHWARDEN_SKIP_ENV_FILE", "1")

from pathlib import Path  # noqa: E402
from typing import List, Optional  # noqa: E402

import pytest  # noqa: E402

from patchwarden.config.settings import Settings  # noqa: E402
from patchwarden.engine.atomic import AtomicApplyEngine, set_default_engine  # noqa: E402
from patchwarden.engine.checks import CheckContext, CheckResult, StepKind, StepResult, StepStatus  # noqa: E402
from patchwarden.engine.store import ChangeSetStore  # noqa: E402


class StubCheckRunner:
    """Check runner whose verdict is fixed by the test."""

    def __init__(self, ok: bool = True, failed_step: StepKind = StepKind.TEST):
        self.ok = ok
        self.failed_step = failed_step
        self.contexts: List[CheckContext] = []
        # Snapshot of file contents at check time, keyed by path
        self.seen: List[dict] = []

    def run(self, context: CheckContext) -> CheckResult:
        self.contexts.append(context)
        self.seen.append(
            {
                path: (context.project_root / path).read_text(encoding="utf-8")
                for path in context.touched_files
                if (context.project_root / path).is_file()
            }
        )
        if self.ok:
            return CheckResult(ok=True, steps=[StepResult(kind=StepKind.TEST, status=StepStatus.PASSED)])
        return CheckResult(
            ok=False,
            failed_step=self.failed_step,
            steps=[StepResult(kind=self.failed_step, status=StepStatus.FAILED, error="forced failure")],
        )


@pytest.fixture(autouse=True)
def isolate_environment_variables(monkeypatch):
    """Keep PATCHWARDEN_* variables from the host out of the tests."""
    for name in list(os.environ):
        if name.startswith("PATCHWARDEN_") and name != "PATCHWARDEN_SKIP_ENV_FILE":
            monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def reset_default_engine():
    """Reset the module-level engine between tests."""
    set_default_engine(None)
    yield
    set_default_engine(None)


@pytest.fixture
def project(tmp_path) -> Path:
    """A small project tree."""
    root = tmp_path / "project"
    (root / "src").mkdir(parents=True)
    (root / "src" / "a.js").write_text("const x=1;", encoding="utf-8")
    (root / "src" / "util.py").write_text("def add(a, b):\n    return a + b\n", encoding="utf-8")
    (root / "README.md").write_text("# demo\n", encoding="utf-8")
    return root


@pytest.fixture
def settings() -> Settings:
    return Settings(auto_detect_checks=False)


def _make_engine(ok: bool = True, settings: Optional[Settings] = None, **kwargs) -> AtomicApplyEngine:
    return AtomicApplyEngine(
        settings=settings or Settings(auto_detect_checks=False),
        store=kwargs.pop("store", None) or ChangeSetStore(),
        check_runner=StubCheckRunner(ok=ok),
        **kwargs,
    )


@pytest.fixture
def make_engine():
    """Factory for engines with a stubbed check runner: make_engine(ok=False)."""
    return _make_engine


@pytest.fixture
def passing_engine(settings) -> AtomicApplyEngine:
    """Engine whose checks always pass."""
    return _make_engine(ok=True, settings=settings)


@pytest.fixture
def failing_engine(settings) -> AtomicApplyEngine:
    """Engine whose checks always fail."""
    return _make_engine(ok=False, settings=settings)
