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

"""Check Runner.

An ordered pipeline of tagged steps run against the live tree after the
change set has been written:

    install -> lint -> build -> test -> sandbox_test

Unconfigured steps are recorded as skipped and the first failure stops the
pipeline. When no command step is configured and the sandbox is not in
play, a cheap heuristic step takes their place.

Usage:
    runner = CheckRunner(settings)
    result = runner.run(CheckContext(project_root=root, change_set=cs))
    if not result.ok:
        print(result.failed_step)
"""

import ast
import json
import logging
import os
import re
import shlex
import subprocess
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Sequence

from patchwarden.config.settings import Settings
from patchwarden.engine.sandbox import JS_EXTENSIONS, SandboxTestGate
from patchwarden.engine.types import ChangeSet, MutationType

logger = logging.getLogger(__name__)


class StepKind(str, Enum):
    """Pipeline step tags, in execution order."""

    INSTALL = "install"
    LINT = "lint"
    BUILD = "build"
    TEST = "test"
    SANDBOX_TEST = "sandbox_test"
    HEURISTIC = "heuristic"


COMMAND_STEPS = (StepKind.INSTALL, StepKind.LINT, StepKind.BUILD, StepKind.TEST)


class StepStatus(str, Enum):
    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"
    WARNING = "warning"


@dataclass
class StepResult:
    """Outcome of one pipeline step."""

    kind: StepKind
    status: StepStatus
    command: Optional[str] = None
    output: str = ""
    error: Optional[str] = None
    duration: float = 0.0

    @property
    def failed(self) -> bool:
        return self.status == StepStatus.FAILED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "status": self.status.value,
            "command": self.command,
            "output": self.output,
            "error": self.error,
            "duration": round(self.duration, 3),
        }


@dataclass
class CheckResult:
    """Outcome of a whole pipeline run."""

    ok: bool
    failed_step: Optional[StepKind] = None
    steps: List[StepResult] = field(default_factory=list)

    def step(self, kind: StepKind) -> Optional[StepResult]:
        for result in self.steps:
            if result.kind == kind:
                return result
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "failed_step": self.failed_step.value if self.failed_step else None,
            "steps": [s.to_dict() for s in self.steps],
        }


@dataclass
class CheckContext:
    """What a step needs to know about the apply in progress."""

    project_root: Path
    change_set: Optional[ChangeSet] = None
    run_sandbox: bool = False

    @property
    def touched_files(self) -> List[str]:
        """Created or updated paths (deleted files have nothing to check)."""
        if self.change_set is None:
            return []
        return list(
            dict.fromkeys(m.path for m in self.change_set.mutations if m.type != MutationType.DELETE)
        )


class CheckStep(Protocol):
    """A single pipeline step."""

    kind: StepKind

    def run(self, context: CheckContext) -> StepResult:
        ...


# =============================================================================
# Steps
# =============================================================================


class CommandStep:
    """Runs a shell-free command in the project root under a timeout."""

    def __init__(self, kind: StepKind, command: Optional[str], timeout: float):
        self.kind = kind
        self.command = command
        self.timeout = timeout

    def run(self, context: CheckContext) -> StepResult:
        if not self.command:
            return StepResult(kind=self.kind, status=StepStatus.SKIPPED)

        start = time.monotonic()
        try:
            proc = subprocess.run(
                shlex.split(self.command),
                cwd=context.project_root,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                env={**os.environ, "FORCE_COLOR": "0"},
            )
        except subprocess.TimeoutExpired as e:
            return StepResult(
                kind=self.kind,
                status=StepStatus.FAILED,
                command=self.command,
                output=e.stdout if isinstance(e.stdout, str) else "",
                error=f"Timed out after {self.timeout}s",
                duration=time.monotonic() - start,
            )
        except (OSError, ValueError) as e:
            return StepResult(
                kind=self.kind,
                status=StepStatus.FAILED,
                command=self.command,
                error=str(e),
                duration=time.monotonic() - start,
            )

        ok = proc.returncode == 0
        return StepResult(
            kind=self.kind,
            status=StepStatus.PASSED if ok else StepStatus.FAILED,
            command=self.command,
            output=proc.stdout,
            error=None if ok else (proc.stderr or f"exit code {proc.returncode}"),
            duration=time.monotonic() - start,
        )


class SandboxTestStep:
    """Runs the Sandbox Test Gate as a pipeline step."""

    kind = StepKind.SANDBOX_TEST

    def __init__(self, gate: SandboxTestGate):
        self.gate = gate

    def run(self, context: CheckContext) -> StepResult:
        if not context.run_sandbox or context.change_set is None:
            return StepResult(kind=self.kind, status=StepStatus.SKIPPED)

        start = time.monotonic()
        cs = context.change_set
        result = self.gate.validate(context.project_root, cs.mutations, cs.tests)
        return StepResult(
            kind=self.kind,
            status=StepStatus.PASSED if result.passed else StepStatus.FAILED,
            output=json.dumps(result.to_dict(), indent=2),
            error="; ".join(result.errors) or None,
            duration=time.monotonic() - start,
        )


_NULL_DEREF = re.compile(r"\b(?:undefined|null)\.")


class HeuristicStep:
    """Static sanity checks on touched files when no toolchain is configured."""

    kind = StepKind.HEURISTIC

    def __init__(self, strict: bool = False):
        self.strict = strict

    def run(self, context: CheckContext) -> StepResult:
        start = time.monotonic()
        problems: List[str] = []
        suspicious: List[str] = []

        for rel_path in context.touched_files:
            path = context.project_root / rel_path
            suffix = path.suffix
            if suffix != ".py" and suffix not in JS_EXTENSIONS:
                continue
            try:
                text = path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as e:
                problems.append(f"{rel_path}: unreadable ({e})")
                continue

            if suffix == ".py":
                try:
                    ast.parse(text, filename=rel_path)
                except SyntaxError as e:
                    problems.append(f"{rel_path}:{e.lineno}: syntax error: {e.msg}")
            elif _NULL_DEREF.search(text):
                suspicious.append(f"{rel_path}: possible null/undefined dereference")

        if self.strict:
            problems.extend(suspicious)
            suspicious = []

        if problems:
            status = StepStatus.FAILED
        elif suspicious:
            status = StepStatus.WARNING
        else:
            status = StepStatus.PASSED

        return StepResult(
            kind=self.kind,
            status=status,
            output="\n".join(suspicious),
            error="\n".join(problems) or None,
            duration=time.monotonic() - start,
        )


# =============================================================================
# Runner
# =============================================================================


def detect_commands(project_root: Path) -> Dict[StepKind, Optional[str]]:
    """Derive check commands from ``package.json`` scripts."""
    commands: Dict[StepKind, Optional[str]] = {kind: None for kind in COMMAND_STEPS}
    path = Path(project_root) / "package.json"
    if not path.is_file():
        return commands
    try:
        scripts = (json.loads(path.read_text(encoding="utf-8")) or {}).get("scripts") or {}
    except (OSError, ValueError, AttributeError) as e:
        logger.debug(f"Ignoring unreadable package.json: {e}")
        return commands

    if scripts.get("install"):
        commands[StepKind.INSTALL] = "npm install"
    if scripts.get("lint"):
        commands[StepKind.LINT] = "npm run lint"
    if scripts.get("build"):
        commands[StepKind.BUILD] = "npm run build"
    if scripts.get("test"):
        commands[StepKind.TEST] = "npm test"
    return commands


class CheckRunner:
    """Builds and runs the check pipeline."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        sandbox_gate: Optional[SandboxTestGate] = None,
    ):
        self.settings = settings or Settings()
        self.sandbox_gate = sandbox_gate or SandboxTestGate(self.settings)

    def resolve_commands(self, project_root: Path) -> Dict[StepKind, Optional[str]]:
        """Configured commands, falling back to detected ones."""
        detected = detect_commands(project_root) if self.settings.auto_detect_checks else {}
        return {
            kind: self.settings.check_command(kind.value) or detected.get(kind)
            for kind in COMMAND_STEPS
        }

    def build_steps(self, context: CheckContext) -> List[CheckStep]:
        commands = self.resolve_commands(context.project_root)
        steps: List[CheckStep] = [
            CommandStep(
                kind,
                commands[kind],
                self.settings.install_timeout if kind == StepKind.INSTALL else self.settings.step_timeout,
            )
            for kind in COMMAND_STEPS
        ]
        steps.append(SandboxTestStep(self.sandbox_gate))
        if not any(commands.values()) and not context.run_sandbox:
            steps.append(HeuristicStep(strict=self.settings.heuristics_strict))
        return steps

    def run(self, context: CheckContext, steps: Optional[Sequence[CheckStep]] = None) -> CheckResult:
        """Run the pipeline, stopping at the first failed step."""
        result = CheckResult(ok=True)
        for step in steps if steps is not None else self.build_steps(context):
            logger.debug(f"Running check step {step.kind.value}")
            step_result = step.run(context)
            result.steps.append(step_result)
            if step_result.status == StepStatus.SKIPPED:
                continue
            logger.info(f"Check step {step.kind.value}: {step_result.status.value}")
            if step_result.failed:
                result.ok = False
                result.failed_step = step.kind
                break
        return result
