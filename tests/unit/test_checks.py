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

"""Tests for the check runner pipeline."""

import json
import shlex
import sys

import pytest

from patchwarden.config.settings import Settings
from patchwarden.engine.checks import (
    CheckContext,
    CheckRunner,
    CommandStep,
    HeuristicStep,
    SandboxTestStep,
    StepKind,
    StepResult,
    StepStatus,
    detect_commands,
)
from patchwarden.engine.diff import diff_mutations
from patchwarden.engine.sandbox import SandboxTestGate
from patchwarden.engine.types import ChangeSet, Mutation, TestFile

PYTHON = shlex.quote(sys.executable)
PASS_CMD = f'{PYTHON} -c "print(\'ok\')"'
FAIL_CMD = f'{PYTHON} -c "import sys; sys.stderr.write(\'boom\'); sys.exit(1)"'
SLEEP_CMD = f'{PYTHON} -c "import time; time.sleep(5)"'


def change_set(*mutations, tests=()):
    return ChangeSet(id="cs-1", mutations=tuple(mutations), diffs=diff_mutations(mutations), tests=tuple(tests))


class TestCommandStep:
    """Tests for subprocess-backed steps."""

    def test_unconfigured_is_skipped(self, project):
        result = CommandStep(StepKind.LINT, None, 10).run(CheckContext(project_root=project))

        assert result.status == StepStatus.SKIPPED

    def test_passing_command(self, project):
        result = CommandStep(StepKind.TEST, PASS_CMD, 30).run(CheckContext(project_root=project))

        assert result.status == StepStatus.PASSED
        assert "ok" in result.output
        assert result.command == PASS_CMD

    def test_failing_command(self, project):
        result = CommandStep(StepKind.BUILD, FAIL_CMD, 30).run(CheckContext(project_root=project))

        assert result.status == StepStatus.FAILED
        assert "boom" in result.error

    def test_timeout_is_failure(self, project):
        result = CommandStep(StepKind.TEST, SLEEP_CMD, 0.5).run(CheckContext(project_root=project))

        assert result.status == StepStatus.FAILED
        assert "Timed out" in result.error

    def test_missing_executable_is_failure(self, project):
        result = CommandStep(StepKind.LINT, "definitely-not-a-real-binary-xyz", 5).run(
            CheckContext(project_root=project)
        )

        assert result.status == StepStatus.FAILED


class TestHeuristicStep:
    """Tests for the toolchain-free fallback."""

    def test_valid_python_passes(self, project):
        cs = change_set(Mutation.update("src/util.py", "x = 1\n"))
        (project / "src" / "util.py").write_text("x = 1\n")

        result = HeuristicStep().run(CheckContext(project_root=project, change_set=cs))

        assert result.status == StepStatus.PASSED

    def test_syntax_error_fails(self, project):
        cs = change_set(Mutation.update("src/util.py", "def broken(:\n"))
        (project / "src" / "util.py").write_text("def broken(:\n")

        result = HeuristicStep().run(CheckContext(project_root=project, change_set=cs))

        assert result.status == StepStatus.FAILED
        assert "src/util.py" in result.error

    def test_null_dereference_warns(self, project):
        cs = change_set(Mutation.update("src/a.js", "undefined.foo();"))
        (project / "src" / "a.js").write_text("undefined.foo();")

        result = HeuristicStep().run(CheckContext(project_root=project, change_set=cs))

        assert result.status == StepStatus.WARNING

    def test_null_dereference_fails_when_strict(self, project):
        cs = change_set(Mutation.update("src/a.js", "null.foo();"))
        (project / "src" / "a.js").write_text("null.foo();")

        result = HeuristicStep(strict=True).run(CheckContext(project_root=project, change_set=cs))

        assert result.status == StepStatus.FAILED

    def test_deleted_files_ignored(self, project):
        cs = change_set(Mutation.delete("src/util.py"))
        (project / "src" / "util.py").unlink()

        result = HeuristicStep().run(CheckContext(project_root=project, change_set=cs))

        assert result.status == StepStatus.PASSED


class TestDetectCommands:
    def test_no_package_json(self, project):
        assert all(command is None for command in detect_commands(project).values())

    def test_scripts(self, project):
        (project / "package.json").write_text(
            json.dumps({"scripts": {"lint": "eslint .", "build": "tsc", "test": "jest"}})
        )

        commands = detect_commands(project)

        assert commands[StepKind.INSTALL] is None
        assert commands[StepKind.LINT] == "npm run lint"
        assert commands[StepKind.BUILD] == "npm run build"
        assert commands[StepKind.TEST] == "npm test"

    def test_invalid_package_json(self, project):
        (project / "package.json").write_text("{oops")

        assert detect_commands(project)[StepKind.TEST] is None


class TestCheckRunner:
    """Tests for pipeline ordering and short-circuiting."""

    def test_heuristic_only_when_nothing_configured(self, project):
        runner = CheckRunner(Settings(auto_detect_checks=False))
        cs = change_set(Mutation.update("src/a.js", "const x=2;"))

        result = runner.run(CheckContext(project_root=project, change_set=cs))

        assert result.ok
        kinds = [s.kind for s in result.steps]
        assert kinds == [
            StepKind.INSTALL,
            StepKind.LINT,
            StepKind.BUILD,
            StepKind.TEST,
            StepKind.SANDBOX_TEST,
            StepKind.HEURISTIC,
        ]
        assert all(s.status == StepStatus.SKIPPED for s in result.steps[:5])

    def test_configured_commands_replace_heuristic(self, project):
        runner = CheckRunner(Settings(auto_detect_checks=False, test_command=PASS_CMD))

        result = runner.run(CheckContext(project_root=project))

        assert result.ok
        assert result.step(StepKind.TEST).status == StepStatus.PASSED
        assert result.step(StepKind.HEURISTIC) is None

    def test_first_failure_short_circuits(self, project):
        runner = CheckRunner(
            Settings(auto_detect_checks=False, lint_command=FAIL_CMD, test_command=PASS_CMD)
        )

        result = runner.run(CheckContext(project_root=project))

        assert not result.ok
        assert result.failed_step == StepKind.LINT
        assert result.step(StepKind.TEST) is None
        assert result.to_dict()["failed_step"] == "lint"

    def test_settings_win_over_detection(self, project):
        (project / "package.json").write_text(json.dumps({"scripts": {"test": "jest"}}))
        runner = CheckRunner(Settings(test_command=PASS_CMD))

        assert runner.resolve_commands(project)[StepKind.TEST] == PASS_CMD

    def test_sandbox_step_runs_when_requested(self, project):
        cs = change_set(
            Mutation.create("src/mod.py", "VALUE = 3\n"),
            tests=[TestFile("src/test_mod_value.py", "from mod import VALUE\n\ndef test_value():\n    assert VALUE == 3\n")],
        )
        runner = CheckRunner(Settings(auto_detect_checks=False))

        result = runner.run(CheckContext(project_root=project, change_set=cs, run_sandbox=True))

        sandbox = result.step(StepKind.SANDBOX_TEST)
        assert sandbox.status == StepStatus.PASSED
        assert result.step(StepKind.HEURISTIC) is None

    def test_sandbox_failure_fails_pipeline(self, project):
        cs = change_set(
            Mutation.create("src/mod.py", "VALUE = 3\n"),
            tests=[TestFile("src/test_mod_value.py", "from mod import VALUE\n\ndef test_value():\n    assert VALUE == 4\n")],
        )
        step = SandboxTestStep(SandboxTestGate(Settings()))

        result = step.run(CheckContext(project_root=project, change_set=cs, run_sandbox=True))

        assert result.status == StepStatus.FAILED
        assert "src/test_mod_value.py" in result.error

    def test_custom_steps(self, project):
        class AlwaysWarn:
            kind = StepKind.HEURISTIC

            def run(self, context):
                return StepResult(kind=self.kind, status=StepStatus.WARNING)

        result = CheckRunner(Settings()).run(CheckContext(project_root=project), steps=[AlwaysWarn()])

        assert result.ok
        assert result.steps[0].status == StepStatus.WARNING
