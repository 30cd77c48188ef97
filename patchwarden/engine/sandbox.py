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

"""Sandbox Test Gate.

Runs attached (or generated smoke) tests against a throwaway copy of the
project with the change set already applied, so a broken change never has
to touch the real tree to be caught.

The workspace lives under the system temp directory and is removed on every
exit path.
"""

import json
import logging
import shlex
import shutil
import subprocess
import sys
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

from patchwarden.config.settings import Settings
from patchwarden.engine.types import Mutation, MutationType, TestFile

logger = logging.getLogger(__name__)

CODE_EXTENSIONS = frozenset({".js", ".jsx", ".ts", ".tsx", ".py", ".go", ".rs", ".php"})
JS_EXTENSIONS = frozenset({".js", ".jsx", ".ts", ".tsx"})
COMPONENT_EXTENSIONS = frozenset({".jsx", ".tsx"})

# pytest exit code when nothing was collected
_PYTEST_NO_TESTS = 5


@dataclass
class TestRun:
    """Outcome of one test file."""

    __test__ = False  # not a pytest class

    path: str
    passed: bool
    output: str = ""
    error: Optional[str] = None
    duration: float = 0.0
    skipped: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "passed": self.passed,
            "skipped": self.skipped,
            "output": self.output,
            "error": self.error,
            "duration": round(self.duration, 3),
        }


@dataclass
class SandboxResult:
    """Aggregate result of a sandbox validation."""

    passed: bool = True
    runs: List[TestRun] = field(default_factory=list)
    smoke_tests_generated: List[TestFile] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def tests_run(self) -> int:
        return len(self.runs)

    @property
    def tests_passed(self) -> int:
        return sum(1 for r in self.runs if r.passed)

    @property
    def tests_failed(self) -> int:
        return sum(1 for r in self.runs if not r.passed)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "passed": self.passed,
            "tests_run": self.tests_run,
            "tests_passed": self.tests_passed,
            "tests_failed": self.tests_failed,
            "runs": [r.to_dict() for r in self.runs],
            "smoke_tests_generated": [t.path for t in self.smoke_tests_generated],
            "errors": list(self.errors),
            "warnings": list(self.warnings),
        }


# =============================================================================
# Helpers
# =============================================================================


def _read_package_json(project_root: Path) -> Optional[Dict[str, Any]]:
    path = project_root / "package.json"
    if not path.is_file():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.debug(f"Ignoring unreadable package.json: {e}")
        return None
    return data if isinstance(data, dict) else None


def detect_test_framework(project_root: Union[str, Path]) -> Optional[str]:
    """Guess the project's test framework.

    Returns:
        "jest", "vitest", "mocha", "testing-library", "pytest" or None
    """
    root = Path(project_root)
    pkg = _read_package_json(root)
    if pkg:
        deps = {**(pkg.get("dependencies") or {}), **(pkg.get("devDependencies") or {})}
        for name in ("jest", "vitest", "mocha"):
            if name in deps:
                return name
        if "@testing-library/react" in deps:
            return "testing-library"

    if (root / "pytest.ini").is_file() or (root / "conftest.py").is_file():
        return "pytest"
    for config in ("pyproject.toml", "setup.cfg", "tox.ini"):
        path = root / config
        if path.is_file() and "pytest" in path.read_text(encoding="utf-8", errors="ignore"):
            return "pytest"
    return None


def requires_testing(mutation: Mutation, tests: Sequence[TestFile] = ()) -> bool:
    """True when tests are attached or the mutation touches a code file."""
    if tests:
        return True
    return Path(mutation.path).suffix in CODE_EXTENSIONS


def _python_smoke_test(path: str) -> TestFile:
    source = Path(path)
    test_path = source.with_name(f"test_{source.stem}.py")
    content = f'''import importlib.util
from pathlib import Path


def test_module_imports():
    """Smoke test: {source.name} loads without errors."""
    target = Path(__file__).resolve().parent / "{source.name}"
    spec = importlib.util.spec_from_file_location("{source.stem}", target)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    assert module is not None
'''
    return TestFile(path=test_path.as_posix(), content=content)


def _js_smoke_test(path: str) -> TestFile:
    source = Path(path)
    name = source.stem
    if source.suffix in COMPONENT_EXTENSIONS:
        test_path = source.with_name(f"{name}.test{source.suffix}")
        content = f"""import {{ render }} from '@testing-library/react';
import {name} from './{name}';

describe('{name}', () => {{
  test('renders without crashing', () => {{
    expect(() => {{
      render(<{name} />);
    }}).not.toThrow();
  }});
}});
"""
    else:
        test_path = source.with_name(f"{name}.test{source.suffix}")
        content = f"""describe('{name}', () => {{
  test('module loads without errors', () => {{
    expect(() => {{
      require('./{name}');
    }}).not.toThrow();
  }});

  test('exports are defined', () => {{
    expect(require('./{name}')).toBeDefined();
  }});
}});
"""
    return TestFile(path=test_path.as_posix(), content=content)


def generate_smoke_tests(mutations: Sequence[Mutation]) -> List[TestFile]:
    """One smoke test per created or updated source file."""
    tests = []
    for mutation in mutations:
        if mutation.type == MutationType.DELETE:
            continue
        suffix = Path(mutation.path).suffix
        if suffix == ".py":
            tests.append(_python_smoke_test(mutation.path))
        elif suffix in JS_EXTENSIONS:
            tests.append(_js_smoke_test(mutation.path))
    return tests


# =============================================================================
# Gate
# =============================================================================


class SandboxTestGate:
    """Validates a change set's tests in an ephemeral copy of the project."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or Settings()

    def _ignore_names(self) -> List[str]:
        return list(dict.fromkeys([*self.settings.sandbox_exclude, *self.settings.reserved_dirs()]))

    def _command_for(self, test_path: str) -> Optional[List[str]]:
        template = self.settings.sandbox_test_command
        if template:
            return shlex.split(template.replace("{test}", shlex.quote(test_path)))
        suffix = Path(test_path).suffix
        if suffix == ".py":
            return [sys.executable, "-m", "pytest", "-q", "-p", "no:cacheprovider", test_path]
        if suffix in JS_EXTENSIONS:
            return ["npx", "jest", "--passWithNoTests", "--silent", test_path]
        return None

    def run_test(self, workspace: Path, test_path: str) -> TestRun:
        """Run a single test file inside the workspace."""
        command = self._command_for(test_path)
        if command is None:
            return TestRun(path=test_path, passed=True, skipped=True, output="No runner for file type")

        is_js = Path(test_path).suffix in JS_EXTENSIONS and not self.settings.sandbox_test_command
        if is_js and not (workspace / "node_modules").is_dir():
            return TestRun(
                path=test_path,
                passed=True,
                skipped=True,
                output="No node_modules - skipping test",
            )

        start = time.monotonic()
        timeout = self.settings.sandbox_test_timeout
        try:
            proc = subprocess.run(
                command,
                cwd=workspace,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired:
            return TestRun(
                path=test_path,
                passed=False,
                error=f"Timed out after {timeout}s",
                duration=time.monotonic() - start,
            )
        except OSError as e:
            return TestRun(path=test_path, passed=False, error=str(e), duration=time.monotonic() - start)

        ok = proc.returncode == 0 or (command[1:3] == ["-m", "pytest"] and proc.returncode == _PYTEST_NO_TESTS)
        return TestRun(
            path=test_path,
            passed=ok,
            output=proc.stdout,
            error=None if ok else (proc.stderr or proc.stdout or f"exit code {proc.returncode}"),
            duration=time.monotonic() - start,
        )

    def validate(
        self,
        project_root: Union[str, Path],
        mutations: Sequence[Mutation],
        tests: Sequence[TestFile] = (),
    ) -> SandboxResult:
        """Apply ``mutations`` to a copy of the project and run ``tests`` there.

        Smoke tests are generated when no tests are given. With nothing to
        run the result passes with a warning.
        """
        result = SandboxResult()
        tests = list(tests)
        if not tests:
            result.smoke_tests_generated = generate_smoke_tests(mutations)
            result.warnings.extend(f"Generated smoke test {t.path}" for t in result.smoke_tests_generated)
            tests = result.smoke_tests_generated
        if not tests:
            result.warnings.append("No tests available - skipping test validation")
            return result

        root = Path(project_root)
        temp_dir = Path(tempfile.mkdtemp(prefix="patchwarden-sandbox-"))
        workspace = temp_dir / "project"
        try:
            shutil.copytree(root, workspace, symlinks=True, ignore=shutil.ignore_patterns(*self._ignore_names()))

            for mutation in mutations:
                target = workspace / mutation.path
                if mutation.type == MutationType.DELETE:
                    target.unlink(missing_ok=True)
                else:
                    target.parent.mkdir(parents=True, exist_ok=True)
                    target.write_text(mutation.new_content or "", encoding="utf-8")

            for test in tests:
                target = workspace / test.path
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_text(test.content, encoding="utf-8")

            for test in tests:
                run = self.run_test(workspace, test.path)
                result.runs.append(run)
                if not run.passed:
                    result.passed = False
                    result.errors.append(f"Test {test.path} failed: {run.error or run.output}")
                    logger.info(f"Sandbox test failed: {test.path}")
        except OSError as e:
            result.passed = False
            result.errors.append(f"Sandbox validation failed: {e}")
            logger.warning(f"Sandbox setup failed: {e}")
        finally:
            shutil.rmtree(temp_dir, ignore_errors=True)

        logger.info(
            f"Sandbox: {result.tests_passed}/{result.tests_run} test(s) passed "
            f"({len(result.smoke_tests_generated)} generated)"
        )
        return result


def validate_tests_in_sandbox(
    project_root: Union[str, Path],
    tests: Sequence[TestFile],
    mutations: Sequence[Mutation],
    settings: Optional[Settings] = None,
) -> SandboxResult:
    """Convenience wrapper around ``SandboxTestGate.validate``."""
    return SandboxTestGate(settings).validate(project_root, mutations, tests)
