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

"""Configuration management for patchwarden.

Values are resolved in this order (first wins):
    1. Keyword overrides passed to ``load_settings()``
    2. The project file ``<project_root>/.patchwarden.yaml``
    3. ``PATCHWARDEN_*`` environment variables (and ``.env``)
    4. Defaults below

Example ``.patchwarden.yaml``::

    checks:
      lint: ruff check .
      test: pytest -q
    step_timeout: 120
    sandbox_enabled: true
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import Field, ValidationError as PydanticValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from patchwarden.config.timeouts import Timeouts
from patchwarden.core.errors import ConfigurationError

logger = logging.getLogger(__name__)

PROJECT_CONFIG_FILE = ".patchwarden.yaml"

_VALID_LOG_LEVELS = {"TRACE", "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}

# Shorthand keys accepted under ``checks:`` in the project file
_CHECK_KEYS = ("install", "lint", "build", "test")


class Settings(BaseSettings):
    """Engine settings."""

    model_config = SettingsConfigDict(
        env_prefix="PATCHWARDEN_",
        env_file=".env" if not os.getenv("PATCHWARDEN_SKIP_ENV_FILE") else None,
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # On-disk layout (relative to the project root)
    snapshot_dir_name: str = ".snapshots"
    backup_dir_name: str = ".backups"

    # Check Runner commands. None means "not configured" and the step is skipped.
    install_command: Optional[str] = None
    lint_command: Optional[str] = None
    build_command: Optional[str] = None
    test_command: Optional[str] = None
    # Fill unset commands from package.json scripts
    auto_detect_checks: bool = True

    install_timeout: float = Field(Timeouts.INSTALL, gt=0)
    step_timeout: float = Field(Timeouts.STEP_DEFAULT, gt=0)
    sandbox_test_timeout: float = Field(Timeouts.SANDBOX_TEST, gt=0)

    # Sandbox Test Gate: always run when tests are attached; this forces it otherwise
    sandbox_enabled: bool = False
    # Command template; "{test}" is replaced by the test file path. None selects by extension.
    sandbox_test_command: Optional[str] = None
    sandbox_exclude: List[str] = [".git", "__pycache__"]

    # Secret Scanner Gate
    entropy_threshold: float = Field(3.5, gt=0)
    entropy_min_token_length: int = Field(20, ge=1)
    block_score_threshold: float = 0.3

    # Heuristic step (used when no toolchain is configured)
    heuristics_strict: bool = False

    # Roll back as soon as a write fails instead of running checks first
    rollback_on_write_error: bool = True
    backups_enabled: bool = True

    # Keep at most this many snapshots after a successful apply (None keeps all)
    max_snapshots: Optional[int] = Field(None, ge=1)

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None

    @field_validator("block_score_threshold")
    @classmethod
    def validate_block_score(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError(f"block_score_threshold must be within [0, 1], got {v}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in _VALID_LOG_LEVELS:
            raise ValueError(f"log_level must be one of {sorted(_VALID_LOG_LEVELS)}, got {v}")
        return level

    @field_validator("snapshot_dir_name", "backup_dir_name")
    @classmethod
    def validate_dir_name(cls, v: str) -> str:
        if not v or "/" in v or "\\" in v or v in {".", ".."}:
            raise ValueError(f"directory name must be a single path component, got {v!r}")
        return v

    def check_command(self, step: str) -> Optional[str]:
        """Get the configured command for a check step name."""
        return getattr(self, f"{step}_command", None)

    def reserved_dirs(self) -> List[str]:
        """Directories inside the project root that the engine owns."""
        return [self.snapshot_dir_name, self.backup_dir_name]


def read_project_config(project_root: Union[str, Path]) -> Dict[str, Any]:
    """Read ``.patchwarden.yaml`` from a project root.

    Returns:
        Flat settings dictionary (empty when the file does not exist)

    Raises:
        ConfigurationError: If the file is not valid YAML or not a mapping
    """
    path = Path(project_root) / PROJECT_CONFIG_FILE
    if not path.exists():
        return {}

    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}", config_key=str(path), cause=e)

    if not isinstance(data, dict):
        raise ConfigurationError(
            f"{PROJECT_CONFIG_FILE} must contain a mapping, got {type(data).__name__}",
            config_key=str(path),
        )

    checks = data.pop("checks", None) or {}
    if not isinstance(checks, dict):
        raise ConfigurationError("'checks' must be a mapping of step name to command", config_key="checks")
    for key, command in checks.items():
        if key not in _CHECK_KEYS:
            raise ConfigurationError(f"Unknown check step: {key}", config_key=f"checks.{key}")
        data.setdefault(f"{key}_command", command)

    logger.debug(f"Loaded project config from {path}: {sorted(data)}")
    return data


def load_settings(project_root: Optional[Union[str, Path]] = None, **overrides: Any) -> Settings:
    """Load engine settings.

    Args:
        project_root: Project whose ``.patchwarden.yaml`` should be applied
        **overrides: Explicit values that win over everything else

    Returns:
        Settings instance

    Raises:
        ConfigurationError: If the project file or a value is invalid
    """
    values: Dict[str, Any] = {}
    if project_root is not None:
        values.update(read_project_config(project_root))
    values.update(overrides)

    try:
        return Settings(**values)
    except PydanticValidationError as e:
        raise ConfigurationError(f"Invalid settings: {e}", cause=e)
