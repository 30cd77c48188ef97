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

"""Tests for settings, project configuration and timeouts."""

import logging

import pytest

from patchwarden.config.settings import PROJECT_CONFIG_FILE, Settings, load_settings, read_project_config
from patchwarden.config.timeouts import TimeoutConfig
from patchwarden.core.errors import ConfigurationError
from patchwarden.core.logging_utils import TRACE, PACKAGE_LOGGER, configure_logging_levels, resolve_level


class TestSettings:
    """Tests for the Settings model."""

    def test_defaults(self):
        settings = Settings()

        assert settings.snapshot_dir_name == ".snapshots"
        assert settings.backup_dir_name == ".backups"
        assert settings.block_score_threshold == 0.3
        assert settings.rollback_on_write_error is True
        assert settings.reserved_dirs() == [".snapshots", ".backups"]

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("PATCHWARDEN_TEST_COMMAND", "pytest -q")
        monkeypatch.setenv("PATCHWARDEN_STEP_TIMEOUT", "12.5")

        settings = Settings()

        assert settings.check_command("test") == "pytest -q"
        assert settings.step_timeout == 12.5

    def test_log_level_normalized(self):
        assert Settings(log_level="debug").log_level == "DEBUG"

    @pytest.mark.parametrize(
        "field,value",
        [
            ("log_level", "LOUD"),
            ("block_score_threshold", 1.5),
            ("snapshot_dir_name", "../snaps"),
            ("backup_dir_name", ""),
            ("step_timeout", 0),
        ],
    )
    def test_invalid_values(self, field, value):
        with pytest.raises(ConfigurationError):
            load_settings(**{field: value})


class TestProjectConfig:
    """Tests for .patchwarden.yaml handling."""

    def test_missing_file(self, tmp_path):
        assert read_project_config(tmp_path) == {}

    def test_checks_are_flattened(self, tmp_path):
        (tmp_path / PROJECT_CONFIG_FILE).write_text(
            "checks:\n  lint: ruff check .\n  test: pytest -q\nstep_timeout: 90\n"
        )

        settings = load_settings(tmp_path)

        assert settings.lint_command == "ruff check ."
        assert settings.test_command == "pytest -q"
        assert settings.step_timeout == 90

    def test_overrides_win(self, tmp_path):
        (tmp_path / PROJECT_CONFIG_FILE).write_text("sandbox_enabled: true\n")

        assert load_settings(tmp_path, sandbox_enabled=False).sandbox_enabled is False

    def test_invalid_yaml(self, tmp_path):
        (tmp_path / PROJECT_CONFIG_FILE).write_text("checks: [unclosed\n")

        with pytest.raises(ConfigurationError):
            read_project_config(tmp_path)

    def test_non_mapping(self, tmp_path):
        (tmp_path / PROJECT_CONFIG_FILE).write_text("- a\n- b\n")

        with pytest.raises(ConfigurationError):
            read_project_config(tmp_path)

    def test_unknown_check_step(self, tmp_path):
        (tmp_path / PROJECT_CONFIG_FILE).write_text("checks:\n  deploy: make deploy\n")

        with pytest.raises(ConfigurationError) as exc_info:
            read_project_config(tmp_path)

        assert exc_info.value.config_key == "checks.deploy"


class TestTimeouts:
    def test_defaults(self):
        config = TimeoutConfig()

        assert config.INSTALL == 300.0
        assert config.STEP_DEFAULT == 60.0

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("PATCHWARDEN_TIMEOUT_INSTALL", "600")
        monkeypatch.setenv("PATCHWARDEN_TIMEOUT_SANDBOX_TEST", "not-a-number")

        config = TimeoutConfig.from_env()

        assert config.INSTALL == 600.0
        assert config.SANDBOX_TEST == 60.0

    def test_frozen(self):
        with pytest.raises(Exception):
            TimeoutConfig().INSTALL = 1.0


class TestLogging:
    def test_resolve_level(self):
        assert resolve_level("trace") == TRACE
        assert resolve_level("WARNING") == logging.WARNING
        assert resolve_level("bogus") == logging.INFO

    def test_configure_sets_package_level(self, tmp_path):
        log_file = tmp_path / "engine.log"
        package_logger = logging.getLogger(PACKAGE_LOGGER)
        previous = package_logger.level
        try:
            configure_logging_levels("DEBUG", str(log_file))
            configure_logging_levels("DEBUG", str(log_file))

            assert package_logger.level == logging.DEBUG
            file_handlers = [h for h in package_logger.handlers if isinstance(h, logging.FileHandler)]
            assert len(file_handlers) == 1

            logging.getLogger("patchwarden.engine.test").debug("hello file")
            file_handlers[0].flush()
            assert "hello file" in log_file.read_text()
        finally:
            for handler in list(package_logger.handlers):
                if isinstance(handler, logging.FileHandler):
                    package_logger.removeHandler(handler)
                    handler.close()
            package_logger.setLevel(previous)
