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

"""Centralized timeout configuration for patchwarden.

Every external process the engine starts (check steps, sandbox tests) is
bounded by one of these values. An expired timeout is reported as a failed
step, never left hanging.

Usage:
    from patchwarden.config.timeouts import Timeouts

    subprocess.run(argv, timeout=Timeouts.STEP_DEFAULT)
"""

from dataclasses import dataclass
import os


@dataclass(frozen=True)
class TimeoutConfig:
    """Centralized timeout configuration.

    All values are in seconds.
    Environment variables can override defaults:
        PATCHWARDEN_TIMEOUT_STEP_DEFAULT=120
        PATCHWARDEN_TIMEOUT_INSTALL=600
    """

    # Dependency installation (npm install and friends)
    INSTALL: float = 300.0

    # Lint / build / test steps against the live tree
    STEP_DEFAULT: float = 60.0

    # One sandbox test file
    SANDBOX_TEST: float = 60.0

    @classmethod
    def from_env(cls) -> "TimeoutConfig":
        """Create config with environment variable overrides.

        Environment variables follow the pattern PATCHWARDEN_TIMEOUT_{FIELD_NAME}.
        """

        def get_float(name: str, default: float) -> float:
            value = os.environ.get(f"PATCHWARDEN_TIMEOUT_{name}")
            if value is not None:
                try:
                    return float(value)
                except ValueError:
                    pass
            return default

        return cls(
            INSTALL=get_float("INSTALL", cls.INSTALL),
            STEP_DEFAULT=get_float("STEP_DEFAULT", cls.STEP_DEFAULT),
            SANDBOX_TEST=get_float("SANDBOX_TEST", cls.SANDBOX_TEST),
        )


# Default singleton instance with environment overrides
Timeouts = TimeoutConfig.from_env()
