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

"""Logging helpers for patchwarden.

Logging Levels (patchwarden convention):
- TRACE (5): Per-file copy/restore operations, per-token scanner decisions
- DEBUG (10): Step commands and captured output
- INFO (20): Lifecycle events (prepared, snapshot created, applied, rolled back)
- WARNING (30): Security blocks, backup failures, heuristic warnings
- ERROR (40): Check failures, write failures
- CRITICAL (50): Rollback failures that need manual intervention
"""

import logging
import os
from typing import Any, Optional

TRACE = 5
logging.addLevelName(TRACE, "TRACE")


def trace(self: logging.Logger, message: str, *args: Any, **kwargs: Any) -> None:
    """Log at TRACE level (5) - for very verbose per-operation logs."""
    if self.isEnabledFor(TRACE):
        self._log(TRACE, message, args, **kwargs)


logging.Logger.trace = trace  # type: ignore[attr-defined]

PACKAGE_LOGGER = "patchwarden"

_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def resolve_level(log_level: str) -> int:
    """Translate a level name (including TRACE) to its numeric value."""
    level_upper = log_level.upper()
    if level_upper == "TRACE":
        return TRACE
    return getattr(logging, level_upper, logging.INFO)


def configure_logging_levels(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
) -> logging.Logger:
    """Configure the patchwarden logger.

    Args:
        log_level: Desired level for patchwarden loggers.
            Supported: TRACE (5), DEBUG, INFO, WARNING, ERROR, CRITICAL
        log_file: Optional file that also receives records.

    Returns:
        The package logger.
    """
    level = resolve_level(log_level)
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    package_logger.setLevel(level)

    if log_file and not any(
        isinstance(h, logging.FileHandler) and h.baseFilename == os.path.abspath(log_file)
        for h in package_logger.handlers
    ):
        handler = logging.FileHandler(log_file, encoding="utf-8")
        handler.setFormatter(logging.Formatter(_FORMAT))
        package_logger.addHandler(handler)

    return package_logger
