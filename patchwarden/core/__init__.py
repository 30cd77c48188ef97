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

"""Error taxonomy and logging helpers shared by the engine."""

from patchwarden.core.errors import (
    CheckFailureError,
    ConfigurationError,
    ErrorCategory,
    ErrorHandler,
    ErrorInfo,
    ErrorSeverity,
    FileIOError,
    InvalidStateError,
    PatchwardenError,
    RollbackFailureError,
    SecurityBlockError,
    ValidationError,
    get_error_handler,
    handle_exception,
)
from patchwarden.core.logging_utils import TRACE, configure_logging_levels

__all__ = [
    "CheckFailureError",
    "ConfigurationError",
    "ErrorCategory",
    "ErrorHandler",
    "ErrorInfo",
    "ErrorSeverity",
    "FileIOError",
    "InvalidStateError",
    "PatchwardenError",
    "RollbackFailureError",
    "SecurityBlockError",
    "ValidationError",
    "get_error_handler",
    "handle_exception",
    "TRACE",
    "configure_logging_levels",
]
