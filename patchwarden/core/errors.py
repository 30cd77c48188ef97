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

"""Centralized error handling for patchwarden.

This module provides:
- Custom exception types for each failure class of the apply engine
- Error handler utility with structured logging
- User-friendly error messages with recovery suggestions
- Correlation IDs so a failed apply can be traced through the logs

Public engine operations never raise. They catch exceptions at their
boundary, pass them through ``ErrorHandler.handle()`` and return the
resulting ``ErrorInfo`` inside a structured result.
"""

from __future__ import annotations

import builtins
import logging
import traceback
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


# =============================================================================
# Error Categories
# =============================================================================


class ErrorCategory(Enum):
    """Categories of errors for classification and handling."""

    # Change set errors
    VALIDATION_ERROR = "validation_error"
    INVALID_STATE = "invalid_state"

    # Gate errors
    SECURITY_BLOCK = "security_block"
    CHECK_FAILURE = "check_failure"

    # Filesystem errors
    FILE_IO = "file_io"
    FILE_NOT_FOUND = "file_not_found"
    FILE_PERMISSION = "file_permission"

    # Restoration errors
    ROLLBACK_FAILURE = "rollback_failure"

    # Configuration errors
    CONFIG_INVALID = "config_invalid"

    # System errors
    TIMEOUT = "timeout"
    INTERNAL_ERROR = "internal_error"
    UNKNOWN = "unknown"


class ErrorSeverity(Enum):
    """Severity levels for errors."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


# =============================================================================
# Custom Exception Types
# =============================================================================


class PatchwardenError(Exception):
    """Base exception for all patchwarden errors.

    Provides structured error information including:
    - Error category and severity
    - Correlation ID for tracking
    - Recovery suggestions
    - Original exception chain
    """

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        details: Optional[Dict[str, Any]] = None,
        recovery_hint: Optional[str] = None,
        correlation_id: Optional[str] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category
        self.severity = severity
        self.details = details or {}
        self.recovery_hint = recovery_hint
        self.correlation_id = correlation_id or str(uuid.uuid4())[:8]
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "error": self.message,
            "category": self.category.value,
            "severity": self.severity.value,
            "correlation_id": self.correlation_id,
            "recovery_hint": self.recovery_hint,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }

    def __str__(self) -> str:
        result = f"[{self.correlation_id}] {self.message}"
        if self.recovery_hint:
            result += f"\nRecovery hint: {self.recovery_hint}"
        return result


class ValidationError(PatchwardenError):
    """Empty or malformed change sets and operations in the wrong state."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        **kwargs: Any,
    ):
        kwargs.setdefault("category", ErrorCategory.VALIDATION_ERROR)
        super().__init__(message, **kwargs)
        self.field = field
        self.value = value
        self.details["field"] = field
        self.details["value"] = str(value) if value is not None else None


class InvalidStateError(ValidationError):
    """A change set was asked to do something its status forbids."""

    def __init__(self, message: str, current: Optional[str] = None, **kwargs: Any):
        super().__init__(
            message,
            field="status",
            value=current,
            category=ErrorCategory.INVALID_STATE,
            recovery_hint="Prepare a new change set; statuses only move forward.",
            **kwargs,
        )


class SecurityBlockError(PatchwardenError):
    """The secret scanner rejected a change set."""

    def __init__(
        self,
        message: str,
        score: Optional[float] = None,
        finding_count: int = 0,
        **kwargs: Any,
    ):
        super().__init__(
            message,
            category=ErrorCategory.SECURITY_BLOCK,
            severity=ErrorSeverity.WARNING,
            recovery_hint="Remove credentials from the proposed content or replace them with placeholders.",
            **kwargs,
        )
        self.score = score
        self.details["score"] = score
        self.details["finding_count"] = finding_count


class FileIOError(PatchwardenError):
    """Snapshot, backup or write failures."""

    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
        **kwargs: Any,
    ):
        kwargs.setdefault("category", ErrorCategory.FILE_IO)
        super().__init__(message, **kwargs)
        self.path = path
        self.details["path"] = path


class CheckFailureError(PatchwardenError):
    """A build, lint, test or sandbox step failed."""

    def __init__(self, message: str, step: Optional[str] = None, **kwargs: Any):
        super().__init__(
            message,
            category=ErrorCategory.CHECK_FAILURE,
            recovery_hint="Inspect the failed step output; the tree has been restored.",
            **kwargs,
        )
        self.step = step
        self.details["step"] = step


class RollbackFailureError(PatchwardenError):
    """Restoring the snapshot failed; the tree may be partially mutated."""

    def __init__(
        self,
        message: str,
        failed_paths: Optional[List[str]] = None,
        snapshot_id: Optional[str] = None,
        **kwargs: Any,
    ):
        super().__init__(
            message,
            category=ErrorCategory.ROLLBACK_FAILURE,
            severity=ErrorSeverity.CRITICAL,
            recovery_hint=(
                f"Manual intervention required: restore the listed files from "
                f".snapshots/{snapshot_id or '<id>'}/ by hand."
            ),
            **kwargs,
        )
        self.failed_paths = failed_paths or []
        self.snapshot_id = snapshot_id
        self.details["failed_paths"] = self.failed_paths
        self.details["snapshot_id"] = snapshot_id


class ConfigurationError(PatchwardenError):
    """Invalid settings or project configuration file."""

    def __init__(self, message: str, config_key: Optional[str] = None, **kwargs: Any):
        super().__init__(
            message,
            category=ErrorCategory.CONFIG_INVALID,
            recovery_hint="Check .patchwarden.yaml and PATCHWARDEN_* environment variables.",
            **kwargs,
        )
        self.config_key = config_key
        self.details["config_key"] = config_key


# =============================================================================
# Error Information
# =============================================================================


@dataclass
class ErrorInfo:
    """Structured error information for logging and display."""

    message: str
    category: ErrorCategory
    severity: ErrorSeverity
    correlation_id: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    details: Dict[str, Any] = field(default_factory=dict)
    recovery_hint: Optional[str] = None
    traceback: Optional[str] = None
    original_exception: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "message": self.message,
            "category": self.category.value,
            "severity": self.severity.value,
            "correlation_id": self.correlation_id,
            "timestamp": self.timestamp.isoformat(),
            "details": self.details,
            "recovery_hint": self.recovery_hint,
            "traceback": self.traceback,
            "original_exception": self.original_exception,
        }

    def to_user_message(self) -> str:
        """Get user-friendly error message."""
        msg = self.message
        if self.recovery_hint:
            msg += f"\n\nSuggestion: {self.recovery_hint}"
        return msg

    @property
    def requires_intervention(self) -> bool:
        return self.category == ErrorCategory.ROLLBACK_FAILURE


# =============================================================================
# Error Handler
# =============================================================================


class ErrorHandler:
    """Centralized error handler with logging and reporting.

    Usage:
        handler = ErrorHandler()

        try:
            risky_operation()
        except Exception as e:
            error_info = handler.handle(e, context={"operation": "apply"})
            return ApplyResult(success=False, error=error_info)
    """

    def __init__(
        self,
        logger_name: str = "patchwarden",
        include_traceback: bool = True,
    ):
        self.logger = logging.getLogger(logger_name)
        self.include_traceback = include_traceback
        self._error_history: List[ErrorInfo] = []
        self._max_history = 100

    def handle(
        self,
        exception: Exception,
        context: Optional[Dict[str, Any]] = None,
        log_level: Optional[int] = None,
    ) -> ErrorInfo:
        """Handle an exception and return structured error info.

        Args:
            exception: The exception to handle.
            context: Additional context about the operation.
            log_level: Override the default log level.

        Returns:
            ErrorInfo with structured error details.
        """
        error_info = self._create_error_info(exception, context)
        self._log_error(error_info, log_level)
        self._add_to_history(error_info)
        return error_info

    def _create_error_info(
        self,
        exception: Exception,
        context: Optional[Dict[str, Any]] = None,
    ) -> ErrorInfo:
        """Create ErrorInfo from an exception."""
        if isinstance(exception, PatchwardenError):
            return ErrorInfo(
                message=exception.message,
                category=exception.category,
                severity=exception.severity,
                correlation_id=exception.correlation_id,
                timestamp=exception.timestamp,
                details={**exception.details, **(context or {})},
                recovery_hint=exception.recovery_hint,
                traceback=self._format_traceback(exception),
                original_exception=str(exception.cause) if exception.cause else None,
            )

        category, recovery_hint = self._categorize_exception(exception)

        return ErrorInfo(
            message=str(exception) or type(exception).__name__,
            category=category,
            severity=ErrorSeverity.ERROR,
            correlation_id=str(uuid.uuid4())[:8],
            details=context or {},
            recovery_hint=recovery_hint,
            traceback=self._format_traceback(exception),
            original_exception=type(exception).__name__,
        )

    def _format_traceback(self, exception: Exception) -> Optional[str]:
        if not self.include_traceback or exception.__traceback__ is None:
            return None
        return "".join(
            traceback.format_exception(type(exception), exception, exception.__traceback__)
        )

    def _categorize_exception(self, exception: Exception) -> tuple[ErrorCategory, Optional[str]]:
        """Categorize a standard exception and provide recovery hint."""
        if isinstance(exception, builtins.FileNotFoundError):
            return ErrorCategory.FILE_NOT_FOUND, "Check if the file exists and path is correct."

        if isinstance(exception, PermissionError):
            return ErrorCategory.FILE_PERMISSION, "Check file permissions."

        if isinstance(exception, TimeoutError):
            return ErrorCategory.TIMEOUT, "Increase the step timeout or speed up the command."

        if isinstance(exception, OSError):
            return ErrorCategory.FILE_IO, "Check disk space and that the project root is writable."

        if isinstance(exception, (ValueError, TypeError)):
            return ErrorCategory.VALIDATION_ERROR, "Check input values and types."

        return ErrorCategory.INTERNAL_ERROR, None

    def _log_error(
        self,
        error_info: ErrorInfo,
        log_level: Optional[int] = None,
    ) -> None:
        """Log the error with appropriate level."""
        if log_level is None:
            level_map = {
                ErrorSeverity.DEBUG: logging.DEBUG,
                ErrorSeverity.INFO: logging.INFO,
                ErrorSeverity.WARNING: logging.WARNING,
                ErrorSeverity.ERROR: logging.ERROR,
                ErrorSeverity.CRITICAL: logging.CRITICAL,
            }
            log_level = level_map.get(error_info.severity, logging.ERROR)

        msg = f"[{error_info.correlation_id}] {error_info.category.value}: {error_info.message}"
        if error_info.details:
            msg += f" | details: {error_info.details}"

        self.logger.log(log_level, msg)

        if error_info.traceback:
            self.logger.debug(
                "[%s] Traceback:\n%s", error_info.correlation_id, error_info.traceback
            )

    def _add_to_history(self, error_info: ErrorInfo) -> None:
        """Add error to history (for debugging/reporting)."""
        self._error_history.append(error_info)
        if len(self._error_history) > self._max_history:
            self._error_history = self._error_history[-self._max_history :]

    def get_recent_errors(self, count: int = 10) -> List[ErrorInfo]:
        """Get recent errors from history."""
        return self._error_history[-count:]

    def clear_history(self) -> None:
        """Clear error history."""
        self._error_history = []


_global_handler: Optional[ErrorHandler] = None


def get_error_handler() -> ErrorHandler:
    """Get the global error handler instance."""
    global _global_handler
    if _global_handler is None:
        _global_handler = ErrorHandler()
    return _global_handler


def handle_exception(
    exception: Exception,
    context: Optional[Dict[str, Any]] = None,
) -> ErrorInfo:
    """Handle an exception using the global handler.

    Args:
        exception: The exception to handle.
        context: Additional context.

    Returns:
        ErrorInfo with structured error details.
    """
    return get_error_handler().handle(exception, context)
