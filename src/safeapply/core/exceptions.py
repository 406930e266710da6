"""
safeapply.core.exceptions - Custom Exception Hierarchy
========================================================

This module defines a structured exception hierarchy for SafeApply.
Instead of catching generic Exception everywhere, components raise and catch
specific exception types that carry contextual information.

Exception Hierarchy:
    SafeApplyError (base)
        ├── ConfigurationError     - Invalid config, malformed YAML
        ├── NotFoundError          - Run or feature absent
        ├── ValidationError        - Generated output fails a syntax/format check
        ├── ConflictError          - Unresolved conflicts under mode=safe
        ├── VcsError               - Dirty tree, git command failure
        │     └── CommandTimeoutError - External process exceeded its timeout
        ├── ApplyIOError           - Filesystem failure during backup or write
        └── NoActiveRunError       - Run-scoped call on a finished run

Propagation Policy:
    - NotFoundError, ValidationError, ConflictError describe EXPECTED outcomes.
      The ApplyEngine returns them as structured ApplyResults; callers that
      prefer exceptions use ``ApplyResult.raise_for_status()``.
    - ApplyIOError / OSError during apply trigger a rollback when a backup
      exists. Without a backup the target tree's state is undefined.
    - NoActiveRunError is a programmer error and always fails fast.

Usage:
    >>> from safeapply.core.exceptions import VcsError
    >>> raise VcsError(
    ...     message="Working tree has uncommitted changes",
    ...     error_code="DIRTY_WORKING_TREE",
    ...     details={"repo_path": "/work/app"},
    ... )
"""

from __future__ import annotations

from typing import Any, Optional, Sequence


# =============================================================================
# Base Exception
# =============================================================================
# All SafeApply exceptions inherit from this base class. This allows
# catching all framework-specific errors with a single except clause:
#
#   try:
#       await engine.execute("login", target)
#   except SafeApplyError as e:
#       logger.error(e.message, error_code=e.error_code, details=e.details)
# =============================================================================
class SafeApplyError(Exception):
    """Base exception for all SafeApply errors.

    Attributes:
        message: Human-readable error description.
        error_code: Machine-readable error code for programmatic handling.
            Convention: UPPER_SNAKE_CASE (e.g., "RUN_NOT_FOUND").
        details: Arbitrary dict with additional debugging context.
    """

    def __init__(
        self,
        message: str,
        error_code: str = "UNKNOWN_ERROR",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)

        self.message = message
        self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Serialize this exception to a dictionary.

        Returns:
            Dictionary with error_type, message, error_code, and details.
        """
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code!r}, "
            f"details={self.details!r})"
        )


# =============================================================================
# Configuration Error
# =============================================================================
class ConfigurationError(SafeApplyError):
    """Raised when SafeApply configuration is invalid or missing.

    Example:
        >>> raise ConfigurationError(
        ...     message="safeapply.yaml must contain a mapping",
        ...     error_code="INVALID_CONFIG_FILE",
        ... )
    """

    def __init__(
        self,
        message: str,
        error_code: str = "CONFIG_ERROR",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message=message, error_code=error_code, details=details)


# =============================================================================
# Not Found Error
# =============================================================================
# Raised by the ArtifactStore for unknown runs and features. The ApplyEngine
# turns it into an ApplyStatus.NOT_FOUND result.
# =============================================================================
class NotFoundError(SafeApplyError):
    """Raised when a run or feature does not exist in the store.

    Attributes:
        resource: Kind of resource that was looked up ("run", "feature").
        identifier: The id or name that was not found.
    """

    def __init__(
        self,
        message: str,
        resource: str,
        identifier: str,
        error_code: str = "NOT_FOUND",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        enriched_details = details or {}
        enriched_details["resource"] = resource
        enriched_details["identifier"] = identifier

        super().__init__(message=message, error_code=error_code, details=enriched_details)

        self.resource = resource
        self.identifier = identifier


class ValidationError(SafeApplyError):
    """Raised when generated files fail the external syntax/format check."""

    def __init__(
        self,
        message: str,
        error_code: str = "VALIDATION_FAILED",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message=message, error_code=error_code, details=details)


class ConflictError(SafeApplyError):
    """Raised when conflicts remain unresolved under ``mode=safe``.

    Attributes:
        paths: Relative paths of the conflicting files.
    """

    def __init__(
        self,
        message: str,
        paths: Sequence[str] = (),
        error_code: str = "UNRESOLVED_CONFLICTS",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        enriched_details = details or {}
        enriched_details["paths"] = list(paths)

        super().__init__(message=message, error_code=error_code, details=enriched_details)

        self.paths = list(paths)


# =============================================================================
# VCS Error
# =============================================================================
# Covers every failure of the version-control adapter: a dirty working tree
# when cleanliness is required, a branch that already exists, or a git
# command that exited non-zero. The captured stdout/stderr make failures
# diagnosable without re-running the command.
# =============================================================================
class VcsError(SafeApplyError):
    """Raised when a version-control operation fails.

    Attributes:
        command: The argv that failed, if the error came from a subprocess.
        returncode: Exit status of the failed command, if any.
        stdout: Captured standard output.
        stderr: Captured standard error.

    Example:
        >>> raise VcsError(
        ...     message="Branch safeapply/login already exists",
        ...     error_code="BRANCH_EXISTS",
        ... )
    """

    def __init__(
        self,
        message: str,
        error_code: str = "VCS_ERROR",
        command: Sequence[str] = (),
        returncode: Optional[int] = None,
        stdout: str = "",
        stderr: str = "",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        enriched_details = details or {}
        if command:
            enriched_details["command"] = list(command)
        if returncode is not None:
            enriched_details["returncode"] = returncode
        if stderr:
            enriched_details["stderr"] = stderr

        super().__init__(message=message, error_code=error_code, details=enriched_details)

        self.command = tuple(command)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


class CommandTimeoutError(VcsError):
    """Raised when an external command exceeds its timeout.

    The process is killed before this is raised. Mid-apply, this follows the
    same rollback path as any other unexpected failure.
    """

    def __init__(
        self,
        message: str,
        command: Sequence[str],
        timeout_seconds: float,
        error_code: str = "COMMAND_TIMEOUT",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        enriched_details = details or {}
        enriched_details["timeout_seconds"] = timeout_seconds

        super().__init__(
            message=message,
            error_code=error_code,
            command=command,
            details=enriched_details,
        )

        self.timeout_seconds = timeout_seconds


class ApplyIOError(SafeApplyError):
    """Raised when a filesystem operation fails during backup or write.

    Attributes:
        path: The path being read or written, if known.
        rolled_back: Whether the target tree was restored from a backup.
    """

    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
        rolled_back: bool = False,
        error_code: str = "APPLY_IO_ERROR",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        enriched_details = details or {}
        if path is not None:
            enriched_details["path"] = path
        enriched_details["rolled_back"] = rolled_back

        super().__init__(message=message, error_code=error_code, details=enriched_details)

        self.path = path
        self.rolled_back = rolled_back


class NoActiveRunError(SafeApplyError):
    """Raised when a run-scoped operation is invoked on a finished run.

    This signals caller misuse, not a runtime condition, so it is never
    converted into a structured result.
    """

    def __init__(
        self,
        message: str = "No active run",
        error_code: str = "NO_ACTIVE_RUN",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message=message, error_code=error_code, details=details)
