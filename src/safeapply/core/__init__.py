"""
safeapply.core - Foundation Layer
=================================

This package contains the building blocks every other SafeApply package
depends on:

    - config:      Configuration management (SafeApplyConfig and sections)
    - enums:       Type-safe enumerations (RunStatus, ApplyMode, ApplyStatus, ...)
    - models:      Pydantic data models (Run, FeatureArtifact, ApplyResult, ...)
    - exceptions:  Custom exception hierarchy for structured error handling
    - logging:     structlog setup

Dependency Rule:
    core/ depends on NOTHING else in the safeapply package.
"""

from safeapply.core.config import (
    ApplyConfig,
    SafeApplyConfig,
    StorageConfig,
    VcsConfig,
)
from safeapply.core.enums import (
    ApplyMode,
    ApplyStatus,
    ConflictKind,
    ConflictPolicy,
    LogLevel,
    ResolutionStrategy,
    ReviewAction,
    RunStatus,
    SubtreeKind,
)
from safeapply.core.exceptions import (
    ApplyIOError,
    CommandTimeoutError,
    ConfigurationError,
    ConflictError,
    NoActiveRunError,
    NotFoundError,
    SafeApplyError,
    ValidationError,
    VcsError,
)
from safeapply.core.models import (
    ApplyOptions,
    ApplyResult,
    Conflict,
    DiffRecord,
    FeatureArtifact,
    FeatureBundle,
    GeneratedFile,
    Run,
)

__all__ = [
    # Config
    "SafeApplyConfig",
    "StorageConfig",
    "VcsConfig",
    "ApplyConfig",
    # Enums
    "ApplyMode",
    "ApplyStatus",
    "ConflictKind",
    "ConflictPolicy",
    "LogLevel",
    "ResolutionStrategy",
    "ReviewAction",
    "RunStatus",
    "SubtreeKind",
    # Exceptions
    "SafeApplyError",
    "ApplyIOError",
    "CommandTimeoutError",
    "ConfigurationError",
    "ConflictError",
    "NoActiveRunError",
    "NotFoundError",
    "ValidationError",
    "VcsError",
    # Models
    "ApplyOptions",
    "ApplyResult",
    "Conflict",
    "DiffRecord",
    "FeatureArtifact",
    "FeatureBundle",
    "GeneratedFile",
    "Run",
]
