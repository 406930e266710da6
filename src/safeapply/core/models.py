"""
safeapply.core.models - Core Data Models
==========================================

This module defines the Pydantic data models that flow through every layer
of SafeApply. These models are the "lingua franca" between the artifact
store, the apply engine, and the version-control adapter.

Model Groups:
    Run history       → Run, FeatureSummary, ErrorRecord, LogRecord, RunReport
    Feature artifacts → GeneratedFile, DiffRecord, FeatureBundle, FeatureArtifact
    Apply pipeline    → ApplyOptions, Conflict, Backup, BackupManifest,
                        ValidationReport, ActionOutcome, ApplyResult
    Version control   → PatchApplyResult, MergeFileResult, CommitInfo, RepoInfo
    Housekeeping      → RetentionStats, StorageStats

Data Flow Through Architecture:
    ┌──────────────┐   FeatureBundle    ┌──────────────┐
    │   Producer    │ ────────────────→ │ ArtifactStore │ ── meta.json (Run)
    └──────────────┘                    └──────────────┘
                                               │ FeatureArtifact
                                               ↓
    ┌──────────────┐   PatchApplyResult ┌──────────────┐
    │  VcsAdapter   │ ←───────────────→ │  ApplyEngine  │ ──→ ApplyResult
    └──────────────┘                    └──────────────┘

Serialization:
    Models persisted to ``meta.json`` use camelCase aliases (``startedAt``,
    ``completedAt``) so the on-disk schema matches the documented layout.
    Python code always uses snake_case attribute names.
"""

from __future__ import annotations

import hashlib
from datetime import datetime, timezone
from pathlib import PurePosixPath
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic.alias_generators import to_camel

from safeapply.core.enums import (
    ApplyMode,
    ApplyStatus,
    ConflictKind,
    ConflictPolicy,
    LogLevel,
    RunStatus,
    SubtreeKind,
)
from safeapply.core.exceptions import (
    ApplyIOError,
    ConflictError,
    NotFoundError,
    ValidationError,
)


# =============================================================================
# Helpers
# =============================================================================
def now_iso() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


def now_ms() -> int:
    """Current UTC time in epoch milliseconds."""
    return int(datetime.now(timezone.utc).timestamp() * 1000)


def normalize_relative_path(value: str) -> str:
    """Normalize a generated file path and reject unsafe ones.

    Generated files are written below a target directory, so their paths
    must stay inside it: absolute paths and ``..`` segments are rejected.

    Args:
        value: A relative path, with either slash style.

    Returns:
        The POSIX form of the path with ``.`` segments removed.

    Raises:
        ValueError: If the path is empty, absolute, or escapes its root.
    """
    raw = value.replace("\\", "/").strip()
    if not raw:
        raise ValueError("relative path must not be empty")
    if raw.startswith("/") or (len(raw) > 1 and raw[1] == ":"):
        raise ValueError(f"path must be relative: {value!r}")

    parts = [part for part in PurePosixPath(raw).parts if part not in ("", ".")]
    if not parts:
        raise ValueError(f"path has no components: {value!r}")
    if ".." in parts:
        raise ValueError(f"path must not contain '..': {value!r}")
    return "/".join(parts)


class _CamelModel(BaseModel):
    """Base for models persisted with camelCase keys."""

    model_config = {
        "alias_generator": to_camel,
        "populate_by_name": True,
    }


# =============================================================================
# Run History Models
# =============================================================================
# A Run is the persisted identity of one stage/apply pipeline execution.
# Its meta.json is rewritten after every mutation so that state survives a
# crash between features.
# =============================================================================
class FeatureSummary(_CamelModel):
    """Per-feature entry in a Run's ``features`` list."""

    name: str
    timestamp: int = Field(default_factory=now_ms)
    files: int = 0
    diffs: int = 0


class ErrorRecord(_CamelModel):
    """An error captured by ``RunSession.log_error()``."""

    message: str
    stack: Optional[str] = None
    timestamp: str = Field(default_factory=now_iso)
    context: dict[str, Any] = Field(default_factory=dict)


class LogRecord(_CamelModel):
    """A log line collected in a Run's ``logs`` list."""

    level: LogLevel
    message: str
    timestamp: str = Field(default_factory=now_iso)
    data: dict[str, Any] = Field(default_factory=dict)


class Run(_CamelModel):
    """One execution of the stage/apply pipeline.

    Attributes:
        id: Unique, time-derived identifier (``run-<epoch-ms>-<hex>``).
        timestamp: Start time in epoch milliseconds; used for ordering and
            retention.
        started_at: Start time as ISO-8601.
        metadata: Free-form caller metadata plus environment details.
        status: Lifecycle status.
        features: Summaries of every saved feature, in save order.
        errors: Errors recorded during the run.
        logs: Log records collected during the run.
        completed_at: ISO-8601 end time, set by end_run().
        duration: Run duration in milliseconds, set by end_run().
    """

    id: str
    timestamp: int
    started_at: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    status: RunStatus = RunStatus.IN_PROGRESS
    features: list[FeatureSummary] = Field(default_factory=list)
    errors: list[ErrorRecord] = Field(default_factory=list)
    logs: list[LogRecord] = Field(default_factory=list)
    completed_at: Optional[str] = None
    duration: Optional[int] = None

    def to_meta(self) -> dict[str, Any]:
        """Serialize to the ``meta.json`` document.

        ``completedAt`` and ``duration`` are omitted until the run has ended.
        """
        data = self.model_dump(mode="json", by_alias=True)
        for key in ("completedAt", "duration"):
            if data.get(key) is None:
                data.pop(key, None)
        return data


class RunReport(_CamelModel):
    """Summary of a stored run, produced by ``generate_run_report()``."""

    id: str
    status: RunStatus
    started_at: str
    completed_at: Optional[str] = None
    duration: Optional[int] = None
    features: int = 0
    errors: int = 0
    logs: int = 0
    total_files: int = 0
    total_diffs: int = 0


# =============================================================================
# Feature Artifact Models
# =============================================================================
# Content is opaque bytes. Producers may hand over text; it is encoded as
# UTF-8 once and never mutated afterwards.
# =============================================================================
class GeneratedFile(_CamelModel):
    """A generated file destined for ``<target>/<relative_path>``."""

    relative_path: str
    content: bytes
    content_hash: Optional[str] = None

    @field_validator("relative_path")
    @classmethod
    def _check_relative_path(cls, value: str) -> str:
        return normalize_relative_path(value)

    def compute_hash(self) -> str:
        """SHA-256 hex digest of the content."""
        return hashlib.sha256(self.content).hexdigest()


class DiffRecord(_CamelModel):
    """A precomputed unified diff stored for preview."""

    name: str
    content: str


class FeatureBundle(_CamelModel):
    """What a Producer supplies per feature."""

    metadata: dict[str, Any] = Field(default_factory=dict)
    files: list[GeneratedFile] = Field(default_factory=list)
    diffs: list[DiffRecord] = Field(default_factory=list)


class FeatureArtifact(_CamelModel):
    """A feature bundle as persisted under ``artifacts/features/<name>/``."""

    name: str
    run_id: str
    files: list[GeneratedFile] = Field(default_factory=list)
    diffs: list[DiffRecord] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    timestamp: int = Field(default_factory=now_ms)
    applied_at: Optional[str] = None

    @property
    def is_applied(self) -> bool:
        return self.applied_at is not None


# =============================================================================
# Apply Pipeline Models
# =============================================================================
class ApplyOptions(BaseModel):
    """Options accepted by ``ApplyEngine.execute()``.

    ``validate`` is accepted as an alias of ``validate_files``.
    """

    mode: ApplyMode = ApplyMode.SAFE
    backup: bool = True
    validate_files: bool = Field(default=True, alias="validate")
    git_integration: bool = True
    interactive: bool = False
    conflict_policy: Optional[ConflictPolicy] = None
    dry_run: bool = False
    commit_message: Optional[str] = None

    model_config = {"populate_by_name": True}


class Conflict(BaseModel):
    """A target file whose bytes differ from the generated artifact."""

    path: str
    kind: ConflictKind = ConflictKind.MODIFIED
    target: Optional[str] = None


class BackupSubtree(BaseModel):
    """One top-level path captured by a backup."""

    path: str
    kind: SubtreeKind


class BackupManifest(BaseModel):
    """Contents of ``backups/backup-<timestamp>/meta.json``."""

    backup_id: str
    timestamp: int
    created_at: str
    target: str
    feature: Optional[str] = None
    subtrees: list[BackupSubtree] = Field(default_factory=list)


class Backup(BaseModel):
    """A backup folder together with its manifest."""

    path: str
    manifest: BackupManifest


class ValidationReport(BaseModel):
    """Outcome of checking generated files with the external checker."""

    valid: bool = True
    checked_files: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    skipped: bool = False


class ActionOutcome(BaseModel):
    """Outcome of one best-effort post-apply action."""

    name: str
    success: bool = True
    skipped: bool = False
    message: str = ""


class ApplyResult(BaseModel):
    """Structured result of every terminal apply branch.

    Attributes:
        status: Terminal state of the apply state machine.
        feature: The feature that was applied.
        applied_files: Relative paths that were written (or would be, in a
            dry run).
        skipped_files: Number of conflicting files left untouched.
        failed_files: Number of files whose write raised an OSError.
        conflicts: Conflicts detected against the current target tree.
        backup_path: Backup folder taken before writing, if any.
        rolled_back: Whether the backup was restored.
        message: Human-readable summary.
        suggestion: Actionable next step for non-success outcomes.
        post_actions: Outcomes of formatting/dependency/commit steps.
        validation: Validation report, when validation ran.
        dry_run: Whether no files were actually modified.
    """

    status: ApplyStatus
    feature: Optional[str] = None
    applied_files: list[str] = Field(default_factory=list)
    skipped_files: int = 0
    failed_files: int = 0
    conflicts: list[Conflict] = Field(default_factory=list)
    backup_path: Optional[str] = None
    rolled_back: bool = False
    message: str = ""
    suggestion: Optional[str] = None
    post_actions: list[ActionOutcome] = Field(default_factory=list)
    validation: Optional[ValidationReport] = None
    dry_run: bool = False

    @property
    def ok(self) -> bool:
        return self.status in (ApplyStatus.SUCCESS, ApplyStatus.PARTIAL)

    def raise_for_status(self) -> None:
        """Raise the exception matching a non-successful status.

        Raises:
            NotFoundError: For NOT_FOUND and NO_ARTIFACTS.
            ValidationError: For VALIDATION_FAILED.
            ConflictError: For CONFLICTS.
            ApplyIOError: For FAILED and ROLLED_BACK.
        """
        if self.status in (ApplyStatus.NOT_FOUND, ApplyStatus.NO_ARTIFACTS):
            raise NotFoundError(
                message=self.message,
                resource="feature",
                identifier=self.feature or "",
            )
        if self.status == ApplyStatus.VALIDATION_FAILED:
            errors = self.validation.errors if self.validation else []
            raise ValidationError(message=self.message, details={"errors": errors})
        if self.status == ApplyStatus.CONFLICTS:
            raise ConflictError(
                message=self.message,
                paths=[c.path for c in self.conflicts],
            )
        if self.status in (ApplyStatus.FAILED, ApplyStatus.ROLLED_BACK):
            raise ApplyIOError(
                message=self.message,
                rolled_back=self.rolled_back,
                details={"failed_files": self.failed_files},
            )


# =============================================================================
# Version Control Models
# =============================================================================
class PatchApplyResult(BaseModel):
    """Result of ``VcsAdapter.apply_patch()``.

    ``conflicts`` is always obtained by re-querying the VCS, never inferred
    from the exit status.
    """

    success: bool
    conflicts: list[str] = Field(default_factory=list)
    output: str = ""
    error: Optional[str] = None


class MergeFileResult(BaseModel):
    """Result of a three-way merge of a single file."""

    path: str
    success: bool
    conflicts: list[str] = Field(default_factory=list)
    error: Optional[str] = None


class CommitInfo(BaseModel):
    """One entry of the commit history."""

    hash: str
    author_name: str
    author_email: str
    timestamp: int
    subject: str


class BlameLine(BaseModel):
    """Authorship of one line of a file, from ``git blame``."""

    line: int
    hash: str
    author: str
    author_email: str = ""
    timestamp: int = 0
    content: str = ""


class RepoInfo(BaseModel):
    """Snapshot of the repository state."""

    current_branch: str
    is_clean: bool
    remote_url: Optional[str] = None
    last_commit: Optional[CommitInfo] = None


# =============================================================================
# Housekeeping Models
# =============================================================================
class RetentionStats(BaseModel):
    """Result of ``ArtifactStore.cleanup()``."""

    deleted: int = 0
    archived: int = 0
    kept: int = 0
    backups_deleted: int = 0


class StorageStats(BaseModel):
    """Sizes (bytes) of each area of the state root."""

    runs: int = 0
    artifacts: int = 0
    backups: int = 0
    logs: int = 0
    archived: int = 0
    total_size: int = 0
