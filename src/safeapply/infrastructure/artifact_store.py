"""
safeapply.infrastructure.artifact_store - Run Lifecycle & Artifact Persistence
================================================================================

This module provides the on-disk artifact store for SafeApply. Every pipeline
execution is recorded as a Run; the generated files and preview diffs of each
feature are staged under the state root until the ApplyEngine commits them
into the target tree.

Architecture Context:
    The ArtifactStore sits in the Infrastructure Layer. Producers write into
    it through a RunSession; the ApplyEngine reads feature artifacts back out.

    ┌───────────────┐  save_feature_artifacts  ┌──────────────────┐
    │   Producer     │ ───────────────────────→ │    RunSession    │
    └───────────────┘                          └────────┬─────────┘
                                                        │
                                               ┌────────▼─────────┐
    ┌───────────────┐   load_feature_tree      │  ArtifactStore   │
    │  ApplyEngine   │ ←─────────────────────── │  (.safeapply/)   │
    └───────────────┘                          └──────────────────┘

On-disk Layout:
    .safeapply/
        runs/<run-id>/meta.json               ← Run (camelCase keys)
        runs/<run-id>/{diffs,files,logs,metadata}/
        artifacts/features/<name>/meta.json   ← feature metadata
        artifacts/features/<name>/files/...   ← generated files [.gz]
        artifacts/features/<name>/diffs/*.diff
        artifacts/features/<name>/.applied    ← applied marker
        backups/backup-<ms>/                  ← see backup.py
        archive/<run-id>/                     ← archived runs
        progress.json                         ← per-feature apply progress

Run Sessions:
    There is no hidden "current run". start_run() returns a RunSession and
    every run-scoped write goes through it. Once end_run() has been called
    the session raises NoActiveRunError on any further write.

Usage:
    >>> store = ArtifactStore(project_path, StorageConfig())
    >>> await store.initialize()
    >>> async with await store.start_run({"source": "react"}) as session:
    ...     await session.save_feature_artifacts("login", bundle)
    >>> artifact = await store.load_feature("login")
"""

from __future__ import annotations

import asyncio
import gzip
import json
import os
import platform
import re
import secrets
import shutil
import sys
import traceback
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Mapping, Optional, Union

import structlog

from safeapply.core.config import StorageConfig
from safeapply.core.enums import LogLevel, RunStatus
from safeapply.core.exceptions import NoActiveRunError, NotFoundError, ValidationError
from safeapply.core.models import (
    ApplyResult,
    DiffRecord,
    ErrorRecord,
    FeatureArtifact,
    FeatureBundle,
    FeatureSummary,
    LogRecord,
    RetentionStats,
    Run,
    RunReport,
    StorageStats,
    normalize_relative_path,
)
from safeapply.infrastructure.backup import BackupManager
from safeapply.infrastructure.file_tree import COMPRESSED_SUFFIX, FileTree


# =============================================================================
# Logger
# =============================================================================
logger = structlog.get_logger()


# =============================================================================
# Layout Constants
# =============================================================================
RUNS_DIR = "runs"
ARTIFACTS_DIR = "artifacts"
FEATURES_DIR = "features"
BACKUPS_DIR = "backups"
ARCHIVE_DIR = "archive"
META_FILE = "meta.json"
APPLIED_MARKER = ".applied"
PROGRESS_FILE = "progress.json"
RUN_SUBDIRS = ("diffs", "files", "logs", "metadata")

_FEATURE_NAME = re.compile(r"^[A-Za-z0-9._-]+$")
_MS_PER_DAY = 24 * 60 * 60 * 1000


# =============================================================================
# Helpers
# =============================================================================
def _jsonable(value: Any) -> Any:
    """Coerce arbitrary caller data into JSON-compatible values."""
    return json.loads(json.dumps(value, default=str))


def _write_json(path: Path, data: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")
    tmp.write_text(json.dumps(data, indent=2), encoding="utf-8")
    os.replace(tmp, path)


def _write_content(path: Path, content: bytes, compress: bool) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    if compress:
        path = path.with_name(path.name + COMPRESSED_SUFFIX)
        path.write_bytes(gzip.compress(content, mtime=0))
    else:
        path.write_bytes(content)
    return path


def _directory_size(path: Path) -> int:
    if not path.is_dir():
        return 0
    return sum(p.stat().st_size for p in path.rglob("*") if p.is_file())


def validate_feature_name(name: str) -> str:
    """Check that ``name`` is usable as a single directory name.

    Raises:
        ValueError: If the name is empty, contains separators, or is ``.``/``..``.
    """
    if not _FEATURE_NAME.match(name) or name in (".", ".."):
        raise ValueError(f"Invalid feature name: {name!r}")
    return name


def format_bytes(size: int) -> str:
    """Format a byte count for humans.

    Example:
        >>> format_bytes(0)
        '0 B'
        >>> format_bytes(1536)
        '1.50 KB'
    """
    if size <= 0:
        return "0 B"
    units = ("B", "KB", "MB", "GB")
    value = float(size)
    index = 0
    while value >= 1024 and index < len(units) - 1:
        value /= 1024
        index += 1
    return f"{value:.2f} {units[index]}"


# =============================================================================
# Run Session
# =============================================================================
class RunSession:
    """Handle for one in-progress Run.

    All run-scoped writes go through the session. After ``end_run()`` the
    session is inactive and every write raises NoActiveRunError.

    Used as an async context manager, the session ends itself: SUCCESS on a
    clean exit, FAILED (with the error recorded) when the block raises,
    CANCELLED when the block is cancelled.

    Attributes:
        store: The owning ArtifactStore.
        run: The Run record being built.
    """

    def __init__(self, store: "ArtifactStore", run: Run) -> None:
        self._store = store
        self._run = run
        self._active = True
        self._logger = logger.bind(component="run_session", run_id=run.id)

    @property
    def id(self) -> str:
        return self._run.id

    @property
    def run(self) -> Run:
        return self._run

    @property
    def active(self) -> bool:
        return self._active

    @property
    def run_dir(self) -> Path:
        return self._store.runs_root / self._run.id

    def _require_active(self) -> None:
        if not self._active:
            raise NoActiveRunError(details={"run_id": self._run.id})

    async def _persist(self) -> None:
        await self._store._save_run(self._run)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------
    async def end_run(self, status: RunStatus = RunStatus.SUCCESS) -> Run:
        """Finalize the run with a terminal status and persist it.

        Args:
            status: SUCCESS, FAILED, or CANCELLED.

        Returns:
            The finalized Run.

        Raises:
            NoActiveRunError: If the run has already ended.
            ValueError: If ``status`` is IN_PROGRESS.
        """
        self._require_active()
        status = RunStatus(status)
        if status == RunStatus.IN_PROGRESS:
            raise ValueError("end_run() requires a terminal status")

        now = self._store._now()
        self._run.status = status
        self._run.completed_at = now.isoformat()
        self._run.duration = max(0, int(now.timestamp() * 1000) - self._run.timestamp)
        await self._persist()
        self._active = False

        self._logger.info(
            "run_ended",
            status=status.value,
            duration_ms=self._run.duration,
            features=len(self._run.features),
        )
        return self._run

    async def __aenter__(self) -> "RunSession":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        if not self._active:
            return False
        if exc is None:
            await self.end_run(RunStatus.SUCCESS)
        elif isinstance(exc, asyncio.CancelledError):
            await self.end_run(RunStatus.CANCELLED)
        else:
            await self.log_error(exc)
            await self.end_run(RunStatus.FAILED)
        return False

    # -------------------------------------------------------------------------
    # Artifacts
    # -------------------------------------------------------------------------
    async def save_feature_artifacts(
        self,
        name: str,
        bundle: Union[FeatureBundle, Mapping[str, Any]],
    ) -> FeatureSummary:
        """Stage a feature's generated files and diffs.

        Any previous artifacts stored under the same feature name are
        replaced. The Run's meta.json is rewritten afterwards.
        The SHA-256 of every file is recorded in the feature meta.json; a
        ``content_hash`` supplied by the producer must match it.

        Args:
            name: Feature name, used as a directory name.
            bundle: The FeatureBundle, or its dict form
                (``{"metadata", "files": [{"relativePath", "content"}], "diffs"}``).

        Returns:
            The FeatureSummary appended to the Run.

        Raises:
            NoActiveRunError: If the run has ended.
            ValueError: If the name is invalid or a file targets the state root.
            ValidationError: If a supplied ``content_hash`` does not match the
                content (CONTENT_HASH_MISMATCH). Nothing is written.
        """
        self._require_active()
        validate_feature_name(name)
        if not isinstance(bundle, FeatureBundle):
            bundle = FeatureBundle.model_validate(bundle)
        self._store.check_target_path_allowed(f.relative_path for f in bundle.files)

        hashes: dict[str, str] = {}
        for generated in bundle.files:
            digest = generated.compute_hash()
            if generated.content_hash is not None and generated.content_hash.lower() != digest:
                raise ValidationError(
                    message=f"Content hash mismatch for {generated.relative_path}",
                    error_code="CONTENT_HASH_MISMATCH",
                    details={
                        "feature": name,
                        "path": generated.relative_path,
                        "expected": generated.content_hash,
                        "actual": digest,
                    },
                )
            hashes[generated.relative_path] = digest

        feature_dir = self._store.features_root / name
        if feature_dir.exists():
            shutil.rmtree(feature_dir)
        (feature_dir / "files").mkdir(parents=True)
        (feature_dir / "diffs").mkdir(parents=True)

        compress = self._store.config.compress
        for generated in bundle.files:
            _write_content(
                feature_dir / "files" / generated.relative_path,
                generated.content,
                compress,
            )
        for diff in bundle.diffs:
            diff_path = feature_dir / "diffs" / f"{normalize_relative_path(diff.name)}.diff"
            diff_path.parent.mkdir(parents=True, exist_ok=True)
            diff_path.write_text(diff.content, encoding="utf-8")

        summary = FeatureSummary(
            name=name,
            timestamp=self._store._now_ms(),
            files=len(bundle.files),
            diffs=len(bundle.diffs),
        )
        _write_json(
            feature_dir / META_FILE,
            {
                "name": name,
                "runId": self._run.id,
                "timestamp": summary.timestamp,
                "compressed": compress,
                "metadata": _jsonable(bundle.metadata),
                "hashes": hashes,
            },
        )

        self._run.features.append(summary)
        await self._persist()

        self._logger.info(
            "feature_artifacts_saved",
            feature=name,
            files=summary.files,
            diffs=summary.diffs,
        )
        return summary

    async def save_diff(self, file_name: str, diff_text: str) -> Path:
        """Write ``runs/<id>/diffs/<file_name>.diff``."""
        self._require_active()
        path = self.run_dir / "diffs" / f"{normalize_relative_path(file_name)}.diff"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(diff_text, encoding="utf-8")
        self._logger.debug("diff_saved", file=file_name)
        return path

    async def save_generated_file(
        self,
        relative_path: str,
        content: Union[str, bytes],
    ) -> Path:
        """Write a generated file under ``runs/<id>/files/``."""
        self._require_active()
        if isinstance(content, str):
            content = content.encode("utf-8")
        path = _write_content(
            self.run_dir / "files" / normalize_relative_path(relative_path),
            content,
            self._store.config.compress,
        )
        self._logger.debug("generated_file_saved", path=relative_path)
        return path

    # -------------------------------------------------------------------------
    # Run log
    # -------------------------------------------------------------------------
    async def log(
        self,
        level: Union[LogLevel, str],
        message: str,
        data: Optional[Mapping[str, Any]] = None,
    ) -> LogRecord:
        """Record a log line on the Run and append it to ``logs/<level>.log``.

        Writing the log file is best-effort: an OSError is reported through
        structlog and otherwise ignored. The in-memory record is always kept.
        """
        self._require_active()
        record = LogRecord(
            level=LogLevel(level),
            message=message,
            timestamp=self._store._now().isoformat(),
            data=_jsonable(dict(data or {})),
        )
        self._run.logs.append(record)

        log_path = self.run_dir / "logs" / f"{record.level.value}.log"
        try:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            with log_path.open("a", encoding="utf-8") as handle:
                handle.write(f"[{record.timestamp}] {message}\n")
        except OSError as exc:
            self._logger.warning(
                "run_log_write_failed",
                path=str(log_path),
                error=str(exc),
            )
        return record

    async def log_error(
        self,
        error: Union[BaseException, str],
        context: Optional[Mapping[str, Any]] = None,
    ) -> ErrorRecord:
        """Record an error on the Run and log it at error level."""
        self._require_active()
        if isinstance(error, BaseException):
            message = str(error) or error.__class__.__name__
            stack = "".join(
                traceback.format_exception(type(error), error, error.__traceback__)
            )
        else:
            message, stack = str(error), None

        record = ErrorRecord(
            message=message,
            stack=stack,
            timestamp=self._store._now().isoformat(),
            context=_jsonable(dict(context or {})),
        )
        self._run.errors.append(record)
        await self.log(LogLevel.ERROR, message, {"stack": stack, **record.context})
        return record


# =============================================================================
# Artifact Store
# =============================================================================
class ArtifactStore:
    """Filesystem-backed store for runs, feature artifacts, and backups.

    Attributes:
        project_path: Root of the project the state root lives in.
        config: Storage configuration.
        state_root: ``<project_path>/<config.state_dir>``.
    """

    def __init__(
        self,
        project_path: Union[str, Path],
        config: Optional[StorageConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.project_path = Path(project_path)
        self.config = config or StorageConfig()
        self.state_root = self.project_path / self.config.state_dir
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._backups = BackupManager(self.backups_root, clock=self._clock)
        self._logger = logger.bind(component="artifact_store")

    # -------------------------------------------------------------------------
    # Paths & clock
    # -------------------------------------------------------------------------
    @property
    def runs_root(self) -> Path:
        return self.state_root / RUNS_DIR

    @property
    def features_root(self) -> Path:
        return self.state_root / ARTIFACTS_DIR / FEATURES_DIR

    @property
    def backups_root(self) -> Path:
        return self.state_root / BACKUPS_DIR

    @property
    def archive_root(self) -> Path:
        return self.state_root / ARCHIVE_DIR

    @property
    def backups(self) -> BackupManager:
        return self._backups

    def _now(self) -> datetime:
        return self._clock()

    def _now_ms(self) -> int:
        return int(self._clock().timestamp() * 1000)

    def check_target_path_allowed(self, paths) -> None:
        """Reject generated paths that would write into the state root."""
        for path in paths:
            if normalize_relative_path(path).split("/", 1)[0] == self.config.state_dir:
                raise ValueError(f"Generated file targets the state root: {path}")

    def _run_dir(self, run_id: str) -> Path:
        if not run_id or "/" in run_id or "\\" in run_id or run_id in (".", ".."):
            raise NotFoundError(
                message=f"Run not found: {run_id}",
                resource="run",
                identifier=run_id,
            )
        return self.runs_root / run_id

    def _feature_dir(self, name: str) -> Path:
        try:
            validate_feature_name(name)
        except ValueError:
            raise NotFoundError(
                message=f"Feature not found: {name}",
                resource="feature",
                identifier=name,
            )
        return self.features_root / name

    # -------------------------------------------------------------------------
    # Initialization & runs
    # -------------------------------------------------------------------------
    async def initialize(self) -> RetentionStats:
        """Create the state-root layout, then apply the retention policy."""
        for directory in (
            self.runs_root,
            self.features_root,
            self.backups_root,
            self.archive_root,
        ):
            directory.mkdir(parents=True, exist_ok=True)
        self._logger.info("store_initialized", state_root=str(self.state_root))
        return await self.cleanup()

    async def start_run(self, metadata: Optional[Mapping[str, Any]] = None) -> RunSession:
        """Create a new Run and return the session that owns it."""
        now = self._now()
        timestamp = int(now.timestamp() * 1000)
        run_id = f"run-{timestamp}-{secrets.token_hex(3)}"

        run = Run(
            id=run_id,
            timestamp=timestamp,
            started_at=now.isoformat(),
            metadata={
                **_jsonable(dict(metadata or {})),
                "cwd": os.getcwd(),
                "python": platform.python_version(),
                "platform": sys.platform,
            },
        )

        run_dir = self.runs_root / run_id
        for sub in RUN_SUBDIRS:
            (run_dir / sub).mkdir(parents=True, exist_ok=True)
        await self._save_run(run)

        self._logger.info("run_started", run_id=run_id)
        return RunSession(self, run)

    async def _save_run(self, run: Run) -> None:
        _write_json(self.runs_root / run.id / META_FILE, run.to_meta())

    async def load_run_metadata(self, run_id: str) -> Run:
        """Load ``runs/<run_id>/meta.json``.

        Raises:
            NotFoundError: If the run has no meta.json.
        """
        meta_path = self._run_dir(run_id) / META_FILE
        if not meta_path.is_file():
            raise NotFoundError(
                message=f"Run not found: {run_id}",
                resource="run",
                identifier=run_id,
            )
        return Run.model_validate_json(meta_path.read_text(encoding="utf-8"))

    async def get_all_runs(self) -> list[Run]:
        """All readable runs, newest first.

        A missing ``runs/`` directory means no runs. Run directories whose
        meta.json is missing or unreadable are skipped with a warning.
        """
        if not self.runs_root.is_dir():
            return []

        runs: list[Run] = []
        for entry in self.runs_root.iterdir():
            if not entry.is_dir():
                continue
            try:
                runs.append(await self.load_run_metadata(entry.name))
            except NotFoundError:
                self._logger.warning("run_meta_missing", run_id=entry.name)
            except (OSError, ValueError) as exc:
                self._logger.warning(
                    "run_meta_unreadable",
                    run_id=entry.name,
                    error=str(exc),
                )
        runs.sort(key=lambda r: r.timestamp, reverse=True)
        return runs

    async def get_recent_runs(self, count: int = 10) -> list[Run]:
        return (await self.get_all_runs())[:count]

    async def archive_run(self, run_id: str) -> Path:
        """Move a run to ``archive/<run_id>/``."""
        run_dir = self._run_dir(run_id)
        if not run_dir.is_dir():
            raise NotFoundError(
                message=f"Run not found: {run_id}",
                resource="run",
                identifier=run_id,
            )
        destination = self.archive_root / run_id
        self.archive_root.mkdir(parents=True, exist_ok=True)
        if destination.exists():
            shutil.rmtree(destination)
        shutil.move(str(run_dir), str(destination))
        self._logger.info("run_archived", run_id=run_id)
        return destination

    async def delete_run(self, run_id: str) -> None:
        run_dir = self._run_dir(run_id)
        if not run_dir.is_dir():
            raise NotFoundError(
                message=f"Run not found: {run_id}",
                resource="run",
                identifier=run_id,
            )
        shutil.rmtree(run_dir)
        self._logger.info("run_deleted", run_id=run_id)

    async def cleanup(self) -> RetentionStats:
        """Apply the retention policy.

        Runs are ordered newest first. Everything past ``max_runs`` is
        deleted; among the rest, runs older than ``max_age_days`` are
        archived and the others kept. Backups past ``max_backups`` or older
        than ``max_age_days`` are deleted.
        """
        stats = RetentionStats()
        runs = await self.get_all_runs()
        max_runs = self.config.max_runs

        for run in runs[max_runs:]:
            await self.delete_run(run.id)
            stats.deleted += 1

        now = self._now_ms()
        max_age_ms = self.config.max_age_days * _MS_PER_DAY
        for run in runs[:max_runs]:
            if now - run.timestamp > max_age_ms:
                await self.archive_run(run.id)
                stats.archived += 1
            else:
                stats.kept += 1

        stats.backups_deleted = await self._backups.prune(self.config.max_backups, max_age_ms)

        if stats.deleted or stats.archived or stats.backups_deleted:
            self._logger.info(
                "retention_applied",
                deleted=stats.deleted,
                archived=stats.archived,
                kept=stats.kept,
                backups_deleted=stats.backups_deleted,
            )
        return stats

    async def get_storage_stats(self) -> StorageStats:
        """Byte sizes of each state-root area.

        ``logs`` is the share of ``runs`` taken by run log files, so it is
        not added to ``total_size`` a second time.
        """
        stats = StorageStats(
            runs=_directory_size(self.runs_root),
            artifacts=_directory_size(self.state_root / ARTIFACTS_DIR),
            backups=_directory_size(self.backups_root),
            archived=_directory_size(self.archive_root),
        )
        if self.runs_root.is_dir():
            stats.logs = sum(
                _directory_size(run_dir / "logs")
                for run_dir in self.runs_root.iterdir()
                if run_dir.is_dir()
            )
        stats.total_size = stats.runs + stats.artifacts + stats.backups + stats.archived
        return stats

    async def export_run(self, run_id: str, destination: Union[str, Path]) -> Path:
        """Copy a run directory to ``destination``."""
        run_dir = self._run_dir(run_id)
        if not run_dir.is_dir():
            raise NotFoundError(
                message=f"Run not found: {run_id}",
                resource="run",
                identifier=run_id,
            )
        destination = Path(destination)
        shutil.copytree(run_dir, destination, dirs_exist_ok=True)
        self._logger.info("run_exported", run_id=run_id, destination=str(destination))
        return destination

    async def generate_run_report(self, run_id: str) -> RunReport:
        run = await self.load_run_metadata(run_id)
        return RunReport(
            id=run.id,
            status=run.status,
            started_at=run.started_at,
            completed_at=run.completed_at,
            duration=run.duration,
            features=len(run.features),
            errors=len(run.errors),
            logs=len(run.logs),
            total_files=sum(f.files for f in run.features),
            total_diffs=sum(f.diffs for f in run.features),
        )

    # -------------------------------------------------------------------------
    # Features
    # -------------------------------------------------------------------------
    async def list_features(self) -> list[str]:
        """Names of all staged features, sorted."""
        if not self.features_root.is_dir():
            return []
        return sorted(
            entry.name
            for entry in self.features_root.iterdir()
            if (entry / META_FILE).is_file()
        )

    def _load_feature_meta(self, name: str) -> tuple[Path, dict[str, Any]]:
        feature_dir = self._feature_dir(name)
        meta_path = feature_dir / META_FILE
        if not meta_path.is_file():
            raise NotFoundError(
                message=f"Feature not found: {name}",
                resource="feature",
                identifier=name,
            )
        return feature_dir, json.loads(meta_path.read_text(encoding="utf-8"))

    async def load_feature_tree(self, name: str) -> FileTree:
        """The generated files of a feature as a FileTree.

        Raises:
            NotFoundError: If the feature was never saved.
        """
        feature_dir, meta = self._load_feature_meta(name)
        files_dir = feature_dir / "files"
        if not files_dir.is_dir():
            return FileTree()
        return FileTree.from_directory(files_dir, compressed=bool(meta.get("compressed")))

    async def load_feature(self, name: str) -> FeatureArtifact:
        """Load a staged feature with its files, diffs, and applied marker."""
        feature_dir, meta = self._load_feature_meta(name)
        tree = await self.load_feature_tree(name)

        diffs: list[DiffRecord] = []
        diffs_dir = feature_dir / "diffs"
        if diffs_dir.is_dir():
            for path in sorted(diffs_dir.rglob("*.diff")):
                relative = path.relative_to(diffs_dir).as_posix()
                diffs.append(
                    DiffRecord(
                        name=relative[: -len(".diff")],
                        content=path.read_text(encoding="utf-8"),
                    )
                )

        hashes = meta.get("hashes", {})
        marker = feature_dir / APPLIED_MARKER
        applied_at = marker.read_text(encoding="utf-8").strip() if marker.is_file() else None

        return FeatureArtifact(
            name=name,
            run_id=meta.get("runId", ""),
            files=[
                f.model_copy(update={"content_hash": hashes.get(f.relative_path)})
                for f in tree.to_generated_files()
            ],
            diffs=diffs,
            metadata=meta.get("metadata", {}),
            timestamp=meta.get("timestamp", 0),
            applied_at=applied_at or None,
        )

    async def mark_feature_applied(self, name: str) -> str:
        """Write the ``.applied`` marker and return its ISO timestamp."""
        feature_dir, _ = self._load_feature_meta(name)
        applied_at = self._now().isoformat()
        (feature_dir / APPLIED_MARKER).write_text(applied_at, encoding="utf-8")
        self._logger.debug("feature_marked_applied", feature=name)
        return applied_at

    async def update_progress(self, feature: str, result: ApplyResult) -> dict[str, Any]:
        """Record the outcome of applying ``feature`` in ``progress.json``."""
        progress_path = self.state_root / PROGRESS_FILE
        progress: dict[str, Any] = {"features": {}}
        if progress_path.is_file():
            try:
                progress = json.loads(progress_path.read_text(encoding="utf-8"))
            except ValueError as exc:
                self._logger.warning(
                    "progress_file_unreadable",
                    path=str(progress_path),
                    error=str(exc),
                )
            if not isinstance(progress, dict) or not isinstance(progress.get("features"), dict):
                progress = {"features": {}}

        updated_at = self._now().isoformat()
        progress["features"][feature] = {
            "status": result.status.value,
            "appliedAt": updated_at,
            "appliedFiles": list(result.applied_files),
            "skippedFiles": result.skipped_files,
            "failedFiles": result.failed_files,
        }
        progress["updatedAt"] = updated_at
        _write_json(progress_path, progress)
        return progress

    format_bytes = staticmethod(format_bytes)
