"""
safeapply.infrastructure.backup - Subtree Backup & Rollback
=============================================================

The BackupManager snapshots the top-level subtrees an apply will touch and
restores them wholesale on rollback.

Layout:
    backups/backup-<epoch-ms>/
        lib/                 ← copy of <target>/lib
        pubspec.yaml         ← copy of <target>/pubspec.yaml
        meta.json            ← BackupManifest

Rollback semantics:
    For every subtree in the manifest the CURRENT subtree is removed and the
    captured copy is put back. Subtrees recorded as ABSENT are simply removed.
    Because whole subtrees are replaced, the restore is correct even when an
    apply died half-way through writing several files; there is no per-file
    transaction log to replay.
"""

from __future__ import annotations

import json
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterable, Optional

import structlog

from safeapply.core.enums import SubtreeKind
from safeapply.core.exceptions import NotFoundError
from safeapply.core.models import Backup, BackupManifest, BackupSubtree


logger = structlog.get_logger()

MANIFEST_FILE = "meta.json"
_CAPTURED_MANIFEST_NAME = "meta.json.captured"


def _stored_name(subtree: str) -> str:
    # A target-root file literally named meta.json must not clobber the manifest.
    return _CAPTURED_MANIFEST_NAME if subtree == MANIFEST_FILE else subtree


def _remove_path(path: Path) -> None:
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif path.is_dir():
        shutil.rmtree(path)


class BackupManager:
    """Creates, lists, and restores subtree backups.

    Attributes:
        _root: The ``backups/`` directory of the state root.
        _clock: Source of the current UTC time.
    """

    def __init__(
        self,
        root: Path,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._root = Path(root)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._logger = logger.bind(component="backup_manager")

    @property
    def root(self) -> Path:
        return self._root

    def _new_backup_dir(self) -> tuple[str, int, Path]:
        timestamp = int(self._clock().timestamp() * 1000)
        backup_id = f"backup-{timestamp}"
        path = self._root / backup_id
        suffix = 1
        while path.exists():
            backup_id = f"backup-{timestamp}-{suffix}"
            path = self._root / backup_id
            suffix += 1
        return backup_id, timestamp, path

    async def create(
        self,
        target: Path,
        subtrees: Iterable[str],
        feature: Optional[str] = None,
    ) -> Backup:
        """Snapshot ``subtrees`` of ``target`` into a new backup folder.

        Args:
            target: Root of the working tree being modified.
            subtrees: Top-level names (files or directories) to capture.
            feature: Feature the backup is taken for, recorded in the manifest.

        Returns:
            The Backup with its manifest.

        Raises:
            OSError: If copying fails. A partially written backup folder is
                removed before the error propagates.
        """
        target = Path(target)
        backup_id, timestamp, backup_dir = self._new_backup_dir()
        backup_dir.mkdir(parents=True)

        captured: list[BackupSubtree] = []
        try:
            for subtree in sorted(set(subtrees)):
                source = target / subtree
                destination = backup_dir / _stored_name(subtree)
                if source.is_dir() and not source.is_symlink():
                    shutil.copytree(source, destination, symlinks=True)
                    kind = SubtreeKind.DIRECTORY
                elif source.exists() or source.is_symlink():
                    shutil.copy2(source, destination, follow_symlinks=False)
                    kind = SubtreeKind.FILE
                else:
                    kind = SubtreeKind.ABSENT
                captured.append(BackupSubtree(path=subtree, kind=kind))

            manifest = BackupManifest(
                backup_id=backup_id,
                timestamp=timestamp,
                created_at=self._clock().isoformat(),
                target=str(target),
                feature=feature,
                subtrees=captured,
            )
            (backup_dir / MANIFEST_FILE).write_text(
                json.dumps(manifest.model_dump(mode="json"), indent=2),
                encoding="utf-8",
            )
        except OSError:
            shutil.rmtree(backup_dir, ignore_errors=True)
            raise

        self._logger.info(
            "backup_created",
            backup_id=backup_id,
            target=str(target),
            subtrees=[s.path for s in captured],
        )
        return Backup(path=str(backup_dir), manifest=manifest)

    async def restore(self, backup: Backup, target: Optional[Path] = None) -> list[str]:
        """Replace every captured subtree of the target with the backup copy.

        Args:
            backup: The backup to restore.
            target: Tree to restore into; defaults to the manifest target.

        Returns:
            The subtree paths that were restored or removed.

        Raises:
            OSError: If a subtree cannot be removed or copied back.
        """
        target = Path(target or backup.manifest.target)
        backup_dir = Path(backup.path)
        restored: list[str] = []

        for subtree in backup.manifest.subtrees:
            current = target / subtree.path
            _remove_path(current)

            stored = backup_dir / _stored_name(subtree.path)
            if subtree.kind == SubtreeKind.DIRECTORY:
                shutil.copytree(stored, current, symlinks=True)
            elif subtree.kind == SubtreeKind.FILE:
                current.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(stored, current, follow_symlinks=False)
            restored.append(subtree.path)

        self._logger.info(
            "backup_restored",
            backup_id=backup.manifest.backup_id,
            target=str(target),
            subtrees=restored,
        )
        return restored

    async def load(self, backup_id: str) -> Backup:
        """Load a backup by its folder name.

        Raises:
            NotFoundError: If the folder or its manifest is missing.
        """
        backup_dir = self._root / backup_id
        manifest_path = backup_dir / MANIFEST_FILE
        if not manifest_path.is_file():
            raise NotFoundError(
                message=f"Backup not found: {backup_id}",
                resource="backup",
                identifier=backup_id,
            )
        manifest = BackupManifest.model_validate_json(
            manifest_path.read_text(encoding="utf-8")
        )
        return Backup(path=str(backup_dir), manifest=manifest)

    async def list_backups(self) -> list[Backup]:
        """All readable backups, newest first."""
        if not self._root.is_dir():
            return []

        backups: list[Backup] = []
        for entry in self._root.iterdir():
            if not entry.is_dir():
                continue
            try:
                backups.append(await self.load(entry.name))
            except (NotFoundError, ValueError) as exc:
                self._logger.warning(
                    "backup_unreadable",
                    backup=entry.name,
                    error=str(exc),
                )
        backups.sort(key=lambda b: b.manifest.timestamp, reverse=True)
        return backups

    async def delete(self, backup: Backup) -> None:
        shutil.rmtree(backup.path)
        self._logger.info("backup_deleted", backup_id=backup.manifest.backup_id)

    async def prune(self, max_count: int, max_age_ms: float) -> int:
        """Delete backups past the newest ``max_count`` or older than ``max_age_ms``.

        Returns:
            The number of backups deleted.
        """
        now = int(self._clock().timestamp() * 1000)
        deleted = 0
        for index, backup in enumerate(await self.list_backups()):
            if index >= max_count or now - backup.manifest.timestamp > max_age_ms:
                await self.delete(backup)
                deleted += 1
        return deleted
