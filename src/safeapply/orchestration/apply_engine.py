"""
safeapply.orchestration.apply_engine - Safe Apply State Machine
=================================================================

The ApplyEngine commits a staged feature into a target working tree without
risking irrecoverable damage to it. It is the entry point of the apply half
of the pipeline.

State Machine:
    validating ──→ no_artifacts | not_found                  (terminal)
        │
        ▼
    [backup] ──→ load_files ──→ [validate] ──→ validation_failed
        │                                       (terminal unless mode=force)
        ▼
    conflict_check ──→ [conflict_resolution] ──→ conflicts | cancelled
        │                                                    (terminal)
        ▼
    apply_files ──→ failed | rolled_back                     (terminal)
        │
        ▼
    update_progress ──→ [post_apply_actions] ──→ success | partial

    The FileTree of the feature is loaded ONCE while validating and handed
    to every later stage: backup planning, validation, conflict checking,
    diffing, and writing all see exactly the same file set.

Modes:
    safe   Conflicts must be resolved (policy or resolver), else nothing is
           written and the result is ``conflicts``.
    force  Conflicting files are overwritten; validation failures are logged
           and ignored.
    merge  Each conflicting file is three-way merged by the VcsAdapter with
           the HEAD version as base. Files the merge cannot resolve are left
           untouched and reported as conflicts.

Failure Handling:
    Per-file write errors are counted. If any write failed the backup is
    restored (``rolled_back``); without a backup the result is ``failed`` and
    the target tree is in an undefined state. Any other exception raised
    after the backup was taken (e.g. a CommandTimeoutError from validation)
    restores the backup and is re-raised. Post-apply actions never roll back.
    An apply that wrote nothing (conflicts, validation_failed, cancelled, or
    every file skipped) deletes its backup again.

Usage:
    >>> engine = ApplyEngine(store)
    >>> result = await engine.execute("login", target, ApplyOptions(mode="safe"))
    >>> result.status
    <ApplyStatus.SUCCESS: 'success'>
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Mapping, Optional, Union

import structlog

from safeapply.core.config import ApplyConfig, VcsConfig
from safeapply.core.enums import ApplyMode, ApplyStatus, ConflictPolicy, ReviewAction
from safeapply.core.exceptions import NotFoundError, VcsError
from safeapply.core.models import (
    ActionOutcome,
    ApplyOptions,
    ApplyResult,
    Backup,
    Conflict,
    ValidationReport,
)
from safeapply.infrastructure.artifact_store import ArtifactStore
from safeapply.infrastructure.diffing import unified_diff
from safeapply.infrastructure.file_tree import FileTree
from safeapply.integrations.vcs.base import VcsAdapter
from safeapply.integrations.vcs.factory import create_vcs_adapter
from safeapply.orchestration.conflicts import ConflictResolver, detect_conflicts
from safeapply.orchestration.toolchain import Toolchain


logger = structlog.get_logger()

VcsFactory = Callable[[Path], VcsAdapter]


class _Cancelled(Exception):
    """Internal signal: a review answered ABORT."""


class ApplyEngine:
    """Applies staged features to target trees.

    Attributes:
        store: Source of feature artifacts and owner of the backups folder.
        config: Defaults for ApplyOptions and the commit message template.
    """

    def __init__(
        self,
        store: ArtifactStore,
        vcs_factory: Optional[VcsFactory] = None,
        resolver: Optional[ConflictResolver] = None,
        toolchain: Optional[Toolchain] = None,
        config: Optional[ApplyConfig] = None,
        vcs_config: Optional[VcsConfig] = None,
    ) -> None:
        self.store = store
        self.config = config or ApplyConfig()
        self._vcs_config = vcs_config or VcsConfig()
        self._vcs_factory = vcs_factory or (
            lambda path: create_vcs_adapter(path, self._vcs_config)
        )
        self._resolver = resolver
        self._toolchain = toolchain or Toolchain(self.config)
        self._logger = logger.bind(component="apply_engine")

    def default_options(self) -> ApplyOptions:
        return ApplyOptions(
            mode=self.config.mode,
            backup=self.config.backup,
            validate_files=self.config.validate_files,
            git_integration=self.config.git_integration,
        )

    def _resolve_options(
        self,
        options: Union[ApplyOptions, Mapping[str, Any], None],
    ) -> ApplyOptions:
        if options is None:
            return self.default_options()
        if isinstance(options, ApplyOptions):
            return options
        overrides = dict(options)
        if "validate" in overrides:
            overrides["validate_files"] = overrides.pop("validate")
        merged = self.default_options().model_dump()
        merged.update(overrides)
        return ApplyOptions.model_validate(merged)

    def _state_root_exclude(self, target: Path) -> list[str]:
        try:
            relative = self.store.state_root.resolve().relative_to(target.resolve())
        except ValueError:
            return []
        return [relative.as_posix()]

    @staticmethod
    def _check_backup_subtrees(subtrees: list[str], exclude: list[str]) -> None:
        # A subtree holding the state root would copy the backups folder into itself.
        for state_root in exclude:
            for subtree in subtrees:
                if state_root == subtree or state_root.startswith(f"{subtree}/"):
                    raise ValueError(
                        f'Cannot back up "{subtree}": it contains the state root '
                        f'"{state_root}". Apply into a target that does not contain '
                        "the project, or disable backups"
                    )

    # -------------------------------------------------------------------------
    # Entry point
    # -------------------------------------------------------------------------
    async def execute(
        self,
        feature: str,
        target_path: Union[str, Path],
        options: Union[ApplyOptions, Mapping[str, Any], None] = None,
    ) -> ApplyResult:
        """Apply ``feature`` to ``target_path``.

        Args:
            feature: Name of a staged feature.
            target_path: Root of the working tree to write into. Created if
                it does not exist.
            options: ApplyOptions, a dict of overrides, or None for the
                configured defaults.

        Returns:
            The ApplyResult of the terminal state reached.

        Raises:
            VcsError: If ``mode=safe`` with git integration and the target
                repository has uncommitted changes. Nothing is written.
            ValueError: If a backup would have to capture a subtree that
                contains the state root. Nothing is written.
            Exception: Any unexpected error; the backup, if one was taken,
                is restored first.
        """
        opts = self._resolve_options(options)
        target = Path(target_path)
        log = self._logger.bind(feature=feature, target=str(target), mode=opts.mode.value)
        log.info("apply_started", dry_run=opts.dry_run)

        # -- validating --------------------------------------------------------
        target.mkdir(parents=True, exist_ok=True)
        exclude = self._state_root_exclude(target)
        vcs = self._vcs_factory(target)
        is_repo = opts.git_integration and await vcs.is_repo()
        if is_repo and opts.mode == ApplyMode.SAFE:
            await vcs.validate_working_tree(exclude=exclude)

        if not self.store.features_root.is_dir():
            return ApplyResult(
                status=ApplyStatus.NO_ARTIFACTS,
                feature=feature,
                message="No staged artifacts found",
                suggestion="Run a producer to stage features before applying",
                dry_run=opts.dry_run,
            )
        try:
            tree = await self.store.load_feature_tree(feature)
        except NotFoundError:
            log.info("apply_feature_not_found")
            return ApplyResult(
                status=ApplyStatus.NOT_FOUND,
                feature=feature,
                message=f'Feature "{feature}" not found',
                suggestion="List staged features with list_features()",
                dry_run=opts.dry_run,
            )
        if not tree:
            return ApplyResult(
                status=ApplyStatus.NO_ARTIFACTS,
                feature=feature,
                message="Feature has no generated files",
                suggestion="Re-run the producer for this feature",
                dry_run=opts.dry_run,
            )

        # -- backup ------------------------------------------------------------
        backup: Optional[Backup] = None
        if opts.backup and not opts.dry_run:
            subtrees = tree.top_level_subtrees()
            self._check_backup_subtrees(subtrees, exclude)
            backup = await self.store.backups.create(target, subtrees, feature=feature)

        try:
            result = await self._run_stages(feature, target, tree, opts, vcs, is_repo, backup)
        except Exception as exc:
            if backup is not None:
                log.error("apply_failed_rolling_back", error=str(exc))
                await self._rollback(backup, target, log)
            raise

        if backup is not None and not result.applied_files and not result.failed_files:
            await self.store.backups.delete(backup)
            result.backup_path = None

        log.info(
            "apply_finished",
            status=result.status.value,
            applied=len(result.applied_files),
            skipped=result.skipped_files,
            failed=result.failed_files,
        )
        return result

    async def _rollback(self, backup: Backup, target: Path, log) -> bool:
        try:
            await self.store.backups.restore(backup, target)
        except OSError as exc:
            log.error("apply_rollback_failed", backup=backup.path, error=str(exc))
            return False
        log.warning("apply_rolled_back", backup=backup.path)
        return True

    # -------------------------------------------------------------------------
    # Stages after the backup
    # -------------------------------------------------------------------------
    async def _run_stages(
        self,
        feature: str,
        target: Path,
        tree: FileTree,
        opts: ApplyOptions,
        vcs: VcsAdapter,
        is_repo: bool,
        backup: Optional[Backup],
    ) -> ApplyResult:
        backup_path = backup.path if backup else None
        base = {"feature": feature, "backup_path": backup_path, "dry_run": opts.dry_run}

        # -- validate ----------------------------------------------------------
        validation: Optional[ValidationReport] = None
        if opts.validate_files:
            validation = await self._toolchain.validate(tree)
            if not validation.valid:
                if opts.mode != ApplyMode.FORCE:
                    return ApplyResult(
                        status=ApplyStatus.VALIDATION_FAILED,
                        message="Generated files failed validation",
                        suggestion="Fix the generated code, or re-run with mode=force",
                        validation=validation,
                        **base,
                    )
                self._logger.warning(
                    "validation_ignored_in_force_mode",
                    feature=feature,
                    errors=len(validation.errors),
                )

        # -- conflict check & resolution ----------------------------------------
        conflicts = detect_conflicts(tree, target)
        write_paths = list(tree.paths)
        merge_paths: list[str] = []

        if conflicts:
            self._logger.info(
                "conflicts_detected",
                feature=feature,
                paths=[c.path for c in conflicts],
            )
            conflicting = {c.path for c in conflicts}

            if opts.mode == ApplyMode.MERGE:
                merge_paths = [p for p in write_paths if p in conflicting]
                write_paths = [p for p in write_paths if p not in conflicting]
            elif opts.mode == ApplyMode.SAFE:
                policy = await self._choose_policy(conflicts, opts)
                if policy is None:
                    return ApplyResult(
                        status=ApplyStatus.CONFLICTS,
                        conflicts=conflicts,
                        message=f"{len(conflicts)} conflict(s) detected; nothing was written",
                        suggestion=(
                            "Choose a conflict policy (overwrite, skip, review), "
                            "or re-run with mode=force or mode=merge"
                        ),
                        validation=validation,
                        **base,
                    )
                if policy == ConflictPolicy.CANCEL:
                    return self._cancelled(conflicts, validation, base)
                if policy == ConflictPolicy.SKIP:
                    write_paths = [p for p in write_paths if p not in conflicting]
                elif policy == ConflictPolicy.REVIEW:
                    try:
                        skipped = await self._review(conflicts, tree, target)
                    except _Cancelled:
                        return self._cancelled(conflicts, validation, base)
                    write_paths = [p for p in write_paths if p not in skipped]

        # -- apply files -------------------------------------------------------
        applied, failed = self._write(tree, target, write_paths, opts.dry_run)
        unresolved: list[Conflict] = []
        if merge_paths:
            merged, unresolved = await self._merge(
                tree, target, merge_paths, conflicts, vcs, is_repo, opts.dry_run
            )
            applied.extend(merged)

        skipped_count = len(tree) - len(applied) - failed
        reported = unresolved if opts.mode == ApplyMode.MERGE else conflicts

        if failed:
            return await self._write_failure(
                feature, target, applied, skipped_count, failed, reported,
                validation, backup, opts,
            )

        status = ApplyStatus.PARTIAL if skipped_count else ApplyStatus.SUCCESS
        result = ApplyResult(
            status=status,
            applied_files=applied,
            skipped_files=skipped_count,
            conflicts=reported,
            message=self._summary(feature, applied, skipped_count, opts.dry_run),
            suggestion=(
                "Review the skipped files and apply them manually or with mode=force"
                if skipped_count else None
            ),
            validation=validation,
            **base,
        )
        if opts.dry_run:
            return result

        # -- update progress ---------------------------------------------------
        await self.store.mark_feature_applied(feature)
        await self.store.update_progress(feature, result)

        # -- post-apply actions ------------------------------------------------
        result.post_actions = await self._post_apply_actions(
            feature, target, applied, opts, vcs, is_repo
        )
        return result

    async def _choose_policy(
        self,
        conflicts: list[Conflict],
        opts: ApplyOptions,
    ) -> Optional[ConflictPolicy]:
        if opts.conflict_policy is not None:
            return opts.conflict_policy
        if opts.interactive and self._resolver is not None:
            return await self._resolver.choose_policy(conflicts)
        return None

    async def _review(
        self,
        conflicts: list[Conflict],
        tree: FileTree,
        target: Path,
    ) -> set[str]:
        """Ask the resolver about each conflict; return the paths to skip."""
        if self._resolver is None:
            raise ValueError("The review policy requires a ConflictResolver")

        skipped: set[str] = set()
        for conflict in conflicts:
            while True:
                action = await self._resolver.review(conflict)
                if action == ReviewAction.DIFF:
                    current = target / conflict.path
                    diff_text = unified_diff(
                        conflict.path,
                        current.read_bytes() if current.is_file() else None,
                        tree.read(conflict.path),
                    )
                    await self._resolver.show_diff(conflict, diff_text)
                    continue
                break

            if action == ReviewAction.ABORT:
                raise _Cancelled()
            if action == ReviewAction.SKIP:
                skipped.add(conflict.path)
        return skipped

    def _cancelled(self, conflicts, validation, base) -> ApplyResult:
        self._logger.info("apply_cancelled", feature=base["feature"])
        return ApplyResult(
            status=ApplyStatus.CANCELLED,
            conflicts=conflicts,
            message="Apply cancelled; nothing was written",
            validation=validation,
            **base,
        )

    def _write(
        self,
        tree: FileTree,
        target: Path,
        paths: list[str],
        dry_run: bool,
    ) -> tuple[list[str], int]:
        applied: list[str] = []
        failed = 0
        for path in paths:
            if dry_run:
                applied.append(path)
                continue
            destination = target / path
            try:
                destination.parent.mkdir(parents=True, exist_ok=True)
                destination.write_bytes(tree.read(path))
            except OSError as exc:
                failed += 1
                self._logger.error("file_write_failed", path=path, error=str(exc))
                continue
            applied.append(path)
        return applied, failed

    async def _merge(
        self,
        tree: FileTree,
        target: Path,
        paths: list[str],
        conflicts: list[Conflict],
        vcs: VcsAdapter,
        is_repo: bool,
        dry_run: bool,
    ) -> tuple[list[str], list[Conflict]]:
        by_path = {c.path: c for c in conflicts}
        if dry_run or not is_repo:
            if not is_repo:
                self._logger.warning("merge_requires_repository", target=str(target))
            return [], [by_path[p] for p in paths]

        merged: list[str] = []
        unresolved: list[Conflict] = []
        for path in paths:
            outcome = await vcs.merge_file(path, tree.read(path))
            if outcome.success:
                merged.append(path)
            else:
                unresolved.append(by_path[path])
        return merged, unresolved

    async def _write_failure(
        self,
        feature: str,
        target: Path,
        applied: list[str],
        skipped: int,
        failed: int,
        conflicts: list[Conflict],
        validation: Optional[ValidationReport],
        backup: Optional[Backup],
        opts: ApplyOptions,
    ) -> ApplyResult:
        common = {
            "feature": feature,
            "applied_files": applied,
            "skipped_files": skipped,
            "failed_files": failed,
            "conflicts": conflicts,
            "validation": validation,
            "dry_run": opts.dry_run,
            "backup_path": backup.path if backup else None,
        }
        if backup is not None:
            log = self._logger.bind(feature=feature, target=str(target))
            restored = await self._rollback(backup, target, log)
            return ApplyResult(
                status=ApplyStatus.ROLLED_BACK if restored else ApplyStatus.FAILED,
                rolled_back=restored,
                message=(
                    f"{failed} file(s) could not be written; the target was restored "
                    "from the backup"
                    if restored
                    else f"{failed} file(s) could not be written and the rollback "
                    "failed; the target tree state is undefined"
                ),
                suggestion=f"Restore manually from {backup.path}" if not restored else None,
                **common,
            )
        return ApplyResult(
            status=ApplyStatus.FAILED,
            message=(
                f"{failed} file(s) could not be written and no backup was taken; "
                "the target tree state is undefined"
            ),
            suggestion="Inspect the target tree, or re-run with backup enabled",
            **common,
        )

    def _summary(self, feature: str, applied: list[str], skipped: int, dry_run: bool) -> str:
        verb = "Would apply" if dry_run else "Applied"
        message = f'{verb} {len(applied)} file(s) for feature "{feature}"'
        if skipped:
            message += f", skipped {skipped}"
        return message

    # -------------------------------------------------------------------------
    # Post-apply actions
    # -------------------------------------------------------------------------
    async def _post_apply_actions(
        self,
        feature: str,
        target: Path,
        applied: list[str],
        opts: ApplyOptions,
        vcs: VcsAdapter,
        is_repo: bool,
    ) -> list[ActionOutcome]:
        outcomes = [
            await self._toolchain.format_files(target, applied),
            await self._toolchain.update_dependencies(target, applied),
        ]
        if opts.git_integration:
            outcomes.append(await self._commit(feature, target, applied, opts, vcs, is_repo))
        return outcomes

    async def _commit(
        self,
        feature: str,
        target: Path,
        applied: list[str],
        opts: ApplyOptions,
        vcs: VcsAdapter,
        is_repo: bool,
    ) -> ActionOutcome:
        if not is_repo:
            return ActionOutcome(name="commit", skipped=True, message="Not a repository")
        if not applied:
            return ActionOutcome(name="commit", skipped=True, message="No files applied")

        message = opts.commit_message or self.config.commit_message.format(
            feature=feature, count=len(applied)
        )
        try:
            if await vcs.is_working_tree_clean(exclude=self._state_root_exclude(target)):
                return ActionOutcome(name="commit", skipped=True, message="No changes to commit")
            await vcs.stage_files(applied)
            commit_hash = await vcs.create_commit(message)
        except VcsError as exc:
            self._logger.warning("post_apply_commit_failed", feature=feature, error=exc.message)
            return ActionOutcome(name="commit", success=False, message=exc.message)
        return ActionOutcome(name="commit", message=commit_hash)
