"""
safeapply.orchestration.toolchain - Target-Language Tooling
=============================================================

Wraps the external tools the ApplyEngine runs around an apply: a syntax
checker before writing, and a formatter plus a dependency updater after.
Which tools run is entirely configuration (ApplyConfig); SafeApply does not
parse generated code itself.

    validate(tree)            → writes the tree to a scratch directory and
                                runs ``validation_command <files...>`` there
    format_files(target, ...) → ``format_command <files...>`` in the target
    update_dependencies(...)  → ``dependency_command`` when a manifest changed

A tool that is not installed is skipped with a warning. Validation timeouts
propagate as CommandTimeoutError so the engine can roll back; the post-apply
steps are best-effort and turn every failure into an ActionOutcome.
"""

from __future__ import annotations

import shutil
import tempfile
from pathlib import Path, PurePosixPath
from typing import Optional, Sequence, Union

import structlog

from safeapply.core.config import ApplyConfig
from safeapply.core.exceptions import VcsError
from safeapply.core.models import ActionOutcome, ValidationReport
from safeapply.infrastructure.file_tree import FileTree
from safeapply.integrations.process import CommandRunner


logger = structlog.get_logger()


class Toolchain:
    """Runs the configured validation, format, and dependency commands."""

    def __init__(
        self,
        config: Optional[ApplyConfig] = None,
        runner: Optional[CommandRunner] = None,
    ) -> None:
        self.config = config or ApplyConfig()
        self._runner = runner or CommandRunner()
        self._logger = logger.bind(component="toolchain")

    def _missing(self, argv: Optional[Sequence[str]]) -> bool:
        return not argv or shutil.which(argv[0]) is None

    def _checked_paths(self, paths: Sequence[str]) -> list[str]:
        extensions = self.config.validation_extensions
        if not extensions:
            return list(paths)
        return [p for p in paths if PurePosixPath(p).suffix in extensions]

    async def validate(self, tree: FileTree) -> ValidationReport:
        """Check generated files with ``validation_command``.

        Returns:
            A skipped (valid) report when no command is configured, the tool
            is not installed, or no file matches ``validation_extensions``.

        Raises:
            CommandTimeoutError: If the checker exceeds the tool timeout.
        """
        command = self.config.validation_command
        if not command:
            return ValidationReport(skipped=True)

        paths = self._checked_paths(tree.paths)
        if not paths:
            return ValidationReport(skipped=True)

        if self._missing(command):
            self._logger.warning("validation_tool_missing", command=command[0])
            return ValidationReport(skipped=True, checked_files=paths)

        with tempfile.TemporaryDirectory(prefix="safeapply-validate-") as scratch:
            root = Path(scratch)
            for path in paths:
                destination = root / path
                destination.parent.mkdir(parents=True, exist_ok=True)
                destination.write_bytes(tree.read(path))

            result = await self._runner.run(
                [*command, *paths],
                cwd=root,
                timeout=self.config.tool_timeout_seconds,
                check=False,
            )

        if result.ok:
            return ValidationReport(valid=True, checked_files=paths)

        output = (result.stderr.strip() or result.stdout.strip())
        errors = [line for line in output.splitlines() if line.strip()]
        self._logger.warning(
            "validation_failed",
            files=len(paths),
            returncode=result.returncode,
        )
        return ValidationReport(
            valid=False,
            checked_files=paths,
            errors=errors or [f"{command[0]} exited with status {result.returncode}"],
        )

    async def _run_action(
        self,
        name: str,
        argv: Sequence[str],
        target: Union[str, Path],
    ) -> ActionOutcome:
        try:
            result = await self._runner.run(
                argv,
                cwd=target,
                timeout=self.config.tool_timeout_seconds,
                check=True,
            )
        except VcsError as exc:
            self._logger.warning("post_apply_action_failed", action=name, error=exc.message)
            return ActionOutcome(name=name, success=False, message=exc.message)

        self._logger.info("post_apply_action_completed", action=name)
        return ActionOutcome(name=name, message=result.stdout.strip())

    async def format_files(
        self,
        target: Union[str, Path],
        paths: Sequence[str],
    ) -> ActionOutcome:
        """Run ``format_command`` over the applied files."""
        command = self.config.format_command
        paths = self._checked_paths(paths)
        if not command or not paths:
            return ActionOutcome(name="format", skipped=True, message="Nothing to format")
        if self._missing(command):
            return ActionOutcome(
                name="format", skipped=True, message=f"{command[0]} not installed"
            )
        return await self._run_action("format", [*command, *paths], target)

    async def update_dependencies(
        self,
        target: Union[str, Path],
        paths: Sequence[str],
    ) -> ActionOutcome:
        """Run ``dependency_command`` if any applied file is a manifest."""
        command = self.config.dependency_command
        manifests = set(self.config.dependency_manifests)
        changed = [p for p in paths if PurePosixPath(p).name in manifests]
        if not command or not changed:
            return ActionOutcome(
                name="dependencies", skipped=True, message="No manifest changed"
            )
        if self._missing(command):
            return ActionOutcome(
                name="dependencies", skipped=True, message=f"{command[0]} not installed"
            )
        return await self._run_action("dependencies", command, target)
