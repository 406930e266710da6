"""
safeapply.integrations.vcs.git - Git Adapter
==============================================

VcsAdapter implementation that drives the ``git`` command-line tool through
the CommandRunner. Commands are argv lists, never shell strings, and each
one carries ``VcsConfig.command_timeout_seconds``.

Conflict Sets:
    apply_patch() and merge_file() never trust exit codes alone to decide
    which files conflict. After the operation they ask git again:

        apply_patch  → git diff --name-only --diff-filter=U
        merge_file   → git diff --check -- <path>   (leftover markers)

Usage:
    >>> git = GitAdapter(repo_path, VcsConfig())
    >>> await git.validate_working_tree(exclude=[".safeapply"])
    >>> await git.stage_files(["lib/login.dart"])
    >>> commit = await git.create_commit("Apply login feature")
"""

from __future__ import annotations

import re
import tempfile
from pathlib import Path
from typing import Mapping, Optional, Sequence, Union

import structlog

from safeapply.core.config import VcsConfig
from safeapply.core.enums import ResolutionStrategy
from safeapply.core.exceptions import VcsError
from safeapply.core.models import (
    BlameLine,
    CommitInfo,
    MergeFileResult,
    PatchApplyResult,
    RepoInfo,
    normalize_relative_path,
)
from safeapply.integrations.process import CommandResult, CommandRunner
from safeapply.integrations.vcs.base import VcsAdapter


logger = structlog.get_logger()

HISTORY_FORMAT = "%H|%an|%ae|%at|%s"
CONFLICT_MARKER_MESSAGE = "leftover conflict marker"
DEFAULT_STASH_MESSAGE = "safeapply auto-stash"

_DEFAULT_ENV = {"GIT_TERMINAL_PROMPT": "0"}
_BLAME_HEADER = re.compile(r"^([0-9a-f]{40,64}) \d+ (\d+)")


class GitAdapter(VcsAdapter):
    """Git implementation of the VcsAdapter contract.

    Attributes:
        repo_path: Working directory every git command runs in.
        config: Executable, branch prefix, clean-tree rule, and timeout.
    """

    def __init__(
        self,
        repo_path: Union[str, Path],
        config: Optional[VcsConfig] = None,
        runner: Optional[CommandRunner] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> None:
        super().__init__(repo_path)
        self.config = config or VcsConfig()
        self._runner = runner or CommandRunner()
        self._env = {**_DEFAULT_ENV, **(env or {})}
        self._logger = logger.bind(component="git_adapter", repo=str(self.repo_path))

    async def _git(
        self,
        *args: str,
        check: bool = True,
        input: Optional[Union[str, bytes]] = None,
    ) -> CommandResult:
        return await self._runner.run(
            [self.config.executable, *args],
            cwd=self.repo_path,
            timeout=self.config.command_timeout_seconds,
            input=input,
            env=self._env,
            check=check,
        )

    # -------------------------------------------------------------------------
    # Repository state
    # -------------------------------------------------------------------------
    async def is_available(self) -> bool:
        try:
            result = await self._runner.run(
                [self.config.executable, "--version"],
                cwd=self.repo_path if self.repo_path.is_dir() else Path.cwd(),
                timeout=self.config.command_timeout_seconds,
                check=False,
            )
        except VcsError:
            return False
        return result.ok

    async def is_repo(self) -> bool:
        """Whether ``repo_path`` is inside a work tree.

        Without a runnable git executable nothing is a repository.
        """
        if not self.repo_path.is_dir():
            return False
        try:
            result = await self._git("rev-parse", "--is-inside-work-tree", check=False)
        except VcsError as exc:
            if exc.error_code != "COMMAND_NOT_STARTED":
                raise
            self._logger.warning("git_unavailable", executable=self.config.executable)
            return False
        return result.ok and result.stdout.strip() == "true"

    async def ensure_repo(self) -> bool:
        if await self.is_repo():
            return False
        self.repo_path.mkdir(parents=True, exist_ok=True)
        await self._git("init")
        self._logger.info("repository_initialized")
        return True

    async def _status(self, exclude: Sequence[str] = ()) -> list[str]:
        pathspecs = ["."] + [f":(exclude){path}" for path in exclude]
        result = await self._git("status", "--porcelain", "--", *pathspecs)
        return [line for line in result.stdout.splitlines() if line.strip()]

    async def is_working_tree_clean(self, exclude: Sequence[str] = ()) -> bool:
        return not await self._status(exclude)

    async def validate_working_tree(self, exclude: Sequence[str] = ()) -> None:
        """Ensure the tree is a repository with no uncommitted changes.

        Args:
            exclude: Paths whose changes are ignored (e.g. the state root).

        Raises:
            VcsError: NOT_A_REPOSITORY, or DIRTY_WORKING_TREE when
                ``require_clean_tree`` is set and changes exist.
        """
        if not await self.is_repo():
            raise VcsError(
                message=f"Not a Git repository: {self.repo_path}",
                error_code="NOT_A_REPOSITORY",
            )
        if not self.config.require_clean_tree:
            return

        changes = await self._status(exclude)
        if changes:
            raise VcsError(
                message=(
                    "Working tree has uncommitted changes. "
                    "Please commit or stash changes before proceeding."
                ),
                error_code="DIRTY_WORKING_TREE",
                details={"changes": changes},
            )

    async def get_repo_info(self) -> Optional[RepoInfo]:
        if not await self.is_repo():
            return None
        history = await self.get_commit_history(1)
        return RepoInfo(
            current_branch=await self.get_current_branch(),
            is_clean=await self.is_working_tree_clean(),
            remote_url=await self.get_remote_url(),
            last_commit=history[0] if history else None,
        )

    # -------------------------------------------------------------------------
    # Branches
    # -------------------------------------------------------------------------
    async def get_current_branch(self) -> str:
        """Name of the checked-out branch, or ``HEAD`` when detached."""
        result = await self._git("branch", "--show-current", check=False)
        branch = result.stdout.strip()
        return branch if result.ok and branch else "HEAD"

    async def branch_exists(self, name: str) -> bool:
        result = await self._git("rev-parse", "--verify", "--quiet", name, check=False)
        return result.ok

    async def create_branch(self, name: str, base: Optional[str] = None) -> str:
        """Create ``<branch_prefix><name>`` and check it out.

        Raises:
            VcsError: BRANCH_EXISTS if the prefixed branch already exists.
        """
        branch = f"{self.config.branch_prefix}{name}"
        if await self.branch_exists(branch):
            raise VcsError(
                message=f"Branch {branch} already exists",
                error_code="BRANCH_EXISTS",
                details={"branch": branch},
            )

        args = ["checkout", "-b", branch]
        if base:
            args.append(base)
        await self._git(*args)
        self._logger.info("branch_created", branch=branch, base=base)
        return branch

    async def checkout_branch(self, name: str) -> None:
        await self._git("checkout", name)
        self._logger.info("branch_checked_out", branch=name)

    async def get_remote_url(self, remote: str = "origin") -> Optional[str]:
        result = await self._git("config", "--get", f"remote.{remote}.url", check=False)
        url = result.stdout.strip()
        return url if result.ok and url else None

    # -------------------------------------------------------------------------
    # Commits
    # -------------------------------------------------------------------------
    async def stage_files(self, paths: Sequence[str] = (".",)) -> None:
        if not paths:
            return
        await self._git("add", "--", *paths)
        self._logger.debug("files_staged", paths=list(paths))

    async def create_commit(
        self,
        message: str,
        author: Optional[str] = None,
        co_authors: Sequence[str] = (),
        allow_empty: bool = False,
    ) -> str:
        """Commit the index.

        Args:
            message: Commit message.
            author: ``"Name <email>"`` override for the commit author.
            co_authors: Appended as ``Co-Authored-By:`` trailers.
            allow_empty: Permit a commit with no changes.

        Returns:
            Hash of the new commit.
        """
        full_message = message
        if co_authors:
            trailers = "".join(f"Co-Authored-By: {c}\n" for c in co_authors)
            full_message = f"{message}\n\n{trailers}"

        args = ["commit", "-m", full_message]
        if allow_empty:
            args.append("--allow-empty")
        if author:
            args.append(f"--author={author}")
        await self._git(*args)

        commit_hash = (await self._git("rev-parse", "HEAD")).stdout.strip()
        self._logger.info("commit_created", commit=commit_hash)
        return commit_hash

    async def get_commit_history(self, count: int = 10) -> list[CommitInfo]:
        """The latest ``count`` commits, newest first.

        A repository without commits has an empty history.
        """
        result = await self._git(
            "log", "-n", str(count), f"--format={HISTORY_FORMAT}", check=False
        )
        if not result.ok:
            return []

        commits: list[CommitInfo] = []
        for line in result.stdout.splitlines():
            if not line.strip():
                continue
            commit_hash, name, email, timestamp, subject = line.split("|", 4)
            commits.append(
                CommitInfo(
                    hash=commit_hash,
                    author_name=name,
                    author_email=email,
                    timestamp=int(timestamp) * 1000,
                    subject=subject,
                )
            )
        return commits

    async def get_blame(self, path: str) -> list[BlameLine]:
        """``git blame --line-porcelain`` of ``path``, one entry per line.

        Raises:
            VcsError: If the file is unknown to git.
        """
        result = await self._git("blame", "--line-porcelain", "--", path)

        lines: list[BlameLine] = []
        current: dict = {}
        for raw in result.stdout.splitlines():
            header = _BLAME_HEADER.match(raw)
            if header:
                current = {"hash": header.group(1), "line": int(header.group(2))}
            elif raw.startswith("author "):
                current["author"] = raw[len("author "):]
            elif raw.startswith("author-mail "):
                current["author_email"] = raw[len("author-mail "):].strip("<>")
            elif raw.startswith("author-time "):
                current["timestamp"] = int(raw[len("author-time "):]) * 1000
            elif raw.startswith("\t"):
                lines.append(BlameLine(content=raw[1:], **current))
        return lines

    # -------------------------------------------------------------------------
    # Patches, diffs, and conflicts
    # -------------------------------------------------------------------------
    async def generate_patch(
        self,
        paths: Sequence[str] = (),
        output_path: Optional[Union[str, Path]] = None,
    ) -> str:
        """``git diff HEAD`` for ``paths``, optionally written to a file.

        Only tracked files appear in the patch.
        """
        result = await self._git("diff", "HEAD", "--", *paths)
        if output_path is not None:
            Path(output_path).write_text(result.stdout, encoding="utf-8")
            self._logger.info("patch_generated", output=str(output_path))
        return result.stdout

    async def apply_patch(
        self,
        patch_path: Union[str, Path],
        three_way: bool = False,
        check: bool = False,
        reverse: bool = False,
    ) -> PatchApplyResult:
        """Run ``git apply`` and report the conflicts git recorded.

        Raises:
            VcsError: PATCH_NOT_FOUND if the patch file does not exist.
        """
        patch = Path(patch_path).absolute()
        if not patch.is_file():
            raise VcsError(
                message=f"Patch file not found: {patch}",
                error_code="PATCH_NOT_FOUND",
            )

        args = ["apply"]
        if three_way:
            args.append("--3way")
        if check:
            args.append("--check")
        if reverse:
            args.append("--reverse")
        args.append(str(patch))

        result = await self._git(*args, check=False)
        conflicts = await self.get_conflicted_files() if await self.is_repo() else []

        if result.ok and not conflicts:
            return PatchApplyResult(success=True, output=result.stdout)

        self._logger.warning(
            "patch_apply_failed",
            patch=str(patch),
            returncode=result.returncode,
            conflicts=conflicts,
        )
        return PatchApplyResult(
            success=False,
            conflicts=conflicts,
            output=result.stdout,
            error=result.stderr.strip() or None,
        )

    async def get_conflicted_files(self) -> list[str]:
        result = await self._git("diff", "--name-only", "--diff-filter=U")
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    async def resolve_conflict(self, path: str, strategy: ResolutionStrategy) -> None:
        """Settle a conflicted file.

        ``ours``/``theirs`` check out that side and stage the file. ``manual``
        leaves the conflict markers in place and stages nothing.
        """
        strategy = ResolutionStrategy(strategy)
        if strategy == ResolutionStrategy.MANUAL:
            return

        side = "--ours" if strategy == ResolutionStrategy.OURS else "--theirs"
        await self._git("checkout", side, "--", path)
        await self._git("add", "--", path)
        self._logger.info("conflict_resolved", path=path, strategy=strategy.value)

    async def merge_file(self, path: str, other_content: bytes) -> MergeFileResult:
        """Three-way merge generated content into the working-tree file.

        The merge base is the ``HEAD`` version of the file, "ours" is the
        working-tree file, and "theirs" is ``other_content``. A clean merge is
        left in the working tree. When conflict markers remain, the file is
        restored to its previous content and reported as conflicting.
        """
        path = normalize_relative_path(path)
        current = self.repo_path / path
        if not current.is_file():
            return MergeFileResult(
                path=path,
                success=False,
                conflicts=[path],
                error="No working-tree file to merge into",
            )

        base = await self._git("show", f"HEAD:./{path}", check=False)
        if not base.ok:
            return MergeFileResult(
                path=path,
                success=False,
                conflicts=[path],
                error="File is not tracked in HEAD; no merge base",
            )

        original = current.read_bytes()
        with tempfile.TemporaryDirectory(prefix="safeapply-merge-") as tmp:
            base_file = Path(tmp) / "base"
            other_file = Path(tmp) / "generated"
            base_file.write_bytes(base.stdout_bytes)
            other_file.write_bytes(other_content)
            merged = await self._git(
                "merge-file",
                "-L", "current",
                "-L", "base",
                "-L", "generated",
                str(current.absolute()),
                str(base_file),
                str(other_file),
                check=False,
            )

        # merge-file exits with the conflict count, or a negative status on error
        if merged.returncode > 127:
            current.write_bytes(original)
            return MergeFileResult(
                path=path,
                success=False,
                conflicts=[path],
                error=merged.stderr.strip() or "git merge-file failed",
            )

        check = await self._git("diff", "--check", "--", path, check=False)
        if CONFLICT_MARKER_MESSAGE in check.stdout:
            current.write_bytes(original)
            self._logger.info("merge_conflict", path=path)
            return MergeFileResult(path=path, success=False, conflicts=[path])

        self._logger.info("merge_clean", path=path)
        return MergeFileResult(path=path, success=True)

    async def get_diff(
        self,
        base: Optional[str] = None,
        target: str = "HEAD",
        name_only: bool = False,
        stat: bool = False,
        unified: int = 3,
    ) -> str:
        """``git diff`` of ``base..target``, or of the working tree against
        ``target`` when no base is given."""
        args = ["diff"]
        if name_only:
            args.append("--name-only")
        if stat:
            args.append("--stat")
        args.append(f"--unified={unified}")
        args.append(f"{base}..{target}" if base else target)
        return (await self._git(*args)).stdout

    # -------------------------------------------------------------------------
    # Stash
    # -------------------------------------------------------------------------
    async def create_stash(
        self,
        message: Optional[str] = None,
        exclude: Sequence[str] = (),
    ) -> bool:
        """Stash tracked and untracked changes outside the protected paths.

        ``config.protected_paths`` and ``exclude`` stay in the working tree,
        so the state root (runs, features, backups) is never stashed.
        """
        excluded = [*self.config.protected_paths, *exclude]
        if await self.is_working_tree_clean(exclude=excluded):
            return False
        pathspecs = ["."] + [f":(exclude){path}" for path in excluded]
        await self._git(
            "stash", "push", "--include-untracked",
            "-m", message or DEFAULT_STASH_MESSAGE,
            "--", *pathspecs,
        )
        self._logger.info("stash_created", excluded=excluded)
        return True

    async def pop_stash(self) -> None:
        await self._git("stash", "pop")
        self._logger.info("stash_popped")
