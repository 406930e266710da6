"""
safeapply.integrations.vcs.base - Abstract Version-Control Interface
======================================================================

This module defines the contract every version-control backend implements.
The ApplyEngine never shells out to git itself; it talks to a VcsAdapter.

Architecture Context:
    ┌───────────────┐  validate_working_tree()  ┌──────────────────┐
    │  ApplyEngine   │ ────────────────────────→ │    VcsAdapter     │
    │                │  merge_file()             │    (abstract)     │
    │                │  stage_files()            │                   │
    │                │  create_commit()          └─────────┬─────────┘
    └───────────────┘                                     │
                                                   ┌──────▼──────┐
                                                   │  GitAdapter  │
                                                   └─────────────┘

Every capability is declared here, so callers never probe an adapter for
optional methods. A backend that cannot support an operation raises
VcsError(error_code="UNSUPPORTED") from it.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Sequence, Union

from safeapply.core.enums import ResolutionStrategy
from safeapply.core.models import (
    BlameLine,
    CommitInfo,
    MergeFileResult,
    PatchApplyResult,
    RepoInfo,
)


class VcsAdapter(ABC):
    """Abstract base class for version-control backends.

    Attributes:
        repo_path: Root of the working tree the adapter operates on.
    """

    def __init__(self, repo_path: Union[str, Path]) -> None:
        self.repo_path = Path(repo_path)

    # -------------------------------------------------------------------------
    # Repository state
    # -------------------------------------------------------------------------
    @abstractmethod
    async def is_available(self) -> bool:
        """Whether the backend's tooling can be executed at all."""
        ...

    @abstractmethod
    async def is_repo(self) -> bool:
        """Whether ``repo_path`` is inside a repository."""
        ...

    @abstractmethod
    async def ensure_repo(self) -> bool:
        """Initialize a repository if none exists.

        Returns:
            True if a repository was created, False if one already existed.
        """
        ...

    @abstractmethod
    async def is_working_tree_clean(self, exclude: Sequence[str] = ()) -> bool:
        """Whether there are no uncommitted changes outside ``exclude``."""
        ...

    @abstractmethod
    async def validate_working_tree(self, exclude: Sequence[str] = ()) -> None:
        """Raise VcsError when the working tree is dirty.

        Args:
            exclude: Paths (relative to the repo root) whose changes are
                ignored, e.g. the state root.
        """
        ...

    @abstractmethod
    async def get_repo_info(self) -> Optional[RepoInfo]:
        """Branch, cleanliness, remote, and last commit; None outside a repo."""
        ...

    # -------------------------------------------------------------------------
    # Branches
    # -------------------------------------------------------------------------
    @abstractmethod
    async def get_current_branch(self) -> str:
        ...

    @abstractmethod
    async def branch_exists(self, name: str) -> bool:
        ...

    @abstractmethod
    async def create_branch(self, name: str, base: Optional[str] = None) -> str:
        """Create and check out a branch; returns its full (prefixed) name."""
        ...

    @abstractmethod
    async def checkout_branch(self, name: str) -> None:
        ...

    @abstractmethod
    async def get_remote_url(self, remote: str = "origin") -> Optional[str]:
        ...

    # -------------------------------------------------------------------------
    # Commits
    # -------------------------------------------------------------------------
    @abstractmethod
    async def stage_files(self, paths: Sequence[str]) -> None:
        ...

    @abstractmethod
    async def create_commit(
        self,
        message: str,
        author: Optional[str] = None,
        co_authors: Sequence[str] = (),
        allow_empty: bool = False,
    ) -> str:
        """Commit the staged changes and return the new commit hash."""
        ...

    @abstractmethod
    async def get_commit_history(self, count: int = 10) -> list[CommitInfo]:
        ...

    @abstractmethod
    async def get_blame(self, path: str) -> list[BlameLine]:
        """Per-line authorship of ``path`` at HEAD plus local edits."""
        ...

    # -------------------------------------------------------------------------
    # Patches, diffs, and conflicts
    # -------------------------------------------------------------------------
    @abstractmethod
    async def generate_patch(
        self,
        paths: Sequence[str] = (),
        output_path: Optional[Union[str, Path]] = None,
    ) -> str:
        """Unified diff of the working tree against HEAD."""
        ...

    @abstractmethod
    async def apply_patch(
        self,
        patch_path: Union[str, Path],
        three_way: bool = False,
        check: bool = False,
        reverse: bool = False,
    ) -> PatchApplyResult:
        ...

    @abstractmethod
    async def get_conflicted_files(self) -> list[str]:
        ...

    @abstractmethod
    async def resolve_conflict(self, path: str, strategy: ResolutionStrategy) -> None:
        ...

    @abstractmethod
    async def merge_file(self, path: str, other_content: bytes) -> MergeFileResult:
        """Three-way merge ``other_content`` into the working-tree file."""
        ...

    @abstractmethod
    async def get_diff(
        self,
        base: Optional[str] = None,
        target: str = "HEAD",
        name_only: bool = False,
        stat: bool = False,
        unified: int = 3,
    ) -> str:
        ...

    # -------------------------------------------------------------------------
    # Stash
    # -------------------------------------------------------------------------
    @abstractmethod
    async def create_stash(
        self,
        message: Optional[str] = None,
        exclude: Sequence[str] = (),
    ) -> bool:
        """Stash local changes outside ``exclude``; False when there was nothing to stash."""
        ...

    @abstractmethod
    async def pop_stash(self) -> None:
        ...
