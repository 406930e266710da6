"""
safeapply.orchestration.conflicts - Conflict Detection & Resolution
=====================================================================

A conflict is a target file whose bytes differ from the generated artifact
that would replace it. Conflicts are recomputed against the live target tree
on every apply; nothing from a previous run is reused.

Resolution is delegated to a ConflictResolver, the single interface the
ApplyEngine calls when it needs a decision:

    ┌──────────────┐  choose_policy(conflicts)   ┌───────────────────┐
    │  ApplyEngine  │ ─────────────────────────→ │ ConflictResolver  │
    │               │  review(conflict)           │   (abstract)      │
    │               │  show_diff(conflict, diff)  └─────────┬─────────┘
    └──────────────┘                                       │
                                             ┌─────────────┴───────────┐
                                      ┌──────▼───────┐        ┌────────▼───────┐
                                      │PolicyResolver│        │CallbackResolver│
                                      │ (fixed/scripted)│     │ (UI prompts)   │
                                      └──────────────┘        └────────────────┘

Review Loop:
    For each conflict under the REVIEW policy the engine asks for an action:
        OVERWRITE → write the generated file
        SKIP      → leave the target file untouched
        DIFF      → show the unified diff, then ask again
        ABORT     → cancel the whole apply, nothing is written
"""

from __future__ import annotations

import inspect
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Awaitable, Callable, Mapping, Optional, Sequence, Union

import structlog

from safeapply.core.enums import ConflictKind, ConflictPolicy, ReviewAction
from safeapply.core.models import Conflict
from safeapply.infrastructure.file_tree import FileTree


logger = structlog.get_logger()


# =============================================================================
# Detection
# =============================================================================
def detect_conflicts(tree: FileTree, target: Union[str, Path]) -> list[Conflict]:
    """Compare every file of ``tree`` with the target tree.

    A destination that exists with different bytes (or that is not a regular
    file at all) is a MODIFIED conflict. Missing destinations and identical
    bytes never conflict.

    Args:
        tree: The files the apply would write.
        target: Root of the target working tree.

    Returns:
        Conflicts in tree order.
    """
    target = Path(target)
    conflicts: list[Conflict] = []
    for path, content in tree:
        destination = target / path
        if not destination.exists():
            continue
        if destination.is_file() and destination.read_bytes() == content:
            continue
        conflicts.append(
            Conflict(path=path, kind=ConflictKind.MODIFIED, target=str(destination))
        )
    return conflicts


# =============================================================================
# Resolver Interface
# =============================================================================
class ConflictResolver(ABC):
    """Decides how conflicts are handled when the caller did not say."""

    @abstractmethod
    async def choose_policy(self, conflicts: Sequence[Conflict]) -> ConflictPolicy:
        """Pick the policy for the whole conflict set."""
        ...

    @abstractmethod
    async def review(self, conflict: Conflict) -> ReviewAction:
        """Pick the action for one conflict under the REVIEW policy."""
        ...

    async def show_diff(self, conflict: Conflict, diff_text: str) -> None:
        """Present the diff requested by a DIFF review action.

        The default only logs it.
        """
        logger.info("conflict_diff", path=conflict.path, diff=diff_text)


class PolicyResolver(ConflictResolver):
    """Resolver with fixed answers, for batch use and tests.

    Args:
        policy: Returned by choose_policy().
        review_actions: Per-path review answers. A sequence is consumed one
            answer per review() call, so ``[DIFF, OVERWRITE]`` first asks for
            the diff and then overwrites.
        default_action: Answer for paths without a scripted action.

    Attributes:
        shown_diffs: ``(path, diff_text)`` pairs passed to show_diff().
    """

    def __init__(
        self,
        policy: ConflictPolicy = ConflictPolicy.CANCEL,
        review_actions: Optional[
            Mapping[str, Union[ReviewAction, Sequence[ReviewAction]]]
        ] = None,
        default_action: ReviewAction = ReviewAction.SKIP,
    ) -> None:
        self.policy = ConflictPolicy(policy)
        self.default_action = ReviewAction(default_action)
        self._scripts: dict[str, list[ReviewAction]] = {}
        for path, actions in (review_actions or {}).items():
            if isinstance(actions, (str, ReviewAction)):
                actions = [actions]
            self._scripts[path] = [ReviewAction(a) for a in actions]
        self.shown_diffs: list[tuple[str, str]] = []

    async def choose_policy(self, conflicts: Sequence[Conflict]) -> ConflictPolicy:
        return self.policy

    async def review(self, conflict: Conflict) -> ReviewAction:
        script = self._scripts.get(conflict.path)
        if script:
            return script.pop(0)
        return self.default_action

    async def show_diff(self, conflict: Conflict, diff_text: str) -> None:
        self.shown_diffs.append((conflict.path, diff_text))


_Callback = Callable[..., Union[Any, Awaitable[Any]]]


async def _call(callback: _Callback, *args: Any) -> Any:
    result = callback(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


class CallbackResolver(ConflictResolver):
    """Resolver that forwards each decision to caller-supplied callables.

    Callbacks may be plain functions or coroutine functions, which makes it
    easy to plug in a terminal prompt or a UI dialog.
    """

    def __init__(
        self,
        choose_policy: _Callback,
        review: Optional[_Callback] = None,
        show_diff: Optional[_Callback] = None,
    ) -> None:
        self._choose_policy = choose_policy
        self._review = review
        self._show_diff = show_diff

    async def choose_policy(self, conflicts: Sequence[Conflict]) -> ConflictPolicy:
        return ConflictPolicy(await _call(self._choose_policy, list(conflicts)))

    async def review(self, conflict: Conflict) -> ReviewAction:
        if self._review is None:
            return ReviewAction.SKIP
        return ReviewAction(await _call(self._review, conflict))

    async def show_diff(self, conflict: Conflict, diff_text: str) -> None:
        if self._show_diff is None:
            await super().show_diff(conflict, diff_text)
            return
        await _call(self._show_diff, conflict, diff_text)
