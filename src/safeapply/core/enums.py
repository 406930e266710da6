"""
safeapply.core.enums - Type-Safe Enumerations
===============================================

This module defines all enumeration types used throughout SafeApply.
Enums provide type safety, prevent typos, and make the codebase self-documenting.

All enums inherit from both `str` and `Enum`, which means:
    - They serialize to strings in JSON/YAML (Pydantic-friendly)
    - They can be compared with plain strings: ApplyMode.SAFE == "safe"
    - They have human-readable representations

Architecture Mapping:
    ┌─────────────────────────────────────────────────────────────────┐
    │  ARTIFACT STORE                                                 │
    │    RunStatus: Run lifecycle (IN_PROGRESS → SUCCESS/FAILED/...)  │
    │    LogLevel: Severity of run log records                        │
    ├─────────────────────────────────────────────────────────────────┤
    │  APPLY ENGINE                                                   │
    │    ApplyMode: How strictly conflicts/validation gate writes     │
    │    ApplyStatus: Terminal outcomes of ApplyEngine.execute()      │
    │    ConflictPolicy / ReviewAction: Conflict resolution choices   │
    │    ConflictKind: Why a target file is considered conflicting    │
    │    SubtreeKind: What a backup captured for a subtree            │
    ├─────────────────────────────────────────────────────────────────┤
    │  VCS ADAPTER                                                    │
    │    ResolutionStrategy: How an index conflict is resolved        │
    └─────────────────────────────────────────────────────────────────┘
"""

from enum import Enum


# =============================================================================
# Run Status Enumeration
# =============================================================================
# A Run starts IN_PROGRESS and is finalized exactly once by end_run():
#
#   start_run() → IN_PROGRESS → end_run(status) → SUCCESS | FAILED | CANCELLED
# =============================================================================
class RunStatus(str, Enum):
    """Lifecycle states of a stored Run."""

    IN_PROGRESS = "in_progress"   # Run is active, artifacts may still be saved
    SUCCESS = "success"           # Run completed normally
    FAILED = "failed"             # Run aborted due to an error
    CANCELLED = "cancelled"       # Run stopped by the user


class LogLevel(str, Enum):
    """Severity levels for run log records.

    Each level maps to one file under ``runs/<run-id>/logs/<level>.log``.
    """

    INFO = "info"
    WARN = "warn"
    ERROR = "error"


# =============================================================================
# Apply Mode Enumeration
# =============================================================================
# Controls how strictly the ApplyEngine gates writes:
#
#   SAFE  → conflicts must be resolved, validation failures block the apply
#   FORCE → write everything, ignore conflicts and validation failures
#   MERGE → conflicting files are three-way merged through the VcsAdapter
# =============================================================================
class ApplyMode(str, Enum):
    """How the ApplyEngine treats conflicts and validation failures."""

    SAFE = "safe"
    FORCE = "force"
    MERGE = "merge"


class ApplyStatus(str, Enum):
    """Terminal outcomes of ``ApplyEngine.execute()``.

    Every branch of the apply state machine ends in exactly one of these.
    Expected outcomes (not found, conflicts, validation failures) are
    returned as results rather than raised.
    """

    SUCCESS = "success"                      # Every file applied (or already identical)
    PARTIAL = "partial"                      # Some files skipped due to conflicts
    NO_ARTIFACTS = "no_artifacts"            # The store holds no feature artifacts
    NOT_FOUND = "not_found"                  # The requested feature does not exist
    VALIDATION_FAILED = "validation_failed"  # Generated output failed the checker
    CONFLICTS = "conflicts"                  # Unresolved conflicts in safe mode
    CANCELLED = "cancelled"                  # User cancelled conflict resolution
    FAILED = "failed"                        # Writes failed and no backup existed
    ROLLED_BACK = "rolled_back"              # Writes failed and backup was restored


# =============================================================================
# Conflict Resolution Enumerations
# =============================================================================
# ConflictPolicy is the answer to "what do we do with ALL conflicts?".
# ReviewAction is the per-file answer when the policy is REVIEW.
# =============================================================================
class ConflictPolicy(str, Enum):
    """Batch policy for resolving detected conflicts."""

    OVERWRITE = "overwrite"   # Write all conflicting files
    SKIP = "skip"             # Leave conflicting files untouched
    REVIEW = "review"         # Decide file by file
    CANCEL = "cancel"         # Abort the apply with no writes


class ReviewAction(str, Enum):
    """Per-file decision during a conflict review."""

    OVERWRITE = "overwrite"
    SKIP = "skip"
    DIFF = "diff"             # Inspect the diff, then ask again for the same file
    ABORT = "abort"           # Abort the whole apply


class ConflictKind(str, Enum):
    """Why a target file conflicts with the generated artifact."""

    MODIFIED = "modified"     # Target exists and its bytes differ


class SubtreeKind(str, Enum):
    """What a backup captured for a touched top-level subtree."""

    FILE = "file"
    DIRECTORY = "directory"
    ABSENT = "absent"         # Did not exist; rollback removes it


class ResolutionStrategy(str, Enum):
    """Strategies for resolving an index conflict in the working tree."""

    OURS = "ours"             # Keep our side and stage it
    THEIRS = "theirs"         # Keep their side and stage it
    MANUAL = "manual"         # Leave conflict markers, do not stage
