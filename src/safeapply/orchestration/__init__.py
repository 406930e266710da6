"""
safeapply.orchestration - Apply Orchestration Layer
=====================================================

Drives a staged feature into a target tree.

Components:
    - ApplyEngine:       The safe-apply state machine (backup, conflict
                         resolution, write, rollback, post-apply actions).
    - ConflictResolver:  Interface for conflict decisions, with the
                         PolicyResolver and CallbackResolver implementations.
    - Toolchain:         Validation, formatting, and dependency commands.

Usage:
    >>> from safeapply.orchestration import ApplyEngine
    >>> engine = ApplyEngine(store)
    >>> result = await engine.execute("login", target_path)
"""

from safeapply.orchestration.apply_engine import ApplyEngine
from safeapply.orchestration.conflicts import (
    CallbackResolver,
    ConflictResolver,
    PolicyResolver,
    detect_conflicts,
)
from safeapply.orchestration.toolchain import Toolchain

__all__ = [
    "ApplyEngine",
    "CallbackResolver",
    "ConflictResolver",
    "PolicyResolver",
    "Toolchain",
    "detect_conflicts",
]
