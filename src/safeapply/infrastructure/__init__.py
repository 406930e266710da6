"""
safeapply.infrastructure - Storage Layer
==========================================

This package provides the filesystem persistence that the apply engine and
producers rely on: run history, staged feature artifacts, and backups.

Architecture:
    ┌─────────────── ORCHESTRATION LAYER ─────────────────┐
    │  ApplyEngine, ConflictResolver, Toolchain            │
    └─────────────────────┬───────────────────────────────┘
                          │ loads features, takes backups
                          ▼
    ┌─────────────── INFRASTRUCTURE LAYER ────────────────┐
    │                                                      │
    │  ArtifactStore ── RunSession                         │
    │  FileTree       (one file enumeration per operation) │
    │  BackupManager  (subtree snapshot / restore)         │
    │  diffing        (unified diffs)                      │
    │                                                      │
    └──────────────────────────────────────────────────────┘

Usage:
    from safeapply.infrastructure import ArtifactStore, FileTree
"""

from safeapply.infrastructure.artifact_store import (
    ArtifactStore,
    RunSession,
    format_bytes,
)
from safeapply.infrastructure.backup import BackupManager
from safeapply.infrastructure.diffing import DiffStats, diff_stats, unified_diff
from safeapply.infrastructure.file_tree import FileTree

__all__ = [
    "ArtifactStore",
    "RunSession",
    "BackupManager",
    "FileTree",
    "DiffStats",
    "diff_stats",
    "format_bytes",
    "unified_diff",
]
