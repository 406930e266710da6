"""
SafeApply - Safe Staging and Application of Generated Code
============================================================

SafeApply stages machine-generated source changes, lets a user preview them
as unified diffs, and commits them into a target repository without risking
irrecoverable damage to it:

    Producer  →  ArtifactStore (runs, features, diffs)  →  ApplyEngine
                                                           (conflicts, backup,
                                                            write, rollback, commit)

Architecture Layers (top to bottom):
    1. Orchestration Layer  - ApplyEngine, ConflictResolver, Toolchain
    2. Infrastructure Layer - ArtifactStore, RunSession, FileTree, BackupManager
    3. Integration Layer    - GitAdapter, CommandRunner, FeatureProducer
    4. Core                 - Config, enums, exceptions, models, logging

Quick Start:
    >>> from safeapply import SafeApply
    >>> async with SafeApply("path/to/project") as sa:
    ...     result = await sa.apply("login")
"""

# =============================================================================
# Package Version
# =============================================================================
__version__ = "0.1.0"

# =============================================================================
# Package-Level Exports
# =============================================================================
# The SafeApply facade is the main entry point. For specific components,
# import from submodules directly:
#   from safeapply.core.models import ApplyOptions
#   from safeapply.infrastructure import ArtifactStore
# =============================================================================
from safeapply.facade import SafeApply

__all__ = ["SafeApply", "__version__"]
