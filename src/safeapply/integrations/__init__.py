"""
safeapply.integrations - External Tool Integration Layer
==========================================================

Adapters for everything outside SafeApply's own state root. Each integration
sits behind an interface so implementations can be swapped or faked.

Modules:
    process   - CommandRunner: argv execution with timeouts
    vcs/      - VcsAdapter interface and the GitAdapter
    producer  - FeatureProducer interface and bundle helpers
"""

from safeapply.integrations.process import CommandResult, CommandRunner
from safeapply.integrations.producer import (
    FeatureProducer,
    StaticFeatureProducer,
    build_feature_bundle,
    save_produced,
)
from safeapply.integrations.vcs import GitAdapter, VcsAdapter, create_vcs_adapter

__all__ = [
    "CommandResult",
    "CommandRunner",
    "FeatureProducer",
    "StaticFeatureProducer",
    "build_feature_bundle",
    "save_produced",
    "GitAdapter",
    "VcsAdapter",
    "create_vcs_adapter",
]
