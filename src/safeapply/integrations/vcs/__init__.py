"""
safeapply.integrations.vcs - Version-Control Adapters
=======================================================

The ApplyEngine talks to version control only through the VcsAdapter
interface, so the backend can be swapped (or faked in tests).

Available Adapters:
    - VcsAdapter:  Abstract base class defining the contract.
    - GitAdapter:  Drives the ``git`` CLI through the CommandRunner.

Usage:
    >>> from safeapply.integrations.vcs import create_vcs_adapter
    >>> git = create_vcs_adapter(target_path, config.vcs)
    >>> await git.validate_working_tree(exclude=[".safeapply"])
"""

from safeapply.integrations.vcs.base import VcsAdapter
from safeapply.integrations.vcs.factory import create_vcs_adapter
from safeapply.integrations.vcs.git import GitAdapter

__all__ = [
    "VcsAdapter",
    "GitAdapter",
    "create_vcs_adapter",
]
