"""
safeapply.integrations.vcs.factory - VCS Adapter Factory
==========================================================

Maps ``VcsConfig.backend`` to a concrete VcsAdapter. The ApplyEngine uses
this as its default ``vcs_factory``: one adapter per target path.

Usage:
    >>> adapter = create_vcs_adapter(target_path, VcsConfig(backend="git"))
    >>> type(adapter)  # GitAdapter
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Union

from safeapply.core.config import VcsConfig
from safeapply.integrations.vcs.base import VcsAdapter


def create_vcs_adapter(
    repo_path: Union[str, Path],
    config: Optional[VcsConfig] = None,
) -> VcsAdapter:
    """Create the adapter named by ``config.backend`` for ``repo_path``.

    Raises:
        ValueError: If the backend name is not recognized.
    """
    config = config or VcsConfig()
    backend = config.backend.lower()

    if backend == "git":
        from safeapply.integrations.vcs.git import GitAdapter
        return GitAdapter(repo_path, config)

    raise ValueError(
        f"Unknown VCS backend: '{backend}'. Available backends: 'git'."
    )
