"""
Shared Test Fixtures for SafeApply
====================================

This module provides reusable pytest fixtures used across the entire
test suite. Fixtures are organized by layer:

    1. Configuration fixtures
    2. Infrastructure fixtures (ArtifactStore, clock)
    3. Integration fixtures (git repositories)
    4. Orchestration fixtures (ApplyEngine)

Every fixture works below pytest's ``tmp_path``; nothing touches the real
working directory.
"""

from __future__ import annotations

import shutil
import subprocess
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from safeapply.core.config import ApplyConfig, StorageConfig, VcsConfig
from safeapply.core.models import FeatureBundle, GeneratedFile
from safeapply.infrastructure.artifact_store import ArtifactStore
from safeapply.orchestration.apply_engine import ApplyEngine


requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")


# =============================================================================
# Helpers
# =============================================================================
class FakeClock:
    """Deterministic, manually advanced UTC clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


def make_bundle(files: dict[str, str | bytes], **metadata) -> FeatureBundle:
    """A FeatureBundle from a ``{path: content}`` map."""
    return FeatureBundle(
        metadata=metadata,
        files=[GeneratedFile(relative_path=p, content=c) for p, c in files.items()],
    )


def git(repo: Path, *args: str) -> str:
    """Run git synchronously in ``repo`` and return stdout."""
    completed = subprocess.run(
        ["git", *args],
        cwd=repo,
        check=True,
        capture_output=True,
        text=True,
    )
    return completed.stdout


def init_repo(path: Path, files: dict[str, str] | None = None) -> Path:
    """Create a git repository with one commit containing ``files``."""
    path.mkdir(parents=True, exist_ok=True)
    git(path, "init", "-q")
    git(path, "config", "user.name", "SafeApply Tests")
    git(path, "config", "user.email", "tests@example.com")
    git(path, "config", "commit.gpgsign", "false")
    for relative, content in (files or {"README.md": "# app\n"}).items():
        destination = path / relative
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_text(content)
    git(path, "add", "-A")
    git(path, "commit", "-q", "-m", "initial")
    return path


# =============================================================================
# Configuration
# =============================================================================
@pytest.fixture
def storage_config():
    """Storage configuration with defaults."""
    return StorageConfig()


@pytest.fixture
def apply_config():
    """Apply configuration without external tools."""
    return ApplyConfig(git_integration=False)


# =============================================================================
# Infrastructure
# =============================================================================
@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def project(tmp_path):
    """Empty project directory that holds the state root."""
    path = tmp_path / "project"
    path.mkdir()
    return path


@pytest.fixture
async def store(project, storage_config, clock):
    """Initialized ArtifactStore under the project directory."""
    artifact_store = ArtifactStore(project, storage_config, clock=clock)
    await artifact_store.initialize()
    return artifact_store


@pytest.fixture
def target(tmp_path):
    """Target tree outside the project directory."""
    path = tmp_path / "target"
    path.mkdir()
    return path


# =============================================================================
# Integrations
# =============================================================================
@pytest.fixture
def repo(tmp_path):
    """Git repository with a single initial commit."""
    if shutil.which("git") is None:
        pytest.skip("git is not installed")
    return init_repo(tmp_path / "repo")


# =============================================================================
# Orchestration
# =============================================================================
@pytest.fixture
def engine(store, apply_config):
    """ApplyEngine without git integration."""
    return ApplyEngine(store, config=apply_config, vcs_config=VcsConfig())
