"""
safeapply.core.config - Configuration Management
==================================================

This module provides the configuration system for SafeApply. Configuration
can be loaded from multiple sources with the following priority (highest first):

    1. Explicit constructor arguments
    2. Environment variables (prefixed with SAFEAPPLY_)
    3. YAML configuration file (safeapply.yaml)
    4. Default values defined in the models below

Architecture Context:
    The top-level SafeApplyConfig is created once and its sections are
    handed to the components that need them:

        SafeApplyConfig
            ├── StorageConfig  → ArtifactStore
            ├── VcsConfig      → GitAdapter, CommandRunner timeouts
            └── ApplyConfig    → ApplyEngine, Toolchain

Usage:
    config = SafeApplyConfig()
    config = load_config("safeapply.yaml")
    config = SafeApplyConfig(log_level="DEBUG")

Environment Variables:
    SAFEAPPLY_LOG_LEVEL=DEBUG
    SAFEAPPLY_STORAGE__MAX_RUNS=20
    SAFEAPPLY_VCS__BRANCH_PREFIX=codegen/
    SAFEAPPLY_APPLY__MODE=force
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal, Optional

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings

from safeapply.core.enums import ApplyMode
from safeapply.core.exceptions import ConfigurationError


# =============================================================================
# Storage Configuration
# =============================================================================
# Controls where the ArtifactStore keeps its state tree and how much run
# history it retains. The state root lives inside the project directory:
#
#   <project>/.safeapply/{runs,artifacts,backups,logs,archive}
# =============================================================================
class StorageConfig(BaseModel):
    """Configuration for the artifact run-lifecycle store.

    Attributes:
        state_dir: Name of the hidden state root inside the project path.
        compress: Store generated files gzip-compressed (``.gz`` suffix).
        max_runs: Number of most recent runs kept; older runs are deleted.
        max_age_days: Runs older than this (among those kept) are archived.
        max_backups: Number of most recent backups kept by cleanup(). Backups
            older than max_age_days are deleted as well.
    """

    state_dir: str = Field(
        default=".safeapply",
        description="Hidden state root directory name inside the project",
    )
    compress: bool = Field(
        default=False,
        description="Gzip-compress stored generated files",
    )
    max_runs: int = Field(
        default=50,
        ge=1,
        description="Maximum number of runs kept before the oldest are deleted",
    )
    max_age_days: float = Field(
        default=30,
        gt=0,
        description="Age in days after which kept runs are moved to the archive",
    )
    max_backups: int = Field(
        default=20,
        ge=1,
        description="Maximum number of backups kept before the oldest are deleted",
    )


# =============================================================================
# VCS Configuration
# =============================================================================
class VcsConfig(BaseModel):
    """Configuration for the version-control adapter.

    Attributes:
        backend: Which VcsAdapter implementation create_vcs_adapter() builds.
        executable: The git executable to invoke.
        branch_prefix: Prefix prepended to every branch created by the adapter.
        require_clean_tree: Whether validate_working_tree() rejects a dirty tree.
        protected_paths: Repository-relative paths create_stash() never
            stashes. The facade adds the configured state_dir.
        command_timeout_seconds: Timeout for every git invocation. There is no
            cancellation primitive inside the engine, so every external call
            must carry one.
    """

    backend: str = Field(
        default="git",
        description="Version-control backend: currently only 'git'",
    )
    executable: str = Field(
        default="git",
        description="Path or name of the git executable",
    )
    branch_prefix: str = Field(
        default="safeapply/",
        description="Prefix for branches created by create_branch()",
    )
    require_clean_tree: bool = Field(
        default=True,
        description="Reject operations on a working tree with uncommitted changes",
    )
    protected_paths: list[str] = Field(
        default_factory=lambda: [".safeapply"],
        description="Paths left in place by create_stash()",
    )
    command_timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Timeout in seconds for each git command",
    )


# =============================================================================
# Apply Configuration
# =============================================================================
# Defaults for ApplyEngine.execute() plus the external tools it drives.
# Tool commands are argv lists; None disables the step. Generated file paths
# are appended to validation_command/format_command.
#
#   validation_command: ["dart", "format", "--set-exit-if-changed", "--output=none"]
#   format_command:     ["dart", "format"]
#   dependency_command: ["flutter", "pub", "get"]
# =============================================================================
class ApplyConfig(BaseModel):
    """Defaults and tool commands for the safe-apply engine.

    Attributes:
        mode: Default apply mode (safe, force, merge).
        backup: Take a backup of the touched subtrees before writing.
        validate_files: Run the validation command on generated files.
        git_integration: Check the working tree and commit after applying.
        validation_command: argv of the syntax checker, or None.
        validation_extensions: File suffixes handed to the checker. Empty
            means every generated file.
        format_command: argv of the formatter run on applied files, or None.
        dependency_manifests: File names whose change triggers a dependency
            update (e.g. "pubspec.yaml").
        dependency_command: argv that updates dependencies, or None.
        tool_timeout_seconds: Timeout for validation/format/dependency tools.
        commit_message: Template for the post-apply commit. ``{feature}`` and
            ``{count}`` are substituted.
    """

    mode: ApplyMode = Field(
        default=ApplyMode.SAFE,
        description="Default apply mode",
    )
    backup: bool = Field(
        default=True,
        description="Back up touched subtrees before writing",
    )
    validate_files: bool = Field(
        default=True,
        description="Validate generated files with validation_command",
    )
    git_integration: bool = Field(
        default=True,
        description="Check working tree and create a commit after applying",
    )
    validation_command: Optional[list[str]] = Field(
        default=None,
        description="Syntax checker argv; generated file paths are appended",
    )
    validation_extensions: list[str] = Field(
        default_factory=list,
        description="Suffixes to validate (empty = all generated files)",
    )
    format_command: Optional[list[str]] = Field(
        default=None,
        description="Formatter argv; applied file paths are appended",
    )
    dependency_manifests: list[str] = Field(
        default_factory=list,
        description="Manifest file names that trigger a dependency update",
    )
    dependency_command: Optional[list[str]] = Field(
        default=None,
        description="Dependency update argv",
    )
    tool_timeout_seconds: float = Field(
        default=120.0,
        gt=0,
        description="Timeout in seconds for each external tool",
    )
    commit_message: str = Field(
        default="Apply generated changes for feature {feature}\n\nApplied {count} files",
        description="Commit message template",
    )


# =============================================================================
# Main Configuration
# =============================================================================
# Environment Variable Mapping:
#   SAFEAPPLY_LOG_LEVEL          → config.log_level
#   SAFEAPPLY_STORAGE__COMPRESS  → config.storage.compress
#   SAFEAPPLY_APPLY__BACKUP      → config.apply.backup
# =============================================================================
class SafeApplyConfig(BaseSettings):
    """Top-level configuration for SafeApply.

    Attributes:
        environment: Deployment environment. "ci" and "prod" render JSON log
            lines, "dev" the console renderer.
        log_level: Logging level used by configure_logging().
        storage: Artifact store configuration.
        vcs: Version-control adapter configuration.
        apply: Apply engine defaults and tool commands.
    """

    environment: Literal["dev", "ci", "prod"] = Field(
        default="dev",
        description="Deployment environment",
    )
    log_level: str = Field(
        default="INFO",
        description="Logging level: DEBUG, INFO, WARNING, ERROR, CRITICAL",
    )

    storage: StorageConfig = Field(
        default_factory=StorageConfig,
        description="Artifact store configuration",
    )
    vcs: VcsConfig = Field(
        default_factory=VcsConfig,
        description="Version-control adapter configuration",
    )
    apply: ApplyConfig = Field(
        default_factory=ApplyConfig,
        description="Apply engine configuration",
    )

    model_config = {
        "env_prefix": "SAFEAPPLY_",
        "env_nested_delimiter": "__",
        "case_sensitive": False,
    }


# =============================================================================
# Configuration Loader
# =============================================================================
def load_config(path: Optional[str] = None) -> SafeApplyConfig:
    """Load SafeApply configuration from a YAML file and/or environment variables.

    Args:
        path: Path to a YAML configuration file. If None, looks for
            'safeapply.yaml' in the current directory, falling back to
            defaults + environment variables.

    Returns:
        A fully validated SafeApplyConfig instance.

    Raises:
        FileNotFoundError: If an explicit path is provided but doesn't exist.
        ConfigurationError: If the YAML file does not contain a mapping.
    """
    if path is None:
        default_path = Path("safeapply.yaml")
        if default_path.exists():
            path = str(default_path)

    yaml_data: dict[str, Any] = {}
    if path is not None:
        config_path = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(
                f"Configuration file not found: {path}. "
                f"Create one or use SAFEAPPLY_* environment variables."
            )

        with open(config_path) as f:
            raw_data = yaml.safe_load(f)

        if raw_data is None:
            raw_data = {}
        if not isinstance(raw_data, dict):
            raise ConfigurationError(
                message=f"Configuration file {path} must contain a mapping",
                error_code="INVALID_CONFIG_FILE",
                details={"path": str(path), "type": type(raw_data).__name__},
            )
        yaml_data = raw_data

    return SafeApplyConfig(**yaml_data)


def get_default_config() -> SafeApplyConfig:
    """Create a SafeApplyConfig with all defaults (plus any set env vars)."""
    return SafeApplyConfig()
