"""
Tests for safeapply.core.config
=================================

These tests verify that the configuration system works correctly:
    - Default values are sensible and complete
    - Environment variables override defaults
    - YAML files are parsed correctly
    - Validation catches invalid values
"""

import pytest
import yaml
from pydantic import ValidationError as PydanticValidationError

from safeapply.core.config import (
    ApplyConfig,
    SafeApplyConfig,
    StorageConfig,
    VcsConfig,
    get_default_config,
    load_config,
)
from safeapply.core.enums import ApplyMode
from safeapply.core.exceptions import ConfigurationError


# =============================================================================
# Test: Default Configuration
# =============================================================================
class TestDefaultConfig:
    """Tests for default configuration values."""

    def test_default_config_creates_successfully(self) -> None:
        config = SafeApplyConfig()
        assert config.environment == "dev"
        assert config.log_level == "INFO"

    def test_storage_defaults(self) -> None:
        storage = StorageConfig()
        assert storage.state_dir == ".safeapply"
        assert storage.compress is False
        assert storage.max_runs == 50
        assert storage.max_age_days == 30
        assert storage.max_backups == 20

    def test_vcs_defaults(self) -> None:
        vcs = VcsConfig()
        assert vcs.backend == "git"
        assert vcs.branch_prefix == "safeapply/"
        assert vcs.protected_paths == [".safeapply"]
        assert vcs.require_clean_tree is True

    def test_apply_defaults_are_safe(self) -> None:
        """Out of the box an apply is safe, backed up, and validated."""
        apply = ApplyConfig()
        assert apply.mode == ApplyMode.SAFE
        assert apply.backup is True
        assert apply.validate_files is True
        assert apply.validation_command is None

    def test_get_default_config(self) -> None:
        assert isinstance(get_default_config(), SafeApplyConfig)


# =============================================================================
# Test: Environment Variables
# =============================================================================
class TestEnvironmentOverrides:
    """SAFEAPPLY_* variables override defaults, nested with '__'."""

    def test_top_level_override(self, monkeypatch) -> None:
        monkeypatch.setenv("SAFEAPPLY_LOG_LEVEL", "DEBUG")
        assert SafeApplyConfig().log_level == "DEBUG"

    def test_nested_override(self, monkeypatch) -> None:
        monkeypatch.setenv("SAFEAPPLY_STORAGE__MAX_RUNS", "7")
        monkeypatch.setenv("SAFEAPPLY_APPLY__MODE", "force")
        config = SafeApplyConfig()
        assert config.storage.max_runs == 7
        assert config.apply.mode == ApplyMode.FORCE


# =============================================================================
# Test: Validation
# =============================================================================
class TestValidation:
    def test_max_runs_must_be_positive(self) -> None:
        with pytest.raises(PydanticValidationError):
            StorageConfig(max_runs=0)
        with pytest.raises(PydanticValidationError):
            StorageConfig(max_backups=0)

    def test_invalid_environment_rejected(self) -> None:
        with pytest.raises(PydanticValidationError):
            SafeApplyConfig(environment="staging")

    def test_timeout_must_be_positive(self) -> None:
        with pytest.raises(PydanticValidationError):
            VcsConfig(command_timeout_seconds=0)


# =============================================================================
# Test: YAML Loading
# =============================================================================
class TestLoadConfig:
    def test_load_from_yaml(self, tmp_path) -> None:
        path = tmp_path / "safeapply.yaml"
        path.write_text(
            yaml.safe_dump(
                {
                    "log_level": "WARNING",
                    "storage": {"compress": True, "max_runs": 5},
                    "apply": {
                        "mode": "merge",
                        "format_command": ["dart", "format"],
                        "dependency_manifests": ["pubspec.yaml"],
                    },
                }
            )
        )
        config = load_config(str(path))
        assert config.log_level == "WARNING"
        assert config.storage.compress is True
        assert config.storage.max_runs == 5
        assert config.apply.mode == ApplyMode.MERGE
        assert config.apply.format_command == ["dart", "format"]

    def test_empty_yaml_gives_defaults(self, tmp_path) -> None:
        path = tmp_path / "safeapply.yaml"
        path.write_text("")
        assert load_config(str(path)).storage.max_runs == 50

    def test_missing_explicit_file_raises(self, tmp_path) -> None:
        with pytest.raises(FileNotFoundError):
            load_config(str(tmp_path / "nope.yaml"))

    def test_non_mapping_yaml_raises(self, tmp_path) -> None:
        path = tmp_path / "safeapply.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ConfigurationError) as exc_info:
            load_config(str(path))
        assert exc_info.value.error_code == "INVALID_CONFIG_FILE"

    def test_default_file_in_cwd(self, tmp_path, monkeypatch) -> None:
        (tmp_path / "safeapply.yaml").write_text("environment: ci\n")
        monkeypatch.chdir(tmp_path)
        assert load_config().environment == "ci"
