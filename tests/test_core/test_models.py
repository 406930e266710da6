"""
Tests for safeapply.core.models
=================================

What's Being Tested:
    - Relative path normalization and rejection of unsafe paths
    - Run serialization to the camelCase meta.json document
    - ApplyOptions aliases and defaults
    - ApplyResult.ok and raise_for_status()
"""

import pytest
from pydantic import ValidationError as PydanticValidationError

from safeapply.core.enums import ApplyMode, ApplyStatus, RunStatus
from safeapply.core.exceptions import (
    ApplyIOError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from safeapply.core.models import (
    ApplyOptions,
    ApplyResult,
    Conflict,
    FeatureBundle,
    GeneratedFile,
    Run,
    ValidationReport,
    normalize_relative_path,
)


# =============================================================================
# Tests: Paths
# =============================================================================
class TestNormalizeRelativePath:
    def test_normalizes_separators_and_dots(self) -> None:
        assert normalize_relative_path("./lib\\widgets/./form.dart") == "lib/widgets/form.dart"

    @pytest.mark.parametrize("bad", ["", "/etc/passwd", "C:/x", "../up.dart", "lib/../../x"])
    def test_rejects_unsafe_paths(self, bad) -> None:
        with pytest.raises(ValueError):
            normalize_relative_path(bad)

    def test_generated_file_validates_path(self) -> None:
        with pytest.raises(PydanticValidationError):
            GeneratedFile(relative_path="../escape.dart", content=b"x")

    def test_generated_file_accepts_text(self) -> None:
        f = GeneratedFile(relative_path="lib/a.dart", content="void main() {}")
        assert f.content == b"void main() {}"
        assert len(f.compute_hash()) == 64


# =============================================================================
# Tests: Run
# =============================================================================
class TestRun:
    def _run(self, **overrides) -> Run:
        data = {"id": "run-1-abc", "timestamp": 1, "started_at": "2024-01-01T00:00:00+00:00"}
        data.update(overrides)
        return Run(**data)

    def test_defaults(self) -> None:
        run = self._run()
        assert run.status == RunStatus.IN_PROGRESS
        assert run.features == []
        assert run.errors == []

    def test_meta_uses_camel_case(self) -> None:
        meta = self._run().to_meta()
        assert meta["startedAt"] == "2024-01-01T00:00:00+00:00"
        assert meta["status"] == "in_progress"
        assert "completedAt" not in meta
        assert "duration" not in meta

    def test_meta_includes_completion_once_ended(self) -> None:
        meta = self._run(completed_at="2024-01-01T00:00:01+00:00", duration=1000).to_meta()
        assert meta["completedAt"] == "2024-01-01T00:00:01+00:00"
        assert meta["duration"] == 1000

    def test_round_trip_through_aliases(self) -> None:
        run = self._run(status=RunStatus.SUCCESS, duration=5)
        assert Run.model_validate(run.to_meta()) == run

    def test_bundle_from_camel_case_dict(self) -> None:
        bundle = FeatureBundle.model_validate(
            {"files": [{"relativePath": "lib/a.dart", "content": "A"}]}
        )
        assert bundle.files[0].relative_path == "lib/a.dart"


# =============================================================================
# Tests: ApplyOptions
# =============================================================================
class TestApplyOptions:
    def test_defaults(self) -> None:
        opts = ApplyOptions()
        assert opts.mode == ApplyMode.SAFE
        assert opts.backup is True
        assert opts.validate_files is True
        assert opts.dry_run is False
        assert opts.conflict_policy is None

    def test_validate_alias(self) -> None:
        assert ApplyOptions(validate=False).validate_files is False
        assert ApplyOptions(validate_files=False).validate_files is False

    def test_mode_from_string(self) -> None:
        assert ApplyOptions(mode="merge").mode == ApplyMode.MERGE


# =============================================================================
# Tests: ApplyResult
# =============================================================================
class TestApplyResult:
    def test_ok_for_success_and_partial(self) -> None:
        assert ApplyResult(status=ApplyStatus.SUCCESS).ok
        assert ApplyResult(status=ApplyStatus.PARTIAL).ok
        assert not ApplyResult(status=ApplyStatus.CONFLICTS).ok

    def test_raise_for_status_success_is_noop(self) -> None:
        ApplyResult(status=ApplyStatus.SUCCESS).raise_for_status()

    def test_not_found_raises(self) -> None:
        result = ApplyResult(status=ApplyStatus.NOT_FOUND, feature="login", message="missing")
        with pytest.raises(NotFoundError) as exc_info:
            result.raise_for_status()
        assert exc_info.value.identifier == "login"

    def test_conflicts_raise_with_paths(self) -> None:
        result = ApplyResult(
            status=ApplyStatus.CONFLICTS,
            conflicts=[Conflict(path="lib/a.dart")],
        )
        with pytest.raises(ConflictError) as exc_info:
            result.raise_for_status()
        assert exc_info.value.paths == ["lib/a.dart"]

    def test_validation_failure_carries_errors(self) -> None:
        result = ApplyResult(
            status=ApplyStatus.VALIDATION_FAILED,
            validation=ValidationReport(valid=False, errors=["line 1: bad"]),
        )
        with pytest.raises(ValidationError) as exc_info:
            result.raise_for_status()
        assert exc_info.value.details["errors"] == ["line 1: bad"]

    def test_rolled_back_raises_io_error(self) -> None:
        result = ApplyResult(status=ApplyStatus.ROLLED_BACK, rolled_back=True, failed_files=1)
        with pytest.raises(ApplyIOError) as exc_info:
            result.raise_for_status()
        assert exc_info.value.rolled_back is True
