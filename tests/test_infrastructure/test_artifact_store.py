"""
Tests for safeapply.infrastructure.artifact_store
===================================================

These tests verify the run lifecycle and the on-disk artifact layout.

What's Being Tested:
    - State-root initialization
    - Run sessions (start, end, context manager, NoActiveRunError)
    - Feature artifacts (save, replace, compress, load, applied marker)
    - Run logs and error records
    - Retention (delete past max_runs, archive past max_age_days)
    - Storage statistics, export, reports, progress tracking

All tests run against a temporary directory with a fake clock.
"""

import asyncio
import hashlib
import json

import pytest

from safeapply.core.config import StorageConfig
from safeapply.core.enums import ApplyStatus, LogLevel, RunStatus
from safeapply.core.exceptions import NoActiveRunError, NotFoundError, ValidationError
from safeapply.core.models import ApplyResult, FeatureBundle, GeneratedFile
from safeapply.infrastructure.artifact_store import (
    ArtifactStore,
    format_bytes,
    validate_feature_name,
)
from tests.conftest import FakeClock, make_bundle


# =============================================================================
# Tests: Initialization
# =============================================================================
class TestInitialize:
    async def test_creates_layout(self, project, clock) -> None:
        store = ArtifactStore(project, clock=clock)
        stats = await store.initialize()
        for sub in ("runs", "artifacts/features", "backups", "archive"):
            assert (project / ".safeapply" / sub).is_dir()
        assert stats.deleted == stats.archived == stats.kept == 0

    async def test_custom_state_dir(self, project) -> None:
        store = ArtifactStore(project, StorageConfig(state_dir=".gen"))
        await store.initialize()
        assert (project / ".gen" / "runs").is_dir()

    async def test_empty_run_history(self, store) -> None:
        assert await store.get_all_runs() == []
        assert await store.list_features() == []


# =============================================================================
# Tests: Run Lifecycle
# =============================================================================
class TestRunLifecycle:
    async def test_start_run_writes_meta(self, store) -> None:
        session = await store.start_run({"source": "react-app"})
        assert session.id.startswith("run-1704067200000-")
        assert session.active

        meta = json.loads((session.run_dir / "meta.json").read_text())
        assert meta["status"] == "in_progress"
        assert meta["metadata"]["source"] == "react-app"
        assert "python" in meta["metadata"]
        for sub in ("diffs", "files", "logs", "metadata"):
            assert (session.run_dir / sub).is_dir()

    async def test_run_ids_are_unique(self, store) -> None:
        first = await store.start_run()
        second = await store.start_run()
        assert first.id != second.id

    async def test_end_run_records_duration(self, store, clock) -> None:
        session = await store.start_run()
        clock.advance(seconds=2)
        run = await session.end_run(RunStatus.SUCCESS)

        assert run.status == RunStatus.SUCCESS
        assert run.duration == 2000
        loaded = await store.load_run_metadata(session.id)
        assert loaded.status == RunStatus.SUCCESS
        assert loaded.completed_at == run.completed_at

    async def test_end_run_rejects_in_progress(self, store) -> None:
        session = await store.start_run()
        with pytest.raises(ValueError):
            await session.end_run(RunStatus.IN_PROGRESS)

    async def test_writes_after_end_raise(self, store) -> None:
        session = await store.start_run()
        await session.end_run()
        with pytest.raises(NoActiveRunError):
            await session.save_feature_artifacts("login", make_bundle({"a.dart": "A"}))
        with pytest.raises(NoActiveRunError):
            await session.log(LogLevel.INFO, "late")
        with pytest.raises(NoActiveRunError):
            await session.end_run()

    async def test_context_manager_success(self, store) -> None:
        async with await store.start_run() as session:
            pass
        assert session.run.status == RunStatus.SUCCESS
        assert not session.active

    async def test_context_manager_failure_records_error(self, store) -> None:
        with pytest.raises(RuntimeError):
            async with await store.start_run() as session:
                raise RuntimeError("producer crashed")

        run = await store.load_run_metadata(session.id)
        assert run.status == RunStatus.FAILED
        assert run.errors[0].message == "producer crashed"
        assert "RuntimeError" in run.errors[0].stack

    async def test_context_manager_cancelled(self, store) -> None:
        with pytest.raises(asyncio.CancelledError):
            async with await store.start_run() as session:
                raise asyncio.CancelledError()
        assert session.run.status == RunStatus.CANCELLED

    async def test_load_unknown_run(self, store) -> None:
        with pytest.raises(NotFoundError):
            await store.load_run_metadata("run-missing")
        with pytest.raises(NotFoundError):
            await store.load_run_metadata("../escape")

    async def test_runs_sorted_newest_first(self, store, clock) -> None:
        ids = []
        for _ in range(3):
            session = await store.start_run()
            ids.append(session.id)
            clock.advance(seconds=1)
        runs = await store.get_all_runs()
        assert [r.id for r in runs] == list(reversed(ids))
        assert [r.id for r in await store.get_recent_runs(2)] == list(reversed(ids))[:2]

    async def test_unreadable_runs_are_skipped(self, store) -> None:
        session = await store.start_run()
        (store.runs_root / "run-no-meta").mkdir()
        (store.runs_root / "run-bad-meta").mkdir()
        (store.runs_root / "run-bad-meta" / "meta.json").write_text("{not json")
        assert [r.id for r in await store.get_all_runs()] == [session.id]


# =============================================================================
# Tests: Feature Artifacts
# =============================================================================
class TestFeatureArtifacts:
    async def test_save_and_load(self, store) -> None:
        session = await store.start_run()
        bundle = make_bundle({"lib/login.dart": "class Login {}", "pubspec.yaml": "name: app"})
        summary = await session.save_feature_artifacts("login", bundle)

        assert summary.files == 2
        assert session.run.features[0].name == "login"
        feature_dir = store.features_root / "login"
        assert (feature_dir / "files" / "lib" / "login.dart").read_bytes() == b"class Login {}"

        artifact = await store.load_feature("login")
        assert artifact.run_id == session.id
        assert [f.relative_path for f in artifact.files] == ["lib/login.dart", "pubspec.yaml"]
        assert artifact.is_applied is False

    async def test_saved_diffs_are_loaded(self, store) -> None:
        session = await store.start_run()
        await session.save_feature_artifacts(
            "login",
            {
                "files": [{"relativePath": "lib/a.dart", "content": "A"}],
                "diffs": [{"name": "lib/a.dart", "content": "--- /dev/null\n+++ b/lib/a.dart\n"}],
            },
        )
        artifact = await store.load_feature("login")
        assert artifact.diffs[0].name == "lib/a.dart"
        assert artifact.diffs[0].content.startswith("--- /dev/null")

    async def test_resave_replaces_previous_files(self, store) -> None:
        session = await store.start_run()
        await session.save_feature_artifacts("login", make_bundle({"old.dart": "x"}))
        await session.save_feature_artifacts("login", make_bundle({"new.dart": "y"}))
        tree = await store.load_feature_tree("login")
        assert tree.paths == ["new.dart"]

    async def test_compressed_storage(self, project, clock) -> None:
        store = ArtifactStore(project, StorageConfig(compress=True), clock=clock)
        await store.initialize()
        session = await store.start_run()
        await session.save_feature_artifacts("login", make_bundle({"lib/a.dart": "A" * 100}))

        assert (store.features_root / "login" / "files" / "lib" / "a.dart.gz").is_file()
        tree = await store.load_feature_tree("login")
        assert tree.read("lib/a.dart") == b"A" * 100

    async def test_rejects_invalid_names_and_state_root_paths(self, store) -> None:
        session = await store.start_run()
        with pytest.raises(ValueError):
            await session.save_feature_artifacts("../evil", make_bundle({"a": "x"}))
        with pytest.raises(ValueError):
            await session.save_feature_artifacts("ok", make_bundle({".safeapply/runs/x": "x"}))

    async def test_unknown_feature(self, store) -> None:
        with pytest.raises(NotFoundError):
            await store.load_feature_tree("nope")
        with pytest.raises(NotFoundError):
            await store.load_feature("../nope")

    async def test_list_features(self, store) -> None:
        session = await store.start_run()
        await session.save_feature_artifacts("profile", make_bundle({"a": "1"}))
        await session.save_feature_artifacts("login", make_bundle({"b": "2"}))
        assert await store.list_features() == ["login", "profile"]

    async def test_content_hashes_are_recorded(self, store) -> None:
        session = await store.start_run()
        digest = hashlib.sha256(b"class Login {}").hexdigest()
        bundle = FeatureBundle(
            files=[
                GeneratedFile(
                    relative_path="lib/login.dart",
                    content="class Login {}",
                    content_hash=digest.upper(),
                )
            ]
        )
        await session.save_feature_artifacts("login", bundle)

        meta = json.loads((store.features_root / "login" / "meta.json").read_text())
        assert meta["hashes"] == {"lib/login.dart": digest}
        artifact = await store.load_feature("login")
        assert artifact.files[0].content_hash == digest

    async def test_content_hash_mismatch_writes_nothing(self, store) -> None:
        session = await store.start_run()
        bundle = FeatureBundle(
            files=[
                GeneratedFile(relative_path="lib/a.dart", content="A"),
                GeneratedFile(relative_path="lib/b.dart", content="B", content_hash="0" * 64),
            ]
        )
        with pytest.raises(ValidationError) as excinfo:
            await session.save_feature_artifacts("login", bundle)

        assert excinfo.value.error_code == "CONTENT_HASH_MISMATCH"
        assert excinfo.value.details["path"] == "lib/b.dart"
        assert not (store.features_root / "login").exists()
        assert session.run.features == []

    async def test_mark_applied(self, store) -> None:
        session = await store.start_run()
        await session.save_feature_artifacts("login", make_bundle({"a": "1"}))
        applied_at = await store.mark_feature_applied("login")
        artifact = await store.load_feature("login")
        assert artifact.applied_at == applied_at
        assert artifact.is_applied

    async def test_save_diff_and_generated_file(self, store) -> None:
        session = await store.start_run()
        diff_path = await session.save_diff("lib/a.dart", "diff text")
        file_path = await session.save_generated_file("lib/a.dart", "content")
        assert diff_path == session.run_dir / "diffs" / "lib" / "a.dart.diff"
        assert file_path.read_text() == "content"


# =============================================================================
# Tests: Logs & Errors
# =============================================================================
class TestRunLogs:
    async def test_log_appends_to_level_file(self, store) -> None:
        session = await store.start_run()
        await session.log(LogLevel.INFO, "first")
        await session.log("info", "second", {"k": 1})
        lines = (session.run_dir / "logs" / "info.log").read_text().splitlines()
        assert len(lines) == 2
        assert lines[1].endswith("] second")
        assert session.run.logs[1].data == {"k": 1}

    async def test_log_error_records_stack_and_context(self, store) -> None:
        session = await store.start_run()
        try:
            raise KeyError("missing")
        except KeyError as exc:
            record = await session.log_error(exc, {"feature": "login"})

        assert record.context == {"feature": "login"}
        assert "KeyError" in record.stack
        assert (session.run_dir / "logs" / "error.log").is_file()
        assert session.run.logs[-1].level == LogLevel.ERROR

    async def test_log_file_failure_is_not_fatal(self, store) -> None:
        session = await store.start_run()
        logs_dir = session.run_dir / "logs"
        logs_dir.rmdir()
        logs_dir.write_text("not a directory")
        record = await session.log(LogLevel.WARN, "still recorded")
        assert record.message == "still recorded"
        assert session.run.logs[-1] is record


# =============================================================================
# Tests: Retention
# =============================================================================
class TestRetention:
    async def test_deletes_runs_beyond_max(self, project, clock) -> None:
        store = ArtifactStore(project, StorageConfig(max_runs=2), clock=clock)
        await store.initialize()
        ids = []
        for _ in range(5):
            ids.append((await store.start_run()).id)
            clock.advance(seconds=1)

        stats = await store.cleanup()
        assert stats.deleted == 3
        assert stats.kept == 2
        assert {r.id for r in await store.get_all_runs()} == set(ids[-2:])

    async def test_archives_old_runs(self, project, clock) -> None:
        store = ArtifactStore(project, StorageConfig(max_age_days=1), clock=clock)
        await store.initialize()
        old = await store.start_run()
        clock.advance(days=2)
        fresh = await store.start_run()

        stats = await store.cleanup()
        assert (stats.deleted, stats.archived, stats.kept) == (0, 1, 1)
        assert (store.archive_root / old.id / "meta.json").is_file()
        assert [r.id for r in await store.get_all_runs()] == [fresh.id]

    async def test_initialize_applies_retention(self, project) -> None:
        clock = FakeClock()
        config = StorageConfig(max_runs=1)
        store = ArtifactStore(project, config, clock=clock)
        await store.initialize()
        await store.start_run()
        clock.advance(seconds=1)
        await store.start_run()

        stats = await ArtifactStore(project, config, clock=clock).initialize()
        assert stats.deleted == 1

    async def test_prunes_backups_beyond_max_and_age(self, project, clock) -> None:
        store = ArtifactStore(project, StorageConfig(max_backups=2, max_age_days=5), clock=clock)
        await store.initialize()
        (project / "lib").mkdir(exist_ok=True)
        (project / "lib" / "a.dart").write_text("A")
        await store.backups.create(project, ["lib"], feature="ancient")
        clock.advance(days=10)
        for name in ("one", "two", "three"):
            await store.backups.create(project, ["lib"], feature=name)
            clock.advance(seconds=1)

        stats = await store.cleanup()
        assert stats.backups_deleted == 2
        assert [b.manifest.feature for b in await store.backups.list_backups()] == ["three", "two"]


# =============================================================================
# Tests: Statistics, Export, Reports, Progress
# =============================================================================
class TestHousekeeping:
    async def test_storage_stats(self, store) -> None:
        session = await store.start_run()
        await session.log(LogLevel.INFO, "hello")
        await session.save_feature_artifacts("login", make_bundle({"a": "x" * 10}))

        stats = await store.get_storage_stats()
        assert stats.runs > 0
        assert stats.artifacts > 0
        assert 0 < stats.logs <= stats.runs
        assert stats.total_size == stats.runs + stats.artifacts + stats.backups + stats.archived

    def test_format_bytes(self) -> None:
        assert format_bytes(0) == "0 B"
        assert format_bytes(512) == "512.00 B"
        assert format_bytes(1536) == "1.50 KB"
        assert ArtifactStore.format_bytes(3 * 1024 * 1024) == "3.00 MB"

    async def test_export_run(self, store, tmp_path) -> None:
        session = await store.start_run()
        await session.end_run()
        destination = await store.export_run(session.id, tmp_path / "export")
        assert (destination / "meta.json").is_file()

    async def test_generate_run_report(self, store) -> None:
        session = await store.start_run()
        await session.save_feature_artifacts("login", make_bundle({"a": "1", "b": "2"}))
        await session.log_error("oops")
        await session.end_run(RunStatus.FAILED)

        report = await store.generate_run_report(session.id)
        assert report.status == RunStatus.FAILED
        assert report.features == 1
        assert report.total_files == 2
        assert report.errors == 1

    async def test_update_progress(self, store) -> None:
        result = ApplyResult(
            status=ApplyStatus.PARTIAL,
            applied_files=["lib/a.dart"],
            skipped_files=1,
        )
        await store.update_progress("login", result)
        progress = await store.update_progress("profile", ApplyResult(status=ApplyStatus.SUCCESS))

        on_disk = json.loads((store.state_root / "progress.json").read_text())
        assert on_disk == progress
        assert on_disk["features"]["login"]["status"] == "partial"
        assert on_disk["features"]["login"]["skippedFiles"] == 1
        assert set(on_disk["features"]) == {"login", "profile"}

    async def test_update_progress_recovers_from_corrupt_file(self, store) -> None:
        (store.state_root / "progress.json").write_text("[1, 2")
        progress = await store.update_progress("login", ApplyResult(status=ApplyStatus.SUCCESS))
        assert list(progress["features"]) == ["login"]


def test_validate_feature_name() -> None:
    assert validate_feature_name("login.widget") == "login.widget"
    for bad in ("", ".", "..", "a/b", "a b"):
        with pytest.raises(ValueError):
            validate_feature_name(bad)
