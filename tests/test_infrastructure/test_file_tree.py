"""
Tests for safeapply.infrastructure.file_tree
==============================================
"""

import gzip

import pytest

from safeapply.core.models import GeneratedFile
from safeapply.infrastructure.file_tree import FileTree


class TestFileTree:
    def test_paths_sorted_and_normalized(self) -> None:
        tree = FileTree({"pubspec.yaml": b"p", "./lib\\b.dart": b"b", "lib/a.dart": b"a"})
        assert tree.paths == ["lib/a.dart", "lib/b.dart", "pubspec.yaml"]
        assert len(tree) == 3

    def test_read_and_contains(self) -> None:
        tree = FileTree({"lib/a.dart": b"A"})
        assert tree.read("lib/a.dart") == b"A"
        assert "lib/a.dart" in tree
        assert "lib/b.dart" not in tree
        assert "../x" not in tree
        with pytest.raises(KeyError):
            tree.read("missing.dart")

    def test_empty_tree_is_falsy(self) -> None:
        assert not FileTree()

    def test_top_level_subtrees(self) -> None:
        tree = FileTree(
            {"lib/a.dart": b"", "lib/w/b.dart": b"", "pubspec.yaml": b"", "test/t.dart": b""}
        )
        assert tree.top_level_subtrees() == ["lib", "pubspec.yaml", "test"]

    def test_subset(self) -> None:
        tree = FileTree({"a": b"1", "b": b"2"})
        assert tree.subset(["b"]).paths == ["b"]

    def test_generated_files_round_trip(self) -> None:
        files = [GeneratedFile(relative_path="lib/a.dart", content=b"A")]
        tree = FileTree.from_generated_files(files)
        assert tree.to_generated_files() == files


class TestFromDirectory:
    def test_reads_every_regular_file(self, tmp_path) -> None:
        (tmp_path / "lib" / "widgets").mkdir(parents=True)
        (tmp_path / "lib" / "widgets" / "form.dart").write_bytes(b"form")
        (tmp_path / "pubspec.yaml").write_bytes(b"name: app")
        tree = FileTree.from_directory(tmp_path)
        assert tree.paths == ["lib/widgets/form.dart", "pubspec.yaml"]
        assert tree.read("pubspec.yaml") == b"name: app"

    def test_empty_directory_gives_empty_tree(self, tmp_path) -> None:
        assert len(FileTree.from_directory(tmp_path)) == 0

    def test_missing_directory_raises(self, tmp_path) -> None:
        with pytest.raises(FileNotFoundError):
            FileTree.from_directory(tmp_path / "missing")

    def test_compressed_files_are_decompressed(self, tmp_path) -> None:
        (tmp_path / "a.dart.gz").write_bytes(gzip.compress(b"plain"))
        tree = FileTree.from_directory(tmp_path, compressed=True)
        assert tree.paths == ["a.dart"]
        assert tree.read("a.dart") == b"plain"
