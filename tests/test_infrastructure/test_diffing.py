"""
Tests for safeapply.infrastructure.diffing
============================================
"""

from safeapply.infrastructure.diffing import DiffStats, diff_stats, unified_diff


class TestUnifiedDiff:
    def test_identical_content_gives_empty_diff(self) -> None:
        assert unified_diff("a.dart", b"same\n", b"same\n") == ""

    def test_modified_file_headers_and_hunks(self) -> None:
        diff = unified_diff("lib/a.dart", b"one\ntwo\n", b"one\n2\n")
        lines = diff.splitlines()
        assert lines[0] == "--- a/lib/a.dart"
        assert lines[1] == "+++ b/lib/a.dart"
        assert "-two" in lines
        assert "+2" in lines

    def test_new_file_diffs_against_dev_null(self) -> None:
        diff = unified_diff("lib/new.dart", None, b"hello\n")
        assert diff.startswith("--- /dev/null\n+++ b/lib/new.dart\n")
        assert "+hello" in diff

    def test_missing_trailing_newline_is_marked(self) -> None:
        diff = unified_diff("a.txt", b"x\n", b"y")
        assert "\\ No newline at end of file\n" in diff
        assert diff.endswith("\n")

    def test_binary_content(self) -> None:
        diff = unified_diff("img.png", b"\x00\x01", b"\x00\x02")
        assert diff == "Binary files a/img.png and b/img.png differ\n"


class TestDiffStats:
    def test_counts(self) -> None:
        diff = unified_diff("a", b"1\n2\n3\n", b"1\nX\n3\nY\n") + unified_diff("b", None, b"n\n")
        assert diff_stats(diff) == DiffStats(files=2, insertions=3, deletions=1)

    def test_empty(self) -> None:
        assert diff_stats("") == DiffStats()
