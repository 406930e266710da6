"""
safeapply.infrastructure.diffing - Unified Diff Generation
============================================================

Produces standard unified diffs (the format ``git apply`` and ``patch``
consume) for preview files and for the "inspect diff" step of a conflict
review:

    --- a/lib/login.dart
    +++ b/lib/login.dart
    @@ -1,3 +1,4 @@
     import 'package:flutter/material.dart';
    -class Login {}
    +class Login extends StatelessWidget {}

New files diff against ``/dev/null``. Binary content (NUL bytes) yields the
one-line ``Binary files ... differ`` marker instead of hunks.
"""

from __future__ import annotations

import difflib
from dataclasses import dataclass
from typing import Optional

DEV_NULL = "/dev/null"
NO_NEWLINE_MARKER = "\\ No newline at end of file\n"


def _is_binary(content: Optional[bytes]) -> bool:
    return content is not None and b"\0" in content


def _lines(content: Optional[bytes]) -> list[str]:
    if not content:
        return []
    return content.decode("utf-8", errors="replace").splitlines(keepends=True)


def unified_diff(
    path: str,
    old: Optional[bytes],
    new: Optional[bytes],
    context: int = 3,
) -> str:
    """Build a unified diff between two versions of ``path``.

    Args:
        path: Relative path used in the ``a/`` and ``b/`` headers.
        old: Current content, or None when the file does not exist.
        new: Generated content, or None when the file is being removed.
        context: Number of context lines around each hunk.

    Returns:
        The diff text, or an empty string when both sides are identical.
    """
    if old == new:
        return ""

    from_file = f"a/{path}" if old is not None else DEV_NULL
    to_file = f"b/{path}" if new is not None else DEV_NULL

    if _is_binary(old) or _is_binary(new):
        return f"Binary files {from_file} and {to_file} differ\n"

    out: list[str] = []
    for line in difflib.unified_diff(
        _lines(old),
        _lines(new),
        fromfile=from_file,
        tofile=to_file,
        n=context,
    ):
        if line.endswith("\n"):
            out.append(line)
        else:
            out.append(line + "\n")
            out.append(NO_NEWLINE_MARKER)
    return "".join(out)


@dataclass(frozen=True)
class DiffStats:
    """Change counts of a unified diff."""

    files: int = 0
    insertions: int = 0
    deletions: int = 0


def diff_stats(diff_text: str) -> DiffStats:
    """Count files, added lines, and removed lines in a unified diff."""
    files = insertions = deletions = 0
    for line in diff_text.splitlines():
        if line.startswith("+++ "):
            files += 1
        elif line.startswith("--- "):
            continue
        elif line.startswith("+"):
            insertions += 1
        elif line.startswith("-"):
            deletions += 1
        elif line.startswith("Binary files "):
            files += 1
    return DiffStats(files=files, insertions=insertions, deletions=deletions)
