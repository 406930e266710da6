"""
safeapply.infrastructure.file_tree - Ordered File Set Abstraction
===================================================================

A FileTree is the single enumeration of "which files, with which bytes" that
an operation works on. The ApplyEngine builds one per execute() call and
hands the SAME tree to diff generation, conflict checking, backup planning,
and writing, so all stages agree on exactly the same file set.

    artifacts/features/login/files/         FileTree
        lib/login.dart          ──→   [("lib/login.dart", b"..."),
        lib/widgets/form.dart            ("lib/widgets/form.dart", b"..."),
        pubspec.yaml                     ("pubspec.yaml", b"...")]

Contents are read eagerly when the tree is built. A tree is a snapshot: later
changes on disk do not leak into an operation that already holds one.
"""

from __future__ import annotations

import gzip
from pathlib import Path
from typing import Iterable, Iterator, Mapping

from safeapply.core.models import GeneratedFile, normalize_relative_path


COMPRESSED_SUFFIX = ".gz"


class FileTree:
    """Ordered mapping of relative POSIX paths to file contents.

    Paths are kept sorted so every consumer iterates in the same order.

    Example:
        >>> tree = FileTree({"lib/a.dart": b"A", "pubspec.yaml": b"name: x"})
        >>> tree.paths
        ['lib/a.dart', 'pubspec.yaml']
        >>> tree.top_level_subtrees()
        ['lib', 'pubspec.yaml']
    """

    def __init__(self, files: Mapping[str, bytes] | None = None) -> None:
        normalized: dict[str, bytes] = {}
        for path, content in (files or {}).items():
            normalized[normalize_relative_path(path)] = bytes(content)
        self._files = dict(sorted(normalized.items()))

    # -------------------------------------------------------------------------
    # Construction
    # -------------------------------------------------------------------------
    @classmethod
    def from_directory(cls, root: Path, compressed: bool = False) -> "FileTree":
        """Build a tree from every regular file below ``root``.

        Args:
            root: Directory to enumerate.
            compressed: Files were stored gzip-compressed with a ``.gz``
                suffix; strip the suffix and decompress.

        Returns:
            The tree. An existing but empty directory yields an empty tree.

        Raises:
            FileNotFoundError: If ``root`` does not exist. Callers decide
                whether that means "nothing found" or an error.
            OSError: If a file cannot be read.
        """
        root = Path(root)
        if not root.is_dir():
            raise FileNotFoundError(f"Directory not found: {root}")

        files: dict[str, bytes] = {}
        for path in sorted(root.rglob("*")):
            if not path.is_file():
                continue
            relative = path.relative_to(root).as_posix()
            content = path.read_bytes()
            if compressed and relative.endswith(COMPRESSED_SUFFIX):
                relative = relative[: -len(COMPRESSED_SUFFIX)]
                content = gzip.decompress(content)
            files[relative] = content
        return cls(files)

    @classmethod
    def from_generated_files(cls, files: Iterable[GeneratedFile]) -> "FileTree":
        """Build a tree from in-memory generated files."""
        return cls({f.relative_path: f.content for f in files})

    # -------------------------------------------------------------------------
    # Access
    # -------------------------------------------------------------------------
    @property
    def paths(self) -> list[str]:
        return list(self._files)

    def read(self, path: str) -> bytes:
        """Return the content for ``path``.

        Raises:
            KeyError: If the path is not part of the tree.
        """
        return self._files[normalize_relative_path(path)]

    def __contains__(self, path: object) -> bool:
        if not isinstance(path, str):
            return False
        try:
            return normalize_relative_path(path) in self._files
        except ValueError:
            return False

    def __iter__(self) -> Iterator[tuple[str, bytes]]:
        return iter(self._files.items())

    def __len__(self) -> int:
        return len(self._files)

    def __bool__(self) -> bool:
        return bool(self._files)

    def __repr__(self) -> str:
        return f"FileTree(files={len(self._files)})"

    # -------------------------------------------------------------------------
    # Derived views
    # -------------------------------------------------------------------------
    def top_level_subtrees(self) -> list[str]:
        """First path component of every file, deduplicated and sorted.

        These are the subtrees a write of this tree can touch, and therefore
        exactly what a backup has to capture.
        """
        return sorted({path.split("/", 1)[0] for path in self._files})

    def subset(self, paths: Iterable[str]) -> "FileTree":
        """A new tree restricted to ``paths``."""
        wanted = {normalize_relative_path(p) for p in paths}
        return FileTree({p: c for p, c in self._files.items() if p in wanted})

    def to_generated_files(self) -> list[GeneratedFile]:
        return [
            GeneratedFile(relative_path=path, content=content)
            for path, content in self._files.items()
        ]
