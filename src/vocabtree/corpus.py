"""Corpus discovery: image files under a root directory."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator

from .errors import PathError

DEFAULT_EXTENSIONS = (".png",)


@dataclass(frozen=True)
class Corpus:
    """Ordered image paths rooted at a directory.

    Attributes:
        root: Directory that was scanned
        paths: Image files, sorted by their POSIX path relative to root
    """

    root: Path
    paths: tuple[Path, ...]

    def __len__(self) -> int:
        return len(self.paths)

    def __iter__(self) -> Iterator[Path]:
        return iter(self.paths)

    def __getitem__(self, index: int) -> Path:
        return self.paths[index]


def scan_corpus(
    root: str | Path,
    extensions: Iterable[str] = DEFAULT_EXTENSIONS,
) -> Corpus:
    """Recursively collect image files under a directory.

    Directories are never part of the corpus. Extensions match
    case-insensitively ('.png' matches 'IMG.PNG'). Order is the
    lexicographic order of the POSIX relative path, which does not
    depend on the filesystem's directory enumeration order.

    Args:
        root: Directory to scan
        extensions: Allowed file extensions, with or without leading dot

    Returns:
        Corpus of matching files

    Raises:
        PathError: If root does not exist, is not a directory, or is unreadable

    Example:
        >>> corpus = scan_corpus("data/images", extensions=(".png", ".jpg"))
        >>> print(f"{len(corpus)} images")
    """
    root = Path(root)

    if not root.exists():
        raise PathError(f"Image directory does not exist: {root}")
    if not root.is_dir():
        raise PathError(f"Image path is not a directory: {root}")
    if not os.access(root, os.R_OK | os.X_OK):
        raise PathError(f"Image directory is not readable: {root}")

    allowed = {ext.lower() if ext.startswith(".") else f".{ext.lower()}" for ext in extensions}

    found: list[tuple[str, Path]] = []
    for dirpath, _dirnames, filenames in os.walk(root):
        for name in filenames:
            path = Path(dirpath) / name
            if path.suffix.lower() not in allowed or path.is_dir():
                continue
            found.append((path.relative_to(root).as_posix(), path))

    found.sort(key=lambda item: item[0])
    return Corpus(root=root, paths=tuple(path for _, path in found))
