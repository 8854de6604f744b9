"""Utility helpers for working with files."""

from __future__ import annotations

import os
import tempfile
from pathlib import Path


def ensure_parent(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def atomic_write_text(path: Path, text: str, *, encoding: str = "utf-8") -> None:
    """Write ``text`` to ``path`` so readers see either the old or the new file.

    The content goes to a temporary file in the same directory, is flushed to
    disk, then swapped over the target with :func:`os.replace`.
    """
    path = Path(path)
    ensure_parent(path)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding=encoding) as handle:
            handle.write(text)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def remove_file(path: Path) -> bool:
    """Delete ``path`` if present; return whether something was removed."""
    try:
        Path(path).unlink()
    except FileNotFoundError:
        return False
    return True
