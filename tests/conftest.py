"""Pytest configuration for repository test runs."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Callable, Mapping

import pytest


def pytest_sessionstart() -> None:
    """Add src directory to sys.path for test imports."""
    project_root = Path(__file__).resolve().parent.parent
    src_path = project_root / "src"
    if str(src_path) not in sys.path:
        sys.path.insert(0, str(src_path))


TreeLayout = Mapping[str, str | bytes | None]


@pytest.fixture
def write_tree() -> Callable[[Path, TreeLayout], None]:
    """Return a helper that writes files into a directory.

    Keys are slash-separated relative paths. ``None`` values create
    directories; other values become file content.
    """

    def _write(root: Path, layout: TreeLayout) -> None:
        for relative_path, content in layout.items():
            target = root / relative_path
            if content is None:
                target.mkdir(parents=True, exist_ok=True)
                continue
            target.parent.mkdir(parents=True, exist_ok=True)
            payload = content.encode("utf-8") if isinstance(content, str) else content
            target.write_bytes(payload)

    return _write


@pytest.fixture
def read_tree() -> Callable[[Path], dict[str, object]]:
    """Return a helper that snapshots a directory into a comparable dict."""

    def _read(root: Path) -> dict[str, object]:
        snapshot: dict[str, object] = {}
        for path in sorted(root.rglob("*")):
            relative_path = path.relative_to(root).as_posix()
            if path.is_symlink():
                snapshot[relative_path] = ("symlink", str(path.readlink()))
            elif path.is_dir():
                snapshot[relative_path] = ("dir", path.stat().st_mode & 0o7777)
            else:
                snapshot[relative_path] = ("file", path.read_bytes(), path.stat().st_mode & 0o7777)
        return snapshot

    return _read
