"""Change detection between two layer trees.

This module walks a layer directory and its parent directory, classifies
every differing path as added, modified, or deleted, and sizes the
resulting change set on disk.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import os
import stat
from pathlib import Path

from core.errors import StrataChangesError, StrataSizingError
from core.logging_config import get_logger
from core.types import Change

_LOGGER = get_logger(__name__)
_NANOSECONDS_PER_SECOND = 1_000_000_000


@dataclass
class _FileInfo:
    """One node of a collected directory tree."""

    path: str
    parent: _FileInfo | None
    stat_result: os.stat_result | None
    children: dict[str, _FileInfo] = field(default_factory=dict)
    added: bool = False

    def is_dir(self) -> bool:
        if self.parent is None:
            return True
        return self.stat_result is not None and stat.S_ISDIR(self.stat_result.st_mode)


def changes_dirs(new_dir: str | Path, old_dir: str | Path | None) -> list[Change]:
    """Compute the changes that turn ``old_dir`` into ``new_dir``.

    Args:
        new_dir: Directory holding the layer content.
        old_dir: Directory holding the parent content; empty or ``None``
            compares against an empty tree, so every path is an add.

    Returns:
        Ordered change records. A directory with changes beneath it is listed
        as modified ahead of those changes; the root is never listed.

    Raises:
        StrataChangesError: If either tree cannot be walked.
    """
    new_root = _collect_tree(Path(new_dir))
    if old_dir:
        old_root = _collect_tree(Path(old_dir))
    else:
        old_root = _FileInfo(path="/", parent=None, stat_result=None)
    changes: list[Change] = []
    _add_changes(new_root, old_root, changes)
    return changes


def changes_size(new_dir: str | Path, changes: list[Change]) -> int:
    """Sum the on-disk size of added and modified paths.

    Directories and deletes contribute nothing, and an inode with several
    names is counted once.

    Args:
        new_dir: Directory holding the layer content.
        changes: Change records relative to ``new_dir``.

    Returns:
        Size in bytes.

    Raises:
        StrataSizingError: If a present path cannot be inspected.
    """
    root = Path(new_dir)
    seen_inodes: set[tuple[int, int]] = set()
    size = 0
    for change in changes:
        if change.kind == "delete":
            continue
        file_path = root / change.path.lstrip("/")
        try:
            stat_result = file_path.lstat()
        except FileNotFoundError:
            _LOGGER.warning("change_size_path_missing", path=str(file_path))
            continue
        except OSError as error:
            raise StrataSizingError(
                f"Failed to stat {file_path} while sizing layer changes: {error}. "
                "Check layer directory permissions."
            ) from error
        if stat.S_ISDIR(stat_result.st_mode):
            continue
        if stat_result.st_nlink > 1:
            inode_key = (stat_result.st_dev, stat_result.st_ino)
            if inode_key in seen_inodes:
                continue
            seen_inodes.add(inode_key)
        size += stat_result.st_size
    return size


def _collect_tree(root_dir: Path) -> _FileInfo:
    """Collect lstat metadata for every entry below a directory.

    Args:
        root_dir: Tree root.

    Returns:
        Root node of the collected tree.

    Raises:
        StrataChangesError: If the tree cannot be read.
    """
    try:
        root_stat = root_dir.lstat()
    except OSError as error:
        raise StrataChangesError(
            f"Failed to read layer tree at {root_dir}: {error}. "
            "Confirm the layer is mounted before computing changes."
        ) from error
    root = _FileInfo(path="/", parent=None, stat_result=root_stat)
    _collect_children(root_dir, root)
    return root


def _collect_children(directory: Path, node: _FileInfo) -> None:
    try:
        with os.scandir(directory) as entries:
            scanned = sorted(
                ((entry.name, entry.stat(follow_symlinks=False)) for entry in entries),
                key=lambda item: item[0],
            )
    except OSError as error:
        raise StrataChangesError(
            f"Failed to list {directory} while computing changes: {error}. "
            "Check layer directory permissions."
        ) from error
    for name, stat_result in scanned:
        child_path = f"/{name}" if node.parent is None else f"{node.path}/{name}"
        child = _FileInfo(path=child_path, parent=node, stat_result=stat_result)
        node.children[name] = child
        if stat.S_ISDIR(stat_result.st_mode):
            _collect_children(directory / name, child)


def _add_changes(info: _FileInfo, old_info: _FileInfo | None, changes: list[Change]) -> None:
    """Append changes for ``info`` and its subtree compared with ``old_info``."""
    size_at_entry = len(changes)
    if old_info is None:
        changes.append(Change(path=info.path, kind="add"))
        info.added = True

    # Old children only matter when the new entry is still a directory.
    old_children: dict[str, _FileInfo] = {}
    if old_info is not None and info.is_dir():
        old_children = dict(old_info.children)

    for name, new_child in info.children.items():
        old_child = old_children.pop(name, None)
        if old_child is not None and _stat_different(old_child, new_child):
            changes.append(Change(path=new_child.path, kind="modify"))
            new_child.added = True
        _add_changes(new_child, old_child, changes)

    for name in sorted(old_children):
        changes.append(Change(path=old_children[name].path, kind="delete"))

    if len(changes) > size_at_entry and info.is_dir() and not info.added and info.parent is not None:
        changes.insert(size_at_entry, Change(path=info.path, kind="modify"))


def _stat_different(old_info: _FileInfo, new_info: _FileInfo) -> bool:
    old_stat = old_info.stat_result
    new_stat = new_info.stat_result
    if old_stat is None or new_stat is None:
        return old_stat is not new_stat
    if (
        old_stat.st_mode != new_stat.st_mode
        or old_stat.st_uid != new_stat.st_uid
        or old_stat.st_gid != new_stat.st_gid
        or old_stat.st_rdev != new_stat.st_rdev
    ):
        return True
    # Directory size and mtime move with every child update.
    if stat.S_ISDIR(old_stat.st_mode):
        return False
    return old_stat.st_size != new_stat.st_size or not _same_fs_time(
        old_stat.st_mtime_ns, new_stat.st_mtime_ns
    )


def _same_fs_time(old_mtime_ns: int, new_mtime_ns: int) -> bool:
    """Compare mtimes, treating a zero sub-second part as unknown precision."""
    old_seconds, old_nanos = divmod(old_mtime_ns, _NANOSECONDS_PER_SECOND)
    new_seconds, new_nanos = divmod(new_mtime_ns, _NANOSECONDS_PER_SECOND)
    return old_seconds == new_seconds and (
        old_nanos == new_nanos or old_nanos == 0 or new_nanos == 0
    )
