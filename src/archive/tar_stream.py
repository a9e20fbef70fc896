"""Layer archive producers.

This module streams a whole layer tree, or only the paths named by a change
set, as an uncompressed PAX tar. Deleted paths are written as whiteout
entries so the archive can be replayed onto a copy of the parent.
"""

from __future__ import annotations

import os
import posixpath
import stat
import tarfile
import time
from pathlib import Path
from typing import BinaryIO, Iterator

from archive.id_mapping import IDMappings
from archive.streams import PipeArchiveReader
from core.constants import WHITEOUT_PREFIX
from core.errors import StrataExportError, StrataIDMappingError
from core.logging_config import get_logger
from core.types import Change

_LOGGER = get_logger(__name__)


def tar_tree(src_dir: str | Path) -> PipeArchiveReader:
    """Stream every entry below ``src_dir`` as a tar archive.

    Owners are written as found on disk. The root directory itself is not
    part of the archive.

    Args:
        src_dir: Directory to archive.

    Returns:
        Readable archive stream; the caller must close it.

    Raises:
        StrataExportError: If ``src_dir`` is not a readable directory.
    """
    root = _require_directory(src_dir)

    def _produce(writer: BinaryIO) -> None:
        with tarfile.open(fileobj=writer, mode="w|", format=tarfile.PAX_FORMAT) as tar:
            appender = _TarAppender(tar, id_mappings=None)
            for relative_path in _walk_tree(root):
                appender.add_entry(root / relative_path, relative_path)

    return PipeArchiveReader(_produce, name=f"tree:{root}")


def export_changes(
    src_dir: str | Path,
    changes: list[Change],
    id_mappings: IDMappings | None = None,
) -> PipeArchiveReader:
    """Stream an archive restricted to the given changes.

    Deletes become zero-length ``.wh.<name>`` entries. Other changes are
    archived from ``src_dir`` with owners translated from host to container
    ids. Paths that disappear or cannot be mapped while the archive is being
    written are skipped, since a live layer may still be changing.

    Args:
        src_dir: Directory holding the layer content.
        changes: Changes to export.
        id_mappings: Ownership translation; ``None`` keeps owners as found.

    Returns:
        Readable archive stream; the caller must close it.

    Raises:
        StrataExportError: If ``src_dir`` is not a readable directory.
    """
    root = _require_directory(src_dir)
    ordered_changes = sorted(changes, key=lambda change: change.path)

    def _produce(writer: BinaryIO) -> None:
        with tarfile.open(fileobj=writer, mode="w|", format=tarfile.PAX_FORMAT) as tar:
            appender = _TarAppender(tar, id_mappings=id_mappings)
            for change in ordered_changes:
                if change.kind == "delete":
                    tar.addfile(_whiteout_info(change.path))
                    continue
                relative_path = change.path.lstrip("/")
                try:
                    appender.add_entry(root / relative_path, relative_path)
                except (FileNotFoundError, StrataIDMappingError) as error:
                    _LOGGER.debug("export_entry_skipped", path=change.path, error=str(error))

    return PipeArchiveReader(_produce, name=f"changes:{root}")


class _TarAppender:
    """Adds filesystem entries to a tar, tracking hard links by inode."""

    def __init__(self, tar: tarfile.TarFile, id_mappings: IDMappings | None) -> None:
        self._tar = tar
        self._id_mappings = id_mappings
        self._seen_inodes: dict[tuple[int, int], str] = {}

    def add_entry(self, source_path: Path, archive_name: str) -> None:
        stat_result = source_path.lstat()
        mode = stat_result.st_mode
        if stat.S_ISSOCK(mode):
            _LOGGER.debug("archive_socket_skipped", path=str(source_path))
            return
        info = tarfile.TarInfo(archive_name)
        info.mode = stat.S_IMODE(mode)
        # Archive timestamps carry whole seconds only.
        info.mtime = int(stat_result.st_mtime)
        info.uid, info.gid = self._owner(stat_result)
        info.uname = ""
        info.gname = ""

        if stat.S_ISREG(mode):
            if stat_result.st_nlink > 1:
                inode_key = (stat_result.st_dev, stat_result.st_ino)
                link_target = self._seen_inodes.get(inode_key)
                if link_target is not None:
                    info.type = tarfile.LNKTYPE
                    info.linkname = link_target
                    self._tar.addfile(info)
                    return
                self._seen_inodes[inode_key] = archive_name
            info.type = tarfile.REGTYPE
            info.size = stat_result.st_size
            with source_path.open("rb") as source_file:
                self._tar.addfile(info, source_file)
            return

        if stat.S_ISDIR(mode):
            info.type = tarfile.DIRTYPE
        elif stat.S_ISLNK(mode):
            info.type = tarfile.SYMTYPE
            info.linkname = os.readlink(source_path)
        elif stat.S_ISCHR(mode) or stat.S_ISBLK(mode):
            info.type = tarfile.CHRTYPE if stat.S_ISCHR(mode) else tarfile.BLKTYPE
            info.devmajor = os.major(stat_result.st_rdev)
            info.devminor = os.minor(stat_result.st_rdev)
        elif stat.S_ISFIFO(mode):
            info.type = tarfile.FIFOTYPE
        else:
            _LOGGER.debug("archive_entry_unsupported", path=str(source_path), mode=mode)
            return
        self._tar.addfile(info)

    def _owner(self, stat_result: os.stat_result) -> tuple[int, int]:
        if self._id_mappings is None or self._id_mappings.is_empty():
            return stat_result.st_uid, stat_result.st_gid
        return self._id_mappings.to_container(stat_result.st_uid, stat_result.st_gid)


def _whiteout_info(deleted_path: str) -> tarfile.TarInfo:
    directory = posixpath.dirname(deleted_path)
    base_name = posixpath.basename(deleted_path)
    info = tarfile.TarInfo(posixpath.join(directory, WHITEOUT_PREFIX + base_name).lstrip("/"))
    info.size = 0
    info.mode = 0
    info.mtime = int(time.time())
    return info


def _walk_tree(root: Path) -> Iterator[str]:
    """Yield slash-separated relative paths below ``root``, depth first in lexical order."""
    pending = list(reversed(_scan_directory(root, "")))
    while pending:
        relative_path, is_dir = pending.pop()
        yield relative_path
        if is_dir:
            pending.extend(reversed(_scan_directory(root / relative_path, relative_path)))


def _scan_directory(directory: Path, relative_dir: str) -> list[tuple[str, bool]]:
    with os.scandir(directory) as entries:
        names = sorted((entry.name, entry.is_dir(follow_symlinks=False)) for entry in entries)
    return [
        (f"{relative_dir}/{name}" if relative_dir else name, is_dir) for name, is_dir in names
    ]


def _require_directory(src_dir: str | Path) -> Path:
    root = Path(src_dir)
    if not root.is_dir():
        raise StrataExportError(
            f"Cannot archive {root}: it is not a directory. "
            "Confirm the layer is mounted before exporting it."
        )
    return root
