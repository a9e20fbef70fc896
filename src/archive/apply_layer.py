"""Layer archive extraction.

This module replays a layer tar onto a directory: whiteout entries remove
paths, opaque markers clear directories, and every written entry has its
owner translated from container to host ids. Entries that would land
outside the destination are rejected.
"""

from __future__ import annotations

import os
import posixpath
import shutil
import tarfile
from pathlib import Path
from typing import BinaryIO

from archive.id_mapping import IDMappings
from core.constants import WHITEOUT_META_PREFIX, WHITEOUT_OPAQUE_DIR, WHITEOUT_PREFIX
from core.errors import StrataExtractionError, StrataIDMappingError
from core.logging_config import get_logger
from core.types import ApplyOptions

_LOGGER = get_logger(__name__)


def apply_uncompressed_layer(
    dest: str | Path,
    stream: BinaryIO,
    options: ApplyOptions | None = None,
) -> int:
    """Apply an uncompressed layer archive onto ``dest``.

    Args:
        dest: Directory receiving the layer content.
        stream: Readable tar stream; it is read to the end but not closed.
        options: Extraction options carrying the id mappings.

    Returns:
        Sum of the archive entry sizes, in bytes.

    Raises:
        StrataExtractionError: If the archive is malformed, escapes ``dest``,
            names an unmappable owner, or cannot be written.
    """
    dest_root = Path(dest)
    if not dest_root.is_dir():
        raise StrataExtractionError(
            f"Cannot apply layer onto {dest_root}: it is not a directory. "
            "Confirm the layer is mounted before applying a diff."
        )
    id_mappings = options.id_mappings if options is not None else None
    extractor = _LayerExtractor(dest_root, id_mappings)
    try:
        with tarfile.open(fileobj=stream, mode="r|") as tar:
            for member in tar:
                extractor.apply_member(tar, member)
            extractor.finish(tar)
    except tarfile.TarError as error:
        raise StrataExtractionError(
            f"Failed to read layer archive for {dest_root}: {error}. "
            "The diff stream is not a valid uncompressed tar."
        ) from error
    except OSError as error:
        raise StrataExtractionError(
            f"Failed to write layer content under {dest_root}: {error}. "
            "Check free space and permissions on the layer directory."
        ) from error
    _LOGGER.debug(
        "layer_archive_applied",
        dest=str(dest_root),
        size=extractor.size,
        entries=len(extractor.unpacked_paths),
    )
    return extractor.size


class _LayerExtractor:
    """Stateful replay of tar members onto a destination directory."""

    def __init__(self, dest_root: Path, id_mappings: IDMappings | None) -> None:
        self._dest_root = dest_root
        self._dest_real = os.path.realpath(dest_root)
        self._id_mappings = id_mappings
        self._directories: list[tarfile.TarInfo] = []
        self.unpacked_paths: set[str] = set()
        self.size = 0

    def apply_member(self, tar: tarfile.TarFile, member: tarfile.TarInfo) -> None:
        self.size += member.size
        name = posixpath.normpath(member.name.lstrip("/"))
        if name == ".":
            return
        if name == ".." or name.startswith("../"):
            raise StrataExtractionError(
                f"Invalid archive entry {member.name!r}: it points outside the layer. "
                "Refusing to apply the diff."
            )
        # AUFS bookkeeping at the layer root is never extracted.
        if name.startswith(WHITEOUT_META_PREFIX) and name != WHITEOUT_OPAQUE_DIR:
            return

        parent_name = posixpath.dirname(name)
        parent_path = self._dest_root / parent_name
        self._check_inside(parent_path, member.name)
        if parent_name and not os.path.lexists(parent_path):
            os.makedirs(parent_path, 0o755)

        base_name = posixpath.basename(name)
        if base_name == WHITEOUT_OPAQUE_DIR:
            self._clear_opaque_directory(parent_path)
            return
        if base_name.startswith(WHITEOUT_PREFIX):
            _remove_all(parent_path / base_name[len(WHITEOUT_PREFIX):])
            return

        target_path = self._dest_root / name
        if os.path.lexists(target_path):
            if not (member.isdir() and target_path.is_dir() and not target_path.is_symlink()):
                _remove_all(target_path)
        self.unpacked_paths.add(str(target_path))

        member.name = name
        self._check_link(member, name)
        self._map_owner(member)
        if member.isdir():
            tar.extract(member, path=self._dest_root, set_attrs=False, numeric_owner=True,
                        filter="fully_trusted")
            self._directories.append(member)
            return
        tar.extract(member, path=self._dest_root, numeric_owner=True, filter="fully_trusted")

    def finish(self, tar: tarfile.TarFile) -> None:
        """Restore directory attributes once their children are written."""
        for member in sorted(self._directories, key=lambda item: item.name, reverse=True):
            directory_path = str(self._dest_root / member.name)
            tar.chown(member, directory_path, numeric_owner=True)
            tar.utime(member, directory_path)
            tar.chmod(member, directory_path)

    def _check_inside(self, path: Path, entry_name: str) -> None:
        if not _is_within(self._dest_real, os.path.realpath(path)):
            raise StrataExtractionError(
                f"Invalid archive entry {entry_name!r}: its parent resolves outside the layer. "
                "Refusing to apply the diff."
            )

    def _check_link(self, member: tarfile.TarInfo, name: str) -> None:
        if member.islnk():
            member.linkname = posixpath.normpath(member.linkname.lstrip("/"))
            # Link names can traverse symlinks already written to the layer.
            link_target = os.path.realpath(self._dest_root / member.linkname)
        elif member.issym():
            link_target = posixpath.normpath(
                posixpath.dirname(posixpath.join(self._dest_real, name)) + "/" + member.linkname
            )
        else:
            return
        if not _is_within(self._dest_real, posixpath.normpath(link_target)):
            raise StrataExtractionError(
                f"Invalid link {member.name!r} -> {member.linkname!r}: the target is outside "
                "the layer. Refusing to apply the diff."
            )

    def _map_owner(self, member: tarfile.TarInfo) -> None:
        if self._id_mappings is None or self._id_mappings.is_empty():
            return
        try:
            member.uid, member.gid = self._id_mappings.to_host(member.uid, member.gid)
        except StrataIDMappingError as error:
            raise StrataExtractionError(
                f"Cannot apply archive entry {member.name!r}: {error}"
            ) from error

    def _clear_opaque_directory(self, directory: Path) -> None:
        """Remove every entry under ``directory`` not written by this layer."""
        pending = [directory]
        while pending:
            current = pending.pop()
            try:
                with os.scandir(current) as entries:
                    children = [(Path(entry.path), entry.is_dir(follow_symlinks=False))
                                for entry in entries]
            except FileNotFoundError:
                continue
            for child_path, is_dir in children:
                if str(child_path) not in self.unpacked_paths:
                    _remove_all(child_path)
                elif is_dir:
                    pending.append(child_path)


def _remove_all(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    elif os.path.lexists(path):
        path.unlink()


def _is_within(root: str, candidate: str) -> bool:
    return candidate == root or candidate.startswith(root.rstrip(os.sep) + os.sep)
