"""Unit tests for layer archive extraction."""

from __future__ import annotations

import io
import os
import tarfile

import pytest

from archive.apply_layer import apply_uncompressed_layer
from archive.id_mapping import IDMappings
from core.errors import StrataExtractionError
from core.types import ApplyOptions, IDMap


def _archive(*entries: tuple[str, bytes | None]) -> io.BytesIO:
    """Build a tar with files (bytes) and directories (None)."""
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w", format=tarfile.PAX_FORMAT) as tar:
        for name, content in entries:
            info = tarfile.TarInfo(name)
            info.uid = os.getuid()
            info.gid = os.getgid()
            info.mtime = 1_700_000_000
            if content is None:
                info.type = tarfile.DIRTYPE
                info.mode = 0o755
                tar.addfile(info)
                continue
            info.mode = 0o644
            info.size = len(content)
            tar.addfile(info, io.BytesIO(content))
    buffer.seek(0)
    return buffer


def _symlink_archive(name: str, target: str) -> io.BytesIO:
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w") as tar:
        info = tarfile.TarInfo(name)
        info.type = tarfile.SYMTYPE
        info.linkname = target
        tar.addfile(info)
    buffer.seek(0)
    return buffer


def test_apply_writes_files_and_returns_entry_bytes(tmp_path) -> None:
    """Files should be written and their sizes summed."""
    archive = _archive(("d", None), ("d/f", b"abc"), ("x", b"hi"))

    size = apply_uncompressed_layer(tmp_path, archive)

    assert size == 5
    assert (tmp_path / "d" / "f").read_bytes() == b"abc"
    assert (tmp_path / "x").read_bytes() == b"hi"


def test_apply_restores_directory_mtime_after_children(tmp_path) -> None:
    """Directory timestamps should survive the creation of their children."""
    archive = _archive(("d", None), ("d/f", b"abc"))

    apply_uncompressed_layer(tmp_path, archive)

    assert int((tmp_path / "d").stat().st_mtime) == 1_700_000_000


def test_apply_whiteout_removes_existing_path(tmp_path, write_tree) -> None:
    """A whiteout entry should delete the named path and not be extracted."""
    write_tree(tmp_path, {"d/gone": "g", "d/keep": "k"})
    archive = _archive(("d/.wh.gone", b""))

    apply_uncompressed_layer(tmp_path, archive)

    assert not (tmp_path / "d" / "gone").exists()
    assert not (tmp_path / "d" / ".wh.gone").exists()
    assert (tmp_path / "d" / "keep").exists()


def test_apply_opaque_marker_clears_directory(tmp_path, write_tree) -> None:
    """An opaque directory should keep only entries from this layer."""
    write_tree(tmp_path, {"d/old": "o", "d/sub/older": "o"})
    archive = _archive(("d", None), ("d/new", b"n"), ("d/.wh..wh..opq", b""))

    apply_uncompressed_layer(tmp_path, archive)

    assert sorted(path.name for path in (tmp_path / "d").iterdir()) == ["new"]


def test_apply_replaces_file_with_directory(tmp_path, write_tree) -> None:
    """An existing non-directory should be replaced by a directory entry."""
    write_tree(tmp_path, {"p": "file"})
    archive = _archive(("p", None), ("p/child", b"c"))

    apply_uncompressed_layer(tmp_path, archive)

    assert (tmp_path / "p" / "child").read_bytes() == b"c"


def test_apply_creates_missing_parent_directories(tmp_path) -> None:
    """Entries whose parents are absent from the archive should still land."""
    archive = _archive(("a/b/c", b"deep"))

    apply_uncompressed_layer(tmp_path, archive)

    assert (tmp_path / "a" / "b" / "c").read_bytes() == b"deep"


def test_apply_rejects_entries_outside_destination(tmp_path) -> None:
    """A path climbing out of the layer should be refused."""
    dest = tmp_path / "dest"
    dest.mkdir()
    archive = _archive(("../escape", b"x"))

    with pytest.raises(StrataExtractionError, match="outside the layer"):
        apply_uncompressed_layer(dest, archive)

    assert not (tmp_path / "escape").exists()


def test_apply_rejects_symlink_escaping_destination(tmp_path) -> None:
    """A relative symlink pointing above the layer root should be refused."""
    dest = tmp_path / "dest"
    dest.mkdir()

    with pytest.raises(StrataExtractionError, match="outside"):
        apply_uncompressed_layer(dest, _symlink_archive("link", "../../etc/passwd"))


def test_apply_allows_absolute_symlink_inside_layer(tmp_path) -> None:
    """Absolute link targets are interpreted relative to the layer root."""
    apply_uncompressed_layer(tmp_path, _symlink_archive("sh", "/bin/busybox"))

    assert os.readlink(tmp_path / "sh") == "/bin/busybox"


def test_apply_rejects_unmappable_owner(tmp_path) -> None:
    """An owner outside the mapping table should fail extraction."""
    if os.getuid() == 5000:
        pytest.skip("test uid collides with the mapped range")
    archive = _archive(("x", b"hi"))
    mappings = IDMappings.from_maps([IDMap(container_id=5000, host_id=5000, size=1)], [])

    with pytest.raises(StrataExtractionError, match="cannot be mapped"):
        apply_uncompressed_layer(tmp_path, archive, ApplyOptions(id_mappings=mappings))


def test_apply_raises_for_malformed_archive(tmp_path) -> None:
    """Bytes that are not a tar should fail extraction."""
    with pytest.raises(StrataExtractionError):
        apply_uncompressed_layer(tmp_path, io.BytesIO(b"not a tar archive" * 64))


def _entries_archive(*members: tuple[tarfile.TarInfo, bytes]) -> io.BytesIO:
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w") as tar:
        for info, content in members:
            info.size = len(content)
            tar.addfile(info, io.BytesIO(content) if content else None)
    buffer.seek(0)
    return buffer


def _link_info(name: str, link_type: bytes, target: str) -> tarfile.TarInfo:
    info = tarfile.TarInfo(name)
    info.type = link_type
    info.linkname = target
    info.mode = 0o777
    return info


def test_apply_rejects_hard_link_through_symlink(tmp_path) -> None:
    """A hard link reached through a symlink to the host should be refused."""
    dest = tmp_path / "dest"
    dest.mkdir()
    outside = tmp_path / "outside"
    outside.mkdir()
    secret = outside / "secret"
    secret.write_text("host", encoding="utf-8")
    secret.chmod(0o600)
    archive = _entries_archive(
        (_link_info("evil", tarfile.SYMTYPE, str(outside)), b""),
        (_link_info("h", tarfile.LNKTYPE, "evil/secret"), b""),
    )

    with pytest.raises(StrataExtractionError, match="outside"):
        apply_uncompressed_layer(dest, archive)

    assert secret.stat().st_mode & 0o777 == 0o600
    assert secret.stat().st_nlink == 1
    assert not os.path.lexists(dest / "h")


def test_apply_creates_nothing_through_escaping_parent(tmp_path) -> None:
    """Missing parents behind a symlink to the host should not be created."""
    dest = tmp_path / "dest"
    dest.mkdir()
    outside = tmp_path / "outside"
    outside.mkdir()
    file_info = tarfile.TarInfo("evil/sub/f")
    file_info.mode = 0o644
    archive = _entries_archive(
        (_link_info("evil", tarfile.SYMTYPE, str(outside)), b""),
        (file_info, b"data"),
    )

    with pytest.raises(StrataExtractionError, match="outside"):
        apply_uncompressed_layer(dest, archive)

    assert os.listdir(outside) == []
