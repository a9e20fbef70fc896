"""Diff support for drivers that can only mount layers.

This module wraps a mount-only driver and derives diff, apply, and sizing
from plain directory comparison and tar streaming. It is the fallback for
backends with no native diff capability.
"""

from __future__ import annotations

import math
import time
from pathlib import Path
from types import TracebackType
from typing import BinaryIO, Callable, Sequence

from archive.apply_layer import apply_uncompressed_layer
from archive.changes import changes_dirs, changes_size
from archive.id_mapping import IDMappings
from archive.streams import ClosingStream
from archive.tar_stream import export_changes, tar_tree
from core.errors import StrataError
from core.logging_config import get_logger
from core.types import ApplyOptions, Change, IDMap
from drivers.proto_driver import ProtoDriver

_LOGGER = get_logger(__name__)


class NaiveDiffDriver:
    """Adds diff operations to a mount-only driver.

    The wrapped driver is held as a field; ``get`` and ``put`` are forwarded
    to it so the adapter satisfies both the mount-only and the full driver
    contract. Every mount acquired by an operation is released before the
    operation returns, except the layer mount behind a stream returned by
    ``diff``, which is released when that stream is closed.
    """

    def __init__(
        self,
        driver: ProtoDriver,
        uid_maps: Sequence[IDMap] = (),
        gid_maps: Sequence[IDMap] = (),
    ) -> None:
        """Wrap a mount-only driver.

        Args:
            driver: Driver providing reference-counted ``get``/``put``.
            uid_maps: User id ranges between container and host.
            gid_maps: Group id ranges between container and host.
        """
        self._driver = driver
        self._id_mappings = IDMappings.from_maps(uid_maps, gid_maps)

    def __str__(self) -> str:
        return str(self._driver)

    @property
    def driver(self) -> ProtoDriver:
        """Return the wrapped mount-only driver."""
        return self._driver

    def get(self, layer_id: str, mount_label: str = "") -> Path:
        return self._driver.get(layer_id, mount_label)

    def put(self, layer_id: str) -> None:
        self._driver.put(layer_id)

    def diff(self, layer_id: str, parent: str | None = None) -> ClosingStream:
        """Produce an archive of the changes between a layer and its parent.

        Without a parent the archive holds the whole layer. The returned
        stream keeps the layer mounted until it is closed. With a parent,
        closing also waits for the next whole second after this call began:
        archive mtimes have whole-second precision, and a later diff taken in
        the same second would otherwise be indistinguishable by mtime.

        Args:
            layer_id: Layer to export.
            parent: Parent layer, or empty/``None`` for a base layer.

        Returns:
            Readable tar stream that must be closed by the caller.

        Raises:
            StrataError: If a mount, change computation, or export fails.
        """
        start_time = time.time()
        with _MountGuard(self, layer_id) as layer_mount:
            if not parent:
                archive = tar_tree(layer_mount.path)
                return _closing_archive(archive, layer_mount.transfer())

            with _MountGuard(self, parent) as parent_mount:
                changes = changes_dirs(layer_mount.path, parent_mount.path)
            archive = export_changes(layer_mount.path, changes, self._id_mappings)
            return _closing_archive(
                archive,
                layer_mount.transfer(),
                after_release=lambda: _wait_for_next_second(start_time),
            )

    def changes(self, layer_id: str, parent: str | None = None) -> list[Change]:
        """List changes between a layer and its parent.

        Without a parent every path in the layer is reported as added.
        """
        with _MountGuard(self, layer_id) as layer_mount:
            if not parent:
                return changes_dirs(layer_mount.path, None)
            with _MountGuard(self, parent) as parent_mount:
                return changes_dirs(layer_mount.path, parent_mount.path)

    def apply_diff(self, layer_id: str, parent: str | None, diff: BinaryIO) -> int:
        """Extract a diff archive onto a layer.

        Args:
            layer_id: Layer receiving the content.
            parent: Parent layer; recorded for provenance only.
            diff: Readable uncompressed tar stream.

        Returns:
            Bytes written, as reported by extraction.

        Raises:
            StrataError: If the mount or the extraction fails.
        """
        with _MountGuard(self, layer_id) as layer_mount:
            options = ApplyOptions(id_mappings=self._id_mappings)
            started = time.monotonic()
            _LOGGER.debug("untar_started", layer_id=layer_id, parent=parent or None)
            size = apply_uncompressed_layer(layer_mount.path, diff, options)
            _LOGGER.debug(
                "untar_completed",
                layer_id=layer_id,
                seconds=round(time.monotonic() - started, 6),
                size=size,
            )
            return size

    def diff_size(self, layer_id: str, parent: str | None = None) -> int:
        """Return the on-disk size of the changes between a layer and its parent."""
        changes = self.changes(layer_id, parent)
        with _MountGuard(self, layer_id) as layer_mount:
            return changes_size(layer_mount.path, changes)

    def _release(self, layer_id: str) -> None:
        """Release a mount without letting a failure mask the caller's outcome."""
        try:
            self._driver.put(layer_id)
        except (StrataError, OSError) as error:
            _LOGGER.warning("layer_release_failed", layer_id=layer_id, error=str(error))


class _MountGuard:
    """Scoped mount reference with an explicit one-time ownership transfer."""

    def __init__(self, adapter: NaiveDiffDriver, layer_id: str) -> None:
        self._adapter = adapter
        self._layer_id = layer_id
        self._owned = False
        self.path: Path

    def __enter__(self) -> "_MountGuard":
        self.path = Path(self._adapter.driver.get(self._layer_id, ""))
        self._owned = True
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        if self._owned:
            self._owned = False
            self._adapter._release(self._layer_id)

    def transfer(self) -> Callable[[], None]:
        """Hand the release duty to the caller; the guard stops owning it."""
        self._owned = False
        layer_id = self._layer_id
        return lambda: self._adapter._release(layer_id)


def _closing_archive(
    archive: BinaryIO,
    release: Callable[[], None],
    after_release: Callable[[], None] | None = None,
) -> ClosingStream:
    """Tie a layer mount's release to the close of its archive stream."""

    def _close() -> None:
        try:
            archive.close()
        finally:
            release()
            if after_release is not None:
                after_release()

    return ClosingStream(archive, _close)


def _wait_for_next_second(start_time: float) -> None:
    """Sleep until wall-clock time passes the second after ``start_time``."""
    remaining = math.floor(start_time) + 1 - time.time()
    if remaining > 0:
        time.sleep(remaining)
