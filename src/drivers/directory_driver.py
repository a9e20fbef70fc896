"""Directory-backed layer driver.

This module stores each layer as a plain directory that starts as a full
copy of its parent. Mounting is reference counting over that directory,
so the driver satisfies the mount-only contract and nothing more.
"""

from __future__ import annotations

import os
import shutil
import threading
from pathlib import Path

from core.errors import StrataAcquireError, StrataDriverError
from core.logging_config import get_logger

_LOGGER = get_logger(__name__)


class DirectoryDriver:
    """Copy-on-create layer driver rooted at a local directory."""

    def __init__(self, root: Path) -> None:
        """Initialize the driver and its layer root.

        Args:
            root: Directory that holds one subdirectory per layer.
        """
        self._root = root
        self._root.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._mount_counts: dict[str, int] = {}

    def __str__(self) -> str:
        return "directory"

    def create(self, layer_id: str, parent: str | None = None) -> Path:
        """Create a layer, copying the parent's content when given.

        Args:
            layer_id: New layer identifier.
            parent: Optional parent layer identifier.

        Returns:
            Layer directory path.

        Raises:
            StrataDriverError: If the layer exists or the parent is missing.
        """
        layer_dir = self._layer_dir(layer_id)
        if layer_dir.exists():
            raise StrataDriverError(
                f"Layer '{layer_id}' already exists at {layer_dir}. "
                "Choose a new layer id or remove the existing layer first."
            )
        if parent:
            parent_dir = self._existing_layer_dir(parent)
            shutil.copytree(parent_dir, layer_dir, symlinks=True)
            if os.geteuid() == 0:
                _copy_ownership(parent_dir, layer_dir)
        else:
            layer_dir.mkdir(mode=0o755)
        _LOGGER.info("layer_created", layer_id=layer_id, parent=parent or None)
        return layer_dir

    def remove(self, layer_id: str) -> None:
        """Remove a layer directory.

        Raises:
            StrataDriverError: If the layer is missing or still mounted.
        """
        layer_dir = self._existing_layer_dir(layer_id)
        with self._lock:
            if self._mount_counts.get(layer_id):
                raise StrataDriverError(
                    f"Layer '{layer_id}' is still mounted and cannot be removed. "
                    "Release every mount before removing the layer."
                )
        shutil.rmtree(layer_dir)
        _LOGGER.info("layer_removed", layer_id=layer_id)

    def exists(self, layer_id: str) -> bool:
        return self._layer_dir(layer_id).is_dir()

    def get(self, layer_id: str, mount_label: str = "") -> Path:
        """Acquire a mount reference on a layer.

        Args:
            layer_id: Layer identifier.
            mount_label: Security label; directories carry none.

        Returns:
            Mounted layer directory.

        Raises:
            StrataAcquireError: If the layer does not exist.
        """
        layer_dir = self._layer_dir(layer_id)
        if not layer_dir.is_dir():
            raise StrataAcquireError(
                f"Cannot mount layer '{layer_id}': no layer directory at {layer_dir}. "
                "Create the layer before mounting it."
            )
        with self._lock:
            self._mount_counts[layer_id] = self._mount_counts.get(layer_id, 0) + 1
        return layer_dir

    def put(self, layer_id: str) -> None:
        """Release one mount reference on a layer.

        Raises:
            StrataDriverError: If the layer holds no mount reference.
        """
        with self._lock:
            count = self._mount_counts.get(layer_id, 0)
            if count == 0:
                raise StrataDriverError(
                    f"Layer '{layer_id}' is not mounted; put without a matching get."
                )
            if count == 1:
                del self._mount_counts[layer_id]
            else:
                self._mount_counts[layer_id] = count - 1

    def active_mounts(self, layer_id: str) -> int:
        """Return the number of outstanding mount references for a layer."""
        with self._lock:
            return self._mount_counts.get(layer_id, 0)

    def _layer_dir(self, layer_id: str) -> Path:
        if not layer_id or "/" in layer_id or layer_id in (".", ".."):
            raise StrataDriverError(
                f"Invalid layer id '{layer_id}': ids must be non-empty path-free names."
            )
        return self._root / layer_id

    def _existing_layer_dir(self, layer_id: str) -> Path:
        layer_dir = self._layer_dir(layer_id)
        if not layer_dir.is_dir():
            raise StrataDriverError(
                f"Layer '{layer_id}' does not exist under {self._root}. "
                "Create it before referring to it."
            )
        return layer_dir


def _copy_ownership(source_root: Path, target_root: Path) -> None:
    """Give every copied entry the owner of its source entry."""
    for source_dir, dir_names, file_names in os.walk(source_root):
        relative_dir = Path(source_dir).relative_to(source_root)
        for name in (".", *dir_names, *file_names):
            source_path = Path(source_dir) / name
            source_stat = source_path.lstat()
            os.lchown(target_root / relative_dir / name, source_stat.st_uid, source_stat.st_gid)
