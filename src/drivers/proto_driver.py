"""Layer driver capability contracts.

This module names the narrow mount-only contract a storage backend must
satisfy, and the wider contract that adds diff, apply, and sizing.
"""

from __future__ import annotations

from pathlib import Path
from typing import BinaryIO, Protocol

from archive.streams import ClosingStream
from core.types import Change


class ProtoDriver(Protocol):
    """Mount operations required from a storage backend.

    ``get`` acquires a reference-counted mount and ``put`` releases one.
    Every successful ``get`` must be matched by exactly one ``put``.
    """

    def get(self, layer_id: str, mount_label: str = "") -> Path: ...

    def put(self, layer_id: str) -> None: ...


class DiffDriver(Protocol):
    """Diff operations layered on a mount-capable driver."""

    def diff(self, layer_id: str, parent: str | None = None) -> ClosingStream: ...

    def changes(self, layer_id: str, parent: str | None = None) -> list[Change]: ...

    def apply_diff(self, layer_id: str, parent: str | None, diff: BinaryIO) -> int: ...

    def diff_size(self, layer_id: str, parent: str | None = None) -> int: ...


class Driver(ProtoDriver, DiffDriver, Protocol):
    """Full driver contract: mounts plus diffs."""
