"""Shared typed models.

This module defines immutable data models used by the archive engine,
layer drivers, and the diff adapter to keep interfaces explicit and stable.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Literal

if TYPE_CHECKING:
    from archive.id_mapping import IDMappings

ChangeKind = Literal["add", "modify", "delete"]

_CHANGE_KIND_CODES: dict[str, str] = {"add": "A", "modify": "C", "delete": "D"}


@dataclass(frozen=True)
class IDMap:
    """One contiguous range of an id mapping table.

    Attributes:
        container_id: First id of the range as seen inside the layer.
        host_id: First id of the range as seen on the host.
        size: Number of consecutive ids in the range.
    """

    container_id: int
    host_id: int
    size: int


@dataclass(frozen=True)
class Change:
    """One filesystem change between a layer and its parent.

    Attributes:
        path: Layer-absolute path with a leading slash.
        kind: Whether the path was added, modified, or deleted.
    """

    path: str
    kind: ChangeKind

    def __str__(self) -> str:
        return f"{_CHANGE_KIND_CODES[self.kind]} {self.path}"


@dataclass(frozen=True)
class ApplyOptions:
    """Options for applying a layer archive onto a directory.

    Attributes:
        id_mappings: Ownership translation used for every extracted entry.
            ``None`` means identity.
    """

    id_mappings: IDMappings | None = field(default=None)
