"""Numeric ownership translation between container and host id spaces.

This module applies ordered uid/gid range tables to owner pairs.
Empty tables translate every id to itself.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from core.errors import StrataIDMappingError
from core.types import IDMap


@dataclass(frozen=True)
class IDMappings:
    """Paired uid and gid mapping tables.

    Attributes:
        uid_maps: Ordered user id ranges.
        gid_maps: Ordered group id ranges.
    """

    uid_maps: tuple[IDMap, ...] = ()
    gid_maps: tuple[IDMap, ...] = ()

    @classmethod
    def from_maps(cls, uid_maps: Sequence[IDMap], gid_maps: Sequence[IDMap]) -> "IDMappings":
        """Build mappings from any uid/gid sequences."""
        return cls(uid_maps=tuple(uid_maps), gid_maps=tuple(gid_maps))

    def is_empty(self) -> bool:
        """Return whether both tables are empty."""
        return not self.uid_maps and not self.gid_maps

    def to_host(self, uid: int, gid: int) -> tuple[int, int]:
        """Translate a container owner pair to host ids.

        Args:
            uid: Container user id.
            gid: Container group id.

        Returns:
            Host ``(uid, gid)`` pair.

        Raises:
            StrataIDMappingError: If a non-empty table does not cover an id.
        """
        host_uid = _translate(uid, self.uid_maps, to_host=True, kind="uid")
        host_gid = _translate(gid, self.gid_maps, to_host=True, kind="gid")
        return host_uid, host_gid

    def to_container(self, uid: int, gid: int) -> tuple[int, int]:
        """Translate a host owner pair to container ids.

        Args:
            uid: Host user id.
            gid: Host group id.

        Returns:
            Container ``(uid, gid)`` pair.

        Raises:
            StrataIDMappingError: If a non-empty table does not cover an id.
        """
        container_uid = _translate(uid, self.uid_maps, to_host=False, kind="uid")
        container_gid = _translate(gid, self.gid_maps, to_host=False, kind="gid")
        return container_uid, container_gid


def _translate(value: int, id_maps: tuple[IDMap, ...], to_host: bool, kind: str) -> int:
    """Translate one id through a mapping table.

    Args:
        value: Id to translate.
        id_maps: Ordered ranges; the first covering range wins.
        to_host: Direction of translation.
        kind: ``uid`` or ``gid`` for error messages.

    Returns:
        Translated id.

    Raises:
        StrataIDMappingError: If no range covers the id.
    """
    if not id_maps:
        return value
    for id_map in id_maps:
        source_start = id_map.container_id if to_host else id_map.host_id
        target_start = id_map.host_id if to_host else id_map.container_id
        if source_start <= value < source_start + id_map.size:
            return target_start + (value - source_start)
    source_space, target_space = ("container", "host") if to_host else ("host", "container")
    raise StrataIDMappingError(
        f"{source_space.capitalize()} {kind} {value} cannot be mapped to a {target_space} {kind}. "
        f"Extend the {kind} mapping table to cover it."
    )
