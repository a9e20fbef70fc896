"""Runtime configuration model for Strata.

This module owns all environment variable parsing and validation.
Other modules consume a typed config object instead of raw env reads.
"""

from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path

from core.constants import (
    DEFAULT_DATA_ROOT,
    ID_MAP_ENTRY_SEPARATOR,
    ID_MAP_FIELD_SEPARATOR,
)
from core.errors import StrataConfigError
from core.types import IDMap


@dataclass(frozen=True)
class StrataConfig:
    """Validated runtime configuration.

    Attributes:
        data_root: Local root directory holding layer directories.
        uid_maps: Ordered user id ranges translating container to host ids.
        gid_maps: Ordered group id ranges translating container to host ids.
    """

    data_root: Path
    uid_maps: tuple[IDMap, ...] = ()
    gid_maps: tuple[IDMap, ...] = ()

    @classmethod
    def from_env(cls) -> "StrataConfig":
        """Build config from process environment variables.

        Returns:
            A validated config object.

        Raises:
            StrataConfigError: If environment values are invalid.
        """
        data_root_value = os.getenv("STRATA_DATA_ROOT", str(DEFAULT_DATA_ROOT))
        uid_maps = parse_id_maps(os.getenv("STRATA_UID_MAPS", ""), "STRATA_UID_MAPS")
        gid_maps = parse_id_maps(os.getenv("STRATA_GID_MAPS", ""), "STRATA_GID_MAPS")
        return cls(
            data_root=Path(data_root_value).expanduser().resolve(),
            uid_maps=uid_maps,
            gid_maps=gid_maps,
        )


def parse_id_maps(raw_value: str, source_name: str = "id map") -> tuple[IDMap, ...]:
    """Parse an id mapping table from its textual form.

    The accepted form is ``container:host:size`` entries separated by commas,
    for example ``0:100000:65536``. An empty value yields an empty table.

    Args:
        raw_value: Raw mapping text.
        source_name: Name used in error messages, usually the env variable.

    Returns:
        Ordered id mapping table.

    Raises:
        StrataConfigError: If an entry is malformed or has a non-positive size.
    """
    id_maps: list[IDMap] = []
    for entry in raw_value.split(ID_MAP_ENTRY_SEPARATOR):
        entry = entry.strip()
        if not entry:
            continue
        fields = entry.split(ID_MAP_FIELD_SEPARATOR)
        if len(fields) != 3:
            raise StrataConfigError(
                f"Invalid {source_name} entry '{entry}': expected container:host:size. "
                "Use a value such as 0:100000:65536."
            )
        try:
            container_id, host_id, size = (int(field) for field in fields)
        except ValueError as error:
            raise StrataConfigError(
                f"Invalid {source_name} entry '{entry}': fields must be integers. "
                "Use a value such as 0:100000:65536."
            ) from error
        if container_id < 0 or host_id < 0 or size <= 0:
            raise StrataConfigError(
                f"Invalid {source_name} entry '{entry}': ids must be non-negative "
                "and size must be positive."
            )
        id_maps.append(IDMap(container_id=container_id, host_id=host_id, size=size))
    return tuple(id_maps)
