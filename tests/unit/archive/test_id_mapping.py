"""Unit tests for uid/gid translation tables."""

from __future__ import annotations

import pytest

from archive.id_mapping import IDMappings
from core.errors import StrataIDMappingError
from core.types import IDMap


def _rootless_mappings() -> IDMappings:
    return IDMappings.from_maps(
        [IDMap(container_id=0, host_id=1000, size=1), IDMap(container_id=1, host_id=100000, size=65535)],
        [IDMap(container_id=0, host_id=1000, size=1)],
    )


def test_empty_mappings_are_identity() -> None:
    """Empty tables should leave ids untouched in both directions."""
    mappings = IDMappings()

    assert mappings.to_host(42, 7) == (42, 7)
    assert mappings.to_container(42, 7) == (42, 7)
    assert mappings.is_empty()


def test_to_host_uses_first_covering_range() -> None:
    """Container ids should land at the offset inside their host range."""
    mappings = _rootless_mappings()

    assert mappings.to_host(0, 0) == (1000, 1000)
    assert mappings.to_host(5, 0) == (100004, 1000)


def test_to_container_reverses_to_host() -> None:
    """Host ids should translate back into the container range."""
    mappings = _rootless_mappings()

    assert mappings.to_container(100004, 1000) == (5, 0)


def test_unmapped_id_raises() -> None:
    """A partial table should reject ids outside every range."""
    mappings = _rootless_mappings()

    with pytest.raises(StrataIDMappingError, match="gid 5"):
        mappings.to_host(0, 5)


def test_one_empty_table_keeps_that_kind_unmapped() -> None:
    """An empty gid table should not restrict gids when uids are mapped."""
    mappings = IDMappings.from_maps([IDMap(container_id=0, host_id=1000, size=10)], [])

    assert mappings.to_host(3, 12345) == (1003, 12345)
