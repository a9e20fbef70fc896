"""Public SDK surface for Strata.

This module provides a stable import path for library users.
It re-exports the diff adapter, drivers, and typed models.
"""

from __future__ import annotations

from core.config import StrataConfig
from core.constants import LAYERS_DIR_NAME
from core.types import ApplyOptions, Change, ChangeKind, IDMap
from drivers.directory_driver import DirectoryDriver
from drivers.naive_diff import NaiveDiffDriver
from drivers.proto_driver import DiffDriver, Driver, ProtoDriver

__all__ = [
    "ApplyOptions",
    "Change",
    "ChangeKind",
    "DiffDriver",
    "DirectoryDriver",
    "Driver",
    "IDMap",
    "NaiveDiffDriver",
    "ProtoDriver",
    "StrataConfig",
    "build_naive_diff_driver",
]


def build_naive_diff_driver(
    config: StrataConfig,
    driver: ProtoDriver | None = None,
) -> NaiveDiffDriver:
    """Build a diff adapter configured with the config's id mappings.

    Args:
        config: Runtime configuration.
        driver: Mount-only driver to wrap; a directory driver under
            ``config.data_root`` when omitted.

    Returns:
        Diff adapter around the driver.
    """
    if driver is None:
        driver = DirectoryDriver(config.data_root / LAYERS_DIR_NAME)
    return NaiveDiffDriver(driver, uid_maps=config.uid_maps, gid_maps=config.gid_maps)
