"""Core constants used across Strata modules.

This module centralizes archive format markers and storage defaults.
Keeping values here avoids magic literals in business logic.
"""

from __future__ import annotations

from pathlib import Path

DEFAULT_DATA_ROOT = Path(".strata")
LAYERS_DIR_NAME = "layers"
WHITEOUT_PREFIX = ".wh."
WHITEOUT_META_PREFIX = WHITEOUT_PREFIX + WHITEOUT_PREFIX
WHITEOUT_OPAQUE_DIR = WHITEOUT_META_PREFIX + ".opq"
ARCHIVE_COPY_CHUNK_SIZE = 32 * 1024
ID_MAP_FIELD_SEPARATOR = ":"
ID_MAP_ENTRY_SEPARATOR = ","
