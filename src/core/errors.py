"""Strata exception hierarchy.

This module defines traceable domain errors with clear boundaries.
Each layer operation raises a specific error type for debuggability.
"""

from __future__ import annotations


class StrataError(Exception):
    """Base exception for all Strata failures."""


class StrataConfigError(StrataError):
    """Raised for invalid runtime configuration."""


class StrataDriverError(StrataError):
    """Raised for layer lifecycle and mount bookkeeping failures."""


class StrataAcquireError(StrataDriverError):
    """Raised when a layer mount cannot be obtained."""


class StrataIDMappingError(StrataError):
    """Raised when a numeric owner cannot be translated between id spaces."""


class StrataChangesError(StrataError):
    """Raised when changes between two layer trees cannot be computed."""


class StrataExportError(StrataError):
    """Raised when a layer archive cannot be produced."""


class StrataExtractionError(StrataError):
    """Raised when a layer archive cannot be applied onto a layer."""


class StrataSizingError(StrataError):
    """Raised when the on-disk size of a change set cannot be measured."""
