#!/usr/bin/env python3
from __future__ import annotations


class VdtierError(Exception):
    """Base class for all vdtier errors."""


class DetectionError(VdtierError):
    """A detection run could not acquire any working state (cache, asset listing)."""


class CacheError(VdtierError):
    """The analysis cache backing file could not be opened or read."""


class StoreError(VdtierError):
    """An asset store operation referenced an unknown asset or failed to apply."""
