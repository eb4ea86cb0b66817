#!/usr/bin/env python3
"""
vdtier.years

Year tagging: record when each video was most likely shot.

The year comes from the asset's creation date when it has one; otherwise it is
guessed from the frame geometry (orientation and resolution), which
tracks the camera generations that produced it.
"""
from __future__ import annotations
import logging
from typing import Iterable

from .cache import AnalysisCache
from .errors import StoreError
from .models import Asset, AssetFacts, YearSource
from .store import AssetStore

logger = logging.getLogger(__name__)


def estimate_year_from_dimensions(width: int, height: int) -> int:
    """Resolution thresholds apply to the longer side of the frame."""
    max_dim = max(width, height)
    min_dim = min(width, height)
    aspect = max_dim / max(min_dim, 1)

    # vertical HD: smartphone era
    if height > width and max_dim >= 1080:
        return 2016

    if aspect < 1.5:
        # 4:3 camcorder / webcam
        if max_dim <= 480:
            return 2005
        if max_dim <= 720:
            return 2008
        return 2010

    if max_dim <= 720:
        return 2010
    if max_dim <= 1080:
        return 2014
    if max_dim <= 2160:
        return 2018
    return 2020


def tag_years(assets: Iterable[Asset], store: AssetStore, cache: AnalysisCache) -> int:
    """
    Fill estimated_year/year_source/heuristic_year for each asset and flush
    the cache. A heuristic year is always recorded; an already estimated year
    is kept. Returns the number of assets that carry a year afterwards.
    """
    cache.open()
    tagged = 0
    for asset in assets:
        try:
            meta = store.metadata(asset.id)
        except (StoreError, OSError) as e:
            logger.warning("Skipping year tagging for %s: %s", asset.id, e)
            continue
        heuristic = estimate_year_from_dimensions(meta.width, meta.height)

        facts = cache.get(asset.id)
        if facts is None:
            facts = cache.add(AssetFacts(
                id=asset.id,
                duration=float(meta.duration or 0.0),
                width=int(meta.width or 0),
                height=int(meta.height or 0),
                file_size=0,
            ))

        if facts.estimated_year is not None:
            if facts.heuristic_year is None:
                cache.set(asset.id, lambda f, h=heuristic: setattr(f, "heuristic_year", h))
            tagged += 1
            continue

        if meta.creation_date is not None:
            year, source = meta.creation_date.year, YearSource.METADATA
        else:
            year, source = heuristic, YearSource.HEURISTIC

        def _apply(f: AssetFacts, y: int = year, s: YearSource = source, h: int = heuristic) -> None:
            f.estimated_year = y
            f.year_source = s
            f.heuristic_year = h

        cache.set(asset.id, _apply)
        tagged += 1

    result = cache.flush()
    if not result.ok:
        logger.warning("Cache save after year tagging failed: %s", result.error)
    logger.info("Tagged %d asset(s) with a year", tagged)
    return tagged
