#!/usr/bin/env python3
"""
vdtier.pipeline

Tiered detection orchestrator with progress wiring.

Exports:
- DetectionConfig
- DetectionStage
- DuplicateDetector(store, cache, sampler=None, extractor=None, config=None, reporter=None)

Run order:
  cache_populating  create cache facts for unseen assets       progress 0.00 -> 0.20
  tier1             exact duplicates                            -> 0.25
  tier2             near duplicates (excluding tier 1 members)  -> 0.35
  tier3_extracting  descriptors for remaining candidates        0.35 -> 0.80
  tier3_comparing   visual clustering                           0.80 -> 0.95
  done                                                          1.00

Tier 3 is optional. A failure inside tier 3 is logged and the groups found by
tiers 1 and 2 are still returned; per-asset failures only skip that asset.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Set, Tuple

from vdtier.cache import AnalysisCache
from vdtier.descriptors import SAMPLE_POSITIONS, FeatureExtractor, ImageHashExtractor, extract_representative
from vdtier.errors import CacheError, DetectionError, StoreError
from vdtier.frames import FfmpegFrameSampler, FrameSampler
from vdtier.grouping import (
    EXACT_DURATION_TOLERANCE,
    NEAR_DURATION_TOLERANCE,
    VISUAL_DISTANCE_THRESHOLD,
    find_exact_duplicates,
    find_near_duplicates,
    find_visually_similar,
    member_ids,
)
from vdtier.models import Asset, DuplicateGroup
from vdtier.progress import ProgressReporter
from vdtier.store import AssetStore

logger = logging.getLogger(__name__)


# -------------------------------------------------------------------------------------------------
# Config & stages
# -------------------------------------------------------------------------------------------------

@dataclass
class DetectionConfig:
    exact_duration_tolerance: float = EXACT_DURATION_TOLERANCE
    near_duration_tolerance: float = NEAR_DURATION_TOLERANCE
    visual_threshold: float = VISUAL_DISTANCE_THRESHOLD
    sample_positions: Tuple[float, ...] = SAMPLE_POSITIONS
    # "union-find" (order independent) or "greedy" (claim-as-you-go)
    cluster_mode: str = "union-find"
    # gpu hint for the default ffmpeg frame sampler
    gpu: bool = False


class DetectionStage(str, enum.Enum):
    IDLE = "idle"
    CACHE_POPULATING = "cache_populating"
    TIER1 = "tier1"
    TIER2 = "tier2"
    TIER3_EXTRACTING = "tier3_extracting"
    TIER3_COMPARING = "tier3_comparing"
    DONE = "done"


STAGE_LABELS: Dict[DetectionStage, str] = {
    DetectionStage.CACHE_POPULATING: "metadata cache",
    DetectionStage.TIER1: "T1 exact",
    DetectionStage.TIER2: "T2 near",
    DetectionStage.TIER3_EXTRACTING: "T3 descriptors",
    DetectionStage.TIER3_COMPARING: "T3 compare",
}

CACHE_END = 0.20
TIER1_END = 0.25
TIER2_END = 0.35
EXTRACT_END = 0.80
TIER3_END = 0.95


def _stage_plan(include_visual: bool) -> List[str]:
    plan = [STAGE_LABELS[DetectionStage.CACHE_POPULATING], STAGE_LABELS[DetectionStage.TIER1], STAGE_LABELS[DetectionStage.TIER2]]
    if include_visual:
        plan.extend([STAGE_LABELS[DetectionStage.TIER3_EXTRACTING], STAGE_LABELS[DetectionStage.TIER3_COMPARING]])
    return plan


# -------------------------------------------------------------------------------------------------
# Orchestrator
# -------------------------------------------------------------------------------------------------

class DuplicateDetector:
    """
    Sequences the tiers over one explicit cache handle. Progress, the current
    step and the running flag live on `reporter` (see the properties below);
    `found_groups` grows as each tier finishes.
    """

    def __init__(
        self,
        store: AssetStore,
        cache: AnalysisCache,
        *,
        sampler: Optional[FrameSampler] = None,
        extractor: Optional[FeatureExtractor] = None,
        config: Optional[DetectionConfig] = None,
        reporter: Optional[ProgressReporter] = None,
    ):
        self.store = store
        self.cache = cache
        self.config = config or DetectionConfig()
        self.sampler = sampler or FfmpegFrameSampler(gpu=self.config.gpu)
        self.extractor = extractor or ImageHashExtractor()
        self.reporter = reporter or ProgressReporter(enable_dash=False)
        self.state = DetectionStage.IDLE
        self.found_groups: List[DuplicateGroup] = []

    # Observable state for UI binding
    @property
    def progress(self) -> float:
        return self.reporter.progress

    @property
    def current_step(self) -> str:
        return self.reporter.current_step

    @property
    def is_running(self) -> bool:
        return self.reporter.is_running

    def _enter(self, stage: DetectionStage, status: str) -> None:
        self.state = stage
        self.reporter.start_stage(STAGE_LABELS[stage])
        self.reporter.set_status(status)
        logger.info("Stage %s: %s", stage.value, status)

    def detect(self, assets: Optional[Sequence[Asset]] = None, include_visual_similarity: bool = True) -> List[DuplicateGroup]:
        """
        Run all tiers over `assets` (default: everything the store lists) and
        return the groups: tier 1 first, then tier 2, then tier 3.

        Raises DetectionError when the cache cannot be loaded or the store
        cannot be enumerated.
        """
        reporter = self.reporter
        self.found_groups = []
        reporter.begin_run(_stage_plan(include_visual_similarity))
        try:
            try:
                self.cache.open()
            except CacheError as e:
                raise DetectionError(f"analysis cache unavailable: {e}") from e
            if assets is None:
                try:
                    assets = self.store.list()
                except (StoreError, OSError) as e:
                    raise DetectionError(f"cannot enumerate assets: {e}") from e

            items = list({a.id: a for a in assets}.values())
            ids = [a.id for a in items]
            logger.info("Detection started for %d asset(s), visual=%s", len(ids), include_visual_similarity)

            # Cache population
            self._enter(DetectionStage.CACHE_POPULATING, "Analyzing metadata…")
            created = self.cache.ensure(
                items,
                self.store,
                progress=lambda i, n: reporter.set_progress(CACHE_END * i / n if n else 0.0),
            )
            reporter.inc_counter("cache_created", created)
            reporter.set_progress(CACHE_END)
            self._flush_cache("metadata")

            # Tier 1
            self._enter(DetectionStage.TIER1, "Finding exact duplicates…")
            exact = find_exact_duplicates(
                ids, self.cache,
                tolerance=self.config.exact_duration_tolerance,
                mode=self.config.cluster_mode,
            )
            self._publish("exact", exact)
            reporter.set_progress(TIER1_END)

            # Tier 2
            self._enter(DetectionStage.TIER2, "Finding near duplicates…")
            near = find_near_duplicates(
                ids, self.cache,
                exclude=member_ids(exact),
                tolerance=self.config.near_duration_tolerance,
                mode=self.config.cluster_mode,
            )
            self._publish("near", near)
            reporter.set_progress(TIER2_END)

            # Tier 3
            if include_visual_similarity:
                by_id = {a.id: a for a in items}
                try:
                    self._run_visual_tier(ids, by_id, member_ids(exact) | member_ids(near))
                except Exception as e:
                    logger.error("Visual similarity tier failed: %s", e, exc_info=True)
                    reporter.add_log(f"Tier 3 aborted: {e}", "ERROR", source="tier3")
            else:
                reporter.mark_stage_skipped(STAGE_LABELS[DetectionStage.TIER3_EXTRACTING])
                reporter.mark_stage_skipped(STAGE_LABELS[DetectionStage.TIER3_COMPARING])

            self.state = DetectionStage.DONE
            reporter.set_status("Done")
            logger.info("Detection finished: %d group(s)", len(self.found_groups))
            return list(self.found_groups)
        finally:
            reporter.end_run()

    def _publish(self, tier: str, groups: List[DuplicateGroup]) -> None:
        self.found_groups.extend(groups)
        if groups:
            self.reporter.inc_group(tier, len(groups))
        self.reporter.add_log(f"{tier}: {len(groups)} group(s)", source=tier)

    def _run_visual_tier(self, ids: Sequence[str], by_id: Dict[str, Asset], exclude: Set[str]) -> None:
        reporter = self.reporter
        candidates = [i for i in ids if i not in exclude and self.cache.get(i) is not None]
        total = len(candidates)

        self._enter(DetectionStage.TIER3_EXTRACTING, "Extracting visual descriptors…")
        span = EXTRACT_END - TIER2_END
        for index, asset_id in enumerate(candidates):
            reporter.set_progress(TIER2_END + span * index / total)
            reporter.set_status(f"Analyzing video {index + 1} of {total}…")
            facts = self.cache.get(asset_id)
            if facts is None or facts.feature_descriptor is not None:
                continue
            asset = by_id.get(asset_id) or Asset(id=asset_id)
            try:
                desc = extract_representative(
                    asset, facts.duration, self.sampler, self.extractor, self.config.sample_positions
                )
            except Exception as e:
                logger.warning("Descriptor extraction failed for %s: %s", asset_id, e)
                reporter.inc_counter("assets_skipped")
                continue
            if desc is None:
                logger.debug("No usable frames for %s; excluded from visual tier", asset_id)
                reporter.inc_counter("assets_skipped")
                continue
            self.cache.set(asset_id, lambda f, d=desc: _attach_descriptor(f, d))
            reporter.inc_counter("descriptors_extracted")
        reporter.set_progress(EXTRACT_END)
        self._flush_cache("descriptors")

        self._enter(DetectionStage.TIER3_COMPARING, "Comparing videos…")
        span = TIER3_END - EXTRACT_END
        visual = find_visually_similar(
            candidates, self.cache, self.extractor,
            threshold=self.config.visual_threshold,
            mode=self.config.cluster_mode,
            on_step=lambda i, n: reporter.set_progress(EXTRACT_END + span * i / n if n else EXTRACT_END),
        )
        self._publish("visual", visual)
        reporter.set_progress(TIER3_END)

    def _flush_cache(self, label: str) -> None:
        result = self.cache.flush()
        if not result.ok:
            logger.warning("Cache save after %s failed (continuing in memory): %s", label, result.error)
            self.reporter.add_log(f"cache save failed: {result.error}", "WARNING", source="cache")
        elif result.written:
            logger.debug("Cache save after %s: %d record(s)", label, result.written)


def _attach_descriptor(facts, desc: bytes) -> None:
    if facts.feature_descriptor is None:
        facts.feature_descriptor = desc
