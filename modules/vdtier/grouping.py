#!/usr/bin/env python3
"""
vdtier.grouping

Tier groupers. Each tier clusters asset ids under a pairwise match predicate:

- Tier 1 (exact): equal resolution, equal non-zero file size, duration within 0.5s
- Tier 2 (near): equal resolution, duration within 3.0s
- Tier 3 (visual): descriptor distance below a threshold

Two clustering modes are available:
- "union-find": connected components of the match graph; independent of input order
- "greedy": each unclaimed asset claims every unclaimed match in one pass
  (result depends on traversal order when matches are not transitive)
"""
from __future__ import annotations
import logging
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from .cache import AnalysisCache
from .descriptors import FeatureExtractor
from .models import AssetFacts, DuplicateGroup, SimilarityType

logger = logging.getLogger(__name__)

EXACT_DURATION_TOLERANCE = 0.5
NEAR_DURATION_TOLERANCE = 3.0
VISUAL_DISTANCE_THRESHOLD = 30.0

CLUSTER_MODES = ("union-find", "greedy")

# Returns the pair's distance when it matches, None otherwise
MatchFn = Callable[[str, str], Optional[float]]
StepCallback = Callable[[int, int], None]


def cluster(
    ids: Sequence[str],
    match: MatchFn,
    *,
    mode: str = "union-find",
    on_step: Optional[StepCallback] = None,
) -> List[Tuple[List[str], float]]:
    """
    Cluster ids under `match`. Returns (members, max_accepted_distance) per
    cluster of two or more, in discovery order; members keep input order.

    union-find groups whole chains: a~b and b~c put a, b and c together even
    when a and c do not match (e.g. 60s, 62s, 64s clips under the 3s near
    tolerance). Use mode="greedy" to only group direct matches of the first
    unclaimed id.
    """
    if mode == "greedy":
        return _cluster_greedy(ids, match, on_step)
    if mode != "union-find":
        raise ValueError(f"unknown cluster mode {mode!r}; expected one of {CLUSTER_MODES}")

    n = len(ids)
    parent = list(range(n))

    def _find(x: int) -> int:
        while parent[x] != x:
            parent[x] = parent[parent[x]]
            x = parent[x]
        return x

    def _union(a: int, b: int) -> None:
        ra, rb = _find(a), _find(b)
        if ra != rb:
            # lower index stays root so components are keyed by first discovery
            if rb < ra:
                ra, rb = rb, ra
            parent[rb] = ra

    edges: List[Tuple[int, float]] = []
    for i in range(n):
        if on_step:
            on_step(i, n)
        for j in range(i + 1, n):
            dist = match(ids[i], ids[j])
            if dist is not None:
                _union(i, j)
                edges.append((i, dist))
    if on_step:
        on_step(n, n)

    worst: Dict[int, float] = {}
    for i, dist in edges:
        r = _find(i)
        worst[r] = max(worst.get(r, 0.0), dist)

    comps: Dict[int, List[str]] = {}
    for i in range(n):
        comps.setdefault(_find(i), []).append(ids[i])
    return [(members, worst.get(root, 0.0)) for root, members in sorted(comps.items()) if len(members) > 1]


def _cluster_greedy(ids: Sequence[str], match: MatchFn, on_step: Optional[StepCallback]) -> List[Tuple[List[str], float]]:
    out: List[Tuple[List[str], float]] = []
    claimed: Set[str] = set()
    n = len(ids)
    for i, a in enumerate(ids):
        if on_step:
            on_step(i, n)
        if a in claimed:
            continue
        members = [a]
        worst = 0.0
        for b in ids:
            if b == a or b in claimed:
                continue
            dist = match(a, b)
            if dist is not None:
                members.append(b)
                claimed.add(b)
                worst = max(worst, dist)
        claimed.add(a)
        if len(members) > 1:
            out.append((members, worst))
    if on_step:
        on_step(n, n)
    return out


def member_ids(groups: Iterable[DuplicateGroup]) -> Set[str]:
    return {m for g in groups for m in g.members}


def _cached(ids: Iterable[str], cache: AnalysisCache, exclude: Iterable[str] = ()) -> List[str]:
    skip = set(exclude)
    return [i for i in dict.fromkeys(ids) if i not in skip and cache.get(i) is not None]


# ------------------------------------------------------------------ predicates

def is_exact_match(a: AssetFacts, b: AssetFacts, tolerance: float = EXACT_DURATION_TOLERANCE) -> bool:
    # unknown (zero) file sizes never match
    return (
        abs(a.duration - b.duration) < tolerance
        and a.width == b.width
        and a.height == b.height
        and a.file_size == b.file_size
        and a.file_size > 0
    )


def is_near_match(a: AssetFacts, b: AssetFacts, tolerance: float = NEAR_DURATION_TOLERANCE) -> bool:
    return a.width == b.width and a.height == b.height and abs(a.duration - b.duration) < tolerance


# ------------------------------------------------------------------ tiers

def find_exact_duplicates(
    ids: Sequence[str],
    cache: AnalysisCache,
    *,
    tolerance: float = EXACT_DURATION_TOLERANCE,
    mode: str = "union-find",
) -> List[DuplicateGroup]:
    candidates = _cached(ids, cache)

    def _match(a: str, b: str) -> Optional[float]:
        return 0.0 if is_exact_match(cache.get(a), cache.get(b), tolerance) else None

    groups = [
        DuplicateGroup(members=members, similarity_type=SimilarityType.EXACT, score=0.0)
        for members, _ in cluster(candidates, _match, mode=mode)
    ]
    logger.info("Tier 1: %d exact group(s) from %d asset(s)", len(groups), len(candidates))
    return groups


def find_near_duplicates(
    ids: Sequence[str],
    cache: AnalysisCache,
    *,
    exclude: Iterable[str] = (),
    tolerance: float = NEAR_DURATION_TOLERANCE,
    mode: str = "union-find",
) -> List[DuplicateGroup]:
    candidates = _cached(ids, cache, exclude)

    def _match(a: str, b: str) -> Optional[float]:
        return 0.0 if is_near_match(cache.get(a), cache.get(b), tolerance) else None

    groups = [
        DuplicateGroup(members=members, similarity_type=SimilarityType.NEAR, score=0.0)
        for members, _ in cluster(candidates, _match, mode=mode)
    ]
    logger.info("Tier 2: %d near group(s) from %d candidate(s)", len(groups), len(candidates))
    return groups


def find_visually_similar(
    ids: Sequence[str],
    cache: AnalysisCache,
    extractor: FeatureExtractor,
    *,
    exclude: Iterable[str] = (),
    threshold: float = VISUAL_DISTANCE_THRESHOLD,
    mode: str = "union-find",
    on_step: Optional[StepCallback] = None,
) -> List[DuplicateGroup]:
    """
    Cluster candidates that carry a cached descriptor. The group score is the
    largest accepted distance inside the group (higher = looser fit).
    """
    candidates = [i for i in _cached(ids, cache, exclude) if cache.get(i).feature_descriptor]

    def _match(a: str, b: str) -> Optional[float]:
        try:
            dist = extractor.distance(cache.get(a).feature_descriptor, cache.get(b).feature_descriptor)
        except ValueError as e:
            logger.debug("Cannot compare %s and %s: %s", a, b, e)
            return None
        return float(dist) if dist < threshold else None

    groups = [
        DuplicateGroup(members=members, similarity_type=SimilarityType.VISUAL, score=worst)
        for members, worst in cluster(candidates, _match, mode=mode, on_step=on_step)
    ]
    logger.info("Tier 3: %d visual group(s) from %d described candidate(s)", len(groups), len(candidates))
    return groups
