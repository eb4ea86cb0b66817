#!/usr/bin/env python3
from __future__ import annotations

import json
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, NamedTuple, Optional, Tuple

from .cache import AnalysisCache
from .errors import StoreError
from .models import DuplicateGroup, SaveResult, SimilarityType
from .store import AssetStore

logger = logging.getLogger(__name__)

RESULTS_VERSION = 1


class LoadedResults(NamedTuple):
    scan_date: datetime
    groups: List[DuplicateGroup]


# -----------------
# Result snapshots
# -----------------

class ResultStore:
    """
    Last completed scan, stored as one JSON document:

      {"version": 1, "scan_date": iso8601,
       "summary": {"groups": n, "members": n, "by_type": {...}},
       "groups": [{"id", "members", "similarity_type", "score"}, ...]}

    Every save replaces the whole document (written to a temp file, then
    renamed over the old one).
    """

    def __init__(self, path: Path):
        self.path = Path(path).expanduser()

    def save(self, groups: Iterable[DuplicateGroup], scan_date: Optional[datetime] = None) -> SaveResult:
        stamp = scan_date or datetime.now()
        kept = [g for g in groups if len(g.members) >= 2]
        by_type: Dict[str, int] = {}
        for g in kept:
            by_type[g.similarity_type.value] = by_type.get(g.similarity_type.value, 0) + 1
        payload = {
            "version": RESULTS_VERSION,
            "scan_date": stamp.isoformat(),
            "summary": {
                "groups": len(kept),
                "members": sum(len(g.members) for g in kept),
                "by_type": by_type,
            },
            "groups": [g.to_record() for g in kept],
        }
        tmp = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps(payload, indent=2), encoding="utf-8")
            os.replace(tmp, self.path)
        except OSError as e:
            return SaveResult(ok=False, error=f"{type(e).__name__}: {e}")
        logger.info("Saved %d group(s) to %s", len(kept), self.path)
        return SaveResult(ok=True, written=len(kept))

    def load(self, store: AssetStore) -> Optional[LoadedResults]:
        """
        Read the last snapshot and re-resolve members against the live store.
        Groups left with one or fewer live members, and malformed group
        records, are dropped. Returns None
        when no snapshot exists or it cannot be parsed.
        """
        if not self.path.exists():
            return None
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            scan_date = datetime.fromisoformat(data["scan_date"])
            raw_groups = list(data.get("groups") or [])
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            logger.warning("Ignoring unreadable results file %s: %s", self.path, e)
            return None

        groups: List[DuplicateGroup] = []
        dropped = 0
        for rec in raw_groups:
            try:
                group = _group_from_record(rec, store)
            except (ValueError, TypeError, AttributeError) as e:
                logger.warning("Skipping malformed group record in %s: %s", self.path, e)
                group = None
            if group is None:
                dropped += 1
                continue
            groups.append(group)
        if dropped:
            logger.info("Dropped %d stale or malformed group(s) from %s", dropped, self.path)
        return LoadedResults(scan_date=scan_date, groups=groups)

    def clear(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass


def _group_from_record(rec: Dict[str, Any], store: AssetStore) -> Optional[DuplicateGroup]:
    members = [str(m) for m in rec.get("members") or []]
    live = store.resolve(members)
    if len(live) <= 1:
        return None
    kwargs: Dict[str, Any] = {}
    if rec.get("id"):
        kwargs["id"] = str(rec["id"])
    return DuplicateGroup(
        members=live,
        similarity_type=SimilarityType.parse(rec.get("similarity_type")),
        score=float(rec.get("score") or 0.0),
        **kwargs,
    )


# ------------------
# Deletion workflow
# ------------------

def prune_groups(groups: Iterable[DuplicateGroup], removed: Iterable[str]) -> List[DuplicateGroup]:
    """Drop `removed` ids from every group; groups left with <= 1 member disappear."""
    gone = set(removed)
    out: List[DuplicateGroup] = []
    for g in groups:
        trimmed = g.without(gone)
        if trimmed is not None:
            out.append(trimmed)
    return out


def delete_members(
    ids: Iterable[str],
    store: AssetStore,
    cache: AnalysisCache,
    groups: Iterable[DuplicateGroup],
) -> Tuple[int, List[DuplicateGroup]]:
    """
    Delete assets through the store, evict their cache entries and return
    (deleted_count, pruned_groups). Store errors propagate and leave the cache
    and groups untouched.
    """
    targets = list(dict.fromkeys(ids))
    deleted = store.delete(targets)
    cache.evict(targets)
    result = cache.flush()
    if not result.ok:
        logger.warning("Cache save after deletion failed: %s", result.error)
    return deleted, prune_groups(groups, targets)


# ----------------
# Text rendering
# ----------------

_TYPE_LABELS = {
    SimilarityType.EXACT: "exact duplicate",
    SimilarityType.NEAR: "near duplicate",
    SimilarityType.VISUAL: "visually similar",
}


def _fmt_bytes(n: int) -> str:
    if n < 1024:
        return f"{n} B"
    if n < 1024**2:
        return f"{n/1024:.2f} KiB"
    if n < 1024**3:
        return f"{n/1024**2:.2f} MiB"
    return f"{n/1024**3:.2f} GiB"


def _fmt_hms(sec: Any) -> str:
    s = int(float(sec or 0))
    return f"{s//3600:02d}:{(s%3600)//60:02d}:{s%60:02d}"


def render_groups(
    groups: List[DuplicateGroup],
    store: AssetStore,
    *,
    scan_date: Optional[datetime] = None,
    favorites_only: bool = False,
    verbosity: int = 1,
) -> str:
    lines: List[str] = []
    if scan_date is not None:
        lines.append(f"Last scan: {scan_date:%Y-%m-%d %H:%M:%S}")
    shown = 0
    for idx, g in enumerate(groups, 1):
        metas = []
        for m in g.members:
            try:
                metas.append((m, store.metadata(m)))
            except (StoreError, OSError) as e:
                logger.debug("No metadata for %s: %s", m, e)
                metas.append((m, None))
        if favorites_only:
            metas = [(m, meta) for m, meta in metas if meta is not None and meta.favorite]
            if not metas:
                continue
        shown += 1
        score = f"  max distance {g.score:.1f}" if g.similarity_type is SimilarityType.VISUAL else ""
        lines.append(f"[{idx}] {_TYPE_LABELS[g.similarity_type]} ({len(g.members)} videos){score}")
        if verbosity <= 0:
            continue
        for m, meta in metas:
            if meta is None:
                lines.append(f"    {m}")
                continue
            fav = " *" if meta.favorite else ""
            lines.append(
                f"    {m}{fav}  {_fmt_hms(meta.duration)}  {meta.width}x{meta.height}  {_fmt_bytes(int(meta.file_size))}"
            )
    lines.append(f"Groups: {shown}")
    return "\n".join(lines)
