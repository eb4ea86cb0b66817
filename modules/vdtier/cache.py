#!/usr/bin/env python3
from __future__ import annotations
import json
import logging
import os
import threading
import time
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

from .errors import CacheError, StoreError
from .models import Asset, AssetFacts, SaveResult

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


class AnalysisCache:
    """
    JSONL append-only cache of AssetFacts. Each line is an object with at least:
      - "id": str
    Fact lines carry the full record (see AssetFacts.to_record); the last line
    for an id wins. Evictions are written as {"id": str, "evicted": true}.

    The file is compacted (rewritten with one line per live entry) once stale
    lines outnumber live ones.

    All mutations happen under `lock`; the cache expects a single writer.
    """
    def __init__(self, path: Optional[Path]):
        self.path = Path(path).expanduser() if path else None
        self.lock = threading.Lock()
        self._map: Dict[str, AssetFacts] = {}
        self._dirty: Set[str] = set()
        self._evicted: Set[str] = set()
        self._lines = 0
        self._opened = False

    # ------------------------------------------------------------------ loading

    def open(self) -> "AnalysisCache":
        """Load the backing file. Idempotent; raises CacheError if it cannot be read."""
        if self._opened:
            return self
        if self.path:
            self._load(self.path)
        self._opened = True
        return self

    @property
    def is_open(self) -> bool:
        return self._opened

    def _load(self, p: Path) -> None:
        if not p.exists():
            try:
                p.parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise CacheError(f"cannot create cache directory {p.parent}: {e}") from e
            return
        skipped = 0
        try:
            with p.open("r", encoding="utf-8") as f:
                for line in f:
                    line = line.strip()
                    if not line:
                        continue
                    self._lines += 1
                    try:
                        rec = json.loads(line)
                        if not isinstance(rec, dict):
                            skipped += 1
                            continue
                        asset_id = rec.get("id")
                        if not asset_id:
                            skipped += 1
                            continue
                        if rec.get("evicted"):
                            self._map.pop(asset_id, None)
                            continue
                        self._map[asset_id] = AssetFacts.from_record(rec)
                    except (ValueError, KeyError, TypeError):
                        skipped += 1
                        continue
        except OSError as e:
            raise CacheError(f"cannot read analysis cache {p}: {e}") from e
        if skipped:
            logger.warning("Skipped %d malformed cache line(s) in %s", skipped, p)
        logger.info("Loaded %d cached asset fact(s) from %s", len(self._map), p)

    # ------------------------------------------------------------------ access

    def __contains__(self, asset_id: object) -> bool:
        return asset_id in self._map

    def __len__(self) -> int:
        return len(self._map)

    def ids(self) -> List[str]:
        return list(self._map.keys())

    def get(self, asset_id: str) -> Optional[AssetFacts]:
        return self._map.get(asset_id)

    def ensure(self, assets: Iterable[Asset], store: Any, progress: Optional[ProgressCallback] = None) -> int:
        """
        Create facts for every asset not yet cached, reading metadata from `store`.
        Entries that already exist are left untouched. Returns the number created.
        """
        items = list(assets)
        total = len(items)
        created = 0
        for idx, asset in enumerate(items):
            if progress:
                progress(idx, total)
            if asset.id in self._map:
                continue
            try:
                meta = store.metadata(asset.id)
            except (StoreError, OSError) as e:
                logger.warning("Metadata unavailable for %s, skipping: %s", asset.id, e)
                continue
            with self.lock:
                self._map[asset.id] = AssetFacts.from_metadata(asset.id, meta)
                self._dirty.add(asset.id)
                self._evicted.discard(asset.id)
            created += 1
        if progress:
            progress(total, total)
        logger.debug("ensure(): %d new of %d asset(s)", created, total)
        return created

    def add(self, facts: AssetFacts) -> AssetFacts:
        """Insert facts for an id that is not cached yet; an existing entry wins."""
        with self.lock:
            existing = self._map.get(facts.id)
            if existing is not None:
                return existing
            self._map[facts.id] = facts
            self._dirty.add(facts.id)
            self._evicted.discard(facts.id)
        return facts

    def set(self, asset_id: str, updater: Callable[[AssetFacts], None]) -> Optional[AssetFacts]:
        """Mutate an entry in place. Returns the entry, or None if the id is not cached."""
        with self.lock:
            facts = self._map.get(asset_id)
            if facts is None:
                return None
            updater(facts)
            facts.last_analyzed = time.time()
            self._dirty.add(asset_id)
        return facts

    def evict(self, ids: Iterable[str]) -> int:
        removed = 0
        with self.lock:
            for asset_id in ids:
                if self._map.pop(asset_id, None) is not None:
                    removed += 1
                    self._dirty.discard(asset_id)
                    self._evicted.add(asset_id)
        return removed

    @property
    def pending(self) -> int:
        return len(self._dirty) + len(self._evicted)

    # ------------------------------------------------------------------ persistence

    def flush(self) -> SaveResult:
        """
        Durably persist pending mutations. Never raises for I/O problems: the
        failure is reported in the returned SaveResult and pending entries stay
        queued for the next flush.
        """
        if not self.path:
            with self.lock:
                self._dirty.clear()
                self._evicted.clear()
            return SaveResult(ok=True)
        with self.lock:
            lines: List[str] = [json.dumps(self._map[i].to_record()) for i in sorted(self._dirty) if i in self._map]
            lines.extend(json.dumps({"id": i, "evicted": True}) for i in sorted(self._evicted))
            if not lines:
                return SaveResult(ok=True)
            try:
                if self._lines + len(lines) > 2 * len(self._map) + 64:
                    self._rewrite_locked()
                else:
                    with self.path.open("a", encoding="utf-8") as fh:
                        for line in lines:
                            fh.write(line + "\n")
                        fh.flush()
                    self._lines += len(lines)
            except OSError as e:
                return SaveResult(ok=False, error=f"{type(e).__name__}: {e}")
            self._dirty.clear()
            self._evicted.clear()
        return SaveResult(ok=True, written=len(lines))

    def _rewrite_locked(self) -> None:
        tmp = self.path.with_name(self.path.name + ".tmp")
        with tmp.open("w", encoding="utf-8") as fh:
            for facts in self._map.values():
                fh.write(json.dumps(facts.to_record()) + "\n")
        os.replace(tmp, self.path)
        self._lines = len(self._map)
        logger.info("Compacted analysis cache %s to %d line(s)", self.path, self._lines)
