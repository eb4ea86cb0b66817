#!/usr/bin/env python3
"""
vdtier.store

Asset stores: the library the detector reads videos from and applies
deletions/edits to.

- AssetStore: the interface every store implements
- MemoryAssetStore: in-process store (embedding, tests)
- DirectoryAssetStore: video files under one or more directory roots, probed with ffprobe
"""
from __future__ import annotations
import dataclasses
import json
import logging
import os
import shutil
import sys
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Set, Tuple

from .errors import StoreError
from .models import Asset, AssetMetadata
from .probe import probe_video

logger = logging.getLogger(__name__)

_VIDEO_EXT = {".mp4", ".mkv", ".mov", ".avi", ".wmv", ".flv", ".webm", ".m4v"}
STAGED_SUFFIX = ".vdtier-delete"


class AssetStore:
    """Read/mutate access to a video library keyed by stable asset ids."""

    def list(self) -> List[Asset]:
        raise NotImplementedError

    def asset(self, asset_id: str) -> Asset:
        raise NotImplementedError

    def metadata(self, asset_id: str) -> AssetMetadata:
        raise NotImplementedError

    def resolve(self, ids: Iterable[str]) -> List[str]:
        """Return the subset of `ids` that still exist, in input order."""
        raise NotImplementedError

    def delete(self, ids: Iterable[str]) -> int:
        raise NotImplementedError

    def set_favorite(self, asset_id: str, favorite: bool) -> None:
        raise NotImplementedError

    def set_creation_date(self, asset_id: str, when: datetime) -> None:
        raise NotImplementedError


class MemoryAssetStore(AssetStore):
    def __init__(self) -> None:
        self._assets: Dict[str, Asset] = {}
        self._meta: Dict[str, AssetMetadata] = {}

    def add(
        self,
        asset_id: str,
        *,
        duration: float = 0.0,
        width: int = 0,
        height: int = 0,
        file_size: int = 0,
        creation_date: Optional[datetime] = None,
        favorite: bool = False,
        path: Optional[Path] = None,
    ) -> Asset:
        asset = Asset(id=asset_id, path=path)
        self._assets[asset_id] = asset
        self._meta[asset_id] = AssetMetadata(
            duration=duration,
            width=width,
            height=height,
            file_size=file_size,
            creation_date=creation_date,
            favorite=favorite,
        )
        return asset

    def list(self) -> List[Asset]:
        return list(self._assets.values())

    def asset(self, asset_id: str) -> Asset:
        try:
            return self._assets[asset_id]
        except KeyError:
            raise StoreError(f"unknown asset: {asset_id}") from None

    def metadata(self, asset_id: str) -> AssetMetadata:
        try:
            return self._meta[asset_id]
        except KeyError:
            raise StoreError(f"unknown asset: {asset_id}") from None

    def resolve(self, ids: Iterable[str]) -> List[str]:
        return [i for i in ids if i in self._assets]

    def delete(self, ids: Iterable[str]) -> int:
        targets = list(dict.fromkeys(ids))
        missing = [i for i in targets if i not in self._assets]
        if missing:
            raise StoreError(f"cannot delete unknown asset(s): {', '.join(missing)}")
        for asset_id in targets:
            del self._assets[asset_id]
            del self._meta[asset_id]
        return len(targets)

    def set_favorite(self, asset_id: str, favorite: bool) -> None:
        self._meta[asset_id] = dataclasses.replace(self.metadata(asset_id), favorite=bool(favorite))

    def set_creation_date(self, asset_id: str, when: datetime) -> None:
        self._meta[asset_id] = dataclasses.replace(self.metadata(asset_id), creation_date=when)


def iter_video_files(root: Path, patterns: Optional[Sequence[str]], max_depth: Optional[int]) -> Iterator[Path]:
    """Yield video files under root, optionally filtered by glob patterns. Case-insensitive on Windows."""
    root = Path(root).resolve()
    norm: List[str] = []
    for pat in patterns or []:
        s = (pat or "").strip()
        if not s:
            continue
        if not any(ch in s for ch in "*?["):
            s = f"*.{s.lstrip('.')}"
        norm.append(s)
    ci = sys.platform.startswith("win")

    for dp, dn, fn in os.walk(root):
        if max_depth is not None:
            rel = Path(dp).resolve().relative_to(root)
            depth = 0 if str(rel) == "." else len(rel.parts)
            if depth >= max_depth:
                dn[:] = []
        for name in sorted(fn):
            if norm:
                to_match = name.lower() if ci else name
                if not any(Path(to_match).match(p.lower() if ci else p) for p in norm):
                    continue
            elif Path(name).suffix.lower() not in _VIDEO_EXT:
                continue
            yield Path(dp) / name


class DirectoryAssetStore(AssetStore):
    """
    Video files under `roots`. Asset ids are resolved absolute paths.

    max_depth counts directory levels below each root (0 = root only,
    None = unlimited). Deleted files are moved under `backup_dir` when set,
    otherwise unlinked. Favorites live in a JSON sidecar (`favorites_path`);
    creation date edits rewrite the file mtime.
    """
    def __init__(
        self,
        roots: Sequence[Path],
        *,
        patterns: Optional[Sequence[str]] = None,
        max_depth: Optional[int] = None,
        favorites_path: Optional[Path] = None,
        backup_dir: Optional[Path] = None,
    ):
        self.roots = [Path(r).expanduser().resolve() for r in roots]
        self.patterns = list(patterns or [])
        self.max_depth = max_depth
        self.favorites_path = Path(favorites_path).expanduser() if favorites_path else None
        self.backup_dir = Path(backup_dir).expanduser().resolve() if backup_dir else None
        self._meta: Dict[str, AssetMetadata] = {}
        self._favorites: Set[str] = self._load_favorites()

    def _load_favorites(self) -> Set[str]:
        if not self.favorites_path or not self.favorites_path.exists():
            return set()
        try:
            data = json.loads(self.favorites_path.read_text(encoding="utf-8"))
            return {str(x) for x in data.get("favorites", [])}
        except (OSError, ValueError, AttributeError) as e:
            logger.warning("Ignoring unreadable favorites file %s: %s", self.favorites_path, e)
            return set()

    def _save_favorites(self) -> None:
        if not self.favorites_path:
            return
        self.favorites_path.parent.mkdir(parents=True, exist_ok=True)
        payload = {"favorites": sorted(self._favorites)}
        self.favorites_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")

    def _path(self, asset_id: str) -> Path:
        p = Path(asset_id)
        if not p.is_file():
            raise StoreError(f"unknown asset: {asset_id}")
        return p

    def list(self) -> List[Asset]:
        seen: Set[str] = set()
        out: List[Asset] = []
        for root in self.roots:
            if not root.is_dir():
                raise StoreError(f"not a directory: {root}")
            for p in iter_video_files(root, self.patterns, self.max_depth):
                asset_id = str(p.resolve())
                if asset_id in seen:
                    continue
                seen.add(asset_id)
                out.append(Asset(id=asset_id, path=Path(asset_id)))
        logger.info("Discovered %d video file(s) under %d root(s)", len(out), len(self.roots))
        return out

    def asset(self, asset_id: str) -> Asset:
        return Asset(id=asset_id, path=self._path(asset_id))

    def metadata(self, asset_id: str) -> AssetMetadata:
        meta = self._meta.get(asset_id)
        if meta is None:
            meta = probe_video(self._path(asset_id))
            if meta is None:
                raise StoreError(f"ffprobe could not read {asset_id}")
            self._meta[asset_id] = meta
        return dataclasses.replace(meta, favorite=asset_id in self._favorites)

    def resolve(self, ids: Iterable[str]) -> List[str]:
        return [i for i in ids if Path(i).is_file()]

    def delete(self, ids: Iterable[str]) -> int:
        """
        Delete all of `ids` or none of them. Every file is first moved aside
        (into `backup_dir`, or renamed next to itself when unlinking); if any
        move fails the earlier ones are moved back and StoreError is raised.
        """
        targets = [self._path(i) for i in dict.fromkeys(ids)]
        staged: List[Tuple[Path, Path]] = []
        for p in targets:
            if self.backup_dir:
                dest = _unique_dest(self.backup_dir / p.name)
            else:
                dest = _unique_dest(p.with_name(p.name + STAGED_SUFFIX))
            try:
                dest.parent.mkdir(parents=True, exist_ok=True)
                shutil.move(str(p), str(dest))
            except OSError as e:
                self._restore(staged)
                raise StoreError(f"cannot delete {p}: {e}") from e
            staged.append((p, dest))

        for p, dest in staged:
            if self.backup_dir:
                logger.info("Moved %s -> %s", p, dest)
            else:
                try:
                    dest.unlink()
                    logger.info("Deleted %s", p)
                except OSError as e:
                    logger.warning("Deleted %s but could not remove %s: %s", p, dest, e)
            self._meta.pop(str(p), None)
            self._favorites.discard(str(p))
        try:
            self._save_favorites()
        except OSError as e:
            logger.warning("Could not update favorites file %s: %s", self.favorites_path, e)
        return len(staged)

    def _restore(self, staged: Sequence[Tuple[Path, Path]]) -> None:
        for original, moved in reversed(staged):
            try:
                shutil.move(str(moved), str(original))
            except OSError as e:
                logger.error("Could not restore %s from %s: %s", original, moved, e)

    def set_favorite(self, asset_id: str, favorite: bool) -> None:
        self._path(asset_id)
        if favorite:
            self._favorites.add(asset_id)
        else:
            self._favorites.discard(asset_id)
        self._save_favorites()

    def set_creation_date(self, asset_id: str, when: datetime) -> None:
        p = self._path(asset_id)
        st = p.stat()
        os.utime(p, (st.st_atime, when.timestamp()))
        meta = self._meta.get(asset_id)
        if meta is not None:
            self._meta[asset_id] = dataclasses.replace(meta, creation_date=when)


def _unique_dest(dest: Path) -> Path:
    if not dest.exists():
        return dest
    n = 1
    while True:
        cand = dest.with_name(f"{dest.stem}.{n}{dest.suffix}")
        if not cand.exists():
            return cand
        n += 1
