#!/usr/bin/env python3
from __future__ import annotations
import base64
import dataclasses
import enum
import time
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, NamedTuple, Optional

FACTS_VERSION = 1


class SimilarityType(str, enum.Enum):
    EXACT = "exactDuplicate"
    NEAR = "nearDuplicate"
    VISUAL = "visuallySimilar"

    @classmethod
    def parse(cls, raw: Any) -> "SimilarityType":
        # Unknown tags read back from older snapshots fall back to the weakest tier
        try:
            return cls(raw)
        except ValueError:
            return cls.VISUAL


class YearSource(str, enum.Enum):
    METADATA = "metadata"
    HEURISTIC = "heuristic"


@dataclasses.dataclass(frozen=True)
class Asset:
    id: str
    path: Optional[Path] = None


@dataclasses.dataclass(frozen=True)
class AssetMetadata:
    duration: float = 0.0
    width: int = 0
    height: int = 0
    file_size: int = 0
    creation_date: Optional[datetime] = None
    favorite: bool = False


@dataclasses.dataclass
class AssetFacts:
    """
    Cached per-asset analysis facts.

    duration/width/height/file_size are captured on first observation and never
    refreshed. feature_descriptor is attached by the visual tier and kept for
    the lifetime of the entry.
    """
    id: str
    duration: float
    width: int
    height: int
    file_size: int = 0
    feature_descriptor: Optional[bytes] = None
    estimated_year: Optional[int] = None
    year_source: Optional[YearSource] = None
    heuristic_year: Optional[int] = None
    last_analyzed: float = dataclasses.field(default_factory=time.time)
    version: int = FACTS_VERSION

    @classmethod
    def from_metadata(cls, asset_id: str, meta: AssetMetadata) -> "AssetFacts":
        return cls(
            id=asset_id,
            duration=float(meta.duration or 0.0),
            width=int(meta.width or 0),
            height=int(meta.height or 0),
            file_size=int(meta.file_size or 0),
        )

    def to_record(self) -> Dict[str, Any]:
        rec: Dict[str, Any] = {
            "id": self.id,
            "duration": self.duration,
            "width": self.width,
            "height": self.height,
            "file_size": self.file_size,
            "last_analyzed": self.last_analyzed,
            "version": self.version,
        }
        if self.feature_descriptor is not None:
            rec["descriptor"] = base64.b64encode(self.feature_descriptor).decode("ascii")
        if self.estimated_year is not None:
            rec["estimated_year"] = self.estimated_year
        if self.year_source is not None:
            rec["year_source"] = self.year_source.value
        if self.heuristic_year is not None:
            rec["heuristic_year"] = self.heuristic_year
        return rec

    @classmethod
    def from_record(cls, rec: Dict[str, Any]) -> "AssetFacts":
        desc = rec.get("descriptor")
        source = rec.get("year_source")
        return cls(
            id=str(rec["id"]),
            duration=float(rec.get("duration") or 0.0),
            width=int(rec.get("width") or 0),
            height=int(rec.get("height") or 0),
            file_size=int(rec.get("file_size") or 0),
            feature_descriptor=base64.b64decode(desc) if desc else None,
            estimated_year=_opt_int(rec.get("estimated_year")),
            year_source=YearSource(source) if source else None,
            heuristic_year=_opt_int(rec.get("heuristic_year")),
            last_analyzed=float(rec.get("last_analyzed") or 0.0),
            version=int(rec.get("version") or FACTS_VERSION),
        )


def _opt_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    return int(value)


@dataclasses.dataclass(slots=True)
class DuplicateGroup:
    members: List[str]
    similarity_type: SimilarityType
    score: float = 0.0
    id: str = dataclasses.field(default_factory=lambda: uuid.uuid4().hex)

    def __post_init__(self) -> None:
        if len(self.members) < 2:
            raise ValueError(f"duplicate group needs at least 2 members, got {len(self.members)}")

    def __len__(self) -> int:
        return len(self.members)

    def without(self, ids: Iterable[str]) -> Optional["DuplicateGroup"]:
        """Return this group minus `ids`, or None when one or fewer members remain."""
        drop = set(ids)
        kept = [m for m in self.members if m not in drop]
        if len(kept) <= 1:
            return None
        return DuplicateGroup(members=kept, similarity_type=self.similarity_type, score=self.score, id=self.id)

    def to_record(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "members": list(self.members),
            "similarity_type": self.similarity_type.value,
            "score": float(self.score),
        }


class SaveResult(NamedTuple):
    """Outcome of a best-effort durable write."""
    ok: bool
    written: int = 0
    error: Optional[str] = None
