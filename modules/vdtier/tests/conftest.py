from __future__ import annotations

import os
import struct
import tempfile
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import pytest

from vdtier.cache import AnalysisCache
from vdtier.descriptors import FeatureExtractor
from vdtier.frames import FrameSampler
from vdtier.models import Asset
from vdtier.store import MemoryAssetStore


_PYTEST_TMP_ROOT = Path(__file__).resolve().parent / ".pytest_tmp"
_PYTEST_TMP_ROOT.mkdir(parents=True, exist_ok=True)


def _configure_temp_environment() -> None:
    """
    Keep pytest temporary files inside the repository so Windows ACLs never
    block tmp_path/tmp_path_factory.
    """
    temp_dir = str(_PYTEST_TMP_ROOT)
    os.environ["TMP"] = temp_dir
    os.environ["TEMP"] = temp_dir
    os.environ["TMPDIR"] = temp_dir
    tempfile.tempdir = temp_dir


_configure_temp_environment()


def pytest_configure(config) -> None:  # pragma: no cover - exercised implicitly
    base = _PYTEST_TMP_ROOT / "basetemp"
    base.mkdir(parents=True, exist_ok=True)
    config.option.basetemp = str(base)


# ------------------------------------------------------------------ test doubles

class ScriptedSampler(FrameSampler):
    """
    Returns a scripted "frame" per asset id. A frame is just a number the
    NumericExtractor turns into a descriptor; exceptions in the script are raised.
    """
    def __init__(self, frames: Optional[Dict[str, Union[float, Exception, None]]] = None):
        self.frames: Dict[str, Union[float, Exception, None]] = dict(frames or {})
        self.calls: List[Tuple[str, float]] = []

    def frame(self, asset: Asset, at_fraction: float, duration: Optional[float] = None):
        self.calls.append((asset.id, at_fraction))
        value = self.frames.get(asset.id)
        if isinstance(value, Exception):
            raise value
        return value

    def calls_for(self, asset_id: str) -> int:
        return sum(1 for i, _ in self.calls if i == asset_id)


class NumericExtractor(FeatureExtractor):
    """Descriptor = packed double; distance = absolute difference."""
    def __init__(self, fail_with: Optional[Exception] = None):
        self.fail_with = fail_with

    def descriptor(self, image) -> Optional[bytes]:
        if image is None:
            return None
        return struct.pack(">d", float(image))

    def distance(self, a: bytes, b: bytes) -> float:
        if self.fail_with is not None:
            raise self.fail_with
        if len(a) != 8 or len(b) != 8:
            raise ValueError("descriptor length mismatch")
        return abs(struct.unpack(">d", a)[0] - struct.unpack(">d", b)[0])


@pytest.fixture
def store() -> MemoryAssetStore:
    return MemoryAssetStore()


@pytest.fixture
def cache(tmp_path: Path) -> AnalysisCache:
    return AnalysisCache(tmp_path / "analysis.jsonl").open()


@pytest.fixture
def sampler() -> ScriptedSampler:
    return ScriptedSampler()


@pytest.fixture
def extractor() -> NumericExtractor:
    return NumericExtractor()
