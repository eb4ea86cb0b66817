#!/usr/bin/env python3
from __future__ import annotations
import io
import logging
import subprocess
from pathlib import Path
from typing import Dict, Optional

from PIL import Image

from .models import Asset
from .probe import run_ffprobe_json

logger = logging.getLogger(__name__)


class FrameSampler:
    """Decodes a single frame of an asset at a normalized position in [0, 1]."""

    def frame(self, asset: Asset, at_fraction: float, duration: Optional[float] = None) -> Optional[Image.Image]:
        raise NotImplementedError


def _ffmpeg_frame_cmd(path: Path, ts: float, *, gpu: bool) -> list:
    """
    Build ffmpeg command to grab a single keyframe near timestamp ts.
    NVDEC/CUDA is hinted when gpu=True; ffmpeg falls back gracefully if unsupported.
    Demuxer-side seek (-ss before -i), keyframes only (-skip_frame nokey).
    """
    base = [
        "ffmpeg", "-hide_banner", "-loglevel", "error",
        "-ss", f"{ts:.3f}", "-skip_frame", "nokey", "-i", str(path),
        "-frames:v", "1", "-f", "image2pipe", "-vcodec", "png", "pipe:1",
    ]
    if gpu:
        return ["ffmpeg", "-hide_banner", "-loglevel", "error", "-hwaccel", "cuda"] + base[2:]
    return base


class FfmpegFrameSampler(FrameSampler):
    """
    Grabs PNG frames through ffmpeg. Tries the GPU decoder first when `gpu` is
    set and retries once on the CPU. Durations not supplied by the caller are
    probed once per path.
    """
    def __init__(self, *, gpu: bool = False, timeout: float = 60.0):
        self.gpu = gpu
        self.timeout = timeout
        self._durations: Dict[Path, float] = {}

    def _duration(self, path: Path) -> float:
        if path not in self._durations:
            js = run_ffprobe_json(path)
            try:
                self._durations[path] = float(js.get("format", {}).get("duration", 0.0)) if js else 0.0
            except (TypeError, ValueError):
                self._durations[path] = 0.0
        return self._durations[path]

    def frame(self, asset: Asset, at_fraction: float, duration: Optional[float] = None) -> Optional[Image.Image]:
        path = asset.path or Path(asset.id)
        total = float(duration) if duration else self._duration(path)
        if total <= 0:
            return None
        ts = max(0.0, min(total * at_fraction, max(0.0, total - 0.1)))

        for attempt in (0, 1):
            use_gpu = self.gpu and attempt == 0
            if attempt == 1 and not self.gpu:
                break
            try:
                raw = subprocess.check_output(
                    _ffmpeg_frame_cmd(path, ts, gpu=use_gpu),
                    stderr=subprocess.DEVNULL,
                    timeout=self.timeout,
                )
                if not raw:
                    continue
                img = Image.open(io.BytesIO(raw))
                img.load()
                return img
            except (subprocess.SubprocessError, OSError) as e:
                logger.debug("Frame grab failed for %s @ %.3fs (gpu=%s): %s", path, ts, use_gpu, e)
                continue
        return None
