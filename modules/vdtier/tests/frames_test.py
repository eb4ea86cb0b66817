from __future__ import annotations

import io
import subprocess
from pathlib import Path
from unittest.mock import patch

from PIL import Image

from vdtier.frames import FfmpegFrameSampler, _ffmpeg_frame_cmd
from vdtier.models import Asset


def _png() -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (8, 8), (10, 20, 30)).save(buf, format="PNG")
    return buf.getvalue()


def test_frame_cmd_seeks_before_input_and_hints_cuda():
    cpu = _ffmpeg_frame_cmd(Path("v.mp4"), 12.5, gpu=False)
    assert cpu[cpu.index("-ss") + 1] == "12.500"
    assert cpu.index("-ss") < cpu.index("-i")
    assert "-hwaccel" not in cpu
    gpu = _ffmpeg_frame_cmd(Path("v.mp4"), 1.0, gpu=True)
    assert gpu[gpu.index("-hwaccel") + 1] == "cuda"


@patch("vdtier.frames.subprocess.check_output")
def test_frame_decodes_png_and_clamps_timestamp(mock_out):
    mock_out.return_value = _png()
    img = FfmpegFrameSampler().frame(Asset("v", Path("v.mp4")), 1.0, duration=10.0)
    assert img.size == (8, 8)
    cmd = mock_out.call_args[0][0]
    assert cmd[cmd.index("-ss") + 1] == "9.900"


@patch("vdtier.frames.subprocess.check_output")
def test_gpu_failure_retries_on_cpu(mock_out):
    mock_out.side_effect = [subprocess.CalledProcessError(1, "ffmpeg"), _png()]
    img = FfmpegFrameSampler(gpu=True).frame(Asset("v", Path("v.mp4")), 0.5, duration=10.0)
    assert img is not None
    first, second = (c[0][0] for c in mock_out.call_args_list)
    assert "-hwaccel" in first and "-hwaccel" not in second


@patch("vdtier.frames.subprocess.check_output", side_effect=OSError("ffmpeg missing"))
def test_decode_failure_returns_none(mock_out):
    assert FfmpegFrameSampler().frame(Asset("v", Path("v.mp4")), 0.5, duration=10.0) is None


@patch("vdtier.frames.run_ffprobe_json", return_value={"format": {"duration": "0"}})
def test_unknown_duration_returns_none(mock_probe):
    assert FfmpegFrameSampler().frame(Asset("v", Path("v.mp4")), 0.5) is None
    mock_probe.assert_called_once()
