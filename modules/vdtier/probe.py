#!/usr/bin/env python3
from __future__ import annotations
import json
import subprocess
from datetime import datetime
from pathlib import Path
from typing import Optional, Dict, Any

from .models import AssetMetadata


def run_ffprobe_json(path: Path) -> Optional[Dict[str, Any]]:
    """
    ffprobe metadata extraction limited to the fields the detector uses:
    - Format: duration, size, tags.creation_time
    - Video stream (v:0): width, height

    Returns None on error/timeout (30s max).
    """
    if not path or not path.exists():
        return None

    try:
        cmd = [
            "ffprobe", "-v", "error",
            "-select_streams", "v:0",
            "-show_entries", "stream=width,height,codec_type",
            "-show_entries", "format=duration,size:format_tags=creation_time",
            "-of", "json",
            str(path),
        ]
        result = subprocess.run(
            cmd,
            capture_output=True,
            timeout=30,
            text=True
        )
        if result.returncode != 0:
            return None
        if not result.stdout.strip():
            return None
        return json.loads(result.stdout)

    except subprocess.TimeoutExpired:
        return None
    except (json.JSONDecodeError, FileNotFoundError, PermissionError):
        return None


def _parse_creation_time(raw: Any) -> Optional[datetime]:
    if not raw:
        return None
    text = str(raw).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def probe_video(path: Path) -> Optional[AssetMetadata]:
    """
    Normalize ffprobe output into AssetMetadata. The file size comes from stat()
    so it is known even when ffprobe omits it; creation date falls back to mtime.
    """
    try:
        st = path.stat()
    except OSError:
        return None

    js = run_ffprobe_json(path)
    if not js:
        return None

    fmt = js.get("format", {}) or {}
    try:
        duration = float(fmt.get("duration") or 0.0)
    except (TypeError, ValueError):
        duration = 0.0

    width = height = 0
    for s in js.get("streams", []):
        if s.get("codec_type", "video") == "video":
            try:
                width = int(s.get("width") or 0)
                height = int(s.get("height") or 0)
            except (TypeError, ValueError):
                width = height = 0
            break

    created = _parse_creation_time((fmt.get("tags") or {}).get("creation_time"))
    if created is None:
        created = datetime.fromtimestamp(st.st_mtime)

    return AssetMetadata(
        duration=duration,
        width=width,
        height=height,
        file_size=int(st.st_size),
        creation_date=created,
    )
