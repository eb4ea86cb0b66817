from __future__ import annotations

import json
from pathlib import Path

import pytest

from vdtier.cache import AnalysisCache
from vdtier.models import AssetMetadata
from vdtier.video_tiers import CACHE_NAME, RESULTS_NAME, main, parse_args


def _fake_probe(path: Path) -> AssetMetadata:
    return AssetMetadata(duration=10.0, width=640, height=480, file_size=path.stat().st_size)


@pytest.fixture
def workspace(tmp_path, monkeypatch):
    monkeypatch.setattr("vdtier.store.probe_video", _fake_probe)
    root = tmp_path / "videos"
    root.mkdir()
    (root / "a.mp4").write_bytes(b"same")
    (root / "b.mp4").write_bytes(b"same")
    (root / "c.mp4").write_bytes(b"different size")
    (root / "d.mp4").write_bytes(b"x" * 20)
    return root, tmp_path / "out"


def test_defaults():
    args = parse_args(["D:/videos"])
    assert args.visual_threshold == 30.0
    assert args.cluster_mode == "union-find"
    assert args.hash_method == "phash"
    assert args.recursive is False


def test_nothing_to_do_is_rejected(capsys):
    assert main([]) == 2
    assert "nothing to do" in capsys.readouterr().err


def test_scan_print_delete_cycle(workspace, capsys):
    root, out = workspace
    assert main([str(root), "--no-visual", "-O", str(out), "--no-log-file"]) == 0
    doc = json.loads((out / RESULTS_NAME).read_text(encoding="utf-8"))
    assert doc["summary"]["groups"] == 2
    assert [g["similarity_type"] for g in doc["groups"]] == ["exactDuplicate", "nearDuplicate"]
    assert "Groups: 2 (exact 1, near 1, visual 0)" in capsys.readouterr().out

    assert main(["-P", "-O", str(out), "--no-log-file"]) == 0
    printed = capsys.readouterr().out
    assert "exact duplicate (2 videos)" in printed
    assert printed.rstrip().endswith("Groups: 2")

    victim = str((root / "b.mp4").resolve())
    assert main(["--delete", victim, "-f", "-O", str(out), "--no-log-file"]) == 0
    assert "Deleted 1 video(s); 1 group(s) remain" in capsys.readouterr().out
    assert not Path(victim).exists()
    assert victim not in AnalysisCache(out / CACHE_NAME).open()


def test_tag_years(workspace, capsys):
    root, out = workspace
    assert main([str(root), "--tag-years", "-O", str(out), "--no-log-file"]) == 0
    assert "Tagged 4 of 4 video(s)" in capsys.readouterr().out
    facts = AnalysisCache(out / CACHE_NAME).open().get(str((root / "a.mp4").resolve()))
    assert facts.heuristic_year == 2008


def test_missing_directory_fails_cleanly(tmp_path, capsys):
    assert main([str(tmp_path / "nope"), "--no-visual", "-O", str(tmp_path / "out"), "--no-log-file"]) == 1
    assert "error" in capsys.readouterr().err


def test_unreadable_cache_reports_error_instead_of_traceback(workspace, capsys):
    root, out = workspace
    (out / CACHE_NAME).mkdir(parents=True)

    assert main([str(root), "--tag-years", "-O", str(out), "--no-log-file"]) == 1
    assert "video-tiers: error:" in capsys.readouterr().err

    victim = root / "a.mp4"
    assert main(["--delete", str(victim), "-f", "-O", str(out), "--no-log-file"]) == 1
    assert "video-tiers: error:" in capsys.readouterr().err
    assert victim.exists()
