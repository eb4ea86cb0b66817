from __future__ import annotations

import json
import os
import shutil
from datetime import datetime
from pathlib import Path

import pytest

from vdtier.errors import StoreError
from vdtier.models import AssetMetadata
from vdtier.store import STAGED_SUFFIX, DirectoryAssetStore, MemoryAssetStore, iter_video_files


def _fake_probe(path: Path) -> AssetMetadata:
    return AssetMetadata(duration=10.0, width=640, height=480, file_size=path.stat().st_size)


@pytest.fixture
def library(tmp_path, monkeypatch):
    monkeypatch.setattr("vdtier.store.probe_video", _fake_probe)
    root = tmp_path / "videos"
    (root / "sub" / "deeper").mkdir(parents=True)
    (root / "a.mp4").write_bytes(b"aaaa")
    (root / "b.MKV").write_bytes(b"bb")
    (root / "notes.txt").write_text("skip me")
    (root / "sub" / "c.mp4").write_bytes(b"c")
    (root / "sub" / "deeper" / "d.mov").write_bytes(b"d")
    return root


def _names(assets):
    return sorted(Path(a.id).name for a in assets)


def test_iter_video_files_respects_depth_and_patterns(library):
    assert sorted(p.name for p in iter_video_files(library, None, 0)) == ["a.mp4", "b.MKV"]
    assert sorted(p.name for p in iter_video_files(library, None, 1)) == ["a.mp4", "b.MKV", "c.mp4"]
    assert sorted(p.name for p in iter_video_files(library, None, None)) == ["a.mp4", "b.MKV", "c.mp4", "d.mov"]
    assert sorted(p.name for p in iter_video_files(library, ["mp4"], None)) == ["a.mp4", "c.mp4"]


def test_directory_store_lists_and_reads_metadata(library, tmp_path):
    store = DirectoryAssetStore([library, library], max_depth=0)
    assets = store.list()
    assert _names(assets) == ["a.mp4", "b.MKV"]
    a = next(x for x in assets if x.id.endswith("a.mp4"))
    assert Path(a.id).is_absolute()
    assert store.metadata(a.id).file_size == 4
    with pytest.raises(StoreError):
        store.metadata(str(tmp_path / "missing.mp4"))


def test_missing_root_raises_store_error(tmp_path):
    with pytest.raises(StoreError):
        DirectoryAssetStore([tmp_path / "nope"]).list()


def test_favorites_persist_in_sidecar(library, tmp_path):
    fav_path = tmp_path / "favorites.json"
    store = DirectoryAssetStore([library], favorites_path=fav_path)
    asset_id = str((library / "a.mp4").resolve())
    store.set_favorite(asset_id, True)
    assert store.metadata(asset_id).favorite is True
    assert json.loads(fav_path.read_text(encoding="utf-8")) == {"favorites": [asset_id]}

    reopened = DirectoryAssetStore([library], favorites_path=fav_path)
    assert reopened.metadata(asset_id).favorite is True
    reopened.set_favorite(asset_id, False)
    assert reopened.metadata(asset_id).favorite is False


def test_delete_moves_to_backup_and_is_all_or_nothing(library, tmp_path):
    backup = tmp_path / "quarantine"
    store = DirectoryAssetStore([library], backup_dir=backup)
    a = str((library / "a.mp4").resolve())
    b = str((library / "b.MKV").resolve())

    with pytest.raises(StoreError):
        store.delete([a, str(library / "ghost.mp4")])
    assert Path(a).exists()

    assert store.delete([a]) == 1
    assert not Path(a).exists()
    assert (backup / "a.mp4").read_bytes() == b"aaaa"
    assert store.resolve([a, b]) == [b]

    (library / "a.mp4").write_bytes(b"again")
    store.delete([a])
    assert (backup / "a.1.mp4").read_bytes() == b"again"


def test_delete_without_backup_unlinks(library):
    store = DirectoryAssetStore([library])
    c = str((library / "sub" / "c.mp4").resolve())
    store.delete([c])
    assert not os.path.exists(c)
    assert list((library / "sub").glob("*" + STAGED_SUFFIX)) == []


@pytest.mark.parametrize("use_backup", [True, False])
def test_failed_move_rolls_back_earlier_deletes(library, tmp_path, monkeypatch, use_backup):
    backup = tmp_path / "quarantine" if use_backup else None
    store = DirectoryAssetStore([library], backup_dir=backup)
    a = library / "a.mp4"
    b = library / "b.MKV"
    real_move = shutil.move
    calls = []

    def flaky_move(src, dst):
        calls.append(src)
        if len(calls) == 2:
            raise PermissionError("locked")
        return real_move(src, dst)

    monkeypatch.setattr("vdtier.store.shutil.move", flaky_move)
    with pytest.raises(StoreError, match="locked"):
        store.delete([str(a.resolve()), str(b.resolve())])

    assert a.read_bytes() == b"aaaa"
    assert b.read_bytes() == b"bb"
    assert list(library.glob("*" + STAGED_SUFFIX)) == []
    if backup is not None:
        assert list(backup.iterdir()) == []


def test_set_creation_date_rewrites_mtime(library):
    store = DirectoryAssetStore([library])
    a = str((library / "a.mp4").resolve())
    when = datetime(2012, 3, 4, 5, 6, 7)
    store.metadata(a)
    store.set_creation_date(a, when)
    assert abs(os.stat(a).st_mtime - when.timestamp()) < 1
    assert store.metadata(a).creation_date == when


def test_memory_store_edits_and_unknown_ids():
    store = MemoryAssetStore()
    store.add("x", duration=5.0)
    store.set_favorite("x", True)
    store.set_creation_date("x", datetime(2001, 1, 1))
    meta = store.metadata("x")
    assert meta.favorite and meta.creation_date.year == 2001
    with pytest.raises(StoreError):
        store.asset("y")
    with pytest.raises(StoreError):
        store.set_favorite("y", True)
    assert store.delete(["x", "x"]) == 1
    assert store.list() == []
