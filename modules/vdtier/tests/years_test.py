from __future__ import annotations

from datetime import datetime

from vdtier.cache import AnalysisCache
from vdtier.models import Asset, AssetFacts, YearSource
from vdtier.years import estimate_year_from_dimensions, tag_years


def test_dimension_heuristic_tracks_camera_generations():
    assert estimate_year_from_dimensions(1080, 1920) == 2016
    assert estimate_year_from_dimensions(320, 240) == 2005
    assert estimate_year_from_dimensions(640, 480) == 2008
    assert estimate_year_from_dimensions(720, 540) == 2008
    assert estimate_year_from_dimensions(1440, 1080) == 2010
    assert estimate_year_from_dimensions(720, 405) == 2010
    assert estimate_year_from_dimensions(854, 480) == 2014
    assert estimate_year_from_dimensions(1280, 720) == 2018
    assert estimate_year_from_dimensions(1920, 1080) == 2018
    assert estimate_year_from_dimensions(2160, 3840) == 2016
    assert estimate_year_from_dimensions(3840, 2160) == 2020
    assert estimate_year_from_dimensions(7680, 4320) == 2020
    assert estimate_year_from_dimensions(0, 0) == 2005


def test_creation_date_wins_over_heuristic(cache, store):
    store.add("dated", width=1920, height=1080, creation_date=datetime(2009, 7, 4))
    store.add("undated", width=1920, height=1080)

    assert tag_years(store.list(), store, cache) == 2

    dated = cache.get("dated")
    assert (dated.estimated_year, dated.year_source, dated.heuristic_year) == (2009, YearSource.METADATA, 2018)
    undated = cache.get("undated")
    assert (undated.estimated_year, undated.year_source) == (2018, YearSource.HEURISTIC)


def test_existing_year_is_kept_and_heuristic_backfilled(cache, store):
    store.add("a", width=640, height=480, creation_date=datetime(2020, 1, 1))
    cache.add(AssetFacts(id="a", duration=0.0, width=640, height=480, estimated_year=1999))

    assert tag_years([Asset("a")], store, cache) == 1
    facts = cache.get("a")
    assert facts.estimated_year == 1999
    assert facts.heuristic_year == 2008


def test_unknown_assets_are_skipped_and_tags_persist(tmp_path, store):
    store.add("a", width=1280, height=720)
    path = tmp_path / "c.jsonl"

    assert tag_years([Asset("a"), Asset("ghost")], store, AnalysisCache(path)) == 1
    assert AnalysisCache(path).open().get("a").estimated_year == 2018
