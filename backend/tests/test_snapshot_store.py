from __future__ import annotations

import pytest

from cache.snapshot_store import (
    CACHE_SNAPSHOT_FILE,
    load_cache_snapshot,
    load_learned_snapshot,
    save_cache_snapshot,
    save_learned_snapshot,
)
from config import Settings
from layout.resources import create_resources


def test_cache_snapshot_round_trip(tmp_path):
    snapshot = {"cache": {"a": {"height": 10}}, "timestamps": {"a": 1.5}, "accessCount": {"a": 2}, "ttl": {}}
    path = save_cache_snapshot(tmp_path / "nested", snapshot)
    assert path.name == CACHE_SNAPSHOT_FILE
    assert load_cache_snapshot(tmp_path / "nested") == snapshot


def test_learned_snapshot_round_trip(tmp_path):
    learned = {"content.paragraph": {"min": 50, "avg": 62, "max": 80, "samples": 4}}
    save_learned_snapshot(tmp_path, learned)
    assert load_learned_snapshot(tmp_path) == learned


def test_missing_or_corrupt_snapshot_is_none(tmp_path):
    assert load_cache_snapshot(tmp_path) is None
    (tmp_path / CACHE_SNAPSHOT_FILE).write_text("{not json", encoding="utf-8")
    assert load_cache_snapshot(tmp_path) is None


def test_resources_persist_and_reload(tmp_path):
    settings = Settings(snapshot_dir=tmp_path)
    resources = create_resources(settings, auto_cleanup=False)
    resources.cache.set("phantom#html:abc", [{"id": "m0", "height": 48}])
    resources.database.learn_from_element("paragraph", 66)
    saved = resources.save_snapshots()
    assert all(p.exists() for p in saved)

    reloaded = create_resources(Settings(snapshot_dir=tmp_path, load_snapshots=True), auto_cleanup=False)
    assert reloaded.cache.get("phantom#html:abc") == [{"id": "m0", "height": 48}]
    assert reloaded.database.custom_measurement("content", "paragraph").sample_count == 1


def test_resources_import_snapshot_counts(tmp_path):
    resources = create_resources(Settings(snapshot_dir=tmp_path), auto_cleanup=False)
    counts = resources.import_snapshot(
        {
            "cache": {"cache": {"k": 1}},
            "learned": {"content.paragraph": {"min": 1, "avg": 2, "max": 3, "samples": 9}},
        }
    )
    assert counts == {"cacheEntries": 1, "learnedMeasurements": 1}
    assert resources.database.confidence("paragraph") == pytest.approx(0.95)
