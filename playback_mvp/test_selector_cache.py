"""Tests for selector cache persistence."""
from __future__ import annotations

from .models import CacheEntry
from .selector_cache import JsonFileCacheStore, SelectorCacheManager


def _entry(index: int, value: str) -> CacheEntry:
    return CacheEntry(index, "digest", value, "identifier", "identifier", timestamp=1.0)


def test_round_trip_through_json_file(tmp_path):
    manager = SelectorCacheManager(JsonFileCacheStore(tmp_path))
    cache = manager.init("rec-1", "de-DE", "hash-a")
    manager.add_entry(cache, _entry(0, "login_button"))

    assert manager.save(cache)
    assert (tmp_path / "rec-1" / "de-DE.json").exists()
    loaded = manager.load("rec-1", "de-DE", "hash-a")
    assert loaded is not None
    assert loaded.to_dict() == cache.to_dict()


def test_template_hash_change_is_a_miss(tmp_path):
    manager = SelectorCacheManager(JsonFileCacheStore(tmp_path))
    cache = manager.init("rec-1", "default", "hash-a")
    manager.save(cache)

    assert manager.load("rec-1", "default", "hash-b") is None
    assert manager.load("rec-1", "fr-FR", "hash-a") is None


def test_corrupt_file_is_a_miss(tmp_path):
    path = tmp_path / "rec-1" / "default.json"
    path.parent.mkdir(parents=True)
    path.write_text("{not json", encoding="utf-8")

    assert JsonFileCacheStore(tmp_path).load("rec-1", "default", "hash-a") is None


def test_add_entry_replaces_by_step_index():
    cache = SelectorCacheManager.init("rec-1", "default", "hash-a")
    SelectorCacheManager.add_entry(cache, _entry(0, "old"))
    SelectorCacheManager.add_entry(cache, _entry(1, "other"))
    SelectorCacheManager.add_entry(cache, _entry(0, "new"))

    assert [entry.resolved_selector for entry in cache.entries] == ["other", "new"]
    assert SelectorCacheManager.get_entry(cache, 0).resolved_selector == "new"
    assert SelectorCacheManager.get_entry(cache, 7) is None


def test_clear_one_locale_or_all(tmp_path):
    store = JsonFileCacheStore(tmp_path)
    manager = SelectorCacheManager(store)
    for locale in ("en-US", "ja-JP"):
        manager.save(manager.init("rec-1", locale, "hash-a"))

    manager.clear("rec-1", "en-US")
    assert not store.path_for("rec-1", "en-US").exists()
    assert store.path_for("rec-1", "ja-JP").exists()

    manager.clear("rec-1")
    assert not (tmp_path / "rec-1").exists()


def test_cache_paths_stay_inside_cache_dir(tmp_path):
    store = JsonFileCacheStore(tmp_path)

    path = store.path_for("../../etc", "../passwd")

    assert path == tmp_path / "etc" / "passwd.json"
