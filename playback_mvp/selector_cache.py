"""Persistence of resolved selectors between runs."""
from __future__ import annotations

import json
import logging
import os
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Protocol

from .models import CacheEntry, SelectorCache, safe_path_component

DEFAULT_LOCALE = "default"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class CacheStore(Protocol):
    def load(self, recording_id: str, locale: str, template_hash: str) -> Optional[SelectorCache]:
        ...

    def save(self, cache: SelectorCache) -> None:
        ...

    def clear(self, recording_id: str, locale: Optional[str] = None) -> None:
        ...


class JsonFileCacheStore:
    """Stores one JSON file per recording and locale under ``cache_dir``."""

    def __init__(self, cache_dir: Path = Path("cache")) -> None:
        self.cache_dir = Path(cache_dir)
        self.logger = logging.getLogger("playback_mvp.cache")

    def path_for(self, recording_id: str, locale: str) -> Path:
        return self.cache_dir / safe_path_component(recording_id) / f"{safe_path_component(locale)}.json"

    def load(self, recording_id: str, locale: str, template_hash: str) -> Optional[SelectorCache]:
        path = self.path_for(recording_id, locale)
        if not path.exists():
            self.logger.debug("No selector cache at %s", path)
            return None
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
            cache = SelectorCache.from_dict(raw)
        except (OSError, ValueError, KeyError, TypeError) as exc:
            self.logger.warning("Ignoring unreadable selector cache %s: %s", path, exc)
            return None

        if cache.template_hash != template_hash:
            self.logger.warning(
                "Cache invalidated for %s/%s: template hash %s != %s",
                recording_id,
                locale,
                cache.template_hash[:12],
                template_hash[:12],
            )
            return None
        return cache

    def save(self, cache: SelectorCache) -> None:
        path = self.path_for(cache.recording_id, cache.locale)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(".json.tmp")
        with tmp_path.open("w", encoding="utf-8") as handle:
            json.dump(cache.to_dict(), handle, ensure_ascii=False, indent=2)
        os.replace(tmp_path, path)

    def clear(self, recording_id: str, locale: Optional[str] = None) -> None:
        if locale:
            path = self.path_for(recording_id, locale)
            if path.exists():
                path.unlink()
            self.logger.info("Selector cache cleared for %s/%s", recording_id, locale)
        else:
            shutil.rmtree(self.cache_dir / safe_path_component(recording_id), ignore_errors=True)
            self.logger.info("All selector caches cleared for %s", recording_id)


class SelectorCacheManager:
    """Creates, looks up, mutates and persists :class:`SelectorCache` objects."""

    def __init__(self, store: Optional[CacheStore] = None) -> None:
        self.store = store or JsonFileCacheStore()
        self.logger = logging.getLogger("playback_mvp.cache")

    def load(self, recording_id: str, locale: str, template_hash: str) -> Optional[SelectorCache]:
        cache = self.store.load(recording_id, locale, template_hash)
        if cache is not None:
            self.logger.info("Loaded %s cached selectors for %s/%s", len(cache.entries), recording_id, locale)
        return cache

    @staticmethod
    def init(recording_id: str, locale: str, template_hash: str) -> SelectorCache:
        now = _now_iso()
        return SelectorCache(
            recording_id=recording_id,
            locale=locale,
            template_hash=template_hash,
            entries=[],
            created_at=now,
            updated_at=now,
        )

    @staticmethod
    def add_entry(cache: SelectorCache, entry: CacheEntry) -> None:
        cache.entries = [item for item in cache.entries if item.step_index != entry.step_index]
        cache.entries.append(entry)
        cache.updated_at = _now_iso()

    @staticmethod
    def get_entry(cache: SelectorCache, step_index: int) -> Optional[CacheEntry]:
        for entry in cache.entries:
            if entry.step_index == step_index:
                return entry
        return None

    def save(self, cache: SelectorCache) -> bool:
        try:
            self.store.save(cache)
        except OSError as exc:
            self.logger.error("Failed to save selector cache for %s/%s: %s", cache.recording_id, cache.locale,
                              exc)
            return False
        self.logger.info("Selector cache saved (%s entries)", len(cache.entries))
        return True

    def clear(self, recording_id: str, locale: Optional[str] = None) -> None:
        self.store.clear(recording_id, locale)
