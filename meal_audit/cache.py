# meal_audit/cache.py
"""
Content-addressed cache of normalized analyses.

Entries live under ``<namespace>_v<CACHE_SCHEMA_VERSION>_<fingerprint>``.
Bump CACHE_SCHEMA_VERSION whenever an AnalysisResult field is added, removed
or changes type: entries written under an older version become unreachable
and are never migrated.

Every failure here is logged and absorbed. A broken cache costs a remote
call, never a failed analysis.
"""

import logging
import time
from typing import Callable, Optional

from pydantic import ValidationError

from meal_audit.schemas import AnalysisResult, CacheEntry
from meal_audit.storage import QuotaExceededError, Store

logger = logging.getLogger(__name__)

CACHE_SCHEMA_VERSION = 1


def namespace_prefix(namespace: str, version: int = CACHE_SCHEMA_VERSION) -> str:
    return f"{namespace}_v{version}_"


class ResultCache:
    def __init__(
        self,
        store: Store,
        namespace: str = "nutrition",
        schema_version: int = CACHE_SCHEMA_VERSION,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.prefix = namespace_prefix(namespace, schema_version)
        self._clock = clock

    def key_for(self, fingerprint: str) -> str:
        return self.prefix + fingerprint

    def get(self, fingerprint: str) -> Optional[AnalysisResult]:
        key = self.key_for(fingerprint)
        try:
            raw = self.store.get(key)
        except Exception as e:
            logger.warning("Cache read failed for %s: %s", key, e)
            return None

        if raw is None:
            return None

        try:
            entry = CacheEntry.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(
                "Discarding corrupt cache entry %s (%d errors)", key, e.error_count()
            )
            self._discard(key)
            return None

        return entry.data

    def put(self, fingerprint: str, result: AnalysisResult) -> bool:
        """Store ``result``. Returns True when the entry was written."""
        key = self.key_for(fingerprint)
        payload = CacheEntry(timestamp=self._clock(), data=result).model_dump_json(by_alias=True)
        value = payload.encode("utf-8")

        try:
            self.store.set(key, value)
            return True
        except QuotaExceededError as e:
            logger.warning("Cache quota exceeded (%s), evicting namespace %s", e, self.prefix)
        except Exception as e:
            logger.warning("Cache write failed for %s: %s", key, e)
            return False

        self.evict_all()

        try:
            self.store.set(key, value)
            return True
        except Exception as e:
            logger.warning("Cache write abandoned for %s after eviction: %s", key, e)
            return False

    def evict_all(self) -> int:
        """Delete every key in this cache's namespace. Returns the number of keys removed."""
        try:
            keys = self.store.list_keys(self.prefix)
        except Exception as e:
            logger.warning("Cache key listing failed for %s: %s", self.prefix, e)
            return 0

        removed = 0
        for key in keys:
            if self._discard(key):
                removed += 1

        logger.info("Evicted %d cache entries from %s", removed, self.prefix)
        return removed

    def _discard(self, key: str) -> bool:
        try:
            self.store.delete(key)
            return True
        except Exception as e:
            logger.warning("Cache delete failed for %s: %s", key, e)
            return False
