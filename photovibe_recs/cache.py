"""
Caching Layer
=============

Two pieces:

1. TTL stores implementing the cache/token store contract
   (``get``, ``set_with_ttl``, ``mget``, ``delete``):
   - MemoryTTLStore: process-local, used in tests and when no Redis is configured
   - RedisTTLStore: persistent store backed by ``redis.asyncio``
   Stores raise CacheUnavailable for any backend failure.

2. AudioFeatureCache: a fast in-memory tier in front of an optional
   persistent store. It never raises for cache-layer errors; an unreachable
   store degrades to memory-only caching.

Construct one AudioFeatureCache per process and pass it to the components
that need it.
"""

import json
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from redis import asyncio as aioredis
from redis.exceptions import RedisError

from .config import (
    AUDIO_FEATURE_KEY_PREFIX,
    AUDIO_FEATURE_MEMORY_MAX_ENTRIES,
    AUDIO_FEATURE_TTL_SECONDS,
    REDIS_CONNECT_TIMEOUT,
    REDIS_URL,
)
from .errors import CacheUnavailable
from .features import AudioFeatures

logger = logging.getLogger(__name__)


class MemoryTTLStore:
    """In-process key-value store with per-key expiry."""

    def __init__(self):
        self._data: Dict[str, Tuple[float, str]] = {}

    def _live(self, key: str) -> Optional[str]:
        entry = self._data.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if time.monotonic() >= expires_at:
            self._data.pop(key, None)
            return None
        return value

    async def get(self, key: str) -> Optional[str]:
        return self._live(key)

    async def mget(self, keys: Sequence[str]) -> List[Optional[str]]:
        return [self._live(k) for k in keys]

    async def set_with_ttl(self, key: str, value: str, ttl_seconds: int) -> None:
        self._data[key] = (time.monotonic() + ttl_seconds, value)

    async def set_many_with_ttl(self, items: Dict[str, str], ttl_seconds: int) -> None:
        for key, value in items.items():
            await self.set_with_ttl(key, value, ttl_seconds)

    async def delete(self, keys: Sequence[str]) -> None:
        for key in keys:
            self._data.pop(key, None)

    def __len__(self) -> int:
        return len(self._data)


class RedisTTLStore:
    """Persistent TTL store on Redis."""

    def __init__(self, url: str = REDIS_URL, client: Optional[aioredis.Redis] = None):
        self.url = url
        self.client = client or aioredis.from_url(
            url,
            socket_connect_timeout=REDIS_CONNECT_TIMEOUT,
            decode_responses=True,
        )

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self.client.get(key)
        except (RedisError, OSError) as e:
            raise CacheUnavailable(f"Redis read failed: {e}") from e

    async def mget(self, keys: Sequence[str]) -> List[Optional[str]]:
        if not keys:
            return []
        try:
            return await self.client.mget(list(keys))
        except (RedisError, OSError) as e:
            raise CacheUnavailable(f"Redis read failed: {e}") from e

    async def set_with_ttl(self, key: str, value: str, ttl_seconds: int) -> None:
        try:
            await self.client.setex(key, ttl_seconds, value)
        except (RedisError, OSError) as e:
            raise CacheUnavailable(f"Redis write failed: {e}") from e

    async def set_many_with_ttl(self, items: Dict[str, str], ttl_seconds: int) -> None:
        if not items:
            return
        try:
            async with self.client.pipeline(transaction=True) as pipe:
                for key, value in items.items():
                    pipe.setex(key, ttl_seconds, value)
                await pipe.execute()
        except (RedisError, OSError) as e:
            raise CacheUnavailable(f"Redis write failed: {e}") from e

    async def delete(self, keys: Sequence[str]) -> None:
        if not keys:
            return
        try:
            await self.client.delete(*keys)
        except (RedisError, OSError) as e:
            raise CacheUnavailable(f"Redis delete failed: {e}") from e


@dataclass
class CacheLookup:
    """Result of a cache read with per-tier hit counts."""
    found: Dict[str, AudioFeatures] = field(default_factory=dict)
    memory_hits: int = 0
    store_hits: int = 0


class AudioFeatureCache:
    """
    Two-tier audio-feature cache.

    Attributes:
        store: Persistent TTL store, or None for memory-only caching
        ttl_seconds: Expiry for persisted entries
        max_memory_entries: Size of the memory tier; least recently used entries are evicted first
    """

    def __init__(
        self,
        store=None,
        ttl_seconds: int = AUDIO_FEATURE_TTL_SECONDS,
        key_prefix: str = AUDIO_FEATURE_KEY_PREFIX,
        max_memory_entries: int = AUDIO_FEATURE_MEMORY_MAX_ENTRIES,
    ):
        self.store = store
        self.ttl_seconds = ttl_seconds
        self.key_prefix = key_prefix
        self.max_memory_entries = max(1, max_memory_entries)
        self._memory: "OrderedDict[str, AudioFeatures]" = OrderedDict()

    def _key(self, track_id: str) -> str:
        return f"{self.key_prefix}{track_id}"

    def __contains__(self, track_id: str) -> bool:
        return track_id in self._memory

    def _remember(self, features: Dict[str, AudioFeatures]) -> None:
        for track_id, value in features.items():
            self._memory[track_id] = value
            self._memory.move_to_end(track_id)
        while len(self._memory) > self.max_memory_entries:
            self._memory.popitem(last=False)

    def seed(self, features: Dict[str, AudioFeatures]) -> None:
        """Put features into the memory tier only."""
        self._remember(features)

    async def get_many(self, track_ids: Sequence[str]) -> CacheLookup:
        """
        Look up features, memory tier first, then the persistent store.

        Store hits are promoted into memory. Store failures count as misses.
        """
        lookup = CacheLookup()

        for track_id in track_ids:
            cached = self._memory.get(track_id)
            if cached is not None:
                lookup.found[track_id] = cached
                self._memory.move_to_end(track_id)
        lookup.memory_hits = len(lookup.found)

        remaining = [tid for tid in track_ids if tid not in lookup.found]
        if not remaining or self.store is None:
            return lookup

        try:
            values = await self.store.mget([self._key(tid) for tid in remaining])
        except CacheUnavailable as e:
            logger.warning("Persistent cache unavailable, using memory only: %s", e)
            return lookup

        for track_id, raw in zip(remaining, values):
            if not raw:
                continue
            try:
                features = AudioFeatures.from_dict(json.loads(raw))
            except (ValueError, TypeError, AttributeError):
                logger.warning("Discarding unreadable cached features for %s", track_id)
                continue
            lookup.found[track_id] = features
            lookup.store_hits += 1

        self._remember({tid: lookup.found[tid] for tid in remaining if tid in lookup.found})
        logger.debug("Persistent cache: %d/%d hits", lookup.store_hits, len(remaining))
        return lookup

    async def put_many(self, features: Dict[str, AudioFeatures]) -> None:
        """Write features to both tiers. Store failures are logged, not raised."""
        if not features:
            return

        self._remember(features)

        if self.store is None:
            return

        payload = {self._key(tid): json.dumps(f.to_dict()) for tid, f in features.items()}
        try:
            await self.store.set_many_with_ttl(payload, self.ttl_seconds)
        except CacheUnavailable as e:
            logger.warning("Could not persist %d audio features: %s", len(features), e)

    async def clear(self, track_ids: Optional[Iterable[str]] = None) -> None:
        """Drop given tracks from both tiers, or the whole memory tier."""
        if track_ids is None:
            self._memory.clear()
            return

        ids = list(track_ids)
        for track_id in ids:
            self._memory.pop(track_id, None)

        if self.store is None:
            return
        try:
            await self.store.delete([self._key(tid) for tid in ids])
        except CacheUnavailable as e:
            logger.warning("Could not clear persisted features: %s", e)


def create_feature_cache(redis_url: str = REDIS_URL) -> AudioFeatureCache:
    """Feature cache backed by Redis when a URL is configured, memory only otherwise."""
    if not redis_url:
        logger.info("No REDIS_URL configured, audio features cached in memory only")
        return AudioFeatureCache()
    return AudioFeatureCache(store=RedisTTLStore(redis_url))
