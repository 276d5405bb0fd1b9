"""
Audio-Feature Provider
======================

Serves per-track audio features and popularity for the scoring engine.

Audio features:
    1. Look up every requested ID in the AudioFeatureCache (memory, then store)
    2. Fetch the misses from Spotify in sequential batches of at most 100
    3. Write fresh features to both cache tiers before returning

Popularity is never cached: it drifts over time and is cheap to refetch.
Only the Spotify request itself may raise; cache trouble degrades silently.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, Optional, Sequence

from .cache import AudioFeatureCache
from .config import AUDIO_FEATURES_BATCH_SIZE, POPULARITY_BATCH_SIZE
from .features import AudioFeatures
from .spotify_client import SpotifyClient
from .utils import chunked, unique_in_order

logger = logging.getLogger(__name__)


def deadline_passed(deadline: Optional[float]) -> bool:
    """True once the event-loop clock has reached ``deadline``."""
    return deadline is not None and asyncio.get_running_loop().time() >= deadline


@dataclass
class FeatureLookup:
    """Audio features plus provenance counts for observability."""
    features: Dict[str, AudioFeatures] = field(default_factory=dict)
    requested: int = 0
    memory_hits: int = 0
    store_hits: int = 0
    fetched: int = 0
    batches: int = 0
    truncated: bool = False

    @property
    def cache_hit_ratio(self) -> float:
        if self.requested == 0:
            return 0.0
        return (self.memory_hits + self.store_hits) / self.requested

    def to_dict(self) -> Dict:
        return {
            "requested": self.requested,
            "memory_hits": self.memory_hits,
            "store_hits": self.store_hits,
            "fetched": self.fetched,
            "batches": self.batches,
            "cache_hit_ratio": round(self.cache_hit_ratio, 4),
            "truncated": self.truncated,
        }


class AudioFeatureProvider:
    """
    Fetches and caches audio features and popularity.

    Attributes:
        spotify: Spotify API client
        cache: Shared audio-feature cache
    """

    def __init__(self, spotify_client: SpotifyClient, cache: Optional[AudioFeatureCache] = None):
        self.spotify = spotify_client
        self.cache = cache if cache is not None else AudioFeatureCache()

    async def lookup_audio_features(
        self,
        track_ids: Sequence[str],
        deadline: Optional[float] = None,
    ) -> FeatureLookup:
        """
        Get audio features with cache provenance.

        Args:
            track_ids: Spotify track IDs (duplicates ignored)
            deadline: Event-loop time after which no further batches are issued

        Returns:
            FeatureLookup; IDs with no features are simply absent
        """
        ids = unique_in_order(track_ids)
        result = FeatureLookup(requested=len(ids))
        if not ids:
            return result

        cached = await self.cache.get_many(ids)
        result.features.update(cached.found)
        result.memory_hits = cached.memory_hits
        result.store_hits = cached.store_hits

        missing = [tid for tid in ids if tid not in result.features]
        if not missing:
            logger.info("All %d audio features served from cache", len(ids))
            return result

        logger.info("Audio feature cache miss: %d/%d tracks need fetching", len(missing), len(ids))

        fetched: Dict[str, AudioFeatures] = {}
        for batch in chunked(missing, AUDIO_FEATURES_BATCH_SIZE):
            if deadline_passed(deadline):
                logger.warning("Deadline reached, skipping remaining audio-feature batches")
                result.truncated = True
                break
            raw = await asyncio.to_thread(self.spotify.fetch_audio_features, batch)
            result.batches += 1
            for track_id, item in raw.items():
                fetched[track_id] = AudioFeatures.from_spotify(item)

        await self.cache.put_many(fetched)

        result.features.update(fetched)
        result.fetched = len(fetched)
        logger.info(
            "Audio features: %d/%d available (cache hit ratio %.2f)",
            len(result.features), len(ids), result.cache_hit_ratio,
        )
        return result

    async def get_audio_features(
        self,
        track_ids: Sequence[str],
        deadline: Optional[float] = None,
    ) -> Dict[str, AudioFeatures]:
        """Mapping track ID -> AudioFeatures for every ID that has features."""
        lookup = await self.lookup_audio_features(track_ids, deadline=deadline)
        return lookup.features

    async def get_track_popularity(
        self,
        track_ids: Sequence[str],
        deadline: Optional[float] = None,
    ) -> Dict[str, int]:
        """
        Fetch live popularity (0-100) in sequential batches of at most 50.

        Args:
            track_ids: Spotify track IDs
            deadline: Event-loop time after which no further batches are issued

        Returns:
            Mapping track ID -> popularity
        """
        ids = unique_in_order(track_ids)
        popularity: Dict[str, int] = {}

        for batch in chunked(ids, POPULARITY_BATCH_SIZE):
            if deadline_passed(deadline):
                logger.warning("Deadline reached, skipping remaining popularity batches")
                break
            popularity.update(await asyncio.to_thread(self.spotify.fetch_popularity, batch))

        logger.info("Retrieved popularity for %d/%d tracks", len(popularity), len(ids))
        return popularity
