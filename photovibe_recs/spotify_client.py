"""
Spotify API Client Wrapper
==========================

Handles all interactions with the Spotify Web API:
- Authentication (client-credentials, or a stored refresh token)
- Track search
- Audio features retrieval (max 100 IDs per request)
- Track popularity retrieval (max 50 IDs per request)
- Translation of API failures into the pipeline's error taxonomy

The client is synchronous (spotipy); async callers run it in a worker thread.
"""

import logging
import os
import time
from typing import Any, Callable, Dict, List, Optional, Sequence

import redis
import requests
import spotipy
from spotipy.cache_handler import CacheHandler, MemoryCacheHandler, RedisCacheHandler
from spotipy.exceptions import SpotifyException
from spotipy.oauth2 import SpotifyClientCredentials, SpotifyOAuth, SpotifyOauthError

from .config import (
    AUDIO_FEATURES_BATCH_SIZE,
    DEFAULT_POPULARITY,
    POPULARITY_BATCH_SIZE,
    REDIS_CONNECT_TIMEOUT,
    REDIS_URL,
    SEARCH_MAX_LIMIT,
    SPOTIFY_CLIENT_ID,
    SPOTIFY_CLIENT_SECRET,
    SPOTIFY_MARKET,
    SPOTIFY_REDIRECT_URI,
    SPOTIFY_REFRESH_TOKEN,
    SPOTIFY_REQUEST_TIMEOUT,
    SPOTIFY_TOKEN_KEY,
)
from .errors import UpstreamAuthError, UpstreamRateLimited, UpstreamUnavailable

logger = logging.getLogger(__name__)

DEFAULT_RETRY_AFTER = 60


def _retry_after(headers: Optional[Dict[str, Any]]) -> int:
    if not headers:
        return DEFAULT_RETRY_AFTER
    value = headers.get("Retry-After") or headers.get("retry-after")
    try:
        return int(value)
    except (TypeError, ValueError):
        return DEFAULT_RETRY_AFTER


class TokenCacheHandler(CacheHandler):
    """
    Spotify token store mirrored in process memory.

    Tokens are written to Redis when one is configured, but the memory copy
    is authoritative whenever Redis cannot be read, so an outage never sends
    spotipy into its interactive authorization flow.
    """

    def __init__(self, redis_client: Optional[redis.Redis] = None, key: str = SPOTIFY_TOKEN_KEY):
        self.memory = MemoryCacheHandler()
        self.redis = RedisCacheHandler(redis_client, key=key) if redis_client is not None else None

    def get_cached_token(self) -> Optional[Dict[str, Any]]:
        if self.redis is not None:
            # RedisCacheHandler logs and returns None on connection errors
            token_info = self.redis.get_cached_token()
            if token_info:
                self.memory.save_token_to_cache(token_info)
                return token_info
        return self.memory.get_cached_token()

    def save_token_to_cache(self, token_info: Dict[str, Any]) -> None:
        self.memory.save_token_to_cache(token_info)
        if self.redis is not None:
            self.redis.save_token_to_cache(token_info)


def _token_cache_handler(redis_url: str = REDIS_URL) -> TokenCacheHandler:
    """Token store: Redis-backed when configured and reachable, memory only otherwise."""
    if not redis_url:
        return TokenCacheHandler()

    client = redis.Redis.from_url(redis_url, socket_connect_timeout=REDIS_CONNECT_TIMEOUT)
    try:
        client.ping()
    except (redis.exceptions.RedisError, OSError) as e:
        logger.warning("Token store unavailable, keeping Spotify tokens in memory: %s", e)
        return TokenCacheHandler()
    return TokenCacheHandler(client)


def build_auth_manager():
    """
    Create a spotipy auth manager from the environment.

    A configured refresh token selects the authorization-code flow (needed by
    apps whose client-credentials tokens cannot read audio features);
    otherwise client-credentials is used.
    """
    # Read credentials at call time, not import time
    client_id = os.environ.get("SPOTIFY_CLIENT_ID") or os.environ.get("SPOTIPY_CLIENT_ID") or SPOTIFY_CLIENT_ID
    client_secret = os.environ.get("SPOTIFY_CLIENT_SECRET") or os.environ.get("SPOTIPY_CLIENT_SECRET") or SPOTIFY_CLIENT_SECRET
    refresh_token = os.environ.get("SPOTIFY_REFRESH_TOKEN") or SPOTIFY_REFRESH_TOKEN

    if not client_id or not client_secret:
        raise UpstreamAuthError("Missing Spotify API credentials", service="spotify")

    cache_handler = _token_cache_handler(REDIS_URL)

    if refresh_token:
        if not cache_handler.get_cached_token():
            # Expired placeholder; spotipy refreshes it on first use
            cache_handler.save_token_to_cache({
                "access_token": "",
                "token_type": "Bearer",
                "expires_in": 0,
                "expires_at": 0,
                "scope": None,
                "refresh_token": refresh_token,
            })
        return SpotifyOAuth(
            client_id=client_id,
            client_secret=client_secret,
            redirect_uri=os.environ.get("SPOTIFY_REDIRECT_URI") or SPOTIFY_REDIRECT_URI,
            cache_handler=cache_handler,
            open_browser=False,
        )

    return SpotifyClientCredentials(
        client_id=client_id,
        client_secret=client_secret,
        cache_handler=cache_handler,
    )


class SpotifyClient:
    """
    Wrapper around Spotipy with batch limits and error translation.

    Attributes:
        sp: Spotipy client instance
        market: Market code applied to searches
    """

    def __init__(self, sp: Optional[spotipy.Spotify] = None, market: str = SPOTIFY_MARKET):
        """
        Initialize Spotify client.

        Args:
            sp: Pre-built spotipy client (built from the environment if None)
            market: Market code for search results
        """
        self.market = market
        if sp is None:
            # Retries disabled so throttling reaches the caller with its Retry-After
            sp = spotipy.Spotify(
                auth_manager=build_auth_manager(),
                requests_timeout=SPOTIFY_REQUEST_TIMEOUT,
                retries=0,
                status_retries=0,
            )
        self.sp = sp

        # Request throttling
        self._last_request_time = 0.0
        self._min_request_interval = 0.05  # 50ms between requests

    def _throttle(self):
        """Ensure minimum time between requests."""
        elapsed = time.time() - self._last_request_time
        if elapsed < self._min_request_interval:
            time.sleep(self._min_request_interval - elapsed)
        self._last_request_time = time.time()

    def _call(self, operation: str, func: Callable, *args, **kwargs):
        """Run one API request, translating failures."""
        self._throttle()
        try:
            return func(*args, **kwargs)
        except SpotifyOauthError as e:
            raise UpstreamAuthError(f"Spotify auth failed: {e}", service="spotify") from e
        except SpotifyException as e:
            if e.http_status == 429:
                retry_after = _retry_after(e.headers)
                logger.warning("Spotify rate limit hit during %s, retry after %ss", operation, retry_after)
                raise UpstreamRateLimited(
                    f"Spotify rate limit reached during {operation}",
                    retry_after=retry_after,
                    service="spotify",
                ) from e
            if e.http_status in (401, 403):
                raise UpstreamAuthError(
                    f"Spotify rejected credentials for {operation}: {e.http_status}",
                    service="spotify",
                ) from e
            raise UpstreamUnavailable(
                f"Spotify API error during {operation}: {e.http_status} - {e.msg}",
                service="spotify",
            ) from e
        except requests.exceptions.RequestException as e:
            raise UpstreamUnavailable(f"Spotify unreachable during {operation}: {e}", service="spotify") from e

    # =========================================================================
    # SEARCH OPERATIONS
    # =========================================================================

    def search_tracks(self, query: str, limit: int = 30) -> List[Dict]:
        """
        General track search.

        Args:
            query: Search query
            limit: Maximum tracks to return

        Returns:
            List of Spotify track objects
        """
        result = self._call(
            "search",
            self.sp.search,
            q=query,
            type="track",
            limit=min(limit, SEARCH_MAX_LIMIT),
            market=self.market,
        )
        return [t for t in (result or {}).get("tracks", {}).get("items", []) if t and t.get("id")]

    # =========================================================================
    # TRACK DATA OPERATIONS
    # =========================================================================

    def fetch_audio_features(self, track_ids: Sequence[str]) -> Dict[str, Dict]:
        """
        Fetch audio features for one batch of tracks.

        Args:
            track_ids: At most 100 Spotify track IDs

        Returns:
            Mapping track ID -> raw audio-features object (unknown IDs absent)
        """
        if len(track_ids) > AUDIO_FEATURES_BATCH_SIZE:
            raise ValueError(f"At most {AUDIO_FEATURES_BATCH_SIZE} IDs per audio-features request")
        if not track_ids:
            return {}

        result = self._call("audio_features", self.sp.audio_features, list(track_ids)) or []

        features = {}
        for track_id, item in zip(track_ids, result):
            if item:
                features[track_id] = item
            else:
                logger.debug("No audio features for track %s", track_id)
        return features

    def fetch_popularity(self, track_ids: Sequence[str]) -> Dict[str, int]:
        """
        Fetch current popularity for one batch of tracks.

        Args:
            track_ids: At most 50 Spotify track IDs

        Returns:
            Mapping track ID -> popularity (0-100)
        """
        if len(track_ids) > POPULARITY_BATCH_SIZE:
            raise ValueError(f"At most {POPULARITY_BATCH_SIZE} IDs per tracks request")
        if not track_ids:
            return {}

        result = self._call("tracks", self.sp.tracks, list(track_ids), market=self.market) or {}

        popularity = {}
        for track in result.get("tracks") or []:
            if track and track.get("id"):
                value = track.get("popularity")
                popularity[track["id"]] = int(value) if value is not None else DEFAULT_POPULARITY
        return popularity
