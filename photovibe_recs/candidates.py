"""
Candidate Generation Module
============================

Builds the pool of tracks considered for a photo from up to three sources:
1. Curated catalog, ranked by language/era/vibe match against the analysis
2. Live Spotify search, queried with preferred languages and vibe tags
3. AI song suggestions resolved to Spotify tracks (optional)

Sources run concurrently and fail independently. Results are concatenated
in source order (curated first) and deduplicated by spotify_id, so a
curated entry's richer metadata wins over a search hit for the same track.
"""

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from .catalog import CuratedCatalog
from .config import (
    CURATED_ERA_MISS,
    CURATED_ERA_WEIGHT,
    CURATED_ERA_WINDOW_YEARS,
    CURATED_LANGUAGE_MISS,
    CURATED_LANGUAGE_WEIGHT,
    CURATED_VIBE_WEIGHT,
    DEFAULT_CANDIDATE_CONFIG,
    NEUTRAL_SCORE,
    SOURCE_CURATED,
    SOURCE_GPT,
    SOURCE_SPOTIFY_SEARCH,
    CandidateConfig,
)
from .audio_features import deadline_passed
from .errors import UpstreamError, UpstreamRateLimited
from .features import CandidateTrack, CuratedSong, ImageAnalysis
from .spotify_client import SpotifyClient
from .suggestions import SongSuggester, SongSuggestion
from .utils import decade_of, tag_match_ratio

logger = logging.getLogger(__name__)


def curated_match_score(song: CuratedSong, analysis: ImageAnalysis) -> float:
    """
    How well a catalog entry fits the analysis, in [0, 1].

    Weighted sum of three signals:
        language: 1.0 if the song's language is preferred, else 0.3
        era:      1.0 within +/-5 years of the target decade or in it, else 0.5
        vibe:     fraction of target vibe tags found in the song's tags

    Signals the analysis gives no basis for (no preferred languages, an
    unparseable era, no vibe tags) are not penalized.
    """
    preferred = {lang.lower() for lang in analysis.language_bias}
    if not preferred or (song.language and song.language.lower() in preferred):
        language_match = 1.0
    else:
        language_match = CURATED_LANGUAGE_MISS

    target_decade = analysis.target_decade
    if target_decade is None:
        era_match = 1.0
    elif song.year and (
        abs(song.year - target_decade) <= CURATED_ERA_WINDOW_YEARS
        or decade_of(song.year) == target_decade
    ):
        era_match = 1.0
    else:
        era_match = CURATED_ERA_MISS

    vibe = tag_match_ratio(analysis.vibe_tags, song.all_tags())
    vibe_score = NEUTRAL_SCORE if vibe is None else vibe

    return (
        CURATED_LANGUAGE_WEIGHT * language_match
        + CURATED_ERA_WEIGHT * era_match
        + CURATED_VIBE_WEIGHT * vibe_score
    )


def build_search_query(
    analysis: ImageAnalysis,
    max_languages: int = 2,
    max_vibe_tags: int = 3,
) -> str:
    """Space-joined preferred languages followed by vibe tags; may be empty."""
    terms = list(analysis.language_bias[:max_languages]) + list(analysis.vibe_tags[:max_vibe_tags])
    return " ".join(t for t in terms if t).strip()


def deduplicate(candidates: Iterable[CandidateTrack]) -> List[CandidateTrack]:
    """Keep the first occurrence of every spotify_id."""
    seen = set()
    unique = []
    for candidate in candidates:
        if candidate.spotify_id in seen:
            continue
        seen.add(candidate.spotify_id)
        unique.append(candidate)
    return unique


def pick_best_hit(hits: List[Dict], artist: str) -> Optional[Dict]:
    """Prefer a hit whose artist name overlaps the suggested artist, else the first hit."""
    if not hits:
        return None
    wanted = artist.lower()
    for hit in hits:
        for hit_artist in hit.get("artists") or []:
            name = (hit_artist.get("name") or "").lower()
            if name and (name in wanted or wanted in name):
                return hit
    return hits[0]


@dataclass
class CandidatePool:
    """Deduplicated candidates plus per-source bookkeeping."""
    candidates: List[CandidateTrack] = field(default_factory=list)
    source_counts: Dict[str, int] = field(default_factory=dict)
    failed_sources: List[str] = field(default_factory=list)
    raw_count: int = 0

    def to_dict(self) -> Dict:
        return {
            "total": len(self.candidates),
            "before_dedup": self.raw_count,
            "by_source": dict(self.source_counts),
            "failed_sources": list(self.failed_sources),
        }


class CandidateGenerator:
    """
    Generates candidate tracks for an image analysis.

    Attributes:
        spotify: Spotify API client used for search
        catalog: Curated catalog snapshot
        suggester: Optional AI suggestion client
        config: Source toggles and limits
    """

    def __init__(
        self,
        spotify_client: SpotifyClient,
        catalog: Optional[CuratedCatalog] = None,
        suggester: Optional[SongSuggester] = None,
        config: CandidateConfig = DEFAULT_CANDIDATE_CONFIG,
    ):
        self.spotify = spotify_client
        self.catalog = catalog if catalog is not None else CuratedCatalog()
        self.suggester = suggester
        self.config = config

    async def generate(
        self,
        analysis: ImageAnalysis,
        use_curated: Optional[bool] = None,
        use_spotify_search: Optional[bool] = None,
        use_gpt: Optional[bool] = None,
        deadline: Optional[float] = None,
    ) -> CandidatePool:
        """
        Generate candidates from every enabled source.

        Args:
            analysis: Image analysis driving the sources
            use_curated: Override config.use_curated
            use_spotify_search: Override config.use_spotify_search
            use_gpt: Override config.use_gpt
            deadline: Event-loop time after which suggestion lookups stop

        Returns:
            CandidatePool, unique by spotify_id
        """
        enabled = {
            SOURCE_CURATED: self.config.use_curated if use_curated is None else use_curated,
            SOURCE_SPOTIFY_SEARCH: (
                self.config.use_spotify_search if use_spotify_search is None else use_spotify_search
            ),
            SOURCE_GPT: self.config.use_gpt if use_gpt is None else use_gpt,
        }
        logger.info(
            "Generating candidates: curated=%s, spotify=%s, gpt=%s",
            enabled[SOURCE_CURATED], enabled[SOURCE_SPOTIFY_SEARCH], enabled[SOURCE_GPT],
        )

        # Invocation order decides which duplicate survives
        sources = {
            SOURCE_CURATED: self._curated_candidates,
            SOURCE_SPOTIFY_SEARCH: self._search_candidates,
            SOURCE_GPT: self._suggested_candidates,
        }
        names = [name for name in sources if enabled[name]]
        results = await asyncio.gather(
            *(sources[name](analysis, deadline) for name in names),
            return_exceptions=True,
        )

        pool = CandidatePool()
        combined: List[CandidateTrack] = []
        for name, result in zip(names, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                logger.warning("Candidate source %s failed: %s", name, result)
                pool.failed_sources.append(name)
                continue
            logger.info("Candidate source %s produced %d tracks", name, len(result))
            combined.extend(result)

        unique = deduplicate(combined)
        pool.raw_count = len(combined)
        if len(unique) > self.config.max_candidates:
            unique = unique[:self.config.max_candidates]

        pool.candidates = unique
        pool.source_counts = dict(Counter(c.source for c in unique))

        logger.info(
            "Total candidates: %d (%d before deduplication), by source: %s",
            len(unique), len(combined), pool.source_counts,
        )
        return pool

    async def generate_candidates(
        self,
        analysis: ImageAnalysis,
        use_curated: Optional[bool] = None,
        use_spotify_search: Optional[bool] = None,
        use_gpt: Optional[bool] = None,
        deadline: Optional[float] = None,
    ) -> List[CandidateTrack]:
        """Candidate list only; see generate()."""
        pool = await self.generate(
            analysis,
            use_curated=use_curated,
            use_spotify_search=use_spotify_search,
            use_gpt=use_gpt,
            deadline=deadline,
        )
        return pool.candidates

    # =========================================================================
    # SOURCES
    # =========================================================================

    async def _curated_candidates(
        self, analysis: ImageAnalysis, deadline: Optional[float] = None
    ) -> List[CandidateTrack]:
        songs = await asyncio.to_thread(self.catalog.list)
        return self.rank_curated(songs, analysis)

    def rank_curated(self, songs: Iterable[CuratedSong], analysis: ImageAnalysis) -> List[CandidateTrack]:
        """Top catalog entries by curated_match_score; ties keep catalog order."""
        scored = [(curated_match_score(song, analysis), song) for song in songs]
        scored.sort(key=lambda pair: pair[0], reverse=True)
        return [song.to_candidate() for _, song in scored[:self.config.curated_top_n]]

    async def _search_candidates(
        self, analysis: ImageAnalysis, deadline: Optional[float] = None
    ) -> List[CandidateTrack]:
        query = build_search_query(
            analysis,
            max_languages=self.config.search_max_languages,
            max_vibe_tags=self.config.search_max_vibe_tags,
        )
        if not query:
            logger.info("Empty search query, skipping Spotify search")
            return []

        logger.info("Searching Spotify: %r", query)
        try:
            hits = await asyncio.to_thread(self.spotify.search_tracks, query, self.config.search_limit)
        except UpstreamError as e:
            logger.warning("Spotify search failed: %s", e)
            return []

        return [CandidateTrack.from_spotify_track(hit, SOURCE_SPOTIFY_SEARCH) for hit in hits]

    async def _suggested_candidates(
        self, analysis: ImageAnalysis, deadline: Optional[float] = None
    ) -> List[CandidateTrack]:
        if self.suggester is None:
            logger.info("No suggestion client configured, skipping AI suggestions")
            return []

        suggestions = await asyncio.to_thread(
            self.suggester.suggest, analysis, self.config.suggestion_count
        )

        candidates = []
        for suggestion in suggestions:
            if deadline_passed(deadline):
                logger.warning(
                    "Deadline reached, resolved %d/%d suggestions", len(candidates), len(suggestions)
                )
                break
            try:
                candidate = await self._resolve_suggestion(suggestion)
            except UpstreamRateLimited as e:
                logger.warning("Rate limited while resolving suggestions: %s", e)
                break
            except UpstreamError as e:
                logger.warning("Could not resolve %r by %s: %s", suggestion.title, suggestion.artist, e)
                continue
            if candidate is not None:
                candidates.append(candidate)

        return candidates

    async def _resolve_suggestion(self, suggestion: SongSuggestion) -> Optional[CandidateTrack]:
        query = f"{suggestion.title} {suggestion.artist}"
        hits = await asyncio.to_thread(
            self.spotify.search_tracks, query, self.config.suggestion_search_limit
        )
        hit = pick_best_hit(hits, suggestion.artist)
        if hit is None:
            logger.debug("No Spotify match for suggestion %r", query)
            return None

        candidate = CandidateTrack.from_spotify_track(hit, SOURCE_GPT)
        candidate.language = suggestion.language
        if candidate.year is None:
            candidate.year = suggestion.year
        if suggestion.genre_tag:
            candidate.genre_tags = [suggestion.genre_tag]
        return candidate
