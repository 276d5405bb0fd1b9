"""
Main Recommendation Engine
==========================

Orchestrates the complete recommendation pipeline:
1. Analyze the photo (or accept a ready-made ImageAnalysis)
2. Generate candidate tracks from the enabled sources
3. Look up audio features, then refresh popularity
4. Score and rank candidates
5. Apply diversity constraints
6. Generate explanations
7. Return formatted output with pipeline stats

The whole request runs under one deadline; sequential loops stop issuing
requests shortly before it and work with what they have.
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional

from .audio_features import AudioFeatureProvider
from .cache import AudioFeatureCache, create_feature_cache
from .candidates import CandidateGenerator
from .catalog import CuratedCatalog
from .config import (
    DEFAULT_CANDIDATE_CONFIG,
    DEFAULT_CONSTRAINTS,
    DEFAULT_PIPELINE_CONFIG,
    DEFAULT_POPULARITY_THRESHOLDS,
    DEFAULT_WEIGHTS,
    CandidateConfig,
    ConstraintConfig,
    PipelineConfig,
    PopularityThresholds,
    ScoringWeights,
)
from .constraints import ConstraintEngine
from .errors import (
    InsufficientCandidates,
    InsufficientScoredTracks,
    UpstreamError,
    UpstreamUnavailable,
)
from .explainer import ExplanationGenerator
from .features import CandidateTrack, ImageAnalysis
from .scoring import ScoredTrack, ScoringEngine
from .spotify_client import SpotifyClient
from .suggestions import SongSuggester
from .vision import VisionAnalyzer

logger = logging.getLogger(__name__)


@dataclass
class RecommendationResult:
    """Single track recommendation with explanation."""
    track_id: str
    title: str
    artist: str
    score: float
    rank: int
    confidence: str
    source: str
    explanation: str
    year: Optional[int] = None
    language: Optional[str] = None
    popularity: Optional[int] = None

    # Optional detailed breakdown
    breakdown: Optional[Dict] = None
    details: Optional[Dict] = None

    @property
    def spotify_url(self) -> str:
        return f"https://open.spotify.com/track/{self.track_id}"


@dataclass
class RecommendationOutput:
    """Complete recommendation output."""
    analysis: ImageAnalysis
    recommendations: List[RecommendationResult]
    stats: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "analysis": self.analysis.to_dict(),
            "recommendations": [
                {
                    "track_id": r.track_id,
                    "title": r.title,
                    "artist": r.artist,
                    "year": r.year,
                    "language": r.language,
                    "popularity": r.popularity,
                    "score": round(r.score, 4),
                    "rank": r.rank,
                    "confidence": r.confidence,
                    "source": r.source,
                    "explanation": r.explanation,
                    "spotify_url": r.spotify_url,
                    "breakdown": r.breakdown,
                    "details": r.details,
                }
                for r in self.recommendations
            ],
            "stats": self.stats,
        }

    def to_json(self, indent: int = 2) -> str:
        """Convert to JSON string."""
        return json.dumps(self.to_dict(), indent=indent, ensure_ascii=False)


def _ms(start: float) -> int:
    return int(round((time.perf_counter() - start) * 1000))


class RecommendationEngine:
    """
    Main recommendation engine orchestrating the complete pipeline.

    Usage:
        engine = RecommendationEngine()
        result = asyncio.run(engine.recommend_for_image(image_bytes))
        print(result.to_json())
    """

    def __init__(
        self,
        spotify_client: Optional[SpotifyClient] = None,
        feature_cache: Optional[AudioFeatureCache] = None,
        catalog: Optional[CuratedCatalog] = None,
        vision: Optional[VisionAnalyzer] = None,
        suggester: Optional[SongSuggester] = None,
        weights: ScoringWeights = DEFAULT_WEIGHTS,
        constraints: ConstraintConfig = DEFAULT_CONSTRAINTS,
        thresholds: PopularityThresholds = DEFAULT_POPULARITY_THRESHOLDS,
        candidate_config: CandidateConfig = DEFAULT_CANDIDATE_CONFIG,
        pipeline: PipelineConfig = DEFAULT_PIPELINE_CONFIG,
    ):
        """
        Initialize recommendation engine.

        Args:
            spotify_client: Pre-configured Spotify client (creates new if None)
            feature_cache: Process-wide audio-feature cache (built from REDIS_URL if None)
            catalog: Curated catalog snapshot
            vision: Vision analyzer (created on first image request if None)
            suggester: AI suggestion client for the gpt source
            weights: Scoring weights
            constraints: Diversity constraints
            thresholds: Popularity tier boundaries
            candidate_config: Candidate source settings
            pipeline: Deadline and selection sizes
        """
        self.spotify = spotify_client or SpotifyClient()
        self.features = AudioFeatureProvider(
            self.spotify, feature_cache if feature_cache is not None else create_feature_cache()
        )
        self.candidate_generator = CandidateGenerator(
            self.spotify,
            catalog if catalog is not None else CuratedCatalog(),
            suggester,
            candidate_config,
        )
        self.scorer = ScoringEngine(weights, thresholds)
        self.constraint_engine = ConstraintEngine(constraints, thresholds, pipeline)
        self.explainer = ExplanationGenerator(thresholds)
        self.vision = vision
        self.pipeline = pipeline

    async def recommend_for_image(
        self,
        image: bytes,
        mime_type: str = "image/jpeg",
        timeout: Optional[float] = None,
        **source_options,
    ) -> RecommendationOutput:
        """
        Analyze an image and recommend songs for it.

        Args:
            image: Raw image bytes
            mime_type: Image MIME type
            timeout: End-to-end deadline in seconds (pipeline default if None)
            **source_options: use_curated / use_spotify_search / use_gpt overrides

        Returns:
            RecommendationOutput
        """
        if self.vision is None:
            self.vision = VisionAnalyzer()

        async def run(deadline: float) -> RecommendationOutput:
            start = time.perf_counter()
            analysis = await asyncio.to_thread(self.vision.analyze, image, mime_type)
            timings = {"analysis_ms": _ms(start)}
            return await self._run(analysis, deadline, timings, **source_options)

        return await self._with_deadline(run, timeout)

    async def recommend_for_analysis(
        self,
        analysis: ImageAnalysis,
        timeout: Optional[float] = None,
        **source_options,
    ) -> RecommendationOutput:
        """Recommend songs for an existing ImageAnalysis; see recommend_for_image."""

        async def run(deadline: float) -> RecommendationOutput:
            return await self._run(analysis, deadline, {}, **source_options)

        return await self._with_deadline(run, timeout)

    async def _with_deadline(self, run, timeout: Optional[float]) -> RecommendationOutput:
        timeout = timeout if timeout is not None else self.pipeline.request_timeout
        loop = asyncio.get_running_loop()
        # Short timeouts keep half their budget for sequential loops
        margin = min(self.pipeline.deadline_margin, timeout / 2)
        deadline = loop.time() + timeout - margin

        try:
            return await asyncio.wait_for(run(deadline), timeout)
        except asyncio.TimeoutError as e:
            raise UpstreamUnavailable(
                f"Recommendation timed out after {timeout:.0f}s", service="pipeline"
            ) from e

    async def _run(
        self,
        analysis: ImageAnalysis,
        deadline: float,
        timings: Dict[str, int],
        use_curated: Optional[bool] = None,
        use_spotify_search: Optional[bool] = None,
        use_gpt: Optional[bool] = None,
    ) -> RecommendationOutput:
        total_start = time.perf_counter()

        # Step 1: Generate candidates
        logger.info("Step 1: Generating candidates")
        start = time.perf_counter()
        pool = await self.candidate_generator.generate(
            analysis,
            use_curated=use_curated,
            use_spotify_search=use_spotify_search,
            use_gpt=use_gpt,
            deadline=deadline,
        )
        timings["candidates_ms"] = _ms(start)

        if not pool.candidates:
            raise InsufficientCandidates("No candidates found for this image")

        # Step 2: Audio features
        logger.info("Step 2: Fetching audio features for %d candidates", len(pool.candidates))
        start = time.perf_counter()
        lookup = await self.features.lookup_audio_features(
            [c.spotify_id for c in pool.candidates], deadline=deadline
        )
        timings["features_ms"] = _ms(start)

        # Step 3: Live popularity (optional)
        logger.info("Step 3: Refreshing popularity")
        start = time.perf_counter()
        candidates = await self._refresh_popularity(
            [c for c in pool.candidates if c.spotify_id in lookup.features], deadline
        )
        timings["popularity_ms"] = _ms(start)

        # Step 4: Score and rank
        logger.info("Step 4: Scoring candidates")
        start = time.perf_counter()
        ranked = self.scorer.rank_candidates(candidates, lookup.features, analysis)
        timings["scoring_ms"] = _ms(start)

        if not ranked:
            raise InsufficientScoredTracks("No scorable tracks: audio features unavailable for every candidate")

        # Step 5: Constraints
        logger.info("Step 5: Applying constraints")
        start = time.perf_counter()
        report = self.constraint_engine.select(ranked)
        timings["constraints_ms"] = _ms(start)

        # Step 6: Explanations
        recommendations = [self._to_result(scored, analysis) for scored in report.tracks]
        timings["total_ms"] = _ms(total_start) + timings.get("analysis_ms", 0)

        stats = {
            "candidates": pool.to_dict(),
            "scored": len(ranked),
            "final": len(recommendations),
            "audio_features": lookup.to_dict(),
            "constraints": report.to_dict(),
            "timings": timings,
        }
        logger.info(
            "Recommended %d tracks from %d candidates in %dms",
            len(recommendations), len(pool.candidates), timings["total_ms"],
        )

        return RecommendationOutput(analysis=analysis, recommendations=recommendations, stats=stats)

    async def _refresh_popularity(
        self,
        candidates: List[CandidateTrack],
        deadline: float,
    ) -> List[CandidateTrack]:
        """Override candidate popularity with live values; failures keep what we have."""
        if not candidates:
            return candidates
        try:
            popularity = await self.features.get_track_popularity(
                [c.spotify_id for c in candidates], deadline=deadline
            )
        except UpstreamError as e:
            logger.warning("Popularity refresh failed, using known values: %s", e)
            return candidates

        return [
            replace(c, popularity=popularity[c.spotify_id]) if c.spotify_id in popularity else c
            for c in candidates
        ]

    def _to_result(self, scored: ScoredTrack, analysis: ImageAnalysis) -> RecommendationResult:
        detailed = self.explainer.generate_explanation(scored, analysis)
        track = scored.track
        return RecommendationResult(
            track_id=track.spotify_id,
            title=track.title,
            artist=track.artist,
            score=scored.scores.total,
            rank=scored.rank,
            confidence=scored.confidence,
            source=track.source,
            explanation=detailed.summary,
            year=track.year,
            language=track.language,
            popularity=track.popularity,
            breakdown=scored.scores.to_dict(),
            details=detailed.to_dict(),
        )
