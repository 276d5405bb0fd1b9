"""
Multi-Criteria Scoring Engine
=============================

Scores every candidate against the image's target traits using a weighted
combination of six components:
1. Energy match (distance to target energy)
2. Valence match (distance to target valence)
3. Popularity tier (deep-cut bonus, mainstream penalty)
4. Language match (against the preferred languages)
5. Era match (distance to the target decade)
6. Vibe tag match (fuzzy tag overlap)

Mathematical Formulation:
-------------------------

Total Score = Σ (w_i × S_i) for each component i

where:
    S_energy  = max(0, 1 - |energy_track - energy_target|)
    S_valence = max(0, 1 - |valence_track - valence_target|)
    S_pop     = pop/100 (+0.3 if pop < 40, -0.2 if pop > 80), clamped to [0, 1]
    S_lang    = 1.0 if preferred language else 0.5
    S_era     = 1.0 / 0.7 / 0.4 by distance to the target decade
    S_vibe    = matched target tags / target tags

Every component lies in [0, 1]; with weights summing to 1 so does the total.
"""

import logging
from collections import Counter
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence

from .config import (
    CONFIDENCE_TIERS,
    DEEP_CUT_BONUS,
    DEFAULT_POPULARITY,
    DEFAULT_POPULARITY_THRESHOLDS,
    DEFAULT_WEIGHTS,
    ERA_DISTANT_SCORE,
    ERA_SCORE_BANDS,
    FALLBACK_CONFIDENCE,
    MAINSTREAM_PENALTY,
    NEUTRAL_SCORE,
    NON_PREFERRED_LANGUAGE_SCORE,
    PopularityThresholds,
    ScoringWeights,
)
from .features import AudioFeatures, CandidateTrack, ImageAnalysis
from .utils import parse_decade, tag_match_ratio

logger = logging.getLogger(__name__)


# =============================================================================
# COMPONENT SCORES
# =============================================================================

def score_energy(track_energy: float, target_energy: float) -> float:
    """Linear falloff: 1.0 at distance 0, 0.0 at distance >= 1."""
    return max(0.0, 1.0 - abs(track_energy - target_energy))


def score_valence(track_valence: float, target_valence: float) -> float:
    """Linear falloff: 1.0 at distance 0, 0.0 at distance >= 1."""
    return max(0.0, 1.0 - abs(track_valence - target_valence))


def score_popularity(
    popularity: Optional[float],
    thresholds: PopularityThresholds = DEFAULT_POPULARITY_THRESHOLDS,
) -> float:
    """
    Popularity score with deep-cut bonus and mainstream penalty.

    Args:
        popularity: Spotify popularity 0-100 (None counts as moderate)
        thresholds: Tier boundaries

    Returns:
        Score in [0, 1]
    """
    if popularity is None:
        popularity = DEFAULT_POPULARITY

    base = popularity / 100.0
    tier = thresholds.tier(popularity)
    if tier == "deep_cut":
        return min(1.0, base + DEEP_CUT_BONUS)
    if tier == "mainstream":
        return max(0.0, base - MAINSTREAM_PENALTY)
    return min(1.0, max(0.0, base))


def score_language(track_language: Optional[str], language_bias: Sequence[str]) -> float:
    """1.0 for a preferred language, 0.5 otherwise or when either side is unknown."""
    if not track_language or not language_bias:
        return NEUTRAL_SCORE

    preferred = {lang.lower() for lang in language_bias}
    return 1.0 if track_language.lower() in preferred else NON_PREFERRED_LANGUAGE_SCORE


def score_era(track_year: Optional[int], era_preference: Optional[str]) -> float:
    """Score by distance between the release year and the target decade."""
    if not track_year:
        return NEUTRAL_SCORE

    target_decade = parse_decade(era_preference)
    if target_decade is None:
        return NEUTRAL_SCORE

    distance = abs(track_year - target_decade)
    for max_distance, score in ERA_SCORE_BANDS:
        if distance <= max_distance:
            return score
    return ERA_DISTANT_SCORE


def score_vibe(track: CandidateTrack, target_tags: Sequence[str]) -> float:
    """Fraction of target vibe tags matched by the track's vibe and genre tags."""
    track_tags = list(track.vibe_tags or []) + list(track.genre_tags or [])
    # Untagged tracks (search hits) are unknown, not mismatched
    if not track_tags:
        return NEUTRAL_SCORE

    ratio = tag_match_ratio(target_tags, track_tags)
    return NEUTRAL_SCORE if ratio is None else ratio


def confidence_for(total: float) -> str:
    """Informational label for a total score."""
    for cutoff, label in CONFIDENCE_TIERS:
        if total >= cutoff:
            return label
    return FALLBACK_CONFIDENCE


# =============================================================================
# RESULT TYPES
# =============================================================================

@dataclass
class ScoreBreakdown:
    """Component scores and their weighted total."""
    energy: float
    valence: float
    popularity: float
    language: float
    era: float
    vibe: float
    total: float

    def to_dict(self) -> Dict[str, float]:
        return {
            "energy": round(self.energy, 4),
            "valence": round(self.valence, 4),
            "popularity": round(self.popularity, 4),
            "language": round(self.language, 4),
            "era": round(self.era, 4),
            "vibe": round(self.vibe, 4),
            "total": round(self.total, 4),
        }


@dataclass
class ScoredTrack:
    """A candidate with its features, scores, rank and confidence tier."""
    track: CandidateTrack
    audio_features: AudioFeatures
    scores: ScoreBreakdown
    rank: int = 0
    confidence: str = FALLBACK_CONFIDENCE

    @property
    def popularity(self) -> int:
        """Popularity with the missing-value default applied."""
        if self.track.popularity is None:
            return DEFAULT_POPULARITY
        return self.track.popularity

    def to_dict(self) -> Dict:
        return {
            "rank": self.rank,
            "confidence": self.confidence,
            "track": self.track.to_dict(),
            "audio_features": self.audio_features.to_dict(),
            "scores": self.scores.to_dict(),
        }


# =============================================================================
# ENGINE
# =============================================================================

class ScoringEngine:
    """
    Weighted multi-criteria scoring of candidate tracks.

    Attributes:
        weights: Component weights
        thresholds: Popularity tier boundaries
    """

    def __init__(
        self,
        weights: ScoringWeights = DEFAULT_WEIGHTS,
        thresholds: PopularityThresholds = DEFAULT_POPULARITY_THRESHOLDS,
    ):
        self.weights = weights
        self.thresholds = thresholds

        if abs(weights.total() - 1.0) > 1e-6:
            logger.warning("Scoring weights sum to %.3f, totals may leave [0, 1]", weights.total())

    def score_track(
        self,
        track: CandidateTrack,
        audio_features: AudioFeatures,
        analysis: ImageAnalysis,
    ) -> ScoredTrack:
        """
        Score one track against the analysis.

        Args:
            track: Candidate track
            audio_features: The track's audio features
            analysis: Image analysis with target values

        Returns:
            ScoredTrack with rank 0 (assigned by rank_candidates)
        """
        w = self.weights

        energy = score_energy(audio_features.energy, analysis.target_energy)
        valence = score_valence(audio_features.valence, analysis.target_valence)
        popularity = score_popularity(track.popularity, self.thresholds)
        language = score_language(track.language, analysis.language_bias)
        era = score_era(track.year, analysis.era_preference)
        vibe = score_vibe(track, analysis.vibe_tags)

        total = (
            energy * w.energy
            + valence * w.valence
            + popularity * w.popularity
            + language * w.language
            + era * w.era
            + vibe * w.vibe
        )

        return ScoredTrack(
            track=track,
            audio_features=audio_features,
            scores=ScoreBreakdown(
                energy=energy,
                valence=valence,
                popularity=popularity,
                language=language,
                era=era,
                vibe=vibe,
                total=total,
            ),
            confidence=confidence_for(total),
        )

    def rank_candidates(
        self,
        candidates: Sequence[CandidateTrack],
        features_map: Mapping[str, AudioFeatures],
        analysis: ImageAnalysis,
    ) -> List[ScoredTrack]:
        """
        Score and rank candidates, highest total first.

        Candidates without audio features are skipped. Ties keep input
        order (list.sort is stable), so ranking is deterministic.

        Returns:
            ScoredTrack list with ranks 1..n
        """
        logger.info("Scoring %d candidates", len(candidates))

        scored = []
        for candidate in candidates:
            features = features_map.get(candidate.spotify_id)
            if features is None:
                logger.warning("Missing audio features for %s, skipping", candidate.spotify_id)
                continue
            scored.append(self.score_track(candidate, features, analysis))

        scored.sort(key=lambda s: s.scores.total, reverse=True)

        for i, item in enumerate(scored):
            item.rank = i + 1

        if scored:
            avg = sum(s.scores.total for s in scored) / len(scored)
            logger.info(
                "Scored %d tracks, average %.3f, confidence %s",
                len(scored), avg, dict(Counter(s.confidence for s in scored)),
            )
            top = scored[0]
            logger.info(
                "Top track: %r by %s (%.3f)", top.track.title, top.track.artist, top.scores.total
            )

        return scored


def rank_candidates(
    candidates: Sequence[CandidateTrack],
    features_map: Mapping[str, AudioFeatures],
    analysis: ImageAnalysis,
    weights: Optional[ScoringWeights] = None,
) -> List[ScoredTrack]:
    """Convenience wrapper around ScoringEngine.rank_candidates."""
    engine = ScoringEngine(weights or DEFAULT_WEIGHTS)
    return engine.rank_candidates(candidates, features_map, analysis)


def explain_score(scored: ScoredTrack, analysis: ImageAnalysis) -> str:
    """Multi-line breakdown of why a track scored the way it did."""
    track, scores, features = scored.track, scored.scores, scored.audio_features

    lines = [
        f'Track: "{track.title}" by {track.artist}',
        f"Overall Score: {scores.total:.3f} (Rank #{scored.rank})",
        f"Confidence: {scored.confidence}",
        "",
        "Score Breakdown:",
        f"  Energy: {scores.energy:.3f} (track: {features.energy:.2f}, target: {analysis.target_energy:.2f})",
        f"  Valence: {scores.valence:.3f} (track: {features.valence:.2f}, target: {analysis.target_valence:.2f})",
        f"  Popularity: {scores.popularity:.3f} ({track.popularity if track.popularity is not None else 'unknown'})",
        f"  Language: {scores.language:.3f} (track: {track.language or 'unknown'}, "
        f"target: {', '.join(analysis.language_bias) or 'any'})",
        f"  Era: {scores.era:.3f} (track: {track.year or 'unknown'}, target: {analysis.era_preference})",
        f"  Vibe Tags: {scores.vibe:.3f}",
    ]
    return "\n".join(lines)
