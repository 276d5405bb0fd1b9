"""
Explanation Generator Module
============================

Generates short, human-readable explanations for each selected track.
Explanations cover:
- Energy and valence fit against the photo
- Popularity tier (deep cut, moderate, mainstream)
- Language and era match
- Shared vibe tags
"""

from typing import Dict, List, Optional, Tuple
from dataclasses import dataclass, field

import numpy as np

from .config import DEFAULT_POPULARITY_THRESHOLDS, PopularityThresholds
from .features import ImageAnalysis
from .scoring import ScoredTrack


@dataclass
class DetailedExplanation:
    """Comprehensive explanation for a recommendation."""
    track_id: str
    summary: str

    # Component explanations
    mood_explanation: str = ""
    popularity_explanation: str = ""
    language_explanation: str = ""
    era_explanation: str = ""
    vibe_explanation: str = ""
    matched_tags: List[str] = field(default_factory=list)

    # Strongest component
    primary_signal: str = ""

    def to_dict(self) -> Dict:
        return {
            "summary": self.summary,
            "mood": self.mood_explanation,
            "popularity": self.popularity_explanation,
            "language": self.language_explanation,
            "era": self.era_explanation,
            "vibe": self.vibe_explanation,
            "matched_tags": list(self.matched_tags),
            "primary_signal": self.primary_signal,
        }


class ExplanationGenerator:
    """
    Generates human-readable explanations for selected tracks.

    Phrases use the actual feature values and tags so each explanation
    reads specific to the photo rather than generic.
    """

    def __init__(self, thresholds: PopularityThresholds = DEFAULT_POPULARITY_THRESHOLDS):
        self.thresholds = thresholds

        self.energy_descriptors = {
            "high": "high energy and intense",
            "mid": "steady, mid-tempo energy",
            "low": "calm and mellow",
        }
        self.valence_descriptors = {
            "high": "upbeat and bright",
            "mid": "bittersweet",
            "low": "dark and introspective",
        }

    def generate_explanation(self, scored: ScoredTrack, analysis: ImageAnalysis) -> DetailedExplanation:
        """
        Generate a comprehensive explanation for one selected track.

        Args:
            scored: Scored track from the final selection
            analysis: Image analysis it was matched against

        Returns:
            DetailedExplanation instance
        """
        explanation = DetailedExplanation(track_id=scored.track.spotify_id, summary="")

        explanation.mood_explanation = self._explain_mood(scored, analysis)
        explanation.popularity_explanation = self._explain_popularity(scored)
        explanation.language_explanation = self._explain_language(scored, analysis)
        explanation.era_explanation = self._explain_era(scored, analysis)
        explanation.vibe_explanation, explanation.matched_tags = self._explain_vibe(scored, analysis)

        s = scored.scores
        component_scores = {
            "mood": float(np.mean([s.energy, s.valence])),
            "popularity": s.popularity,
            "language": s.language,
            "era": s.era,
            "vibe": s.vibe if explanation.matched_tags else 0.0,
        }
        explanation.primary_signal = max(component_scores, key=lambda k: component_scores[k])
        explanation.summary = self._generate_summary(scored, analysis, explanation)

        return explanation

    def _level(self, value: float) -> str:
        if value >= 0.65:
            return "high"
        if value <= 0.35:
            return "low"
        return "mid"

    def _explain_mood(self, scored: ScoredTrack, analysis: ImageAnalysis) -> str:
        features = scored.audio_features
        energy = self.energy_descriptors[self._level(features.energy)]
        valence = self.valence_descriptors[self._level(features.valence)]

        energy_gap = abs(features.energy - analysis.target_energy)
        valence_gap = abs(features.valence - analysis.target_valence)

        if energy_gap < 0.15 and valence_gap < 0.15:
            return f"Sounds like the photo feels: {energy}, {valence}."
        if energy_gap < 0.15:
            return f"Energy fits the photo ({energy}), with a {valence} mood."
        if valence_gap < 0.15:
            return f"Mood fits the photo ({valence}), with {energy} delivery."
        return f"A contrasting take: {energy} and {valence}."

    def _explain_popularity(self, scored: ScoredTrack) -> str:
        popularity = scored.popularity
        tier = self.thresholds.tier(popularity)
        if tier == "deep_cut":
            return f"A hidden gem (popularity {popularity})."
        if tier == "mainstream":
            return f"A well-known pick (popularity {popularity})."
        return f"Moderately known (popularity {popularity})."

    def _explain_language(self, scored: ScoredTrack, analysis: ImageAnalysis) -> str:
        language = scored.track.language
        if not language:
            return "Language unknown."
        if scored.scores.language >= 1.0:
            return f"Sung in {language}, a language that suits the setting."
        return f"Sung in {language}."

    def _explain_era(self, scored: ScoredTrack, analysis: ImageAnalysis) -> str:
        year = scored.track.year
        if not year:
            return "Release year unknown."
        if scored.scores.era >= 1.0:
            return f"From {year}, right in the photo's {analysis.era_preference} aesthetic."
        return f"From {year}."

    def _explain_vibe(self, scored: ScoredTrack, analysis: ImageAnalysis) -> Tuple[str, List[str]]:
        track_tags = [t.lower() for t in (scored.track.vibe_tags or []) + (scored.track.genre_tags or [])]
        matched = [
            tag for tag in analysis.vibe_tags
            if any(tag.lower() in t or t in tag.lower() for t in track_tags)
        ]
        if matched:
            return f"Shares the vibe: {', '.join(matched[:3])}.", matched
        if not track_tags:
            return "No vibe tags available for this track.", []
        return f"Brings its own vibe: {', '.join(track_tags[:2])}.", []

    def _generate_summary(
        self,
        scored: ScoredTrack,
        analysis: ImageAnalysis,
        explanation: DetailedExplanation,
    ) -> str:
        """Generate concise summary sentence."""
        summaries = {
            "mood": lambda: f"Matches the {analysis.mood} feeling of the photo.",
            "popularity": lambda: "A lesser-known track that fits the moment.",
            "language": lambda: f"A {scored.track.language} song suited to the scene.",
            "era": lambda: f"Captures the photo's {analysis.era_preference} character.",
            "vibe": lambda: f"Carries the {', '.join(explanation.matched_tags[:2])} vibe of the photo.",
        }

        return summaries.get(explanation.primary_signal, lambda: "Matches the photo's overall vibe.")()


def explain_recommendation(
    scored: ScoredTrack,
    analysis: ImageAnalysis,
    generator: Optional[ExplanationGenerator] = None,
) -> str:
    """
    Convenience function for generating a simple explanation.

    Args:
        scored: Selected track
        analysis: Image analysis
        generator: Reusable generator (a new one is made if None)

    Returns:
        Simple explanation string
    """
    generator = generator or ExplanationGenerator()
    return generator.generate_explanation(scored, analysis).summary
