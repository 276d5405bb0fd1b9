"""
AI Song Suggestions
===================

Optional candidate source: asks a chat model for specific songs that fit an
ImageAnalysis. The candidate generator resolves each suggestion to a Spotify
track afterwards.
"""

import json
import logging
from dataclasses import dataclass
from typing import List, Optional

import openai
from openai import OpenAI

from .config import OPENAI_API_KEY, SUGGESTION_MODEL, VISION_TIMEOUT_SECONDS
from .errors import MalformedUpstreamResponse, UpstreamAuthError
from .features import ImageAnalysis
from .vision import translate_openai_error

logger = logging.getLogger(__name__)

SUGGESTION_PROMPT = """You are a music curator. Given the traits of a photo, suggest {count} real, existing songs that feel like it.

Traits:
- mood: {mood}
- energy (0-1): {energy:.2f}
- valence (0-1): {valence:.2f}
- era: {era}
- languages (most preferred first): {languages}
- vibe tags: {tags}

Prefer lesser-known songs over overplayed hits. Return a JSON object:
{{"songs": [{{"title": str, "artist": str, "language": str, "year": int, "genre_tag": str}}]}}"""


@dataclass
class SongSuggestion:
    """A song proposed by the model, not yet resolved to a Spotify ID."""
    title: str
    artist: str
    language: Optional[str] = None
    year: Optional[int] = None
    genre_tag: Optional[str] = None


class SongSuggester:
    """Chat-model client producing SongSuggestion lists."""

    def __init__(self, client: Optional[OpenAI] = None, model: str = SUGGESTION_MODEL):
        if client is None:
            if not OPENAI_API_KEY:
                raise UpstreamAuthError("Missing OpenAI API key", service="suggestions")
            client = OpenAI(api_key=OPENAI_API_KEY, timeout=VISION_TIMEOUT_SECONDS, max_retries=0)
        self.client = client
        self.model = model

    def suggest(self, analysis: ImageAnalysis, count: int = 8) -> List[SongSuggestion]:
        prompt = SUGGESTION_PROMPT.format(
            count=count,
            mood=analysis.mood,
            energy=analysis.target_energy,
            valence=analysis.target_valence,
            era=analysis.era_preference,
            languages=", ".join(analysis.language_bias) or "any",
            tags=", ".join(analysis.vibe_tags) or "none",
        )

        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                response_format={"type": "json_object"},
                temperature=0.7,
            )
        except openai.OpenAIError as e:
            raise translate_openai_error(e, "suggestions") from e

        content = response.choices[0].message.content if response.choices else None
        try:
            songs = json.loads(content or "").get("songs", [])
        except (json.JSONDecodeError, AttributeError) as e:
            raise MalformedUpstreamResponse("Invalid JSON from suggestion model", service="suggestions") from e

        suggestions = []
        for song in songs[:count]:
            if not isinstance(song, dict) or not song.get("title") or not song.get("artist"):
                continue
            year = song.get("year")
            suggestions.append(SongSuggestion(
                title=str(song["title"]),
                artist=str(song["artist"]),
                language=song.get("language"),
                year=year if isinstance(year, int) and not isinstance(year, bool) else None,
                genre_tag=song.get("genre_tag"),
            ))

        logger.info("Model suggested %d songs", len(suggestions))
        return suggestions
