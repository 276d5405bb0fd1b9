"""
Data Model
==========

Records that flow through the recommendation pipeline:

    ImageAnalysis  -> traits extracted from the photo (pipeline input)
    CuratedSong    -> a catalog entry with rich metadata tags
    CandidateTrack -> a track under consideration, from any source
    AudioFeatures  -> per-track signal vector from the music provider

Conversions from provider payloads (Spotify track objects, audio-feature
objects, vision JSON) live here so every other module deals in dataclasses.
"""

import math
from dataclasses import asdict, dataclass, field
from numbers import Real
from typing import Any, Dict, List, Optional

import numpy as np

from .config import (
    DEFAULT_ERA_PREFERENCE,
    DEFAULT_LANGUAGE_BIAS,
    MAX_LANGUAGE_BIAS,
    SOURCE_CURATED,
)
from .errors import MalformedUpstreamResponse
from .utils import parse_decade, parse_release_year, unique_in_order


def _clamp_unit(value: float) -> float:
    return float(np.clip(value, 0.0, 1.0))


def _is_number(value: Any) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool)


def _string_list(value: Any) -> List[str]:
    if not isinstance(value, (list, tuple, set, frozenset)):
        return []
    return unique_in_order(str(v).strip() for v in value if v is not None)


@dataclass
class ImageAnalysis:
    """Mood, energy and aesthetic traits extracted from an image."""
    mood: str
    target_energy: float
    target_valence: float
    texture: str = "neutral"
    color_temperature: str = "neutral"
    era_preference: str = DEFAULT_ERA_PREFERENCE

    # Most preferred language first
    language_bias: List[str] = field(default_factory=list)
    vibe_tags: List[str] = field(default_factory=list)

    def __post_init__(self):
        self.target_energy = _clamp_unit(self.target_energy)
        self.target_valence = _clamp_unit(self.target_valence)
        self.language_bias = _string_list(self.language_bias)[:MAX_LANGUAGE_BIAS]
        self.vibe_tags = _string_list(self.vibe_tags)

    @property
    def target_decade(self) -> Optional[int]:
        return parse_decade(self.era_preference)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ImageAnalysis":
        """
        Build an analysis from a vision-model payload.

        Raises:
            MalformedUpstreamResponse: mood or the numeric targets are missing
        """
        if not isinstance(data, dict):
            raise MalformedUpstreamResponse("Analysis payload is not a JSON object", service="vision")

        mood = data.get("mood")
        energy = data.get("target_energy")
        valence = data.get("target_valence")
        if not mood or not _is_number(energy) or not _is_number(valence):
            raise MalformedUpstreamResponse(
                "Invalid analysis format: missing required fields", service="vision"
            )

        language_bias = data.get("language_bias")
        if not isinstance(language_bias, list):
            language_bias = list(DEFAULT_LANGUAGE_BIAS)

        era_preference = data.get("era_preference")
        if _is_number(era_preference):
            # Bare year such as 2010
            decade = parse_decade(int(era_preference)) if math.isfinite(era_preference) else None
            era_preference = f"{decade}s" if decade else None
        elif era_preference is not None and not isinstance(era_preference, str):
            raise MalformedUpstreamResponse(
                f"Invalid era_preference: {era_preference!r}", service="vision"
            )

        return cls(
            mood=str(mood),
            target_energy=energy,
            target_valence=valence,
            texture=data.get("texture") or "neutral",
            color_temperature=data.get("color_temperature") or "neutral",
            era_preference=era_preference or DEFAULT_ERA_PREFERENCE,
            language_bias=language_bias,
            vibe_tags=data.get("vibe_tags") or [],
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class AudioFeatures:
    """Spotify audio features for one track. Immutable once fetched."""
    energy: float
    valence: float
    danceability: float = 0.5
    acousticness: float = 0.5
    instrumentalness: float = 0.5
    tempo: float = 120.0      # BPM
    loudness: float = -5.0    # dB
    mode: int = 1             # 1 = major, 0 = minor
    speechiness: Optional[float] = None
    liveness: Optional[float] = None

    @classmethod
    def from_spotify(cls, data: Dict[str, Any]) -> "AudioFeatures":
        """Build from a Spotify audio-features object, filling neutral defaults."""
        def value(name, default):
            v = data.get(name)
            return default if v is None else v

        return cls(
            energy=float(value("energy", 0.5)),
            valence=float(value("valence", 0.5)),
            danceability=float(value("danceability", 0.5)),
            acousticness=float(value("acousticness", 0.5)),
            instrumentalness=float(value("instrumentalness", 0.5)),
            tempo=float(value("tempo", 120.0)),
            loudness=float(value("loudness", -5.0)),
            mode=int(value("mode", 1)),
            speechiness=data.get("speechiness"),
            liveness=data.get("liveness"),
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AudioFeatures":
        """Rebuild from a cached dictionary (see to_dict)."""
        return cls.from_spotify(data)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class CandidateTrack:
    """A track proposed for possible inclusion."""
    spotify_id: str
    title: str
    artist: str
    source: str = SOURCE_CURATED
    year: Optional[int] = None
    language: Optional[str] = None
    genre_tags: List[str] = field(default_factory=list)
    vibe_tags: List[str] = field(default_factory=list)
    popularity: Optional[int] = None

    @classmethod
    def from_spotify_track(cls, track: Dict[str, Any], source: str) -> "CandidateTrack":
        """
        Map a Spotify track object to a candidate.

        Search hits carry identity, release year and popularity only;
        language and tags are unknown for them.
        """
        artists = track.get("artists") or []
        artist = artists[0].get("name") if artists and artists[0].get("name") else "Unknown"
        album = track.get("album") or {}

        return cls(
            spotify_id=track["id"],
            title=track.get("name") or "",
            artist=artist,
            source=source,
            year=parse_release_year(album.get("release_date")),
            popularity=track.get("popularity"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class CuratedSong:
    """Catalog entry. Read-only from the pipeline's perspective."""
    spotify_id: str
    title: str
    artist: str
    language: str
    year: int
    composer: Optional[str] = None
    album: Optional[str] = None
    category: Optional[str] = None
    genre_tags: List[str] = field(default_factory=list)
    vibe_tags: List[str] = field(default_factory=list)
    visual_moods: List[str] = field(default_factory=list)
    emotional_keywords: List[str] = field(default_factory=list)
    popularity_tier: str = "moderate"
    is_indie: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CuratedSong":
        return cls(
            spotify_id=data["spotify_id"],
            title=data["title"],
            artist=data["artist"],
            language=data.get("language") or "",
            year=int(data.get("year") or 0),
            composer=data.get("composer"),
            album=data.get("album"),
            category=data.get("category"),
            genre_tags=list(data.get("genre_tags") or []),
            vibe_tags=list(data.get("vibe_tags") or []),
            visual_moods=list(data.get("visual_moods") or []),
            emotional_keywords=list(data.get("emotional_keywords") or []),
            popularity_tier=data.get("popularity_tier") or "moderate",
            is_indie=bool(data.get("is_indie", False)),
        )

    def all_tags(self) -> List[str]:
        """Union of genre, vibe, visual-mood and emotional tags."""
        return (
            list(self.genre_tags)
            + list(self.vibe_tags)
            + list(self.visual_moods)
            + list(self.emotional_keywords)
        )

    def to_candidate(self) -> CandidateTrack:
        return CandidateTrack(
            spotify_id=self.spotify_id,
            title=self.title,
            artist=self.artist,
            source=SOURCE_CURATED,
            year=self.year or None,
            language=self.language or None,
            genre_tags=list(self.genre_tags),
            vibe_tags=list(self.vibe_tags),
        )
