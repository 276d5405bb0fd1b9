"""Shared factories and fakes for the test suite."""

import json
import sys
from pathlib import Path
from types import SimpleNamespace

import pytest

# Add repo root to path for imports
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from photovibe_recs.features import AudioFeatures, CandidateTrack, CuratedSong, ImageAnalysis
from photovibe_recs.scoring import ScoreBreakdown, ScoredTrack
from photovibe_recs.spotify_client import SpotifyClient


def make_id(name: str) -> str:
    """
    22-character base62 Spotify-style ID derived from an alphanumeric name.

    The name length is encoded up front so distinct names never share an ID.
    """
    if len(name) > 20:
        raise ValueError(f"Name too long for a track ID: {name!r}")
    return f"{len(name):02d}{name}".ljust(22, "0")


def make_analysis(**overrides) -> ImageAnalysis:
    data = dict(
        mood="golden hour on a quiet backwater",
        target_energy=0.4,
        target_valence=0.6,
        era_preference="2010s",
        language_bias=["Malayalam", "Tamil"],
        vibe_tags=["nostalgic", "monsoon", "indie"],
    )
    data.update(overrides)
    return ImageAnalysis(**data)


def make_track(name: str, **overrides) -> CandidateTrack:
    data = dict(
        spotify_id=make_id(name),
        title=f"Song {name}",
        artist=f"Artist {name}",
        source="curated",
        year=2015,
        language="Malayalam",
        popularity=50,
    )
    data.update(overrides)
    return CandidateTrack(**data)


def make_song(name: str, **overrides) -> CuratedSong:
    data = dict(
        spotify_id=make_id(name),
        title=f"Song {name}",
        artist=f"Artist {name}",
        language="Malayalam",
        year=2015,
        genre_tags=["indie"],
        vibe_tags=["nostalgic"],
    )
    data.update(overrides)
    return CuratedSong(**data)


def make_features(energy: float = 0.5, valence: float = 0.5, **overrides) -> AudioFeatures:
    return AudioFeatures(energy=energy, valence=valence, **overrides)


def make_scored(
    name: str,
    total: float,
    artist: str = None,
    popularity=50,
    year=2015,
    title: str = None,
    rank: int = 0,
) -> ScoredTrack:
    """ScoredTrack with a fixed total; component scores are irrelevant to selection."""
    track = make_track(
        name,
        artist=artist or f"Artist {name}",
        popularity=popularity,
        year=year,
        title=title or f"Song {name}",
    )
    return ScoredTrack(
        track=track,
        audio_features=make_features(),
        scores=ScoreBreakdown(
            energy=total, valence=total, popularity=total,
            language=total, era=total, vibe=total, total=total,
        ),
        rank=rank,
        confidence="good",
    )


def spotify_track(name: str, artist: str = None, year: int = 2015, popularity: int = 40) -> dict:
    """Spotify Web API track object."""
    return {
        "id": make_id(name),
        "name": f"Song {name}",
        "artists": [{"name": artist or f"Artist {name}"}],
        "album": {"release_date": f"{year}-06-01"},
        "popularity": popularity,
    }


def raw_features(energy: float = 0.5, valence: float = 0.5) -> dict:
    """Spotify audio-features object."""
    return {
        "energy": energy,
        "valence": valence,
        "danceability": 0.6,
        "acousticness": 0.3,
        "instrumentalness": 0.0,
        "tempo": 110.0,
        "loudness": -6.0,
        "mode": 1,
        "speechiness": 0.05,
        "liveness": 0.1,
    }


class FakeSpotify:
    """In-process stand-in for spotipy.Spotify recording every call."""

    def __init__(self, search_results=None, default_search=None, features=None, popularity=None):
        self.search_results = search_results or {}
        self.default_search = default_search or []
        self.features = features or {}
        self.popularity = popularity or {}
        self.errors = {}
        self.calls = []

    def _maybe_fail(self, method):
        error = self.errors.get(method)
        if error is not None:
            raise error

    def search(self, q, limit=10, offset=0, type="track", market=None):
        self.calls.append(("search", q, limit, market))
        self._maybe_fail("search")
        items = self.search_results.get(q, self.default_search)
        return {"tracks": {"items": list(items)[:limit]}}

    def audio_features(self, tracks=None):
        ids = list(tracks or [])
        self.calls.append(("audio_features", ids))
        self._maybe_fail("audio_features")
        return [self.features.get(tid) for tid in ids]

    def tracks(self, tracks, market=None):
        ids = list(tracks)
        self.calls.append(("tracks", ids, market))
        self._maybe_fail("tracks")
        return {
            "tracks": [
                {"id": tid, "popularity": self.popularity[tid]} if tid in self.popularity else None
                for tid in ids
            ]
        }

    def calls_to(self, method):
        return [c for c in self.calls if c[0] == method]


class FakeCompletions:
    def __init__(self, content=None, error=None):
        self.content = content
        self.error = error
        self.requests = []

    def create(self, **kwargs):
        self.requests.append(kwargs)
        if self.error is not None:
            raise self.error
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


class FakeOpenAI:
    """Minimal stand-in for openai.OpenAI exposing chat.completions.create."""

    def __init__(self, content=None, error=None):
        if content is not None and not isinstance(content, str):
            content = json.dumps(content)
        self.completions = FakeCompletions(content, error)
        self.chat = SimpleNamespace(completions=self.completions)


@pytest.fixture()
def fake_sp():
    return FakeSpotify()


@pytest.fixture()
def spotify_client(fake_sp):
    client = SpotifyClient(sp=fake_sp, market="IN")
    client._min_request_interval = 0.0
    return client


@pytest.fixture()
def analysis():
    return make_analysis()
