"""
Tests for the data model.

Covers:
- ImageAnalysis clamping, defaults and payload validation
- AudioFeatures parsing with neutral defaults
- CandidateTrack mapping from Spotify track objects
- CuratedSong conversion to a candidate
"""
import pytest

from photovibe_recs.config import DEFAULT_ERA_PREFERENCE, DEFAULT_LANGUAGE_BIAS
from photovibe_recs.errors import DIFFERENT_INPUT, MalformedUpstreamResponse
from photovibe_recs.features import AudioFeatures, CandidateTrack, CuratedSong, ImageAnalysis

from conftest import make_song, spotify_track


class TestImageAnalysis:
    """Tests for ImageAnalysis."""

    def test_targets_are_clamped(self):
        analysis = ImageAnalysis(mood="x", target_energy=1.4, target_valence=-0.2)
        assert analysis.target_energy == 1.0
        assert analysis.target_valence == 0.0

    def test_language_bias_deduped_and_truncated(self):
        analysis = ImageAnalysis(
            mood="x", target_energy=0.5, target_valence=0.5,
            language_bias=["Tamil", "Tamil", "Hindi", "English", "Malayalam"],
        )
        assert analysis.language_bias == ["Tamil", "Hindi", "English"]

    def test_target_decade(self):
        assert ImageAnalysis(mood="x", target_energy=0.5, target_valence=0.5,
                             era_preference="1990s").target_decade == 1990

    def test_from_dict_applies_defaults(self):
        analysis = ImageAnalysis.from_dict({"mood": "calm", "target_energy": 0.2, "target_valence": 0.3})
        assert analysis.texture == "neutral"
        assert analysis.color_temperature == "neutral"
        assert analysis.era_preference == DEFAULT_ERA_PREFERENCE
        assert analysis.language_bias == DEFAULT_LANGUAGE_BIAS
        assert analysis.vibe_tags == []

    def test_from_dict_keeps_empty_language_list(self):
        analysis = ImageAnalysis.from_dict(
            {"mood": "calm", "target_energy": 0.2, "target_valence": 0.3, "language_bias": []}
        )
        assert analysis.language_bias == []

    def test_from_dict_accepts_numeric_era(self):
        base = {"mood": "calm", "target_energy": 0.2, "target_valence": 0.3}

        assert ImageAnalysis.from_dict({**base, "era_preference": 2010}).era_preference == "2010s"
        assert ImageAnalysis.from_dict({**base, "era_preference": 1994.0}).era_preference == "1990s"
        assert ImageAnalysis.from_dict({**base, "era_preference": 0}).era_preference == DEFAULT_ERA_PREFERENCE

    @pytest.mark.parametrize("payload", [
        {"target_energy": 0.5, "target_valence": 0.5},
        {"mood": "x", "target_valence": 0.5},
        {"mood": "x", "target_energy": "high", "target_valence": 0.5},
        {"mood": "x", "target_energy": True, "target_valence": 0.5},
        {"mood": "x", "target_energy": 0.5, "target_valence": 0.5, "era_preference": ["2010s"]},
        ["not", "an", "object"],
    ])
    def test_from_dict_rejects_malformed_payloads(self, payload):
        with pytest.raises(MalformedUpstreamResponse) as exc:
            ImageAnalysis.from_dict(payload)
        assert exc.value.remediation == DIFFERENT_INPUT

    def test_to_dict_round_trips(self):
        analysis = ImageAnalysis(mood="x", target_energy=0.5, target_valence=0.5, vibe_tags=["indie"])
        assert ImageAnalysis.from_dict(analysis.to_dict()) == analysis


class TestAudioFeatures:
    """Tests for AudioFeatures."""

    def test_missing_fields_get_neutral_defaults(self):
        features = AudioFeatures.from_spotify({"energy": 0.9, "valence": None})
        assert features.energy == 0.9
        assert features.valence == 0.5
        assert features.tempo == 120.0
        assert features.mode == 1
        assert features.speechiness is None

    def test_is_immutable(self):
        features = AudioFeatures(energy=0.5, valence=0.5)
        with pytest.raises(AttributeError):
            features.energy = 0.1


class TestCandidateTrack:
    """Tests for CandidateTrack.from_spotify_track."""

    def test_maps_search_hit(self):
        track = CandidateTrack.from_spotify_track(
            spotify_track("abc", artist="Sushin Shyam", year=2019, popularity=33), "spotify_search"
        )
        assert track.artist == "Sushin Shyam"
        assert track.year == 2019
        assert track.popularity == 33
        assert track.source == "spotify_search"
        assert track.language is None
        assert track.vibe_tags == []

    def test_missing_artist(self):
        track = CandidateTrack.from_spotify_track({"id": "x" * 22, "name": "Song"}, "gpt")
        assert track.artist == "Unknown"
        assert track.year is None


class TestCuratedSong:
    """Tests for CuratedSong."""

    def test_all_tags_union(self):
        song = make_song("a1", visual_moods=["backwaters"], emotional_keywords=["longing"])
        assert set(song.all_tags()) == {"indie", "nostalgic", "backwaters", "longing"}

    def test_to_candidate_carries_metadata(self):
        candidate = make_song("a1").to_candidate()
        assert candidate.source == "curated"
        assert candidate.language == "Malayalam"
        assert candidate.genre_tags == ["indie"]
        assert candidate.popularity is None

    def test_from_dict_requires_identity(self):
        with pytest.raises(KeyError):
            CuratedSong.from_dict({"title": "No id", "artist": "x"})
