"""
Tests for the scoring engine.

Covers:
- Component score functions and their exact boundaries
- Score bounds and energy/valence symmetry
- Ranking determinism, stable ties and skipped tracks
- End-to-end scoring example
- Score explanations
"""
import itertools

import pytest

from photovibe_recs.config import PopularityThresholds, ScoringWeights
from photovibe_recs.scoring import (
    ScoringEngine,
    confidence_for,
    explain_score,
    rank_candidates,
    score_energy,
    score_era,
    score_language,
    score_popularity,
    score_valence,
    score_vibe,
)
from photovibe_recs.vision import parse_analysis

from conftest import make_analysis, make_features, make_track


class TestComponentScores:
    """Tests for the individual component functions."""

    def test_energy_linear_falloff(self):
        assert score_energy(0.5, 0.5) == 1.0
        assert score_energy(0.2, 0.7) == pytest.approx(0.5)
        assert score_energy(0.0, 1.0) == 0.0

    @pytest.mark.parametrize("x, y", itertools.product([0.0, 0.25, 0.5, 0.9, 1.0], repeat=2))
    def test_energy_and_valence_symmetric(self, x, y):
        assert score_energy(x, y) == score_energy(y, x)
        assert score_valence(x, y) == score_valence(y, x)

    def test_popularity_boundaries(self):
        # Deep-cut bonus below 40, none at 40
        assert score_popularity(39) == pytest.approx(0.69)
        assert score_popularity(40) == pytest.approx(0.40)
        # Mainstream penalty above 80, none at 80
        assert score_popularity(80) == pytest.approx(0.80)
        assert score_popularity(81) == pytest.approx(0.61)

    def test_popularity_clamped(self):
        assert score_popularity(0) == pytest.approx(0.3)
        assert score_popularity(100) == pytest.approx(0.8)
        assert score_popularity(38) <= 1.0

    def test_missing_popularity_is_moderate(self):
        assert score_popularity(None) == pytest.approx(0.5)

    def test_popularity_thresholds_overridable(self):
        thresholds = PopularityThresholds(deep_cut_below=60, mainstream_above=90)
        assert score_popularity(50, thresholds) == pytest.approx(0.8)
        assert score_popularity(85, thresholds) == pytest.approx(0.85)

    def test_language(self):
        assert score_language("malayalam", ["Malayalam", "Tamil"]) == 1.0
        assert score_language("Hindi", ["Malayalam"]) == 0.5
        assert score_language(None, ["Malayalam"]) == 0.5
        assert score_language("Tamil", []) == 0.5

    @pytest.mark.parametrize("year, expected", [
        (2015, 1.0),
        (2005, 1.0),
        (2019, 0.7),
        (2000, 0.7),
        (1995, 0.4),
        (None, 0.5),
    ])
    def test_era_bands(self, year, expected):
        assert score_era(year, "2010s") == expected

    def test_era_unparseable_preference(self):
        assert score_era(2015, "timeless") == 0.5

    def test_vibe(self):
        track = make_track("v1", vibe_tags=["urban night"], genre_tags=["hip hop"])
        assert score_vibe(track, ["urban", "energetic"]) == 0.5
        assert score_vibe(track, []) == 0.5

    def test_vibe_untagged_track_is_neutral(self):
        track = make_track("v2", vibe_tags=[], genre_tags=[])
        assert score_vibe(track, ["urban"]) == 0.5

    @pytest.mark.parametrize("total, tier", [
        (0.95, "perfect"), (0.8, "perfect"), (0.79, "good"), (0.6, "good"),
        (0.5, "partial"), (0.4, "partial"), (0.39, "fallback"), (0.0, "fallback"),
    ])
    def test_confidence_tiers(self, total, tier):
        assert confidence_for(total) == tier


class TestScoreBounds:
    """Every component and the total stay within [0, 1]."""

    def test_bounds_over_boundary_grid(self):
        engine = ScoringEngine(ScoringWeights())
        values = [0.0, 0.5, 1.0]
        for energy, valence, target_e, target_v in itertools.product(values, repeat=4):
            for popularity in (None, 0, 39, 40, 80, 81, 100):
                analysis = make_analysis(target_energy=target_e, target_valence=target_v)
                track = make_track("b1", popularity=popularity)
                scored = engine.score_track(track, make_features(energy, valence), analysis)
                components = scored.scores.to_dict()
                for name, value in components.items():
                    assert 0.0 <= value <= 1.0 + 1e-9, (name, value)


class TestRanking:
    """Tests for ScoringEngine.rank_candidates."""

    def test_end_to_end_example(self):
        analysis = make_analysis(
            target_energy=0.8,
            target_valence=0.7,
            era_preference="2010s",
            language_bias=["Malayalam"],
            vibe_tags=["energetic", "urban"],
        )
        match = make_track("good1", year=2015, language="Malayalam", popularity=30)
        weak = make_track("weak1", year=2015, language="Malayalam", popularity=30)
        features = {
            match.spotify_id: make_features(0.8, 0.7),
            weak.spotify_id: make_features(0.2, 0.7),
        }

        ranked = ScoringEngine(ScoringWeights()).rank_candidates([weak, match], features, analysis)

        top = ranked[0]
        assert top.track.spotify_id == match.spotify_id
        assert top.rank == 1
        assert top.scores.energy == 1.0
        assert top.scores.valence == 1.0
        assert top.scores.era == 1.0
        assert top.scores.language == 1.0
        assert top.scores.popularity == pytest.approx(0.6)
        assert ranked[1].track.spotify_id == weak.spotify_id
        assert ranked[1].rank == 2

    def test_numeric_era_from_vision_reply(self):
        analysis = parse_analysis(
            '{"mood": "city lights", "target_energy": 0.6, "target_valence": 0.5, "era_preference": 2010}'
        )
        track = make_track("num1", year=2015)

        ranked = ScoringEngine(ScoringWeights()).rank_candidates(
            [track], {track.spotify_id: make_features(0.6, 0.5)}, analysis
        )

        assert analysis.era_preference == "2010s"
        assert ranked[0].scores.era == 1.0

    def test_deterministic(self, analysis):
        tracks = [make_track(f"d{i}", popularity=10 * i, year=1990 + 3 * i) for i in range(10)]
        features = {t.spotify_id: make_features(0.1 * i, 1 - 0.1 * i) for i, t in enumerate(tracks)}
        engine = ScoringEngine(ScoringWeights())

        first = [s.to_dict() for s in engine.rank_candidates(tracks, features, analysis)]
        second = [s.to_dict() for s in engine.rank_candidates(tracks, features, analysis)]
        assert first == second

    def test_ties_keep_input_order(self, analysis):
        tracks = [make_track(f"tie{i}") for i in range(5)]
        features = {t.spotify_id: make_features(0.4, 0.6) for t in tracks}

        ranked = rank_candidates(tracks, features, analysis, ScoringWeights())
        assert [s.track.spotify_id for s in ranked] == [t.spotify_id for t in tracks]
        assert [s.rank for s in ranked] == [1, 2, 3, 4, 5]

    def test_tracks_without_features_are_skipped(self, analysis):
        scorable = make_track("has1")
        missing = make_track("miss1")
        ranked = rank_candidates(
            [missing, scorable], {scorable.spotify_id: make_features()}, analysis, ScoringWeights()
        )
        assert [s.track.spotify_id for s in ranked] == [scorable.spotify_id]

    def test_custom_weights(self, analysis):
        weights = ScoringWeights(energy=1.0, valence=0.0, popularity=0.0, language=0.0, era=0.0, vibe=0.0)
        track = make_track("w1")
        scored = ScoringEngine(weights).score_track(track, make_features(0.4, 0.0), analysis)
        assert scored.scores.total == pytest.approx(1.0)
        assert scored.confidence == "perfect"


class TestExplainScore:
    """Tests for explain_score."""

    def test_mentions_breakdown(self, analysis):
        track = make_track("e1", title="Kaadhal", artist="Pradeep Kumar", popularity=None)
        scored = ScoringEngine(ScoringWeights()).score_track(track, make_features(0.4, 0.6), analysis)
        scored.rank = 3

        text = explain_score(scored, analysis)
        assert '"Kaadhal" by Pradeep Kumar' in text
        assert "Rank #3" in text
        assert "Popularity: 0.500 (unknown)" in text
        assert "target: Malayalam, Tamil" in text
