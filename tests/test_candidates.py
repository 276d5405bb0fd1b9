"""
Tests for candidate generation.

Covers:
- Curated match scoring and top-N selection
- Search query construction
- Deduplication across sources (curated wins)
- Per-source failure isolation
- AI suggestion resolution and deadline handling
"""
import asyncio

import pytest
from spotipy.exceptions import SpotifyException

from photovibe_recs.candidates import (
    CandidateGenerator,
    build_search_query,
    curated_match_score,
    deduplicate,
    pick_best_hit,
)
from photovibe_recs.catalog import CuratedCatalog
from photovibe_recs.config import CandidateConfig
from photovibe_recs.suggestions import SongSuggestion

from conftest import make_analysis, make_id, make_song, make_track, spotify_track


class FakeSuggester:
    def __init__(self, suggestions):
        self.suggestions = suggestions
        self.calls = 0

    def suggest(self, analysis, count=8):
        self.calls += 1
        return list(self.suggestions)[:count]


class BrokenCatalog:
    def list(self):
        raise OSError("catalog file unreadable")


class TestCuratedMatchScore:
    """Tests for curated_match_score."""

    def test_full_match(self):
        song = make_song("m1", vibe_tags=["monsoon melody", "nostalgic"], genre_tags=["indie folk"])
        analysis = make_analysis(vibe_tags=["monsoon", "nostalgic"])
        assert curated_match_score(song, analysis) == pytest.approx(1.0)

    def test_language_and_era_misses(self):
        song = make_song("m2", language="Hindi", year=1985, vibe_tags=[], genre_tags=[])
        analysis = make_analysis(vibe_tags=["monsoon"])
        # 0.4*0.3 + 0.2*0.5 + 0.4*0
        assert curated_match_score(song, analysis) == pytest.approx(0.22)

    def test_same_decade_counts_as_era_match(self):
        song = make_song("m3", year=2019, vibe_tags=[], genre_tags=[])
        analysis = make_analysis(vibe_tags=[])
        # 2019 is 9 years from 2010 but in the 2010s
        assert curated_match_score(song, analysis) == pytest.approx(0.4 + 0.2 + 0.4 * 0.5)

    def test_no_penalty_without_preferences(self):
        song = make_song("m4", language="Korean", year=1970, vibe_tags=[], genre_tags=[])
        analysis = make_analysis(language_bias=[], era_preference="whenever", vibe_tags=[])
        assert curated_match_score(song, analysis) == pytest.approx(0.4 + 0.2 + 0.2)


class TestSearchQuery:
    """Tests for build_search_query."""

    def test_languages_then_tags(self):
        analysis = make_analysis(
            language_bias=["Malayalam", "Tamil", "Hindi"],
            vibe_tags=["rain", "nostalgic", "indie", "slow"],
        )
        assert build_search_query(analysis) == "Malayalam Tamil rain nostalgic indie"

    def test_empty(self):
        assert build_search_query(make_analysis(language_bias=[], vibe_tags=[])) == ""


class TestHelpers:
    """Tests for deduplicate and pick_best_hit."""

    def test_deduplicate_keeps_first(self):
        first = make_track("dup1", source="curated")
        second = make_track("dup1", source="spotify_search", language=None)
        other = make_track("other1")
        assert deduplicate([first, second, other]) == [first, other]

    def test_pick_best_hit_prefers_artist_match(self):
        hits = [spotify_track("h1", artist="Cover Band"), spotify_track("h2", artist="A.R. Rahman")]
        assert pick_best_hit(hits, "a.r. rahman")["id"] == make_id("h2")

    def test_pick_best_hit_falls_back_to_first(self):
        hits = [spotify_track("h1", artist="Someone"), spotify_track("h2", artist="Else")]
        assert pick_best_hit(hits, "Nobody")["id"] == make_id("h1")
        assert pick_best_hit([], "Nobody") is None


class TestCandidateGenerator:
    """Tests for CandidateGenerator.generate."""

    def _catalog(self, n=5):
        return CuratedCatalog(songs=[make_song(f"cur{i}") for i in range(n)])

    def test_curated_top_n(self, spotify_client, analysis):
        songs = [make_song(f"low{i}", language="Hindi", vibe_tags=[], genre_tags=[]) for i in range(3)]
        songs.append(make_song("best1", vibe_tags=["nostalgic", "monsoon", "indie"]))
        generator = CandidateGenerator(
            spotify_client, CuratedCatalog(songs=songs), config=CandidateConfig(curated_top_n=2)
        )

        ranked = generator.rank_curated(songs, analysis)

        assert [c.spotify_id for c in ranked] == [make_id("best1"), make_id("low0")]

    def test_dedupe_keeps_curated_metadata(self, fake_sp, spotify_client, analysis):
        fake_sp.default_search = [spotify_track("cur0", popularity=77), spotify_track("search1")]
        generator = CandidateGenerator(spotify_client, self._catalog())

        pool = asyncio.run(generator.generate(analysis))

        ids = [c.spotify_id for c in pool.candidates]
        assert len(ids) == len(set(ids)) == 6
        shared = next(c for c in pool.candidates if c.spotify_id == make_id("cur0"))
        assert shared.source == "curated"
        assert shared.language == "Malayalam"
        assert shared.genre_tags == ["indie"]
        assert pool.raw_count == 7
        assert pool.source_counts == {"curated": 5, "spotify_search": 1}

    def test_curated_listed_before_search(self, fake_sp, spotify_client, analysis):
        fake_sp.default_search = [spotify_track("search1")]
        generator = CandidateGenerator(spotify_client, self._catalog(2))

        candidates = asyncio.run(generator.generate_candidates(analysis))

        assert [c.source for c in candidates] == ["curated", "curated", "spotify_search"]

    def test_search_uses_query_limit_and_market(self, fake_sp, spotify_client):
        analysis = make_analysis(language_bias=["Tamil"], vibe_tags=["night"])
        generator = CandidateGenerator(spotify_client, CuratedCatalog(songs=[]))

        asyncio.run(generator.generate(analysis))

        assert fake_sp.calls_to("search") == [("search", "Tamil night", 30, "IN")]

    def test_empty_query_skips_search(self, fake_sp, spotify_client):
        analysis = make_analysis(language_bias=[], vibe_tags=[])
        generator = CandidateGenerator(spotify_client, self._catalog(1))

        pool = asyncio.run(generator.generate(analysis))

        assert fake_sp.calls_to("search") == []
        assert len(pool.candidates) == 1

    def test_search_failure_contributes_nothing(self, fake_sp, spotify_client, analysis):
        fake_sp.errors["search"] = SpotifyException(500, -1, "server error")
        generator = CandidateGenerator(spotify_client, self._catalog(3))

        pool = asyncio.run(generator.generate(analysis))

        assert len(pool.candidates) == 3
        assert pool.failed_sources == []

    def test_failed_source_is_isolated(self, fake_sp, spotify_client, analysis):
        fake_sp.default_search = [spotify_track("search1"), spotify_track("search2")]
        generator = CandidateGenerator(spotify_client, BrokenCatalog())

        pool = asyncio.run(generator.generate(analysis))

        assert pool.failed_sources == ["curated"]
        assert [c.source for c in pool.candidates] == ["spotify_search", "spotify_search"]

    def test_source_toggles(self, fake_sp, spotify_client, analysis):
        fake_sp.default_search = [spotify_track("search1")]
        generator = CandidateGenerator(spotify_client, self._catalog(2))

        pool = asyncio.run(generator.generate(analysis, use_curated=False))

        assert pool.source_counts == {"spotify_search": 1}

    def test_pool_is_capped(self, fake_sp, spotify_client, analysis):
        fake_sp.default_search = [spotify_track(f"s{i}") for i in range(30)]
        generator = CandidateGenerator(
            spotify_client, self._catalog(5), config=CandidateConfig(max_candidates=10)
        )

        pool = asyncio.run(generator.generate(analysis))

        assert len(pool.candidates) == 10
        assert pool.raw_count == 35


class TestSuggestionSource:
    """Tests for the AI suggestion source."""

    def test_resolves_suggestions(self, fake_sp, spotify_client, analysis):
        fake_sp.search_results = {
            "Kaattu Mooliyo Othiram": [
                spotify_track("wrong1", artist="Karaoke Hits"),
                spotify_track("right1", artist="Othiram Collective", year=2012),
            ],
        }
        suggester = FakeSuggester([
            SongSuggestion(title="Kaattu Mooliyo", artist="Othiram", language="Malayalam",
                           year=2012, genre_tag="folk"),
        ])
        generator = CandidateGenerator(spotify_client, CuratedCatalog(songs=[]), suggester=suggester)

        pool = asyncio.run(generator.generate(analysis, use_spotify_search=False, use_gpt=True))

        assert len(pool.candidates) == 1
        track = pool.candidates[0]
        assert track.spotify_id == make_id("right1")
        assert track.source == "gpt"
        assert track.language == "Malayalam"
        assert track.genre_tags == ["folk"]
        assert fake_sp.calls_to("search") == [("search", "Kaattu Mooliyo Othiram", 10, "IN")]

    def test_disabled_by_default(self, spotify_client, analysis):
        suggester = FakeSuggester([SongSuggestion(title="x", artist="y")])
        generator = CandidateGenerator(spotify_client, CuratedCatalog(songs=[]), suggester=suggester)

        asyncio.run(generator.generate(analysis, use_spotify_search=False))

        assert suggester.calls == 0

    def test_stops_at_deadline(self, fake_sp, spotify_client, analysis):
        fake_sp.default_search = [spotify_track("any1")]
        suggester = FakeSuggester([SongSuggestion(title=f"t{i}", artist="a") for i in range(5)])
        generator = CandidateGenerator(spotify_client, CuratedCatalog(songs=[]), suggester=suggester)

        # Deadline 0 has already passed on any event loop clock
        pool = asyncio.run(
            generator.generate(analysis, use_spotify_search=False, use_gpt=True, deadline=0.0)
        )

        assert pool.candidates == []
        assert fake_sp.calls_to("search") == []

    def test_rate_limit_stops_resolution(self, fake_sp, spotify_client, analysis):
        fake_sp.errors["search"] = SpotifyException(429, -1, "slow down", headers={"Retry-After": "3"})
        suggester = FakeSuggester([SongSuggestion(title=f"t{i}", artist="a") for i in range(4)])
        generator = CandidateGenerator(spotify_client, CuratedCatalog(songs=[]), suggester=suggester)

        pool = asyncio.run(generator.generate(analysis, use_spotify_search=False, use_gpt=True))

        assert pool.candidates == []
        assert len(fake_sp.calls_to("search")) == 1
