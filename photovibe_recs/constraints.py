"""
Constraint Engine
=================

Selects the final playlist from ranked tracks under diversity rules:
- No blacklisted tracks (explicit IDs, or overused title substrings)
- No duplicate artists
- At most ``max_mainstream`` mainstream tracks (popularity > 80)
- At least ``min_deep_cuts`` deep cuts (popularity < 40)
- At least ``min_decades`` distinct release decades

Selection walks the ranked list top to bottom and greedily keeps tracks
that pass the per-track rules. When too few tracks survive, the rules are
relaxed one level at a time:

    0 strict
    1 duplicate artists allowed
    2 minimum deep cuts lowered to 1
    3 fallback: top-ranked non-blacklisted tracks, unconstrained

The engine never raises for an unsatisfiable configuration; unmet rules are
reported in the SelectionReport.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .config import (
    BLACKLIST_TITLES,
    DEFAULT_CONSTRAINTS,
    DEFAULT_PIPELINE_CONFIG,
    DEFAULT_POPULARITY_THRESHOLDS,
    ConstraintConfig,
    PipelineConfig,
    PopularityThresholds,
)
from .scoring import ScoredTrack
from .utils import decade_of

logger = logging.getLogger(__name__)

LEVEL_STRICT = 0
LEVEL_DUPLICATE_ARTISTS = 1
LEVEL_FEWER_DEEP_CUTS = 2
LEVEL_FALLBACK = 3

LEVEL_NAMES = {
    LEVEL_STRICT: "strict",
    LEVEL_DUPLICATE_ARTISTS: "duplicate_artists_allowed",
    LEVEL_FEWER_DEEP_CUTS: "min_deep_cuts_relaxed",
    LEVEL_FALLBACK: "fallback",
}


@dataclass
class SelectionReport:
    """Outcome of constraint selection."""
    tracks: List[ScoredTrack] = field(default_factory=list)
    level: int = LEVEL_STRICT
    config_used: ConstraintConfig = DEFAULT_CONSTRAINTS
    unmet: List[str] = field(default_factory=list)
    stats: Dict = field(default_factory=dict)

    @property
    def level_name(self) -> str:
        return LEVEL_NAMES[self.level]

    @property
    def relaxed(self) -> bool:
        return self.level != LEVEL_STRICT

    def to_dict(self) -> Dict:
        return {
            "count": len(self.tracks),
            "level": self.level,
            "level_name": self.level_name,
            "config_used": self.config_used.to_dict(),
            "unmet": list(self.unmet),
            "stats": dict(self.stats),
        }


class ConstraintEngine:
    """
    Greedy diversity-constrained selection with a relaxation ladder.

    Attributes:
        config: Constraint configuration (never mutated)
        thresholds: Popularity tier boundaries
        pipeline: Target/minimum selection sizes
        blacklist_titles: Overused title substrings
    """

    def __init__(
        self,
        config: ConstraintConfig = DEFAULT_CONSTRAINTS,
        thresholds: PopularityThresholds = DEFAULT_POPULARITY_THRESHOLDS,
        pipeline: PipelineConfig = DEFAULT_PIPELINE_CONFIG,
        blacklist_titles: Iterable[str] = BLACKLIST_TITLES,
    ):
        self.config = config
        self.thresholds = thresholds
        self.pipeline = pipeline
        self.blacklist_titles: Tuple[str, ...] = tuple(t.lower() for t in blacklist_titles if t)

    # =========================================================================
    # PER-TRACK RULES
    # =========================================================================

    def tier(self, track: ScoredTrack) -> str:
        return self.thresholds.tier(track.popularity)

    def is_blacklisted(self, track: ScoredTrack, config: Optional[ConstraintConfig] = None) -> bool:
        """Explicit ID match, or a blacklisted title contained in the track title."""
        config = config or self.config
        if track.track.spotify_id in config.blacklist:
            return True
        title = (track.track.title or "").lower()
        return any(blacklisted in title for blacklisted in self.blacklist_titles)

    def check_candidate(
        self,
        selected: Sequence[ScoredTrack],
        candidate: ScoredTrack,
        config: ConstraintConfig,
    ) -> Optional[str]:
        """
        Check whether ``candidate`` may join ``selected``.

        Returns:
            None if allowed, else the reason it was rejected
        """
        if self.is_blacklisted(candidate, config):
            return "blacklisted"

        if not config.allow_duplicate_artists:
            artist = candidate.track.artist.lower()
            if any(t.track.artist.lower() == artist for t in selected):
                return "duplicate_artist"

        if self.tier(candidate) == "mainstream":
            mainstream = sum(1 for t in selected if self.tier(t) == "mainstream")
            if mainstream >= config.max_mainstream:
                return "mainstream_limit_reached"

        return None

    # =========================================================================
    # SELECTION-LEVEL RULES
    # =========================================================================

    def decades(self, tracks: Iterable[ScoredTrack]) -> List[int]:
        """Distinct decades of tracks with a known year, ascending."""
        return sorted({d for d in (decade_of(t.track.year) for t in tracks) if d is not None})

    def check_minimums(self, selected: Sequence[ScoredTrack], config: ConstraintConfig) -> List[str]:
        """Unmet minimums of a selection; empty when all hold."""
        unmet = []

        deep_cuts = sum(1 for t in selected if self.tier(t) == "deep_cut")
        if deep_cuts < config.min_deep_cuts:
            unmet.append(f"only_{deep_cuts}_deep_cuts")

        decade_count = len(self.decades(selected))
        if decade_count < config.min_decades:
            unmet.append(f"only_{decade_count}_decades")

        return unmet

    def selection_stats(self, selected: Sequence[ScoredTrack]) -> Dict:
        decades = self.decades(selected)
        return {
            "total": len(selected),
            "deep_cuts": sum(1 for t in selected if self.tier(t) == "deep_cut"),
            "mainstream": sum(1 for t in selected if self.tier(t) == "mainstream"),
            "decades": len(decades),
            "decade_list": decades,
        }

    # =========================================================================
    # SELECTION
    # =========================================================================

    def _greedy_pass(self, ranked: Sequence[ScoredTrack], config: ConstraintConfig) -> List[ScoredTrack]:
        selected: List[ScoredTrack] = []
        for track in ranked:
            if len(selected) >= self.pipeline.target_count:
                break
            reason = self.check_candidate(selected, track, config)
            if reason is None:
                selected.append(track)
                logger.debug(
                    "Added #%d: %r (score %.3f)", len(selected), track.track.title, track.scores.total
                )
            else:
                logger.debug("Skipped %r: %s", track.track.title, reason)
        return selected

    def _backfill(
        self,
        ranked: Sequence[ScoredTrack],
        selected: List[ScoredTrack],
        config: ConstraintConfig,
    ) -> None:
        """Add tracks (duplicate artists allowed) until minimums hold or the cap is hit."""
        cap = self.pipeline.target_count + self.pipeline.max_backfill_extra
        relaxed = config.relaxed(allow_duplicate_artists=True)
        chosen = {t.track.spotify_id for t in selected}

        for track in ranked:
            if len(selected) >= cap:
                break
            if track.track.spotify_id in chosen:
                continue
            if self.check_candidate(selected, track, relaxed) is not None:
                continue
            selected.append(track)
            chosen.add(track.track.spotify_id)
            logger.debug("Added extra track to meet minimums: %r", track.track.title)
            if not self.check_minimums(selected, config):
                break

    def _fallback(self, ranked: Sequence[ScoredTrack], config: ConstraintConfig) -> List[ScoredTrack]:
        tracks = [t for t in ranked if not self.is_blacklisted(t, config)]
        return tracks[:self.pipeline.target_count]

    def select(self, ranked: Sequence[ScoredTrack]) -> SelectionReport:
        """
        Select the final tracks from a ranked list.

        Args:
            ranked: Scored tracks sorted by total, highest first

        Returns:
            SelectionReport with at most target_count tracks in ranked order
        """
        logger.info("Applying constraints to %d ranked tracks: %s", len(ranked), self.config.to_dict())

        config = self.config
        level = LEVEL_STRICT

        while True:
            if level == LEVEL_FALLBACK:
                logger.warning("Using fallback: taking top ranked tracks without constraints")
                selected = self._fallback(ranked, config)
                break

            selected = self._greedy_pass(ranked, config)
            if len(selected) >= self.pipeline.min_count:
                unmet = self.check_minimums(selected, config)
                if unmet:
                    logger.warning("Minimum constraints not met: %s", ", ".join(unmet))
                    self._backfill(ranked, selected, config)
                break

            logger.warning(
                "Only %d tracks selected at level %s, need at least %d",
                len(selected), LEVEL_NAMES[level], self.pipeline.min_count,
            )
            if not config.allow_duplicate_artists:
                level = LEVEL_DUPLICATE_ARTISTS
                config = config.relaxed(allow_duplicate_artists=True)
            elif config.min_deep_cuts > 1:
                level = LEVEL_FEWER_DEEP_CUTS
                config = config.relaxed(min_deep_cuts=1)
            else:
                level = LEVEL_FALLBACK

        final = selected[:self.pipeline.target_count]
        report = SelectionReport(
            tracks=final,
            level=level,
            config_used=config,
            unmet=self.check_minimums(final, config),
            stats=self.selection_stats(final),
        )

        if report.unmet:
            logger.warning(
                "Final selection of %d tracks (level %s), unmet: %s",
                len(final), report.level_name, ", ".join(report.unmet),
            )
        else:
            logger.info("Final selection of %d tracks (level %s)", len(final), report.level_name)
        logger.info("Selection stats: %s", report.stats)
        return report

    def apply_constraints(self, ranked: Sequence[ScoredTrack]) -> List[ScoredTrack]:
        return self.select(ranked).tracks

    def validate_selection(
        self,
        selected: Sequence[ScoredTrack],
        config: Optional[ConstraintConfig] = None,
    ) -> List[str]:
        """
        List every rule a selection breaks.

        Returns:
            Human-readable violations; empty when the selection is valid
        """
        config = config or self.config
        violations = []

        for track in selected:
            if self.is_blacklisted(track, config):
                violations.append(f"Blacklisted track: {track.track.title}")

        if not config.allow_duplicate_artists:
            seen = set()
            duplicates = []
            for track in selected:
                artist = track.track.artist.lower()
                if artist in seen:
                    duplicates.append(artist)
                seen.add(artist)
            if duplicates:
                violations.append(f"Duplicate artists: {', '.join(duplicates)}")

        mainstream = sum(1 for t in selected if self.tier(t) == "mainstream")
        if mainstream > config.max_mainstream:
            violations.append(f"Too many mainstream tracks: {mainstream} (max: {config.max_mainstream})")

        deep_cuts = sum(1 for t in selected if self.tier(t) == "deep_cut")
        if deep_cuts < config.min_deep_cuts:
            violations.append(f"Not enough deep cuts: {deep_cuts} (min: {config.min_deep_cuts})")

        decade_count = len(self.decades(selected))
        if decade_count < config.min_decades:
            violations.append(f"Not enough decade diversity: {decade_count} (min: {config.min_decades})")

        return violations


def apply_constraints(
    ranked: Sequence[ScoredTrack],
    config: ConstraintConfig = DEFAULT_CONSTRAINTS,
) -> List[ScoredTrack]:
    """Convenience wrapper: select with a default-configured ConstraintEngine."""
    return ConstraintEngine(config).apply_constraints(ranked)


def validate_selection(
    selected: Sequence[ScoredTrack],
    config: ConstraintConfig = DEFAULT_CONSTRAINTS,
) -> List[str]:
    return ConstraintEngine(config).validate_selection(selected)
