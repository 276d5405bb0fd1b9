"""
Configuration and constants for the PhotoVibe recommendation pipeline.
"""
import os
from dataclasses import dataclass, field, replace
from typing import Dict, FrozenSet, List, Tuple


def _env_float(name: str, default: float) -> float:
    value = os.environ.get(name)
    if value is None or value == "":
        return default
    return float(value)


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None or value == "":
        return default
    return int(value)


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# =============================================================================
# SPOTIFY API CONFIGURATION
# =============================================================================
SPOTIFY_CLIENT_ID = os.environ.get("SPOTIFY_CLIENT_ID", "")
SPOTIFY_CLIENT_SECRET = os.environ.get("SPOTIFY_CLIENT_SECRET", "")
SPOTIFY_REDIRECT_URI = os.environ.get("SPOTIFY_REDIRECT_URI", "http://localhost:3000/api/spotify/callback")
SPOTIFY_REFRESH_TOKEN = os.environ.get("SPOTIFY_REFRESH_TOKEN", "")
SPOTIFY_MARKET = os.environ.get("SPOTIFY_MARKET", "IN")
SPOTIFY_REQUEST_TIMEOUT = _env_float("SPOTIFY_REQUEST_TIMEOUT", 5.0)

# Spotify API limits (items per request)
AUDIO_FEATURES_BATCH_SIZE = 100
POPULARITY_BATCH_SIZE = 50
SEARCH_MAX_LIMIT = 50

# =============================================================================
# VISION / LLM CONFIGURATION
# =============================================================================
OPENAI_API_KEY = os.environ.get("OPENAI_API_KEY", "")
VISION_MODEL = os.environ.get("VISION_MODEL", "gpt-4o-mini")
VISION_TIMEOUT_SECONDS = _env_float("VISION_TIMEOUT_SECONDS", 25.0)
VISION_MAX_TOKENS = 500
SUGGESTION_MODEL = os.environ.get("SUGGESTION_MODEL", VISION_MODEL)

# Used when the vision model returns no usable language list
DEFAULT_LANGUAGE_BIAS = ["Malayalam", "Tamil"]
DEFAULT_ERA_PREFERENCE = "2010s"
MAX_LANGUAGE_BIAS = 3

# =============================================================================
# CACHING CONFIGURATION
# =============================================================================
REDIS_URL = os.environ.get("REDIS_URL", "")
REDIS_CONNECT_TIMEOUT = 10
AUDIO_FEATURE_TTL_SECONDS = 60 * 60 * 24 * 7  # 7 days, features never change
AUDIO_FEATURE_KEY_PREFIX = "audio_features:"
AUDIO_FEATURE_MEMORY_MAX_ENTRIES = _env_int("AUDIO_FEATURE_MEMORY_MAX_ENTRIES", 10000)
SPOTIFY_TOKEN_KEY = "spotify:token_info"

# =============================================================================
# CATALOG CONFIGURATION
# =============================================================================
CURATED_CATALOG_PATH = os.environ.get(
    "CURATED_CATALOG_PATH",
    os.path.join("data", "songs", "curated-songs.json"),
)

# =============================================================================
# SCORING DEFAULTS
# =============================================================================
DEFAULT_POPULARITY = 50        # assumed when a track has no popularity
NEUTRAL_SCORE = 0.5            # component score when information is missing
NON_PREFERRED_LANGUAGE_SCORE = 0.5
DEEP_CUT_BONUS = 0.3
MAINSTREAM_PENALTY = 0.2

# (max distance in years from the target decade, score)
ERA_SCORE_BANDS: Tuple[Tuple[int, float], ...] = ((5, 1.0), (10, 0.7))
ERA_DISTANT_SCORE = 0.4

# (minimum total, tier), checked in order
CONFIDENCE_TIERS: Tuple[Tuple[float, str], ...] = (
    (0.8, "perfect"),
    (0.6, "good"),
    (0.4, "partial"),
)
FALLBACK_CONFIDENCE = "fallback"


@dataclass(frozen=True)
class PopularityThresholds:
    """Popularity tier boundaries shared by scoring and constraints."""
    deep_cut_below: int = 40
    mainstream_above: int = 80

    def tier(self, popularity: float) -> str:
        if popularity < self.deep_cut_below:
            return "deep_cut"
        if popularity > self.mainstream_above:
            return "mainstream"
        return "moderate"

DEFAULT_POPULARITY_THRESHOLDS = PopularityThresholds()


# =============================================================================
# SCORING WEIGHTS
# =============================================================================
@dataclass
class ScoringWeights:
    """Weights for the multi-criteria match score. Defaults sum to 1.0."""
    energy: float = 0.25
    valence: float = 0.25
    popularity: float = 0.20
    language: float = 0.15
    era: float = 0.10
    vibe: float = 0.05

    @classmethod
    def from_env(cls) -> "ScoringWeights":
        """Build weights, letting SCORING_WEIGHT_* variables override defaults."""
        base = cls()
        return cls(
            energy=_env_float("SCORING_WEIGHT_ENERGY", base.energy),
            valence=_env_float("SCORING_WEIGHT_VALENCE", base.valence),
            popularity=_env_float("SCORING_WEIGHT_POPULARITY", base.popularity),
            language=_env_float("SCORING_WEIGHT_LANGUAGE", base.language),
            era=_env_float("SCORING_WEIGHT_ERA", base.era),
            vibe=_env_float("SCORING_WEIGHT_VIBE", base.vibe),
        )

    def total(self) -> float:
        return sum(self.to_dict().values())

    def to_dict(self) -> Dict[str, float]:
        return {
            "energy": self.energy,
            "valence": self.valence,
            "popularity": self.popularity,
            "language": self.language,
            "era": self.era,
            "vibe": self.vibe,
        }

DEFAULT_WEIGHTS = ScoringWeights.from_env()


# =============================================================================
# DIVERSITY CONSTRAINTS
# =============================================================================
# Overused titles that are never recommended (case-insensitive partial match)
BLACKLIST_TITLES: Tuple[str, ...] = (
    # English
    "Here Comes the Sun",
    "Riders on the Storm",
    "Happy",
    "Someone Like You",
    "Blinding Lights",
    "Bohemian Rhapsody",
    "Creep",
    "Photograph",
    "Shape of You",
    "Despacito",
    # Malayalam
    "Malare",
    "Appangal Embadum",
    "Jimmiki Kammal",
    # Tamil
    "Why This Kolaveri Di",
    "Rowdy Baby",
    "Ennodu Nee Irundhaal",
    # Hindi
    "Jai Ho",
    "Tujhe Dekha To",
    "Chaiyya Chaiyya",
)


@dataclass(frozen=True)
class ConstraintConfig:
    """Diversity and quality rules for the final selection."""
    max_mainstream: int = 1
    min_deep_cuts: int = 2
    min_decades: int = 2
    allow_duplicate_artists: bool = False
    # Explicit Spotify IDs that are never recommended
    blacklist: FrozenSet[str] = field(default_factory=frozenset)

    @classmethod
    def from_env(cls) -> "ConstraintConfig":
        base = cls()
        return cls(
            max_mainstream=_env_int("CONSTRAINT_MAX_MAINSTREAM", base.max_mainstream),
            min_deep_cuts=_env_int("CONSTRAINT_MIN_DEEP_CUTS", base.min_deep_cuts),
            min_decades=_env_int("CONSTRAINT_MIN_DECADES", base.min_decades),
            allow_duplicate_artists=_env_bool(
                "CONSTRAINT_ALLOW_DUPLICATE_ARTISTS", base.allow_duplicate_artists
            ),
        )

    def relaxed(self, **changes) -> "ConstraintConfig":
        """Return a relaxed copy; the original config is never mutated."""
        return replace(self, **changes)

    def to_dict(self) -> Dict:
        return {
            "max_mainstream": self.max_mainstream,
            "min_deep_cuts": self.min_deep_cuts,
            "min_decades": self.min_decades,
            "allow_duplicate_artists": self.allow_duplicate_artists,
            "blacklist_size": len(self.blacklist),
        }

DEFAULT_CONSTRAINTS = ConstraintConfig.from_env()


# =============================================================================
# CANDIDATE GENERATION CONFIGURATION
# =============================================================================
@dataclass
class CandidateConfig:
    """Configuration for candidate track generation."""
    use_curated: bool = True
    use_spotify_search: bool = True
    use_gpt: bool = False

    # Curated catalog entries proposed per request
    curated_top_n: int = 20

    # Live search
    search_limit: int = 30
    search_max_languages: int = 2
    search_max_vibe_tags: int = 3

    # AI suggestion source
    suggestion_count: int = 8
    suggestion_search_limit: int = 10

    # Upper bound of the deduplicated pool
    max_candidates: int = 60

DEFAULT_CANDIDATE_CONFIG = CandidateConfig()

# Curated match-signal weights (language, era, vibe)
CURATED_LANGUAGE_WEIGHT = 0.4
CURATED_ERA_WEIGHT = 0.2
CURATED_VIBE_WEIGHT = 0.4
CURATED_LANGUAGE_MISS = 0.3
CURATED_ERA_MISS = 0.5
CURATED_ERA_WINDOW_YEARS = 5


# =============================================================================
# PIPELINE CONFIGURATION
# =============================================================================
@dataclass
class PipelineConfig:
    """End-to-end request settings."""
    # Whole-request deadline in seconds
    request_timeout: float = _env_float("RECOMMEND_TIMEOUT_SECONDS", 60.0)

    # Sequential loops stop this many seconds before the deadline
    deadline_margin: float = 2.0

    target_count: int = 5
    min_count: int = 4
    max_backfill_extra: int = 2

DEFAULT_PIPELINE_CONFIG = PipelineConfig()

# Candidate provenance labels
SOURCE_CURATED = "curated"
SOURCE_GPT = "gpt"
SOURCE_SPOTIFY_SEARCH = "spotify_search"
CANDIDATE_SOURCES: List[str] = [SOURCE_CURATED, SOURCE_SPOTIFY_SEARCH, SOURCE_GPT]
