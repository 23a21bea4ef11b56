"""
Configuration constants for the vibe recommender.

This module centralizes all magic numbers and configurable parameters.
Values can be overridden via environment variables.
"""
import os
import logging
from pathlib import Path

logger = logging.getLogger(__name__)


def _get_float_env(key: str, default: float, min_val: float = 0) -> float:
    """
    Safely parse float from environment variable with validation.

    Args:
        key: Environment variable name
        default: Default value if not set or invalid
        min_val: Minimum allowed value

    Returns:
        Validated float value
    """
    try:
        val = float(os.environ.get(key, default))
        if val < min_val:
            logger.warning(f"{key}={val} is below minimum {min_val}, using {min_val}")
            return min_val
        return val
    except ValueError:
        logger.warning(f"Invalid {key}='{os.environ.get(key)}', using default {default}")
        return default


def _get_int_env(key: str, default: int, min_val: int = 1) -> int:
    """
    Safely parse integer from environment variable with validation.

    Args:
        key: Environment variable name
        default: Default value if not set or invalid
        min_val: Minimum allowed value

    Returns:
        Validated integer value
    """
    try:
        val = int(os.environ.get(key, default))
        if val < min_val:
            logger.warning(f"{key}={val} is below minimum {min_val}, using {min_val}")
            return min_val
        return val
    except ValueError:
        logger.warning(f"Invalid {key}='{os.environ.get(key)}', using default {default}")
        return default


def _get_bool_env(key: str, default: bool) -> bool:
    """Parse a boolean flag such as 1/0, true/false, yes/no."""
    raw = os.environ.get(key)
    if raw is None:
        return default
    lowered = raw.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    logger.warning(f"Invalid {key}='{raw}', using default {default}")
    return default


# Storage Configuration
DB_PATH = Path(os.environ.get("VIBE_REC_DB", "data/vibe_rec.db"))
DATA_DIR = Path(__file__).resolve().parent / "data"
SEED_FILMS_PATH = DATA_DIR / "seed_films.json"

# External metadata service (TMDB)
TMDB_ACCESS_TOKEN = os.environ.get("TMDB_ACCESS_TOKEN")
TMDB_BASE_URL = os.environ.get("TMDB_BASE_URL", "https://api.themoviedb.org/3")
TMDB_IMAGE_BASE = "https://image.tmdb.org/t/p/w500"
TMDB_BACKDROP_BASE = "https://image.tmdb.org/t/p/w1280"
HTTP_TIMEOUT = _get_float_env("VIBE_REC_HTTP_TIMEOUT", 30.0, min_val=1.0)
MAX_HTTP_RETRIES = 3
MAX_REVIEW_TEXTS = 20  # Review snippets kept per film for the cue scan

# Scorer Configuration
DEFAULT_LIMIT = _get_int_env("VIBE_REC_LIMIT", 20, min_val=1)
DEFAULT_JITTER = _get_float_env("VIBE_REC_JITTER", 0.1, min_val=0.0)
MAX_DIFF_PER_DIMENSION = 4  # Widest gap on the 1-5 scale
MAX_SCORE = 5.0
RUNTIME_PENALTY = 0.5
RUNTIME_PENALTY_MIN_MINUTES = 150
RUNTIME_PENALTY_FIT_THRESHOLD = 2.5
MATCH_REASON_TOLERANCE = 0.5  # Dimension gap still reported as a close match

# Synthesizer Configuration
NEUTRAL_LEVEL = 3
DIRECTOR_STYLE_WEIGHT = 0.7
CUE_PER_TEXT_CLAMP = 1.0  # Max total cue delta per dimension from a single review
REVIEW_CONFIDENCE_SATURATION = 50  # Review count that yields full confidence
METADATA_CONFIDENCE_BASE = 0.3
METADATA_CONFIDENCE_STEP = 0.1
METADATA_CONFIDENCE_MIN_GENRES = 3
SUMMARY_HIGH_THRESHOLD = 4
SUMMARY_LOW_THRESHOLD = 2

# Catalog population
POPULATION_BATCH_SIZE = _get_int_env("VIBE_REC_BATCH_SIZE", 5, min_val=1)
CATALOG_SUMMARY_TOP_DIMENSIONS = 5

# Profile Weights
RECENCY_DECAY = 0.1          # exp(-decay * age) where age counts ratings since
PROFILE_CONFIDENCE_RATINGS = 10  # Ratings needed for full profile confidence
PERSONALIZATION_WEIGHT = 0.3

# Similar-user search
MIN_COMMON_FILMS = 2
NEIGHBOR_PEARSON_WEIGHT = 0.7
NEIGHBOR_COSINE_WEIGHT = 0.3
NEIGHBOR_SHRINKAGE_FILMS = 5  # Common films needed before similarity is trusted fully
NEIGHBOR_MIN_SIMILARITY = 0.3
MAX_NEIGHBORS = 10

# Prediction blending
COLLABORATIVE_ENABLED = _get_bool_env("VIBE_REC_COLLABORATIVE", True)
BLEND_CONTENT_WEIGHT = 0.6
BLEND_COLLABORATIVE_WEIGHT = 0.4

# Prediction feedback bands (mean absolute difference on the 1-5 scale)
FEEDBACK_CLOSE_THRESHOLD = 0.75
FEEDBACK_FAIR_THRESHOLD = 1.5

# Onboarding Configuration
ONBOARDING_FILM_COUNT = 10
ONBOARDING_RECOMMENDATIONS = 8
ONBOARDING_TOP_DIMENSIONS = 3
ONBOARDING_TOP_THRESHOLD = 3.5
ONBOARDING_MAX_PREFERENCES = 4
PERSONALITY_HIGH = 4
PERSONALITY_LOW = 2
CONFIDENCE_BASE = 0.5
CONFIDENCE_MIN_RATINGS_BONUS = (8, 0.2)    # (ratings needed, bonus)
CONFIDENCE_FULL_RATINGS_BONUS = (10, 0.1)
CONFIDENCE_VARIETY_WEIGHT = 0.2
CONFIDENCE_VARIETY_LEVELS = 5
CONFIDENCE_THOUGHTFUL_SECONDS = 30
CONFIDENCE_THOUGHTFUL_BONUS = 0.1

# Attribute prediction for a new film (metadata + neighbors)
PREDICTION_CONFIDENCE_BASE = 0.5
PREDICTION_HYBRID_BONUS = 0.3
PREDICTION_HYBRID_CAP = 0.9
PREDICTION_SIGNAL_BONUS = 0.1
PREDICTION_MIN_GENRES = 3

# Insights
ACCURACY_BANDS = ((0.8, "Excellent"), (0.6, "Good"), (0.4, "Improving"))
INSIGHTS_TOP_DIMENSIONS = 3
