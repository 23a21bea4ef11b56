"""
Onboarding: seed selection, the ten-film rating session and taste analysis.

The session walks each seed film through the ten dimensions in canonical
order, then asks for an overall 1-5. The analyzer turns the collected
ratings into a personality label, top dimensions, prose preferences, a
confidence value and an initial recommendation list.
"""
import json
import logging
import random
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from statistics import mean
from typing import Callable, Mapping

from .catalog import CatalogStore
from .config import (
    DATA_DIR,
    ONBOARDING_FILM_COUNT,
    ONBOARDING_RECOMMENDATIONS,
    ONBOARDING_TOP_DIMENSIONS,
    ONBOARDING_TOP_THRESHOLD,
    ONBOARDING_MAX_PREFERENCES,
    PERSONALITY_HIGH,
    PERSONALITY_LOW,
    CONFIDENCE_BASE,
    CONFIDENCE_MIN_RATINGS_BONUS,
    CONFIDENCE_FULL_RATINGS_BONUS,
    CONFIDENCE_VARIETY_WEIGHT,
    CONFIDENCE_VARIETY_LEVELS,
    CONFIDENCE_THOUGHTFUL_SECONDS,
    CONFIDENCE_THOUGHTFUL_BONUS,
)
from .dimensions import DIMENSIONS, coerce_vector, ordinal_vector, tag_name, whole_level
from .errors import InvalidInputError, OutOfOrderError
from .models import Film, OnboardingRating, OnboardingResult, TasteProfile
from .storage import Storage, onboarding_key
from .utils import round_half_up, utc_now_iso

logger = logging.getLogger(__name__)

FILL_WHY_SELECTED = "Provides additional taste calibration data"
FILL_TAGS = ("balanced", "calibration")


def _read_json(path: Path):
    with open(path, encoding="utf-8") as f:
        return json.load(f)


# --- personality ---

@dataclass(frozen=True)
class PersonalityRule:
    label: str
    icon: str
    high: tuple[str, ...] = ()
    low: tuple[str, ...] = ()

    def matches(self, avg: Mapping[str, float]) -> bool:
        return (
            all(avg[d] >= PERSONALITY_HIGH for d in self.high)
            and all(avg[d] <= PERSONALITY_LOW for d in self.low)
        )


def _load_personalities(path: Path):
    data = _read_json(path)
    rules = []
    for entry in data["rules"]:
        for dim in [*entry.get("high", []), *entry.get("low", [])]:
            if dim not in DIMENSIONS:
                raise ValueError(f"Personality rule {entry['label']!r} names unknown dimension {dim!r}")
        rules.append(PersonalityRule(
            label=entry["label"],
            icon=entry.get("icon", ""),
            high=tuple(entry.get("high", [])),
            low=tuple(entry.get("low", [])),
        ))
    default = PersonalityRule(label=data["default"]["label"], icon=data["default"].get("icon", ""))
    return rules, default, data["preferences"], data["default_preference"]


PERSONALITY_RULES, DEFAULT_PERSONALITY, _PREFERENCE_SENTENCES, _DEFAULT_PREFERENCE = _load_personalities(
    DATA_DIR / "personalities.json"
)


def personality(avg: Mapping) -> PersonalityRule:
    """First rule in precedence order whose high/low conditions all hold."""
    values = coerce_vector(avg)
    for rule in PERSONALITY_RULES:
        if rule.matches(values):
            return rule
    return DEFAULT_PERSONALITY


def personality_label(avg: Mapping) -> str:
    return personality(avg).label


def preference_sentences(avg: Mapping) -> list[str]:
    values = coerce_vector(avg)
    sentences = []
    for entry in _PREFERENCE_SENTENCES:
        value = values[entry["dimension"]]
        fired = value >= PERSONALITY_HIGH if entry["when"] == "high" else value <= PERSONALITY_LOW
        if fired:
            sentences.append(entry["text"])
    return sentences[:ONBOARDING_MAX_PREFERENCES] or [_DEFAULT_PREFERENCE]


# --- seed selection ---

@dataclass(frozen=True)
class SeedCriterion:
    criterion: str
    why_selected: str
    expected_dimensions: dict[str, int]
    match: dict

    def matches(self, film: Film) -> bool:
        """
        Exclusions veto; otherwise any present test is enough.

        An empty match block accepts every film.
        """
        genres = {g.lower() for g in film.genres}
        if genres & {g.lower() for g in self.match.get("exclude_genres", [])}:
            return False

        tests = []
        if "any_genres" in self.match:
            tests.append(bool(genres & {g.lower() for g in self.match["any_genres"]}))
        if "director_contains" in self.match:
            director = (film.director or "").lower()
            tests.append(any(p.lower() in director for p in self.match["director_contains"]))
        if "runtime_over" in self.match:
            tests.append(film.runtime > self.match["runtime_over"])
        if "year_after" in self.match:
            tests.append(film.year is not None and film.year > self.match["year_after"])
        return any(tests) if tests else True

    def diversity_tags(self) -> list[str]:
        tags = []
        for dim, value in self.expected_dimensions.items():
            if value >= PERSONALITY_HIGH:
                tags.append(f"high-{tag_name(dim)}")
            elif value <= PERSONALITY_LOW:
                tags.append(f"low-{tag_name(dim)}")
        return tags


def load_criteria(path: Path = DATA_DIR / "seed_criteria.json") -> list[SeedCriterion]:
    criteria = []
    for entry in _read_json(path):
        expected = entry.get("expected_dimensions", {})
        unknown = set(expected) - set(DIMENSIONS)
        if unknown:
            raise ValueError(f"Criterion {entry['criterion']!r} names unknown dimensions {sorted(unknown)}")
        criteria.append(SeedCriterion(
            criterion=entry["criterion"],
            why_selected=entry["why_selected"],
            expected_dimensions=expected,
            match=entry.get("match", {}),
        ))
    return criteria


@dataclass
class SeedFilm:
    film: Film
    why_selected: str
    diversity_tags: list[str] = field(default_factory=list)
    criterion: str | None = None


def select_seed_films(
    catalog: CatalogStore,
    rng: random.Random | None = None,
    criteria: list[SeedCriterion] | None = None,
) -> list[SeedFilm]:
    """
    Exactly ten unseen films spanning the extremes of the dimension space.

    Raises:
        NotReadyError: catalog is not ready
        InvalidInputError: fewer than ten unseen films
    """
    catalog.require_ready()
    rng = rng or random.Random()
    criteria = criteria if criteria is not None else load_criteria()

    unseen = catalog.enumerate_unseen()
    if len(unseen) < ONBOARDING_FILM_COUNT:
        raise InvalidInputError(
            f"Onboarding needs {ONBOARDING_FILM_COUNT} unseen films, catalog has {len(unseen)}"
        )

    selected: list[SeedFilm] = []
    used: set[str] = set()
    for criterion in criteria[:ONBOARDING_FILM_COUNT]:
        film = next((f for f in unseen if f.id not in used and criterion.matches(f)), None)
        if film is None:
            logger.debug(f"No film matches criterion {criterion.criterion!r}")
            continue
        used.add(film.id)
        selected.append(SeedFilm(
            film=film,
            why_selected=criterion.why_selected,
            diversity_tags=criterion.diversity_tags(),
            criterion=criterion.criterion,
        ))

    remaining = [f for f in unseen if f.id not in used]
    while len(selected) < ONBOARDING_FILM_COUNT:
        film = rng.choice(remaining)
        remaining.remove(film)
        selected.append(SeedFilm(film=film, why_selected=FILL_WHY_SELECTED, diversity_tags=list(FILL_TAGS)))

    logger.info(f"Selected {len(selected)} seed films ({len(used)} by criteria)")
    return selected


# --- session ---

class SessionState(Enum):
    WELCOME = "welcome"
    RATING = "rating"
    RESULTS = "results"


class OnboardingSession:
    """Ordered rating pass over the seed films."""

    def __init__(self, seed_films: list[SeedFilm], clock: Callable[[], float] = time.monotonic):
        self.seed_films = list(seed_films)
        self.clock = clock
        self.state = SessionState.WELCOME
        self._film_index = 0
        self._partial: dict[str, int] = {}
        self._film_started_at = 0.0
        self._ratings: list[OnboardingRating] = []
        self.skipped: list[str] = []

    def start(self):
        if self.state is not SessionState.WELCOME:
            raise OutOfOrderError(f"Session already started (state: {self.state.value})")
        self.state = SessionState.RATING if self.seed_films else SessionState.RESULTS
        self._film_started_at = self.clock()

    @property
    def current_film(self) -> SeedFilm | None:
        if self.state is not SessionState.RATING:
            return None
        return self.seed_films[self._film_index]

    @property
    def current_dimension(self) -> str | None:
        if self.state is not SessionState.RATING or self.awaiting_overall:
            return None
        return DIMENSIONS[len(self._partial)]

    @property
    def dimension_index(self) -> int:
        """1-based position of the current dimension."""
        return min(len(self._partial) + 1, len(DIMENSIONS))

    @property
    def awaiting_overall(self) -> bool:
        return len(self._partial) == len(DIMENSIONS)

    @property
    def is_complete(self) -> bool:
        return self.state is SessionState.RESULTS

    @property
    def ratings(self) -> list[OnboardingRating]:
        return list(self._ratings)

    def _require_current(self, film_id: str):
        if self.state is not SessionState.RATING:
            raise OutOfOrderError(f"Session is not accepting ratings (state: {self.state.value})")
        expected = self.seed_films[self._film_index].film.id
        if film_id != expected:
            raise OutOfOrderError(f"Expected a rating for {expected!r}, got {film_id!r}")

    def submit(self, film_id: str, dimension: str, value) -> None:
        self._require_current(film_id)
        if self.awaiting_overall:
            raise OutOfOrderError(f"All dimensions of {film_id!r} are rated; overall rating expected")
        expected = self.current_dimension
        if dimension != expected:
            raise OutOfOrderError(f"Expected dimension {expected!r}, got {dimension!r}")
        self._partial[dimension] = whole_level(value, dimension)

    def submit_overall(self, film_id: str, overall, completion_seconds: float | None = None) -> OnboardingRating:
        self._require_current(film_id)
        if not self.awaiting_overall:
            raise OutOfOrderError(f"Dimension {self.current_dimension!r} of {film_id!r} is still unrated")
        overall = whole_level(overall, "overall")
        if completion_seconds is None:
            completion_seconds = self.clock() - self._film_started_at

        rating = OnboardingRating(
            film_id=film_id,
            dimensions=dict(self._partial),
            overall=overall,
            completion_seconds=max(0.0, float(completion_seconds)),
        )
        self._ratings.append(rating)
        self._advance()
        return rating

    def skip(self, film_id: str) -> None:
        self._require_current(film_id)
        logger.debug(f"Skipped {film_id} after {len(self._partial)} dimensions")
        self.skipped.append(film_id)
        self._advance()

    def _advance(self):
        self._partial = {}
        self._film_index += 1
        self._film_started_at = self.clock()
        if self._film_index >= len(self.seed_films):
            self.state = SessionState.RESULTS


# --- analysis ---

def checked_rating(rating: OnboardingRating) -> OnboardingRating:
    """Copy of an onboarding rating with a full ten-level vector and 1-5 overall."""
    return OnboardingRating(
        film_id=rating.film_id,
        dimensions=ordinal_vector(rating.dimensions),
        overall=whole_level(rating.overall, "overall"),
        completion_seconds=rating.completion_seconds,
    )


def average_vector(ratings: list[OnboardingRating]) -> dict[str, float]:
    return {
        dim: round_half_up(mean(r.dimensions[dim] for r in ratings), 1)
        for dim in DIMENSIONS
    }


def top_dimensions(avg: Mapping[str, float]) -> list[tuple[str, float]]:
    above = [d for d in DIMENSIONS if avg[d] > ONBOARDING_TOP_THRESHOLD]
    above.sort(key=lambda d: (-avg[d], DIMENSIONS.index(d)))
    return [(d, avg[d]) for d in above[:ONBOARDING_TOP_DIMENSIONS]]


def onboarding_confidence(ratings: list[OnboardingRating]) -> float:
    if not ratings:
        return 0.0
    confidence = CONFIDENCE_BASE
    for needed, bonus in (CONFIDENCE_MIN_RATINGS_BONUS, CONFIDENCE_FULL_RATINGS_BONUS):
        if len(ratings) >= needed:
            confidence += bonus

    unique_values = {v for r in ratings for v in r.dimensions.values()}
    confidence += CONFIDENCE_VARIETY_WEIGHT * min(1.0, len(unique_values) / CONFIDENCE_VARIETY_LEVELS)

    if mean(r.completion_seconds for r in ratings) > CONFIDENCE_THOUGHTFUL_SECONDS:
        confidence += CONFIDENCE_THOUGHTFUL_BONUS
    return round_half_up(min(1.0, max(0.0, confidence)), 2)


class OnboardingAnalyzer:
    def __init__(self, scorer, storage: Storage | None = None):
        self.scorer = scorer
        self.storage = storage

    def analyze(self, ratings: list[OnboardingRating], user_id: str | None = None) -> OnboardingResult:
        """
        Fit a taste profile to the session ratings.

        Raises:
            InvalidInputError: no ratings, or a rating with a partial or out-of-range vector
            NotReadyError: catalog is not ready for the initial recommendations
        """
        if not ratings:
            raise InvalidInputError("Onboarding analysis needs at least one rating")
        ratings = [checked_rating(r) for r in ratings]

        avg = average_vector(ratings)
        profile = TasteProfile(
            personality_type=personality_label(avg),
            top_dimensions=top_dimensions(avg),
            movie_preferences=preference_sentences(avg),
            accuracy_confidence=onboarding_confidence(ratings),
            average=avg,
        )
        recommendations = self.scorer.recommend(avg, limit=ONBOARDING_RECOMMENDATIONS)
        result = OnboardingResult(
            ratings=list(ratings),
            taste_profile=profile,
            recommendations=recommendations,
            completed_at=utc_now_iso(),
        )
        logger.info(
            f"Onboarding analyzed: {profile.personality_type}, "
            f"confidence {profile.accuracy_confidence:.2f}, {len(recommendations)} recommendations"
        )

        if self.storage is not None and user_id:
            self.storage.save(onboarding_key(user_id), result.to_document())
        return result


def load_result(storage: Storage, user_id: str) -> dict | None:
    """Stored onboarding document, with the taste profile decoded."""
    document = storage.load(onboarding_key(user_id))
    if document is None:
        return None
    return {**document, "taste_profile": TasteProfile.from_dict(document.get("taste_profile") or {})}


def has_completed(storage: Storage, user_id: str) -> bool:
    return storage.load(onboarding_key(user_id)) is not None


def clear_result(storage: Storage, user_id: str) -> None:
    storage.delete(onboarding_key(user_id))
