"""Records shared across the taste model, with dict round-tripping for persistence."""
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

from .dimensions import coerce_vector

SOURCE_USER = "user"
SOURCE_SYNTHESIZED = "synthesized"


def ordered_vector(values) -> dict[str, float]:
    """Dimension mapping in canonical order, clamped to the 1-5 scale."""
    return coerce_vector(values)


def _plain_vector(values) -> dict:
    # Keep ints as ints so ordinal ratings serialize as 1..5
    vec = ordered_vector(values)
    return {k: int(v) if v == int(v) else v for k, v in vec.items()}


@dataclass
class Provenance:
    """Where a catalog film came from and how its vector was synthesized."""
    external_id: str | None = None
    url: str | None = None
    community_rating: float | None = None
    review_count: int | None = None
    confidence: float | None = None
    summary: str | None = None

    def to_dict(self) -> dict:
        return {
            "external_id": self.external_id,
            "url": self.url,
            "community_rating": self.community_rating,
            "review_count": self.review_count,
            "confidence": self.confidence,
            "summary": self.summary,
        }

    @classmethod
    def from_dict(cls, data: dict | None) -> "Provenance | None":
        if not data:
            return None
        return cls(
            external_id=data.get("external_id"),
            url=data.get("url"),
            community_rating=data.get("community_rating"),
            review_count=data.get("review_count"),
            confidence=data.get("confidence"),
            summary=data.get("summary"),
        )


@dataclass
class Film:
    id: str
    title: str
    year: int | None = None
    genres: list[str] = field(default_factory=list)
    director: str | None = None
    writer: str | None = None
    runtime: int = 1
    logline: str = ""
    poster_url: str = ""
    backdrop_url: str | None = None
    external_rating: float | None = None  # 0-10
    cast: list[str] = field(default_factory=list)
    seen: bool = False
    score: float | None = None  # ranking output, not persisted
    provenance: Provenance | None = None

    def __post_init__(self):
        # Genres behave as a set but keep first-seen order for display
        seen_genres = []
        for g in self.genres or []:
            if g and g not in seen_genres:
                seen_genres.append(g)
        self.genres = seen_genres
        self.runtime = max(1, int(self.runtime or 1))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "year": self.year,
            "genres": list(self.genres),
            "director": self.director,
            "writer": self.writer,
            "runtime": self.runtime,
            "logline": self.logline,
            "poster_url": self.poster_url,
            "backdrop_url": self.backdrop_url,
            "external_rating": self.external_rating,
            "cast": list(self.cast),
            "seen": self.seen,
            "provenance": self.provenance.to_dict() if self.provenance else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Film":
        return cls(
            id=str(data["id"]),
            title=data.get("title", ""),
            year=data.get("year"),
            genres=list(data.get("genres") or []),
            director=data.get("director"),
            writer=data.get("writer"),
            runtime=data.get("runtime") or 1,
            logline=data.get("logline", ""),
            poster_url=data.get("poster_url", ""),
            backdrop_url=data.get("backdrop_url"),
            external_rating=data.get("external_rating"),
            cast=list(data.get("cast") or []),
            seen=bool(data.get("seen", False)),
            provenance=Provenance.from_dict(data.get("provenance")),
        )


@dataclass(frozen=True)
class Rating:
    """
    One dimension vector for one film.

    User ratings and synthesized ratings share this shape; `source`
    tells them apart. Ratings are never modified after creation;
    `dimensions` is a read-only view.
    """
    id: str
    film_id: str
    dimensions: Mapping[str, float]
    overall: int
    notes: str = ""
    source: str = SOURCE_USER
    created_at: str | None = None

    def __post_init__(self):
        # read-only copy, detached from the caller's dict
        object.__setattr__(self, "dimensions", MappingProxyType(dict(self.dimensions or {})))

    @property
    def is_synthesized(self) -> bool:
        return self.source == SOURCE_SYNTHESIZED

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "film_id": self.film_id,
            "dimensions": _plain_vector(self.dimensions),
            "overall": self.overall,
            "notes": self.notes,
            "source": self.source,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Rating":
        return cls(
            id=str(data["id"]),
            film_id=str(data["film_id"]),
            dimensions=ordered_vector(data.get("dimensions")),
            overall=int(data.get("overall", 3)),
            notes=data.get("notes", ""),
            source=data.get("source", SOURCE_USER),
            created_at=data.get("created_at"),
        )


@dataclass
class UserProfile:
    """Aggregated taste of one user, rebuilt on every new rating."""
    id: str
    ratings: list[Rating] = field(default_factory=list)
    preferences: dict[str, float] = field(default_factory=dict)
    neighbors: list[str] = field(default_factory=list)
    confidence: float = 0.0
    ratings_count: int = 0

    def rating_for(self, film_id: str) -> Rating | None:
        """Most recent rating of a film."""
        for rating in reversed(self.ratings):
            if rating.film_id == film_id:
                return rating
        return None

    def rated_film_ids(self) -> set[str]:
        return {r.film_id for r in self.ratings}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "ratings": [r.to_dict() for r in self.ratings],
            "preferences": ordered_vector(self.preferences),
            "neighbors": list(self.neighbors),
            "confidence": self.confidence,
            "ratings_count": self.ratings_count,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "UserProfile":
        ratings = [Rating.from_dict(r) for r in data.get("ratings") or []]
        return cls(
            id=str(data["id"]),
            ratings=ratings,
            preferences=ordered_vector(data.get("preferences")),
            neighbors=list(data.get("neighbors") or []),
            confidence=float(data.get("confidence", 0.0)),
            ratings_count=int(data.get("ratings_count", len(ratings))),
        )


@dataclass
class Recommendation:
    film_id: str
    title: str
    year: int | None
    score: float
    distance: float
    reasons: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "film_id": self.film_id,
            "title": self.title,
            "year": self.year,
            "score": self.score,
            "distance": self.distance,
            "reasons": list(self.reasons),
            "warnings": list(self.warnings),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Recommendation":
        return cls(
            film_id=str(data["film_id"]),
            title=data.get("title", ""),
            year=data.get("year"),
            score=float(data.get("score", 0.0)),
            distance=float(data.get("distance", 0.0)),
            reasons=list(data.get("reasons") or []),
            warnings=list(data.get("warnings") or []),
        )


@dataclass(frozen=True)
class OnboardingRating:
    film_id: str
    dimensions: dict[str, int]
    overall: int
    completion_seconds: float = 0.0

    def to_dict(self) -> dict:
        return {
            "film_id": self.film_id,
            "dimensions": _plain_vector(self.dimensions),
            "overall": self.overall,
            "completion_seconds": self.completion_seconds,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "OnboardingRating":
        return cls(
            film_id=str(data["film_id"]),
            dimensions={k: int(v) for k, v in ordered_vector(data.get("dimensions")).items()},
            overall=int(data.get("overall", 3)),
            completion_seconds=float(data.get("completion_seconds", 0.0)),
        )


@dataclass
class TasteProfile:
    personality_type: str
    top_dimensions: list[tuple[str, float]]
    movie_preferences: list[str]
    accuracy_confidence: float
    average: dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "personality_type": self.personality_type,
            "top_dimensions": [
                {"dimension": dim, "preference": value} for dim, value in self.top_dimensions
            ],
            "movie_preferences": list(self.movie_preferences),
            "accuracy_confidence": self.accuracy_confidence,
            "average": ordered_vector(self.average),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "TasteProfile":
        return cls(
            personality_type=data.get("personality_type", ""),
            top_dimensions=[
                (entry["dimension"], float(entry["preference"]))
                for entry in data.get("top_dimensions") or []
            ],
            movie_preferences=list(data.get("movie_preferences") or []),
            accuracy_confidence=float(data.get("accuracy_confidence", 0.0)),
            average=ordered_vector(data.get("average")),
        )


@dataclass
class OnboardingResult:
    ratings: list[OnboardingRating]
    taste_profile: TasteProfile
    recommendations: list[Recommendation]
    completed_at: str

    def to_document(self) -> dict:
        """Layout stored under onboarding:{id}."""
        return {
            "completed_at": self.completed_at,
            "taste_profile": self.taste_profile.to_dict(),
            "ratings_count": len(self.ratings),
        }
