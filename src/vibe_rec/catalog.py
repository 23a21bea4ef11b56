"""
Catalog store and bulk population.

The store is the only writer of film records. It moves through an explicit
state machine (uninitialized -> loading -> ready) and the scorer refuses
to read it before it is ready. Population stages every synthesized film
and commits in one step, so a cancelled run leaves the previous catalog
untouched.
"""
import copy
import json
import logging
import re
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Iterable, Mapping

from .config import SEED_FILMS_PATH, POPULATION_BATCH_SIZE, NEUTRAL_LEVEL
from .dimensions import from_ten_point
from .errors import InvalidInputError, NotFoundError, NotReadyError, OperationCancelled
from .models import Film, Provenance, Rating, SOURCE_SYNTHESIZED
from .synthesis import AttributeSynthesizer, FilmSignals, SynthesisResult, summarize_catalog
from .utils import round_half_up, utc_now_iso

logger = logging.getLogger(__name__)


class CatalogState(Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    READY = "ready"


@dataclass(frozen=True)
class CatalogSnapshot:
    """Immutable view of the catalog at one point in time."""
    films: Mapping[str, Film]
    ratings: Mapping[str, Rating]
    state: CatalogState
    populated_at: str | None = None
    summary: dict = field(default_factory=dict)

    def get(self, film_id: str) -> Film | None:
        return self.films.get(film_id)

    def get_rating(self, film_id: str) -> Rating | None:
        return self.ratings.get(film_id)

    def unseen(self) -> list[Film]:
        return [f for f in self.films.values() if not f.seen]


class CatalogStore:
    def __init__(self):
        self._films: dict[str, Film] = {}
        self._ratings: dict[str, Rating] = {}
        self._state = CatalogState.UNINITIALIZED
        self._progress = (0, 0)
        self.populated_at: str | None = None
        self.summary: dict = {}

    # --- state machine ---

    @property
    def state(self) -> CatalogState:
        return self._state

    @property
    def progress(self) -> tuple[int, int]:
        """(completed, total) while loading."""
        return self._progress

    @property
    def is_ready(self) -> bool:
        return self._state is CatalogState.READY

    def begin_loading(self, total: int):
        self._state = CatalogState.LOADING
        self._progress = (0, total)

    def update_progress(self, completed: int, total: int):
        self._progress = (completed, total)

    def mark_ready(self, populated_at: str | None = None, summary: dict | None = None):
        self._state = CatalogState.READY
        self._progress = (len(self._films), len(self._films))
        if populated_at is not None:
            self.populated_at = populated_at
        if summary is not None:
            self.summary = summary

    def require_ready(self):
        if self._state is not CatalogState.READY:
            completed, total = self._progress
            raise NotReadyError(
                f"Catalog is {self._state.value} ({completed}/{total}); try again once it is ready"
            )

    # --- film mutation ---

    def insert(self, film: Film, rating: Rating | None = None):
        """
        Add or replace a film, and its synthesized rating when given.

        Replacing a film never clears its seen flag; only update_seen does.
        """
        if not film.id or not film.title:
            raise InvalidInputError("Film needs a non-empty id and title")
        if rating is not None and rating.film_id != film.id:
            raise InvalidInputError(f"Rating {rating.id} belongs to {rating.film_id}, not {film.id}")

        stored = copy.deepcopy(film)
        stored.score = None
        existing = self._films.get(film.id)
        if existing is not None and existing.seen:
            stored.seen = True
        self._films[film.id] = stored
        if rating is not None:
            self._ratings[film.id] = rating

    def update_seen(self, film_id: str, seen: bool = True):
        film = self._films.get(film_id)
        if film is None:
            raise NotFoundError(f"Unknown film: {film_id}")
        film.seen = seen

    # --- reads ---

    def get(self, film_id: str) -> Film | None:
        film = self._films.get(film_id)
        return copy.deepcopy(film) if film else None

    def get_rating(self, film_id: str) -> Rating | None:
        return self._ratings.get(film_id)

    def enumerate_unseen(self) -> list[Film]:
        return [copy.deepcopy(f) for f in self._films.values() if not f.seen]

    def films(self) -> list[Film]:
        return [copy.deepcopy(f) for f in self._films.values()]

    def __len__(self) -> int:
        return len(self._films)

    def __contains__(self, film_id: str) -> bool:
        return film_id in self._films

    # --- snapshots ---

    def snapshot(self) -> CatalogSnapshot:
        return CatalogSnapshot(
            films=copy.deepcopy(self._films),
            ratings=dict(self._ratings),
            state=self._state,
            populated_at=self.populated_at,
            summary=dict(self.summary),
        )

    def restore(self, snapshot: CatalogSnapshot):
        self._films = copy.deepcopy(dict(snapshot.films))
        self._ratings = dict(snapshot.ratings)
        self._state = snapshot.state
        self.populated_at = snapshot.populated_at
        self.summary = dict(snapshot.summary)
        self._progress = (len(self._films), len(self._films))

    # --- persistence layout ---

    def to_document(self) -> dict:
        return {
            "films": [f.to_dict() for f in self._films.values()],
            "synthesized_ratings": [r.to_dict() for r in self._ratings.values()],
            "populated_at": self.populated_at,
            "summary": dict(self.summary),
        }

    def load_document(self, document: dict):
        """Replace contents with a persisted catalog document and mark ready."""
        films = {}
        for raw in document.get("films") or []:
            film = Film.from_dict(raw)
            films[film.id] = film
        ratings = {}
        for raw in document.get("synthesized_ratings") or []:
            rating = Rating.from_dict(raw)
            if rating.film_id in films:
                ratings[rating.film_id] = rating
        self._films = films
        self._ratings = ratings
        self.mark_ready(document.get("populated_at"), document.get("summary") or {})
        logger.info(f"Loaded catalog with {len(films)} films")

    @classmethod
    def from_document(cls, document: dict) -> "CatalogStore":
        store = cls()
        store.load_document(document)
        return store


class CancellationToken:
    """Cooperative cancellation flag, checked at batch boundaries."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self):
        if self._event.is_set():
            raise OperationCancelled("Catalog population cancelled")


# --- seed entries ---

def load_seed_entries(path: Path = SEED_FILMS_PATH) -> list[dict]:
    """Read a curated film list (films plus review snippets)."""
    with open(path, encoding="utf-8") as f:
        entries = json.load(f)
    if not isinstance(entries, list):
        raise InvalidInputError(f"{path} must contain a JSON list of films")
    return entries


def slugify(title: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-")
    return slug or "film"


def film_id_for(title: str, year: int | None = None) -> str:
    """Id for an entry without one: title slug, suffixed with the year when known."""
    slug = slugify(title)
    return f"{slug}-{year}" if year else slug


def community_to_ten_point(rating: float) -> float:
    """Approximate a 0-10 external rating from a 5-star community average."""
    return round_half_up(rating * 1.8 + 0.5, 1)


def entry_to_signals(entry: dict) -> FilmSignals:
    return FilmSignals(
        genres=list(entry.get("genres") or []),
        runtime=entry.get("runtime"),
        external_rating=_external_rating(entry),
        year=entry.get("year"),
        director=entry.get("director"),
        review_texts=list(entry.get("reviews") or []),
        community_review_count=entry.get("review_count"),
        community_rating=entry.get("community_rating"),
        title=entry.get("title"),
    )


def _external_rating(entry: dict) -> float | None:
    if entry.get("external_rating") is not None:
        return float(entry["external_rating"])
    if entry.get("community_rating") is not None:
        return community_to_ten_point(float(entry["community_rating"]))
    return None


def entry_to_film(entry: dict, result: SynthesisResult | None = None) -> Film:
    title = (entry.get("title") or "").strip()
    if not title:
        raise InvalidInputError("Film entry is missing a title")

    review_count = entry.get("review_count")
    community_rating = entry.get("community_rating")
    logline = entry.get("logline") or ""
    if not logline and review_count and community_rating is not None:
        logline = f"Popular with {review_count:,} reviews. Community rating: {community_rating}/5.0"

    provenance = None
    if result is not None or entry.get("url") or entry.get("external_id"):
        provenance = Provenance(
            external_id=str(entry["external_id"]) if entry.get("external_id") is not None else None,
            url=entry.get("url"),
            community_rating=community_rating,
            review_count=review_count,
            confidence=result.confidence if result else None,
            summary=result.summary if result else None,
        )

    return Film(
        id=str(entry.get("id") or film_id_for(title, entry.get("year"))),
        title=title,
        year=entry.get("year"),
        genres=list(entry.get("genres") or []),
        director=entry.get("director"),
        writer=entry.get("writer"),
        runtime=entry.get("runtime") or 1,
        logline=logline,
        poster_url=entry.get("poster_url") or "",
        backdrop_url=entry.get("backdrop_url"),
        external_rating=_external_rating(entry),
        cast=list(entry.get("cast") or []),
        seen=bool(entry.get("seen", False)),
        provenance=provenance,
    )


def synthesized_rating(film: Film, result: SynthesisResult, community_rating: float | None = None) -> Rating:
    """Wrap a synthesis result as the film's synthesized rating."""
    if community_rating is not None:
        overall = int(round_half_up(community_rating))
    elif film.external_rating is not None:
        overall = from_ten_point(film.external_rating)
    else:
        overall = NEUTRAL_LEVEL
    overall = max(1, min(5, overall))

    if result.review_count:
        basis = f"{result.review_count:,} reviews"
    else:
        basis = "film metadata"
    return Rating(
        id=f"synth:{film.id}",
        film_id=film.id,
        dimensions=dict(result.scores),
        overall=overall,
        notes=f"Synthesized from {basis}. Confidence: {round_half_up(result.confidence * 100):.0f}%",
        source=SOURCE_SYNTHESIZED,
        created_at=utc_now_iso(),
    )


ProgressCallback = Callable[[int, int, str], None]


class CatalogPopulator:
    """Synthesizes a list of film entries into the catalog in batches."""

    def __init__(
        self,
        store: CatalogStore,
        synthesizer: AttributeSynthesizer,
        batch_size: int = POPULATION_BATCH_SIZE,
    ):
        self.store = store
        self.synthesizer = synthesizer
        self.batch_size = max(1, batch_size)

    def build(self, entry: dict) -> tuple[Film, Rating, SynthesisResult]:
        result = self.synthesizer.synthesize(entry_to_signals(entry))
        film = entry_to_film(entry, result)
        return film, synthesized_rating(film, result, entry.get("community_rating")), result

    def populate(
        self,
        entries: Iterable[dict],
        cancel_token: CancellationToken | None = None,
        progress: ProgressCallback | None = None,
    ) -> dict:
        """
        Synthesize every entry and commit them to the store in one step.

        Returns the population summary. On cancellation the store is put
        back exactly as it was and OperationCancelled is raised.
        """
        entries = list(entries)
        total = len(entries)
        previous = self.store.snapshot()
        staged: list[tuple[Film, Rating]] = []
        results: list[SynthesisResult] = []

        logger.info(f"Populating catalog with {total} films (batch size {self.batch_size})")
        self.store.begin_loading(total)
        try:
            for start in range(0, total, self.batch_size):
                if cancel_token is not None:
                    cancel_token.raise_if_cancelled()

                batch = entries[start:start + self.batch_size]
                for entry in batch:
                    try:
                        film, rating, result = self.build(entry)
                    except (InvalidInputError, KeyError, TypeError, ValueError) as e:
                        logger.warning(f"Skipping film entry {entry.get('title', '?')!r}: {e}")
                        continue
                    staged.append((film, rating))
                    results.append(result)

                done = min(start + self.batch_size, total)
                self.store.update_progress(done, total)
                if progress is not None:
                    progress(done, total, ", ".join(str(e.get("title", "?")) for e in batch))

            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
        except OperationCancelled:
            self.store.restore(previous)
            logger.info(f"Population cancelled after {len(staged)} of {total} films; catalog unchanged")
            raise
        except Exception:
            self.store.restore(previous)
            raise

        for film, rating in staged:
            self.store.insert(film, rating)
        summary = summarize_catalog(results)
        self.store.mark_ready(utc_now_iso(), summary)
        logger.info(
            f"Catalog ready: {len(staged)} films added, avg confidence {summary['avg_confidence']}"
        )
        return summary
