"""
Session facade wiring catalog, synthesizer, scorer, profiles, onboarding
and persistence for one browsing session.

Save failures never lose in-memory state: the key is remembered and its
full current document is written again on the next successful save.
"""
import logging
import uuid
from dataclasses import dataclass
from typing import Iterable, Mapping

from .catalog import (
    CancellationToken,
    CatalogPopulator,
    CatalogStore,
    ProgressCallback,
    entry_to_signals,
    load_seed_entries,
)
from .config import DEFAULT_LIMIT, DEFAULT_JITTER
from .dimensions import ordinal_vector, whole_level
from .errors import InvalidInputError, NotFoundError, StorageError
from .models import Film, OnboardingRating, OnboardingResult, Rating, Recommendation, UserProfile
from .onboarding import OnboardingAnalyzer, has_completed
from .profile import PredictionFeedback, PredictionResult, ProfileEngine, learning_update, prediction_feedback
from .recommender import VibeScorer, check_limit_and_jitter
from .storage import CATALOG_KEY, MemoryStorage, Storage, onboarding_key, user_key
from .synthesis import AttributeSynthesizer
from .utils import utc_now_iso

logger = logging.getLogger(__name__)


@dataclass
class RatingOutcome:
    rating: Rating
    profile: UserProfile
    learning_update: str
    saved: bool


@dataclass
class AddFilmOutcome:
    film: Film
    prediction: PredictionResult
    feedback: PredictionFeedback | None = None
    rating: RatingOutcome | None = None


class VibeSession:
    def __init__(
        self,
        storage: Storage | None = None,
        synthesizer: AttributeSynthesizer | None = None,
        catalog: CatalogStore | None = None,
        scorer: VibeScorer | None = None,
        profiles: ProfileEngine | None = None,
    ):
        self.storage = storage if storage is not None else MemoryStorage()
        self.synthesizer = synthesizer or AttributeSynthesizer()
        self.catalog = catalog if catalog is not None else CatalogStore()
        self.scorer = scorer or VibeScorer(self.catalog)
        self.profiles = profiles or ProfileEngine(self.catalog, self.synthesizer)
        self.analyzer = OnboardingAnalyzer(self.scorer)
        self._dirty: set[str] = set()
        self._pending_documents: dict[str, dict] = {}

    # --- persistence ---

    @property
    def dirty_keys(self) -> set[str]:
        return set(self._dirty)

    def _document_for(self, key: str) -> dict | None:
        if key == CATALOG_KEY:
            return self.catalog.to_document()
        if key.startswith("user:"):
            return self.profiles.export_profile(key[len("user:"):])
        return self._pending_documents.get(key)

    def _persist(self, *keys: str) -> bool:
        """Save the given keys plus any left over from failed saves."""
        ok = True
        for key in dict.fromkeys([*sorted(self._dirty), *keys]):
            document = self._document_for(key)
            if document is None:
                self._dirty.discard(key)
                continue
            try:
                self.storage.save(key, document)
            except StorageError as e:
                logger.error(f"Failed to save {key}, will retry on next save: {e}")
                self._dirty.add(key)
                ok = False
            else:
                self._dirty.discard(key)
                self._pending_documents.pop(key, None)
        return ok

    # --- catalog ---

    def initialize_catalog(
        self,
        entries: Iterable[dict] | None = None,
        cancel_token: CancellationToken | None = None,
        progress: ProgressCallback | None = None,
        refresh: bool = False,
    ) -> dict:
        """
        Load the persisted catalog, or populate it from entries (the bundled
        seed list by default) and save the result.

        Returns the catalog summary.
        """
        if not refresh:
            try:
                document = self.storage.load(CATALOG_KEY)
            except StorageError as e:
                logger.warning(f"Could not load stored catalog, rebuilding: {e}")
                document = None
            if document:
                self.catalog.load_document(document)
                return dict(self.catalog.summary)

        if entries is None:
            entries = load_seed_entries()
        populator = CatalogPopulator(self.catalog, self.synthesizer)
        summary = populator.populate(entries, cancel_token=cancel_token, progress=progress)
        self._persist(CATALOG_KEY)
        return summary

    def add_film(
        self,
        entry: dict,
        user_id: str | None = None,
        rating: Mapping | None = None,
        overall: int = 3,
        notes: str = "",
    ) -> AddFilmOutcome:
        """
        Synthesize and insert one film. When the user also rates it, the
        rating is compared with the prediction made before it was seen.
        """
        self.catalog.require_ready()
        if rating is not None and not user_id:
            raise InvalidInputError("A user id is required to rate the added film")

        prediction = self.profiles.predict(user_id, entry_to_signals(entry))
        film, synthesized, _ = CatalogPopulator(self.catalog, self.synthesizer).build(entry)
        self.catalog.insert(film, synthesized)
        logger.info(f"Added {film.title} ({film.id}), prediction method {prediction.method}")

        outcome = AddFilmOutcome(film=self.catalog.get(film.id), prediction=prediction)
        if rating is not None:
            outcome.rating = self.rate_film(user_id, film.id, rating, overall, notes)
            outcome.feedback = prediction_feedback(prediction.attributes, outcome.rating.rating.dimensions)
            outcome.film = self.catalog.get(film.id)
        else:
            self._persist(CATALOG_KEY)
        return outcome

    # --- ratings and profiles ---

    def rate_film(
        self,
        user_id: str,
        film_id: str,
        vector: Mapping,
        overall: int,
        notes: str = "",
    ) -> RatingOutcome:
        """
        Record an immutable rating, mark the film seen and update the profile.

        Raises:
            NotFoundError: unknown film
            InvalidInputError: malformed vector or overall, empty user id
        """
        key = user_key(user_id)
        if film_id not in self.catalog:
            raise NotFoundError(f"Unknown film: {film_id}")

        rating = Rating(
            id=uuid.uuid4().hex,
            film_id=film_id,
            dimensions=ordinal_vector(vector),
            overall=whole_level(overall, "overall"),
            notes=notes or "",
            created_at=utc_now_iso(),
        )
        self.catalog.update_seen(film_id)
        profile = self.profiles.add_rating(user_id, rating)
        saved = self._persist(key, CATALOG_KEY)
        return RatingOutcome(
            rating=rating,
            profile=profile,
            learning_update=learning_update(profile.ratings_count),
            saved=saved,
        )

    def load_user(self, user_id: str) -> UserProfile | None:
        document = self.storage.load(user_key(user_id))
        if document is None:
            return self.profiles.get(user_id)
        return self.profiles.import_profile(document)

    def insights(self, user_id: str) -> dict:
        report = self.profiles.insights(user_id)
        try:
            report["onboarding_completed"] = has_completed(self.storage, user_id)
        except StorageError as e:
            logger.warning(f"Could not read onboarding state for {user_id}: {e}")
            report["onboarding_completed"] = onboarding_key(user_id) in self._pending_documents
        return report

    # --- scoring ---

    def recommend(
        self,
        vibe: Mapping,
        user_id: str | None = None,
        limit: int = DEFAULT_LIMIT,
        jitter: float = DEFAULT_JITTER,
    ) -> list[Recommendation]:
        """Vibe ranking, rescored with the user's taste when a profile exists."""
        check_limit_and_jitter(limit, jitter)
        profile = self.profiles.get(user_id) if user_id else None
        if profile is None or profile.ratings_count == 0:
            return self.scorer.recommend(vibe, limit=limit, jitter=jitter)

        candidates = self.scorer.recommend(vibe, limit=len(self.catalog), jitter=jitter)
        return self.profiles.personalize(user_id, candidates)[:limit]

    # --- onboarding ---

    def complete_onboarding(self, user_id: str, ratings: list[OnboardingRating]) -> OnboardingResult:
        """
        Feed session ratings into the profile, then fit the taste profile.

        The rated seed films are marked seen first so the initial
        recommendations exclude them.
        """
        key = onboarding_key(user_id)
        if not ratings:
            raise InvalidInputError("Onboarding analysis needs at least one rating")

        # validate everything before touching the catalog or profile
        converted = []
        for entry in ratings:
            if entry.film_id not in self.catalog:
                raise NotFoundError(f"Unknown film: {entry.film_id}")
            converted.append(Rating(
                id=uuid.uuid4().hex,
                film_id=entry.film_id,
                dimensions=ordinal_vector(entry.dimensions),
                overall=whole_level(entry.overall, "overall"),
                notes="Onboarding",
                created_at=utc_now_iso(),
            ))
        for rating in converted:
            self.catalog.update_seen(rating.film_id)
            self.profiles.add_rating(user_id, rating)

        result = self.analyzer.analyze(ratings)
        self._pending_documents[key] = result.to_document()
        self._persist(key, user_key(user_id), CATALOG_KEY)
        return result

    def close(self):
        self.storage.close()
