"""
User profile engine.

Aggregates a user's ratings into a preference vector, keeps a neighborhood
of similar users and rescores recommendations with the user's taste.
Everything here is total: unknown users and empty inputs fall back to
neutral values instead of raising.
"""
import logging
import math
from dataclasses import dataclass, replace
from typing import Iterable, Mapping

import numpy as np
from scipy.stats import pearsonr

from .catalog import CatalogStore
from .config import (
    RECENCY_DECAY,
    PROFILE_CONFIDENCE_RATINGS,
    PERSONALIZATION_WEIGHT,
    MIN_COMMON_FILMS,
    NEIGHBOR_PEARSON_WEIGHT,
    NEIGHBOR_COSINE_WEIGHT,
    NEIGHBOR_SHRINKAGE_FILMS,
    NEIGHBOR_MIN_SIMILARITY,
    MAX_NEIGHBORS,
    COLLABORATIVE_ENABLED,
    BLEND_CONTENT_WEIGHT,
    BLEND_COLLABORATIVE_WEIGHT,
    FEEDBACK_CLOSE_THRESHOLD,
    FEEDBACK_FAIR_THRESHOLD,
    PREDICTION_CONFIDENCE_BASE,
    PREDICTION_HYBRID_BONUS,
    PREDICTION_HYBRID_CAP,
    PREDICTION_SIGNAL_BONUS,
    PREDICTION_MIN_GENRES,
    ACCURACY_BANDS,
    INSIGHTS_TOP_DIMENSIONS,
)
from .dimensions import DIMENSIONS, from_array, neutral_vector, round_half, to_array
from .models import Rating, Recommendation, UserProfile
from .onboarding import personality_label
from .synthesis import AttributeSynthesizer, FilmSignals
from .utils import round_half_up

logger = logging.getLogger(__name__)

METHOD_CONTENT = "content"
METHOD_HYBRID = "hybrid"


@dataclass
class PredictionResult:
    attributes: dict[str, float]
    confidence: float
    method: str
    summary: str = ""


@dataclass
class PredictionFeedback:
    mean_difference: float
    message: str


def compute_preferences(ratings: list[Rating]) -> dict[str, float]:
    """
    Recency- and quality-weighted average of rating vectors.

    The i-th of N ratings gets weight exp(-decay * (N - i - 1)) * overall / 5,
    so the most recent rating has full recency weight.
    """
    if not ratings:
        return neutral_vector()

    n = len(ratings)
    weights = np.array([
        math.exp(-RECENCY_DECAY * (n - i - 1)) * max(1, min(5, r.overall)) / 5
        for i, r in enumerate(ratings)
    ])
    vectors = np.vstack([to_array(r.dimensions) for r in ratings])
    return from_array(weights @ vectors / weights.sum())


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    norm = np.linalg.norm(a) * np.linalg.norm(b)
    if norm == 0:
        return 0.0
    return float(np.dot(a, b) / norm)


def _pearson(x: list[float], y: list[float]) -> float:
    # Undefined when either side is constant; treat as no correlation
    if len(x) < 2 or np.std(x) == 0 or np.std(y) == 0:
        return 0.0
    r, _ = pearsonr(x, y)
    return 0.0 if math.isnan(r) else float(r)


def blend_predictions(
    metadata: Mapping | None,
    collaborative: Mapping | None,
) -> dict[str, float]:
    """0.6 * metadata + 0.4 * collaborative, or whichever one exists."""
    if metadata is None and collaborative is None:
        return neutral_vector()
    if collaborative is None:
        return dict(metadata)
    if metadata is None:
        return dict(collaborative)
    blended = (
        BLEND_CONTENT_WEIGHT * to_array(metadata)
        + BLEND_COLLABORATIVE_WEIGHT * to_array(collaborative)
    )
    return from_array(blended)


def prediction_feedback(predicted: Mapping, actual: Mapping) -> PredictionFeedback:
    """Compare a user's rating with what was predicted for the film."""
    diff = float(np.abs(to_array(predicted) - to_array(actual)).mean())
    if diff < FEEDBACK_CLOSE_THRESHOLD:
        message = "Great! Our prediction was very close to your rating. This helps us understand your taste better."
    elif diff < FEEDBACK_FAIR_THRESHOLD:
        message = "Thanks! Your rating helps fine-tune our recommendations for your unique preferences."
    else:
        message = "Interesting! Your rating was quite different from our prediction - this feedback improves future predictions."
    return PredictionFeedback(mean_difference=round_half_up(diff, 2), message=message)


def accuracy_band(confidence: float) -> str:
    for threshold, label in ACCURACY_BANDS:
        if confidence > threshold:
            return label
    return "Learning"


def learning_update(ratings_count: int) -> str:
    if ratings_count == 1:
        return "Great! Your first rating helps us understand your taste."
    if ratings_count == 5:
        return "Nice! With 5 ratings, our recommendations are getting more accurate."
    if ratings_count == 10:
        return "Excellent! With 10+ ratings, we can now provide highly personalized recommendations."
    if ratings_count > 0 and ratings_count % 20 == 0:
        return f"Amazing! {ratings_count} ratings make you a power user. We keep learning your unique taste."
    return "Thanks! Your rating helps improve future recommendations."


def improvement_tips(ratings_count: int) -> list[str]:
    tips = []
    if ratings_count < 5:
        tips.append("Rate 5+ movies to unlock personalized recommendations")
    if ratings_count < 10:
        tips.append("Try rating movies from different genres to improve variety")
    else:
        tips.append("Your recommendations are now fully personalized")
    return tips


class ProfileEngine:
    """Owns every user profile in the session."""

    def __init__(
        self,
        catalog: CatalogStore | None = None,
        synthesizer: AttributeSynthesizer | None = None,
        collaborative_enabled: bool = COLLABORATIVE_ENABLED,
    ):
        self.catalog = catalog
        self.synthesizer = synthesizer or AttributeSynthesizer()
        self.collaborative_enabled = collaborative_enabled
        self._profiles: dict[str, UserProfile] = {}

    def get(self, user_id: str) -> UserProfile | None:
        return self._profiles.get(user_id)

    def user_ids(self) -> list[str]:
        return list(self._profiles)

    # --- aggregation ---

    def add_rating(self, user_id: str, rating: Rating) -> UserProfile:
        """Append a rating, then rebuild preferences, confidence and neighbors."""
        profile = self._profiles.get(user_id)
        if profile is None:
            profile = UserProfile(id=user_id, preferences=neutral_vector())
            self._profiles[user_id] = profile
            logger.info(f"Created profile for {user_id}")

        profile.ratings.append(rating)
        profile.ratings_count = len(profile.ratings)
        profile.preferences = compute_preferences(profile.ratings)
        profile.confidence = min(1.0, profile.ratings_count / PROFILE_CONFIDENCE_RATINGS)
        profile.neighbors = [uid for uid, _ in self.similar_users(user_id)]
        logger.debug(
            f"{user_id}: {profile.ratings_count} ratings, confidence {profile.confidence:.2f}, "
            f"{len(profile.neighbors)} neighbors"
        )
        return profile

    # --- neighbors ---

    def user_similarity(self, a: UserProfile, b: UserProfile) -> float:
        common = sorted(a.rated_film_ids() & b.rated_film_ids())
        if len(common) < MIN_COMMON_FILMS:
            return 0.0

        x = [a.rating_for(fid).overall for fid in common]
        y = [b.rating_for(fid).overall for fid in common]
        r = _pearson(x, y)
        c = cosine_similarity(to_array(a.preferences), to_array(b.preferences))
        shrinkage = min(1.0, len(common) / NEIGHBOR_SHRINKAGE_FILMS)
        return (NEIGHBOR_PEARSON_WEIGHT * r + NEIGHBOR_COSINE_WEIGHT * c) * shrinkage

    def similar_users(self, user_id: str) -> list[tuple[str, float]]:
        """Up to MAX_NEIGHBORS (user_id, similarity) pairs, most similar first."""
        profile = self._profiles.get(user_id)
        if profile is None:
            return []

        candidates = []
        for other_id, other in self._profiles.items():
            if other_id == user_id:
                continue
            sim = self.user_similarity(profile, other)
            if sim >= NEIGHBOR_MIN_SIMILARITY:
                candidates.append((other_id, sim))

        candidates.sort(key=lambda pair: (-pair[1], pair[0]))
        return candidates[:MAX_NEIGHBORS]

    # --- rescoring ---

    def personalize(self, user_id: str, recommendations: Iterable[Recommendation]) -> list[Recommendation]:
        """Boost each score by cosine(preferences, film vector) scaled by confidence."""
        recommendations = list(recommendations)
        profile = self._profiles.get(user_id)
        if profile is None or profile.ratings_count == 0 or self.catalog is None:
            return recommendations

        prefs = to_array(profile.preferences)
        rescored = []
        for rec in recommendations:
            rating = self.catalog.get_rating(rec.film_id)
            match = cosine_similarity(prefs, to_array(rating.dimensions)) if rating else 0.0
            exact = rec.score + PERSONALIZATION_WEIGHT * match * profile.confidence
            rescored.append((exact, replace(rec, score=round_half_up(exact, 2))))

        rescored.sort(key=lambda pair: (-pair[0], pair[1].film_id))
        return [rec for _, rec in rescored]

    # --- prediction ---

    def collaborative_prediction(self, user_id: str, film) -> dict[str, float] | None:
        """
        Neighbors' ratings on catalog films that share a genre with `film`,
        averaged with neighbor similarity as the weight.

        `film` is anything with a `genres` attribute (Film or FilmSignals).
        """
        if not self.collaborative_enabled or self.catalog is None:
            return None
        if user_id not in self._profiles:
            return None

        target_genres = {g.lower() for g in getattr(film, "genres", None) or []}
        if not target_genres:
            return None

        total = np.zeros(len(DIMENSIONS))
        weight_sum = 0.0
        for neighbor_id, sim in self.similar_users(user_id):
            for rating in self._profiles[neighbor_id].ratings:
                rated = self.catalog.get(rating.film_id)
                if rated is None or not target_genres & {g.lower() for g in rated.genres}:
                    continue
                total += sim * to_array(rating.dimensions)
                weight_sum += sim

        if weight_sum == 0:
            return None
        return from_array(total / weight_sum)

    def predict(self, user_id: str | None, signals: FilmSignals) -> PredictionResult:
        """Metadata prediction for a new film, blended with neighbors when possible."""
        content = self.synthesizer.predict_metadata_only(signals)
        collaborative = self.collaborative_prediction(user_id, signals) if user_id else None

        attributes = blend_predictions(content.scores, collaborative)
        confidence = PREDICTION_CONFIDENCE_BASE
        if collaborative is not None:
            confidence = min(PREDICTION_HYBRID_CAP, confidence + PREDICTION_HYBRID_BONUS)
        if len(signals.genres or []) >= PREDICTION_MIN_GENRES:
            confidence += PREDICTION_SIGNAL_BONUS
        if signals.director:
            confidence += PREDICTION_SIGNAL_BONUS
        if signals.external_rating:
            confidence += PREDICTION_SIGNAL_BONUS

        return PredictionResult(
            attributes={dim: round_half(v) for dim, v in attributes.items()},
            confidence=min(1.0, round_half_up(confidence, 2)),
            method=METHOD_HYBRID if collaborative is not None else METHOD_CONTENT,
            summary=content.summary,
        )

    # --- reporting ---

    def insights(self, user_id: str) -> dict:
        profile = self._profiles.get(user_id)
        if profile is None or profile.ratings_count == 0:
            return {
                "ratings_count": 0,
                "top_dimensions": [],
                "personality_type": personality_label(neutral_vector()),
                "recommendation_accuracy": accuracy_band(0.0),
                "confidence": 0.0,
                "learning_update": "Rate a film to start building your taste profile.",
                "improvement_tips": improvement_tips(0),
            }

        prefs = profile.preferences
        top = sorted(DIMENSIONS, key=lambda d: (-prefs[d], DIMENSIONS.index(d)))[:INSIGHTS_TOP_DIMENSIONS]
        return {
            "ratings_count": profile.ratings_count,
            "top_dimensions": [(d, round_half_up(prefs[d], 1)) for d in top],
            "personality_type": personality_label(prefs),
            "recommendation_accuracy": accuracy_band(profile.confidence),
            "confidence": profile.confidence,
            "learning_update": learning_update(profile.ratings_count),
            "improvement_tips": improvement_tips(profile.ratings_count),
        }

    # --- persistence layout ---

    def export_profile(self, user_id: str) -> dict | None:
        profile = self._profiles.get(user_id)
        return profile.to_dict() if profile else None

    def import_profile(self, document: dict) -> UserProfile:
        profile = UserProfile.from_dict(document)
        self._profiles[profile.id] = profile
        return profile
