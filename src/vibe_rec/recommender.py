"""
Vibe scorer: rank unseen catalog films against a target dimension vector.

Similarity is the L1 distance over the ten dimensions mapped onto a 0-5
score. A small uniform jitter decorrelates near-ties across repeated calls;
the jitter source is injectable so tests stay deterministic.
"""
import logging
import random
from typing import Callable, Mapping

import numpy as np

from .catalog import CatalogSnapshot, CatalogStore
from .config import (
    DEFAULT_LIMIT,
    DEFAULT_JITTER,
    MAX_DIFF_PER_DIMENSION,
    MAX_SCORE,
    NEUTRAL_LEVEL,
    RUNTIME_PENALTY,
    RUNTIME_PENALTY_MIN_MINUTES,
    RUNTIME_PENALTY_FIT_THRESHOLD,
    MATCH_REASON_TOLERANCE,
)
from .dimensions import DIMENSIONS, coerce_vector, display_name, level, to_array
from .errors import InvalidInputError
from .models import Film, Rating, Recommendation
from .utils import round_half_up

logger = logging.getLogger(__name__)

JitterSource = Callable[[float, float], float]

MAX_REASONS = 3


def similarity(distance: float) -> float:
    """Map a summed L1 distance onto 0-5 (5 = identical, 0 = opposite corners)."""
    max_distance = MAX_DIFF_PER_DIMENSION * len(DIMENSIONS)
    return max(0.0, MAX_SCORE - (distance / max_distance) * MAX_SCORE)


def l1_distance(a: Mapping, b: Mapping) -> float:
    return float(np.abs(to_array(a) - to_array(b)).sum())


def check_limit_and_jitter(limit: int, jitter: float):
    if limit < 0:
        raise InvalidInputError(f"limit must be >= 0, got {limit}")
    if jitter < 0:
        raise InvalidInputError(f"jitter must be >= 0, got {jitter}")


def _match_reasons(target: dict[str, float], rating: Rating) -> list[str]:
    """Closest non-neutral dimensions the film agrees on."""
    close = []
    for dim in DIMENSIONS:
        wanted = target[dim]
        if wanted == NEUTRAL_LEVEL:
            continue
        gap = abs(wanted - rating.dimensions.get(dim, NEUTRAL_LEVEL))
        if gap <= MATCH_REASON_TOLERANCE:
            close.append((gap, DIMENSIONS.index(dim), dim))
    close.sort()

    reasons = []
    for _, _, dim in close[:MAX_REASONS]:
        lvl = level(dim, int(round_half_up(rating.dimensions[dim])))
        label = f" ({lvl.label})" if lvl else ""
        reasons.append(f"Matches your {display_name(dim)}{label}")
    return reasons


class VibeScorer:
    def __init__(self, catalog: CatalogStore, jitter_source: JitterSource | None = None):
        self.catalog = catalog
        self.jitter_source = jitter_source or random.uniform

    def recommend(
        self,
        vibe: Mapping,
        limit: int = DEFAULT_LIMIT,
        jitter: float = DEFAULT_JITTER,
    ) -> list[Recommendation]:
        """
        Top `limit` unseen films for a vibe vector.

        Raises:
            NotReadyError: catalog is not ready
            InvalidInputError: malformed vibe, negative limit or jitter
        """
        self.catalog.require_ready()
        target = coerce_vector(vibe, strict=True)
        check_limit_and_jitter(limit, jitter)
        return self.rank(self.catalog.snapshot(), target, limit, jitter)

    def rank(
        self,
        snapshot: CatalogSnapshot,
        target: dict[str, float],
        limit: int,
        jitter: float,
    ) -> list[Recommendation]:
        scored = []
        for film in snapshot.unseen():
            rating = snapshot.get_rating(film.id)
            if rating is None:
                continue
            scored.append(self.score_film(target, film, rating, jitter))

        scored.sort(key=lambda rec: (-rec.score, rec.film_id))
        logger.debug(f"Scored {len(scored)} films, returning top {limit}")
        return scored[:limit]

    def score_film(self, target: dict[str, float], film: Film, rating: Rating, jitter: float) -> Recommendation:
        distance = l1_distance(target, rating.dimensions)
        score = similarity(distance)
        if jitter > 0:
            score += self.jitter_source(-jitter / 2, jitter / 2)

        warnings = []
        if target["runtime_fit"] < RUNTIME_PENALTY_FIT_THRESHOLD and film.runtime > RUNTIME_PENALTY_MIN_MINUTES:
            score -= RUNTIME_PENALTY
            warnings.append(f"Long runtime ({film.runtime} min) for a short-runtime vibe")

        score = round_half_up(min(MAX_SCORE, max(0.0, score)), 1)
        return Recommendation(
            film_id=film.id,
            title=film.title,
            year=film.year,
            score=score,
            distance=round_half_up(distance, 2),
            reasons=_match_reasons(target, rating),
            warnings=warnings,
        )
