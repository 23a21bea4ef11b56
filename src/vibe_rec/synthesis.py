"""
Attribute synthesis: derive a 1-5 dimension vector for a film.

Two pipelines share the same inputs:

- AttributeSynthesizer.synthesize: 1-5 genre biases, director styles and a
  bag-of-cue-words pass over review snippets.
- AttributeSynthesizer.predict_metadata_only: the legacy 0-10 heuristics
  (global averages, genre modifiers, runtime/rating bands, director nudges)
  converted back to 1-5 through from_ten_point.

Both never raise on unknown genres or directors; missing signals just
lower the confidence.
"""
import json
import logging
import re
from collections import defaultdict
from dataclasses import dataclass, field
from pathlib import Path
from statistics import mean

from selectolax.parser import HTMLParser

from .config import (
    DATA_DIR,
    NEUTRAL_LEVEL,
    DIRECTOR_STYLE_WEIGHT,
    CUE_PER_TEXT_CLAMP,
    REVIEW_CONFIDENCE_SATURATION,
    METADATA_CONFIDENCE_BASE,
    METADATA_CONFIDENCE_STEP,
    METADATA_CONFIDENCE_MIN_GENRES,
    SUMMARY_HIGH_THRESHOLD,
    SUMMARY_LOW_THRESHOLD,
    CATALOG_SUMMARY_TOP_DIMENSIONS,
)
from .dimensions import (
    DIMENSIONS,
    clamp_score,
    display_name,
    from_ten_point,
    neutral_vector,
    round_half,
)
from .utils import round_half_up

logger = logging.getLogger(__name__)

METHOD_REVIEWS = "reviews"
METHOD_METADATA = "metadata"
METHOD_NONE = "none"


@dataclass
class FilmSignals:
    """Everything known about a film before synthesis."""
    genres: list[str] = field(default_factory=list)
    runtime: int | None = None
    external_rating: float | None = None  # 0-10
    year: int | None = None
    director: str | None = None
    review_texts: list[str] = field(default_factory=list)
    community_review_count: int | None = None
    community_rating: float | None = None  # 0-5
    title: str | None = None


@dataclass
class SynthesisResult:
    scores: dict[str, float]
    confidence: float
    summary: str
    review_count: int
    method: str


@dataclass
class CueFamily:
    dimension: str
    delta: float
    patterns: list[re.Pattern]


@dataclass
class HeuristicTables:
    genre_biases: dict[str, dict[str, float]]
    genre_aliases: dict[str, str]
    director_styles: dict[str, dict[str, float]]
    cue_families: list[CueFamily]
    ten_point: dict

    def canonical_genre(self, name: str) -> str | None:
        """Resolve a genre name case-insensitively, following aliases."""
        if not name:
            return None
        key = name.strip().lower()
        alias = self.genre_aliases.get(key)
        if alias:
            key = alias.lower()
        for genre in self.genre_biases:
            if genre.lower() == key:
                return genre
        return None

    def director_style(self, director: str | None) -> dict[str, float] | None:
        if not director:
            return None
        key = director.strip().lower()
        for name, style in self.director_styles.items():
            if name.lower() == key:
                return style
        return None


def _read_json(path: Path):
    with open(path, encoding="utf-8") as f:
        return json.load(f)


def _compile_cue(phrase: str) -> re.Pattern:
    return re.compile(r"\b" + re.escape(phrase.lower()) + r"\b")


def load_tables(data_dir: Path = DATA_DIR) -> HeuristicTables:
    """Load the declarative heuristic tables shipped with the package."""
    genres = _read_json(data_dir / "genre_biases.json")
    cues = _read_json(data_dir / "review_cues.json")

    families = []
    for entry in cues:
        if entry["dimension"] not in DIMENSIONS:
            raise ValueError(f"Cue family targets unknown dimension {entry['dimension']!r}")
        families.append(CueFamily(
            dimension=entry["dimension"],
            delta=float(entry["delta"]),
            patterns=[_compile_cue(c) for c in entry["cues"]],
        ))

    return HeuristicTables(
        genre_biases=genres["biases"],
        genre_aliases={k.lower(): v for k, v in genres.get("aliases", {}).items()},
        director_styles=_read_json(data_dir / "director_styles.json"),
        cue_families=families,
        ten_point=_read_json(data_dir / "ten_point_priors.json"),
    )


def strip_html(text: str) -> str:
    """Reduce review HTML to plain text."""
    if "<" not in text:
        return text
    tree = HTMLParser(text)
    node = tree.body
    return " ".join(node.text(separator=" ").split()) if node else text


class AttributeSynthesizer:
    """Derives dimension vectors for films from metadata and review snippets."""

    def __init__(self, tables: HeuristicTables | None = None):
        self.tables = tables or load_tables()

    # --- public API ---

    def synthesize(self, signals: FilmSignals) -> SynthesisResult:
        if self._is_empty(signals):
            return self._empty_result(signals)

        scores = neutral_vector()
        self._apply_genre_biases(scores, signals.genres)
        self._apply_director_style(scores, signals.director)
        if signals.review_texts:
            self._apply_review_cues(scores, signals.review_texts)

        scores = {dim: round_half(clamp_score(v)) for dim, v in scores.items()}
        return self._result(scores, signals, METHOD_REVIEWS if signals.review_texts else METHOD_METADATA)

    def predict_metadata_only(self, signals: FilmSignals) -> SynthesisResult:
        """Legacy 0-10 pipeline; no review cue scan."""
        if self._is_empty(signals):
            return self._empty_result(signals)

        ten_point = self._ten_point_scores(signals)
        scores = {dim: float(from_ten_point(ten_point[dim])) for dim in DIMENSIONS}
        return self._result(scores, signals, METHOD_METADATA)

    def cue_deltas(self, text: str) -> dict[str, float]:
        """Per-dimension cue delta for a single review, clamped per dimension."""
        plain = strip_html(text).lower()
        deltas = defaultdict(float)
        for family in self.tables.cue_families:
            hits = sum(len(p.findall(plain)) for p in family.patterns)
            if hits:
                deltas[family.dimension] += family.delta * hits
        return {
            dim: max(-CUE_PER_TEXT_CLAMP, min(CUE_PER_TEXT_CLAMP, value))
            for dim, value in deltas.items()
        }

    # --- 1-5 pipeline steps ---

    def _apply_genre_biases(self, scores: dict[str, float], genres: list[str]):
        per_dimension = defaultdict(list)
        for genre in genres or []:
            canonical = self.tables.canonical_genre(genre)
            if canonical is None:
                logger.debug(f"No bias table for genre '{genre}'")
                continue
            for dim, bias in self.tables.genre_biases[canonical].items():
                per_dimension[dim].append(bias)

        for dim, biases in per_dimension.items():
            scores[dim] = (scores[dim] + mean(biases)) / 2

    def _apply_director_style(self, scores: dict[str, float], director: str | None):
        style = self.tables.director_style(director)
        if style is None:
            return
        for dim, value in style.items():
            scores[dim] = (1 - DIRECTOR_STYLE_WEIGHT) * scores[dim] + DIRECTOR_STYLE_WEIGHT * value

    def _apply_review_cues(self, scores: dict[str, float], texts: list[str]):
        for text in texts:
            if not text:
                continue
            for dim, delta in self.cue_deltas(text).items():
                scores[dim] += delta

    # --- 0-10 pipeline ---

    def _ten_point_scores(self, signals: FilmSignals) -> dict[str, float]:
        priors = self.tables.ten_point
        scores = {dim: float(priors["global_averages"][dim]) for dim in DIMENSIONS}

        genre_weight = priors.get("genre_weight", 0.7)
        per_dimension = defaultdict(list)
        for genre in signals.genres or []:
            canonical = self.tables.canonical_genre(genre)
            modifiers = priors["genres"].get(canonical) if canonical else None
            if not modifiers:
                continue
            for dim, value in modifiers.items():
                per_dimension[dim].append(value)
        for dim, values in per_dimension.items():
            scores[dim] = genre_weight * mean(values) + (1 - genre_weight) * scores[dim]

        if signals.runtime:
            band = _first_band(priors["runtime"], signals.runtime, "minutes")
            if band:
                _average_in(scores, band["modifiers"])

        if signals.external_rating:
            band = _first_band(priors["external_rating"], signals.external_rating, "rating")
            if band:
                _average_in(scores, band["modifiers"])

        recent = priors.get("recent_year")
        if recent and signals.year and signals.year > recent["after"]:
            for dim, bump in recent["modifiers"].items():
                scores[dim] += bump

        if signals.director:
            director = signals.director.lower()
            for pattern, nudges in priors.get("directors", {}).items():
                if pattern in director:
                    for dim, bump in nudges.items():
                        scores[dim] += bump
                    break

        return {dim: min(10.0, max(0.0, v)) for dim, v in scores.items()}

    # --- confidence and summary ---

    @staticmethod
    def _is_empty(signals: FilmSignals) -> bool:
        return not (
            signals.genres
            or signals.director
            or signals.review_texts
            or signals.external_rating is not None
            or signals.year is not None
            or signals.community_review_count
        )

    @staticmethod
    def _review_count(signals: FilmSignals) -> int:
        if signals.community_review_count:
            return int(signals.community_review_count)
        return len([t for t in signals.review_texts or [] if t])

    def _confidence(self, signals: FilmSignals) -> float:
        review_count = self._review_count(signals)
        if review_count > 0:
            return min(1.0, review_count / REVIEW_CONFIDENCE_SATURATION)

        confidence = METADATA_CONFIDENCE_BASE
        if len(signals.genres or []) >= METADATA_CONFIDENCE_MIN_GENRES:
            confidence += METADATA_CONFIDENCE_STEP
        if self.tables.director_style(signals.director) is not None:
            confidence += METADATA_CONFIDENCE_STEP
        if signals.external_rating is not None:
            confidence += METADATA_CONFIDENCE_STEP
        if signals.year is not None:
            confidence += METADATA_CONFIDENCE_STEP
        return min(1.0, round_half_up(confidence, 2))

    def _result(self, scores: dict[str, float], signals: FilmSignals, method: str) -> SynthesisResult:
        return SynthesisResult(
            scores=scores,
            confidence=self._confidence(signals),
            summary=summarize(scores, signals.title, self._review_count(signals), signals.community_rating),
            review_count=self._review_count(signals),
            method=method,
        )

    @staticmethod
    def _empty_result(signals: FilmSignals) -> SynthesisResult:
        title = f'"{signals.title}"' if signals.title else "This film"
        return SynthesisResult(
            scores=neutral_vector(),
            confidence=0.0,
            summary=f"Not enough information to analyze {title}.",
            review_count=0,
            method=METHOD_NONE,
        )


def _first_band(bands: list[dict], value: float, unit: str) -> dict | None:
    for band in bands:
        upper = band.get(f"max_{unit}")
        lower = band.get(f"min_{unit}")
        if upper is not None and value > upper:
            continue
        if lower is not None and value < lower:
            continue
        return band
    return None


def _average_in(scores: dict[str, float], modifiers: dict[str, float]):
    for dim, value in modifiers.items():
        scores[dim] = (scores[dim] + value) / 2


def summarize(
    scores: dict[str, float],
    title: str | None = None,
    review_count: int = 0,
    community_rating: float | None = None,
) -> str:
    """One sentence naming the standout high and low dimensions."""
    highs = sorted(
        (d for d in DIMENSIONS if scores.get(d, NEUTRAL_LEVEL) >= SUMMARY_HIGH_THRESHOLD),
        key=lambda d: -scores[d],
    )[:2]
    lows = sorted(
        (d for d in DIMENSIONS if scores.get(d, NEUTRAL_LEVEL) <= SUMMARY_LOW_THRESHOLD),
        key=lambda d: scores[d],
    )[:2]

    source = f"Based on {review_count:,} reviews" if review_count else "Based on metadata"
    subject = f'"{title}"' if title else "this film"
    if highs:
        sentence = f"{source}, {subject} scores highly in {' and '.join(display_name(d) for d in highs)}"
    else:
        sentence = f"{source}, {subject} has no standout dimensions"
    if lows:
        sentence += f" while being lower in {' and '.join(display_name(d) for d in lows)}"
    sentence += "."
    if community_rating is not None:
        sentence += f" Average community rating: {community_rating}/5.0."
    return sentence


def summarize_catalog(results: list[SynthesisResult]) -> dict:
    """Population summary: count, mean confidence and most common high dimensions."""
    if not results:
        return {"count": 0, "avg_confidence": 0.0, "top_dimensions": []}

    avg_confidence = sum(r.confidence for r in results) / len(results)
    counts = defaultdict(int)
    for result in results:
        for dim in DIMENSIONS:
            if result.scores.get(dim, NEUTRAL_LEVEL) >= SUMMARY_HIGH_THRESHOLD:
                counts[dim] += 1

    ranked = sorted(counts, key=lambda d: (-counts[d], DIMENSIONS.index(d)))
    return {
        "count": len(results),
        "avg_confidence": round_half_up(avg_confidence, 2),
        "top_dimensions": ranked[:CATALOG_SUMMARY_TOP_DIMENSIONS],
    }
