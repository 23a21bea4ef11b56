"""
Dimension registry.

The ten taste axes, their five ordinal levels and the conversions between
the canonical 1-5 scale, the legacy 0-10 scale and display percentages.
Level tables are loaded from data/dimensions.json and validated at import.
"""
import json
import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Iterable

import numpy as np

from .config import DATA_DIR, NEUTRAL_LEVEL
from .errors import InvalidInputError
from .utils import round_half_up

logger = logging.getLogger(__name__)

# Canonical order; every serialized vector follows it
DIMENSIONS = (
    "serotonin",
    "brainy_bonkers",
    "camp",
    "color",
    "pace",
    "darkness",
    "novelty",
    "social_safe",
    "runtime_fit",
    "subs_energy",
)

MIN_LEVEL = 1
MAX_LEVEL = 5
FALLBACK_COLOR = "#64748b"

# Legacy 0-10 band upper bounds for levels 1..4; anything above is level 5
_TEN_POINT_BANDS = (1.0, 3.0, 6.0, 8.0)
# Canonical 0-10 anchor for each level, used by to_ten_point
_TEN_POINT_ANCHORS = (0.5, 2.0, 4.5, 7.0, 9.0)


@dataclass(frozen=True)
class Level:
    value: int
    label: str
    description: str
    examples: tuple[str, ...]
    color: str


@dataclass(frozen=True)
class Scale:
    name: str
    title: str
    description: str
    icon: str
    levels: tuple[Level, ...]


def _load_scales(path: Path) -> dict[str, Scale]:
    """Load and validate the level tables for all ten dimensions."""
    with open(path, encoding="utf-8") as f:
        raw = json.load(f)

    missing = [name for name in DIMENSIONS if name not in raw]
    if missing:
        raise ValueError(f"{path.name} is missing dimensions: {missing}")

    scales = {}
    for name in DIMENSIONS:
        entry = raw[name]
        levels = tuple(
            Level(
                value=int(lvl["value"]),
                label=lvl["label"],
                description=lvl["description"],
                examples=tuple(lvl["examples"]),
                color=lvl.get("color", FALLBACK_COLOR),
            )
            for lvl in entry["levels"]
        )
        values = [lvl.value for lvl in levels]
        if values != list(range(MIN_LEVEL, MAX_LEVEL + 1)):
            raise ValueError(f"{name}: levels must be exactly 1..5 ascending, got {values}")
        for lvl in levels:
            if not lvl.examples:
                raise ValueError(f"{name} level {lvl.value} has no examples")
        scales[name] = Scale(
            name=name,
            title=entry.get("title", name.replace("_", " ").title()),
            description=entry.get("description", ""),
            icon=entry.get("icon", ""),
            levels=levels,
        )
    return scales


SCALES: dict[str, Scale] = _load_scales(DATA_DIR / "dimensions.json")


def _scale(dimension: str) -> Scale:
    try:
        return SCALES[dimension]
    except KeyError:
        raise InvalidInputError(f"Unknown dimension: {dimension!r}") from None


def scale(dimension: str) -> Scale:
    """Full scale definition (title, question, icon, levels)."""
    return _scale(dimension)


def levels(dimension: str) -> list[Level]:
    return list(_scale(dimension).levels)


def level(dimension: str, value) -> Level | None:
    """Level for an integer value 1..5, None when out of range or unknown."""
    scale_def = SCALES.get(dimension)
    if scale_def is None or not _is_number(value) or not math.isfinite(value):
        return None
    if value != int(value) or not MIN_LEVEL <= value <= MAX_LEVEL:
        return None
    return scale_def.levels[int(value) - MIN_LEVEL]


def description(dimension: str, value) -> str:
    lvl = level(dimension, value)
    if lvl is None:
        return "Unknown level"
    return f"{lvl.label}: {lvl.description}"


def examples(dimension: str, value) -> list[str]:
    lvl = level(dimension, value)
    return list(lvl.examples) if lvl else []


def color(dimension: str, value) -> str:
    lvl = level(dimension, value)
    return lvl.color if lvl else FALLBACK_COLOR


def display_name(dimension: str) -> str:
    """'brainy_bonkers' -> 'brainy bonkers'."""
    return dimension.replace("_", " ")


def tag_name(dimension: str) -> str:
    return dimension.replace("_", "-")


# --- Scale conversions ---

def from_ten_point(value: float) -> int:
    """Map a legacy 0-10 value onto the 1-5 scale (input clamped to [0, 10])."""
    if not _is_number(value) or math.isnan(value):
        return NEUTRAL_LEVEL
    v = min(10.0, max(0.0, float(value)))
    for lvl, upper in enumerate(_TEN_POINT_BANDS, start=MIN_LEVEL):
        if v <= upper:
            return lvl
    return MAX_LEVEL


def to_ten_point(value: float) -> float:
    """Inverse of from_ten_point: level anchors, linear between them."""
    v = clamp_score(value)
    return float(np.interp(v, range(MIN_LEVEL, MAX_LEVEL + 1), _TEN_POINT_ANCHORS))


def to_percent(value: float) -> float:
    v = clamp_score(value)
    return (v - MIN_LEVEL) / (MAX_LEVEL - MIN_LEVEL) * 100


# --- Vector helpers ---

def _is_number(value) -> bool:
    return isinstance(value, (int, float, np.integer, np.floating)) and not isinstance(value, bool)


def clamp_score(value, low: float = MIN_LEVEL, high: float = MAX_LEVEL) -> float:
    """Clamp into [low, high]; non-numeric input becomes neutral."""
    if not _is_number(value) or math.isnan(value):
        return float(NEUTRAL_LEVEL)
    return float(min(high, max(low, value)))


def round_half(value: float) -> float:
    """Round to the nearest 0.5, halves going up."""
    return round_half_up(value * 2) / 2


def neutral_vector() -> dict[str, float]:
    return {name: float(NEUTRAL_LEVEL) for name in DIMENSIONS}


def coerce_vector(values: Mapping | None, strict: bool = False) -> dict[str, float]:
    """
    Canonicalize a dimension mapping.

    With strict=True every dimension must be present, numeric and inside
    [1, 5], otherwise InvalidInputError is raised. Without it, missing or
    malformed entries fall back to neutral and values are clamped.
    """
    if values is None or not isinstance(values, Mapping):
        if strict:
            raise InvalidInputError("Dimension vector must be a mapping")
        return neutral_vector()

    if strict:
        unknown = [k for k in values if k not in SCALES]
        if unknown:
            raise InvalidInputError(f"Unknown dimensions: {unknown}")

    result = {}
    for name in DIMENSIONS:
        raw = values.get(name)
        if strict:
            if not _is_number(raw) or math.isnan(raw):
                raise InvalidInputError(f"{name} must be a number, got {raw!r}")
            if not MIN_LEVEL <= raw <= MAX_LEVEL:
                raise InvalidInputError(f"{name}={raw} is outside 1-5")
            result[name] = float(raw)
        else:
            result[name] = clamp_score(raw)
    return result


def whole_level(value, what: str = "value") -> int:
    """Validate a single ordinal rating 1..5."""
    if not _is_number(value) or not math.isfinite(value) or value != int(value):
        raise InvalidInputError(f"{what} must be a whole number {MIN_LEVEL}-{MAX_LEVEL}, got {value!r}")
    if not MIN_LEVEL <= value <= MAX_LEVEL:
        raise InvalidInputError(f"{what} must be {MIN_LEVEL}-{MAX_LEVEL}, got {value}")
    return int(value)


def ordinal_vector(values: Mapping | None) -> dict[str, int]:
    """Validate a user-supplied rating: ten integer levels 1..5."""
    vec = coerce_vector(values, strict=True)
    for name, v in vec.items():
        if v != int(v):
            raise InvalidInputError(f"{name}={v} must be a whole level 1-5")
    return {name: int(v) for name, v in vec.items()}


def to_array(values: Mapping | None) -> np.ndarray:
    vec = coerce_vector(values)
    return np.array([vec[name] for name in DIMENSIONS], dtype=float)


def from_array(arr: Iterable[float]) -> dict[str, float]:
    arr = list(arr)
    if len(arr) != len(DIMENSIONS):
        raise InvalidInputError(f"Expected {len(DIMENSIONS)} values, got {len(arr)}")
    return {name: clamp_score(float(v)) for name, v in zip(DIMENSIONS, arr)}


def parse_assignments(pairs: Iterable[str], base: Mapping | None = None) -> dict[str, float]:
    """Parse 'dim=value' strings on top of a base vector (neutral by default)."""
    vec = coerce_vector(base) if base is not None else neutral_vector()
    for pair in pairs:
        name, sep, raw = pair.partition("=")
        name = name.strip()
        if not sep or name not in SCALES:
            raise InvalidInputError(f"Expected dimension=value, got {pair!r}")
        try:
            value = float(raw)
        except ValueError:
            raise InvalidInputError(f"{name} value {raw!r} is not a number") from None
        if not MIN_LEVEL <= value <= MAX_LEVEL:
            raise InvalidInputError(f"{name}={value} is outside 1-5")
        vec[name] = value
    return vec
