import pytest

from vibe_rec import dimensions
from vibe_rec.dimensions import DIMENSIONS
from vibe_rec.errors import InvalidInputError

from conftest import vector


def test_canonical_order_and_complete_levels():
    assert DIMENSIONS == (
        "serotonin", "brainy_bonkers", "camp", "color", "pace",
        "darkness", "novelty", "social_safe", "runtime_fit", "subs_energy",
    )
    for name in DIMENSIONS:
        lvls = dimensions.levels(name)
        assert [lvl.value for lvl in lvls] == [1, 2, 3, 4, 5]
        assert all(lvl.label and lvl.examples and lvl.color.startswith("#") for lvl in lvls)


def test_level_lookup_rejects_out_of_range():
    assert dimensions.level("serotonin", 1).label == "Soul-crushing"
    assert dimensions.level("serotonin", 0) is None
    assert dimensions.level("serotonin", 6) is None
    assert dimensions.level("serotonin", 2.5) is None
    assert dimensions.level("not_a_dimension", 3) is None
    assert dimensions.description("serotonin", 9) == "Unknown level"
    assert dimensions.color("serotonin", 9) == dimensions.FALLBACK_COLOR
    assert dimensions.examples("serotonin", 9) == []


def test_unknown_dimension_scale_raises():
    with pytest.raises(InvalidInputError):
        dimensions.levels("mood")


def test_names():
    assert dimensions.display_name("brainy_bonkers") == "brainy bonkers"
    assert dimensions.tag_name("social_safe") == "social-safe"


@pytest.mark.parametrize("ten_point, expected", [
    (0, 1), (1.0, 1), (2.5, 2), (3.0, 2), (5.9, 3), (7.5, 4), (8.1, 5), (10, 5), (14, 5), (-3, 1),
])
def test_from_ten_point_bands(ten_point, expected):
    assert dimensions.from_ten_point(ten_point) == expected


def test_to_ten_point_anchors_round_trip_levels():
    for lvl in range(1, 6):
        assert dimensions.from_ten_point(dimensions.to_ten_point(lvl)) == lvl
    assert dimensions.to_ten_point(3.5) == pytest.approx(5.75)


def test_to_percent():
    assert dimensions.to_percent(1) == 0
    assert dimensions.to_percent(5) == 100
    assert dimensions.to_percent(3) == 50


def test_round_half_goes_up_on_ties():
    assert dimensions.round_half(3.25) == 3.5
    assert dimensions.round_half(3.2) == 3.0
    assert dimensions.round_half(4.75) == 5.0


def test_coerce_vector_lenient_fills_and_clamps():
    vec = dimensions.coerce_vector({"serotonin": 9, "camp": "loud"})
    assert list(vec) == list(DIMENSIONS)
    assert vec["serotonin"] == 5.0
    assert vec["camp"] == 3.0
    assert vec["pace"] == 3.0


@pytest.mark.parametrize("bad", [
    None,
    [3] * 10,
    {"serotonin": 3},
    vector(serotonin=6),
    vector(serotonin=0.5),
    vector(camp=float("nan")),
    vector(color="4"),
    {**vector(), "mood": 3},
])
def test_coerce_vector_strict_rejects(bad):
    with pytest.raises(InvalidInputError):
        dimensions.coerce_vector(bad, strict=True)


def test_ordinal_vector_requires_whole_levels():
    assert dimensions.ordinal_vector(vector(4, 4, 4, 4, 4, 4, 4, 4, 4, 4))["pace"] == 4
    with pytest.raises(InvalidInputError):
        dimensions.ordinal_vector(vector(serotonin=3.5))


def test_from_array_length_checked():
    with pytest.raises(InvalidInputError):
        dimensions.from_array([3, 3])
    assert dimensions.from_array([7] * 10)["color"] == 5.0


def test_parse_assignments():
    vec = dimensions.parse_assignments(["serotonin=5", "darkness=1.5"])
    assert vec["serotonin"] == 5.0
    assert vec["darkness"] == 1.5
    assert vec["pace"] == 3.0

    for bad in (["serotonin"], ["mood=3"], ["camp=loud"], ["camp=7"]):
        with pytest.raises(InvalidInputError):
            dimensions.parse_assignments(bad)
