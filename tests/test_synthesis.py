import pytest

from vibe_rec.dimensions import DIMENSIONS
from vibe_rec.synthesis import (
    AttributeSynthesizer,
    FilmSignals,
    METHOD_METADATA,
    METHOD_NONE,
    METHOD_REVIEWS,
    strip_html,
    summarize,
    summarize_catalog,
)


@pytest.fixture(scope="module")
def synth():
    return AttributeSynthesizer()


def test_review_cues_raise_color_above_metadata_baseline(synth):
    reviews = ["Visually stunning. Truly visually stunning and beautiful throughout."]
    with_reviews = synth.synthesize(FilmSignals(genres=["Drama"], runtime=120, review_texts=reviews))
    without = synth.synthesize(FilmSignals(genres=["Drama"], runtime=120))

    assert with_reviews.scores["color"] >= 4
    assert without.scores["color"] <= 3.5
    assert with_reviews.method == METHOD_REVIEWS
    assert without.method == METHOD_METADATA


def test_single_review_delta_is_clamped(synth):
    deltas = synth.cue_deltas("gorgeous gorgeous gorgeous gorgeous gorgeous")
    assert deltas["color"] == 1.0
    assert synth.cue_deltas("bleak bleak bleak bleak")["serotonin"] == -1.0


def test_cues_match_whole_words_only(synth):
    assert "serotonin" not in synth.cue_deltas("a funeral")
    assert synth.cue_deltas("Such FUN!")["serotonin"] == pytest.approx(0.3)


@pytest.mark.parametrize("extra", [["gorgeous"], ["colorful", "beautiful"], ["visually stunning"] * 4])
def test_positive_color_reviews_never_lower_color(synth, extra):
    base_reviews = ["A slow and bleak drama."]
    base = synth.synthesize(FilmSignals(genres=["Drama", "War"], review_texts=base_reviews))
    more = synth.synthesize(FilmSignals(genres=["Drama", "War"], review_texts=base_reviews + extra))
    assert more.scores["color"] >= base.scores["color"]


def test_genre_and_director_blend(synth):
    result = synth.synthesize(FilmSignals(genres=["Comedy", "Drama"], director="Wes Anderson"))
    # camp: genre (3+4)/2=3.5, director 0.3*3.5+0.7*4=3.85 -> 4.0
    assert result.scores["camp"] == 4.0
    # color: no genre bias, director 0.3*3+0.7*5=4.4 -> 4.5
    assert result.scores["color"] == 4.5


def test_genre_lookup_is_case_insensitive_with_aliases(synth):
    lower = synth.synthesize(FilmSignals(genres=["sci-fi"]))
    canonical = synth.synthesize(FilmSignals(genres=["Science Fiction"]))
    assert lower.scores == canonical.scores
    assert canonical.scores["novelty"] == 4.0


def test_unknown_signals_do_not_raise(synth):
    result = synth.synthesize(FilmSignals(genres=["Mumblecore"], director="Nobody Known"))
    assert all(v == 3.0 for v in result.scores.values())


def test_empty_input_is_neutral_with_zero_confidence(synth):
    result = synth.synthesize(FilmSignals(title="Blank"))
    assert result.method == METHOD_NONE
    assert result.confidence == 0.0
    assert list(result.scores) == list(DIMENSIONS)
    assert set(result.scores.values()) == {3.0}
    assert "Blank" in result.summary


def test_scores_stay_on_half_steps_in_range(synth):
    noisy = ["bonkers absurd weird bizarre"] * 12 + ["dark heavy intense"] * 9
    result = synth.synthesize(FilmSignals(genres=["Horror", "Comedy"], review_texts=noisy))
    for value in result.scores.values():
        assert 1.0 <= value <= 5.0
        assert (value * 2) == int(value * 2)


def test_confidence_from_review_count(synth):
    assert synth.synthesize(FilmSignals(genres=["Drama"], community_review_count=25)).confidence == 0.5
    assert synth.synthesize(FilmSignals(genres=["Drama"], community_review_count=10_000)).confidence == 1.0
    assert synth.synthesize(FilmSignals(genres=["Drama"], review_texts=["fine", "ok"])).confidence == 0.04


def test_confidence_metadata_prior(synth):
    bare = synth.synthesize(FilmSignals(genres=["Drama"]))
    rich = synth.synthesize(FilmSignals(
        genres=["Drama", "Crime", "Thriller"],
        director="Bong Joon-ho",
        external_rating=8.5,
        year=2019,
    ))
    assert bare.confidence == 0.3
    assert rich.confidence == 0.7


def test_metadata_only_prediction(synth):
    horror = synth.predict_metadata_only(FilmSignals(genres=["Horror"], runtime=95))
    assert horror.method == METHOD_METADATA
    assert horror.scores["darkness"] >= 4
    assert horror.scores["serotonin"] <= 3
    assert all(v == int(v) for v in horror.scores.values())

    short = synth.predict_metadata_only(FilmSignals(genres=["Comedy"], runtime=80))
    long = synth.predict_metadata_only(FilmSignals(genres=["Comedy"], runtime=190))
    assert short.scores["runtime_fit"] >= long.scores["runtime_fit"]


def test_strip_html():
    assert strip_html("plain text") == "plain text"
    assert "gorgeous" in strip_html("<p>Simply <em>gorgeous</em></p>")
    assert "<" not in strip_html("<div><b>bold</b> claim</div>")


def test_summary_sentence():
    scores = {d: 3.0 for d in DIMENSIONS}
    scores.update(color=5.0, camp=4.5, darkness=1.0, pace=2.0)
    text = summarize(scores, "The Grand Budapest Hotel", 125000, 4.1)
    assert text == (
        'Based on 125,000 reviews, "The Grand Budapest Hotel" scores highly in color and camp '
        "while being lower in darkness and pace. Average community rating: 4.1/5.0."
    )
    assert summarize({d: 3.0 for d in DIMENSIONS}).startswith("Based on metadata, this film has no standout")


def test_catalog_summary(synth):
    results = [
        synth.synthesize(FilmSignals(genres=["Animation"], community_review_count=50)),
        synth.synthesize(FilmSignals(genres=["Animation", "Family"], community_review_count=25)),
    ]
    summary = summarize_catalog(results)
    assert summary["count"] == 2
    assert summary["avg_confidence"] == 0.75
    assert summary["top_dimensions"] == ["color", "social_safe"]
    assert summarize_catalog([]) == {"count": 0, "avg_confidence": 0.0, "top_dimensions": []}
