import pytest

from vibe_rec.catalog import (
    CancellationToken,
    CatalogPopulator,
    CatalogState,
    CatalogStore,
    community_to_ten_point,
    entry_to_film,
    film_id_for,
    load_seed_entries,
    slugify,
    synthesized_rating,
)
from vibe_rec.errors import InvalidInputError, NotFoundError, NotReadyError, OperationCancelled
from vibe_rec.models import Film, SOURCE_SYNTHESIZED
from vibe_rec.synthesis import AttributeSynthesizer

from conftest import vector


def _entries(n, prefix="film"):
    return [
        {"id": f"{prefix}-{i}", "title": f"{prefix.title()} {i}", "genres": ["Comedy"], "runtime": 90 + i}
        for i in range(n)
    ]


@pytest.fixture(scope="module")
def synth():
    return AttributeSynthesizer()


def test_state_machine(make_catalog):
    store = CatalogStore()
    assert store.state is CatalogState.UNINITIALIZED
    with pytest.raises(NotReadyError):
        store.require_ready()

    store.begin_loading(10)
    store.update_progress(4, 10)
    assert store.state is CatalogState.LOADING
    assert store.progress == (4, 10)
    with pytest.raises(NotReadyError, match="4/10"):
        store.require_ready()

    store.mark_ready("2024-01-01T00:00:00+00:00", {"count": 0})
    assert store.is_ready
    store.require_ready()


def test_insert_validates_and_copies(make_catalog):
    store = make_catalog({"a": vector()})
    film = store.get("a")
    film.seen = True
    assert store.get("a").seen is False

    with pytest.raises(InvalidInputError):
        store.insert(Film(id="", title="No id"))
    other = store.get_rating("a")
    with pytest.raises(InvalidInputError):
        store.insert(Film(id="b", title="B"), other)


def test_update_seen_and_unseen(make_catalog):
    store = make_catalog({"a": vector(), "b": vector()})
    store.update_seen("a")
    assert [f.id for f in store.enumerate_unseen()] == ["b"]
    with pytest.raises(NotFoundError):
        store.update_seen("missing")


def test_snapshot_isolated_from_later_writes(make_catalog):
    store = make_catalog({"a": vector()})
    snap = store.snapshot()
    store.update_seen("a")
    assert snap.get("a").seen is False
    assert [f.id for f in snap.unseen()] == ["a"]


def test_document_round_trip(make_catalog):
    store = make_catalog({"a": (vector(5, 1, 3, 4, 2, 1, 3, 5, 3, 1), {"runtime": 120, "genres": ["Comedy"]})})
    store.update_seen("a")
    document = store.to_document()
    assert set(document) == {"films", "synthesized_ratings", "populated_at", "summary"}
    assert list(document["synthesized_ratings"][0]["dimensions"])[0] == "serotonin"

    copy = CatalogStore.from_document(document)
    assert copy.is_ready
    assert copy.get("a").seen is True
    assert copy.get("a").runtime == 120
    assert copy.get_rating("a").dimensions["serotonin"] == 5


def test_seed_entries_ship_with_package():
    entries = load_seed_entries()
    assert len(entries) >= 10
    assert len({e["id"] for e in entries}) == len(entries)


def test_entry_helpers():
    assert slugify("Everything Everywhere All at Once") == "everything-everywhere-all-at-once"
    assert slugify("!!!") == "film"
    assert community_to_ten_point(4.0) == 7.7

    assert film_id_for("Dune", 1984) == "dune-1984"
    assert film_id_for("Dune") == "dune"

    film = entry_to_film({"title": "Paddington 2", "community_rating": 4.3, "review_count": 1200})
    assert film.id == "paddington-2"
    assert film.logline == "Popular with 1,200 reviews. Community rating: 4.3/5.0"
    assert film.runtime == 1
    with pytest.raises(InvalidInputError):
        entry_to_film({"title": "  "})


def test_synthesized_rating_shape(synth):
    entry = {"id": "x", "title": "X", "genres": ["Drama"], "community_rating": 3.6, "review_count": 40}
    populator = CatalogPopulator(CatalogStore(), synth)
    film, rating, result = populator.build(entry)
    assert rating.id == "synth:x"
    assert rating.source == SOURCE_SYNTHESIZED
    assert rating.overall == 4
    assert rating.notes == "Synthesized from 40 reviews. Confidence: 80%"
    assert film.provenance.confidence == result.confidence

    bare = synthesized_rating(Film(id="y", title="Y"), result)
    assert bare.overall == 3


def test_populate_commits_and_reports_progress(synth):
    store = CatalogStore()
    calls = []
    summary = CatalogPopulator(store, synth, batch_size=2).populate(
        _entries(5), progress=lambda done, total, titles: calls.append((done, total)),
    )
    assert store.is_ready
    assert len(store) == 5
    assert calls == [(2, 5), (4, 5), (5, 5)]
    assert summary["count"] == 5
    assert store.summary == summary


def test_populate_skips_bad_entries(synth):
    store = CatalogStore()
    entries = _entries(2) + [{"id": "bad", "title": ""}]
    summary = CatalogPopulator(store, synth).populate(entries)
    assert summary["count"] == 2
    assert "bad" not in store


def test_cancel_leaves_catalog_unchanged(synth):
    store = CatalogStore()
    CatalogPopulator(store, synth).populate(_entries(3, "old"))
    before = store.to_document()

    token = CancellationToken()

    def _cancel_after_first_batch(done, total, titles):
        token.cancel()

    with pytest.raises(OperationCancelled):
        CatalogPopulator(store, synth, batch_size=2).populate(
            _entries(6, "new"), cancel_token=token, progress=_cancel_after_first_batch,
        )

    assert store.is_ready
    assert store.to_document() == before
    assert "new-0" not in store


def test_cancel_on_first_load_returns_to_uninitialized(synth):
    store = CatalogStore()
    token = CancellationToken()
    token.cancel()
    with pytest.raises(OperationCancelled):
        CatalogPopulator(store, synth).populate(_entries(2), cancel_token=token)
    assert store.state is CatalogState.UNINITIALIZED
    assert len(store) == 0


def test_repopulating_keeps_seen_flag(synth):
    store = CatalogStore()
    populator = CatalogPopulator(store, synth)
    populator.populate(_entries(2))
    store.update_seen("film-0")
    populator.populate(_entries(2))
    assert store.get("film-0").seen is True


def test_reinserting_film_keeps_seen_flag(make_catalog):
    store = make_catalog({"a": vector()})
    store.update_seen("a")
    store.insert(Film(id="a", title="A remastered"), store.get_rating("a"))
    assert store.get("a").seen is True
    assert store.get("a").title == "A remastered"
    assert store.enumerate_unseen() == []
