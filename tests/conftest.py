import importlib
import sys
from pathlib import Path

import pytest

# Ensure the package under test is importable without installation
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from vibe_rec.catalog import CatalogStore  # noqa: E402
from vibe_rec.dimensions import DIMENSIONS  # noqa: E402
from vibe_rec.models import Film, Rating, SOURCE_SYNTHESIZED  # noqa: E402


@pytest.fixture
def fresh_config(monkeypatch, tmp_path):
    """
    Reload config with a temporary database path to keep tests isolated.

    Reloads once more on teardown so env overrides do not leak.
    """
    db_path = tmp_path / "test.db"
    monkeypatch.setenv("VIBE_REC_DB", str(db_path))
    import vibe_rec.config as config

    importlib.reload(config)
    yield config
    monkeypatch.undo()
    importlib.reload(config)


@pytest.fixture
def fresh_db(tmp_path):
    """SQLite storage on a temp file, closed after use."""
    from vibe_rec.storage import SQLiteStorage

    storage = SQLiteStorage(tmp_path / "test.db")
    yield storage
    storage.close()


def vector(*values, **overrides) -> dict:
    """Ten-value vector in canonical order; neutral when no values are given."""
    values = values or (3,) * len(DIMENSIONS)
    vec = dict(zip(DIMENSIONS, values))
    vec.update(overrides)
    return vec


def add_film(store: CatalogStore, film_id: str, dims: dict, **fields) -> Film:
    film = Film(id=film_id, title=fields.pop("title", film_id.replace("-", " ").title()), **fields)
    rating = Rating(
        id=f"synth:{film_id}",
        film_id=film_id,
        dimensions=dict(dims),
        overall=3,
        source=SOURCE_SYNTHESIZED,
    )
    store.insert(film, rating)
    return film


@pytest.fixture
def make_catalog():
    """Build a ready catalog from {film_id: vector} (values may be (vector, fields))."""
    def _make(films: dict, ready: bool = True) -> CatalogStore:
        store = CatalogStore()
        for film_id, entry in films.items():
            dims, fields = entry if isinstance(entry, tuple) else (entry, {})
            add_film(store, film_id, dims, **fields)
        if ready:
            store.mark_ready()
        return store
    return _make
