import pytest

from vibe_rec.errors import InvalidInputError, StorageError
from vibe_rec.storage import (
    CATALOG_KEY,
    MemoryStorage,
    SQLiteStorage,
    Storage,
    decode_blob,
    encode_blob,
    onboarding_key,
    user_key,
    validate_key,
)


@pytest.fixture(params=["memory", "sqlite"])
def storage(request, tmp_path):
    if request.param == "memory":
        yield MemoryStorage()
        return
    db = SQLiteStorage(tmp_path / "docs.db")
    yield db
    db.close()


def test_storage_interface_is_abstract():
    with pytest.raises(TypeError):
        Storage()

    class LoadOnly(Storage):
        def load(self, key):
            return None

    with pytest.raises(TypeError):
        LoadOnly()


def test_save_load_delete(storage):
    document = {"films": [{"id": "a", "title": "Amélie"}], "ready": True}
    assert storage.load(CATALOG_KEY) is None

    storage.save(CATALOG_KEY, document)
    assert storage.load(CATALOG_KEY) == document

    storage.save(CATALOG_KEY, {"films": []})
    assert storage.load(CATALOG_KEY) == {"films": []}

    storage.delete(CATALOG_KEY)
    assert storage.load(CATALOG_KEY) is None
    # deleting a missing key is a no-op
    storage.delete(CATALOG_KEY)


def test_key_order_preserved(storage):
    document = {"serotonin": 1, "brainy_bonkers": 2, "camp": 3}
    storage.save(user_key("u1"), document)
    assert list(storage.load(user_key("u1"))) == ["serotonin", "brainy_bonkers", "camp"]


def test_keys_are_independent(storage):
    storage.save(user_key("u1"), {"n": 1})
    storage.save(onboarding_key("u1"), {"n": 2})
    assert storage.load(user_key("u1")) == {"n": 1}
    assert storage.load(onboarding_key("u1")) == {"n": 2}
    assert sorted(storage.keys()) == ["onboarding:u1", "user:u1"]


@pytest.mark.parametrize("key", ["", "users:x", "user:", "user:a b", "catalog2", None])
def test_invalid_keys_rejected(key):
    with pytest.raises(InvalidInputError):
        validate_key(key)


def test_key_builders():
    assert user_key("alice") == "user:alice"
    assert onboarding_key("alice") == "onboarding:alice"
    with pytest.raises(InvalidInputError):
        user_key("")


def test_blob_codec_errors():
    with pytest.raises(StorageError):
        encode_blob({"bad": object()})
    with pytest.raises(StorageError):
        decode_blob("{not json")
    assert decode_blob(None) is None


def test_unencodable_document_leaves_previous_value(storage):
    storage.save(CATALOG_KEY, {"v": 1})
    with pytest.raises(StorageError):
        storage.save(CATALOG_KEY, {"v": {1, 2}})
    assert storage.load(CATALOG_KEY) == {"v": 1}


def test_corrupt_row_raises_storage_error(fresh_db):
    with fresh_db.get_db() as conn:
        conn.execute(
            "INSERT INTO documents (key, body, updated_at) VALUES (?, ?, ?)",
            ("catalog", "{oops", "2024-01-01T00:00:00+00:00"),
        )
    with pytest.raises(StorageError):
        fresh_db.load(CATALOG_KEY)


def test_nested_transactions_commit_once(fresh_db):
    with fresh_db.get_db() as conn:
        conn.execute(
            "INSERT INTO documents (key, body, updated_at) VALUES (?, ?, ?)",
            ("user:a", "{}", "t"),
        )
        with fresh_db.get_db() as inner:
            inner.execute(
                "INSERT INTO documents (key, body, updated_at) VALUES (?, ?, ?)",
                ("user:b", "{}", "t"),
            )

    assert fresh_db.keys() == ["user:a", "user:b"]


def test_failed_transaction_rolls_back(fresh_db):
    with pytest.raises(StorageError):
        with fresh_db.get_db() as conn:
            conn.execute(
                "INSERT INTO documents (key, body, updated_at) VALUES (?, ?, ?)",
                ("user:a", "{}", "t"),
            )
            conn.execute("INSERT INTO missing_table VALUES (1)")

    assert fresh_db.keys() == []


def test_sqlite_persists_across_instances(tmp_path):
    path = tmp_path / "nested" / "docs.db"
    first = SQLiteStorage(path)
    first.save(user_key("u"), {"ratings": [1, 2]})
    first.close()

    second = SQLiteStorage(path)
    assert second.load(user_key("u")) == {"ratings": [1, 2]}
    second.close()


def test_default_path_comes_from_config(fresh_config, monkeypatch):
    import vibe_rec.storage as storage_module

    monkeypatch.setattr(storage_module, "DB_PATH", fresh_config.DB_PATH)
    db = SQLiteStorage()
    assert db.db_path == fresh_config.DB_PATH
    assert db.db_path.exists()
    db.close()
