"""
Persistence adapter: opaque JSON documents keyed by stable strings.

Keys are `catalog`, `user:{id}` and `onboarding:{id}`. Each save replaces
the whole document for its key atomically; concurrent saves to one key
are last-writer-wins and there is no cross-key transaction.
"""
import json
import logging
import re
import sqlite3
import threading
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path

from .config import DB_PATH
from .errors import InvalidInputError, StorageError
from .utils import utc_now_iso

logger = logging.getLogger(__name__)

CATALOG_KEY = "catalog"
_KEY_PATTERN = re.compile(r"^(catalog|(user|onboarding):[^\s]+)$")


def user_key(user_id: str) -> str:
    return validate_key(f"user:{user_id}")


def onboarding_key(user_id: str) -> str:
    return validate_key(f"onboarding:{user_id}")


def validate_key(key: str) -> str:
    if not isinstance(key, str) or not _KEY_PATTERN.match(key):
        raise InvalidInputError(f"Invalid storage key: {key!r}")
    return key


def encode_blob(blob) -> str:
    """JSON without key sorting, so canonical dimension order survives."""
    try:
        return json.dumps(blob, ensure_ascii=False)
    except (TypeError, ValueError) as e:
        raise StorageError(f"Cannot encode document: {e}") from e


def decode_blob(text: str | None):
    if text is None:
        return None
    try:
        return json.loads(text)
    except (json.JSONDecodeError, TypeError) as e:
        raise StorageError(f"Stored document is not valid JSON: {e}") from e


class Storage(ABC):
    """Key/value document sink used by the session facade."""

    @abstractmethod
    def load(self, key: str):
        ...

    @abstractmethod
    def save(self, key: str, blob) -> None:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        ...

    def close(self) -> None:
        pass


class MemoryStorage(Storage):
    """In-process storage holding encoded documents."""

    def __init__(self):
        self._documents: dict[str, str] = {}
        self._lock = threading.Lock()

    def load(self, key: str):
        validate_key(key)
        with self._lock:
            text = self._documents.get(key)
        return decode_blob(text)

    def save(self, key: str, blob) -> None:
        validate_key(key)
        text = encode_blob(blob)
        with self._lock:
            self._documents[key] = text

    def delete(self, key: str) -> None:
        validate_key(key)
        with self._lock:
            self._documents.pop(key, None)

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._documents)


class ConnectionPool:
    """
    One SQLite connection per thread, with nested transaction tracking.

    Connections are health-checked before reuse once the check interval
    has passed.
    """

    def __init__(self, db_path, health_check_interval: int = 300):
        self._db_path = db_path
        self._health_check_interval = health_check_interval
        self._lock = threading.Lock()
        self._connections: dict[int, sqlite3.Connection] = {}
        self._last_health_check: dict[int, float] = {}
        self._transaction_depth: dict[int, int] = {}

    def _create_connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA busy_timeout = 5000")
        conn.execute("PRAGMA journal_mode = WAL")
        conn.execute("PRAGMA synchronous = NORMAL")
        return conn

    @staticmethod
    def _healthy(conn: sqlite3.Connection) -> bool:
        try:
            conn.execute("SELECT 1").fetchone()
            return True
        except sqlite3.Error:
            return False

    def get_connection(self) -> sqlite3.Connection:
        thread_id = threading.get_ident()
        now = time.time()
        with self._lock:
            conn = self._connections.get(thread_id)
            if conn is not None and now - self._last_health_check.get(thread_id, 0) > self._health_check_interval:
                if self._healthy(conn):
                    self._last_health_check[thread_id] = now
                else:
                    logger.warning(f"Connection for thread {thread_id} failed health check, replacing")
                    conn.close()
                    conn = None

            if conn is None:
                conn = self._create_connection()
                self._connections[thread_id] = conn
                self._last_health_check[thread_id] = now
                self._transaction_depth[thread_id] = 0
                logger.debug(f"Created connection for thread {thread_id} (pool size: {len(self._connections)})")
            return conn

    def get_transaction_depth(self) -> int:
        return self._transaction_depth.get(threading.get_ident(), 0)

    def increment_transaction_depth(self):
        thread_id = threading.get_ident()
        with self._lock:
            self._transaction_depth[thread_id] = self._transaction_depth.get(thread_id, 0) + 1

    def decrement_transaction_depth(self):
        thread_id = threading.get_ident()
        with self._lock:
            self._transaction_depth[thread_id] = max(0, self._transaction_depth.get(thread_id, 1) - 1)

    def close_all(self):
        with self._lock:
            for thread_id, conn in list(self._connections.items()):
                try:
                    conn.close()
                except sqlite3.Error as e:
                    logger.warning(f"Error closing connection for thread {thread_id}: {e}")
            self._connections.clear()
            self._last_health_check.clear()
            self._transaction_depth.clear()


class SQLiteStorage(Storage):
    """Documents table in a SQLite file; INSERT OR REPLACE gives per-key atomic replacement."""

    def __init__(self, db_path: Path | str | None = None):
        self.db_path = Path(db_path) if db_path is not None else DB_PATH
        try:
            self.db_path.parent.mkdir(exist_ok=True, parents=True)
        except OSError as e:
            raise StorageError(f"Cannot create database directory {self.db_path.parent}: {e}") from e
        self._pool = ConnectionPool(self.db_path)
        self.init_db()

    @contextmanager
    def get_db(self, read_only: bool = False):
        """
        Connection with transaction handling.

        Only the outermost context commits or rolls back; nested contexts
        join the enclosing transaction. sqlite3 errors surface as StorageError.
        """
        try:
            conn = self._pool.get_connection()
        except sqlite3.Error as e:
            raise StorageError(f"Cannot open {self.db_path}: {e}") from e

        is_outermost = self._pool.get_transaction_depth() == 0
        self._pool.increment_transaction_depth()
        try:
            yield conn
            if is_outermost and not read_only:
                conn.commit()
        except sqlite3.Error as e:
            if is_outermost:
                conn.rollback()
            raise StorageError(f"Database error: {e}") from e
        except Exception:
            if is_outermost:
                conn.rollback()
            raise
        finally:
            self._pool.decrement_transaction_depth()

    def init_db(self) -> None:
        with self.get_db() as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS documents (
                    key TEXT PRIMARY KEY,
                    body TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );
            """)

    def load(self, key: str):
        validate_key(key)
        with self.get_db(read_only=True) as conn:
            row = conn.execute("SELECT body FROM documents WHERE key = ?", (key,)).fetchone()
        return decode_blob(row["body"]) if row else None

    def save(self, key: str, blob) -> None:
        validate_key(key)
        body = encode_blob(blob)
        with self.get_db() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO documents (key, body, updated_at) VALUES (?, ?, ?)",
                (key, body, utc_now_iso()),
            )
        logger.debug(f"Saved {key} ({len(body)} bytes)")

    def delete(self, key: str) -> None:
        validate_key(key)
        with self.get_db() as conn:
            conn.execute("DELETE FROM documents WHERE key = ?", (key,))

    def keys(self) -> list[str]:
        with self.get_db(read_only=True) as conn:
            return [row["key"] for row in conn.execute("SELECT key FROM documents ORDER BY key")]

    def close(self) -> None:
        self._pool.close_all()
        logger.info("Storage connections closed")
