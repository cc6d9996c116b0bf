"""Key-value persistence for the catalog and user settings."""
import json
import logging
import os
import tempfile
from typing import Dict, List, Optional

import psycopg2
from psycopg2 import pool

from bookvault.models import Book, Settings, books_from_dicts

logger = logging.getLogger(__name__)

BOOKS_KEY = "bookVault_books"
THEME_KEY = "bookVault_theme"
ITEMS_PER_PAGE_KEY = "bookVault_itemsPerPage"
SEARCH_HISTORY_KEY = "bookVault_searchHistory"


class MemoryStore:
    """Process-local key-value store."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self.data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    def set(self, key: str, value: str) -> bool:
        self.data[key] = value
        return True

    def close(self):
        pass


class JsonFileStore:
    """Key-value store kept as a single JSON object on disk."""

    def __init__(self, path: str):
        """
        Initialize file store.

        Args:
            path: Location of the JSON file; created on first write
        """
        self.path = path

    def _read_all(self) -> Dict[str, str]:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Could not read {self.path}: {e}")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"Ignoring {self.path}: top-level value is not an object")
            return {}
        return data

    def get(self, key: str) -> Optional[str]:
        return self._read_all().get(key)

    def set(self, key: str, value: str) -> bool:
        """
        Write one entry, replacing the file atomically.

        Returns:
            True if successful, False otherwise
        """
        data = self._read_all()
        data[key] = value
        directory = os.path.dirname(os.path.abspath(self.path))
        try:
            fd, tmp_path = tempfile.mkstemp(dir=directory, suffix=".tmp")
        except OSError as e:
            logger.error(f"Failed to write {self.path}: {e}")
            return False

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_path, self.path)
            return True
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Failed to write {self.path}: {e}")
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            return False

    def close(self):
        pass


class Database:
    """PostgreSQL-backed key-value store with connection pooling."""

    def __init__(self, connection_string: str, min_conn: int = 1, max_conn: int = 5):
        """
        Initialize database connection pool.

        Args:
            connection_string: PostgreSQL connection string
            min_conn: Minimum connections in pool
            max_conn: Maximum connections in pool
        """
        self.connection_pool = psycopg2.pool.SimpleConnectionPool(
            min_conn,
            max_conn,
            connection_string
        )

        if self.connection_pool:
            logger.info("Database connection pool created successfully")
        else:
            raise Exception("Failed to create connection pool")

    def init_schema(self):
        """Create the key-value table if it doesn't exist."""
        conn = self.connection_pool.getconn()
        try:
            with conn.cursor() as cur:
                cur.execute("""
                    CREATE TABLE IF NOT EXISTS kv_store (
                        key VARCHAR(255) PRIMARY KEY,
                        value TEXT NOT NULL,
                        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                    )
                """)
                conn.commit()
                logger.info("Database schema initialized successfully")
        finally:
            self.connection_pool.putconn(conn)

    def get(self, key: str) -> Optional[str]:
        """
        Read a stored value.

        Args:
            key: Entry key

        Returns:
            Stored text or None
        """
        conn = self.connection_pool.getconn()
        try:
            with conn.cursor() as cur:
                cur.execute("SELECT value FROM kv_store WHERE key = %s", (key,))
                row = cur.fetchone()
                return row[0] if row else None
        finally:
            self.connection_pool.putconn(conn)

    def set(self, key: str, value: str) -> bool:
        """
        Insert or replace a stored value.

        Args:
            key: Entry key
            value: Text to store

        Returns:
            True if successful, False otherwise
        """
        conn = self.connection_pool.getconn()
        try:
            with conn.cursor() as cur:
                cur.execute("""
                    INSERT INTO kv_store (key, value, updated_at)
                    VALUES (%s, %s, CURRENT_TIMESTAMP)
                    ON CONFLICT (key) DO UPDATE SET
                        value = EXCLUDED.value,
                        updated_at = CURRENT_TIMESTAMP
                """, (key, value))
                conn.commit()
                return True
        except Exception as e:
            conn.rollback()
            logger.error(f"Failed to store {key}: {e}")
            return False
        finally:
            self.connection_pool.putconn(conn)

    def close(self):
        """Close all connections in the pool."""
        if self.connection_pool:
            self.connection_pool.closeall()
            logger.info("Database connection pool closed")

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()


class StorageManager:
    """Maps catalog data and settings onto a key-value backend."""

    def __init__(self, backend, default_settings: Optional[Settings] = None):
        """
        Args:
            backend: Object with ``get(key)`` and ``set(key, value) -> bool``
            default_settings: Settings returned when nothing is stored
        """
        self.backend = backend
        self.default_settings = default_settings or Settings()

    def _load_json(self, key: str):
        raw = self.backend.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError as e:
            logger.warning(f"Stored value for {key} is not valid JSON: {e}")
            return None

    def _save(self, key: str, value: str) -> bool:
        try:
            ok = self.backend.set(key, value)
        except Exception as e:
            logger.error(f"Failed to save {key}: {e}")
            return False
        if not ok:
            logger.error(f"Failed to save {key}")
        return bool(ok)

    def load_books(self) -> List[Book]:
        data = self._load_json(BOOKS_KEY)
        if data is None:
            return []
        if not isinstance(data, list):
            logger.warning(f"Stored value for {BOOKS_KEY} is not a list, starting empty")
            return []
        books = books_from_dicts(data)
        logger.info(f"Loaded {len(books)} books from storage")
        return books

    def save_books(self, books: List[Book]) -> bool:
        """Persist the whole collection. Returns False if the write failed."""
        return self._save(BOOKS_KEY, json.dumps([book.to_dict() for book in books]))

    def load_settings(self) -> Settings:
        theme = self.backend.get(THEME_KEY) or self.default_settings.theme
        raw_items = self.backend.get(ITEMS_PER_PAGE_KEY)
        try:
            items_per_page = int(raw_items) if raw_items else self.default_settings.items_per_page
        except ValueError:
            logger.warning(f"Ignoring stored items per page value: {raw_items!r}")
            items_per_page = self.default_settings.items_per_page
        return Settings(theme=theme, items_per_page=items_per_page)

    def save_settings(self, settings: Settings) -> bool:
        theme_ok = self._save(THEME_KEY, settings.theme)
        items_ok = self._save(ITEMS_PER_PAGE_KEY, str(settings.items_per_page))
        return theme_ok and items_ok

    def load_search_history(self) -> List[str]:
        data = self._load_json(SEARCH_HISTORY_KEY)
        if not isinstance(data, list):
            return []
        return [item for item in data if isinstance(item, str)]

    def save_search_history(self, history: List[str]) -> bool:
        return self._save(SEARCH_HISTORY_KEY, json.dumps(history))


def create_backend(config):
    """
    Build the key-value backend selected by configuration.

    Args:
        config: Config instance

    Returns:
        MemoryStore, JsonFileStore or Database
    """
    backend = (config.STORAGE_BACKEND or "file").lower()
    if backend == "memory":
        return MemoryStore()
    if backend == "postgres":
        db = Database(config.DATABASE_URL)
        db.init_schema()
        return db
    if backend == "file":
        return JsonFileStore(config.DATA_FILE)
    raise ValueError(f"Unknown storage backend: {config.STORAGE_BACKEND}")
