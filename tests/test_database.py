"""Tests for storage backends and the storage manager."""
import json
import os
from unittest.mock import MagicMock

import psycopg2.pool
import pytest

from bookvault.database import (
    BOOKS_KEY,
    ITEMS_PER_PAGE_KEY,
    THEME_KEY,
    Database,
    JsonFileStore,
    MemoryStore,
    StorageManager,
    create_backend,
)
from bookvault.models import Book, Settings


class ExplodingStore(MemoryStore):
    """Backend whose writes raise."""

    def set(self, key, value):
        raise OSError("disk full")


def test_json_file_store_round_trip(tmp_path):
    """Test that entries survive a new store on the same file."""
    path = tmp_path / "vault.json"
    store = JsonFileStore(str(path))

    assert store.get("missing") is None
    assert store.set("a", "1") is True
    assert store.set("b", "2") is True

    reopened = JsonFileStore(str(path))
    assert reopened.get("a") == "1"
    assert reopened.get("b") == "2"


def test_json_file_store_corrupt_file(tmp_path):
    """Test that an unreadable file behaves as empty."""
    path = tmp_path / "vault.json"
    path.write_text("{broken", encoding="utf-8")

    store = JsonFileStore(str(path))

    assert store.get("a") is None
    assert store.set("a", "1") is True
    assert store.get("a") == "1"


def test_json_file_store_failed_write_cleans_up(tmp_path, monkeypatch):
    """Test that a failed replace leaves no temporary file behind."""
    path = tmp_path / "vault.json"
    store = JsonFileStore(str(path))
    store.set("a", "1")

    def fail_replace(src, dst):
        raise OSError("read-only file system")

    monkeypatch.setattr(os, "replace", fail_replace)

    assert store.set("a", "2") is False
    assert sorted(p.name for p in tmp_path.iterdir()) == ["vault.json"]
    assert store.get("a") == "1"


def test_storage_manager_books_round_trip():
    """Test saving and loading the collection."""
    storage = StorageManager(MemoryStore())
    books = [Book("1", "Dune", "Frank Herbert", tags=("sci-fi",), rating=4, pages=412.5)]

    assert storage.save_books(books) is True
    assert storage.load_books() == books


def test_storage_manager_loads_tags_as_stored():
    """Test that loading does not rewrite stored tags."""
    stored = [{"id": "1", "title": "Dune", "author": "Frank Herbert", "tags": ["sci-fi", "sci-fi", "classic"]}]
    backend = MemoryStore({BOOKS_KEY: json.dumps(stored)})
    storage = StorageManager(backend)

    books = storage.load_books()
    assert books[0].tags == ("sci-fi", "sci-fi", "classic")

    storage.save_books(books)
    assert json.loads(backend.data[BOOKS_KEY])[0]["tags"] == ["sci-fi", "sci-fi", "classic"]


def test_storage_manager_corrupt_books():
    """Test that corrupt stored data loads as an empty catalog."""
    assert StorageManager(MemoryStore({BOOKS_KEY: "not json"})).load_books() == []
    assert StorageManager(MemoryStore({BOOKS_KEY: '{"id": "1"}'})).load_books() == []


def test_storage_manager_write_failure():
    """Test that backend exceptions become a False result."""
    storage = StorageManager(ExplodingStore())

    assert storage.save_books([]) is False
    assert storage.save_search_history(["dune"]) is False


def test_settings_defaults_and_save():
    """Test theme and items-per-page settings."""
    backend = MemoryStore()
    storage = StorageManager(backend, Settings(theme="dark", items_per_page=50))

    assert storage.load_settings() == Settings(theme="dark", items_per_page=50)

    assert storage.save_settings(Settings(theme="notebook", items_per_page=10)) is True
    assert backend.data[THEME_KEY] == "notebook"
    assert backend.data[ITEMS_PER_PAGE_KEY] == "10"
    assert storage.load_settings() == Settings(theme="notebook", items_per_page=10)


def test_settings_bad_items_per_page():
    """Test that a garbage number falls back to the default."""
    storage = StorageManager(MemoryStore({ITEMS_PER_PAGE_KEY: "lots"}))

    assert storage.load_settings().items_per_page == 20


def test_search_history_storage():
    """Test search history persistence and filtering of junk."""
    backend = MemoryStore()
    storage = StorageManager(backend)

    assert storage.load_search_history() == []
    storage.save_search_history(["dune", "hobbit"])
    assert json.loads(backend.data["bookVault_searchHistory"]) == ["dune", "hobbit"]
    assert storage.load_search_history() == ["dune", "hobbit"]

    backend.data["bookVault_searchHistory"] = '["ok", 3, null]'
    assert storage.load_search_history() == ["ok"]


def _mock_pool(monkeypatch):
    pool = MagicMock()
    monkeypatch.setattr(psycopg2.pool, "SimpleConnectionPool", MagicMock(return_value=pool))
    conn = pool.getconn.return_value
    cursor = conn.cursor.return_value.__enter__.return_value
    return pool, conn, cursor


def test_database_get(monkeypatch):
    """Test reading a value through the pool."""
    pool, conn, cursor = _mock_pool(monkeypatch)
    cursor.fetchone.return_value = ("[]",)

    db = Database("postgresql://localhost/test")

    assert db.get(BOOKS_KEY) == "[]"
    cursor.execute.assert_called_once_with("SELECT value FROM kv_store WHERE key = %s", (BOOKS_KEY,))
    pool.putconn.assert_called_once_with(conn)


def test_database_get_missing(monkeypatch):
    """Test that a missing key reads as None."""
    _, _, cursor = _mock_pool(monkeypatch)
    cursor.fetchone.return_value = None

    assert Database("postgresql://localhost/test").get("nope") is None


def test_database_set_commits(monkeypatch):
    """Test upsert and commit."""
    pool, conn, cursor = _mock_pool(monkeypatch)

    db = Database("postgresql://localhost/test")

    assert db.set(THEME_KEY, "dark") is True
    sql, params = cursor.execute.call_args[0]
    assert "ON CONFLICT (key)" in sql
    assert params == (THEME_KEY, "dark")
    conn.commit.assert_called_once()
    pool.putconn.assert_called_once_with(conn)


def test_database_set_failure_rolls_back(monkeypatch):
    """Test that a failed write is reported, not raised."""
    _, conn, cursor = _mock_pool(monkeypatch)
    cursor.execute.side_effect = psycopg2.Error("boom")

    db = Database("postgresql://localhost/test")

    assert db.set(THEME_KEY, "dark") is False
    conn.rollback.assert_called_once()


def test_database_context_manager(monkeypatch):
    """Test that leaving the context closes the pool."""
    pool, _, _ = _mock_pool(monkeypatch)

    with Database("postgresql://localhost/test") as db:
        db.init_schema()

    pool.closeall.assert_called_once()


def test_create_backend(tmp_path):
    """Test backend selection from configuration."""
    class FakeConfig:
        STORAGE_BACKEND = "memory"
        DATA_FILE = str(tmp_path / "vault.json")

    assert isinstance(create_backend(FakeConfig()), MemoryStore)

    FakeConfig.STORAGE_BACKEND = "file"
    backend = create_backend(FakeConfig())
    assert isinstance(backend, JsonFileStore)
    assert backend.path == FakeConfig.DATA_FILE

    FakeConfig.STORAGE_BACKEND = "redis"
    with pytest.raises(ValueError):
        create_backend(FakeConfig())
