"""Tests for the record store."""
import json
from datetime import date

from bookvault.database import BOOKS_KEY, MemoryStore, StorageManager
from bookvault.models import Book
from bookvault.state import NO_DATA, RecordStore


class FailingStore(MemoryStore):
    """Backend whose writes always fail."""

    def set(self, key, value):
        return False


def _store(backend=None):
    storage = StorageManager(backend or MemoryStore())
    store = RecordStore(storage)
    store.init()
    return store


def test_add_assigns_id_and_timestamps():
    """Test that add fills in id and both timestamps and persists."""
    store = _store()

    book = store.add({"title": "  Dune ", "author": "Frank  Herbert", "status": "reading", "tags": ["sci-fi"]})

    assert book.id
    assert book.title == "Dune"
    assert book.author == "Frank Herbert"
    assert book.tags == ("sci-fi",)
    assert book.created_at and book.created_at == book.updated_at
    assert store.storage.load_books() == [book]
    assert store.unsaved_changes is False


def test_add_ignores_supplied_id():
    """Test that callers cannot pick the id."""
    store = _store()

    book = store.add({"id": "mine", "title": "Dune", "author": "Frank Herbert", "status": "read"})

    assert book.id != "mine"


def test_ids_are_unique():
    """Test that every added record gets a different id."""
    store = _store()
    ids = {store.add({"title": f"Book {i}", "author": f"Author {i}", "status": "read"}).id for i in range(20)}

    assert len(ids) == 20


def test_update_merges_present_keys_only():
    """Test partial update semantics."""
    store = _store()
    book = store.add({"title": "Dune", "author": "Frank Herbert", "status": "to-read", "notes": "gift"})

    updated = store.update(book.id, {"status": "read", "rating": 5, "id": "other"})

    assert updated.id == book.id
    assert updated.status == "read"
    assert updated.rating == 5
    assert updated.notes == "gift"
    assert updated.title == "Dune"
    assert updated.created_at == book.created_at
    assert updated.updated_at >= book.updated_at
    assert store.get(book.id) == updated
    assert store.storage.load_books() == [updated]


def test_tags_cleaned_on_ingestion_only():
    """Test that add and update clean tags while loaded records keep theirs."""
    backend = MemoryStore({BOOKS_KEY: json.dumps([
        {"id": "old", "title": "Emma", "author": "Jane Austen", "tags": ["classic", "classic"]},
    ])})
    store = _store(backend)

    assert store.get("old").tags == ("classic", "classic")

    added = store.add({"title": "Dune", "author": "Frank Herbert", "tags": [" sci-fi", "sci-fi ", ""]})
    assert added.tags == ("sci-fi",)
    assert store.get("old").tags == ("classic", "classic")

    updated = store.update("old", {"tags": ["romance", " romance"]})
    assert updated.tags == ("romance",)


def test_update_unknown_id():
    """Test that updating a missing record returns None."""
    store = _store()

    assert store.update("missing", {"title": "X"}) is None


def test_delete_missing_id_is_noop():
    """Test that deleting an unknown id leaves stored content unchanged."""
    backend = MemoryStore()
    store = _store(backend)
    store.add({"title": "Dune", "author": "Frank Herbert", "status": "read"})
    before = backend.data[BOOKS_KEY]

    store.delete("missing")

    assert backend.data[BOOKS_KEY] == before
    assert store.total_count() == 1


def test_delete_removes_book():
    """Test delete by id."""
    store = _store()
    book = store.add({"title": "Dune", "author": "Frank Herbert", "status": "read"})

    store.delete(book.id)

    assert store.get(book.id) is None
    assert store.storage.load_books() == []


def test_get_all_is_read_only_view():
    """Test that get_all hands out a tuple."""
    store = _store()
    store.add({"title": "Dune", "author": "Frank Herbert", "status": "read"})

    books = store.get_all()

    assert isinstance(books, tuple)
    assert len(books) == 1


def test_get_by_status_and_filter():
    """Test status views and the active filter."""
    store = _store()
    store.add({"title": "Dune", "author": "Frank Herbert", "status": "read"})
    store.add({"title": "Emma", "author": "Jane Austen", "status": "reading"})

    assert len(store.get_by_status("all")) == 2
    assert [b.title for b in store.get_by_status("reading")] == ["Emma"]
    assert store.get_by_status("to-read") == []

    assert store.get_filter() == "all"
    store.set_filter("read")
    assert store.get_filter() == "read"


def test_import_all_replaces_collection():
    """Test wholesale replacement."""
    store = _store()
    store.add({"title": "Dune", "author": "Frank Herbert", "status": "read"})

    store.import_all([Book("a", "Emma", "Jane Austen")])

    assert [b.id for b in store.get_all()] == ["a"]
    assert [b.id for b in store.storage.load_books()] == ["a"]


def test_failed_write_keeps_memory_state():
    """Test that a persistence failure does not roll back the mutation."""
    store = _store(FailingStore())

    book = store.add({"title": "Dune", "author": "Frank Herbert", "status": "read"})

    assert store.get(book.id) == book
    assert store.unsaved_changes is True


def test_counts():
    """Test total and notes counts."""
    store = _store()
    store.import_all([
        Book("1", "Dune", "Frank Herbert", notes="Spice"),
        Book("2", "Emma", "Jane Austen", notes="   "),
        Book("3", "Ulysses", "James Joyce"),
    ])

    assert store.total_count() == 3
    assert store.notes_count() == 1


def test_top_tag_empty():
    """Test the no-data sentinel."""
    store = _store()

    assert store.top_tag() is None
    assert store.get_top_tag() == NO_DATA


def test_top_tag_counts_and_ties():
    """Test the most frequent tag, ties going to the first encountered."""
    store = _store()
    store.import_all([
        Book("1", "A", "Ann One", tags=("sci-fi",)),
        Book("2", "B", "Bob Two", tags=("fantasy",)),
    ])
    assert store.get_top_tag() == "sci-fi (1)"

    store.import_all([
        Book("1", "A", "Ann One", tags=("sci-fi", "fantasy")),
        Book("2", "B", "Bob Two", tags=("fantasy",)),
    ])
    assert store.top_tag() == ("fantasy", 2)


def test_last_7_days():
    """Test the daily creation histogram."""
    store = _store()
    store.import_all([
        Book("1", "A", "Ann One", created_at="2024-05-10T08:00:00"),
        Book("2", "B", "Bob Two", created_at="2024-05-10T23:00:00"),
        Book("3", "C", "Cat Three", created_at="2024-05-04T09:00:00"),
        Book("4", "D", "Dan Four", created_at="2024-05-03T09:00:00"),
        Book("5", "E", "Eve Five", created_at="not a date"),
    ])

    days = store.last_7_days(today=date(2024, 5, 10))

    assert [d.date for d in days] == ["May 4", "May 5", "May 6", "May 7", "May 8", "May 9", "May 10"]
    assert [d.count for d in days] == [1, 0, 0, 0, 0, 0, 2]


def test_get_recent():
    """Test that recent books are ordered by last change."""
    store = _store()
    store.import_all([
        Book("1", "A", "Ann One", created_at="2024-01-01T00:00:00.000Z", updated_at="2024-01-01T00:00:00.000Z"),
        Book("2", "B", "Bob Two", created_at="2024-01-02T00:00:00.000Z", updated_at="2024-03-01T00:00:00.000Z"),
        Book("3", "C", "Cat Three", created_at="2024-02-01T00:00:00.000Z", updated_at="2024-02-01T00:00:00.000Z"),
    ])

    assert [b.id for b in store.get_recent(2)] == ["2", "3"]
