"""In-memory catalog state with write-through persistence."""
import logging
from collections import Counter
from datetime import date, datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple

from bookvault.database import StorageManager
from bookvault.models import (
    EPOCH, Book, DayCount, MUTABLE_FIELDS, StatusFilter, clean_tags, merge_book,
    parse_timestamp, utc_now_iso,
)
from bookvault.parse import new_book_id

logger = logging.getLogger(__name__)

NO_DATA = "None"


class RecordStore:
    """
    Owns the record collection and the active status filter.

    Every mutation is written through to storage immediately. When a write
    fails the in-memory change is kept and ``unsaved_changes`` stays True
    until a later write succeeds.
    """

    def __init__(self, storage: StorageManager):
        self.storage = storage
        self._books: List[Book] = []
        self._filter = StatusFilter.ALL.value
        self.unsaved_changes = False

    def init(self):
        """Load the collection from storage."""
        self._books = self.storage.load_books()
        self.unsaved_changes = False

    def _persist(self) -> bool:
        ok = self.storage.save_books(self._books)
        self.unsaved_changes = not ok
        if not ok:
            logger.error(f"Catalog changes not persisted ({len(self._books)} books in memory)")
        return ok

    def _new_id(self) -> str:
        existing = {book.id for book in self._books}
        book_id = new_book_id()
        while book_id in existing:
            book_id = new_book_id()
        return book_id

    # Book management

    def add(self, data: Dict[str, Any]) -> Book:
        """
        Create a record from already-validated field values.

        Args:
            data: Field values; ``id`` and timestamps are assigned here

        Returns:
            The stored Book
        """
        now = utc_now_iso()
        fields = {key: data[key] for key in MUTABLE_FIELDS if key in data}
        if "tags" in fields:
            fields["tags"] = clean_tags(fields["tags"])
        book = Book.from_dict({**fields, "id": self._new_id(), "createdAt": now, "updatedAt": now})

        self._books.append(book)
        self._persist()
        logger.info(f"Added book {book.id}: {book.title}")
        return book

    def update(self, book_id: str, partial: Dict[str, Any]) -> Optional[Book]:
        """
        Merge ``partial`` into an existing record.

        Only keys present in ``partial`` change; ``id`` and ``created_at``
        are preserved and ``updated_at`` is refreshed.

        Returns:
            Updated Book, or None if ``book_id`` is unknown
        """
        for index, book in enumerate(self._books):
            if book.id == book_id:
                break
        else:
            return None

        ignored = [key for key in partial if key not in MUTABLE_FIELDS]
        if ignored:
            logger.warning(f"Ignoring non-editable fields on update: {', '.join(ignored)}")

        updated = merge_book(book, partial, utc_now_iso())
        self._books[index] = updated
        self._persist()
        return updated

    def delete(self, book_id: str) -> bool:
        """
        Remove a record if present. The collection is persisted either way.

        Returns:
            False if the write failed
        """
        self._books = [book for book in self._books if book.id != book_id]
        return self._persist()

    def get(self, book_id: str) -> Optional[Book]:
        return next((book for book in self._books if book.id == book_id), None)

    def get_all(self) -> Tuple[Book, ...]:
        return tuple(self._books)

    def get_by_status(self, status: str) -> List[Book]:
        if status == StatusFilter.ALL.value:
            return list(self._books)
        return [book for book in self._books if book.status == status]

    # Filter management

    def set_filter(self, status: str):
        self._filter = status.value if isinstance(status, StatusFilter) else status

    def get_filter(self) -> str:
        return self._filter

    # Import/Export

    def import_all(self, books: Iterable[Book]) -> bool:
        """Replace the whole collection. No merging."""
        self._books = list(books)
        logger.info(f"Imported {len(self._books)} books, replacing the catalog")
        return self._persist()

    def export_all(self) -> List[Book]:
        return list(self._books)

    # Statistics

    def total_count(self) -> int:
        return len(self._books)

    def notes_count(self) -> int:
        return sum(1 for book in self._books if book.notes and book.notes.strip())

    def top_tag(self) -> Optional[Tuple[str, int]]:
        """Most frequent tag and its count; ties go to the tag seen first."""
        counts = Counter()
        for book in self._books:
            counts.update(book.tags)
        if not counts:
            return None

        best_tag, best_count = None, 0
        # Counter keeps first-insertion order
        for tag, count in counts.items():
            if count > best_count:
                best_tag, best_count = tag, count
        return best_tag, best_count

    def get_top_tag(self) -> str:
        """Top tag formatted for display, or ``NO_DATA`` for an untagged catalog."""
        top = self.top_tag()
        if top is None:
            return NO_DATA
        return f"{top[0]} ({top[1]})"

    def last_7_days(self, today: Optional[date] = None) -> List[DayCount]:
        """
        Books created on each of the last seven local calendar days.

        Args:
            today: Last day of the window (defaults to the local current date)

        Returns:
            Seven DayCount entries, oldest first
        """
        today = today or datetime.now().astimezone().date()
        created_days = Counter()
        for book in self._books:
            created = book.created
            if created is not None:
                created_days[created.astimezone().date()] += 1

        days = []
        for offset in range(6, -1, -1):
            day = today - timedelta(days=offset)
            days.append(DayCount(date=f"{day:%b} {day.day}", count=created_days[day]))
        return days

    def get_recent(self, limit: int = 5) -> List[Book]:
        """Most recently touched books, newest first."""
        return sorted(
            self._books,
            key=lambda book: parse_timestamp(book.updated_at) or book.created or EPOCH,
            reverse=True
        )[:limit]
