"""Search, filter, sort and highlight over the catalog."""
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from bookvault.database import StorageManager
from bookvault.models import EPOCH, Book, StatusFilter, parse_timestamp
from bookvault.state import RecordStore
from bookvault.validators import compile_pattern, validate_search_query

logger = logging.getLogger(__name__)

DEFAULT_MARKER = ("<mark>", "</mark>")
SORT_FIELDS = ("title", "author", "date", "pages", "rating", "status")


@dataclass
class SearchCriteria:
    """Criteria for ``advanced_search``; defaults mean "don't filter"."""
    query: str = ""
    status: str = StatusFilter.ALL.value
    tags: List[str] = field(default_factory=list)
    # (start, end) ISO dates or timestamps, both inclusive
    date_range: Optional[Tuple[str, str]] = None
    rating: Optional[int] = None


def _number(value: Any) -> float:
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return value
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0


_SORT_KEYS: Dict[str, Callable[[Book], Any]] = {
    "title": lambda book: (book.title or "").lower(),
    "author": lambda book: (book.author or "").lower(),
    "date": lambda book: book.created or EPOCH,
    "pages": lambda book: _number(book.pages),
    "rating": lambda book: _number(book.rating),
    "status": lambda book: book.status or "",
}


def sort_books(books: Iterable[Book], field_name: str, order: str = "asc") -> List[Book]:
    """
    Stable sort that returns a new list.

    Args:
        books: Records to sort (left untouched)
        field_name: One of title, author, date, pages, rating, status
        order: "asc" or "desc"

    Returns:
        Sorted copy; unknown fields keep the input order
    """
    key = _SORT_KEYS.get(field_name)
    if key is None:
        return list(books)
    return sorted(books, key=key, reverse=(order == "desc"))


def _text_matcher(term: str, case_insensitive: bool) -> Callable[[Book], bool]:
    if case_insensitive:
        term = term.lower()
        return lambda book: term in book.haystack.lower()
    return lambda book: term in book.haystack


def highlight_matches(
    text: str,
    pattern: str,
    use_regex: bool = False,
    case_insensitive: bool = True,
    marker: Tuple[str, str] = DEFAULT_MARKER
) -> str:
    """
    Wrap every match of ``pattern`` in ``text`` with the highlight marker.

    In text mode the pattern is matched literally. An invalid regex leaves
    the text unchanged.
    """
    if not text or not pattern:
        return text

    source = pattern if use_regex else re.escape(pattern)
    compiled = compile_pattern(source, case_insensitive)
    if not compiled.valid:
        return text

    opening, closing = marker
    # Zero-width matches are left unmarked
    return compiled.pattern.sub(
        lambda m: f"{opening}{m.group(0)}{closing}" if m.group(0) else "",
        text
    )


class SearchEngine:
    """
    Read-only queries over a RecordStore.

    Keeps the search session (the last non-empty query) and a bounded,
    persisted search history. Records are never modified here.
    """

    def __init__(
        self,
        store: RecordStore,
        storage: Optional[StorageManager] = None,
        history_limit: int = 10
    ):
        self.store = store
        self.storage = storage
        self.max_search_history = history_limit
        self.search_history: List[str] = []
        # (query, use_regex, case_insensitive) of the active search, if any
        self._session: Optional[Tuple[str, bool, bool]] = None

    def init(self):
        """Load search history from storage."""
        if self.storage is not None:
            self.search_history = self.storage.load_search_history()[:self.max_search_history]

    # Search

    def search_books(
        self,
        query: str,
        use_regex: bool = False,
        case_insensitive: bool = True
    ) -> List[Book]:
        """
        Search the current filter view.

        Args:
            query: Search box text
            use_regex: Treat the query as a regular expression
            case_insensitive: Ignore case when matching

        Returns:
            Matching records; the filter view for an empty query; an empty
            list for an invalid query or pattern
        """
        validation = validate_search_query(query)
        if not validation.valid:
            logger.warning(f"Invalid search query: {validation.error}")
            return []

        term = validation.value
        if not term:
            self._session = None
            return self.get_filtered_books()

        self._add_to_search_history(term)
        self._session = (term, use_regex, case_insensitive)
        return self._run_query(term, use_regex, case_insensitive)

    def _run_query(self, term: str, use_regex: bool, case_insensitive: bool) -> List[Book]:
        base = self.get_filtered_books()

        if use_regex:
            compiled = compile_pattern(term, case_insensitive)
            if not compiled.valid:
                logger.warning(compiled.error)
                return []
            # Anchors apply to the whole joined haystack, not to single fields
            return [book for book in base if compiled.pattern.search(book.haystack)]

        matches = _text_matcher(term, case_insensitive)
        return [book for book in base if matches(book)]

    def clear_search(self) -> List[Book]:
        """End the search session and return the filter view."""
        self._session = None
        return self.get_filtered_books()

    @property
    def active_query(self) -> Optional[str]:
        return self._session[0] if self._session else None

    # Filter

    def is_valid_filter(self, status: Any) -> bool:
        return StatusFilter.parse(status) is not None

    def set_filter(self, status: Union[str, StatusFilter]) -> Optional[List[Book]]:
        """
        Change the active status filter.

        Returns:
            The new view (re-running the active search, if any), or None
            when ``status`` is not a recognized filter
        """
        selected = StatusFilter.parse(status)
        if selected is None:
            logger.warning(f"Invalid filter: {status!r}")
            return None

        self.store.set_filter(selected.value)
        if self._session is not None:
            return self._run_query(*self._session)
        return self.get_filtered_books()

    def get_filtered_books(self) -> List[Book]:
        return self.store.get_by_status(self.store.get_filter())

    # Advanced search

    def advanced_search(self, criteria: Union[SearchCriteria, Mapping[str, Any]]) -> List[Book]:
        """
        AND-combine text, status, tag, creation date and minimum rating criteria.

        Args:
            criteria: SearchCriteria or a mapping with the same keys

        Returns:
            Records satisfying every criterion that is not left at its default
        """
        if not isinstance(criteria, SearchCriteria):
            criteria = SearchCriteria(**dict(criteria))

        results = list(self.store.get_all())

        if criteria.query and criteria.query.strip():
            validation = validate_search_query(criteria.query)
            if validation.valid:
                matches = _text_matcher(validation.value, True)
                results = [book for book in results if matches(book)]
            else:
                logger.warning(f"Ignoring query text: {validation.error}")

        if criteria.status and criteria.status != StatusFilter.ALL.value:
            results = [book for book in results if book.status == criteria.status]

        if criteria.tags:
            wanted = [tag.lower() for tag in criteria.tags]
            results = [
                book for book in results
                if any(tag in book_tag.lower() for tag in wanted for book_tag in book.tags)
            ]

        if criteria.date_range and all(criteria.date_range):
            start = parse_timestamp(criteria.date_range[0])
            end = parse_timestamp(criteria.date_range[1])
            if start is None or end is None:
                logger.warning(f"Ignoring unparseable date range: {criteria.date_range}")
            else:
                results = [
                    book for book in results
                    if book.created is not None and start <= book.created <= end
                ]

        if criteria.rating is not None:
            results = [book for book in results if _number(book.rating) >= criteria.rating]

        return results

    # Sorting and highlighting

    def sort_books(self, books: Iterable[Book], field_name: str, order: str = "asc") -> List[Book]:
        return sort_books(books, field_name, order)

    def highlight_matches(
        self,
        text: str,
        pattern: str,
        use_regex: bool = False,
        case_insensitive: bool = True,
        marker: Tuple[str, str] = DEFAULT_MARKER
    ) -> str:
        return highlight_matches(text, pattern, use_regex, case_insensitive, marker)

    # Search history

    def _add_to_search_history(self, query: str):
        query = query.strip()
        if not query:
            return

        self.search_history = [item for item in self.search_history if item != query]
        self.search_history.insert(0, query)
        del self.search_history[self.max_search_history:]
        self._save_search_history()

    def _save_search_history(self):
        if self.storage is not None:
            self.storage.save_search_history(self.search_history)

    def get_search_history(self) -> List[str]:
        return list(self.search_history)

    def clear_search_history(self):
        self.search_history = []
        self._save_search_history()

    # Suggestions and quick filters

    def get_search_suggestions(self, query: str) -> List[str]:
        """
        Titles, authors and tags containing ``query``, in collection order.

        Returns at most 10 distinct suggestions; queries shorter than two
        characters get none.
        """
        if not isinstance(query, str) or len(query.strip()) < 2:
            return []

        term = query.strip().lower()
        suggestions: Dict[str, None] = {}
        for book in self.store.get_all():
            for candidate in (book.title, book.author, *book.tags):
                if candidate and term in candidate.lower():
                    suggestions.setdefault(candidate)
        return list(suggestions)[:10]

    def get_quick_filters(self) -> Dict[str, Any]:
        books = self.store.get_all()
        return {
            "recently_added": sort_books(books, "date", "desc")[:5],
            "highly_rated": sort_books(
                [book for book in books if _number(book.rating) >= 4], "rating", "desc"
            ),
            "most_tagged": sorted(
                [book for book in books if book.tags],
                key=lambda book: len(book.tags),
                reverse=True
            )[:5],
            "with_notes": [book for book in books if book.notes and book.notes.strip()],
            "by_status": {
                status.value: [book for book in books if book.status == status.value]
                for status in (StatusFilter.TO_READ, StatusFilter.READING, StatusFilter.READ)
            },
        }

    def get_search_stats(self) -> Dict[str, Any]:
        books: Sequence[Book] = self.store.get_all()
        total = len(books)
        with_notes = sum(1 for book in books if book.notes and book.notes.strip())
        return {
            "total_books": total,
            "searchable_fields": {
                "titles": total,
                "authors": len({book.author for book in books}),
                "tags": len({tag for book in books for tag in book.tags}),
                "notes": with_notes,
            },
            "average_tags_per_book": (
                sum(len(book.tags) for book in books) / total if total else 0.0
            ),
            "books_with_notes": with_notes,
        }
