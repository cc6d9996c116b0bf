"""Data models for catalog records."""
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

BOOK_STATUSES = ("to-read", "reading", "read")
DEFAULT_STATUS = "to-read"

Number = Union[int, float]


class StatusFilter(str, Enum):
    """Status values a view can be filtered by."""
    ALL = "all"
    TO_READ = "to-read"
    READING = "reading"
    READ = "read"

    @classmethod
    def parse(cls, value: Any) -> Optional["StatusFilter"]:
        """Return the matching variant, or None for anything unrecognized."""
        if isinstance(value, cls):
            return value
        for member in cls:
            if member.value == value:
                return member
        return None


def normalize_whitespace(text: Optional[str]) -> str:
    """Collapse whitespace runs to a single space and trim."""
    return re.sub(r"\s+", " ", text or "").strip()


def utc_now_iso() -> str:
    """Current UTC time as an ISO 8601 string with millisecond precision."""
    now = datetime.now(timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO 8601 timestamp or date into an aware datetime.

    Naive values are taken as local time.

    Args:
        value: Timestamp string (``2024-05-01T10:00:00.000Z``, ``2024-05-01``)

    Returns:
        Aware datetime or None if the value cannot be parsed
    """
    if not value or not isinstance(value, str):
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.astimezone()
    return parsed


def clean_tags(tags: Any) -> Tuple[str, ...]:
    """Trim tags, dropping blank ones and repeats after the first occurrence."""
    if not tags:
        return ()
    if isinstance(tags, str):
        tags = tags.split(",")
    seen = set()
    cleaned = []
    for tag in tags:
        tag = str(tag).strip()
        if tag and tag not in seen:
            seen.add(tag)
            cleaned.append(tag)
    return tuple(cleaned)


def _coerce_tags(tags: Any) -> Tuple[str, ...]:
    # Stored lists are kept as they are; only a comma string is split
    if not tags:
        return ()
    if isinstance(tags, str):
        return clean_tags(tags)
    return tuple(str(tag) for tag in tags)


def _coerce_rating(value: Any) -> Optional[int]:
    if value in (None, "") or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _coerce_pages(value: Any) -> Optional[Number]:
    if value in (None, "") or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return int(number) if number.is_integer() else number


@dataclass(frozen=True)
class Book:
    """A single catalog record."""
    id: str
    title: str
    author: str
    status: str = DEFAULT_STATUS
    isbn: str = ""
    tags: Tuple[str, ...] = field(default_factory=tuple)
    notes: str = ""
    rating: Optional[int] = None
    pages: Optional[Number] = None
    created_at: str = ""
    updated_at: str = ""

    @property
    def surname(self) -> str:
        """Last whitespace-delimited token of the author, lowercased."""
        parts = self.author.split()
        return parts[-1].lower() if parts else ""

    @property
    def haystack(self) -> str:
        """Searchable text: title, author, isbn, notes and tags joined by spaces."""
        return " ".join([self.title, self.author, self.isbn or "", self.notes or "", *self.tags])

    @property
    def tags_str(self) -> str:
        """Format tags as comma-separated string."""
        return ", ".join(self.tags)

    @property
    def created(self) -> Optional[datetime]:
        return parse_timestamp(self.created_at)

    def to_dict(self) -> Dict[str, Any]:
        """Persisted representation."""
        return {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "status": self.status,
            "isbn": self.isbn,
            "tags": list(self.tags),
            "notes": self.notes,
            "rating": self.rating,
            "pages": self.pages,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Book":
        """
        Build a fully-populated record from a stored or user-supplied mapping.

        Accepts both the persisted camelCase timestamp keys and the
        snake_case attribute names. Optional fields get their defaults.
        """
        return cls(
            id=str(data.get("id") or ""),
            title=normalize_whitespace(data.get("title")),
            author=normalize_whitespace(data.get("author")),
            status=data.get("status") or DEFAULT_STATUS,
            isbn=(data.get("isbn") or "").strip(),
            tags=_coerce_tags(data.get("tags")),
            notes=data.get("notes") or "",
            rating=_coerce_rating(data.get("rating")),
            pages=_coerce_pages(data.get("pages")),
            created_at=data.get("createdAt") or data.get("created_at") or "",
            updated_at=data.get("updatedAt") or data.get("updated_at") or "",
        )


# Fields a partial update may change
MUTABLE_FIELDS = ("title", "author", "status", "isbn", "tags", "notes", "rating", "pages")


def merge_book(book: Book, partial: Dict[str, Any], updated_at: str) -> Book:
    """Return a copy of ``book`` with the keys present in ``partial`` replaced."""
    data = book.to_dict()
    for key in MUTABLE_FIELDS:
        if key in partial:
            data[key] = partial[key]
    if "tags" in partial:
        data["tags"] = clean_tags(partial["tags"])
    data["updatedAt"] = updated_at
    return Book.from_dict(data)


@dataclass
class DayCount:
    """Number of records created on one calendar day."""
    date: str
    count: int


@dataclass
class Settings:
    """User display preferences."""
    theme: str = "notebook"
    items_per_page: int = 20


def books_from_dicts(entries: List[Dict[str, Any]]) -> List[Book]:
    """Rebuild records from their persisted form, skipping non-mapping entries."""
    return [Book.from_dict(entry) for entry in entries if isinstance(entry, dict)]
