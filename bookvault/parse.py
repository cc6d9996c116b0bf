"""Build and parse the JSON import/export envelope."""
import json
import logging
import uuid
from typing import Any, Dict, Iterable, List, Optional, Union

from bookvault.models import DEFAULT_STATUS, Book, clean_tags, utc_now_iso
from bookvault.validators import parse_tag_string

logger = logging.getLogger(__name__)

ENVELOPE_VERSION = "1.0"


class EnvelopeError(ValueError):
    """Raised when an import payload cannot be used."""


def new_book_id() -> str:
    return uuid.uuid4().hex


def book_to_export(book: Book) -> Dict[str, Any]:
    """Simplified export form of a record."""
    return {
        "id": book.id,
        "title": book.title,
        "author": book.author,
        "isbn": book.isbn or "",
        "pages": book.pages or 0,
        "tag": ", ".join(book.tags),
        "dateAdded": book.created_at,
    }


def build_envelope(books: Iterable[Book], now: Optional[str] = None) -> Dict[str, Any]:
    """
    Wrap records in the export envelope.

    Args:
        books: Records to export
        now: Timestamp for the metadata block (defaults to current time)

    Returns:
        Envelope dictionary with ``books`` and ``metadata``
    """
    now = now or utc_now_iso()
    items = [book_to_export(book) for book in books]
    return {
        "books": items,
        "metadata": {
            "version": ENVELOPE_VERSION,
            "createdAt": now,
            "lastModified": now,
            "totalBooks": len(items),
        },
    }


def export_json(books: Iterable[Book]) -> str:
    return json.dumps(build_envelope(books), indent=2)


def normalize_imported_book(entry: Dict[str, Any], now: Optional[str] = None) -> Book:
    """
    Turn one imported entry into a complete record.

    Handles both the simplified export form (``tag`` string, ``dateAdded``)
    and the full stored form (``tags`` list, ``createdAt``/``updatedAt``).

    Args:
        entry: Single item from the envelope's ``books`` array
        now: Fallback timestamp for missing dates

    Returns:
        Book with every field populated
    """
    now = now or utc_now_iso()

    tags = entry.get("tags")
    if not isinstance(tags, (list, tuple)):
        tag_string = entry.get("tag")
        tags = parse_tag_string(tag_string) if isinstance(tag_string, str) else []

    return Book.from_dict({
        "id": entry.get("id") or new_book_id(),
        "title": entry.get("title") or "",
        "author": entry.get("author") or "",
        "status": entry.get("status") or DEFAULT_STATUS,
        "isbn": entry.get("isbn") or "",
        "tags": clean_tags(tags),
        "notes": entry.get("notes") or "",
        "rating": entry.get("rating"),
        "pages": entry.get("pages"),
        "createdAt": entry.get("createdAt") or entry.get("dateAdded") or now,
        "updatedAt": entry.get("updatedAt") or now,
    })


def deduplicate_books(books: List[Book]) -> List[Book]:
    """
    Remove duplicate books by ID.

    Args:
        books: List of Book objects

    Returns:
        Deduplicated list of books, first occurrence wins
    """
    seen_ids = set()
    unique_books = []

    for book in books:
        if book.id not in seen_ids:
            seen_ids.add(book.id)
            unique_books.append(book)
        else:
            logger.warning(f"Dropping imported book with duplicate id {book.id}")

    return unique_books


def parse_envelope(payload: Union[str, bytes, Dict[str, Any]]) -> List[Book]:
    """
    Parse an import payload into normalized records.

    Args:
        payload: JSON text or an already-decoded envelope

    Returns:
        Normalized, id-unique list of Book objects

    Raises:
        EnvelopeError: payload is not JSON or has no ``books`` array
    """
    if isinstance(payload, (str, bytes)):
        try:
            data = json.loads(payload)
        except ValueError:
            raise EnvelopeError(
                "Error reading JSON file. Please make sure it's a valid JSON file."
            ) from None
    else:
        data = payload

    if not isinstance(data, dict) or not isinstance(data.get("books"), list):
        raise EnvelopeError("Invalid JSON file format: expected an object with a 'books' array.")

    now = utc_now_iso()
    books = []
    for index, entry in enumerate(data["books"]):
        if not isinstance(entry, dict):
            logger.warning(f"Skipping imported entry {index}: not an object")
            continue
        books.append(normalize_imported_book(entry, now))

    return deduplicate_books(books)


def import_confirmation_message(current_count: int, incoming_count: int) -> str:
    return (
        f"Found {incoming_count} books to import.\n\n"
        f"Current library: {current_count} books\n"
        f"Importing: {incoming_count} books\n\n"
        f"Your current library will be replaced by the imported books.\n\n"
        f"Continue with import?"
    )
