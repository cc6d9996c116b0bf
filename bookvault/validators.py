"""Field-format and uniqueness checks for catalog records.

Every check returns a result instead of raising for invalid input, so the
caller decides how to surface problems. Duplicate checks take the record
collection as a parameter and never touch storage.
"""
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Pattern

from bookvault.models import BOOK_STATUSES, Book, normalize_whitespace

ISBN10_PATTERN = re.compile(r"^\d{9}[\dX]$")
ISBN13_PATTERN = re.compile(r"^\d{13}$")
TITLE_PATTERN = re.compile(r"^\S(?:.*\S)?$")
NUMERIC_PATTERN = re.compile(r"^(0|[1-9]\d*)(\.\d{1,2})?$")
FORBIDDEN_CHARS = re.compile(r"[<>{}]")

REQUIRED_FIELDS = ("title", "author", "status")
MAX_TAG_LENGTH = 50


@dataclass
class ValidationResult:
    """Outcome of a validation check."""
    valid: bool
    errors: List[str] = field(default_factory=list)
    missing: List[str] = field(default_factory=list)
    # Non-blocking problems, such as a change that could not be persisted
    warnings: List[str] = field(default_factory=list)
    # Sanitized or normalized output of the check, when it produces one
    value: Any = None

    @property
    def error(self) -> Optional[str]:
        return self.errors[0] if self.errors else None

    def __bool__(self) -> bool:
        return self.valid


@dataclass
class PatternResult:
    """A compiled regular expression, or the reason it failed to compile."""
    pattern: Optional[Pattern] = None
    error: Optional[str] = None

    @property
    def valid(self) -> bool:
        return self.pattern is not None


def _require_str(value: Any, name: str) -> None:
    if value is not None and not isinstance(value, str):
        raise TypeError(f"{name} must be a string, got {type(value).__name__}")


def validate_isbn(isbn: Optional[str]) -> bool:
    """
    Check that an ISBN has the ISBN-10 or ISBN-13 shape.

    Args:
        isbn: ISBN as entered; hyphens and spaces are ignored

    Returns:
        True for an empty ISBN (the field is optional) or a well-shaped one
    """
    _require_str(isbn, "isbn")
    if not isbn:
        return True

    cleaned = re.sub(r"[-\s]", "", isbn)
    if len(cleaned) == 10:
        return bool(ISBN10_PATTERN.match(cleaned))
    if len(cleaned) == 13:
        return bool(ISBN13_PATTERN.match(cleaned))
    return False


def is_isbn_duplicate(isbn: Optional[str], exclude_id: Optional[str], records: Iterable[Book]) -> bool:
    """True if a record other than ``exclude_id`` already has this ISBN."""
    _require_str(isbn, "isbn")
    if not isbn:
        return False
    return any(book.isbn == isbn and book.id != exclude_id for book in records)


def is_author_surname_duplicate(author: Optional[str], exclude_id: Optional[str], records: Iterable[Book]) -> bool:
    """
    True if a record other than ``exclude_id`` has an author with the same surname.

    The surname is the last whitespace-delimited token, compared
    case-insensitively. The catalog allows one author per surname.
    """
    _require_str(author, "author")
    parts = (author or "").split()
    if not parts:
        return False

    surname = parts[-1].lower()
    return any(book.id != exclude_id and book.surname == surname for book in records)


def validate_required_fields(data: Mapping[str, Any]) -> ValidationResult:
    """Check that title, author and status are present and not blank."""
    missing = [
        name for name in REQUIRED_FIELDS
        if not isinstance(data.get(name), str) or not data.get(name).strip()
    ]
    return ValidationResult(valid=not missing, missing=missing)


def validate_tags(tags: Any) -> ValidationResult:
    """
    Validate and sanitize a list of tags.

    Each tag is trimmed. The list is rejected if any tag ends up empty,
    is longer than 50 characters, or contains one of ``<>{}``. Duplicates
    after trimming are dropped, keeping the first occurrence.

    Args:
        tags: List or tuple of tag strings

    Returns:
        Result whose ``value`` is the sanitized tag list when valid
    """
    if not isinstance(tags, (list, tuple)):
        return ValidationResult(valid=False, errors=["Tags must be a list"])

    sanitized: List[str] = []
    for tag in tags:
        if not isinstance(tag, str):
            return ValidationResult(valid=False, errors=["Tags must be strings"])
        cleaned = tag.strip()
        if not cleaned:
            return ValidationResult(valid=False, errors=["Tags cannot be empty"])
        if len(cleaned) > MAX_TAG_LENGTH:
            return ValidationResult(
                valid=False,
                errors=[f"Tag '{cleaned[:20]}...' is longer than {MAX_TAG_LENGTH} characters"]
            )
        if FORBIDDEN_CHARS.search(cleaned):
            return ValidationResult(valid=False, errors=["Tags contain invalid characters"])
        if cleaned not in sanitized:
            sanitized.append(cleaned)

    return ValidationResult(valid=True, value=sanitized)


def parse_tag_string(text: Optional[str]) -> List[str]:
    """Split a comma-separated tag string, dropping blank entries."""
    return [tag.strip() for tag in (text or "").split(",") if tag.strip()]


def validate_search_query(query: Any) -> ValidationResult:
    """
    Validate a search box query.

    An empty query is valid and means "no narrowing".
    """
    if not isinstance(query, str):
        return ValidationResult(valid=False, errors=["Search query must be a string"])
    if FORBIDDEN_CHARS.search(query):
        return ValidationResult(valid=False, errors=["Search query contains invalid characters"])
    return ValidationResult(valid=True, value=query.strip())


def compile_pattern(pattern: str, case_insensitive: bool = True) -> PatternResult:
    """Compile a user-supplied regular expression without raising."""
    _require_str(pattern, "pattern")
    flags = re.IGNORECASE if case_insensitive else 0
    try:
        return PatternResult(pattern=re.compile(pattern, flags))
    except re.error as e:
        return PatternResult(error=f"Invalid regex pattern: {e}")


def validate_regex_pattern(pattern: str, case_insensitive: bool = True) -> ValidationResult:
    """Report whether ``pattern`` compiles as a regular expression."""
    compiled = compile_pattern(pattern, case_insensitive)
    if not compiled.valid:
        return ValidationResult(valid=False, errors=[compiled.error])
    return ValidationResult(valid=True, value=compiled.pattern)


def validate_title(title: Optional[str]) -> ValidationResult:
    if not title:
        return ValidationResult(valid=False, errors=["Title is required"])

    normalized = normalize_whitespace(title)
    if not TITLE_PATTERN.match(normalized):
        return ValidationResult(
            valid=False,
            errors=["Title cannot have leading/trailing spaces or be empty"]
        )
    return ValidationResult(valid=True, value=normalized)


def validate_status(status: Any) -> bool:
    return status in BOOK_STATUSES


def validate_rating(rating: Any) -> bool:
    """Rating is optional; when given it must be an integer from 1 to 5."""
    if rating in (None, ""):
        return True
    if isinstance(rating, bool):
        return False
    if isinstance(rating, float) and not rating.is_integer():
        return False
    try:
        value = int(rating)
    except (TypeError, ValueError):
        return False
    return 1 <= value <= 5


def validate_numeric_field(value: Any, field_name: str = "Numeric field") -> ValidationResult:
    """Non-negative number with at most two decimal places. Empty is allowed."""
    if value in (None, ""):
        return ValidationResult(valid=True)
    if isinstance(value, bool) or not NUMERIC_PATTERN.match(_number_text(value)):
        return ValidationResult(
            valid=False,
            errors=[f"{field_name} must be a valid number (e.g., 0, 123, 45.67)"]
        )
    return ValidationResult(valid=True)


def _number_text(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def validate_book(
    data: Mapping[str, Any],
    existing_records: Iterable[Book] = (),
    exclude_id: Optional[str] = None
) -> ValidationResult:
    """
    Run the record-level checks in order, stopping at the first failing category.

    Order: required fields, ISBN format, ISBN uniqueness, author surname
    uniqueness.

    Args:
        data: Candidate field values
        existing_records: Current collection
        exclude_id: Id of the record being edited, ignored by duplicate checks

    Returns:
        Result with every error of the first failing category
    """
    records = list(existing_records)

    required = validate_required_fields(data)
    if not required.valid:
        return ValidationResult(
            valid=False,
            errors=[f"Missing required fields: {', '.join(required.missing)}"],
            missing=required.missing
        )

    isbn = data.get("isbn") or ""
    # Compare the ISBN the way records store it
    if isinstance(isbn, str):
        isbn = isbn.strip()
    if not validate_isbn(isbn):
        return ValidationResult(
            valid=False,
            errors=["Invalid ISBN format. Please enter a valid 10 or 13-digit ISBN."]
        )

    if is_isbn_duplicate(isbn, exclude_id, records):
        return ValidationResult(valid=False, errors=["A book with this ISBN already exists"])

    if is_author_surname_duplicate(data.get("author"), exclude_id, records):
        return ValidationResult(valid=False, errors=["A book by this author already exists"])

    return ValidationResult(valid=True)


def validate_fields(data: Mapping[str, Any]) -> ValidationResult:
    """
    Format checks for the optional and enumerated fields of a record.

    Only keys present in ``data`` are checked, so the same function serves
    full records and partial updates. All failures are reported together.
    ``value`` holds the sanitized tag list when tags were given.
    """
    errors: List[str] = []
    sanitized: Dict[str, Any] = {}

    if "title" in data:
        title = validate_title(data.get("title"))
        if not title.valid:
            errors.extend(title.errors)

    if "status" in data and not validate_status(data.get("status")):
        errors.append(f"Status must be one of: {', '.join(BOOK_STATUSES)}")

    if "tags" in data and data.get("tags") is not None:
        tags = data.get("tags")
        if isinstance(tags, str):
            tags = parse_tag_string(tags)
        result = validate_tags(tags)
        if result.valid:
            sanitized["tags"] = result.value
        else:
            errors.extend(result.errors)

    if "rating" in data and not validate_rating(data.get("rating")):
        errors.append("Rating must be a whole number from 1 to 5")

    if "pages" in data:
        errors.extend(validate_numeric_field(data.get("pages"), "Pages").errors)

    return ValidationResult(valid=not errors, errors=errors, value=sanitized)
