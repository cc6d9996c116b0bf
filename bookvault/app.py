"""Wires storage, state and search together behind one facade."""
import logging
from typing import Any, Callable, Dict, Optional, Union

from bookvault.config import Config
from bookvault.database import StorageManager, create_backend
from bookvault.models import Settings
from bookvault.parse import export_json, import_confirmation_message, parse_envelope
from bookvault.search import SearchEngine
from bookvault.state import RecordStore
from bookvault.validators import ValidationResult, validate_book, validate_fields

logger = logging.getLogger(__name__)

UNSAVED_WARNING = "Changes could not be saved to storage and will be lost when the program exits"


class BookVault:
    """
    The catalog application: one storage manager, record store and search engine.

    Components are created once here and handed to the presentation layer;
    nothing looks them up globally.
    """

    def __init__(self, storage: StorageManager, history_limit: int = 10):
        self.storage = storage
        self.store = RecordStore(storage)
        self.search = SearchEngine(self.store, storage, history_limit)

    @classmethod
    def from_config(cls, config: Config) -> "BookVault":
        """
        Build and initialize a vault from configuration.

        Args:
            config: Config instance selecting the storage backend

        Returns:
            Initialized BookVault
        """
        storage = StorageManager(
            create_backend(config),
            Settings(theme=config.DEFAULT_THEME, items_per_page=config.DEFAULT_ITEMS_PER_PAGE)
        )
        vault = cls(storage, history_limit=config.SEARCH_HISTORY_LIMIT)
        vault.init()
        return vault

    def init(self):
        self.store.init()
        self.search.init()

    def close(self):
        close = getattr(self.storage.backend, "close", None)
        if close is not None:
            close()

    @property
    def unsaved_changes(self) -> bool:
        """True while the last catalog change has not reached storage."""
        return self.store.unsaved_changes

    def _saved(self, book) -> ValidationResult:
        warnings = [UNSAVED_WARNING] if self.store.unsaved_changes else []
        return ValidationResult(valid=True, value=book, warnings=warnings)

    # Book management

    def add_book(self, data: Dict[str, Any]) -> ValidationResult:
        """
        Validate and add a record.

        Returns:
            Result whose ``value`` is the new Book when valid; ``warnings``
            notes a change that could not be persisted
        """
        validation = validate_book(data, self.store.get_all())
        if not validation.valid:
            return validation

        fields = validate_fields(data)
        if not fields.valid:
            return fields

        book = self.store.add({**data, **fields.value})
        return self._saved(book)

    def update_book(self, book_id: str, partial: Dict[str, Any]) -> Optional[ValidationResult]:
        """
        Validate and apply a partial update.

        The merged record must still pass every check, ignoring itself in
        the duplicate checks.

        Returns:
            Result whose ``value`` is the updated Book, or None if the id is unknown
        """
        current = self.store.get(book_id)
        if current is None:
            return None

        merged = current.to_dict()
        merged.update(partial)

        validation = validate_book(merged, self.store.get_all(), exclude_id=book_id)
        if not validation.valid:
            return validation

        fields = validate_fields(partial)
        if not fields.valid:
            return fields

        book = self.store.update(book_id, {**partial, **fields.value})
        return self._saved(book)

    def delete_book(self, book_id: str) -> bool:
        """Remove a record. Returns False if the change could not be persisted."""
        return self.store.delete(book_id)

    # Import/Export

    def export_payload(self) -> str:
        return export_json(self.store.get_all())

    def import_payload(
        self,
        payload: Union[str, bytes, Dict[str, Any]],
        confirm: Callable[[str], bool]
    ) -> Optional[int]:
        """
        Replace the catalog with the contents of an import envelope.

        Args:
            payload: Envelope as JSON text or decoded dict
            confirm: Asked with a message naming current and incoming counts

        Returns:
            Number of imported books, or None if the user declined.
            Check ``unsaved_changes`` afterwards for a failed write.

        Raises:
            EnvelopeError: payload is malformed; the catalog is untouched
        """
        books = parse_envelope(payload)
        message = import_confirmation_message(self.store.total_count(), len(books))
        if not confirm(message):
            logger.info("Import cancelled by user")
            return None

        self.store.import_all(books)
        return len(books)

    # Settings

    def get_settings(self) -> Settings:
        return self.storage.load_settings()

    def save_settings(self, theme: Optional[str] = None, items_per_page: Optional[int] = None) -> bool:
        settings = self.storage.load_settings()
        if theme is not None:
            settings.theme = theme
        if items_per_page is not None:
            settings.items_per_page = int(items_per_page)
        return self.storage.save_settings(settings)
