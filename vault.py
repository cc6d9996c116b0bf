#!/usr/bin/env python3
"""Book Vault CLI - personal catalog search and management."""
import argparse
import json
import sys
from tabulate import tabulate
from bookvault.app import UNSAVED_WARNING, BookVault
from bookvault.config import Config
from bookvault.models import BOOK_STATUSES, StatusFilter
from bookvault.parse import EnvelopeError
from bookvault.search import SORT_FIELDS, SearchCriteria, highlight_matches
import logging

logger = logging.getLogger(__name__)

HIGHLIGHT = ("\033[7m", "\033[0m")


def setup_vault(config: Config) -> BookVault:
    """Initialize the vault."""
    return BookVault.from_config(config)


def _truncate(text: str, width: int) -> str:
    return text[:width] + "..." if len(text) > width else text


def display_books(books, format_type: str, query: str = "", use_regex: bool = False,
                  case_insensitive: bool = True):
    """Display books in specified format."""
    def mark(text):
        if not query:
            return text
        return highlight_matches(text, query, use_regex, case_insensitive, HIGHLIGHT)

    if format_type == "table":
        headers = ["ID", "Title", "Author", "Status", "Rating", "Pages", "Tags"]
        rows = [
            [
                book.id[:8],
                mark(_truncate(book.title, 50)),
                mark(_truncate(book.author, 30)),
                book.status,
                book.rating or "-",
                book.pages if book.pages is not None else "N/A",
                mark(_truncate(book.tags_str, 30))
            ]
            for book in books
        ]
        print("\n" + tabulate(rows, headers=headers, tablefmt="grid"))
        print(f"{len(books)} book(s)")

    elif format_type == "json":
        print(json.dumps([book.to_dict() for book in books], indent=2))

    elif format_type == "compact":
        for i, book in enumerate(books, 1):
            print(f"{i}. {mark(book.title)} - {mark(book.author)} [{book.status}]")


def _resolve_id(vault: BookVault, prefix: str) -> str:
    """Accept a full id or an unambiguous prefix of one."""
    if vault.store.get(prefix):
        return prefix
    matches = [book.id for book in vault.store.get_all() if book.id.startswith(prefix)]
    if len(matches) == 1:
        return matches[0]
    raise SystemExit(f"No unique book matches id '{prefix}'")


def _book_fields(args) -> dict:
    fields = {}
    for name in ("title", "author", "status", "isbn", "tags", "notes", "rating", "pages"):
        value = getattr(args, name, None)
        if value is not None:
            fields[name] = value
    return fields


def _warn_unsaved():
    print(f"⚠️  {UNSAVED_WARNING}")


def _report(result) -> int:
    if result.valid:
        book = result.value
        print(f"✅ {book.title} - {book.author} ({book.id})")
        for warning in result.warnings:
            print(f"⚠️  {warning}")
        return 1 if result.warnings else 0
    for error in result.errors:
        print(f"❌ {error}")
    return 1


def list_books(vault: BookVault, args):
    """List books in the current or given status."""
    if args.status:
        books = vault.search.set_filter(args.status)
    else:
        books = vault.search.get_filtered_books()
    books = vault.search.sort_books(books, args.sort, args.order)
    display_books(books, args.format)


def add_book(vault: BookVault, args):
    """Add a book."""
    return _report(vault.add_book(_book_fields(args)))


def edit_book(vault: BookVault, args):
    """Update fields of an existing book."""
    result = vault.update_book(_resolve_id(vault, args.id), _book_fields(args))
    if result is None:
        print(f"❌ Book not found: {args.id}")
        return 1
    return _report(result)


def delete_book(vault: BookVault, args):
    """Delete a book."""
    book_id = _resolve_id(vault, args.id)
    saved = vault.delete_book(book_id)
    print(f"✅ Deleted {book_id}")
    if not saved:
        _warn_unsaved()
        return 1


def search_books(vault: BookVault, args):
    """Search the catalog."""
    case_insensitive = not args.case_sensitive
    if args.status:
        vault.search.set_filter(args.status)

    books = vault.search.search_books(args.query, use_regex=args.regex,
                                      case_insensitive=case_insensitive)
    if args.sort:
        books = vault.search.sort_books(books, args.sort, args.order)

    display_books(books, args.format, args.query.strip(), args.regex, case_insensitive)


def advanced_search(vault: BookVault, args):
    """Combine several criteria."""
    criteria = SearchCriteria(
        query=args.query or "",
        status=args.status,
        tags=args.tag or [],
        date_range=(args.start, args.end) if args.start and args.end else None,
        rating=args.min_rating
    )
    books = vault.search.advanced_search(criteria)
    display_books(books, args.format)


def show_suggestions(vault: BookVault, args):
    for suggestion in vault.search.get_search_suggestions(args.query):
        print(suggestion)


def show_history(vault: BookVault, args):
    if args.clear:
        vault.search.clear_search_history()
        print("✅ Search history cleared")
        return
    for i, query in enumerate(vault.search.get_search_history(), 1):
        print(f"{i}. {query}")


def show_quick_filters(vault: BookVault, args):
    quick = vault.search.get_quick_filters()
    sections = [
        ("Recently added", quick["recently_added"]),
        ("Highly rated", quick["highly_rated"]),
        ("Most tagged", quick["most_tagged"]),
        ("With notes", quick["with_notes"]),
    ]
    sections += [(f"Status: {status}", books) for status, books in quick["by_status"].items()]
    for title, books in sections:
        print(f"\n{title} ({len(books)})")
        display_books(books, "compact")


def show_stats(vault: BookVault, args):
    """Show catalog statistics."""
    store = vault.store

    print("\n" + "=" * 50)
    print("CATALOG STATISTICS")
    print("=" * 50)
    print(f"Total books: {store.total_count()}")
    print(f"Books with notes: {store.notes_count()}")
    print(f"Top tag: {store.get_top_tag()}")
    print("=" * 50)

    rows = [[day.date, day.count] for day in store.last_7_days()]
    print(tabulate(rows, headers=["Day", "Added"], tablefmt="grid"))
    print()


def export_data(vault: BookVault, args):
    """Export the catalog as a JSON envelope."""
    payload = vault.export_payload()

    if args.output:
        with open(args.output, 'w', encoding='utf-8') as f:
            f.write(payload)
        logger.info(f"✅ Exported {vault.store.total_count()} books to {args.output}")
    else:
        print(payload)


def import_data(vault: BookVault, args):
    """Replace the catalog with an exported JSON envelope."""
    with open(args.file, 'r', encoding='utf-8') as f:
        payload = f.read()

    def confirm(message: str) -> bool:
        print(message)
        if args.yes:
            return True
        return input("[y/N] ").strip().lower() in ("y", "yes")

    try:
        count = vault.import_payload(payload, confirm)
    except EnvelopeError as e:
        print(f"❌ {e}")
        return 1

    if count is None:
        print("Import cancelled")
    else:
        print(f"✅ Imported {count} books")
        if vault.unsaved_changes:
            _warn_unsaved()
            return 1


def settings(vault: BookVault, args):
    if args.theme is not None or args.items_per_page is not None:
        vault.save_settings(theme=args.theme, items_per_page=args.items_per_page)
    current = vault.get_settings()
    print(f"Theme: {current.theme}")
    print(f"Items per page: {current.items_per_page}")


def _add_book_arguments(parser, required: bool):
    parser.add_argument("--title", required=required, help="Book title")
    parser.add_argument("--author", required=required, help="Author full name")
    parser.add_argument("--status", choices=BOOK_STATUSES, default="to-read" if required else None,
                        help="Reading status")
    parser.add_argument("--isbn", help="ISBN-10 or ISBN-13")
    parser.add_argument("--tags", help="Comma-separated tags")
    parser.add_argument("--notes", help="Free-text notes")
    parser.add_argument("--rating", type=int, help="Rating from 1 to 5")
    parser.add_argument("--pages", help="Page count")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Book Vault - personal catalog manager",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Add a book
  %(prog)s add --title "The Hobbit" --author "J. R. R. Tolkien" --tags "fantasy, classic"

  # Regex search, case-sensitive, sorted by rating
  %(prog)s search "^The" --regex --case-sensitive --sort rating --order desc

  # Books tagged fantasy rated 4 or more
  %(prog)s find --tag fantasy --min-rating 4

  # Export and re-import
  %(prog)s export --output books-data.json
  %(prog)s import books-data.json
        """
    )

    formats = ["table", "json", "compact"]
    filters = [status.value for status in StatusFilter]
    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    list_parser = subparsers.add_parser("list", help="List books")
    list_parser.add_argument("--status", choices=filters, help="Status filter")
    list_parser.add_argument("--sort", choices=SORT_FIELDS, default="date", help="Sort field")
    list_parser.add_argument("--order", choices=["asc", "desc"], default="desc", help="Sort order")
    list_parser.add_argument("--format", choices=formats, default="table", help="Output format")

    add_parser = subparsers.add_parser("add", help="Add a book")
    _add_book_arguments(add_parser, required=True)

    edit_parser = subparsers.add_parser("edit", help="Edit a book")
    edit_parser.add_argument("id", help="Book id or unique prefix")
    _add_book_arguments(edit_parser, required=False)

    delete_parser = subparsers.add_parser("delete", help="Delete a book")
    delete_parser.add_argument("id", help="Book id or unique prefix")

    search_parser = subparsers.add_parser("search", help="Search books")
    search_parser.add_argument("query", help="Search query")
    search_parser.add_argument("--regex", action="store_true", help="Treat query as a regular expression")
    search_parser.add_argument("--case-sensitive", action="store_true", help="Match case")
    search_parser.add_argument("--status", choices=filters, help="Status filter")
    search_parser.add_argument("--sort", choices=SORT_FIELDS, help="Sort field")
    search_parser.add_argument("--order", choices=["asc", "desc"], default="asc", help="Sort order")
    search_parser.add_argument("--format", choices=formats, default="table", help="Output format")

    find_parser = subparsers.add_parser("find", help="Advanced search")
    find_parser.add_argument("--query", help="Text to match")
    find_parser.add_argument("--status", choices=filters, default="all", help="Status")
    find_parser.add_argument("--tag", action="append", help="Tag substring (repeatable)")
    find_parser.add_argument("--start", help="Added on or after (YYYY-MM-DD)")
    find_parser.add_argument("--end", help="Added on or before (YYYY-MM-DD)")
    find_parser.add_argument("--min-rating", type=int, help="Minimum rating")
    find_parser.add_argument("--format", choices=formats, default="table", help="Output format")

    suggest_parser = subparsers.add_parser("suggest", help="Search suggestions")
    suggest_parser.add_argument("query", help="Partial query")

    history_parser = subparsers.add_parser("history", help="Show search history")
    history_parser.add_argument("--clear", action="store_true", help="Clear search history")

    subparsers.add_parser("quick", help="Show quick filters")
    subparsers.add_parser("stats", help="Show catalog statistics")

    export_parser = subparsers.add_parser("export", help="Export catalog")
    export_parser.add_argument("--output", help="Output file (default: stdout)")

    import_parser = subparsers.add_parser("import", help="Import catalog (replaces current books)")
    import_parser.add_argument("file", help="JSON file to import")
    import_parser.add_argument("--yes", action="store_true", help="Do not ask for confirmation")

    settings_parser = subparsers.add_parser("settings", help="Show or change settings")
    settings_parser.add_argument("--theme", help="Theme name")
    settings_parser.add_argument("--items-per-page", type=int, help="Items per page")

    return parser


COMMANDS = {
    "list": list_books,
    "add": add_book,
    "edit": edit_book,
    "delete": delete_book,
    "search": search_books,
    "find": advanced_search,
    "suggest": show_suggestions,
    "history": show_history,
    "quick": show_quick_filters,
    "stats": show_stats,
    "export": export_data,
    "import": import_data,
    "settings": settings,
}


def main():
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    config = Config()
    logging.basicConfig(
        level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
        format='%(asctime)s - %(levelname)s - %(message)s'
    )

    try:
        vault = setup_vault(config)
        try:
            exit_code = COMMANDS[args.command](vault, args)
        finally:
            vault.close()

    except KeyboardInterrupt:
        logger.info("\n⚠️  Interrupted by user")
        sys.exit(0)
    except Exception as e:
        logger.error(f"❌ Error: {e}", exc_info=True)
        sys.exit(1)

    sys.exit(exit_code or 0)


if __name__ == "__main__":
    main()
