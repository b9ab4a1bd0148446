# ebookweb/services/errors.py
from __future__ import annotations


class TocError(Exception):
    """Base class for chapter-numbering / TOC failures."""


class BadRequest(TocError, ValueError):
    """Reorder payload is not a list of chapter ids (or is empty after parsing)."""


class BookHasNoChapters(TocError, LookupError):
    def __init__(self, book_id: int):
        super().__init__(f"No chapters found for book {book_id}")
        self.book_id = book_id


class TransactionFailure(TocError):
    """A database error aborted the unit of work; nothing was persisted."""
