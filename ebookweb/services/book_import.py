# ebookweb/services/book_import.py
"""
Whole-book import: a zip holding ``toc.json`` plus the chapter files its
entries reference through ``jsonFile`` (paths relative to toc.json).

Importing into an existing book replaces its TOC and all of its chapters.
"""
from __future__ import annotations

import io
import logging
import zipfile
from pathlib import PurePosixPath
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from sqlalchemy import delete
from sqlalchemy.orm import Session

from ebookweb.models.book import Book
from ebookweb.models.chapter import Chapter
from ebookweb.services.chapter_import import add_chapter, desired_number_from, parse_chapter_file, title_from
from ebookweb.services.errors import BadRequest
from ebookweb.services.toc_document import as_int, dump_json
from ebookweb.services.toc_rebuild import rebuild_toc

logger = logging.getLogger(__name__)

TOC_FILENAME = "toc.json"


class TocFileEntry(BaseModel):
    """A chapter entry of an imported toc.json; only jsonFile is required."""

    model_config = ConfigDict(extra="ignore")

    chapter_number: Optional[int] = Field(default=None, alias="chapterNumber")
    chapter_title: Any = Field(default=None, alias="chapterTitle")
    json_file: str = Field(alias="jsonFile")

    @field_validator("chapter_number", mode="before")
    @classmethod
    def _lenient_number(cls, value: Any) -> Optional[int]:
        number = as_int(value)
        return number if number and number > 0 else None


def _find_toc(zf: zipfile.ZipFile) -> str:
    candidates = [
        n for n in zf.namelist()
        if not n.endswith("/") and PurePosixPath(n).name.lower() == TOC_FILENAME
    ]
    if not candidates:
        raise BadRequest(f"{TOC_FILENAME} not found in archive")
    # the shallowest toc.json is the book root
    return min(candidates, key=lambda n: (len(PurePosixPath(n).parts), n))


def _toc_entries(toc: Dict[str, Any]) -> List[TocFileEntry]:
    entries: List[TocFileEntry] = []
    phases = toc.get("phases")
    for phase in phases if isinstance(phases, list) else []:
        chapters = phase.get("chapters") if isinstance(phase, dict) else None
        for raw in chapters if isinstance(chapters, list) else []:
            if not isinstance(raw, dict):
                continue
            try:
                entries.append(TocFileEntry.model_validate(raw))
            except ValidationError:
                logger.debug("Skipping TOC entry without jsonFile: %r", raw)
    return entries


def import_book_archive(
    db: Session,
    blob: bytes,
    *,
    book_id: Optional[int] = None,
    fallback_title: Optional[str] = None,
) -> Tuple[int, int, List[str]]:
    """
    Create a book (or replace ``book_id``'s TOC and chapters) from a zip.

    The stored TOC is toc.json as given and the title is its ebookTitle.
    Existing chapters are deleted, then each referenced file is inserted
    through the allocator (number from the entry, else from the file) and
    the TOC is rebuilt. Flushes but never commits; the caller owns the
    transaction. Returns (book_id, imported_count, warnings).
    """
    warnings: List[str] = []
    with zipfile.ZipFile(io.BytesIO(blob)) as zf:
        toc_name = _find_toc(zf)
        toc = parse_chapter_file(zf.read(toc_name))
        if toc is None:
            raise BadRequest(f"Failed to parse {TOC_FILENAME}")
        root = PurePosixPath(toc_name).parent
        members = set(zf.namelist())

        title = str(toc.get("ebookTitle") or fallback_title or "Untitled").strip()
        if book_id is None:
            book = Book(title=title, toc_json=dump_json(toc))
            db.add(book)
            db.flush()
            book_id = book.id
        else:
            book = db.get(Book, book_id)
            if book is None:
                raise LookupError(f"Book {book_id} not found")
            book.title = title
            book.toc_json = dump_json(toc)

        db.execute(delete(Chapter).where(Chapter.book_id == book_id))
        db.flush()

        imported = 0
        for entry in _toc_entries(toc):
            member = str(root / entry.json_file)
            if member not in members:
                warnings.append(f"chapter file not found: {entry.json_file}")
                continue
            data = parse_chapter_file(zf.read(member))
            if data is None:
                warnings.append(f"failed to parse chapter: {entry.json_file}")
                continue
            desired = entry.chapter_number or desired_number_from(data)
            _, w = add_chapter(
                db,
                book_id,
                title=entry.chapter_title or title_from(data),
                content=data,
                desired_number=desired,
            )
            imported += 1
            warnings.extend(w)

    rebuild_toc(db, book_id)
    logger.info("Imported %d chapter(s) into book %s", imported, book_id)
    return book_id, imported, warnings
