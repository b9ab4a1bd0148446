# ebookweb/services/chapter_import.py
from __future__ import annotations

import io
import json
import re
import zipfile
from pathlib import PurePosixPath
from typing import Any, List, Optional, Tuple

from sqlalchemy.orm import Session

from ebookweb.models.chapter import Chapter
from ebookweb.services.numbering import allocate_chapter_number
from ebookweb.services.toc_document import ChapterContent, as_int, dump_json

_NUMBER_KEYS = ("chapter_number", "chapterNumber", "number")
_digits_re = re.compile(r"(\d+)")


def natural_key(name: str):
    """'ch2.json' sorts before 'ch10.json'."""
    return [int(part) if part.isdigit() else part.lower() for part in _digits_re.split(name)]


def desired_number_from(data: Any) -> Optional[int]:
    if not isinstance(data, dict):
        return None
    for key in _NUMBER_KEYS:
        value = data.get(key)
        if isinstance(value, bool) or value is None:
            continue
        number = as_int(value)
        if number is not None:
            return number
    return None


def title_from(data: Any) -> str:
    if not isinstance(data, dict):
        return ""
    return data.get("chapterTitle") or data.get("title") or ""


def numbered_content(content: Any, number: int, chapter_id: int) -> str:
    """Storage JSON for a chapter body; objects get the row's number and id embedded."""
    if isinstance(content, dict):
        return ChapterContent(content).with_numbering(number, chapter_id).to_json()
    return dump_json(content)


def add_chapter(
    db: Session,
    book_id: int,
    *,
    title: str,
    content: Any,
    desired_number: Optional[int] = None,
) -> Tuple[Chapter, List[str]]:
    """
    Insert one chapter at the first free number >= desired_number.
    The stored content carries the allocated number and the new row id.
    Flushes but never commits; the caller rebuilds the TOC and commits.
    """
    number, warnings = allocate_chapter_number(db, book_id, desired_number)
    ch = Chapter(book_id=book_id, chapter_number=number, title=title or "")
    db.add(ch)
    db.flush()
    ch.content = numbered_content(content, number, ch.id)
    db.flush()
    return ch, warnings


def parse_chapter_file(raw: bytes) -> Optional[dict]:
    """Chapter files are JSON objects; anything else is rejected (None)."""
    try:
        data = json.loads(raw.decode("utf-8-sig"))
    except (UnicodeDecodeError, ValueError):
        return None
    return data if isinstance(data, dict) and data else None


def import_zip(db: Session, book_id: int, blob: bytes) -> Tuple[int, List[str]]:
    """
    Import every *.json member of a zip archive, in natural filename order.
    Unparsable members are skipped. Returns (imported_count, warnings).
    """
    imported = 0
    warnings: List[str] = []
    with zipfile.ZipFile(io.BytesIO(blob)) as zf:
        names = [
            n for n in zf.namelist()
            if not n.endswith("/") and PurePosixPath(n).suffix.lower() == ".json"
        ]
        for name in sorted(names, key=lambda n: natural_key(PurePosixPath(n).name)):
            data = parse_chapter_file(zf.read(name))
            if data is None:
                continue
            _, w = add_chapter(
                db,
                book_id,
                title=title_from(data),
                content=data,
                desired_number=desired_number_from(data),
            )
            imported += 1
            warnings.extend(w)
    return imported, warnings
