# ebookweb/services/numbering.py
from __future__ import annotations

from typing import List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from ebookweb.models.chapter import Chapter


def _is_taken(db: Session, book_id: int, number: int) -> bool:
    return (
        db.execute(
            select(Chapter.id).where(Chapter.book_id == book_id, Chapter.chapter_number == number).limit(1)
        ).first()
        is not None
    )


def allocate_chapter_number(db: Session, book_id: int, desired: Optional[int] = None) -> Tuple[int, List[str]]:
    """
    Smallest free chapter_number >= ``desired`` (None / <= 0 means 1) for the book.

    Steps one number at a time and returns one warning per occupied number
    it had to skip, so import endpoints can report the renumbering.
    """
    warnings: List[str] = []
    number = desired if (desired and desired > 0) else 1
    while _is_taken(db, book_id, number):
        warnings.append(f"chapter_number {number} đã tồn tại, chương được gán thành {number + 1}")
        number += 1
    return number, warnings
