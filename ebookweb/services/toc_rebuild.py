# ebookweb/services/toc_rebuild.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Sequence

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from ebookweb.models.book import Book
from ebookweb.models.chapter import Chapter
from ebookweb.services.toc_document import ChapterContent, ChapterEntry, Phase, TocDocument

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PhaseRange:
    min: int
    max: int
    count: int

    def contains(self, number: int) -> bool:
        return self.count > 0 and self.min <= number <= self.max


def _phase_range(phase: Phase) -> PhaseRange:
    numbers = [c.chapter_number for c in phase.chapters]
    if not numbers:
        # empty phase never matches by range
        return PhaseRange(min=0, max=-1, count=0)
    return PhaseRange(min=min(numbers), max=max(numbers), count=len(numbers))


def place_chapters(phases: Sequence[Phase], chapters: Sequence[ChapterEntry]) -> List[List[ChapterEntry]]:
    """
    Distribute ``chapters`` (ascending by number) over ``phases`` using the
    chapter numbers each phase held before.

    Pass A puts a chapter in the first phase whose old [min, max] range holds
    its number. Pass B tops each phase up to its old chapter count, in phase
    order, and whatever is still left goes to the last phase. Each bucket
    comes back sorted by chapter number.
    """
    ranges = [_phase_range(p) for p in phases]
    assigned: List[List[ChapterEntry]] = [[] for _ in phases]
    unassigned: List[ChapterEntry] = []

    for entry in chapters:
        for idx, rng in enumerate(ranges):
            if rng.contains(entry.chapter_number):
                assigned[idx].append(entry)
                break
        else:
            unassigned.append(entry)

    if unassigned:
        pending = iter(unassigned)
        leftover: List[ChapterEntry] = []
        for idx, rng in enumerate(ranges):
            need = max(0, rng.count - len(assigned[idx]))
            while need > 0:
                entry = next(pending, None)
                if entry is None:
                    break
                assigned[idx].append(entry)
                need -= 1
        leftover.extend(pending)
        if leftover:
            logger.debug("Appending %d overflow chapter(s) to the last phase", len(leftover))
            assigned[-1].extend(leftover)

    for bucket in assigned:
        bucket.sort(key=lambda e: e.chapter_number)
    return assigned


def reconcile(toc: TocDocument, rows: Sequence[tuple]) -> TocDocument:
    """
    Pure part of the rebuild: ``rows`` are (chapter_number, content_json)
    pairs ordered by chapter_number. Mutates and returns ``toc``.
    """
    previous: Dict[int, ChapterEntry] = {}
    for entry in toc.all_entries():
        previous[entry.chapter_number] = entry

    fresh: List[ChapterEntry] = []
    for number, raw_content in rows:
        number = int(number)
        old = previous.get(number)
        fresh.append(
            ChapterEntry(
                chapter_number=number,
                chapter_title=ChapterContent.from_storage(raw_content).display_title(number),
                json_file=old.json_file if old else None,
                type=old.type if old else None,
                week=old.week if old else None,
            )
        )

    buckets = place_chapters(toc.phases, fresh)
    for phase, bucket in zip(toc.phases, buckets):
        phase.chapters = bucket
    toc.total_chapters = len(fresh)
    return toc


def rebuild_toc(db: Session, book_id: int) -> None:
    """
    Regenerate books.toc_json from the chapters table.

    Runs inside the caller's unit of work: locks the book row, writes the new
    document, never commits. A missing book is a no-op since callers run this
    unconditionally after chapter mutations.
    """
    book = db.execute(
        select(Book.id, Book.title, Book.toc_json).where(Book.id == book_id).with_for_update()
    ).first()
    if book is None:
        logger.debug("rebuild_toc: book %s not found, skipping", book_id)
        return

    toc = TocDocument.from_storage(book.toc_json, default_title=book.title)

    rows = db.execute(
        select(Chapter.chapter_number, Chapter.content)
        .where(Chapter.book_id == book_id)
        .order_by(Chapter.chapter_number.asc())
    ).all()

    reconcile(toc, [(r.chapter_number, r.content) for r in rows])

    db.execute(update(Book).where(Book.id == book_id).values(toc_json=toc.to_json()))
    logger.info("Rebuilt TOC for book %s (%d chapters, %d phases)", book_id, toc.total_chapters, len(toc.phases))
