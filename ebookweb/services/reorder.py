# ebookweb/services/reorder.py
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel, PositiveInt, ValidationError, field_validator, model_validator
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ebookweb.db.session import transaction
from ebookweb.models.chapter import Chapter
from ebookweb.services.errors import BadRequest, BookHasNoChapters, TransactionFailure
from ebookweb.services.toc_document import ChapterContent
from ebookweb.services.toc_rebuild import rebuild_toc

logger = logging.getLogger(__name__)

# Must exceed any chapter number a book will ever hold; raised per call if not.
CHAPTER_RENUMBER_OFFSET = int(os.getenv("CHAPTER_RENUMBER_OFFSET", "10000"))


class ReorderItem(BaseModel):
    """One applied (id, chapter_number) pair, as returned to the client."""

    id: int
    chapter_number: int

    def to_dict(self) -> Dict[str, int]:
        return self.model_dump()


class ReorderEntry(BaseModel):
    """``{"id": .., "chapter_number": ..?}`` or a bare id."""

    id: int
    chapter_number: Optional[PositiveInt] = None

    @model_validator(mode="before")
    @classmethod
    def _bare_id(cls, value: Any) -> Any:
        return value if isinstance(value, dict) else {"id": value}

    @field_validator("id", mode="before")
    @classmethod
    def _reject_bool(cls, value: Any) -> Any:
        if isinstance(value, bool):
            raise ValueError("id must be a number")
        return value

    @field_validator("chapter_number", mode="before")
    @classmethod
    def _blank_is_position(cls, value: Any) -> Any:
        return None if value == "" else value


class ChaptersReorderRequest(BaseModel):
    """Request body for reordering chapters; a bare list is the items."""

    items: List[Any]

    @model_validator(mode="before")
    @classmethod
    def _bare_list(cls, value: Any) -> Any:
        return {"items": value} if isinstance(value, list) else value


@dataclass
class ReorderPlan:
    """Client ordering: chapter id -> final number, in payload order."""

    numbers: Dict[int, int] = field(default_factory=dict)
    next_position: int = 1

    def resolve(self, existing_ids: Sequence[int]) -> Dict[int, int]:
        """
        Final mapping for the chapters that actually exist: payload ids first,
        then ids the client left out, in their current order, numbered from
        the next free position.
        """
        existing = set(existing_ids)
        final = {cid: num for cid, num in self.numbers.items() if cid in existing}
        position = self.next_position
        for cid in existing_ids:
            if cid not in self.numbers:
                final[cid] = position
                position += 1
        return final


def parse_reorder_items(payload: Any) -> ReorderPlan:
    """
    Accepts ``{"items": [...]}`` or a bare list. Items without a usable id
    are skipped; a missing chapter_number means the item's 1-based position
    among the recognized items. An explicit chapter_number must be a
    positive integer.
    """
    try:
        request = ChaptersReorderRequest.model_validate(payload)
    except ValidationError as e:
        raise BadRequest("Bad request: items required") from e

    plan = ReorderPlan()
    position = 1
    for raw in request.items:
        try:
            entry = ReorderEntry.model_validate(raw)
        except ValidationError as e:
            failed = {err["loc"][0] for err in e.errors() if err["loc"]}
            if "chapter_number" in failed and "id" not in failed:
                raise BadRequest(
                    f"Bad request: chapter_number must be a positive integer (id {raw.get('id')})"
                ) from e
            continue
        plan.numbers[entry.id] = entry.chapter_number if entry.chapter_number is not None else position
        position += 1

    if not plan.numbers:
        raise BadRequest("Bad request: items empty")
    plan.next_position = position
    return plan


def reorder_chapters(
    db: Session,
    book_id: int,
    items: Any,
    *,
    offset: Optional[int] = None,
) -> List[ReorderItem]:
    """
    Renumber a book's chapters to match the client ordering, atomically.

    All chapter rows are locked first. Every number is then bumped by a large
    offset in one statement so that writing the final numbers row by row can
    never hit UNIQUE(book_id, chapter_number) against a row not yet written.
    Each chapter's content JSON gets the new number and its id, and the TOC is
    rebuilt before the commit. On any failure nothing is persisted.
    """
    plan = items if isinstance(items, ReorderPlan) else parse_reorder_items(items)

    try:
        with transaction(db):
            rows = db.execute(
                select(Chapter.id, Chapter.chapter_number, Chapter.content)
                .where(Chapter.book_id == book_id)
                .order_by(Chapter.chapter_number.asc())
                .with_for_update()
            ).all()
            if not rows:
                raise BookHasNoChapters(book_id)

            final = plan.resolve([row.id for row in rows])

            highest = max(max(row.chapter_number for row in rows), max(final.values()))
            bump = max(offset or CHAPTER_RENUMBER_OFFSET, highest + 1)
            db.execute(
                update(Chapter)
                .where(Chapter.book_id == book_id)
                .values(chapter_number=Chapter.chapter_number + bump)
                .execution_options(synchronize_session=False)
            )

            for row in rows:
                number = final[row.id]
                content = ChapterContent.from_storage(row.content).with_numbering(number, row.id)
                db.execute(
                    update(Chapter)
                    .where(Chapter.id == row.id, Chapter.book_id == book_id)
                    .values(chapter_number=number, content=content.to_json())
                    .execution_options(synchronize_session=False)
                )

            rebuild_toc(db, book_id)
    except SQLAlchemyError as e:
        logger.exception("Reorder failed for book %s, rolled back", book_id)
        raise TransactionFailure(str(e)) from e

    logger.info("Reordered %d chapter(s) for book %s", len(final), book_id)
    return [ReorderItem(id=cid, chapter_number=num) for cid, num in final.items()]
