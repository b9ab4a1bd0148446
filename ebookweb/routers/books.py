# ebookweb/routers/books.py
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ebookweb.db.session import get_db
from ebookweb.models.book import Book
from ebookweb.models.chapter import Chapter
from ebookweb.services.toc_document import ChapterContent, TocDocument

router = APIRouter()


@router.get("/{book_id}/toc")
def show_toc(book_id: int, db: Session = Depends(get_db)):
    book = db.get(Book, book_id)
    if not book:
        raise HTTPException(status_code=404, detail="Book not found")
    # Reader gets a well-formed document even if the stored one is not.
    toc = TocDocument.from_storage(book.toc_json, default_title=book.title)
    return {"book_id": book.id, "toc": toc.to_dict()}


@router.get("/{book_id}/chapters/{chapter_number}")
def show_chapter(book_id: int, chapter_number: int, db: Session = Depends(get_db)):
    chapter = (
        db.query(Chapter)
        .filter(Chapter.book_id == book_id, Chapter.chapter_number == chapter_number)
        .first()
    )
    if not chapter:
        raise HTTPException(status_code=404, detail="Chapter not found")

    # Prev = immediately smaller chapter_number in the same book
    prev = (
        db.query(Chapter.chapter_number)
        .filter(Chapter.book_id == book_id, Chapter.chapter_number < chapter.chapter_number)
        .order_by(Chapter.chapter_number.desc())
        .first()
    )

    # Next = immediately larger
    next_ = (
        db.query(Chapter.chapter_number)
        .filter(Chapter.book_id == book_id, Chapter.chapter_number > chapter.chapter_number)
        .order_by(Chapter.chapter_number.asc())
        .first()
    )

    content = ChapterContent.from_storage(chapter.content)
    return {
        "id": chapter.id,
        "book_id": chapter.book_id,
        "chapter_number": chapter.chapter_number,
        "title": chapter.title or content.display_title(chapter.chapter_number),
        "content": content.data,
        "prev": prev.chapter_number if prev else None,
        "next": next_.chapter_number if next_ else None,
    }
