# ebookweb/routers/admin/router.py
import json
import logging
import zipfile
from pathlib import PurePosixPath
from typing import Any, Optional

from fastapi import (
    APIRouter,
    Depends,
    Form,
    HTTPException,
    UploadFile,
    File,
    Body,
)
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ebookweb.db.session import get_db, transaction
from ebookweb.models.book import Book
from ebookweb.models.chapter import Chapter
from ebookweb.services.book_import import import_book_archive
from ebookweb.services.chapter_import import (
    add_chapter,
    desired_number_from,
    import_zip,
    numbered_content,
    parse_chapter_file,
    title_from,
)
from ebookweb.services.errors import BadRequest, BookHasNoChapters, TransactionFailure
from ebookweb.services.numbering import allocate_chapter_number
from ebookweb.services.reorder import parse_reorder_items, reorder_chapters
from ebookweb.services.toc_document import TocDocument, as_int, dump_json
from ebookweb.services.toc_rebuild import rebuild_toc

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


# ---------------- Helpers ----------------
def form_int_or_none(v: Any) -> Optional[int]:
    if v is None or str(v).strip() == "":
        return None
    return as_int(v)


def parse_json_or_none(v: Optional[str]):
    if v is None or str(v).strip() == "":
        return None
    try:
        return json.loads(v)
    except ValueError:
        return None


def _book_or_404(db: Session, book_id: int) -> Book:
    book = db.get(Book, book_id)
    if not book:
        raise HTTPException(status_code=404, detail="Book not found")
    return book


def _chapter_or_404(db: Session, chapter_id: int) -> Chapter:
    ch = db.get(Chapter, chapter_id)
    if not ch:
        raise HTTPException(status_code=404, detail="Chapter not found")
    return ch


def _with_warnings(result: dict, warnings) -> dict:
    if warnings:
        result["warnings"] = list(warnings)
    return result
# -----------------------------------------


# --------------- Books --------------------
@router.get("/books")
def book_list(db: Session = Depends(get_db)):
    books = db.query(Book).order_by(Book.created_at.desc(), Book.id.desc()).all()
    return [{"id": b.id, "title": b.title} for b in books]


@router.post("/books", status_code=201)
def book_create(payload: dict = Body(...), db: Session = Depends(get_db)):
    """
    Body: {"title": "...", "toc": {...}?}
    The toc is stored as given: its chapter numbers are the phase ranges the
    first chapter import is placed against.
    """
    title = str((payload or {}).get("title") or "").strip()
    toc = (payload or {}).get("toc")
    if not title and isinstance(toc, dict):
        title = str(toc.get("ebookTitle") or "").strip()
    if not title:
        raise HTTPException(status_code=400, detail="Missing 'title'")
    if toc is not None and not isinstance(toc, dict):
        raise HTTPException(status_code=400, detail="'toc' must be an object")

    with transaction(db):
        book = Book(title=title, toc_json=dump_json(toc) if toc is not None else None)
        db.add(book)
        db.flush()
        book_id = book.id
    return {"book_id": book_id}


@router.post("/books/import", status_code=201)
async def book_import(
    db: Session = Depends(get_db),
    archive: UploadFile = File(..., alias="zip"),
):
    """Zip with toc.json and the chapter files its entries name in jsonFile."""
    blob = await archive.read()
    fallback_title = PurePosixPath(archive.filename or "").stem or None
    try:
        with transaction(db):
            book_id, imported, warnings = import_book_archive(db, blob, fallback_title=fallback_title)
    except zipfile.BadZipFile:
        raise HTTPException(status_code=400, detail="Could not open zip archive")
    except BadRequest as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _with_warnings({"book_id": book_id, "imported": imported}, warnings)


@router.put("/books/{book_id}/import")
async def book_reimport(
    book_id: int,
    db: Session = Depends(get_db),
    archive: UploadFile = File(..., alias="zip"),
):
    """Replace the book's TOC and every chapter with the archive's."""
    blob = await archive.read()
    try:
        with transaction(db):
            book = _book_or_404(db, book_id)
            _, imported, warnings = import_book_archive(db, blob, book_id=book_id, fallback_title=book.title)
    except zipfile.BadZipFile:
        raise HTTPException(status_code=400, detail="Could not open zip archive")
    except BadRequest as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _with_warnings({"book_id": book_id, "imported": imported}, warnings)


@router.delete("/books/{book_id}")
def book_delete(book_id: int, db: Session = Depends(get_db)):
    with transaction(db):
        book = _book_or_404(db, book_id)
        db.delete(book)
    return {"ok": True}
# -----------------------------------------


# --------------- Chapters -----------------
@router.get("/books/{book_id}/chapters")
def chapter_list(book_id: int, db: Session = Depends(get_db)):
    rows = db.execute(
        select(Chapter.id, Chapter.chapter_number, Chapter.title)
        .where(Chapter.book_id == book_id)
        .order_by(Chapter.chapter_number.asc())
    ).all()
    return [{"id": r.id, "chapter_number": r.chapter_number, "title": r.title} for r in rows]


@router.post("/books/{book_id}/chapters", status_code=201)
def chapter_create(book_id: int, payload: dict = Body(...), db: Session = Depends(get_db)):
    """Body: {"chapter_number"?, "title"?, "content"?}"""
    payload = payload or {}
    desired = form_int_or_none(payload.get("chapter_number"))
    title = str(payload.get("title") or "").strip()

    with transaction(db):
        _book_or_404(db, book_id)
        ch, warnings = add_chapter(db, book_id, title=title, content=payload.get("content"), desired_number=desired)
        result = {"chapter_id": ch.id, "chapter_number": ch.chapter_number}
        rebuild_toc(db, book_id)
    return _with_warnings(result, warnings)


@router.post("/books/{book_id}/chapters/import-one", status_code=201)
async def chapter_import_one(
    book_id: int,
    db: Session = Depends(get_db),
    chapter: UploadFile = File(...),
    chapter_number: Optional[str] = Form(None),
    title: Optional[str] = Form(None),
):
    data = parse_chapter_file(await chapter.read())
    if data is None:
        raise HTTPException(status_code=400, detail="Chapter file is not a JSON object")

    desired = form_int_or_none(chapter_number)
    if desired is None:
        desired = desired_number_from(data)
    final_title = (title or "").strip() or title_from(data)

    with transaction(db):
        _book_or_404(db, book_id)
        ch, warnings = add_chapter(db, book_id, title=final_title, content=data, desired_number=desired)
        result = {"chapter_id": ch.id, "chapter_number": ch.chapter_number}
        rebuild_toc(db, book_id)
    return _with_warnings(result, warnings)


@router.post("/books/{book_id}/chapters/import-zip", status_code=201)
async def chapter_import_zip(
    book_id: int,
    db: Session = Depends(get_db),
    archive: UploadFile = File(..., alias="zip"),
):
    blob = await archive.read()
    try:
        with transaction(db):
            _book_or_404(db, book_id)
            imported, warnings = import_zip(db, book_id, blob)
            rebuild_toc(db, book_id)
    except zipfile.BadZipFile:
        raise HTTPException(status_code=400, detail="Could not open zip archive")
    return _with_warnings({"imported": imported}, warnings)


@router.put("/books/{book_id}/chapters/reorder")
def chapter_reorder(book_id: int, payload: Any = Body(...), db: Session = Depends(get_db)):
    """
    Body: {"items": [{"id": 123, "chapter_number": 1}, 456, ...]}
    Array order is the final order; chapter_number defaults to the position.
    """
    try:
        plan = parse_reorder_items(payload)
    except BadRequest as e:
        return JSONResponse({"message": str(e)}, status_code=400)

    try:
        items = reorder_chapters(db, book_id, plan)
    except (BookHasNoChapters, TransactionFailure) as e:
        return JSONResponse(
            {"message": "Failed to update chapter order", "detail": str(e)},
            status_code=500,
        )
    return {"message": "Chapter order saved", "items": [it.to_dict() for it in items]}


@router.get("/chapters/{chapter_id}")
def chapter_get(chapter_id: int, db: Session = Depends(get_db)):
    ch = _chapter_or_404(db, chapter_id)
    return {
        "id": ch.id,
        "book_id": ch.book_id,
        "chapter_number": ch.chapter_number,
        "title": ch.title,
        "content": parse_json_or_none(ch.content),
    }


@router.put("/chapters/{chapter_id}")
def chapter_update(chapter_id: int, payload: dict = Body(...), db: Session = Depends(get_db)):
    """Body: {"title"?, "content"?, "chapter_number"?}"""
    payload = payload or {}
    title = payload.get("title")
    content = payload.get("content")
    desired = form_int_or_none(payload.get("chapter_number"))
    if title is None and content is None and desired is None:
        raise HTTPException(status_code=400, detail="Nothing to update")

    warnings = []
    with transaction(db):
        ch = _chapter_or_404(db, chapter_id)
        book_id = ch.book_id
        renumbered = False
        if desired is not None and desired != ch.chapter_number:
            number, warnings = allocate_chapter_number(db, book_id, desired)
            renumbered = number != ch.chapter_number
            ch.chapter_number = number
        if title is not None:
            ch.title = str(title).strip()
        if content is not None or renumbered:
            body = content if content is not None else parse_json_or_none(ch.content)
            ch.content = numbered_content(body, ch.chapter_number, ch.id)
        db.flush()
        rebuild_toc(db, book_id)
    return _with_warnings({"message": "Chapter updated"}, warnings)


@router.delete("/chapters/{chapter_id}")
def chapter_delete(chapter_id: int, db: Session = Depends(get_db)):
    with transaction(db):
        ch = db.get(Chapter, chapter_id)
        if ch:
            book_id = ch.book_id
            db.delete(ch)
            db.flush()
            rebuild_toc(db, book_id)
    return {"ok": True}
# -----------------------------------------


# --------------- TOC ----------------------
@router.get("/books/{book_id}/toc")
def toc_get(book_id: int, db: Session = Depends(get_db)):
    book = db.get(Book, book_id)
    if not book or not book.toc_json:
        raise HTTPException(status_code=404, detail="No TOC for this book")
    toc = parse_json_or_none(book.toc_json)
    if not isinstance(toc, dict):
        raise HTTPException(status_code=500, detail="Stored TOC is not valid JSON")
    return {"toc": toc}


@router.put("/books/{book_id}/toc")
def toc_put(book_id: int, payload: dict = Body(...), db: Session = Depends(get_db)):
    """
    Raw overwrite of books.toc_json (phase titles, badges...). Chapter lists
    are regenerated by the next chapter mutation or an explicit rebuild.
    """
    toc = (payload or {}).get("toc")
    if not isinstance(toc, dict):
        raise HTTPException(status_code=400, detail="Payload must contain a 'toc' object")
    with transaction(db):
        book = _book_or_404(db, book_id)
        book.toc_json = dump_json(toc)
    return {"message": "TOC updated"}


@router.post("/books/{book_id}/toc/rebuild")
def toc_rebuild(book_id: int, db: Session = Depends(get_db)):
    try:
        with transaction(db):
            _book_or_404(db, book_id)
            rebuild_toc(db, book_id)
    except SQLAlchemyError as e:
        logger.exception("TOC rebuild failed for book %s", book_id)
        return JSONResponse({"message": "TOC rebuild failed", "detail": str(e)}, status_code=500)
    book = db.get(Book, book_id)
    return {"toc": TocDocument.from_storage(book.toc_json, default_title=book.title).to_dict()}
# -----------------------------------------
