from __future__ import annotations

import json
from typing import Optional

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from ebookweb.db.base import Base
from ebookweb.models.book import Book
from ebookweb.models.chapter import Chapter
import ebookweb.models  # noqa: F401


@pytest.fixture()
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=True, expire_on_commit=True)


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def client(session_factory):
    from fastapi.testclient import TestClient

    from ebookweb.db.session import get_db
    from ebookweb.main import app

    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.pop(get_db, None)


# ---------- helpers ----------
def make_book(db, *, title: str = "Sample Book", toc=None, raw_toc: Optional[str] = None) -> int:
    toc_json = raw_toc if raw_toc is not None else (json.dumps(toc, ensure_ascii=False) if toc is not None else None)
    book = Book(title=title, toc_json=toc_json)
    db.add(book)
    db.commit()
    return book.id


def add_chapter(db, book_id: int, number: int, *, content=None, title: str = "", id: Optional[int] = None) -> int:
    ch = Chapter(
        id=id,
        book_id=book_id,
        chapter_number=number,
        title=title,
        content=json.dumps(content, ensure_ascii=False) if content is not None else None,
    )
    db.add(ch)
    db.commit()
    return ch.id


def stored_toc(db, book_id: int) -> dict:
    raw = db.execute(select(Book.toc_json).where(Book.id == book_id)).scalar_one()
    return json.loads(raw)


def chapter_numbers(toc: dict):
    return [[c["chapterNumber"] for c in phase["chapters"]] for phase in toc["phases"]]


def rows_by_id(db, book_id: int) -> dict:
    rows = db.execute(
        select(Chapter.id, Chapter.chapter_number, Chapter.content).where(Chapter.book_id == book_id)
    ).all()
    return {r.id: (r.chapter_number, json.loads(r.content) if r.content else None) for r in rows}
