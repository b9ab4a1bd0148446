# ebookweb/db/session.py
from __future__ import annotations

import os
from contextlib import contextmanager
from typing import Iterator

from dotenv import load_dotenv
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./ebookweb.db")
SQL_ECHO = os.getenv("SQL_ECHO", "0") not in ("0", "false", "False", "")

_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(DATABASE_URL, echo=SQL_ECHO, pool_pre_ping=True, connect_args=_connect_args)
SessionLocal = sessionmaker(bind=engine, autoflush=True, expire_on_commit=True)


def get_db() -> Iterator[Session]:
    """FastAPI dependency: one Session per request, always closed."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def transaction(db: Session) -> Iterator[Session]:
    """
    Unit of work around an existing Session.

    Commits when the block exits cleanly, rolls back and re-raises otherwise.
    Services that only *participate* in a transaction (rebuild_toc) take the
    Session directly and never commit on their own.
    """
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
