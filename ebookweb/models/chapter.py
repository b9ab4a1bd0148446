# ebookweb/models/chapter.py
from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, UniqueConstraint, func
from sqlalchemy.orm import relationship

from ebookweb.db.base import Base


class Chapter(Base):
    __tablename__ = "chapters"

    id = Column(Integer, primary_key=True, index=True)
    book_id = Column(Integer, ForeignKey("books.id", ondelete="CASCADE"), nullable=False, index=True)
    chapter_number = Column(Integer, nullable=False)
    title = Column(String(255), nullable=False, default="")

    # Chapter JSON (blocks, quiz, meta...). Carries redundant copies of the
    # chapter number that reorder keeps in sync with the row.
    content = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    book = relationship("Book", back_populates="chapters")

    __table_args__ = (
        UniqueConstraint("book_id", "chapter_number", name="uq_chapters_book_number"),
    )
