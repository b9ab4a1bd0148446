"""create books and chapters tables

Revision ID: 4c1e0a7d9b21
Revises:
Create Date: 2026-10-19 09:12:40.118304
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "4c1e0a7d9b21"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "books",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("toc_json", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
    )
    op.create_index("ix_books_id", "books", ["id"], unique=False)

    op.create_table(
        "chapters",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("book_id", sa.Integer(), sa.ForeignKey("books.id", ondelete="CASCADE"), nullable=False),
        sa.Column("chapter_number", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("content", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        # Never deferred: renumbering goes through the offset bump instead.
        sa.UniqueConstraint("book_id", "chapter_number", name="uq_chapters_book_number"),
    )
    op.create_index("ix_chapters_id", "chapters", ["id"], unique=False)
    op.create_index("ix_chapters_book_id", "chapters", ["book_id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_chapters_book_id", table_name="chapters")
    op.drop_index("ix_chapters_id", table_name="chapters")
    op.drop_table("chapters")
    op.drop_index("ix_books_id", table_name="books")
    op.drop_table("books")
