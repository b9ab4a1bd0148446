# Import every model so Base.metadata sees all tables (Alembic autogenerate).
from ebookweb.models.book import Book  # noqa: F401
from ebookweb.models.chapter import Chapter  # noqa: F401
