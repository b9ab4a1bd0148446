# ebookweb/main.py
import logging
import os

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.middleware.gzip import GZipMiddleware

# ---- Load env (.env) ----
load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("ebookweb")

# ---- Routers ----
from ebookweb.routers.admin.router import router as admin_router  # noqa: E402
from ebookweb.routers import books as books_router  # noqa: E402

app = FastAPI(title="EbookWeb")

# =============================================================================
# Middleware
# =============================================================================
app.add_middleware(GZipMiddleware, minimum_size=500)


# Database errors that escape a route: the unit of work already rolled back.
@app.exception_handler(SQLAlchemyError)
async def handle_db_error(request: Request, exc: SQLAlchemyError):
    logger.error("Database error on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse({"message": "Database error", "detail": str(exc)}, status_code=500)


# =============================================================================
# Routes
# =============================================================================
@app.get("/health")
def health():
    return {"ok": True}


app.include_router(admin_router)                                   # /admin/...
app.include_router(books_router.router, prefix="/books", tags=["books"])
