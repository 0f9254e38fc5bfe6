import argparse
import os
import sys
from contextlib import asynccontextmanager
from pathlib import Path

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from loguru import logger

# Add project root to path for package imports
base_dir = Path(__file__).parent
sys.path.insert(0, str(base_dir))

from db.database import StoreError, InvariantViolation, init_db
from config import load_config
from routes import books, practice, review, curveball, admin  # Import routers

LOG_FORMAT = "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {name}:{line} - {message}"


def configure_logging(level: str = None) -> None:
    """Send loguru output to stderr at the configured level."""
    level = (level or os.getenv("BOOKCOACH_LOG_LEVEL", "INFO")).upper()
    logger.remove()
    logger.add(sys.stderr, level=level, format=LOG_FORMAT)


# First-run init
@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: init DB and config
    configure_logging()
    load_config()  # Ensures config exists
    init_db()
    yield


app = FastAPI(
    title="BookCoach",
    description="Coverage, review and mastery scheduling for learning from books",
    lifespan=lifespan,
)

# Include routers
app.include_router(books.router, prefix="/books", tags=["books"])
app.include_router(practice.router, prefix="/practice", tags=["practice"])
app.include_router(review.router, prefix="/review", tags=["review"])
app.include_router(curveball.router, prefix="/curveball", tags=["curveball"])
app.include_router(admin.router, prefix="/admin", tags=["admin"])


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    logger.error("Store error on {} {}: {}", request.method, request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": "Storage temporarily unavailable, please retry"})


@app.exception_handler(InvariantViolation)
async def invariant_violation_handler(request: Request, exc: InvariantViolation):
    logger.error("Invariant violated on {} {}: {}", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=500,
        content={"detail": "Inconsistent records; run POST /admin/reconcile"},
    )


@app.get("/")
async def home():
    return {"app": "bookcoach", "status": "ok"}


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="BookCoach App")
    parser.add_argument("--init", action="store_true", help="Initialize DB and config")
    parser.add_argument("--dev", action="store_true", help="Run in dev mode with reload")
    args = parser.parse_args()
    configure_logging()
    if args.init:
        load_config()  # Ensures config is copied if missing
        init_db()
        logger.info("DB initialized and config copied to ~/.bookcoach/")
        sys.exit(0)
    # Run server
    port = 8000
    reload = args.dev
    uvicorn.run("main:app", host="127.0.0.1", port=port, reload=reload, log_level="info")
