import logging
import os
from contextlib import asynccontextmanager
from logging.handlers import RotatingFileHandler

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException

from .config import settings
from .database import init_db
from .errors import QuizbankError, SourceUnavailable
from . import globals as app_globals
from .log_handler import SQLiteHandler
from .router import router


# --- Logging Setup ---
def setup_logging():
    logger = logging.getLogger("quizbank")
    logger.setLevel(logging.DEBUG if settings.DEBUG else logging.INFO)

    if not os.path.exists(settings.LOG_DIR):
        os.makedirs(settings.LOG_DIR, exist_ok=True)
    log_path = os.path.join(settings.LOG_DIR, settings.LOG_FILE)
    formatter = logging.Formatter("%(asctime)s - %(levelname)s - %(message)s")
    if not any(isinstance(h, RotatingFileHandler) for h in logger.handlers):
        file_handler = RotatingFileHandler(log_path, maxBytes=5_000_000, backupCount=3)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
    if not any(isinstance(h, SQLiteHandler) for h in logger.handlers):
        db_handler = SQLiteHandler()
        db_handler.setLevel(logging.WARNING)
        db_handler.setFormatter(formatter)
        logger.addHandler(db_handler)
    # Also configure root logger to see logs from other libraries
    logging.basicConfig(level=logging.INFO)


# --- Lifecycle ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        await run_in_threadpool(app_globals.question_source.get_questions)
    except SourceUnavailable as e:
        logging.getLogger("quizbank").error(f"Initial fetch failed: {e}")
    yield


# --- Error Handlers ---
async def quizbank_error_handler(request: Request, exc: QuizbankError):
    return JSONResponse({"error": str(exc)}, status_code=exc.status_code)


async def http_error_handler(request: Request, exc: HTTPException):
    return JSONResponse({"error": exc.detail}, status_code=exc.status_code)


# --- App Factory ---
def create_app() -> FastAPI:
    init_db()
    setup_logging()
    app = FastAPI(
        title=settings.PROJECT_NAME,
        debug=settings.DEBUG,
        lifespan=lifespan,
        root_path=settings.ROOT_PATH,
    )

    app.mount(
        "/static", StaticFiles(directory=os.path.join(app_globals.PACKAGE_DIR, "static")), name="static"
    )

    app.include_router(router)
    app.add_exception_handler(QuizbankError, quizbank_error_handler)
    app.add_exception_handler(HTTPException, http_error_handler)

    return app
