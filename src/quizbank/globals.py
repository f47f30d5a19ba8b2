import os
from typing import Dict, Optional

from fastapi.templating import Jinja2Templates

from .config import settings
from .progress import RedisProgressMirror, RemoteProgressMirror
from .questions import QuestionSource
from .session import QuizSession

PACKAGE_DIR = os.path.dirname(os.path.abspath(__file__))

templates = Jinja2Templates(directory=os.path.join(PACKAGE_DIR, "templates"))
question_source = QuestionSource(
    settings.SHEET_CSV_URL,
    snapshot_file=settings.SNAPSHOT_FILE,
    cache_ttl=settings.CACHE_TTL_SECONDS,
    timeout=settings.FETCH_TIMEOUT_SECONDS,
)
progress_mirror: Optional[RemoteProgressMirror] = (
    RedisProgressMirror.from_url(
        settings.REDIS_URL, ttl_seconds=settings.PROGRESS_TTL_DAYS * 24 * 3600
    )
    if settings.REDIS_URL
    else None
)
sessions: Dict[str, QuizSession] = {}
