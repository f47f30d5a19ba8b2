import asyncio
import logging
import uuid
from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Cookie, Depends, Header, HTTPException, Request, Response
from fastapi.responses import HTMLResponse
from starlette.concurrency import run_in_threadpool

from . import catalogue
from . import globals as app_globals
from .bookmarks import BookmarkStore
from .config import settings
from .errors import SourceUnavailable
from .models import AnswerRequest, BookmarkRequest, ModeRequest, TestStartRequest
from .progress import LocalProgressStore, ProgressStore, RemoteProgressMirror
from .questions import QuestionSource
from .session import QuizSession

logger = logging.getLogger(__name__)

router = APIRouter()


# --- Dependencies ---
def get_source() -> QuestionSource:
    return app_globals.question_source


def get_mirror() -> Optional[RemoteProgressMirror]:
    return app_globals.progress_mirror


def get_session_id(
    session_id: Optional[str] = Cookie(None, alias=settings.SESSION_COOKIE_NAME)
) -> Optional[str]:
    return session_id


def get_identity(x_user_id: Optional[str] = Header(None)) -> Optional[str]:
    """Identity of an already-authenticated caller, used for the progress mirror."""
    return x_user_id or None


def _expired(session: QuizSession, now: datetime) -> bool:
    return now - session.created_at > timedelta(minutes=settings.SESSION_TIMEOUT_MINUTES)


def get_active_session(session_id: Optional[str]) -> Optional[QuizSession]:
    if not session_id or session_id not in app_globals.sessions:
        return None
    session = app_globals.sessions[session_id]
    if _expired(session, datetime.now()):
        del app_globals.sessions[session_id]
        return None
    return session


def prune_sessions() -> int:
    """Drops expired sessions and stops their test timers."""
    now = datetime.now()
    stale = [sid for sid, s in app_globals.sessions.items() if _expired(s, now)]
    for sid in stale:
        session = app_globals.sessions.pop(sid)
        if session.test is not None:
            session.test.stop()
    if stale:
        logger.info(f"Pruned {len(stale)} expired sessions")
    return len(stale)


def require_session(
    session_id: Optional[str] = Depends(get_session_id),
    identity: Optional[str] = Depends(get_identity),
) -> QuizSession:
    session = get_active_session(session_id)
    if session is None:
        raise HTTPException(status_code=401, detail="Session invalid")
    session.store.identity = identity
    return session


def _log_transition(session: QuizSession) -> None:
    logger.debug(
        f"Session {session.session_key}: {session.state.value} "
        f"index={session.current_index} score={session.score}"
    )


def create_session(
    client_id: str, source: QuestionSource, mirror: Optional[RemoteProgressMirror]
) -> QuizSession:
    prune_sessions()
    store = ProgressStore(LocalProgressStore(client_id), remote=mirror)
    session = QuizSession(source, store, bookmarks=BookmarkStore(client_id))
    session.subscribe(_log_transition)
    app_globals.sessions[client_id] = session
    return session


# --- Question data ---
@router.get("/api/years")
async def get_years(source: QuestionSource = Depends(get_source)):
    return await run_in_threadpool(source.get_years)


@router.get("/api/questions/{year}")
async def get_questions_for_year(
    year: int, tags: Optional[str] = None, source: QuestionSource = Depends(get_source)
):
    return await run_in_threadpool(source.fetch_questions, year=year, tag=tags)


@router.get("/api/tags/{tag}")
async def get_questions_for_tag(tag: str, source: QuestionSource = Depends(get_source)):
    return await run_in_threadpool(source.fetch_questions, tag=tag)


@router.post("/api/refresh")
async def refresh_questions(source: QuestionSource = Depends(get_source)):
    try:
        data = await run_in_threadpool(source.refresh)
    except SourceUnavailable as e:
        raise HTTPException(status_code=500, detail=f"Failed to refresh data: {e}")
    return {"success": True, "count": len(data), "message": "Data refreshed from sheet"}


@router.get("/api/sets/{tag}")
async def get_sets(
    tag: str,
    source: QuestionSource = Depends(get_source),
    session_id: Optional[str] = Depends(get_session_id),
):
    """Practice sets and mock papers for a tag, with saved progress when known."""
    session = get_active_session(session_id)

    def _build():
        pool = catalogue.sort_by_id(source.fetch_questions(tag=tag))
        regular, mock = catalogue.split_mock(pool)
        sets = catalogue.build_sets(tag, regular, settings.SET_SIZE)
        papers = catalogue.group_mock_papers(mock)
        if session is not None:
            for item in sets + papers:
                item.progress = session.store.load(item.key)
        return sets, papers

    sets, papers = await run_in_threadpool(_build)

    def _card(item):
        return {
            "key": item.key,
            "title": item.title,
            "description": item.description,
            "count": len(item.questions),
            "progress": item.progress.model_dump(exclude={"questions"}) if item.progress else None,
        }

    return {"sets": [_card(s) for s in sets], "mock_papers": [_card(p) for p in papers]}


# --- Pages ---
@router.get("/", response_class=HTMLResponse)
async def home(request: Request, source: QuestionSource = Depends(get_source)):
    try:
        years = await run_in_threadpool(source.get_years)
    except SourceUnavailable:
        years = []
    return app_globals.templates.TemplateResponse(request, "index.html", {"years": years})


# --- Session ---
@router.post("/api/session/mode")
async def select_mode(
    payload: ModeRequest,
    response: Response,
    session_id: Optional[str] = Depends(get_session_id),
    identity: Optional[str] = Depends(get_identity),
    source: QuestionSource = Depends(get_source),
    mirror: Optional[RemoteProgressMirror] = Depends(get_mirror),
):
    session = get_active_session(session_id)
    if session is None:
        # A known cookie keeps its id so stored progress and bookmarks stay reachable
        if session_id:
            logger.info(f"Restoring session: {session_id}")
        else:
            session_id = str(uuid.uuid4())
            logger.info(f"New session: {session_id}")
        session = create_session(session_id, source, mirror)
        response.set_cookie(
            key=settings.SESSION_COOKIE_NAME,
            value=session_id,
            httponly=True,
            samesite="Lax",
        )
    session.store.identity = identity

    selection = await run_in_threadpool(
        session.select_mode,
        payload.tag,
        payload.mode,
        year=payload.year,
        set_index=payload.set_index,
        paper=payload.paper,
    )
    saved = await run_in_threadpool(session.start, selection.questions, selection.session_key)
    return {
        "title": selection.title,
        "session_key": selection.session_key,
        "total_questions": len(selection.questions),
        "resume_offer": saved.model_dump(exclude={"questions"}) if saved else None,
        "session": session.to_dict(),
    }


@router.get("/api/session")
async def get_session(session: QuizSession = Depends(require_session)):
    return session.to_dict()


@router.post("/api/session/resume")
async def resume_session(session: QuizSession = Depends(require_session)):
    session.resume()
    return session.to_dict()


@router.post("/api/session/restart")
async def restart_session(session: QuizSession = Depends(require_session)):
    session.restart()
    return session.to_dict()


@router.post("/api/session/answer")
async def submit_answer(payload: AnswerRequest, session: QuizSession = Depends(require_session)):
    return session.answer(payload.index, payload.letter)


@router.post("/api/session/next")
async def next_question(session: QuizSession = Depends(require_session)):
    session.advance()
    return session.to_dict()


@router.post("/api/session/back")
async def previous_question(session: QuizSession = Depends(require_session)):
    session.go_back()
    return session.to_dict()


@router.post("/api/session/navigate/{index}")
async def navigate(index: int, session: QuizSession = Depends(require_session)):
    session.navigate(index)
    return session.to_dict()


@router.post("/api/session/reset")
async def reset_session(session: QuizSession = Depends(require_session)):
    session.reset()
    return session.to_dict()


@router.post("/api/session/test/start")
async def start_test(
    payload: Optional[TestStartRequest] = None,
    session: QuizSession = Depends(require_session),
):
    duration = (payload and payload.duration_seconds) or settings.TEST_DURATION_SECONDS
    controller = session.start_test(duration)
    controller.attach(asyncio.create_task(controller.run()))
    return session.to_dict()


@router.post("/api/session/test/submit")
async def submit_test(session: QuizSession = Depends(require_session)):
    session.submit_test()
    return session.to_dict()


@router.get("/api/session/result")
async def get_result(session: QuizSession = Depends(require_session)):
    return session.summary()


@router.get("/api/session/question/{index}")
async def review_question(index: int, session: QuizSession = Depends(require_session)):
    view = session.question_view(index)
    if view is None:
        raise HTTPException(status_code=404, detail="Index error")
    return view


# --- Bookmarks ---
def _bookmarks(session_id: Optional[str]) -> BookmarkStore:
    if not session_id:
        raise HTTPException(status_code=401, detail="Session invalid")
    return BookmarkStore(session_id)


@router.get("/api/bookmarks")
async def list_bookmarks(session_id: Optional[str] = Depends(get_session_id)):
    return _bookmarks(session_id).list()


@router.post("/api/bookmarks")
async def add_bookmark(payload: BookmarkRequest, session_id: Optional[str] = Depends(get_session_id)):
    _bookmarks(session_id).add(payload.question)
    return {"status": "success"}


@router.delete("/api/bookmarks/{question_id}")
async def remove_bookmark(question_id: str, session_id: Optional[str] = Depends(get_session_id)):
    if not _bookmarks(session_id).remove(question_id):
        raise HTTPException(status_code=404, detail="Bookmark not found")
    return {"status": "success"}
