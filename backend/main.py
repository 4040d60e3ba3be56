"""
FastAPI Backend for the Adaptive Practice Engine

Provides REST API endpoints with:
- JWT Authentication (Supabase)
- Timed practice sessions driven by SessionStateMachine
- AI question generation with template fallback
- Supabase persistence for session history and mastery
"""

from fastapi import FastAPI, HTTPException, Depends
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from typing import Optional, Dict, Any
import os
import sys
import time
import logging
import signal

from lib.logger import setup_logging, get_logger

setup_logging(level=logging.INFO, use_colors=True)

logger = get_logger("backend.main")

# Add the adaptive_practice_engine package to Python path
backend_dir = os.path.dirname(os.path.abspath(__file__))
project_root = os.path.dirname(backend_dir)
package_src = os.path.join(project_root, 'adaptive_practice_engine', 'src')
if os.path.exists(package_src) and package_src not in sys.path:
    sys.path.insert(0, package_src)

from lib.supabase_client import get_supabase_client, get_optional_supabase_client
from lib.auth import get_current_user

from adaptive_practice_engine.config import EngineSettings
from adaptive_practice_engine.errors import InvalidSessionState
from adaptive_practice_engine.history_reporter import HistoryReporter
from adaptive_practice_engine.primary_question_source import (
    EdgeFunctionQuestionBackend,
    OpenAIQuestionBackend,
    PrimaryQuestionSource,
)
from adaptive_practice_engine.session_state import SessionPhase
from adaptive_practice_engine.session_state_machine import SessionStateMachine

# Singletons shared by all sessions
_settings: Optional[EngineSettings] = None
_primary_source: Optional[PrimaryQuestionSource] = None
_history_reporter: Optional[HistoryReporter] = None
_primary_source_ready = False

# session_id -> (owner user id, machine)
_sessions: Dict[str, tuple] = {}


def get_settings() -> EngineSettings:
    global _settings
    if _settings is None:
        _settings = EngineSettings.from_env()
    return _settings


def get_primary_source() -> Optional[PrimaryQuestionSource]:
    """Build the AI question source once; None means fallback questions only."""
    global _primary_source, _primary_source_ready
    if _primary_source_ready:
        return _primary_source

    settings = get_settings()
    if settings.question_backend == "edge_function":
        backend = EdgeFunctionQuestionBackend(get_supabase_client(), settings.edge_function_name)
    elif os.getenv("OPENAI_API_KEY"):
        from openai import AsyncOpenAI
        backend = OpenAIQuestionBackend(AsyncOpenAI(), model=settings.openai_model)
    else:
        logger.warning("OPENAI_API_KEY not set, serving template questions only")
        backend = None

    _primary_source = PrimaryQuestionSource(backend) if backend is not None else None
    _primary_source_ready = True
    return _primary_source


def get_history_reporter() -> HistoryReporter:
    global _history_reporter
    if _history_reporter is None:
        _history_reporter = HistoryReporter(get_optional_supabase_client())
    return _history_reporter


def evict_finished_sessions() -> int:
    """Forget sessions that completed or errored longer ago than the retention period."""
    retention = get_settings().finished_retention_seconds
    now = time.monotonic()
    expired = [
        session_id for session_id, (_, machine) in _sessions.items()
        if machine.finished_at is not None and now - machine.finished_at >= retention
    ]
    for session_id in expired:
        del _sessions[session_id]
    if expired:
        logger.info(f"🧹 Evicted {len(expired)} finished session(s)", data={"remaining": len(_sessions)})
    return len(expired)


def get_owned_session(session_id: str, user_id: str) -> SessionStateMachine:
    evict_finished_sessions()
    entry = _sessions.get(session_id)
    if entry is None or entry[0] != user_id:
        raise HTTPException(status_code=404, detail="Session not found")
    return entry[1]


# Initialize FastAPI app
app = FastAPI(
    title="Adaptive Practice Engine API",
    description="Timed adaptive practice sessions with AI-generated questions",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://localhost:3001",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ==================== Pydantic Models ====================

class StartSessionRequest(BaseModel):
    subject: str = Field(min_length=1)
    skill_area: str = Field(min_length=1)
    total_questions: Optional[int] = Field(default=None, ge=1, le=50)
    initial_difficulty_level: Optional[int] = None
    per_question_timeout_seconds: Optional[float] = Field(default=None, gt=0)
    grade_level: Optional[int] = None
    standards_alignment: Optional[Dict[str, Any]] = None
    question_context: Optional[Dict[str, Any]] = None


class AnswerRequest(BaseModel):
    selected_index: int


# ==================== API Endpoints ====================

@app.get("/")
async def root():
    """Health check endpoint."""
    settings = get_settings()
    evict_finished_sessions()
    return {
        "status": "ok",
        "service": "Adaptive Practice Engine API",
        "version": "1.0.0",
        "question_backend": settings.question_backend,
        "primary_source_available": get_primary_source() is not None,
        "active_sessions": len(_sessions),
    }


@app.post("/api/practice/sessions")
async def start_session(request: StartSessionRequest, user: dict = Depends(get_current_user)):
    """Start a practice session for the authenticated user and return its first question."""
    started = time.monotonic()
    evict_finished_sessions()
    logger.request("POST", "/api/practice/sessions", user_id=user["id"], data={
        "subject": request.subject,
        "skill_area": request.skill_area,
    })

    try:
        config = get_settings().session_config(
            request.subject,
            request.skill_area,
            total_questions=request.total_questions,
            initial_difficulty_level=request.initial_difficulty_level,
            per_question_timeout_seconds=request.per_question_timeout_seconds,
            grade_level=request.grade_level,
            standards_alignment=request.standards_alignment,
            question_context=request.question_context,
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    machine = SessionStateMachine(
        config,
        primary_source=get_primary_source(),
        history_reporter=get_history_reporter(),
    )
    state = await machine.start(user["id"])

    if state.phase == SessionPhase.ERRORED:
        raise HTTPException(status_code=401, detail=state.error or "Could not start session")

    _sessions[state.session_id] = (user["id"], machine)
    logger.response(200, "/api/practice/sessions", time.monotonic() - started, data={
        "session_id": state.session_id,
        "notice": state.notice,
    })
    return machine.snapshot()


@app.get("/api/practice/sessions/{session_id}")
async def get_session(session_id: str, user: dict = Depends(get_current_user)):
    """Snapshot of a session; the correct answer stays hidden until answered."""
    return get_owned_session(session_id, user["id"]).snapshot()


@app.post("/api/practice/sessions/{session_id}/answer")
async def submit_answer(session_id: str, request: AnswerRequest, user: dict = Depends(get_current_user)):
    """Submit the answer for the current question."""
    machine = get_owned_session(session_id, user["id"])
    logger.request("POST", f"/api/practice/sessions/{session_id}/answer", user_id=user["id"])

    try:
        answer = await machine.submit_answer(request.selected_index, strict=True)
    except InvalidSessionState as e:
        raise HTTPException(status_code=409, detail=str(e))

    snapshot = machine.snapshot()
    decision = machine.last_decision
    return {
        "answer": answer.to_dict(),
        "difficulty": {
            "level": snapshot["difficulty_level"],
            "changed": decision.changed,
            "reason": decision.reason,
        } if decision else None,
        "session": snapshot,
    }


@app.post("/api/practice/sessions/{session_id}/advance")
async def advance_session(session_id: str, user: dict = Depends(get_current_user)):
    """Skip the rest of the result display and move on."""
    machine = get_owned_session(session_id, user["id"])
    if machine.phase != SessionPhase.SHOWING_RESULT:
        raise HTTPException(status_code=409, detail=f"Cannot advance in phase {machine.phase.value}")
    await machine.advance()
    return machine.snapshot()


@app.delete("/api/practice/sessions/{session_id}")
async def delete_session(session_id: str, user: dict = Depends(get_current_user)):
    """Tear down a session and forget it."""
    machine = get_owned_session(session_id, user["id"])
    await machine.teardown()
    del _sessions[session_id]
    return {"status": "deleted", "session_id": session_id}


@app.on_event("startup")
async def startup_event():
    settings = get_settings()
    logger.section("PRACTICE ENGINE STARTUP", {
        "question_backend": settings.question_backend,
        "total_questions": settings.total_questions,
        "max_generation_attempts": settings.max_generation_attempts,
        "supabase": get_optional_supabase_client() is not None,
    })


@app.on_event("shutdown")
async def shutdown_event():
    """Tear down every live session."""
    for _, machine in list(_sessions.values()):
        await machine.teardown()
        await machine.drain()
    _sessions.clear()
    logger.info("🛑 All practice sessions torn down")


if __name__ == "__main__":
    import uvicorn

    def handle_exit(*args):
        """Handle graceful shutdown."""
        logger.section("SERVER SHUTDOWN", {"reason": "signal received"})
        sys.exit(0)

    signal.signal(signal.SIGINT, handle_exit)
    signal.signal(signal.SIGTERM, handle_exit)

    try:
        uvicorn.run(app, host="0.0.0.0", port=8000)
    except KeyboardInterrupt:
        logger.info("🛑 Server stopped.")
        sys.exit(0)
