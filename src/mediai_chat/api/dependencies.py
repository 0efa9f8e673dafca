"""Service instances and FastAPI dependencies."""

from typing import Optional

from fastapi import Depends, HTTPException, Request
from structlog import get_logger

from ..config import Settings
from ..domain.models import User
from ..repositories.base import Repository
from ..repositories.memory import InMemoryRepository
from ..repositories.sql import SqlRepository
from ..services.analysis import SymptomAnalysisEngine
from ..services.orchestrator import MessageOrchestrator
from ..services.providers import build_provider
from .request_queue import RequestQueue

logger = get_logger()

settings = Settings.from_env()

_repository: Optional[Repository] = None
_engine: Optional[SymptomAnalysisEngine] = None
_request_queue: Optional[RequestQueue] = None


def build_repository(settings: Settings) -> Repository:
    if settings.database_url:
        return SqlRepository(settings.database_url)
    return InMemoryRepository()


def get_repository() -> Repository:
    """Returns the conversation storage instance"""
    global _repository
    if _repository is None:
        _repository = build_repository(settings)
    return _repository


def get_analysis_engine() -> SymptomAnalysisEngine:
    """Returns the symptom analysis engine for the configured provider"""
    global _engine
    if _engine is None:
        _engine = SymptomAnalysisEngine(
            build_provider(settings),
            temperature=settings.analysis_temperature,
            timeout=settings.analysis_timeout,
        )
    return _engine


def get_request_queue() -> RequestQueue:
    """Returns the per-conversation request queue"""
    global _request_queue
    if _request_queue is None:
        _request_queue = RequestQueue(
            max_concurrent=settings.max_concurrent_requests,
            queue_timeout=settings.queue_timeout,
        )
    return _request_queue


def get_orchestrator(
    repository: Repository = Depends(get_repository),
    engine: SymptomAnalysisEngine = Depends(get_analysis_engine),
) -> MessageOrchestrator:
    return MessageOrchestrator(repository, engine)


async def get_current_user(
    request: Request,
    repository: Repository = Depends(get_repository),
) -> User:
    """The signed-in user, or 401."""
    user_id = request.session.get("user_id")
    user = await repository.get_user(user_id) if user_id is not None else None
    if user is None:
        if user_id is not None:
            request.session.pop("user_id", None)
        logger.info("authentication_required", path=request.url.path)
        raise HTTPException(status_code=401, detail="Authentication required")
    return user
