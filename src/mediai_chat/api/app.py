"""
FastAPI Application Module

HTTP API of the MediAI symptom checker. A signed-in user keeps symptom
conversations; each message they post is answered with a structured,
non-diagnostic assessment from a hosted language model.

Key Features:
- Session authentication, conversations scoped to their owner
- Per-conversation request serialization and rate limiting
- Structured logging, Prometheus metrics and OpenTelemetry tracing

The user's own words are always stored, even when the model provider fails;
in that case the response carries the stored message and an error string.
"""

from contextlib import asynccontextmanager
from typing import List

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from prometheus_client import generate_latest
from starlette.middleware.sessions import SessionMiddleware
from structlog import get_logger

from ..config import configure_logging
from ..domain.errors import ConversationNotFound
from ..domain.models import Analysis, Conversation, Message, PostMessageResult, User
from ..metrics import CUSTOM_REGISTRY, ERRORS, REQUESTS
from ..repositories.base import Repository
from ..services.orchestrator import MessageOrchestrator
from . import auth
from .dependencies import (
    get_current_user,
    get_orchestrator,
    get_repository,
    get_request_queue,
    settings,
)
from .rate_limiter import RateLimiter, RateLimitExceeded, rate_limit_key, rate_limit_middleware
from .request_queue import QueueTimeout, RequestQueue
from .schemas import ConversationCreate, MessageCreate, TitleUpdate

logger = get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handles app startup/shutdown and resource management"""
    configure_logging(settings.log_level, settings.log_json)
    repository = get_repository()
    await repository.init()
    await app.state.rate_limiter.start()
    logger.info("application_startup_complete", provider=settings.analysis_provider)

    yield

    await app.state.rate_limiter.stop()
    await repository.close()
    logger.info("application_shutdown_complete")


app = FastAPI(
    title="MediAI Symptom Checker API",
    description="Symptom conversations answered with structured AI assessments",
    version="0.1.0",
    lifespan=lifespan,
)

app.state.rate_limiter = RateLimiter(
    rate_limit=settings.rate_limit,
    time_window=settings.rate_limit_window,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(
    SessionMiddleware,
    secret_key=settings.session_secret,
    session_cookie="mediai_session",
    max_age=settings.session_max_age,
    same_site="lax",
    https_only=settings.secure_cookies,
)

# Set up request tracing
FastAPIInstrumentor.instrument_app(app)

app.include_router(auth.router)


@app.middleware("http")
async def logging_middleware(request: Request, call_next):
    """Tracks requests and enforces rate limits"""
    REQUESTS.inc()
    logger.info("request_started", method=request.method, path=request.url.path)
    rate_limiter: RateLimiter = request.app.state.rate_limiter
    try:
        await rate_limit_middleware(request, rate_limiter)
    except RateLimitExceeded as e:
        ERRORS.inc()
        return JSONResponse(status_code=429, content={"detail": str(e)})

    try:
        response = await call_next(request)
    except Exception as e:
        ERRORS.inc()
        logger.error("request_failed", path=request.url.path, error=str(e))
        raise

    if response.status_code >= 500:
        ERRORS.inc()
    remaining = await rate_limiter.get_remaining_requests(rate_limit_key(request))
    response.headers["X-RateLimit-Remaining"] = str(remaining)
    return response


async def get_owned_conversation(
    conversation_id: int,
    user: User = Depends(get_current_user),
    repository: Repository = Depends(get_repository),
) -> Conversation:
    """The conversation if it belongs to the caller; 404 otherwise."""
    conversation = await repository.get_conversation(conversation_id)
    if conversation is None or conversation.user_id != user.id:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return conversation


@app.post("/api/conversations", response_model=Conversation)
async def create_conversation(
    body: ConversationCreate,
    user: User = Depends(get_current_user),
    repository: Repository = Depends(get_repository),
) -> Conversation:
    """Starts a new symptom-assessment conversation"""
    try:
        return await repository.create_conversation(user.id, body.title)
    except Exception as e:
        logger.error("create_conversation_error", error=str(e))
        raise HTTPException(status_code=500, detail="Failed to create conversation")


@app.get("/api/conversations", response_model=List[Conversation])
async def list_conversations(
    limit: int = Query(100, ge=1),
    offset: int = Query(0, ge=0),
    user: User = Depends(get_current_user),
    repository: Repository = Depends(get_repository),
) -> List[Conversation]:
    """Gets the caller's conversations, newest first"""
    try:
        return await repository.list_conversations(user.id, limit=limit, offset=offset)
    except Exception as e:
        logger.error("list_conversations_error", error=str(e))
        raise HTTPException(status_code=500, detail="Failed to list conversations")


@app.get("/api/conversations/{conversation_id}", response_model=Conversation)
async def get_conversation(
    conversation: Conversation = Depends(get_owned_conversation),
) -> Conversation:
    return conversation


@app.patch("/api/conversations/{conversation_id}/title", response_model=Conversation)
async def update_conversation_title(
    body: TitleUpdate,
    conversation: Conversation = Depends(get_owned_conversation),
    repository: Repository = Depends(get_repository),
) -> Conversation:
    """Renames a conversation"""
    try:
        return await repository.update_conversation_title(conversation.id, body.title)
    except ValueError:
        raise HTTPException(status_code=404, detail="Conversation not found")


@app.get("/api/conversations/{conversation_id}/messages", response_model=List[Message])
async def get_messages(
    limit: int = Query(100, ge=1),
    offset: int = Query(0, ge=0),
    conversation: Conversation = Depends(get_owned_conversation),
    repository: Repository = Depends(get_repository),
) -> List[Message]:
    """Gets paginated message history in creation order"""
    try:
        return await repository.get_messages(conversation.id, limit=limit, offset=offset)
    except ValueError:
        raise HTTPException(status_code=404, detail="Conversation not found")
    except Exception as e:
        logger.error("get_messages_error", conversation_id=conversation.id, error=str(e))
        raise HTTPException(status_code=500, detail="Failed to get messages")


@app.post("/api/conversations/{conversation_id}/messages")
async def create_message(
    body: MessageCreate,
    conversation: Conversation = Depends(get_owned_conversation),
    orchestrator: MessageOrchestrator = Depends(get_orchestrator),
    queue: RequestQueue = Depends(get_request_queue),
) -> JSONResponse:
    """
    Stores the message and, for user messages, answers it with an analysis.
    Requests for one conversation are processed one at a time.
    """
    try:
        result: PostMessageResult = await queue.enqueue_request(
            conversation.id,
            orchestrator.post_user_message,
            conversation.id,
            body.content,
            body.role,
        )
    except QueueTimeout:
        raise HTTPException(status_code=503, detail="Conversation is busy, try again later")
    except ConversationNotFound:
        raise HTTPException(status_code=404, detail="Conversation not found")
    except Exception as e:
        logger.error("create_message_error", conversation_id=conversation.id, error=str(e))
        raise HTTPException(status_code=500, detail="Failed to process message")

    content = result.model_dump(mode="json", by_alias=True, exclude_none=True)
    return JSONResponse(status_code=502 if result.error else 200, content=content)


@app.get(
    "/api/conversations/{conversation_id}/analyses",
    response_model=List[Analysis],
    response_model_exclude_none=True,
)
async def get_analyses(
    conversation: Conversation = Depends(get_owned_conversation),
    repository: Repository = Depends(get_repository),
) -> List[Analysis]:
    """Gets the conversation's analyses, newest first"""
    try:
        return await repository.get_analyses(conversation.id)
    except ValueError:
        raise HTTPException(status_code=404, detail="Conversation not found")


@app.get("/metrics")
async def metrics():
    """Provides Prometheus metrics for system monitoring"""
    return Response(generate_latest(CUSTOM_REGISTRY), media_type="text/plain")
