from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, List, Optional

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .config import Settings, load_settings
from .context_manager import ContextManager
from .errors import StoreError
from .gemini_client import GeminiClient, TextGenerator
from .models import (
    AuthenticatedUser,
    ChatRequest,
    ChatResponse,
    ClearSessionRequest,
    HistoryMessage,
    HistoryResponse,
    SessionSummary,
    UserInfo,
)
from .orchestrator import ConversationOrchestrator
from .rate_limiter import InMemoryRateLimiter, RateLimiter
from .retrieval import RetrievalGateway
from .store import InMemoryStore, MarketplaceStore
from .supabase_store import SupabaseStore

BASE_DIR = Path(__file__).resolve().parent
ENV_PATH = BASE_DIR / ".env"

logger = logging.getLogger("campus_assistant.app")


def configure_logging() -> None:
    """Install the root handler once, honoring LOG_LEVEL."""
    log_level_name = os.getenv("LOG_LEVEL", "INFO").upper()
    log_level = getattr(logging, log_level_name, logging.INFO)
    if not logging.getLogger().handlers:
        logging.basicConfig(
            level=log_level,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        )
    logging.getLogger("campus_assistant").setLevel(log_level)


def build_store(settings: Settings) -> MarketplaceStore:
    if settings.uses_supabase:
        return SupabaseStore(
            settings.supabase_url,
            settings.supabase_key,
            photo_bucket=settings.photo_bucket,
            timeout=settings.store_timeout,
        )
    logger.warning("SUPABASE_URL/SUPABASE_KEY not set; using in-memory store")
    return InMemoryStore(settings.store_path)


def build_generator(settings: Settings) -> Optional[TextGenerator]:
    if not settings.gemini_api_key:
        logger.warning("GEMINI_API_KEY not set; open questions will get the fallback apology")
        return None
    return GeminiClient(settings)


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[MarketplaceStore] = None,
    generator: Optional[TextGenerator] = None,
    rate_limiter: Optional[RateLimiter] = None,
) -> FastAPI:
    """Purpose: Build the FastAPI application with all collaborators wired.
    Inputs/Outputs: Optional Settings, store, generator, and rate limiter
        (tests inject these); output is a FastAPI app.
    Side Effects / State: Loads .env, configures logging, and, when no store
        is given, opens the configured store. The store closes on shutdown.
    Dependencies: load_settings, ConversationOrchestrator, RateLimiter.
    Failure Modes: Invalid numeric env values raise ValueError here.
    If Removed: The assistant has no HTTP surface.
    Testing Notes: create_app(settings, InMemoryStore(), stub, limiter) with TestClient.
    """
    # Environment first so settings see .env values.
    if ENV_PATH.exists():
        load_dotenv(ENV_PATH, override=True)
    configure_logging()
    settings = settings or load_settings()
    store = store or build_store(settings)
    if generator is None:
        generator = build_generator(settings)
    rate_limiter = rate_limiter or InMemoryRateLimiter(settings.rate_limit, settings.rate_limit_window)
    retrieval = RetrievalGateway(store, limit=settings.search_limit, timeout=settings.store_timeout)
    context_manager = ContextManager(
        store,
        window_size=settings.context_window,
        history_limit=settings.history_limit,
        store_timeout=settings.store_timeout,
        retrieval=retrieval,
    )
    orchestrator = ConversationOrchestrator(
        settings, store, generator, context_manager=context_manager, retrieval=retrieval
    )

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        await store.aclose()

    app = FastAPI(title=f"{settings.platform_name} Assistant", lifespan=lifespan)
    app.state.settings = settings
    app.state.store = store
    app.state.orchestrator = orchestrator
    app.state.rate_limiter = rate_limiter

    @app.exception_handler(RequestValidationError)
    async def validation_error(_: Request, exc: RequestValidationError) -> JSONResponse:
        details = [{"loc": list(err["loc"]), "msg": err["msg"], "type": err["type"]} for err in exc.errors()]
        return JSONResponse(status_code=400, content={"error": "Invalid request format", "details": details})

    @app.exception_handler(HTTPException)
    async def http_error(_: Request, exc: HTTPException) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

    @app.exception_handler(Exception)
    async def unexpected_error(_: Request, exc: Exception) -> JSONResponse:
        logger.exception("unhandled request error")
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    async def current_user(authorization: Optional[str] = Header(default=None)) -> AuthenticatedUser:
        """Purpose: Resolve the bearer token to an authenticated user.
        Inputs/Outputs: Authorization header; output is AuthenticatedUser.
        Side Effects / State: One auth lookup through the store.
        Dependencies: MarketplaceStore.authenticate.
        Failure Modes: Missing, malformed, or unknown tokens raise 401; an auth
            backend failure is also reported as 401.
        If Removed: Chat endpoints cannot identify the caller.
        Testing Notes: Requests without a header must get 401.
        """
        # Only "Bearer <token>" is accepted.
        if not authorization or not authorization.startswith("Bearer "):
            raise HTTPException(status_code=401, detail="Unauthorized")
        token = authorization[len("Bearer "):].strip()
        try:
            user = await store.authenticate(token) if token else None
        except StoreError:
            user = None
        if user is None:
            raise HTTPException(status_code=401, detail="Unauthorized")
        return user

    async def owned_session_ids(user: AuthenticatedUser) -> List[str]:
        return [session.id for session in await context_manager.list_sessions(user.id)]

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok", "store": type(store).__name__, "generator": generator is not None}

    @app.post("/api/ai-chat", response_model=ChatResponse)
    async def chat(request: ChatRequest, user: AuthenticatedUser = Depends(current_user)) -> ChatResponse:
        """Purpose: Answer one chat message for the signed-in user.
        Inputs/Outputs: ChatRequest body; output is ChatResponse.
        Side Effects / State: Counts against the caller's rate limit, creates
            or reuses the active session, and appends both messages.
        Dependencies: RateLimiter.hit and ConversationOrchestrator.respond.
        Failure Modes: 429 when over the limit. Store and generator failures
            still produce a 200 with a plain-language reply.
        If Removed: The chat widget has no backend.
        Testing Notes: Send "laptop" and expect a listing reply with sessionId.
        """
        # Rate limit is keyed by user id, not address.
        if not await rate_limiter.hit(user.id):
            raise HTTPException(status_code=429, detail="Too many requests. Please wait a moment.")
        reply = await orchestrator.respond(user, request.message)
        if request.session_id and reply.session_id and request.session_id != reply.session_id:
            logger.info("client session replaced user=%s old=%s new=%s", user.id, request.session_id, reply.session_id)
        return ChatResponse(
            response=reply.text,
            session_id=reply.session_id,
            user_info=UserInfo(email=reply.user.email or user.email, name=reply.user.name),
        )

    @app.delete("/api/ai-chat")
    async def clear_chat(
        request: Optional[ClearSessionRequest] = None,
        user: AuthenticatedUser = Depends(current_user),
    ) -> dict:
        # Without a sessionId, the caller's active session is cleared.
        owned = await context_manager.list_sessions(user.id)
        if request is not None and request.session_id:
            targets = [session.id for session in owned if session.id == request.session_id]
            if not targets:
                raise HTTPException(status_code=404, detail="Session not found")
        else:
            targets = [session.id for session in owned if session.is_active]
        for session_id in targets:
            if not await context_manager.clear_session(session_id):
                raise HTTPException(status_code=500, detail="Failed to clear chat")
        return {"success": True}

    @app.get("/api/ai-chat/history", response_model=HistoryResponse)
    async def history(
        limit: int = Query(default=settings.history_limit, ge=1, le=200),
        user: AuthenticatedUser = Depends(current_user),
    ) -> HistoryResponse:
        session = await context_manager.get_or_create_session(user.id)
        if session is None:
            return HistoryResponse(messages=[], session_id=None)
        messages = await context_manager.load_history(session.id, limit)
        return HistoryResponse(
            messages=[
                HistoryMessage(id=m.id, role=m.role, content=m.content, timestamp=m.created_at)
                for m in messages
            ],
            session_id=session.id,
        )

    @app.get("/api/ai-chat/sessions", response_model=List[SessionSummary])
    async def sessions(user: AuthenticatedUser = Depends(current_user)) -> List[SessionSummary]:
        owned = await context_manager.list_sessions(user.id)
        stats = await asyncio.gather(*(context_manager.session_stats(s.id) for s in owned))
        return [
            SessionSummary(
                session_id=session.id,
                is_active=session.is_active,
                created_at=session.created_at,
                updated_at=session.updated_at,
                message_count=stat.message_count,
            )
            for session, stat in zip(owned, stats)
        ]

    @app.delete("/api/ai-chat/sessions/{session_id}")
    async def delete_session(session_id: str, user: AuthenticatedUser = Depends(current_user)) -> dict:
        if session_id not in await owned_session_ids(user):
            raise HTTPException(status_code=404, detail="Session not found")
        if not await context_manager.delete_session(session_id):
            raise HTTPException(status_code=500, detail="Failed to delete session")
        return {"success": True}

    return app
