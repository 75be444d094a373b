from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Awaitable, Dict, List, Mapping, Optional, Tuple

from .models import AuthenticatedUser, ChatMessage, ChatSession, Role, SessionStats
from .retrieval import EnhancedListing, RetrievalGateway
from .store import MarketplaceStore
from .vocabulary import CAMPUS_LIST, MAIN_CATEGORIES, SUBCATEGORIES_BY_CATEGORY

logger = logging.getLogger("campus_assistant.context_manager")

DEFAULT_WINDOW_SIZE = 20
DEFAULT_HISTORY_LIMIT = 50
RECENT_LISTINGS_LIMIT = 10
POPULAR_CATEGORY_COUNT = 5


@dataclass(frozen=True)
class ChatTurn:
    role: Role
    content: str
    timestamp: datetime


@dataclass(frozen=True)
class UserContext:
    """Who is asking; rebuilt from the store for every message."""
    id: str
    email: str = ""
    name: Optional[str] = None
    university: Optional[str] = None
    member_since: Optional[datetime] = None
    posts_count: int = 0
    university_posts_count: int = 0


@dataclass(frozen=True)
class MarketplaceContext:
    """Static vocabularies plus live marketplace statistics."""
    categories: Tuple[str, ...] = MAIN_CATEGORIES
    subcategories: Mapping[str, Tuple[str, ...]] = field(default_factory=lambda: SUBCATEGORIES_BY_CATEGORY)
    campuses: Tuple[str, ...] = CAMPUS_LIST
    recent_listings: Tuple[EnhancedListing, ...] = ()
    university_listings: Tuple[EnhancedListing, ...] = ()
    popular_categories: Tuple[str, ...] = ()
    total_listings: int = 0


@dataclass(frozen=True)
class ConversationContext:
    """Bounded window of recent turns plus the enrichment for this request."""
    messages: Tuple[ChatTurn, ...] = ()
    user: Optional[UserContext] = None
    marketplace: Optional[MarketplaceContext] = None
    session_id: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def rank_categories(counts: Dict[str, int], top: int = POPULAR_CATEGORY_COUNT) -> Tuple[str, ...]:
    # Highest count first; ties broken alphabetically for stable output.
    ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    return tuple(name for name, count in ranked[:top] if count > 0)


class ContextManager:
    """Owns the conversational window and the session lifecycle."""

    def __init__(
        self,
        store: MarketplaceStore,
        window_size: int = DEFAULT_WINDOW_SIZE,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        store_timeout: float = 5.0,
        retrieval: Optional[RetrievalGateway] = None,
    ) -> None:
        """Purpose: Bind the manager to a store and its bounds.
        Inputs/Outputs: Store collaborator, window size, default history limit,
            the per-call store timeout, and the gateway used for recent
            listings; no return value.
        Side Effects / State: None beyond holding references.
        Dependencies: MarketplaceStore, RetrievalGateway.
        Failure Modes: Raises ValueError for a non-positive window size.
        If Removed: No sessions, no history, no enrichment.
        Testing Notes: Use InMemoryStore; a failing store must never raise here.
        """
        # The window bound applies to the in-memory context only.
        if window_size <= 0:
            raise ValueError("window_size must be positive")
        self._store = store
        self._window_size = window_size
        self._history_limit = history_limit
        self._store_timeout = store_timeout
        self._retrieval = retrieval or RetrievalGateway(store, timeout=store_timeout)

    @property
    def window_size(self) -> int:
        return self._window_size

    async def _guard(self, awaitable: Awaitable[Any], default: Any, operation: str) -> Any:
        # Store failures degrade to the default; cancellation propagates.
        try:
            return await asyncio.wait_for(awaitable, self._store_timeout)
        except Exception as exc:
            logger.warning("store call failed op=%s error=%s", operation, exc)
            return default

    def create_initial_context(
        self,
        user: Optional[UserContext] = None,
        session_id: Optional[str] = None,
        marketplace: Optional[MarketplaceContext] = None,
    ) -> ConversationContext:
        return ConversationContext(messages=(), user=user, marketplace=marketplace, session_id=session_id)

    def add_message(self, context: ConversationContext, role: Role, content: str) -> ConversationContext:
        """Purpose: Append a turn and evict the oldest turns beyond the window.
        Inputs/Outputs: A context, a role, and content; output is a new context.
        Side Effects / State: None; the input context is not modified.
        Dependencies: window_size.
        Failure Modes: None.
        If Removed: The generative prompt sees no conversation history.
        Testing Notes: 25 appends keep the last 20 in their original order.
        """
        # Append then drop from the front until the window fits.
        turn = ChatTurn(role=role, content=content, timestamp=datetime.now(timezone.utc))
        messages = context.messages + (turn,)
        if len(messages) > self._window_size:
            messages = messages[len(messages) - self._window_size:]
        return replace(context, messages=messages)

    def clear_context(self, context: ConversationContext) -> ConversationContext:
        return replace(context, messages=())

    def update_user_info(self, context: ConversationContext, user: Optional[UserContext]) -> ConversationContext:
        return replace(context, user=user)

    async def build_user_context(self, user: AuthenticatedUser) -> UserContext:
        """Purpose: Assemble profile fields and post counts for one user.
        Inputs/Outputs: Authenticated identity; output is a UserContext.
        Side Effects / State: Concurrent store reads (profile, own listings),
            then the university listing count once the university is known.
        Dependencies: MarketplaceStore.get_profile, get_listings_by_seller, count_listings.
        Failure Modes: Each read degrades independently to an empty value.
        If Removed: Campus scoping and the generic prompt lose the user's profile.
        Testing Notes: A store raising StoreError still yields UserContext(id=...).
        """
        # Profile and own posts are independent reads.
        profile, own = await asyncio.gather(
            self._guard(self._store.get_profile(user.id), None, "get_profile"),
            self._guard(self._store.get_listings_by_seller(user.id), [], "get_listings_by_seller"),
        )
        university = profile.university if profile and profile.university else None
        university_count = 0
        if university:
            university_count = await self._guard(
                self._store.count_listings(university), 0, "count_listings"
            )
        name = None
        if profile is not None:
            name = profile.full_name or profile.username
        return UserContext(
            id=user.id,
            email=user.email or (profile.email if profile else ""),
            name=name,
            university=university,
            member_since=profile.created_at if profile else None,
            posts_count=len(own),
            university_posts_count=university_count,
        )

    async def build_marketplace_context(self, university: Optional[str] = None) -> MarketplaceContext:
        """Fetch statistics and recent listings concurrently; failures give empty parts."""
        university_rows: Awaitable[List[EnhancedListing]]
        if university:
            university_rows = self._retrieval.recent(RECENT_LISTINGS_LIMIT, campus=university)
        else:
            university_rows = _empty_list()
        counts, total, recent, local = await asyncio.gather(
            self._guard(self._store.get_category_counts(), {}, "get_category_counts"),
            self._guard(self._store.count_listings(), 0, "count_listings"),
            self._retrieval.recent(RECENT_LISTINGS_LIMIT),
            university_rows,
        )
        return MarketplaceContext(
            recent_listings=tuple(recent),
            university_listings=tuple(local),
            popular_categories=rank_categories(counts),
            total_listings=total,
        )

    async def get_or_create_session(self, user_id: str) -> Optional[ChatSession]:
        session = await self._guard(self._store.get_or_create_session(user_id), None, "get_or_create_session")
        if session is not None:
            logger.debug("session user=%s session=%s", user_id, session.id)
        return session

    async def clear_session(self, session_id: str) -> bool:
        """Deactivate a session; its messages stay. The next message opens a new one."""
        ok = await self._guard(self._store.set_session_active(session_id, False), False, "set_session_active")
        # set_session_active returns None on success.
        return ok is None

    async def delete_session(self, session_id: str) -> bool:
        ok = await self._guard(self._store.delete_session_cascade(session_id), False, "delete_session_cascade")
        return ok is None

    async def record_message(
        self,
        session_id: str,
        role: Role,
        content: str,
        user_id: Optional[str] = None,
        metadata: Optional[Dict[str, object]] = None,
    ) -> bool:
        """Best-effort append to the persisted log."""
        saved = await self._guard(
            self._store.append_message(session_id, role, content, user_id, metadata),
            None,
            "append_message",
        )
        return saved is not None

    async def load_history(self, session_id: str, limit: Optional[int] = None) -> List[ChatMessage]:
        limit = self._history_limit if limit is None else limit
        return await self._guard(self._store.get_messages(session_id, limit), [], "get_messages")

    async def load_window(self, session_id: str) -> Tuple[ChatTurn, ...]:
        messages = await self.load_history(session_id, self._window_size)
        return tuple(ChatTurn(role=m.role, content=m.content, timestamp=m.created_at) for m in messages)

    async def list_sessions(self, user_id: str) -> List[ChatSession]:
        return await self._guard(self._store.list_sessions(user_id), [], "list_sessions")

    async def session_stats(self, session_id: str) -> SessionStats:
        # Counted and bounded by the store; the messages themselves are not loaded.
        count, bounds = await asyncio.gather(
            self._guard(self._store.count_messages(session_id), 0, "count_messages"),
            self._guard(self._store.message_time_bounds(session_id), (None, None), "message_time_bounds"),
        )
        if not count:
            return SessionStats()
        first, last = bounds
        return SessionStats(message_count=count, first_message=first, last_message=last)


async def _empty_list() -> List[Any]:
    return []
