"""Marketplace store contract and an in-process implementation.

MarketplaceStore is the only way the assistant reads listings and profiles or
writes chat sessions. InMemoryStore backs local runs and tests; when given a
path it persists sessions and messages to a JSON file between restarts.
"""

from __future__ import annotations

import asyncio
import json
import uuid
from collections import Counter
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncIterator, Dict, Iterable, List, Optional, Tuple

from .models import AuthenticatedUser, ChatMessage, ChatSession, Listing, Profile, Role


@dataclass(frozen=True)
class ListingFilter:
    """Exact-match and range constraints on listings; unset fields do not constrain."""
    main_category: Optional[str] = None
    sub_category: Optional[str] = None
    campus: Optional[str] = None
    min_price: Optional[float] = None
    max_price: Optional[float] = None


class MarketplaceStore:
    """Interface for marketplace data stores. Implementations raise StoreError on failure."""

    async def get_listings(
        self,
        listing_filter: ListingFilter,
        text: Optional[str] = None,
        limit: int = 20,
    ) -> List[Listing]:
        # Newest first; text matches title, description, category, subcategory, campus
        raise NotImplementedError

    async def get_listings_by_seller(self, user_id: str) -> List[Listing]:
        raise NotImplementedError

    async def count_listings(self, campus: Optional[str] = None) -> int:
        raise NotImplementedError

    async def get_category_counts(self) -> Dict[str, int]:
        raise NotImplementedError

    async def get_profile(self, user_id: str) -> Optional[Profile]:
        raise NotImplementedError

    async def get_or_create_session(self, user_id: str) -> ChatSession:
        # Must never leave two active sessions for one user
        raise NotImplementedError

    async def append_message(
        self,
        session_id: str,
        role: Role,
        content: str,
        user_id: Optional[str] = None,
        metadata: Optional[Dict[str, object]] = None,
    ) -> ChatMessage:
        raise NotImplementedError

    async def get_messages(self, session_id: str, limit: int = 50) -> List[ChatMessage]:
        # Most recent `limit` messages, oldest first
        raise NotImplementedError

    async def count_messages(self, session_id: str) -> int:
        raise NotImplementedError

    async def message_time_bounds(self, session_id: str) -> Tuple[Optional[datetime], Optional[datetime]]:
        # (first, last) created_at; (None, None) for a session without messages
        raise NotImplementedError

    async def set_session_active(self, session_id: str, active: bool) -> None:
        raise NotImplementedError

    async def delete_session_cascade(self, session_id: str) -> None:
        raise NotImplementedError

    async def list_sessions(self, user_id: str) -> List[ChatSession]:
        raise NotImplementedError

    async def authenticate(self, token: str) -> Optional[AuthenticatedUser]:
        raise NotImplementedError

    def public_photo_url(self, key: str) -> str:
        return key

    async def aclose(self) -> None:
        return None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def listing_matches(
    listing: Listing,
    listing_filter: ListingFilter,
    text: Optional[str] = None,
) -> bool:
    """Purpose: Apply ListingFilter and the case-insensitive text match to one listing.
    Inputs/Outputs: Inputs are a listing, a filter, and optional text; output is a bool.
    Side Effects / State: None.
    Dependencies: Used by InMemoryStore.get_listings.
    Failure Modes: Listings without a price never satisfy a price bound.
    If Removed: The in-memory store cannot answer filtered searches.
    Testing Notes: Text "bike" must match a listing whose subcategory is "Bikes".
    """
    # All constraints are AND-combined.
    if listing_filter.main_category and listing.category != listing_filter.main_category:
        return False
    if listing_filter.sub_category and listing.subcategory != listing_filter.sub_category:
        return False
    if listing_filter.campus and listing.campus != listing_filter.campus:
        return False
    if listing_filter.min_price is not None and (listing.price is None or listing.price < listing_filter.min_price):
        return False
    if listing_filter.max_price is not None and (listing.price is None or listing.price > listing_filter.max_price):
        return False
    if text:
        needle = text.lower()
        haystacks = (listing.title, listing.description, listing.category, listing.subcategory, listing.campus)
        if not any(needle in (value or "").lower() for value in haystacks):
            return False
    return True


class SessionLocks:
    """Per-user asyncio locks, dropped once no caller holds or waits on them."""

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, user_id: str) -> AsyncIterator[None]:
        # No await between lookup and registration, so this is atomic on the event loop.
        lock = self._locks.setdefault(user_id, asyncio.Lock())
        self._users[user_id] = self._users.get(user_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[user_id] -= 1
            if not self._users[user_id]:
                del self._users[user_id]
                del self._locks[user_id]


class InMemoryStore(MarketplaceStore):
    """Process-local store for listings, profiles, and chat sessions."""

    def __init__(self, path: Optional[Path] = None, photo_base_url: str = "") -> None:
        """Purpose: Initialize the store and hydrate sessions from disk if available.
        Inputs/Outputs: Inputs are an optional JSON path and a base URL for photo keys.
        Side Effects / State: Loads sessions/messages into memory caches.
        Dependencies: Calls _load; relies on ChatSession/ChatMessage models.
        Failure Modes: JSON decode errors leave empty caches.
        If Removed: Local runs and tests have no store collaborator.
        Testing Notes: Seed listings with add_listings and verify search ordering.
        """
        # Listings, profiles, and tokens are seeded by the caller; only chats are persisted.
        self._path = path
        self._photo_base_url = photo_base_url.rstrip("/")
        self._listings: Dict[str, Listing] = {}
        self._profiles: Dict[str, Profile] = {}
        self._tokens: Dict[str, AuthenticatedUser] = {}
        self._sessions: Dict[str, ChatSession] = {}
        self._messages: Dict[str, List[ChatMessage]] = {}
        self._session_locks = SessionLocks()
        self._load()

    def _load(self) -> None:
        """Purpose: Restore chat sessions and messages written by _persist.
        Inputs/Outputs: Reads self._path; no return value.
        Side Effects / State: Fills _sessions and _messages.
        Dependencies: ChatSession and ChatMessage validation.
        Failure Modes: An absent or unparseable file starts the store empty.
        If Removed: Local chats are lost on every restart.
        Testing Notes: Write garbage to the file and expect no sessions.
        """
        # No path means a purely in-memory store.
        if not self._path or not self._path.exists():
            return
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            return
        for raw in data.get("sessions", []):
            session = ChatSession.model_validate(raw)
            self._sessions[session.id] = session
        for session_id, messages in data.get("messages", {}).items():
            self._messages[session_id] = [ChatMessage.model_validate(msg) for msg in messages]

    def _persist(self) -> None:
        # Serialize sessions and messages; listings and profiles are seeded data.
        if not self._path:
            return
        payload = {
            "sessions": [session.model_dump(mode="json") for session in self._sessions.values()],
            "messages": {
                session_id: [message.model_dump(mode="json") for message in messages]
                for session_id, messages in self._messages.items()
            },
        }
        self._path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")

    def add_listings(self, listings: Iterable[Listing]) -> None:
        for listing in listings:
            self._listings[listing.id] = listing

    def add_profile(self, profile: Profile) -> None:
        self._profiles[profile.id] = profile

    def register_token(self, token: str, user: AuthenticatedUser) -> None:
        self._tokens[token] = user

    async def get_listings(
        self,
        listing_filter: ListingFilter,
        text: Optional[str] = None,
        limit: int = 20,
    ) -> List[Listing]:
        matches = [item for item in self._listings.values() if listing_matches(item, listing_filter, text)]
        matches.sort(key=lambda item: item.created_at, reverse=True)
        return matches[:limit]

    async def get_listings_by_seller(self, user_id: str) -> List[Listing]:
        owned = [item for item in self._listings.values() if item.seller_id == user_id]
        return sorted(owned, key=lambda item: item.created_at, reverse=True)

    async def count_listings(self, campus: Optional[str] = None) -> int:
        if campus is None:
            return len(self._listings)
        return sum(1 for item in self._listings.values() if item.campus == campus)

    async def get_category_counts(self) -> Dict[str, int]:
        return dict(Counter(item.category for item in self._listings.values()))

    async def get_profile(self, user_id: str) -> Optional[Profile]:
        return self._profiles.get(user_id)

    async def get_or_create_session(self, user_id: str) -> ChatSession:
        """Purpose: Return the user's active session, creating one if none exists.
        Inputs/Outputs: Input is user_id; output is the active ChatSession.
        Side Effects / State: May insert a session and persist to disk.
        Dependencies: SessionLocks serializes check-then-insert per user.
        Failure Modes: Persist can raise IO errors.
        If Removed: Chats cannot be grouped into sessions.
        Testing Notes: Two concurrent calls for one user must return the same session.
        """
        async with self._session_locks.hold(user_id):
            active = [s for s in self._sessions.values() if s.user_id == user_id and s.is_active]
            if active:
                return max(active, key=lambda s: s.created_at)
            await asyncio.sleep(0)
            now = _utcnow()
            session = ChatSession(id=str(uuid.uuid4()), user_id=user_id, is_active=True, created_at=now, updated_at=now)
            self._sessions[session.id] = session
            self._messages.setdefault(session.id, [])
            self._persist()
            return session

    async def append_message(
        self,
        session_id: str,
        role: Role,
        content: str,
        user_id: Optional[str] = None,
        metadata: Optional[Dict[str, object]] = None,
    ) -> ChatMessage:
        now = _utcnow()
        message = ChatMessage(
            id=str(uuid.uuid4()),
            session_id=session_id,
            user_id=user_id,
            role=role,
            content=content,
            created_at=now,
            metadata=dict(metadata or {}),
        )
        self._messages.setdefault(session_id, []).append(message)
        session = self._sessions.get(session_id)
        if session is not None:
            self._sessions[session_id] = session.model_copy(update={"updated_at": now})
        self._persist()
        return message

    async def get_messages(self, session_id: str, limit: int = 50) -> List[ChatMessage]:
        messages = self._messages.get(session_id, [])
        if limit <= 0:
            return []
        return list(messages[-limit:])

    async def count_messages(self, session_id: str) -> int:
        return len(self._messages.get(session_id, []))

    async def message_time_bounds(self, session_id: str) -> Tuple[Optional[datetime], Optional[datetime]]:
        messages = self._messages.get(session_id, [])
        if not messages:
            return None, None
        return messages[0].created_at, messages[-1].created_at

    async def set_session_active(self, session_id: str, active: bool) -> None:
        session = self._sessions.get(session_id)
        if session is None:
            return
        self._sessions[session_id] = session.model_copy(update={"is_active": active, "updated_at": _utcnow()})
        self._persist()

    async def delete_session_cascade(self, session_id: str) -> None:
        # Messages go first so none can outlive their session.
        self._messages.pop(session_id, None)
        self._sessions.pop(session_id, None)
        self._persist()

    async def list_sessions(self, user_id: str) -> List[ChatSession]:
        owned = [s for s in self._sessions.values() if s.user_id == user_id]
        return sorted(owned, key=lambda s: s.updated_at, reverse=True)

    async def authenticate(self, token: str) -> Optional[AuthenticatedUser]:
        return self._tokens.get(token)

    def public_photo_url(self, key: str) -> str:
        if key.startswith(("http://", "https://")) or not self._photo_base_url:
            return key
        return f"{self._photo_base_url}/{key.lstrip('/')}"
