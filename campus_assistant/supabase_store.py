"""MarketplaceStore backed by Supabase (PostgREST + GoTrue) over httpx."""

from __future__ import annotations

import asyncio
import logging
import re
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx

from .errors import StoreError
from .models import AuthenticatedUser, ChatMessage, ChatSession, Listing, Profile, Role
from .store import ListingFilter, MarketplaceStore, SessionLocks

logger = logging.getLogger("campus_assistant.supabase_store")

# Characters with meaning inside a PostgREST or=(...) expression.
RESERVED_FILTER_CHARS_RE = re.compile(r"[,()*%\\\"]")
TEXT_SEARCH_COLUMNS = ("title", "description", "main_category", "sub_category", "campus")

Params = Sequence[Tuple[str, str]]


class SupabaseStore(MarketplaceStore):
    """Reads posts/profiles and writes chat_sessions/chat_messages through the REST API."""

    def __init__(
        self,
        url: str,
        key: str,
        photo_bucket: str = "post-photos",
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """Purpose: Build the HTTP client shared by every store call.
        Inputs/Outputs: Supabase URL, service key, photo bucket, timeout, and an
            optional transport (tests pass httpx.MockTransport).
        Side Effects / State: Opens an httpx.AsyncClient; close it with aclose().
        Dependencies: httpx.
        Failure Modes: Raises ValueError when url or key is empty.
        If Removed: Production deployments fall back to the in-memory store.
        Testing Notes: Route requests through MockTransport and assert query params.
        """
        # Service-key headers apply to every REST call.
        if not url or not key:
            raise ValueError("SUPABASE_URL and SUPABASE_KEY are required")
        self._url = url.rstrip("/")
        self._key = key
        self._photo_bucket = photo_bucket
        self._session_locks = SessionLocks()
        self._client = httpx.AsyncClient(
            base_url=self._url,
            headers={
                "apikey": key,
                "Authorization": f"Bearer {key}",
                "Content-Type": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Params] = None,
        json: Any = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        try:
            response = await self._client.request(method, path, params=params, json=json, headers=headers)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.error("supabase request failed method=%s path=%s error=%s", method, path, exc)
            raise StoreError(f"{method} {path} failed") from exc
        return response

    async def _select(self, table: str, params: Params) -> List[Dict[str, Any]]:
        response = await self._request("GET", f"/rest/v1/{table}", params=params)
        try:
            rows = response.json()
        except ValueError as exc:
            raise StoreError(f"invalid JSON from {table}") from exc
        if not isinstance(rows, list):
            raise StoreError(f"unexpected payload from {table}")
        return rows

    async def _insert(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        response = await self._request(
            "POST",
            f"/rest/v1/{table}",
            json=row,
            headers={"Prefer": "return=representation"},
        )
        rows = response.json()
        if not rows:
            raise StoreError(f"insert into {table} returned nothing")
        return rows[0]

    async def _count(self, table: str, params: Params) -> int:
        """Exact row count read from the Content-Range header."""
        response = await self._request(
            "GET",
            f"/rest/v1/{table}",
            params=[("select", "id"), *params],
            headers={"Prefer": "count=exact", "Range-Unit": "items", "Range": "0-0"},
        )
        return _parse_content_range_total(response.headers.get("content-range", ""))

    async def get_listings(
        self,
        listing_filter: ListingFilter,
        text: Optional[str] = None,
        limit: int = 20,
    ) -> List[Listing]:
        params = _listing_params(listing_filter, text)
        params += [("order", "created_at.desc"), ("limit", str(limit))]
        rows = await self._select("posts", params)
        return [Listing.model_validate(row) for row in rows]

    async def get_listings_by_seller(self, user_id: str) -> List[Listing]:
        rows = await self._select(
            "posts",
            [("select", "*"), ("seller_id", f"eq.{user_id}"), ("order", "created_at.desc")],
        )
        return [Listing.model_validate(row) for row in rows]

    async def count_listings(self, campus: Optional[str] = None) -> int:
        params: List[Tuple[str, str]] = []
        if campus:
            params.append(("campus", f"eq.{campus}"))
        return await self._count("posts", params)

    async def get_category_counts(self) -> Dict[str, int]:
        rows = await self._select("posts", [("select", "main_category")])
        return dict(Counter(row.get("main_category") for row in rows if row.get("main_category")))

    async def get_profile(self, user_id: str) -> Optional[Profile]:
        rows = await self._select("profiles", [("select", "*"), ("id", f"eq.{user_id}"), ("limit", "1")])
        if not rows:
            return None
        return Profile.model_validate(rows[0])

    async def _active_session(self, user_id: str) -> Optional[ChatSession]:
        rows = await self._select(
            "chat_sessions",
            [
                ("select", "*"),
                ("user_id", f"eq.{user_id}"),
                ("is_active", "eq.true"),
                ("order", "created_at.desc"),
                ("limit", "1"),
            ],
        )
        return ChatSession.model_validate(rows[0]) if rows else None

    async def get_or_create_session(self, user_id: str) -> ChatSession:
        """Purpose: Return the user's active session or insert one.
        Inputs/Outputs: Input is user_id; output is the active ChatSession.
        Side Effects / State: May insert into chat_sessions.
        Dependencies: A partial unique index on chat_sessions(user_id) where
            is_active makes a concurrent duplicate insert fail with 409; the
            per-user lock covers callers inside this process.
        Failure Modes: StoreError on transport failure or when the conflict
            winner cannot be read back.
        If Removed: Messages cannot be attached to a session.
        Testing Notes: MockTransport returning 409 on insert must yield the
            session selected afterwards.
        """
        # Select first, insert second, re-select when another writer won.
        async with self._session_locks.hold(user_id):
            existing = await self._active_session(user_id)
            if existing is not None:
                return existing
            now = _utcnow_iso()
            try:
                row = await self._insert(
                    "chat_sessions",
                    {"user_id": user_id, "is_active": True, "created_at": now, "updated_at": now},
                )
            except StoreError as exc:
                cause = exc.__cause__
                if not (isinstance(cause, httpx.HTTPStatusError) and cause.response.status_code == 409):
                    raise
                logger.info("session insert conflict user=%s", user_id)
                winner = await self._active_session(user_id)
                if winner is None:
                    raise
                return winner
            return ChatSession.model_validate(row)

    async def append_message(
        self,
        session_id: str,
        role: Role,
        content: str,
        user_id: Optional[str] = None,
        metadata: Optional[Dict[str, object]] = None,
    ) -> ChatMessage:
        now = _utcnow_iso()
        row = await self._insert(
            "chat_messages",
            {
                "session_id": session_id,
                "user_id": user_id,
                "role": role,
                "content": content,
                "metadata": dict(metadata or {}),
                "created_at": now,
            },
        )
        await self._request(
            "PATCH",
            "/rest/v1/chat_sessions",
            params=[("id", f"eq.{session_id}")],
            json={"updated_at": now},
        )
        return ChatMessage.model_validate(row)

    async def get_messages(self, session_id: str, limit: int = 50) -> List[ChatMessage]:
        if limit <= 0:
            return []
        rows = await self._select(
            "chat_messages",
            [
                ("select", "*"),
                ("session_id", f"eq.{session_id}"),
                ("order", "created_at.desc"),
                ("limit", str(limit)),
            ],
        )
        # Newest N were fetched; callers want them oldest first.
        return [ChatMessage.model_validate(row) for row in reversed(rows)]

    async def count_messages(self, session_id: str) -> int:
        return await self._count("chat_messages", [("session_id", f"eq.{session_id}")])

    async def message_time_bounds(self, session_id: str) -> Tuple[Optional[datetime], Optional[datetime]]:
        # Oldest and newest created_at, one row each.
        oldest, newest = await asyncio.gather(
            self._edge_message_time(session_id, "asc"),
            self._edge_message_time(session_id, "desc"),
        )
        return oldest, newest

    async def _edge_message_time(self, session_id: str, direction: str) -> Optional[datetime]:
        rows = await self._select(
            "chat_messages",
            [
                ("select", "*"),
                ("session_id", f"eq.{session_id}"),
                ("order", f"created_at.{direction}"),
                ("limit", "1"),
            ],
        )
        if not rows:
            return None
        return ChatMessage.model_validate(rows[0]).created_at

    async def set_session_active(self, session_id: str, active: bool) -> None:
        await self._request(
            "PATCH",
            "/rest/v1/chat_sessions",
            params=[("id", f"eq.{session_id}")],
            json={"is_active": active, "updated_at": _utcnow_iso()},
        )

    async def delete_session_cascade(self, session_id: str) -> None:
        # Messages first; a failure here leaves the session intact.
        await self._request("DELETE", "/rest/v1/chat_messages", params=[("session_id", f"eq.{session_id}")])
        await self._request("DELETE", "/rest/v1/chat_sessions", params=[("id", f"eq.{session_id}")])

    async def list_sessions(self, user_id: str) -> List[ChatSession]:
        rows = await self._select(
            "chat_sessions",
            [("select", "*"), ("user_id", f"eq.{user_id}"), ("order", "updated_at.desc")],
        )
        return [ChatSession.model_validate(row) for row in rows]

    async def authenticate(self, token: str) -> Optional[AuthenticatedUser]:
        """Resolve a user access token through GoTrue; invalid tokens yield None."""
        try:
            response = await self._client.get(
                "/auth/v1/user",
                headers={"apikey": self._key, "Authorization": f"Bearer {token}"},
            )
        except httpx.HTTPError as exc:
            logger.error("supabase auth failed error=%s", exc)
            raise StoreError("auth lookup failed") from exc
        if response.status_code in (401, 403):
            return None
        if response.is_error:
            raise StoreError(f"auth lookup returned {response.status_code}")
        payload = response.json()
        if not payload.get("id"):
            return None
        return AuthenticatedUser(id=payload["id"], email=payload.get("email") or "")

    def public_photo_url(self, key: str) -> str:
        if key.startswith(("http://", "https://")):
            return key
        return f"{self._url}/storage/v1/object/public/{self._photo_bucket}/{key.lstrip('/')}"

    async def aclose(self) -> None:
        await self._client.aclose()


def _listing_params(listing_filter: ListingFilter, text: Optional[str]) -> List[Tuple[str, str]]:
    params: List[Tuple[str, str]] = [("select", "*")]
    if listing_filter.main_category:
        params.append(("main_category", f"eq.{listing_filter.main_category}"))
    if listing_filter.sub_category:
        params.append(("sub_category", f"eq.{listing_filter.sub_category}"))
    if listing_filter.campus:
        params.append(("campus", f"eq.{listing_filter.campus}"))
    if listing_filter.min_price is not None:
        params.append(("price", f"gte.{listing_filter.min_price}"))
    if listing_filter.max_price is not None:
        params.append(("price", f"lte.{listing_filter.max_price}"))
    cleaned = RESERVED_FILTER_CHARS_RE.sub(" ", text or "").strip()
    if cleaned:
        clauses = ",".join(f"{column}.ilike.*{cleaned}*" for column in TEXT_SEARCH_COLUMNS)
        params.append(("or", f"({clauses})"))
    return params


def _parse_content_range_total(header: str) -> int:
    # "0-0/42" or "*/0"
    _, _, total = header.partition("/")
    if not total or total == "*":
        raise StoreError(f"missing count in content-range {header!r}")
    try:
        return int(total)
    except ValueError as exc:
        raise StoreError(f"bad content-range {header!r}") from exc


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
