"""Tests for the Supabase-backed store using httpx.MockTransport."""

import json

import httpx
import pytest

from campus_assistant.errors import StoreError
from campus_assistant.store import ListingFilter
from campus_assistant.supabase_store import SupabaseStore

POST_ROW = {
    "id": "post-1",
    "title": "Desk lamp",
    "description": None,
    "price": 15,
    "main_category": "For Sale",
    "sub_category": "Furniture",
    "campus": "UCLA",
    "photos": None,
    "seller_id": "seller-1",
    "seller_name": "Sam",
    "created_at": "2025-01-10T08:00:00+00:00",
}

SESSION_ROW = {
    "id": "sess-1",
    "user_id": "user-1",
    "is_active": True,
    "created_at": "2025-01-10T08:00:00+00:00",
    "updated_at": "2025-01-10T08:00:00+00:00",
}


def make_store(handler):
    return SupabaseStore(
        "https://project.supabase.test",
        "service-key",
        photo_bucket="post-photos",
        transport=httpx.MockTransport(handler),
    )


async def test_get_listings_builds_postgrest_query():
    """Test filters, text search, ordering, and limit reach PostgREST."""
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json=[POST_ROW])

    store = make_store(handler)
    listings = await store.get_listings(
        ListingFilter(main_category="For Sale", campus="UCLA", min_price=10, max_price=50),
        text="lamp",
        limit=20,
    )
    await store.aclose()

    params = seen[0].url.params
    assert seen[0].url.path == "/rest/v1/posts"
    assert params["main_category"] == "eq.For Sale"
    assert params["campus"] == "eq.UCLA"
    assert params.get_list("price") == ["gte.10", "lte.50"]
    assert params["order"] == "created_at.desc"
    assert params["limit"] == "20"
    assert params["or"].startswith("(title.ilike.*lamp*,description.ilike.*lamp*")
    assert seen[0].headers["apikey"] == "service-key"
    assert listings[0].category == "For Sale"
    assert listings[0].description == ""
    assert listings[0].photos == []


async def test_text_search_strips_reserved_characters():
    """Test user text cannot break out of the or=(...) expression."""
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json=[])

    store = make_store(handler)
    await store.get_listings(ListingFilter(), text="desk,(cheap)*")
    await store.aclose()

    value = seen[0].url.params["or"]
    assert value.count("(") == 1
    assert value.count(")") == 1
    assert "*desk  cheap*" in value


async def test_count_listings_reads_content_range():
    """Test the exact count comes from the Content-Range header."""
    def handler(request):
        assert request.headers["prefer"] == "count=exact"
        return httpx.Response(206, json=[{"id": "x"}], headers={"Content-Range": "0-0/42"})

    store = make_store(handler)
    assert await store.count_listings("UCLA") == 42
    await store.aclose()


async def test_count_messages_reads_content_range():
    """Test message counts are exact, not capped by a page of rows."""
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(206, json=[{"id": "m1"}], headers={"Content-Range": "0-0/1500"})

    store = make_store(handler)
    assert await store.count_messages("sess-1") == 1500
    await store.aclose()

    assert seen[0].url.path == "/rest/v1/chat_messages"
    assert seen[0].url.params["session_id"] == "eq.sess-1"
    assert seen[0].headers["range"] == "0-0"


async def test_message_time_bounds_reads_one_row_per_end():
    """Test the first and last timestamps come from ordered single-row reads."""
    rows = {
        "created_at.asc": {"id": "m1", "session_id": "sess-1", "role": "user", "content": "first",
                           "created_at": "2025-01-10T08:00:00+00:00"},
        "created_at.desc": {"id": "m9", "session_id": "sess-1", "role": "assistant", "content": "last",
                            "created_at": "2025-01-12T09:30:00+00:00"},
    }

    def handler(request):
        assert request.url.params["limit"] == "1"
        return httpx.Response(200, json=[rows[request.url.params["order"]]])

    store = make_store(handler)
    first, last = await store.message_time_bounds("sess-1")
    await store.aclose()

    assert first.isoformat() == "2025-01-10T08:00:00+00:00"
    assert last.isoformat() == "2025-01-12T09:30:00+00:00"


async def test_message_time_bounds_for_empty_session():
    """Test a session without messages has no bounds."""
    store = make_store(lambda request: httpx.Response(200, json=[]))

    assert await store.message_time_bounds("sess-1") == (None, None)
    await store.aclose()


async def test_session_locks_are_released_after_insert():
    """Test the per-user lock map is empty once session creation finishes."""
    def handler(request):
        if request.method == "GET":
            return httpx.Response(200, json=[])
        return httpx.Response(201, json=[SESSION_ROW])

    store = make_store(handler)
    await store.get_or_create_session("user-1")
    await store.aclose()

    assert len(store._session_locks) == 0


async def test_http_error_becomes_store_error():
    """Test transport and status failures are wrapped."""
    store = make_store(lambda request: httpx.Response(500, json={"message": "boom"}))

    with pytest.raises(StoreError):
        await store.get_profile("user-1")
    await store.aclose()


async def test_get_or_create_session_recovers_from_conflict():
    """Test a 409 on insert returns the session another writer created."""
    state = {"selects": 0}

    def handler(request):
        if request.method == "GET":
            state["selects"] += 1
            return httpx.Response(200, json=[] if state["selects"] == 1 else [SESSION_ROW])
        if request.method == "POST":
            return httpx.Response(409, json={"code": "23505"})
        return httpx.Response(400)

    store = make_store(handler)
    session = await store.get_or_create_session("user-1")
    await store.aclose()

    assert session.id == "sess-1"
    assert state["selects"] == 2


async def test_get_or_create_session_inserts_when_missing():
    """Test a new active session is inserted with return=representation."""
    posted = []

    def handler(request):
        if request.method == "GET":
            return httpx.Response(200, json=[])
        posted.append(json.loads(request.content))
        assert request.headers["prefer"] == "return=representation"
        return httpx.Response(201, json=[SESSION_ROW])

    store = make_store(handler)
    session = await store.get_or_create_session("user-1")
    await store.aclose()

    assert session.is_active
    assert posted[0]["user_id"] == "user-1"
    assert posted[0]["is_active"] is True


async def test_get_messages_reverses_newest_first_rows():
    """Test rows fetched newest first come back oldest first."""
    rows = [
        {"id": f"m{i}", "session_id": "sess-1", "role": "user", "content": f"c{i}",
         "created_at": f"2025-01-10T08:0{i}:00+00:00", "metadata": None}
        for i in (3, 2, 1)
    ]
    store = make_store(lambda request: httpx.Response(200, json=rows))

    messages = await store.get_messages("sess-1", limit=3)
    await store.aclose()

    assert [m.content for m in messages] == ["c1", "c2", "c3"]
    assert messages[0].metadata == {}


async def test_delete_cascade_removes_messages_first():
    """Test messages are deleted before their session."""
    calls = []

    def handler(request):
        calls.append((request.method, request.url.path))
        return httpx.Response(204)

    store = make_store(handler)
    await store.delete_session_cascade("sess-1")
    await store.aclose()

    assert calls == [("DELETE", "/rest/v1/chat_messages"), ("DELETE", "/rest/v1/chat_sessions")]


async def test_authenticate():
    """Test valid tokens resolve and rejected tokens yield None."""
    def handler(request):
        if request.headers["authorization"] == "Bearer good":
            return httpx.Response(200, json={"id": "user-1", "email": "ana@ucla.edu"})
        return httpx.Response(401, json={"msg": "invalid"})

    store = make_store(handler)
    user = await store.authenticate("good")
    rejected = await store.authenticate("bad")
    await store.aclose()

    assert user.id == "user-1"
    assert user.email == "ana@ucla.edu"
    assert rejected is None


def test_public_photo_url():
    """Test storage keys resolve to the public bucket URL."""
    store = make_store(lambda request: httpx.Response(200))

    assert store.public_photo_url("u1/a.jpg") == (
        "https://project.supabase.test/storage/v1/object/public/post-photos/u1/a.jpg"
    )
    assert store.public_photo_url("https://cdn.test/a.jpg") == "https://cdn.test/a.jpg"


def test_requires_credentials():
    """Test missing URL or key is rejected."""
    with pytest.raises(ValueError):
        SupabaseStore("", "key")
