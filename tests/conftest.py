"""Pytest fixtures for campus assistant tests."""

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional

import pytest

from campus_assistant.config import BASE_DIR, Settings
from campus_assistant.errors import GenerativeTextError, StoreError
from campus_assistant.models import AuthenticatedUser, Listing, Profile
from campus_assistant.orchestrator import ConversationOrchestrator
from campus_assistant.store import InMemoryStore

BASE_TIME = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)


def make_listing(
    listing_id: str,
    title: str,
    category: str = "For Sale",
    subcategory: str = "Electronics",
    campus: str = "Stanford University",
    price: Optional[float] = 100.0,
    description: str = "",
    seller_id: str = "seller-1",
    age_days: int = 0,
    photos: Optional[List[str]] = None,
) -> Listing:
    return Listing(
        id=listing_id,
        title=title,
        description=description or f"{title} in good condition.",
        price=price,
        category=category,
        subcategory=subcategory,
        campus=campus,
        photos=photos or [],
        seller_id=seller_id,
        seller_name="Sam Seller",
        created_at=BASE_TIME - timedelta(days=age_days),
    )


class StubGenerator:
    """Records prompts and returns a canned reply."""

    def __init__(self, reply: str = "Happy to help with the marketplace!", error: Optional[Exception] = None):
        self.reply = reply
        self.error = error
        self.prompts: List[str] = []

    def generate_text(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.reply


class FailingStore(InMemoryStore):
    """Store whose every read and write raises StoreError."""

    async def get_listings(self, listing_filter, text=None, limit=20):
        raise StoreError("listings unavailable")

    async def get_listings_by_seller(self, user_id):
        raise StoreError("listings unavailable")

    async def count_listings(self, campus=None):
        raise StoreError("count unavailable")

    async def get_category_counts(self):
        raise StoreError("count unavailable")

    async def get_profile(self, user_id):
        raise StoreError("profiles unavailable")

    async def get_or_create_session(self, user_id):
        raise StoreError("sessions unavailable")

    async def append_message(self, session_id, role, content, user_id=None, metadata=None):
        raise StoreError("messages unavailable")

    async def get_messages(self, session_id, limit=50):
        raise StoreError("messages unavailable")

    async def count_messages(self, session_id):
        raise StoreError("messages unavailable")

    async def message_time_bounds(self, session_id):
        raise StoreError("messages unavailable")

    async def list_sessions(self, user_id):
        raise StoreError("sessions unavailable")


@pytest.fixture
def settings() -> Settings:
    """Settings with small, deterministic limits and no external services."""
    return Settings(
        gemini_api_key="",
        gemini_model="gemini-2.0-flash",
        gemini_temperature=0.7,
        gemini_max_output_tokens=1024,
        supabase_url="",
        supabase_key="",
        photo_bucket="post-photos",
        store_path=None,
        prompts_dir=(BASE_DIR / "prompts").resolve(),
        context_window=20,
        history_limit=50,
        search_limit=20,
        store_timeout=2.0,
        generation_timeout=2.0,
        rate_limit=3,
        rate_limit_window=60.0,
        platform_name="Campus Marketplace",
        platform_founder="Mark Daniel",
    )


@pytest.fixture
def listings() -> List[Listing]:
    return [
        make_listing("p1", "MacBook Air laptop", age_days=1, price=650, photos=["u1/a.jpg", "u1/b.jpg"]),
        make_listing("p2", "Dell laptop charger", campus="UC Berkeley", age_days=3, price=20),
        make_listing("p3", "Calculus textbook", subcategory="Textbooks", age_days=2, price=None),
        make_listing(
            "p4",
            "Room near campus",
            category="Housing",
            subcategory="Rooms",
            campus="UCLA",
            price=900,
            age_days=5,
        ),
        make_listing("p5", "Old desk lamp", subcategory="Furniture", seller_id="user-1", age_days=4, price=5),
    ]


@pytest.fixture
def user() -> AuthenticatedUser:
    return AuthenticatedUser(id="user-1", email="ana@stanford.edu")


@pytest.fixture
def store(listings, user) -> InMemoryStore:
    store = InMemoryStore(photo_base_url="https://cdn.example.test/post-photos")
    store.add_listings(listings)
    store.add_profile(
        Profile(
            id=user.id,
            email=user.email,
            username="ana",
            full_name="Ana Student",
            university="Stanford University",
            created_at=BASE_TIME - timedelta(days=90),
        )
    )
    store.register_token("valid-token", user)
    return store


@pytest.fixture
def generator() -> StubGenerator:
    return StubGenerator()


@pytest.fixture
def orchestrator(settings, store, generator) -> ConversationOrchestrator:
    return ConversationOrchestrator(settings, store, generator)


@pytest.fixture
def generation_error() -> GenerativeTextError:
    return GenerativeTextError("quota exceeded")


@pytest.fixture
def temp_store_path(tmp_path) -> Path:
    return tmp_path / "sessions.json"


@pytest.fixture
def listing_factory():
    return make_listing


@pytest.fixture
def generator_factory():
    return StubGenerator


@pytest.fixture
def failing_store() -> FailingStore:
    return FailingStore()
