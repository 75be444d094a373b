from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from datetime import datetime
from typing import Callable, List, Optional

from pydantic import Field

from .models import Listing
from .store import ListingFilter, MarketplaceStore

logger = logging.getLogger("campus_assistant.retrieval")

MAX_RESULTS = 20

_MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")


class EnhancedListing(Listing):
    """Listing plus display fields derived at read time; never stored."""
    image_urls: List[str] = Field(default_factory=list)
    formatted_date: str = ""
    post_url: str = ""


def format_listing_date(value: datetime) -> str:
    # "Jan 5, 2025" regardless of process locale.
    return f"{_MONTHS[value.month - 1]} {value.day}, {value.year}"


def enrich_listing(listing: Listing, resolve_photo: Callable[[str], str]) -> EnhancedListing:
    """Attach image URLs, a short date, and the post link to a listing."""
    return EnhancedListing(
        **listing.model_dump(),
        image_urls=[resolve_photo(key) for key in listing.photos if key],
        formatted_date=format_listing_date(listing.created_at),
        post_url=f"/post/{listing.id}",
    )


def effective_campus(
    filter_campus: Optional[str],
    user_university: Optional[str],
    search_all_campuses: bool,
) -> Optional[str]:
    """Campus a search is constrained to: an explicit filter always wins over scope."""
    if filter_campus:
        return filter_campus
    if not search_all_campuses and user_university:
        return user_university
    return None


class RetrievalGateway:
    """Executes listing searches against the store and enriches the rows."""

    def __init__(
        self,
        store: MarketplaceStore,
        limit: int = MAX_RESULTS,
        timeout: float = 5.0,
    ) -> None:
        self._store = store
        self._limit = limit
        self._timeout = timeout

    async def search(
        self,
        query: str,
        user_university: Optional[str] = None,
        listing_filter: Optional[ListingFilter] = None,
        search_all_campuses: bool = True,
    ) -> List[EnhancedListing]:
        """Purpose: Run a filtered, newest-first listing search.
        Inputs/Outputs: Free-text query, the user's university, a ListingFilter,
            and the campus scope; output is up to `limit` EnhancedListing rows.
        Side Effects / State: One store read.
        Dependencies: MarketplaceStore.get_listings, effective_campus, enrich_listing.
        Failure Modes: Store errors and timeouts are logged and yield [].
        If Removed: Search intents cannot be answered.
        Testing Notes: Query equal to the subcategory must not be sent as text.
        """
        # Resolve campus precedence, then drop a query that only repeats the subcategory.
        listing_filter = listing_filter or ListingFilter()
        campus = effective_campus(listing_filter.campus, user_university, search_all_campuses)
        listing_filter = replace(listing_filter, campus=campus)
        text = (query or "").strip()
        if (
            listing_filter.main_category
            and listing_filter.sub_category
            and text.lower() == listing_filter.sub_category.lower()
        ):
            text = ""
        try:
            rows = await asyncio.wait_for(
                self._store.get_listings(listing_filter, text or None, self._limit),
                self._timeout,
            )
        except Exception as exc:
            logger.error("listing search failed query=%s campus=%s error=%s", text, campus, exc)
            return []
        logger.info(
            "listing search query=%s category=%s subcategory=%s campus=%s results=%s",
            text,
            listing_filter.main_category,
            listing_filter.sub_category,
            campus,
            len(rows),
        )
        return [enrich_listing(row, self._store.public_photo_url) for row in rows[: self._limit]]

    async def recent(self, limit: int = 10, campus: Optional[str] = None) -> List[EnhancedListing]:
        """Newest listings, optionally at one campus; [] on failure."""
        try:
            rows = await asyncio.wait_for(
                self._store.get_listings(ListingFilter(campus=campus), None, limit),
                self._timeout,
            )
        except Exception as exc:
            logger.error("recent listings failed campus=%s error=%s", campus, exc)
            return []
        return [enrich_listing(row, self._store.public_photo_url) for row in rows]
