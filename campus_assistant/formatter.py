"""Deterministic reply templates for listing results.

Everything here is a pure function of its inputs. Truncation length, the
number of listings shown, and singular/plural wording are fixed contracts that
tests assert on.
"""

from __future__ import annotations

from typing import Optional, Sequence

from .retrieval import EnhancedListing
from .utils import pluralize

MAX_SHOWN = 5
DESCRIPTION_LIMIT = 150
LISTING_SEPARATOR = "\n\n---\n\n"
ENTIRE_MARKETPLACE = "in the entire marketplace"


def format_price(price: Optional[float]) -> str:
    if not price:
        return "Free"
    if float(price).is_integer():
        return f"${int(price):,}"
    return f"${price:,.2f}"


def truncate_description(description: str, limit: int = DESCRIPTION_LIMIT) -> str:
    text = (description or "").strip()
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


def scope_label(campus: Optional[str]) -> str:
    """Human wording for where a search ran."""
    if campus:
        return f"at {campus}"
    return ENTIRE_MARKETPLACE


def format_listing(listing: EnhancedListing) -> str:
    """Purpose: Render one listing as a fixed multi-line block.
    Inputs/Outputs: Input is an EnhancedListing; output is the block text.
    Side Effects / State: None.
    Dependencies: format_price, truncate_description, pluralize.
    Failure Modes: None; empty optional fields drop their line.
    If Removed: Search replies have no per-listing detail.
    Testing Notes: A 200-character description ends in "..." after 150 chars.
    """
    # Title, price, campus, date, photos, description, link.
    lines = [f"**{listing.title}**", f"Price: {format_price(listing.price)}"]
    if listing.campus:
        lines.append(f"Campus: {listing.campus}")
    if listing.formatted_date:
        lines.append(f"Posted: {listing.formatted_date}")
    photo_count = len(listing.image_urls)
    if photo_count:
        lines.append(f"{photo_count} {pluralize(photo_count, 'photo')} available")
    else:
        lines.append("No photos yet")
    description = truncate_description(listing.description)
    if description:
        lines.append(description)
    lines.append(f"View Full Details -> /post/{listing.id}")
    return "\n".join(lines)


def format_no_results(query: Optional[str], label: str) -> str:
    """Zero-result template with three concrete next actions."""
    subject = f' matching "{query}"' if query else ""
    return (
        f"I couldn't find any listings{subject} {label}.\n\n"
        "Here's what you can do next:\n"
        "1. Broaden your search: try a different keyword, or ask me to search all campuses.\n"
        "2. Create a post: list what you're looking for so sellers can reach you.\n"
        "3. Set an alert: check back soon, since new listings are posted every day."
    )


def format_result_set(
    listings: Sequence[EnhancedListing],
    label: str = ENTIRE_MARKETPLACE,
    total_count: Optional[int] = None,
    query: Optional[str] = None,
) -> str:
    """Purpose: Render a search result set as the final reply text.
    Inputs/Outputs: Listings (newest first), a scope label, the total match
        count (defaults to len(listings)), and the query for wording.
    Side Effects / State: None.
    Dependencies: format_listing, format_no_results.
    Failure Modes: None.
    If Removed: Search intents produce no reply.
    Testing Notes: 7 listings show 5 blocks plus "...and 2 more items.".
    """
    # Zero results get their own template, never an empty string.
    total = len(listings) if total_count is None else total_count
    if total <= 0 or not listings:
        return format_no_results(query, label)
    subject = f' matching "{query}"' if query else ""
    header = f"I found {total} {pluralize(total, 'item')}{subject} {label}:"
    body = LISTING_SEPARATOR.join(format_listing(listing) for listing in listings[:MAX_SHOWN])
    parts = [header, body]
    if total > MAX_SHOWN:
        remaining = total - MAX_SHOWN
        parts.append(f"...and {remaining} more {pluralize(remaining, 'item')}.")
    if total == 1:
        parts.append("Would you like more details about this item or help contacting the seller?")
    else:
        parts.append("Would you like more details about any of these items, or should I narrow the search?")
    return "\n\n".join(parts)


def format_my_listings(listings: Sequence[EnhancedListing], campus: Optional[str] = None) -> str:
    """Render the user's own listings, or the empty-state nudge."""
    where = f" at {campus}" if campus else ""
    if not listings:
        return (
            f"You don't have any active listings{where} yet. "
            "Would you like to create your first post? Tap \"Create Post\" to get started."
        )
    total = len(listings)
    header = f"You have {total} active {pluralize(total, 'listing')}{where}:"
    body = LISTING_SEPARATOR.join(format_listing(listing) for listing in listings[:MAX_SHOWN])
    parts = [header, body]
    if total > MAX_SHOWN:
        remaining = total - MAX_SHOWN
        parts.append(f"...and {remaining} more {pluralize(remaining, 'listing')}.")
    parts.append("Want to update one of these or create a new post?")
    return "\n\n".join(parts)
