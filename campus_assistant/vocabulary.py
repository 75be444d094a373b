"""Static vocabulary the assistant can recognize.

These tables are the single source of truth for categories, subcategories,
keyword synonyms, free-text phrases, and campuses. Adding a category means
editing the tables here; the matching code in intent.py never names a category.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Dict, Mapping, NamedTuple, Optional, Tuple


class KeywordTarget(NamedTuple):
    category: str
    subcategory: Optional[str] = None


MAIN_CATEGORIES: Tuple[str, ...] = (
    "For Sale",
    "Housing",
    "Services",
    "Jobs",
    "Community",
)

SUBCATEGORIES_BY_CATEGORY: Mapping[str, Tuple[str, ...]] = MappingProxyType(
    {
        "For Sale": (
            "Electronics",
            "Furniture",
            "Textbooks",
            "Clothing",
            "Sports",
            "Vehicles",
            "Tickets",
            "Free Stuff",
            "Miscellaneous",
        ),
        "Housing": ("Apartments", "Rooms", "Sublets", "Roommates"),
        "Services": ("Tutoring", "Moving", "Cleaning", "Repairs"),
        "Jobs": ("Part-Time", "Internships", "On-Campus", "Research"),
        "Community": ("Events", "Lost and Found", "Rideshare", "Study Groups"),
    }
)

_FOR_SALE = "For Sale"

KEYWORD_TO_CATEGORY: Mapping[str, KeywordTarget] = MappingProxyType(
    {
        # Electronics
        "laptop": KeywordTarget(_FOR_SALE, "Electronics"),
        "laptops": KeywordTarget(_FOR_SALE, "Electronics"),
        "computer": KeywordTarget(_FOR_SALE, "Electronics"),
        "macbook": KeywordTarget(_FOR_SALE, "Electronics"),
        "ipad": KeywordTarget(_FOR_SALE, "Electronics"),
        "tablet": KeywordTarget(_FOR_SALE, "Electronics"),
        "phone": KeywordTarget(_FOR_SALE, "Electronics"),
        "iphone": KeywordTarget(_FOR_SALE, "Electronics"),
        "monitor": KeywordTarget(_FOR_SALE, "Electronics"),
        "headphones": KeywordTarget(_FOR_SALE, "Electronics"),
        "camera": KeywordTarget(_FOR_SALE, "Electronics"),
        "calculator": KeywordTarget(_FOR_SALE, "Electronics"),
        "tv": KeywordTarget(_FOR_SALE, "Electronics"),
        # Furniture
        "couch": KeywordTarget(_FOR_SALE, "Furniture"),
        "sofa": KeywordTarget(_FOR_SALE, "Furniture"),
        "desk": KeywordTarget(_FOR_SALE, "Furniture"),
        "chair": KeywordTarget(_FOR_SALE, "Furniture"),
        "table": KeywordTarget(_FOR_SALE, "Furniture"),
        "mattress": KeywordTarget(_FOR_SALE, "Furniture"),
        "dresser": KeywordTarget(_FOR_SALE, "Furniture"),
        "lamp": KeywordTarget(_FOR_SALE, "Furniture"),
        # Textbooks
        "textbook": KeywordTarget(_FOR_SALE, "Textbooks"),
        "books": KeywordTarget(_FOR_SALE, "Textbooks"),
        # Clothing
        "jacket": KeywordTarget(_FOR_SALE, "Clothing"),
        "shoes": KeywordTarget(_FOR_SALE, "Clothing"),
        "sneakers": KeywordTarget(_FOR_SALE, "Clothing"),
        "hoodie": KeywordTarget(_FOR_SALE, "Clothing"),
        "clothes": KeywordTarget(_FOR_SALE, "Clothing"),
        "boot": KeywordTarget(_FOR_SALE, "Clothing"),
        "boots": KeywordTarget(_FOR_SALE, "Clothing"),
        # Sports
        "bike": KeywordTarget(_FOR_SALE, "Sports"),
        "bikes": KeywordTarget(_FOR_SALE, "Sports"),
        "bicycle": KeywordTarget(_FOR_SALE, "Sports"),
        "skateboard": KeywordTarget(_FOR_SALE, "Sports"),
        "snowboard": KeywordTarget(_FOR_SALE, "Sports"),
        # Vehicles
        "car": KeywordTarget(_FOR_SALE, "Vehicles"),
        "cars": KeywordTarget(_FOR_SALE, "Vehicles"),
        "scooter": KeywordTarget(_FOR_SALE, "Vehicles"),
        "motorcycle": KeywordTarget(_FOR_SALE, "Vehicles"),
        # Tickets
        "concert": KeywordTarget(_FOR_SALE, "Tickets"),
        # Housing
        "apartment": KeywordTarget("Housing", "Apartments"),
        "studio": KeywordTarget("Housing", "Apartments"),
        "sublet": KeywordTarget("Housing", "Sublets"),
        "room": KeywordTarget("Housing", "Rooms"),
        "roommate": KeywordTarget("Housing", "Roommates"),
        "rent": KeywordTarget("Housing"),
        # Services
        "tutor": KeywordTarget("Services", "Tutoring"),
        "movers": KeywordTarget("Services", "Moving"),
        "repair": KeywordTarget("Services", "Repairs"),
        # Jobs
        "job": KeywordTarget("Jobs"),
        "internship": KeywordTarget("Jobs", "Internships"),
        # Community
        "rideshare": KeywordTarget("Community", "Rideshare"),
        "carpool": KeywordTarget("Community", "Rideshare"),
    }
)

# Multi-word phrases matched by containment (on word boundaries), never fuzzily.
SYNONYM_PHRASE_TO_CATEGORY: Mapping[str, str] = MappingProxyType(
    {
        "place to live": "Housing",
        "place to stay": "Housing",
        "somewhere to live": "Housing",
        "room for rent": "Housing",
        "summer housing": "Housing",
        "part time job": "Jobs",
        "summer job": "Jobs",
        "work study": "Jobs",
        "help with homework": "Services",
        "someone to help": "Services",
        "study buddy": "Community",
        "ride to": "Community",
        "lost my": "Community",
        "second hand": "For Sale",
        "secondhand": "For Sale",
        "used stuff": "For Sale",
        "dorm stuff": "For Sale",
    }
)

CAMPUS_LIST: Tuple[str, ...] = (
    "Stanford University",
    "UC Berkeley",
    "UCLA",
    "USC",
    "UC San Diego",
    "UC Davis",
    "San Jose State University",
    "Santa Clara University",
)

# Short names accepted in "at <Name>" phrases.
CAMPUS_ALIASES: Mapping[str, str] = MappingProxyType(
    {
        "stanford": "Stanford University",
        "berkeley": "UC Berkeley",
        "cal": "UC Berkeley",
        "ucb": "UC Berkeley",
        "ucsd": "UC San Diego",
        "davis": "UC Davis",
        "sjsu": "San Jose State University",
        "san jose state": "San Jose State University",
        "santa clara": "Santa Clara University",
        "scu": "Santa Clara University",
    }
)

ALL_CAMPUSES_PHRASES: Tuple[str, ...] = (
    "all campuses",
    "all campus",
    "all universities",
    "every campus",
    "everywhere",
    "any campus",
    "other universities",
    "other campuses",
)

MY_CAMPUS_PHRASES: Tuple[str, ...] = (
    "at my school",
    "my campus",
    "my university",
    "my school",
    "my college",
)

# First words after "at" that never start a campus name.
NON_CAMPUS_WORDS = frozenset(
    {
        "a",
        "all",
        "an",
        "any",
        "first",
        "her",
        "his",
        "home",
        "least",
        "midnight",
        "most",
        "night",
        "noon",
        "once",
        "our",
        "some",
        "that",
        "the",
        "their",
        "this",
        "what",
        "work",
        "your",
    }
)

# Words that end a lower-case campus name captured after "at".
CAMPUS_PHRASE_BREAKS = frozenset(
    {
        "and",
        "are",
        "around",
        "asap",
        "because",
        "but",
        "buying",
        "by",
        "can",
        "do",
        "does",
        "for",
        "from",
        "has",
        "have",
        "i",
        "if",
        "in",
        "is",
        "looking",
        "near",
        "next",
        "now",
        "on",
        "or",
        "please",
        "searching",
        "selling",
        "so",
        "thanks",
        "that",
        "this",
        "to",
        "today",
        "tomorrow",
        "tonight",
        "under",
        "was",
        "we",
        "were",
        "which",
        "will",
        "with",
        "you",
    }
)

# Common words that are never fuzzy-matched against the vocabulary.
FUZZY_STOP_WORDS = frozenset(
    {
        "able",
        "about",
        "alone",
        "anything",
        "available",
        "buying",
        "campus",
        "card",
        "cards",
        "care",
        "carry",
        "cart",
        "cheap",
        "class",
        "college",
        "concern",
        "could",
        "every",
        "giving",
        "great",
        "hair",
        "having",
        "hike",
        "items",
        "like",
        "likes",
        "listing",
        "listings",
        "living",
        "looking",
        "looks",
        "movie",
        "other",
        "photo",
        "photos",
        "please",
        "posts",
        "rest",
        "school",
        "search",
        "searching",
        "selling",
        "sent",
        "should",
        "shows",
        "something",
        "study",
        "their",
        "there",
        "things",
        "thanks",
        "these",
        "those",
        "title",
        "touch",
        "went",
        "where",
        "which",
        "would",
        "university",
    }
)


def all_subcategories() -> Tuple[str, ...]:
    """Flatten subcategories in table order."""
    flattened = []
    for subcategories in SUBCATEGORIES_BY_CATEGORY.values():
        flattened.extend(subcategories)
    return tuple(flattened)


def category_for_subcategory(subcategory: str) -> Optional[str]:
    """Reverse lookup of the owning main category (case-insensitive)."""
    wanted = subcategory.lower()
    for category, subcategories in SUBCATEGORIES_BY_CATEGORY.items():
        if any(sub.lower() == wanted for sub in subcategories):
            return category
    return None


def canonical_campus(name: str) -> Optional[str]:
    """Resolve a campus name or alias to the canonical campus string."""
    wanted = " ".join(name.lower().split())
    for campus in CAMPUS_LIST:
        if campus.lower() == wanted:
            return campus
    return CAMPUS_ALIASES.get(wanted)


def campus_names_longest_first() -> Tuple[str, ...]:
    # Longest names first so "UC San Diego" wins over a shorter alias prefix.
    names: Dict[str, None] = {}
    for campus in CAMPUS_LIST:
        names[campus.lower()] = None
    for alias in CAMPUS_ALIASES:
        names[alias] = None
    return tuple(sorted(names, key=len, reverse=True))
