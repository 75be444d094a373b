"""Rule-based search-intent extraction for marketplace chat messages.

Resolution order (first tier that produces an intent wins):
    1. Token match: each whitespace token, in message order, against main
       categories, then subcategories, then keyword synonyms. Exact hits are
       tried before typo-tolerant ones; a hit spelled differently from the
       typed token records a correction note.
    2. Campus scope: computed once for every message and merged into
       whichever tier wins ("all campuses", "my campus", "at <Name>").
    3. Synonym phrases: free-text phrases contained in the message.
    4. Search verbs: "looking for X", "find X", "X for sale", "do you have X",
       "where can I find X".
    5. Category then subcategory names contained anywhere in the message
       (handles multi-word names such as "For Sale" or "Lost and Found").
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, replace
from typing import Callable, List, Optional, Sequence, Tuple

from .fuzzy import DEFAULT_MAX_DISTANCE, fuzzy_match, max_distance_for, transposed_match
from .utils import contains_phrase, find_first_phrase, normalize_text, tokenize
from .vocabulary import (
    ALL_CAMPUSES_PHRASES,
    CAMPUS_PHRASE_BREAKS,
    FUZZY_STOP_WORDS,
    KEYWORD_TO_CATEGORY,
    MAIN_CATEGORIES,
    MY_CAMPUS_PHRASES,
    NON_CAMPUS_WORDS,
    SUBCATEGORIES_BY_CATEGORY,
    SYNONYM_PHRASE_TO_CATEGORY,
    all_subcategories,
    campus_names_longest_first,
    canonical_campus,
    category_for_subcategory,
)

logger = logging.getLogger("campus_assistant.intent")

SEARCH_PATTERNS: Tuple[re.Pattern, ...] = (
    re.compile(r"where can i (?:find|get|buy)\s+(.+)", re.IGNORECASE),
    re.compile(r"do you have\s+(.+)", re.IGNORECASE),
    re.compile(r"(?:looking for|searching for|search for|show me|find me|find)\s+(.+)", re.IGNORECASE),
    re.compile(r"(.+?)\s+(?:for sale|available)\b", re.IGNORECASE),
)

AT_PHRASE_RE = re.compile(r"\bat\s+", re.IGNORECASE)
# Up to four words after "at", ending at punctuation or the end of the message.
CAMPUS_WORDS_RE = re.compile(r"^([^\W\d_][\w.&'-]*(?:[ \t]+[^\W\d_][\w.&'-]*){0,3})")
CAMPUS_NAME_MAX_WORDS = 4
SCOPE_CLAUSE_RE = re.compile(
    r"\s+(?:(?:at|in|on|across|from)\s+(?:my|all|any|every|other)\b|at\s+|everywhere\b).*$",
    re.IGNORECASE,
)
LEADING_FILLER_RE = re.compile(r"^(?:a|an|some|any|the|me|for|is|are|there)\s+", re.IGNORECASE)

GENERIC_QUERIES = frozenset(
    {"anything", "something", "stuff", "things", "items", "listings", "posts", "deals", "everything"}
)


@dataclass(frozen=True)
class SearchIntent:
    """Structured interpretation of a free-text search message."""
    query: str
    category: Optional[str] = None
    subcategory: Optional[str] = None
    campus: Optional[str] = None
    search_all_campuses: bool = True
    correction_note: Optional[str] = None


@dataclass(frozen=True)
class CampusScope:
    """Campus constraints detected in a message."""
    search_all_campuses: bool = True
    campus: Optional[str] = None


class IntentExtractor:
    """Turns chat messages into SearchIntent values using the static vocabulary."""

    def __init__(self, max_distance: int = DEFAULT_MAX_DISTANCE) -> None:
        """Purpose: Prepare the ordered token tables and intent tiers.
        Inputs/Outputs: Input is the fuzzy-match ceiling; no return value.
        Side Effects / State: Caches flattened vocabulary tuples.
        Dependencies: vocabulary tables and fuzzy_match.
        Failure Modes: None.
        If Removed: The orchestrator has no way to route search messages.
        Testing Notes: Build with max_distance=0 to disable typo tolerance.
        """
        # Token tables are consulted in this order for every token.
        self._max_distance = max_distance
        self._token_tables: Tuple[Tuple[str, Sequence[str]], ...] = (
            ("category", MAIN_CATEGORIES),
            ("subcategory", all_subcategories()),
            ("keyword", tuple(KEYWORD_TO_CATEGORY)),
        )
        self._tiers: Tuple[Callable[[str, str], Optional[SearchIntent]], ...] = (
            self._match_tokens,
            self._match_synonym_phrase,
            self._match_search_pattern,
            self._match_category_names,
        )

    def extract(self, message: str, user_university: Optional[str] = None) -> Optional[SearchIntent]:
        """Purpose: Resolve a message into a SearchIntent or None.
        Inputs/Outputs: Inputs are the raw message and the user's university (if
            known); output is a SearchIntent or None when nothing is recognized.
        Side Effects / State: None; logs the winning tier at debug level.
        Dependencies: detect_campus_scope and the tier methods in precedence order.
        Failure Modes: Empty messages return None.
        If Removed: Search requests fall through to the generative fallback.
        Testing Notes: "laptp" should yield Electronics with a correction note.
        """
        # Campus scope is computed once and merged into whichever tier wins.
        if not message or not message.strip():
            return None
        normalized = normalize_text(message)
        scope = self.detect_campus_scope(message, user_university)
        for tier in self._tiers:
            intent = tier(message, normalized)
            if intent is None:
                continue
            logger.debug("intent tier=%s query=%s category=%s", tier.__name__, intent.query, intent.category)
            return replace(intent, campus=scope.campus, search_all_campuses=scope.search_all_campuses)
        return None

    def detect_campus_scope(self, message: str, user_university: Optional[str] = None) -> CampusScope:
        """Purpose: Detect whether the user wants one campus or all of them.
        Inputs/Outputs: Inputs are the raw message and optional home university;
            output is a CampusScope.
        Side Effects / State: None.
        Dependencies: ALL_CAMPUSES_PHRASES, MY_CAMPUS_PHRASES, explicit_campus.
        Failure Modes: Unknown "at <Name>" values pass through as typed.
        If Removed: Searches ignore campus wording and "my listings" cannot filter.
        Testing Notes: "at my university" with a known university resolves to it.
        """
        # Default scope is the entire marketplace.
        normalized = normalize_text(message)
        wants_all = find_first_phrase(normalized, ALL_CAMPUSES_PHRASES) is not None
        search_all = True
        campus: Optional[str] = None
        if not wants_all and find_first_phrase(normalized, MY_CAMPUS_PHRASES):
            search_all = False
            campus = user_university or None
        explicit = self.explicit_campus(message)
        if explicit:
            campus = explicit
            search_all = wants_all
        return CampusScope(search_all_campuses=search_all, campus=campus)

    def explicit_campus(self, message: str) -> Optional[str]:
        """Return the campus named in an "at <Name>" phrase, canonical when known."""
        for match in AT_PHRASE_RE.finditer(message or ""):
            remainder = message[match.end():]
            lowered = normalize_text(remainder)
            if lowered.startswith("my "):
                continue
            for name in campus_names_longest_first():
                if re.match(rf"{re.escape(name)}\b", lowered):
                    return canonical_campus(name)
            captured = self._campus_words(remainder)
            if captured:
                return captured
        return None

    def _campus_words(self, remainder: str) -> Optional[str]:
        # Words as typed, or None when the first word cannot start a campus name.
        match = CAMPUS_WORDS_RE.match(remainder)
        if not match:
            return None
        words: List[str] = []
        for word in match.group(1).split()[:CAMPUS_NAME_MAX_WORDS]:
            if normalize_text(word.rstrip(".'-")) in CAMPUS_PHRASE_BREAKS:
                break
            words.append(word)
        if not words:
            return None
        first = normalize_text(words[0].rstrip(".'-"))
        if first in NON_CAMPUS_WORDS or first in FUZZY_STOP_WORDS or self._exact_token(first):
            return None
        return " ".join(words).rstrip(".'-")

    def _match_tokens(self, message: str, normalized: str) -> Optional[SearchIntent]:
        for token in tokenize(message):
            lowered = normalize_text(token)
            if lowered in FUZZY_STOP_WORDS:
                continue
            hit = self._lookup_token(lowered)
            if hit is None:
                continue
            kind, literal = hit
            note = None
            if token != literal and not _is_inflection(token, literal):
                note = f'Corrected "{token}" to "{literal}".'
            return _intent_for_literal(kind, literal, note)
        return None

    def _exact_token(self, lowered: str) -> Optional[Tuple[str, str]]:
        for kind, candidates in self._token_tables:
            for candidate in candidates:
                if candidate.lower() == lowered:
                    return kind, candidate
        return None

    def _lookup_token(self, lowered: str) -> Optional[Tuple[str, str]]:
        # Exact hits in any table beat typo-tolerant hits in an earlier table.
        exact = self._exact_token(lowered)
        if exact is not None:
            return exact
        limit = max_distance_for(lowered, self._max_distance)
        if limit <= 0:
            return None
        for kind, candidates in self._token_tables:
            matched = fuzzy_match(lowered, candidates, limit) or transposed_match(lowered, candidates)
            if matched is not None:
                return kind, matched
        return None

    def _match_synonym_phrase(self, message: str, normalized: str) -> Optional[SearchIntent]:
        phrase = find_first_phrase(normalized, SYNONYM_PHRASE_TO_CATEGORY)
        if phrase is None:
            return None
        return SearchIntent(query=phrase, category=SYNONYM_PHRASE_TO_CATEGORY[phrase])

    def _match_search_pattern(self, message: str, normalized: str) -> Optional[SearchIntent]:
        for pattern in SEARCH_PATTERNS:
            match = pattern.search(message)
            if not match:
                continue
            query = _clean_search_object(match.group(1))
            if normalize_text(query) in GENERIC_QUERIES:
                query = ""
            category = _category_named_in(normalize_text(query)) if query else _category_named_in(normalized)
            return SearchIntent(query=query, category=category)
        return None

    def _match_category_names(self, message: str, normalized: str) -> Optional[SearchIntent]:
        for category in MAIN_CATEGORIES:
            if contains_phrase(normalized, category.lower()):
                return SearchIntent(query=category, category=category)
        for category, subcategories in SUBCATEGORIES_BY_CATEGORY.items():
            for subcategory in subcategories:
                if contains_phrase(normalized, subcategory.lower()):
                    return SearchIntent(query=subcategory, category=category, subcategory=subcategory)
        return None


def _intent_for_literal(kind: str, literal: str, note: Optional[str]) -> SearchIntent:
    if kind == "keyword":
        target = KEYWORD_TO_CATEGORY[literal]
        return SearchIntent(
            query=literal,
            category=target.category,
            subcategory=target.subcategory,
            correction_note=note,
        )
    if kind == "subcategory":
        return SearchIntent(
            query=literal,
            category=category_for_subcategory(literal),
            subcategory=literal,
            correction_note=note,
        )
    return SearchIntent(query=literal, category=literal, correction_note=note)


def _is_inflection(token: str, literal: str) -> bool:
    # "phones" for "phone" is not a spelling correction; case still counts.
    return token.rstrip("s") == literal.rstrip("s")


def _clean_search_object(raw: str) -> str:
    """Trim scope clauses, fillers, and punctuation from a captured search object."""
    text = SCOPE_CLAUSE_RE.sub("", raw.strip())
    previous = None
    while previous != text:
        previous = text
        text = LEADING_FILLER_RE.sub("", text)
    return text.strip().strip("?!.,;:\"'").strip()


def _category_named_in(normalized: str) -> Optional[str]:
    """Main category whose name, or one of whose synonym phrases, occurs in the text."""
    for category in MAIN_CATEGORIES:
        if category.lower() in normalized:
            return category
    phrase = find_first_phrase(normalized, SYNONYM_PHRASE_TO_CATEGORY)
    if phrase is not None:
        return SYNONYM_PHRASE_TO_CATEGORY[phrase]
    return None


_default_extractor = IntentExtractor()


def extract_search_intent(message: str, user_university: Optional[str] = None) -> Optional[SearchIntent]:
    """Module-level entry point using the default extractor."""
    return _default_extractor.extract(message, user_university)


def detect_campus_scope(message: str, user_university: Optional[str] = None) -> CampusScope:
    return _default_extractor.detect_campus_scope(message, user_university)
