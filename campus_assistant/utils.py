import re
import unicodedata
from typing import Iterable, List, Optional

TOKEN_EDGE_CHARS = "\"'`.,!?;:()[]{}<>*"


def normalize_text(text: str) -> str:
    """Purpose: Normalize free-form chat text for stable phrase matching.
    Inputs/Outputs: Input is a raw string; output is a lowercase string with
        diacritics removed, curly quotes straightened, and whitespace collapsed.
    Side Effects / State: None; pure function.
    Dependencies: Uses unicodedata and regex; called by intent detection and routing.
    Failure Modes: Returns an empty string when input is falsy.
    If Removed: Phrase checks miss accented or oddly spaced messages.
    Testing Notes: "Café  Chairs" should normalize to "cafe chairs".
    """
    # Lowercase and strip diacritics so "résumé" and "resume" compare equal.
    if not text:
        return ""
    lowered = text.lower().replace("’", "'").replace("‘", "'")
    decomposed = unicodedata.normalize("NFD", lowered)
    stripped = "".join(ch for ch in decomposed if unicodedata.category(ch) != "Mn")
    return re.sub(r"\s+", " ", stripped).strip()


def tokenize(text: str) -> List[str]:
    """Split on whitespace and trim punctuation from token edges, keeping order."""
    tokens: List[str] = []
    for raw in (text or "").split():
        token = raw.strip(TOKEN_EDGE_CHARS)
        if token:
            tokens.append(token)
    return tokens


def contains_phrase(normalized: str, phrase: str) -> bool:
    """Purpose: Check whether a phrase occurs in normalized text on word boundaries.
    Inputs/Outputs: Inputs are normalized text and a phrase; output is a bool.
    Side Effects / State: None.
    Dependencies: Uses regex; called by vocabulary lookups and routing predicates.
    Failure Modes: Empty phrase returns False.
    If Removed: Plain substring checks would match "lease" inside "please".
    Testing Notes: "please help" must not contain the phrase "lease".
    """
    # Word boundaries only apply where the phrase edge is a word character.
    if not phrase:
        return False
    escaped = re.escape(phrase.lower())
    prefix = r"\b" if phrase[0].isalnum() else ""
    suffix = r"\b" if phrase[-1].isalnum() else ""
    return re.search(f"{prefix}{escaped}{suffix}", normalized) is not None


def find_first_phrase(normalized: str, phrases: Iterable[str]) -> Optional[str]:
    # First phrase in iteration order that occurs in the text.
    for phrase in phrases:
        if contains_phrase(normalized, phrase):
            return phrase
    return None


def pluralize(count: int, singular: str, plural: Optional[str] = None) -> str:
    """Return the noun form for count: 1 uses the singular form."""
    if count == 1:
        return singular
    return plural or f"{singular}s"
