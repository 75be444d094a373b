from __future__ import annotations

import logging
import re
from typing import Optional, Tuple

from .errors import SafetyViolation

logger = logging.getLogger("campus_assistant.sanitizer")

MAX_RESPONSE_LENGTH = 1500
ELLIPSIS = "..."

SAFE_REFUSAL = (
    "I cannot provide information about sensitive data. "
    "Please contact support if you need help with account-related issues."
)

SENSITIVE_PATTERNS: Tuple[Tuple[str, re.Pattern], ...] = (
    ("password", re.compile(r"password", re.IGNORECASE)),
    ("credit card", re.compile(r"credit\s*card", re.IGNORECASE)),
    ("ssn", re.compile(r"\bssn\b", re.IGNORECASE)),
    ("social security", re.compile(r"social\s+security", re.IGNORECASE)),
    ("api key", re.compile(r"api[_\s-]?key", re.IGNORECASE)),
)


def find_sensitive_pattern(text: str) -> Optional[str]:
    for name, pattern in SENSITIVE_PATTERNS:
        if pattern.search(text or ""):
            return name
    return None


def contains_sensitive_content(text: str) -> bool:
    return find_sensitive_pattern(text) is not None


def check_response_safety(text: str) -> None:
    """Raise SafetyViolation when text touches a denylisted topic."""
    name = find_sensitive_pattern(text)
    if name is not None:
        raise SafetyViolation(name)


def sanitize_response(text: str) -> str:
    """Purpose: Make generated text safe to show: trim, bound, and screen it.
    Inputs/Outputs: Input is raw generated text; output is display-ready text or
        the fixed refusal.
    Side Effects / State: Logs the matched pattern name on a denylist hit.
    Dependencies: check_response_safety.
    Failure Modes: None; every input maps to a string.
    If Removed: Generated text reaches users unbounded and unscreened.
    Testing Notes: sanitize_response(sanitize_response(x)) == sanitize_response(x).
    """
    # Trim, then truncate, then screen; the refusal itself passes all three unchanged.
    cleaned = (text or "").strip()
    if len(cleaned) > MAX_RESPONSE_LENGTH:
        cleaned = cleaned[: MAX_RESPONSE_LENGTH - len(ELLIPSIS)] + ELLIPSIS
    try:
        check_response_safety(cleaned)
    except SafetyViolation as exc:
        logger.warning("response withheld pattern=%s", exc.pattern)
        return SAFE_REFUSAL
    return cleaned
