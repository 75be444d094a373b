"""Bounded edit-distance matching against small vocabularies."""

from __future__ import annotations

from typing import Iterable, Optional

DEFAULT_MAX_DISTANCE = 2


def edit_distance(a: str, b: str) -> int:
    """Purpose: Compute the Levenshtein distance between two strings.
    Inputs/Outputs: Inputs are two strings; output is the unit-cost number of
        insertions, deletions, and substitutions turning a into b.
    Side Effects / State: None; pure function.
    Dependencies: None; called by fuzzy_match.
    Failure Modes: None; empty strings give the length of the other string.
    If Removed: Typo-tolerant intent matching stops working.
    Testing Notes: edit_distance("laptp", "laptop") == 1.
    """
    # Two-row dynamic programming table.
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)
    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            cost = 0 if char_a == char_b else 1
            current.append(
                min(
                    previous[j] + 1,
                    current[j - 1] + 1,
                    previous[j - 1] + cost,
                )
            )
        previous = current
    return previous[-1]


def fuzzy_match(
    word: str,
    candidates: Iterable[str],
    max_distance: int = DEFAULT_MAX_DISTANCE,
) -> Optional[str]:
    """Purpose: Find the closest candidate within an edit-distance threshold.
    Inputs/Outputs: Inputs are a word, candidate strings, and the maximum allowed
        distance; output is the original (unlowered) candidate or None.
    Side Effects / State: None; pure function.
    Dependencies: Uses edit_distance on lower-cased strings.
    Failure Modes: Returns None for an empty word or when nothing is within range.
    If Removed: Intent extraction cannot recover from misspelled categories.
    Testing Notes: Ties go to the first candidate in iteration order.
    """
    # Keep the strictly smaller distance so the earliest candidate wins ties.
    needle = (word or "").lower()
    if not needle or max_distance < 0:
        return None
    best: Optional[str] = None
    best_distance = max_distance + 1
    for candidate in candidates:
        distance = edit_distance(needle, candidate.lower())
        if distance < best_distance:
            best = candidate
            best_distance = distance
            if distance == 0:
                break
    return best


def transposed_match(word: str, candidates: Iterable[str]) -> Optional[str]:
    """Return the first candidate that differs from word by one swapped pair of neighbours."""
    needle = (word or "").lower()
    for candidate in candidates:
        if is_transposition(needle, candidate.lower()):
            return candidate
    return None


def is_transposition(a: str, b: str) -> bool:
    # "jbos" vs "jobs": same length, exactly two differing positions, adjacent and crossed.
    if len(a) != len(b) or a == b:
        return False
    diffs = [i for i, (char_a, char_b) in enumerate(zip(a, b)) if char_a != char_b]
    if len(diffs) != 2 or diffs[1] != diffs[0] + 1:
        return False
    i, j = diffs
    return a[i] == b[j] and a[j] == b[i]


def max_distance_for(token: str, ceiling: int = DEFAULT_MAX_DISTANCE) -> int:
    """Per-token threshold: up to three characters match exactly, four allow one edit."""
    length = len(token)
    if length <= 3:
        return 0
    if length == 4:
        return min(1, ceiling)
    return ceiling
