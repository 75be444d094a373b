"""Error taxonomy for the campus assistant.

Every error raised inside the assistant ends as a plain-language reply; these
classes only decide which fallback message the caller picks.
"""


class AssistantError(Exception):
    """Base exception for assistant errors."""


class StoreError(AssistantError):
    """A marketplace store call failed or returned an unusable payload."""


class GenerativeTextError(AssistantError):
    """The generative-text provider failed, timed out, or returned nothing."""


class SafetyViolation(AssistantError):
    """Generated text matched the sensitive-topic denylist."""

    def __init__(self, pattern: str) -> None:
        super().__init__(f"sensitive pattern matched: {pattern}")
        self.pattern = pattern
