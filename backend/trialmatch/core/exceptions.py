"""
Error taxonomy for the matching engine.

Only ProfileIncomplete ever escapes a matching call. The other errors are
raised and recovered inside a single record or a single result.
"""

from typing import Optional


class TrialMatchError(Exception):
    """Base class for engine errors."""


class MalformedRecord(TrialMatchError):
    """An upstream record could not be normalized (missing or bad NCT id)."""

    def __init__(self, reason: str, raw_id: Optional[str] = None):
        super().__init__(reason)
        self.reason = reason
        self.raw_id = raw_id


class ProfileIncomplete(TrialMatchError, ValueError):
    """The patient profile is missing a required field (cancer type)."""

    def __init__(self, field: str):
        super().__init__(f"Patient profile is missing required field: {field}")
        self.field = field


class AIUnavailable(TrialMatchError):
    """The language-model collaborator could not produce a usable answer."""


class LLMTransportError(AIUnavailable):
    """Connection-level failure talking to the LLM provider. Safe to retry once."""


class LLMResponseError(AIUnavailable):
    """The provider answered, but with an error status, a rate limit or unusable content."""
