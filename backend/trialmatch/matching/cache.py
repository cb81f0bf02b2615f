import hashlib
import json
import logging
from typing import Any, Dict, Mapping, Optional, Tuple

from ..schemas.trial import ParsedEligibility, Trial
from .eligibility import parse_eligibility

logger = logging.getLogger(__name__)


def eligibility_key(
    nct_id: str,
    eligibility_raw: str,
    structured: Optional[Mapping[str, Any]] = None,
    fallback_text: Optional[str] = None
) -> Tuple[str, str]:
    """Cache key: the trial id plus a digest of every input the parse depends on."""
    payload = eligibility_raw or ""
    if fallback_text:
        payload += "\x01" + fallback_text
    fields = {k: v for k, v in (structured or {}).items() if k != "eligibilityCriteria"}
    if fields:
        payload += "\x00" + json.dumps(fields, sort_keys=True, default=str)
    return nct_id, hashlib.sha256(payload.encode("utf-8")).hexdigest()


class EligibilityCache:
    """
    Memo of parsed eligibility for repeated matching against the same trial set.

    Explicitly scoped: create one per sync job or request and drop it with
    that scope. Entries are keyed by (nct_id, eligibility hash), so an edited
    eligibility text never returns the stale parse.
    """

    def __init__(self, max_entries: int = 10000):
        self.max_entries = max_entries
        self._entries: Dict[Tuple[str, str], ParsedEligibility] = {}
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def get_or_parse(
        self,
        nct_id: str,
        eligibility_raw: str,
        structured: Optional[Mapping[str, Any]] = None,
        fallback_text: Optional[str] = None
    ) -> ParsedEligibility:
        key = eligibility_key(nct_id, eligibility_raw, structured, fallback_text)
        cached = self._entries.get(key)
        if cached is not None:
            self.hits += 1
            return cached

        self.misses += 1
        parsed = parse_eligibility(eligibility_raw, structured=structured, fallback_text=fallback_text)
        if len(self._entries) >= self.max_entries:
            # Oldest insertion goes first
            self._entries.pop(next(iter(self._entries)))
        self._entries[key] = parsed
        return parsed

    def for_trial(self, trial: Trial) -> ParsedEligibility:
        """Parsed eligibility for a trial's current text and its stored registry fields."""
        return self.get_or_parse(
            trial.nct_id,
            trial.eligibility_raw,
            structured=trial.eligibility_structured,
            fallback_text=trial.search_text
        )

    def invalidate(self, nct_id: str) -> int:
        """Drop every entry for a trial; returns how many were removed."""
        stale = [key for key in self._entries if key[0] == nct_id]
        for key in stale:
            del self._entries[key]
        if stale:
            logger.debug(f"Invalidated {len(stale)} cached parse(s) for {nct_id}")
        return len(stale)

    def clear(self) -> None:
        self._entries.clear()
        self.hits = 0
        self.misses = 0
