"""
Alert digests: which trials updated since the last alert are relevant to a
subscribed profile. Building the email and sending it happen elsewhere.
"""

import logging
from datetime import date
from typing import Iterable, Optional

from ..matching.scorer import match
from ..schemas.alerts import AlertDigest, AlertEntry, QuickStats
from ..schemas.match import MatchResult
from ..schemas.patient import PatientProfile
from ..schemas.trial import Trial, TrialStatus
from .augmenter import RelevanceAugmenter

logger = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 5


def _one_liner(result: MatchResult) -> str:
    if result.ai_rationale:
        return result.ai_rationale
    return " ".join(result.reasons[:3]) or "Matches your saved search."


def _entry(result: MatchResult) -> AlertEntry:
    trial = result.trial
    return AlertEntry(
        nct_id=trial.nct_id,
        title=trial.title,
        phase=", ".join(p.value for p in trial.phases) or "N/A",
        status=trial.status.value,
        score=result.score,
        one_liner=_one_liner(result),
        url=trial.url,
    )


async def build_alert_digest(
    profile: PatientProfile,
    trials: Iterable[Trial],
    since: date,
    augmenter: Optional[RelevanceAugmenter] = None,
    max_entries: int = DEFAULT_MAX_ENTRIES
) -> AlertDigest:
    """
    Match the trials updated on or after `since` and summarize the best ones.

    Trials without a last-updated date are never treated as new.

    Raises:
        ProfileIncomplete: when the profile has no cancer type
    """
    new_trials = [t for t in trials if t.last_updated is not None and t.last_updated >= since]
    results = [r for r in match(profile, new_trials) if r.score > 0]
    if augmenter is not None and results:
        results = await augmenter.augment(profile, results)

    entries = [_entry(result) for result in results[:max_entries]]
    stats = QuickStats(
        total_new=len(new_trials),
        recruiting=sum(1 for t in new_trials if t.status == TrialStatus.RECRUITING),
        matched=len(results),
    )

    if entries:
        subject = f"{len(results)} new {profile.cancer_type} trial{'s' if len(results) != 1 else ''} since {since.isoformat()}"
    else:
        subject = f"No new {profile.cancer_type} trials since {since.isoformat()}"

    logger.info(f"Alert digest built: {stats.matched} matched of {stats.total_new} new trials")
    return AlertDigest(subject=subject, since=since, entries=entries, quick_stats=stats)
