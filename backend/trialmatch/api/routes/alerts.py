from typing import Optional

from fastapi import APIRouter, Depends

from ...matching import EligibilityCache, normalize_batch
from ...schemas.alerts import AlertDigest, AlertDigestRequest
from ...services.alerts import DEFAULT_MAX_ENTRIES, build_alert_digest
from ...services.augmenter import RelevanceAugmenter
from ..deps import get_augmenter

router = APIRouter()


@router.post("/digest", response_model=AlertDigest)
async def alert_digest(
    request: AlertDigestRequest,
    augmenter: Optional[RelevanceAugmenter] = Depends(get_augmenter)
):
    """Digest of the submitted trials updated since `since` that match the profile."""
    report = normalize_batch(request.records, cache=EligibilityCache())
    return await build_alert_digest(
        request.profile,
        report.trials,
        request.since,
        augmenter=augmenter if request.augment else None,
        max_entries=request.max_entries or DEFAULT_MAX_ENTRIES,
    )
