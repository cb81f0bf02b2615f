import logging
from typing import Optional

from fastapi import APIRouter, Depends
from starlette.concurrency import run_in_threadpool

from ...matching import EligibilityCache, match_run, normalize_batch
from ...schemas.match import MatchRequest, MatchResponse
from ...schemas.patient import PatientProfile
from ...services.augmenter import RelevanceAugmenter
from ...services.geocoding import LocationResolver
from ..deps import get_augmenter, get_location_resolver

logger = logging.getLogger(__name__)

router = APIRouter()


async def resolve_profile_location(profile: PatientProfile, resolver: LocationResolver) -> PatientProfile:
    """Geocode a ZIP-only location off the event loop; unchanged when not needed."""
    location = profile.location
    if location is None or location.has_coordinates or not location.zip_code:
        return profile
    resolved = await run_in_threadpool(resolver.resolve, location)
    return profile.model_copy(update={"location": resolved})


@router.post("", response_model=MatchResponse)
async def match_trials(
    request: MatchRequest,
    augmenter: Optional[RelevanceAugmenter] = Depends(get_augmenter),
    resolver: LocationResolver = Depends(get_location_resolver)
):
    """
    Normalize the submitted registry records and rank them for the profile.

    A profile without a cancer type is rejected with 422. Records that cannot
    be normalized are dropped and reported, never fatal.
    """
    report = normalize_batch(request.records, cache=EligibilityCache())
    profile = request.profile
    if (profile.cancer_type or "").strip():
        profile = await resolve_profile_location(profile, resolver)

    run = match_run(profile, report.trials, include_closed=request.include_closed)
    results = run.results

    if request.augment:
        if augmenter is None:
            logger.warning("Augmentation requested but no LLM client is configured")
        else:
            results = await augmenter.augment(profile, results)

    return MatchResponse(
        results=results,
        dropped=report.dropped,
        dropped_ids=[record.raw_id for record in report.invalid],
        excluded_closed=run.excluded_closed,
        augmented=sum(1 for r in results if r.ai_rationale),
    )
