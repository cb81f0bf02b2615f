import logging
from typing import List, Optional

import httpx
from fastapi import APIRouter, Depends, HTTPException, Query

from ...matching import EligibilityCache, normalize, normalize_batch
from ...schemas.match import InvalidRecord, NormalizationReport, NormalizeRequest, TrialSearchResponse
from ...schemas.trial import Trial
from ...services.clinical_trials_api import ClinicalTrialsService
from ..deps import get_registry

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/normalize", response_model=NormalizationReport)
async def normalize_records(request: NormalizeRequest):
    """Normalize raw registry records; invalid ones are reported, not fatal."""
    return normalize_batch(request.records, cache=EligibilityCache())


@router.get("/search", response_model=TrialSearchResponse)
async def search_trials(
    condition: Optional[str] = None,
    status: Optional[List[str]] = Query(None),
    page_size: Optional[int] = Query(None, ge=1, le=1000),
    page_token: Optional[str] = None,
    registry: ClinicalTrialsService = Depends(get_registry)
):
    """Fetch one page from ClinicalTrials.gov and normalize it."""
    try:
        page = await registry.search_studies(
            condition=condition,
            status=status,
            page_size=page_size,
            page_token=page_token,
        )
    except httpx.HTTPError as e:
        raise HTTPException(status_code=502, detail=f"Registry request failed: {e}")

    report = normalize_batch(page["studies"], cache=EligibilityCache())
    return TrialSearchResponse(
        trials=report.trials,
        dropped=report.dropped,
        next_page_token=page["next_page_token"],
        total_count=page["total_count"],
    )


@router.get("/{nct_id}", response_model=Trial)
async def get_trial(nct_id: str, registry: ClinicalTrialsService = Depends(get_registry)):
    try:
        record = await registry.get_study(nct_id)
    except httpx.HTTPError as e:
        raise HTTPException(status_code=502, detail=f"Registry request failed: {e}")
    if record is None:
        raise HTTPException(status_code=404, detail=f"Trial {nct_id} not found")

    result = normalize(record)
    if isinstance(result, InvalidRecord):
        raise HTTPException(status_code=502, detail=f"Registry returned an unusable record: {result.reason}")
    return result
