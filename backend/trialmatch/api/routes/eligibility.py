from fastapi import APIRouter

from ...matching import parse_eligibility
from ...schemas.match import EligibilityParseRequest
from ...schemas.trial import ParsedEligibility

router = APIRouter()


@router.post("/parse", response_model=ParsedEligibility)
async def parse_criteria(request: EligibilityParseRequest):
    """Parse free-text eligibility criteria, preferring any structured fields supplied."""
    structured = {
        "minimumAge": request.minimum_age,
        "maximumAge": request.maximum_age,
        "sex": request.sex,
        "healthyVolunteers": request.healthy_volunteers,
    }
    return parse_eligibility(
        request.text,
        structured={k: v for k, v in structured.items() if v is not None},
    )
