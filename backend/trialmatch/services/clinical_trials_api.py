"""
ClinicalTrials.gov v2 client.

Returns raw study records; turning them into Trials is the normalizer's job.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

import httpx

from ..core.config import settings

logger = logging.getLogger(__name__)

DEFAULT_CANCER_QUERY = "cancer OR carcinoma OR tumor OR malignant OR oncology"

# Fields needed by the normalizer and the eligibility extractor
STUDY_FIELDS = [
    "NCTId",
    "BriefTitle",
    "OfficialTitle",
    "OverallStatus",
    "StatusVerifiedDate",
    "LastUpdateSubmitDate",
    "StartDate",
    "CompletionDate",
    "BriefSummary",
    "DetailedDescription",
    "Condition",
    "Keyword",
    "StudyType",
    "Phase",
    "InterventionType",
    "InterventionName",
    "InterventionDescription",
    "EligibilityCriteria",
    "Sex",
    "MinimumAge",
    "MaximumAge",
    "HealthyVolunteers",
    "LeadSponsorName",
    "CollaboratorName",
    "LocationFacility",
    "LocationCity",
    "LocationState",
    "LocationZip",
    "LocationCountry",
    "LocationStatus",
    "LocationContactName",
    "LocationContactPhone",
    "LocationContactEMail",
    "LocationGeoPoint",
]


class ClinicalTrialsService:
    """Thin async wrapper over the registry's /studies endpoints."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.base_url = (base_url or settings.CLINICAL_TRIALS_API_BASE).rstrip("/")
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout or settings.REQUESTS_TIMEOUT,
            transport=transport,
            headers={"Accept": "application/json"},
        )

    async def search_studies(
        self,
        condition: Optional[str] = None,
        status: Optional[Sequence[str]] = None,
        page_size: Optional[int] = None,
        page_token: Optional[str] = None,
        term: Optional[str] = None,
        phases: Optional[Sequence[str]] = None
    ) -> Dict[str, Any]:
        """
        Search studies.

        Args:
            condition: Condition query, e.g. "breast cancer"
            status: Upstream status codes (RECRUITING, ...); defaults to RECRUITING
            page_size: Page size, defaults to DEFAULT_PAGE_SIZE
            page_token: Token from a previous page
            term: Extra free-text query
            phases: Upstream phase codes (PHASE2, ...)

        Returns:
            {"studies": [raw records], "next_page_token": str | None, "total_count": int | None}

        Raises:
            httpx.HTTPError: transport failures and non-2xx responses
        """
        query_parts = []
        if condition:
            query_parts.append(f"AREA[Condition]{condition}")
        if term:
            query_parts.append(term)
        if not query_parts:
            query_parts.append(DEFAULT_CANCER_QUERY)

        params: Dict[str, Any] = {
            "format": "json",
            "query.cond": " AND ".join(query_parts),
            "filter.overallStatus": ",".join(status) if status else "RECRUITING",
            "pageSize": page_size or settings.DEFAULT_PAGE_SIZE,
            "countTotal": "true",
            "fields": ",".join(STUDY_FIELDS),
        }
        if phases:
            params["filter.phase"] = ",".join(phases)
        if page_token:
            params["pageToken"] = page_token

        data = await self._get_json("/studies", params)
        studies: List[Dict[str, Any]] = data.get("studies") or []
        logger.info(f"Fetched {len(studies)} studies for query {params['query.cond']!r}")
        return {
            "studies": studies,
            "next_page_token": data.get("nextPageToken"),
            "total_count": data.get("totalCount"),
        }

    async def get_study(self, nct_id: str) -> Optional[Dict[str, Any]]:
        """Fetch one raw study record; None when the registry has no such study."""
        try:
            return await self._get_json(f"/studies/{nct_id.strip().upper()}", {"format": "json"})
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                logger.info(f"Study {nct_id} not found")
                return None
            raise

    async def _get_json(self, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = await self.client.get(path, params=params)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            if e.response.status_code != 404:
                logger.warning(f"Registry returned {e.response.status_code} for {path}")
            raise
        except httpx.HTTPError as e:
            logger.warning(f"Registry request to {path} failed: {e}")
            raise
        return response.json()

    async def close(self) -> None:
        await self.client.aclose()


# Shared client, closed by the app lifespan
clinical_trials_service = ClinicalTrialsService()
