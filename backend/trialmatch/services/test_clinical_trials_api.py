"""
Test file for the ClinicalTrials.gov client and the location resolver

Run with: python -m pytest backend/trialmatch/services/test_clinical_trials_api.py -v
"""

import sys
from pathlib import Path
from types import SimpleNamespace

import httpx
import pytest
from geopy.exc import GeocoderTimedOut

# Add parent to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from trialmatch.schemas.patient import PatientLocation
from trialmatch.services.clinical_trials_api import ClinicalTrialsService
from trialmatch.services.geocoding import LocationResolver

BASE_URL = "https://registry.test/api/v2"

STUDY = {
    "protocolSection": {
        "identificationModule": {"nctId": "NCT01234567", "briefTitle": "HER2 Study"},
        "statusModule": {"overallStatus": "RECRUITING"},
    }
}


def make_service(handler):
    return ClinicalTrialsService(base_url=BASE_URL, timeout=5.0, transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_search_studies_builds_query():
    print("\n" + "="*60)
    print("TEST: Registry Search")
    print("="*60)

    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["params"] = dict(request.url.params)
        return httpx.Response(200, json={"studies": [STUDY], "nextPageToken": "page-2", "totalCount": 41})

    service = make_service(handler)
    page = await service.search_studies(condition="breast cancer", page_size=10, page_token="page-1")
    await service.close()

    print(f"Request: {seen['path']} {seen['params']}")
    assert seen["path"] == "/api/v2/studies"
    assert seen["params"]["query.cond"] == "AREA[Condition]breast cancer"
    assert seen["params"]["filter.overallStatus"] == "RECRUITING"
    assert seen["params"]["pageSize"] == "10"
    assert seen["params"]["pageToken"] == "page-1"
    assert "EligibilityCriteria" in seen["params"]["fields"]

    assert page["studies"] == [STUDY]
    assert page["next_page_token"] == "page-2"
    assert page["total_count"] == 41

    print("\n[PASS] Registry search test passed!")


@pytest.mark.asyncio
async def test_search_defaults_to_cancer_query():
    seen = {}

    def handler(request):
        seen["params"] = dict(request.url.params)
        return httpx.Response(200, json={})

    service = make_service(handler)
    page = await service.search_studies(status=["RECRUITING", "NOT_YET_RECRUITING"], phases=["PHASE2"])
    await service.close()

    assert "cancer" in seen["params"]["query.cond"]
    assert seen["params"]["filter.overallStatus"] == "RECRUITING,NOT_YET_RECRUITING"
    assert seen["params"]["filter.phase"] == "PHASE2"
    assert page == {"studies": [], "next_page_token": None, "total_count": None}


@pytest.mark.asyncio
async def test_get_study():
    def handler(request):
        if request.url.path.endswith("/NCT01234567"):
            return httpx.Response(200, json=STUDY)
        if request.url.path.endswith("/NCT99999999"):
            return httpx.Response(500, json={"error": "boom"})
        return httpx.Response(404, json={"error": "not found"})

    service = make_service(handler)
    assert await service.get_study("nct01234567") == STUDY
    assert await service.get_study("NCT00000000") is None
    with pytest.raises(httpx.HTTPStatusError):
        await service.get_study("NCT99999999")
    await service.close()


@pytest.mark.asyncio
async def test_transport_errors_propagate():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    service = make_service(handler)
    with pytest.raises(httpx.ConnectError):
        await service.search_studies(condition="lung")
    await service.close()


class FakeGeocoder:
    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.calls = 0

    def geocode(self, query, timeout=None):
        self.calls += 1
        if self.error:
            raise self.error
        return self.result


def test_location_resolver():
    geocoder = FakeGeocoder(result=SimpleNamespace(latitude=39.95, longitude=-75.19))
    resolver = LocationResolver(geocoder=geocoder)

    resolved = resolver.resolve(PatientLocation(zip_code="19104"))
    assert resolved.has_coordinates
    assert (resolved.latitude, resolved.longitude) == (39.95, -75.19)

    # Cached per ZIP
    resolver.resolve(PatientLocation(zip_code="19104"))
    assert geocoder.calls == 1

    # Already located or empty locations pass through untouched
    located = PatientLocation(latitude=1.0, longitude=2.0)
    assert resolver.resolve(located) is located
    assert resolver.resolve(None) is None


def test_location_resolver_failures():
    resolver = LocationResolver(geocoder=FakeGeocoder(error=GeocoderTimedOut("slow")))
    location = PatientLocation(zip_code="00000")
    assert resolver.resolve(location) is location
    assert resolver.get_coordinates("00000") is None

    unknown = LocationResolver(geocoder=FakeGeocoder(result=None))
    assert unknown.get_coordinates("99999") is None
    assert unknown.get_coordinates("  ") is None


def test_location_cache_is_bounded():
    geocoder = FakeGeocoder(result=SimpleNamespace(latitude=1.0, longitude=2.0))
    resolver = LocationResolver(geocoder=geocoder, max_entries=2)

    for zip_code in ("10001", "10002", "10003"):
        resolver.get_coordinates(zip_code)
    assert list(resolver.location_cache) == ["10002", "10003"]

    # The evicted ZIP is looked up again
    resolver.get_coordinates("10001")
    assert geocoder.calls == 4
    assert len(resolver.location_cache) == 2


def test_geocoder_errors_are_not_cached():
    geocoder = FakeGeocoder(error=GeocoderTimedOut("slow"))
    resolver = LocationResolver(geocoder=geocoder)

    assert resolver.get_coordinates("19104") is None
    assert resolver.location_cache == {}

    geocoder.error = None
    geocoder.result = SimpleNamespace(latitude=39.95, longitude=-75.19)
    assert resolver.get_coordinates("19104") == (39.95, -75.19)
