"""
Test file for the HTTP API

Run with: python -m pytest backend/trialmatch/api/routes/test_routes.py -v
"""

import json
import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

# Add backend to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent.parent))

from main import app
from trialmatch.api.deps import get_augmenter, get_location_resolver, get_registry
from trialmatch.core.config import settings
from trialmatch.services.augmenter import RelevanceAugmenter
from trialmatch.services.geocoding import LocationResolver

API = settings.API_V1_STR


def record(nct_id, condition="Breast Cancer", criteria="Minimum Age: 18 Years\nHER2-positive", **status):
    return {
        "protocolSection": {
            "identificationModule": {"nctId": nct_id, "briefTitle": f"{condition} study"},
            "statusModule": {"overallStatus": "RECRUITING", **status},
            "conditionsModule": {"conditions": [condition]},
            "eligibilityModule": {"eligibilityCriteria": criteria},
        }
    }


class StaticGeocoder:
    def geocode(self, query, timeout=None):
        return None


class CannedLLM:
    async def generate_json(self, prompt, system_prompt=None):
        return json.dumps({"rationale": "Good fit.", "adjustment": 0.01})


class FakeRegistry:
    async def search_studies(self, condition=None, status=None, page_size=None, page_token=None):
        return {"studies": [record("NCT00000001"), {"bad": True}], "next_page_token": "t2", "total_count": 2}

    async def get_study(self, nct_id):
        return record(nct_id) if nct_id == "NCT00000001" else None


@pytest.fixture
def client():
    app.dependency_overrides[get_augmenter] = lambda: RelevanceAugmenter(CannedLLM(), top_k=5)
    app.dependency_overrides[get_location_resolver] = lambda: LocationResolver(geocoder=StaticGeocoder())
    app.dependency_overrides[get_registry] = lambda: FakeRegistry()
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health(client):
    assert client.get("/health").json() == {"status": "healthy"}
    assert client.get("/").json()["status"] == "running"


def test_match_ranks_and_reports_dropped(client):
    print("\n" + "="*60)
    print("TEST: POST /match")
    print("="*60)

    body = {
        "profile": {"cancer_type": "breast", "biomarkers": ["HER2"], "age": 40},
        "records": [
            record("NCT00000002", condition="Lung Cancer", criteria="EGFR mutation"),
            record("NCT00000001"),
            record("NCT00000003", overallStatus="WITHDRAWN"),
            {"protocolSection": {"identificationModule": {"nctId": "NOT-AN-ID"}}},
        ],
    }
    response = client.post(f"{API}/match", json=body)
    print(f"Status: {response.status_code}")
    assert response.status_code == 200

    data = response.json()
    assert [r["trial"]["nct_id"] for r in data["results"]] == ["NCT00000001", "NCT00000002"]
    assert data["dropped"] == 1
    assert data["dropped_ids"] == ["NOT-AN-ID"]
    assert data["excluded_closed"] == 1
    assert data["augmented"] == 0
    assert data["results"][0]["ai_rationale"] is None

    print("\n[PASS] Match route test passed!")


def test_match_with_augmentation(client):
    body = {
        "profile": {"cancer_type": "breast", "location": {"zip_code": "19104"}, "max_distance": 25},
        "records": [record("NCT00000001")],
        "augment": True,
    }
    data = client.post(f"{API}/match", json=body).json()
    assert data["augmented"] == 1
    result = data["results"][0]
    assert result["ai_rationale"] == "Good fit."
    assert result["score_breakdown"]["ai_adjustment"] == 0.01
    # Unresolvable ZIP leaves distance out of the score
    assert "distance" not in result["score_breakdown"]


def test_match_requires_cancer_type(client):
    response = client.post(f"{API}/match", json={"profile": {"age": 40}, "records": [record("NCT00000001")]})
    assert response.status_code == 422
    assert response.json()["field"] == "cancer_type"


def test_parse_eligibility(client):
    response = client.post(
        f"{API}/eligibility/parse",
        json={"text": "Minimum Age: 18 Years Maximum Age: 75 Years Sex: All"},
    )
    assert response.status_code == 200
    data = response.json()
    assert (data["min_age"], data["max_age"], data["sex"]) == (18, 75, "All")

    data = client.post(f"{API}/eligibility/parse", json={"text": "", "sex": "FEMALE", "minimum_age": "6 Months"}).json()
    assert data["sex"] == "Female"
    assert data["min_age"] == 0


def test_normalize_records(client):
    data = client.post(f"{API}/trials/normalize", json={"records": [record("NCT00000001"), {}]}).json()
    assert [t["nct_id"] for t in data["trials"]] == ["NCT00000001"]
    assert data["dropped"] == 1


def test_search_and_get_trial(client):
    data = client.get(f"{API}/trials/search", params={"condition": "breast"}).json()
    assert [t["nct_id"] for t in data["trials"]] == ["NCT00000001"]
    assert data["dropped"] == 1
    assert data["next_page_token"] == "t2"

    assert client.get(f"{API}/trials/NCT00000001").json()["nct_id"] == "NCT00000001"
    assert client.get(f"{API}/trials/NCT00000009").status_code == 404


def test_alert_digest(client):
    body = {
        "profile": {"cancer_type": "breast"},
        "records": [record("NCT00000001", lastUpdateSubmitDate="2024-05-10")],
        "since": "2024-05-01",
    }
    data = client.post(f"{API}/alerts/digest", json=body).json()
    assert data["quick_stats"]["total_new"] == 1
    assert data["entries"][0]["nct_id"] == "NCT00000001"
