"""
Test file for alert digests

Run with: python -m pytest backend/trialmatch/services/test_alerts.py -v
"""

import json
import sys
from datetime import date
from pathlib import Path

import pytest

# Add parent to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from trialmatch.core.exceptions import ProfileIncomplete
from trialmatch.schemas.patient import PatientProfile
from trialmatch.schemas.trial import Trial, TrialPhase, TrialStatus
from trialmatch.services.alerts import build_alert_digest
from trialmatch.services.augmenter import RelevanceAugmenter

SINCE = date(2024, 5, 1)


def make_trials():
    return [
        Trial(nct_id="NCT00000001", title="New breast trial", conditions=("Breast Cancer",),
              phases=(TrialPhase.PHASE2,), status=TrialStatus.RECRUITING, last_updated=date(2024, 5, 10)),
        Trial(nct_id="NCT00000002", title="Old breast trial", conditions=("Breast Cancer",),
              last_updated=date(2024, 1, 10)),
        Trial(nct_id="NCT00000003", title="Undated breast trial", conditions=("Breast Cancer",)),
        Trial(nct_id="NCT00000004", title="New lung trial", conditions=("Lung Cancer",),
              status=TrialStatus.NOT_YET_RECRUITING, last_updated=date(2024, 5, 2)),
    ]


class EchoLLM:
    async def generate_json(self, prompt, system_prompt=None):
        return json.dumps({"rationale": "Worth a look.", "adjustment": 0.0})


@pytest.mark.asyncio
async def test_digest_only_covers_new_trials():
    print("\n" + "="*60)
    print("TEST: Alert Digest")
    print("="*60)

    profile = PatientProfile(cancer_type="breast", age=45)
    digest = await build_alert_digest(profile, make_trials(), SINCE)
    print(f"Subject: {digest.subject}")
    for entry in digest.entries:
        print(f"  {entry.nct_id}: {entry.one_liner}")

    assert digest.since == SINCE
    assert digest.quick_stats.total_new == 2
    assert digest.quick_stats.recruiting == 1
    assert [e.nct_id for e in digest.entries][0] == "NCT00000001"
    assert digest.entries[0].phase == "Phase 2"
    assert digest.entries[0].url.endswith("/NCT00000001")
    assert "NCT00000002" not in {e.nct_id for e in digest.entries}
    assert "NCT00000003" not in {e.nct_id for e in digest.entries}
    assert digest.subject.startswith(f"{digest.quick_stats.matched} new breast trial")

    print("\n[PASS] Alert digest test passed!")


@pytest.mark.asyncio
async def test_digest_with_rationales_and_limit():
    profile = PatientProfile(cancer_type="breast")
    augmenter = RelevanceAugmenter(EchoLLM(), top_k=5)
    digest = await build_alert_digest(profile, make_trials(), SINCE, augmenter=augmenter, max_entries=1)

    assert len(digest.entries) == 1
    assert digest.entries[0].one_liner == "Worth a look."


@pytest.mark.asyncio
async def test_digest_without_new_trials():
    digest = await build_alert_digest(PatientProfile(cancer_type="breast"), make_trials(), date(2030, 1, 1))
    assert digest.entries == []
    assert digest.quick_stats.total_new == 0
    assert digest.subject.startswith("No new breast trials")


@pytest.mark.asyncio
async def test_digest_requires_cancer_type():
    with pytest.raises(ProfileIncomplete):
        await build_alert_digest(PatientProfile(), make_trials(), SINCE)
