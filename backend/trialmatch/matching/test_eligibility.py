"""
Test file for the Eligibility Criteria Extractor

Run with: python -m pytest backend/trialmatch/matching/test_eligibility.py -v
Or simply: python backend/trialmatch/matching/test_eligibility.py
"""

import sys
from pathlib import Path

# Add parent to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from trialmatch.matching.eligibility import (
    detect_biomarkers,
    normalize_biomarker,
    parse_age_value,
    parse_eligibility,
)
from trialmatch.schemas.trial import ParsedEligibility, PriorTreatmentRequirement, Sex


SAMPLE_CRITERIA = """Inclusion Criteria:
- Aged 18 to 75 years
- Histologically confirmed HER2-positive breast cancer
- ECOG performance status 0-1
- Must have received at least one prior line of platinum-based chemotherapy

Exclusion Criteria:
- Patients older than 80 years with dementia
- Known active brain metastases
"""


def test_labelled_age_and_sex():
    """The canonical registry header parses to {18, 75, All}."""
    print("\n" + "="*60)
    print("TEST: Labelled Age And Sex")
    print("="*60)

    parsed = parse_eligibility("Minimum Age: 18 Years Maximum Age: 75 Years Sex: All")
    print(f"Parsed: min={parsed.min_age} max={parsed.max_age} sex={parsed.sex}")
    assert parsed.min_age == 18
    assert parsed.max_age == 75
    assert parsed.sex == Sex.ALL

    print("\n[PASS] Labelled age and sex test passed!")


def test_structured_fields_take_precedence():
    print("\n" + "="*60)
    print("TEST: Structured Field Precedence")
    print("="*60)

    parsed = parse_eligibility(
        "Minimum Age: 21 Years\nSex: Male",
        structured={"minimumAge": "18 Years", "maximumAge": "N/A", "sex": "FEMALE"},
    )
    print(f"Parsed: min={parsed.min_age} max={parsed.max_age} sex={parsed.sex}")
    assert parsed.min_age == 18
    assert parsed.max_age is None
    assert parsed.sex == Sex.FEMALE

    print("\n[PASS] Structured field precedence test passed!")


def test_age_units_and_free_text():
    print("\n" + "="*60)
    print("TEST: Age Units And Free Text")
    print("="*60)

    assert parse_age_value("6 Months") == 0
    assert parse_age_value("18 Years") == 18
    assert parse_age_value("730 Days") == 2
    assert parse_age_value("N/A") is None
    assert parse_age_value(None) is None

    parsed = parse_eligibility("Patients must be 18 years of age or older")
    assert (parsed.min_age, parsed.max_age) == (18, None)

    parsed = parse_eligibility("Adults ≥ 18 years with measurable disease")
    assert parsed.min_age == 18

    # Label patterns read a bare number as years; `age > N` needs no unit
    assert parse_eligibility("Minimum Age: 21").min_age == 21
    assert parse_eligibility("Maximum Age: 70").max_age == 70
    assert parse_eligibility("Patients with age > 17").min_age == 18
    # Other free-text forms need a year unit
    assert parse_eligibility("Older than 40 patients").min_age is None

    # Only inclusion lines are mined, so the exclusion age limit is ignored
    parsed = parse_eligibility(SAMPLE_CRITERIA)
    print(f"Sample criteria ages: {parsed.min_age}-{parsed.max_age}")
    assert (parsed.min_age, parsed.max_age) == (18, 75)

    print("\n[PASS] Age units and free text test passed!")


def test_contradictory_ages_are_unbounded():
    parsed = parse_eligibility("Minimum Age: 65 Years Maximum Age: 18 Years")
    assert parsed.min_age is None
    assert parsed.max_age is None


def test_biomarker_detection():
    print("\n" + "="*60)
    print("TEST: Biomarker Detection")
    print("="*60)

    found = detect_biomarkers("HER2-positive disease; PD-L1 testing required; BRCA mutation carriers")
    print(f"Found: {found}")
    assert found == ("BRCA1", "BRCA2", "HER2", "PDL1")

    assert detect_biomarkers("MSI-H colorectal cancer") == ("MSI",)
    assert detect_biomarkers("MET exon 14 skipping") == ("MET",)
    # Ordinary words never trigger the short gene names
    assert detect_biomarkers("metastatic disease, patients must return for follow-up") == ()
    assert detect_biomarkers("") == ()

    print("\n[PASS] Biomarker detection test passed!")


def test_biomarkers_ignore_negation():
    """Detection is a relevance signal: an excluded biomarker is still tagged."""
    parsed = parse_eligibility("Exclusion: patients with HER2-positive tumors are not eligible")
    assert "HER2" in parsed.biomarkers


def test_biomarker_fallback_text():
    parsed = parse_eligibility("Adequate organ function", fallback_text="EGFR mutant NSCLC after osimertinib")
    assert parsed.biomarkers == ("EGFR",)

    # Fallback is only used when the criteria mention nothing
    parsed = parse_eligibility("KRAS G12C mutation", fallback_text="EGFR mutant NSCLC")
    assert parsed.biomarkers == ("KRAS",)


def test_normalize_biomarker():
    assert normalize_biomarker("her2+") == ("HER2",)
    assert normalize_biomarker("PD-L1") == ("PDL1",)
    assert normalize_biomarker("BRCA") == ("BRCA1", "BRCA2")
    assert normalize_biomarker("tp53") == ("TP53",)
    assert normalize_biomarker("") == ()


def test_prior_treatment():
    print("\n" + "="*60)
    print("TEST: Prior Treatment")
    print("="*60)

    cases = [
        ("No prior chemotherapy for metastatic disease", PriorTreatmentRequirement.EXCLUDED),
        ("Treatment-naive patients only", PriorTreatmentRequirement.EXCLUDED),
        (
            "Must have received at least one prior line of platinum-based chemotherapy",
            PriorTreatmentRequirement.REQUIRED,
        ),
        ("Disease refractory to standard therapy", PriorTreatmentRequirement.REQUIRED),
        (
            "Previously untreated patients. Patients who progressed on prior therapy are also eligible",
            PriorTreatmentRequirement.UNSPECIFIED,
        ),
        ("Adequate organ function", PriorTreatmentRequirement.UNSPECIFIED),
    ]
    for text, expected in cases:
        parsed = parse_eligibility(text)
        print(f"{text[:50]!r} -> {parsed.requires_prior_treatment.value}")
        assert parsed.requires_prior_treatment == expected, f"{text!r}: got {parsed.requires_prior_treatment}"

    print("\n[PASS] Prior treatment test passed!")


def test_sex_and_healthy_volunteers():
    assert parse_eligibility("Sex: Female").sex == Sex.FEMALE
    assert parse_eligibility("Gender: Male").sex == Sex.MALE
    # Contradictory labels fall back to All
    assert parse_eligibility("Sex: Male\nGender: Female").sex == Sex.ALL
    assert parse_eligibility("No sex restriction stated").sex == Sex.ALL

    assert parse_eligibility("", structured={"healthyVolunteers": True}).healthy_volunteers is True
    assert parse_eligibility("", structured={"healthyVolunteers": "Yes"}).healthy_volunteers is True
    assert parse_eligibility("Healthy Volunteers: No").healthy_volunteers is False
    assert parse_eligibility("Healthy Volunteers: Yes").healthy_volunteers is True
    assert parse_eligibility("Adults with cancer").healthy_volunteers is False


def test_stages_ecog_and_sections():
    print("\n" + "="*60)
    print("TEST: Stages, ECOG And Criteria Sections")
    print("="*60)

    parsed = parse_eligibility("Stage IV or metastatic breast cancer\nECOG <= 2")
    print(f"Stages: {parsed.stages}, ECOG max: {parsed.ecog_max}")
    assert parsed.stages == ("Stage IV", "Metastatic")
    assert parsed.ecog_max == 2

    parsed = parse_eligibility(SAMPLE_CRITERIA)
    assert parsed.ecog_max == 1
    assert len(parsed.inclusion_criteria) == 4
    assert len(parsed.exclusion_criteria) == 2
    assert parsed.inclusion_criteria[0] == "Aged 18 to 75 years"
    assert parsed.requires_prior_treatment == PriorTreatmentRequirement.REQUIRED

    print("\n[PASS] Stages, ECOG and sections test passed!")


def test_deterministic_and_total():
    """Same input, same output; junk input gives defaults instead of errors."""
    first = parse_eligibility(SAMPLE_CRITERIA, structured={"minimumAge": "18 Years"})
    second = parse_eligibility(SAMPLE_CRITERIA, structured={"minimumAge": "18 Years"})
    assert first == second

    for junk in (None, 12345, "", "\n\n\n"):
        assert parse_eligibility(junk) == ParsedEligibility()
    assert parse_eligibility("Sex: All", structured="not a mapping").sex == Sex.ALL


if __name__ == "__main__":
    print("\n" + "="*60)
    print("ELIGIBILITY EXTRACTOR - TEST SUITE")
    print("="*60)

    try:
        test_labelled_age_and_sex()
        test_structured_fields_take_precedence()
        test_age_units_and_free_text()
        test_contradictory_ages_are_unbounded()
        test_biomarker_detection()
        test_biomarkers_ignore_negation()
        test_biomarker_fallback_text()
        test_normalize_biomarker()
        test_prior_treatment()
        test_sex_and_healthy_volunteers()
        test_stages_ecog_and_sections()
        test_deterministic_and_total()

        print("\n" + "="*60)
        print("ALL TESTS PASSED!")
        print("="*60 + "\n")

    except AssertionError as e:
        print(f"\n[FAIL] TEST FAILED: {e}")
        sys.exit(1)
