import re
from datetime import date
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

NCT_ID_PATTERN = re.compile(r"^NCT\d{8}$")

UNKNOWN = "Unknown"


class TrialStatus(str, Enum):
    RECRUITING = "Recruiting"
    NOT_YET_RECRUITING = "Not yet recruiting"
    ACTIVE_NOT_RECRUITING = "Active, not recruiting"
    ENROLLING_BY_INVITATION = "Enrolling by invitation"
    SUSPENDED = "Suspended"
    COMPLETED = "Completed"
    TERMINATED = "Terminated"
    WITHDRAWN = "Withdrawn"
    UNKNOWN = "Unknown status"


# Statuses dropped before scoring unless the caller opts in
CLOSED_STATUSES = frozenset({TrialStatus.TERMINATED, TrialStatus.WITHDRAWN})


class TrialPhase(str, Enum):
    EARLY_PHASE1 = "Early Phase 1"
    PHASE1 = "Phase 1"
    PHASE2 = "Phase 2"
    PHASE3 = "Phase 3"
    PHASE4 = "Phase 4"


class Sex(str, Enum):
    ALL = "All"
    MALE = "Male"
    FEMALE = "Female"


class PriorTreatmentRequirement(str, Enum):
    REQUIRED = "required"
    EXCLUDED = "excluded"
    UNSPECIFIED = "unspecified"


_PHASE_TOKENS = {
    "EARLY_PHASE1": TrialPhase.EARLY_PHASE1,
    "EARLYPHASE1": TrialPhase.EARLY_PHASE1,
    "EARLY1": TrialPhase.EARLY_PHASE1,
    "PHASE0": TrialPhase.EARLY_PHASE1,
    "PHASE1": TrialPhase.PHASE1,
    "PHASEI": TrialPhase.PHASE1,
    "I": TrialPhase.PHASE1,
    "1": TrialPhase.PHASE1,
    "PHASE2": TrialPhase.PHASE2,
    "PHASEII": TrialPhase.PHASE2,
    "II": TrialPhase.PHASE2,
    "2": TrialPhase.PHASE2,
    "PHASE3": TrialPhase.PHASE3,
    "PHASEIII": TrialPhase.PHASE3,
    "III": TrialPhase.PHASE3,
    "3": TrialPhase.PHASE3,
    "PHASE4": TrialPhase.PHASE4,
    "PHASEIV": TrialPhase.PHASE4,
    "IV": TrialPhase.PHASE4,
    "4": TrialPhase.PHASE4,
}


def parse_phase_label(value: Any) -> List[TrialPhase]:
    """
    Coerce an upstream phase value into a sorted list of phases.

    Accepts registry codes ("PHASE1_PHASE2", "EARLY_PHASE1", "NA"), display
    labels ("Phase 2/Phase 3"), roman numerals ("II") and lists of any of
    these. Unrecognised or not-applicable values contribute nothing.
    """
    if value is None:
        return []
    if isinstance(value, TrialPhase):
        return [value]
    if isinstance(value, (list, tuple, set, frozenset)):
        found = set()
        for item in value:
            found.update(parse_phase_label(item))
        return sorted(found, key=_phase_order)
    if not isinstance(value, str):
        return []

    text = value.upper().strip()
    if text.startswith("EARLY"):
        return [TrialPhase.EARLY_PHASE1]

    found = set()
    # "PHASE1_PHASE2", "Phase 1/Phase 2", "Phase 2, Phase 3"
    for part in re.split(r"[_/,|&+]|\bAND\b", text):
        token = re.sub(r"[\s\-]", "", part)
        if token in _PHASE_TOKENS:
            found.add(_PHASE_TOKENS[token])
    return sorted(found, key=_phase_order)


def _phase_order(phase: TrialPhase) -> int:
    return list(TrialPhase).index(phase)


class Intervention(BaseModel):
    """One study intervention (drug, procedure, device...)."""
    model_config = ConfigDict(frozen=True)

    type: str = Field("Other", description="Drug, Biological, Procedure, Radiation, Device, Combination or Other")
    name: str = UNKNOWN
    description: Optional[str] = None


class Contact(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None


class GeoPoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    lat: float = Field(..., ge=-90, le=90)
    lon: float = Field(..., ge=-180, le=180)


class TrialLocation(BaseModel):
    """A single trial site."""
    model_config = ConfigDict(frozen=True)

    facility: str = "Unknown Facility"
    city: str = ""
    state: str = ""
    zip_code: Optional[str] = None
    country: str = ""
    status: Optional[str] = Field(None, description="Site recruitment status, when reported")
    contact: Optional[Contact] = None
    geo_point: Optional[GeoPoint] = None


class ParsedEligibility(BaseModel):
    """Structured signals extracted from the free-text eligibility block."""
    model_config = ConfigDict(frozen=True)

    min_age: Optional[int] = Field(None, description="Inclusive minimum age in years; None means unbounded")
    max_age: Optional[int] = Field(None, description="Inclusive maximum age in years; None means unbounded")
    sex: Sex = Sex.ALL
    biomarkers: Tuple[str, ...] = Field(
        default_factory=tuple,
        description="Sorted biomarker tokens mentioned anywhere in the criteria (not negation aware)"
    )
    requires_prior_treatment: PriorTreatmentRequirement = PriorTreatmentRequirement.UNSPECIFIED
    healthy_volunteers: bool = False

    stages: Tuple[str, ...] = Field(default_factory=tuple)
    ecog_max: Optional[int] = None
    inclusion_criteria: Tuple[str, ...] = Field(default_factory=tuple)
    exclusion_criteria: Tuple[str, ...] = Field(default_factory=tuple)

    def age_allows(self, age: Optional[int]) -> bool:
        """True when the age is unknown or inside [min_age, max_age]."""
        if age is None:
            return True
        if self.min_age is not None and age < self.min_age:
            return False
        if self.max_age is not None and age > self.max_age:
            return False
        return True


class Trial(BaseModel):
    """Canonical, normalized clinical trial record."""
    model_config = ConfigDict(frozen=True)

    nct_id: str = Field(..., description="ClinicalTrials.gov identifier")
    title: str = UNKNOWN
    official_title: Optional[str] = None

    # Status
    status: TrialStatus = TrialStatus.UNKNOWN
    phases: Tuple[TrialPhase, ...] = Field(default_factory=tuple, description="Empty for observational studies")
    study_type: Optional[str] = None

    # Conditions
    conditions: Tuple[str, ...] = Field(default_factory=tuple)
    conditions_normalized: Tuple[str, ...] = Field(default_factory=tuple)
    keywords: Tuple[str, ...] = Field(default_factory=tuple)

    # Description
    brief_summary: str = ""
    detailed_description: Optional[str] = None
    interventions: Tuple[Intervention, ...] = Field(default_factory=tuple)

    # Eligibility
    eligibility_raw: str = ""
    eligibility_structured: Dict[str, Any] = Field(
        default_factory=dict,
        description="Registry age, sex and healthy-volunteer fields; they outrank the text on every re-parse"
    )
    parsed_eligibility: ParsedEligibility = Field(default_factory=ParsedEligibility)

    # Locations
    locations: Tuple[TrialLocation, ...] = Field(default_factory=tuple)

    # Sponsor
    lead_sponsor: str = UNKNOWN
    collaborators: Tuple[str, ...] = Field(default_factory=tuple)

    # Dates
    last_updated: Optional[date] = None
    start_date: Optional[str] = None
    completion_date: Optional[str] = None

    @field_validator("nct_id")
    @classmethod
    def _check_nct_id(cls, value: str) -> str:
        value = value.strip().upper()
        if not NCT_ID_PATTERN.match(value):
            raise ValueError(f"Invalid NCT identifier: {value!r}")
        return value

    @property
    def url(self) -> str:
        return f"https://clinicaltrials.gov/study/{self.nct_id}"

    @property
    def search_text(self) -> str:
        """Concatenated trial text, used as the biomarker fallback corpus."""
        parts = [
            self.title,
            self.official_title or "",
            *self.conditions,
            *self.keywords,
            *(i.name for i in self.interventions),
            self.brief_summary,
        ]
        return " ".join(p for p in parts if p)
