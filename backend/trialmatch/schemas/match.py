from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, computed_field

from .patient import PatientProfile
from .trial import Trial


class MatchResult(BaseModel):
    """One trial's relevance to a patient profile."""
    trial: Trial
    score: float = Field(..., ge=0.0, le=1.0)
    score_breakdown: Dict[str, float] = Field(
        default_factory=dict,
        description="Sub-score name -> value for every active sub-score"
    )
    ai_rationale: Optional[str] = Field(None, description="Populated only when augmentation succeeded")
    distance_miles: Optional[float] = None
    age_eligible: bool = True
    reasons: List[str] = Field(default_factory=list, description="Human-readable matched/unmatched factors")


class MatchRun(BaseModel):
    """Ranked results plus bookkeeping about what was filtered out."""
    results: List[MatchResult] = Field(default_factory=list)
    excluded_closed: int = 0


class InvalidRecord(BaseModel):
    """Marker returned by the normalizer for a record that cannot be used."""
    reason: str
    raw_id: Optional[str] = None


class NormalizationReport(BaseModel):
    trials: List[Trial] = Field(default_factory=list)
    invalid: List[InvalidRecord] = Field(default_factory=list)

    @computed_field
    @property
    def dropped(self) -> int:
        return len(self.invalid)


class MatchRequest(BaseModel):
    """Request body for /match."""
    profile: PatientProfile
    records: List[Dict[str, Any]] = Field(default_factory=list, description="Raw registry study records")
    include_closed: bool = False
    augment: bool = False


class MatchResponse(BaseModel):
    results: List[MatchResult] = Field(default_factory=list)
    dropped: int = 0
    dropped_ids: List[Optional[str]] = Field(default_factory=list)
    excluded_closed: int = 0
    augmented: int = Field(0, description="How many results received an AI rationale")


class EligibilityParseRequest(BaseModel):
    text: str = ""
    minimum_age: Optional[str] = None
    maximum_age: Optional[str] = None
    sex: Optional[str] = None
    healthy_volunteers: Optional[bool] = None


class NormalizeRequest(BaseModel):
    records: List[Dict[str, Any]] = Field(default_factory=list)


class TrialSearchResponse(BaseModel):
    """One page of registry search results, normalized."""
    trials: List[Trial] = Field(default_factory=list)
    dropped: int = 0
    next_page_token: Optional[str] = None
    total_count: Optional[int] = None
