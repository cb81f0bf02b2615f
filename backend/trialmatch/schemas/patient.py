import hashlib
from typing import Any, List, Optional

from pydantic import BaseModel, Field, field_validator

from .trial import Sex, TrialPhase, parse_phase_label


class PatientLocation(BaseModel):
    """Where the patient is. Either coordinates or a ZIP code (resolved by the caller)."""
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    zip_code: Optional[str] = None

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None


class PatientProfile(BaseModel):
    """
    Caller-supplied matching query. Never persisted by the engine.

    cancer_type is the only field matching cannot run without; it is left
    optional here so the matcher can reject an incomplete profile with a
    precise error instead of a generic validation failure.
    """
    cancer_type: Optional[str] = Field(None, description="Primary cancer type, e.g. 'breast'")
    stage: Optional[str] = None
    biomarkers: List[str] = Field(default_factory=list)
    age: Optional[int] = Field(None, ge=0, le=130)
    sex: Optional[Sex] = None
    prior_treatments: List[str] = Field(default_factory=list)
    location: Optional[PatientLocation] = None
    max_distance: Optional[float] = Field(None, gt=0, description="Maximum travel distance in miles")
    preferred_phases: List[TrialPhase] = Field(default_factory=list)

    @field_validator("sex", mode="before")
    @classmethod
    def _coerce_sex(cls, value: Any) -> Any:
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in {"m", "male"}:
                return Sex.MALE
            if lowered in {"f", "female"}:
                return Sex.FEMALE
            if lowered in {"all", "any", ""}:
                return None
        return value

    @field_validator("preferred_phases", mode="before")
    @classmethod
    def _coerce_phases(cls, value: Any) -> Any:
        if value is None:
            return []
        return parse_phase_label(value)

    def profile_hash(self) -> str:
        """Stable digest of the profile, for caller-side memoization keys."""
        canonical = self.model_copy(update={
            "biomarkers": sorted(b.strip().upper() for b in self.biomarkers),
            "prior_treatments": sorted(t.strip().lower() for t in self.prior_treatments),
            "preferred_phases": sorted(self.preferred_phases, key=lambda p: p.value),
        })
        return hashlib.sha256(canonical.model_dump_json().encode("utf-8")).hexdigest()
