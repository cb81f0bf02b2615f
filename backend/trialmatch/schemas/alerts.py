from datetime import date
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .patient import PatientProfile


class AlertEntry(BaseModel):
    """One highlighted trial in a digest."""
    nct_id: str
    title: str
    phase: str = "N/A"
    status: str
    score: float
    one_liner: str = Field(..., description="AI rationale when available, otherwise the matched factors")
    url: str


class QuickStats(BaseModel):
    total_new: int = 0
    recruiting: int = 0
    matched: int = 0


class AlertDigest(BaseModel):
    """New-trial digest for a subscribed profile. Delivery is the caller's concern."""
    subject: str
    since: date
    entries: List[AlertEntry] = Field(default_factory=list)
    quick_stats: QuickStats = Field(default_factory=QuickStats)


class AlertDigestRequest(BaseModel):
    profile: PatientProfile
    records: List[Dict[str, Any]] = Field(default_factory=list, description="Raw registry study records")
    since: date
    augment: bool = False
    max_entries: Optional[int] = Field(None, ge=1, le=50)
