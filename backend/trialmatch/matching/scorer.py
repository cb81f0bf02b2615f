"""
Trial Matcher / Scorer

Scores trials against a patient profile and ranks them. Every sub-score is in
[0, 1]; the final score is the weighted mean over the sub-scores that are
active for this profile, so a patient is never penalized for a dimension they
did not specify. Age is a gate: an out-of-range age forces the score to 0.

Scoring is pure and deterministic: identical inputs give identical scores
and identical ordering.
"""

import logging
import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Set, Tuple

from geopy.distance import geodesic

from ..core.exceptions import ProfileIncomplete
from ..schemas.match import MatchResult, MatchRun
from ..schemas.patient import PatientProfile
from ..schemas.trial import CLOSED_STATUSES, PriorTreatmentRequirement, Sex, Trial, TrialStatus
from .eligibility import normalize_biomarker

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScoringWeights:
    """Relative weights of the sub-scores (renormalized over active ones)."""
    condition: float = 0.35
    biomarker: float = 0.25
    age: float = 0.15
    phase: float = 0.10
    distance: float = 0.15

    def as_dict(self) -> Dict[str, float]:
        return {
            "condition": self.condition,
            "biomarker": self.biomarker,
            "age": self.age,
            "phase": self.phase,
            "distance": self.distance,
        }


DEFAULT_WEIGHTS = ScoringWeights()


# =============================================================================
# SUB-SCORES
# =============================================================================

def _tokens(text: str) -> Set[str]:
    return set(re.findall(r"[a-z0-9]+", text.lower()))


def condition_score(cancer_type: str, conditions: Iterable[str]) -> float:
    """
    1.0 when a condition contains the cancer type (case-insensitive), or when
    a multi-word condition is contained in it ("Breast Cancer" for
    "Metastatic Breast Cancer"). Otherwise the best fraction of cancer-type
    tokens found in one condition.
    """
    query = (cancer_type or "").strip().lower()
    if not query:
        return 0.0
    query_tokens = _tokens(query)
    best = 0.0
    for condition in conditions:
        lowered = condition.lower()
        condition_tokens = _tokens(lowered)
        if lowered and query in lowered:
            return 1.0
        if len(condition_tokens) > 1 and lowered in query:
            return 1.0
        if query_tokens:
            overlap = len(query_tokens & condition_tokens) / len(query_tokens)
            best = max(best, overlap)
    return best


def normalize_profile_biomarkers(biomarkers: Iterable[str]) -> Set[str]:
    normalized: Set[str] = set()
    for biomarker in biomarkers:
        normalized.update(normalize_biomarker(biomarker))
    return normalized


def biomarker_score(profile_markers: Set[str], trial_markers: Iterable[str]) -> Optional[float]:
    """Fraction of the patient's biomarkers the trial mentions; None when the patient gave none."""
    if not profile_markers:
        return None
    return len(profile_markers & set(trial_markers)) / len(profile_markers)


def phase_score(profile: PatientProfile, trial: Trial) -> float:
    if not profile.preferred_phases:
        return 0.5
    return 1.0 if set(profile.preferred_phases) & set(trial.phases) else 0.0


def nearest_site_miles(profile: PatientProfile, trial: Trial) -> Optional[float]:
    """Geodesic distance in miles to the closest site with coordinates, if both sides have them."""
    location = profile.location
    if location is None or not location.has_coordinates:
        return None
    origin = (location.latitude, location.longitude)
    distances = [
        geodesic(origin, (site.geo_point.lat, site.geo_point.lon)).miles
        for site in trial.locations
        if site.geo_point is not None
    ]
    return min(distances) if distances else None


def distance_score(distance_miles: Optional[float], max_distance: Optional[float]) -> Optional[float]:
    """Linear falloff from 1.0 at the patient to 0.0 at max_distance; None when not computable."""
    if distance_miles is None or not max_distance:
        return None
    return max(0.0, 1.0 - distance_miles / max_distance)


# =============================================================================
# SCORER
# =============================================================================

class TrialScorer:
    """Computes MatchResults for a profile against a set of trials."""

    def __init__(self, weights: ScoringWeights = DEFAULT_WEIGHTS):
        self.weights = weights

    def score(self, profile: PatientProfile, trial: Trial) -> MatchResult:
        """Score a single trial. The trial is referenced, never modified."""
        weights = self.weights.as_dict()
        parsed = trial.parsed_eligibility
        breakdown: Dict[str, float] = {}
        reasons: List[str] = []

        breakdown["condition"] = condition_score(
            profile.cancer_type, list(trial.conditions) + list(trial.conditions_normalized)
        )
        if breakdown["condition"] >= 1.0:
            reasons.append(f"Condition match: {profile.cancer_type}")
        elif breakdown["condition"] > 0:
            reasons.append(f"Partial condition match: {profile.cancer_type}")
        else:
            reasons.append("Condition mismatch or unspecified.")

        profile_markers = normalize_profile_biomarkers(profile.biomarkers)
        biomarker = biomarker_score(profile_markers, parsed.biomarkers)
        if biomarker is not None:
            breakdown["biomarker"] = biomarker
            overlap = sorted(profile_markers & set(parsed.biomarkers))
            if overlap:
                reasons.append(f"Biomarker mentioned in criteria: {', '.join(overlap)}")

        age_eligible = parsed.age_allows(profile.age)
        if profile.age is not None:
            breakdown["age"] = 1.0 if age_eligible else 0.0
        if not age_eligible:
            reasons.append(f"Age {profile.age} outside trial range {_age_range(parsed.min_age, parsed.max_age)}")

        breakdown["phase"] = phase_score(profile, trial)
        if profile.preferred_phases and breakdown["phase"] == 1.0:
            reasons.append("Phase matches preference.")

        distance_miles = nearest_site_miles(profile, trial)
        distance = distance_score(distance_miles, profile.max_distance)
        if distance is not None:
            breakdown["distance"] = distance
        if distance_miles is not None:
            reasons.append(f"Nearest site about {distance_miles:.0f} miles away.")

        if profile.stage and parsed.stages:
            stage = profile.stage.strip().lower()
            if any(stage in label.lower() or label.lower() in stage for label in parsed.stages):
                reasons.append(f"Stage mentioned in criteria: {profile.stage}")

        if profile.sex and parsed.sex not in (Sex.ALL, profile.sex):
            reasons.append(f"Trial enrolls {parsed.sex.value.lower()} participants only.")

        if parsed.requires_prior_treatment == PriorTreatmentRequirement.REQUIRED and not profile.prior_treatments:
            reasons.append("Criteria ask for prior treatment; none listed.")
        elif parsed.requires_prior_treatment == PriorTreatmentRequirement.EXCLUDED and profile.prior_treatments:
            reasons.append("Criteria ask for no prior treatment.")

        if trial.status == TrialStatus.RECRUITING:
            reasons.append("Currently recruiting.")

        if age_eligible:
            active_weight = sum(weights[name] for name in breakdown)
            total = sum(weights[name] * value for name, value in breakdown.items())
            score = total / active_weight if active_weight else 0.0
        else:
            score = 0.0

        return MatchResult(
            trial=trial,
            score=round(min(1.0, max(0.0, score)), 6),
            score_breakdown={name: round(value, 6) for name, value in breakdown.items()},
            distance_miles=round(distance_miles, 2) if distance_miles is not None else None,
            age_eligible=age_eligible,
            reasons=reasons,
        )

    def match_run(
        self,
        profile: PatientProfile,
        trials: Iterable[Trial],
        include_closed: bool = False
    ) -> MatchRun:
        """Score and rank trials, reporting how many closed trials were filtered out."""
        _require_cancer_type(profile)

        candidates = []
        excluded_closed = 0
        for trial in trials:
            if not include_closed and trial.status in CLOSED_STATUSES:
                excluded_closed += 1
                continue
            candidates.append(trial)

        results = [self.score(profile, trial) for trial in candidates]
        results.sort(key=rank_key)

        logger.info(
            f"Matched {len(results)} trials for cancer type {profile.cancer_type!r} "
            f"({excluded_closed} closed trials excluded)"
        )
        return MatchRun(results=results, excluded_closed=excluded_closed)

    def match(
        self,
        profile: PatientProfile,
        trials: Iterable[Trial],
        include_closed: bool = False
    ) -> List[MatchResult]:
        return self.match_run(profile, trials, include_closed).results


def rank_key(result: MatchResult) -> Tuple[float, float, int, str]:
    """Score desc, then condition desc, then most recently updated, then NCT id."""
    updated = result.trial.last_updated
    return (
        -result.score,
        -result.score_breakdown.get("condition", 0.0),
        -(updated.toordinal() if updated else 0),
        result.trial.nct_id,
    )


def _require_cancer_type(profile: Optional[PatientProfile]) -> None:
    if profile is None or not (profile.cancer_type or "").strip():
        raise ProfileIncomplete("cancer_type")


def _age_range(min_age: Optional[int], max_age: Optional[int]) -> str:
    low = str(min_age) if min_age is not None else "any"
    high = str(max_age) if max_age is not None else "any"
    return f"{low}-{high}"


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================

_SCORER = TrialScorer()


def create_scorer(weights: ScoringWeights = DEFAULT_WEIGHTS) -> TrialScorer:
    """Factory function to create a scorer instance."""
    return TrialScorer(weights)


def match(
    profile: PatientProfile,
    trials: Iterable[Trial],
    include_closed: bool = False
) -> List[MatchResult]:
    """
    Rank trials for a profile.

    Raises:
        ProfileIncomplete: when the profile has no cancer type, before any scoring
    """
    return _SCORER.match(profile, trials, include_closed)


def match_run(
    profile: PatientProfile,
    trials: Iterable[Trial],
    include_closed: bool = False
) -> MatchRun:
    return _SCORER.match_run(profile, trials, include_closed)
