"""
Clinical Trial Matching Module

This module normalizes registry records, extracts structured eligibility
signals and ranks trials against a patient profile.
"""

from .eligibility import (
    # Main classes
    EligibilityExtractor,

    # Data classes
    BiomarkerVocabulary,
    TreatmentCues,
    AgePatterns,
    StagePatterns,

    # Convenience functions
    parse_eligibility,
    detect_biomarkers,
    normalize_biomarker,

    # Global instances
    BIOMARKER_VOCABULARY,
    TREATMENT_CUES,
    AGE_PATTERNS,
    STAGE_PATTERNS,
)
from .cache import EligibilityCache
from .normalizer import normalize, normalize_batch, reparse_eligibility
from .scorer import (
    TrialScorer,
    ScoringWeights,
    DEFAULT_WEIGHTS,
    create_scorer,
    match,
    match_run,
)

__all__ = [
    "EligibilityExtractor",
    "BiomarkerVocabulary",
    "TreatmentCues",
    "AgePatterns",
    "StagePatterns",
    "parse_eligibility",
    "detect_biomarkers",
    "normalize_biomarker",
    "BIOMARKER_VOCABULARY",
    "TREATMENT_CUES",
    "AGE_PATTERNS",
    "STAGE_PATTERNS",
    "EligibilityCache",
    "normalize",
    "normalize_batch",
    "reparse_eligibility",
    "TrialScorer",
    "ScoringWeights",
    "DEFAULT_WEIGHTS",
    "create_scorer",
    "match",
    "match_run",
]
