"""
Eligibility Criteria Extractor

Turns the free-text eligibility block of a registry record (plus the
structured age/sex fields the registry publishes next to it) into a
ParsedEligibility.

Extraction is a pure function of its inputs and never raises. A step that
cannot make sense of its input leaves its field at the default, which always
means "unspecified" or "unbounded".

Known limitation: biomarker detection is a token scan with no notion of
negation. A trial that excludes HER2-positive patients is tagged HER2 exactly
like one that requires it, so a detected biomarker is a relevance signal and
never an eligibility verdict.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from ..schemas.trial import ParsedEligibility, PriorTreatmentRequirement, Sex

logger = logging.getLogger(__name__)


# =============================================================================
# STEP 1: VOCABULARIES
# =============================================================================

@dataclass
class BiomarkerVocabulary:
    """
    Fixed biomarker vocabulary: normalized token -> spelling variants (regex).

    Variants are matched case-insensitively on token boundaries, except the
    ones listed in case_sensitive, which collide with ordinary English words.
    """

    tokens: Dict[str, List[str]] = field(default_factory=lambda: {
        "HER2": [r"HER-?2", r"ERBB2"],
        "BRCA1": [r"BRCA-?1", r"BRCA1/2"],
        "BRCA2": [r"BRCA-?2", r"BRCA1/2"],
        "EGFR": [r"EGFR"],
        "KRAS": [r"K-?RAS"],
        "ALK": [r"ALK"],
        "PDL1": [r"PD-?L1"],
        "MSI": [r"MSI(?:-?H(?:igh)?)?", r"microsatellite[\s-]instability"],
        "BRAF": [r"BRAF"],
        "ROS1": [r"ROS-?1"],
        "NTRK": [r"NTRK[1-3]?"],
        "PIK3CA": [r"PIK3CA"],
        "RET": [r"RET"],
        "MET": [r"MET"],
        "FGFR": [r"FGFR[1-4]?"],
        "IDH1": [r"IDH-?1"],
        "IDH2": [r"IDH-?2"],
        "FLT3": [r"FLT-?3"],
    })

    # A bare "BRCA" names both genes
    bare_aliases: Dict[str, List[str]] = field(default_factory=lambda: {
        r"BRCA": ["BRCA1", "BRCA2"],
    })

    case_sensitive: List[str] = field(default_factory=lambda: ["RET", "MET"])


@dataclass
class TreatmentCues:
    """Cue phrases for the prior-treatment tri-state."""

    keywords: List[str] = field(default_factory=lambda: [
        "therapy", "therapies", "treatment", "treatments", "chemotherapy", "chemo",
        "immunotherapy", "checkpoint inhibitor", "targeted therapy",
        "tyrosine kinase inhibitor", "tki", "radiation", "radiotherapy",
        "surgery", "resection", "regimen", "regimens", "systemic", "endocrine",
        "hormonal", "platinum", "anti-pd-1", "anti-pd-l1",
    ])

    # {kw} is replaced by the keyword alternation
    negation_patterns: List[str] = field(default_factory=lambda: [
        r"\bno\s+(?:prior|previous)\s+(?:[\w\-/]+\s+){{0,4}}?(?:{kw})\b",
        r"\bwithout\s+(?:any\s+)?(?:prior|previous)\s+(?:[\w\-/]+\s+){{0,4}}?(?:{kw})\b",
        r"\b(?:treatment|therapy|chemotherapy|chemo|systemic[\s-]therapy)[\s-]na[iï]ve\b",
        r"\bpreviously\s+untreated\b",
        r"\bmust\s+not\s+have\s+(?:previously\s+)?(?:received|undergone|had)\b[^.;\n]{{0,60}}?\b(?:{kw})\b",
        r"\b(?:has|have)\s+not\s+(?:previously\s+)?received\b[^.;\n]{{0,60}}?\b(?:{kw})\b",
    ])

    requirement_patterns: List[str] = field(default_factory=lambda: [
        r"\bmust\s+have\s+(?:previously\s+)?(?:received|undergone|had)\b[^.;\n]{{0,60}}?\b(?:{kw})\b",
        r"\bprogressed\s+(?:on|after|following|during)\b",
        r"\bpreviously\s+treated\b",
        r"\brefractory\s+to\b",
        r"\b(?:after\s+)?failure\s+of\s+(?:at\s+least\s+)?(?:one|two|1|2)?\s*(?:prior|previous)?\s*(?:{kw})\b",
        r"\b(?:at\s+least|>=|≥)\s*(?:one|two|three|1|2|3)\s+(?:prior|previous)\s+(?:lines?|regimens?|(?:{kw}))\b",
    ])


@dataclass
class AgePatterns:
    """
    Regex patterns for age bounds.

    Free-text patterns need a year unit, except `age > N`. The Minimum/Maximum
    Age label patterns accept a bare number and read it as years.
    """

    minimum_label: str = r"minimum\s+age\s*[:=]?\s*(\d+(?:\.\d+)?)\s*(years?|months?|weeks?|days?)?"
    maximum_label: str = r"maximum\s+age\s*[:=]?\s*(\d+(?:\.\d+)?)\s*(years?|months?|weeks?|days?)?"

    # (pattern, kind) with kind in "range", "min", "min_exclusive", "max", "max_exclusive"
    free_text: List[Tuple[str, str]] = field(default_factory=lambda: [
        (r"(?:between|aged?|from)\s*(\d{1,3})\s*(?:and|to|-|–)\s*(\d{1,3})\s*(?:years?|yrs?)", "range"),
        (r"(\d{1,3})\s*(?:-|–|to)\s*(\d{1,3})\s*(?:years?|yrs?)\s*(?:of\s+age|old)", "range"),
        (r"(?:>=|≥|=>)\s*(\d{1,3})\s*(?:years?|yrs?)", "min"),
        (r"(?:age|aged)\s*>\s*(\d{1,3})\s*(?:years?|yrs?)?", "min_exclusive"),
        (r"(\d{1,3})\s*(?:years?|yrs?)\s*(?:of\s+age\s*|old\s*)?(?:or|and)\s+(?:older|above|over)", "min"),
        (r"(?:at\s+least|minimum\s+of)\s*(\d{1,3})\s*(?:years?|yrs?)\s*(?:of\s+age|old)", "min"),
        (r"(?:older\s+than|over)\s*(\d{1,3})\s*(?:years?|yrs?)", "min_exclusive"),
        (r"(?:<=|≤|=<)\s*(\d{1,3})\s*(?:years?|yrs?)", "max"),
        (r"(\d{1,3})\s*(?:years?|yrs?)\s*(?:of\s+age\s*|old\s*)?(?:or|and)\s+(?:younger|below|under)", "max"),
        (r"(?:younger\s+than|under|less\s+than)\s*(\d{1,3})\s*(?:years?|yrs?)", "max_exclusive"),
    ])


@dataclass
class StagePatterns:
    """Cancer stage labels detected in eligibility text."""

    labels: List[Tuple[str, str]] = field(default_factory=lambda: [
        ("Stage 0", r"\bstage[\s-]+0\b"),
        ("Stage I", r"\bstage[\s-]+(?:i|1)[abc]?\b"),
        ("Stage II", r"\bstage[\s-]+(?:ii|2)[abc]?\b"),
        ("Stage III", r"\bstage[\s-]+(?:iii|3)[abc]?\b"),
        ("Stage IV", r"\bstage[\s-]+(?:iv|4)[abc]?\b"),
        ("Metastatic", r"\bmetasta(?:tic|ses|sis)\b"),
        ("Locally Advanced", r"\blocally[\s-]+advanced\b"),
        ("Recurrent", r"\brecurren(?:t|ce)\b"),
        ("Refractory", r"\brefractory\b"),
        ("Unresectable", r"\bunresectable\b"),
    ])

    ecog: List[str] = field(default_factory=lambda: [
        r"ecog[^.;\n]{0,40}?\b0\s*(?:-|–|to)\s*([0-4])\b",
        r"ecog[^.;\n]{0,40}?(?:<=|≤|=<)\s*([0-4])\b",
        r"ecog[^.;\n]{0,40}?<\s*([1-5])\b",
        r"ecog[^.;\n]{0,40}?\b(?:[0-3]\s*,\s*)*[0-3]?\s*(?:or|and)\s*([0-4])\b",
        r"ecog[^.;\n]{0,40}?\b([0-4])\s*or\s*(?:less|lower|better)\b",
        r"ecog\s*(?:performance\s*status|ps)?\s*(?:of\s*)?([0-4])\b",
    ])


# Global instances
BIOMARKER_VOCABULARY = BiomarkerVocabulary()
TREATMENT_CUES = TreatmentCues()
AGE_PATTERNS = AgePatterns()
STAGE_PATTERNS = StagePatterns()

_UNIT_DIVISORS = {"year": 1.0, "month": 12.0, "week": 52.0, "day": 365.0, "hour": 8760.0, "minute": 525600.0}


# =============================================================================
# STEP 2: STANDALONE HELPERS
# =============================================================================

def parse_age_value(value: Any) -> Optional[int]:
    """
    Parse a registry age string ("18 Years", "6 Months", "N/A") into whole years.

    Months, weeks and days are floored to years. Anything unparseable is None
    (unbounded), never zero.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value) if value >= 0 else None
    match = re.search(r"(\d+(?:\.\d+)?)\s*([a-zA-Z]+)?", str(value))
    if not match:
        return None
    return _to_years(match.group(1), match.group(2))


def _to_years(number: str, unit: Optional[str]) -> Optional[int]:
    try:
        amount = float(number)
    except (TypeError, ValueError):
        return None
    unit_key = (unit or "year").lower().rstrip("s")
    divisor = _UNIT_DIVISORS.get(unit_key, 1.0)
    return int(amount / divisor)


def parse_sex_value(value: Any) -> Optional[Sex]:
    """Map a registry sex/gender value to Sex; None when it says nothing usable."""
    if isinstance(value, Sex):
        return value
    if not isinstance(value, str):
        return None
    lowered = value.strip().lower()
    if lowered in {"female", "females", "women", "f"}:
        return Sex.FEMALE
    if lowered in {"male", "males", "men", "m"}:
        return Sex.MALE
    if lowered in {"all", "both", "any"}:
        return Sex.ALL
    return None


def _compile_biomarker_patterns(vocabulary: BiomarkerVocabulary) -> List[Tuple[str, re.Pattern]]:
    compiled = []
    for token, variants in vocabulary.tokens.items():
        flags = 0 if token in vocabulary.case_sensitive else re.IGNORECASE
        alternation = "|".join(variants)
        compiled.append((token, re.compile(rf"(?<![A-Za-z0-9])(?:{alternation})(?![A-Za-z0-9])", flags)))
    for bare, tokens in vocabulary.bare_aliases.items():
        pattern = re.compile(rf"(?<![A-Za-z0-9]){bare}(?![A-Za-z0-9/])(?!-[0-9])", re.IGNORECASE)
        for token in tokens:
            compiled.append((token, pattern))
    return compiled


_BIOMARKER_PATTERNS = _compile_biomarker_patterns(BIOMARKER_VOCABULARY)


def detect_biomarkers(text: str) -> Tuple[str, ...]:
    """Return the sorted vocabulary tokens mentioned anywhere in the text."""
    if not text:
        return ()
    found = {token for token, pattern in _BIOMARKER_PATTERNS if pattern.search(text)}
    return tuple(sorted(found))


def normalize_biomarker(value: str) -> Tuple[str, ...]:
    """
    Normalize a caller-supplied biomarker ("her2+", "PD-L1", "BRCA") to vocabulary tokens.

    Values outside the vocabulary are kept as an upper-cased alphanumeric
    token so they can still be compared, they just never match a trial.
    """
    tokens = detect_biomarkers(value or "")
    if tokens:
        return tokens
    fallback = re.sub(r"[^A-Z0-9]", "", (value or "").upper())
    return (fallback,) if fallback else ()


# =============================================================================
# STEP 3: EXTRACTOR
# =============================================================================

class EligibilityExtractor:
    """
    Parses eligibility text into structured predicates.

    Structured registry fields always take precedence over values mined from
    the text.
    """

    def __init__(self):
        self.ages = AGE_PATTERNS
        self.stages = STAGE_PATTERNS
        keyword_alternation = "|".join(re.escape(k) for k in TREATMENT_CUES.keywords)
        self._negations = [
            re.compile(p.format(kw=keyword_alternation), re.IGNORECASE)
            for p in TREATMENT_CUES.negation_patterns
        ]
        self._requirements = [
            re.compile(p.format(kw=keyword_alternation), re.IGNORECASE)
            for p in TREATMENT_CUES.requirement_patterns
        ]

    def extract(
        self,
        raw_text: Any,
        structured: Optional[Mapping[str, Any]] = None,
        fallback_text: Optional[str] = None
    ) -> ParsedEligibility:
        """
        Parse eligibility criteria.

        Args:
            raw_text: Free-text eligibility block
            structured: Registry eligibility fields (minimumAge, maximumAge,
                sex, healthyVolunteers); snake_case keys are accepted too
            fallback_text: Serialized trial text scanned for biomarkers when
                the eligibility text mentions none

        Returns:
            ParsedEligibility; fields that could not be parsed stay at defaults
        """
        text = raw_text if isinstance(raw_text, str) else ""
        structured = structured if isinstance(structured, Mapping) else {}

        inclusion, exclusion = self._safely(self._split_criteria, ((), ()), text)
        age_text = "\n".join(inclusion) if inclusion else text
        min_age, max_age = self._safely(self._extract_ages, (None, None), text, age_text, structured)

        biomarkers = self._safely(detect_biomarkers, (), text)
        if not biomarkers and fallback_text:
            biomarkers = self._safely(detect_biomarkers, (), fallback_text)

        return ParsedEligibility(
            min_age=min_age,
            max_age=max_age,
            sex=self._safely(self._extract_sex, Sex.ALL, text, structured),
            biomarkers=biomarkers,
            requires_prior_treatment=self._safely(
                self._extract_prior_treatment, PriorTreatmentRequirement.UNSPECIFIED, text
            ),
            healthy_volunteers=self._safely(self._extract_healthy_volunteers, False, text, structured),
            stages=self._safely(self._extract_stages, (), text),
            ecog_max=self._safely(self._extract_ecog_max, None, text),
            inclusion_criteria=inclusion,
            exclusion_criteria=exclusion,
        )

    def _safely(self, step: Callable, default: Any, *args: Any) -> Any:
        try:
            return step(*args)
        except Exception as e:
            logger.debug(f"Eligibility step {step.__name__} skipped: {e}")
            return default

    # -------------------------------------------------------------------------
    # AGE
    # -------------------------------------------------------------------------

    def _extract_ages(
        self,
        text: str,
        age_text: str,
        structured: Mapping[str, Any]
    ) -> Tuple[Optional[int], Optional[int]]:
        min_age = parse_age_value(_lookup(structured, "minimumAge", "minimum_age", "min_age"))
        max_age = parse_age_value(_lookup(structured, "maximumAge", "maximum_age", "max_age"))

        if min_age is None:
            match = re.search(self.ages.minimum_label, text, re.IGNORECASE)
            if match:
                min_age = _to_years(match.group(1), match.group(2))
        if max_age is None:
            match = re.search(self.ages.maximum_label, text, re.IGNORECASE)
            if match:
                max_age = _to_years(match.group(1), match.group(2))

        if min_age is None or max_age is None:
            mined_min, mined_max = self._mine_free_text_ages(age_text)
            if min_age is None:
                min_age = mined_min
            if max_age is None:
                max_age = mined_max

        if min_age is not None and max_age is not None and min_age > max_age:
            # Contradictory bounds are treated as unparseable
            return None, None
        return min_age, max_age

    def _mine_free_text_ages(self, text: str) -> Tuple[Optional[int], Optional[int]]:
        min_age, max_age = None, None
        for pattern, kind in self.ages.free_text:
            match = re.search(pattern, text, re.IGNORECASE)
            if not match:
                continue
            if kind == "range":
                if min_age is None and max_age is None:
                    min_age, max_age = int(match.group(1)), int(match.group(2))
            elif kind.startswith("min") and min_age is None:
                min_age = int(match.group(1)) + (1 if kind == "min_exclusive" else 0)
            elif kind.startswith("max") and max_age is None:
                max_age = int(match.group(1)) - (1 if kind == "max_exclusive" else 0)
        return min_age, max_age

    # -------------------------------------------------------------------------
    # SEX / HEALTHY VOLUNTEERS
    # -------------------------------------------------------------------------

    def _extract_sex(self, text: str, structured: Mapping[str, Any]) -> Sex:
        structured_sex = parse_sex_value(_lookup(structured, "sex", "gender"))
        if structured_sex is not None:
            return structured_sex

        found = {
            parse_sex_value(m.group(1))
            for m in re.finditer(r"\b(?:sex|gender)\s*:\s*(all|male|female|both)\b", text, re.IGNORECASE)
        }
        found.discard(None)
        if len(found) == 1:
            return found.pop()
        # Absent or contradictory
        return Sex.ALL

    def _extract_healthy_volunteers(self, text: str, structured: Mapping[str, Any]) -> bool:
        value = _lookup(structured, "healthyVolunteers", "healthy_volunteers")
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.strip():
            return value.strip().lower() in {"yes", "true", "y"}
        match = re.search(r"healthy\s+volunteers?\s*:\s*(yes|no)\b", text, re.IGNORECASE)
        return bool(match and match.group(1).lower() == "yes")

    # -------------------------------------------------------------------------
    # PRIOR TREATMENT
    # -------------------------------------------------------------------------

    def _extract_prior_treatment(self, text: str) -> PriorTreatmentRequirement:
        negated = any(p.search(text) for p in self._negations)
        required = any(p.search(text) for p in self._requirements)
        if negated and not required:
            return PriorTreatmentRequirement.EXCLUDED
        if required and not negated:
            return PriorTreatmentRequirement.REQUIRED
        # Neither, or conflicting cues
        return PriorTreatmentRequirement.UNSPECIFIED

    # -------------------------------------------------------------------------
    # STAGES / ECOG / CRITERIA LINES
    # -------------------------------------------------------------------------

    def _extract_stages(self, text: str) -> Tuple[str, ...]:
        return tuple(
            label for label, pattern in self.stages.labels
            if re.search(pattern, text, re.IGNORECASE)
        )

    def _extract_ecog_max(self, text: str) -> Optional[int]:
        for pattern in self.stages.ecog:
            match = re.search(pattern, text, re.IGNORECASE)
            if match:
                value = int(match.group(1))
                if "<" in pattern and "=" not in pattern:
                    value -= 1
                return value
        return None

    def _split_criteria(self, text: str) -> Tuple[Tuple[str, ...], Tuple[str, ...]]:
        inclusion: List[str] = []
        exclusion: List[str] = []
        current = None
        for raw_line in text.splitlines():
            line = re.sub(r"^\s*(?:[*\-•·]|\d+[.)])\s*", "", raw_line).strip()
            lowered = line.lower()
            if "inclusion criteria" in lowered or lowered.startswith("inclusion:"):
                current = inclusion
                continue
            if "exclusion criteria" in lowered or lowered.startswith("exclusion:"):
                current = exclusion
                continue
            if current is not None and len(line) > 10:
                current.append(line)
        return tuple(inclusion), tuple(exclusion)


def _lookup(mapping: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in mapping and mapping[key] not in (None, ""):
            return mapping[key]
    return None


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================

_EXTRACTOR = EligibilityExtractor()


def parse_eligibility(
    raw_text: Any,
    structured: Optional[Mapping[str, Any]] = None,
    fallback_text: Optional[str] = None
) -> ParsedEligibility:
    """
    Parse eligibility criteria with the shared extractor.

    Example:
        parsed = parse_eligibility("Minimum Age: 18 Years Maximum Age: 75 Years Sex: All")
        # ParsedEligibility(min_age=18, max_age=75, sex=Sex.ALL, ...)
    """
    return _EXTRACTOR.extract(raw_text, structured, fallback_text)
