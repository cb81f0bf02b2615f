"""
Trial Normalizer

Flattens a registry study record (ClinicalTrials.gov v2 module shape) into the
canonical Trial. Normalization is total: a record either becomes a Trial or an
InvalidRecord, it never raises.
"""

import logging
import re
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from pydantic import ValidationError

from ..core.exceptions import MalformedRecord
from ..schemas.match import InvalidRecord, NormalizationReport
from ..schemas.trial import (
    NCT_ID_PATTERN,
    UNKNOWN,
    Contact,
    GeoPoint,
    Intervention,
    Trial,
    TrialLocation,
    TrialStatus,
    parse_phase_label,
)
from .cache import EligibilityCache
from .eligibility import parse_eligibility

logger = logging.getLogger(__name__)


STATUS_MAP: Dict[str, TrialStatus] = {
    "RECRUITING": TrialStatus.RECRUITING,
    "NOT_YET_RECRUITING": TrialStatus.NOT_YET_RECRUITING,
    "ACTIVE_NOT_RECRUITING": TrialStatus.ACTIVE_NOT_RECRUITING,
    "ENROLLING_BY_INVITATION": TrialStatus.ENROLLING_BY_INVITATION,
    "SUSPENDED": TrialStatus.SUSPENDED,
    "COMPLETED": TrialStatus.COMPLETED,
    "TERMINATED": TrialStatus.TERMINATED,
    "WITHDRAWN": TrialStatus.WITHDRAWN,
}

INTERVENTION_TYPE_MAP: Dict[str, str] = {
    "DRUG": "Drug",
    "BIOLOGICAL": "Biological",
    "PROCEDURE": "Procedure",
    "RADIATION": "Radiation",
    "DEVICE": "Device",
    "COMBINATION_PRODUCT": "Combination",
    "GENETIC": "Genetic",
    "BEHAVIORAL": "Behavioral",
    "DIETARY_SUPPLEMENT": "Dietary Supplement",
    "DIAGNOSTIC_TEST": "Diagnostic Test",
}

# Registry eligibility fields kept on the Trial for re-parsing
STRUCTURED_ELIGIBILITY_KEYS = (
    "minimumAge", "minimum_age", "min_age",
    "maximumAge", "maximum_age", "max_age",
    "sex", "gender",
    "healthyVolunteers", "healthy_volunteers",
)

# Standard cancer-type labels and the condition phrases that map to them
CONDITION_LABELS: Dict[str, List[str]] = {
    "Breast Cancer": ["breast cancer", "breast carcinoma", "breast neoplasm"],
    "Non-Small Cell Lung Cancer": ["non-small cell lung cancer", "nsclc", "non small cell"],
    "Small Cell Lung Cancer": ["small cell lung cancer", "sclc"],
    "Lung Cancer": ["lung cancer", "lung carcinoma", "lung neoplasm"],
    "Prostate Cancer": ["prostate cancer", "prostate carcinoma", "prostate neoplasm"],
    "Colorectal Cancer": ["colorectal cancer", "colorectal carcinoma", "colon cancer", "rectal cancer"],
    "Pancreatic Cancer": ["pancreatic cancer", "pancreas cancer", "pancreatic carcinoma"],
    "Melanoma": ["melanoma"],
    "Leukemia": ["leukemia", "leukaemia"],
    "Lymphoma": ["lymphoma"],
    "Multiple Myeloma": ["multiple myeloma", "myeloma"],
    "Ovarian Cancer": ["ovarian cancer", "ovarian carcinoma"],
    "Bladder Cancer": ["bladder cancer", "urothelial", "bladder carcinoma"],
    "Kidney Cancer": ["kidney cancer", "renal cell", "renal cancer"],
    "Liver Cancer": ["liver cancer", "hepatocellular", "hcc"],
    "Glioblastoma": ["glioblastoma", "gbm"],
    "Brain Cancer": ["brain cancer", "brain tumor", "glioma"],
}

_DATE_FORMATS = ["%Y-%m-%d", "%Y-%m", "%B %d, %Y", "%B %Y", "%Y"]


# =============================================================================
# TEXT / SHAPE COERCION
# =============================================================================

def clean_text(value: Any) -> str:
    """Trim and collapse all whitespace; non-strings become ''."""
    if value is None:
        return ""
    if not isinstance(value, str):
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            value = str(value)
        else:
            return ""
    return re.sub(r"\s+", " ", value).strip()


def clean_block(value: Any) -> str:
    """Like clean_text but keeps line structure: each line collapsed, blank lines dropped."""
    if not isinstance(value, str):
        return ""
    lines = (clean_text(line) for line in value.splitlines())
    return "\n".join(line for line in lines if line)


def as_list(value: Any) -> List[Any]:
    """Coerce singleton-or-array ambiguity into a list."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def _as_mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def _text_list(value: Any) -> List[str]:
    items = []
    for item in as_list(value):
        text = clean_text(item)
        if text and text not in items:
            items.append(text)
    return items


def parse_status(value: Any) -> TrialStatus:
    if isinstance(value, TrialStatus):
        return value
    text = clean_text(value)
    if not text:
        return TrialStatus.UNKNOWN
    code = re.sub(r"[\s,]+", "_", text.upper())
    if code in STATUS_MAP:
        return STATUS_MAP[code]
    for status in TrialStatus:
        if status.value.lower() == text.lower():
            return status
    return TrialStatus.UNKNOWN


def parse_date(value: Any) -> Optional[date]:
    """Parse registry dates ("2024-03-01", "2024-03", "March 2024"); None when unreadable."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, Mapping):
        value = value.get("date")
    text = clean_text(value)
    if not text:
        return None
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        return None


def normalize_conditions(conditions: Iterable[str]) -> List[str]:
    """Map free-text conditions onto the standard cancer-type labels."""
    labels = []
    for condition in conditions:
        lowered = condition.lower()
        for label, phrases in CONDITION_LABELS.items():
            if label not in labels and any(p in lowered for p in phrases):
                labels.append(label)
    return labels


# =============================================================================
# SECTION BUILDERS
# =============================================================================

def _build_interventions(module: Mapping[str, Any]) -> List[Intervention]:
    interventions = []
    for raw in as_list(module.get("interventions")):
        raw = _as_mapping(raw)
        name = clean_text(raw.get("name"))
        if not name:
            continue
        raw_type = clean_text(raw.get("type")).upper().replace(" ", "_")
        interventions.append(Intervention(
            type=INTERVENTION_TYPE_MAP.get(raw_type, "Other"),
            name=name,
            description=clean_text(raw.get("description")) or None,
        ))
    return interventions


def _build_contact(raw: Any) -> Optional[Contact]:
    raw = _as_mapping(raw)
    contact = Contact(
        name=clean_text(raw.get("name")) or None,
        phone=clean_text(raw.get("phone")) or None,
        email=clean_text(raw.get("email")) or None,
    )
    if contact.name or contact.phone or contact.email:
        return contact
    return None


def _build_geo_point(raw: Any) -> Optional[GeoPoint]:
    raw = _as_mapping(raw)
    lat = raw.get("lat", raw.get("latitude"))
    lon = raw.get("lon", raw.get("longitude"))
    try:
        return GeoPoint(lat=float(lat), lon=float(lon))
    except (TypeError, ValueError, ValidationError):
        return None


def _build_locations(module: Mapping[str, Any]) -> List[TrialLocation]:
    locations = []
    for raw in as_list(module.get("locations")):
        raw = _as_mapping(raw)
        if not raw:
            continue
        contacts = as_list(raw.get("contacts"))
        status = clean_text(raw.get("status"))
        locations.append(TrialLocation(
            facility=clean_text(raw.get("facility")) or "Unknown Facility",
            city=clean_text(raw.get("city")),
            state=clean_text(raw.get("state")),
            zip_code=clean_text(raw.get("zip")) or None,
            country=clean_text(raw.get("country")),
            status=parse_status(status).value if status else None,
            contact=_build_contact(contacts[0]) if contacts else None,
            geo_point=_build_geo_point(raw.get("geoPoint")),
        ))
    return locations


def _protocol_section(raw_record: Mapping[str, Any]) -> Mapping[str, Any]:
    protocol = raw_record.get("protocolSection")
    if isinstance(protocol, Mapping):
        return protocol
    # Already-flattened records carry the modules at the top level
    return raw_record


# =============================================================================
# NORMALIZATION ENTRY POINTS
# =============================================================================

def _extract_nct_id(protocol: Mapping[str, Any], raw_record: Mapping[str, Any]) -> str:
    identification = _as_mapping(protocol.get("identificationModule"))
    raw_id = identification.get("nctId") or raw_record.get("nctId") or raw_record.get("nct_id")
    nct_id = clean_text(raw_id).upper()
    if not nct_id:
        raise MalformedRecord("missing NCT identifier")
    if not NCT_ID_PATTERN.match(nct_id):
        raise MalformedRecord(f"malformed NCT identifier {nct_id!r}", raw_id=nct_id)
    return nct_id


def _build_trial(raw_record: Mapping[str, Any], cache: Optional[EligibilityCache] = None) -> Trial:
    protocol = _protocol_section(raw_record)
    nct_id = _extract_nct_id(protocol, raw_record)

    identification = _as_mapping(protocol.get("identificationModule"))
    status_module = _as_mapping(protocol.get("statusModule"))
    description = _as_mapping(protocol.get("descriptionModule"))
    conditions_module = _as_mapping(protocol.get("conditionsModule"))
    design = _as_mapping(protocol.get("designModule"))
    arms = _as_mapping(protocol.get("armsInterventionsModule"))
    eligibility = _as_mapping(protocol.get("eligibilityModule"))
    contacts = _as_mapping(protocol.get("contactsLocationsModule"))
    sponsors = _as_mapping(protocol.get("sponsorCollaboratorsModule"))

    conditions = _text_list(conditions_module.get("conditions"))
    interventions = _build_interventions(arms)
    last_updated = (
        parse_date(status_module.get("lastUpdateSubmitDate"))
        or parse_date(status_module.get("lastUpdatePostDateStruct"))
        or parse_date(status_module.get("statusVerifiedDate"))
    )

    trial = Trial(
        nct_id=nct_id,
        title=clean_text(identification.get("briefTitle")) or UNKNOWN,
        official_title=clean_text(identification.get("officialTitle")) or None,
        status=parse_status(status_module.get("overallStatus")),
        phases=parse_phase_label(design.get("phases", design.get("phase"))),
        study_type=clean_text(design.get("studyType")) or None,
        conditions=conditions,
        conditions_normalized=normalize_conditions(conditions),
        keywords=_text_list(conditions_module.get("keywords")),
        brief_summary=clean_text(description.get("briefSummary")),
        detailed_description=clean_text(description.get("detailedDescription")) or None,
        interventions=interventions,
        eligibility_raw=clean_block(eligibility.get("eligibilityCriteria")),
        eligibility_structured=structured_eligibility(eligibility),
        locations=_build_locations(contacts),
        lead_sponsor=clean_text(_as_mapping(sponsors.get("leadSponsor")).get("name")) or UNKNOWN,
        collaborators=[
            name for name in (clean_text(_as_mapping(c).get("name")) for c in as_list(sponsors.get("collaborators")))
            if name
        ],
        last_updated=last_updated,
        start_date=clean_text(_as_mapping(status_module.get("startDateStruct")).get("date")) or None,
        completion_date=clean_text(_as_mapping(status_module.get("completionDateStruct")).get("date")) or None,
    )
    return reparse_eligibility(trial, cache=cache)


def reparse_eligibility(
    trial: Trial,
    eligibility_raw: Optional[str] = None,
    structured: Optional[Mapping[str, Any]] = None,
    cache: Optional[EligibilityCache] = None
) -> Trial:
    """
    Return a copy of the trial whose parsed eligibility matches its (possibly new) text.

    Without an explicit `structured` mapping the registry fields stored on the
    trial are reused, so structured age and sex bounds survive a text change.
    The input trial is never modified.
    """
    text = trial.eligibility_raw if eligibility_raw is None else clean_block(eligibility_raw)
    kept = trial.eligibility_structured if structured is None else structured_eligibility(structured)
    if cache is not None:
        parsed = cache.get_or_parse(trial.nct_id, text, structured=kept, fallback_text=trial.search_text)
    else:
        parsed = parse_eligibility(text, structured=kept, fallback_text=trial.search_text)
    return trial.model_copy(update={
        "eligibility_raw": text,
        "eligibility_structured": kept,
        "parsed_eligibility": parsed,
    })


def structured_eligibility(module: Mapping[str, Any]) -> Dict[str, Any]:
    """The registry eligibility fields that outrank free-text mining."""
    return {key: module[key] for key in STRUCTURED_ELIGIBILITY_KEYS if module.get(key) is not None}


def normalize(raw_record: Any, cache: Optional[EligibilityCache] = None) -> Union[Trial, InvalidRecord]:
    """
    Normalize one registry record.

    Returns:
        Trial, or InvalidRecord when the record has no usable NCT identifier
        or is not a mapping at all. Never raises.
    """
    if not isinstance(raw_record, Mapping):
        logger.warning(f"Skipping record of type {type(raw_record).__name__}: not a mapping")
        return InvalidRecord(reason="record is not a mapping")
    try:
        return _build_trial(raw_record, cache)
    except MalformedRecord as e:
        logger.warning(f"Skipping malformed record: {e.reason}")
        return InvalidRecord(reason=e.reason, raw_id=e.raw_id)
    except Exception as e:
        # Per-record isolation: one odd record never sinks the batch
        logger.warning(f"Skipping record that failed normalization: {e}")
        return InvalidRecord(reason=f"normalization failed: {e}")


def normalize_batch(
    raw_records: Iterable[Any],
    cache: Optional[EligibilityCache] = None
) -> NormalizationReport:
    """Normalize a batch, keeping valid trials and counting dropped records."""
    trials: List[Trial] = []
    invalid: List[InvalidRecord] = []
    seen = set()

    for raw_record in raw_records or []:
        result = normalize(raw_record, cache)
        if isinstance(result, InvalidRecord):
            invalid.append(result)
        elif result.nct_id in seen:
            logger.info(f"Duplicate record for {result.nct_id} ignored")
        else:
            seen.add(result.nct_id)
            trials.append(result)

    if invalid:
        logger.warning(f"Dropped {len(invalid)} of {len(invalid) + len(trials)} records during normalization")
    return NormalizationReport(trials=trials, invalid=invalid)
