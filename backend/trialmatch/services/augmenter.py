"""
AI Relevance Augmenter

Asks a language model for a short rationale on the top-ranked matches. The
model never decides ranking: its suggested adjustment is clamped and recorded
in score_breakdown["ai_adjustment"] while score and order stay exactly as the
scorer produced them. Any failure for one result leaves that result without
a rationale and never affects the others.
"""

import asyncio
import json
import logging
import re
from typing import List, Optional, Protocol, Tuple

from ..core.config import settings
from ..core.exceptions import LLMResponseError, LLMTransportError
from ..schemas.match import MatchResult
from ..schemas.patient import PatientProfile

logger = logging.getLogger(__name__)

MAX_SECTION_CHARS = 1200

SYSTEM_PROMPT = """You are a clinical research coordinator reviewing how relevant a clinical trial is to a patient.

You do NOT decide eligibility. Explain in 2-3 plain sentences why the trial may or may not fit this patient, citing the condition, biomarkers, age limits and phase.

Return JSON with exactly these keys:
{"rationale": "<2-3 sentences>", "adjustment": <number between -1 and 1>}

A positive adjustment means the trial looks more relevant than its keyword score suggests, negative means less."""


class RelevanceClient(Protocol):
    async def generate_json(self, prompt: str, system_prompt: Optional[str] = None) -> str:
        ...


def _truncate(text: str, limit: int = MAX_SECTION_CHARS) -> str:
    text = text or ""
    return text if len(text) <= limit else text[:limit].rstrip() + "..."


def build_relevance_prompt(profile: PatientProfile, result: MatchResult) -> str:
    """Prompt for one result: profile summary, trial summary and parsed eligibility, bounded in length."""
    trial = result.trial
    parsed = trial.parsed_eligibility

    patient_lines = [f"Cancer type: {profile.cancer_type}"]
    if profile.stage:
        patient_lines.append(f"Stage: {profile.stage}")
    if profile.biomarkers:
        patient_lines.append(f"Biomarkers: {', '.join(profile.biomarkers)}")
    if profile.age is not None:
        patient_lines.append(f"Age: {profile.age}")
    if profile.sex:
        patient_lines.append(f"Sex: {profile.sex.value}")
    if profile.prior_treatments:
        patient_lines.append(f"Prior treatments: {', '.join(profile.prior_treatments)}")

    age_range = f"{parsed.min_age if parsed.min_age is not None else 'any'}-{parsed.max_age if parsed.max_age is not None else 'any'}"
    eligibility_lines = [
        f"Age range: {age_range}",
        f"Sex: {parsed.sex.value}",
        f"Biomarkers mentioned: {', '.join(parsed.biomarkers) or 'none'}",
        f"Prior treatment: {parsed.requires_prior_treatment.value}",
    ]
    if parsed.stages:
        eligibility_lines.append(f"Stages mentioned: {', '.join(parsed.stages)}")
    if parsed.inclusion_criteria:
        eligibility_lines.append("Inclusion: " + _truncate("; ".join(parsed.inclusion_criteria[:8]), 600))
    if parsed.exclusion_criteria:
        eligibility_lines.append("Exclusion: " + _truncate("; ".join(parsed.exclusion_criteria[:8]), 600))

    return f"""PATIENT:
{chr(10).join(patient_lines)}

TRIAL {trial.nct_id}: {trial.title}
Phases: {', '.join(p.value for p in trial.phases) or 'N/A'}
Conditions: {', '.join(trial.conditions) or 'N/A'}
Summary: {_truncate(trial.brief_summary)}

PARSED ELIGIBILITY:
{chr(10).join(eligibility_lines)}

KEYWORD MATCH SCORE: {result.score:.2f}"""


def parse_relevance_response(raw: str, max_adjustment: float) -> Tuple[str, float]:
    """
    Read {"rationale", "adjustment"} from a model response.

    Returns:
        (rationale, adjustment clamped to +/- max_adjustment)

    Raises:
        LLMResponseError: not JSON, not an object, or no usable rationale
    """
    text = (raw or "").strip()
    # Strip a markdown code fence if the model added one
    fenced = re.match(r"^`{3}(?:json)?\s*(.*?)\s*`{3}$", text, re.DOTALL)
    if fenced:
        text = fenced.group(1)
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as e:
        raise LLMResponseError(f"malformed JSON: {e}") from e
    if not isinstance(payload, dict):
        raise LLMResponseError("response is not a JSON object")

    rationale = payload.get("rationale")
    if not isinstance(rationale, str) or not rationale.strip():
        raise LLMResponseError("empty rationale")

    adjustment = payload.get("adjustment", 0.0)
    if isinstance(adjustment, bool) or not isinstance(adjustment, (int, float)):
        try:
            adjustment = float(adjustment)
        except (TypeError, ValueError):
            adjustment = 0.0
    adjustment = max(-max_adjustment, min(max_adjustment, float(adjustment)))
    return rationale.strip(), round(adjustment, 6)


class RelevanceAugmenter:
    """Adds AI rationales to the top-K match results."""

    def __init__(
        self,
        client: RelevanceClient,
        top_k: Optional[int] = None,
        max_concurrency: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
        max_adjustment: Optional[float] = None
    ):
        self.client = client
        self.top_k = settings.AI_TOP_K if top_k is None else top_k
        self.max_concurrency = max(1, settings.AI_MAX_CONCURRENCY if max_concurrency is None else max_concurrency)
        self.timeout_seconds = settings.AI_TIMEOUT_SECONDS if timeout_seconds is None else timeout_seconds
        self.max_adjustment = abs(settings.AI_MAX_ADJUSTMENT if max_adjustment is None else max_adjustment)

    async def augment(self, profile: PatientProfile, results: List[MatchResult]) -> List[MatchResult]:
        """
        Return a new list in the same order; the first top_k results carry a
        rationale when the model answered, the rest are passed through.
        """
        results = list(results)
        head, tail = results[:self.top_k], results[self.top_k:]
        if not head:
            return results

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def augment_with_semaphore(result: MatchResult) -> MatchResult:
            async with semaphore:
                return await self._augment_one(profile, result)

        outcomes = await asyncio.gather(
            *(augment_with_semaphore(result) for result in head),
            return_exceptions=True
        )

        augmented: List[MatchResult] = []
        for original, outcome in zip(head, outcomes):
            if isinstance(outcome, BaseException):
                logger.warning(f"Unexpected augmentation failure for {original.trial.nct_id}: {outcome}")
                augmented.append(original.model_copy(update={"ai_rationale": None}))
            else:
                augmented.append(outcome)

        succeeded = sum(1 for r in augmented if r.ai_rationale)
        logger.info(f"AI rationale added to {succeeded}/{len(head)} results")
        return augmented + tail

    async def _augment_one(self, profile: PatientProfile, result: MatchResult) -> MatchResult:
        nct_id = result.trial.nct_id
        try:
            raw = await self._ask(build_relevance_prompt(profile, result))
            rationale, adjustment = parse_relevance_response(raw, self.max_adjustment)
        except asyncio.TimeoutError:
            logger.warning(f"AI rationale for {nct_id} timed out after {self.timeout_seconds}s")
            return result.model_copy(update={"ai_rationale": None})
        except (LLMTransportError, LLMResponseError) as e:
            logger.warning(f"AI rationale for {nct_id} unavailable: {e}")
            return result.model_copy(update={"ai_rationale": None})
        except Exception as e:
            # Per-result isolation
            logger.warning(f"AI rationale for {nct_id} failed: {e}")
            return result.model_copy(update={"ai_rationale": None})

        breakdown = dict(result.score_breakdown)
        breakdown["ai_adjustment"] = adjustment
        return result.model_copy(update={"ai_rationale": rationale, "score_breakdown": breakdown})

    async def _ask(self, prompt: str) -> str:
        """One call, retried once on a transport error only."""
        try:
            return await asyncio.wait_for(
                self.client.generate_json(prompt, SYSTEM_PROMPT),
                timeout=self.timeout_seconds
            )
        except LLMTransportError as e:
            logger.info(f"Transport error from LLM, retrying once: {e}")
        return await asyncio.wait_for(
            self.client.generate_json(prompt, SYSTEM_PROMPT),
            timeout=self.timeout_seconds
        )
