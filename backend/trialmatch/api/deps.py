from functools import lru_cache
from typing import Optional

from fastapi import Depends

from ..services.augmenter import RelevanceAugmenter
from ..services.clinical_trials_api import ClinicalTrialsService, clinical_trials_service
from ..services.geocoding import LocationResolver
from ..services.llm_service import LLMService


@lru_cache
def get_llm_service() -> LLMService:
    return LLMService()


def get_augmenter(llm: LLMService = Depends(get_llm_service)) -> Optional[RelevanceAugmenter]:
    """None when no LLM credentials are configured; matching then runs without rationales."""
    if not llm.available:
        return None
    return RelevanceAugmenter(llm)


@lru_cache
def get_location_resolver() -> LocationResolver:
    return LocationResolver()


def get_registry() -> ClinicalTrialsService:
    return clinical_trials_service
