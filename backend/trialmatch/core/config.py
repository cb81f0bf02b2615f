from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional
from pathlib import Path

# Find the backend directory (where .env is located)
BACKEND_DIR = Path(__file__).resolve().parent.parent.parent


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=str(BACKEND_DIR / ".env"),
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )

    # API Settings
    API_V1_STR: str = "/api/v1"
    PROJECT_NAME: str = "Trial Matching Engine"

    # CORS
    FRONTEND_URL: str = "http://localhost:3000"
    ALLOWED_ORIGINS: Optional[str] = None

    # ClinicalTrials.gov API
    CLINICAL_TRIALS_API_BASE: str = "https://clinicaltrials.gov/api/v2"
    DEFAULT_PAGE_SIZE: int = 100
    REQUESTS_TIMEOUT: float = 30.0

    # LLM Settings - a single provider is used for relevance rationales
    LLM_PROVIDER: str = "groq"  # "groq" or "gemini"
    GROQ_API_KEY: Optional[str] = None
    GROQ_MODEL: str = "llama-3.1-8b-instant"

    # Google Gemini
    GEMINI_API_KEY: Optional[str] = None
    GEMINI_MODEL: str = "gemini-2.0-flash"

    # Relevance augmentation
    AI_TOP_K: int = 5
    AI_MAX_CONCURRENCY: int = 3
    AI_TIMEOUT_SECONDS: float = 12.0
    AI_MAX_ADJUSTMENT: float = 0.05

    # Geocoding
    GEOCODER_USER_AGENT: str = "trialmatch_engine"
    GEOCODE_TIMEOUT: int = 10
    GEOCODE_CACHE_SIZE: int = 1024

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s - %(levelname)s - %(name)s - %(funcName)s - %(message)s"


settings = Settings()
