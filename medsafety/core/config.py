"""
Configuration Module
"""
from typing import List, Optional
from pydantic_settings import BaseSettings
from pydantic import Field, field_validator


class Settings(BaseSettings):
    """Application settings."""

    # Application
    APP_NAME: str = "Medication Safety Evaluation Engine"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "production"

    # API
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000
    API_PREFIX: str = "/api/v1"

    # Reference data (drug dictionary, interaction rules, allergy table)
    REFERENCE_DATA_PATH: Optional[str] = Field(
        default=None,
        description="Path to reference data JSON; bundled dataset when unset"
    )

    # External terminology service (RxNav)
    TERMINOLOGY_ENABLED: bool = True
    TERMINOLOGY_BASE_URL: str = "https://rxnav.nlm.nih.gov/REST"
    TERMINOLOGY_TIMEOUT_SECONDS: float = 3.0
    TERMINOLOGY_MAX_CANDIDATES: int = 5

    # Resolver
    RESOLVER_MAX_CONCURRENCY: int = 8
    RESOLVER_CACHE_MAX_ENTRIES: int = 10000
    RESOLVER_TRANSIENT_MISS_TTL_SECONDS: float = 60.0
    RESOLVER_SHARED_CACHE_ENABLED: bool = False

    # Redis
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_CACHE_TTL: int = 86400

    # Evaluation
    EVALUATION_TIMEOUT_SECONDS: float = 10.0
    HISTORY_MAX_ENTRIES: int = 50

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"
    LOG_FILE: Optional[str] = None

    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:8000"]

    @field_validator("TERMINOLOGY_TIMEOUT_SECONDS")
    def validate_terminology_timeout(cls, v: float) -> float:
        if v <= 0 or v > 30:
            raise ValueError("TERMINOLOGY_TIMEOUT_SECONDS must be within (0, 30]")
        return v

    @field_validator("RESOLVER_MAX_CONCURRENCY", "HISTORY_MAX_ENTRIES")
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("value must be at least 1")
        return v

    @field_validator("LOG_FORMAT")
    def validate_log_format(cls, v: str) -> str:
        if v not in ("json", "console"):
            raise ValueError("LOG_FORMAT must be 'json' or 'console'")
        return v

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "allow"


settings = Settings()
