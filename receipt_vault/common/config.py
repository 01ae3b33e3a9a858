"""
Application configuration using Pydantic Settings
Reads from environment variables and .env file
"""
from dataclasses import dataclass
from decimal import Decimal
from functools import lru_cache
from typing import List, Optional, Tuple

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Known provider identifiers (see receipt_vault.recognition.providers.factory)
PROVIDER_GOOGLE_VISION = "google_vision"
PROVIDER_TEXTRACT = "textract"
PROVIDER_TESSERACT = "tesseract"
KNOWN_PROVIDERS = (PROVIDER_GOOGLE_VISION, PROVIDER_TEXTRACT, PROVIDER_TESSERACT)

DEFAULT_PROVIDER_TIMEOUT_MS = 30000
DEFAULT_REVIEW_THRESHOLD = 0.5


class Settings(BaseSettings):
    """Application settings from environment"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Application
    environment: str = Field(default="production", alias="ENVIRONMENT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Recognition engine
    ocr_provider_order: str = Field(default="google_vision,textract", alias="OCR_PROVIDER_ORDER")
    ocr_provider_timeout_ms: int = Field(default=DEFAULT_PROVIDER_TIMEOUT_MS, gt=0, alias="OCR_PROVIDER_TIMEOUT_MS")
    ocr_review_threshold: float = Field(default=DEFAULT_REVIEW_THRESHOLD, alias="OCR_REVIEW_THRESHOLD")
    ocr_totals_tolerance: Decimal = Field(default=Decimal("0.01"), ge=0, alias="OCR_TOTALS_TOLERANCE")

    # Receipt locale (None = accept both MM/DD and DD/MM)
    receipt_date_order: Optional[str] = Field(default=None, alias="RECEIPT_DATE_ORDER")
    receipt_decimal_separator: str = Field(default=".", alias="RECEIPT_DECIMAL_SEPARATOR")

    # Google Cloud Vision
    google_vision_api_key: Optional[str] = Field(default=None, alias="GOOGLE_VISION_API_KEY")
    google_credentials_json: Optional[str] = Field(default=None, alias="GOOGLE_CREDENTIALS_JSON")

    # AWS Textract
    aws_access_key_id: Optional[str] = Field(default=None, alias="AWS_ACCESS_KEY_ID")
    aws_secret_access_key: Optional[str] = Field(default=None, alias="AWS_SECRET_ACCESS_KEY")
    aws_textract_region: str = Field(default="us-east-1", alias="AWS_TEXTRACT_REGION")

    # Tesseract (local)
    tesseract_path: Optional[str] = Field(default=None, alias="TESSERACT_PATH")

    # Celery
    celery_broker_url: str = Field(default="redis://redis:6379/1", alias="CELERY_BROKER_URL")
    celery_result_backend: str = Field(default="redis://redis:6379/2", alias="CELERY_RESULT_BACKEND")
    ocr_task_max_retries: int = Field(default=3, ge=0, alias="OCR_TASK_MAX_RETRIES")
    ocr_rate_limit_retry_seconds: int = Field(default=60, ge=0, alias="OCR_RATE_LIMIT_RETRY_SECONDS")

    @property
    def provider_order(self) -> List[str]:
        """Parse OCR_PROVIDER_ORDER into a list of provider names"""
        return [name.strip().lower() for name in self.ocr_provider_order.split(",") if name.strip()]

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level"""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}")
        return v.upper()

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v):
        """Validate environment"""
        valid_envs = ["development", "test", "staging", "production"]
        if v.lower() not in valid_envs:
            raise ValueError(f"ENVIRONMENT must be one of {valid_envs}")
        return v.lower()

    @field_validator("ocr_provider_order")
    @classmethod
    def validate_provider_order(cls, v):
        """Every configured provider must be one the engine knows how to build"""
        names = [name.strip().lower() for name in v.split(",") if name.strip()]
        if not names:
            raise ValueError("OCR_PROVIDER_ORDER must name at least one provider")
        unknown = [name for name in names if name not in KNOWN_PROVIDERS]
        if unknown:
            raise ValueError(f"Unknown OCR providers {unknown}; expected any of {list(KNOWN_PROVIDERS)}")
        return v

    @field_validator("ocr_review_threshold")
    @classmethod
    def validate_review_threshold(cls, v):
        if not 0 <= v <= 1:
            raise ValueError(f"OCR_REVIEW_THRESHOLD must be 0-1, got {v}")
        return v

    @field_validator("receipt_date_order")
    @classmethod
    def validate_date_order(cls, v):
        if v is None or not v.strip():
            return None
        if v.upper() not in ("MDY", "DMY"):
            raise ValueError("RECEIPT_DATE_ORDER must be MDY or DMY")
        return v.upper()

    @field_validator("receipt_decimal_separator")
    @classmethod
    def validate_decimal_separator(cls, v):
        if v not in (".", ","):
            raise ValueError("RECEIPT_DECIMAL_SEPARATOR must be '.' or ','")
        return v


@dataclass(frozen=True)
class RecognitionConfig:
    """
    Immutable engine configuration, built once at process start.

    Attributes:
        provider_order: Default provider priority order
        timeout_ms: Per-provider call timeout
        review_threshold: Confidence below this requires manual review
        totals_tolerance: Allowed drift when cross-checking totals
        date_order: "MDY", "DMY" or None (accept both)
        decimal_separator: "." or ","
    """
    provider_order: Tuple[str, ...] = (PROVIDER_GOOGLE_VISION, PROVIDER_TEXTRACT)
    timeout_ms: int = DEFAULT_PROVIDER_TIMEOUT_MS
    review_threshold: float = DEFAULT_REVIEW_THRESHOLD
    totals_tolerance: Decimal = Decimal("0.01")
    date_order: Optional[str] = None
    decimal_separator: str = "."

    @classmethod
    def from_settings(cls, settings: Settings) -> "RecognitionConfig":
        return cls(
            provider_order=tuple(settings.provider_order),
            timeout_ms=settings.ocr_provider_timeout_ms,
            review_threshold=settings.ocr_review_threshold,
            totals_tolerance=settings.ocr_totals_tolerance,
            date_order=settings.receipt_date_order,
            decimal_separator=settings.receipt_decimal_separator,
        )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
