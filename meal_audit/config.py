import logging
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

# Get project root directory (one level up from meal_audit/)
PROJECT_ROOT = Path(__file__).parent.parent


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # OpenRouter settings
    openrouter_api_key: str = Field(
        default="",
        description="OpenRouter API key (missing key surfaces as CONFIGURATION_ERROR on first analysis)",
    )
    openrouter_model: str = Field(
        default="google/gemini-2.0-flash-001",
        description="Vision model routed through OpenRouter",
    )
    openrouter_base_url: str = Field(
        default="https://openrouter.ai/api/v1", description="OpenRouter API base URL"
    )

    # Inference request tuning
    inference_timeout: float = Field(default=30.0, description="Per-request timeout in seconds")
    inference_temperature: float = Field(
        default=0.1, description="Sampling temperature (low keeps cached results representative)"
    )
    inference_max_attempts: int = Field(
        default=2,
        ge=1,
        description="Attempts for 5xx/network failures. 429 is never retried.",
    )

    # Security
    api_proxy_secret: str = Field(
        default="",
        description="Secret expected in X-API-Key; endpoints answer 503 while unset",
    )

    # Application settings
    app_name: str = Field(default="Meal Audit", description="Application name")
    log_level: str = Field(default="INFO", description="Logging level")

    # File upload limits
    max_image_size_bytes: int = Field(
        default=8 * 1024 * 1024,  # 8 MB
        description="Maximum allowed image file size in bytes",
    )

    # Result cache
    cache_backend: Literal["file", "memory"] = Field(
        default="file", description="Backing store for cached analyses"
    )
    cache_dir: Path = Field(
        default=PROJECT_ROOT / ".cache" / "analyses",
        description="Directory used by the file store",
    )
    cache_quota_bytes: int = Field(
        default=5 * 1024 * 1024,  # 5 MB, same order as browser local storage
        description="Total bytes the store may hold before writes fail with quota errors",
    )
    cache_namespace: str = Field(default="nutrition", description="Cache key namespace")

    model_config = SettingsConfigDict(
        env_file=str(PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    settings = Settings()
    # Log loaded settings (without sensitive data)
    logger.info(
        "Settings loaded: model=%s, base_url=%s, cache_backend=%s",
        settings.openrouter_model,
        settings.openrouter_base_url,
        settings.cache_backend,
    )
    return settings
