"""
Service configuration.

Values come from the environment or a local ``.env`` file. Variable names
carry no prefix, e.g. ``ANTHROPIC_API_KEY`` or ``NATS_URL``.

Usage:
    from intent_agent.infrastructure.config.settings import get_settings

    settings = get_settings()
    print(settings.nats_request_subject)
"""

from typing import Literal
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Validated runtime settings for the intent service"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ============================================
    # SERVICE
    # ============================================

    service_name: str = Field(default="cdnbuddy-intent", description="Service name used in logs and as NATS client name")
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: Literal["json", "console"] = Field(default="json", description="Log renderer")

    health_host: str = Field(default="0.0.0.0", description="Health server bind address")
    health_port: int = Field(default=8083, ge=1, le=65535, description="Health server port")

    request_timeout: float = Field(default=30.0, gt=0, description="Deadline for one request in seconds")

    # ============================================
    # NATS
    # ============================================

    nats_url: str = Field(default="nats://localhost:4222", description="NATS server URL")
    nats_request_subject: str = Field(default="intent.analyze", description="Subject to serve requests on")
    nats_timeout: float = Field(default=10.0, gt=0, description="NATS connect timeout in seconds")

    # ============================================
    # REDIS
    # ============================================

    redis_url: str = Field(default="redis://localhost:6379/0", description="Session store URL")
    session_ttl_seconds: int = Field(default=86400, gt=0, description="Session expiry, refreshed on every write")
    session_cache_capacity: int = Field(default=1000, ge=1, description="Sessions kept in the in-process cache")

    # ============================================
    # ANTHROPIC
    # ============================================

    anthropic_api_key: str = Field(default="", description="Anthropic API key (required)")
    anthropic_model: str = Field(default="claude-sonnet-4-20250514", description="Model used for classification")
    anthropic_timeout: float = Field(default=30.0, gt=0, description="Completion request timeout in seconds")

    @field_validator("anthropic_api_key")
    @classmethod
    def require_api_key(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("ANTHROPIC_API_KEY is required")
        return v

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level: {v}")
        return level


@lru_cache()
def get_settings() -> Settings:
    """Cached settings instance"""
    return Settings()
