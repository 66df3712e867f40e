# photoverify/config.py
from __future__ import annotations

import os
from typing import List, Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

APP_VERSION = os.getenv("APP_VERSION", "1.0.0")

ProviderName = Literal["openai", "gemini", "anthropic"]


class Settings(BaseSettings):
    # --- Identity / Build ---
    APP_NAME: str = Field(default="Photo Verification Engine")
    ENV: str = Field(default=os.environ.get("ENV", "dev"))
    VERSION: str = Field(default=APP_VERSION)

    # --- Database ---
    DATABASE_URL: str = Field(default="sqlite+aiosqlite:///./photoverify.db")
    DB_AUTO_CREATE: bool = Field(default=True)
    DB_ECHO: bool = Field(default=False)

    # --- Rate limit (fixed window, per tenant + endpoint) ---
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_BACKEND: str = "memory"  # "memory" | "redis"
    REDIS_URL: Optional[str] = None  # e.g. redis://localhost:6379/0
    RATE_LIMIT_REDIS_KEY_PREFIX: str = "rl:"
    RATE_LIMIT_REDIS_TIMEOUT_MS: int = Field(default=50, ge=1)
    RATE_LIMIT_WINDOW_S: int = Field(default=60, ge=1)
    RATE_LIMIT_PER_MINUTE: int = Field(default=30, ge=1)
    VERIFY_RATE_LIMIT_PER_MINUTE: int = Field(default=20, ge=1)

    # --- Vision providers ---
    DEFAULT_VISION_PROVIDER: ProviderName = "openai"
    OPENAI_API_KEY: Optional[str] = None
    OPENAI_BASE_URL: str = "https://api.openai.com"
    GEMINI_API_KEY: Optional[str] = None
    GEMINI_BASE_URL: str = "https://generativelanguage.googleapis.com"
    ANTHROPIC_API_KEY: Optional[str] = None
    ANTHROPIC_BASE_URL: str = "https://api.anthropic.com"
    VISION_HTTP_TIMEOUT_S: float = Field(default=30.0, gt=0)
    VISION_MAX_TOKENS: int = Field(default=2000, ge=1)
    VISION_TEMPERATURE: float = Field(default=0.1, ge=0.0, le=2.0)

    # --- Verification ---
    RETRY_BACKOFF_BASE_S: float = Field(default=1.0, ge=0.0)
    VERIFY_TIMEOUT_S: float = Field(default=55.0, gt=0)

    # --- Header names (identity is resolved upstream by the gateway) ---
    TENANT_ID_HEADER: str = Field(default="X-Tenant-Id")
    TENANT_SLUG_HEADER: str = Field(default="X-Tenant-Slug")
    USER_ID_HEADER: str = Field(default="X-User-Id")
    ROLE_HEADER: str = Field(default="X-Role")

    # --- HTTP ---
    CORS_ALLOW_ORIGINS: str = Field(default="*")  # comma-separated, or "*"

    # --- Logging / metrics ---
    LOG_JSON: bool = Field(default=True)
    LOG_LEVEL: str = Field(default="INFO")
    METRICS_ENABLED: bool = True
    METRICS_MODEL_LABEL_MAX: int = Field(default=100, ge=1)

    model_config = {
        "extra": "ignore",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
    }

    @field_validator("RATE_LIMIT_BACKEND")
    @classmethod
    def _normalize_backend(cls, value: str) -> str:
        return (value or "memory").strip().lower()

    def cors_origins(self) -> List[str]:
        raw = (self.CORS_ALLOW_ORIGINS or "").strip()
        if not raw or raw == "*":
            return ["*"]
        return [item.strip() for item in raw.split(",") if item.strip()]

    def provider_configured(self, name: str) -> bool:
        key = {
            "openai": self.OPENAI_API_KEY,
            "gemini": self.GEMINI_API_KEY,
            "anthropic": self.ANTHROPIC_API_KEY,
        }.get(name)
        return bool((key or "").strip())


def get_settings() -> Settings:
    return Settings()
