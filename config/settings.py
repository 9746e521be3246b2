"""Application settings loaded from environment variables.

Uses pydantic-settings for validation and type coercion. App-specific
settings use the ``CAMPUSDESK_`` prefix; GCP / infrastructure settings use
their canonical environment variable names via ``validation_alias``.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(StrEnum):
    DEVELOPMENT = "development"
    PRODUCTION = "production"


class Settings(BaseSettings):
    """Central configuration for the CampusDesk application.

    Environment variables are loaded from a ``.env`` file when present.
    App-specific keys are prefixed with ``CAMPUSDESK_``; GCP / infra keys
    use their standard names (configured via ``validation_alias``).
    """

    model_config = SettingsConfigDict(
        env_prefix="CAMPUSDESK_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # ── App ────────────────────────────────────────────────────────────
    env: Literal["development", "production"] = "development"

    # ── GCP ────────────────────────────────────────────────────────────
    gcp_project_id: str = Field(default="", validation_alias="GCP_PROJECT_ID")

    # ── Vertex AI / Gemini ─────────────────────────────────────────────
    vertex_ai_model: str = Field(default="gemini-2.5-flash", validation_alias="VERTEX_AI_MODEL")
    vertex_ai_location: str = Field(default="asia-south1", validation_alias="VERTEX_AI_LOCATION")

    # ── Firestore ──────────────────────────────────────────────────────
    firestore_database: str = Field(default="(default)", validation_alias="FIRESTORE_DATABASE")
    # "memory" keeps everything in-process; used for local development and tests.
    store_backend: Literal["firestore", "memory"] = "memory"

    # ── Redis ──────────────────────────────────────────────────────────
    redis_url: str = Field(default="", validation_alias="REDIS_URL")

    # ── Auth gateway / CORS ────────────────────────────────────────────
    gateway_api_key: str = Field(default="", validation_alias="GATEWAY_API_KEY")
    require_verified_email: bool = True
    # Comma-separated list of allowed origins (production only).
    cors_origins: str = ""

    # ── Logging ────────────────────────────────────────────────────────
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_format: str = Field(default="json", validation_alias="LOG_FORMAT")

    # ── Complaint lifecycle ────────────────────────────────────────────
    page_size: int = Field(default=10, ge=1, le=100)
    reopen_window_days: int = Field(default=7, ge=0)
    escalation_after_days: int = Field(default=3, ge=0)

    # ── Cache TTLs (seconds) ───────────────────────────────────────────
    stats_cache_ttl: int = 30

    # ── Notifications ──────────────────────────────────────────────────
    notification_queue_size: int = Field(default=1_000, ge=1)

    # ── EmailJS ────────────────────────────────────────────────────────
    emailjs_service_id: str = Field(default="", validation_alias="EMAILJS_SERVICE_ID")
    emailjs_template_new: str = Field(default="", validation_alias="EMAILJS_TEMPLATE_ID_NEW")
    emailjs_template_resolved: str = Field(default="", validation_alias="EMAILJS_TEMPLATE_ID_RESOLVED")
    emailjs_public_key: str = Field(default="", validation_alias="EMAILJS_PUBLIC_KEY")
    emailjs_private_key: str = Field(default="", validation_alias="EMAILJS_PRIVATE_KEY")

    # ── Derived Properties ─────────────────────────────────────────────

    @property
    def is_production(self) -> bool:
        return self.env == Environment.PRODUCTION

    @property
    def cors_origin_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def email_enabled(self) -> bool:
        return bool(self.emailjs_service_id and self.emailjs_public_key)


# Module-level singleton; import ``settings`` everywhere.
settings = Settings()
