"""
GrowSync Backend - Application Configuration
=============================================

What:  Centralized configuration management using Pydantic Settings.
How:   Pydantic Settings reads from environment variables (or .env file),
       validates types/ranges, and provides a `settings` object.
Who:   main.create_app() reads it once and hands it to the services it builds.
When:  Loaded once at module import time; validated during app startup.
"""

from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

# Secrets shorter than this are reported at startup (openssl rand -hex 32 gives 64).
MIN_SECRET_LENGTH = 32
PLACEHOLDER_SECRET = "change-me"


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings have defaults suitable for local development. Production
    deployments MUST set HMAC_SECRET, NOTION_API_TOKEN and NOTION_HISTORY_DB_ID.
    """

    # ── Webhook Authentication ────────────────────────────────────────────
    # Shared secret for the x-signature HMAC. Empty means every request is
    # rejected as unauthorized.
    hmac_secret: str = Field(default="", description="Shared HMAC-SHA256 secret")

    # ── Notion (external record store) ────────────────────────────────────
    notion_api_token: str = Field(default="", description="Notion integration token")
    notion_history_db_id: Optional[str] = Field(
        default=None,
        description="AI History database id (parent collection for history records)",
    )
    notion_api_base_url: str = Field(default="https://api.notion.com/v1")
    notion_version: str = Field(default="2022-06-28")
    notion_timeout_seconds: float = Field(default=30.0, gt=0, le=300)

    # ── Outbound Rate Limiting & Backoff ──────────────────────────────────
    # 0.334s spacing keeps us at ~3 requests/second, Notion's average limit.
    notion_min_interval_seconds: float = Field(default=0.334, ge=0, le=10)
    notion_max_retries: int = Field(default=5, ge=0, le=10)
    notion_retry_base_delay: float = Field(default=1.0, ge=0, le=60)
    notion_retry_max_delay: float = Field(default=32.0, ge=0, le=300)

    # ── Batch Processing ──────────────────────────────────────────────────
    batch_deadline_seconds: float = Field(default=60.0, gt=0, le=900)

    # ── Inbound Rate Limiting ─────────────────────────────────────────────
    rate_limit_requests: int = Field(default=100, ge=1, le=10000)
    rate_limit_window: int = Field(default=60, ge=1, le=86400)  # seconds
    rate_limit_bypass_token: Optional[str] = Field(default=None)

    # ── Server ────────────────────────────────────────────────────────────
    backend_host: str = Field(default="0.0.0.0")
    backend_port: int = Field(default=8080, ge=1, le=65535)

    # Valid: DEBUG, INFO, WARNING, ERROR, CRITICAL
    log_level: str = Field(default="INFO")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensures log level is a valid Python logging level name."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = v.upper()
        if upper not in valid_levels:
            raise ValueError(f"Invalid log_level '{v}'. Must be one of: {valid_levels}")
        return upper

    # ── Pydantic Settings Config ──────────────────────────────────────────
    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",
    }

    @property
    def missing_store_settings(self) -> List[str]:
        """Names of the Notion settings a history upsert cannot run without."""
        missing = []
        if not self.notion_api_token:
            missing.append("NOTION_API_TOKEN")
        if not self.notion_history_db_id:
            missing.append("NOTION_HISTORY_DB_ID")
        return missing

    def validate_required_for_production(self) -> None:
        """
        What:  Validates that critical settings are configured.
        When:  Called during app startup (lifespan).
        How:   Collects every problem and raises one ValueError listing them all.
        """
        errors = []
        if not self.hmac_secret:
            errors.append(
                "HMAC_SECRET is not set; every request will be rejected. "
                "Generate one with: openssl rand -hex 32"
            )
        elif self.hmac_secret == PLACEHOLDER_SECRET:
            errors.append(
                "HMAC_SECRET must be changed from the default 'change-me' value."
            )
        elif len(self.hmac_secret) < MIN_SECRET_LENGTH:
            errors.append(
                f"HMAC_SECRET must be at least {MIN_SECRET_LENGTH} characters long "
                f"(current: {len(self.hmac_secret)})."
            )
        for name in self.missing_store_settings:
            errors.append(f"{name} is not set; analyze requests will fail with 500.")
        if errors:
            raise ValueError(
                "Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
            )


settings = Settings()
