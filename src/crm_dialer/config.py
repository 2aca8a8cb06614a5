"""Runtime settings, read from CRM_* environment variables."""

from __future__ import annotations

from functools import lru_cache

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseModel):
    """SQLite for development, PostgreSQL in production."""

    url: str = "sqlite+aiosqlite:///data/crm_dialer.db"
    echo: bool = False
    # PostgreSQL only
    pool_size: int = 5
    max_overflow: int = 10


class VapiSettings(BaseModel):
    """Vapi voice-AI platform configuration."""

    api_key: str = ""
    phone_number_id: str = ""
    # Use a stored assistant instead of per-call persona overrides
    assistant_id: str = ""
    base_url: str = "https://api.vapi.ai"
    # Shared secret for webhook verification (HMAC or X-Vapi-Secret header)
    webhook_secret: str = ""
    timeout: float = 30.0

    @property
    def is_configured(self) -> bool:
        """Whether outbound calls can be placed."""
        return bool(self.api_key and self.phone_number_id)


class GoogleSettings(BaseModel):
    """Google OAuth and Calendar configuration."""

    client_id: str = ""
    client_secret: str = ""
    redirect_uri: str = "http://localhost:8080/api/v1/integrations/google/callback"
    calendar_id: str = "primary"
    event_duration_minutes: int = 30

    @property
    def is_configured(self) -> bool:
        """Whether the OAuth client credentials are present."""
        return bool(self.client_id and self.client_secret)


class OpenAISettings(BaseModel):
    """OpenAI transcription and summary configuration."""

    api_key: str = ""
    base_url: str = "https://api.openai.com"
    transcription_model: str = "whisper-1"
    summary_model: str = "gpt-4o-mini"
    timeout: float = 120.0


class DialerSettings(BaseModel):
    """Batch dialer configuration."""

    default_concurrency: int = 3
    max_concurrency: int = 10
    tick_interval_seconds: float = 1.0
    # Poll Vapi for calls that have not reported in this long
    status_poll_enabled: bool = True
    poll_interval_seconds: float = 15.0
    max_call_duration_seconds: int = 900


class ComplianceSettings(BaseModel):
    """Calling window configuration (TCPA-style quiet hours)."""

    enforce_calling_window: bool = True
    window_start: str = "08:00"
    window_end: str = "21:00"
    timezone: str = "America/New_York"


class WebhookSettings(BaseModel):
    """Vapi webhook checks. Disable only for local tunnels without a secret."""

    validate_signatures: bool = True


class Settings(BaseSettings):
    """All settings. Nested sections use a double underscore, e.g.
    ``CRM_VAPI__API_KEY`` or ``CRM_COMPLIANCE__WINDOW_END``.
    """

    model_config = SettingsConfigDict(
        env_prefix="CRM_",
        env_nested_delimiter="__",
        env_file=".env",
        extra="ignore",
    )

    # Environment
    environment: str = "development"
    debug: bool = True

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    # HTTP
    api_host: str = "0.0.0.0"
    api_port: int = 8080
    cors_origins: list[str] = Field(default_factory=list)

    # Dashboard tokens
    jwt_secret_key: str = ""
    jwt_expiry_minutes: int = 60
    jwt_algorithm: str = "HS256"

    # Subsystems
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    vapi: VapiSettings = Field(default_factory=VapiSettings)
    google: GoogleSettings = Field(default_factory=GoogleSettings)
    openai: OpenAISettings = Field(default_factory=OpenAISettings)
    dialer: DialerSettings = Field(default_factory=DialerSettings)
    compliance: ComplianceSettings = Field(default_factory=ComplianceSettings)
    webhooks: WebhookSettings = Field(default_factory=WebhookSettings)

    @property
    def is_production(self) -> bool:
        """Whether running in a production-like environment."""
        return self.environment in ("production", "staging", "prod")


@lru_cache
def get_settings() -> Settings:
    """Process-wide settings, read once from the environment and ``.env``."""
    return Settings()


def production_problems(settings: Settings) -> list[str]:
    """Missing secrets that make a production deployment unsafe or useless.

    Always empty outside production.
    """
    if not settings.is_production:
        return []

    problems = []
    if not settings.jwt_secret_key:
        problems.append("CRM_JWT_SECRET_KEY is required")
    if not settings.vapi.is_configured:
        problems.append("CRM_VAPI__API_KEY and CRM_VAPI__PHONE_NUMBER_ID are required to place calls")
    if settings.webhooks.validate_signatures and not settings.vapi.webhook_secret:
        problems.append("CRM_VAPI__WEBHOOK_SECRET is required while signature checks are on")
    if settings.google.client_id and not settings.google.client_secret:
        problems.append("CRM_GOOGLE__CLIENT_SECRET is required when CRM_GOOGLE__CLIENT_ID is set")
    return problems


def require_valid_settings() -> Settings:
    """Settings for startup.

    Raises:
        ValueError: Listing every production problem found
    """
    settings = get_settings()
    problems = production_problems(settings)
    if problems:
        raise ValueError("Refusing to start:\n  - " + "\n  - ".join(problems))
    return settings
