"""
Configuration Management for Gossip Couple

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see what external dependencies exist and
ensures all required configuration is validated at startup.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SupabaseSettings(BaseSettings):
    """Hosted backend (auth, database, realtime, storage) configuration."""

    model_config = SettingsConfigDict(
        env_prefix="SUPABASE_",
        extra="ignore"
    )

    url: str = Field(
        ...,
        description="Supabase project URL"
    )
    anon_key: str = Field(
        ...,
        description="Public anon key used for user-scoped calls"
    )
    service_role_key: Optional[str] = Field(
        default=None,
        description="Service role key for server-side functions (bypasses RLS)"
    )
    avatars_bucket: str = Field(
        default="avatars",
        description="Storage bucket holding profile pictures"
    )
    schema_name: str = Field(
        default="public",
        description="Database schema the change feeds listen on"
    )

    @field_validator('url')
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


class GeminiSettings(BaseSettings):
    """Gemini LLM configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GEMINI_",
        extra="ignore"
    )

    api_key: str = Field(
        ...,
        description="Gemini API key"
    )
    model_name: str = Field(
        default="gemini-2.5-flash",
        description="Gemini model to use"
    )
    max_tokens: int = Field(
        default=2048,
        ge=100,
        le=8192,
        description="Maximum tokens in response"
    )
    agent_temperature: float = Field(
        default=0.7,
        ge=0.0,
        le=1.0,
        description="Temperature for the action-taking assistant"
    )
    advisor_temperature: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        description="Temperature for the investment advisory chat"
    )
    request_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Upper bound for a single completion call"
    )


class GoogleCalendarSettings(BaseSettings):
    """Google OAuth client used for calendar access."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_",
        extra="ignore"
    )

    client_id: str = Field(
        ...,
        description="OAuth client ID"
    )
    client_secret: str = Field(
        ...,
        description="OAuth client secret"
    )
    token_uri: str = Field(
        default="https://oauth2.googleapis.com/token",
        description="OAuth token endpoint"
    )
    calendar_api_base: str = Field(
        default="https://www.googleapis.com/calendar/v3",
        description="Calendar REST API base URL"
    )
    import_past_days: int = Field(
        default=30,
        ge=0,
        description="How far back to import events"
    )
    import_future_days: int = Field(
        default=90,
        ge=0,
        description="How far ahead to import events"
    )


class StripeSettings(BaseSettings):
    """Payments provider configuration."""

    model_config = SettingsConfigDict(
        env_prefix="STRIPE_",
        extra="ignore"
    )

    secret_key: str = Field(
        ...,
        description="Stripe secret API key"
    )
    price_id: str = Field(
        ...,
        description="Subscription price identifier"
    )
    webhook_secret: str = Field(
        ...,
        description="Signing secret for the webhook endpoint"
    )
    default_origin: str = Field(
        default="http://localhost:5173",
        description="Origin used for redirect URLs when the request has none"
    )


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Environment
    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    log_level: str = Field(
        default="INFO",
        description="Root log level"
    )

    # Assistant
    recent_transactions_in_context: int = Field(
        default=5,
        ge=0,
        le=50,
        description="How many recent transactions the assistant sees"
    )
    goal_default_deadline_days: int = Field(
        default=30,
        ge=1,
        description="Deadline applied to assistant-created goals without one"
    )

    # Invites
    invite_ttl_days: int = Field(
        default=7,
        ge=1,
        description="Days before an invite token expires"
    )

    # Onboarding draft
    onboarding_draft_path: str = Field(
        default=".gossip_couple/onboarding.json",
        description="Where the in-progress onboarding answers are kept"
    )
    onboarding_schema_version: int = Field(
        default=1,
        ge=1,
        description="Bump when the onboarding answer format changes"
    )

    # Portfolio
    price_alert_threshold_percent: float = Field(
        default=5.0,
        gt=0,
        description="Daily move that triggers a review task"
    )


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Loaded lazily to allow partial configuration

    @property
    def supabase(self) -> SupabaseSettings:
        return SupabaseSettings()

    @property
    def gemini(self) -> GeminiSettings:
        return GeminiSettings()

    @property
    def google_calendar(self) -> GoogleCalendarSettings:
        return GoogleCalendarSettings()

    @property
    def stripe(self) -> StripeSettings:
        return StripeSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}, plus
    {setting_name}_error entries for the ones that failed.
    """
    results = {}
    settings = get_settings()

    for name in ("supabase", "gemini", "google_calendar", "stripe", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
