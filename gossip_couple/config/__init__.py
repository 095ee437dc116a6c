"""Configuration package."""

from gossip_couple.config.settings import (
    AppSettings,
    GeminiSettings,
    GoogleCalendarSettings,
    Settings,
    StripeSettings,
    SupabaseSettings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "GeminiSettings",
    "GoogleCalendarSettings",
    "Settings",
    "StripeSettings",
    "SupabaseSettings",
    "get_settings",
    "validate_all_settings",
]
