"""Configuration package."""

from moneytalk.config.settings import (
    AppSettings,
    CloudinarySettings,
    GeminiSettings,
    GoogleSheetsSettings,
    OpenAISettings,
    Settings,
    StorageSettings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "CloudinarySettings",
    "GeminiSettings",
    "GoogleSheetsSettings",
    "OpenAISettings",
    "Settings",
    "StorageSettings",
    "get_settings",
    "validate_all_settings",
]
