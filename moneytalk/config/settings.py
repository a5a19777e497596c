"""
Configuration Management for MoneyTalk

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
Every external collaborator (AI providers, cloud replica, image storage)
has its own settings class, so a missing key makes exactly that
collaborator unavailable instead of breaking startup.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class GeminiSettings(BaseSettings):
    """Gemini LLM configuration (primary AI provider)."""

    model_config = SettingsConfigDict(
        env_prefix="GEMINI_",
        extra="ignore"
    )

    api_key: str = Field(
        ...,
        description="Gemini API key"
    )
    model_name: str = Field(
        default="gemini-1.5-flash",
        description="Model used for transcript and receipt analysis"
    )
    transcription_model_name: str = Field(
        default="gemini-1.5-flash",
        description="Model used for audio transcription"
    )
    max_tokens: int = Field(
        default=512,
        ge=50,
        le=8192,
        description="Maximum tokens in response"
    )
    temperature: float = Field(
        default=0.1,
        ge=0.0,
        le=1.0,
        description="Model temperature (lower = more deterministic)"
    )


class OpenAISettings(BaseSettings):
    """
    OpenAI-compatible provider configuration (secondary AI provider).

    base_url makes any OpenAI-compatible endpoint usable.
    """

    model_config = SettingsConfigDict(
        env_prefix="OPENAI_",
        extra="ignore"
    )

    api_key: str = Field(
        ...,
        description="API key for the OpenAI-compatible endpoint"
    )
    base_url: Optional[str] = Field(
        default=None,
        description="Override base URL (None = api.openai.com)"
    )
    model_name: str = Field(
        default="gpt-4.1-nano",
        description="Model used for transcript analysis"
    )
    vision_model_name: str = Field(
        default="gpt-4.1-mini",
        description="Model used for receipt analysis"
    )
    transcription_model_name: str = Field(
        default="gpt-4o-mini-transcribe",
        description="Model used for audio transcription"
    )
    max_tokens: int = Field(
        default=500,
        ge=50,
        le=8192,
    )
    temperature: float = Field(
        default=0.1,
        ge=0.0,
        le=1.0,
    )


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets cloud replica configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
        extra="ignore"
    )

    credentials_path: str = Field(
        ...,
        description="Path to Google service account credentials JSON"
    )
    spreadsheet_id: str = Field(
        ...,
        description="ID of the spreadsheet holding the remote tables"
    )

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: str) -> str:
        """Warn if credentials file doesn't exist (but don't fail - might be mounted later)."""
        if not Path(v).exists():
            import warnings
            warnings.warn(
                f"Google credentials file not found at {v}. "
                "Cloud backup will fail until it exists."
            )
        return v


class CloudinarySettings(BaseSettings):
    """Cloudinary receipt image storage configuration."""

    model_config = SettingsConfigDict(
        env_prefix="CLOUDINARY_",
        extra="ignore"
    )

    cloud_name: str = Field(
        ...,
        description="Cloudinary cloud name"
    )
    api_key: str = Field(
        ...,
        description="Cloudinary API key"
    )
    api_secret: str = Field(
        ...,
        description="Cloudinary API secret"
    )


class StorageSettings(BaseSettings):
    """
    Local database placement.

    data_dir is the stable per-install directory holding transactions.db,
    settings.db and the backups/ folder. legacy_dir is where older builds
    left their databases; it is only ever read.
    """

    model_config = SettingsConfigDict(
        env_prefix="MONEYTALK_STORAGE_",
        extra="ignore"
    )

    data_dir: Path = Field(
        default=Path("~/.moneytalk/documents"),
        description="Directory for live database files"
    )
    legacy_dir: Optional[Path] = Field(
        default=Path("~/.moneytalk/SQLite"),
        description="Directory used by older versions (migration source)"
    )

    @field_validator('data_dir', 'legacy_dir')
    @classmethod
    def expand_user(cls, v: Optional[Path]) -> Optional[Path]:
        """Expand ~ so paths can be compared reliably."""
        return v.expanduser() if v is not None else None

    @property
    def backups_dir(self) -> Path:
        return self.data_dir / "backups"


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
        description="Enable debug logging"
    )

    # User locale
    timezone: Optional[str] = Field(
        default=None,
        description="IANA timezone of the user (None = host timezone)"
    )
    language: str = Field(
        default="en",
        description="Transcription language hint"
    )

    # Sync and quota limits
    auto_sync_interval_minutes: int = Field(
        default=60,
        ge=1,
        description="Minimum minutes between automatic cloud syncs"
    )
    daily_refresh_limit: int = Field(
        default=3,
        ge=0,
        description="AI suggestion refreshes allowed per day"
    )

    # Receipt images
    max_receipt_image_kb: int = Field(
        default=100,
        ge=10,
        le=5000,
        description="Target size for receipt images sent to AI and storage"
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

    # Sub-settings are loaded lazily to allow partial configuration

    @property
    def gemini(self) -> GeminiSettings:
        return GeminiSettings()

    @property
    def openai(self) -> OpenAISettings:
        return OpenAISettings()

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def cloudinary(self) -> CloudinarySettings:
        return CloudinarySettings()

    @property
    def storage(self) -> StorageSettings:
        return StorageSettings()

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

    Returns a dict of {setting_name: is_valid} plus "<name>_error"
    entries for the failures. Useful for startup checks.
    """
    results = {}

    settings = get_settings()

    for name in ("gemini", "openai", "google_sheets", "cloudinary", "storage", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
