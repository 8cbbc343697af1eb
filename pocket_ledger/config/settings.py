"""
Configuration Management for Pocket Ledger

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see what external dependencies exist and
ensures all required configuration is validated at startup.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class GeminiSettings(BaseSettings):
    """Gemini LLM configuration (interpreter, transcriber, reviewer)."""

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
        description="Gemini model to use"
    )
    max_tokens: int = Field(
        default=1024,
        ge=100,
        le=8192,
        description="Maximum tokens in response"
    )
    interpret_temperature: float = Field(
        default=0.2,
        ge=0.0,
        le=1.0,
        description="Temperature for transaction interpretation"
    )
    review_temperature: float = Field(
        default=0.7,
        ge=0.0,
        le=1.0,
        description="Temperature for period reviews"
    )
    transcription_language: str = Field(
        default="es",
        description="Expected spoken language for voice input"
    )
    retry_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts per model call before giving up"
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

    # Storage
    database_path: str = Field(
        default="pocket_ledger.db",
        description="Path to the SQLite ledger database"
    )

    # Ledger defaults
    default_currency: str = Field(
        default="COP",
        min_length=1,
        max_length=10,
        description="Currency used when none is given"
    )
    query_page_limit: int = Field(
        default=50,
        ge=1,
        le=1000,
        description="Default page size for transaction queries"
    )

    # Statistics
    daily_window_days: int = Field(
        default=30,
        ge=1,
        le=366,
        description="Trailing window of the daily series"
    )

    # Proposal thresholds
    min_proposal_confidence: float = Field(
        default=0.6,
        ge=0.0,
        le=1.0,
        description="Interpreter confidence below which a proposal is flagged"
    )
    max_transaction_amount: float = Field(
        default=1_000_000_000.0,
        description="Amount above which a proposal is flagged as suspicious"
    )

    @field_validator('database_path')
    @classmethod
    def validate_database_path(cls, v: str) -> str:
        """Warn if the database directory doesn't exist (it is created on open)."""
        parent = Path(v).expanduser().parent
        if v != ":memory:" and not parent.exists():
            import warnings
            warnings.warn(
                f"Database directory {parent} does not exist yet. "
                "It will be created when the ledger is opened."
            )
        return v

    @property
    def database_file(self) -> Path:
        """Get the database path as an expanded Path."""
        return Path(self.database_path).expanduser()


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

    # Note: These are loaded lazily to allow partial configuration

    @property
    def gemini(self) -> GeminiSettings:
        return GeminiSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Uses LRU cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}.
    Useful for startup checks.
    """
    results = {}

    settings = get_settings()

    try:
        _ = settings.gemini
        results["gemini"] = True
    except Exception as e:
        results["gemini"] = False
        results["gemini_error"] = str(e)

    try:
        _ = settings.app
        results["app"] = True
    except Exception as e:
        results["app"] = False
        results["app_error"] = str(e)

    return results
