"""
Application configuration using pydantic-settings.

Loads configuration from environment variables and .env files.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Database
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/agri_buddy.db",
        description="SQLAlchemy async connection string for the local record store",
    )

    # LLM Configuration (Ollama HTTP API)
    llm_endpoint: str = Field(
        default="http://localhost:11434",
        description="Base URL of the Ollama server",
    )
    llm_model_name: str = Field(
        default="gemma3:12b",
        description="Model used for slot extraction and admin-log generation",
    )
    llm_vision_model_name: str = Field(
        default="gemma3:12b",
        description="Multimodal model used for reading photographed work sheets",
    )
    llm_timeout: float = Field(
        default=30.0,
        description="Timeout in seconds for a single LLM request",
    )
    llm_max_retries: int = Field(
        default=1,
        description="Number of retries on LLM failure",
    )
    llm_retry_backoff_s: float = Field(
        default=2.0,
        description="Fixed delay before retrying a failed LLM request",
    )

    # Weather
    weather_endpoint: str = Field(
        default="https://api.open-meteo.com/v1/forecast",
        description="Open-Meteo forecast endpoint",
    )
    weather_latitude: float = Field(default=32.75, description="Farm latitude")
    weather_longitude: float = Field(default=129.87, description="Farm longitude")
    weather_timeout: float = Field(default=10.0, description="Timeout for weather lookups")

    # Capture
    capture_max_seconds: float = Field(
        default=120.0,
        description="Hard cap on a single capture session",
    )
    capture_silence_s: float = Field(
        default=1.5,
        description="Silence after a final result that ends an utterance",
    )
    capture_restart_attempts: int = Field(
        default=3,
        description="Consecutive failed restarts tolerated before falling back to manual entry",
    )

    # Interview pacing
    breathing_ms: int = Field(default=1500, description="Pause before each follow-up question")
    quick_breathing_ms: int = Field(default=500, description="Pause after a skipped question")
    admin_log_debounce_s: float = Field(
        default=1.5,
        description="Debounce before requesting an AI admin log after an edit",
    )

    # Playback
    playback_fallback_floor_ms: int = Field(default=4000, description="Minimum fallback timer")
    playback_per_char_ms: int = Field(default=250, description="Fallback timer per character")
    playback_drain_ms: int = Field(default=300, description="Audio release delay after playback")
    playback_cancel_gap_ms: int = Field(default=50, description="Delay after cancelling playback")
    playback_unreliable_end_event: bool = Field(
        default=False,
        description="Guard playback with a fallback timer and drain delay",
    )

    # Risk tiers
    risk_tier3_score: int = Field(default=6, description="Score that forces mentor mode")
    risk_tier2_score: int = Field(default=3, description="Score that defers a comfort prompt")
    risk_tier1_score: int = Field(default=1, description="Score that adds a spoken nudge")

    # Records
    default_location: str = Field(default="茂木町ハウス", description="Location used when none is given")
    mood_retention_days: int = Field(default=90, description="Days of mood history to keep")

    # Application
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode",
    )


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings.

    Returns:
        Settings: Application settings instance.
    """
    return Settings()
