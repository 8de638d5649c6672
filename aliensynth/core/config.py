"""
Configuration management for the alien-synth engine.
Loads settings from environment variables.
"""

from typing import Literal, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    app_name: str = "alien-synth"
    app_version: str = "0.1.0"

    # Audio engine
    sample_rate: int = 44100
    channels: int = 2
    block_size: int = 1024  # frames pulled per device callback
    output_device: Optional[str] = None  # None = system default

    # Voice
    base_frequency: float = 220.0  # Hz
    note_duration: float = 2.0  # seconds
    wavetable_size: int = 4096  # samples per rendered period

    # Effects
    impulse_duration: float = 2.0  # seconds
    impulse_seed: Optional[int] = None
    max_delay_time: float = 5.0  # seconds

    # Logging
    log_level: str = "INFO"
    log_format: Literal["json", "console"] = "console"

    model_config = SettingsConfigDict(
        env_prefix="SYNTH_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """
    Get settings instance.
    """
    return settings
