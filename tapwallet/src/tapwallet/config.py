"""
Configuration management using pydantic-settings.
"""

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

from tapcore.models import NetworkType


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="TAPWALLET_", env_file=".env", env_file_encoding="utf-8", case_sensitive=False
    )

    state_file: Path = Path("state.json")
    network: NetworkType = NetworkType.REGTEST
    log_level: str = "INFO"


def get_settings() -> Settings:
    return Settings()
