from __future__ import annotations
import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator


# Working-directory .env; variables already exported take precedence
load_dotenv()


class Settings(BaseSettings):
    """
    Process-level configuration for Pulsebar.
    Loads from .env file or environment variables.
    User-adjustable values (selection, interval, alerts) live in PreferencesStore.
    """
    model_config = SettingsConfigDict(
        env_file=os.path.join(os.path.dirname(__file__), ".env"),
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Google OAuth (installed-app client)
    GOOGLE_CLIENT_ID: str = ""
    GOOGLE_CLIENT_SECRET: str = ""
    OAUTH_REDIRECT_PORT: int = 8765
    OAUTH_TIMEOUT_SECONDS: int = 300

    # Local state
    KEYRING_SERVICE: str = "pulsebar"
    PREFERENCES_PATH: str = str(Path.home() / ".pulsebar" / "preferences.json")

    # Networking
    REQUEST_TIMEOUT_SECONDS: float = 30.0

    @field_validator("GOOGLE_CLIENT_ID", "GOOGLE_CLIENT_SECRET")
    @classmethod
    def strip_credentials(cls, value: str) -> str:
        return value.strip()


settings = Settings()
