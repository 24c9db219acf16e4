"""
Identity Reconciliation Service - Configuration

Loads settings from environment variables with sensible defaults.
"""

from pathlib import Path

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env file
load_dotenv()

# Project root directory
PROJECT_ROOT = Path(__file__).parent.parent


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Database
    DATABASE_URL: str = Field(
        default=f"sqlite:///{PROJECT_ROOT}/data/identity.db"
    )
    DB_POOL_SIZE: int = Field(default=10)
    DB_POOL_RECYCLE: int = Field(default=3600)

    # Application
    DEBUG: bool = Field(default=False)
    LOG_LEVEL: str = Field(default="INFO")
    LOG_DIR: Path = Field(default=PROJECT_ROOT / "logs")
    LOG_TO_FILE: bool = Field(default=True)

    # HTTP
    PORT: int = Field(default=9003)

    # Emit "primaryContatctId" instead of "primaryContactId" for clients of
    # the old deployment
    LEGACY_WIRE_FIELD_NAMES: bool = Field(default=False)

    # Identity resolution settings
    RESOLVE_MAX_ATTEMPTS: int = Field(default=5)


settings = Settings()
