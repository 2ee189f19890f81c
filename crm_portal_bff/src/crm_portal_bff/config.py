# src/crm_portal_bff/config.py

import logging
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from pydantic import AnyHttpUrl, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

# .env is at the service root, two levels up from src/crm_portal_bff/
CONFIG_FILE_DIR = Path(__file__).resolve().parent
PROJECT_ROOT_DIR = CONFIG_FILE_DIR.parent.parent
ENV_FILE_PATH = PROJECT_ROOT_DIR / ".env"

if ENV_FILE_PATH.exists():
    load_dotenv(dotenv_path=ENV_FILE_PATH, override=True)
    logger.info("CRM-Portal-BFF: loaded .env file from %s", ENV_FILE_PATH)
else:
    logger.info(
        "CRM-Portal-BFF: .env file not found at %s. Relying on environment variables.",
        ENV_FILE_PATH,
    )


class Settings(BaseSettings):
    # === CRM backend ===
    CRM_API_BASE_URL: AnyHttpUrl = "http://localhost:3002/api/v1"
    HTTP_TIMEOUT_SECONDS: float = 10.0

    # === Token lifecycle ===
    REFRESH_INTERVAL_SECONDS: int = 30 * 60
    REFRESH_MARGIN_SECONDS: int = 60 * 60

    # === Session Management ===
    PERSISTENT_STORAGE_DIR: Path = PROJECT_ROOT_DIR / ".sessions"
    SESSION_COOKIE_NAME: str = "session_id"
    SESSION_COOKIE_MAX_AGE: int = 60 * 60 * 24 * 30  # 30 days, "remember me" only
    SESSION_COOKIE_SECURE: bool = False
    SESSION_IDLE_TIMEOUT_SECONDS: int = 24 * 60 * 60  # signed-in sessions kept in memory

    # === Pipeline ===
    ALLOW_STAGE_REOPEN: bool = False

    # === Logging ===
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    @property
    def CRM_API_BASE(self) -> str:
        # AnyHttpUrl may append a trailing slash; httpx joins paths onto it.
        return str(self.CRM_API_BASE_URL).rstrip("/")

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False
    )

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def normalize_log_level(cls, v: Any) -> str:
        if v is None:
            return "INFO"
        level = str(v).strip().upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"LOG_LEVEL: unknown level {v!r}")
        return level

    @model_validator(mode="after")
    def check_timings(self) -> "Settings":
        if self.REFRESH_INTERVAL_SECONDS <= 0:
            raise ValueError("REFRESH_INTERVAL_SECONDS must be positive.")
        if self.SESSION_IDLE_TIMEOUT_SECONDS <= 0:
            raise ValueError("SESSION_IDLE_TIMEOUT_SECONDS must be positive.")
        if self.REFRESH_MARGIN_SECONDS < 0:
            raise ValueError("REFRESH_MARGIN_SECONDS must not be negative.")
        return self


try:
    settings = Settings()
    logger.debug("CRM API base URL: %s", settings.CRM_API_BASE)
except Exception as e:
    logger.error("CRM-Portal-BFF: Error instantiating Settings: %s", e)
    raise
