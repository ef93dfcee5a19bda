"""
Application settings read from the environment (.env supported).
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import List, Optional

from dotenv import load_dotenv

from app.core.logging_context import CallIdFilter

load_dotenv()

logger = logging.getLogger(__name__)

SUPPORTED_LOCALES = ("es", "en")


def _safe_int(env_var: str, default: str) -> int:
    raw = os.getenv(env_var, default)
    try:
        return int(raw)
    except (ValueError, TypeError):
        raise ValueError(f"Invalid integer for {env_var}: {raw!r}") from None


def _safe_float(env_var: str, default: str) -> float:
    raw = os.getenv(env_var, default)
    try:
        return float(raw)
    except (ValueError, TypeError):
        raise ValueError(f"Invalid float for {env_var}: {raw!r}") from None


def _env_flag(env_var: str, default: str) -> bool:
    return os.getenv(env_var, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    database_url: Optional[str] = None
    sql_echo: bool = False
    log_level: str = "INFO"
    tool_timeout_seconds: float = 30.0
    tool_execution_logging: bool = True
    default_locale: str = "es"
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    app_env: str = "development"

    @classmethod
    def from_env(cls) -> "Settings":
        origins = os.getenv("CORS_ORIGINS", "*")
        return cls(
            database_url=os.getenv("DATABASE_URL"),
            sql_echo=_env_flag("SQL_ECHO", "false"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            tool_timeout_seconds=_safe_float("TOOL_TIMEOUT_SECONDS", "30"),
            tool_execution_logging=_env_flag("TOOL_EXECUTION_LOGGING", "true"),
            default_locale=os.getenv("DEFAULT_LOCALE", "es"),
            api_host=os.getenv("API_HOST", "0.0.0.0"),
            api_port=_safe_int("API_PORT", "8000"),
            cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
            app_env=os.getenv("APP_ENV", "development"),
        )

    def validate(self) -> None:
        if self.tool_timeout_seconds <= 0:
            raise ValueError(
                f"TOOL_TIMEOUT_SECONDS must be > 0, got {self.tool_timeout_seconds}"
            )
        if self.default_locale not in SUPPORTED_LOCALES:
            raise ValueError(
                f"DEFAULT_LOCALE must be one of {SUPPORTED_LOCALES}, got {self.default_locale!r}"
            )
        if not 0 < self.api_port < 65536:
            raise ValueError(f"API_PORT out of range: {self.api_port}")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    settings = Settings.from_env()
    settings.validate()
    return settings


def configure_logging(settings: Settings) -> None:
    """Install the root handler; every record carries the current call id."""
    handler = logging.StreamHandler()
    handler.addFilter(CallIdFilter())
    handler.setFormatter(
        logging.Formatter(
            "%(asctime)s [%(name)s] %(levelname)s [%(call_id)s]: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))
    logger.info("Logging configured (env=%s, level=%s)", settings.app_env, settings.log_level)
