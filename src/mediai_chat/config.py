"""Runtime configuration read from the environment."""

import logging
import os
import secrets
from dataclasses import dataclass, field
from typing import List, Optional

import structlog

logger = structlog.get_logger()


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _session_secret() -> str:
    secret = os.getenv("SESSION_SECRET")
    if secret:
        return secret
    logger.warning(
        "session_secret_generated",
        reason="SESSION_SECRET is not set; sessions will not survive a restart",
    )
    return secrets.token_urlsafe(32)


@dataclass(frozen=True)
class Settings:
    """Application settings, one instance per process."""

    analysis_provider: str = "gemini"
    gemini_api_key: Optional[str] = None
    gemini_model: str = "gemini-1.5-pro"
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o"
    analysis_temperature: float = 0.2
    analysis_timeout: float = 45.0

    database_url: Optional[str] = None

    # Random per process unless SESSION_SECRET is set
    session_secret: str = field(default_factory=lambda: secrets.token_urlsafe(32))
    session_max_age: int = 7 * 24 * 60 * 60
    secure_cookies: bool = False

    rate_limit: int = 50
    rate_limit_window: int = 60
    max_concurrent_requests: int = 10
    queue_timeout: float = 90.0

    log_level: str = "INFO"
    log_json: bool = False
    cors_origins: List[str] = field(default_factory=lambda: ["*"])

    @classmethod
    def from_env(cls) -> "Settings":
        origins = os.getenv("CORS_ORIGINS", "*")
        return cls(
            analysis_provider=os.getenv("ANALYSIS_PROVIDER", "gemini").lower(),
            gemini_api_key=os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY"),
            gemini_model=os.getenv("GEMINI_MODEL", "gemini-1.5-pro"),
            openai_api_key=os.getenv("OPENAI_API_KEY"),
            openai_model=os.getenv("OPENAI_MODEL", "gpt-4o"),
            analysis_temperature=float(os.getenv("ANALYSIS_TEMPERATURE", "0.2")),
            analysis_timeout=float(os.getenv("ANALYSIS_TIMEOUT", "45")),
            database_url=os.getenv("DATABASE_URL") or None,
            session_secret=_session_secret(),
            session_max_age=int(os.getenv("SESSION_MAX_AGE", str(7 * 24 * 60 * 60))),
            secure_cookies=_env_bool("SECURE_COOKIES", False),
            rate_limit=int(os.getenv("RATE_LIMIT", "50")),
            rate_limit_window=int(os.getenv("RATE_LIMIT_WINDOW", "60")),
            max_concurrent_requests=int(os.getenv("MAX_CONCURRENT_REQUESTS", "10")),
            queue_timeout=float(os.getenv("QUEUE_TIMEOUT", "90")),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            log_json=_env_bool("LOG_JSON", False),
            cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
        )


def configure_logging(level: str = "INFO", json: bool = False) -> None:
    """Set up structlog with a level filter and the chosen renderer."""
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    renderer = (
        structlog.processors.JSONRenderer()
        if json
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        cache_logger_on_first_use=True,
    )
