"""Centralized application configuration for all environments."""
from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Final

from dotenv import load_dotenv

BASE_DIR: Final[Path] = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"

# Load environment variables once, prioritizing runtime env over file values
load_dotenv(dotenv_path=ENV_PATH, override=False)


def _str_to_bool(value: str | bool | None, default: bool = False) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return default
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def _int_tuple(value: str | None, default: tuple[int, ...]) -> tuple[int, ...]:
    if not value:
        return default
    parsed = tuple(int(part.strip()) for part in value.split(",") if part.strip().isdigit())
    return parsed or default


def _determine_database_url() -> str:
    """
    Return a connection string using the following precedence:
    1. Explicit DATABASE_URL
    2. Individual DB_* components (for PostgreSQL)
    3. Local SQLite fallback (for onboarding / tests)
    """
    explicit_url = os.getenv("DATABASE_URL")
    if explicit_url:
        return explicit_url

    username = os.getenv("DB_USERNAME")
    password = os.getenv("DB_PASSWORD")
    host = os.getenv("DB_HOST")
    port = os.getenv("DB_PORT")
    name = os.getenv("DB_NAME")

    if all([username, password, host, port, name]):
        driver = os.getenv("DB_DRIVER", "postgresql+psycopg2")
        return f"{driver}://{username}:{password}@{host}:{port}/{name}"

    # SQLite dev fallback stored under /db/app.db to keep repo tidy
    fallback_path = BASE_DIR / "db" / "app.db"
    fallback_path.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{fallback_path.as_posix()}"


class Config:
    """Default runtime configuration shared across Flask, services, and scripts."""

    APP_NAME: Final[str] = os.getenv("APP_NAME", "BomaBnB")
    APP_ENV: Final[str] = os.getenv("APP_ENV", "development")

    SECRET_KEY: Final[str] = os.getenv("SECRET_KEY", "change-me-in-prod")
    DEBUG: Final[bool] = _str_to_bool(os.getenv("FLASK_DEBUG"), default=APP_ENV == "development")
    TESTING: Final[bool] = _str_to_bool(os.getenv("FLASK_TESTING"), default=False)

    # Flask run configuration (used by run.py)
    FLASK_RUN_HOST: Final[str] = os.getenv("FLASK_RUN_HOST", "0.0.0.0")
    FLASK_RUN_PORT: Final[int] = int(os.getenv("FLASK_RUN_PORT", "5000"))

    # Database
    DATABASE_URL: Final[str] = _determine_database_url()
    SQL_ECHO: Final[bool] = _str_to_bool(os.getenv("SQL_ECHO"), default=False)
    DB_POOL_SIZE: Final[int] = int(os.getenv("DB_POOL_SIZE", "10"))
    DB_MAX_OVERFLOW: Final[int] = int(os.getenv("DB_MAX_OVERFLOW", "20"))

    # Commission knobs. AGENT_COMMISSION_RATE and each referrer's own
    # commission_rate are kept apart; COMMISSION_RATE_SOURCE picks the one applied.
    AGENT_COMMISSION_RATE: Final[float] = float(os.getenv("AGENT_COMMISSION_RATE", "0.10"))
    COMMISSION_RATE_SOURCE: Final[str] = os.getenv("COMMISSION_RATE_SOURCE", "config").strip().lower()
    PLATFORM_COMMISSION_RATE: Final[float] = float(os.getenv("PLATFORM_COMMISSION_RATE", "0.15"))
    DEFAULT_AGENT_COMMISSION_PERCENT: Final[float] = float(os.getenv("DEFAULT_AGENT_COMMISSION_PERCENT", "10.00"))

    # Account and listing workflow knobs
    FEATURE_DURATION_OPTIONS: Final[tuple[int, ...]] = _int_tuple(os.getenv("FEATURE_DURATION_OPTIONS"), (7, 14, 30, 90))
    # Listed price (KES) quoted to partners per featured duration
    FEATURE_PRICES: Final[dict[int, int]] = {7: 5000, 14: 9000, 30: 18000, 90: 45000}
    ACCOUNT_REINSTATEMENT_ENABLED: Final[bool] = _str_to_bool(os.getenv("ACCOUNT_REINSTATEMENT_ENABLED"), default=False)
    STATUS_POLL_INTERVAL_SECONDS: Final[float] = float(os.getenv("STATUS_POLL_INTERVAL_SECONDS", "30"))
    MIN_PASSWORD_LENGTH: Final[int] = int(os.getenv("MIN_PASSWORD_LENGTH", "6"))
    PHONE_COUNTRY_CODE: Final[str] = os.getenv("PHONE_COUNTRY_CODE", "254")
    FEATURED_ROTATION_SIZE: Final[int] = int(os.getenv("FEATURED_ROTATION_SIZE", "5"))
    NOTIFICATIONS_PAGE_SIZE: Final[int] = int(os.getenv("NOTIFICATIONS_PAGE_SIZE", "20"))
    REVIEW_MAX_LENGTH: Final[int] = int(os.getenv("REVIEW_MAX_LENGTH", "2000"))

    # Observability
    STRUCTURED_LOGS_ENABLED: Final[bool] = _str_to_bool(os.getenv("STRUCTURED_LOGS_ENABLED"), default=True)
    LOG_LEVEL: Final[str] = os.getenv("LOG_LEVEL", "INFO")
    REQUEST_ID_HEADER: Final[str] = os.getenv("REQUEST_ID_HEADER", "X-Request-ID")

    @classmethod
    def configure_app(cls, app: Any) -> None:
        """Apply core configuration to a Flask app instance."""
        app.config["SECRET_KEY"] = cls.SECRET_KEY
        app.config["ENV"] = cls.APP_ENV
        app.config["DEBUG"] = cls.DEBUG
        app.config["TESTING"] = cls.TESTING
        app.config["SQLALCHEMY_DATABASE_URI"] = cls.DATABASE_URL
        app.config["SQLALCHEMY_ECHO"] = cls.SQL_ECHO
        app.config["STRUCTURED_LOGS_ENABLED"] = cls.STRUCTURED_LOGS_ENABLED
        app.config["STATUS_POLL_INTERVAL_SECONDS"] = cls.STATUS_POLL_INTERVAL_SECONDS
