"""
Configuration settings for the application.
"""
import os
import logging

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)


def _int_env(name, default):
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning(f"Ignoring non-integer {name}={value!r}, using {default}")
        return default


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY", "change-me")

    # Remove quotes if present (common when copying from examples)
    SQLALCHEMY_DATABASE_URI = os.getenv("RENTDESK_DATABASE_URL", "sqlite:///rentdesk.db").strip('"').strip("'")
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Portal links stop working after this many hours
    PORTAL_TOKEN_TTL_HOURS = _int_env("PORTAL_TOKEN_TTL_HOURS", 72)

    # Upcoming-return alerts
    RETURN_ALERT_LOOKAHEAD_MINUTES = _int_env("RETURN_ALERT_LOOKAHEAD_MINUTES", 60)
    ALERT_SCAN_INTERVAL_SECONDS = _int_env("ALERT_SCAN_INTERVAL_SECONDS", 60)

    # Logging Configuration
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
