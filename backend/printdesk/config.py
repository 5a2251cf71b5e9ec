# backend/printdesk/config.py
from __future__ import annotations
import os


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/printdesk.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",  # optional alternative location
        "sqlite:///printdesk.sqlite3",  # default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Session lifetime for API tokens
    SESSION_TTL_HOURS = _env_int("SESSION_TTL_HOURS", 24)

    # bcrypt cost factor for password hashes
    BCRYPT_ROUNDS = _env_int("BCRYPT_ROUNDS", 12)

    # List endpoints
    DEFAULT_PAGE_SIZE = _env_int("DEFAULT_PAGE_SIZE", 15)
    MAX_PAGE_SIZE = _env_int("MAX_PAGE_SIZE", 100)

    # Invoices default to net-30
    INVOICE_DUE_DAYS = _env_int("INVOICE_DUE_DAYS", 30)

    CURRENCY_PREFIX = os.environ.get("CURRENCY_PREFIX", "Rs.")
