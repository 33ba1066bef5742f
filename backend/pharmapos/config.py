# backend/pharmapos/config.py
from __future__ import annotations
import os


def _env_int(name: str, default: int) -> int:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_list(name: str, default: list[str]) -> list[str]:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return default
    return [item.strip() for item in raw.split(",") if item.strip()]


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///pharmapos.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Loyalty: one point per full unit of spend (1000 cents = 10.00)
    LOYALTY_POINTS_UNIT_CENTS = _env_int("LOYALTY_POINTS_UNIT_CENTS", 1000)

    # Expiry alert windows, in days from today
    EXPIRY_CRITICAL_DAYS = _env_int("EXPIRY_CRITICAL_DAYS", 30)
    EXPIRY_WARNING_DAYS = _env_int("EXPIRY_WARNING_DAYS", 90)

    # FEFO re-reads allowed per sale line after losing a batch race
    DEDUCTION_MAX_ATTEMPTS = _env_int("DEDUCTION_MAX_ATTEMPTS", 3)

    # Front-end origins allowed to call the API (comma-separated in env)
    CORS_ALLOWED_ORIGINS = _env_list(
        "CORS_ALLOWED_ORIGINS",
        ["http://localhost:5173", "http://127.0.0.1:5173"],
    )

    SESSION_ABSOLUTE_TIMEOUT_HOURS = 24
    SESSION_IDLE_TIMEOUT_HOURS = 2
