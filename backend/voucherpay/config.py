# backend/voucherpay/config.py
from __future__ import annotations
import os


def _optional_int(name: str) -> int | None:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return None
    return int(raw)


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # PostgreSQL in production; SQLite file for local development
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///voucherpay.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    DEFAULT_CURRENCY = os.environ.get("DEFAULT_CURRENCY", "FUN")

    # Voucher issuance
    VOUCHER_CODE_LENGTH = int(os.environ.get("VOUCHER_CODE_LENGTH", "6"))
    VOUCHER_PIN_LENGTH = int(os.environ.get("VOUCHER_PIN_LENGTH", "6"))
    VOUCHER_CODE_MAX_ATTEMPTS = int(os.environ.get("VOUCHER_CODE_MAX_ATTEMPTS", "5"))
    VOUCHER_LIST_MAX = 500
    VOUCHER_EXPIRY_HOURS = _optional_int("VOUCHER_EXPIRY_HOURS")  # None = never expires

    # Bonus escrow release threshold. None = voucher total credit.
    BONUS_TRIGGER_BALANCE_MINOR = _optional_int("BONUS_TRIGGER_BALANCE_MINOR")

    AUDIT_RETENTION_DAYS = int(os.environ.get("AUDIT_RETENTION_DAYS", "365"))

    # bcrypt work factor for staff and player passwords
    BCRYPT_ROUNDS = int(os.environ.get("BCRYPT_ROUNDS", "12"))

    API_VERSION = "1.0.0"

    # Browser origins allowed to call the API
    CORS_ALLOWED_ORIGINS = tuple(
        o.strip() for o in os.environ.get(
            "CORS_ALLOWED_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173",
        ).split(",") if o.strip()
    )
