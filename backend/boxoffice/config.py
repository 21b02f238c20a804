# backend/boxoffice/config.py
from __future__ import annotations
import os


def _int_env(name: str, default: int) -> int:
    value = os.environ.get(name)
    return int(value) if value else default


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored next to the backend by default
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///boxoffice.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Password hashing cost (tests lower this)
    BCRYPT_ROUNDS = _int_env("BCRYPT_ROUNDS", 12)

    # Operator sessions
    SESSION_DEFAULT_LIFETIME_MINUTES = _int_env("SESSION_DEFAULT_LIFETIME_MINUTES", 30)
    SESSION_REMEMBER_LIFETIME_DAYS = _int_env("SESSION_REMEMBER_LIFETIME_DAYS", 7)

    # Login throttling
    LOGIN_MAX_FAILED_ATTEMPTS = _int_env("LOGIN_MAX_FAILED_ATTEMPTS", 10)
    LOGIN_LOCKOUT_MINUTES = _int_env("LOGIN_LOCKOUT_MINUTES", 15)

    # Orders
    PENDING_ORDER_TTL_MINUTES = _int_env("PENDING_ORDER_TTL_MINUTES", 30)
    ORDER_SERVICE_FEE = _int_env("ORDER_SERVICE_FEE", 500)
    CURRENCY = os.environ.get("CURRENCY", "RWF")

    # Provisioning and retention
    INVITE_TTL_DAYS = _int_env("INVITE_TTL_DAYS", 7)
    AUDIT_RETENTION_DAYS = _int_env("AUDIT_RETENTION_DAYS", 90)

    # Door devices authenticate to the scanner routes with this PIN
    SCANNER_PIN = os.environ.get("SCANNER_PIN")

    # Confirmation email collaborator: "log" or "http"
    EMAIL_BACKEND = os.environ.get("EMAIL_BACKEND", "log")
    EMAIL_ENDPOINT_URL = os.environ.get("EMAIL_ENDPOINT_URL")
    EMAIL_TIMEOUT_SECONDS = float(os.environ.get("EMAIL_TIMEOUT_SECONDS", "10"))
    EMAIL_DISPATCH_SYNC = False

    # Lock / deadlock retries for write transactions
    DB_RETRY_ATTEMPTS = _int_env("DB_RETRY_ATTEMPTS", 5)

    # Shared secret the payment gateway sends in X-Webhook-Secret (unset: not checked)
    PAYMENT_WEBHOOK_SECRET = os.environ.get("PAYMENT_WEBHOOK_SECRET")
