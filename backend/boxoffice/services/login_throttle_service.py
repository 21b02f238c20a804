"""
Login Throttling Service

WHY: Prevent brute-force password attacks by limiting failed login attempts.
After too many failures, the account is temporarily locked.

SECURITY FEATURES:
- Tracks failed attempts per email through LOGIN_FAILED audit entries
- Lockout after LOGIN_MAX_FAILED_ATTEMPTS failures within the lockout window
- A successful login resets the count (only failures after it are counted)
"""

from datetime import timedelta

from flask import current_app

from ..extensions import db
from ..models import AuditLogEntry, AdminOperator
from boxoffice.time_utils import utcnow
from . import audit_service


def _lockout_window() -> timedelta:
    return timedelta(minutes=current_app.config.get("LOGIN_LOCKOUT_MINUTES", 15))


def get_recent_failed_attempts(identifier: str, now=None) -> int:
    """Count LOGIN_FAILED entries for this email inside the lockout window."""
    now = now or utcnow()
    cutoff = now - _lockout_window()

    last_success = db.session.query(db.func.max(AuditLogEntry.occurred_at)).filter(
        AuditLogEntry.action == "LOGIN",
        AuditLogEntry.operator_email == identifier,
    ).scalar()
    if last_success is not None and last_success > cutoff:
        cutoff = last_success

    return db.session.query(AuditLogEntry).filter(
        AuditLogEntry.action == "LOGIN_FAILED",
        AuditLogEntry.operator_email == identifier,
        AuditLogEntry.occurred_at > cutoff,
    ).count()


def is_account_locked(identifier: str, now=None) -> tuple[bool, int | None]:
    """
    Returns:
    - (True, seconds_remaining) if locked
    - (False, None) if not locked
    """
    now = now or utcnow()
    max_attempts = current_app.config.get("LOGIN_MAX_FAILED_ATTEMPTS", 10)

    if get_recent_failed_attempts(identifier, now=now) < max_attempts:
        return False, None

    most_recent = db.session.query(db.func.max(AuditLogEntry.occurred_at)).filter(
        AuditLogEntry.action == "LOGIN_FAILED",
        AuditLogEntry.operator_email == identifier,
    ).scalar()
    if most_recent is None:
        return False, None

    lockout_end = most_recent + _lockout_window()
    if now < lockout_end:
        return True, int((lockout_end - now).total_seconds())
    return False, None


def record_failed_attempt(
    identifier: str,
    *,
    reason: str = "Invalid credentials",
    ip_address: str | None = None,
    now=None,
) -> int:
    """Write a LOGIN_FAILED entry and return the recent failure count."""
    operator = db.session.query(AdminOperator).filter_by(email=identifier).first()
    entry = audit_service.record(
        operator,
        "LOGIN_FAILED",
        reason,
        success=False,
        ip_address=ip_address,
        operator_email=identifier,
        now=now,
    )
    return get_recent_failed_attempts(identifier, now=entry.occurred_at)


def get_lockout_status(identifier: str, now=None) -> dict:
    """Public lockout view for the login form."""
    is_locked, seconds_remaining = is_account_locked(identifier, now=now)
    max_attempts = current_app.config.get("LOGIN_MAX_FAILED_ATTEMPTS", 10)
    failed = get_recent_failed_attempts(identifier, now=now)
    return {
        "locked": is_locked,
        "retry_after_seconds": seconds_remaining,
        "failed_attempts": failed,
        "attempts_remaining": max(0, max_attempts - failed),
    }
