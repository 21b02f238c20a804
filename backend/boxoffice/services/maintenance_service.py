# Overview: Periodic housekeeping; audit retention, expired sessions and stale reservations.

from __future__ import annotations

from datetime import timedelta

from flask import current_app

from ..extensions import db
from ..models import AuditLogEntry, AdminOperator
from ..models.auth import ROLE_SUPER_ADMIN
from boxoffice.time_utils import utcnow
from . import audit_service, order_service, permission_service, session_service


def cleanup_audit_log(
    *,
    retention_days: int | None = None,
    actor: AdminOperator | None = None,
    now=None,
) -> int:
    """
    Delete audit entries older than retention_days (AUDIT_RETENTION_DAYS).

    The cleanup itself is recorded, in the same transaction as the delete.
    """
    if actor is not None:
        permission_service.require_role(actor, ROLE_SUPER_ADMIN, action="clean up audit log")
    now = now or utcnow()
    if retention_days is None:
        retention_days = current_app.config.get("AUDIT_RETENTION_DAYS", 90)

    cutoff = now - timedelta(days=retention_days)
    deleted = db.session.query(AuditLogEntry).filter(
        AuditLogEntry.occurred_at < cutoff
    ).delete(synchronize_session=False)
    audit_service.stage(
        actor,
        "AUDIT_LOG_CLEANUP",
        f"Removed {deleted} entries older than {retention_days} days",
        now=now,
    )
    db.session.commit()
    return deleted


def run_housekeeping(*, now=None) -> dict:
    """Everything the scheduled maintenance job does, in one call."""
    now = now or utcnow()
    swept = order_service.sweep_expired_orders(now=now)
    sessions = session_service.cleanup_expired_sessions(now=now)
    audit = cleanup_audit_log(now=now)
    return {
        "orders_cancelled": len(swept),
        "sessions_deleted": sessions,
        "audit_entries_deleted": audit,
    }
