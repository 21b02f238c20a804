# Overview: Append-only audit trail for operator actions and authorization failures.

"""
Audit Trail

WHY: Every privileged mutation must be attributable, and the audit entry must
commit together with the mutation. Services call stage() inside their write
transaction so the entry and the effect land in the same COMMIT; a failure
between the two rolls both back.

Failures that have no mutation to ride along with (failed login, denied
action) are written with record(), which commits on its own.
"""

from __future__ import annotations

from ..extensions import db
from ..models import AuditLogEntry, AdminOperator
from boxoffice.time_utils import utcnow


def _entry(
    action: str,
    details: str | None,
    operator: AdminOperator | None,
    success: bool,
    ip_address: str | None,
    operator_email: str | None,
    now,
) -> AuditLogEntry:
    return AuditLogEntry(
        operator_id=operator.id if operator else None,
        operator_name=operator.name if operator else None,
        operator_email=operator.email if operator else operator_email,
        action=action,
        details=details,
        success=success,
        ip_address=ip_address,
        occurred_at=now or utcnow(),
    )


def stage(
    operator: AdminOperator | None,
    action: str,
    details: str | None = None,
    *,
    success: bool = True,
    ip_address: str | None = None,
    now=None,
) -> AuditLogEntry:
    """Add an entry to the current transaction without committing."""
    entry = _entry(action, details, operator, success, ip_address, None, now)
    db.session.add(entry)
    return entry


def record(
    operator: AdminOperator | None,
    action: str,
    details: str | None = None,
    *,
    success: bool = True,
    ip_address: str | None = None,
    operator_email: str | None = None,
    now=None,
) -> AuditLogEntry:
    """Write a standalone entry and commit it."""
    entry = _entry(action, details, operator, success, ip_address, operator_email, now)
    db.session.add(entry)
    db.session.commit()
    return entry


def list_entries(
    *,
    limit: int = 100,
    action: str | None = None,
    operator_id: int | None = None,
) -> list[AuditLogEntry]:
    """Newest first."""
    query = db.session.query(AuditLogEntry)
    if action:
        query = query.filter(AuditLogEntry.action == action)
    if operator_id is not None:
        query = query.filter(AuditLogEntry.operator_id == operator_id)
    return (
        query.order_by(AuditLogEntry.occurred_at.desc(), AuditLogEntry.id.desc())
        .limit(limit)
        .all()
    )
