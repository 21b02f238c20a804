from __future__ import annotations

from ..extensions import db
from boxoffice.time_utils import to_utc_z


class AuditLogEntry(db.Model):
    """
    Append-only record of privileged actions and authorization failures.

    WHY: Every mutation made through the admin panel must be attributable.
    Operator name/email are copied so entries survive operator deletion.

    IMMUTABLE: Never updated. Deleted only by the retention cleanup.
    """
    __tablename__ = "audit_log"
    __table_args__ = (
        db.Index("ix_audit_log_operator_action", "operator_id", "action"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Nullable for anonymous events (failed login for an unknown email)
    operator_id = db.Column(db.Integer, nullable=True, index=True)
    operator_name = db.Column(db.String(200), nullable=True)
    operator_email = db.Column(db.String(255), nullable=True)

    # LOGIN, LOGIN_FAILED, ORDER_CANCELLED, OPERATOR_DEACTIVATED, ...
    action = db.Column(db.String(64), nullable=False, index=True)
    details = db.Column(db.Text, nullable=True)
    success = db.Column(db.Boolean, nullable=False, default=True, index=True)

    ip_address = db.Column(db.String(45), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "operator_id": self.operator_id,
            "operator_name": self.operator_name,
            "operator_email": self.operator_email,
            "action": self.action,
            "details": self.details,
            "success": self.success,
            "ip_address": self.ip_address,
            "occurred_at": to_utc_z(self.occurred_at),
        }
