from __future__ import annotations

from ..extensions import db
from boxoffice.time_utils import to_utc_z


ROLE_ADMIN = "admin"
ROLE_SUPER_ADMIN = "super_admin"
OPERATOR_ROLES = (ROLE_ADMIN, ROLE_SUPER_ADMIN)


class AdminOperator(db.Model):
    """
    Authenticated admin-panel user.

    WHY: Every privileged action must be attributable. No shared logins.
    A super_admin account can never be deactivated or deleted through the
    operator service.
    """
    __tablename__ = "admin_operators"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    email = db.Column(db.String(255), nullable=False, unique=True, index=True)

    # Bcrypt hashed password
    password_hash = db.Column(db.String(255), nullable=False)

    role = db.Column(db.String(16), nullable=False, default=ROLE_ADMIN)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    # Optional link to the choir member record this operator was promoted from
    member_id = db.Column(db.String(64), nullable=True)

    created_by_operator_id = db.Column(db.Integer, db.ForeignKey("admin_operators.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    last_login_at = db.Column(db.DateTime(timezone=True), nullable=True)

    @property
    def is_super_admin(self) -> bool:
        return self.role == ROLE_SUPER_ADMIN

    def __repr__(self) -> str:
        return f"<AdminOperator id={self.id} email={self.email!r} role={self.role}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "is_active": self.is_active,
            "member_id": self.member_id,
            "created_by_operator_id": self.created_by_operator_id,
            "created_at": to_utc_z(self.created_at),
            "last_login_at": to_utc_z(self.last_login_at) if self.last_login_at else None,
        }


class OperatorSession(db.Model):
    """
    Operator session token (hashed).

    Plaintext tokens are only ever returned to the client at login; the
    database keeps the SHA-256 hash. `remember` selects the lifetime policy:
    short sliding sessions vs. a long fixed ceiling.
    """
    __tablename__ = "operator_sessions"
    __table_args__ = (
        db.Index("ix_operator_sessions_operator_revoked", "operator_id", "is_revoked"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    operator_id = db.Column(db.Integer, db.ForeignKey("admin_operators.id", ondelete="CASCADE"), nullable=False, index=True)
    token_hash = db.Column(db.String(64), nullable=False, unique=True, index=True)

    remember = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    last_used_at = db.Column(db.DateTime(timezone=True), nullable=False)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)

    is_revoked = db.Column(db.Boolean, nullable=False, default=False)
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    revoked_reason = db.Column(db.String(255), nullable=True)

    ip_address = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.String(512), nullable=True)

    operator = db.relationship("AdminOperator", backref=db.backref("sessions", lazy=True, passive_deletes=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "operator_id": self.operator_id,
            "remember": self.remember,
            "created_at": to_utc_z(self.created_at),
            "last_used_at": to_utc_z(self.last_used_at),
            "expires_at": to_utc_z(self.expires_at),
            "is_revoked": self.is_revoked,
        }


class Invite(db.Model):
    """
    One-time code that provisions a new operator.

    Single use: `used` flips exactly once, through a conditional UPDATE, in
    the same transaction that creates the operator. Expiry is absolute
    (created_at + INVITE_TTL_DAYS).
    """
    __tablename__ = "operator_invites"
    __table_args__ = (
        db.Index("ix_operator_invites_email_used", "email", "used"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), nullable=False)
    name = db.Column(db.String(200), nullable=False)
    role = db.Column(db.String(16), nullable=False, default=ROLE_ADMIN)
    member_id = db.Column(db.String(64), nullable=True)

    code = db.Column(db.String(16), nullable=False, unique=True, index=True)

    created_by_operator_id = db.Column(db.Integer, db.ForeignKey("admin_operators.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)

    used = db.Column(db.Boolean, nullable=False, default=False)
    used_at = db.Column(db.DateTime(timezone=True), nullable=True)
    accepted_operator_id = db.Column(db.Integer, db.ForeignKey("admin_operators.id"), nullable=True)

    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_by = db.relationship("AdminOperator", foreign_keys=[created_by_operator_id])

    def to_dict(self, include_code: bool = False) -> dict:
        data = {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "role": self.role,
            "member_id": self.member_id,
            "created_by_operator_id": self.created_by_operator_id,
            "created_at": to_utc_z(self.created_at),
            "expires_at": to_utc_z(self.expires_at),
            "used": self.used,
            "used_at": to_utc_z(self.used_at),
            "revoked_at": to_utc_z(self.revoked_at),
        }
        if include_code:
            data["code"] = self.code
        return data
