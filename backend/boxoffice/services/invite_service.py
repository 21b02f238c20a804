# Overview: One-time invites that provision a new operator account.

"""
Invite Flow

LIFECYCLE:
    created (super_admin) --accept--> used (operator created)
    created --revoke--> revoked
    created --[created_at + INVITE_TTL_DAYS]--> expired

SINGLE USE:
- Acceptance flips `used` with a conditional UPDATE (used = false -> true)
  and creates the operator in the same transaction. Two concurrent
  acceptances of one code: one wins, the other gets InviteAlreadyUsed and
  creates nothing.
- The password is hashed before the write transaction opens so bcrypt never
  runs while the database write lock is held.
"""

from __future__ import annotations

import secrets
from datetime import timedelta

from flask import current_app
from sqlalchemy import update

from ..errors import ErrorKind, TicketingError
from ..extensions import db
from ..models import AdminOperator, Invite
from ..models.auth import ROLE_SUPER_ADMIN
from boxoffice.time_utils import utcnow
from . import audit_service, auth_service, operator_service, permission_service
from .concurrency import begin_write, compare_and_swap, run_with_retry


# No 0/O or 1/I, the code is read aloud and typed by hand
INVITE_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
INVITE_CODE_LENGTH = 8


def _ttl() -> timedelta:
    return timedelta(days=current_app.config.get("INVITE_TTL_DAYS", 7))


def generate_code() -> str:
    while True:
        code = "".join(secrets.choice(INVITE_CODE_ALPHABET) for _ in range(INVITE_CODE_LENGTH))
        if not db.session.query(Invite.id).filter_by(code=code).first():
            return code


def _normalize_code(code: str | None) -> str:
    return (code or "").strip().upper()


def _find(code: str) -> Invite:
    invite = db.session.query(Invite).filter_by(code=_normalize_code(code)).first()
    if invite is None or invite.revoked_at is not None:
        raise TicketingError(ErrorKind.INVITE_NOT_FOUND, "Invite code not found")
    return invite


def _check_usable(invite: Invite, now) -> None:
    if invite.used:
        raise TicketingError(
            ErrorKind.INVITE_ALREADY_USED,
            "This invite has already been used",
            details={"invite_id": invite.id},
        )
    if invite.expires_at <= now:
        raise TicketingError(
            ErrorKind.INVITE_EXPIRED,
            "This invite has expired; ask for a new one",
            details={"invite_id": invite.id},
        )


def _active_invites_query(now):
    return db.session.query(Invite).filter(
        Invite.used.is_(False),
        Invite.revoked_at.is_(None),
        Invite.expires_at > now,
    )


def create_invite(
    email: str,
    name: str,
    role: str,
    issuer: AdminOperator,
    member_id: str | None = None,
    *,
    now=None,
) -> Invite:
    """
    Issue a one-time invite (super_admin only).

    Raises ValidationFailed, InsufficientRole, or Conflict when the email
    already belongs to an operator or already has an active invite.
    """
    permission_service.require_role(issuer, ROLE_SUPER_ADMIN, action="create invite")
    now = now or utcnow()

    email = auth_service.normalize_email(email)
    name = (name or "").strip()
    if not name:
        raise TicketingError(ErrorKind.VALIDATION_FAILED, "name is required", details={"field": "name"})
    role = permission_service.validate_role(role)

    operator_service.ensure_email_available(email)
    if _active_invites_query(now).filter(Invite.email == email).first():
        raise TicketingError(
            ErrorKind.CONFLICT,
            "An active invite already exists for this email",
            details={"field": "email"},
        )

    invite = Invite(
        email=email,
        name=name,
        role=role,
        member_id=member_id,
        code=generate_code(),
        created_by_operator_id=issuer.id,
        created_at=now,
        expires_at=now + _ttl(),
        used=False,
    )
    db.session.add(invite)
    audit_service.stage(issuer, "INVITE_CREATED", f"Invited {email} as {role}", now=now)
    db.session.commit()
    return invite


def validate_invite(code: str, *, now=None) -> Invite:
    """Read-only check used by the accept form before asking for a password."""
    invite = _find(code)
    _check_usable(invite, now or utcnow())
    return invite


def accept_invite(code: str, password: str, *, now=None) -> AdminOperator:
    """
    Consume an invite and create its operator.

    Raises InviteNotFound, InviteExpired, InviteAlreadyUsed, ValidationFailed
    (weak password) or Conflict (email taken since the invite was issued).
    """
    accepted_at = now or utcnow()
    validate_invite(code, now=accepted_at)
    password_hash = auth_service.hash_password(password)

    def _op():
        begin_write()
        invite = _find(code)
        _check_usable(invite, accepted_at)

        won = compare_and_swap(
            update(Invite)
            .where(
                Invite.id == invite.id,
                Invite.used.is_(False),
                Invite.revoked_at.is_(None),
            )
            .values(used=True, used_at=accepted_at)
        )
        if not won:
            raise TicketingError(
                ErrorKind.INVITE_ALREADY_USED,
                "This invite has already been used",
                details={"invite_id": invite.id},
            )

        operator_service.ensure_email_available(invite.email)
        operator = AdminOperator(
            name=invite.name,
            email=invite.email,
            password_hash=password_hash,
            role=invite.role,
            is_active=True,
            member_id=invite.member_id,
            created_by_operator_id=invite.created_by_operator_id,
        )
        db.session.add(operator)
        db.session.flush()

        db.session.execute(
            update(Invite)
            .where(Invite.id == invite.id)
            .values(accepted_operator_id=operator.id)
            .execution_options(synchronize_session=False)
        )
        audit_service.stage(operator, "INVITE_ACCEPTED", f"Joined as {operator.role} via invite", now=accepted_at)
        db.session.commit()
        return operator

    return run_with_retry(_op)


def revoke_invite(invite_id: int, actor: AdminOperator, *, now=None) -> Invite:
    permission_service.require_role(actor, ROLE_SUPER_ADMIN, action="revoke invite")
    now = now or utcnow()

    invite = db.session.get(Invite, invite_id)
    if invite is None or invite.revoked_at is not None:
        raise TicketingError(ErrorKind.INVITE_NOT_FOUND, "Invite not found")

    won = compare_and_swap(
        update(Invite)
        .where(Invite.id == invite.id, Invite.used.is_(False), Invite.revoked_at.is_(None))
        .values(revoked_at=now)
    )
    if not won:
        db.session.rollback()
        raise TicketingError(
            ErrorKind.INVITE_ALREADY_USED,
            "This invite has already been used",
            details={"invite_id": invite.id},
        )

    audit_service.stage(actor, "INVITE_REVOKED", f"Revoked invite for {invite.email}", now=now)
    db.session.commit()
    db.session.refresh(invite)
    return invite


def list_invites(actor: AdminOperator, *, include_inactive: bool = False, now=None) -> list[Invite]:
    permission_service.require_role(actor, ROLE_SUPER_ADMIN, action="list invites")
    query = _active_invites_query(now or utcnow()) if not include_inactive else db.session.query(Invite)
    return query.order_by(Invite.created_at.desc(), Invite.id.desc()).all()
