# Overview: Operator account management (provisioning, role, deactivate/reactivate, delete).

"""
Operator Management

RULES:
- Every operation here requires super_admin.
- A super_admin account is never a valid target for deactivation, deletion
  or demotion; the refusal is InsufficientRole with reason
  "protected_account" so the admin UI can tell it apart from a role denial.
- An operator cannot deactivate or delete their own account.
- Profile edits (name, email) are allowed on yourself and on admins, never
  on another super_admin.
- Deactivation and deletion revoke every live session of the target in the
  same transaction as the account change.
"""

from __future__ import annotations

from sqlalchemy import update

from ..errors import ErrorKind, TicketingError
from ..extensions import db
from ..models import AdminOperator, OperatorSession, Invite
from ..models.auth import ROLE_SUPER_ADMIN
from boxoffice.time_utils import utcnow
from . import audit_service, auth_service, permission_service, session_service


def _get_target(operator_id: int) -> AdminOperator:
    operator = db.session.get(AdminOperator, operator_id)
    if operator is None:
        raise TicketingError(
            ErrorKind.NOT_FOUND,
            "Operator not found or already deleted",
            details={"operator_id": operator_id},
        )
    return operator


def _refuse_protected(target: AdminOperator, actor: AdminOperator, action: str) -> None:
    if target.is_super_admin:
        audit_service.record(
            actor,
            "ACCESS_DENIED",
            f"{action} refused: {target.email} is a super admin",
            success=False,
        )
        raise TicketingError(
            ErrorKind.INSUFFICIENT_ROLE,
            "Super admin accounts cannot be modified",
            details={"reason": "protected_account", "operator_id": target.id},
        )


def _refuse_self(target: AdminOperator, actor: AdminOperator, message: str) -> None:
    if target.id == actor.id:
        raise TicketingError(ErrorKind.VALIDATION_FAILED, message, details={"reason": "self_target"})


def _clean_name(value) -> str:
    name = value.strip() if isinstance(value, str) else ""
    if not name:
        raise TicketingError(ErrorKind.VALIDATION_FAILED, "name is required", details={"field": "name"})
    return name


def ensure_email_available(email: str) -> None:
    if db.session.query(AdminOperator.id).filter_by(email=email).first():
        raise TicketingError(
            ErrorKind.CONFLICT,
            "An operator with this email already exists",
            details={"field": "email"},
        )


def list_operators(actor: AdminOperator, *, include_inactive: bool = True) -> list[AdminOperator]:
    permission_service.require_role(actor, ROLE_SUPER_ADMIN, action="list operators")
    query = db.session.query(AdminOperator)
    if not include_inactive:
        query = query.filter(AdminOperator.is_active.is_(True))
    return query.order_by(AdminOperator.created_at, AdminOperator.id).all()


def get_operator(operator_id: int) -> AdminOperator:
    return _get_target(operator_id)


def create_operator(data: dict, actor: AdminOperator | None) -> AdminOperator:
    """
    Direct provisioning.

    actor=None is reserved for the bootstrap CLI, which creates the first
    super_admin before anyone can sign in.
    """
    if actor is not None:
        permission_service.require_role(actor, ROLE_SUPER_ADMIN, action="create operator")

    name = _clean_name(data.get("name"))
    email = auth_service.normalize_email(data.get("email"))
    role = permission_service.validate_role(data.get("role") or "admin")
    ensure_email_available(email)

    operator = AdminOperator(
        name=name,
        email=email,
        password_hash=auth_service.hash_password(data.get("password") or ""),
        role=role,
        is_active=True,
        member_id=data.get("member_id"),
        created_by_operator_id=actor.id if actor else None,
    )
    db.session.add(operator)
    db.session.flush()
    audit_service.stage(actor, "OPERATOR_CREATED", f"Created {role} {email}")
    db.session.commit()
    return operator


def update_operator(operator_id: int, data: dict, actor: AdminOperator) -> AdminOperator:
    """
    Edit an operator's name or email. Role and status have their own operations.

    A super_admin may edit their own profile but not another super_admin's.
    """
    permission_service.require_role(actor, ROLE_SUPER_ADMIN, action="update operator")
    target = _get_target(operator_id)
    if target.id != actor.id:
        _refuse_protected(target, actor, "Profile change")

    if "name" not in data and "email" not in data:
        raise TicketingError(ErrorKind.VALIDATION_FAILED, "Nothing to update")

    changes = {}
    if "name" in data:
        changes["name"] = _clean_name(data.get("name"))
    if "email" in data:
        email = auth_service.normalize_email(data.get("email"))
        if email != target.email:
            ensure_email_available(email)
            changes["email"] = email
    if not changes:
        return target

    summary = ", ".join(f"{field} {getattr(target, field)} -> {value}" for field, value in sorted(changes.items()))
    for field, value in changes.items():
        setattr(target, field, value)
    audit_service.stage(actor, "OPERATOR_UPDATED", f"{target.email}: {summary}")
    db.session.commit()
    return target


def update_role(operator_id: int, role: str, actor: AdminOperator) -> AdminOperator:
    permission_service.require_role(actor, ROLE_SUPER_ADMIN, action="change operator role")
    role = permission_service.validate_role(role)
    target = _get_target(operator_id)
    _refuse_self(target, actor, "You cannot change your own role")
    _refuse_protected(target, actor, "Role change")

    previous = target.role
    target.role = role
    audit_service.stage(actor, "OPERATOR_ROLE_CHANGED", f"{target.email}: {previous} -> {role}")
    db.session.commit()
    return target


def deactivate_operator(operator_id: int, actor: AdminOperator, *, now=None) -> AdminOperator:
    permission_service.require_role(actor, ROLE_SUPER_ADMIN, action="deactivate operator")
    now = now or utcnow()
    target = _get_target(operator_id)
    _refuse_self(target, actor, "You cannot deactivate your own account")
    _refuse_protected(target, actor, "Deactivation")

    won = db.session.execute(
        update(AdminOperator)
        .where(AdminOperator.id == target.id, AdminOperator.is_active.is_(True))
        .values(is_active=False)
        .execution_options(synchronize_session=False)
    ).rowcount == 1
    if not won:
        db.session.rollback()
        raise TicketingError(
            ErrorKind.CONFLICT,
            "Operator is already deactivated",
            details={"operator_id": target.id},
        )

    revoked = session_service.revoke_all_operator_sessions(
        target.id, "Account deactivated", now=now, commit=False
    )
    audit_service.stage(
        actor,
        "OPERATOR_DEACTIVATED",
        f"Deactivated {target.email} ({revoked} session(s) revoked)",
        now=now,
    )
    db.session.commit()
    db.session.refresh(target)
    return target


def reactivate_operator(operator_id: int, actor: AdminOperator) -> AdminOperator:
    permission_service.require_role(actor, ROLE_SUPER_ADMIN, action="reactivate operator")
    target = _get_target(operator_id)
    _refuse_protected(target, actor, "Reactivation")
    if target.is_active:
        raise TicketingError(
            ErrorKind.CONFLICT,
            "Operator is already active",
            details={"operator_id": target.id},
        )

    target.is_active = True
    audit_service.stage(actor, "OPERATOR_REACTIVATED", f"Reactivated {target.email}")
    db.session.commit()
    return target


def delete_operator(operator_id: int, actor: AdminOperator) -> None:
    """Hard delete. Audit entries keep the operator's name and email."""
    permission_service.require_role(actor, ROLE_SUPER_ADMIN, action="delete operator")
    target = _get_target(operator_id)
    _refuse_self(target, actor, "You cannot delete your own account")
    _refuse_protected(target, actor, "Deletion")

    email = target.email
    db.session.query(OperatorSession).filter_by(operator_id=target.id).delete(synchronize_session=False)
    db.session.query(AdminOperator).filter_by(created_by_operator_id=target.id).update(
        {"created_by_operator_id": None}, synchronize_session=False
    )
    db.session.query(Invite).filter_by(created_by_operator_id=target.id).update(
        {"created_by_operator_id": None}, synchronize_session=False
    )
    db.session.query(Invite).filter_by(accepted_operator_id=target.id).update(
        {"accepted_operator_id": None}, synchronize_session=False
    )
    db.session.delete(target)
    audit_service.stage(actor, "OPERATOR_DELETED", f"Deleted {email}")
    db.session.commit()
