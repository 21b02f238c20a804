# Overview: Role checks for operators; the single gate in front of privileged mutations.

"""
Role-Based Authorization

ROLES (tagged variant, not a permission table):
- super_admin satisfies every requirement
- admin satisfies only admin-level requirements

DESIGN PRINCIPLES:
- Fail closed: unknown roles satisfy nothing
- Log denials only: successful checks are not written to the audit trail;
  the mutation they guard writes its own entry
"""

from __future__ import annotations

from ..errors import ErrorKind, TicketingError
from ..models import AdminOperator
from ..models.auth import ROLE_ADMIN, ROLE_SUPER_ADMIN, OPERATOR_ROLES
from . import audit_service, session_service


ROLE_RANK = {
    ROLE_ADMIN: 1,
    ROLE_SUPER_ADMIN: 2,
}


def role_satisfies(role: str | None, required_role: str) -> bool:
    if role not in ROLE_RANK or required_role not in ROLE_RANK:
        return False
    return ROLE_RANK[role] >= ROLE_RANK[required_role]


def validate_role(role: str | None) -> str:
    if role not in OPERATOR_ROLES:
        raise TicketingError(
            ErrorKind.VALIDATION_FAILED,
            f"role must be one of: {', '.join(OPERATOR_ROLES)}",
            details={"field": "role"},
        )
    return role


def require_role(
    operator: AdminOperator | None,
    required_role: str,
    *,
    action: str | None = None,
    ip_address: str | None = None,
) -> AdminOperator:
    """
    Raise InsufficientRole unless the operator may act at required_role.

    Denials are recorded as ACCESS_DENIED audit entries.
    """
    if operator is None or not operator.is_active:
        raise TicketingError(ErrorKind.SESSION_EXPIRED, "Authentication required")

    if not role_satisfies(operator.role, required_role):
        audit_service.record(
            operator,
            "ACCESS_DENIED",
            f"{action or 'action'} requires {required_role}, operator is {operator.role}",
            success=False,
            ip_address=ip_address,
        )
        raise TicketingError(
            ErrorKind.INSUFFICIENT_ROLE,
            f"This action requires the {required_role} role",
            details={"required_role": required_role, "role": operator.role},
        )
    return operator


def authorize(
    token: str | None,
    required_role: str | None = ROLE_ADMIN,
    *,
    action: str | None = None,
    ip_address: str | None = None,
    now=None,
) -> session_service.SessionContext:
    """
    Resolve a session token and check its operator's role.

    A successful session lookup is qualifying activity: default sessions are
    renewed even when the role check then fails. required_role=None checks
    the session only; route decorators stack the role gate after it.

    Raises SessionExpired, AccountDeactivated or InsufficientRole.
    """
    if not token:
        raise TicketingError(ErrorKind.SESSION_EXPIRED, "Authentication required")
    context = session_service.validate_session(token, now=now)
    if required_role is not None:
        require_role(context.operator, required_role, action=action, ip_address=ip_address)
    return context
