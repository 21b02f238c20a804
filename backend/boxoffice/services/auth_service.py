# Overview: Password hashing and operator credential checks.

"""
Operator Authentication

WHY: Every action must be attributable. Uses bcrypt for secure password
hashing and validates password strength.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor from BCRYPT_ROUNDS, 12 by default)
- Minimum 8 characters required
- Must contain uppercase, lowercase, digit, and special char
- Session tokens managed separately (see session_service.py)
- A deactivated account with a wrong password reports InvalidCredentials,
  never AccountDeactivated, so the account state is not disclosed
"""

import re

import bcrypt
from flask import current_app

from ..errors import ErrorKind, TicketingError
from ..extensions import db
from ..models import AdminOperator
from boxoffice.time_utils import utcnow
from . import audit_service, login_throttle_service, session_service


EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def validate_password_strength(password: str) -> None:
    """
    Validate password meets strength requirements.

    Raises TicketingError(ValidationFailed) if requirements not met.
    """
    problems = []
    if not isinstance(password, str) or len(password) < 8:
        problems.append("Password must be at least 8 characters long")
    else:
        if not re.search(r'[A-Z]', password):
            problems.append("Password must contain at least one uppercase letter")
        if not re.search(r'[a-z]', password):
            problems.append("Password must contain at least one lowercase letter")
        if not re.search(r'\d', password):
            problems.append("Password must contain at least one digit")
        if not re.search(r"[!@#$%^&*(),.'\":{}|<>_\-]", password):
            problems.append("Password must contain at least one special character")

    if problems:
        raise TicketingError(
            ErrorKind.VALIDATION_FAILED,
            problems[0],
            details={"field": "password", "problems": problems},
        )


def normalize_email(email: str | None) -> str:
    value = email.strip().lower() if isinstance(email, str) else ""
    if not EMAIL_RE.match(value):
        raise TicketingError(
            ErrorKind.VALIDATION_FAILED,
            "A valid email address is required",
            details={"field": "email"},
        )
    return value


def hash_password(password: str) -> str:
    """Validate strength, then hash with bcrypt."""
    validate_password_strength(password)
    rounds = current_app.config.get("BCRYPT_ROUNDS", 12)
    hashed = bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt(rounds=rounds))
    return hashed.decode('utf-8')  # Store as string in database


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify password against bcrypt hash.

    bcrypt.checkpw() is timing-safe; a malformed stored hash never verifies.
    """
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def authenticate(email: str, password: str) -> AdminOperator:
    """
    Check credentials and return the operator.

    Raises InvalidCredentials or AccountDeactivated.
    """
    operator = db.session.query(AdminOperator).filter(
        AdminOperator.email == (email or "").strip().lower()
    ).first()

    if not operator or not verify_password(password, operator.password_hash):
        raise TicketingError(ErrorKind.INVALID_CREDENTIALS, "Invalid email or password")

    if not operator.is_active:
        raise TicketingError(ErrorKind.ACCOUNT_DEACTIVATED, "This account has been deactivated")

    return operator


def login(
    email: str,
    password: str,
    remember: bool = False,
    *,
    ip_address: str | None = None,
    user_agent: str | None = None,
    now=None,
):
    """
    Authenticate and open a session.

    Returns (operator, session, plaintext_token). Failed attempts are written
    to the audit trail as LOGIN_FAILED and feed the lockout counter.
    """
    now = now or utcnow()
    identifier = (email or "").strip().lower()

    if not identifier or not password:
        raise TicketingError(ErrorKind.VALIDATION_FAILED, "email and password required")

    is_locked, seconds_remaining = login_throttle_service.is_account_locked(identifier, now=now)
    if is_locked:
        raise TicketingError(
            ErrorKind.ACCOUNT_LOCKED,
            "Account temporarily locked due to too many failed login attempts",
            details={"retry_after_seconds": seconds_remaining},
        )

    try:
        operator = authenticate(identifier, password)
    except TicketingError as exc:
        login_throttle_service.record_failed_attempt(
            identifier,
            reason=exc.message,
            ip_address=ip_address,
            now=now,
        )
        raise

    operator.last_login_at = now
    session, token = session_service.create_session(
        operator.id,
        remember=remember,
        user_agent=user_agent,
        ip_address=ip_address,
        now=now,
        commit=False,
    )
    audit_service.stage(
        operator,
        "LOGIN",
        "Admin logged in" + (" (remember me)" if remember else ""),
        ip_address=ip_address,
        now=now,
    )
    db.session.commit()

    return operator, session, token
