# Overview: Operator session tokens; issuance, validation, sliding renewal and revocation.

"""
Session Token Management Service

WHY: Secure session management with automatic expiry and revocation.
Tokens are cryptographically secure, hashed in database, and time-limited.

TWO LIFETIME POLICIES:
- Default sessions live SESSION_DEFAULT_LIFETIME_MINUTES and slide forward on
  every authorized request, so an active operator is never interrupted.
- "Remember me" sessions live SESSION_REMEMBER_LIFETIME_DAYS from login and
  are never extended by activity; the ceiling is fixed at creation.

SECURITY FEATURES:
- Cryptographically secure random tokens (32 bytes)
- Tokens hashed with SHA-256 before storage (fast, one-way)
- Renewal is a conditional UPDATE that only matches a live, unrevoked
  session, so a racing request cannot revive an expired one
- Revocable on logout, deactivation and deletion
"""

import hashlib
import secrets
from dataclasses import dataclass
from datetime import timedelta

from flask import current_app
from sqlalchemy import update

from ..errors import ErrorKind, TicketingError
from ..extensions import db
from ..models import OperatorSession, AdminOperator
from boxoffice.time_utils import utcnow
from .concurrency import compare_and_swap


@dataclass
class SessionContext:
    """Operator identity plus the session record it was resolved from."""
    operator: AdminOperator
    session: OperatorSession


def default_lifetime() -> timedelta:
    return timedelta(minutes=current_app.config.get("SESSION_DEFAULT_LIFETIME_MINUTES", 30))


def remember_lifetime() -> timedelta:
    return timedelta(days=current_app.config.get("SESSION_REMEMBER_LIFETIME_DAYS", 7))


def generate_token() -> str:
    """64-character hex string (32 bytes of entropy). Never stored."""
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    """SHA-256 is sufficient for high-entropy tokens."""
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def create_session(
    operator_id: int,
    remember: bool = False,
    *,
    user_agent: str | None = None,
    ip_address: str | None = None,
    now=None,
    commit: bool = True,
) -> tuple[OperatorSession, str]:
    """
    Create new session token for an operator.

    Returns (session_record, plaintext_token).
    Client receives plaintext_token, database stores only the hash.
    """
    now = now or utcnow()
    plaintext_token = generate_token()

    lifetime = remember_lifetime() if remember else default_lifetime()

    session = OperatorSession(
        operator_id=operator_id,
        token_hash=hash_token(plaintext_token),
        remember=bool(remember),
        created_at=now,
        last_used_at=now,
        expires_at=now + lifetime,
        user_agent=user_agent,
        ip_address=ip_address,
        is_revoked=False,
    )
    db.session.add(session)
    if commit:
        db.session.commit()

    return session, plaintext_token


def _find_session(token: str | None) -> OperatorSession | None:
    if not token:
        return None
    return db.session.query(OperatorSession).filter_by(token_hash=hash_token(token)).first()


def _revoke(session: OperatorSession, reason: str, now) -> None:
    session.is_revoked = True
    session.revoked_at = now
    session.revoked_reason = reason


def _renew(session: OperatorSession, now) -> bool:
    """Slide a default session forward. Remember sessions only note activity."""
    values = {"last_used_at": now}
    if not session.remember:
        values["expires_at"] = now + default_lifetime()

    won = compare_and_swap(
        update(OperatorSession)
        .where(
            OperatorSession.id == session.id,
            OperatorSession.is_revoked.is_(False),
            OperatorSession.expires_at > now,
        )
        .values(**values)
    )
    if won:
        db.session.commit()
        db.session.refresh(session)
    else:
        db.session.rollback()
    return won


def validate_session(token: str | None, *, now=None, renew: bool = True) -> SessionContext:
    """
    Resolve a token into a SessionContext.

    Raises:
    - SessionExpired: unknown, revoked or expired token
    - AccountDeactivated: the operator was deactivated since login
      (the session is revoked on the spot)

    Counts as qualifying activity when renew=True.
    """
    now = now or utcnow()
    session = _find_session(token)

    if not session or session.is_revoked:
        raise TicketingError(ErrorKind.SESSION_EXPIRED, "Invalid or expired session")

    if session.expires_at <= now:
        raise TicketingError(
            ErrorKind.SESSION_EXPIRED,
            "Session expired, please sign in again",
            details={"expired_at": session.expires_at.isoformat()},
        )

    operator = session.operator
    if not operator or not operator.is_active:
        _revoke(session, "Operator account deactivated", now)
        db.session.commit()
        raise TicketingError(ErrorKind.ACCOUNT_DEACTIVATED, "This account has been deactivated")

    if renew and not _renew(session, now):
        raise TicketingError(ErrorKind.SESSION_EXPIRED, "Session expired, please sign in again")

    return SessionContext(operator=operator, session=session)


def extend_session(token: str | None, *, now=None) -> OperatorSession:
    """
    Explicit keep-alive.

    Default sessions get a fresh lifetime from now; remember sessions come
    back unchanged apart from last_used_at.
    """
    context = validate_session(token, now=now, renew=True)
    return context.session


def revoke_session(token: str | None, reason: str = "Operator logout", *, now=None) -> bool:
    """Returns True if a live session was revoked, False if not found."""
    session = _find_session(token)
    if not session or session.is_revoked:
        return False

    _revoke(session, reason, now or utcnow())
    db.session.commit()
    return True


def revoke_all_operator_sessions(
    operator_id: int,
    reason: str = "Revoke all sessions",
    *,
    now=None,
    commit: bool = True,
) -> int:
    """Revoke every live session of an operator. Returns count revoked."""
    now = now or utcnow()
    result = db.session.execute(
        update(OperatorSession)
        .where(
            OperatorSession.operator_id == operator_id,
            OperatorSession.is_revoked.is_(False),
        )
        .values(is_revoked=True, revoked_at=now, revoked_reason=reason)
        .execution_options(synchronize_session=False)
    )
    if commit:
        db.session.commit()
    return result.rowcount


def cleanup_expired_sessions(*, older_than_days: int = 30, now=None) -> int:
    """
    Delete expired or revoked sessions older than the cutoff.

    Run this periodically (flask maintenance cleanup-sessions).
    """
    now = now or utcnow()
    cutoff = now - timedelta(days=older_than_days)

    deleted = db.session.query(OperatorSession).filter(
        db.or_(
            OperatorSession.expires_at < now,
            OperatorSession.is_revoked.is_(True),
        ),
        OperatorSession.created_at < cutoff,
    ).delete(synchronize_session=False)

    db.session.commit()
    return deleted
