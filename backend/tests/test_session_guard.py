"""
Session & authorization guard tests.

Verifies:
- Credentials, deactivation and lockout at login
- Default sessions expire after 30 idle minutes and slide on activity
- Remember-me sessions keep their fixed ceiling
- Revocation (logout, deactivation) ends sessions immediately
- Role checks fail closed and denials are audited
"""

from datetime import datetime, timedelta

import pytest

from boxoffice.errors import ErrorKind, TicketingError
from boxoffice.models import AuditLogEntry, OperatorSession
from boxoffice.models.auth import ROLE_ADMIN, ROLE_SUPER_ADMIN
from boxoffice.services import auth_service, login_throttle_service, permission_service, session_service
from conftest import PASSWORD


T0 = datetime(2026, 11, 2, 9, 0)


class TestLogin:

    def test_login_opens_session(self, db_session, admin):
        operator, session, token = auth_service.login("Treasurer@Choir.rw ", PASSWORD, now=T0)

        assert operator.id == admin.id
        assert session.expires_at == T0 + timedelta(minutes=30)
        assert session.remember is False
        assert session.token_hash != token
        assert db_session.query(AuditLogEntry).filter_by(action="LOGIN").count() == 1

    def test_wrong_password(self, db_session, admin):
        with pytest.raises(TicketingError) as exc:
            auth_service.login(admin.email, "wrong-password", now=T0)
        assert exc.value.kind == ErrorKind.INVALID_CREDENTIALS

    def test_unknown_email_looks_like_wrong_password(self, db_session):
        with pytest.raises(TicketingError) as exc:
            auth_service.login("nobody@choir.rw", PASSWORD, now=T0)
        assert exc.value.kind == ErrorKind.INVALID_CREDENTIALS

    def test_deactivated_operator_cannot_login(self, db_session, make_operator):
        make_operator("former@choir.rw", is_active=False)

        with pytest.raises(TicketingError) as exc:
            auth_service.login("former@choir.rw", PASSWORD, now=T0)
        assert exc.value.kind == ErrorKind.ACCOUNT_DEACTIVATED

    def test_lockout_after_repeated_failures(self, db_session, admin):
        for i in range(5):
            with pytest.raises(TicketingError):
                auth_service.login(admin.email, "wrong-password", now=T0 + timedelta(seconds=i))

        # Even the right password is refused while locked
        with pytest.raises(TicketingError) as exc:
            auth_service.login(admin.email, PASSWORD, now=T0 + timedelta(minutes=1))
        assert exc.value.kind == ErrorKind.ACCOUNT_LOCKED
        assert exc.value.details["retry_after_seconds"] > 0

        status = login_throttle_service.get_lockout_status(admin.email, now=T0 + timedelta(minutes=1))
        assert status["locked"] is True
        assert status["attempts_remaining"] == 0

    def test_lockout_ends_after_window(self, db_session, admin):
        for i in range(5):
            with pytest.raises(TicketingError):
                auth_service.login(admin.email, "wrong-password", now=T0 + timedelta(seconds=i))

        operator, _, _ = auth_service.login(admin.email, PASSWORD, now=T0 + timedelta(minutes=20))
        assert operator.id == admin.id

    def test_success_resets_failure_count(self, db_session, admin):
        for i in range(3):
            with pytest.raises(TicketingError):
                auth_service.login(admin.email, "wrong-password", now=T0 + timedelta(seconds=i))
        auth_service.login(admin.email, PASSWORD, now=T0 + timedelta(seconds=10))

        assert login_throttle_service.get_recent_failed_attempts(admin.email, now=T0 + timedelta(seconds=11)) == 0


class TestSessionLifetime:

    def test_idle_default_session_expires(self, db_session, admin):
        _, _, token = auth_service.login(admin.email, PASSWORD, now=T0)

        with pytest.raises(TicketingError) as exc:
            session_service.validate_session(token, now=T0 + timedelta(minutes=31))
        assert exc.value.kind == ErrorKind.SESSION_EXPIRED

    def test_activity_slides_default_session(self, db_session, admin):
        _, _, token = auth_service.login(admin.email, PASSWORD, now=T0)

        session_service.validate_session(token, now=T0 + timedelta(minutes=20))
        context = session_service.validate_session(token, now=T0 + timedelta(minutes=45))

        assert context.operator.id == admin.id
        assert context.session.expires_at == T0 + timedelta(minutes=75)

    def test_remember_session_has_fixed_ceiling(self, db_session, admin):
        _, session, token = auth_service.login(admin.email, PASSWORD, remember=True, now=T0)
        ceiling = T0 + timedelta(days=7)
        assert session.expires_at == ceiling

        extended = session_service.extend_session(token, now=T0 + timedelta(days=6))
        assert extended.expires_at == ceiling

        with pytest.raises(TicketingError) as exc:
            session_service.validate_session(token, now=ceiling + timedelta(seconds=1))
        assert exc.value.kind == ErrorKind.SESSION_EXPIRED

    def test_extend_refreshes_default_session(self, db_session, admin):
        _, _, token = auth_service.login(admin.email, PASSWORD, now=T0)

        extended = session_service.extend_session(token, now=T0 + timedelta(minutes=29))
        assert extended.expires_at == T0 + timedelta(minutes=59)

    def test_unknown_token(self, db_session):
        with pytest.raises(TicketingError) as exc:
            session_service.validate_session("not-a-real-token")
        assert exc.value.kind == ErrorKind.SESSION_EXPIRED


class TestRevocation:

    def test_logout_revokes(self, db_session, admin):
        _, _, token = auth_service.login(admin.email, PASSWORD, now=T0)

        assert session_service.revoke_session(token, now=T0) is True
        assert session_service.revoke_session(token, now=T0) is False

        with pytest.raises(TicketingError) as exc:
            session_service.validate_session(token, now=T0 + timedelta(minutes=1))
        assert exc.value.kind == ErrorKind.SESSION_EXPIRED

    def test_deactivated_operator_session_is_revoked_on_use(self, db_session, admin):
        _, session, token = auth_service.login(admin.email, PASSWORD, now=T0)
        admin.is_active = False
        db_session.commit()

        with pytest.raises(TicketingError) as exc:
            session_service.validate_session(token, now=T0 + timedelta(minutes=1))
        assert exc.value.kind == ErrorKind.ACCOUNT_DEACTIVATED

        db_session.refresh(session)
        assert session.is_revoked is True

    def test_revoke_all_operator_sessions(self, db_session, admin):
        auth_service.login(admin.email, PASSWORD, now=T0)
        auth_service.login(admin.email, PASSWORD, remember=True, now=T0)

        assert session_service.revoke_all_operator_sessions(admin.id, now=T0) == 2
        live = db_session.query(OperatorSession).filter_by(operator_id=admin.id, is_revoked=False).count()
        assert live == 0

    def test_cleanup_removes_old_dead_sessions(self, db_session, admin):
        _, _, token = auth_service.login(admin.email, PASSWORD, now=T0)
        session_service.revoke_session(token, now=T0)

        assert session_service.cleanup_expired_sessions(older_than_days=30, now=T0 + timedelta(days=10)) == 0
        assert session_service.cleanup_expired_sessions(older_than_days=30, now=T0 + timedelta(days=31)) == 1


class TestRoles:

    @pytest.mark.parametrize("role, required, allowed", [
        (ROLE_SUPER_ADMIN, ROLE_SUPER_ADMIN, True),
        (ROLE_SUPER_ADMIN, ROLE_ADMIN, True),
        (ROLE_ADMIN, ROLE_ADMIN, True),
        (ROLE_ADMIN, ROLE_SUPER_ADMIN, False),
        ("treasurer", ROLE_ADMIN, False),
        (None, ROLE_ADMIN, False),
    ])
    def test_role_satisfies(self, role, required, allowed):
        assert permission_service.role_satisfies(role, required) is allowed

    def test_denial_is_audited(self, db_session, admin):
        with pytest.raises(TicketingError) as exc:
            permission_service.require_role(admin, ROLE_SUPER_ADMIN, action="create invite")
        assert exc.value.kind == ErrorKind.INSUFFICIENT_ROLE

        entry = db_session.query(AuditLogEntry).filter_by(action="ACCESS_DENIED").one()
        assert entry.operator_id == admin.id
        assert entry.success is False
        assert "create invite" in entry.details

    def test_authorize_resolves_and_checks(self, db_session, super_admin):
        _, _, token = auth_service.login(super_admin.email, PASSWORD, now=T0)

        context = permission_service.authorize(token, ROLE_SUPER_ADMIN, now=T0 + timedelta(minutes=5))
        assert context.operator.id == super_admin.id

    def test_authorize_renews_even_when_role_fails(self, db_session, admin):
        _, session, token = auth_service.login(admin.email, PASSWORD, now=T0)

        with pytest.raises(TicketingError):
            permission_service.authorize(token, ROLE_SUPER_ADMIN, now=T0 + timedelta(minutes=10))

        db_session.refresh(session)
        assert session.expires_at == T0 + timedelta(minutes=40)

    def test_inactive_operator_fails_closed(self, db_session, make_operator):
        former = make_operator("former@choir.rw", is_active=False)

        with pytest.raises(TicketingError) as exc:
            permission_service.require_role(former, ROLE_ADMIN)
        assert exc.value.kind == ErrorKind.SESSION_EXPIRED
