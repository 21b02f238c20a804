# Overview: Request decorators for API routes; session auth, role gates and scanner access.

import hmac
from functools import wraps

from flask import request, jsonify, g, current_app

from .errors import ErrorKind, TicketingError
from .models.auth import ROLE_ADMIN
from .services import permission_service


def error_response(exc: TicketingError):
    """JSON body + status for an expected failure. Routes branch on kind, not text."""
    return jsonify(exc.to_dict()), exc.http_status


def bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1].strip() or None


def _is_authenticated() -> bool:
    return getattr(g, "current_operator", None) is not None


def require_auth(f):
    """
    Require a live operator session.

    Sets the following Flask g attributes:
    - g.current_operator: the authenticated AdminOperator
    - g.operator_session: the OperatorSession the token resolved to
    - g.session_token: the plaintext bearer token (for logout/extend)

    Each authenticated request is qualifying activity: default sessions
    slide forward, remember-me sessions keep their fixed expiry.

    Returns 401 SessionExpired for a missing, unknown, revoked or expired
    token and 403 AccountDeactivated when the operator was deactivated.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = bearer_token()
        try:
            context = permission_service.authorize(token, None, ip_address=request.remote_addr)
        except TicketingError as e:
            return error_response(e)

        g.current_operator = context.operator
        g.operator_session = context.session
        g.session_token = token

        return f(*args, **kwargs)

    return decorated_function


def require_role(required_role: str = ROLE_ADMIN):
    """
    Require the authenticated operator to satisfy required_role.

    Use below @require_auth. Denials are written to the audit trail.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return error_response(TicketingError(ErrorKind.SESSION_EXPIRED, "Authentication required"))

            try:
                permission_service.require_role(
                    g.current_operator,
                    required_role,
                    action=f"{request.method} {request.path}",
                    ip_address=request.remote_addr,
                )
            except TicketingError as e:
                return error_response(e)

            return f(*args, **kwargs)

        return decorated_function
    return decorator


def require_scanner(f):
    """
    Door devices: an operator session, or the shared X-Scanner-Pin.

    The pin only opens the door routes; which events a scan may admit is
    still decided by the staff member's assignments.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        pin = request.headers.get("X-Scanner-Pin")
        expected = current_app.config.get("SCANNER_PIN")
        if pin and expected and hmac.compare_digest(pin.encode("utf-8"), str(expected).encode("utf-8")):
            g.current_operator = None
            return f(*args, **kwargs)

        token = bearer_token()
        if not token:
            return error_response(TicketingError(ErrorKind.SESSION_EXPIRED, "Scanner authentication required"))
        try:
            context = permission_service.authorize(token, None, ip_address=request.remote_addr)
        except TicketingError as e:
            return error_response(e)

        g.current_operator = context.operator
        g.operator_session = context.session
        return f(*args, **kwargs)

    return decorated_function
