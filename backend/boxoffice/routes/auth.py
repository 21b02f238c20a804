# Overview: Flask API routes for operator login, logout and session keep-alive.

# backend/boxoffice/routes/auth.py
"""
Authentication API routes

SECURITY FEATURES:
- Login throttling and temporary lockout after repeated failures
- Failed and successful logins written to the audit trail
- Bearer session tokens; default sessions slide, remember-me sessions don't
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..errors import TicketingError
from ..services import audit_service, auth_service, login_throttle_service, session_service
from ..decorators import require_auth, error_response


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/login")
def login_route():
    """
    Authenticate an operator and create a session token.

    Body: {"email", "password", "remember": bool}
    The token goes in the Authorization header of every admin request.
    """
    try:
        data = request.get_json(silent=True) or {}
        operator, session, token = auth_service.login(
            data.get("email"),
            data.get("password"),
            remember=bool(data.get("remember")),
            ip_address=request.remote_addr,
            user_agent=request.headers.get("User-Agent"),
        )
        return jsonify({
            "operator": operator.to_dict(),
            "token": token,
            "session": session.to_dict(),
            "message": "Login successful",
        }), 200

    except TicketingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to login operator")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.get("/lockout-status/<path:identifier>")
def lockout_status_route(identifier: str):
    try:
        return jsonify(login_throttle_service.get_lockout_status(identifier.strip().lower()))
    except Exception:
        current_app.logger.exception("Failed to read lockout status")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/logout")
@require_auth
def logout_route():
    try:
        session_service.revoke_session(g.session_token, "Operator logout")
        audit_service.record(g.current_operator, "LOGOUT", "Admin logged out", ip_address=request.remote_addr)
        return jsonify({"message": "Logged out"})
    except Exception:
        current_app.logger.exception("Failed to logout operator")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.get("/me")
@require_auth
def me_route():
    return jsonify({
        "operator": g.current_operator.to_dict(),
        "session": g.operator_session.to_dict(),
    })


@auth_bp.post("/extend")
@require_auth
def extend_route():
    """Explicit keep-alive. Remember-me sessions keep their fixed expiry."""
    try:
        session = session_service.extend_session(g.session_token)
        return jsonify({"session": session.to_dict()})
    except TicketingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to extend session")
        return jsonify({"error": "Internal server error"}), 500
