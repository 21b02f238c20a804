# Overview: Flask API routes for operator administration, invites and the audit trail.

# backend/boxoffice/routes/admin.py
"""
Admin API Routes

Provides endpoints for:
- Operator management (list, create, profile, role, deactivate, reactivate, delete)
- Invites (create, list, revoke) and the public validate/accept pair
- Audit trail browsing and retention cleanup

SECURITY:
- Operator, invite and cleanup endpoints require super_admin
- Audit browsing requires admin
- Invite validate/accept are public; the invite code is the credential
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..errors import TicketingError
from ..models.auth import ROLE_SUPER_ADMIN
from ..services import audit_service, invite_service, maintenance_service, operator_service
from ..decorators import require_auth, require_role, error_response


admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")


# =============================================================================
# OPERATORS
# =============================================================================

@admin_bp.get("/operators")
@require_auth
@require_role(ROLE_SUPER_ADMIN)
def list_operators_route():
    try:
        include_inactive = request.args.get("include_inactive", "true").lower() == "true"
        operators = operator_service.list_operators(g.current_operator, include_inactive=include_inactive)
        return jsonify({"operators": [o.to_dict() for o in operators]})
    except TicketingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list operators")
        return jsonify({"error": "Internal server error"}), 500


@admin_bp.post("/operators")
@require_auth
@require_role(ROLE_SUPER_ADMIN)
def create_operator_route():
    try:
        operator = operator_service.create_operator(request.get_json(silent=True) or {}, g.current_operator)
        return jsonify({"operator": operator.to_dict()}), 201
    except TicketingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create operator")
        return jsonify({"error": "Internal server error"}), 500


@admin_bp.patch("/operators/<int:operator_id>")
@require_auth
@require_role(ROLE_SUPER_ADMIN)
def update_operator_route(operator_id: int):
    try:
        operator = operator_service.update_operator(operator_id, request.get_json(silent=True) or {}, g.current_operator)
        return jsonify({"operator": operator.to_dict()})
    except TicketingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update operator")
        return jsonify({"error": "Internal server error"}), 500


@admin_bp.patch("/operators/<int:operator_id>/role")
@require_auth
@require_role(ROLE_SUPER_ADMIN)
def update_role_route(operator_id: int):
    try:
        data = request.get_json(silent=True) or {}
        operator = operator_service.update_role(operator_id, data.get("role"), g.current_operator)
        return jsonify({"operator": operator.to_dict()})
    except TicketingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update operator role")
        return jsonify({"error": "Internal server error"}), 500


@admin_bp.post("/operators/<int:operator_id>/deactivate")
@require_auth
@require_role(ROLE_SUPER_ADMIN)
def deactivate_operator_route(operator_id: int):
    """Deactivate and log the operator out everywhere."""
    try:
        operator = operator_service.deactivate_operator(operator_id, g.current_operator)
        return jsonify({"operator": operator.to_dict(), "message": f"{operator.email} deactivated"})
    except TicketingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to deactivate operator")
        return jsonify({"error": "Internal server error"}), 500


@admin_bp.post("/operators/<int:operator_id>/reactivate")
@require_auth
@require_role(ROLE_SUPER_ADMIN)
def reactivate_operator_route(operator_id: int):
    try:
        operator = operator_service.reactivate_operator(operator_id, g.current_operator)
        return jsonify({"operator": operator.to_dict(), "message": f"{operator.email} reactivated"})
    except TicketingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to reactivate operator")
        return jsonify({"error": "Internal server error"}), 500


@admin_bp.delete("/operators/<int:operator_id>")
@require_auth
@require_role(ROLE_SUPER_ADMIN)
def delete_operator_route(operator_id: int):
    try:
        operator_service.delete_operator(operator_id, g.current_operator)
        return jsonify({"message": "Operator deleted"})
    except TicketingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete operator")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# INVITES
# =============================================================================

@admin_bp.get("/invites")
@require_auth
@require_role(ROLE_SUPER_ADMIN)
def list_invites_route():
    try:
        include_inactive = request.args.get("include_inactive", "false").lower() == "true"
        invites = invite_service.list_invites(g.current_operator, include_inactive=include_inactive)
        return jsonify({"invites": [i.to_dict(include_code=True) for i in invites]})
    except TicketingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list invites")
        return jsonify({"error": "Internal server error"}), 500


@admin_bp.post("/invites")
@require_auth
@require_role(ROLE_SUPER_ADMIN)
def create_invite_route():
    try:
        data = request.get_json(silent=True) or {}
        invite = invite_service.create_invite(
            data.get("email"),
            data.get("name"),
            data.get("role") or "admin",
            g.current_operator,
            member_id=data.get("member_id"),
        )
        return jsonify({"invite": invite.to_dict(include_code=True)}), 201
    except TicketingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create invite")
        return jsonify({"error": "Internal server error"}), 500


@admin_bp.delete("/invites/<int:invite_id>")
@require_auth
@require_role(ROLE_SUPER_ADMIN)
def revoke_invite_route(invite_id: int):
    try:
        invite = invite_service.revoke_invite(invite_id, g.current_operator)
        return jsonify({"invite": invite.to_dict()})
    except TicketingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to revoke invite")
        return jsonify({"error": "Internal server error"}), 500


@admin_bp.get("/invites/<code>")
def validate_invite_route(code: str):
    """Public: the accept form shows who the invite is for."""
    try:
        invite = invite_service.validate_invite(code)
        return jsonify({"invite": {"email": invite.email, "name": invite.name, "role": invite.role}})
    except TicketingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to validate invite")
        return jsonify({"error": "Internal server error"}), 500


@admin_bp.post("/invites/<code>/accept")
def accept_invite_route(code: str):
    """Public: set a password and become an operator. Sign in afterwards."""
    try:
        data = request.get_json(silent=True) or {}
        operator = invite_service.accept_invite(code, data.get("password") or "")
        return jsonify({"operator": operator.to_dict()}), 201
    except TicketingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to accept invite")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# AUDIT TRAIL
# =============================================================================

@admin_bp.get("/audit-log")
@require_auth
@require_role()
def list_audit_log_route():
    try:
        entries = audit_service.list_entries(
            limit=min(request.args.get("limit", 100, type=int), 1000),
            action=request.args.get("action"),
            operator_id=request.args.get("operator_id", type=int),
        )
        return jsonify({"entries": [e.to_dict() for e in entries]})
    except Exception:
        current_app.logger.exception("Failed to list audit log")
        return jsonify({"error": "Internal server error"}), 500


@admin_bp.post("/audit-log/cleanup")
@require_auth
@require_role(ROLE_SUPER_ADMIN)
def cleanup_audit_log_route():
    try:
        data = request.get_json(silent=True) or {}
        deleted = maintenance_service.cleanup_audit_log(
            retention_days=data.get("retention_days"),
            actor=g.current_operator,
        )
        return jsonify({"deleted": deleted})
    except TicketingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to clean up audit log")
        return jsonify({"error": "Internal server error"}), 500
