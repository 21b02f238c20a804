# Overview: Flask API routes for door staff and their event assignments.

# backend/boxoffice/routes/staff.py
"""Event staff management (admin role)."""

from flask import Blueprint, request, jsonify, current_app, g

from ..errors import TicketingError
from ..services import staff_service
from ..decorators import require_auth, require_role, error_response


staff_bp = Blueprint("staff", __name__, url_prefix="/api/staff")


@staff_bp.get("")
@require_auth
@require_role()
def list_staff_route():
    try:
        staff = staff_service.list_staff(event_id=request.args.get("event_id", type=int))
        return jsonify({"staff": [s.to_dict() for s in staff]})
    except Exception:
        current_app.logger.exception("Failed to list staff")
        return jsonify({"error": "Internal server error"}), 500


@staff_bp.post("")
@require_auth
@require_role()
def create_staff_route():
    try:
        staff = staff_service.create_staff(request.get_json(silent=True) or {}, g.current_operator)
        return jsonify({"staff": staff.to_dict()}), 201
    except TicketingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create staff")
        return jsonify({"error": "Internal server error"}), 500


@staff_bp.patch("/<int:staff_id>")
@require_auth
@require_role()
def update_staff_route(staff_id: int):
    try:
        data = request.get_json(silent=True) or {}
        if "is_active" in data:
            staff_service.set_status(staff_id, bool(data.pop("is_active")), g.current_operator)
        staff = staff_service.update_staff(staff_id, data, g.current_operator) if data else staff_service.get_staff(staff_id)
        return jsonify({"staff": staff.to_dict()})
    except TicketingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update staff")
        return jsonify({"error": "Internal server error"}), 500


@staff_bp.delete("/<int:staff_id>")
@require_auth
@require_role()
def delete_staff_route(staff_id: int):
    try:
        staff_service.delete_staff(staff_id, g.current_operator)
        return jsonify({"message": "Staff member deleted"})
    except TicketingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete staff")
        return jsonify({"error": "Internal server error"}), 500


@staff_bp.post("/<int:staff_id>/events/<int:event_id>")
@require_auth
@require_role()
def assign_event_route(staff_id: int, event_id: int):
    try:
        staff = staff_service.assign_event(staff_id, event_id, g.current_operator)
        return jsonify({"staff": staff.to_dict()})
    except TicketingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to assign staff")
        return jsonify({"error": "Internal server error"}), 500


@staff_bp.delete("/<int:staff_id>/events/<int:event_id>")
@require_auth
@require_role()
def unassign_event_route(staff_id: int, event_id: int):
    try:
        staff = staff_service.unassign_event(staff_id, event_id, g.current_operator)
        return jsonify({"staff": staff.to_dict()})
    except TicketingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to unassign staff")
        return jsonify({"error": "Internal server error"}), 500
