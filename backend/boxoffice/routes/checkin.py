# Overview: Flask API routes for the door scanner.

# backend/boxoffice/routes/checkin.py
"""
Check-in routes used by the scanner page.

The scanner first previews (verify) so staff can see who is at the door,
then admits (scan). Both take {"token": "<QR content>", "staff_id": N}.
"""

from flask import Blueprint, request, jsonify, current_app

from ..errors import ErrorKind, TicketingError
from ..services import checkin_service
from ..decorators import require_auth, require_role, require_scanner, error_response


checkin_bp = Blueprint("checkin", __name__, url_prefix="/api/checkin")


def _scan_input():
    data = request.get_json(silent=True) or {}
    staff_id = data.get("staff_id")
    if not isinstance(staff_id, int) or isinstance(staff_id, bool):
        raise TicketingError(ErrorKind.VALIDATION_FAILED, "staff_id required", details={"field": "staff_id"})
    return data.get("token"), staff_id


@checkin_bp.post("/verify")
@require_scanner
def verify_route():
    try:
        token, staff_id = _scan_input()
        result = checkin_service.verify(token, staff_id)
        return jsonify({"valid": True, "ticket": result.to_dict()})
    except TicketingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to verify ticket")
        return jsonify({"error": "Internal server error"}), 500


@checkin_bp.post("/scan")
@require_scanner
def scan_route():
    try:
        token, staff_id = _scan_input()
        result = checkin_service.check_in(token, staff_id)
        return jsonify({"admitted": True, "ticket": result.to_dict()})
    except TicketingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to check in ticket")
        return jsonify({"error": "Internal server error"}), 500


@checkin_bp.get("/scans")
@require_auth
@require_role()
def list_scans_route():
    try:
        scans = checkin_service.list_scans(
            staff_id=request.args.get("staff_id", type=int),
            event_id=request.args.get("event_id", type=int),
            limit=min(request.args.get("limit", 100, type=int), 500),
        )
        return jsonify({"scans": [s.to_dict() for s in scans]})
    except Exception:
        current_app.logger.exception("Failed to list scans")
        return jsonify({"error": "Internal server error"}), 500


@checkin_bp.get("/scan-counts")
@require_auth
@require_role()
def scan_counts_route():
    try:
        counts = checkin_service.scan_counts(event_id=request.args.get("event_id", type=int))
        return jsonify({"counts": {str(k): v for k, v in counts.items()}})
    except Exception:
        current_app.logger.exception("Failed to count scans")
        return jsonify({"error": "Internal server error"}), 500
