# Overview: Flask API routes for promo codes.

# backend/boxoffice/routes/promotions.py
"""Promo code management (create, edit, activate, delete, stats) and the public checkout preview."""

from flask import Blueprint, request, jsonify, current_app, g

from ..errors import ErrorKind, TicketingError
from ..services import promo_service
from ..decorators import require_auth, require_role, error_response


promotions_bp = Blueprint("promotions", __name__, url_prefix="/api/promotions")


@promotions_bp.post("/check")
def check_promo_route():
    """Preview a discount at checkout. Usage is only counted when the order is created."""
    try:
        data = request.get_json(silent=True) or {}
        subtotal = data.get("subtotal")
        if not isinstance(subtotal, int) or isinstance(subtotal, bool) or subtotal < 0:
            return error_response(TicketingError(ErrorKind.VALIDATION_FAILED, "subtotal must be a non-negative integer"))
        promo, discount = promo_service.evaluate(data.get("code"), subtotal, data.get("event_id"))
        return jsonify({"code": promo.code, "discount": discount})
    except TicketingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to check promo code")
        return jsonify({"error": "Internal server error"}), 500


@promotions_bp.get("")
@require_auth
@require_role()
def list_promos_route():
    try:
        return jsonify({"promo_codes": [p.to_dict() for p in promo_service.list_promos()]})
    except Exception:
        current_app.logger.exception("Failed to list promo codes")
        return jsonify({"error": "Internal server error"}), 500


@promotions_bp.post("")
@require_auth
@require_role()
def create_promo_route():
    try:
        promo = promo_service.create_promo(request.get_json(silent=True) or {}, g.current_operator)
        return jsonify({"promo_code": promo.to_dict()}), 201
    except TicketingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create promo code")
        return jsonify({"error": "Internal server error"}), 500


@promotions_bp.post("/<int:promo_id>/active")
@require_auth
@require_role()
def set_promo_active_route(promo_id: int):
    try:
        data = request.get_json(silent=True) or {}
        promo = promo_service.set_active(promo_id, bool(data.get("is_active")), g.current_operator)
        return jsonify({"promo_code": promo.to_dict()})
    except TicketingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update promo code")
        return jsonify({"error": "Internal server error"}), 500


@promotions_bp.get("/stats")
@require_auth
@require_role()
def promo_stats_route():
    try:
        return jsonify(promo_service.promo_stats())
    except Exception:
        current_app.logger.exception("Failed to compute promo stats")
        return jsonify({"error": "Internal server error"}), 500


@promotions_bp.patch("/<int:promo_id>")
@require_auth
@require_role()
def update_promo_route(promo_id: int):
    try:
        promo = promo_service.update_promo(promo_id, request.get_json(silent=True) or {}, g.current_operator)
        return jsonify({"promo_code": promo.to_dict()})
    except TicketingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update promo code")
        return jsonify({"error": "Internal server error"}), 500


@promotions_bp.delete("/<int:promo_id>")
@require_auth
@require_role()
def delete_promo_route(promo_id: int):
    try:
        promo_service.delete_promo(promo_id, g.current_operator)
        return jsonify({"message": "Promo code deleted"})
    except TicketingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete promo code")
        return jsonify({"error": "Internal server error"}), 500
