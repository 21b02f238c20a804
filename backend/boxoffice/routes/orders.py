# Overview: Flask API routes for ticket orders; buyer checkout and operator order desk.

# backend/boxoffice/routes/orders.py
"""
Order API routes

Buyer (no session):
- POST /api/orders                               create a pending order
- GET  /api/orders/lookup/<reference>?email=     receipt / ticket view
- POST /api/orders/lookup/<reference>/cancel     cancel an unpaid order

Operators (admin role):
- list, stats, detail, confirm, cancel, mark-used, sweep expired
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..errors import ErrorKind, TicketingError
from ..services import order_service
from ..decorators import require_auth, require_role, error_response


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


def _buyer_order(reference: str, email: str | None):
    """Resolve an order for a buyer; a wrong email looks like a missing order."""
    email = order_service.normalize_email(email)
    order = order_service.get_order_by_reference(reference)
    if not email or order.buyer_email != email:
        raise TicketingError(ErrorKind.NOT_FOUND, "Order not found", details={"reference": reference})
    return order


@orders_bp.post("")
def create_order_route():
    """
    Body:
    {
        "event_id": 1,
        "buyer": {"name": "...", "email": "...", "phone": "..."},
        "items": [{"tier_id": 3, "quantity": 2}],
        "payment_method": "momo",
        "promo_code": "SOPAB12CD"
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        event_id = data.get("event_id")
        if not isinstance(event_id, int):
            return error_response(TicketingError(ErrorKind.VALIDATION_FAILED, "event_id required"))

        order = order_service.create_order(
            data.get("buyer"),
            event_id,
            data.get("items"),
            payment_method=data.get("payment_method"),
            promo_code=data.get("promo_code"),
        )
        return jsonify({"order": order.to_dict()}), 201

    except TicketingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/lookup/<reference>")
def buyer_lookup_route(reference: str):
    try:
        order = _buyer_order(reference, request.args.get("email"))
        return jsonify({"order": order.to_dict(include_token=True)})
    except TicketingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to look up order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/lookup/<reference>/cancel")
def buyer_cancel_route(reference: str):
    try:
        data = request.get_json(silent=True) or {}
        order = _buyer_order(reference, data.get("email"))
        order = order_service.cancel_order(
            order.id,
            data.get("reason") or "Cancelled by buyer",
            buyer_email=data.get("email"),
        )
        return jsonify({"order": order.to_dict()})
    except TicketingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("")
@require_auth
@require_role()
def list_orders_route():
    try:
        event_id = request.args.get("event_id", type=int)
        limit = min(request.args.get("limit", 100, type=int), 500)
        orders = order_service.list_orders(status=request.args.get("status"), event_id=event_id, limit=limit)
        return jsonify({"orders": [o.to_dict() for o in orders], "count": len(orders)})
    except TicketingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list orders")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/stats")
@require_auth
@require_role()
def order_stats_route():
    try:
        return jsonify(order_service.get_order_stats(request.args.get("event_id", type=int)))
    except Exception:
        current_app.logger.exception("Failed to compute order stats")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>")
@require_auth
@require_role()
def get_order_route(order_id: int):
    try:
        return jsonify({"order": order_service.get_order(order_id).to_dict(include_token=True)})
    except TicketingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/confirm")
@require_auth
@require_role()
def confirm_order_route(order_id: int):
    """Manual confirmation (cash or bank transfer seen by the treasurer)."""
    try:
        data = request.get_json(silent=True) or {}
        order = order_service.confirm_order(
            order_id,
            data.get("payment_ref"),
            amount=data.get("amount"),
            actor=g.current_operator,
        )
        return jsonify({"order": order.to_dict(include_token=True)})
    except TicketingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to confirm order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/cancel")
@require_auth
@require_role()
def cancel_order_route(order_id: int):
    try:
        data = request.get_json(silent=True) or {}
        order = order_service.cancel_order(order_id, data.get("reason"), actor=g.current_operator)
        return jsonify({"order": order.to_dict()})
    except TicketingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/mark-used")
@require_auth
@require_role()
def mark_used_route(order_id: int):
    try:
        order = order_service.mark_used(order_id, g.current_operator)
        return jsonify({"order": order.to_dict()})
    except TicketingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to mark order used")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/sweep-expired")
@require_auth
@require_role()
def sweep_expired_route():
    try:
        cancelled = order_service.sweep_expired_orders(actor=g.current_operator)
        return jsonify({"cancelled_order_ids": cancelled, "count": len(cancelled)})
    except Exception:
        current_app.logger.exception("Failed to sweep expired orders")
        return jsonify({"error": "Internal server error"}), 500
