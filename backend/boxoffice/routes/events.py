# Overview: Flask API routes for events, ticket tiers and public availability.

# backend/boxoffice/routes/events.py
"""
Event and ticket tier routes.

Public:  GET /api/events, GET /api/events/<id>/availability
Admin:   event and tier creation, event and tier edits, capacity changes
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..errors import TicketingError
from ..services import event_service, inventory_service
from ..decorators import require_auth, require_role, error_response


events_bp = Blueprint("events", __name__, url_prefix="/api/events")


def _event_with_tiers(event) -> dict:
    data = event.to_dict()
    data["tiers"] = [tier.to_dict() for tier in event.tiers]
    return data


@events_bp.get("")
def list_events_route():
    """Published events with their tiers and remaining tickets."""
    try:
        events = event_service.list_events(published_only=True)
        return jsonify({"events": [_event_with_tiers(e) for e in events]})
    except Exception:
        current_app.logger.exception("Failed to list events")
        return jsonify({"error": "Internal server error"}), 500


@events_bp.get("/<int:event_id>/availability")
def availability_route(event_id: int):
    try:
        return jsonify(inventory_service.event_availability(event_id))
    except TicketingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to read event availability")
        return jsonify({"error": "Internal server error"}), 500


@events_bp.get("/all")
@require_auth
@require_role()
def list_all_events_route():
    """Admin view, including unpublished events."""
    try:
        events = event_service.list_events(published_only=False)
        return jsonify({"events": [_event_with_tiers(e) for e in events]})
    except Exception:
        current_app.logger.exception("Failed to list events")
        return jsonify({"error": "Internal server error"}), 500


@events_bp.post("")
@require_auth
@require_role()
def create_event_route():
    try:
        event = event_service.create_event(request.get_json(silent=True) or {}, g.current_operator)
        return jsonify({"event": _event_with_tiers(event)}), 201
    except TicketingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create event")
        return jsonify({"error": "Internal server error"}), 500


@events_bp.patch("/<int:event_id>")
@require_auth
@require_role()
def update_event_route(event_id: int):
    try:
        event = event_service.update_event(event_id, request.get_json(silent=True) or {}, g.current_operator)
        return jsonify({"event": _event_with_tiers(event)})
    except TicketingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update event")
        return jsonify({"error": "Internal server error"}), 500


@events_bp.post("/<int:event_id>/publish")
@require_auth
@require_role()
def publish_event_route(event_id: int):
    try:
        data = request.get_json(silent=True) or {}
        event = event_service.set_published(event_id, bool(data.get("is_published", True)), g.current_operator)
        return jsonify({"event": event.to_dict()})
    except TicketingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to publish event")
        return jsonify({"error": "Internal server error"}), 500


@events_bp.post("/<int:event_id>/tiers")
@require_auth
@require_role()
def create_tier_route(event_id: int):
    try:
        tier = event_service.create_tier(event_id, request.get_json(silent=True) or {}, g.current_operator)
        return jsonify({"tier": tier.to_dict()}), 201
    except TicketingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create ticket tier")
        return jsonify({"error": "Internal server error"}), 500


@events_bp.patch("/tiers/<int:tier_id>")
@require_auth
@require_role()
def update_tier_route(tier_id: int):
    try:
        data = request.get_json(silent=True) or {}
        tier = None
        if "capacity" in data:
            tier = event_service.update_tier_capacity(tier_id, data.get("capacity"), g.current_operator)

        fields = {k: v for k, v in data.items() if k != "capacity"}
        if fields or tier is None:
            tier = event_service.update_tier(tier_id, fields, g.current_operator)
        return jsonify({"tier": tier.to_dict()})
    except TicketingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update ticket tier")
        return jsonify({"error": "Internal server error"}), 500
