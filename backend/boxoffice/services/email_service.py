# Overview: Fire-and-forget confirmation email requests to the external email collaborator.

"""
Confirmation email dispatch.

The order engine calls send_order_confirmation() after a confirmation has
committed. The request is handed to a small worker pool and the caller
returns immediately; whatever happens to the email (collaborator down, bad
response) is logged and never reaches the order.

Backends (EMAIL_BACKEND):
- "log": write the payload summary to the app logger (development default)
- "http": POST the JSON payload to EMAIL_ENDPOINT_URL

The QR image itself is rendered by the collaborator from `qr_code_data`.
"""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor

import httpx
from flask import current_app

from ..models import Order


_executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="boxoffice-email")


def build_confirmation_payload(order: Order) -> dict:
    event = order.event
    return {
        "to": order.buyer_email,
        "customer_name": order.buyer_name,
        "event_title": event.title,
        "event_date": event.event_date.isoformat() if event.event_date else None,
        "event_time": event.event_time,
        "event_location": event.location,
        "tickets": [
            {
                "tier_name": line.tier_name,
                "quantity": line.quantity,
                "price_each": line.unit_price,
            }
            for line in order.lines
        ],
        "total": order.total,
        "currency": current_app.config.get("CURRENCY", "RWF"),
        "tx_ref": order.reference,
        "payment_ref": order.payment_ref,
        "qr_code_data": order.checkin_token,
    }


def _deliver_http(app, payload: dict) -> bool:
    url = app.config.get("EMAIL_ENDPOINT_URL")
    if not url:
        app.logger.info("Confirmation email skipped (EMAIL_ENDPOINT_URL not configured)")
        return False

    with httpx.Client(timeout=app.config.get("EMAIL_TIMEOUT_SECONDS", 10)) as client:
        response = client.post(url, json=payload)

    if response.status_code >= 400:
        app.logger.warning(
            "Confirmation email failed for %s: HTTP %s %s",
            payload.get("tx_ref"),
            response.status_code,
            response.text[:200],
        )
        return False

    app.logger.info("Confirmation email sent for %s", payload.get("tx_ref"))
    return True


def _deliver_log(app, payload: dict) -> bool:
    app.logger.info(
        "Confirmation email for %s to %s (%d ticket line(s), total %s)",
        payload.get("tx_ref"),
        payload.get("to"),
        len(payload.get("tickets", [])),
        payload.get("total"),
    )
    return True


BACKENDS = {
    "log": _deliver_log,
    "http": _deliver_http,
}


def _deliver(app, payload: dict) -> bool:
    """Run one delivery; every failure is logged and swallowed here."""
    with app.app_context():
        backend = BACKENDS.get(app.config.get("EMAIL_BACKEND", "log"), _deliver_log)
        try:
            return backend(app, payload)
        except Exception:
            app.logger.exception("Confirmation email dispatch failed for %s", payload.get("tx_ref"))
            return False


def send_order_confirmation(order: Order) -> Future | bool:
    """
    Enqueue the confirmation email for a confirmed order.

    Returns the Future (or the delivery result when EMAIL_DISPATCH_SYNC is
    set). Never raises.
    """
    app = current_app._get_current_object()
    try:
        payload = build_confirmation_payload(order)
    except Exception:
        app.logger.exception("Could not build confirmation email for order %s", order.id)
        return False

    if app.config.get("EMAIL_DISPATCH_SYNC"):
        return _deliver(app, payload)
    return _executor.submit(_deliver, app, payload)
