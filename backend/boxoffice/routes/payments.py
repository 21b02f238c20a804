# Overview: Flask API route for the payment gateway callback.

# backend/boxoffice/routes/payments.py
"""
Payment Webhook

The gateway reports "payment succeeded for reference R, amount A". This
route only matches R to a pending order and confirms it; reconciliation
with the gateway is out of scope.

Body: {"tx_ref": "SOP-...", "transaction_id": "...", "amount": 10500, "status": "successful"}
"""

import hmac

from flask import Blueprint, request, jsonify, current_app

from ..errors import ErrorKind, TicketingError
from ..services import order_service
from ..decorators import error_response


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


def _secret_ok() -> bool:
    expected = current_app.config.get("PAYMENT_WEBHOOK_SECRET")
    if not expected:
        return True
    presented = request.headers.get("X-Webhook-Secret") or ""
    return hmac.compare_digest(presented.encode("utf-8"), str(expected).encode("utf-8"))


@payments_bp.post("/webhook")
def payment_webhook_route():
    if not _secret_ok():
        current_app.logger.warning("Payment webhook rejected: bad secret from %s", request.remote_addr)
        return jsonify({"error": "Forbidden"}), 403

    try:
        data = request.get_json(silent=True) or {}
        status = data.get("status") or "successful"
        if not isinstance(status, str):
            return error_response(TicketingError(ErrorKind.VALIDATION_FAILED, "status must be a string"))
        status = status.lower()
        if status != "successful":
            # Failed and abandoned payments leave the order pending until the sweep
            current_app.logger.info("Ignoring %s payment for %s", status, data.get("tx_ref"))
            return jsonify({"message": "ignored", "status": status}), 200

        reference = data.get("tx_ref")
        payment_ref = data.get("transaction_id")
        if not reference or not payment_ref:
            return error_response(
                TicketingError(ErrorKind.VALIDATION_FAILED, "tx_ref and transaction_id are required")
            )

        amount = data.get("amount")
        order = order_service.confirm_payment(
            reference,
            str(payment_ref),
            amount if isinstance(amount, int) and not isinstance(amount, bool) else None,
        )
        return jsonify({"message": "confirmed", "order": order.to_dict()}), 200

    except TicketingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to process payment webhook")
        return jsonify({"error": "Internal server error"}), 500
