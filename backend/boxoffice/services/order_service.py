# Overview: Order engine; order state machine, inventory reservation and token minting.

"""
Order Engine

STATE MACHINE:
    pending   --confirm_order-->  confirmed  --admit (check-in)-->  used
    pending   --cancel_order / sweep-->  cancelled
    confirmed --cancel_order-->  cancelled   (inventory goes back to the ledger)

    used and cancelled are terminal.

CONCURRENCY:
- Every transition is a conditional UPDATE naming the expected current
  status. Exactly one of two racing transitions matches; the loser reloads
  the row and reports why (InvalidTransition / OrderExpired / AlreadyUsed).
- create_order runs the reservations, the promo usage and the order insert in
  one write transaction. Any failure rolls all of it back, so a partial order
  or an orphaned reservation can never be committed.
- Each order line is released at most once (released_at is claimed with its
  own conditional UPDATE), which makes cancellation and the expiry sweep safe
  to repeat or run concurrently.
- The confirmation email is dispatched after COMMIT, outside the write lock.
"""

from __future__ import annotations

import secrets
from datetime import timedelta

from flask import current_app
from sqlalchemy import update

from ..errors import ErrorKind, TicketingError
from ..extensions import db
from ..models import Event, TicketTier, Order, OrderLine, AdminOperator
from ..models.orders import (
    ORDER_PENDING,
    ORDER_CONFIRMED,
    ORDER_CANCELLED,
    ORDER_USED,
    ORDER_STATUSES,
    TERMINAL_STATUSES,
    PAYMENT_METHODS,
)
from ..models.auth import ROLE_ADMIN
from boxoffice.time_utils import utcnow
from . import audit_service, email_service, inventory_service, permission_service, promo_service, token_service
from .auth_service import EMAIL_RE
from .concurrency import begin_write, compare_and_swap, run_with_retry


REASON_EXPIRED = "Reservation expired"


def _pending_ttl() -> timedelta:
    return timedelta(minutes=current_app.config.get("PENDING_ORDER_TTL_MINUTES", 30))


def _not_found(order_id) -> TicketingError:
    return TicketingError(ErrorKind.NOT_FOUND, "Order not found", details={"order_id": order_id})


def generate_reference() -> str:
    """Buyer-visible order reference, also used as the gateway tx_ref."""
    return f"SOP-{secrets.token_hex(5).upper()}"


# ---------------------------------------------------------------------------
# Input validation
# ---------------------------------------------------------------------------

def _text(value, field: str) -> str:
    """Strip a free-text input. None reads as empty; other non-strings are rejected."""
    if value is None:
        return ""
    if not isinstance(value, str):
        raise TicketingError(
            ErrorKind.VALIDATION_FAILED,
            f"{field} must be a string",
            details={"field": field},
        )
    return value.strip()


def normalize_email(value) -> str:
    return _text(value, "email").lower()


def _validate_buyer(buyer: dict | None) -> dict:
    if buyer is not None and not isinstance(buyer, dict):
        raise TicketingError(ErrorKind.VALIDATION_FAILED, "buyer must be an object", details={"field": "buyer"})
    buyer = buyer or {}
    name = _text(buyer.get("name"), "name")
    email = normalize_email(buyer.get("email"))
    phone = _text(buyer.get("phone"), "phone") or None

    errors = {}
    if not name:
        errors["name"] = "Buyer name is required"
    if not EMAIL_RE.match(email):
        errors["email"] = "A valid email address is required"
    if errors:
        raise TicketingError(ErrorKind.VALIDATION_FAILED, "Invalid buyer details", details={"fields": errors})

    return {"name": name, "email": email, "phone": phone}


def _merge_line_items(line_items) -> dict[int, int]:
    """Validate line items and sum quantities per tier (tier_id -> quantity)."""
    if not line_items or not isinstance(line_items, list):
        raise TicketingError(ErrorKind.VALIDATION_FAILED, "At least one ticket is required")

    merged: dict[int, int] = {}
    for item in line_items:
        tier_id = item.get("tier_id") if isinstance(item, dict) else None
        quantity = item.get("quantity") if isinstance(item, dict) else None
        if not isinstance(tier_id, int) or isinstance(tier_id, bool):
            raise TicketingError(ErrorKind.VALIDATION_FAILED, "tier_id must be an integer", details={"item": item})
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
            raise TicketingError(
                ErrorKind.VALIDATION_FAILED,
                "quantity must be a positive integer",
                details={"item": item},
            )
        merged[tier_id] = merged.get(tier_id, 0) + quantity
    return merged


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------

def create_order(
    buyer: dict,
    event_id: int,
    line_items: list[dict],
    *,
    payment_method: str | None = None,
    promo_code: str | None = None,
    now=None,
) -> Order:
    """
    Reserve inventory for every line item and create a pending order.

    Raises ValidationFailed, NotFound, OutOfStock or ExceedsPerOrderLimit.
    Nothing is committed unless every reservation succeeded.
    """
    buyer = _validate_buyer(buyer)
    quantities = _merge_line_items(line_items)
    if payment_method is not None and payment_method not in PAYMENT_METHODS:
        raise TicketingError(
            ErrorKind.VALIDATION_FAILED,
            f"payment_method must be one of: {', '.join(PAYMENT_METHODS)}",
        )

    service_fee = current_app.config.get("ORDER_SERVICE_FEE", 0)

    def _op():
        created_at = now or utcnow()
        begin_write()

        event = db.session.get(Event, event_id)
        if event is None or not event.is_published:
            raise TicketingError(ErrorKind.NOT_FOUND, "Event not found", details={"event_id": event_id})

        lines = []
        # Fixed tier order keeps lock acquisition order stable across requests
        for tier_id in sorted(quantities):
            quantity = quantities[tier_id]
            tier = db.session.get(TicketTier, tier_id)
            if tier is None or tier.event_id != event.id:
                raise TicketingError(
                    ErrorKind.VALIDATION_FAILED,
                    "Ticket tier does not belong to this event",
                    details={"tier_id": tier_id, "event_id": event.id},
                )
            tier = inventory_service.reserve(tier_id, quantity)
            lines.append(
                OrderLine(
                    tier_id=tier.id,
                    tier_name=tier.name,
                    quantity=quantity,
                    unit_price=tier.unit_price,
                    line_total=tier.unit_price * quantity,
                )
            )

        subtotal = sum(line.line_total for line in lines)

        promo = None
        discount = 0
        if promo_code:
            promo, discount = promo_service.evaluate(promo_code, subtotal, event.id, now=created_at)
            promo_service.consume_use(promo.id)

        order = Order(
            reference=generate_reference(),
            event_id=event.id,
            buyer_name=buyer["name"],
            buyer_email=buyer["email"],
            buyer_phone=buyer["phone"],
            subtotal=subtotal,
            discount=discount,
            service_fee=service_fee,
            total=max(0, subtotal - discount) + service_fee,
            promo_code_id=promo.id if promo else None,
            payment_method=payment_method,
            status=ORDER_PENDING,
            created_at=created_at,
            expires_at=created_at + _pending_ttl(),
        )
        order.lines = lines
        db.session.add(order)

        db.session.commit()
        return order

    return run_with_retry(_op)


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------

def get_order(order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if order is None:
        raise _not_found(order_id)
    return order


def get_order_by_reference(reference: str) -> Order:
    order = db.session.query(Order).filter_by(reference=_text(reference, "reference").upper()).first()
    if order is None:
        raise TicketingError(ErrorKind.NOT_FOUND, "Order not found", details={"reference": reference})
    return order


def list_orders(*, status: str | None = None, event_id: int | None = None, limit: int = 100) -> list[Order]:
    query = db.session.query(Order)
    if status:
        if status not in ORDER_STATUSES:
            raise TicketingError(ErrorKind.VALIDATION_FAILED, f"Unknown order status: {status}")
        query = query.filter(Order.status == status)
    if event_id is not None:
        query = query.filter(Order.event_id == event_id)
    return query.order_by(Order.created_at.desc(), Order.id.desc()).limit(limit).all()


def get_order_stats(event_id: int | None = None) -> dict:
    """Counts per status and revenue from confirmed + used orders."""
    query = db.session.query(Order.status, db.func.count(Order.id), db.func.coalesce(db.func.sum(Order.total), 0))
    if event_id is not None:
        query = query.filter(Order.event_id == event_id)
    rows = query.group_by(Order.status).all()

    counts = {status: 0 for status in ORDER_STATUSES}
    revenue = 0
    for status, count, total in rows:
        counts[status] = count
        if status in (ORDER_CONFIRMED, ORDER_USED):
            revenue += int(total)

    return {"total": sum(counts.values()), **counts, "revenue": revenue}


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------

def _transition(order_id: int, from_status: str, **values) -> bool:
    return compare_and_swap(
        update(Order)
        .where(Order.id == order_id, Order.status == from_status)
        .values(**values)
    )


def _confirm_rejection(order: Order) -> TicketingError:
    if order.status == ORDER_CANCELLED:
        return TicketingError(
            ErrorKind.ORDER_EXPIRED,
            "This order was cancelled before payment was confirmed",
            details={"order_id": order.id, "status": order.status, "cancel_reason": order.cancel_reason},
        )
    return TicketingError(
        ErrorKind.INVALID_TRANSITION,
        f"Cannot confirm an order that is {order.status}",
        details={"order_id": order.id, "status": order.status},
    )


def confirm_order(
    order_id: int,
    payment_ref: str,
    *,
    amount: int | None = None,
    actor: AdminOperator | None = None,
    now=None,
) -> Order:
    """
    pending -> confirmed. Mints the check-in token.

    Raises NotFound, ValidationFailed, Conflict (payment reference already
    used by another order), OrderExpired (order was cancelled) or
    InvalidTransition (already confirmed or used).
    """
    payment_ref = _text(payment_ref, "payment_ref")
    if not payment_ref:
        raise TicketingError(ErrorKind.VALIDATION_FAILED, "payment_ref is required")
    if amount is not None and (not isinstance(amount, int) or isinstance(amount, bool) or amount < 0):
        raise TicketingError(
            ErrorKind.VALIDATION_FAILED,
            "amount must be a non-negative integer",
            details={"field": "amount"},
        )
    if actor is not None:
        permission_service.require_role(actor, ROLE_ADMIN, action="confirm order")

    def _op():
        confirmed_at = now or utcnow()
        begin_write()

        order = db.session.get(Order, order_id)
        if order is None:
            raise _not_found(order_id)

        clash = db.session.query(Order.id).filter(
            Order.payment_ref == payment_ref, Order.id != order.id
        ).first()
        if clash:
            raise TicketingError(
                ErrorKind.CONFLICT,
                "Payment reference already belongs to another order",
                details={"payment_ref": payment_ref},
            )

        token = token_service.mint_token(order.id, payment_ref, order.ticket_count)
        won = _transition(
            order.id,
            ORDER_PENDING,
            status=ORDER_CONFIRMED,
            confirmed_at=confirmed_at,
            payment_ref=payment_ref,
            amount_paid=amount,
            checkin_token=token,
        )
        db.session.refresh(order)
        if not won:
            raise _confirm_rejection(order)

        if actor is not None:
            audit_service.stage(
                actor,
                "ORDER_CONFIRMED",
                f"Confirmed order {order.reference} (payment {payment_ref})",
                now=confirmed_at,
            )
        db.session.commit()
        return order

    order = run_with_retry(_op)

    # Side effect after commit; its failure never touches the order
    email_service.send_order_confirmation(order)
    return order


def confirm_payment(reference: str, payment_ref: str, amount: int | None = None, *, now=None) -> Order:
    """
    Payment collaborator entry point: "payment succeeded for reference R".

    Authenticity is the gateway's concern; this only matches the reference.
    """
    order = get_order_by_reference(reference)
    if amount is not None and amount != order.total:
        current_app.logger.warning(
            "Payment amount %s for %s differs from order total %s",
            amount,
            order.reference,
            order.total,
        )
    return confirm_order(order.id, payment_ref, amount=amount, now=now)


def _release_inventory(order: Order, released_at) -> int:
    """Return every not-yet-released line to the ledger. Does not commit."""
    released = 0
    for line in order.lines:
        claimed = compare_and_swap(
            update(OrderLine)
            .where(OrderLine.id == line.id, OrderLine.released_at.is_(None))
            .values(released_at=released_at)
        )
        if claimed:
            inventory_service.release(line.tier_id, line.quantity)
            released += line.quantity
    if order.promo_code_id:
        promo_service.release_use(order.promo_code_id)
    return released


def _cancel_locked(order: Order, reason: str, cancelled_at) -> bool:
    """Cancel inside an open write transaction. Returns False if the CAS lost."""
    from_status = order.status
    if from_status in TERMINAL_STATUSES:
        return False

    won = _transition(
        order.id,
        from_status,
        status=ORDER_CANCELLED,
        cancelled_at=cancelled_at,
        cancel_reason=reason,
    )
    if won:
        _release_inventory(order, cancelled_at)
    db.session.refresh(order)
    return won


def cancel_order(
    order_id: int,
    reason: str,
    *,
    actor: AdminOperator | None = None,
    buyer_email: str | None = None,
    now=None,
) -> Order:
    """
    pending|confirmed -> cancelled; releases the order's inventory.

    Operators (actor) may cancel pending or confirmed orders. Buyers
    (buyer_email, matched against the order) may only cancel pending ones.

    Raises NotFound, InsufficientRole or InvalidTransition.
    """
    reason = _text(reason, "reason") or "Cancelled"
    if buyer_email is not None:
        buyer_email = normalize_email(buyer_email)
    if actor is not None:
        permission_service.require_role(actor, ROLE_ADMIN, action="cancel order")

    def _op():
        cancelled_at = now or utcnow()
        begin_write()

        order = db.session.get(Order, order_id)
        if order is None:
            raise _not_found(order_id)

        if actor is None:
            if not buyer_email or order.buyer_email != buyer_email:
                raise _not_found(order_id)
            if order.status != ORDER_PENDING:
                raise TicketingError(
                    ErrorKind.INVALID_TRANSITION,
                    "Only unpaid orders can be cancelled online; contact the organizers",
                    details={"order_id": order.id, "status": order.status},
                )

        if not _cancel_locked(order, reason, cancelled_at):
            raise TicketingError(
                ErrorKind.INVALID_TRANSITION,
                f"Cannot cancel an order that is {order.status}",
                details={"order_id": order.id, "status": order.status},
            )

        if actor is not None:
            audit_service.stage(
                actor,
                "ORDER_CANCELLED",
                f"Cancelled order {order.reference}: {reason}",
                now=cancelled_at,
            )
        db.session.commit()
        return order

    return run_with_retry(_op)


def admit(order_id: int, *, staff_id: int | None = None, operator_id: int | None = None, now=None) -> bool:
    """
    confirmed -> used. The only writer of the used state.

    Runs inside the caller's write transaction; returns whether this caller
    won the transition.
    """
    return _transition(
        order_id,
        ORDER_CONFIRMED,
        status=ORDER_USED,
        used_at=now or utcnow(),
        checked_in_by_staff_id=staff_id,
        checked_in_by_operator_id=operator_id,
    )


def mark_used(order_id: int, operator: AdminOperator, *, now=None) -> Order:
    """
    Operator override of the door scan (admit from the order detail view).

    Raises NotFound, AlreadyUsed or InvalidTransition.
    """
    permission_service.require_role(operator, ROLE_ADMIN, action="mark order used")

    def _op():
        used_at = now or utcnow()
        begin_write()

        order = db.session.get(Order, order_id)
        if order is None:
            raise _not_found(order_id)

        won = admit(order.id, operator_id=operator.id, now=used_at)
        db.session.refresh(order)
        if not won:
            if order.status == ORDER_USED:
                raise TicketingError(
                    ErrorKind.ALREADY_USED,
                    "This ticket has already been used",
                    details={"order_id": order.id, "used_at": order.used_at.isoformat() if order.used_at else None},
                )
            raise TicketingError(
                ErrorKind.INVALID_TRANSITION,
                f"Cannot admit an order that is {order.status}",
                details={"order_id": order.id, "status": order.status},
            )

        audit_service.stage(operator, "ORDER_MARKED_USED", f"Admitted order {order.reference}", now=used_at)
        db.session.commit()
        return order

    return run_with_retry(_op)


def sweep_expired_orders(*, now=None, actor: AdminOperator | None = None) -> list[int]:
    """
    Cancel pending orders past their reservation window and release stock.

    Idempotent and safe against concurrent sweeps and late confirmations:
    each order is cancelled with its own conditional UPDATE from pending, so
    an order confirmed in the meantime is simply skipped. When an operator
    triggers the sweep, each cancellation commits with its audit entry.

    Returns the ids this sweep cancelled.
    """
    now = now or utcnow()
    candidate_ids = [
        row.id
        for row in db.session.query(Order.id).filter(
            Order.status == ORDER_PENDING,
            Order.expires_at <= now,
        ).order_by(Order.id)
    ]

    cancelled: list[int] = []
    for order_id in candidate_ids:
        def _op(order_id=order_id):
            begin_write()
            order = db.session.get(Order, order_id)
            if order is None or order.status != ORDER_PENDING:
                db.session.rollback()
                return False
            won = _cancel_locked(order, REASON_EXPIRED, now)
            if won and actor is not None:
                audit_service.stage(
                    actor,
                    "ORDER_CANCELLED",
                    f"Cancelled order {order.reference}: {REASON_EXPIRED}",
                    now=now,
                )
            db.session.commit()
            return won

        if run_with_retry(_op):
            cancelled.append(order_id)

    if cancelled:
        current_app.logger.info("Reclaimed %d expired pending order(s)", len(cancelled))
    return cancelled
