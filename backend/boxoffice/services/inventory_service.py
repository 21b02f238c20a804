# Overview: Inventory ledger for ticket tiers; atomic reserve/release of sold units.

"""
Box Office Inventory Invariants (authoritative)

Ledger model:
- Each TicketTier carries capacity and sold. sold is a shared counter.
- 0 <= sold <= capacity at every point in time.

Mutation discipline:
- reserve() and release() are the only writers of sold.
- Both are single conditional UPDATE statements: the capacity check and the
  increment happen in one statement, so two concurrent reservations can never
  both pass a stale check (no read-modify-write in Python).
- Neither commits. The caller (order_service) owns the transaction so the
  reservation, the order row and the audit entry commit together, and a
  rollback hands every reservation of the call back.

Per-order limit:
- quantity > max_per_order is rejected before any write.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import update

from ..errors import ErrorKind, TicketingError
from ..extensions import db
from ..models import Event, TicketTier
from .concurrency import compare_and_swap


def _get_tier(tier_id: int) -> TicketTier:
    tier = db.session.get(TicketTier, tier_id)
    if tier is None:
        raise TicketingError(
            ErrorKind.NOT_FOUND,
            "Ticket tier not found",
            details={"tier_id": tier_id},
        )
    return tier


def _check_quantity(quantity) -> int:
    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
        raise TicketingError(
            ErrorKind.VALIDATION_FAILED,
            "quantity must be a positive integer",
            details={"quantity": quantity},
        )
    return quantity


def reserve(tier_id: int, quantity: int) -> TicketTier:
    """
    Allocate quantity units of a tier.

    Raises:
    - ValidationFailed: quantity is not a positive integer
    - ExceedsPerOrderLimit: quantity above the tier's max_per_order (no write)
    - OutOfStock: sold + quantity would exceed capacity (no write)
    """
    _check_quantity(quantity)
    tier = _get_tier(tier_id)

    if quantity > tier.max_per_order:
        raise TicketingError(
            ErrorKind.EXCEEDS_PER_ORDER_LIMIT,
            f"Maximum {tier.max_per_order} {tier.name} tickets per order",
            details={"tier_id": tier.id, "requested": quantity, "max_per_order": tier.max_per_order},
        )

    won = compare_and_swap(
        update(TicketTier)
        .where(
            TicketTier.id == tier_id,
            TicketTier.sold + quantity <= TicketTier.capacity,
        )
        .values(sold=TicketTier.sold + quantity)
    )
    db.session.refresh(tier)

    if not won:
        raise TicketingError(
            ErrorKind.OUT_OF_STOCK,
            f"Only {tier.remaining} {tier.name} ticket(s) remaining",
            details={"tier_id": tier.id, "requested": quantity, "remaining": tier.remaining},
        )

    return tier


def release(tier_id: int, quantity: int) -> bool:
    """
    Return quantity units of a tier to sale.

    Never drives sold below zero: if fewer than quantity units are recorded
    as sold the statement matches nothing and the call is a logged no-op.
    Per-reservation idempotency is enforced by the caller (each order line is
    released at most once, see order_service).
    """
    _check_quantity(quantity)

    won = compare_and_swap(
        update(TicketTier)
        .where(
            TicketTier.id == tier_id,
            TicketTier.sold >= quantity,
        )
        .values(sold=TicketTier.sold - quantity)
    )
    if not won:
        current_app.logger.warning(
            "Release of %s unit(s) on tier %s ignored: would drive sold below zero",
            quantity,
            tier_id,
        )
    return won


def sold_count(tier_id: int) -> int:
    """Current committed sold counter."""
    value = db.session.query(TicketTier.sold).filter(TicketTier.id == tier_id).scalar()
    if value is None:
        raise TicketingError(ErrorKind.NOT_FOUND, "Ticket tier not found", details={"tier_id": tier_id})
    return value


def remaining(tier_id: int) -> int:
    tier = _get_tier(tier_id)
    return tier.remaining


def event_availability(event_id: int) -> dict:
    """Snapshot of capacity / sold / remaining per tier for one event."""
    event = db.session.get(Event, event_id)
    if event is None:
        raise TicketingError(ErrorKind.NOT_FOUND, "Event not found", details={"event_id": event_id})

    tiers = db.session.query(TicketTier).filter_by(event_id=event_id).order_by(TicketTier.id).all()
    return {
        "event_id": event_id,
        "tiers": [
            {
                "tier_id": t.id,
                "name": t.name,
                "capacity": t.capacity,
                "sold": t.sold,
                "remaining": t.remaining,
            }
            for t in tiers
        ],
        "capacity": sum(t.capacity for t in tiers),
        "sold": sum(t.sold for t in tiers),
        "remaining": sum(t.remaining for t in tiers),
    }
