# Overview: Door check-in; verifies a scanned token and admits the order exactly once.

"""
Check-in Validator

A scan is checked in this order, first failure wins:

1. Token: signature valid, claims decode, the order exists and its payment
   reference and ticket count match the claims            -> InvalidToken
2. Scope: the staff member is active and assigned to the
   order's event                                          -> NotAuthorizedForEvent
3. State: used                                            -> AlreadyUsed
          pending / cancelled                             -> OrderNotConfirmed
4. Admit: conditional UPDATE confirmed -> used. Of two concurrent scans of
   the same token exactly one matches; the other sees used -> AlreadyUsed.

Every attempt leaves a ScanRecord, including rejections, so the door
dashboard can count scans per staff member.
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app

from ..errors import ErrorKind, TicketingError
from ..extensions import db
from ..models import Order, EventStaff, ScanRecord
from ..models.orders import ORDER_CONFIRMED, ORDER_USED
from boxoffice.time_utils import utcnow, to_utc_z
from . import order_service, token_service
from .concurrency import begin_write, run_with_retry


OUTCOME_ADMITTED = "admitted"


@dataclass
class CheckinResult:
    order: Order
    ticket_count: int

    def to_dict(self) -> dict:
        event = self.order.event
        return {
            "order_id": self.order.id,
            "reference": self.order.reference,
            "buyer_name": self.order.buyer_name,
            "ticket_count": self.ticket_count,
            "tickets": [
                {"tier_name": line.tier_name, "quantity": line.quantity}
                for line in self.order.lines
            ],
            "event": {
                "id": event.id,
                "title": event.title,
                "event_date": event.event_date.isoformat() if event.event_date else None,
                "event_time": event.event_time,
            },
            "status": self.order.status,
            "used_at": to_utc_z(self.order.used_at),
        }


def _resolve_order(claims: token_service.CheckinClaims) -> Order:
    order = db.session.get(Order, claims.order_id)
    if (
        order is None
        or order.payment_ref is None
        or order.payment_ref != claims.payment_ref
        or order.ticket_count != claims.ticket_count
    ):
        raise TicketingError(
            ErrorKind.INVALID_TOKEN,
            "Ticket not recognised. This may be a fake or damaged ticket.",
            details={"reason": "claims_mismatch"},
        )
    return order


def _check_scope(staff: EventStaff | None, order: Order) -> None:
    if staff is None or not staff.is_active or order.event_id not in staff.assigned_event_ids:
        raise TicketingError(
            ErrorKind.NOT_AUTHORIZED_FOR_EVENT,
            "You are not assigned to this event",
            details={"event_id": order.event_id},
        )


def _check_state(order: Order) -> None:
    if order.status == ORDER_USED:
        raise TicketingError(
            ErrorKind.ALREADY_USED,
            "This ticket has already been used",
            details={"order_id": order.id, "used_at": to_utc_z(order.used_at)},
        )
    if order.status != ORDER_CONFIRMED:
        raise TicketingError(
            ErrorKind.ORDER_NOT_CONFIRMED,
            "This ticket has not been paid for",
            details={"order_id": order.id, "status": order.status},
        )


def _inspect(token: str, staff_id: int | None, seen: dict | None = None) -> Order:
    claims = token_service.decode_token(token)
    order = _resolve_order(claims)
    if seen is not None:
        seen["order_id"] = order.id
        seen["event_id"] = order.event_id
    staff = db.session.get(EventStaff, staff_id) if staff_id is not None else None
    _check_scope(staff, order)
    _check_state(order)
    return order


def _record_scan(staff_id, outcome: str, *, order_id=None, event_id=None, now=None) -> None:
    db.session.add(
        ScanRecord(
            staff_id=staff_id,
            order_id=order_id,
            event_id=event_id,
            outcome=outcome,
            scanned_at=now or utcnow(),
        )
    )


def verify(token: str, staff_id: int | None) -> CheckinResult:
    """
    Read-only preview of what check_in would do (no state change, no scan record).

    Raises the same kinds as check_in.
    """
    order = _inspect(token, staff_id)
    return CheckinResult(order=order, ticket_count=order.ticket_count)


def check_in(token: str, staff_id: int | None, *, now=None) -> CheckinResult:
    """
    Validate a scanned token and mark its order used.

    Raises InvalidToken, NotAuthorizedForEvent, AlreadyUsed or OrderNotConfirmed.
    """
    scanned_at = now or utcnow()
    context = {}

    def _op():
        begin_write()
        order = _inspect(token, staff_id, seen=context)

        if not order_service.admit(order.id, staff_id=staff_id, now=scanned_at):
            # Lost the race between the status read and the UPDATE
            db.session.refresh(order)
            _check_state(order)
            raise TicketingError(
                ErrorKind.INVALID_TRANSITION,
                f"Cannot admit an order that is {order.status}",
                details={"order_id": order.id, "status": order.status},
            )

        _record_scan(staff_id, OUTCOME_ADMITTED, order_id=order.id, event_id=order.event_id, now=scanned_at)
        db.session.commit()
        db.session.refresh(order)
        return order

    try:
        order = run_with_retry(_op)
    except TicketingError as exc:
        _record_scan(
            staff_id,
            exc.kind.value,
            order_id=context.get("order_id"),
            event_id=context.get("event_id"),
            now=scanned_at,
        )
        db.session.commit()
        current_app.logger.info("Check-in rejected (%s) by staff %s", exc.kind.value, staff_id)
        raise

    current_app.logger.info("Order %s admitted by staff %s", order.reference, staff_id)
    return CheckinResult(order=order, ticket_count=order.ticket_count)


def scan_counts(*, event_id: int | None = None) -> dict[int, dict]:
    """Admitted and rejected scan counts per staff member."""
    query = db.session.query(ScanRecord.staff_id, ScanRecord.outcome, db.func.count(ScanRecord.id))
    if event_id is not None:
        query = query.filter(ScanRecord.event_id == event_id)
    rows = query.group_by(ScanRecord.staff_id, ScanRecord.outcome).all()

    counts: dict[int, dict] = {}
    for staff_id, outcome, count in rows:
        entry = counts.setdefault(staff_id, {"admitted": 0, "rejected": 0})
        if outcome == OUTCOME_ADMITTED:
            entry["admitted"] += count
        else:
            entry["rejected"] += count
    return counts


def list_scans(*, staff_id: int | None = None, event_id: int | None = None, limit: int = 100) -> list[ScanRecord]:
    query = db.session.query(ScanRecord)
    if staff_id is not None:
        query = query.filter(ScanRecord.staff_id == staff_id)
    if event_id is not None:
        query = query.filter(ScanRecord.event_id == event_id)
    return query.order_by(ScanRecord.scanned_at.desc(), ScanRecord.id.desc()).limit(limit).all()
