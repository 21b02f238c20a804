# Overview: Promo code evaluation and atomic usage counting.

from __future__ import annotations

import secrets
from datetime import datetime, timezone

from sqlalchemy import update

from ..errors import ErrorKind, TicketingError
from ..extensions import db
from ..models import Event, Order, PromoCode, AdminOperator
from ..models.auth import ROLE_ADMIN
from boxoffice.time_utils import utcnow
from . import audit_service, permission_service
from .concurrency import compare_and_swap


DISCOUNT_TYPES = ("percentage", "fixed")
_CODE_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"


def _rejected(message: str, reason: str) -> TicketingError:
    return TicketingError(ErrorKind.VALIDATION_FAILED, message, details={"field": "promo_code", "reason": reason})


def generate_code(prefix: str = "SOP") -> str:
    while True:
        code = prefix + "".join(secrets.choice(_CODE_ALPHABET) for _ in range(6))
        if not db.session.query(PromoCode.id).filter_by(code=code).first():
            return code


def compute_discount(promo: PromoCode, subtotal: int) -> int:
    if promo.discount_type == "percentage":
        return round(subtotal * promo.discount_value / 100)
    # Can't discount more than subtotal
    return min(promo.discount_value, subtotal)


def evaluate(code: str, subtotal: int, event_id: int | None = None, *, now=None) -> tuple[PromoCode, int]:
    """
    Check a code against an order and return (promo, discount).

    Read-only: usage is consumed by consume_use() inside the order transaction.
    """
    now = now or utcnow()
    promo = db.session.query(PromoCode).filter(
        db.func.upper(PromoCode.code) == (code.strip().upper() if isinstance(code, str) else "")
    ).first()

    if not promo:
        raise _rejected("Invalid promo code", "not_found")
    if not promo.is_active:
        raise _rejected("This promo code is no longer active", "inactive")
    if promo.valid_from and promo.valid_from > now:
        raise _rejected("This promo code is not yet valid", "not_yet_valid")
    if promo.valid_until and promo.valid_until < now:
        raise _rejected("This promo code has expired", "expired")
    if promo.max_uses > 0 and promo.used_count >= promo.max_uses:
        raise _rejected("This promo code has reached its usage limit", "exhausted")
    if subtotal < promo.min_purchase:
        raise _rejected(f"Minimum purchase of {promo.min_purchase} required", "below_minimum")
    if promo.event_id and promo.event_id != event_id:
        raise _rejected("This promo code is not valid for this event", "wrong_event")

    return promo, compute_discount(promo, subtotal)


def consume_use(promo_id: int) -> None:
    """Count one use, bounded by max_uses (0 = unlimited). Does not commit."""
    won = compare_and_swap(
        update(PromoCode)
        .where(
            PromoCode.id == promo_id,
            db.or_(PromoCode.max_uses == 0, PromoCode.used_count < PromoCode.max_uses),
        )
        .values(used_count=PromoCode.used_count + 1)
    )
    if not won:
        raise _rejected("This promo code has reached its usage limit", "exhausted")


def release_use(promo_id: int) -> None:
    """Give one use back when its order is cancelled. Does not commit."""
    compare_and_swap(
        update(PromoCode)
        .where(PromoCode.id == promo_id, PromoCode.used_count > 0)
        .values(used_count=PromoCode.used_count - 1)
    )


# ---------------------------------------------------------------------------
# Administration
# ---------------------------------------------------------------------------

def _parse_datetime(value, field: str) -> datetime | None:
    """ISO-8601 to naive UTC. Naive input is taken as UTC; "" and None clear the bound."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        if not isinstance(value, str):
            raise TicketingError(ErrorKind.VALIDATION_FAILED, f"{field} must be an ISO-8601 datetime",
                                 details={"field": field})
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            raise TicketingError(ErrorKind.VALIDATION_FAILED, f"{field} must be an ISO-8601 datetime",
                                 details={"field": field})
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _non_negative(value, field: str) -> int:
    if value is None:
        return 0
    if not isinstance(value, int) or isinstance(value, bool) or value < 0:
        raise TicketingError(ErrorKind.VALIDATION_FAILED, f"{field} must be a non-negative integer",
                             details={"field": field})
    return value


def _clean_fields(data: dict, current: PromoCode | None = None) -> dict:
    """Validate the editable fields present in data. Cross-field rules use current values as fallback."""
    fields = {}

    if "code" in data or current is None:
        code = data.get("code")
        if code is not None and not isinstance(code, str):
            raise TicketingError(ErrorKind.VALIDATION_FAILED, "code must be a string", details={"field": "code"})
        code = (code or "").strip().upper()
        if code or current is not None:
            if not code:
                raise TicketingError(ErrorKind.VALIDATION_FAILED, "code cannot be empty", details={"field": "code"})
            fields["code"] = code

    if "discount_type" in data or current is None:
        if data.get("discount_type") not in DISCOUNT_TYPES:
            raise TicketingError(ErrorKind.VALIDATION_FAILED, "discount_type must be percentage or fixed",
                                 details={"field": "discount_type"})
        fields["discount_type"] = data["discount_type"]

    if "discount_value" in data or current is None:
        value = data.get("discount_value")
        if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
            raise TicketingError(ErrorKind.VALIDATION_FAILED, "discount_value must be a positive integer",
                                 details={"field": "discount_value"})
        fields["discount_value"] = value

    discount_type = fields.get("discount_type", current.discount_type if current else None)
    discount_value = fields.get("discount_value", current.discount_value if current else 0)
    if discount_type == "percentage" and discount_value > 100:
        raise TicketingError(ErrorKind.VALIDATION_FAILED, "percentage discount cannot exceed 100",
                             details={"field": "discount_value"})

    for field in ("min_purchase", "max_uses"):
        if field in data:
            fields[field] = _non_negative(data.get(field), field)

    for field in ("valid_from", "valid_until"):
        if field in data:
            fields[field] = _parse_datetime(data.get(field), field)

    valid_from = fields.get("valid_from", current.valid_from if current else None)
    valid_until = fields.get("valid_until", current.valid_until if current else None)
    if valid_from and valid_until and valid_until < valid_from:
        raise TicketingError(ErrorKind.VALIDATION_FAILED, "valid_until is before valid_from",
                             details={"field": "valid_until"})

    if "event_id" in data:
        event_id = data.get("event_id")
        if event_id is not None:
            if not isinstance(event_id, int) or isinstance(event_id, bool) or db.session.get(Event, event_id) is None:
                raise TicketingError(ErrorKind.NOT_FOUND, "Event not found", details={"event_id": event_id})
        fields["event_id"] = event_id

    if "is_active" in data:
        fields["is_active"] = bool(data.get("is_active"))

    return fields


def _code_taken(code: str, exclude_id: int | None = None) -> bool:
    query = db.session.query(PromoCode.id).filter(PromoCode.code == code)
    if exclude_id is not None:
        query = query.filter(PromoCode.id != exclude_id)
    return query.first() is not None


def get_promo(promo_id: int) -> PromoCode:
    promo = db.session.get(PromoCode, promo_id)
    if not promo:
        raise TicketingError(ErrorKind.NOT_FOUND, "Promo code not found", details={"promo_id": promo_id})
    return promo


def create_promo(data: dict, actor: AdminOperator) -> PromoCode:
    permission_service.require_role(actor, ROLE_ADMIN, action="create promo code")

    fields = _clean_fields(data)
    fields.setdefault("code", generate_code())
    if _code_taken(fields["code"]):
        raise TicketingError(ErrorKind.CONFLICT, "A promo code with this code already exists")

    promo = PromoCode(**{"is_active": True, "min_purchase": 0, "max_uses": 0, "used_count": 0, **fields})
    db.session.add(promo)
    audit_service.stage(actor, "PROMO_CREATED", f"Created promo code {promo.code}")
    db.session.commit()
    return promo


def update_promo(promo_id: int, data: dict, actor: AdminOperator) -> PromoCode:
    """
    Edit a promo code. used_count is never editable.

    Lowering max_uses below the uses already counted is refused; the bound
    is part of the UPDATE so a concurrent order cannot slip past it.
    """
    permission_service.require_role(actor, ROLE_ADMIN, action="update promo code")
    promo = get_promo(promo_id)
    fields = _clean_fields(data, current=promo)
    if not fields:
        raise TicketingError(ErrorKind.VALIDATION_FAILED, "Nothing to update")
    if "code" in fields and _code_taken(fields["code"], exclude_id=promo.id):
        raise TicketingError(ErrorKind.CONFLICT, "A promo code with this code already exists")

    statement = update(PromoCode).where(PromoCode.id == promo.id)
    if fields.get("max_uses"):
        statement = statement.where(PromoCode.used_count <= fields["max_uses"])
    if not compare_and_swap(statement.values(**fields)):
        db.session.rollback()
        raise TicketingError(
            ErrorKind.VALIDATION_FAILED,
            "max_uses cannot be lower than the uses already counted",
            details={"field": "max_uses", "used_count": get_promo(promo_id).used_count},
        )

    audit_service.stage(actor, "PROMO_UPDATED", f"Updated promo code {promo.code}: {', '.join(sorted(fields))}")
    db.session.commit()
    db.session.refresh(promo)
    return promo


def delete_promo(promo_id: int, actor: AdminOperator) -> None:
    """Remove a code no order refers to. Codes already used on orders can only be deactivated."""
    permission_service.require_role(actor, ROLE_ADMIN, action="delete promo code")
    promo = get_promo(promo_id)

    if db.session.query(Order.id).filter(Order.promo_code_id == promo.id).first():
        raise TicketingError(
            ErrorKind.CONFLICT,
            "This promo code is referenced by orders; deactivate it instead",
            details={"promo_id": promo.id},
        )

    code = promo.code
    db.session.delete(promo)
    audit_service.stage(actor, "PROMO_DELETED", f"Deleted promo code {code}")
    db.session.commit()


def set_active(promo_id: int, is_active: bool, actor: AdminOperator) -> PromoCode:
    permission_service.require_role(actor, ROLE_ADMIN, action="update promo code")
    promo = get_promo(promo_id)
    promo.is_active = is_active
    audit_service.stage(
        actor,
        "PROMO_ACTIVATED" if is_active else "PROMO_DEACTIVATED",
        f"Promo code {promo.code}",
    )
    db.session.commit()
    return promo


def list_promos() -> list[PromoCode]:
    return db.session.query(PromoCode).order_by(PromoCode.created_at.desc(), PromoCode.id.desc()).all()


def promo_stats(*, now=None) -> dict:
    """Codes in total, codes usable right now, and uses counted across all codes."""
    now = now or utcnow()
    promos = db.session.query(PromoCode).all()
    usable = [
        p for p in promos
        if p.is_active
        and (p.valid_from is None or p.valid_from <= now)
        and (p.valid_until is None or p.valid_until >= now)
        and (p.max_uses == 0 or p.used_count < p.max_uses)
    ]
    return {
        "total": len(promos),
        "active": len(usable),
        "total_uses": sum(p.used_count for p in promos),
    }
