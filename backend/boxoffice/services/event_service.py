# Overview: Event and ticket tier administration.

from __future__ import annotations

from datetime import date

from sqlalchemy import update

from ..errors import ErrorKind, TicketingError
from ..extensions import db
from ..models import Event, TicketTier, AdminOperator
from ..models.auth import ROLE_ADMIN
from . import audit_service, permission_service
from .concurrency import begin_write, compare_and_swap, run_with_retry


def _positive_int(value, field: str, *, allow_zero: bool = False) -> int:
    if not isinstance(value, int) or isinstance(value, bool) or value < 0 or (value == 0 and not allow_zero):
        raise TicketingError(
            ErrorKind.VALIDATION_FAILED,
            f"{field} must be a {'non-negative' if allow_zero else 'positive'} integer",
            details={"field": field},
        )
    return value


def _text(value, field: str) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise TicketingError(ErrorKind.VALIDATION_FAILED, f"{field} must be a string", details={"field": field})
    return value.strip()


def _parse_date(value) -> date:
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(value or "")
    except (TypeError, ValueError):
        raise TicketingError(
            ErrorKind.VALIDATION_FAILED,
            "event_date must be an ISO date (YYYY-MM-DD)",
            details={"field": "event_date"},
        )


def get_event(event_id: int) -> Event:
    event = db.session.get(Event, event_id)
    if event is None:
        raise TicketingError(ErrorKind.NOT_FOUND, "Event not found", details={"event_id": event_id})
    return event


def list_events(*, published_only: bool = True) -> list[Event]:
    query = db.session.query(Event)
    if published_only:
        query = query.filter(Event.is_published.is_(True))
    return query.order_by(Event.event_date, Event.id).all()


def create_event(data: dict, actor: AdminOperator) -> Event:
    permission_service.require_role(actor, ROLE_ADMIN, action="create event")

    title = _text(data.get("title"), "title")
    location = _text(data.get("location"), "location")
    if not title or not location:
        raise TicketingError(ErrorKind.VALIDATION_FAILED, "title and location are required")

    event = Event(
        title=title,
        event_date=_parse_date(data.get("event_date")),
        event_time=_text(data.get("event_time"), "event_time") or None,
        location=location,
        is_published=bool(data.get("is_published", True)),
    )
    db.session.add(event)
    db.session.flush()
    audit_service.stage(actor, "EVENT_CREATED", f"Created event {event.title} ({event.event_date.isoformat()})")
    db.session.commit()
    return event


def update_event(event_id: int, data: dict, actor: AdminOperator) -> Event:
    """Edit title, date, time, location or the published flag. Tiers are edited separately."""
    permission_service.require_role(actor, ROLE_ADMIN, action="update event")
    event = get_event(event_id)

    changes = {}
    for field in ("title", "location"):
        if field in data:
            changes[field] = _text(data.get(field), field)
            if not changes[field]:
                raise TicketingError(ErrorKind.VALIDATION_FAILED, f"{field} is required", details={"field": field})
    if "event_date" in data:
        changes["event_date"] = _parse_date(data.get("event_date"))
    if "event_time" in data:
        changes["event_time"] = _text(data.get("event_time"), "event_time") or None
    if "is_published" in data:
        changes["is_published"] = bool(data.get("is_published"))
    if not changes:
        raise TicketingError(ErrorKind.VALIDATION_FAILED, "Nothing to update")

    for field, value in changes.items():
        setattr(event, field, value)
    audit_service.stage(actor, "EVENT_UPDATED", f"Updated event {event.title}: {', '.join(sorted(changes))}")
    db.session.commit()
    return event


def set_published(event_id: int, is_published: bool, actor: AdminOperator) -> Event:
    permission_service.require_role(actor, ROLE_ADMIN, action="publish event")
    event = get_event(event_id)
    event.is_published = bool(is_published)
    audit_service.stage(
        actor,
        "EVENT_PUBLISHED" if is_published else "EVENT_UNPUBLISHED",
        f"Event {event.title}",
    )
    db.session.commit()
    return event


def create_tier(event_id: int, data: dict, actor: AdminOperator) -> TicketTier:
    permission_service.require_role(actor, ROLE_ADMIN, action="create ticket tier")
    event = get_event(event_id)

    name = (data.get("name") or "").strip()
    if not name:
        raise TicketingError(ErrorKind.VALIDATION_FAILED, "Tier name is required", details={"field": "name"})
    if db.session.query(TicketTier.id).filter_by(event_id=event.id, name=name).first():
        raise TicketingError(ErrorKind.CONFLICT, f"Event already has a tier named {name}")

    tier = TicketTier(
        event_id=event.id,
        name=name,
        description=data.get("description"),
        unit_price=_positive_int(data.get("unit_price"), "unit_price", allow_zero=True),
        capacity=_positive_int(data.get("capacity"), "capacity", allow_zero=True),
        max_per_order=_positive_int(data.get("max_per_order", 10), "max_per_order"),
        sold=0,
    )
    db.session.add(tier)
    db.session.flush()
    audit_service.stage(
        actor,
        "TIER_CREATED",
        f"Created tier {tier.name} for {event.title}: capacity {tier.capacity} at {tier.unit_price}",
    )
    db.session.commit()
    return tier


def update_tier_capacity(tier_id: int, capacity: int, actor: AdminOperator) -> TicketTier:
    """
    Change a tier's capacity. Never below what is already sold.

    The floor is enforced in the UPDATE itself so a reservation landing
    between the read and the write cannot leave sold > capacity.
    """
    permission_service.require_role(actor, ROLE_ADMIN, action="update tier capacity")
    capacity = _positive_int(capacity, "capacity", allow_zero=True)

    def _op():
        begin_write()
        tier = db.session.get(TicketTier, tier_id)
        if tier is None:
            raise TicketingError(ErrorKind.NOT_FOUND, "Ticket tier not found", details={"tier_id": tier_id})
        previous = tier.capacity

        won = compare_and_swap(
            update(TicketTier)
            .where(TicketTier.id == tier_id, TicketTier.sold <= capacity)
            .values(capacity=capacity)
        )
        db.session.refresh(tier)
        if not won:
            raise TicketingError(
                ErrorKind.VALIDATION_FAILED,
                f"Capacity cannot be lower than the {tier.sold} ticket(s) already sold",
                details={"tier_id": tier.id, "sold": tier.sold},
            )

        audit_service.stage(actor, "TIER_CAPACITY_CHANGED", f"Tier {tier.name}: capacity {previous} -> {capacity}")
        db.session.commit()
        return tier

    return run_with_retry(_op)


def update_tier(tier_id: int, data: dict, actor: AdminOperator) -> TicketTier:
    """Edit display fields, price and per-order maximum (not capacity or sold)."""
    permission_service.require_role(actor, ROLE_ADMIN, action="update ticket tier")
    tier = db.session.get(TicketTier, tier_id)
    if tier is None:
        raise TicketingError(ErrorKind.NOT_FOUND, "Ticket tier not found", details={"tier_id": tier_id})

    if "name" in data:
        name = (data.get("name") or "").strip()
        if not name:
            raise TicketingError(ErrorKind.VALIDATION_FAILED, "Tier name is required", details={"field": "name"})
        tier.name = name
    if "description" in data:
        tier.description = data.get("description")
    if "unit_price" in data:
        tier.unit_price = _positive_int(data.get("unit_price"), "unit_price", allow_zero=True)
    if "max_per_order" in data:
        tier.max_per_order = _positive_int(data.get("max_per_order"), "max_per_order")

    audit_service.stage(actor, "TIER_UPDATED", f"Updated tier {tier.name}")
    db.session.commit()
    return tier
