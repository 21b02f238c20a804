from __future__ import annotations

from ..extensions import db
from boxoffice.time_utils import to_utc_z


class Event(db.Model):
    """
    A choir event that sells tickets.

    Content fields (description, imagery) belong to the public site; the box
    office only needs what appears on a ticket and in the confirmation email.
    """
    __tablename__ = "events"
    __table_args__ = (
        db.Index("ix_events_published_date", "is_published", "event_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    event_date = db.Column(db.Date, nullable=False)
    event_time = db.Column(db.String(16), nullable=True)  # e.g. "18:00"
    location = db.Column(db.String(255), nullable=False)
    is_published = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Event id={self.id} title={self.title!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "event_date": self.event_date.isoformat() if self.event_date else None,
            "event_time": self.event_time,
            "location": self.location,
            "is_published": self.is_published,
            "created_at": to_utc_z(self.created_at),
        }


class TicketTier(db.Model):
    """
    Priced ticket category for one event, with its own capacity.

    INVARIANT: 0 <= sold <= capacity. `sold` is only ever changed by
    inventory_service.reserve/release through conditional UPDATEs; never
    assign to it from application code.
    """
    __tablename__ = "ticket_tiers"
    __table_args__ = (
        db.UniqueConstraint("event_id", "name", name="uq_ticket_tiers_event_name"),
        db.CheckConstraint("sold >= 0", name="ck_ticket_tiers_sold_non_negative"),
        db.CheckConstraint("sold <= capacity", name="ck_ticket_tiers_sold_within_capacity"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(db.Integer, db.ForeignKey("events.id"), nullable=False, index=True)

    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text, nullable=True)

    # Whole currency units (RWF has no minor unit)
    unit_price = db.Column(db.Integer, nullable=False)

    capacity = db.Column(db.Integer, nullable=False)
    sold = db.Column(db.Integer, nullable=False, default=0)
    max_per_order = db.Column(db.Integer, nullable=False, default=10)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    event = db.relationship("Event", backref=db.backref("tiers", lazy=True, order_by="TicketTier.id"))

    @property
    def remaining(self) -> int:
        return max(0, self.capacity - self.sold)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "event_id": self.event_id,
            "name": self.name,
            "description": self.description,
            "unit_price": self.unit_price,
            "capacity": self.capacity,
            "sold": self.sold,
            "remaining": self.remaining,
            "max_per_order": self.max_per_order,
            "created_at": to_utc_z(self.created_at),
        }
