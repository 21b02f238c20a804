from __future__ import annotations

from ..extensions import db
from boxoffice.time_utils import to_utc_z


ORDER_PENDING = "pending"
ORDER_CONFIRMED = "confirmed"
ORDER_CANCELLED = "cancelled"
ORDER_USED = "used"

ORDER_STATUSES = (ORDER_PENDING, ORDER_CONFIRMED, ORDER_CANCELLED, ORDER_USED)
TERMINAL_STATUSES = (ORDER_CANCELLED, ORDER_USED)

PAYMENT_METHODS = ("momo", "card", "bank")


class Order(db.Model):
    """
    One buyer's purchase attempt.

    LIFECYCLE:
        pending --confirm--> confirmed --check-in--> used
        pending --cancel/timeout--> cancelled
        confirmed --cancel--> cancelled (inventory released)

    `status` is only changed through conditional UPDATEs in order_service;
    the WHERE clause names the expected current status so two racing
    transitions cannot both apply.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_status_expires", "status", "expires_at"),
        db.Index("ix_orders_event_status", "event_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Buyer-visible reference, also sent to the gateway as tx_ref
    reference = db.Column(db.String(64), nullable=False, unique=True, index=True)

    event_id = db.Column(db.Integer, db.ForeignKey("events.id"), nullable=False, index=True)

    buyer_name = db.Column(db.String(200), nullable=False)
    buyer_email = db.Column(db.String(255), nullable=False, index=True)
    buyer_phone = db.Column(db.String(32), nullable=True)

    # Amounts in whole currency units
    subtotal = db.Column(db.Integer, nullable=False)
    discount = db.Column(db.Integer, nullable=False, default=0)
    service_fee = db.Column(db.Integer, nullable=False, default=0)
    total = db.Column(db.Integer, nullable=False)
    promo_code_id = db.Column(db.Integer, db.ForeignKey("promo_codes.id"), nullable=True)

    payment_method = db.Column(db.String(16), nullable=True)
    # Supplied by the payment collaborator at confirmation; unknown to the buyer before
    payment_ref = db.Column(db.String(128), nullable=True, unique=True)
    amount_paid = db.Column(db.Integer, nullable=True)

    status = db.Column(db.String(16), nullable=False, default=ORDER_PENDING, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)
    confirmed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancel_reason = db.Column(db.String(255), nullable=True)
    used_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Who admitted the ticket: a staff scan or an operator override.
    # Plain ids so the record outlives staff or operator deletion
    checked_in_by_staff_id = db.Column(db.Integer, nullable=True)
    checked_in_by_operator_id = db.Column(db.Integer, nullable=True)

    checkin_token = db.Column(db.String(512), nullable=True)

    event = db.relationship("Event", backref=db.backref("orders", lazy=True))
    promo_code = db.relationship("PromoCode")

    @property
    def ticket_count(self) -> int:
        return sum(line.quantity for line in self.lines)

    def to_dict(self, include_token: bool = False) -> dict:
        data = {
            "id": self.id,
            "reference": self.reference,
            "event_id": self.event_id,
            "buyer": {
                "name": self.buyer_name,
                "email": self.buyer_email,
                "phone": self.buyer_phone,
            },
            "lines": [line.to_dict() for line in self.lines],
            "ticket_count": self.ticket_count,
            "subtotal": self.subtotal,
            "discount": self.discount,
            "service_fee": self.service_fee,
            "total": self.total,
            "promo_code": self.promo_code.code if self.promo_code else None,
            "payment_method": self.payment_method,
            "payment_ref": self.payment_ref,
            "amount_paid": self.amount_paid,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
            "expires_at": to_utc_z(self.expires_at),
            "confirmed_at": to_utc_z(self.confirmed_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "cancel_reason": self.cancel_reason,
            "used_at": to_utc_z(self.used_at),
            "checked_in_by_staff_id": self.checked_in_by_staff_id,
            "checked_in_by_operator_id": self.checked_in_by_operator_id,
        }
        if include_token:
            data["checkin_token"] = self.checkin_token
        return data


class OrderLine(db.Model):
    """Tier, quantity and the unit price snapshot taken at purchase time."""
    __tablename__ = "order_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    tier_id = db.Column(db.Integer, db.ForeignKey("ticket_tiers.id"), nullable=False, index=True)

    tier_name = db.Column(db.String(100), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Integer, nullable=False)
    line_total = db.Column(db.Integer, nullable=False)

    # Set once when the reserved units go back to the ledger
    released_at = db.Column(db.DateTime(timezone=True), nullable=True)

    order = db.relationship("Order", backref=db.backref("lines", lazy="selectin", order_by="OrderLine.id"))
    tier = db.relationship("TicketTier")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tier_id": self.tier_id,
            "tier_name": self.tier_name,
            "quantity": self.quantity,
            "unit_price": self.unit_price,
            "line_total": self.line_total,
            "released_at": to_utc_z(self.released_at),
        }


class PromoCode(db.Model):
    """
    Discount code applied at order creation.

    `used_count` is a shared counter: consumed with a conditional UPDATE
    bounded by max_uses, given back when the order is cancelled.
    """
    __tablename__ = "promo_codes"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(32), nullable=False, unique=True, index=True)

    discount_type = db.Column(db.String(16), nullable=False)  # percentage | fixed
    discount_value = db.Column(db.Integer, nullable=False)
    min_purchase = db.Column(db.Integer, nullable=False, default=0)
    max_uses = db.Column(db.Integer, nullable=False, default=0)  # 0 = unlimited
    used_count = db.Column(db.Integer, nullable=False, default=0)

    valid_from = db.Column(db.DateTime(timezone=True), nullable=True)
    valid_until = db.Column(db.DateTime(timezone=True), nullable=True)
    event_id = db.Column(db.Integer, db.ForeignKey("events.id"), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "discount_type": self.discount_type,
            "discount_value": self.discount_value,
            "min_purchase": self.min_purchase,
            "max_uses": self.max_uses,
            "used_count": self.used_count,
            "valid_from": to_utc_z(self.valid_from),
            "valid_until": to_utc_z(self.valid_until),
            "event_id": self.event_id,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
