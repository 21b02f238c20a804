"""
Order engine tests.

Verifies:
- Orders reserve inventory atomically (all lines or none)
- Totals are snapshotted at creation (subtotal - discount + service fee)
- The state machine only moves forward: pending -> confirmed -> used,
  pending|confirmed -> cancelled
- The expiry sweep reclaims pending reservations exactly once
- Email failures never undo a confirmation
"""

from datetime import datetime, timedelta

import pytest

from boxoffice.errors import ErrorKind, TicketingError
from boxoffice.models import AuditLogEntry, Order, PromoCode
from boxoffice.services import email_service, inventory_service, order_service, token_service


T0 = datetime(2026, 12, 1, 12, 0)


def _tier(event, name="Regular"):
    return next(t for t in event.tiers if t.name == name)


@pytest.fixture
def pending_order(db_session, event_a, buyer):
    return order_service.create_order(
        buyer, event_a.id, [{"tier_id": _tier(event_a).id, "quantity": 2}], now=T0
    )


class TestCreateOrder:

    def test_create_reserves_and_snapshots_totals(self, db_session, event_a, buyer):
        regular, vip = _tier(event_a), _tier(event_a, "VIP")

        order = order_service.create_order(
            buyer,
            event_a.id,
            [{"tier_id": regular.id, "quantity": 2}, {"tier_id": vip.id, "quantity": 1}],
            payment_method="momo",
            now=T0,
        )

        assert order.status == "pending"
        assert order.reference.startswith("SOP-")
        assert order.subtotal == 2 * 5000 + 20000
        assert order.service_fee == 500
        assert order.total == 30500
        assert order.ticket_count == 3
        assert order.expires_at == T0 + timedelta(minutes=30)
        assert order.checkin_token is None
        assert order.buyer_email == "aline@example.rw"

        assert inventory_service.sold_count(regular.id) == 2
        assert inventory_service.sold_count(vip.id) == 1

    def test_duplicate_tier_lines_are_merged(self, db_session, event_a, buyer):
        regular = _tier(event_a)
        order = order_service.create_order(
            buyer,
            event_a.id,
            [{"tier_id": regular.id, "quantity": 1}, {"tier_id": regular.id, "quantity": 2}],
            now=T0,
        )

        assert len(order.lines) == 1
        assert order.lines[0].quantity == 3
        assert inventory_service.sold_count(regular.id) == 3

    def test_second_line_out_of_stock_rolls_back_first(self, db_session, make_event, buyer):
        event = make_event("Small Hall", tiers=(("Regular", 1000, 100, 10), ("VIP", 5000, 1, 4)))
        regular, vip = _tier(event), _tier(event, "VIP")

        with pytest.raises(TicketingError) as exc:
            order_service.create_order(
                buyer,
                event.id,
                [{"tier_id": regular.id, "quantity": 3}, {"tier_id": vip.id, "quantity": 2}],
                now=T0,
            )
        assert exc.value.kind == ErrorKind.OUT_OF_STOCK

        assert inventory_service.sold_count(regular.id) == 0
        assert inventory_service.sold_count(vip.id) == 0
        assert db_session.query(Order).count() == 0

    def test_per_order_limit_rejected(self, db_session, event_a, buyer):
        with pytest.raises(TicketingError) as exc:
            order_service.create_order(
                buyer, event_a.id, [{"tier_id": _tier(event_a, "VIP").id, "quantity": 5}], now=T0
            )
        assert exc.value.kind == ErrorKind.EXCEEDS_PER_ORDER_LIMIT
        assert db_session.query(Order).count() == 0

    def test_tier_from_another_event_rejected(self, db_session, event_a, event_b, buyer):
        with pytest.raises(TicketingError) as exc:
            order_service.create_order(
                buyer, event_a.id, [{"tier_id": _tier(event_b).id, "quantity": 1}], now=T0
            )
        assert exc.value.kind == ErrorKind.VALIDATION_FAILED
        assert inventory_service.sold_count(_tier(event_b).id) == 0

    def test_unpublished_event_not_found(self, db_session, make_event, buyer):
        event = make_event("Rehearsal", is_published=False)
        with pytest.raises(TicketingError) as exc:
            order_service.create_order(buyer, event.id, [{"tier_id": _tier(event).id, "quantity": 1}])
        assert exc.value.kind == ErrorKind.NOT_FOUND

    @pytest.mark.parametrize("bad_buyer, field", [
        ({"name": "", "email": "aline@example.rw"}, "name"),
        ({"name": "Aline", "email": "not-an-email"}, "email"),
    ])
    def test_invalid_buyer(self, db_session, event_a, bad_buyer, field):
        with pytest.raises(TicketingError) as exc:
            order_service.create_order(bad_buyer, event_a.id, [{"tier_id": _tier(event_a).id, "quantity": 1}])
        assert exc.value.kind == ErrorKind.VALIDATION_FAILED
        assert field in exc.value.details["fields"]

    @pytest.mark.parametrize("items", [
        [],
        [{"tier_id": "1", "quantity": 1}],
        [{"tier_id": 1, "quantity": 0}],
    ])
    def test_invalid_line_items(self, db_session, event_a, buyer, items):
        with pytest.raises(TicketingError) as exc:
            order_service.create_order(buyer, event_a.id, items)
        assert exc.value.kind == ErrorKind.VALIDATION_FAILED

    def test_unknown_payment_method(self, db_session, event_a, buyer):
        with pytest.raises(TicketingError) as exc:
            order_service.create_order(
                buyer, event_a.id, [{"tier_id": _tier(event_a).id, "quantity": 1}], payment_method="cash"
            )
        assert exc.value.kind == ErrorKind.VALIDATION_FAILED


class TestConfirmOrder:

    def test_confirm_mints_verifiable_token(self, db_session, pending_order):
        order = order_service.confirm_order(pending_order.id, "FLW-1001", amount=10500, now=T0 + timedelta(minutes=5))

        assert order.status == "confirmed"
        assert order.payment_ref == "FLW-1001"
        assert order.amount_paid == 10500
        claims = token_service.decode_token(order.checkin_token)
        assert claims.order_id == order.id
        assert claims.payment_ref == "FLW-1001"
        assert claims.ticket_count == 2

    def test_double_confirm_is_invalid_transition(self, db_session, pending_order):
        order_service.confirm_order(pending_order.id, "FLW-1001", now=T0)

        with pytest.raises(TicketingError) as exc:
            order_service.confirm_order(pending_order.id, "FLW-1001", now=T0)
        assert exc.value.kind == ErrorKind.INVALID_TRANSITION

    def test_payment_ref_cannot_confirm_two_orders(self, db_session, event_a, buyer, pending_order):
        other = order_service.create_order(buyer, event_a.id, [{"tier_id": _tier(event_a).id, "quantity": 1}], now=T0)
        order_service.confirm_order(pending_order.id, "FLW-1001", now=T0)

        with pytest.raises(TicketingError) as exc:
            order_service.confirm_order(other.id, "FLW-1001", now=T0)
        assert exc.value.kind == ErrorKind.CONFLICT
        assert db_session.get(Order, other.id).status == "pending"

    def test_empty_payment_ref_rejected(self, db_session, pending_order):
        with pytest.raises(TicketingError) as exc:
            order_service.confirm_order(pending_order.id, "  ")
        assert exc.value.kind == ErrorKind.VALIDATION_FAILED

    def test_unknown_order(self, db_session):
        with pytest.raises(TicketingError) as exc:
            order_service.confirm_order(424242, "FLW-1")
        assert exc.value.kind == ErrorKind.NOT_FOUND

    def test_confirm_by_operator_is_audited(self, db_session, pending_order, admin):
        order_service.confirm_order(pending_order.id, "BANK-77", actor=admin, now=T0)

        entry = db_session.query(AuditLogEntry).filter_by(action="ORDER_CONFIRMED").one()
        assert entry.operator_id == admin.id

    def test_confirm_payment_by_reference(self, db_session, pending_order):
        reference = pending_order.reference.lower()
        order = order_service.confirm_payment(reference, "FLW-2002", amount=1, now=T0)

        # Amount mismatch is logged, not refused
        assert order.status == "confirmed"
        assert order.amount_paid == 1

    def test_email_failure_does_not_undo_confirmation(self, db_session, pending_order, monkeypatch):
        def _explode(app, payload):
            raise RuntimeError("email collaborator down")

        monkeypatch.setitem(email_service.BACKENDS, "log", _explode)

        order = order_service.confirm_order(pending_order.id, "FLW-3003", now=T0)

        assert order.status == "confirmed"
        db_session.expire_all()
        assert db_session.get(Order, pending_order.id).status == "confirmed"

    def test_confirmation_payload(self, app, db_session, pending_order):
        order = order_service.confirm_order(pending_order.id, "FLW-4004", now=T0)

        payload = email_service.build_confirmation_payload(order)
        assert payload["to"] == "aline@example.rw"
        assert payload["event_title"] == "Christmas Concert"
        assert payload["tx_ref"] == order.reference
        assert payload["qr_code_data"] == order.checkin_token
        assert payload["tickets"] == [{"tier_name": "Regular", "quantity": 2, "price_each": 5000}]


class TestExpirySweep:

    def test_sweep_cancels_expired_and_releases(self, db_session, event_a, pending_order):
        regular = _tier(event_a)
        assert inventory_service.sold_count(regular.id) == 2

        cancelled = order_service.sweep_expired_orders(now=T0 + timedelta(minutes=31))

        assert cancelled == [pending_order.id]
        order = db_session.get(Order, pending_order.id)
        db_session.refresh(order)
        assert order.status == "cancelled"
        assert order.cancel_reason == order_service.REASON_EXPIRED
        assert inventory_service.sold_count(regular.id) == 0

    def test_sweep_leaves_unexpired_orders(self, db_session, event_a, pending_order):
        assert order_service.sweep_expired_orders(now=T0 + timedelta(minutes=29)) == []
        assert inventory_service.sold_count(_tier(event_a).id) == 2

    def test_sweep_is_idempotent(self, db_session, event_a, pending_order):
        later = T0 + timedelta(minutes=45)
        order_service.sweep_expired_orders(now=later)

        assert order_service.sweep_expired_orders(now=later) == []
        assert inventory_service.sold_count(_tier(event_a).id) == 0

    def test_late_payment_reports_expired(self, db_session, pending_order):
        order_service.sweep_expired_orders(now=T0 + timedelta(minutes=31))

        with pytest.raises(TicketingError) as exc:
            order_service.confirm_order(pending_order.id, "FLW-LATE", now=T0 + timedelta(minutes=32))
        assert exc.value.kind == ErrorKind.ORDER_EXPIRED

    def test_sweep_skips_confirmed_orders(self, db_session, event_a, pending_order):
        order_service.confirm_order(pending_order.id, "FLW-1001", now=T0 + timedelta(minutes=1))

        assert order_service.sweep_expired_orders(now=T0 + timedelta(hours=2)) == []
        assert inventory_service.sold_count(_tier(event_a).id) == 2

    def test_operator_sweep_audits_each_cancellation(self, db_session, pending_order, admin):
        order_service.sweep_expired_orders(now=T0 + timedelta(minutes=31), actor=admin)

        entry = db_session.query(AuditLogEntry).filter_by(action="ORDER_CANCELLED").one()
        assert entry.operator_id == admin.id
        assert pending_order.reference in entry.details

    def test_sweep_commits_nothing_when_audit_fails(self, db_session, event_a, pending_order, admin, monkeypatch):
        def _broken_stage(*args, **kwargs):
            raise RuntimeError("audit store unavailable")

        monkeypatch.setattr(order_service.audit_service, "stage", _broken_stage)

        with pytest.raises(RuntimeError):
            order_service.sweep_expired_orders(now=T0 + timedelta(minutes=31), actor=admin)

        db_session.expire_all()
        assert db_session.get(Order, pending_order.id).status == "pending"
        assert inventory_service.sold_count(_tier(event_a).id) == 2


class TestCancelOrder:

    def test_operator_cancels_confirmed_order(self, db_session, event_a, pending_order, admin):
        order_service.confirm_order(pending_order.id, "FLW-1001", now=T0)

        order = order_service.cancel_order(pending_order.id, "Refunded", actor=admin, now=T0)

        assert order.status == "cancelled"
        assert order.cancel_reason == "Refunded"
        assert inventory_service.sold_count(_tier(event_a).id) == 0
        assert db_session.query(AuditLogEntry).filter_by(action="ORDER_CANCELLED").count() == 1

    def test_cancelled_is_terminal(self, db_session, event_a, pending_order, admin):
        order_service.cancel_order(pending_order.id, "Changed mind", actor=admin, now=T0)

        with pytest.raises(TicketingError) as exc:
            order_service.cancel_order(pending_order.id, "Again", actor=admin, now=T0)
        assert exc.value.kind == ErrorKind.INVALID_TRANSITION
        # Released once only
        assert inventory_service.sold_count(_tier(event_a).id) == 0

    def test_used_order_cannot_be_cancelled(self, db_session, pending_order, admin):
        order_service.confirm_order(pending_order.id, "FLW-1001", now=T0)
        order_service.mark_used(pending_order.id, admin, now=T0)

        with pytest.raises(TicketingError) as exc:
            order_service.cancel_order(pending_order.id, "Too late", actor=admin)
        assert exc.value.kind == ErrorKind.INVALID_TRANSITION

    def test_buyer_cancels_own_pending_order(self, db_session, event_a, pending_order):
        order = order_service.cancel_order(pending_order.id, "", buyer_email="ALINE@example.rw ")

        assert order.status == "cancelled"
        assert inventory_service.sold_count(_tier(event_a).id) == 0

    def test_buyer_with_wrong_email_sees_not_found(self, db_session, pending_order):
        with pytest.raises(TicketingError) as exc:
            order_service.cancel_order(pending_order.id, "", buyer_email="someone@else.rw")
        assert exc.value.kind == ErrorKind.NOT_FOUND

    def test_buyer_cannot_cancel_confirmed_order(self, db_session, pending_order):
        order_service.confirm_order(pending_order.id, "FLW-1001", now=T0)

        with pytest.raises(TicketingError) as exc:
            order_service.cancel_order(pending_order.id, "", buyer_email="aline@example.rw")
        assert exc.value.kind == ErrorKind.INVALID_TRANSITION


class TestMarkUsed:

    def test_mark_used_by_operator(self, db_session, pending_order, admin):
        order_service.confirm_order(pending_order.id, "FLW-1001", now=T0)

        order = order_service.mark_used(pending_order.id, admin, now=T0 + timedelta(hours=1))

        assert order.status == "used"
        assert order.checked_in_by_operator_id == admin.id
        assert order.checked_in_by_staff_id is None

    def test_mark_used_twice_is_already_used(self, db_session, pending_order, admin):
        order_service.confirm_order(pending_order.id, "FLW-1001", now=T0)
        order_service.mark_used(pending_order.id, admin, now=T0)

        with pytest.raises(TicketingError) as exc:
            order_service.mark_used(pending_order.id, admin)
        assert exc.value.kind == ErrorKind.ALREADY_USED

    def test_pending_order_cannot_be_admitted(self, db_session, pending_order, admin):
        with pytest.raises(TicketingError) as exc:
            order_service.mark_used(pending_order.id, admin)
        assert exc.value.kind == ErrorKind.INVALID_TRANSITION


class TestPromoCodes:

    @pytest.fixture
    def promo(self, db_session, event_a):
        promo = PromoCode(code="CHOIR10", discount_type="percentage", discount_value=10, max_uses=1, event_id=event_a.id)
        db_session.add(promo)
        db_session.commit()
        return promo

    def test_discount_applied_and_use_counted(self, db_session, event_a, buyer, promo):
        order = order_service.create_order(
            buyer, event_a.id, [{"tier_id": _tier(event_a).id, "quantity": 2}], promo_code="choir10", now=T0
        )

        assert order.discount == 1000
        assert order.total == 10000 - 1000 + 500
        db_session.refresh(promo)
        assert promo.used_count == 1

    def test_exhausted_code_rejects_order_without_reserving(self, db_session, event_a, buyer, promo):
        order_service.create_order(
            buyer, event_a.id, [{"tier_id": _tier(event_a).id, "quantity": 1}], promo_code="CHOIR10", now=T0
        )

        with pytest.raises(TicketingError) as exc:
            order_service.create_order(
                buyer, event_a.id, [{"tier_id": _tier(event_a).id, "quantity": 1}], promo_code="CHOIR10", now=T0
            )
        assert exc.value.kind == ErrorKind.VALIDATION_FAILED
        assert exc.value.details["reason"] == "exhausted"
        assert inventory_service.sold_count(_tier(event_a).id) == 1

    def test_cancel_gives_the_use_back(self, db_session, event_a, buyer, promo, admin):
        order = order_service.create_order(
            buyer, event_a.id, [{"tier_id": _tier(event_a).id, "quantity": 1}], promo_code="CHOIR10", now=T0
        )
        order_service.cancel_order(order.id, "Wrong date", actor=admin)

        db_session.refresh(promo)
        assert promo.used_count == 0

    def test_code_for_other_event_rejected(self, db_session, event_b, buyer, promo):
        with pytest.raises(TicketingError) as exc:
            order_service.create_order(
                buyer, event_b.id, [{"tier_id": _tier(event_b).id, "quantity": 1}], promo_code="CHOIR10"
            )
        assert exc.value.details["reason"] == "wrong_event"


class TestOrderQueries:

    def test_stats_count_revenue_from_paid_orders(self, db_session, event_a, buyer, admin):
        regular = _tier(event_a)
        paid = order_service.create_order(buyer, event_a.id, [{"tier_id": regular.id, "quantity": 1}], now=T0)
        order_service.create_order(buyer, event_a.id, [{"tier_id": regular.id, "quantity": 1}], now=T0)
        order_service.confirm_order(paid.id, "FLW-1", now=T0)

        stats = order_service.get_order_stats(event_a.id)
        assert stats["total"] == 2
        assert stats["pending"] == 1
        assert stats["confirmed"] == 1
        assert stats["revenue"] == 5500

    def test_list_orders_rejects_unknown_status(self, db_session):
        with pytest.raises(TicketingError) as exc:
            order_service.list_orders(status="refunded")
        assert exc.value.kind == ErrorKind.VALIDATION_FAILED

    def test_lookup_by_reference_is_case_insensitive(self, db_session, pending_order):
        found = order_service.get_order_by_reference(f" {pending_order.reference.lower()} ")
        assert found.id == pending_order.id
