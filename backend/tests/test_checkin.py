"""
Check-in validator tests.

Verifies:
- A valid token admits its order exactly once
- Forged, tampered or mismatched tokens are InvalidToken
- Staff can only admit orders for events they are assigned to
- Every scan attempt leaves a ScanRecord; verify() leaves nothing
"""

from datetime import datetime, timedelta

import pytest

from boxoffice.errors import ErrorKind, TicketingError
from boxoffice.models import Order, ScanRecord
from boxoffice.services import checkin_service, order_service, token_service


T0 = datetime(2026, 12, 20, 17, 30)


@pytest.fixture
def paid_order(db_session, event_a, buyer):
    regular = next(t for t in event_a.tiers if t.name == "Regular")
    order = order_service.create_order(buyer, event_a.id, [{"tier_id": regular.id, "quantity": 3}])
    return order_service.confirm_order(order.id, "FLW-9001")


@pytest.fixture
def door_staff(event_a, make_staff):
    return make_staff(event_ids=(event_a.id,))


def _status(db_session, order_id):
    db_session.expire_all()
    return db_session.get(Order, order_id).status


class TestCheckIn:

    def test_valid_scan_admits_order(self, db_session, paid_order, door_staff):
        result = checkin_service.check_in(paid_order.checkin_token, door_staff.id, now=T0)

        assert result.ticket_count == 3
        payload = result.to_dict()
        assert payload["status"] == "used"
        assert payload["event"]["title"] == "Christmas Concert"
        assert payload["buyer_name"] == "Aline Uwase"

        order = db_session.get(Order, paid_order.id)
        assert order.status == "used"
        assert order.used_at == T0
        assert order.checked_in_by_staff_id == door_staff.id

    def test_second_scan_is_already_used(self, db_session, paid_order, door_staff):
        checkin_service.check_in(paid_order.checkin_token, door_staff.id, now=T0)

        with pytest.raises(TicketingError) as exc:
            checkin_service.check_in(paid_order.checkin_token, door_staff.id, now=T0 + timedelta(minutes=2))
        assert exc.value.kind == ErrorKind.ALREADY_USED

        db_session.expire_all()
        order = db_session.get(Order, paid_order.id)
        assert order.status == "used"
        assert order.used_at == T0

    def test_staff_for_other_event_is_refused(self, db_session, paid_order, event_b, make_staff):
        other_door = make_staff(national_id="1199880099999999", event_ids=(event_b.id,))

        with pytest.raises(TicketingError) as exc:
            checkin_service.check_in(paid_order.checkin_token, other_door.id)
        assert exc.value.kind == ErrorKind.NOT_AUTHORIZED_FOR_EVENT
        assert _status(db_session, paid_order.id) == "confirmed"

    def test_scope_is_checked_before_state(self, db_session, paid_order, door_staff, event_b, make_staff):
        checkin_service.check_in(paid_order.checkin_token, door_staff.id)
        other_door = make_staff(national_id="1199880099999999", event_ids=(event_b.id,))

        with pytest.raises(TicketingError) as exc:
            checkin_service.check_in(paid_order.checkin_token, other_door.id)
        assert exc.value.kind == ErrorKind.NOT_AUTHORIZED_FOR_EVENT

    def test_inactive_staff_is_refused(self, db_session, paid_order, event_a, make_staff):
        retired = make_staff(national_id="1199880011111111", event_ids=(event_a.id,), status="inactive")

        with pytest.raises(TicketingError) as exc:
            checkin_service.check_in(paid_order.checkin_token, retired.id)
        assert exc.value.kind == ErrorKind.NOT_AUTHORIZED_FOR_EVENT

    def test_unknown_staff_is_refused(self, db_session, paid_order):
        with pytest.raises(TicketingError) as exc:
            checkin_service.check_in(paid_order.checkin_token, 999)
        assert exc.value.kind == ErrorKind.NOT_AUTHORIZED_FOR_EVENT

    @pytest.mark.parametrize("token", ["", "garbage", "abc.def", "eyJvIjoxfQ.0000", "eyJvIjoxfQ.é", "abc.éé"])
    def test_garbage_tokens_are_invalid(self, db_session, door_staff, token):
        with pytest.raises(TicketingError) as exc:
            checkin_service.check_in(token, door_staff.id)
        assert exc.value.kind == ErrorKind.INVALID_TOKEN

    def test_tampered_token_is_invalid(self, db_session, paid_order, door_staff):
        payload, signature = paid_order.checkin_token.split(".")
        flipped = ("A" if payload[0] != "A" else "B") + payload[1:]

        with pytest.raises(TicketingError) as exc:
            checkin_service.check_in(f"{flipped}.{signature}", door_staff.id)
        assert exc.value.kind == ErrorKind.INVALID_TOKEN
        assert _status(db_session, paid_order.id) == "confirmed"

    def test_guessed_payment_ref_is_invalid(self, db_session, paid_order, door_staff):
        # Correctly signed, but the claims do not match the order
        forged = token_service.mint_token(paid_order.id, "FLW-GUESS", 3)

        with pytest.raises(TicketingError) as exc:
            checkin_service.check_in(forged, door_staff.id)
        assert exc.value.kind == ErrorKind.INVALID_TOKEN
        assert exc.value.details["reason"] == "claims_mismatch"

    def test_token_for_unpaid_order_is_invalid(self, db_session, event_a, buyer, door_staff):
        regular = next(t for t in event_a.tiers if t.name == "Regular")
        order = order_service.create_order(buyer, event_a.id, [{"tier_id": regular.id, "quantity": 1}])

        with pytest.raises(TicketingError) as exc:
            checkin_service.check_in(token_service.mint_token(order.id, "", 1), door_staff.id)
        assert exc.value.kind == ErrorKind.INVALID_TOKEN

    def test_cancelled_order_is_not_confirmed(self, db_session, paid_order, door_staff, admin):
        order_service.cancel_order(paid_order.id, "Refunded", actor=admin)

        with pytest.raises(TicketingError) as exc:
            checkin_service.check_in(paid_order.checkin_token, door_staff.id)
        assert exc.value.kind == ErrorKind.ORDER_NOT_CONFIRMED
        assert _status(db_session, paid_order.id) == "cancelled"


class TestScanRecords:

    def test_every_attempt_is_recorded(self, db_session, paid_order, door_staff):
        checkin_service.check_in(paid_order.checkin_token, door_staff.id, now=T0)
        with pytest.raises(TicketingError):
            checkin_service.check_in(paid_order.checkin_token, door_staff.id, now=T0)
        with pytest.raises(TicketingError):
            checkin_service.check_in("garbage", door_staff.id, now=T0)

        outcomes = [s.outcome for s in db_session.query(ScanRecord).order_by(ScanRecord.id)]
        assert outcomes == ["admitted", "AlreadyUsed", "InvalidToken"]

        rejected_repeat = db_session.query(ScanRecord).filter_by(outcome="AlreadyUsed").one()
        assert rejected_repeat.order_id == paid_order.id

        counts = checkin_service.scan_counts()
        assert counts[door_staff.id] == {"admitted": 1, "rejected": 2}

    def test_non_ascii_token_is_recorded_as_rejected(self, db_session, door_staff):
        with pytest.raises(TicketingError) as exc:
            checkin_service.check_in("abc.éé", door_staff.id, now=T0)
        assert exc.value.details["reason"] == "malformed"

        record = db_session.query(ScanRecord).one()
        assert record.outcome == "InvalidToken"
        assert record.staff_id == door_staff.id

    def test_scan_counts_filter_by_event(self, db_session, paid_order, door_staff, event_b):
        checkin_service.check_in(paid_order.checkin_token, door_staff.id)

        assert checkin_service.scan_counts(event_id=event_b.id) == {}
        assert len(checkin_service.list_scans(staff_id=door_staff.id)) == 1


class TestVerify:

    def test_verify_does_not_admit(self, db_session, paid_order, door_staff):
        result = checkin_service.verify(paid_order.checkin_token, door_staff.id)

        assert result.ticket_count == 3
        assert _status(db_session, paid_order.id) == "confirmed"
        assert db_session.query(ScanRecord).count() == 0

    def test_verify_reports_same_failures(self, db_session, paid_order, door_staff):
        checkin_service.check_in(paid_order.checkin_token, door_staff.id)

        with pytest.raises(TicketingError) as exc:
            checkin_service.verify(paid_order.checkin_token, door_staff.id)
        assert exc.value.kind == ErrorKind.ALREADY_USED
