"""
Inventory ledger tests.

Verifies:
- reserve() increments sold and never passes capacity
- Per-order maximum is rejected before any write
- release() never drives sold below zero
- Availability snapshot per event
"""

import pytest
from sqlalchemy.exc import IntegrityError

from boxoffice.errors import ErrorKind, TicketingError
from boxoffice.models import TicketTier
from boxoffice.services import inventory_service


def _tier(event, name="Regular"):
    return next(t for t in event.tiers if t.name == name)


class TestReserve:

    def test_reserve_increments_sold(self, db_session, event_a):
        tier = _tier(event_a)
        inventory_service.reserve(tier.id, 3)
        db_session.commit()

        assert inventory_service.sold_count(tier.id) == 3
        assert inventory_service.remaining(tier.id) == 97

    def test_reserve_up_to_capacity_then_out_of_stock(self, db_session, make_event):
        event = make_event("Small Hall", tiers=(("Regular", 1000, 5, 5),))
        tier = _tier(event)

        inventory_service.reserve(tier.id, 5)
        db_session.commit()

        with pytest.raises(TicketingError) as exc:
            inventory_service.reserve(tier.id, 1)
        assert exc.value.kind == ErrorKind.OUT_OF_STOCK
        assert exc.value.details["remaining"] == 0
        db_session.rollback()

        assert inventory_service.sold_count(tier.id) == 5

    def test_partial_fit_is_rejected_whole(self, db_session, make_event):
        event = make_event("Small Hall", tiers=(("Regular", 1000, 5, 5),))
        tier = _tier(event)
        inventory_service.reserve(tier.id, 3)
        db_session.commit()

        with pytest.raises(TicketingError) as exc:
            inventory_service.reserve(tier.id, 3)
        assert exc.value.kind == ErrorKind.OUT_OF_STOCK
        assert exc.value.details["remaining"] == 2
        db_session.rollback()

        assert inventory_service.sold_count(tier.id) == 3

    def test_exceeds_per_order_limit_does_not_write(self, db_session, event_a):
        vip = _tier(event_a, "VIP")  # max_per_order = 4

        with pytest.raises(TicketingError) as exc:
            inventory_service.reserve(vip.id, 5)
        assert exc.value.kind == ErrorKind.EXCEEDS_PER_ORDER_LIMIT
        db_session.rollback()

        assert inventory_service.sold_count(vip.id) == 0

    @pytest.mark.parametrize("quantity", [0, -1, "2", 1.5, True])
    def test_rejects_non_positive_or_non_integer_quantity(self, db_session, event_a, quantity):
        with pytest.raises(TicketingError) as exc:
            inventory_service.reserve(_tier(event_a).id, quantity)
        assert exc.value.kind == ErrorKind.VALIDATION_FAILED

    def test_unknown_tier(self, db_session):
        with pytest.raises(TicketingError) as exc:
            inventory_service.reserve(999, 1)
        assert exc.value.kind == ErrorKind.NOT_FOUND


class TestRelease:

    def test_release_returns_units(self, db_session, event_a):
        tier = _tier(event_a)
        inventory_service.reserve(tier.id, 4)
        db_session.commit()

        assert inventory_service.release(tier.id, 4) is True
        db_session.commit()
        assert inventory_service.sold_count(tier.id) == 0

    def test_release_never_goes_below_zero(self, db_session, event_a):
        tier = _tier(event_a)
        inventory_service.reserve(tier.id, 1)
        db_session.commit()

        assert inventory_service.release(tier.id, 2) is False
        db_session.commit()
        assert inventory_service.sold_count(tier.id) == 1


class TestAvailability:

    def test_event_availability_totals(self, db_session, event_a):
        inventory_service.reserve(_tier(event_a, "VIP").id, 2)
        db_session.commit()

        snapshot = inventory_service.event_availability(event_a.id)
        assert snapshot["capacity"] == 120
        assert snapshot["sold"] == 2
        assert snapshot["remaining"] == 118
        names = {t["name"]: t for t in snapshot["tiers"]}
        assert names["VIP"]["remaining"] == 18

    def test_sold_within_capacity_is_a_database_constraint(self, db_session, make_event):
        event = make_event("Small Hall", tiers=(("Regular", 1000, 2, 2),))
        tier = db_session.get(TicketTier, _tier(event).id)
        tier.sold = 3
        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()
