from __future__ import annotations

from ..extensions import db
from boxoffice.time_utils import to_utc_z


STAFF_ACTIVE = "active"
STAFF_INACTIVE = "inactive"


class EventStaff(db.Model):
    """
    Door staff who scan tickets.

    A staff member may only admit tickets for events in their assignment
    set, and only while active.
    """
    __tablename__ = "event_staff"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    national_id = db.Column(db.String(32), nullable=False, unique=True, index=True)
    phone = db.Column(db.String(32), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    status = db.Column(db.String(16), nullable=False, default=STAFF_ACTIVE)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    assignments = db.relationship(
        "StaffEventAssignment",
        backref="staff",
        lazy="selectin",
        cascade="all, delete-orphan",
    )

    @property
    def is_active(self) -> bool:
        return self.status == STAFF_ACTIVE

    @property
    def assigned_event_ids(self) -> set[int]:
        return {a.event_id for a in self.assignments}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "national_id": self.national_id,
            "phone": self.phone,
            "email": self.email,
            "status": self.status,
            "assigned_events": sorted(self.assigned_event_ids),
            "created_at": to_utc_z(self.created_at),
        }


class StaffEventAssignment(db.Model):
    """Staff member <-> event authorization scope."""
    __tablename__ = "staff_event_assignments"
    __table_args__ = (
        db.UniqueConstraint("staff_id", "event_id", name="uq_staff_event_assignments"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    staff_id = db.Column(db.Integer, db.ForeignKey("event_staff.id"), nullable=False, index=True)
    event_id = db.Column(db.Integer, db.ForeignKey("events.id"), nullable=False, index=True)
    assigned_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())


class ScanRecord(db.Model):
    """
    One check-in attempt at the door, successful or not.

    Staff ids are kept as plain integers so records outlive staff deletion.
    """
    __tablename__ = "scan_records"
    __table_args__ = (
        db.Index("ix_scan_records_staff_scanned", "staff_id", "scanned_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    staff_id = db.Column(db.Integer, nullable=True, index=True)
    order_id = db.Column(db.Integer, nullable=True, index=True)
    event_id = db.Column(db.Integer, nullable=True)

    # "admitted" or the ErrorKind value that rejected the scan
    outcome = db.Column(db.String(32), nullable=False)
    scanned_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "staff_id": self.staff_id,
            "order_id": self.order_id,
            "event_id": self.event_id,
            "outcome": self.outcome,
            "scanned_at": to_utc_z(self.scanned_at),
        }
