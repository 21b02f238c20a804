# Overview: Door staff records and their event assignments (the check-in scope).

from __future__ import annotations

import re

from sqlalchemy.exc import IntegrityError

from ..errors import ErrorKind, TicketingError
from ..extensions import db
from ..models import Event, EventStaff, StaffEventAssignment, AdminOperator
from ..models.auth import ROLE_ADMIN
from ..models.staff import STAFF_ACTIVE, STAFF_INACTIVE
from . import audit_service, permission_service


NATIONAL_ID_RE = re.compile(r"^[0-9]{16}$")


def _not_found(staff_id) -> TicketingError:
    return TicketingError(ErrorKind.NOT_FOUND, "Staff member not found", details={"staff_id": staff_id})


def _validate_fields(data: dict, *, partial: bool = False) -> dict:
    cleaned = {}
    errors = {}

    for field in ("name", "phone"):
        if field in data or not partial:
            value = (data.get(field) or "").strip()
            if not value:
                errors[field] = f"{field} is required"
            cleaned[field] = value

    if "national_id" in data or not partial:
        national_id = re.sub(r"\D", "", data.get("national_id") or "")
        if not NATIONAL_ID_RE.match(national_id):
            errors["national_id"] = "national_id must be 16 digits"
        cleaned["national_id"] = national_id

    if "email" in data:
        cleaned["email"] = (data.get("email") or "").strip().lower() or None

    if errors:
        raise TicketingError(ErrorKind.VALIDATION_FAILED, "Invalid staff details", details={"fields": errors})
    return cleaned


def get_staff(staff_id: int) -> EventStaff:
    staff = db.session.get(EventStaff, staff_id)
    if staff is None:
        raise _not_found(staff_id)
    return staff


def list_staff(*, event_id: int | None = None) -> list[EventStaff]:
    query = db.session.query(EventStaff)
    if event_id is not None:
        query = query.join(StaffEventAssignment).filter(StaffEventAssignment.event_id == event_id)
    return query.order_by(EventStaff.name, EventStaff.id).all()


def create_staff(data: dict, actor: AdminOperator) -> EventStaff:
    permission_service.require_role(actor, ROLE_ADMIN, action="create staff")
    fields = _validate_fields(data)

    if db.session.query(EventStaff.id).filter_by(national_id=fields["national_id"]).first():
        raise TicketingError(
            ErrorKind.CONFLICT,
            "A staff member with this national ID already exists",
            details={"field": "national_id"},
        )

    staff = EventStaff(status=STAFF_ACTIVE, **fields)
    db.session.add(staff)
    try:
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        raise TicketingError(
            ErrorKind.CONFLICT,
            "A staff member with this national ID already exists",
            details={"field": "national_id"},
        )

    for event_id in data.get("event_ids") or []:
        _add_assignment(staff, event_id)

    audit_service.stage(actor, "STAFF_CREATED", f"Created staff {staff.name}")
    db.session.commit()
    return staff


def update_staff(staff_id: int, data: dict, actor: AdminOperator) -> EventStaff:
    permission_service.require_role(actor, ROLE_ADMIN, action="update staff")
    staff = get_staff(staff_id)
    fields = _validate_fields(data, partial=True)

    national_id = fields.get("national_id")
    if national_id and national_id != staff.national_id:
        clash = db.session.query(EventStaff.id).filter(
            EventStaff.national_id == national_id, EventStaff.id != staff.id
        ).first()
        if clash:
            raise TicketingError(
                ErrorKind.CONFLICT,
                "A staff member with this national ID already exists",
                details={"field": "national_id"},
            )

    for key, value in fields.items():
        setattr(staff, key, value)

    audit_service.stage(actor, "STAFF_UPDATED", f"Updated staff {staff.name}")
    db.session.commit()
    return staff


def set_status(staff_id: int, is_active: bool, actor: AdminOperator) -> EventStaff:
    permission_service.require_role(actor, ROLE_ADMIN, action="change staff status")
    staff = get_staff(staff_id)
    staff.status = STAFF_ACTIVE if is_active else STAFF_INACTIVE
    audit_service.stage(
        actor,
        "STAFF_ACTIVATED" if is_active else "STAFF_DEACTIVATED",
        f"Staff {staff.name}",
    )
    db.session.commit()
    return staff


def delete_staff(staff_id: int, actor: AdminOperator) -> None:
    """Scan records keep the staff id; only the assignments go."""
    permission_service.require_role(actor, ROLE_ADMIN, action="delete staff")
    staff = get_staff(staff_id)
    name = staff.name
    db.session.delete(staff)
    audit_service.stage(actor, "STAFF_DELETED", f"Deleted staff {name}")
    db.session.commit()


def _add_assignment(staff: EventStaff, event_id: int) -> bool:
    if db.session.get(Event, event_id) is None:
        raise TicketingError(ErrorKind.NOT_FOUND, "Event not found", details={"event_id": event_id})
    if event_id in staff.assigned_event_ids:
        return False
    staff.assignments.append(StaffEventAssignment(event_id=event_id))
    return True


def assign_event(staff_id: int, event_id: int, actor: AdminOperator) -> EventStaff:
    permission_service.require_role(actor, ROLE_ADMIN, action="assign staff")
    staff = get_staff(staff_id)
    if _add_assignment(staff, event_id):
        audit_service.stage(actor, "STAFF_ASSIGNED", f"Assigned {staff.name} to event {event_id}")
        db.session.commit()
    return staff


def unassign_event(staff_id: int, event_id: int, actor: AdminOperator) -> EventStaff:
    permission_service.require_role(actor, ROLE_ADMIN, action="unassign staff")
    staff = get_staff(staff_id)
    for assignment in list(staff.assignments):
        if assignment.event_id == event_id:
            staff.assignments.remove(assignment)
            audit_service.stage(actor, "STAFF_UNASSIGNED", f"Removed {staff.name} from event {event_id}")
            db.session.commit()
            break
    return staff
