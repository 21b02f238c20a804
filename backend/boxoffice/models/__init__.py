from .events import Event, TicketTier
from .orders import Order, OrderLine, PromoCode
from .auth import AdminOperator, OperatorSession, Invite
from .audit import AuditLogEntry
from .staff import EventStaff, StaffEventAssignment, ScanRecord

__all__ = [
    'Event', 'TicketTier',
    'Order', 'OrderLine', 'PromoCode',
    'AdminOperator', 'OperatorSession', 'Invite',
    'AuditLogEntry',
    'EventStaff', 'StaffEventAssignment', 'ScanRecord',
]
