"""Builders shared by the test modules."""

from datetime import datetime, timezone
from uuid import uuid4

from itsm_engine.models import Priority, Ticket, TicketStatus, TicketType

T0 = datetime(2024, 1, 15, 9, 0, tzinfo=timezone.utc)


def make_ticket(**overrides) -> Ticket:
    """Ticket with sensible defaults for rule tests."""
    data = {
        "title": "Laptop will not boot",
        "type": TicketType.INCIDENT,
        "status": TicketStatus.NEW,
        "priority": Priority.MEDIUM,
        "category": "Hardware",
        "created_by": uuid4(),
        "created_at": T0,
        "updated_at": T0,
    }
    data.update(overrides)
    return Ticket(**data)
