"""
ITSM Engine Ticket Model

Tickets, the people who raise and work them, and their audit trail.

Core principles:
1. Ticket = request for help (incident, service request, inquiry)
2. assigned_to is written by the assignment resolver or an agent
3. sla_deadline is set once at creation
4. Every change leaves a history entry
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4
from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMS
# =============================================================================

class TicketType(str, Enum):
    INCIDENT = "incident"
    SERVICE_REQUEST = "service_request"
    INQUIRY = "inquiry"


class TicketStatus(str, Enum):
    NEW = "new"
    NEED_APPROVAL = "need_approval"
    IN_PROGRESS = "in_progress"
    ON_HOLD = "on_hold"
    RESOLVED = "resolved"
    CLOSED = "closed"
    REJECTED = "rejected"


# Terminal states; everything else counts toward an agent's load
CLOSED_STATUSES = frozenset({
    TicketStatus.RESOLVED,
    TicketStatus.CLOSED,
    TicketStatus.REJECTED,
})


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class Urgency(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class UserRole(str, Enum):
    USER = "user"
    AGENT = "agent"
    ADMIN = "admin"


class MemberRole(str, Enum):
    MEMBER = "member"
    LEADER = "leader"


# =============================================================================
# CORE MODELS
# =============================================================================

class Ticket(BaseModel):
    """
    The core ticket entity.

    Only category, priority and type take part in assignment matching.
    status, priority and sla_deadline drive escalation.
    """
    id: UUID = Field(default_factory=uuid4)

    title: str
    description: str = ""
    type: TicketType = TicketType.INCIDENT
    status: TicketStatus = TicketStatus.NEW
    priority: Priority = Priority.MEDIUM
    urgency: Urgency = Urgency.MEDIUM
    category: str = "General"

    created_by: UUID
    assigned_to: Optional[UUID] = None

    # SLA
    sla_deadline: Optional[datetime] = None
    resolved_at: Optional[datetime] = None

    # Timestamps
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_open(self) -> bool:
        return self.status not in CLOSED_STATUSES


class HistoryEntry(BaseModel):
    """
    One change on a ticket (audit trail).

    user_id is None for changes made by the engine itself
    (auto-assignment, escalation).
    """
    id: UUID = Field(default_factory=uuid4)
    ticket_id: UUID
    user_id: Optional[UUID] = None

    action: str  # created, assigned, escalated, updated_<field>
    old_value: Any = None
    new_value: Any = None

    created_at: datetime = Field(default_factory=utcnow)


class Comment(BaseModel):
    """Ticket comment. System comments come from escalation rules."""
    id: UUID = Field(default_factory=uuid4)
    ticket_id: UUID
    user_id: Optional[UUID] = None

    content: str
    is_system: bool = False

    created_at: datetime = Field(default_factory=utcnow)


class Notification(BaseModel):
    """In-app notification for a single user."""
    id: UUID = Field(default_factory=uuid4)
    user_id: UUID

    type: str
    title: str
    message: str
    read: bool = False
    ticket_id: Optional[UUID] = None

    created_at: datetime = Field(default_factory=utcnow)


# =============================================================================
# SUPPORTING MODELS
# =============================================================================

class User(BaseModel):
    """Requester, agent or admin."""
    id: UUID = Field(default_factory=uuid4)

    email: str
    name: str
    role: UserRole = UserRole.USER

    created_at: datetime = Field(default_factory=utcnow)


class Team(BaseModel):
    """Agent team. The leader is the target of team-based rules."""
    id: UUID = Field(default_factory=uuid4)

    name: str
    description: Optional[str] = None
    leader_id: Optional[UUID] = None

    created_at: datetime = Field(default_factory=utcnow)


class TeamMember(BaseModel):
    """
    Membership row. Join order (joined_at, then insertion order)
    is the round-robin tie-break order.
    """
    team_id: UUID
    user_id: UUID
    role: MemberRole = MemberRole.MEMBER

    joined_at: datetime = Field(default_factory=utcnow)


class SessionContext(BaseModel):
    """Who is calling, passed explicitly into every admin operation."""
    user_id: UUID
    role: UserRole = UserRole.USER
    expires_at: Optional[datetime] = None

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or utcnow()) >= self.expires_at
