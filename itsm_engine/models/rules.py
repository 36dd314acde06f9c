"""
ITSM Engine Rule Models

Admin-managed configuration read by the rules core:
- Assignment rules (who gets a new ticket)
- SLA policies (when it must be resolved)
- Escalation rules (what happens when it is not)

The core never mutates these.
"""

from datetime import datetime, timedelta
from typing import Annotated, List, Literal, Optional, Union
from uuid import UUID, uuid4
from pydantic import BaseModel, Field

from .ticket import Priority, TicketStatus, TicketType, utcnow


# =============================================================================
# TARGETS
# =============================================================================

class AgentTarget(BaseModel):
    """Assign directly to one agent."""
    type: Literal["agent"] = "agent"
    agent_id: UUID


class TeamTarget(BaseModel):
    """Assign to the team leader."""
    type: Literal["team"] = "team"
    team_id: UUID


class RoundRobinTarget(BaseModel):
    """Assign to the least-loaded team member."""
    type: Literal["round_robin"] = "round_robin"
    team_id: UUID


class NoReassign(BaseModel):
    """Escalation leaves the assignee alone."""
    type: Literal["none"] = "none"


AssignTarget = Annotated[
    Union[AgentTarget, TeamTarget, RoundRobinTarget],
    Field(discriminator="type"),
]

ReassignTarget = Annotated[
    Union[AgentTarget, TeamTarget, RoundRobinTarget, NoReassign],
    Field(discriminator="type"),
]


# =============================================================================
# ASSIGNMENT RULES
# =============================================================================

class AssignmentConditions(BaseModel):
    """
    Conditions are ANDed across fields and ORed within a field.
    An empty list places no constraint on that field.
    """
    categories: List[str] = Field(default_factory=list)
    priorities: List[Priority] = Field(default_factory=list)
    types: List[TicketType] = Field(default_factory=list)


class AssignmentRule(BaseModel):
    id: UUID = Field(default_factory=uuid4)

    name: str
    description: Optional[str] = None
    is_active: bool = True
    priority: int  # Lower = evaluated first

    conditions: AssignmentConditions = Field(default_factory=AssignmentConditions)
    assign_to: AssignTarget

    created_by: Optional[UUID] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


# =============================================================================
# SLA
# =============================================================================

class SLAPolicy(BaseModel):
    """Response/resolution targets for one ticket priority, in minutes."""
    id: UUID = Field(default_factory=uuid4)

    name: str
    priority: Priority
    response_time: int = Field(..., ge=0)
    resolution_time: int = Field(..., ge=0)
    enabled: bool = True

    created_at: datetime = Field(default_factory=utcnow)

    @property
    def resolution_window(self) -> timedelta:
        return timedelta(minutes=self.resolution_time)


# =============================================================================
# ESCALATION
# =============================================================================

class EscalationConditions(BaseModel):
    """
    All set clauses must hold. overdue_by (minutes) only matches
    tickets that carry an SLA deadline.
    """
    priorities: List[Priority] = Field(default_factory=list)
    statuses: List[TicketStatus] = Field(default_factory=list)
    overdue_by: Optional[int] = Field(None, ge=0)


class EscalationActions(BaseModel):
    notify_users: List[UUID] = Field(default_factory=list)
    notify_teams: List[UUID] = Field(default_factory=list)
    reassign_to: ReassignTarget = Field(default_factory=NoReassign)
    change_priority: Optional[Priority] = None
    add_comment: Optional[str] = None


class EscalationRule(BaseModel):
    id: UUID = Field(default_factory=uuid4)

    name: str
    description: Optional[str] = None
    is_active: bool = True
    priority: int

    conditions: EscalationConditions = Field(default_factory=EscalationConditions)
    actions: EscalationActions = Field(default_factory=EscalationActions)

    created_by: Optional[UUID] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class EscalationAction(BaseModel):
    """
    What one escalation rule wants done to one ticket.

    Planning output only; EscalationService applies it.
    """
    ticket_id: UUID
    rule_id: UUID
    rule_name: str

    reassign_to: Optional[UUID] = None
    new_priority: Optional[Priority] = None
    notify_user_ids: List[UUID] = Field(default_factory=list)
    comment_text: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return (
            self.reassign_to is None
            and self.new_priority is None
            and not self.notify_user_ids
            and self.comment_text is None
        )
