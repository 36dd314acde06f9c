"""
ITSM Engine Models

Tickets, teams, SLA policies, assignment and escalation rules.
"""

from .ticket import (
    # Enums
    TicketType,
    TicketStatus,
    Priority,
    Urgency,
    UserRole,
    MemberRole,
    CLOSED_STATUSES,

    # Core models
    Ticket,
    HistoryEntry,
    Comment,
    Notification,

    # Supporting models
    User,
    Team,
    TeamMember,
    SessionContext,
    utcnow,
)
from .rules import (
    AgentTarget,
    TeamTarget,
    RoundRobinTarget,
    NoReassign,
    AssignTarget,
    ReassignTarget,
    AssignmentConditions,
    AssignmentRule,
    SLAPolicy,
    EscalationConditions,
    EscalationActions,
    EscalationRule,
    EscalationAction,
)

__all__ = [
    "TicketType", "TicketStatus", "Priority", "Urgency", "UserRole", "MemberRole",
    "CLOSED_STATUSES",
    "Ticket", "HistoryEntry", "Comment", "Notification",
    "User", "Team", "TeamMember", "SessionContext", "utcnow",
    "AgentTarget", "TeamTarget", "RoundRobinTarget", "NoReassign",
    "AssignTarget", "ReassignTarget",
    "AssignmentConditions", "AssignmentRule", "SLAPolicy",
    "EscalationConditions", "EscalationActions", "EscalationRule", "EscalationAction",
]
