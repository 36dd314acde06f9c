"""
ITSM Engine Services

Pure rules core:
- assignment   (first-match-wins routing)
- round_robin  (least-loaded member)
- sla          (deadline clock)
- escalation   (overdue / condition scan)

Async application services wrap the core with repositories.
"""

from dataclasses import dataclass

from .assignment import resolve_assignment, find_matching_rule, resolve_target
from .round_robin import select_round_robin, count_open_tickets, team_members
from .sla import compute_deadline, sla_state, time_remaining, SLAState, SLAAdminService
from .escalation import evaluate, EscalationService
from .rules import RuleAdminService
from .teams import TeamService
from .tickets import TicketService

__all__ = [
    # Core
    "resolve_assignment", "find_matching_rule", "resolve_target",
    "select_round_robin", "count_open_tickets", "team_members",
    "compute_deadline", "sla_state", "time_remaining", "SLAState",
    "evaluate",

    # Application services
    "EscalationService", "SLAAdminService", "RuleAdminService",
    "TeamService", "TicketService",
    "Services", "build_services",
]


@dataclass
class Services:
    tickets: TicketService
    rules: RuleAdminService
    sla: SLAAdminService
    escalations: EscalationService
    teams: TeamService


def build_services(store) -> Services:
    """Wire every service to one repositories.Store."""
    return Services(
        tickets=TicketService(
            ticket_repo=store.tickets,
            rule_repo=store.assignment_rules,
            policy_repo=store.sla_policies,
            team_repo=store.teams,
            member_repo=store.members,
            history_repo=store.history,
            comment_repo=store.comments,
        ),
        rules=RuleAdminService(store.assignment_rules),
        sla=SLAAdminService(store.sla_policies, store.escalation_rules),
        escalations=EscalationService(
            ticket_repo=store.tickets,
            escalation_rule_repo=store.escalation_rules,
            team_repo=store.teams,
            member_repo=store.members,
            history_repo=store.history,
            comment_repo=store.comments,
            notification_repo=store.notifications,
        ),
        teams=TeamService(store.teams, store.members),
    )
