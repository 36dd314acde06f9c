"""
ITSM Engine Assignment Resolver

First-match-wins routing of new tickets.

Rules are evaluated by priority ascending. The first active rule whose
conditions match decides the assignee; later rules are never consulted,
even when the winning rule's target resolves to nobody.

Target types:
- agent        -> that agent, no existence check
- team         -> the team leader, or nobody
- round_robin  -> least-loaded team member (see round_robin.py)
"""

from typing import Iterable, Mapping, Optional, Protocol, Sequence
from uuid import UUID

from ..logging import get_logger
from ..models.rules import (
    AgentTarget,
    AssignmentRule,
    RoundRobinTarget,
    TeamTarget,
)
from ..models.ticket import Priority, Team, TeamMember, TicketType
from .round_robin import select_round_robin, team_members

logger = get_logger(__name__)


class Routable(Protocol):
    """The three ticket fields assignment rules look at."""
    category: str
    priority: Priority
    type: TicketType


def ordered_rules(rules: Iterable) -> list:
    """
    Active rules in evaluation order.

    Equal priorities fall back to creation time, then id, so the
    order never depends on how the caller happened to list them.
    """
    active = [r for r in rules if r.is_active]
    return sorted(active, key=lambda r: (r.priority, r.created_at, str(r.id)))


def rule_matches(rule: AssignmentRule, ticket: Routable) -> bool:
    """AND across condition fields, OR within each field."""
    conditions = rule.conditions

    if conditions.categories and ticket.category not in conditions.categories:
        return False
    if conditions.priorities and ticket.priority not in conditions.priorities:
        return False
    if conditions.types and ticket.type not in conditions.types:
        return False

    return True


def find_matching_rule(
    ticket: Routable,
    rules: Iterable[AssignmentRule],
) -> Optional[AssignmentRule]:
    """First active rule matching the ticket, or None."""
    for rule in ordered_rules(rules):
        if rule_matches(rule, ticket):
            return rule
    return None


def resolve_target(
    target,
    teams: Mapping[UUID, Team],
    members: Sequence[TeamMember],
    open_ticket_counts: Mapping[UUID, int],
) -> Optional[UUID]:
    """
    Turn a rule target into a user id.

    Unknown teams, leaderless teams and empty teams all resolve
    to None.
    """
    if isinstance(target, AgentTarget):
        return target.agent_id

    if isinstance(target, TeamTarget):
        team = teams.get(target.team_id)
        if team is None:
            return None
        return team.leader_id

    if isinstance(target, RoundRobinTarget):
        if target.team_id not in teams:
            return None
        return select_round_robin(
            target.team_id,
            team_members(target.team_id, members),
            open_ticket_counts,
        )

    return None


def resolve_assignment(
    ticket: Routable,
    rules: Iterable[AssignmentRule],
    teams: Mapping[UUID, Team],
    members: Sequence[TeamMember],
    open_ticket_counts: Optional[Mapping[UUID, int]] = None,
) -> Optional[UUID]:
    """
    Resolve who should get the ticket.

    Pure function over the supplied snapshot. The caller writes
    assigned_to back onto the ticket. None means "leave unassigned".
    """
    rule = find_matching_rule(ticket, rules)
    if rule is None:
        logger.debug("assignment_no_rule_matched", category=ticket.category)
        return None

    assignee = resolve_target(
        rule.assign_to, teams, members, open_ticket_counts or {}
    )

    logger.debug(
        "assignment_rule_matched",
        rule_id=str(rule.id),
        rule_name=rule.name,
        target_type=rule.assign_to.type,
        assignee_id=str(assignee) if assignee else None,
    )
    return assignee


def index_teams(teams: Iterable[Team]) -> dict:
    """Team directory keyed by id."""
    return {team.id: team for team in teams}
