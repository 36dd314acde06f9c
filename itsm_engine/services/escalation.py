"""
ITSM Engine Escalation Evaluator

Periodic scan of open tickets against escalation rules.

Two halves:
1. evaluate() - pure planning. Snapshot in, list of EscalationAction out.
2. EscalationService - loads the snapshot, calls evaluate(), writes the
   result (reassign, priority, system comment, notifications, history).

Matching is first-match-wins per ticket, rules in priority order.
A rule matches only when ALL of its set clauses hold:
- ticket.priority in conditions.priorities (if any listed)
- ticket.status in conditions.statuses (if any listed)
- now - ticket.sla_deadline >= overdue_by minutes (if overdue_by set)
"""

from datetime import datetime, timedelta
from typing import AbstractSet, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple
from uuid import UUID

from ..logging import get_logger
from ..models.rules import EscalationAction, EscalationRule
from ..models.ticket import (
    Comment,
    HistoryEntry,
    Notification,
    Team,
    TeamMember,
    Ticket,
    utcnow,
)
from .assignment import index_teams, ordered_rules, resolve_target
from .round_robin import count_open_tickets, team_members

logger = get_logger(__name__)

ESCALATED = "escalated"


# =============================================================================
# PLANNING
# =============================================================================

def escalation_matches(
    rule: EscalationRule,
    ticket: Ticket,
    now: datetime,
) -> bool:
    """AND of every clause the rule sets."""
    conditions = rule.conditions

    if conditions.priorities and ticket.priority not in conditions.priorities:
        return False

    if conditions.statuses and ticket.status not in conditions.statuses:
        return False

    if conditions.overdue_by is not None:
        if ticket.sla_deadline is None:
            return False
        overdue = now - ticket.sla_deadline
        if overdue < timedelta(minutes=conditions.overdue_by):
            return False

    return True


def notify_recipients(
    rule: EscalationRule,
    members: Sequence[TeamMember],
) -> List[UUID]:
    """notify_users followed by members of notify_teams, de-duplicated."""
    recipients: List[UUID] = []
    seen: Set[UUID] = set()

    candidates = list(rule.actions.notify_users)
    for team_id in rule.actions.notify_teams:
        candidates.extend(team_members(team_id, members))

    for user_id in candidates:
        if user_id not in seen:
            seen.add(user_id)
            recipients.append(user_id)

    return recipients


def evaluate(
    tickets: Iterable[Ticket],
    rules: Iterable[EscalationRule],
    teams: Mapping[UUID, Team],
    members: Sequence[TeamMember],
    open_ticket_counts: Mapping[UUID, int],
    now: datetime,
    applied: AbstractSet[Tuple[UUID, UUID]] = frozenset(),
) -> List[EscalationAction]:
    """
    Plan escalations for a snapshot.

    Closed tickets and tickets matching no rule produce nothing.
    Rules in applied (ticket_id, rule_id) pairs are skipped for that
    ticket, so the next tier can match once an earlier one has fired.
    Round-robin reassignments update a working copy of the counts, so
    tickets escalated in the same pass spread across the team.
    A reassignment target that cannot be resolved (deleted team,
    no leader, no members) yields reassign_to=None rather than an error.
    """
    active = ordered_rules(rules)
    counts: Dict[UUID, int] = dict(open_ticket_counts)
    planned: List[EscalationAction] = []

    for ticket in tickets:
        if not ticket.is_open:
            continue

        rule = next(
            (
                r for r in active
                if (ticket.id, r.id) not in applied and escalation_matches(r, ticket, now)
            ),
            None,
        )
        if rule is None:
            continue

        actions = rule.actions
        reassign_to = resolve_target(actions.reassign_to, teams, members, counts)
        if reassign_to is not None and reassign_to != ticket.assigned_to:
            counts[reassign_to] = counts.get(reassign_to, 0) + 1
            if ticket.assigned_to is not None and counts.get(ticket.assigned_to, 0) > 0:
                counts[ticket.assigned_to] -= 1

        planned.append(EscalationAction(
            ticket_id=ticket.id,
            rule_id=rule.id,
            rule_name=rule.name,
            reassign_to=reassign_to,
            new_priority=actions.change_priority,
            notify_user_ids=notify_recipients(rule, members),
            comment_text=actions.add_comment or None,
        ))

    return planned


# =============================================================================
# SERVICE
# =============================================================================

class EscalationService:
    """
    Applies escalation plans.

    Runs periodically (every few minutes, see scheduler.py). A rule is
    applied to a given ticket at most once; later runs skip
    (ticket, rule) pairs already recorded in the ticket history.
    """

    def __init__(
        self,
        ticket_repo,
        escalation_rule_repo,
        team_repo,
        member_repo,
        history_repo,
        comment_repo,
        notification_repo,
    ):
        self.tickets = ticket_repo
        self.rules = escalation_rule_repo
        self.teams = team_repo
        self.members = member_repo
        self.history = history_repo
        self.comments = comment_repo
        self.notifications = notification_repo

    async def plan(self, now: Optional[datetime] = None) -> List[EscalationAction]:
        """Evaluate the current snapshot without writing anything."""
        now = now or utcnow()
        tickets = await self.tickets.list()

        return evaluate(
            tickets=tickets,
            rules=await self.rules.get_active(),
            teams=index_teams(await self.teams.list()),
            members=await self.members.list(),
            open_ticket_counts=count_open_tickets(tickets),
            now=now,
            applied=await self._applied_pairs(),
        )

    async def run(self, now: Optional[datetime] = None) -> List[EscalationAction]:
        """
        One escalation pass. Returns the bundles that were applied.
        """
        now = now or utcnow()
        actions = await self.plan(now)

        for action in actions:
            await self.apply(action, now)

        logger.info("escalation_pass_complete", applied=len(actions))
        return actions

    async def apply(self, action: EscalationAction, now: Optional[datetime] = None) -> Ticket:
        """Write one bundle to storage."""
        now = now or utcnow()
        ticket = await self.tickets.get(action.ticket_id)

        if action.reassign_to is not None and action.reassign_to != ticket.assigned_to:
            await self.history.add(HistoryEntry(
                ticket_id=ticket.id,
                action="assigned",
                old_value=_as_str(ticket.assigned_to),
                new_value=str(action.reassign_to),
                created_at=now,
            ))
            ticket.assigned_to = action.reassign_to

        if action.new_priority is not None and action.new_priority != ticket.priority:
            await self.history.add(HistoryEntry(
                ticket_id=ticket.id,
                action="updated_priority",
                old_value=ticket.priority.value,
                new_value=action.new_priority.value,
                created_at=now,
            ))
            ticket.priority = action.new_priority

        ticket.updated_at = now
        await self.tickets.save(ticket)

        if action.comment_text:
            await self.comments.add(Comment(
                ticket_id=ticket.id,
                content=action.comment_text,
                is_system=True,
                created_at=now,
            ))

        for user_id in action.notify_user_ids:
            await self.notifications.add(Notification(
                user_id=user_id,
                type="escalation",
                title=f"Ticket escalated: {ticket.title}",
                message=f"Escalation rule '{action.rule_name}' applied.",
                ticket_id=ticket.id,
                created_at=now,
            ))

        await self.history.add(HistoryEntry(
            ticket_id=ticket.id,
            action=ESCALATED,
            new_value={"rule_id": str(action.rule_id), "rule_name": action.rule_name},
            created_at=now,
        ))

        logger.info(
            "escalation_applied",
            ticket_id=str(ticket.id),
            rule_id=str(action.rule_id),
            reassigned_to=_as_str(action.reassign_to),
            new_priority=action.new_priority.value if action.new_priority else None,
            notified=len(action.notify_user_ids),
        )
        return ticket

    # =========================================================================
    # Private methods
    # =========================================================================

    async def _applied_pairs(self) -> Set[Tuple[UUID, UUID]]:
        pairs = set()
        for entry in await self.history.get_by_action(ESCALATED):
            pairs.add((entry.ticket_id, UUID(entry.new_value["rule_id"])))
        return pairs


def _as_str(value) -> Optional[str]:
    return str(value) if value is not None else None
