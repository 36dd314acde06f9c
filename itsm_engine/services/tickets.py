"""
ITSM Engine Ticket Service

Ticket lifecycle glue around the rules core:
- create: SLA deadline + auto-assignment + history
- update / assign: field changes with one history entry per change
- list: filtered, newest first

Round-robin decisions read open-ticket counts and then write the
assignment. Two concurrent creations routed to the same team could
both pick the same least-loaded member, so those decisions are
serialized per team with an asyncio.Lock. This only covers a single
process; multiple workers still race.
"""

import asyncio
from contextlib import nullcontext
from datetime import datetime
from typing import Dict, List, Optional
from uuid import UUID

from ..errors import TicketNotFoundError
from ..logging import get_logger
from ..models.rules import RoundRobinTarget
from ..models.ticket import (
    Comment,
    HistoryEntry,
    Priority,
    SessionContext,
    Ticket,
    TicketStatus,
    TicketType,
    Urgency,
    utcnow,
)
from .assignment import find_matching_rule, index_teams, resolve_assignment
from .round_robin import count_open_tickets
from .sla import compute_deadline

logger = get_logger(__name__)

# Fields a caller may change through update_ticket
UPDATABLE_FIELDS = (
    "title", "description", "status", "priority", "urgency", "category", "assigned_to",
)

RESOLVING_STATUSES = (TicketStatus.RESOLVED, TicketStatus.CLOSED)


class TicketService:

    def __init__(
        self,
        ticket_repo,
        rule_repo,
        policy_repo,
        team_repo,
        member_repo,
        history_repo,
        comment_repo,
    ):
        self.tickets = ticket_repo
        self.rules = rule_repo
        self.policies = policy_repo
        self.teams = team_repo
        self.members = member_repo
        self.history = history_repo
        self.comments = comment_repo
        self._team_locks: Dict[UUID, asyncio.Lock] = {}

    async def create_ticket(
        self,
        title: str,
        created_by: UUID,
        description: str = "",
        type: TicketType = TicketType.INCIDENT,
        priority: Priority = Priority.MEDIUM,
        urgency: Urgency = Urgency.MEDIUM,
        category: str = "General",
        assigned_to: Optional[UUID] = None,
        now: Optional[datetime] = None,
    ) -> Ticket:
        """
        Create a ticket.

        The SLA deadline is fixed here. Without an explicit assignee
        the assignment rules pick one; no match leaves it unassigned.
        """
        now = now or utcnow()

        ticket = Ticket(
            title=title,
            description=description,
            type=type,
            status=TicketStatus.NEW,
            priority=priority,
            urgency=urgency,
            category=category,
            created_by=created_by,
            assigned_to=assigned_to,
            sla_deadline=compute_deadline(priority, await self.policies.list(), now),
            created_at=now,
            updated_at=now,
        )
        await self.tickets.save(ticket)

        await self.history.add(HistoryEntry(
            ticket_id=ticket.id,
            user_id=created_by,
            action="created",
            new_value={"status": TicketStatus.NEW.value},
            created_at=now,
        ))

        if ticket.assigned_to is None:
            ticket = await self.auto_assign(ticket, now)

        logger.info(
            "ticket_created",
            ticket_id=str(ticket.id),
            priority=ticket.priority.value,
            category=ticket.category,
            assigned_to=str(ticket.assigned_to) if ticket.assigned_to else None,
            sla_deadline=ticket.sla_deadline.isoformat() if ticket.sla_deadline else None,
        )
        return ticket

    async def auto_assign(self, ticket: Ticket, now: Optional[datetime] = None) -> Ticket:
        """Run the assignment rules against a ticket and store the result."""
        now = now or utcnow()
        rules = await self.rules.list()
        rule = find_matching_rule(ticket, rules)

        async with self._lock_for(rule.assign_to if rule else None):
            open_tickets = await self.tickets.get_open()
            assignee = resolve_assignment(
                ticket,
                rules,
                teams=index_teams(await self.teams.list()),
                members=await self.members.list(),
                open_ticket_counts=count_open_tickets(open_tickets),
            )

            if assignee is None:
                logger.info("ticket_left_unassigned", ticket_id=str(ticket.id))
                return ticket

            ticket.assigned_to = assignee
            ticket.updated_at = now
            await self.tickets.save(ticket)

        await self.history.add(HistoryEntry(
            ticket_id=ticket.id,
            action="assigned",
            old_value=None,
            new_value=str(assignee),
            created_at=now,
        ))
        logger.info(
            "ticket_auto_assigned",
            ticket_id=str(ticket.id),
            rule_id=str(rule.id),
            assignee_id=str(assignee),
        )
        return ticket

    async def get_ticket(self, ticket_id: UUID) -> Ticket:
        ticket = await self.tickets.find(ticket_id)
        if ticket is None:
            raise TicketNotFoundError(ticket_id)
        return ticket

    async def list_tickets(
        self,
        status: Optional[TicketStatus] = None,
        priority: Optional[Priority] = None,
        category: Optional[str] = None,
        assigned_to: Optional[UUID] = None,
        created_by: Optional[UUID] = None,
    ) -> List[Ticket]:
        """Filtered tickets, newest first."""
        filtered = await self.tickets.list()

        if status:
            filtered = [t for t in filtered if t.status == status]
        if priority:
            filtered = [t for t in filtered if t.priority == priority]
        if category:
            filtered = [t for t in filtered if t.category == category]
        if assigned_to:
            filtered = [t for t in filtered if t.assigned_to == assigned_to]
        if created_by:
            filtered = [t for t in filtered if t.created_by == created_by]

        return sorted(filtered, key=lambda t: t.created_at, reverse=True)

    async def update_ticket(
        self,
        ticket_id: UUID,
        session: SessionContext,
        **changes,
    ) -> Ticket:
        """
        Patch ticket fields.

        Moving to resolved or closed stamps resolved_at. The SLA
        deadline is never recomputed here, priority changes included.
        """
        ticket = await self.get_ticket(ticket_id)
        now = utcnow()

        unknown = set(changes) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValueError(f"Cannot update fields: {', '.join(sorted(unknown))}")

        data = ticket.model_dump()
        diffs = {}
        for field, value in changes.items():
            if value is None and field != "assigned_to":
                continue
            old = getattr(ticket, field)
            data[field] = value
            diffs[field] = old

        updated = Ticket.model_validate(data)
        for field in list(diffs):
            if getattr(updated, field) == diffs[field]:
                del diffs[field]

        if updated.status in RESOLVING_STATUSES and ticket.status not in RESOLVING_STATUSES:
            updated.resolved_at = now
        updated.updated_at = now
        await self.tickets.save(updated)

        for field, old in diffs.items():
            await self.history.add(HistoryEntry(
                ticket_id=ticket_id,
                user_id=session.user_id,
                action=f"updated_{field}",
                old_value=_plain(old),
                new_value=_plain(getattr(updated, field)),
                created_at=now,
            ))

        logger.info("ticket_updated", ticket_id=str(ticket_id), fields=sorted(diffs))
        return updated

    async def assign(
        self,
        ticket_id: UUID,
        assignee_id: UUID,
        session: SessionContext,
    ) -> Ticket:
        """Manual assignment by an agent or admin."""
        ticket = await self.get_ticket(ticket_id)
        now = utcnow()

        old_assignee = ticket.assigned_to
        ticket.assigned_to = assignee_id
        ticket.updated_at = now
        await self.tickets.save(ticket)

        await self.history.add(HistoryEntry(
            ticket_id=ticket_id,
            user_id=session.user_id,
            action="assigned",
            old_value=_plain(old_assignee),
            new_value=str(assignee_id),
            created_at=now,
        ))

        logger.info(
            "ticket_assigned",
            ticket_id=str(ticket_id),
            assignee_id=str(assignee_id),
            by=str(session.user_id),
        )
        return ticket

    async def get_history(self, ticket_id: UUID) -> List[HistoryEntry]:
        await self.get_ticket(ticket_id)
        return await self.history.get_for_ticket(ticket_id)

    async def add_comment(
        self,
        ticket_id: UUID,
        session: SessionContext,
        content: str,
    ) -> Comment:
        await self.get_ticket(ticket_id)
        comment = Comment(ticket_id=ticket_id, user_id=session.user_id, content=content)
        await self.comments.add(comment)
        return comment

    async def get_comments(self, ticket_id: UUID) -> List[Comment]:
        await self.get_ticket(ticket_id)
        return await self.comments.get_for_ticket(ticket_id)

    # =========================================================================
    # Private methods
    # =========================================================================

    def _lock_for(self, target):
        if not isinstance(target, RoundRobinTarget):
            return nullcontext()
        return self._team_locks.setdefault(target.team_id, asyncio.Lock())


def _plain(value):
    """History values are stored as plain JSON-able data."""
    if value is None:
        return None
    if hasattr(value, "value"):
        return value.value
    if isinstance(value, UUID):
        return str(value)
    return value
