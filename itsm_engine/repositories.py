"""
ITSM Engine Repositories

In-memory async repositories. They stand in for the hosted document
store: services only see get/find/save/delete/list plus a few finders,
and every read hands out a copy so callers must save() to persist.
"""

from dataclasses import dataclass, field
from typing import Dict, Generic, List, Optional, Type, TypeVar
from uuid import UUID

from .errors import NotFoundError, TicketNotFoundError, TeamNotFoundError
from .models import (
    AssignmentRule,
    Comment,
    EscalationRule,
    HistoryEntry,
    Notification,
    Priority,
    SLAPolicy,
    Team,
    TeamMember,
    Ticket,
)

T = TypeVar("T")


class InMemoryRepository(Generic[T]):
    """Keyed by the model's id, iterated in insertion order."""

    not_found: Type[NotFoundError] = NotFoundError

    def __init__(self):
        self._items: Dict[UUID, T] = {}

    async def get(self, item_id: UUID) -> T:
        item = self._items.get(item_id)
        if item is None:
            raise self.not_found(item_id)
        return item.model_copy(deep=True)

    async def find(self, item_id: UUID) -> Optional[T]:
        item = self._items.get(item_id)
        return item.model_copy(deep=True) if item is not None else None

    async def save(self, item: T) -> T:
        self._items[item.id] = item.model_copy(deep=True)
        return item

    async def delete(self, item_id: UUID) -> None:
        if self._items.pop(item_id, None) is None:
            raise self.not_found(item_id)

    async def list(self) -> List[T]:
        return [item.model_copy(deep=True) for item in self._items.values()]


class AppendOnlyRepository(Generic[T]):
    """Log-style storage for history, comments and notifications."""

    def __init__(self):
        self._items: List[T] = []

    async def add(self, item: T) -> T:
        self._items.append(item.model_copy(deep=True))
        return item

    async def list(self) -> List[T]:
        return [item.model_copy(deep=True) for item in self._items]


# =============================================================================
# ENTITY REPOSITORIES
# =============================================================================

class TicketRepository(InMemoryRepository[Ticket]):
    not_found = TicketNotFoundError

    async def get_open(self) -> List[Ticket]:
        return [t for t in await self.list() if t.is_open]


class TeamRepository(InMemoryRepository[Team]):
    not_found = TeamNotFoundError


class AssignmentRuleRepository(InMemoryRepository[AssignmentRule]):
    pass


class SLAPolicyRepository(InMemoryRepository[SLAPolicy]):

    async def get_by_priority(self, priority: Priority) -> List[SLAPolicy]:
        return [p for p in await self.list() if p.priority == priority]


class EscalationRuleRepository(InMemoryRepository[EscalationRule]):

    async def get_active(self) -> List[EscalationRule]:
        return [r for r in await self.list() if r.is_active]


class TeamMemberRepository(AppendOnlyRepository[TeamMember]):
    """Membership rows in join order."""

    async def get_for_team(self, team_id: UUID) -> List[TeamMember]:
        return [m for m in await self.list() if m.team_id == team_id]

    async def remove(self, team_id: UUID, user_id: UUID) -> bool:
        before = len(self._items)
        self._items = [
            m for m in self._items
            if not (m.team_id == team_id and m.user_id == user_id)
        ]
        return len(self._items) != before


class HistoryRepository(AppendOnlyRepository[HistoryEntry]):

    async def get_for_ticket(self, ticket_id: UUID) -> List[HistoryEntry]:
        return [e for e in await self.list() if e.ticket_id == ticket_id]

    async def get_by_action(self, action: str) -> List[HistoryEntry]:
        return [e for e in await self.list() if e.action == action]


class CommentRepository(AppendOnlyRepository[Comment]):

    async def get_for_ticket(self, ticket_id: UUID) -> List[Comment]:
        return [c for c in await self.list() if c.ticket_id == ticket_id]


class NotificationRepository(AppendOnlyRepository[Notification]):

    async def get_for_user(
        self,
        user_id: UUID,
        read: Optional[bool] = None,
    ) -> List[Notification]:
        notifications = [
            n for n in await self.list()
            if n.user_id == user_id and (read is None or n.read == read)
        ]
        return sorted(notifications, key=lambda n: n.created_at, reverse=True)


# =============================================================================
# STORE
# =============================================================================

@dataclass
class Store:
    """Every repository the services need, wired together."""
    tickets: TicketRepository = field(default_factory=TicketRepository)
    teams: TeamRepository = field(default_factory=TeamRepository)
    members: TeamMemberRepository = field(default_factory=TeamMemberRepository)
    assignment_rules: AssignmentRuleRepository = field(default_factory=AssignmentRuleRepository)
    sla_policies: SLAPolicyRepository = field(default_factory=SLAPolicyRepository)
    escalation_rules: EscalationRuleRepository = field(default_factory=EscalationRuleRepository)
    history: HistoryRepository = field(default_factory=HistoryRepository)
    comments: CommentRepository = field(default_factory=CommentRepository)
    notifications: NotificationRepository = field(default_factory=NotificationRepository)
