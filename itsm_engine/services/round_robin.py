"""
ITSM Engine Round-Robin Selector

Distributes tickets to the least-loaded member of a team.

"Load" = number of open tickets currently assigned to the member.
Ties go to whoever joined the team first, so the result is
deterministic for a given snapshot.
"""

from typing import Dict, Iterable, List, Mapping, Optional
from uuid import UUID

from ..logging import get_logger
from ..models.ticket import Ticket, TeamMember

logger = get_logger(__name__)


def team_members(team_id: UUID, members: Iterable[TeamMember]) -> List[UUID]:
    """
    Member user ids of a team in join order.

    sorted() is stable, so rows sharing a joined_at keep their
    insertion order.
    """
    rows = [m for m in members if m.team_id == team_id]
    rows.sort(key=lambda m: m.joined_at)
    return [m.user_id for m in rows]


def count_open_tickets(tickets: Iterable[Ticket]) -> Dict[UUID, int]:
    """Open ticket count per assignee. Unassigned tickets are skipped."""
    counts: Dict[UUID, int] = {}
    for ticket in tickets:
        if ticket.assigned_to is None or not ticket.is_open:
            continue
        counts[ticket.assigned_to] = counts.get(ticket.assigned_to, 0) + 1
    return counts


def select_round_robin(
    team_id: UUID,
    members: List[UUID],
    open_ticket_counts: Mapping[UUID, int],
) -> Optional[UUID]:
    """
    Pick the member with the fewest open tickets.

    Members absent from open_ticket_counts have zero open tickets.
    Returns None for a team without members.
    """
    selected = None
    lowest = None

    for user_id in members:
        count = open_ticket_counts.get(user_id, 0)
        # Strict < keeps the earliest member among ties
        if lowest is None or count < lowest:
            selected = user_id
            lowest = count

    logger.debug(
        "round_robin_selected",
        team_id=str(team_id),
        user_id=str(selected) if selected else None,
        open_tickets=lowest,
    )
    return selected
