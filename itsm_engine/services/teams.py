"""
ITSM Engine Team Service

Teams feed two rule targets: the leader (team rules) and the member
list in join order (round-robin rules).
"""

from typing import List, Optional
from uuid import UUID

from ..errors import DuplicateTeamError
from ..logging import get_logger
from ..models.ticket import MemberRole, SessionContext, Team, TeamMember
from .auth import require_admin

logger = get_logger(__name__)


class TeamService:

    def __init__(self, team_repo, member_repo):
        self.teams = team_repo
        self.members = member_repo

    async def list_teams(self) -> List[Team]:
        return await self.teams.list()

    async def get_members(self, team_id: UUID) -> List[TeamMember]:
        await self.teams.get(team_id)
        return await self.members.get_for_team(team_id)

    async def create_team(
        self,
        session: SessionContext,
        name: str,
        description: Optional[str] = None,
        leader_id: Optional[UUID] = None,
    ) -> Team:
        """A leader given here also becomes the team's first member."""
        require_admin(session, action="manage teams")

        for existing in await self.teams.list():
            if existing.name == name:
                raise DuplicateTeamError("A team with this name already exists")

        team = Team(name=name, description=description, leader_id=leader_id)
        await self.teams.save(team)

        if leader_id is not None:
            await self.members.add(TeamMember(
                team_id=team.id,
                user_id=leader_id,
                role=MemberRole.LEADER,
            ))

        logger.info("team_created", team_id=str(team.id), name=name)
        return team

    async def add_member(
        self,
        session: SessionContext,
        team_id: UUID,
        user_id: UUID,
        role: MemberRole = MemberRole.MEMBER,
    ) -> TeamMember:
        """Adding an existing member is a no-op returning the current row."""
        require_admin(session, action="manage teams")
        team = await self.teams.get(team_id)

        for member in await self.members.get_for_team(team_id):
            if member.user_id == user_id:
                return member

        member = TeamMember(team_id=team_id, user_id=user_id, role=role)
        await self.members.add(member)

        if role == MemberRole.LEADER and team.leader_id is None:
            team.leader_id = user_id
            await self.teams.save(team)

        logger.info("team_member_added", team_id=str(team_id), user_id=str(user_id))
        return member

    async def remove_member(self, session: SessionContext, team_id: UUID, user_id: UUID) -> bool:
        require_admin(session, action="manage teams")
        team = await self.teams.get(team_id)

        removed = await self.members.remove(team_id, user_id)
        if removed and team.leader_id == user_id:
            team.leader_id = None
            await self.teams.save(team)

        logger.info(
            "team_member_removed",
            team_id=str(team_id),
            user_id=str(user_id),
            removed=removed,
        )
        return removed
