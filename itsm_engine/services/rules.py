"""
ITSM Engine Assignment Rule Management

Admin CRUD for assignment rules. The resolver only ever reads them.
"""

from typing import Dict, List, Optional
from uuid import UUID

from ..errors import RuleNotFoundError
from ..logging import get_logger
from ..models.rules import AssignmentConditions, AssignmentRule
from ..models.ticket import SessionContext, utcnow
from .assignment import find_matching_rule, Routable
from .auth import require_admin

logger = get_logger(__name__)


class RuleAdminService:
    """
    Create, edit, toggle, reorder and delete assignment rules.

    Reorder rewrites priorities to 1..n in the given order, which is
    also how ties between equal priorities get cleaned up.
    """

    def __init__(self, rule_repo):
        self.rules = rule_repo

    async def list_rules(self) -> List[AssignmentRule]:
        """All rules, lowest priority value first."""
        rules = await self.rules.list()
        return sorted(rules, key=lambda r: (r.priority, r.created_at))

    async def get_rule(self, rule_id: UUID) -> AssignmentRule:
        rule = await self.rules.find(rule_id)
        if rule is None:
            raise RuleNotFoundError(rule_id)
        return rule

    async def create_rule(
        self,
        session: SessionContext,
        name: str,
        priority: int,
        assign_to,
        conditions: Optional[AssignmentConditions] = None,
        is_active: bool = True,
        description: Optional[str] = None,
    ) -> AssignmentRule:
        require_admin(session, action="manage assignment rules")

        rule = AssignmentRule(
            name=name,
            description=description,
            is_active=is_active,
            priority=priority,
            conditions=conditions or AssignmentConditions(),
            assign_to=assign_to,
            created_by=session.user_id,
        )
        await self.rules.save(rule)

        logger.info(
            "assignment_rule_created",
            rule_id=str(rule.id),
            name=rule.name,
            priority=rule.priority,
            target_type=rule.assign_to.type,
        )
        return rule

    async def update_rule(
        self,
        session: SessionContext,
        rule_id: UUID,
        **changes,
    ) -> AssignmentRule:
        """Replace the given top-level fields; None leaves a field alone."""
        require_admin(session, action="manage assignment rules")
        rule = await self.get_rule(rule_id)

        data = rule.model_dump()
        data.update({k: v for k, v in changes.items() if v is not None})
        data["updated_at"] = utcnow()

        updated = AssignmentRule.model_validate(data)
        await self.rules.save(updated)

        logger.info("assignment_rule_updated", rule_id=str(rule_id), fields=sorted(changes))
        return updated

    async def delete_rule(self, session: SessionContext, rule_id: UUID) -> UUID:
        require_admin(session, action="manage assignment rules")
        await self.get_rule(rule_id)
        await self.rules.delete(rule_id)

        logger.info("assignment_rule_deleted", rule_id=str(rule_id))
        return rule_id

    async def toggle_active(self, session: SessionContext, rule_id: UUID) -> AssignmentRule:
        require_admin(session, action="manage assignment rules")
        rule = await self.get_rule(rule_id)

        rule.is_active = not rule.is_active
        rule.updated_at = utcnow()
        await self.rules.save(rule)

        logger.info("assignment_rule_toggled", rule_id=str(rule_id), is_active=rule.is_active)
        return rule

    async def reorder(self, session: SessionContext, rule_ids: List[UUID]) -> List[AssignmentRule]:
        """Priority = position + 1."""
        require_admin(session, action="manage assignment rules")

        # Resolve all ids first so a bad id leaves every rule untouched
        rules = [await self.get_rule(rule_id) for rule_id in rule_ids]

        now = utcnow()
        for position, rule in enumerate(rules):
            rule.priority = position + 1
            rule.updated_at = now
            await self.rules.save(rule)

        logger.info("assignment_rules_reordered", count=len(rules))
        return rules

    async def find_matching_rule(self, ticket: Routable) -> Optional[AssignmentRule]:
        """Which rule would route this ticket (dry run for the admin screen)."""
        return find_matching_rule(ticket, await self.rules.list())

    async def get_stats(self) -> Dict[str, int]:
        rules = await self.rules.list()
        active = sum(1 for r in rules if r.is_active)
        return {
            "total": len(rules),
            "active": active,
            "inactive": len(rules) - active,
        }
