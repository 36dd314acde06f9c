"""
ITSM Engine SLA Clock

Deadline computation plus SLA policy and escalation rule management.

The deadline is computed once, when the ticket is created:

    sla_deadline = created_at + policy.resolution_time (minutes)

using the first enabled policy for the ticket's priority. A later
priority change (manual or by escalation) does not move it.
"""

from datetime import datetime, timedelta
from enum import Enum
from typing import Iterable, List, Optional
from uuid import UUID

from ..errors import PolicyConflictError, PolicyNotFoundError, RuleNotFoundError
from ..logging import get_logger
from ..models.rules import (
    EscalationActions,
    EscalationConditions,
    EscalationRule,
    SLAPolicy,
)
from ..models.ticket import Priority, SessionContext, Ticket, utcnow
from .auth import require_admin

logger = get_logger(__name__)


class SLAState(str, Enum):
    NO_SLA = "no_sla"          # No enabled policy at creation time
    ON_TRACK = "on_track"
    AT_RISK = "at_risk"        # Inside the at-risk window before the deadline
    BREACHED = "breached"      # Open and past the deadline
    MET = "met"                # Closed before the deadline


# =============================================================================
# CLOCK
# =============================================================================

def find_policy(
    priority: Priority,
    policies: Iterable[SLAPolicy],
) -> Optional[SLAPolicy]:
    """First enabled policy for the priority, in the order given."""
    for policy in policies:
        if policy.enabled and policy.priority == priority:
            return policy
    return None


def compute_deadline(
    priority: Priority,
    policies: Iterable[SLAPolicy],
    created_at: datetime,
) -> Optional[datetime]:
    """Resolution deadline for a new ticket, or None when no SLA applies."""
    policy = find_policy(priority, policies)
    if policy is None:
        return None
    return created_at + policy.resolution_window


def time_remaining(ticket: Ticket, now: Optional[datetime] = None) -> Optional[timedelta]:
    """
    Signed time until the deadline. Negative once overdue.
    None for tickets without an SLA.
    """
    if ticket.sla_deadline is None:
        return None
    return ticket.sla_deadline - (now or utcnow())


def sla_state(
    ticket: Ticket,
    now: Optional[datetime] = None,
    at_risk_window: timedelta = timedelta(hours=1),
) -> SLAState:
    """Classify a ticket against its deadline for display."""
    if ticket.sla_deadline is None:
        return SLAState.NO_SLA

    if not ticket.is_open:
        finished = ticket.resolved_at or ticket.updated_at
        return SLAState.MET if finished <= ticket.sla_deadline else SLAState.BREACHED

    remaining = time_remaining(ticket, now)
    if remaining < timedelta(0):
        return SLAState.BREACHED
    if remaining <= at_risk_window:
        return SLAState.AT_RISK
    return SLAState.ON_TRACK


# =============================================================================
# ADMIN
# =============================================================================

class SLAAdminService:
    """
    Manages SLA policies and escalation rules.

    Enforces at most one enabled policy per priority, so the
    "first match" in compute_deadline is never ambiguous for data
    entered through this service.
    """

    def __init__(self, policy_repo, escalation_rule_repo):
        self.policies = policy_repo
        self.escalation_rules = escalation_rule_repo

    # -------------------------------------------------------------------------
    # SLA policies
    # -------------------------------------------------------------------------

    async def list_policies(self) -> List[SLAPolicy]:
        """All policies, enabled or not."""
        return await self.policies.list()

    async def get_by_priority(self, priority: Priority) -> Optional[SLAPolicy]:
        """The enabled policy for a priority, if any."""
        return find_policy(priority, await self.policies.list())

    async def create_policy(
        self,
        session: SessionContext,
        name: str,
        priority: Priority,
        response_time: int,
        resolution_time: int,
    ) -> SLAPolicy:
        """New policies start enabled."""
        require_admin(session, action="manage SLA policies")
        await self._ensure_no_enabled_policy(priority)

        policy = SLAPolicy(
            name=name,
            priority=priority,
            response_time=response_time,
            resolution_time=resolution_time,
            enabled=True,
        )
        await self.policies.save(policy)

        logger.info(
            "sla_policy_created",
            policy_id=str(policy.id),
            priority=policy.priority.value,
            resolution_time=policy.resolution_time,
        )
        return policy

    async def update_policy(
        self,
        session: SessionContext,
        policy_id: UUID,
        **changes,
    ) -> SLAPolicy:
        require_admin(session, action="manage SLA policies")
        policy = await self._get_policy(policy_id)

        updated = policy.model_copy(update={
            k: v for k, v in changes.items() if v is not None
        })
        updated = SLAPolicy.model_validate(updated.model_dump())

        if updated.enabled and (
            not policy.enabled or updated.priority != policy.priority
        ):
            await self._ensure_no_enabled_policy(updated.priority, exclude=policy.id)

        await self.policies.save(updated)
        logger.info("sla_policy_updated", policy_id=str(policy_id), fields=sorted(changes))
        return updated

    async def delete_policy(self, session: SessionContext, policy_id: UUID) -> None:
        require_admin(session, action="manage SLA policies")
        await self._get_policy(policy_id)
        await self.policies.delete(policy_id)
        logger.info("sla_policy_deleted", policy_id=str(policy_id))

    # -------------------------------------------------------------------------
    # Escalation rules
    # -------------------------------------------------------------------------

    async def list_escalations(self) -> List[EscalationRule]:
        return await self.escalation_rules.list()

    async def create_escalation(
        self,
        session: SessionContext,
        name: str,
        priority: int,
        conditions: EscalationConditions,
        actions: EscalationActions,
        is_active: bool = True,
        description: Optional[str] = None,
    ) -> EscalationRule:
        require_admin(session, action="manage escalation rules")

        rule = EscalationRule(
            name=name,
            description=description,
            is_active=is_active,
            priority=priority,
            conditions=conditions,
            actions=actions,
            created_by=session.user_id,
        )
        await self.escalation_rules.save(rule)

        logger.info("escalation_rule_created", rule_id=str(rule.id), name=rule.name)
        return rule

    async def update_escalation(
        self,
        session: SessionContext,
        rule_id: UUID,
        name: Optional[str] = None,
        description: Optional[str] = None,
        is_active: Optional[bool] = None,
        priority: Optional[int] = None,
        conditions: Optional[dict] = None,
        actions: Optional[dict] = None,
    ) -> EscalationRule:
        """
        Partial update. conditions and actions are merged field by
        field with the stored rule; omitted nested fields keep their
        current value.
        """
        require_admin(session, action="manage escalation rules")
        rule = await self._get_escalation(rule_id)

        data = rule.model_dump()
        for field, value in (
            ("name", name),
            ("description", description),
            ("is_active", is_active),
            ("priority", priority),
        ):
            if value is not None:
                data[field] = value

        if conditions is not None:
            data["conditions"].update(
                {k: v for k, v in conditions.items() if v is not None}
            )
        if actions is not None:
            data["actions"].update(
                {k: v for k, v in actions.items() if v is not None}
            )

        data["updated_at"] = utcnow()
        updated = EscalationRule.model_validate(data)
        await self.escalation_rules.save(updated)

        logger.info("escalation_rule_updated", rule_id=str(rule_id))
        return updated

    async def delete_escalation(self, session: SessionContext, rule_id: UUID) -> None:
        require_admin(session, action="manage escalation rules")
        await self._get_escalation(rule_id)
        await self.escalation_rules.delete(rule_id)
        logger.info("escalation_rule_deleted", rule_id=str(rule_id))

    async def toggle_escalation(
        self,
        session: SessionContext,
        rule_id: UUID,
    ) -> EscalationRule:
        require_admin(session, action="manage escalation rules")
        rule = await self._get_escalation(rule_id)

        rule.is_active = not rule.is_active
        rule.updated_at = utcnow()
        await self.escalation_rules.save(rule)

        logger.info(
            "escalation_rule_toggled",
            rule_id=str(rule_id),
            is_active=rule.is_active,
        )
        return rule

    # =========================================================================
    # Private methods
    # =========================================================================

    async def _get_policy(self, policy_id: UUID) -> SLAPolicy:
        policy = await self.policies.find(policy_id)
        if policy is None:
            raise PolicyNotFoundError(policy_id)
        return policy

    async def _get_escalation(self, rule_id: UUID) -> EscalationRule:
        rule = await self.escalation_rules.find(rule_id)
        if rule is None:
            raise RuleNotFoundError(rule_id)
        return rule

    async def _ensure_no_enabled_policy(
        self,
        priority: Priority,
        exclude: Optional[UUID] = None,
    ) -> None:
        for existing in await self.policies.get_by_priority(priority):
            if existing.enabled and existing.id != exclude:
                raise PolicyConflictError(
                    f"An enabled SLA policy already exists for {priority.value} "
                    f"priority ({existing.name}). Disable it first."
                )
