"""Tests for the escalation evaluator and service."""

from datetime import timedelta
from uuid import uuid4

from itsm_engine.models import (
    AgentTarget,
    EscalationActions,
    EscalationConditions,
    EscalationRule,
    Priority,
    RoundRobinTarget,
    Team,
    TeamMember,
    TeamTarget,
    TicketStatus,
)
from itsm_engine.services.escalation import (
    ESCALATED,
    escalation_matches,
    evaluate,
    notify_recipients,
)

from .factories import T0, make_ticket

DEADLINE = T0 + timedelta(hours=4)


def critical_overdue_rule(**actions) -> EscalationRule:
    return EscalationRule(
        name="Critical overdue",
        priority=1,
        conditions=EscalationConditions(priorities=[Priority.CRITICAL], overdue_by=60),
        actions=EscalationActions(**actions),
    )


def run(tickets, rules, now, teams=(), members=(), counts=None):
    return evaluate(
        tickets=tickets,
        rules=rules,
        teams={team.id: team for team in teams},
        members=list(members),
        open_ticket_counts=counts or {},
        now=now,
    )


class TestEscalationMatching:
    """Tests for AND semantics across clauses."""

    def test_both_clauses_must_hold(self) -> None:
        rule = critical_overdue_rule()
        critical = make_ticket(priority=Priority.CRITICAL, sla_deadline=DEADLINE)
        high = make_ticket(priority=Priority.HIGH, sla_deadline=DEADLINE)

        assert not escalation_matches(rule, critical, DEADLINE + timedelta(minutes=30))
        assert not escalation_matches(rule, high, DEADLINE + timedelta(minutes=90))
        assert escalation_matches(rule, critical, DEADLINE + timedelta(minutes=90))

    def test_overdue_threshold_is_inclusive(self) -> None:
        rule = critical_overdue_rule()
        ticket = make_ticket(priority=Priority.CRITICAL, sla_deadline=DEADLINE)

        assert escalation_matches(rule, ticket, DEADLINE + timedelta(minutes=60))

    def test_overdue_never_matches_without_deadline(self) -> None:
        rule = EscalationRule(
            name="Any overdue",
            priority=1,
            conditions=EscalationConditions(overdue_by=0),
        )

        assert not escalation_matches(rule, make_ticket(), T0 + timedelta(days=30))

    def test_status_clause(self) -> None:
        rule = EscalationRule(
            name="Stuck on hold",
            priority=1,
            conditions=EscalationConditions(statuses=[TicketStatus.ON_HOLD]),
        )

        assert escalation_matches(rule, make_ticket(status=TicketStatus.ON_HOLD), T0)
        assert not escalation_matches(rule, make_ticket(status=TicketStatus.NEW), T0)


class TestEvaluate:
    """Tests for planning a pass over a snapshot."""

    def test_action_appears_only_past_threshold(self) -> None:
        """Deadline + 59 min: nothing. Deadline + 61 min: escalate."""
        rule = critical_overdue_rule(change_priority=Priority.CRITICAL)
        ticket = make_ticket(priority=Priority.CRITICAL, sla_deadline=DEADLINE)

        assert run([ticket], [rule], DEADLINE + timedelta(minutes=59)) == []

        actions = run([ticket], [rule], DEADLINE + timedelta(minutes=61))
        assert len(actions) == 1
        assert actions[0].ticket_id == ticket.id
        assert actions[0].rule_id == rule.id
        assert actions[0].new_priority == Priority.CRITICAL

    def test_closed_tickets_are_skipped(self) -> None:
        rule = EscalationRule(name="All", priority=1)
        tickets = [
            make_ticket(status=status)
            for status in (TicketStatus.RESOLVED, TicketStatus.CLOSED, TicketStatus.REJECTED)
        ]

        assert run(tickets, [rule], T0) == []

    def test_first_matching_rule_only(self) -> None:
        first = EscalationRule(
            name="first", priority=1,
            actions=EscalationActions(add_comment="first"),
        )
        second = EscalationRule(
            name="second", priority=2,
            actions=EscalationActions(add_comment="second"),
        )

        actions = run([make_ticket()], [second, first], T0)

        assert [a.rule_name for a in actions] == ["first"]
        assert actions[0].comment_text == "first"

    def test_inactive_rules_are_ignored(self) -> None:
        rule = EscalationRule(name="off", priority=1, is_active=False)

        assert run([make_ticket()], [rule], T0) == []

    def test_reassign_targets(self) -> None:
        agent_id = uuid4()
        leader = uuid4()
        team = Team(name="Tier 2", leader_id=leader)
        idle = uuid4()
        members = [TeamMember(team_id=team.id, user_id=idle)]
        ticket = make_ticket()

        def reassign(target):
            rule = EscalationRule(
                name="r", priority=1, actions=EscalationActions(reassign_to=target),
            )
            return run([ticket], [rule], T0, teams=[team], members=members)[0].reassign_to

        assert reassign(AgentTarget(agent_id=agent_id)) == agent_id
        assert reassign(TeamTarget(team_id=team.id)) == leader
        assert reassign(RoundRobinTarget(team_id=team.id)) == idle

    def test_unresolvable_reassign_becomes_none(self) -> None:
        rule = EscalationRule(
            name="ghost team",
            priority=1,
            actions=EscalationActions(
                reassign_to=TeamTarget(team_id=uuid4()),
                change_priority=Priority.HIGH,
            ),
        )

        actions = run([make_ticket()], [rule], T0)

        assert actions[0].reassign_to is None
        assert actions[0].new_priority == Priority.HIGH

    def test_applied_rule_lets_next_tier_match(self) -> None:
        tier1 = EscalationRule(
            name="tier1", priority=1, conditions=EscalationConditions(overdue_by=30),
        )
        tier2 = EscalationRule(
            name="tier2", priority=2, conditions=EscalationConditions(overdue_by=240),
        )
        ticket = make_ticket(sla_deadline=DEADLINE)

        actions = evaluate(
            tickets=[ticket],
            rules=[tier1, tier2],
            teams={},
            members=[],
            open_ticket_counts={},
            now=DEADLINE + timedelta(minutes=300),
            applied={(ticket.id, tier1.id)},
        )

        assert [a.rule_name for a in actions] == ["tier2"]

    def test_applied_rule_only_excluded_for_its_ticket(self) -> None:
        rule = EscalationRule(name="all", priority=1)
        done, fresh = make_ticket(), make_ticket()

        actions = evaluate(
            tickets=[done, fresh],
            rules=[rule],
            teams={},
            members=[],
            open_ticket_counts={},
            now=T0,
            applied={(done.id, rule.id)},
        )

        assert [a.ticket_id for a in actions] == [fresh.id]

    def test_round_robin_spreads_within_one_pass(self) -> None:
        team = Team(name="Tier 2")
        a, b, c = uuid4(), uuid4(), uuid4()
        members = [
            TeamMember(team_id=team.id, user_id=user_id, joined_at=T0 + timedelta(minutes=i))
            for i, user_id in enumerate((a, b, c))
        ]
        rule = EscalationRule(
            name="to tier 2",
            priority=1,
            actions=EscalationActions(reassign_to=RoundRobinTarget(team_id=team.id)),
        )
        tickets = [make_ticket() for _ in range(4)]

        actions = run(tickets, [rule], T0, teams=[team], members=members)

        assert [x.reassign_to for x in actions] == [a, b, c, a]

    def test_reassignment_frees_previous_owner(self) -> None:
        team = Team(name="Tier 2")
        a, b = uuid4(), uuid4()
        members = [
            TeamMember(team_id=team.id, user_id=a, joined_at=T0),
            TeamMember(team_id=team.id, user_id=b, joined_at=T0 + timedelta(minutes=1)),
        ]
        rule = EscalationRule(
            name="to tier 2",
            priority=1,
            actions=EscalationActions(reassign_to=RoundRobinTarget(team_id=team.id)),
        )
        held_by_b = make_ticket(assigned_to=b)
        unassigned = make_ticket()

        actions = run(
            [held_by_b, unassigned], [rule], T0,
            teams=[team], members=members, counts={b: 1},
        )

        # b hands its ticket to a and drops to zero, so b takes the next one
        assert [x.reassign_to for x in actions] == [a, b]

    def test_empty_rule_yields_empty_bundle(self) -> None:
        actions = run([make_ticket()], [EscalationRule(name="noop", priority=1)], T0)

        assert actions[0].is_empty


class TestNotifyRecipients:
    """Tests for notification fan-out."""

    def test_users_then_team_members_without_duplicates(self) -> None:
        team_id = uuid4()
        direct, shared, member = uuid4(), uuid4(), uuid4()
        members = [
            TeamMember(team_id=team_id, user_id=shared, joined_at=T0),
            TeamMember(team_id=team_id, user_id=member, joined_at=T0 + timedelta(hours=1)),
        ]
        rule = EscalationRule(
            name="notify",
            priority=1,
            actions=EscalationActions(notify_users=[direct, shared], notify_teams=[team_id]),
        )

        assert notify_recipients(rule, members) == [direct, shared, member]

    def test_unknown_team_adds_nobody(self) -> None:
        rule = EscalationRule(
            name="notify",
            priority=1,
            actions=EscalationActions(notify_teams=[uuid4()]),
        )

        assert notify_recipients(rule, []) == []


class TestEscalationService:
    """Tests for applying escalation bundles to storage."""

    async def test_run_applies_every_effect(self, store, services) -> None:
        manager, new_owner = uuid4(), uuid4()
        ticket = make_ticket(priority=Priority.HIGH, sla_deadline=DEADLINE, assigned_to=uuid4())
        await store.tickets.save(ticket)
        rule = EscalationRule(
            name="High overdue",
            priority=1,
            conditions=EscalationConditions(priorities=[Priority.HIGH], overdue_by=30),
            actions=EscalationActions(
                notify_users=[manager],
                reassign_to=AgentTarget(agent_id=new_owner),
                change_priority=Priority.CRITICAL,
                add_comment="Escalated: SLA breached by 30 minutes",
            ),
        )
        await store.escalation_rules.save(rule)

        applied = await services.escalations.run(now=DEADLINE + timedelta(minutes=45))

        assert len(applied) == 1

        stored = await store.tickets.get(ticket.id)
        assert stored.assigned_to == new_owner
        assert stored.priority == Priority.CRITICAL
        assert stored.sla_deadline == DEADLINE

        comments = await store.comments.get_for_ticket(ticket.id)
        assert [c.content for c in comments] == ["Escalated: SLA breached by 30 minutes"]
        assert comments[0].is_system

        notifications = await store.notifications.get_for_user(manager)
        assert len(notifications) == 1
        assert notifications[0].type == "escalation"
        assert notifications[0].ticket_id == ticket.id

        actions = [e.action for e in await store.history.get_for_ticket(ticket.id)]
        assert actions == ["assigned", "updated_priority", ESCALATED]

    async def test_second_run_does_not_repeat(self, store, services) -> None:
        ticket = make_ticket(priority=Priority.CRITICAL, sla_deadline=DEADLINE)
        await store.tickets.save(ticket)
        await store.escalation_rules.save(critical_overdue_rule(add_comment="Escalated"))
        now = DEADLINE + timedelta(minutes=61)

        first = await services.escalations.run(now=now)
        second = await services.escalations.run(now=now + timedelta(minutes=5))

        assert len(first) == 1
        assert second == []
        assert len(await store.comments.get_for_ticket(ticket.id)) == 1

    async def test_plan_writes_nothing(self, store, services) -> None:
        ticket = make_ticket(priority=Priority.CRITICAL, sla_deadline=DEADLINE)
        await store.tickets.save(ticket)
        await store.escalation_rules.save(
            critical_overdue_rule(change_priority=Priority.HIGH)
        )

        planned = await services.escalations.plan(now=DEADLINE + timedelta(hours=2))

        assert len(planned) == 1
        assert (await store.tickets.get(ticket.id)).priority == Priority.CRITICAL
        assert await store.history.list() == []

    async def test_tiers_fire_on_successive_runs(self, store, services) -> None:
        manager = uuid4()
        ticket = make_ticket(priority=Priority.HIGH, sla_deadline=DEADLINE)
        await store.tickets.save(ticket)
        await store.escalation_rules.save(EscalationRule(
            name="tier1",
            priority=1,
            conditions=EscalationConditions(overdue_by=30),
            actions=EscalationActions(add_comment="Overdue, team notified"),
        ))
        await store.escalation_rules.save(EscalationRule(
            name="tier2",
            priority=2,
            conditions=EscalationConditions(overdue_by=240),
            actions=EscalationActions(reassign_to=AgentTarget(agent_id=manager)),
        ))

        first = await services.escalations.run(now=DEADLINE + timedelta(minutes=31))
        second = await services.escalations.run(now=DEADLINE + timedelta(minutes=300))
        third = await services.escalations.run(now=DEADLINE + timedelta(minutes=305))

        assert [a.rule_name for a in first] == ["tier1"]
        assert [a.rule_name for a in second] == ["tier2"]
        assert third == []
        assert (await store.tickets.get(ticket.id)).assigned_to == manager

    async def test_run_spreads_round_robin_reassignments(self, store, services, admin) -> None:
        team = await services.teams.create_team(admin, name="Tier 2")
        agents = [uuid4() for _ in range(3)]
        for user_id in agents:
            await services.teams.add_member(admin, team.id, user_id)
        await store.escalation_rules.save(EscalationRule(
            name="Overdue to tier 2",
            priority=1,
            conditions=EscalationConditions(overdue_by=60),
            actions=EscalationActions(reassign_to=RoundRobinTarget(team_id=team.id)),
        ))
        tickets = [make_ticket(sla_deadline=DEADLINE) for _ in range(3)]
        for ticket in tickets:
            await store.tickets.save(ticket)

        await services.escalations.run(now=DEADLINE + timedelta(hours=2))

        owners = [(await store.tickets.get(t.id)).assigned_to for t in tickets]
        assert sorted(map(str, owners)) == sorted(map(str, agents))
