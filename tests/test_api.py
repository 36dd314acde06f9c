"""API endpoint tests."""

from datetime import datetime, timedelta
from uuid import uuid4

import pytest
from httpx import AsyncClient

ADMIN_ID = str(uuid4())
AGENT_ID = str(uuid4())

ADMIN = {"X-User-Id": ADMIN_ID, "X-User-Role": "admin"}
AGENT = {"X-User-Id": AGENT_ID, "X-User-Role": "agent"}


class TestHealth:
    """Tests for the health endpoint."""

    @pytest.mark.asyncio
    async def test_health_check(self, client: AsyncClient) -> None:
        response = await client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["service"] == "itsm-engine"
        assert data["jobs"] == []


class TestTicketFlow:
    """Tests for creating tickets through the API."""

    @pytest.mark.asyncio
    async def test_ticket_gets_deadline_and_assignee(self, client: AsyncClient) -> None:
        network_agent = str(uuid4())

        response = await client.post(
            "/sla/policies",
            json={"name": "High", "priority": "high", "response_time": 30, "resolution_time": 240},
            headers=ADMIN,
        )
        assert response.status_code == 201

        response = await client.post(
            "/assignment-rules",
            json={
                "name": "Network",
                "priority": 1,
                "conditions": {"categories": ["Network"]},
                "assign_to": {"type": "agent", "agent_id": network_agent},
            },
            headers=ADMIN,
        )
        assert response.status_code == 201

        response = await client.post(
            "/tickets",
            json={"title": "VPN down", "priority": "high", "category": "Network"},
            headers=AGENT,
        )

        assert response.status_code == 201
        ticket = response.json()
        assert ticket["assigned_to"] == network_agent
        assert ticket["sla_deadline"] is not None
        created = datetime.fromisoformat(ticket["created_at"].replace("Z", "+00:00"))
        deadline = datetime.fromisoformat(ticket["sla_deadline"].replace("Z", "+00:00"))
        assert deadline - created == timedelta(minutes=240)

        response = await client.get(f"/tickets/{ticket['id']}/sla")
        assert response.status_code == 200
        assert response.json()["state"] == "on_track"

        response = await client.get(f"/tickets/{ticket['id']}/history")
        assert [e["action"] for e in response.json()] == ["created", "assigned"]

    @pytest.mark.asyncio
    async def test_update_and_list(self, client: AsyncClient) -> None:
        response = await client.post("/tickets", json={"title": "Printer"}, headers=AGENT)
        ticket_id = response.json()["id"]

        response = await client.patch(
            f"/tickets/{ticket_id}", json={"status": "in_progress"}, headers=AGENT,
        )
        assert response.status_code == 200
        assert response.json()["status"] == "in_progress"

        response = await client.get("/tickets", params={"status": "in_progress"})
        assert [t["id"] for t in response.json()] == [ticket_id]

    @pytest.mark.asyncio
    async def test_unknown_ticket_is_404(self, client: AsyncClient) -> None:
        response = await client.get(f"/tickets/{uuid4()}")

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_missing_identity_is_401(self, client: AsyncClient) -> None:
        response = await client.post("/tickets", json={"title": "Anonymous"})

        assert response.status_code == 401


class TestAdminEndpoints:
    """Tests for admin-only management endpoints."""

    @pytest.mark.asyncio
    async def test_agent_cannot_create_rule(self, client: AsyncClient) -> None:
        response = await client.post(
            "/assignment-rules",
            json={
                "name": "Sneaky",
                "priority": 1,
                "assign_to": {"type": "agent", "agent_id": AGENT_ID},
            },
            headers=AGENT,
        )

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_duplicate_policy_is_409(self, client: AsyncClient) -> None:
        body = {"name": "Crit", "priority": "critical", "response_time": 15, "resolution_time": 60}

        first = await client.post("/sla/policies", json=body, headers=ADMIN)
        second = await client.post("/sla/policies", json=body, headers=ADMIN)

        assert first.status_code == 201
        assert second.status_code == 409

    @pytest.mark.asyncio
    async def test_rule_stats_and_toggle(self, client: AsyncClient) -> None:
        response = await client.post(
            "/assignment-rules",
            json={
                "name": "Catch all",
                "priority": 1,
                "assign_to": {"type": "agent", "agent_id": AGENT_ID},
            },
            headers=ADMIN,
        )
        rule_id = response.json()["id"]

        response = await client.post(f"/assignment-rules/{rule_id}/toggle", headers=ADMIN)
        assert response.json()["is_active"] is False

        response = await client.get("/assignment-rules/stats")
        assert response.json() == {"total": 1, "active": 0, "inactive": 1}

    @pytest.mark.asyncio
    async def test_run_escalations(self, client: AsyncClient) -> None:
        manager = str(uuid4())
        await client.post(
            "/sla/policies",
            json={"name": "Crit", "priority": "critical", "response_time": 15, "resolution_time": 60},
            headers=ADMIN,
        )
        response = await client.post(
            "/sla/escalations",
            json={
                "name": "Critical overdue",
                "priority": 1,
                "conditions": {"priorities": ["critical"], "overdue_by": 60},
                "actions": {"notify_users": [manager], "add_comment": "Escalated"},
            },
            headers=ADMIN,
        )
        assert response.status_code == 201

        response = await client.post(
            "/tickets", json={"title": "Outage", "priority": "critical"}, headers=AGENT,
        )
        ticket = response.json()
        deadline = datetime.fromisoformat(ticket["sla_deadline"].replace("Z", "+00:00"))

        response = await client.post(
            "/sla/escalations/run",
            json={"now": (deadline + timedelta(minutes=61)).isoformat()},
            headers=ADMIN,
        )

        assert response.status_code == 200
        assert response.json()["count"] == 1

        response = await client.get(f"/users/{manager}/notifications")
        assert len(response.json()) == 1

        response = await client.get(f"/tickets/{ticket['id']}/comments")
        assert [c["content"] for c in response.json()] == ["Escalated"]

    @pytest.mark.asyncio
    async def test_agent_cannot_run_escalations(self, client: AsyncClient) -> None:
        response = await client.post("/sla/escalations/run", json={}, headers=AGENT)

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_team_and_members(self, client: AsyncClient) -> None:
        response = await client.post(
            "/teams", json={"name": "Desk", "leader_id": ADMIN_ID}, headers=ADMIN,
        )
        team_id = response.json()["id"]

        response = await client.post(
            f"/teams/{team_id}/members", json={"user_id": AGENT_ID}, headers=ADMIN,
        )
        assert response.status_code == 201

        response = await client.get(f"/teams/{team_id}/members")
        assert [m["user_id"] for m in response.json()] == [ADMIN_ID, AGENT_ID]

        response = await client.post("/teams", json={"name": "Desk"}, headers=ADMIN)
        assert response.status_code == 409
