"""
Unit tests for the Pending Actions API endpoints.

Tests cover the owner's approval inbox: listing, approving (idempotently),
rejecting with a reason, and owner scoping.
"""

import pytest
from httpx import AsyncClient

from leasewise_ai.agent_core.service import AgentService

pytestmark = pytest.mark.asyncio

OWNER = "owner-1"


async def _queued(service: AgentService):
    out = await service.call_tool(OWNER, "send_message", {"to": "tenant-1"}, title="Remind tenant")
    return out.action


class TestListActions:
    async def test_lists_pending_actions(self, client: AsyncClient, service: AgentService):
        action = await _queued(service)

        response = await client.get("/api/v1/actions")

        assert response.status_code == 200
        (item,) = response.json()
        assert item["id"] == action.id
        assert item["tool_name"] == "send_message"
        assert item["status"] == "pending"
        assert item["autonomy_level"] == "draft"

    async def test_status_filter(self, client: AsyncClient, service: AgentService):
        action = await _queued(service)
        await service.approve_action(action.id, user_id=OWNER)

        assert (await client.get("/api/v1/actions")).json() == []
        approved = await client.get("/api/v1/actions", params={"status": "approved"})
        assert [a["id"] for a in approved.json()] == [action.id]

    async def test_other_owners_inbox_is_empty(self, client_for, service: AgentService):
        await _queued(service)
        async with client_for(service, user_id="intruder") as client:
            response = await client.get("/api/v1/actions")
        assert response.json() == []


class TestResolveActions:
    async def test_approve_runs_tool(self, client: AsyncClient, service: AgentService, tools):
        action = await _queued(service)

        response = await client.post(f"/api/v1/actions/{action.id}/approve")

        assert response.status_code == 200
        assert response.json()["status"] == "approved"
        assert response.json()["resolved_by"] == OWNER
        assert tools.params_of("send_message") == [{"to": "tenant-1"}]

    async def test_repeated_approve_returns_stored_decision(self, client: AsyncClient, service: AgentService, tools):
        action = await _queued(service)

        first = await client.post(f"/api/v1/actions/{action.id}/approve")
        second = await client.post(f"/api/v1/actions/{action.id}/approve")

        assert second.status_code == 200
        assert second.json() == first.json()
        assert tools.count("send_message") == 1

    async def test_reject_with_reason(self, client: AsyncClient, service: AgentService, tools):
        action = await _queued(service)

        response = await client.post(f"/api/v1/actions/{action.id}/reject", json={"reason": "Wrong tenant"})

        assert response.status_code == 200
        assert response.json()["status"] == "rejected"
        assert response.json()["rejection_reason"] == "Wrong tenant"
        assert tools.calls == []
        assert (await service.get_task(action.task_id)).status.value == "cancelled"

    async def test_reject_without_body(self, client: AsyncClient, service: AgentService):
        action = await _queued(service)
        response = await client.post(f"/api/v1/actions/{action.id}/reject")
        assert response.status_code == 200
        assert response.json()["rejection_reason"] is None

    async def test_unknown_action(self, client: AsyncClient):
        response = await client.post("/api/v1/actions/missing/approve")
        assert response.status_code == 404
        assert response.json()["detail"] == "We couldn't find that item."

    async def test_foreign_action_is_not_found(self, client_for, service: AgentService, tools):
        action = await _queued(service)
        async with client_for(service, user_id="intruder") as client:
            response = await client.post(f"/api/v1/actions/{action.id}/approve")
        assert response.status_code == 404
        assert tools.calls == []

    async def test_failed_tool_after_approval_reports_cancelled_task(
        self, client: AsyncClient, service: AgentService, tools
    ):
        tools.fail("send_message", "twilio 500: internal error")
        action = await _queued(service)

        response = await client.post(f"/api/v1/actions/{action.id}/approve")

        assert response.status_code == 200
        assert "twilio" not in response.text
        task = await client.get(f"/api/v1/tasks/{action.task_id}")
        assert task.json()["status"] == "cancelled"
