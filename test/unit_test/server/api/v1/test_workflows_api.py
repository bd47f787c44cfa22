"""
Unit tests for the Workflows API endpoints.

Tests cover definitions listing, starting instances, reading checkpoints,
webhook delivery (accepted, duplicate and late callbacks) and the lazy
sweep endpoint.
"""

import pytest
from httpx import AsyncClient

from leasewise_ai.agent_core.schemas.domain import ParamResolver, WorkflowGate
from leasewise_ai.agent_core.service import AgentService
from leasewise_ai.agent_core.workflows.definitions import WORKFLOW_DEFINITIONS
from leasewise_ai.agent_core.workflows.models import WorkflowDefinition, WorkflowStep

pytestmark = pytest.mark.asyncio

OWNER = "owner-1"
DAY_MS = 86_400_000

INSPECTION = WorkflowDefinition(
    name="inspection_flow",
    description="Inspect and report",
    steps=(
        WorkflowStep(step_index=0, tool_name="schedule_inspection", param_resolver=ParamResolver.from_context),
        WorkflowStep(step_index=1, tool_name="generate_inspection_report", gate=WorkflowGate.webhook_wait),
    ),
    max_duration_ms=10 * DAY_MS,
    resume_window_ms=1 * DAY_MS,
)


@pytest.fixture
def inspection_service(make_service) -> AgentService:
    return make_service(definitions={**WORKFLOW_DEFINITIONS, INSPECTION.name: INSPECTION})


class TestDefinitions:
    async def test_lists_builtin_definitions(self, client: AsyncClient):
        response = await client.get("/api/v1/workflows/definitions")
        assert response.status_code == 200
        names = {d["name"] for d in response.json()}
        assert "workflow_arrears_escalation" in names
        assert len(names) == 5


class TestStartWorkflow:
    async def test_start_runs_to_first_gate(self, client: AsyncClient, tools):
        response = await client.post(
            "/api/v1/workflows",
            json={
                "definition_name": "workflow_maintenance_lifecycle",
                "subject_context": {"property_id": "p1", "request_id": "mr-42"},
                "related_entity_type": "maintenance_request",
                "related_entity_id": "mr-42",
            },
        )

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "waiting_on_gate"
        assert body["gate"] == "owner_approval"
        assert body["current_step_index"] == 3
        assert tools.count("triage_maintenance") == 1

        task = await client.get(f"/api/v1/tasks/{body['task_id']}")
        assert task.json()["status"] == "pending_input"
        assert task.json()["related_entity_id"] == "mr-42"

    async def test_unknown_definition(self, client: AsyncClient):
        response = await client.post("/api/v1/workflows", json={"definition_name": "workflow_nope"})
        assert response.status_code == 404
        assert response.json()["error_type"] == "NotFoundError"

    async def test_get_instance_is_owner_scoped(self, client_for, service: AgentService):
        instance = await service.start_workflow("workflow_maintenance_lifecycle", user_id=OWNER)

        async with client_for(service) as client:
            mine = await client.get(f"/api/v1/workflows/instances/{instance.id}")
        async with client_for(service, user_id="intruder") as client:
            theirs = await client.get(f"/api/v1/workflows/instances/{instance.id}")

        assert mine.status_code == 200
        assert mine.json()["step_results"][0] == {"tool": "triage_maintenance"}
        assert theirs.status_code == 404


class TestWebhooks:
    async def test_webhook_resumes_instance(self, client_for, inspection_service: AgentService, tools):
        instance = await inspection_service.start_workflow(
            "inspection_flow", user_id=OWNER, subject_context={"tenancy_id": "t1"}
        )
        url = f"/api/v1/workflows/instances/{instance.id}/webhooks/1"

        async with client_for(inspection_service) as client:
            accepted = await client.post(url, json={"payload": {"report_url": "https://files/r1.pdf"}})
            duplicate = await client.post(url, json={"payload": {"report_url": "https://files/r1.pdf"}})

        assert accepted.status_code == 200
        assert accepted.json() == {"accepted": True, "status": "completed", "current_step_index": 2}
        assert duplicate.json()["accepted"] is False
        assert tools.params_of("generate_inspection_report")[0]["report_url"] == "https://files/r1.pdf"

    async def test_late_webhook_is_gone(self, client_for, inspection_service: AgentService, clock, tools):
        instance = await inspection_service.start_workflow(
            "inspection_flow", user_id=OWNER, subject_context={"tenancy_id": "t1"}
        )
        clock.advance(days=2)

        async with client_for(inspection_service) as client:
            response = await client.post(f"/api/v1/workflows/instances/{instance.id}/webhooks/1", json={})

        assert response.status_code == 410
        assert response.json()["error_type"] == "ExpiredGateError"
        assert response.json()["user_message"] == "This task waited too long for a response and was stopped."
        assert tools.count("generate_inspection_report") == 0

    async def test_webhook_for_unknown_instance(self, client: AsyncClient):
        response = await client.post("/api/v1/workflows/instances/missing/webhooks/0", json={})
        assert response.status_code == 404


class TestTick:
    async def test_tick_resumes_due_schedule(self, client: AsyncClient, service: AgentService, clock, tools):
        instance = await service.start_workflow(
            "workflow_arrears_escalation", user_id=OWNER, subject_context={"tenancy_id": "t1"}
        )
        assert instance.gate == WorkflowGate.schedule_wait

        early = await client.post("/api/v1/workflows/tick")
        assert early.json() == {"driven": []}

        clock.advance(days=3)
        due = await client.post("/api/v1/workflows/tick")
        assert due.status_code == 200
        assert due.json() == {"driven": [instance.id]}
