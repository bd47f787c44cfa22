"""
Workflows API Endpoints.

This module exposes the business workflows:

- list the available definitions,
- start an instance for a subject (creates its Agent Task),
- read an instance's checkpoint,
- deliver external events to instances waiting on a webhook gate,
- run the lazy sweep that resumes due instances (for an external scheduler).
"""

from typing import List

from fastapi import APIRouter

from leasewise_ai.agent_core.schemas.domain import WorkflowInstance
from leasewise_ai.agent_core.workflows.models import WorkflowDefinition
from leasewise_ai.core.logging_config import get_logger
from leasewise_ai.server.schemas import TickResult, WebhookAccepted, WebhookDelivery, WorkflowStart
from leasewise_ai.server.services.deps import AgentServiceDep, UserIdDep

logger = get_logger(__name__)
router = APIRouter()


@router.get("/definitions", response_model=List[WorkflowDefinition], summary="List Workflow Definitions")
async def list_definitions(service: AgentServiceDep):
    return service.list_definitions()


@router.post(
    "",
    response_model=WorkflowInstance,
    status_code=201,
    summary="Start Workflow",
    description="Start a workflow instance; it runs until it completes or reaches its first gate.",
    responses={404: {"description": "Unknown workflow"}},
)
async def start_workflow(body: WorkflowStart, user_id: UserIdDep, service: AgentServiceDep):
    instance = await service.start_workflow(
        body.definition_name,
        user_id=user_id,
        subject_context=body.subject_context,
        title=body.title,
        related_entity_type=body.related_entity_type,
        related_entity_id=body.related_entity_id,
    )
    logger.info(f"Workflow {body.definition_name} started via API: {instance.id} ({instance.status.value})")
    return instance


@router.get(
    "/instances/{instance_id}",
    response_model=WorkflowInstance,
    summary="Get Workflow Instance",
    responses={404: {"description": "Instance not found"}},
)
async def get_instance(instance_id: str, user_id: UserIdDep, service: AgentServiceDep):
    return await service.get_instance(instance_id, user_id=user_id)


@router.post(
    "/instances/{instance_id}/webhooks/{step_index}",
    response_model=WebhookAccepted,
    summary="Deliver Webhook",
    description="Deliver an external event to an instance waiting on a webhook gate at this step.",
    responses={
        404: {"description": "Instance not found"},
        410: {"description": "The instance waited past its resume window"},
    },
)
async def deliver_webhook(instance_id: str, step_index: int, body: WebhookDelivery, service: AgentServiceDep):
    """
    Deliver an external event.

    Duplicate or late callbacks (the instance is no longer waiting at this
    step) are accepted with ``accepted: false`` and change nothing.
    """
    accepted = await service.deliver_webhook(instance_id, step_index, body.payload)
    instance = await service.get_instance(instance_id)
    return WebhookAccepted(accepted=accepted, status=instance.status, current_step_index=instance.current_step_index)


@router.post("/tick", response_model=TickResult, summary="Resume Due Workflows")
async def tick(service: AgentServiceDep):
    driven = await service.tick()
    return TickResult(driven=[instance.id for instance in driven])
