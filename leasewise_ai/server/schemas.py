"""
API Schemas.

This module contains Pydantic models used for API request bodies and response validation.
These schemas define the interface contract between the owner app (or an external
collaborator) and the server.
"""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from leasewise_ai.agent_core.schemas.domain import AutonomyLevel, ToolCategory, WorkflowStatus


class RejectRequest(BaseModel):
    """
    Schema for rejecting a pending action.

    The reason is kept on the action and the task timeline.
    """
    reason: Optional[str] = Field(
        default=None,
        description="Why the owner rejected the action.",
        examples=["Rent is too high for this suburb."]
    )


class TakeControlRequest(BaseModel):
    """
    Schema for taking manual control of a task.

    Stops all autonomous progress on the task until it is resumed.
    """
    reason: Optional[str] = Field(
        default=None,
        description="Optional note recorded on the task timeline.",
        examples=["I'll talk to the tenant myself."]
    )


class CancelTaskRequest(BaseModel):
    """Schema for cancelling a task (and its workflow)."""
    reason: Optional[str] = Field(default=None, description="Optional cancellation note.")


class OverrideSet(BaseModel):
    """
    Schema for pinning a tool category to an autonomy level.

    Never-auto-execute tools stay behind owner approval regardless of the level.
    """
    level: AutonomyLevel = Field(
        ...,
        description="The autonomy level to apply to every tool of the category.",
        examples=[AutonomyLevel.draft]
    )


class WorkflowStart(BaseModel):
    """
    Schema for starting a workflow instance.

    Defines the workflow to run and the subject it runs for.
    """
    definition_name: str = Field(
        ...,
        description="Name of the workflow definition.",
        examples=["workflow_maintenance_lifecycle"]
    )
    subject_context: Dict[str, Any] = Field(
        default_factory=dict,
        description="Identifiers of the entities the workflow acts on.",
        examples=[{"property_id": "prop-1", "request_id": "mr-42"}]
    )
    title: Optional[str] = Field(default=None, description="Title of the Agent Task; defaults to the workflow description.")
    related_entity_type: Optional[str] = Field(default=None, examples=["maintenance_request"])
    related_entity_id: Optional[str] = Field(default=None, examples=["mr-42"])

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "definition_name": "workflow_maintenance_lifecycle",
            "subject_context": {"property_id": "prop-1", "request_id": "mr-42"},
            "related_entity_type": "maintenance_request",
            "related_entity_id": "mr-42"
        }
    })


class WebhookDelivery(BaseModel):
    """
    Schema for an external event delivered to a waiting workflow instance.

    The payload is merged into the params of the step that waited for it.
    """
    payload: Dict[str, Any] = Field(
        default_factory=dict,
        description="Event data from the external collaborator.",
        examples=[{"envelope_id": "env-7", "status": "completed"}]
    )


class WebhookAccepted(BaseModel):
    """Outcome of a webhook delivery."""
    accepted: bool = Field(..., description="False when the instance was not waiting for this step (duplicate or late callback).")
    status: WorkflowStatus
    current_step_index: int


class ToolCallRequest(BaseModel):
    """
    Schema for an ad-hoc tool call.

    Autonomous calls execute immediately; anything else is queued for the owner.
    """
    params: Dict[str, Any] = Field(default_factory=dict, description="Tool parameters.")
    task_id: Optional[str] = Field(default=None, description="Existing Agent Task to attach the call to.")
    title: Optional[str] = Field(default=None, description="Title shown to the owner if approval is needed.")
    description: str = Field(default="", description="Explanation shown to the owner.")
    recommendation: Optional[str] = Field(default=None, description="What the agent recommends.")
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0, description="Agent confidence in the call.")


class OverrideList(BaseModel):
    """Owner autonomy overrides by tool category."""
    overrides: Dict[ToolCategory, AutonomyLevel] = Field(default_factory=dict)


class TickResult(BaseModel):
    """Instances driven by a sweep."""
    driven: List[str] = Field(default_factory=list, description="Ids of the instances that were driven.")
