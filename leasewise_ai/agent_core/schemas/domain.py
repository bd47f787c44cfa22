from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import Field

from .base import BaseSchema


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid4())


class ToolCategory(str, Enum):
    query = "query"
    action = "action"
    generate = "generate"
    workflow = "workflow"
    memory = "memory"
    planning = "planning"
    integration = "integration"


class AutonomyLevel(str, Enum):
    """How much unattended trust a tool call currently has.

    Ordered ``autonomous < suggest < draft < execute`` by the amount of human
    involvement required. Only ``autonomous`` runs without a pending action.
    """

    autonomous = "autonomous"
    suggest = "suggest"
    draft = "draft"
    execute = "execute"


_AUTONOMY_ORDER = {
    AutonomyLevel.autonomous: 0,
    AutonomyLevel.suggest: 1,
    AutonomyLevel.draft: 2,
    AutonomyLevel.execute: 3,
}


def autonomy_rank(level: AutonomyLevel) -> int:
    """Return the strictness rank of a level (0 is fully autonomous)."""
    return _AUTONOMY_ORDER[AutonomyLevel(level)]


def stricter_of(a: AutonomyLevel, b: AutonomyLevel) -> AutonomyLevel:
    """Return whichever of the two levels requires more human involvement."""
    return a if autonomy_rank(a) >= autonomy_rank(b) else b


class AutonomySource(str, Enum):
    never_auto = "never_auto"
    owner_override = "owner_override"
    graduated = "graduated"
    tool_default = "tool_default"
    low_confidence = "low_confidence"


class TaskCategory(str, Enum):
    tenant_finding = "tenant_finding"
    lease_management = "lease_management"
    rent_collection = "rent_collection"
    maintenance = "maintenance"
    compliance = "compliance"
    general = "general"


class TaskPriority(str, Enum):
    urgent = "urgent"
    high = "high"
    normal = "normal"
    low = "low"


class TaskStatus(str, Enum):
    scheduled = "scheduled"
    pending_input = "pending_input"
    in_progress = "in_progress"
    paused = "paused"
    completed = "completed"
    cancelled = "cancelled"


TERMINAL_TASK_STATUSES = frozenset({TaskStatus.completed, TaskStatus.cancelled})


class PendingActionStatus(str, Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"


class WorkflowGate(str, Enum):
    owner_approval = "owner_approval"
    webhook_wait = "webhook_wait"
    schedule_wait = "schedule_wait"


class ParamResolver(str, Enum):
    static = "static"
    from_context = "from_context"
    from_previous = "from_previous"


class WorkflowStatus(str, Enum):
    running = "running"
    waiting_on_gate = "waiting_on_gate"
    completed = "completed"
    failed = "failed"
    compensating = "compensating"
    compensated = "compensated"


TERMINAL_WORKFLOW_STATUSES = frozenset({WorkflowStatus.completed, WorkflowStatus.failed, WorkflowStatus.compensated})


class AgentEventType(str, Enum):
    autonomy_resolved = "autonomy.resolved"
    tool_invoked = "tool.invoked"
    action_raised = "action.raised"
    action_resolved = "action.resolved"
    task_transition = "task.transition"
    graduation_updated = "graduation.updated"
    workflow_started = "workflow.started"
    workflow_completed = "workflow.completed"
    workflow_failed = "workflow.failed"
    step_completed = "step.completed"
    step_skipped = "step.skipped"
    step_failed = "step.failed"
    gate_entered = "gate.entered"
    gate_cleared = "gate.cleared"
    compensation_started = "compensation.started"
    compensated = "workflow.compensated"
    checkpoint_saved = "checkpoint.saved"


class GraduationRecord(BaseSchema):
    """Per-(user, category) trust state.

    ``effective_threshold`` grows with ``backoff_multiplier`` so that after a
    rejection or a declined graduation a longer approval streak is needed.
    """

    id: str = Field(default_factory=_new_id)
    user_id: str
    category: ToolCategory

    current_level: AutonomyLevel
    consecutive_approvals: int = Field(default=0, ge=0)
    graduation_threshold: int = Field(default=10, ge=1)
    backoff_multiplier: float = Field(default=1.0, ge=1.0)

    total_approvals: int = 0
    total_rejections: int = 0
    last_approval_at: Optional[datetime] = None
    last_rejection_at: Optional[datetime] = None
    last_suggestion_at: Optional[datetime] = None

    version: int = 0
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)

    @property
    def effective_threshold(self) -> float:
        return self.graduation_threshold * self.backoff_multiplier


class GraduationProgress(BaseSchema):
    category: ToolCategory
    current_level: AutonomyLevel
    consecutive_approvals: int
    threshold: float
    eligible: bool
    progress_pct: int


class AutonomyResolution(BaseSchema):
    """Auditable answer to "why was (or wasn't) this call auto-executed"."""

    tool_name: str
    category: ToolCategory
    level: AutonomyLevel
    source: AutonomySource
    reason: str

    @property
    def requires_approval(self) -> bool:
        return self.level != AutonomyLevel.autonomous


class PendingAction(BaseSchema):
    id: str = Field(default_factory=_new_id)
    user_id: str
    task_id: Optional[str] = None

    tool_name: str
    tool_params: Dict[str, Any] = Field(default_factory=dict)
    category: ToolCategory
    autonomy_level: AutonomyLevel = AutonomyLevel.draft

    title: str
    description: str = ""
    recommendation: Optional[str] = None
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)

    workflow_instance_id: Optional[str] = None
    step_index: Optional[int] = None
    item_index: Optional[int] = None

    status: PendingActionStatus = PendingActionStatus.pending
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None

    created_at: datetime = Field(default_factory=_utc_now)

    @property
    def is_open(self) -> bool:
        return self.status == PendingActionStatus.pending


class TimelineEntry(BaseSchema):
    timestamp: datetime = Field(default_factory=_utc_now)
    action: str
    status: str = "completed"
    tool_name: Optional[str] = None
    reasoning: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)


class AgentTask(BaseSchema):
    id: str = Field(default_factory=_new_id)
    user_id: str

    title: str
    description: Optional[str] = None
    category: TaskCategory = TaskCategory.general
    priority: TaskPriority = TaskPriority.normal
    status: TaskStatus = TaskStatus.in_progress
    manual_override: bool = False

    timeline: List[TimelineEntry] = Field(default_factory=list)
    recommendation: Optional[str] = None

    related_entity_type: Optional[str] = None
    related_entity_id: Optional[str] = None
    workflow_instance_id: Optional[str] = None

    scheduled_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_TASK_STATUSES


class WorkflowInstance(BaseSchema):
    """Runtime state of one workflow execution.

    ``current_step_index`` and ``step_results`` only move forward together, in
    the same checkpoint write. ``version`` guards that write against a second
    driver.
    """

    id: str = Field(default_factory=_new_id)
    definition_name: str
    user_id: str
    task_id: Optional[str] = None

    subject_context: Dict[str, Any] = Field(default_factory=dict)
    current_step_index: int = 0
    step_results: List[Any] = Field(default_factory=list)
    status: WorkflowStatus = WorkflowStatus.running

    gate: Optional[WorkflowGate] = None
    gate_entered_at: Optional[datetime] = None
    resumable_until: Optional[datetime] = None
    pending_action_id: Optional[str] = None
    wake_at: Optional[datetime] = None
    webhook_payload: Optional[Dict[str, Any]] = None

    fanout_results: List[Any] = Field(default_factory=list)
    fanout_cursor: int = 0

    error: Optional[str] = None
    version: int = 0

    lease_owner: Optional[str] = None
    lease_expires_at: Optional[datetime] = None

    started_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_WORKFLOW_STATUSES


class AgentEvent(BaseSchema):
    id: str = Field(default_factory=_new_id)
    type: AgentEventType
    created_at: datetime = Field(default_factory=_utc_now)

    user_id: Optional[str] = None
    task_id: Optional[str] = None
    workflow_instance_id: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)


class ToolInvocation(BaseSchema):
    id: str = Field(default_factory=_new_id)
    user_id: Optional[str] = None

    tool_name: str
    params: Dict[str, Any] = Field(default_factory=dict)
    ok: bool
    result: Any = None
    error: Optional[str] = None

    autonomy_level: Optional[AutonomyLevel] = None
    workflow_instance_id: Optional[str] = None
    step_index: Optional[int] = None

    created_at: datetime = Field(default_factory=_utc_now)
