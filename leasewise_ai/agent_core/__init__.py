"""Autonomous-agent core: policy, approvals, tasks and resumable workflows.

Design overview
---------------

Every tool call the agent wants to make is resolved to an autonomy level:

- ``autonomous`` calls execute immediately.
- ``suggest`` / ``draft`` / ``execute`` calls become a ``PendingAction`` the
  owner approves or rejects. A fixed set of tools (money movement, legal
  notices, tenancy decisions) can never execute without approval.

Owners earn the agent more autonomy per tool category through graduation:
consecutive approvals make a category eligible, and the owner explicitly
accepts the step up.

Multi-step business processes run as workflow instances executed by
``agent_core.runtime.WorkflowEngine`` using LangGraph. Instances suspend on
gates (owner approval, external webhook, scheduled wait), checkpoint after
each step, and resume after a crash without repeating completed steps.

Typical usage
-------------

Most applications should use ``agent_core.service.AgentService``, which wires
all components from a set of repositories and a tool invoker.
"""

from .errors import (
    ConcurrencyConflict,
    DuplicateActionError,
    ExpiredGateError,
    InvalidTransitionError,
    LeasewiseError,
    NotFoundError,
    PolicyViolation,
    ToolExecutionError,
)
from .schemas.domain import (
    AgentEvent,
    AgentTask,
    AutonomyLevel,
    GraduationRecord,
    PendingAction,
    TaskStatus,
    ToolCategory,
    WorkflowInstance,
    WorkflowStatus,
)
from .service import AgentService, AgentServiceDeps

__all__ = [
    "AgentEvent",
    "AgentService",
    "AgentServiceDeps",
    "AgentTask",
    "AutonomyLevel",
    "ConcurrencyConflict",
    "DuplicateActionError",
    "ExpiredGateError",
    "GraduationRecord",
    "InvalidTransitionError",
    "LeasewiseError",
    "NotFoundError",
    "PendingAction",
    "PolicyViolation",
    "TaskStatus",
    "ToolCategory",
    "ToolExecutionError",
    "WorkflowInstance",
    "WorkflowStatus",
]
