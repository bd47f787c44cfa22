"""Pydantic domain models shared by the agent core."""

from .base import BaseSchema, FrozenSchema
from .domain import (
    AgentEvent,
    AgentEventType,
    AgentTask,
    AutonomyLevel,
    AutonomyResolution,
    AutonomySource,
    GraduationProgress,
    GraduationRecord,
    ParamResolver,
    PendingAction,
    PendingActionStatus,
    TaskCategory,
    TaskPriority,
    TaskStatus,
    TimelineEntry,
    ToolCategory,
    ToolInvocation,
    WorkflowGate,
    WorkflowInstance,
    WorkflowStatus,
)

__all__ = [
    "BaseSchema",
    "FrozenSchema",
    "AgentEvent",
    "AgentEventType",
    "AgentTask",
    "AutonomyLevel",
    "AutonomyResolution",
    "AutonomySource",
    "GraduationProgress",
    "GraduationRecord",
    "ParamResolver",
    "PendingAction",
    "PendingActionStatus",
    "TaskCategory",
    "TaskPriority",
    "TaskStatus",
    "TimelineEntry",
    "ToolCategory",
    "ToolInvocation",
    "WorkflowGate",
    "WorkflowInstance",
    "WorkflowStatus",
]
