"""Workflow runtime.

- ``WorkflowEngine``: LangGraph-based executor of workflow instances.
- ``ToolGateway``: autonomy-aware ad-hoc tool calls.
- ``AutonomyResolver``: per-owner autonomy lookups shared by both.
"""

from .engine import WorkflowEngine
from .gateway import ToolCallResult, ToolGateway
from .models import EngineDeps
from .resolver import AutonomyResolver

__all__ = [
    "AutonomyResolver",
    "EngineDeps",
    "ToolCallResult",
    "ToolGateway",
    "WorkflowEngine",
]
