from __future__ import annotations

"""Runtime dependency bundle and LangGraph state types.

The workflow engine is designed to be dependency-injected.

- ``EngineDeps`` collects the repositories and services the engine needs.
- ``_GraphState`` is the state passed between LangGraph nodes during one
  drive of one instance.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, Required, TypedDict

from ..approvals.queue import ApprovalQueue
from ..notifications import Notifier
from ..repos import EventRepository, ToolInvocationRepository, WorkflowInstanceRepository
from ..schemas.domain import WorkflowInstance
from ..tasks.service import TaskService
from ..tools.base import ToolInvoker
from .resolver import AutonomyResolver


@dataclass(frozen=True)
class EngineDeps:
    """Dependency bundle for ``WorkflowEngine``.

    This object is typically constructed by application wiring code
    (``AgentService``) and holds:

    - persistence repositories (instances, events, tool invocations),
    - the task service and approval queue the engine drives,
    - the tool invoker and the autonomy resolver,
    - an optional notifier and a clock (injectable for tests).
    """

    instances: WorkflowInstanceRepository
    events: EventRepository
    tool_invocations: ToolInvocationRepository
    tasks: TaskService
    approvals: ApprovalQueue
    tools: ToolInvoker
    autonomy: AutonomyResolver

    notifier: Optional[Notifier] = None
    clock: Optional[Callable[[], datetime]] = None


class _GraphState(TypedDict):
    """LangGraph state for a single drive of an instance.

    Keys:

    - ``instance``: the instance being driven; nodes mutate and checkpoint it.
    - ``route``: where to go after the current node
      (``continue`` / ``pause`` / ``finish``).
    - ``gate_cleared``: one-shot flag set when the gate of the current step
      (or current fan-out item) has been satisfied in this drive.
    - ``expired``: the resume window had elapsed; the drive raises
      ``ExpiredGateError`` once the graph has finished.
    """

    instance: Required[WorkflowInstance]
    route: Required[str]
    gate_cleared: Required[bool]
    expired: Required[bool]
