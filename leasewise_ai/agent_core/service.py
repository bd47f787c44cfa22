from __future__ import annotations

"""High-level orchestration service for the agent core.

``AgentService`` wires the policy, graduation tracker, task service, approval
queue, workflow engine and tool gateway from a set of repositories and a tool
invoker, and exposes the operations the owner app and schedulers need.

Wiring
------

- The approval queue notifies two listeners on every first-time resolution:
  the workflow engine (resumes the instance that raised the action) and the
  tool gateway (runs approved ad-hoc calls).
- Every component shares one clock so tests can move time forward.

``AgentService`` is intentionally thin: execution semantics live in the
engine, the gateway and the queue.

Owner scoping
-------------

Methods that take ``user_id`` refuse records owned by someone else with
``NotFoundError`` so that ids cannot be guessed across owners.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional

from .approvals.queue import ApprovalQueue
from .errors import ConcurrencyConflict, NotFoundError
from .graduation.tracker import GraduationTracker
from .notifications import Notifier
from .policy.autonomy import AutonomyPolicy
from .policy.models import AutonomyPolicyConfig, GraduationConfig
from .repos import (
    AutonomyOverrideRepository,
    EventRepository,
    GraduationRepository,
    PendingActionRepository,
    TaskRepository,
    ToolInvocationRepository,
    WorkflowInstanceRepository,
)
from .runtime import AutonomyResolver, EngineDeps, ToolCallResult, ToolGateway, WorkflowEngine
from .schemas.domain import (
    AgentTask,
    AutonomyLevel,
    GraduationProgress,
    GraduationRecord,
    PendingAction,
    PendingActionStatus,
    TaskStatus,
    ToolCategory,
    WorkflowInstance,
    WorkflowStatus,
)
from .tasks.service import TaskService
from .tools.base import ToolInvoker
from .workflows.definitions import WORKFLOW_DEFINITIONS
from .workflows.models import WorkflowDefinition

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class AgentServiceDeps:
    """Dependency bundle for ``AgentService``.

    This allows applications and tests to inject:

    - persistence repositories (SQL or in-memory),
    - the tool invoker (HTTP gateway or an in-process registry),
    - an optional notifier and clock.
    """

    tasks: TaskRepository
    actions: PendingActionRepository
    graduation: GraduationRepository
    instances: WorkflowInstanceRepository
    events: EventRepository
    tool_invocations: ToolInvocationRepository
    overrides: AutonomyOverrideRepository
    tools: ToolInvoker

    notifier: Optional[Notifier] = None
    clock: Optional[Callable[[], datetime]] = None

    @classmethod
    def from_repos(
        cls,
        repos: Any,
        *,
        tools: ToolInvoker,
        notifier: Optional[Notifier] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> "AgentServiceDeps":
        """Build from any bundle exposing the repository attributes (e.g. ``SqlRepoBundle``)."""
        return cls(
            tasks=repos.tasks,
            actions=repos.actions,
            graduation=repos.graduation,
            instances=repos.instances,
            events=repos.events,
            tool_invocations=repos.tool_invocations,
            overrides=repos.overrides,
            tools=tools,
            notifier=notifier,
            clock=clock,
        )


class AgentService:
    """Facade over the agent core."""

    def __init__(
        self,
        *,
        deps: AgentServiceDeps,
        policy_config: Optional[AutonomyPolicyConfig] = None,
        graduation_config: Optional[GraduationConfig] = None,
        definitions: Mapping[str, WorkflowDefinition] = WORKFLOW_DEFINITIONS,
        lease_ttl: timedelta = timedelta(minutes=5),
        driver_id: Optional[str] = None,
    ) -> None:
        clock = deps.clock or _utc_now
        self._deps = deps
        self._policy = AutonomyPolicy(policy_config, graduation_config)
        self._tracker = GraduationTracker(
            repo=deps.graduation, policy=self._policy, config=graduation_config, clock=clock
        )
        self._tasks = TaskService(repo=deps.tasks, events=deps.events, clock=clock)
        self._approvals = ApprovalQueue(
            repo=deps.actions,
            tasks=self._tasks,
            tracker=self._tracker,
            events=deps.events,
            notifier=deps.notifier,
            clock=clock,
        )
        self._resolver = AutonomyResolver(
            policy=self._policy, tracker=self._tracker, overrides=deps.overrides, events=deps.events
        )
        self._engine = WorkflowEngine(
            deps=EngineDeps(
                instances=deps.instances,
                events=deps.events,
                tool_invocations=deps.tool_invocations,
                tasks=self._tasks,
                approvals=self._approvals,
                tools=deps.tools,
                autonomy=self._resolver,
                notifier=deps.notifier,
                clock=clock,
            ),
            definitions=definitions,
            lease_ttl=lease_ttl,
            driver_id=driver_id,
        )
        self._gateway = ToolGateway(
            tools=deps.tools,
            autonomy=self._resolver,
            tasks=self._tasks,
            approvals=self._approvals,
            tool_invocations=deps.tool_invocations,
            events=deps.events,
            notifier=deps.notifier,
            clock=clock,
        )
        self._approvals.add_listener(self._engine.on_action_resolved)
        self._approvals.add_listener(self._gateway.on_action_resolved)

    @property
    def policy(self) -> AutonomyPolicy:
        return self._policy

    @property
    def tracker(self) -> GraduationTracker:
        return self._tracker

    @property
    def tasks(self) -> TaskService:
        return self._tasks

    @property
    def approvals(self) -> ApprovalQueue:
        return self._approvals

    @property
    def engine(self) -> WorkflowEngine:
        return self._engine

    @property
    def gateway(self) -> ToolGateway:
        return self._gateway

    # -- ad-hoc tools ---------------------------------------------------

    async def call_tool(self, user_id: str, tool_name: str, params: Dict[str, Any], **kwargs: Any) -> ToolCallResult:
        return await self._gateway.call(user_id, tool_name, params, **kwargs)

    async def run_unattended(
        self, user_id: str, tool_name: str, params: Dict[str, Any], **kwargs: Any
    ) -> ToolCallResult:
        return await self._gateway.run_unattended(user_id, tool_name, params, **kwargs)

    # -- workflows ------------------------------------------------------

    def list_definitions(self) -> List[WorkflowDefinition]:
        return list(self._engine.definitions.values())

    async def start_workflow(
        self,
        definition_name: str,
        *,
        user_id: str,
        subject_context: Optional[Dict[str, Any]] = None,
        title: Optional[str] = None,
        related_entity_type: Optional[str] = None,
        related_entity_id: Optional[str] = None,
    ) -> WorkflowInstance:
        return await self._engine.start_workflow(
            definition_name,
            user_id=user_id,
            subject_context=subject_context,
            title=title,
            related_entity_type=related_entity_type,
            related_entity_id=related_entity_id,
        )

    async def get_instance(self, instance_id: str, *, user_id: Optional[str] = None) -> WorkflowInstance:
        instance = await self._engine.get_instance(instance_id)
        if user_id is not None and instance.user_id != user_id:
            raise NotFoundError("workflow instance", instance_id)
        return instance

    async def deliver_webhook(self, instance_id: str, step_index: int, payload: Dict[str, Any]) -> bool:
        return await self._engine.deliver_webhook(instance_id, step_index, payload)

    async def tick(self) -> List[WorkflowInstance]:
        return await self._engine.tick()

    # -- approvals ------------------------------------------------------

    async def list_actions(
        self,
        user_id: str,
        *,
        status: Optional[PendingActionStatus] = PendingActionStatus.pending,
        task_id: Optional[str] = None,
        limit: int = 100,
    ) -> List[PendingAction]:
        return await self._approvals.list(user_id=user_id, status=status, task_id=task_id, limit=limit)

    async def _owned_action(self, action_id: str, user_id: Optional[str]) -> PendingAction:
        action = await self._approvals.get(action_id)
        if user_id is not None and action.user_id != user_id:
            raise NotFoundError("pending action", action_id)
        return action

    async def approve_action(self, action_id: str, *, user_id: Optional[str] = None) -> PendingAction:
        """
        Approve a pending action (idempotent).

        Raises:
            NotFoundError: If the action does not exist for this owner.
            ExpiredGateError: If the workflow waiting on it is past its resume window.
        """
        await self._owned_action(action_id, user_id)
        return await self._approvals.approve(action_id, resolver=user_id)

    async def reject_action(
        self, action_id: str, *, user_id: Optional[str] = None, reason: Optional[str] = None
    ) -> PendingAction:
        await self._owned_action(action_id, user_id)
        return await self._approvals.reject(action_id, resolver=user_id, reason=reason)

    # -- tasks ----------------------------------------------------------

    async def list_tasks(
        self,
        user_id: str,
        *,
        statuses: Optional[List[TaskStatus]] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[AgentTask]:
        return await self._tasks.list(user_id=user_id, statuses=statuses, limit=limit, offset=offset)

    async def get_task(self, task_id: str, *, user_id: Optional[str] = None) -> AgentTask:
        task = await self._tasks.get(task_id)
        if user_id is not None and task.user_id != user_id:
            raise NotFoundError("task", task_id)
        return task

    async def take_control(
        self, task_id: str, *, user_id: Optional[str] = None, reason: Optional[str] = None
    ) -> AgentTask:
        """Stop all autonomous progress on a task until the owner resumes it."""
        await self.get_task(task_id, user_id=user_id)
        return await self._tasks.take_control(task_id, reason=reason)

    async def resume_task(self, task_id: str, *, user_id: Optional[str] = None) -> AgentTask:
        """
        Hand a task back to the agent and continue its workflow, if any.

        Raises:
            ExpiredGateError: If the workflow waited past its resume window.
        """
        await self.get_task(task_id, user_id=user_id)
        task = await self._tasks.release_control(task_id)
        if task.workflow_instance_id is not None:
            try:
                await self._engine.drive(task.workflow_instance_id)
            except ConcurrencyConflict:
                logger.info(f"Workflow of task {task_id} is already being driven")
        return await self._tasks.get(task_id)

    async def cancel_task(
        self, task_id: str, *, user_id: Optional[str] = None, reason: Optional[str] = None
    ) -> AgentTask:
        """Cancel a task, withdraw its open action and fail its live workflow instance."""
        task = await self.get_task(task_id, user_id=user_id)
        task = await self._tasks.transition(task_id, TaskStatus.cancelled, action="cancelled_by_owner", reasoning=reason)
        await self._approvals.withdraw(task_id, resolver=user_id, reason=reason or "task cancelled")
        if task.workflow_instance_id is not None:
            instance = await self._engine.get_instance(task.workflow_instance_id)
            if instance.status in (WorkflowStatus.running, WorkflowStatus.waiting_on_gate):
                try:
                    await self._engine.cancel(instance.id, reason=reason or "cancelled by owner")
                except ConcurrencyConflict:
                    logger.info(f"Workflow of task {task_id} is being driven; it stops at its next step")
        return task

    # -- graduation and overrides ---------------------------------------

    async def graduation_progress(self, user_id: str) -> List[GraduationProgress]:
        return await self._tracker.list_progress(user_id)

    async def category_progress(self, user_id: str, category: ToolCategory) -> GraduationProgress:
        return await self._tracker.progress(user_id, category)

    async def accept_graduation(self, user_id: str, category: ToolCategory) -> GraduationRecord:
        return await self._tracker.accept_graduation(user_id, category)

    async def decline_graduation(self, user_id: str, category: ToolCategory) -> GraduationRecord:
        return await self._tracker.decline_graduation(user_id, category)

    async def list_overrides(self, user_id: str) -> Dict[ToolCategory, AutonomyLevel]:
        return await self._deps.overrides.list(user_id)

    async def set_override(self, user_id: str, category: ToolCategory, level: AutonomyLevel) -> None:
        """Pin a category to a level for this owner. Never-auto-execute tools stay gated regardless."""
        await self._deps.overrides.set(user_id, category, level)
        logger.info(f"Autonomy override for {user_id}/{category.value} set to {level.value}")

    async def clear_override(self, user_id: str, category: ToolCategory) -> None:
        await self._deps.overrides.clear(user_id, category)
        logger.info(f"Autonomy override for {user_id}/{category.value} cleared")
