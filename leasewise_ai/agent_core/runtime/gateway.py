from __future__ import annotations

"""Ad-hoc tool calls.

``ToolGateway`` is the entry point for tool calls that are not part of a
workflow: an agent conversation asking to send a message, a scheduled job
sending a rent reminder.

- The call is resolved against the owner's autonomy settings.
- ``autonomous`` calls run immediately and are audited.
- Anything else becomes a ``PendingAction`` on an Agent Task; the gateway
  runs the tool once the owner approves it (``on_action_resolved``).

``run_unattended`` is the path for callers with no owner present (scheduled
jobs). It refuses never-auto-execute tools outright instead of queueing them.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from ..approvals.queue import ApprovalQueue, default_title
from ..errors import InvalidTransitionError, ToolExecutionError
from ..notifications import NotificationKind, Notifier, safe_notify
from ..repos.interfaces import EventRepository, ToolInvocationRepository
from ..schemas.base import BaseSchema
from ..schemas.domain import (
    AgentEvent,
    AgentEventType,
    AutonomyLevel,
    AutonomyResolution,
    PendingAction,
    PendingActionStatus,
    TaskStatus,
    ToolInvocation,
)
from ..tasks.service import TaskService
from ..tools.base import ToolInvoker
from .resolver import AutonomyResolver

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ToolCallResult(BaseSchema):
    """
    Outcome of an ad-hoc tool call.

    Attributes:
        executed: The tool ran now.
        result: Tool result payload when executed.
        action: The pending action raised when the call needs the owner.
        task_id: Agent Task tracking the call, if any.
        resolution: How the autonomy level was decided.
    """

    executed: bool
    result: Any = None
    action: Optional[PendingAction] = None
    task_id: Optional[str] = None
    resolution: AutonomyResolution


class ToolGateway:
    """Autonomy-aware ad-hoc tool execution."""

    def __init__(
        self,
        *,
        tools: ToolInvoker,
        autonomy: AutonomyResolver,
        tasks: TaskService,
        approvals: ApprovalQueue,
        tool_invocations: ToolInvocationRepository,
        events: Optional[EventRepository] = None,
        notifier: Optional[Notifier] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._tools = tools
        self._autonomy = autonomy
        self._tasks = tasks
        self._approvals = approvals
        self._invocations = tool_invocations
        self._events = events
        self._notifier = notifier
        self._clock = clock or _utc_now

    async def call(
        self,
        user_id: str,
        tool_name: str,
        params: Dict[str, Any],
        *,
        task_id: Optional[str] = None,
        title: Optional[str] = None,
        description: str = "",
        recommendation: Optional[str] = None,
        confidence: Optional[float] = None,
    ) -> ToolCallResult:
        """
        Run a tool now or queue it for the owner.

        Raises:
            ToolExecutionError: If an autonomous call fails.
            DuplicateActionError: If ``task_id`` already waits on an action.
            InvalidTransitionError: If ``task_id`` is finished or under manual control.
        """
        if task_id is not None:
            task = await self._tasks.get(task_id)
            if task.is_terminal or task.manual_override:
                state = "under manual control" if task.manual_override else task.status.value
                raise InvalidTransitionError(f"task {task_id} is {state}; not calling {tool_name}")

        resolution = await self._autonomy.resolve(user_id, tool_name, confidence=confidence, task_id=task_id)
        if resolution.level == AutonomyLevel.autonomous:
            result = await self._execute(user_id, tool_name, params, level=resolution.level, task_id=task_id)
            if task_id is not None:
                await self._tasks.note(task_id, action="tool_executed", tool_name=tool_name, reasoning=recommendation)
            return ToolCallResult(executed=True, result=result, task_id=task_id, resolution=resolution)

        if task_id is None:
            task = await self._tasks.create(
                user_id=user_id,
                title=title or default_title(tool_name, params),
                description=description or None,
                recommendation=recommendation,
            )
            task_id = task.id

        action = await self._approvals.raise_action(
            user_id=user_id,
            tool_name=tool_name,
            tool_params=params,
            category=resolution.category,
            task_id=task_id,
            title=title,
            description=description,
            recommendation=recommendation,
            confidence=confidence,
            autonomy_level=resolution.level,
        )
        logger.info(f"{tool_name} for {user_id} needs approval ({resolution.level.value}): action={action.id}")
        return ToolCallResult(executed=False, action=action, task_id=task_id, resolution=resolution)

    async def run_unattended(
        self,
        user_id: str,
        tool_name: str,
        params: Dict[str, Any],
        **kwargs: Any,
    ) -> ToolCallResult:
        """
        Call a tool with no owner present.

        Raises:
            PolicyViolation: If the tool may never auto-execute.
        """
        self._autonomy.policy.assert_auto_executable(tool_name)
        return await self.call(user_id, tool_name, params, **kwargs)

    async def on_action_resolved(self, action: PendingAction) -> None:
        """Approval queue listener: run approved ad-hoc calls."""
        if action.workflow_instance_id is not None or action.status != PendingActionStatus.approved:
            return

        task = await self._tasks.find(action.task_id) if action.task_id else None
        if task is not None and task.is_terminal:
            logger.info(f"Action {action.id} approved after task {task.id} was {task.status.value}; not running it")
            return
        if task is not None and task.manual_override:
            await self._tasks.note(
                task.id,
                action="approved_under_manual_control",
                status="skipped",
                tool_name=action.tool_name,
                data={"action_id": action.id},
            )
            logger.info(f"Action {action.id} approved while task {task.id} is under manual control; not running it")
            return

        try:
            result = await self._execute(
                action.user_id,
                action.tool_name,
                action.tool_params,
                level=action.autonomy_level,
                task_id=action.task_id,
            )
        except ToolExecutionError as e:
            logger.error(f"Approved action {action.id} failed: {e}")
            if task is not None:
                await self._tasks.transition(
                    task.id,
                    TaskStatus.cancelled,
                    action="tool_failed",
                    tool_name=action.tool_name,
                    reasoning="This task was cancelled.",
                    data={"action_id": action.id},
                )
                await safe_notify(
                    self._notifier,
                    action.user_id,
                    NotificationKind.task_cancelled,
                    title=task.title,
                    body="This task was cancelled.",
                    data={"task_id": task.id, "action_id": action.id},
                )
            return

        if task is not None:
            await self._tasks.transition(
                task.id,
                TaskStatus.completed,
                action="tool_executed",
                tool_name=action.tool_name,
                data={"action_id": action.id, "result": result},
            )
            await safe_notify(
                self._notifier,
                action.user_id,
                NotificationKind.task_completed,
                title=task.title,
                data={"task_id": task.id, "action_id": action.id},
            )

    async def _execute(
        self,
        user_id: str,
        tool_name: str,
        params: Dict[str, Any],
        *,
        level: AutonomyLevel,
        task_id: Optional[str],
    ) -> Any:
        ok, result, error = True, None, None
        try:
            result = await self._tools.invoke(tool_name, params)
        except ToolExecutionError as e:
            ok, error = False, e.error
            raise
        finally:
            await self._invocations.append(
                ToolInvocation(
                    user_id=user_id,
                    tool_name=tool_name,
                    params=params,
                    ok=ok,
                    result=result,
                    error=error,
                    autonomy_level=level,
                    created_at=self._clock(),
                )
            )
            if self._events is not None:
                await self._events.append(
                    AgentEvent(
                        type=AgentEventType.tool_invoked,
                        user_id=user_id,
                        task_id=task_id,
                        payload={"tool_name": tool_name, "ok": ok, "autonomy_level": level.value},
                        created_at=self._clock(),
                    )
                )
        return result
