from __future__ import annotations

"""Pending action approval queue.

The queue is the only way a gated tool call reaches the owner and the only
way the owner's decision flows back into the system.

Raising
-------

``raise_action`` creates a ``PendingAction``. A task may have at most one
open action: a per-task lock serializes raisers in this process and the
repository (a partial unique index in SQL) rejects duplicates across
processes. A duplicate raises ``DuplicateActionError``; a task that is
finished or under manual control cannot take an action at all.

Resolving
---------

``approve`` / ``reject`` resolve an action with a compare-and-swap on
``status = pending``. Only the caller that wins the swap:

1. records the approval/rejection with the graduation tracker,
2. moves the owning task (approval returns it to ``in_progress``; rejection
   of an ad-hoc action cancels it, workflow-owned tasks are left to the
   workflow engine),
3. notifies the resolution listeners (workflow engine, tool gateway).

Resolving an already-resolved action is a no-op that returns the stored
terminal state, so duplicate taps from a client never double count.
Listener errors (e.g. ``ExpiredGateError``) propagate to the caller.
"""

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..errors import DuplicateActionError, InvalidTransitionError, NotFoundError
from ..graduation.tracker import GraduationTracker
from ..notifications import NotificationKind, Notifier, safe_notify
from ..repos.interfaces import EventRepository, PendingActionRepository
from ..schemas.domain import (
    AgentEvent,
    AgentEventType,
    AutonomyLevel,
    PendingAction,
    PendingActionStatus,
    TaskStatus,
    ToolCategory,
)
from ..tasks.service import TaskService, can_transition

logger = logging.getLogger(__name__)

ResolutionListener = Callable[[PendingAction], Awaitable[None]]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def default_title(tool_name: str, params: Dict[str, Any]) -> str:
    """``"<tool>: <first 100 chars of the JSON params>"``."""
    return f"{tool_name}: {json.dumps(params, default=str)[:100]}"


class ApprovalQueue:
    """Raise and resolve owner approvals."""

    def __init__(
        self,
        *,
        repo: PendingActionRepository,
        tasks: TaskService,
        tracker: GraduationTracker,
        events: Optional[EventRepository] = None,
        notifier: Optional[Notifier] = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._repo = repo
        self._tasks = tasks
        self._tracker = tracker
        self._events = events
        self._notifier = notifier
        self._clock = clock
        self._listeners: List[ResolutionListener] = []
        self._locks: Dict[str, asyncio.Lock] = {}

    def add_listener(self, listener: ResolutionListener) -> None:
        """Register a coroutine called once per first-time resolution."""
        self._listeners.append(listener)

    def _lock_for(self, task_id: str) -> asyncio.Lock:
        lock = self._locks.get(task_id)
        if lock is None:
            lock = self._locks[task_id] = asyncio.Lock()
        return lock

    async def _emit(self, event_type: AgentEventType, action: PendingAction, payload: Dict[str, Any]) -> None:
        if self._events is None:
            return
        await self._events.append(
            AgentEvent(
                type=event_type,
                user_id=action.user_id,
                task_id=action.task_id,
                workflow_instance_id=action.workflow_instance_id,
                payload=payload,
            )
        )

    async def raise_action(
        self,
        *,
        user_id: str,
        tool_name: str,
        tool_params: Dict[str, Any],
        category: ToolCategory,
        task_id: Optional[str] = None,
        title: Optional[str] = None,
        description: str = "",
        recommendation: Optional[str] = None,
        confidence: Optional[float] = None,
        autonomy_level: AutonomyLevel = AutonomyLevel.draft,
        workflow_instance_id: Optional[str] = None,
        step_index: Optional[int] = None,
        item_index: Optional[int] = None,
    ) -> PendingAction:
        """
        Put a tool call in front of the owner.

        Raises:
            DuplicateActionError: If ``task_id`` already has an open action.
            InvalidTransitionError: If the task cannot wait for input (finished,
                scheduled, or under manual control).
        """
        action = PendingAction(
            user_id=user_id,
            task_id=task_id,
            tool_name=tool_name,
            tool_params=dict(tool_params),
            category=category,
            autonomy_level=autonomy_level,
            title=title or default_title(tool_name, tool_params),
            description=description,
            recommendation=recommendation,
            confidence=confidence,
            workflow_instance_id=workflow_instance_id,
            step_index=step_index,
            item_index=item_index,
            created_at=self._clock(),
        )
        if task_id is None:
            await self._repo.create(action)
        else:
            async with self._lock_for(task_id):
                existing = await self._repo.get_open_for_task(task_id)
                if existing is not None:
                    raise DuplicateActionError(task_id, existing.id)
                task = await self._tasks.get(task_id)
                waiting = task.status == TaskStatus.pending_input
                if task.manual_override or not (waiting or can_transition(task.status, TaskStatus.pending_input)):
                    raise InvalidTransitionError(
                        f"task {task_id} cannot wait for input while {task.status.value}"
                        + (" under manual control" if task.manual_override else "")
                    )
                await self._repo.create(action)
                await self._tasks.transition(
                    task_id,
                    TaskStatus.pending_input,
                    action="action_raised",
                    tool_name=tool_name,
                    reasoning=recommendation,
                    data={"action_id": action.id},
                )

        await self._emit(
            AgentEventType.action_raised,
            action,
            {"action_id": action.id, "tool_name": tool_name, "autonomy_level": action.autonomy_level.value},
        )
        await safe_notify(
            self._notifier,
            user_id,
            NotificationKind.action_needs_approval,
            title=action.title,
            body=description,
            data={"action_id": action.id, "task_id": task_id},
        )
        logger.info(f"Pending action {action.id} raised for {tool_name} (task={task_id})")
        return action

    async def find(self, action_id: str) -> Optional[PendingAction]:
        return await self._repo.get(action_id)

    async def get(self, action_id: str) -> PendingAction:
        action = await self._repo.get(action_id)
        if action is None:
            raise NotFoundError("pending action", action_id)
        return action

    async def list(
        self,
        *,
        user_id: Optional[str] = None,
        status: Optional[PendingActionStatus] = PendingActionStatus.pending,
        task_id: Optional[str] = None,
        limit: int = 100,
    ) -> list[PendingAction]:
        return await self._repo.list(user_id=user_id, status=status, task_id=task_id, limit=limit)

    async def approve(self, action_id: str, *, resolver: Optional[str] = None) -> PendingAction:
        """Approve an action (idempotent)."""
        return await self._resolve(action_id, PendingActionStatus.approved, resolver, None)

    async def reject(
        self, action_id: str, *, resolver: Optional[str] = None, reason: Optional[str] = None
    ) -> PendingAction:
        """Reject an action (idempotent)."""
        return await self._resolve(action_id, PendingActionStatus.rejected, resolver, reason)

    async def withdraw(
        self, task_id: str, *, resolver: Optional[str] = None, reason: Optional[str] = None
    ) -> Optional[PendingAction]:
        """
        Close a task's open action because the task itself ended.

        The action is stored as rejected, but it is not an owner decision on
        the tool call: the graduation tracker and the resolution listeners
        are not told.

        Returns:
            The withdrawn action, or None if the task had no open action.
        """
        action = await self._repo.get_open_for_task(task_id)
        if action is None:
            return None
        now = self._clock()
        won = await self._repo.resolve(
            action.id,
            status=PendingActionStatus.rejected,
            resolved_by=resolver,
            resolved_at=now,
            rejection_reason=reason,
        )
        if not won:
            return None
        withdrawn = action.model_copy(
            update={
                "status": PendingActionStatus.rejected,
                "resolved_by": resolver,
                "resolved_at": now,
                "rejection_reason": reason,
            }
        )
        await self._emit(
            AgentEventType.action_resolved,
            withdrawn,
            {"action_id": action.id, "status": "withdrawn", "resolved_by": resolver},
        )
        logger.info(f"Pending action {action.id} withdrawn: task {task_id} ended")
        return withdrawn

    async def _resolve(
        self,
        action_id: str,
        status: PendingActionStatus,
        resolver: Optional[str],
        reason: Optional[str],
    ) -> PendingAction:
        action = await self.get(action_id)
        if not action.is_open:
            logger.debug(f"Pending action {action_id} already {action.status.value}; ignoring {status.value}")
            return action

        now = self._clock()
        won = await self._repo.resolve(
            action_id,
            status=status,
            resolved_by=resolver,
            resolved_at=now,
            rejection_reason=reason,
        )
        if not won:
            logger.debug(f"Pending action {action_id} was resolved concurrently")
            return await self.get(action_id)

        resolved = action.model_copy(
            update={
                "status": status,
                "resolved_by": resolver,
                "resolved_at": now,
                "rejection_reason": reason,
            }
        )

        if status == PendingActionStatus.approved:
            await self._tracker.record_approval(action.user_id, action.category)
        else:
            await self._tracker.record_rejection(action.user_id, action.category)

        if action.task_id is not None:
            await self._settle_task(resolved)

        await self._emit(
            AgentEventType.action_resolved,
            resolved,
            {"action_id": action_id, "status": status.value, "resolved_by": resolver},
        )
        logger.info(f"Pending action {action_id} {status.value} by {resolver}")

        for listener in self._listeners:
            await listener(resolved)
        return resolved

    async def _settle_task(self, action: PendingAction) -> None:
        task = await self._tasks.find(action.task_id)
        if task is None or task.is_terminal:
            return
        if action.status == PendingActionStatus.approved:
            if task.status == TaskStatus.pending_input:
                await self._tasks.transition(
                    task.id,
                    TaskStatus.in_progress,
                    action="action_approved",
                    tool_name=action.tool_name,
                    data={"action_id": action.id},
                )
            else:
                await self._tasks.note(
                    task.id, action="action_approved", tool_name=action.tool_name, data={"action_id": action.id}
                )
            return

        if action.workflow_instance_id is None:
            await self._tasks.transition(
                task.id,
                TaskStatus.cancelled,
                action="action_rejected",
                tool_name=action.tool_name,
                reasoning=action.rejection_reason,
                data={"action_id": action.id},
            )
            await safe_notify(
                self._notifier,
                action.user_id,
                NotificationKind.task_cancelled,
                title=task.title,
                data={"task_id": task.id},
            )
        else:
            await self._tasks.note(
                task.id,
                action="action_rejected",
                status="rejected",
                tool_name=action.tool_name,
                reasoning=action.rejection_reason,
                data={"action_id": action.id},
            )
