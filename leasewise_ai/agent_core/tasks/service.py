from __future__ import annotations

"""Agent Task state machine.

``TaskService`` owns every status change of an ``AgentTask``:

    scheduled -> in_progress <-> paused
    in_progress -> pending_input -> in_progress | cancelled
    in_progress -> completed | cancelled

``take_control`` forces ``manual_override = True`` and ``paused`` from any
non-terminal status; ``release_control`` clears the override and returns the
task to ``in_progress``. Every change appends a timeline entry and an audit
event; transitions outside the table raise ``InvalidTransitionError``.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, FrozenSet, Iterable, Optional

from ..errors import InvalidTransitionError, NotFoundError
from ..repos.interfaces import EventRepository, TaskRepository
from ..schemas.domain import (
    AgentEvent,
    AgentEventType,
    AgentTask,
    TaskCategory,
    TaskPriority,
    TaskStatus,
    TimelineEntry,
)

logger = logging.getLogger(__name__)

_TRANSITIONS: Dict[TaskStatus, FrozenSet[TaskStatus]] = {
    TaskStatus.scheduled: frozenset({TaskStatus.in_progress, TaskStatus.cancelled}),
    TaskStatus.in_progress: frozenset(
        {TaskStatus.paused, TaskStatus.pending_input, TaskStatus.completed, TaskStatus.cancelled}
    ),
    TaskStatus.pending_input: frozenset({TaskStatus.in_progress, TaskStatus.paused, TaskStatus.cancelled}),
    TaskStatus.paused: frozenset({TaskStatus.in_progress, TaskStatus.cancelled}),
    TaskStatus.completed: frozenset(),
    TaskStatus.cancelled: frozenset(),
}


def can_transition(current: TaskStatus, target: TaskStatus) -> bool:
    return TaskStatus(target) in _TRANSITIONS[TaskStatus(current)]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TaskService:
    """Create, transition and annotate Agent Tasks."""

    def __init__(
        self,
        *,
        repo: TaskRepository,
        events: Optional[EventRepository] = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._repo = repo
        self._events = events
        self._clock = clock
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, task_id: str) -> asyncio.Lock:
        lock = self._locks.get(task_id)
        if lock is None:
            lock = self._locks[task_id] = asyncio.Lock()
        return lock

    async def create(
        self,
        *,
        user_id: str,
        title: str,
        category: TaskCategory = TaskCategory.general,
        description: Optional[str] = None,
        priority: TaskPriority = TaskPriority.normal,
        scheduled_at: Optional[datetime] = None,
        related_entity_type: Optional[str] = None,
        related_entity_id: Optional[str] = None,
        recommendation: Optional[str] = None,
        workflow_instance_id: Optional[str] = None,
    ) -> AgentTask:
        """Create a task; it starts ``scheduled`` when ``scheduled_at`` is given, else ``in_progress``."""
        now = self._clock()
        status = TaskStatus.scheduled if scheduled_at is not None else TaskStatus.in_progress
        task = AgentTask(
            user_id=user_id,
            title=title,
            description=description,
            category=category,
            priority=priority,
            status=status,
            scheduled_at=scheduled_at,
            related_entity_type=related_entity_type,
            related_entity_id=related_entity_id,
            recommendation=recommendation,
            workflow_instance_id=workflow_instance_id,
            timeline=[TimelineEntry(timestamp=now, action="created", status=status.value)],
            created_at=now,
            updated_at=now,
        )
        await self._repo.create(task)
        logger.debug(f"Task {task.id} created for {user_id}: {title!r} ({status.value})")
        return task

    async def find(self, task_id: str) -> Optional[AgentTask]:
        return await self._repo.get(task_id)

    async def get(self, task_id: str) -> AgentTask:
        task = await self._repo.get(task_id)
        if task is None:
            raise NotFoundError("task", task_id)
        return task

    async def list(
        self,
        *,
        user_id: Optional[str] = None,
        statuses: Optional[Iterable[TaskStatus]] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[AgentTask]:
        return await self._repo.list(user_id=user_id, statuses=statuses, limit=limit, offset=offset)

    async def _update(self, task_id: str, change: Callable[[AgentTask, datetime], None]) -> AgentTask:
        async with self._lock_for(task_id):
            task = await self.get(task_id)
            before = task.status
            now = self._clock()
            change(task, now)
            task.updated_at = now
            await self._repo.save(task)
        if task.status != before and self._events is not None:
            await self._events.append(
                AgentEvent(
                    type=AgentEventType.task_transition,
                    user_id=task.user_id,
                    task_id=task.id,
                    workflow_instance_id=task.workflow_instance_id,
                    payload={"from": before.value, "to": task.status.value},
                )
            )
        return task

    async def transition(
        self,
        task_id: str,
        target: TaskStatus,
        *,
        action: str,
        reasoning: Optional[str] = None,
        tool_name: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> AgentTask:
        """
        Move a task to ``target`` and record why on its timeline.

        Moving a task to the status it already has is a no-op.

        Raises:
            NotFoundError: If the task does not exist.
            InvalidTransitionError: If the move is not allowed.
        """
        target = TaskStatus(target)

        def change(task: AgentTask, now: datetime) -> None:
            if task.status == target:
                return
            if not can_transition(task.status, target):
                raise InvalidTransitionError(f"task {task.id} cannot move from {task.status.value} to {target.value}")
            task.status = target
            if target == TaskStatus.completed:
                task.completed_at = now
            task.timeline.append(
                TimelineEntry(
                    timestamp=now,
                    action=action,
                    status=target.value,
                    tool_name=tool_name,
                    reasoning=reasoning,
                    data=data or {},
                )
            )

        task = await self._update(task_id, change)
        logger.debug(f"Task {task_id} -> {task.status.value} ({action})")
        return task

    async def note(
        self,
        task_id: str,
        *,
        action: str,
        status: str = "completed",
        tool_name: Optional[str] = None,
        reasoning: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> AgentTask:
        """Append a timeline entry without changing the task status."""

        def change(task: AgentTask, now: datetime) -> None:
            task.timeline.append(
                TimelineEntry(
                    timestamp=now,
                    action=action,
                    status=status,
                    tool_name=tool_name,
                    reasoning=reasoning,
                    data=data or {},
                )
            )

        return await self._update(task_id, change)

    async def take_control(self, task_id: str, *, reason: Optional[str] = None) -> AgentTask:
        """
        Owner takes over: set ``manual_override`` and pause the task.

        Raises:
            InvalidTransitionError: If the task is already completed or cancelled.
        """

        def change(task: AgentTask, now: datetime) -> None:
            if task.is_terminal:
                raise InvalidTransitionError(f"task {task.id} is {task.status.value}")
            task.manual_override = True
            task.status = TaskStatus.paused
            task.timeline.append(
                TimelineEntry(timestamp=now, action="take_control", status=TaskStatus.paused.value, reasoning=reason)
            )

        task = await self._update(task_id, change)
        logger.info(f"Owner took control of task {task_id}")
        return task

    async def release_control(self, task_id: str) -> AgentTask:
        """
        Clear ``manual_override`` and return the task to ``in_progress``.

        Raises:
            InvalidTransitionError: If the task is completed or cancelled.
        """

        def change(task: AgentTask, now: datetime) -> None:
            if task.is_terminal:
                raise InvalidTransitionError(f"task {task.id} is {task.status.value}")
            task.manual_override = False
            task.status = TaskStatus.in_progress
            task.timeline.append(TimelineEntry(timestamp=now, action="resume", status=TaskStatus.in_progress.value))

        task = await self._update(task_id, change)
        logger.info(f"Task {task_id} resumed by owner")
        return task
