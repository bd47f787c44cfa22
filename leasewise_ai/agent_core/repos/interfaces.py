from __future__ import annotations

"""Repository interface contracts.

The agent core depends on these Protocols instead of concrete persistence
implementations.

Contract guidelines
-------------------

- All methods are async.
- Implementations must not leak SQLAlchemy sessions/transactions to callers.
- Every record (task, pending action, graduation record, workflow instance)
  must be independently recoverable after a process restart.
- Event and tool invocation repositories are append-only.

Concurrency
-----------

Records shared between concurrent writers use compare-and-swap updates:

- ``GraduationRepository.save`` and ``WorkflowInstanceRepository.save`` only
  write when the stored ``version`` equals ``expected_version`` and raise
  ``ConcurrencyConflict`` otherwise.
- ``PendingActionRepository.resolve`` only resolves an action that is still
  ``pending`` and reports whether it did.
- ``WorkflowInstanceRepository.claim_lease`` grants at most one live driver
  per instance.
"""

from datetime import datetime
from typing import Dict, Iterable, Optional, Protocol

from ..schemas.domain import (
    AgentEvent,
    AgentTask,
    AutonomyLevel,
    GraduationRecord,
    PendingAction,
    PendingActionStatus,
    TaskStatus,
    ToolCategory,
    ToolInvocation,
    WorkflowInstance,
    WorkflowStatus,
)


class TaskRepository(Protocol):
    """Persist and query Agent Tasks."""

    async def create(self, task: AgentTask) -> None:
        """
        Create a new task record.

        Args:
            task: The initial task state to persist.
        """
        ...

    async def get(self, task_id: str) -> Optional[AgentTask]:
        """
        Retrieve a task by its ID.

        Returns:
            The AgentTask if found, else None.
        """
        ...

    async def save(self, task: AgentTask) -> None:
        """
        Overwrite an existing task (status, override flag, timeline, ...).

        Args:
            task: The full task state to store.
        """
        ...

    async def list(
        self,
        *,
        user_id: Optional[str] = None,
        statuses: Optional[Iterable[TaskStatus]] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[AgentTask]:
        """
        List tasks, newest first.

        Args:
            user_id: Optional owner filter.
            statuses: Optional status filter.
            limit: Max number of records to return.
            offset: Pagination offset.
        """
        ...


class PendingActionRepository(Protocol):
    """Store gated tool calls and their resolution."""

    async def create(self, action: PendingAction) -> None:
        """
        Create a pending action.

        Raises:
            DuplicateActionError: If the action's task already has an open one.
        """
        ...

    async def get(self, action_id: str) -> Optional[PendingAction]:
        """Retrieve a pending action by its ID."""
        ...

    async def get_open_for_task(self, task_id: str) -> Optional[PendingAction]:
        """Return the task's open (``pending``) action, if any."""
        ...

    async def resolve(
        self,
        action_id: str,
        *,
        status: PendingActionStatus,
        resolved_by: Optional[str],
        resolved_at: datetime,
        rejection_reason: Optional[str] = None,
    ) -> bool:
        """
        Resolve an action that is still ``pending``.

        Returns:
            True if this call resolved the action, False if it was already
            resolved (or does not exist).
        """
        ...

    async def list(
        self,
        *,
        user_id: Optional[str] = None,
        status: Optional[PendingActionStatus] = None,
        task_id: Optional[str] = None,
        limit: int = 100,
    ) -> list[PendingAction]:
        """List pending actions, newest first."""
        ...


class GraduationRepository(Protocol):
    """Per-(user, category) graduation records."""

    async def get(self, user_id: str, category: ToolCategory) -> Optional[GraduationRecord]:
        """Return the record for ``(user_id, category)`` if one exists."""
        ...

    async def create(self, record: GraduationRecord) -> None:
        """
        Create a record.

        Raises:
            ConcurrencyConflict: If a record for the same key already exists.
        """
        ...

    async def save(self, record: GraduationRecord, *, expected_version: int) -> None:
        """
        Compare-and-swap update.

        Raises:
            ConcurrencyConflict: If the stored version is not ``expected_version``.
        """
        ...

    async def list(self, user_id: str) -> list[GraduationRecord]:
        """List all of a user's records."""
        ...


class WorkflowInstanceRepository(Protocol):
    """Workflow instance checkpoints and driver leases."""

    async def create(self, instance: WorkflowInstance) -> None:
        """Persist a new instance."""
        ...

    async def get(self, instance_id: str) -> Optional[WorkflowInstance]:
        """Retrieve an instance by its ID."""
        ...

    async def save(self, instance: WorkflowInstance, *, expected_version: int) -> None:
        """
        Durably write a checkpoint.

        Lease columns are not written; they are owned by ``claim_lease`` and
        ``release_lease``.

        Raises:
            ConcurrencyConflict: If the stored version is not ``expected_version``.
        """
        ...

    async def claim_lease(self, instance_id: str, *, owner: str, now: datetime, expires_at: datetime) -> bool:
        """
        Claim the driver lease for an instance.

        The claim succeeds when the instance has no lease, the lease belongs to
        ``owner``, or the current lease expired before ``now``.

        Returns:
            True if ``owner`` now holds the lease.
        """
        ...

    async def release_lease(self, instance_id: str, *, owner: str) -> None:
        """Release the lease if ``owner`` still holds it."""
        ...

    async def list(
        self,
        *,
        user_id: Optional[str] = None,
        statuses: Optional[Iterable[WorkflowStatus]] = None,
        limit: int = 100,
    ) -> list[WorkflowInstance]:
        """List instances, most recently started first."""
        ...


class EventRepository(Protocol):
    """Append-only audit trail."""

    async def append(self, event: AgentEvent) -> None:
        """Append a new event."""
        ...

    async def list(
        self,
        *,
        task_id: Optional[str] = None,
        workflow_instance_id: Optional[str] = None,
        limit: int = 100,
    ) -> list[AgentEvent]:
        """List events in creation order."""
        ...


class ToolInvocationRepository(Protocol):
    """Audit log of every tool invocation."""

    async def append(self, invocation: ToolInvocation) -> None:
        """
        Log a tool invocation.

        Args:
            invocation: The invocation record including params and result.
        """
        ...

    async def list(self, *, workflow_instance_id: Optional[str] = None, limit: int = 100) -> list[ToolInvocation]:
        """List invocations in creation order."""
        ...


class AutonomyOverrideRepository(Protocol):
    """Owner-configured autonomy levels per category."""

    async def get(self, user_id: str, category: ToolCategory) -> Optional[AutonomyLevel]:
        """Return the override for ``(user_id, category)``, if any."""
        ...

    async def set(self, user_id: str, category: ToolCategory, level: AutonomyLevel) -> None:
        """Create or replace an override."""
        ...

    async def clear(self, user_id: str, category: ToolCategory) -> None:
        """Remove an override; a no-op when none exists."""
        ...

    async def list(self, user_id: str) -> Dict[ToolCategory, AutonomyLevel]:
        """Return all of a user's overrides."""
        ...
