from __future__ import annotations

"""SQLAlchemy async repository implementations.

This module provides a Postgres-backed persistence implementation for the
repository interfaces defined in ``leasewise_ai.agent_core.repos.interfaces``.

Usage
-----

Typical wiring (tests or application setup):

- Create an async engine with ``create_engine``.
- Create tables with ``create_all`` (for tests/dev).
- Create a session factory with ``create_sessionmaker``.
- Build repository instances with ``build_sql_repos``.

Transaction model
-----------------

Each repository method opens an ``AsyncSession``, performs its operation, and
commits. Every checkpoint, resolution and graduation write is therefore
durable when the method returns.

Compare-and-swap writes are single ``UPDATE ... WHERE`` statements so that
the database, not the process, decides which of two racing writers wins.
"""

import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, Optional

from pydantic import BaseModel
from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from ..errors import ConcurrencyConflict, DuplicateActionError, NotFoundError
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
from .interfaces import (
    AutonomyOverrideRepository,
    EventRepository,
    GraduationRepository,
    PendingActionRepository,
    TaskRepository,
    ToolInvocationRepository,
    WorkflowInstanceRepository,
)
from .models import (
    AutonomyOverrideRow,
    Base,
    EventRow,
    GraduationRow,
    PendingActionRow,
    TaskRow,
    ToolInvocationRow,
    WorkflowInstanceRow,
)


def create_engine(db_url: str) -> AsyncEngine:
    """Create an async SQLAlchemy engine.

    The helper normalizes Postgres URLs to ensure the async driver is used.
    For example, it rewrites ``postgresql://`` and other variants to
    ``postgresql+asyncpg://``.
    """
    url = re.sub(r"^postgres(?:ql)?(?:\+[a-z0-9_]+)?://", "postgresql+asyncpg://", db_url, count=1)
    if url.startswith("postgresql+asyncpg://"):
        return create_async_engine(url, pool_pre_ping=True)
    return create_async_engine(url)


def create_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create an ``async_sessionmaker`` with safe defaults for this project."""
    return async_sessionmaker(engine, expire_on_commit=False)


async def create_all(engine: AsyncEngine) -> None:
    """Create all tables for the current ORM metadata.

    This is mainly intended for tests and local development.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: Any) -> Any:
    # SQLite hands back naive datetimes; everything is stored in UTC.
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _row_values(model: BaseModel, json_fields: Iterable[str] = (), exclude: Iterable[str] = ()) -> Dict[str, Any]:
    """Flatten a domain model into column values.

    ``json_fields`` are dumped in JSON mode so nested models and datetimes
    become plain JSON; enums are stored by value.
    """
    json_fields = set(json_fields)
    skipped = set(exclude)
    json_data = model.model_dump(mode="json", include=json_fields) if json_fields else {}
    values: Dict[str, Any] = {}
    for name in type(model).model_fields:
        if name in skipped:
            continue
        if name in json_fields:
            values[name] = json_data[name]
            continue
        value = getattr(model, name)
        values[name] = value.value if isinstance(value, Enum) else value
    return values


def _row_dict(row: Base) -> Dict[str, Any]:
    return {column.key: _aware(getattr(row, column.key)) for column in row.__table__.columns}


@dataclass(frozen=True)
class SqlTaskRepository(TaskRepository):
    """SQL implementation of ``TaskRepository``."""

    session_factory: async_sessionmaker[AsyncSession]

    async def create(self, task: AgentTask) -> None:
        async with self.session_factory() as s:
            s.add(TaskRow(**_row_values(task, json_fields=("timeline",))))
            await s.commit()

    async def get(self, task_id: str) -> Optional[AgentTask]:
        async with self.session_factory() as s:
            row = await s.get(TaskRow, task_id)
            if row is None:
                return None
            return AgentTask.model_validate(_row_dict(row))

    async def save(self, task: AgentTask) -> None:
        """
        Overwrite an existing task.

        Raises:
            NotFoundError: If the task does not exist.
        """
        async with self.session_factory() as s:
            row = await s.get(TaskRow, task.id)
            if row is None:
                raise NotFoundError("task", task.id)
            for key, value in _row_values(task, json_fields=("timeline",), exclude=("id",)).items():
                setattr(row, key, value)
            await s.commit()

    async def list(
        self,
        *,
        user_id: Optional[str] = None,
        statuses: Optional[Iterable[TaskStatus]] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[AgentTask]:
        async with self.session_factory() as s:
            stmt = select(TaskRow)
            if user_id:
                stmt = stmt.where(TaskRow.user_id == user_id)
            if statuses is not None:
                stmt = stmt.where(TaskRow.status.in_([TaskStatus(v).value for v in statuses]))
            stmt = stmt.order_by(TaskRow.created_at.desc()).offset(offset).limit(limit)
            result = await s.execute(stmt)
            return [AgentTask.model_validate(_row_dict(row)) for row in result.scalars().all()]


@dataclass(frozen=True)
class SqlPendingActionRepository(PendingActionRepository):
    """SQL implementation of ``PendingActionRepository``.

    Duplicate open actions for a task are rejected by the partial unique index
    and surfaced as ``DuplicateActionError``.
    """

    session_factory: async_sessionmaker[AsyncSession]

    async def create(self, action: PendingAction) -> None:
        try:
            async with self.session_factory() as s:
                s.add(PendingActionRow(**_row_values(action, json_fields=("tool_params",))))
                await s.commit()
        except IntegrityError:
            existing = await self.get_open_for_task(action.task_id) if action.task_id else None
            if existing is None:
                raise
            raise DuplicateActionError(action.task_id, existing.id) from None

    async def get(self, action_id: str) -> Optional[PendingAction]:
        async with self.session_factory() as s:
            row = await s.get(PendingActionRow, action_id)
            if row is None:
                return None
            return PendingAction.model_validate(_row_dict(row))

    async def get_open_for_task(self, task_id: str) -> Optional[PendingAction]:
        async with self.session_factory() as s:
            stmt = select(PendingActionRow).where(
                PendingActionRow.task_id == task_id,
                PendingActionRow.status == PendingActionStatus.pending.value,
            )
            result = await s.execute(stmt)
            row = result.scalars().first()
            return PendingAction.model_validate(_row_dict(row)) if row is not None else None

    async def resolve(
        self,
        action_id: str,
        *,
        status: PendingActionStatus,
        resolved_by: Optional[str],
        resolved_at: datetime,
        rejection_reason: Optional[str] = None,
    ) -> bool:
        async with self.session_factory() as s:
            stmt = (
                update(PendingActionRow)
                .where(
                    PendingActionRow.id == action_id,
                    PendingActionRow.status == PendingActionStatus.pending.value,
                )
                .values(
                    status=PendingActionStatus(status).value,
                    resolved_by=resolved_by,
                    resolved_at=resolved_at,
                    rejection_reason=rejection_reason,
                )
            )
            result = await s.execute(stmt)
            await s.commit()
            return result.rowcount == 1

    async def list(
        self,
        *,
        user_id: Optional[str] = None,
        status: Optional[PendingActionStatus] = None,
        task_id: Optional[str] = None,
        limit: int = 100,
    ) -> list[PendingAction]:
        async with self.session_factory() as s:
            stmt = select(PendingActionRow)
            if user_id:
                stmt = stmt.where(PendingActionRow.user_id == user_id)
            if status is not None:
                stmt = stmt.where(PendingActionRow.status == PendingActionStatus(status).value)
            if task_id:
                stmt = stmt.where(PendingActionRow.task_id == task_id)
            stmt = stmt.order_by(PendingActionRow.created_at.desc()).limit(limit)
            result = await s.execute(stmt)
            return [PendingAction.model_validate(_row_dict(row)) for row in result.scalars().all()]


@dataclass(frozen=True)
class SqlGraduationRepository(GraduationRepository):
    """SQL implementation of ``GraduationRepository``."""

    session_factory: async_sessionmaker[AsyncSession]

    async def get(self, user_id: str, category: ToolCategory) -> Optional[GraduationRecord]:
        async with self.session_factory() as s:
            stmt = select(GraduationRow).where(
                GraduationRow.user_id == user_id,
                GraduationRow.category == ToolCategory(category).value,
            )
            result = await s.execute(stmt)
            row = result.scalar_one_or_none()
            return GraduationRecord.model_validate(_row_dict(row)) if row is not None else None

    async def create(self, record: GraduationRecord) -> None:
        try:
            async with self.session_factory() as s:
                s.add(GraduationRow(**_row_values(record)))
                await s.commit()
        except IntegrityError:
            raise ConcurrencyConflict(
                f"graduation record already exists for {record.user_id}/{record.category.value}"
            ) from None

    async def save(self, record: GraduationRecord, *, expected_version: int) -> None:
        async with self.session_factory() as s:
            stmt = (
                update(GraduationRow)
                .where(GraduationRow.id == record.id, GraduationRow.version == expected_version)
                .values(**_row_values(record, exclude=("id", "user_id", "category", "created_at")))
            )
            result = await s.execute(stmt)
            await s.commit()
            if result.rowcount != 1:
                raise ConcurrencyConflict(
                    f"graduation record {record.id} changed since version {expected_version}"
                )

    async def list(self, user_id: str) -> list[GraduationRecord]:
        async with self.session_factory() as s:
            stmt = select(GraduationRow).where(GraduationRow.user_id == user_id).order_by(GraduationRow.category)
            result = await s.execute(stmt)
            return [GraduationRecord.model_validate(_row_dict(row)) for row in result.scalars().all()]


_INSTANCE_JSON_FIELDS = ("subject_context", "step_results", "webhook_payload", "fanout_results")


@dataclass(frozen=True)
class SqlWorkflowInstanceRepository(WorkflowInstanceRepository):
    """SQL implementation of ``WorkflowInstanceRepository``."""

    session_factory: async_sessionmaker[AsyncSession]

    async def create(self, instance: WorkflowInstance) -> None:
        async with self.session_factory() as s:
            s.add(WorkflowInstanceRow(**_row_values(instance, json_fields=_INSTANCE_JSON_FIELDS)))
            await s.commit()

    async def get(self, instance_id: str) -> Optional[WorkflowInstance]:
        async with self.session_factory() as s:
            row = await s.get(WorkflowInstanceRow, instance_id)
            if row is None:
                return None
            return WorkflowInstance.model_validate(_row_dict(row))

    async def save(self, instance: WorkflowInstance, *, expected_version: int) -> None:
        values = _row_values(
            instance,
            json_fields=_INSTANCE_JSON_FIELDS,
            exclude=("id", "lease_owner", "lease_expires_at", "started_at"),
        )
        async with self.session_factory() as s:
            stmt = (
                update(WorkflowInstanceRow)
                .where(WorkflowInstanceRow.id == instance.id, WorkflowInstanceRow.version == expected_version)
                .values(**values)
            )
            result = await s.execute(stmt)
            await s.commit()
            if result.rowcount != 1:
                raise ConcurrencyConflict(
                    f"workflow instance {instance.id} changed since version {expected_version}"
                )

    async def claim_lease(self, instance_id: str, *, owner: str, now: datetime, expires_at: datetime) -> bool:
        async with self.session_factory() as s:
            stmt = (
                update(WorkflowInstanceRow)
                .where(
                    WorkflowInstanceRow.id == instance_id,
                    or_(
                        WorkflowInstanceRow.lease_owner.is_(None),
                        WorkflowInstanceRow.lease_owner == owner,
                        WorkflowInstanceRow.lease_expires_at < now,
                    ),
                )
                .values(lease_owner=owner, lease_expires_at=expires_at)
            )
            result = await s.execute(stmt)
            await s.commit()
            return result.rowcount == 1

    async def release_lease(self, instance_id: str, *, owner: str) -> None:
        async with self.session_factory() as s:
            stmt = (
                update(WorkflowInstanceRow)
                .where(WorkflowInstanceRow.id == instance_id, WorkflowInstanceRow.lease_owner == owner)
                .values(lease_owner=None, lease_expires_at=None)
            )
            await s.execute(stmt)
            await s.commit()

    async def list(
        self,
        *,
        user_id: Optional[str] = None,
        statuses: Optional[Iterable[WorkflowStatus]] = None,
        limit: int = 100,
    ) -> list[WorkflowInstance]:
        async with self.session_factory() as s:
            stmt = select(WorkflowInstanceRow)
            if user_id:
                stmt = stmt.where(WorkflowInstanceRow.user_id == user_id)
            if statuses is not None:
                stmt = stmt.where(WorkflowInstanceRow.status.in_([WorkflowStatus(v).value for v in statuses]))
            stmt = stmt.order_by(WorkflowInstanceRow.started_at.desc()).limit(limit)
            result = await s.execute(stmt)
            return [WorkflowInstance.model_validate(_row_dict(row)) for row in result.scalars().all()]


@dataclass(frozen=True)
class SqlEventRepository(EventRepository):
    """SQL implementation of ``EventRepository`` (append-only)."""

    session_factory: async_sessionmaker[AsyncSession]

    async def append(self, event: AgentEvent) -> None:
        async with self.session_factory() as s:
            s.add(EventRow(**_row_values(event, json_fields=("payload",))))
            await s.commit()

    async def list(
        self,
        *,
        task_id: Optional[str] = None,
        workflow_instance_id: Optional[str] = None,
        limit: int = 100,
    ) -> list[AgentEvent]:
        async with self.session_factory() as s:
            stmt = select(EventRow)
            if task_id:
                stmt = stmt.where(EventRow.task_id == task_id)
            if workflow_instance_id:
                stmt = stmt.where(EventRow.workflow_instance_id == workflow_instance_id)
            stmt = stmt.order_by(EventRow.created_at.asc()).limit(limit)
            result = await s.execute(stmt)
            return [AgentEvent.model_validate(_row_dict(row)) for row in result.scalars().all()]


@dataclass(frozen=True)
class SqlToolInvocationRepository(ToolInvocationRepository):
    """SQL implementation of ``ToolInvocationRepository``."""

    session_factory: async_sessionmaker[AsyncSession]

    async def append(self, invocation: ToolInvocation) -> None:
        async with self.session_factory() as s:
            s.add(ToolInvocationRow(**_row_values(invocation, json_fields=("params", "result"))))
            await s.commit()

    async def list(self, *, workflow_instance_id: Optional[str] = None, limit: int = 100) -> list[ToolInvocation]:
        async with self.session_factory() as s:
            stmt = select(ToolInvocationRow)
            if workflow_instance_id:
                stmt = stmt.where(ToolInvocationRow.workflow_instance_id == workflow_instance_id)
            stmt = stmt.order_by(ToolInvocationRow.created_at.asc()).limit(limit)
            result = await s.execute(stmt)
            return [ToolInvocation.model_validate(_row_dict(row)) for row in result.scalars().all()]


@dataclass(frozen=True)
class SqlAutonomyOverrideRepository(AutonomyOverrideRepository):
    """SQL implementation of ``AutonomyOverrideRepository``."""

    session_factory: async_sessionmaker[AsyncSession]

    async def _row(self, s: AsyncSession, user_id: str, category: ToolCategory) -> Optional[AutonomyOverrideRow]:
        stmt = select(AutonomyOverrideRow).where(
            AutonomyOverrideRow.user_id == user_id,
            AutonomyOverrideRow.category == ToolCategory(category).value,
        )
        result = await s.execute(stmt)
        return result.scalar_one_or_none()

    async def get(self, user_id: str, category: ToolCategory) -> Optional[AutonomyLevel]:
        async with self.session_factory() as s:
            row = await self._row(s, user_id, category)
            return AutonomyLevel(row.level) if row is not None else None

    async def set(self, user_id: str, category: ToolCategory, level: AutonomyLevel) -> None:
        async with self.session_factory() as s:
            row = await self._row(s, user_id, category)
            if row is None:
                s.add(
                    AutonomyOverrideRow(
                        id=str(uuid.uuid4()),
                        user_id=user_id,
                        category=ToolCategory(category).value,
                        level=AutonomyLevel(level).value,
                        updated_at=_utc_now(),
                    )
                )
            else:
                row.level = AutonomyLevel(level).value
                row.updated_at = _utc_now()
            await s.commit()

    async def clear(self, user_id: str, category: ToolCategory) -> None:
        async with self.session_factory() as s:
            row = await self._row(s, user_id, category)
            if row is not None:
                await s.delete(row)
                await s.commit()

    async def list(self, user_id: str) -> Dict[ToolCategory, AutonomyLevel]:
        async with self.session_factory() as s:
            stmt = select(AutonomyOverrideRow).where(AutonomyOverrideRow.user_id == user_id)
            result = await s.execute(stmt)
            return {ToolCategory(row.category): AutonomyLevel(row.level) for row in result.scalars().all()}


@dataclass(frozen=True)
class SqlRepoBundle:
    """Convenience bundle of all SQL repositories for dependency injection."""

    tasks: SqlTaskRepository
    actions: SqlPendingActionRepository
    graduation: SqlGraduationRepository
    instances: SqlWorkflowInstanceRepository
    events: SqlEventRepository
    tool_invocations: SqlToolInvocationRepository
    overrides: SqlAutonomyOverrideRepository


def build_sql_repos(*, session_factory: async_sessionmaker[AsyncSession]) -> SqlRepoBundle:
    """Build a ``SqlRepoBundle`` from a session factory."""
    return SqlRepoBundle(
        tasks=SqlTaskRepository(session_factory=session_factory),
        actions=SqlPendingActionRepository(session_factory=session_factory),
        graduation=SqlGraduationRepository(session_factory=session_factory),
        instances=SqlWorkflowInstanceRepository(session_factory=session_factory),
        events=SqlEventRepository(session_factory=session_factory),
        tool_invocations=SqlToolInvocationRepository(session_factory=session_factory),
        overrides=SqlAutonomyOverrideRepository(session_factory=session_factory),
    )
