from __future__ import annotations

"""SQLAlchemy ORM models for agent persistence.

These ORM models define the SQL schema used by the SQL repository
implementation in ``leasewise_ai.agent_core.repos.sql``.

Design
------

The schema is optimized for auditability and crash-safe resumption:

- Tasks carry their whole timeline so the owner-facing view is one row.
- Pending actions keep their resolution; a partial unique index allows at
  most one ``pending`` action per task.
- Graduation records and workflow instances carry a ``version`` column used
  for compare-and-swap writes.
- Workflow instances also carry the driver lease (``lease_owner`` /
  ``lease_expires_at``).
- Events and tool invocations form append-only audit logs.

JSON columns use JSONB on PostgreSQL and plain JSON elsewhere (SQLite in
tests). Table names are prefixed with ``lw_`` to avoid collisions in shared
databases.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


class TaskRow(Base):
    """Row model for ``lw_agent_tasks``.

    ``timeline`` is the append-only list of timeline entries, stored inline.
    """

    __tablename__ = "lw_agent_tasks"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), index=True)

    title: Mapped[str] = mapped_column(String(512))
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(String(32))
    priority: Mapped[str] = mapped_column(String(16))
    status: Mapped[str] = mapped_column(String(32), index=True)
    manual_override: Mapped[bool] = mapped_column(Boolean, default=False)

    timeline: Mapped[List[Dict[str, Any]]] = mapped_column(JSONType, default=list)
    recommendation: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    related_entity_type: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    related_entity_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    workflow_instance_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    scheduled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class PendingActionRow(Base):
    """Row model for ``lw_pending_actions``.

    The partial unique index on ``task_id`` enforces "one open pending action
    per task" in the database as well as in the approval queue.
    """

    __tablename__ = "lw_pending_actions"
    __table_args__ = (
        Index(
            "uq_lw_pending_actions_open_task",
            "task_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), index=True)
    task_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)

    tool_name: Mapped[str] = mapped_column(String(128))
    tool_params: Mapped[Dict[str, Any]] = mapped_column(JSONType, default=dict)
    category: Mapped[str] = mapped_column(String(32))
    autonomy_level: Mapped[str] = mapped_column(String(16))

    title: Mapped[str] = mapped_column(String(512))
    description: Mapped[str] = mapped_column(Text, default="")
    recommendation: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    confidence: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    workflow_instance_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    step_index: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    item_index: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    status: Mapped[str] = mapped_column(String(16), index=True)
    resolved_by: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class GraduationRow(Base):
    """Row model for ``lw_graduation_records``, one per (user, category)."""

    __tablename__ = "lw_graduation_records"
    __table_args__ = (UniqueConstraint("user_id", "category", name="uq_lw_graduation_user_category"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128))
    category: Mapped[str] = mapped_column(String(32))

    current_level: Mapped[str] = mapped_column(String(16))
    consecutive_approvals: Mapped[int] = mapped_column(Integer, default=0)
    graduation_threshold: Mapped[int] = mapped_column(Integer)
    backoff_multiplier: Mapped[float] = mapped_column(Float, default=1.0)

    total_approvals: Mapped[int] = mapped_column(Integer, default=0)
    total_rejections: Mapped[int] = mapped_column(Integer, default=0)
    last_approval_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    last_rejection_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    last_suggestion_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    version: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class WorkflowInstanceRow(Base):
    """Row model for ``lw_workflow_instances``.

    One row is the whole checkpoint of an instance: the step cursor, the
    results so far, the gate it waits on and the per-item fan-out progress.
    """

    __tablename__ = "lw_workflow_instances"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    definition_name: Mapped[str] = mapped_column(String(128))
    user_id: Mapped[str] = mapped_column(String(128), index=True)
    task_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    subject_context: Mapped[Dict[str, Any]] = mapped_column(JSONType, default=dict)
    current_step_index: Mapped[int] = mapped_column(Integer, default=0)
    step_results: Mapped[List[Any]] = mapped_column(JSONType, default=list)
    status: Mapped[str] = mapped_column(String(32), index=True)

    gate: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    gate_entered_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    resumable_until: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    pending_action_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    wake_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    webhook_payload: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONType, nullable=True)

    fanout_results: Mapped[List[Any]] = mapped_column(JSONType, default=list)
    fanout_cursor: Mapped[int] = mapped_column(Integer, default=0)

    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    version: Mapped[int] = mapped_column(Integer, default=0)

    lease_owner: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    lease_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class EventRow(Base):
    """Row model for ``lw_agent_events``.

    Append-only audit trail. ``payload`` captures structured details.
    """

    __tablename__ = "lw_agent_events"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    type: Mapped[str] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)

    user_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    task_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    workflow_instance_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    payload: Mapped[Dict[str, Any]] = mapped_column(JSONType, default=dict)


class ToolInvocationRow(Base):
    """Row model for ``lw_tool_invocations``."""

    __tablename__ = "lw_tool_invocations"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    tool_name: Mapped[str] = mapped_column(String(128))
    params: Mapped[Dict[str, Any]] = mapped_column(JSONType, default=dict)
    ok: Mapped[bool] = mapped_column(Boolean)
    result: Mapped[Optional[Any]] = mapped_column(JSONType, nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    autonomy_level: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    workflow_instance_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    step_index: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)


class AutonomyOverrideRow(Base):
    """Row model for ``lw_autonomy_overrides``, one per (user, category)."""

    __tablename__ = "lw_autonomy_overrides"
    __table_args__ = (UniqueConstraint("user_id", "category", name="uq_lw_autonomy_override_user_category"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128))
    category: Mapped[str] = mapped_column(String(32))
    level: Mapped[str] = mapped_column(String(16))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
