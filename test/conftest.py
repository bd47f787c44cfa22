from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import httpx
import pytest

from leasewise_ai.agent_core.errors import (
    ConcurrencyConflict,
    DuplicateActionError,
    NotFoundError,
    ToolExecutionError,
)
from leasewise_ai.agent_core.notifications import NotificationKind
from leasewise_ai.agent_core.schemas.domain import (
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
from leasewise_ai.agent_core.service import AgentService, AgentServiceDeps

START = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def _global_offline_http_guard(monkeypatch: pytest.MonkeyPatch):
    allowed_prefixes: Iterable[str] = (
        "http://mock",
        "https://mock",
        "http://localhost",
        "http://127.0.0.1",
        "http://test",
        "/",  # Allow relative paths (used by ASGI transport)
    )

    orig_async = httpx._client.AsyncClient.request

    def _is_allowed(url_str: str) -> bool:
        return any(url_str.startswith(p) for p in allowed_prefixes)

    async def offline_async(self, method, url, *args, **kwargs):
        url_str = str(url)
        if _is_allowed(url_str):
            return await orig_async(self, method, url, *args, **kwargs)
        raise RuntimeError(f"External HTTP blocked by global offline guard (async): {url_str}")

    monkeypatch.setattr(httpx._client.AsyncClient, "request", offline_async, raising=True)


# ---------------------------------------------------------------------------
# Clock, tools, notifier
# ---------------------------------------------------------------------------


class FakeClock:
    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: Optional[timedelta] = None, **kwargs: float) -> datetime:
        self.now = self.now + (delta if delta is not None else timedelta(**kwargs))
        return self.now


class FakeTools:
    """Tool invoker recording every call.

    Unconfigured tools succeed with ``{"tool": name}``. A handler may be a
    value, a callable of the params, or an exception instance to raise.
    """

    def __init__(self) -> None:
        self.calls: List[Tuple[str, Dict[str, Any]]] = []
        self._handlers: Dict[str, Any] = {}

    def on(self, tool_name: str, handler: Any) -> None:
        self._handlers[tool_name] = handler

    def fail(self, tool_name: str, error: str = "upstream exploded") -> None:
        self._handlers[tool_name] = ToolExecutionError(tool_name, error)

    def count(self, tool_name: str) -> int:
        return sum(1 for name, _ in self.calls if name == tool_name)

    def params_of(self, tool_name: str) -> List[Dict[str, Any]]:
        return [params for name, params in self.calls if name == tool_name]

    async def invoke(self, tool_name: str, params: Dict[str, Any]) -> Any:
        self.calls.append((tool_name, dict(params)))
        handler = self._handlers.get(tool_name)
        if handler is None:
            return {"tool": tool_name}
        if isinstance(handler, BaseException):
            raise handler
        if callable(handler):
            return handler(dict(params))
        return handler


class RecordingNotifier:
    def __init__(self) -> None:
        self.sent: List[Tuple[str, NotificationKind, str, Dict[str, Any]]] = []

    async def notify(
        self,
        user_id: str,
        kind: NotificationKind,
        *,
        title: str,
        body: str = "",
        data: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.sent.append((user_id, kind, title, dict(data or {})))

    def kinds(self) -> List[NotificationKind]:
        return [kind for _, kind, _, _ in self.sent]


# ---------------------------------------------------------------------------
# In-memory repositories (copy on read and write, like a database)
# ---------------------------------------------------------------------------


class InMemoryTaskRepo:
    def __init__(self) -> None:
        self.rows: Dict[str, AgentTask] = {}

    async def create(self, task: AgentTask) -> None:
        self.rows[task.id] = task.model_copy(deep=True)

    async def get(self, task_id: str) -> Optional[AgentTask]:
        row = self.rows.get(task_id)
        return row.model_copy(deep=True) if row is not None else None

    async def save(self, task: AgentTask) -> None:
        if task.id not in self.rows:
            raise NotFoundError("task", task.id)
        self.rows[task.id] = task.model_copy(deep=True)

    async def list(
        self,
        *,
        user_id: Optional[str] = None,
        statuses: Optional[Iterable[TaskStatus]] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[AgentTask]:
        wanted = set(statuses) if statuses is not None else None
        rows = [
            t
            for t in self.rows.values()
            if (user_id is None or t.user_id == user_id) and (wanted is None or t.status in wanted)
        ]
        rows.sort(key=lambda t: t.created_at, reverse=True)
        return [t.model_copy(deep=True) for t in rows[offset : offset + limit]]


class InMemoryActionRepo:
    def __init__(self) -> None:
        self.rows: Dict[str, PendingAction] = {}

    async def create(self, action: PendingAction) -> None:
        if action.task_id is not None:
            existing = await self.get_open_for_task(action.task_id)
            if existing is not None:
                raise DuplicateActionError(action.task_id, existing.id)
        self.rows[action.id] = action.model_copy(deep=True)

    async def get(self, action_id: str) -> Optional[PendingAction]:
        row = self.rows.get(action_id)
        return row.model_copy(deep=True) if row is not None else None

    async def get_open_for_task(self, task_id: str) -> Optional[PendingAction]:
        for row in self.rows.values():
            if row.task_id == task_id and row.status == PendingActionStatus.pending:
                return row.model_copy(deep=True)
        return None

    async def resolve(
        self,
        action_id: str,
        *,
        status: PendingActionStatus,
        resolved_by: Optional[str],
        resolved_at: datetime,
        rejection_reason: Optional[str] = None,
    ) -> bool:
        row = self.rows.get(action_id)
        if row is None or row.status != PendingActionStatus.pending:
            return False
        row.status = status
        row.resolved_by = resolved_by
        row.resolved_at = resolved_at
        row.rejection_reason = rejection_reason
        return True

    async def list(
        self,
        *,
        user_id: Optional[str] = None,
        status: Optional[PendingActionStatus] = None,
        task_id: Optional[str] = None,
        limit: int = 100,
    ) -> List[PendingAction]:
        rows = [
            a
            for a in self.rows.values()
            if (user_id is None or a.user_id == user_id)
            and (status is None or a.status == status)
            and (task_id is None or a.task_id == task_id)
        ]
        rows.sort(key=lambda a: a.created_at, reverse=True)
        return [a.model_copy(deep=True) for a in rows[:limit]]


class InMemoryGraduationRepo:
    def __init__(self) -> None:
        self.rows: Dict[Tuple[str, ToolCategory], GraduationRecord] = {}

    async def get(self, user_id: str, category: ToolCategory) -> Optional[GraduationRecord]:
        row = self.rows.get((user_id, category))
        return row.model_copy(deep=True) if row is not None else None

    async def create(self, record: GraduationRecord) -> None:
        key = (record.user_id, record.category)
        if key in self.rows:
            raise ConcurrencyConflict(f"graduation record exists: {key}")
        self.rows[key] = record.model_copy(deep=True)

    async def save(self, record: GraduationRecord, *, expected_version: int) -> None:
        key = (record.user_id, record.category)
        current = self.rows.get(key)
        if current is None or current.version != expected_version:
            raise ConcurrencyConflict(f"graduation record {key} changed")
        self.rows[key] = record.model_copy(deep=True)

    async def list(self, user_id: str) -> List[GraduationRecord]:
        return [r.model_copy(deep=True) for (uid, _), r in self.rows.items() if uid == user_id]


class InMemoryInstanceRepo:
    def __init__(self) -> None:
        self.rows: Dict[str, WorkflowInstance] = {}
        self.saves = 0
        self._crash_on_save: Optional[int] = None

    def crash_on_save(self, nth: int) -> None:
        """Raise on the ``nth`` checkpoint from now (1-based), simulating a process crash."""
        self._crash_on_save = self.saves + nth

    async def create(self, instance: WorkflowInstance) -> None:
        self.rows[instance.id] = instance.model_copy(deep=True)

    async def get(self, instance_id: str) -> Optional[WorkflowInstance]:
        row = self.rows.get(instance_id)
        return row.model_copy(deep=True) if row is not None else None

    async def save(self, instance: WorkflowInstance, *, expected_version: int) -> None:
        self.saves += 1
        if self._crash_on_save is not None and self.saves == self._crash_on_save:
            self._crash_on_save = None
            raise RuntimeError("simulated crash before checkpoint")
        current = self.rows.get(instance.id)
        if current is None or current.version != expected_version:
            raise ConcurrencyConflict(f"workflow instance {instance.id} changed")
        stored = instance.model_copy(deep=True)
        stored.lease_owner = current.lease_owner
        stored.lease_expires_at = current.lease_expires_at
        self.rows[instance.id] = stored

    async def claim_lease(self, instance_id: str, *, owner: str, now: datetime, expires_at: datetime) -> bool:
        row = self.rows.get(instance_id)
        if row is None:
            return False
        if row.lease_owner is None or row.lease_owner == owner or (row.lease_expires_at and row.lease_expires_at < now):
            row.lease_owner = owner
            row.lease_expires_at = expires_at
            return True
        return False

    async def release_lease(self, instance_id: str, *, owner: str) -> None:
        row = self.rows.get(instance_id)
        if row is not None and row.lease_owner == owner:
            row.lease_owner = None
            row.lease_expires_at = None

    async def list(
        self,
        *,
        user_id: Optional[str] = None,
        statuses: Optional[Iterable[WorkflowStatus]] = None,
        limit: int = 100,
    ) -> List[WorkflowInstance]:
        wanted = set(statuses) if statuses is not None else None
        rows = [
            i
            for i in self.rows.values()
            if (user_id is None or i.user_id == user_id) and (wanted is None or i.status in wanted)
        ]
        rows.sort(key=lambda i: i.started_at, reverse=True)
        return [i.model_copy(deep=True) for i in rows[:limit]]


class InMemoryEventRepo:
    def __init__(self) -> None:
        self.events: List[AgentEvent] = []

    async def append(self, event: AgentEvent) -> None:
        self.events.append(event.model_copy(deep=True))

    async def list(
        self,
        *,
        task_id: Optional[str] = None,
        workflow_instance_id: Optional[str] = None,
        limit: int = 100,
    ) -> List[AgentEvent]:
        rows = [
            e
            for e in self.events
            if (task_id is None or e.task_id == task_id)
            and (workflow_instance_id is None or e.workflow_instance_id == workflow_instance_id)
        ]
        return rows[:limit]

    def types(self, workflow_instance_id: Optional[str] = None) -> List[str]:
        return [
            e.type.value
            for e in self.events
            if workflow_instance_id is None or e.workflow_instance_id == workflow_instance_id
        ]


class InMemoryToolInvocationRepo:
    def __init__(self) -> None:
        self.invocations: List[ToolInvocation] = []

    async def append(self, invocation: ToolInvocation) -> None:
        self.invocations.append(invocation.model_copy(deep=True))

    async def list(self, *, workflow_instance_id: Optional[str] = None, limit: int = 100) -> List[ToolInvocation]:
        rows = [
            i for i in self.invocations if workflow_instance_id is None or i.workflow_instance_id == workflow_instance_id
        ]
        return rows[:limit]


class InMemoryOverrideRepo:
    def __init__(self) -> None:
        self.rows: Dict[Tuple[str, ToolCategory], AutonomyLevel] = {}

    async def get(self, user_id: str, category: ToolCategory) -> Optional[AutonomyLevel]:
        return self.rows.get((user_id, category))

    async def set(self, user_id: str, category: ToolCategory, level: AutonomyLevel) -> None:
        self.rows[(user_id, category)] = level

    async def clear(self, user_id: str, category: ToolCategory) -> None:
        self.rows.pop((user_id, category), None)

    async def list(self, user_id: str) -> Dict[ToolCategory, AutonomyLevel]:
        return {category: level for (uid, category), level in self.rows.items() if uid == user_id}


class InMemoryRepos:
    def __init__(self) -> None:
        self.tasks = InMemoryTaskRepo()
        self.actions = InMemoryActionRepo()
        self.graduation = InMemoryGraduationRepo()
        self.instances = InMemoryInstanceRepo()
        self.events = InMemoryEventRepo()
        self.tool_invocations = InMemoryToolInvocationRepo()
        self.overrides = InMemoryOverrideRepo()


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def repos() -> InMemoryRepos:
    return InMemoryRepos()


@pytest.fixture
def tools() -> FakeTools:
    return FakeTools()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def make_service(repos: InMemoryRepos, tools: FakeTools, notifier: RecordingNotifier, clock: FakeClock):
    """Build an ``AgentService`` over the shared fakes; kwargs go to ``AgentService``."""

    def _make(**kwargs: Any) -> AgentService:
        deps = AgentServiceDeps.from_repos(repos, tools=tools, notifier=notifier, clock=clock)
        return AgentService(deps=deps, **kwargs)

    return _make


@pytest.fixture
def service(make_service: Callable[..., AgentService]) -> AgentService:
    return make_service()
