from __future__ import annotations

import asyncio
from typing import List

import pytest

from leasewise_ai.agent_core.approvals.queue import ApprovalQueue, default_title
from leasewise_ai.agent_core.errors import DuplicateActionError, InvalidTransitionError, NotFoundError
from leasewise_ai.agent_core.graduation.tracker import GraduationTracker
from leasewise_ai.agent_core.notifications import NotificationKind
from leasewise_ai.agent_core.policy.autonomy import AutonomyPolicy
from leasewise_ai.agent_core.schemas.domain import (
    PendingAction,
    PendingActionStatus,
    TaskStatus,
    ToolCategory,
)
from leasewise_ai.agent_core.tasks.service import TaskService


@pytest.fixture
def task_service(repos, clock) -> TaskService:
    return TaskService(repo=repos.tasks, events=repos.events, clock=clock)


@pytest.fixture
def queue(repos, clock, notifier, task_service) -> ApprovalQueue:
    tracker = GraduationTracker(repo=repos.graduation, policy=AutonomyPolicy(), clock=clock)
    return ApprovalQueue(
        repo=repos.actions,
        tasks=task_service,
        tracker=tracker,
        events=repos.events,
        notifier=notifier,
        clock=clock,
    )


async def _raise(queue: ApprovalQueue, task_id: str | None = None, **kwargs) -> PendingAction:
    return await queue.raise_action(
        user_id="u1",
        tool_name="send_message",
        tool_params={"to": "tenant-1", "body": "Hi"},
        category=ToolCategory.action,
        task_id=task_id,
        **kwargs,
    )


def test_default_title_truncates_params() -> None:
    title = default_title("send_message", {"body": "x" * 500})
    assert title.startswith("send_message: ")
    assert len(title) == len("send_message: ") + 100


@pytest.mark.asyncio
async def test_raise_moves_task_to_pending_input_and_notifies(queue, task_service, notifier) -> None:
    task = await task_service.create(user_id="u1", title="Say hi")
    action = await _raise(queue, task.id)

    assert action.status == PendingActionStatus.pending
    assert action.title.startswith("send_message: ")
    assert (await task_service.get(task.id)).status == TaskStatus.pending_input
    assert notifier.kinds() == [NotificationKind.action_needs_approval]


@pytest.mark.asyncio
async def test_one_open_action_per_task(queue, task_service) -> None:
    task = await task_service.create(user_id="u1", title="Say hi")
    first = await _raise(queue, task.id)
    with pytest.raises(DuplicateActionError) as ei:
        await _raise(queue, task.id)
    assert ei.value.existing_action_id == first.id


@pytest.mark.asyncio
async def test_concurrent_raises_create_exactly_one(queue, task_service, repos) -> None:
    task = await task_service.create(user_id="u1", title="Say hi")
    results = await asyncio.gather(*(_raise(queue, task.id) for _ in range(5)), return_exceptions=True)
    created = [r for r in results if isinstance(r, PendingAction)]
    assert len(created) == 1
    assert sum(isinstance(r, DuplicateActionError) for r in results) == 4
    assert len(repos.actions.rows) == 1


@pytest.mark.asyncio
async def test_approve_is_idempotent(queue, task_service, repos) -> None:
    task = await task_service.create(user_id="u1", title="Say hi")
    seen: List[PendingAction] = []

    async def listener(action: PendingAction) -> None:
        seen.append(action)

    queue.add_listener(listener)
    action = await _raise(queue, task.id)

    first = await queue.approve(action.id, resolver="u1")
    second = await queue.approve(action.id, resolver="u1")
    late_reject = await queue.reject(action.id, resolver="u1", reason="changed my mind")

    assert first.status == second.status == late_reject.status == PendingActionStatus.approved
    assert len(seen) == 1
    record = await repos.graduation.get("u1", ToolCategory.action)
    assert record.consecutive_approvals == 1
    assert (await task_service.get(task.id)).status == TaskStatus.in_progress


@pytest.mark.asyncio
async def test_reject_ad_hoc_cancels_task(queue, task_service, repos, notifier) -> None:
    task = await task_service.create(user_id="u1", title="Say hi")
    action = await _raise(queue, task.id)
    rejected = await queue.reject(action.id, resolver="u1", reason="Too pushy")

    assert rejected.rejection_reason == "Too pushy"
    stored = await task_service.get(task.id)
    assert stored.status == TaskStatus.cancelled
    assert stored.timeline[-1].reasoning == "Too pushy"
    assert NotificationKind.task_cancelled in notifier.kinds()
    record = await repos.graduation.get("u1", ToolCategory.action)
    assert record.total_rejections == 1


@pytest.mark.asyncio
async def test_reject_workflow_action_leaves_task_to_the_engine(queue, task_service) -> None:
    task = await task_service.create(user_id="u1", title="Workflow")
    action = await _raise(queue, task.id, workflow_instance_id="wf-1", step_index=3)
    await queue.reject(action.id, resolver="u1")
    stored = await task_service.get(task.id)
    assert stored.status == TaskStatus.pending_input
    assert stored.timeline[-1].action == "action_rejected"


@pytest.mark.asyncio
async def test_new_action_allowed_after_resolution(queue, task_service) -> None:
    task = await task_service.create(user_id="u1", title="Say hi")
    action = await _raise(queue, task.id)
    await queue.approve(action.id)
    again = await _raise(queue, task.id)
    assert again.id != action.id


@pytest.mark.asyncio
async def test_listener_errors_propagate(queue) -> None:
    async def boom(action: PendingAction) -> None:
        raise RuntimeError("listener failed")

    queue.add_listener(boom)
    action = await _raise(queue)
    with pytest.raises(RuntimeError):
        await queue.approve(action.id)


@pytest.mark.asyncio
async def test_unknown_action(queue) -> None:
    with pytest.raises(NotFoundError):
        await queue.approve("missing")


@pytest.mark.asyncio
async def test_list_filters(queue, task_service) -> None:
    a = await _raise(queue)
    b = await _raise(queue)
    await queue.approve(a.id)
    pending = await queue.list(user_id="u1")
    assert [x.id for x in pending] == [b.id]
    approved = await queue.list(user_id="u1", status=PendingActionStatus.approved)
    assert [x.id for x in approved] == [a.id]
    assert await queue.list(user_id="someone-else") == []


@pytest.mark.asyncio
async def test_raise_on_task_under_manual_control_stores_nothing(queue, task_service, repos) -> None:
    task = await task_service.create(user_id="u1", title="Say hi")
    await task_service.take_control(task.id)

    with pytest.raises(InvalidTransitionError):
        await _raise(queue, task.id)
    assert repos.actions.rows == {}

    await task_service.release_control(task.id)
    action = await _raise(queue, task.id)
    assert (await queue.get(action.id)).is_open


@pytest.mark.asyncio
async def test_raise_on_finished_or_scheduled_task_is_refused(queue, task_service, repos, clock) -> None:
    scheduled = await task_service.create(user_id="u1", title="Later", scheduled_at=clock())
    done = await task_service.create(user_id="u1", title="Done")
    await task_service.transition(done.id, TaskStatus.completed, action="done")

    for task in (scheduled, done):
        with pytest.raises(InvalidTransitionError):
            await _raise(queue, task.id)
    assert repos.actions.rows == {}


@pytest.mark.asyncio
async def test_withdraw_closes_action_without_counting_it(queue, task_service, repos) -> None:
    seen: List[PendingAction] = []

    async def listener(action: PendingAction) -> None:
        seen.append(action)

    queue.add_listener(listener)
    task = await task_service.create(user_id="u1", title="Say hi")
    action = await _raise(queue, task.id)

    withdrawn = await queue.withdraw(task.id, resolver="u1", reason="task cancelled")
    assert withdrawn.id == action.id
    assert withdrawn.status == PendingActionStatus.rejected
    assert await queue.list(user_id="u1") == []
    assert await queue.withdraw(task.id) is None

    # A late approval of the withdrawn action changes nothing.
    late = await queue.approve(action.id, resolver="u1")
    assert late.status == PendingActionStatus.rejected
    assert seen == []
    assert await repos.graduation.get("u1", ToolCategory.action) is None


@pytest.mark.asyncio
async def test_find_returns_none_for_missing_action(queue) -> None:
    assert await queue.find("missing") is None
