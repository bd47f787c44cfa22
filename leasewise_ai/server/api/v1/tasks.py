"""
Agent Tasks API Endpoints.

This module lets the owner follow and steer the agent's work: list and read
tasks (with their timelines), take manual control of a task, hand it back to
the agent, or cancel it.
"""

from typing import List, Optional

from fastapi import APIRouter, Query

from leasewise_ai.agent_core.schemas.domain import AgentTask, TaskStatus
from leasewise_ai.server.schemas import CancelTaskRequest, TakeControlRequest
from leasewise_ai.server.services.deps import AgentServiceDep, UserIdDep

router = APIRouter()


@router.get(
    "",
    response_model=List[AgentTask],
    summary="List Tasks",
    description="List the owner's Agent Tasks, optionally filtered by status.",
)
async def list_tasks(
    user_id: UserIdDep,
    service: AgentServiceDep,
    status: Optional[List[TaskStatus]] = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
):
    return await service.list_tasks(user_id, statuses=status, limit=limit, offset=offset)


@router.get(
    "/{task_id}",
    response_model=AgentTask,
    summary="Get Task",
    responses={404: {"description": "Task not found"}},
)
async def get_task(task_id: str, user_id: UserIdDep, service: AgentServiceDep):
    return await service.get_task(task_id, user_id=user_id)


@router.post(
    "/{task_id}/take-control",
    response_model=AgentTask,
    summary="Take Control",
    description="Pause the task and stop all autonomous progress until it is resumed.",
    responses={404: {"description": "Task not found"}, 409: {"description": "Task already finished"}},
)
async def take_control(task_id: str, user_id: UserIdDep, service: AgentServiceDep, body: Optional[TakeControlRequest] = None):
    """
    Take manual control.

    The workflow behind the task (if any) stops before its next step and does
    not advance until the owner resumes the task.
    """
    return await service.take_control(task_id, user_id=user_id, reason=body.reason if body else None)


@router.post(
    "/{task_id}/resume",
    response_model=AgentTask,
    summary="Resume Task",
    description="Hand the task back to the agent and continue its workflow.",
    responses={
        404: {"description": "Task not found"},
        409: {"description": "Task already finished"},
        410: {"description": "The workflow waited past its resume window"},
    },
)
async def resume_task(task_id: str, user_id: UserIdDep, service: AgentServiceDep):
    return await service.resume_task(task_id, user_id=user_id)


@router.post(
    "/{task_id}/cancel",
    response_model=AgentTask,
    summary="Cancel Task",
    responses={404: {"description": "Task not found"}, 409: {"description": "Task already finished"}},
)
async def cancel_task(task_id: str, user_id: UserIdDep, service: AgentServiceDep, body: Optional[CancelTaskRequest] = None):
    return await service.cancel_task(task_id, user_id=user_id, reason=body.reason if body else None)
