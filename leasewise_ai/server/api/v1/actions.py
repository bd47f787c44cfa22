"""
Pending Actions API Endpoints.

This module provides the owner's approval inbox: list pending actions and
approve or reject them. Resolution is idempotent; a repeated tap returns the
stored decision without counting twice toward graduation.
"""

from typing import List, Optional

from fastapi import APIRouter, Query

from leasewise_ai.agent_core.schemas.domain import PendingAction, PendingActionStatus
from leasewise_ai.server.schemas import RejectRequest
from leasewise_ai.server.services.deps import AgentServiceDep, UserIdDep

router = APIRouter()


@router.get(
    "",
    response_model=List[PendingAction],
    summary="List Pending Actions",
    description="List the owner's actions; pending ones by default.",
)
async def list_actions(
    user_id: UserIdDep,
    service: AgentServiceDep,
    status: Optional[PendingActionStatus] = Query(default=PendingActionStatus.pending),
    task_id: Optional[str] = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
):
    return await service.list_actions(user_id, status=status, task_id=task_id, limit=limit)


@router.post(
    "/{action_id}/approve",
    response_model=PendingAction,
    summary="Approve Action",
    description="Approve a pending action; the task or workflow that raised it continues.",
    responses={
        404: {"description": "Action not found"},
        410: {"description": "The workflow waited past its resume window"},
    },
)
async def approve_action(action_id: str, user_id: UserIdDep, service: AgentServiceDep):
    return await service.approve_action(action_id, user_id=user_id)


@router.post(
    "/{action_id}/reject",
    response_model=PendingAction,
    summary="Reject Action",
    description="Reject a pending action; the workflow that raised it skips, compensates or stops.",
    responses={404: {"description": "Action not found"}},
)
async def reject_action(action_id: str, user_id: UserIdDep, service: AgentServiceDep, body: Optional[RejectRequest] = None):
    return await service.reject_action(action_id, user_id=user_id, reason=body.reason if body else None)
