"""
Graduation API Endpoints.

This module shows the owner how close each tool category is to more
autonomy and lets them accept or decline a graduation offer.
"""

from typing import List

from fastapi import APIRouter

from leasewise_ai.agent_core.schemas.domain import GraduationProgress, GraduationRecord, ToolCategory
from leasewise_ai.server.services.deps import AgentServiceDep, UserIdDep

router = APIRouter()


@router.get(
    "",
    response_model=List[GraduationProgress],
    summary="Graduation Progress",
    description="Progress toward graduation for every category the owner has a record for.",
)
async def list_progress(user_id: UserIdDep, service: AgentServiceDep):
    return await service.graduation_progress(user_id)


@router.get("/{category}", response_model=GraduationProgress, summary="Category Progress")
async def category_progress(category: ToolCategory, user_id: UserIdDep, service: AgentServiceDep):
    return await service.category_progress(user_id, category)


@router.post(
    "/{category}/accept",
    response_model=GraduationRecord,
    summary="Accept Graduation",
    responses={409: {"description": "Category is not eligible"}},
)
async def accept_graduation(category: ToolCategory, user_id: UserIdDep, service: AgentServiceDep):
    """Move the category one step toward ``autonomous``."""
    return await service.accept_graduation(user_id, category)


@router.post(
    "/{category}/decline",
    response_model=GraduationRecord,
    summary="Decline Graduation",
    responses={409: {"description": "Category is not eligible"}},
)
async def decline_graduation(category: ToolCategory, user_id: UserIdDep, service: AgentServiceDep):
    """Keep the current level; the approval streak starts over with a longer threshold."""
    return await service.decline_graduation(user_id, category)
