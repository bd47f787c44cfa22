"""
Autonomy Override API Endpoints.

This module lets the owner pin a tool category to an autonomy level. An
override takes precedence over graduation and defaults, but never lets a
never-auto-execute tool run without approval.
"""

from fastapi import APIRouter

from leasewise_ai.agent_core.schemas.domain import ToolCategory
from leasewise_ai.server.schemas import OverrideList, OverrideSet
from leasewise_ai.server.services.deps import AgentServiceDep, UserIdDep

router = APIRouter()


@router.get("/overrides", response_model=OverrideList, summary="List Overrides")
async def list_overrides(user_id: UserIdDep, service: AgentServiceDep):
    return OverrideList(overrides=await service.list_overrides(user_id))


@router.put("/overrides/{category}", response_model=OverrideList, summary="Set Override")
async def set_override(category: ToolCategory, body: OverrideSet, user_id: UserIdDep, service: AgentServiceDep):
    await service.set_override(user_id, category, body.level)
    return OverrideList(overrides=await service.list_overrides(user_id))


@router.delete("/overrides/{category}", response_model=OverrideList, summary="Clear Override")
async def clear_override(category: ToolCategory, user_id: UserIdDep, service: AgentServiceDep):
    await service.clear_override(user_id, category)
    return OverrideList(overrides=await service.list_overrides(user_id))
