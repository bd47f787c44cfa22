"""
Ad-hoc Tool Calls API Endpoint.

Lets the agent conversation layer call a tool on the owner's behalf. The call
executes immediately when the owner trusts the agent with it, otherwise it
is queued as a pending action.
"""

from fastapi import APIRouter

from leasewise_ai.agent_core.runtime import ToolCallResult
from leasewise_ai.server.schemas import ToolCallRequest
from leasewise_ai.server.services.deps import AgentServiceDep, UserIdDep

router = APIRouter()


@router.post(
    "/{tool_name}",
    response_model=ToolCallResult,
    summary="Call Tool",
    responses={
        409: {"description": "The task already waits on an approval"},
        502: {"description": "The tool failed"},
    },
)
async def call_tool(tool_name: str, body: ToolCallRequest, user_id: UserIdDep, service: AgentServiceDep):
    return await service.call_tool(
        user_id,
        tool_name,
        body.params,
        task_id=body.task_id,
        title=body.title,
        description=body.description,
        recommendation=body.recommendation,
        confidence=body.confidence,
    )
