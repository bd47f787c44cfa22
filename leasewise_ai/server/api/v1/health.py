"""
Health and version endpoints.

Served at the root, outside ``/api/v1``, and without the owner header so load
balancers and deploy checks can reach them.
"""

from fastapi import APIRouter, Request

API_VERSION = "0.1.0"

router = APIRouter()


@router.get(
    "/health",
    summary="Health Check",
    description="Report whether the agent service has been wired and how many workflows it can run.",
    response_description="Status object.",
)
async def health_check(request: Request):
    """``starting`` until the lifespan has attached the agent service."""
    service = getattr(request.app.state, "agent_service", None)
    if service is None:
        return {"status": "starting", "workflows": 0}
    return {"status": "ok", "workflows": len(service.list_definitions())}


@router.get(
    "/version",
    summary="Get Version",
    description="API version and the schema version of the ``/api/v1`` routes.",
    response_description="Version object.",
)
async def version():
    return {"version": API_VERSION, "schema_version": "v1"}
