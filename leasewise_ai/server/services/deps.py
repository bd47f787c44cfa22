"""
Agent Service Dependencies.

Provides the ``AgentService`` and the calling owner's id to API endpoints.

Authentication is handled upstream; the gateway forwards the authenticated
owner as the ``X-User-Id`` header.
"""

from typing import Annotated

from fastapi import Depends, Header

from leasewise_ai.agent_core.service import AgentService
from leasewise_ai.server.services.agent import get_agent_service

AgentServiceDep = Annotated[AgentService, Depends(get_agent_service)]
UserIdDep = Annotated[str, Header(alias="X-User-Id", description="Authenticated owner id")]
