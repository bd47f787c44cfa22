"""
Agent Service Wiring.

Builds the ``AgentService`` the API endpoints use from the application
settings: SQL repositories on the configured database, the remote tool
service (or an empty in-process registry when none is configured) and the
logging notifier.
"""

from typing import Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from leasewise_ai.agent_core.notifications import LoggingNotifier
from leasewise_ai.agent_core.repos.sql import build_sql_repos
from leasewise_ai.agent_core.service import AgentService, AgentServiceDeps
from leasewise_ai.agent_core.tools import HttpToolInvoker, ToolInvoker, ToolRegistry
from leasewise_ai.core.logging_config import get_logger
from leasewise_ai.server.core.config import Settings, settings

logger = get_logger(__name__)


def build_tool_invoker(config: Settings) -> ToolInvoker:
    tool_service = config.tool_service
    if tool_service.url:
        logger.info(f"Using tool service at {tool_service.url}")
        token = f"Bearer {tool_service.auth_token}" if tool_service.auth_token else None
        return HttpToolInvoker(tool_service.url, auth_token=token, timeout=tool_service.timeout)
    logger.warning("No tool service configured; every tool call will fail until tools are registered")
    return ToolRegistry()


def build_agent_service(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    config: Settings = settings,
    tools: Optional[ToolInvoker] = None,
) -> AgentService:
    """Wire an ``AgentService`` over SQL repositories."""
    repos = build_sql_repos(session_factory=session_factory)
    deps = AgentServiceDeps.from_repos(
        repos,
        tools=tools or build_tool_invoker(config),
        notifier=LoggingNotifier(),
    )
    return AgentService(deps=deps, graduation_config=config.graduation, lease_ttl=config.lease_ttl)


def get_agent_service(request: Request) -> AgentService:
    """FastAPI dependency returning the service attached to the application."""
    return request.app.state.agent_service
