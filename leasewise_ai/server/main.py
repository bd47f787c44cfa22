"""
Main Application Entry Point.

This module initializes the FastAPI application, configures middleware (CORS),
registers exception handlers and includes all API routers. It serves as the
root of the web server.
"""

import asyncio
from contextlib import asynccontextmanager, suppress
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from leasewise_ai.agent_core.errors import LeasewiseError
from leasewise_ai.agent_core.service import AgentService
from leasewise_ai.core.logging_config import get_logger, setup_logging

from .api.v1 import actions, autonomy, graduation, health, tasks, tools, workflows
from .core.config import settings
from .exception_handlers import setup_exception_handlers

API_V1_STR = "/api/v1"
PROJECT_NAME = "Leasewise-AI"

# Initialize logging
setup_logging()
logger = get_logger(__name__)


async def _tick_forever(service: AgentService, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            driven = await service.tick()
            if driven:
                logger.info(f"Workflow sweep resumed {len(driven)} instance(s)")
        except LeasewiseError as e:
            logger.warning(f"Workflow sweep failed: {e}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application lifespan events.

    Handles startup and shutdown events for the FastAPI application: database
    initialization, agent service wiring and the optional in-process sweep.
    """
    logger.info("Starting up Leasewise-AI Server...")
    if getattr(app.state, "agent_service", None) is None:
        from .core.database import async_session_maker, init_db
        from .services.agent import build_agent_service

        try:
            await init_db()
            logger.info("Database initialized successfully")
        except Exception as e:
            logger.error(f"Database initialization failed: {e}", exc_info=True)
        app.state.agent_service = build_agent_service(async_session_maker)

    ticker: Optional[asyncio.Task] = None
    if settings.tick_interval_seconds > 0:
        ticker = asyncio.create_task(_tick_forever(app.state.agent_service, settings.tick_interval_seconds))

    yield

    if ticker is not None:
        ticker.cancel()
        with suppress(asyncio.CancelledError):
            await ticker
    logger.info("Shutting down Leasewise-AI Server...")


def create_app(service: Optional[AgentService] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        service: Pre-built agent service (tests, embedding). When omitted the
            lifespan wires one over the configured database.
    """
    app = FastAPI(
        title=PROJECT_NAME,
        description="""
    Leasewise-AI Server API

    This API exposes the autonomous-agent core of the Leasewise property management product.
    It supports reviewing and approving agent actions, steering agent tasks, managing
    autonomy, and running long-lived business workflows.
    """,
        version=health.API_VERSION,
        openapi_url=f"{API_V1_STR}/openapi.json",
        docs_url=f"{API_V1_STR}/docs",
        redoc_url=f"{API_V1_STR}/redoc",
        lifespan=lifespan,
    )
    app.state.agent_service = service

    # Set all CORS enabled origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    setup_exception_handlers(app)

    app.include_router(health.router, tags=["health"])
    app.include_router(tasks.router, prefix=f"{API_V1_STR}/tasks", tags=["tasks"])
    app.include_router(actions.router, prefix=f"{API_V1_STR}/actions", tags=["actions"])
    app.include_router(graduation.router, prefix=f"{API_V1_STR}/graduation", tags=["graduation"])
    app.include_router(autonomy.router, prefix=f"{API_V1_STR}/autonomy", tags=["autonomy"])
    app.include_router(workflows.router, prefix=f"{API_V1_STR}/workflows", tags=["workflows"])
    app.include_router(tools.router, prefix=f"{API_V1_STR}/tools", tags=["tools"])
    return app


app = create_app()


def main() -> None:
    import uvicorn

    uvicorn.run("leasewise_ai.server.main:app", host=settings.server_host, port=settings.server_port)


if __name__ == "__main__":
    main()
