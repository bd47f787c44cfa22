from typing import AsyncGenerator, Callable

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from leasewise_ai.agent_core.service import AgentService

OWNER = "owner-1"


@pytest.fixture
def client_for() -> Callable[..., AsyncClient]:
    """Build an HTTP client over a pre-built service; the lifespan (database wiring) is not run."""
    from leasewise_ai.server.main import create_app

    def _client(service: AgentService, *, user_id: str = OWNER) -> AsyncClient:
        app = create_app(service)
        return AsyncClient(
            transport=ASGITransport(app=app),
            base_url="http://localhost",
            headers={"X-User-Id": user_id},
        )

    return _client


@pytest_asyncio.fixture(name="client")
async def client_fixture(service: AgentService, client_for) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP client over the in-memory agent service."""
    async with client_for(service) as client:
        yield client
