"""
Unit tests for FastAPI application lifespan management.

Tests verify that startup wires the agent service over the database only when
none was injected, and that the optional in-process workflow sweep is started
and stopped with the application.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import FastAPI

from leasewise_ai.agent_core.errors import ConcurrencyConflict

pytestmark = pytest.mark.asyncio


class TestLifespanStartup:
    """Test application startup lifespan events."""

    async def test_injected_service_skips_database(self, monkeypatch):
        from leasewise_ai.server import main

        service = MagicMock()
        app = main.create_app(service)
        monkeypatch.setattr(main.settings, "tick_interval_seconds", 0)

        with patch("leasewise_ai.server.core.database.init_db", new_callable=AsyncMock) as mock_init:
            async with main.lifespan(app):
                assert app.state.agent_service is service

        mock_init.assert_not_called()

    async def test_startup_initializes_database_and_service(self, monkeypatch):
        from leasewise_ai.server import main

        app = FastAPI()
        app.state.agent_service = None
        built = MagicMock()
        monkeypatch.setattr(main.settings, "tick_interval_seconds", 0)

        with (
            patch("leasewise_ai.server.core.database.init_db", new_callable=AsyncMock) as mock_init,
            patch("leasewise_ai.server.services.agent.build_agent_service", return_value=built) as mock_build,
        ):
            async with main.lifespan(app):
                assert app.state.agent_service is built

        mock_init.assert_awaited_once()
        mock_build.assert_called_once()

    async def test_database_failure_is_logged_not_raised(self, monkeypatch):
        from leasewise_ai.server import main

        app = FastAPI()
        app.state.agent_service = None
        monkeypatch.setattr(main.settings, "tick_interval_seconds", 0)

        with (
            patch("leasewise_ai.server.core.database.init_db", AsyncMock(side_effect=OSError("db down"))),
            patch("leasewise_ai.server.services.agent.build_agent_service", return_value=MagicMock()),
            patch.object(main, "logger") as mock_logger,
        ):
            async with main.lifespan(app):
                pass

        assert "Database initialization failed" in mock_logger.error.call_args[0][0]


class TestWorkflowSweep:
    """Test the optional in-process sweep."""

    async def test_ticker_runs_while_app_is_up(self, monkeypatch):
        from leasewise_ai.server import main

        service = MagicMock()
        service.tick = AsyncMock(return_value=[])
        app = main.create_app(service)
        monkeypatch.setattr(main.settings, "tick_interval_seconds", 0.01)

        async with main.lifespan(app):
            await asyncio.sleep(0.1)

        calls = service.tick.await_count
        assert calls >= 1
        await asyncio.sleep(0.05)
        # Cancelled on shutdown.
        assert service.tick.await_count == calls

    async def test_sweep_survives_errors(self):
        from leasewise_ai.server import main

        outcomes = iter([ConcurrencyConflict("busy"), [MagicMock()]])

        async def tick():
            outcome = next(outcomes, [])
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        service = MagicMock()
        service.tick = AsyncMock(side_effect=tick)

        with patch.object(main, "logger") as mock_logger:
            ticker = asyncio.create_task(main._tick_forever(service, 0.01))
            await asyncio.sleep(0.1)
            ticker.cancel()
            with pytest.raises(asyncio.CancelledError):
                await ticker

        assert service.tick.await_count >= 3
        assert "Workflow sweep failed" in mock_logger.warning.call_args_list[0][0][0]
        assert "resumed 1 instance" in mock_logger.info.call_args_list[0][0][0]
