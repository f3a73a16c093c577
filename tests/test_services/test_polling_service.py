"""Tests for the polling loop."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from forumwatch.refresh.config import RefreshConfig
from forumwatch.refresh.orchestrator import RefreshReport
from forumwatch.services.polling_service import PollingService


@pytest.fixture
def mock_orchestrator():
    orchestrator = MagicMock()
    orchestrator.config = RefreshConfig(backoff_base_delay=5.0, backoff_max_delay=300.0)
    orchestrator.refresh_due_sources = AsyncMock(
        return_value=RefreshReport(succeeded=["uniswap"])
    )
    return orchestrator


class TestPollingServiceRunOnce:
    """Tests for a single polling cycle."""

    @pytest.mark.asyncio
    async def test_successful_cycle_waits_out_the_interval(self, mock_orchestrator):
        service = PollingService(mock_orchestrator, poll_interval=60)

        delay = await service.run_once()

        assert 59 < delay <= 60
        assert service.cycles == 1
        mock_orchestrator.refresh_due_sources.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failed_cycle_backs_off(self, mock_orchestrator):
        """Should return a backoff delay instead of raising."""
        mock_orchestrator.refresh_due_sources.side_effect = RuntimeError("store exploded")
        service = PollingService(mock_orchestrator, poll_interval=60)

        delay = await service.run_once()

        assert 0 <= delay <= 7.5
        assert service.cycles == 0
        assert service._backoff.failures == 1

    @pytest.mark.asyncio
    async def test_success_resets_backoff(self, mock_orchestrator):
        mock_orchestrator.refresh_due_sources.side_effect = [
            RuntimeError("boom"),
            RuntimeError("boom"),
            RefreshReport(),
        ]
        service = PollingService(mock_orchestrator, poll_interval=60)

        await service.run_once()
        await service.run_once()
        assert service._backoff.failures == 2

        await service.run_once()
        assert service._backoff.failures == 0


class TestPollingServiceLifecycle:
    """Tests for start/stop."""

    @pytest.mark.asyncio
    async def test_refreshes_on_startup_then_stops(self, mock_orchestrator, settle):
        service = PollingService(mock_orchestrator, poll_interval=60, refresh_on_startup=True)

        task = asyncio.create_task(service.start())
        await settle(lambda: mock_orchestrator.refresh_due_sources.await_count == 1)
        assert service.running is True

        await service.stop()
        await asyncio.wait_for(task, timeout=1)

        assert service.running is False
        assert mock_orchestrator.refresh_due_sources.await_count == 1

    @pytest.mark.asyncio
    async def test_no_startup_refresh_waits_first(self, mock_orchestrator, settle):
        service = PollingService(mock_orchestrator, poll_interval=60, refresh_on_startup=False)

        task = asyncio.create_task(service.start())
        await settle()

        mock_orchestrator.refresh_due_sources.assert_not_awaited()
        await service.stop()
        await asyncio.wait_for(task, timeout=1)

    @pytest.mark.asyncio
    async def test_cancel_stops_loop(self, mock_orchestrator, settle):
        service = PollingService(mock_orchestrator, poll_interval=60)

        task = asyncio.create_task(service.start())
        await settle(lambda: service.running)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert service.running is False

    def test_defaults_from_settings(self, mock_orchestrator, monkeypatch):
        monkeypatch.setenv("POLL_INTERVAL_SECONDS", "120")

        service = PollingService(mock_orchestrator)

        assert service._poll_interval == 120
