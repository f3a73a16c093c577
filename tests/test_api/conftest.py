"""Shared fixtures for API tests."""

from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from forumwatch.api.app import create_app
from forumwatch.api.dependencies import (
    get_inbound_limiter,
    get_query_service,
    get_rate_limit_config,
)
from forumwatch.ranking.config import RankingConfig
from forumwatch.ratelimit.config import RateLimitConfig
from forumwatch.ratelimit.limiter import WindowRateLimiter
from forumwatch.refresh.worker_pool import RefreshWorkerPool
from forumwatch.services.query_service import QueryService


@pytest.fixture
def mock_pool():
    """Mock RefreshWorkerPool that accepts every job."""
    pool = MagicMock(spec=RefreshWorkerPool)
    pool.submit.return_value = True
    return pool


@pytest.fixture
def query_service(sample_registry, store, orchestrator, mock_pool, clock):
    """Real façade over the shared test store and a FakeFetcher-backed orchestrator."""
    return QueryService(
        sample_registry,
        store,
        orchestrator,
        mock_pool,
        ranking_config=RankingConfig(),
        clock=clock,
    )


@pytest.fixture
def rate_limit_config():
    return RateLimitConfig(inbound_max_requests=30)


@pytest.fixture
def inbound_limiter(clock):
    return WindowRateLimiter(name="inbound", clock=clock.time)


@pytest.fixture
def client(query_service, rate_limit_config, inbound_limiter):
    """FastAPI TestClient with dependency overrides and polling disabled."""
    app = create_app(enable_polling=False)

    app.dependency_overrides[get_query_service] = lambda: query_service
    app.dependency_overrides[get_rate_limit_config] = lambda: rate_limit_config
    app.dependency_overrides[get_inbound_limiter] = lambda: inbound_limiter

    with TestClient(app) as c:
        yield c

    app.dependency_overrides.clear()
