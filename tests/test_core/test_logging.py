"""
Tests for structured logging and correlation IDs.

Test Strategy:
1. job_correlation binds job-<run_id> and restores the previous value
2. The JSON formatter carries the correlation ID and extra fields
3. The middleware echoes or generates X-Correlation-ID

Each test follows the pattern:
- Given: A correlation context or a log record
- When: It is formatted or a request is made
- Then: The correlation ID appears where expected
"""
import json
import logging

import pytest
from httpx import AsyncClient

from app.core.logging import JSONFormatter, get_correlation_id, job_correlation


class TestJobCorrelation:
    """Test suite for job_correlation."""

    def test_binds_and_restores(self):
        """Should bind the job id only inside the block."""
        before = get_correlation_id()

        with job_correlation("abc") as correlation_id:
            assert correlation_id == "job-abc"
            assert get_correlation_id() == "job-abc"

        assert get_correlation_id() == before


class TestJSONFormatter:
    """Test suite for JSONFormatter."""

    def test_includes_correlation_and_extra(self):
        """Should emit message, correlation ID and extra fields as JSON."""
        record = logging.LogRecord("app.test", logging.INFO, __file__, 1, "fetched %d rows", (3,), None)
        record.sport = "nba"

        with job_correlation("run-1"):
            payload = json.loads(JSONFormatter().format(record))

        assert payload["message"] == "fetched 3 rows"
        assert payload["level"] == "INFO"
        assert payload["correlation_id"] == "job-run-1"
        assert payload["extra"] == {"sport": "nba"}


class TestCorrelationMiddleware:
    """Test suite for CorrelationIdMiddleware."""

    @pytest.mark.asyncio
    async def test_echoes_header(self, async_client: AsyncClient):
        """Should return the caller's correlation ID."""
        response = await async_client.get("/", headers={"X-Correlation-ID": "req-42"})

        assert response.headers["X-Correlation-ID"] == "req-42"

    @pytest.mark.asyncio
    async def test_generates_header(self, async_client: AsyncClient):
        """Should generate an ID when none is sent."""
        response = await async_client.get("/")

        assert response.headers["X-Correlation-ID"]
