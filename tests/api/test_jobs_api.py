"""
HTTP tests for the job trigger and run ledger endpoints.

These tests verify that the job endpoints:
- Validate request bodies and sports before starting a run
- Record every trigger in the job ledger
- Report missing credentials as failed runs
- Dispatch async backfills and expose their outcome through /jobs/runs

Uses httpx.AsyncClient with ASGITransport against the in-memory database.
"""
import pytest
from httpx import AsyncClient

from app.core.config import settings


# =============================================================================
# ROOT & HEALTH ENDPOINTS
# =============================================================================

class TestRootAndHealthEndpoints:
    """Test root and health check endpoints."""

    @pytest.mark.asyncio
    async def test_root_endpoint(self, async_client: AsyncClient):
        """Should describe the API and its job endpoints."""
        response = await async_client.get("/")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "running"
        assert data["endpoints"]["jobs"]["backfill"] == "/api/v1/jobs/backfill"

    @pytest.mark.asyncio
    async def test_health_endpoint(self, async_client: AsyncClient):
        """Should report a connected database."""
        response = await async_client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["components"]["database"]["status"] == "connected"


# =============================================================================
# VALIDATION
# =============================================================================

class TestRequestValidation:
    """Test request validation on trigger endpoints."""

    @pytest.mark.asyncio
    async def test_unknown_sport_rejected(self, async_client: AsyncClient):
        """Should return 400 for a sport without lookup tables."""
        response = await async_client.post("/api/v1/jobs/compute-percentiles", json={"sports": ["curling"]})

        assert response.status_code == 400
        assert "curling" in response.json()["detail"]

    @pytest.mark.asyncio
    async def test_inverted_date_range_rejected(self, async_client: AsyncClient):
        """Should return 422 when end_date precedes start_date."""
        response = await async_client.post(
            "/api/v1/jobs/backfill",
            json={"start_date": "2024-01-15", "end_date": "2024-01-10", "sports": ["nba"]},
        )

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_season_backfill_requires_seasons(self, async_client: AsyncClient):
        """Should return 422 for an empty season list."""
        response = await async_client.post("/api/v1/jobs/backfill-seasons", json={"seasons": []})

        assert response.status_code == 422


# =============================================================================
# TRIGGERS
# =============================================================================

class TestJobTriggers:
    """Test job triggers and their ledger entries."""

    @pytest.mark.asyncio
    async def test_compute_percentiles(self, async_client: AsyncClient):
        """Should run the job synchronously and return its counters."""
        response = await async_client.post(
            "/api/v1/jobs/compute-percentiles",
            json={"sports": ["nba"], "date": "2024-01-15"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "success"
        assert data["job_name"] == "compute_percentiles"
        assert data["date"] == "2024-01-15"
        assert data["games"] == 0

    @pytest.mark.asyncio
    async def test_missing_odds_key_is_500(self, async_client: AsyncClient, monkeypatch):
        """Should fail the odds refresh when the key is missing."""
        monkeypatch.setattr(settings, "THE_ODDS_API_KEY", "")

        response = await async_client.post("/api/v1/jobs/refresh-odds", json={"sports": ["nba"]})

        assert response.status_code == 500
        assert "THE_ODDS_API_KEY" in response.json()["detail"]

        runs = (await async_client.get("/api/v1/jobs/runs", params={"job_name": "odds_refresh"})).json()
        assert runs["count"] == 1
        assert runs["runs"][0]["status"] == "fail"

    @pytest.mark.asyncio
    async def test_async_backfill_records_outcome(self, async_client: AsyncClient, monkeypatch):
        """Should return a running run id and record the background failure."""
        monkeypatch.setattr(settings, "BALLDONTLIE_API_KEY", "")

        response = await async_client.post(
            "/api/v1/jobs/backfill",
            json={"start_date": "2024-01-01", "end_date": "2024-01-02", "sports": ["nba"], "async": True},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "running"
        assert data["days"] == 2

        run = (await async_client.get(f"/api/v1/jobs/runs/{data['run_id']}")).json()
        assert run["job_name"] == "games_backfill"
        assert run["status"] == "fail"
        assert "BALLDONTLIE_API_KEY" in run["error"]

    @pytest.mark.asyncio
    async def test_franchise_backfill(self, async_client: AsyncClient):
        """Should run the franchise backfill over an empty database."""
        response = await async_client.post(
            "/api/v1/jobs/backfill-franchises",
            json={"sports": ["nba"], "start_date": "2024-01-01", "end_date": "2024-01-31"},
        )

        assert response.status_code == 200
        assert response.json()["checked"] == 0


# =============================================================================
# LEDGER
# =============================================================================

class TestRunLedger:
    """Test the job run ledger endpoints."""

    @pytest.mark.asyncio
    async def test_runs_listed_newest_first(self, async_client: AsyncClient):
        """Should list one run per trigger."""
        for day in ("2024-01-14", "2024-01-15"):
            await async_client.post("/api/v1/jobs/compute-percentiles", json={"sports": ["nba"], "date": day})

        data = (await async_client.get("/api/v1/jobs/runs")).json()

        assert data["count"] == 2
        assert {run["details"]["date"] for run in data["runs"]} == {"2024-01-14", "2024-01-15"}

    @pytest.mark.asyncio
    async def test_unknown_run_is_404(self, async_client: AsyncClient):
        """Should return 404 for an unknown run id."""
        response = await async_client.get("/api/v1/jobs/runs/does-not-exist")

        assert response.status_code == 404
