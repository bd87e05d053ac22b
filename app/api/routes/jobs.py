"""Job trigger routes.

Provides endpoints for:
- Game backfills by date range or by season
- Score verification against the authoritative scoreboard
- Odds refresh (strict matcher) and participant mapping (fuzzy matcher)
- Edge computation and franchise id backfill
- Reading the job run ledger

Every trigger runs through the SyncOrchestrator, so each call produces
exactly one JobRun. Long backfills are dispatched to a background task
with their own session and return the run id immediately.
"""
from datetime import date
from typing import Any, Awaitable, Callable, Dict, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field, model_validator
from sqlalchemy.orm import Session, sessionmaker

from app.core.config import settings
from app.core.database import get_db, get_session_factory
from app.core.logging import get_logger
from app.services.sync.job_ledger import JobLedger, serialize_run
from app.services.sync.orchestrator import (
    JOB_GAMES_BACKFILL,
    JOB_SEASON_BACKFILL,
    SyncOrchestrator,
)
from app.services.sync.utils.lookup_tables import get_lookup_tables

logger = get_logger(__name__)

router = APIRouter(prefix="/jobs", tags=["jobs"])

JobCall = Callable[[SyncOrchestrator], Awaitable[Dict[str, Any]]]


def get_orchestrator(db: Session = Depends(get_db)) -> SyncOrchestrator:
    """Dependency to get sync orchestrator instance."""
    return SyncOrchestrator(db)


def resolve_sports(sports: Optional[List[str]]) -> List[str]:
    """Requested sports, or the configured defaults. Unknown sports are a 400."""
    requested = list(dict.fromkeys(s.lower() for s in sports)) if sports else settings.DEFAULT_SPORTS
    known = get_lookup_tables().sports
    unknown = [s for s in requested if s not in known]
    if unknown:
        raise HTTPException(status_code=400, detail=f"Unknown sport(s): {', '.join(unknown)}")
    return requested


# ============================================================================
# REQUEST BODIES
# ============================================================================

class SportsRequest(BaseModel):
    sports: Optional[List[str]] = Field(None, description="Sports to process (default: all configured)")


class BackfillRequest(SportsRequest):
    model_config = ConfigDict(populate_by_name=True)

    start_date: date
    end_date: date
    run_async: bool = Field(False, alias="async", description="Run in the background and return the run id")

    @model_validator(mode="after")
    def check_range(self) -> "BackfillRequest":
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self

    @property
    def days(self) -> int:
        return (self.end_date - self.start_date).days + 1


class SeasonBackfillRequest(SportsRequest):
    model_config = ConfigDict(populate_by_name=True)

    seasons: List[int] = Field(..., min_length=1)
    run_async: bool = Field(False, alias="async")


class VerifyScoresRequest(SportsRequest):
    dates: Optional[List[date]] = Field(None, description="Dates to verify (default: the last few days)")


class DayRequest(SportsRequest):
    model_config = ConfigDict(populate_by_name=True)

    day: Optional[date] = Field(None, alias="date", description="Local date (default: today)")


class FranchiseBackfillRequest(SportsRequest):
    start_date: date
    end_date: date


# ============================================================================
# DISPATCH
# ============================================================================

async def run_in_background(session_factory: sessionmaker, job_name: str, call: JobCall) -> None:
    """
    Run a job after the response was sent, with its own session.

    The orchestrator has already recorded any failure on the run, so it is
    only logged here.
    """
    db = session_factory()
    try:
        await call(SyncOrchestrator(db))
    except Exception as e:
        logger.error(f"Background job {job_name} failed: {e}")
    finally:
        db.close()


async def run_now(job_name: str, call: Awaitable[Dict[str, Any]]) -> Dict[str, Any]:
    try:
        return await call
    except Exception as e:
        logger.error(f"Job {job_name} failed: {e}")
        raise HTTPException(status_code=500, detail=f"{job_name} failed: {str(e)}")


def dispatch(
    orchestrator: SyncOrchestrator,
    background_tasks: BackgroundTasks,
    session_factory: sessionmaker,
    job_name: str,
    details: Dict[str, Any],
    call: Callable[[SyncOrchestrator, str], Awaitable[Dict[str, Any]]],
) -> Dict[str, Any]:
    """Start the run now and hand the work to a background task."""
    run_id = orchestrator.start(job_name, details)
    background_tasks.add_task(
        run_in_background,
        session_factory,
        job_name,
        lambda o: call(o, run_id),
    )
    logger.info(f"Dispatched {job_name} in background", extra={"run_id": run_id})
    return {"run_id": run_id, "job_name": job_name, "status": "running"}


# ============================================================================
# TRIGGERS
# ============================================================================

@router.post("/backfill")
async def trigger_backfill(
    body: BackfillRequest,
    background_tasks: BackgroundTasks,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
    session_factory: sessionmaker = Depends(get_session_factory),
) -> Dict:
    """
    Ingest games for a date range (inclusive).

    Ranges longer than ASYNC_BACKFILL_THRESHOLD_DAYS, or requests with
    ``"async": true``, run in the background; poll ``GET /jobs/runs/{id}``.
    """
    sports = resolve_sports(body.sports)
    start_date, end_date = body.start_date, body.end_date

    if body.run_async or body.days > settings.ASYNC_BACKFILL_THRESHOLD_DAYS:
        details = {"sports": sports, "start_date": start_date.isoformat(), "end_date": end_date.isoformat()}
        result = dispatch(
            orchestrator,
            background_tasks,
            session_factory,
            JOB_GAMES_BACKFILL,
            details,
            lambda o, run_id: o.backfill_games(sports, start_date, end_date, run_id=run_id),
        )
        return {**result, "days": body.days}

    return await run_now(JOB_GAMES_BACKFILL, orchestrator.backfill_games(sports, start_date, end_date))


@router.post("/backfill-seasons")
async def trigger_season_backfill(
    body: SeasonBackfillRequest,
    background_tasks: BackgroundTasks,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
    session_factory: sessionmaker = Depends(get_session_factory),
) -> Dict:
    """Ingest the completed games of whole seasons."""
    sports = resolve_sports(body.sports)
    seasons = sorted(set(body.seasons))

    if body.run_async:
        return dispatch(
            orchestrator,
            background_tasks,
            session_factory,
            JOB_SEASON_BACKFILL,
            {"sports": sports, "seasons": seasons},
            lambda o, run_id: o.backfill_seasons(sports, seasons, run_id=run_id),
        )

    return await run_now(JOB_SEASON_BACKFILL, orchestrator.backfill_seasons(sports, seasons))


@router.post("/verify-scores")
async def trigger_verify_scores(
    body: VerifyScoresRequest,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> Dict:
    """Correct stored final scores from the authoritative scoreboard."""
    sports = resolve_sports(body.sports)
    return await run_now("verify_scores", orchestrator.verify_scores(sports, body.dates))


@router.post("/refresh-odds")
async def trigger_refresh_odds(
    body: DayRequest,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> Dict:
    """Attach bookmaker total lines to the games of a local date."""
    sports = resolve_sports(body.sports)
    return await run_now("odds_refresh", orchestrator.refresh_odds(sports, body.day))


@router.post("/refresh-participants")
async def trigger_refresh_participants(
    body: SportsRequest,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> Dict:
    """Map participant-feed names onto stored teams."""
    sports = resolve_sports(body.sports)
    return await run_now("participants_mapping", orchestrator.refresh_participants(sports))


@router.post("/compute-percentiles")
async def trigger_compute_percentiles(
    body: DayRequest,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> Dict:
    """Recompute the daily edges of a local date."""
    sports = resolve_sports(body.sports)
    return await run_now("compute_percentiles", orchestrator.compute_percentiles(sports, body.day))


@router.post("/backfill-franchises")
async def trigger_franchise_backfill(
    body: FranchiseBackfillRequest,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> Dict:
    """Fill missing franchise ids on stored games in a date range."""
    if body.end_date < body.start_date:
        raise HTTPException(status_code=400, detail="end_date must not be before start_date")
    sports = resolve_sports(body.sports)
    return await run_now(
        "franchise_backfill",
        orchestrator.backfill_franchises(sports, body.start_date, body.end_date),
    )


# ============================================================================
# LEDGER
# ============================================================================

@router.get("/runs")
async def list_runs(
    limit: int = Query(20, ge=1, le=200, description="Maximum runs to return"),
    job_name: Optional[str] = Query(None, description="Filter by job name"),
    db: Session = Depends(get_db),
) -> Dict:
    """Most recent job runs, newest first."""
    runs = JobLedger(db).recent(limit=limit, job_name=job_name)
    return {"count": len(runs), "runs": [serialize_run(run) for run in runs]}


@router.get("/runs/{run_id}")
async def get_run(run_id: str, db: Session = Depends(get_db)) -> Dict:
    """One job run with its counters and error samples."""
    run = JobLedger(db).get(run_id)
    if run is None:
        raise HTTPException(status_code=404, detail=f"Job run {run_id} not found")
    return serialize_run(run)
