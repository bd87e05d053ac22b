"""Sync orchestrator: one entry point per batch job.

Every job is bracketed by exactly one JobRun start and one finish:

- credentials are checked after the run is started, so a missing key is
  recorded as a failed run before any work begins
- row, match and page failures are counted inside the job and end the run
  as ``completed_with_errors``
- any exception escaping the job body finishes the run as ``fail`` with
  the error message and is re-raised

Jobs:
- games_backfill: ingest games for a date range, then fill franchise ids
- season_backfill: ingest completed games of whole seasons
- verify_scores: correct stored finals from the authoritative scoreboard
- odds_refresh: attach bookmaker lines to today's games (strict matcher)
- participants_mapping: map participant names to teams (fuzzy matcher)
- compute_percentiles: recompute DailyEdge rows for a date
- franchise_backfill: fill missing franchise ids on stored games

Schedule (see app/core/scheduler.py):
- games_backfill: "0 6 * * *" (yesterday and today, ET)
- verify_scores: "30 6 * * *"
- compute_percentiles: "0 7 * * *"
- odds_refresh: every 30 minutes
"""
from datetime import date
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import ProviderRequestError
from app.core.logging import get_logger, job_correlation
from app.models import Team
from app.repositories import GameRepository
from app.services.edges.edge_service import EdgeService
from app.services.sync.adapters.balldontlie_adapter import BalldontlieAdapter
from app.services.sync.adapters.espn_adapter import EspnScoreboardAdapter
from app.services.sync.adapters.odds_api_adapter import OddsApiAdapter
from app.services.sync.identity_registry import FranchiseRegistry
from app.services.sync.ingestion import IngestionEngine
from app.services.sync.job_ledger import JobLedger, status_for_errors
from app.services.sync.matchers.game_matcher import StrictMatcher
from app.services.sync.matchers.team_resolver import RosterTeam, TeamResolver
from app.services.sync.reconciliation import ScoreVerifier
from app.services.sync.utils.lookup_tables import LookupTables, get_lookup_tables
from app.utils.timezone import date_range, local_day_bounds_utc, recent_dates, today_local

logger = get_logger(__name__)

JOB_GAMES_BACKFILL = "games_backfill"
JOB_SEASON_BACKFILL = "season_backfill"
JOB_VERIFY_SCORES = "verify_scores"
JOB_ODDS_REFRESH = "odds_refresh"
JOB_PARTICIPANTS_MAPPING = "participants_mapping"
JOB_COMPUTE_PERCENTILES = "compute_percentiles"
JOB_FRANCHISE_BACKFILL = "franchise_backfill"

INGESTION_TOTALS = ("fetched", "inserted", "updated", "upserted", "matchups", "skipped", "errors")


class SyncOrchestrator:
    """
    Coordinates the batch jobs.

    This is the main entry point for the sync layer; routes and the
    scheduler never call the engines directly.

    Args:
        db: SQLAlchemy session
        tables: Lookup tables (defaults to the loaded artifact)
        client: Shared httpx client handed to every adapter (tests pass a mock transport)
    """

    def __init__(
        self,
        db: Session,
        tables: Optional[LookupTables] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.db = db
        self.tables = tables or get_lookup_tables()
        self.client = client
        self.ledger = JobLedger(db)

    # ========================================================================
    # Job bracketing
    # ========================================================================

    def start(self, job_name: str, details: Optional[Dict[str, Any]] = None) -> str:
        """Start a run now and execute it later (async dispatch)."""
        return self.ledger.start(job_name, details)

    async def _run(
        self,
        job_name: str,
        details: Dict[str, Any],
        work: Callable[[], Awaitable[Dict[str, Any]]],
        run_id: Optional[str] = None,
        required: Iterable[str] = (),
    ) -> Dict[str, Any]:
        run_id = run_id or self.ledger.start(job_name, details)

        with job_correlation(run_id):
            try:
                settings.require(*required)
                result = await work()
            except Exception as e:
                logger.error(f"Job {job_name} failed: {e}")
                self.ledger.fail(run_id, str(e))
                raise

            status = status_for_errors(result.get("errors", 0))
            self.ledger.finish(run_id, status, details=result)

        return {"run_id": run_id, "job_name": job_name, "status": status, **result}

    # ========================================================================
    # Adapters
    # ========================================================================

    def _game_adapter(self) -> BalldontlieAdapter:
        return BalldontlieAdapter(tables=self.tables, client=self.client)

    def _odds_adapter(self) -> OddsApiAdapter:
        return OddsApiAdapter(tables=self.tables, client=self.client)

    def _scoreboard_adapter(self) -> EspnScoreboardAdapter:
        return EspnScoreboardAdapter(tables=self.tables, client=self.client)

    # ========================================================================
    # Ingestion
    # ========================================================================

    async def backfill_games(
        self,
        sports: Sequence[str],
        start_date: date,
        end_date: date,
        run_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Ingest every game of each sport between two dates (inclusive)."""
        details = {"sports": list(sports), "start_date": start_date.isoformat(), "end_date": end_date.isoformat()}

        async def work() -> Dict[str, Any]:
            dates = date_range(start_date, end_date)
            per_sport: Dict[str, Dict[str, Any]] = {}
            async with self._game_adapter() as adapter:
                engine = IngestionEngine(self.db, adapter, self.tables)
                for sport_id in sports:
                    try:
                        per_sport[sport_id] = await engine.sync_dates(sport_id, dates)
                    except ProviderRequestError as e:
                        per_sport[sport_id] = _provider_failure(sport_id, e)
            return {**details, "days": len(dates), "by_sport": per_sport, **_totals(per_sport, INGESTION_TOTALS)}

        return await self._run(JOB_GAMES_BACKFILL, details, work, run_id, required=("BALLDONTLIE_API_KEY",))

    async def backfill_seasons(
        self,
        sports: Sequence[str],
        seasons: Sequence[int],
        run_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Ingest the completed games of whole seasons."""
        details = {"sports": list(sports), "seasons": list(seasons)}

        async def work() -> Dict[str, Any]:
            per_sport: Dict[str, Dict[str, Any]] = {}
            async with self._game_adapter() as adapter:
                engine = IngestionEngine(self.db, adapter, self.tables)
                for sport_id in sports:
                    try:
                        per_sport[sport_id] = await engine.backfill_seasons(sport_id, seasons)
                    except ProviderRequestError as e:
                        per_sport[sport_id] = _provider_failure(sport_id, e)
            return {**details, "by_sport": per_sport, **_totals(per_sport, INGESTION_TOTALS)}

        return await self._run(JOB_SEASON_BACKFILL, details, work, run_id, required=("BALLDONTLIE_API_KEY",))

    async def verify_scores(
        self,
        sports: Sequence[str],
        dates: Optional[Sequence[date]] = None,
        run_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Correct stored final scores (default: the last few days)."""
        dates = list(dates) if dates else recent_dates(settings.VERIFY_DEFAULT_DAYS)
        details = {"sports": list(sports), "dates": [d.isoformat() for d in dates]}

        async def work() -> Dict[str, Any]:
            per_sport: Dict[str, Dict[str, Any]] = {}
            corrections: List[Dict[str, Any]] = []
            async with self._scoreboard_adapter() as adapter:
                verifier = ScoreVerifier(self.db, adapter, self.tables)
                for sport_id in sports:
                    result = await verifier.verify(sport_id, dates)
                    corrections.extend(result.pop("corrections"))
                    per_sport[sport_id] = result
            return {
                **details,
                "by_sport": per_sport,
                "corrections": corrections[:settings.ERROR_SAMPLE_LIMIT],
                **_totals(per_sport, ("checked", "corrected", "unmatched", "errors")),
            }

        return await self._run(JOB_VERIFY_SCORES, details, work, run_id)

    async def backfill_franchises(
        self,
        sports: Sequence[str],
        start_date: date,
        end_date: date,
        run_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Fill missing franchise ids on stored games."""
        details = {"sports": list(sports), "start_date": start_date.isoformat(), "end_date": end_date.isoformat()}

        async def work() -> Dict[str, Any]:
            registry = FranchiseRegistry(self.db, self.tables)
            per_sport = {
                sport_id: registry.backfill_franchise_ids(sport_id, start_date, end_date)
                for sport_id in sports
            }
            return {**details, "by_sport": per_sport, **_totals(per_sport, ("checked", "fixed", "matchups_fixed", "errors"))}

        return await self._run(JOB_FRANCHISE_BACKFILL, details, work, run_id)

    # ========================================================================
    # Matching
    # ========================================================================

    async def refresh_odds(
        self,
        sports: Sequence[str],
        day: Optional[date] = None,
        run_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Attach bookmaker lines to the games of a local date."""
        day = day or today_local()
        details = {"sports": list(sports), "date": day.isoformat(), "mode": "strict"}

        async def work() -> Dict[str, Any]:
            per_sport: Dict[str, Dict[str, Any]] = {}
            async with self._odds_adapter() as adapter:
                for sport_id in sports:
                    try:
                        per_sport[sport_id] = await self._refresh_sport_odds(adapter, sport_id, day)
                    except ProviderRequestError as e:
                        per_sport[sport_id] = _provider_failure(sport_id, e)

            reasons = [reason for result in per_sport.values() for reason in result.get("unmatched_reasons", [])]
            return {
                **details,
                "by_sport": per_sport,
                "unmatched_reasons": reasons[:settings.ERROR_SAMPLE_LIMIT],
                **_totals(per_sport, ("events_found", "games_in_db", "matched", "unmatched", "errors")),
            }

        return await self._run(JOB_ODDS_REFRESH, details, work, run_id, required=("THE_ODDS_API_KEY",))

    async def _refresh_sport_odds(self, adapter: OddsApiAdapter, sport_id: str, day: date) -> Dict[str, Any]:
        fetched = await adapter.fetch_odds(sport_id)
        start, end = local_day_bounds_utc(day)
        games = GameRepository(self.db).find_starting_between(sport_id, start, end)

        matcher = StrictMatcher(self.db, self.tables)
        odds_sport_key = adapter.sport_key(sport_id)
        matched = 0
        errors = 0
        reasons: List[str] = []
        error_samples: List[str] = []
        for game in games:
            try:
                result = matcher.match_game(game, fetched.events, odds_sport_key)
            except SQLAlchemyError as e:
                self.db.rollback()
                errors += 1
                if len(error_samples) < settings.ERROR_SAMPLE_LIMIT:
                    error_samples.append(f"game {game.id}: {type(e).__name__}")
                logger.warning(f"Odds match failed for game {game.id}: {e}")
                continue
            if result.matched:
                matched += 1
            elif result.reason:
                reasons.append(result.reason)

        logger.info(
            f"Odds refresh {sport_id} {day}: {matched}/{len(games)} games matched",
            extra={"sport": sport_id, "events": len(fetched.events)},
        )
        return {
            "events_found": len(fetched.events),
            "events_rejected": len(fetched.rejected),
            "games_in_db": len(games),
            "matched": matched,
            "unmatched": len(games) - matched - errors,
            "unmatched_reasons": reasons[:settings.ERROR_SAMPLE_LIMIT],
            "errors": errors,
            "error_samples": error_samples,
        }

    async def refresh_participants(
        self,
        sports: Sequence[str],
        run_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Map participant-feed names onto stored teams."""
        details = {"sports": list(sports)}

        async def work() -> Dict[str, Any]:
            per_sport: Dict[str, Dict[str, Any]] = {}
            async with self._odds_adapter() as adapter:
                for sport_id in sports:
                    try:
                        per_sport[sport_id] = await self._map_sport_participants(adapter, sport_id)
                    except ProviderRequestError as e:
                        per_sport[sport_id] = _provider_failure(sport_id, e)

            totals = _totals(per_sport, ("total", "mapped", "failed", "errors"))
            coverage = round(totals["mapped"] / totals["total"] * 100, 1) if totals["total"] else 0.0
            return {**details, "by_sport": per_sport, "coverage_percent": coverage, **totals}

        return await self._run(JOB_PARTICIPANTS_MAPPING, details, work, run_id, required=("THE_ODDS_API_KEY",))

    async def _map_sport_participants(self, adapter: OddsApiAdapter, sport_id: str) -> Dict[str, Any]:
        names, rejected = await adapter.fetch_participants(sport_id)
        teams = [
            RosterTeam.from_model(team)
            for team in self.db.query(Team).filter(Team.sport_id == sport_id).order_by(Team.name).all()
        ]

        resolver = TeamResolver(self.db, self.tables)
        mapped = 0
        errors = 0
        unmatched: List[str] = []
        error_samples: List[str] = []
        for name in names:
            try:
                match = resolver.map_participant(sport_id, name, teams)
            except SQLAlchemyError as e:
                self.db.rollback()
                errors += 1
                if len(error_samples) < settings.ERROR_SAMPLE_LIMIT:
                    error_samples.append(f"participant {name!r}: {type(e).__name__}")
                logger.warning(f"Participant mapping failed for {name!r}: {e}")
                continue
            if match is not None:
                mapped += 1
            else:
                unmatched.append(name)

        return {
            "teams": len(teams),
            "total": len(names),
            "mapped": mapped,
            "failed": len(unmatched),
            "unmatched_participants": unmatched[:settings.ERROR_SAMPLE_LIMIT],
            "rejected": rejected[:settings.ERROR_SAMPLE_LIMIT],
            "errors": errors,
            "error_samples": error_samples,
        }

    # ========================================================================
    # Edges
    # ========================================================================

    async def compute_percentiles(
        self,
        sports: Sequence[str],
        day: Optional[date] = None,
        run_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Recompute DailyEdge rows for a local date."""
        day = day or today_local()
        details = {"sports": list(sports), "date": day.isoformat()}

        async def work() -> Dict[str, Any]:
            service = EdgeService(self.db)
            per_sport = {sport_id: service.compute_for_date(sport_id, day) for sport_id in sports}
            return {**details, "by_sport": per_sport, **_totals(per_sport, ("games", "computed", "visible", "hidden", "errors"))}

        return await self._run(JOB_COMPUTE_PERCENTILES, details, work, run_id)


def _provider_failure(sport_id: str, error: ProviderRequestError) -> Dict[str, Any]:
    logger.warning(f"Provider request abandoned for {sport_id}: {error}")
    return {"sport": sport_id, "errors": 1, "error_samples": [str(error)]}


def _totals(per_sport: Dict[str, Dict[str, Any]], keys: Sequence[str]) -> Dict[str, int]:
    return {key: sum(result.get(key, 0) for result in per_sport.values()) for key in keys}
