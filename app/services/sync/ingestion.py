"""Ingestion and backfill engine for the game feed.

For every game row returned by the paginated feed:

1. Validate the row into a ``FeedGame`` (malformed rows are counted and sampled)
2. Resolve both teams through the franchise identity registry
3. Upsert the Game by provider game key, advancing status without regressions
4. For final games with both scores, upsert the MatchupGame with the
   canonically ordered team pair and the final total

Each game is its own unit of work and is committed on its own, so a
failing row never takes the rest of the page with it. Re-running the same
dates produces updates, never duplicates.
"""
from dataclasses import dataclass, field
from datetime import date
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Tuple

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core import metrics
from app.core.config import settings
from app.core.exceptions import PayloadValidationError
from app.core.logging import get_logger
from app.models import Game
from app.repositories import GameRepository, MatchupRepository
from app.services.sync.adapters.balldontlie_adapter import PROVIDER, BalldontlieAdapter, FeedPage
from app.services.sync.adapters.payloads import FeedGame, parse_feed_game
from app.services.sync.game_status import GameStatus, advance_status
from app.services.sync.identity_registry import FranchiseRegistry, RunCache, TeamIdentity
from app.services.sync.utils.lookup_tables import LookupTables, get_lookup_tables
from app.utils.timezone import decade_bucket, utcnow

logger = get_logger(__name__)


def provider_game_key(sport_id: str, provider_game_id: Any) -> str:
    """Idempotency key of a feed game, e.g. ``bdl-nba-15907925``."""
    return f"bdl-{sport_id}-{provider_game_id}"


@dataclass
class SyncCounters:
    """Per-sport counters returned by every ingestion run."""
    fetched: int = 0
    inserted: int = 0
    updated: int = 0
    matchups: int = 0
    skipped: int = 0
    errors: int = 0
    error_samples: List[str] = field(default_factory=list)
    skip_samples: List[str] = field(default_factory=list)

    @property
    def upserted(self) -> int:
        return self.inserted + self.updated

    def record_error(self, message: str) -> None:
        self.errors += 1
        if len(self.error_samples) < settings.ERROR_SAMPLE_LIMIT:
            self.error_samples.append(message)

    def record_skip(self, message: str) -> None:
        self.skipped += 1
        if len(self.skip_samples) < settings.ERROR_SAMPLE_LIMIT:
            self.skip_samples.append(message)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "fetched": self.fetched,
            "inserted": self.inserted,
            "updated": self.updated,
            "upserted": self.upserted,
            "matchups": self.matchups,
            "skipped": self.skipped,
            "errors": self.errors,
            "error_samples": list(self.error_samples),
            "skip_samples": list(self.skip_samples),
        }


class IngestionEngine:
    """
    Paginated, idempotent game ingestion.

    Args:
        db: SQLAlchemy session
        adapter: Game feed adapter (owned by the caller)
        tables: Lookup tables passed to the registry
    """

    def __init__(
        self,
        db: Session,
        adapter: BalldontlieAdapter,
        tables: Optional[LookupTables] = None,
    ):
        self.db = db
        self.adapter = adapter
        self.tables = tables or get_lookup_tables()
        self.registry = FranchiseRegistry(db, self.tables, provider=PROVIDER)
        self.games = GameRepository(db)
        self.matchups = MatchupRepository(db)

    # ========================================================================
    # Entry points
    # ========================================================================

    async def sync_dates(self, sport_id: str, dates: Sequence[date]) -> Dict[str, Any]:
        """
        Ingest every game on the given dates, then fill missing franchise ids.

        Returns:
            Counters for the sport, plus the franchise reconciliation result
        """
        dates = sorted(set(dates))
        counters = SyncCounters()
        cache = RunCache()

        if dates:
            pages = self.adapter.iter_games_by_dates(sport_id, dates)
            await self._consume(sport_id, pages, counters, cache, finals_only=False)

        result = {"sport": sport_id, "dates": [d.isoformat() for d in dates], **counters.as_dict()}
        if dates:
            franchises = self.registry.backfill_franchise_ids(sport_id, dates[0], dates[-1], cache)
            result["franchises_fixed"] = franchises["fixed"]
            result["matchups_franchises_fixed"] = franchises["matchups_fixed"]

        logger.info(
            f"Synced {sport_id}: {counters.fetched} fetched, {counters.inserted} inserted, "
            f"{counters.updated} updated, {counters.errors} errors",
            extra={"sport": sport_id, "cache_entries": len(cache)},
        )
        return result

    async def backfill_seasons(self, sport_id: str, seasons: Sequence[int]) -> Dict[str, Any]:
        """Ingest only the completed games of whole seasons."""
        counters = SyncCounters()
        cache = RunCache()

        pages = self.adapter.iter_games_by_seasons(sport_id, list(seasons))
        await self._consume(sport_id, pages, counters, cache, finals_only=True)

        logger.info(
            f"Season backfill {sport_id} {list(seasons)}: {counters.inserted} inserted, "
            f"{counters.matchups} matchups",
            extra={"sport": sport_id},
        )
        return {"sport": sport_id, "seasons": list(seasons), **counters.as_dict()}

    async def _consume(
        self,
        sport_id: str,
        pages: AsyncIterator[FeedPage],
        counters: SyncCounters,
        cache: RunCache,
        finals_only: bool,
    ) -> None:
        async for page in pages:
            if page.error:
                counters.record_error(page.error)
                continue
            for row in page.rows:
                counters.fetched += 1
                self.ingest_row(sport_id, row, counters, cache, finals_only=finals_only)

    # ========================================================================
    # Row processing
    # ========================================================================

    def ingest_row(
        self,
        sport_id: str,
        row: Any,
        counters: SyncCounters,
        cache: RunCache,
        finals_only: bool = False,
    ) -> Optional[Game]:
        """Process one feed row as its own unit of work."""
        row_id = row.get("id") if isinstance(row, dict) else None

        try:
            feed_game = parse_feed_game(row)
        except PayloadValidationError as e:
            counters.record_error(f"game {row_id}: {e.reason}")
            metrics.ingested_rows_total.labels(sport=sport_id, outcome="error").inc()
            return None

        if finals_only and not (feed_game.game_status is GameStatus.FINAL and feed_game.has_scores):
            counters.record_skip(f"game {feed_game.id}: not final")
            metrics.ingested_rows_total.labels(sport=sport_id, outcome="skipped").inc()
            return None

        try:
            identities = self._resolve_teams(sport_id, feed_game, cache)
            if identities is None:
                counters.record_skip(
                    f"game {feed_game.id}: unknown team "
                    f"{feed_game.away_team.abbreviation} @ {feed_game.home_team.abbreviation}"
                )
                metrics.ingested_rows_total.labels(sport=sport_id, outcome="skipped").inc()
                return None

            home, away = identities
            game, created = self.upsert_game(sport_id, feed_game, home, away)
            self.db.commit()
            if self.matchups.upsert_for_game(game):
                counters.matchups += 1
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            counters.record_error(f"game {feed_game.id}: {type(e).__name__}")
            metrics.ingested_rows_total.labels(sport=sport_id, outcome="error").inc()
            logger.warning(f"Failed to ingest {sport_id} game {feed_game.id}: {e}")
            return None

        if created:
            counters.inserted += 1
        else:
            counters.updated += 1
        metrics.ingested_rows_total.labels(sport=sport_id, outcome="inserted" if created else "updated").inc()
        return game

    def _resolve_teams(
        self,
        sport_id: str,
        feed_game: FeedGame,
        cache: RunCache,
    ) -> Optional[Tuple[TeamIdentity, TeamIdentity]]:
        seen_on = feed_game.start_time.date()
        home = self.registry.ensure_team_and_franchise(
            sport_id, feed_game.home_team.abbreviation, cache, seen_on=seen_on, city=feed_game.home_team.city
        )
        away = self.registry.ensure_team_and_franchise(
            sport_id, feed_game.away_team.abbreviation, cache, seen_on=seen_on, city=feed_game.away_team.city
        )
        if home is None or away is None:
            return None
        return home, away

    def upsert_game(
        self,
        sport_id: str,
        feed_game: FeedGame,
        home: TeamIdentity,
        away: TeamIdentity,
    ) -> Tuple[Game, bool]:
        """
        Insert or update the Game for a feed row. Flushes; the caller commits.

        Returns:
            (game, created)
        """
        key = provider_game_key(sport_id, feed_game.id)
        game = self.games.find_by_provider_key(sport_id, key)
        created = False

        if game is None:
            game = Game(
                sport_id=sport_id,
                provider=PROVIDER,
                provider_game_key=key,
                home_team_id=home.team_id,
                away_team_id=away.team_id,
                start_time_utc=feed_game.start_time,
                status=feed_game.game_status.value,
            )
            try:
                with self.db.begin_nested():
                    self.db.add(game)
                created = True
            except IntegrityError:
                game = self.games.find_by_provider_key(sport_id, key)
                if game is None:
                    raise
                logger.debug(f"Game {key} created by another run, updating existing")

        self._apply_feed_fields(game, feed_game, home, away)
        self.db.flush()
        return game, created

    @staticmethod
    def _apply_feed_fields(game: Game, feed_game: FeedGame, home: TeamIdentity, away: TeamIdentity) -> None:
        # A regressed observation never overwrites final scores
        regressed = game.status == GameStatus.FINAL.value and feed_game.game_status is not GameStatus.FINAL
        status = advance_status(game.status, feed_game.game_status)

        game.home_team_id = home.team_id
        game.away_team_id = away.team_id
        game.home_franchise_id = home.franchise_id
        game.away_franchise_id = away.franchise_id
        game.start_time_utc = feed_game.start_time
        game.status = status.value
        game.season_year = feed_game.season_year
        game.decade = decade_bucket(feed_game.season_year)
        game.is_playoff = feed_game.postseason
        game.week_round = feed_game.week
        game.last_seen_at = utcnow()

        if feed_game.has_scores and not regressed:
            game.home_score = feed_game.home_score
            game.away_score = feed_game.away_score

        if status is GameStatus.FINAL and game.home_score is not None and game.away_score is not None:
            game.final_total = game.home_score + game.away_score
