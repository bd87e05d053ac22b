"""Score verification against the authoritative scoreboard.

For each sport and UTC date:

1. Load stored final games starting on that date
2. Fetch the scoreboard for the date and the previous day as one
   concurrent batch (late games are filed under the previous day)
3. Remap internal abbreviations to scoreboard abbreviations
4. Pick the scoreboard event of the same teams whose start time is
   closest to the stored game, within a window. A series lists the
   same two teams on consecutive nights.
5. Correct scores, final total and the MatchupGame total only when
   the stored score differs; a missing MatchupGame is created

A game is never moved out of ``final``; only its scores change.
"""
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core import metrics
from app.core.config import settings
from app.core.exceptions import ProviderRequestError
from app.core.logging import get_logger
from app.models import Game
from app.repositories import GameRepository, MatchupRepository
from app.services.sync.adapters.base import fetch_parallel
from app.services.sync.adapters.espn_adapter import EspnScoreboardAdapter
from app.services.sync.adapters.payloads import FinalScore
from app.services.sync.utils.lookup_tables import LookupTables, get_lookup_tables

logger = get_logger(__name__)

CORRECTION_SAMPLE_LIMIT = 20

TeamPair = Tuple[str, str]


def pick_final(
    candidates: Sequence[FinalScore],
    start_time: datetime,
    window: Optional[timedelta] = None,
) -> Optional[FinalScore]:
    """
    Scoreboard event for a stored game among the events of the same teams.

    Timed events must start within ``window`` of the stored start and the
    closest one wins. An event without a start time is only used when it
    is the sole candidate.
    """
    if window is None:
        window = timedelta(hours=settings.SCOREBOARD_MATCH_WINDOW_HOURS)

    timed = [final for final in candidates if final.start_time is not None]
    if timed:
        best = min(timed, key=lambda final: abs(final.start_time - start_time))
        return best if abs(best.start_time - start_time) <= window else None

    return candidates[0] if len(candidates) == 1 else None


class ScoreVerifier:
    """
    Compare stored finals with the authoritative scoreboard.

    Args:
        db: SQLAlchemy session
        adapter: Scoreboard adapter (owned by the caller)
        tables: Lookup tables carrying the scoreboard abbreviation remaps
    """

    def __init__(
        self,
        db: Session,
        adapter: EspnScoreboardAdapter,
        tables: Optional[LookupTables] = None,
    ):
        self.db = db
        self.adapter = adapter
        self.tables = tables or get_lookup_tables()
        self.games = GameRepository(db)
        self.matchups = MatchupRepository(db)

    def scoreboard_abbreviation(self, sport_id: str, abbreviation: Optional[str]) -> str:
        """Scoreboard abbreviation for an internal one, falling back to the upper-cased input."""
        abbrev = (abbreviation or "").upper()
        return self.tables.scoreboard_abbreviations.get(sport_id, {}).get(abbrev, abbrev)

    async def verify(self, sport_id: str, dates: Sequence[date]) -> Dict[str, Any]:
        """
        Verify every date for one sport.

        Returns:
            Counters: checked, corrected, unmatched, errors, corrections (sample), error_samples
        """
        result: Dict[str, Any] = {
            "sport": sport_id,
            "dates": [d.isoformat() for d in dates],
            "checked": 0,
            "corrected": 0,
            "unmatched": 0,
            "errors": 0,
            "corrections": [],
            "error_samples": [],
        }
        for day in dates:
            await self.verify_date(sport_id, day, result)

        logger.info(
            f"Verified {sport_id}: {result['checked']} checked, {result['corrected']} corrected, "
            f"{result['errors']} errors",
            extra={"sport": sport_id},
        )
        return result

    async def verify_date(self, sport_id: str, day: date, result: Dict[str, Any]) -> None:
        games = self.games.find_finals_on(sport_id, day)
        if not games:
            return

        finals, fetch_errors = await self._fetch_finals(sport_id, day)
        for message in fetch_errors:
            self._record_error(result, message)
        if not finals and fetch_errors:
            return

        for game in games:
            result["checked"] += 1
            key = (
                self.scoreboard_abbreviation(sport_id, game.home_team.abbreviation if game.home_team else None),
                self.scoreboard_abbreviation(sport_id, game.away_team.abbreviation if game.away_team else None),
            )
            final = pick_final(finals.get(key, []), game.start_time_utc)
            if final is None:
                result["unmatched"] += 1
                continue

            try:
                correction = self.apply_correction(game, final)
                self.db.commit()
            except SQLAlchemyError as e:
                self.db.rollback()
                self._record_error(result, f"game {game.id}: {type(e).__name__}")
                logger.warning(f"Score correction failed for game {game.id}: {e}")
                continue

            if correction is not None:
                result["corrected"] += 1
                metrics.score_corrections_total.labels(sport=sport_id).inc()
                if len(result["corrections"]) < CORRECTION_SAMPLE_LIMIT:
                    result["corrections"].append(correction)

    async def _fetch_finals(self, sport_id: str, day: date) -> Tuple[Dict[TeamPair, List[FinalScore]], List[str]]:
        """Scoreboard finals for the day and the previous day, grouped by (home, away)."""
        days = [day, day - timedelta(days=1)]
        outcomes = await fetch_parallel(
            [lambda d=d: self.adapter.fetch_final_scores(sport_id, d) for d in days],
            batch_size=len(days),
        )

        finals: Dict[TeamPair, List[FinalScore]] = {}
        errors: List[str] = []
        for fetched_day, outcome in zip(days, outcomes):
            if isinstance(outcome, ProviderRequestError):
                errors.append(f"scoreboard {sport_id} {fetched_day.isoformat()}: {outcome}")
                continue
            for final in outcome:
                finals.setdefault((final.home_abbrev, final.away_abbrev), []).append(final)
        return finals, errors

    def apply_correction(self, game: Game, final: FinalScore) -> Optional[Dict[str, Any]]:
        """
        Overwrite a game's scores when they differ. Flushes; the caller commits.

        Returns:
            The correction record, or None when the stored score already agrees
        """
        if game.home_score == final.home_score and game.away_score == final.away_score:
            return None

        old = {"home": game.home_score, "away": game.away_score, "total": game.final_total}
        game.home_score = final.home_score
        game.away_score = final.away_score
        game.final_total = final.total

        # Creates the row for a final that was stored without scores
        self.matchups.upsert_for_game(game)
        self.db.flush()

        logger.info(
            f"Corrected {game.sport_id} game {game.id}: "
            f"{old['home']}-{old['away']} -> {final.home_score}-{final.away_score}",
            extra={"game_id": game.id},
        )
        return {
            "game_id": game.id,
            "sport": game.sport_id,
            "teams": f"{final.away_abbrev} @ {final.home_abbrev}",
            "old_scores": old,
            "new_scores": {"home": final.home_score, "away": final.away_score, "total": final.total},
        }

    @staticmethod
    def _record_error(result: Dict[str, Any], message: str) -> None:
        result["errors"] += 1
        if len(result["error_samples"]) < settings.ERROR_SAMPLE_LIMIT:
            result["error_samples"].append(message)
