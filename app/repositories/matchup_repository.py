"""
Matchup Repository for head-to-head history.

All pair arguments must already be canonically ordered (see
``app.services.sync.utils.pairing.order_pair``).

Inserts run inside a savepoint: a writer that loses the unique-constraint
race only rolls back its own insert and re-reads the winning row, so the
rest of the caller's unit of work survives.
"""
from typing import List, Optional

from sqlalchemy.exc import IntegrityError

from app.models import Game, MatchupGame, MatchupStats
from app.repositories.base import BaseRepository
from app.services.edges.percentiles import TotalsSummary
from app.services.sync.game_status import GameStatus
from app.services.sync.utils.pairing import order_optional_pair, order_pair


class MatchupRepository(BaseRepository[MatchupGame]):
    """Repository for MatchupGame rows and their MatchupStats rollups."""

    def __init__(self, db):
        super().__init__(MatchupGame, db)

    def find_by_game(self, game_id: str) -> Optional[MatchupGame]:
        return self.where_first(MatchupGame.game_id == game_id)

    def upsert_for_game(self, game: Game) -> bool:
        """
        Create or refresh the MatchupGame of a final game. Flushes; the caller commits.

        Games that are not final or lack a total are left alone.

        Returns:
            True if a row was created or its values changed
        """
        if game.status != GameStatus.FINAL.value or game.final_total is None:
            return False

        team_low, team_high = order_pair(game.home_team_id, game.away_team_id)
        franchise_low, franchise_high = order_optional_pair(game.home_franchise_id, game.away_franchise_id)
        values = {
            "sport_id": game.sport_id,
            "team_low_id": team_low,
            "team_high_id": team_high,
            "franchise_low_id": franchise_low,
            "franchise_high_id": franchise_high,
            "total": game.final_total,
            "played_at_utc": game.start_time_utc,
            "season_year": game.season_year,
            "decade": game.decade,
        }

        matchup = self.find_by_game(game.id)
        if matchup is None:
            try:
                with self.db.begin_nested():
                    self.db.add(MatchupGame(game_id=game.id, **values))
                return True
            except IntegrityError:
                matchup = self.find_by_game(game.id)
                if matchup is None:
                    raise

        changed = any(getattr(matchup, column) != value for column, value in values.items())
        for column, value in values.items():
            setattr(matchup, column, value)
        self.db.flush()
        return changed

    def totals_for_pair(self, sport_id: str, team_low_id: str, team_high_id: str) -> List[int]:
        """Every historical total for an ordered team pair."""
        rows = self.db.query(MatchupGame.total).filter(
            MatchupGame.sport_id == sport_id,
            MatchupGame.team_low_id == team_low_id,
            MatchupGame.team_high_id == team_high_id,
        ).all()
        return [row.total for row in rows]

    def find_stats(self, sport_id: str, team_low_id: str, team_high_id: str) -> Optional[MatchupStats]:
        return self.db.query(MatchupStats).filter(
            MatchupStats.sport_id == sport_id,
            MatchupStats.team_low_id == team_low_id,
            MatchupStats.team_high_id == team_high_id,
        ).first()

    def upsert_stats(
        self,
        sport_id: str,
        team_low_id: str,
        team_high_id: str,
        summary: TotalsSummary,
    ) -> MatchupStats:
        """Insert or refresh the rollup for a pair. Flushes; the caller commits."""
        values = {
            "n_games": summary.n_games,
            "p05": summary.p05,
            "p95": summary.p95,
            "median": summary.median,
            "min_total": summary.min_total,
            "max_total": summary.max_total,
        }

        stats = self.find_stats(sport_id, team_low_id, team_high_id)
        if stats is None:
            stats = MatchupStats(sport_id=sport_id, team_low_id=team_low_id, team_high_id=team_high_id, **values)
            try:
                with self.db.begin_nested():
                    self.db.add(stats)
                return stats
            except IntegrityError:
                stats = self.find_stats(sport_id, team_low_id, team_high_id)
                if stats is None:
                    raise

        for key, value in values.items():
            setattr(stats, key, value)
        return stats
