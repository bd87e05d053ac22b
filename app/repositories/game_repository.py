"""
Game Repository for stored games.

Usage:
    repo = GameRepository(db)
    game = repo.find_by_provider_key("nba", "bdl-nba-15907925")
    tonight = repo.find_starting_between("nba", start, end)
"""
from datetime import date, datetime
from typing import List, Optional

from app.models import Game
from app.repositories.base import BaseRepository
from app.services.sync.game_status import GameStatus
from app.utils.timezone import utc_day_bounds


class GameRepository(BaseRepository[Game]):
    """Repository for game data access."""

    def __init__(self, db):
        super().__init__(Game, db)

    def find_by_provider_key(self, sport_id: str, provider_game_key: str) -> Optional[Game]:
        return self.where_first(
            Game.sport_id == sport_id,
            Game.provider_game_key == provider_game_key,
        )

    def find_starting_between(self, sport_id: str, start: datetime, end: datetime) -> List[Game]:
        """Games of a sport whose start time falls in [start, end)."""
        return self.in_date_range("start_time_utc", start, end, Game.sport_id == sport_id)

    def find_finals_on(self, sport_id: str, day: date) -> List[Game]:
        """Final games whose start time falls on a UTC date."""
        start, end = utc_day_bounds(day)
        return self.in_date_range(
            "start_time_utc", start, end,
            Game.sport_id == sport_id,
            Game.status == GameStatus.FINAL.value,
        )
