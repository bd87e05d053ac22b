"""
Repository layer for data access.

Usage:
    from app.repositories import GameRepository, MatchupRepository
    from app.core.database import SessionLocal

    db = SessionLocal()
    games = GameRepository(db).find_finals_on("nba", date(2024, 1, 15))
    db.close()
"""

from app.repositories.base import BaseRepository
from app.repositories.game_repository import GameRepository
from app.repositories.matchup_repository import MatchupRepository

__all__ = [
    "BaseRepository",
    "GameRepository",
    "MatchupRepository",
]
