"""
Model exports.

Usage:
    from app.models import Game, MatchupGame, DailyEdge
"""
from app.models.models import (
    Base,
    Team,
    Franchise,
    TeamVersion,
    TeamVersionMap,
    ProviderMapping,
    Game,
    MatchupGame,
    MatchupStats,
    OddsSnapshot,
    OddsEventMap,
    DailyEdge,
    JobRun,
)

__all__ = [
    "Base",
    "Team",
    "Franchise",
    "TeamVersion",
    "TeamVersionMap",
    "ProviderMapping",
    "Game",
    "MatchupGame",
    "MatchupStats",
    "OddsSnapshot",
    "OddsEventMap",
    "DailyEdge",
    "JobRun",
]
