"""
Database models for the H2H edge sync service.

All timestamps are naive UTC. Uniqueness constraints below carry the
idempotency of the ingestion and matching jobs: every writer re-reads the
winning row on IntegrityError instead of locking.
"""
import uuid

from sqlalchemy import (
    Column, String, Float, Integer, DateTime, Date, ForeignKey, Boolean, Text,
    Index, UniqueConstraint, JSON,
)
from sqlalchemy.orm import relationship, declarative_base

from app.utils.timezone import utcnow

Base = declarative_base()


def new_id() -> str:
    return str(uuid.uuid4())


# =============================================================================
# IDENTITY: TEAMS, FRANCHISES, VERSIONS
# =============================================================================

class Team(Base):
    """
    Provider-facing team row used for day-to-day joins.

    Created on first sighting from any provider. Abbreviation and city may
    be back-filled later. Never deleted.
    """
    __tablename__ = "teams"

    id = Column(String(36), primary_key=True, default=new_id)
    sport_id = Column(String(10), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    abbreviation = Column(String(10), nullable=True)
    city = Column(String(100), nullable=True)
    provider = Column(String(32), nullable=False, default="balldontlie")
    provider_team_key = Column(String(100), nullable=False)  # e.g. "bdl-nba-LAL"
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint('sport_id', 'provider_team_key', name='uq_teams_sport_provider_key'),
        UniqueConstraint('sport_id', 'abbreviation', name='uq_teams_sport_abbreviation'),
    )


class Franchise(Base):
    """Enduring lineage identity, e.g. "Oklahoma City Thunder" across the SEA move."""
    __tablename__ = "franchises"

    id = Column(String(36), primary_key=True, default=new_id)
    sport_id = Column(String(10), nullable=False, index=True)
    canonical_name = Column(String(255), nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    versions = relationship(
        "TeamVersion", back_populates="franchise", order_by="TeamVersion.effective_from"
    )

    __table_args__ = (
        UniqueConstraint('sport_id', 'canonical_name', name='uq_franchises_sport_name'),
    )


class TeamVersion(Base):
    """
    Time-bounded identity within a franchise.

    ``effective_to`` is NULL for the current version. The registry keeps
    at most one open version per franchise and rejects overlapping ranges.
    """
    __tablename__ = "team_versions"

    id = Column(String(36), primary_key=True, default=new_id)
    franchise_id = Column(String(36), ForeignKey("franchises.id"), nullable=False, index=True)
    sport_id = Column(String(10), nullable=False)
    display_name = Column(String(255), nullable=False)
    city = Column(String(100), nullable=True)
    abbreviation = Column(String(10), nullable=True)
    effective_from = Column(Date, nullable=False)
    effective_to = Column(Date, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    franchise = relationship("Franchise", back_populates="versions")

    __table_args__ = (
        Index('ix_team_versions_franchise_range', 'franchise_id', 'effective_from'),
    )


class TeamVersionMap(Base):
    """Links a provider team key to exactly one TeamVersion at a time."""
    __tablename__ = "team_version_map"

    id = Column(String(36), primary_key=True, default=new_id)
    sport_id = Column(String(10), nullable=False)
    provider = Column(String(32), nullable=False)
    provider_team_key = Column(String(100), nullable=False)
    team_version_id = Column(String(36), ForeignKey("team_versions.id"), nullable=False)
    franchise_id = Column(String(36), ForeignKey("franchises.id"), nullable=False)
    team_id = Column(String(36), ForeignKey("teams.id"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint('sport_id', 'provider', 'provider_team_key', name='uq_team_version_map_key'),
    )


class ProviderMapping(Base):
    """
    Participant-feed name → Team, written by the fuzzy matcher.

    Only rows with confidence at or above the persistence floor are stored.
    """
    __tablename__ = "provider_mappings"

    id = Column(String(36), primary_key=True, default=new_id)
    sport_id = Column(String(10), nullable=False)
    provider = Column(String(32), nullable=False, default="the_odds_api")
    provider_team_name = Column(String(255), nullable=False)
    team_id = Column(String(36), ForeignKey("teams.id"), nullable=False)
    confidence = Column(Float, nullable=False)
    method = Column(String(16), nullable=False)  # exact, alias, fuzzy
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint('sport_id', 'provider', 'provider_team_name', name='uq_provider_mappings_name'),
    )


# =============================================================================
# GAMES & MATCHUPS
# =============================================================================

class Game(Base):
    """
    One game from the game feed, keyed by provider game key.

    Mutated in place as status progresses. Corrected in place by the score
    verifier when it disagrees with the authoritative scoreboard.
    """
    __tablename__ = "games"

    id = Column(String(36), primary_key=True, default=new_id)
    sport_id = Column(String(10), nullable=False, index=True)
    provider = Column(String(32), nullable=False, default="balldontlie")
    provider_game_key = Column(String(100), nullable=False)  # e.g. "bdl-nba-15907925"
    home_team_id = Column(String(36), ForeignKey("teams.id"), nullable=False)
    away_team_id = Column(String(36), ForeignKey("teams.id"), nullable=False)
    home_franchise_id = Column(String(36), ForeignKey("franchises.id"), nullable=True)
    away_franchise_id = Column(String(36), ForeignKey("franchises.id"), nullable=True)
    start_time_utc = Column(DateTime, nullable=False, index=True)
    status = Column(String(16), nullable=False, default="scheduled")  # scheduled, live, final
    home_score = Column(Integer, nullable=True)
    away_score = Column(Integer, nullable=True)
    final_total = Column(Integer, nullable=True)
    season_year = Column(Integer, nullable=True)
    decade = Column(String(8), nullable=True)
    is_playoff = Column(Boolean, nullable=False, default=False)
    playoff_round = Column(String(32), nullable=True)
    week_round = Column(Integer, nullable=True)
    last_seen_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    home_team = relationship("Team", foreign_keys=[home_team_id])
    away_team = relationship("Team", foreign_keys=[away_team_id])

    __table_args__ = (
        UniqueConstraint('sport_id', 'provider_game_key', name='uq_games_sport_provider_key'),
        Index('ix_games_sport_start', 'sport_id', 'start_time_utc'),
    )


class MatchupGame(Base):
    """
    One row per finished game, keyed by the canonically ordered team pair.

    ``team_low_id < team_high_id`` always holds, so head-to-head queries
    never check both orderings. The franchise pair is ordered the same way.
    """
    __tablename__ = "matchup_games"

    id = Column(String(36), primary_key=True, default=new_id)
    game_id = Column(String(36), ForeignKey("games.id"), nullable=False)
    sport_id = Column(String(10), nullable=False)
    team_low_id = Column(String(36), ForeignKey("teams.id"), nullable=False)
    team_high_id = Column(String(36), ForeignKey("teams.id"), nullable=False)
    franchise_low_id = Column(String(36), ForeignKey("franchises.id"), nullable=True)
    franchise_high_id = Column(String(36), ForeignKey("franchises.id"), nullable=True)
    total = Column(Integer, nullable=False)
    played_at_utc = Column(DateTime, nullable=False)
    season_year = Column(Integer, nullable=True)
    decade = Column(String(8), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint('game_id', name='uq_matchup_games_game'),
        Index('ix_matchup_games_pair', 'sport_id', 'team_low_id', 'team_high_id'),
    )


class MatchupStats(Base):
    """Order statistics per team pair; only written for sufficient samples."""
    __tablename__ = "matchup_stats"

    id = Column(String(36), primary_key=True, default=new_id)
    sport_id = Column(String(10), nullable=False)
    team_low_id = Column(String(36), ForeignKey("teams.id"), nullable=False)
    team_high_id = Column(String(36), ForeignKey("teams.id"), nullable=False)
    n_games = Column(Integer, nullable=False)
    p05 = Column(Float, nullable=False)
    p95 = Column(Float, nullable=False)
    median = Column(Float, nullable=False)
    min_total = Column(Integer, nullable=False)
    max_total = Column(Integer, nullable=False)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint('sport_id', 'team_low_id', 'team_high_id', name='uq_matchup_stats_pair'),
    )


# =============================================================================
# ODDS
# =============================================================================

class OddsSnapshot(Base):
    """Append-only record of one successful odds-to-game match."""
    __tablename__ = "odds_snapshots"

    id = Column(String(36), primary_key=True, default=new_id)
    game_id = Column(String(36), ForeignKey("games.id"), nullable=False, index=True)
    bookmaker = Column(String(64), nullable=False)
    market = Column(String(32), nullable=False, default="totals")
    total_line = Column(Float, nullable=False)
    provider_event_id = Column(String(100), nullable=True)
    raw_payload = Column(JSON, nullable=True)
    fetched_at = Column(DateTime, nullable=False, default=utcnow)


class OddsEventMap(Base):
    """(provider sport key, provider event id) → game, at most one per game."""
    __tablename__ = "odds_event_map"

    id = Column(String(36), primary_key=True, default=new_id)
    game_id = Column(String(36), ForeignKey("games.id"), nullable=False)
    odds_sport_key = Column(String(64), nullable=False)
    odds_event_id = Column(String(100), nullable=False)
    confidence = Column(Float, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint('game_id', name='uq_odds_event_map_game'),
        Index('ix_odds_event_map_event', 'odds_sport_key', 'odds_event_id'),
    )


# =============================================================================
# EDGES
# =============================================================================

class DailyEdge(Base):
    """
    Per-game-per-day rollup of historical totals and the offered line.

    Recomputed when new historical totals or a new line arrive.
    """
    __tablename__ = "daily_edges"

    id = Column(String(36), primary_key=True, default=new_id)
    date_local = Column(Date, nullable=False, index=True)
    game_id = Column(String(36), ForeignKey("games.id"), nullable=False)
    sport_id = Column(String(10), nullable=False)
    n_h2h = Column(Integer, nullable=False, default=0)
    p05 = Column(Float, nullable=True)
    p95 = Column(Float, nullable=True)
    median = Column(Float, nullable=True)
    is_visible = Column(Boolean, nullable=False, default=False)
    dk_offered = Column(Boolean, nullable=False, default=False)
    dk_total_line = Column(Float, nullable=True)
    dk_line_percentile = Column(Float, nullable=True)
    edge_classification = Column(String(16), nullable=True)  # over, under, none
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    game = relationship("Game")

    __table_args__ = (
        UniqueConstraint('date_local', 'game_id', name='uq_daily_edges_date_game'),
    )


# =============================================================================
# JOB LEDGER
# =============================================================================

class JobRun(Base):
    """Audit row bracketing every batch job; never deleted."""
    __tablename__ = "job_runs"

    id = Column(String(36), primary_key=True, default=new_id)
    job_name = Column(String(64), nullable=False, index=True)
    status = Column(String(32), nullable=False, default="running")
    started_at = Column(DateTime, nullable=False, default=utcnow)
    finished_at = Column(DateTime, nullable=True)
    details = Column(JSON, nullable=True)
    error = Column(Text, nullable=True)

    __table_args__ = (
        Index('ix_job_runs_started', 'started_at'),
    )
