"""Strict game matcher for attaching odds events to stored games.

Matching rule:
1. Normalize and alias-resolve both internal team names
2. Consider every odds event whose commence time is within the window
   (3 hours by default) of the game's start time
3. Candidate = both canonical names equal, home/away in either orientation
4. No candidates → unmatched
5. Closest candidate by time distance wins; a tie on the smallest
   distance is rejected as ambiguous
6. The winner must carry the configured bookmaker's totals line

Only exact matches are produced, so every attached mapping has
confidence 1.0. Unmatched outcomes carry a reason string and are never
raised.

Race Condition Prevention:
The OddsEventMap is keyed by game id. A losing writer gets an
IntegrityError, rolls back its savepoint and updates the winning row instead.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional, Sequence

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core import metrics
from app.core.config import settings
from app.core.logging import get_logger
from app.models import Game, OddsEventMap, OddsSnapshot
from app.services.edges.edge_service import EdgeService
from app.services.sync.adapters.payloads import OddsEvent
from app.services.sync.utils.alias_resolver import AliasResolver
from app.services.sync.utils.lookup_tables import LookupTables, get_lookup_tables
from app.utils.timezone import utcnow

logger = get_logger(__name__)

STRICT_CONFIDENCE = 1.0

REASON_MISSING_TEAM_NAME = "Missing team name"
REASON_NO_EXACT_MATCH = "No exact match"
REASON_TIED_TIME_MATCH = "Tied time match"


@dataclass(frozen=True)
class MatchCandidate:
    event: OddsEvent
    distance: timedelta
    swapped: bool


@dataclass
class StrictMatchResult:
    """Outcome of matching one game; ``reason`` is set whenever ``event`` is None."""
    event: Optional[OddsEvent] = None
    total_line: Optional[float] = None
    confidence: float = 0.0
    reason: Optional[str] = None
    candidates: List[MatchCandidate] = field(default_factory=list)

    @property
    def matched(self) -> bool:
        return self.event is not None and self.total_line is not None


class StrictMatcher:
    """
    Attach at most one odds event to a game.

    ``find_match`` is pure; ``match_game`` also writes the OddsSnapshot,
    the OddsEventMap and the DailyEdge line on success.

    Args:
        db: SQLAlchemy session (only needed for ``match_game``)
        tables: Lookup tables for normalization and aliases
        window_hours: Time window around the game start
        bookmaker: Bookmaker whose line is attached
        market: Market key of the line
    """

    def __init__(
        self,
        db: Optional[Session] = None,
        tables: Optional[LookupTables] = None,
        window_hours: Optional[float] = None,
        bookmaker: Optional[str] = None,
        market: Optional[str] = None,
    ):
        self.db = db
        self.tables = tables or get_lookup_tables()
        self.resolver = AliasResolver(self.tables)
        self.window = timedelta(hours=settings.STRICT_MATCH_WINDOW_HOURS if window_hours is None else window_hours)
        self.bookmaker = bookmaker or settings.ODDS_BOOKMAKER
        self.market = market or settings.ODDS_MARKET

    def canonical(self, name: Optional[str], soccer: bool = False) -> str:
        return self.resolver.canonical_name(name, soccer=soccer)

    def find_match(
        self,
        home_name: Optional[str],
        away_name: Optional[str],
        start_time: datetime,
        events: Sequence[OddsEvent],
        soccer: bool = False,
    ) -> StrictMatchResult:
        """
        Find the single odds event for a game.

        Args:
            home_name: Internal home team display name
            away_name: Internal away team display name
            start_time: Game start (naive UTC)
            events: All odds events for the sport
            soccer: Apply soccer stop tokens during normalization

        Returns:
            StrictMatchResult; deterministic for the same inputs
        """
        if not home_name or not away_name:
            return StrictMatchResult(reason=REASON_MISSING_TEAM_NAME)

        home = self.canonical(home_name, soccer)
        away = self.canonical(away_name, soccer)
        label = f"{away_name} @ {home_name}"

        candidates: List[MatchCandidate] = []
        for event in events:
            distance = abs(event.commence_time - start_time)
            if distance > self.window or not event.home_team or not event.away_team:
                continue

            event_home = self.canonical(event.home_team, soccer)
            event_away = self.canonical(event.away_team, soccer)

            if (home, away) == (event_home, event_away):
                candidates.append(MatchCandidate(event, distance, swapped=False))
            elif (home, away) == (event_away, event_home):
                candidates.append(MatchCandidate(event, distance, swapped=True))

        if not candidates:
            return StrictMatchResult(reason=f"{REASON_NO_EXACT_MATCH}: {label}")

        # Stable sort keeps feed order among equal distances
        candidates.sort(key=lambda candidate: candidate.distance)
        if len(candidates) > 1 and candidates[0].distance == candidates[1].distance:
            return StrictMatchResult(reason=f"{REASON_TIED_TIME_MATCH}: {label}", candidates=candidates)

        best = candidates[0].event
        line = best.totals_line(self.bookmaker, self.market)
        if line is None:
            return StrictMatchResult(
                reason=f"No {self.bookmaker} {self.market} line: {best.away_team} @ {best.home_team}",
                candidates=candidates,
            )

        return StrictMatchResult(
            event=best,
            total_line=line,
            confidence=STRICT_CONFIDENCE,
            candidates=candidates,
        )

    def match_game(self, game: Game, events: Sequence[OddsEvent], odds_sport_key: str) -> StrictMatchResult:
        """
        Match a stored game and persist the result.

        On success the caller's session has the new OddsSnapshot, the
        upserted OddsEventMap and the updated DailyEdge committed.
        """
        home_name = game.home_team.name if game.home_team else None
        away_name = game.away_team.name if game.away_team else None

        result = self.find_match(
            home_name,
            away_name,
            game.start_time_utc,
            events,
            soccer=self.tables.is_soccer(game.sport_id),
        )
        if result.reason == REASON_MISSING_TEAM_NAME:
            result.reason = f"{REASON_MISSING_TEAM_NAME}: game {game.id}"

        if not result.matched:
            metrics.match_outcomes_total.labels(matcher="strict", outcome="unmatched").inc()
            logger.debug(f"No odds match for game {game.id}: {result.reason}")
            return result

        self.record_match(game, result, odds_sport_key)
        metrics.match_outcomes_total.labels(matcher="strict", outcome="matched").inc()
        logger.info(
            f"Attached {self.bookmaker} line {result.total_line} to game {game.id}",
            extra={"game_id": game.id, "odds_event_id": result.event.id},
        )
        return result

    def record_match(self, game: Game, result: StrictMatchResult, odds_sport_key: str) -> OddsSnapshot:
        """Write the snapshot, the event mapping and the DailyEdge line; commits."""
        event = result.event
        self.upsert_event_map(game.id, odds_sport_key, event.id, result.confidence)

        snapshot = OddsSnapshot(
            game_id=game.id,
            bookmaker=self.bookmaker,
            market=self.market,
            total_line=result.total_line,
            provider_event_id=event.id,
            raw_payload=event.model_dump(mode="json"),
            fetched_at=utcnow(),
        )
        self.db.add(snapshot)
        EdgeService(self.db).apply_line(game, result.total_line)
        self.db.commit()
        return snapshot

    def upsert_event_map(
        self,
        game_id: str,
        odds_sport_key: str,
        odds_event_id: str,
        confidence: float,
    ) -> OddsEventMap:
        """
        Create or update the event mapping for a game.

        Implementation pattern:
        1. Check for an existing mapping by game_id
        2. If not found, insert and flush
        3. On IntegrityError another writer inserted first: roll back the
           savepoint, re-read the winning row and update it
        """
        mapping = self._find_event_map(game_id)
        if mapping is None:
            mapping = OddsEventMap(
                game_id=game_id,
                odds_sport_key=odds_sport_key,
                odds_event_id=odds_event_id,
                confidence=confidence,
            )
            try:
                with self.db.begin_nested():
                    self.db.add(mapping)
                return mapping
            except IntegrityError:
                mapping = self._find_event_map(game_id)
                if mapping is None:
                    raise
                logger.debug(f"Event mapping for game {game_id} created by another process, using existing")

        mapping.odds_sport_key = odds_sport_key
        mapping.odds_event_id = odds_event_id
        mapping.confidence = confidence
        mapping.updated_at = utcnow()
        return mapping

    def _find_event_map(self, game_id: str) -> Optional[OddsEventMap]:
        return self.db.query(OddsEventMap).filter(OddsEventMap.game_id == game_id).first()
