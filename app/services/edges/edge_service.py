"""Daily edge computation and accuracy tallies.

DailyEdge rows are the per-game-per-day rollup read by the edges API:

- historical head-to-head totals for the game's ordered team pair
  (n_h2h, P05, P95, median, visibility)
- the offered line, its percentile against those totals and the
  resulting over/under/none classification

Rows are recomputed whenever new totals arrive (compute job) or a new
line is attached (strict matcher).
"""
from datetime import date, timedelta
from typing import Dict, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.logging import get_logger
from app.models import DailyEdge, Game
from app.repositories import GameRepository, MatchupRepository
from app.services.edges.percentiles import (
    EdgeDirection,
    classify_edge,
    is_sufficient_sample,
    line_percentile,
    summarize,
    tally_edge_results,
)
from app.services.sync.game_status import GameStatus
from app.services.sync.utils.pairing import order_pair
from app.utils.timezone import local_date_of, local_day_bounds_utc, today_local

logger = get_logger(__name__)


class EdgeService:
    """Compute, store and grade DailyEdge rows."""

    def __init__(self, db: Session):
        self.db = db
        self.games = GameRepository(db)
        self.matchups = MatchupRepository(db)

    def pair_totals(self, game: Game) -> List[int]:
        low, high = order_pair(game.home_team_id, game.away_team_id)
        return self.matchups.totals_for_pair(game.sport_id, low, high)

    def find_edge(self, game_id: str, date_local: date) -> Optional[DailyEdge]:
        return self.db.query(DailyEdge).filter(
            DailyEdge.date_local == date_local,
            DailyEdge.game_id == game_id,
        ).first()

    def ensure_edge(self, game: Game, date_local: Optional[date] = None) -> DailyEdge:
        """DailyEdge row for a game's local date, created empty if missing."""
        date_local = date_local or local_date_of(game.start_time_utc)
        edge = self.find_edge(game.id, date_local)
        if edge is not None:
            return edge

        edge = DailyEdge(date_local=date_local, game_id=game.id, sport_id=game.sport_id, n_h2h=0)
        try:
            # A lost race rolls back only this insert
            with self.db.begin_nested():
                self.db.add(edge)
        except IntegrityError:
            edge = self.find_edge(game.id, date_local)
            if edge is None:
                raise
        return edge

    def refresh_history(self, game: Game, date_local: Optional[date] = None) -> DailyEdge:
        """
        Recompute the head-to-head statistics on a game's DailyEdge.

        MatchupStats is only written for sufficient samples; the line
        percentile is re-applied when a line is already attached.
        Flushes; the caller commits.
        """
        edge = self.ensure_edge(game, date_local)
        totals = self.pair_totals(game)
        summary = summarize(totals)

        edge.n_h2h = len(totals)
        edge.is_visible = is_sufficient_sample(len(totals))
        if summary is None:
            edge.p05 = edge.p95 = edge.median = None
        else:
            edge.p05, edge.p95, edge.median = summary.p05, summary.p95, summary.median
            if edge.is_visible:
                low, high = order_pair(game.home_team_id, game.away_team_id)
                self.matchups.upsert_stats(game.sport_id, low, high, summary)

        if edge.dk_total_line is not None:
            self._classify(edge, totals, edge.dk_total_line)
        return edge

    def apply_line(self, game: Game, line: float, date_local: Optional[date] = None) -> DailyEdge:
        """Attach an offered line to a game's DailyEdge and classify it. Flushes; the caller commits."""
        edge = self.ensure_edge(game, date_local)
        edge.dk_offered = True
        edge.dk_total_line = line
        self._classify(edge, self.pair_totals(game), line)
        return edge

    @staticmethod
    def _classify(edge: DailyEdge, totals: List[int], line: float) -> None:
        percentile = line_percentile(totals, line)
        edge.dk_line_percentile = percentile
        edge.edge_classification = classify_edge(percentile).value

    # ========================================================================
    # Jobs
    # ========================================================================

    def compute_for_date(self, sport_id: str, date_local: Optional[date] = None) -> Dict:
        """
        Recompute DailyEdge rows for every game on a local date.

        Returns:
            Counters: games, computed, visible, hidden, errors, error_samples
        """
        date_local = date_local or today_local()
        start, end = local_day_bounds_utc(date_local)
        games = self.games.find_starting_between(sport_id, start, end)

        result = {
            "date": date_local.isoformat(),
            "games": len(games),
            "computed": 0,
            "visible": 0,
            "hidden": 0,
            "errors": 0,
            "error_samples": [],
        }

        for game in games:
            try:
                edge = self.refresh_history(game, date_local)
                self.db.commit()
            except SQLAlchemyError as e:
                self.db.rollback()
                result["errors"] += 1
                if len(result["error_samples"]) < settings.ERROR_SAMPLE_LIMIT:
                    result["error_samples"].append(f"game {game.id}: {type(e).__name__}")
                logger.warning(f"Edge computation failed for game {game.id}: {e}")
                continue

            result["computed"] += 1
            if edge.is_visible:
                result["visible"] += 1
            else:
                result["hidden"] += 1

        logger.info(
            f"Computed {result['computed']} edges for {sport_id} on {date_local}",
            extra={"sport": sport_id, "visible": result["visible"], "hidden": result["hidden"]},
        )
        return result

    # ========================================================================
    # Reads
    # ========================================================================

    def edges_for_date(self, date_local: date, sport_id: Optional[str] = None) -> List[DailyEdge]:
        query = self.db.query(DailyEdge).filter(DailyEdge.date_local == date_local)
        if sport_id:
            query = query.filter(DailyEdge.sport_id == sport_id)
        return query.order_by(DailyEdge.sport_id, DailyEdge.game_id).all()

    def accuracy(self, days: int = 30, sport_id: Optional[str] = None, until: Optional[date] = None) -> Dict:
        """
        Grade recent edges against final totals.

        Only edges with a line, a percentile and a final game are graded;
        pushes and no-edge rows are excluded from the hit rate.
        """
        end = until or today_local()
        start = end - timedelta(days=days)

        query = self.db.query(DailyEdge, Game.final_total).join(Game, Game.id == DailyEdge.game_id).filter(
            DailyEdge.date_local > start,
            DailyEdge.date_local <= end,
            DailyEdge.dk_total_line.isnot(None),
            DailyEdge.dk_line_percentile.isnot(None),
            Game.status == GameStatus.FINAL.value,
            Game.final_total.isnot(None),
        )
        if sport_id:
            query = query.filter(DailyEdge.sport_id == sport_id)

        rows = query.all()
        tally = tally_edge_results(
            (edge.edge_classification or EdgeDirection.NONE.value, final_total, edge.dk_total_line)
            for edge, final_total in rows
        )
        return {
            "days": days,
            "from": (start + timedelta(days=1)).isoformat(),
            "to": end.isoformat(),
            "sport": sport_id,
            "edges_considered": len(rows),
            **tally.as_dict(),
        }


def serialize_edge(edge: DailyEdge) -> Dict:
    game = edge.game
    return {
        "id": edge.id,
        "date": edge.date_local.isoformat(),
        "game_id": edge.game_id,
        "sport": edge.sport_id,
        "home_team": game.home_team.name if game is not None and game.home_team else None,
        "away_team": game.away_team.name if game is not None and game.away_team else None,
        "start_time_utc": game.start_time_utc.isoformat() if game is not None else None,
        "n_h2h": edge.n_h2h,
        "p05": edge.p05,
        "p95": edge.p95,
        "median": edge.median,
        "is_visible": edge.is_visible,
        "insufficient_data": not edge.is_visible,
        "dk_offered": edge.dk_offered,
        "dk_total_line": edge.dk_total_line,
        "dk_line_percentile": edge.dk_line_percentile,
        "edge_classification": edge.edge_classification,
    }
