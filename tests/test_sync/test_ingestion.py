"""
Tests for the ingestion and backfill engine.

Test Strategy:
1. Upsert by provider game key: re-running the same pages inserts nothing
2. MatchupGame rows only for final games with both scores
3. Status never regresses and regressed observations keep final scores
4. Unknown teams are skipped, malformed rows and failed pages are errors
5. Season backfill ingests finals only

Each test follows the pattern:
- Given: A fake game feed yielding fixed pages
- When: The engine consumes the feed
- Then: Counters and stored rows match exactly
"""
from datetime import date, datetime

import pytest

from app.models import Game, MatchupGame
from app.services.sync.adapters.balldontlie_adapter import FeedPage
from app.services.sync.ingestion import IngestionEngine, provider_game_key
from conftest import feed_row

DAY = datetime(2024, 1, 15, 19, 0)


class FakeFeed:
    """Game feed double yielding the same pages for any request."""

    def __init__(self, pages):
        self.pages = pages
        self.requests = []

    async def iter_games_by_dates(self, sport_id, dates):
        self.requests.append((sport_id, list(dates)))
        for page in self.pages:
            yield page

    async def iter_games_by_seasons(self, sport_id, seasons):
        self.requests.append((sport_id, list(seasons)))
        for page in self.pages:
            yield page


def slate_pages():
    return [
        FeedPage(rows=[
            feed_row(1, DAY, "LAL", "BOS", home_score=110, away_score=100),
            feed_row(2, DAY, "MIA", "NYK", home_score=99, away_score=101),
        ]),
        FeedPage(rows=[
            feed_row(3, DAY, "DEN", "PHX", status="7:00 pm ET", home_score=None, away_score=None),
            feed_row(4, DAY, "ZZZ", "BOS"),
            {"id": 5, "datetime": "2024-01-15T19:00:00Z"},
        ]),
    ]


@pytest.fixture
def engine_for(db_session, tables):
    def _engine(pages):
        return IngestionEngine(db_session, FakeFeed(pages), tables)
    return _engine


class TestSyncDates:
    """Test suite for date-range ingestion."""

    # ─────────────────────────────────────────────────────────────
    # Counter Tests
    # ─────────────────────────────────────────────────────────────

    @pytest.mark.asyncio
    async def test_first_run_counters(self, db_session, engine_for):
        """Should insert valid games, skip unknown teams and count bad rows."""
        result = await engine_for(slate_pages()).sync_dates("nba", [date(2024, 1, 15)])

        assert result["fetched"] == 5
        assert result["inserted"] == 3
        assert result["updated"] == 0
        assert result["upserted"] == 3
        assert result["matchups"] == 2
        assert result["skipped"] == 1
        assert result["errors"] == 1
        assert result["error_samples"][0].startswith("game 5:")
        assert db_session.query(Game).count() == 3
        assert db_session.query(MatchupGame).count() == 2

    @pytest.mark.asyncio
    async def test_rerun_is_idempotent(self, db_session, engine_for):
        """Should update instead of insert when the same dates are re-run."""
        first = await engine_for(slate_pages()).sync_dates("nba", [date(2024, 1, 15)])
        second = await engine_for(slate_pages()).sync_dates("nba", [date(2024, 1, 15)])

        assert second["inserted"] == 0
        assert second["updated"] == 3
        assert second["upserted"] == first["upserted"]
        assert second["matchups"] == 0
        assert db_session.query(Game).count() == 3
        assert db_session.query(MatchupGame).count() == 2

    @pytest.mark.asyncio
    async def test_failed_page_is_an_error(self, engine_for):
        """Should count an abandoned page as one error and keep going."""
        pages = [FeedPage(error="balldontlie: HTTP 503 after 3 attempts")]

        result = await engine_for(pages).sync_dates("nba", [date(2024, 1, 15)])

        assert result["errors"] == 1
        assert result["fetched"] == 0

    @pytest.mark.asyncio
    async def test_no_dates(self, engine_for):
        """Should do nothing for an empty date list."""
        feed_pages = slate_pages()
        engine = engine_for(feed_pages)

        result = await engine.sync_dates("nba", [])

        assert result["fetched"] == 0
        assert engine.adapter.requests == []

    # ─────────────────────────────────────────────────────────────
    # Row Content Tests
    # ─────────────────────────────────────────────────────────────

    @pytest.mark.asyncio
    async def test_stored_game_fields(self, db_session, engine_for):
        """Should store keys, scores, totals and franchise ids."""
        await engine_for(slate_pages()).sync_dates("nba", [date(2024, 1, 15)])

        game = db_session.query(Game).filter(Game.provider_game_key == provider_game_key("nba", 1)).one()
        assert game.provider_game_key == "bdl-nba-1"
        assert game.status == "final"
        assert (game.home_score, game.away_score, game.final_total) == (110, 100, 210)
        assert game.decade == "2020s"
        assert game.home_franchise_id is not None

        scheduled = db_session.query(Game).filter(Game.provider_game_key == "bdl-nba-3").one()
        assert scheduled.status == "scheduled"
        assert scheduled.final_total is None

    @pytest.mark.asyncio
    async def test_matchup_pair_is_ordered(self, db_session, engine_for):
        """Should store the team pair with the smaller id first."""
        await engine_for(slate_pages()).sync_dates("nba", [date(2024, 1, 15)])

        for matchup in db_session.query(MatchupGame).all():
            assert matchup.team_low_id < matchup.team_high_id
            assert matchup.franchise_low_id <= matchup.franchise_high_id

    @pytest.mark.asyncio
    async def test_score_change_updates_matchup(self, db_session, engine_for):
        """Should keep the matchup total equal to the game total."""
        await engine_for([FeedPage(rows=[feed_row(1, DAY, "LAL", "BOS", home_score=110, away_score=100)])]).sync_dates(
            "nba", [date(2024, 1, 15)]
        )
        result = await engine_for(
            [FeedPage(rows=[feed_row(1, DAY, "LAL", "BOS", home_score=112, away_score=100)])]
        ).sync_dates("nba", [date(2024, 1, 15)])

        assert result["matchups"] == 1
        game = db_session.query(Game).one()
        assert game.final_total == 212
        assert db_session.query(MatchupGame).one().total == 212

    @pytest.mark.asyncio
    async def test_status_never_regresses(self, db_session, engine_for):
        """Should keep final status and scores when a stale live row arrives."""
        await engine_for([FeedPage(rows=[feed_row(1, DAY, "LAL", "BOS", home_score=110, away_score=100)])]).sync_dates(
            "nba", [date(2024, 1, 15)]
        )
        await engine_for(
            [FeedPage(rows=[feed_row(1, DAY, "LAL", "BOS", status="4th Qtr", home_score=90, away_score=88)])]
        ).sync_dates("nba", [date(2024, 1, 15)])

        game = db_session.query(Game).one()
        assert game.status == "final"
        assert (game.home_score, game.away_score) == (110, 100)
        assert db_session.query(MatchupGame).one().total == 210

    @pytest.mark.asyncio
    async def test_live_game_progresses_to_final(self, db_session, engine_for):
        """Should create the matchup once a live game turns final."""
        await engine_for(
            [FeedPage(rows=[feed_row(1, DAY, "LAL", "BOS", status="3rd Qtr", home_score=80, away_score=75)])]
        ).sync_dates("nba", [date(2024, 1, 15)])
        assert db_session.query(MatchupGame).count() == 0

        await engine_for([FeedPage(rows=[feed_row(1, DAY, "LAL", "BOS")])]).sync_dates("nba", [date(2024, 1, 15)])

        assert db_session.query(Game).one().status == "final"
        assert db_session.query(MatchupGame).count() == 1


class TestBackfillSeasons:
    """Test suite for season backfills."""

    @pytest.mark.asyncio
    async def test_finals_only(self, db_session, engine_for):
        """Should skip games that are not final."""
        engine = engine_for(slate_pages())

        result = await engine.backfill_seasons("nba", [2023])

        assert engine.adapter.requests == [("nba", [2023])]
        assert result["inserted"] == 2
        assert result["skipped"] == 2
        assert result["errors"] == 1
        assert db_session.query(Game).count() == 2
