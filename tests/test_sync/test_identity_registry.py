"""
Tests for the franchise identity registry.

Test Strategy:
1. Lookup-or-create of franchise, team, first version and provider key map
2. Unknown abbreviations return None and create nothing
3. Relocated abbreviations share one franchise lineage
4. TeamVersion ranges never overlap; rebrands close the open version
5. A run crossing a rebrand resolves each game to the version in effect
6. Franchise id backfill on games stored without franchises

Each test follows the pattern:
- Given: A clean database and a provider abbreviation
- When: The registry resolves or versions it
- Then: Exactly the expected rows exist
"""
from datetime import date, datetime

import pytest

from app.core.exceptions import VersionOverlapError
from app.models import Franchise, Game, MatchupGame, Team, TeamVersion, TeamVersionMap
from app.services.sync.identity_registry import FranchiseRegistry, RunCache


@pytest.fixture
def registry(db_session, tables):
    return FranchiseRegistry(db_session, tables)


class TestEnsureTeamAndFranchise:
    """Test suite for abbreviation resolution."""

    def test_first_sighting_creates_rows(self, db_session, registry):
        """Should create franchise, team, open version and key map."""
        identity = registry.ensure_team_and_franchise("nba", "lal", seen_on=date(2024, 1, 15))

        assert identity.abbreviation == "LAL"
        assert identity.display_name == "Los Angeles Lakers"

        franchise = db_session.query(Franchise).one()
        assert franchise.canonical_name == "Los Angeles Lakers"

        team = db_session.query(Team).one()
        assert team.provider_team_key == "bdl-nba-LAL"

        version = db_session.query(TeamVersion).one()
        assert version.effective_from == date(2024, 1, 15)
        assert version.effective_to is None

        mapping = db_session.query(TeamVersionMap).one()
        assert mapping.provider_team_key == "bdl-nba-LAL"
        assert mapping.team_version_id == version.id

    def test_second_call_reuses_rows(self, db_session, registry):
        """Should return the same identity without new rows."""
        first = registry.ensure_team_and_franchise("nba", "LAL", seen_on=date(2024, 1, 15))
        second = registry.ensure_team_and_franchise("nba", "LAL", seen_on=date(2024, 1, 16))

        assert first == second
        assert db_session.query(Team).count() == 1
        assert db_session.query(TeamVersion).count() == 1

    def test_run_cache_hits(self, registry):
        """Should serve repeat lookups from the run cache."""
        cache = RunCache()

        registry.ensure_team_and_franchise("nba", "LAL", cache)
        registry.ensure_team_and_franchise("nba", "lal", cache)

        assert cache.hits == 1
        assert len(cache) == 1

    def test_unknown_abbreviation(self, db_session, registry):
        """Should return None and never guess."""
        cache = RunCache()

        assert registry.ensure_team_and_franchise("nba", "ZZZ", cache) is None
        assert cache.is_unknown("nba", "zzz")
        assert db_session.query(Team).count() == 0
        assert db_session.query(Franchise).count() == 0

    def test_same_abbreviation_differs_by_sport(self, registry):
        """Should keep sports apart."""
        nba = registry.ensure_team_and_franchise("nba", "BOS")
        nhl = registry.ensure_team_and_franchise("nhl", "BOS")

        assert nba.franchise_id != nhl.franchise_id
        assert nhl.display_name == "Boston Bruins"

    def test_relocated_abbreviation_shares_lineage(self, db_session, registry):
        """Should map SEA and OKC to one franchise with two team rows."""
        sonics = registry.ensure_team_and_franchise("nba", "SEA", seen_on=date(2005, 1, 1))
        thunder = registry.ensure_team_and_franchise("nba", "OKC", seen_on=date(2010, 1, 1))

        assert sonics.franchise_id == thunder.franchise_id
        assert sonics.team_id != thunder.team_id
        assert db_session.query(Franchise).count() == 1

    def test_older_game_extends_first_version(self, db_session, registry):
        """Should move the first version's start back for older games."""
        registry.ensure_team_and_franchise("nba", "LAL", seen_on=date(2024, 1, 15))
        registry.ensure_team_and_franchise("nba", "LAL", seen_on=date(2020, 1, 1))

        assert db_session.query(TeamVersion).one().effective_from == date(2020, 1, 1)


class TestVersions:
    """Test suite for TeamVersion bookkeeping."""

    def test_register_version_closes_open_version(self, registry):
        """Should close the open version the day before the new one starts."""
        identity = registry.ensure_team_and_franchise("nba", "SEA", seen_on=date(2005, 1, 1))

        new = registry.register_version(
            identity.franchise_id, "Oklahoma City Thunder", date(2008, 7, 3), city="Oklahoma City", abbreviation="OKC"
        )

        versions = registry.versions(identity.franchise_id)
        assert len(versions) == 2
        assert versions[0].effective_to == date(2008, 7, 2)
        assert registry.current_version(identity.franchise_id).id == new.id

    def test_version_on(self, registry):
        """Should return the version in effect on a date."""
        identity = registry.ensure_team_and_franchise("nba", "SEA", seen_on=date(2005, 1, 1))
        new = registry.register_version(identity.franchise_id, "Oklahoma City Thunder", date(2008, 7, 3))

        assert registry.version_on(identity.franchise_id, date(2006, 1, 1)).id == identity.team_version_id
        assert registry.version_on(identity.franchise_id, date(2008, 7, 3)).id == new.id
        assert registry.version_on(identity.franchise_id, date(2000, 1, 1)) is None

    def test_overlapping_version_rejected(self, registry):
        """Should refuse a version starting inside an existing range."""
        identity = registry.ensure_team_and_franchise("nba", "SEA", seen_on=date(2005, 1, 1))
        registry.register_version(identity.franchise_id, "Oklahoma City Thunder", date(2008, 7, 3))

        with pytest.raises(VersionOverlapError):
            registry.register_version(identity.franchise_id, "Somewhere Else", date(2008, 1, 1))

        assert len(registry.versions(identity.franchise_id)) == 2

    def test_unknown_franchise(self, registry):
        """Should raise for an unknown franchise id."""
        with pytest.raises(LookupError):
            registry.register_version("missing", "Nobody", date(2020, 1, 1))

    def test_run_across_rebrand_resolves_each_version(self, db_session, registry):
        """Should resolve games on either side of a rebrand to their own version within one run."""
        identity = registry.ensure_team_and_franchise("nba", "SEA", seen_on=date(2005, 1, 1))
        new = registry.register_version(identity.franchise_id, "Oklahoma City Thunder", date(2008, 7, 3))
        cache = RunCache()

        before = registry.ensure_team_and_franchise("nba", "SEA", cache, seen_on=date(2008, 3, 1))
        after = registry.ensure_team_and_franchise("nba", "SEA", cache, seen_on=date(2008, 11, 1))
        again = registry.ensure_team_and_franchise("nba", "SEA", cache, seen_on=date(2008, 12, 1))

        assert before.team_version_id == identity.team_version_id
        assert after.team_version_id == new.id
        assert again is after
        assert (cache.misses, cache.hits) == (2, 1)
        assert db_session.query(TeamVersionMap).one().team_version_id == new.id

    def test_default_sighting_date_is_utc(self, registry, monkeypatch):
        """Should open the first version on the current UTC date."""
        # 21:00 Eastern on Jan 15 is already Jan 16 in UTC
        monkeypatch.setattr(
            "app.services.sync.identity_registry.utcnow", lambda: datetime(2024, 1, 16, 2, 0)
        )

        identity = registry.ensure_team_and_franchise("nba", "LAL")

        assert registry.versions(identity.franchise_id)[0].effective_from == date(2024, 1, 16)


class TestFranchiseBackfill:
    """Test suite for filling missing franchise ids."""

    def test_backfill_sets_franchises_and_matchup_pair(self, db_session, registry):
        """Should fill both sides and re-order the matchup franchise pair."""
        home = registry.get_or_create_team("nba", "LAL", "Los Angeles Lakers")
        away = registry.get_or_create_team("nba", "BOS", "Boston Celtics")
        game = Game(
            sport_id="nba",
            provider_game_key="bdl-nba-1",
            home_team_id=home.id,
            away_team_id=away.id,
            start_time_utc=datetime(2024, 1, 15, 19, 0),
            status="final",
            home_score=110,
            away_score=100,
            final_total=210,
        )
        db_session.add(game)
        db_session.flush()
        low, high = sorted([home.id, away.id])
        db_session.add(MatchupGame(
            game_id=game.id,
            sport_id="nba",
            team_low_id=low,
            team_high_id=high,
            total=210,
            played_at_utc=game.start_time_utc,
        ))
        db_session.commit()

        result = registry.backfill_franchise_ids("nba", date(2024, 1, 15), date(2024, 1, 15))

        assert result["checked"] == 1
        assert result["fixed"] == 1
        assert result["matchups_fixed"] == 1

        db_session.refresh(game)
        assert game.home_franchise_id is not None
        assert game.away_franchise_id is not None

        matchup = db_session.query(MatchupGame).one()
        assert matchup.franchise_low_id == min(game.home_franchise_id, game.away_franchise_id)
        assert matchup.franchise_high_id == max(game.home_franchise_id, game.away_franchise_id)

    def test_backfill_outside_range_ignored(self, registry):
        """Should not touch games outside the date range."""
        result = registry.backfill_franchise_ids("nba", date(2024, 1, 1), date(2024, 1, 2))

        assert result["checked"] == 0
        assert result["fixed"] == 0
