"""Franchise identity registry.

Resolves provider abbreviations to Team, Franchise and TeamVersion rows:

- Franchise: enduring lineage, unique per (sport, canonical name)
- TeamVersion: time-bounded name/city/abbreviation within a franchise;
  at most one open version (effective_to NULL) and no overlapping ranges
- Team: provider-facing row, unique per (sport, abbreviation)
- TeamVersionMap: provider team key → exactly one TeamVersion

Abbreviations are only resolved through the sport's franchise table.
Unknown abbreviations return None; the registry never guesses.

Race Condition Prevention:
Inserts rely on the unique constraints. A losing writer gets an
IntegrityError, rolls back its savepoint and re-reads the winning row.
"""
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Callable, Dict, List, Optional, Set, TypeVar

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import VersionOverlapError
from app.core.logging import get_logger
from app.models import Franchise, Game, MatchupGame, Team, TeamVersion, TeamVersionMap
from app.services.sync.utils.lookup_tables import LookupTables, get_lookup_tables
from app.services.sync.utils.pairing import order_optional_pair
from app.utils.timezone import utc_day_bounds, utcnow

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_PROVIDER = "balldontlie"
PROVIDER_KEY_PREFIX = {"balldontlie": "bdl"}


@dataclass(frozen=True)
class TeamIdentity:
    """Resolved identity of one provider abbreviation."""
    sport_id: str
    abbreviation: str
    team_id: str
    franchise_id: str
    team_version_id: Optional[str]
    display_name: str
    # Dates the resolved version covers; None is unbounded
    covers_from: Optional[date] = None
    covers_to: Optional[date] = None

    def covers(self, on: date) -> bool:
        if self.covers_from is not None and on < self.covers_from:
            return False
        return self.covers_to is None or on <= self.covers_to


class RunCache:
    """
    Identity cache for a single ingestion run.

    Keyed by ``sport:ABBREV``. Owned by one run and discarded with it, so
    concurrent runs for different sports never share state. A cached
    identity only answers for dates inside its version's range, so a run
    crossing a rebrand resolves the later games to the later version.
    """

    def __init__(self):
        self._identities: Dict[str, TeamIdentity] = {}
        self._unknown: Set[str] = set()
        self.hits = 0
        self.misses = 0

    @staticmethod
    def key(sport_id: str, abbreviation: str) -> str:
        return f"{sport_id}:{abbreviation.upper()}"

    def get(self, sport_id: str, abbreviation: str, on: Optional[date] = None) -> Optional[TeamIdentity]:
        identity = self._identities.get(self.key(sport_id, abbreviation))
        if identity is not None and on is not None and not identity.covers(on):
            identity = None
        if identity is not None:
            self.hits += 1
        else:
            self.misses += 1
        return identity

    def put(self, identity: TeamIdentity) -> None:
        self._identities[self.key(identity.sport_id, identity.abbreviation)] = identity

    def mark_unknown(self, sport_id: str, abbreviation: str) -> None:
        self._unknown.add(self.key(sport_id, abbreviation))

    def is_unknown(self, sport_id: str, abbreviation: str) -> bool:
        return self.key(sport_id, abbreviation) in self._unknown

    def __len__(self) -> int:
        return len(self._identities)


class FranchiseRegistry:
    """
    Lookup-or-create for franchises, teams and versions.

    Args:
        db: SQLAlchemy session
        tables: Lookup tables carrying the per-sport franchise names
        provider: Provider whose abbreviations are being resolved
    """

    def __init__(
        self,
        db: Session,
        tables: Optional[LookupTables] = None,
        provider: str = DEFAULT_PROVIDER,
    ):
        self.db = db
        self.tables = tables or get_lookup_tables()
        self.provider = provider

    def provider_team_key(self, sport_id: str, abbreviation: str) -> str:
        """Provider team key, e.g. ``bdl-nba-LAL``."""
        prefix = PROVIDER_KEY_PREFIX.get(self.provider, self.provider)
        return f"{prefix}-{sport_id}-{abbreviation.upper()}"

    # ========================================================================
    # Team + franchise resolution
    # ========================================================================

    def ensure_team_and_franchise(
        self,
        sport_id: str,
        abbreviation: str,
        cache: Optional[RunCache] = None,
        seen_on: Optional[date] = None,
        city: Optional[str] = None,
    ) -> Optional[TeamIdentity]:
        """
        Resolve a provider abbreviation, creating rows on first sighting.

        Args:
            sport_id: Sport identifier
            abbreviation: Provider abbreviation (case-insensitive)
            cache: Run-scoped cache; a throwaway cache is used when omitted
            seen_on: Date of the game being ingested (opens or extends the first version)
            city: City reported by the provider, back-filled onto the Team row

        Returns:
            TeamIdentity, or None if the abbreviation is not in the franchise table
        """
        cache = cache if cache is not None else RunCache()
        abbrev = abbreviation.strip().upper()
        seen_on = seen_on or utcnow().date()

        cached = cache.get(sport_id, abbrev, seen_on)
        if cached is not None:
            return cached
        if cache.is_unknown(sport_id, abbrev):
            return None

        canonical_name = self.tables.franchise_name(sport_id, abbrev)
        if canonical_name is None:
            logger.info(f"No franchise mapping for {sport_id}:{abbrev}")
            cache.mark_unknown(sport_id, abbrev)
            return None

        franchise = self.get_or_create_franchise(sport_id, canonical_name)
        team = self.get_or_create_team(sport_id, abbrev, canonical_name, city=city)
        version = self._ensure_initial_version(franchise, abbrev, seen_on, city)

        self.map_provider_key(
            sport_id,
            self.provider,
            self.provider_team_key(sport_id, abbrev),
            team_version_id=version.id,
            franchise_id=franchise.id,
            team_id=team.id,
        )

        identity = TeamIdentity(
            sport_id=sport_id,
            abbreviation=abbrev,
            team_id=team.id,
            franchise_id=franchise.id,
            team_version_id=version.id,
            display_name=team.name,
            covers_from=version.effective_from,
            covers_to=version.effective_to,
        )
        cache.put(identity)
        return identity

    def get_or_create_franchise(self, sport_id: str, canonical_name: str) -> Franchise:
        def find() -> Optional[Franchise]:
            return self.db.query(Franchise).filter(
                Franchise.sport_id == sport_id,
                Franchise.canonical_name == canonical_name,
            ).first()

        return self._get_or_create(
            find,
            lambda: Franchise(sport_id=sport_id, canonical_name=canonical_name),
            f"franchise {sport_id}:{canonical_name}",
        )

    def get_or_create_team(
        self,
        sport_id: str,
        abbreviation: str,
        display_name: str,
        city: Optional[str] = None,
    ) -> Team:
        def find() -> Optional[Team]:
            return self.db.query(Team).filter(
                Team.sport_id == sport_id,
                Team.abbreviation == abbreviation,
            ).first()

        team = self._get_or_create(
            find,
            lambda: Team(
                sport_id=sport_id,
                name=display_name,
                abbreviation=abbreviation,
                city=city,
                provider=self.provider,
                provider_team_key=self.provider_team_key(sport_id, abbreviation),
            ),
            f"team {sport_id}:{abbreviation}",
        )

        if city and not team.city:
            team.city = city
            self.db.commit()
        return team

    def _get_or_create(self, find: Callable[[], Optional[T]], build: Callable[[], T], label: str) -> T:
        """
        Check-then-insert with IntegrityError recovery.

        1. Return the existing row if present
        2. Insert inside a savepoint and commit
        3. On IntegrityError another writer won: the savepoint is rolled
           back and the winning row re-read
        """
        existing = find()
        if existing is not None:
            return existing

        row = build()
        try:
            with self.db.begin_nested():
                self.db.add(row)
        except IntegrityError:
            row = find()
            if row is None:
                raise
            logger.debug(f"{label} created by another writer, using existing")
            return row

        self.db.commit()
        logger.debug(f"Created {label}")
        return row

    # ========================================================================
    # Versions
    # ========================================================================

    def _ensure_initial_version(
        self,
        franchise: Franchise,
        abbreviation: str,
        seen_on: date,
        city: Optional[str],
    ) -> TeamVersion:
        """
        Version covering ``seen_on``, opening the lineage's first version if none exists.

        The first version's start is moved back when an older game of the
        lineage is ingested, so backfills running newest-first still end
        up covered.
        """
        versions = self.versions(franchise.id)
        if not versions:
            version = TeamVersion(
                franchise_id=franchise.id,
                sport_id=franchise.sport_id,
                display_name=franchise.canonical_name,
                city=city,
                abbreviation=abbreviation,
                effective_from=seen_on,
                effective_to=None,
            )
            self.db.add(version)
            self.db.commit()
            return version

        first = versions[0]
        if seen_on < first.effective_from:
            first.effective_from = seen_on
            self.db.commit()
            return first

        return self.version_on(franchise.id, seen_on) or versions[-1]

    def versions(self, franchise_id: str) -> List[TeamVersion]:
        return self.db.query(TeamVersion).filter(
            TeamVersion.franchise_id == franchise_id
        ).order_by(TeamVersion.effective_from).all()

    def current_version(self, franchise_id: str) -> Optional[TeamVersion]:
        return self.db.query(TeamVersion).filter(
            TeamVersion.franchise_id == franchise_id,
            TeamVersion.effective_to.is_(None),
        ).first()

    def version_on(self, franchise_id: str, on: date) -> Optional[TeamVersion]:
        """Version in effect on a date, or None."""
        for version in self.versions(franchise_id):
            if version.effective_from <= on and (version.effective_to is None or on <= version.effective_to):
                return version
        return None

    def register_version(
        self,
        franchise_id: str,
        display_name: str,
        effective_from: date,
        city: Optional[str] = None,
        abbreviation: Optional[str] = None,
    ) -> TeamVersion:
        """
        Record a rebrand or relocation.

        The open version is closed the day before ``effective_from`` and the
        new version becomes the open one.

        Raises:
            VersionOverlapError: If the new range would overlap an existing version
            LookupError: If the franchise does not exist
        """
        franchise = self.db.get(Franchise, franchise_id)
        if franchise is None:
            raise LookupError(f"Unknown franchise {franchise_id}")

        for version in self.versions(franchise_id):
            if version.effective_from >= effective_from:
                raise VersionOverlapError(
                    f"{franchise.canonical_name}: version {version.display_name!r} starts "
                    f"{version.effective_from}, not before {effective_from}"
                )
            if version.effective_to is not None and version.effective_to >= effective_from:
                raise VersionOverlapError(
                    f"{franchise.canonical_name}: version {version.display_name!r} runs until "
                    f"{version.effective_to}, past {effective_from}"
                )

        current = self.current_version(franchise_id)
        if current is not None:
            current.effective_to = effective_from - timedelta(days=1)

        version = TeamVersion(
            franchise_id=franchise_id,
            sport_id=franchise.sport_id,
            display_name=display_name,
            city=city,
            abbreviation=abbreviation,
            effective_from=effective_from,
            effective_to=None,
        )
        self.db.add(version)
        self.db.commit()

        logger.info(f"Registered version {display_name!r} for {franchise.canonical_name} from {effective_from}")
        return version

    # ========================================================================
    # Provider key mapping
    # ========================================================================

    def map_provider_key(
        self,
        sport_id: str,
        provider: str,
        provider_team_key: str,
        team_version_id: str,
        franchise_id: str,
        team_id: Optional[str] = None,
    ) -> TeamVersionMap:
        """Upsert the mapping for a provider key; the key points at one version at a time."""
        mapping = self.lookup_by_provider_key(sport_id, provider, provider_team_key)
        if mapping is None:
            mapping = self._get_or_create(
                lambda: self.lookup_by_provider_key(sport_id, provider, provider_team_key),
                lambda: TeamVersionMap(
                    sport_id=sport_id,
                    provider=provider,
                    provider_team_key=provider_team_key,
                    team_version_id=team_version_id,
                    franchise_id=franchise_id,
                    team_id=team_id,
                ),
                f"version map {provider}:{provider_team_key}",
            )

        if (mapping.team_version_id, mapping.franchise_id) != (team_version_id, franchise_id) or (
            team_id and mapping.team_id != team_id
        ):
            mapping.team_version_id = team_version_id
            mapping.franchise_id = franchise_id
            mapping.team_id = team_id or mapping.team_id
            self.db.commit()
        return mapping

    def lookup_by_provider_key(
        self,
        sport_id: str,
        provider: str,
        provider_team_key: str,
    ) -> Optional[TeamVersionMap]:
        return self.db.query(TeamVersionMap).filter(
            TeamVersionMap.sport_id == sport_id,
            TeamVersionMap.provider == provider,
            TeamVersionMap.provider_team_key == provider_team_key,
        ).first()

    # ========================================================================
    # Franchise reconciliation
    # ========================================================================

    def backfill_franchise_ids(
        self,
        sport_id: str,
        start_date: date,
        end_date: date,
        cache: Optional[RunCache] = None,
    ) -> Dict:
        """
        Fill missing franchise references on games in a UTC date range.

        For each game missing a franchise on either side whose team now has
        a resolvable abbreviation, set the franchise ids and re-order the
        MatchupGame franchise pair.

        Returns:
            Counters: checked, fixed, matchups_fixed, errors, error_samples
        """
        cache = cache if cache is not None else RunCache()
        range_start, _ = utc_day_bounds(start_date)
        _, range_end = utc_day_bounds(end_date)

        games = self.db.query(Game).filter(
            Game.sport_id == sport_id,
            Game.start_time_utc >= range_start,
            Game.start_time_utc < range_end,
            (Game.home_franchise_id.is_(None)) | (Game.away_franchise_id.is_(None)),
        ).all()

        result = {"checked": len(games), "fixed": 0, "matchups_fixed": 0, "errors": 0, "error_samples": []}

        for game in games:
            try:
                changed = False
                for side in ("home", "away"):
                    if getattr(game, f"{side}_franchise_id") is not None:
                        continue
                    team = self.db.get(Team, getattr(game, f"{side}_team_id"))
                    if team is None or not team.abbreviation:
                        continue
                    identity = self.ensure_team_and_franchise(
                        sport_id, team.abbreviation, cache, seen_on=game.start_time_utc.date()
                    )
                    if identity is not None:
                        setattr(game, f"{side}_franchise_id", identity.franchise_id)
                        changed = True

                if not changed:
                    continue

                result["fixed"] += 1
                matchup = self.db.query(MatchupGame).filter(MatchupGame.game_id == game.id).first()
                if matchup is not None:
                    low, high = order_optional_pair(game.home_franchise_id, game.away_franchise_id)
                    if (matchup.franchise_low_id, matchup.franchise_high_id) != (low, high):
                        matchup.franchise_low_id = low
                        matchup.franchise_high_id = high
                        result["matchups_fixed"] += 1

                self.db.commit()
            except SQLAlchemyError as e:
                self.db.rollback()
                result["errors"] += 1
                if len(result["error_samples"]) < settings.ERROR_SAMPLE_LIMIT:
                    result["error_samples"].append(f"game {game.id}: {type(e).__name__}")
                logger.warning(f"Franchise backfill failed for game {game.id}: {e}")

        logger.info(
            f"Franchise backfill {sport_id} {start_date}..{end_date}: "
            f"{result['fixed']} games, {result['matchups_fixed']} matchups"
        )
        return result
