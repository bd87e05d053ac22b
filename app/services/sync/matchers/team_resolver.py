"""Team resolver for mapping participant-feed names onto stored teams.

Handles name variations between the odds participants feed and the
team roster:
- Nicknames only: "Lakers" vs "Los Angeles Lakers"
- Two-word nicknames: "Trail Blazers"
- Abbreviations: "LAL"
- Soccer suffixes: "Seattle Sounders FC" vs "Seattle Sounders"

Pipeline:
1. Normalize the participant name and resolve known aliases
2. Build an alias set for every team of the sport
3. Exact hit in a team's alias set → confidence 1.0, stop
4. Containment between the name and an alias → max(containment floor, length ratio)
5. Trigram Jaccard similarity → accepted only above the similarity floor
6. Best score across all teams wins

Mappings are only persisted at or above the persistence floor.
"""
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core import metrics
from app.core.config import settings
from app.core.logging import get_logger
from app.models import ProviderMapping, Team
from app.services.sync.utils.alias_resolver import AliasResolver
from app.services.sync.utils.confidence_scorer import (
    MATCH_METHOD_ALIAS,
    MATCH_METHOD_EXACT,
    MATCH_METHOD_FUZZY,
    containment_confidence,
    trigram_similarity,
)
from app.services.sync.utils.lookup_tables import LookupTables, get_lookup_tables
from app.services.sync.utils.name_normalizer import normalize_team_name, strip_soccer_tokens
from app.utils.timezone import utcnow

logger = get_logger(__name__)

PROVIDER = "the_odds_api"


@dataclass(frozen=True)
class RosterTeam:
    """The fields of a stored team the resolver looks at."""
    id: str
    name: str
    abbreviation: Optional[str] = None

    @classmethod
    def from_model(cls, team: Team) -> "RosterTeam":
        return cls(id=team.id, name=team.name, abbreviation=team.abbreviation)


@dataclass(frozen=True)
class TeamMatch:
    team_id: str
    confidence: float
    method: str


class TeamResolver:
    """
    Resolve participant names to teams by alias and trigram similarity.

    Example:
        >>> resolver = TeamResolver()
        >>> resolver.match("Lakers", [RosterTeam(id="t1", name="Los Angeles Lakers")])
        TeamMatch(team_id='t1', confidence=1.0, method='exact')
    """

    def __init__(
        self,
        db: Optional[Session] = None,
        tables: Optional[LookupTables] = None,
        similarity_floor: Optional[float] = None,
        persist_floor: Optional[float] = None,
        containment_floor: Optional[float] = None,
        provider: str = PROVIDER,
    ):
        self.db = db
        self.tables = tables or get_lookup_tables()
        self.resolver = AliasResolver(self.tables)
        self.similarity_floor = settings.FUZZY_SIMILARITY_FLOOR if similarity_floor is None else similarity_floor
        self.persist_floor = settings.FUZZY_PERSIST_FLOOR if persist_floor is None else persist_floor
        self.containment_floor = (
            settings.FUZZY_CONTAINMENT_FLOOR if containment_floor is None else containment_floor
        )
        self.provider = provider

    def _normalize(self, text: str, soccer: bool) -> str:
        return normalize_team_name(text, self.tables, soccer=soccer)

    def team_aliases(self, team: RosterTeam, soccer: bool = False) -> List[str]:
        """
        Normalized alias strings for a team, de-duplicated in insertion order.

        US sports: full name, last word, last two words, abbreviation and
        its expansion. Soccer: full name, stop-token-stripped name and each
        significant word.
        """
        full = self._normalize(team.name, soccer)
        aliases = [full, self.resolver.resolve(full)]

        if not soccer:
            parts = team.name.split()
            if len(parts) >= 2:
                aliases.append(self._normalize(parts[-1], False))
                if len(parts) >= 3:
                    aliases.append(self._normalize(" ".join(parts[-2:]), False))
            if team.abbreviation:
                aliases.append(self._normalize(team.abbreviation, False))
                expansion = self.tables.team_abbreviations.get(team.abbreviation.lower())
                if expansion:
                    aliases.append(self._normalize(expansion, False))
        else:
            aliases.append(strip_soccer_tokens(full, self.tables))
            stop_tokens = self.tables.stop_tokens | self.tables.soccer_stop_tokens
            for word in full.split():
                if len(word) > 2 and word not in stop_tokens:
                    aliases.append(word)

        return list(dict.fromkeys(alias for alias in aliases if alias))

    def match(self, participant: str, teams: Iterable[RosterTeam], soccer: bool = False) -> Optional[TeamMatch]:
        """
        Best team for a participant name, or None.

        Every team is scored and the maximum wins; only an exact alias hit
        returns early. Ties keep the first team seen.
        """
        name = self.resolver.resolve(self._normalize(participant, soccer))
        if not name:
            return None

        best: Optional[TeamMatch] = None
        for team in teams:
            aliases = self.team_aliases(team, soccer)
            if name in aliases:
                return TeamMatch(team_id=team.id, confidence=1.0, method=MATCH_METHOD_EXACT)

            for alias in aliases:
                contained = containment_confidence(name, alias, floor=self.containment_floor)
                if contained and (best is None or contained > best.confidence):
                    best = TeamMatch(team_id=team.id, confidence=contained, method=MATCH_METHOD_ALIAS)

            for alias in aliases:
                similarity = trigram_similarity(name, alias)
                if similarity > self.similarity_floor and (best is None or similarity > best.confidence):
                    best = TeamMatch(team_id=team.id, confidence=similarity, method=MATCH_METHOD_FUZZY)

        return best

    def is_persistable(self, match: Optional[TeamMatch]) -> bool:
        return match is not None and match.confidence >= self.persist_floor

    def map_participant(
        self,
        sport_id: str,
        participant: str,
        teams: Sequence[RosterTeam],
    ) -> Optional[TeamMatch]:
        """
        Match and persist one participant.

        Returns:
            The persisted match, or None when the participant stays unmatched
        """
        match = self.match(participant, teams, soccer=self.tables.is_soccer(sport_id))
        if not self.is_persistable(match):
            metrics.match_outcomes_total.labels(matcher="fuzzy", outcome="unmatched").inc()
            logger.info(
                f"Unmatched participant {participant!r}",
                extra={"sport": sport_id, "confidence": match.confidence if match else None},
            )
            return None

        self.upsert_mapping(sport_id, participant, match)
        metrics.match_outcomes_total.labels(matcher="fuzzy", outcome=match.method).inc()
        return match

    def upsert_mapping(self, sport_id: str, participant: str, match: TeamMatch) -> ProviderMapping:
        """Create or update the ProviderMapping for a participant name; commits."""
        if not self.is_persistable(match):
            raise ValueError(f"Confidence {match.confidence:.2f} is below the persistence floor")

        mapping = self._find_mapping(sport_id, participant)
        if mapping is None:
            mapping = ProviderMapping(
                sport_id=sport_id,
                provider=self.provider,
                provider_team_name=participant,
                team_id=match.team_id,
                confidence=match.confidence,
                method=match.method,
            )
            try:
                with self.db.begin_nested():
                    self.db.add(mapping)
                self.db.commit()
                return mapping
            except IntegrityError:
                mapping = self._find_mapping(sport_id, participant)
                if mapping is None:
                    raise

        mapping.team_id = match.team_id
        mapping.confidence = match.confidence
        mapping.method = match.method
        mapping.updated_at = utcnow()
        self.db.commit()
        return mapping

    def _find_mapping(self, sport_id: str, participant: str) -> Optional[ProviderMapping]:
        return self.db.query(ProviderMapping).filter(
            ProviderMapping.sport_id == sport_id,
            ProviderMapping.provider == self.provider,
            ProviderMapping.provider_team_name == participant,
        ).first()
