"""Versioned lookup tables for team-name matching and franchise identity.

The tables are data, not logic: aliases, abbreviation expansions, stop
tokens, franchise names per sport and the authoritative-scoreboard
abbreviation remaps all live in ``app/data/team_lookups.json`` (or the file
named by ``LOOKUP_TABLES_PATH``). Components receive a ``LookupTables``
instance at construction, so tests can pass fixtures and operators can
extend coverage without touching matching code.
"""
import json
import re
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import Any, FrozenSet, Mapping, Optional

from app.core.config import settings
from app.core.exceptions import ConfigurationError
from app.core.logging import get_logger

logger = get_logger(__name__)

_TOKEN_RE = re.compile(r'^[a-z0-9]+( [a-z0-9]+)*$')


@dataclass(frozen=True)
class SportConfig:
    """Per-sport provider keys."""
    sport_id: str
    odds_key: str
    soccer: bool = False
    game_feed_path: Optional[str] = None
    scoreboard_path: Optional[str] = None


@dataclass(frozen=True)
class LookupTables:
    """
    Immutable lookup tables.

    Attributes:
        version: Version string of the loaded artifact
        abbreviations: Word → expansion applied by the normalizer
        stop_tokens: Tokens removed by the normalizer
        soccer_stop_tokens: Extra tokens removed for soccer-like sports
        aliases: Normalized variant → canonical normalized name
        team_abbreviations: Roster abbreviation → expansion, used for fuzzy aliases
        franchises: sport → provider abbreviation → canonical franchise name
        scoreboard_abbreviations: sport → internal abbreviation → scoreboard abbreviation
        sports: sport → SportConfig
    """
    version: str = "fixture"
    abbreviations: Mapping[str, str] = field(default_factory=dict)
    stop_tokens: FrozenSet[str] = frozenset()
    soccer_stop_tokens: FrozenSet[str] = frozenset()
    aliases: Mapping[str, str] = field(default_factory=dict)
    team_abbreviations: Mapping[str, str] = field(default_factory=dict)
    franchises: Mapping[str, Mapping[str, str]] = field(default_factory=dict)
    scoreboard_abbreviations: Mapping[str, Mapping[str, str]] = field(default_factory=dict)
    sports: Mapping[str, SportConfig] = field(default_factory=dict)

    def franchise_name(self, sport_id: str, abbreviation: str) -> Optional[str]:
        """Canonical franchise name for a provider abbreviation, or None if unknown."""
        return self.franchises.get(sport_id, {}).get(abbreviation.upper())

    def sport(self, sport_id: str) -> SportConfig:
        try:
            return self.sports[sport_id]
        except KeyError:
            raise ConfigurationError(f"Unknown sport: {sport_id}") from None

    def is_soccer(self, sport_id: str) -> bool:
        config = self.sports.get(sport_id)
        return bool(config and config.soccer)


def build_lookup_tables(data: Mapping[str, Any]) -> LookupTables:
    """
    Build and validate ``LookupTables`` from a parsed JSON mapping.

    Validation keeps normalization idempotent: every expansion must be
    made of plain lowercase tokens, and no expansion may contain a token
    that is itself an abbreviation key (otherwise a second pass would
    expand it again).

    Raises:
        ConfigurationError: If the tables are inconsistent
    """
    abbreviations = {str(k).lower(): str(v).lower() for k, v in data.get("abbreviations", {}).items()}
    for key, expansion in abbreviations.items():
        if not _TOKEN_RE.match(key) or " " in key:
            raise ConfigurationError(f"Abbreviation key must be a single token: {key!r}")
        if not _TOKEN_RE.match(expansion):
            raise ConfigurationError(f"Abbreviation expansion must be plain tokens: {expansion!r}")
        recursive = set(expansion.split()) & set(abbreviations)
        if recursive:
            raise ConfigurationError(
                f"Abbreviation {key!r} expands to {expansion!r}, which contains key(s) {sorted(recursive)}"
            )

    aliases = {str(k): str(v) for k, v in data.get("aliases", {}).items()}
    for variant, canonical in aliases.items():
        if not _TOKEN_RE.match(variant) or not _TOKEN_RE.match(canonical):
            raise ConfigurationError(f"Alias entries must be normalized strings: {variant!r} -> {canonical!r}")

    franchises = {
        sport: MappingProxyType({abbr.upper(): name for abbr, name in mapping.items()})
        for sport, mapping in data.get("franchises", {}).items()
    }
    scoreboard = {
        sport: MappingProxyType({k.upper(): v.upper() for k, v in mapping.items()})
        for sport, mapping in data.get("scoreboard_abbreviations", {}).items()
    }
    sports = {
        sport_id: SportConfig(sport_id=sport_id, **config)
        for sport_id, config in data.get("sports", {}).items()
    }

    return LookupTables(
        version=str(data.get("version", "unversioned")),
        abbreviations=MappingProxyType(abbreviations),
        stop_tokens=frozenset(t.lower() for t in data.get("stop_tokens", [])),
        soccer_stop_tokens=frozenset(t.lower() for t in data.get("soccer_stop_tokens", [])),
        aliases=MappingProxyType(aliases),
        team_abbreviations=MappingProxyType(
            {str(k).lower(): str(v).lower() for k, v in data.get("team_abbreviations", {}).items()}
        ),
        franchises=MappingProxyType(franchises),
        scoreboard_abbreviations=MappingProxyType(scoreboard),
        sports=MappingProxyType(sports),
    )


def load_lookup_tables(path: Optional[str] = None) -> LookupTables:
    """
    Load lookup tables from a JSON file.

    Args:
        path: File path (defaults to settings.LOOKUP_TABLES_PATH)

    Raises:
        ConfigurationError: If the file is missing, unreadable or invalid
    """
    table_path = Path(path or settings.LOOKUP_TABLES_PATH)
    try:
        data = json.loads(table_path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise ConfigurationError(f"Cannot load lookup tables from {table_path}: {e}") from e

    tables = build_lookup_tables(data)
    logger.info(
        f"Loaded lookup tables v{tables.version} from {table_path.name}",
        extra={"aliases": len(tables.aliases), "sports": sorted(tables.sports)},
    )
    return tables


@lru_cache(maxsize=1)
def get_lookup_tables() -> LookupTables:
    """Process-wide default tables, loaded once. Components accept an override."""
    return load_lookup_tables()
