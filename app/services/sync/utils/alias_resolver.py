"""Alias resolution from normalized provider variants to canonical names."""
from typing import Optional

from app.services.sync.utils.lookup_tables import LookupTables, get_lookup_tables
from app.services.sync.utils.name_normalizer import normalize_team_name


class AliasResolver:
    """
    Map normalized names onto their canonical normalized form.

    Lookup is a single step: a known variant returns its canonical value;
    a canonical value or an unknown name is returned unchanged. Coverage is
    extended by editing the lookup tables, never this class.

    Example:
        >>> resolver = AliasResolver()
        >>> resolver.resolve("okc")
        'oklahoma city thunder'
        >>> resolver.canonical_name("OKC Thunder")
        'oklahoma city thunder'
    """

    def __init__(self, tables: Optional[LookupTables] = None):
        self.tables = tables or get_lookup_tables()
        self._aliases = self.tables.aliases

    def resolve(self, normalized: str) -> str:
        """Canonical form of an already normalized string."""
        return self._aliases.get(normalized, normalized)

    def canonical_name(self, raw_name: Optional[str], soccer: bool = False) -> str:
        """Normalize then resolve a raw provider name."""
        return self.resolve(normalize_team_name(raw_name, self.tables, soccer=soccer))
