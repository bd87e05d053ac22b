"""Name normalization for team and participant matching.

Handles common variations across providers:
- Case: "DENVER NUGGETS" → "denver nuggets"
- Accents: "Atlético" → "atletico"
- Punctuation: "St. Louis Blues" → "saint louis blues"
- Abbreviations: "LA Clippers" → "los angeles clippers"
- Stop tokens: "Seattle Sounders FC" → "seattle sounders"

Any two inputs that are the same team by convention must normalize to the
same string for the strict matcher to attach them. Unknown input simply
normalizes to itself.
"""
import re
import unicodedata
from typing import Iterable, Optional

from app.services.sync.utils.lookup_tables import LookupTables, get_lookup_tables

_NON_ALNUM = re.compile(r'[^a-z0-9]+')
# Dotted initialisms such as "f.c." or "l.a."
_INITIALISM = re.compile(r'\b[a-z](?:\.[a-z])+\.?(?![a-z0-9])')


def normalize_team_name(
    name: Optional[str],
    tables: Optional[LookupTables] = None,
    soccer: bool = False,
) -> str:
    """
    Normalize a team name for comparison.

    Steps:
    1. Strip diacritics
    2. Lowercase and collapse dotted initialisms ("F.C." → "fc")
    3. Replace non-alphanumeric characters with spaces and collapse
    4. Expand abbreviations word by word
    5. Remove stop tokens (plus soccer stop tokens when ``soccer``)
    6. Collapse whitespace

    The function is total and idempotent:
    ``normalize_team_name(normalize_team_name(x)) == normalize_team_name(x)``.

    Args:
        name: Raw provider string (None and "" normalize to "")
        tables: Lookup tables (defaults to the loaded artifact)
        soccer: Also strip soccer stop tokens ("united", "city", ...)

    Returns:
        Normalized token string

    Examples:
        >>> normalize_team_name("LA Clippers")
        'los angeles clippers'
        >>> normalize_team_name("Ñew York, F.C.")
        'new york'
        >>> normalize_team_name("St. Louis Blues")
        'saint louis blues'
    """
    if not name:
        return ""

    tables = tables or get_lookup_tables()

    text = _strip_diacritics(name).lower()
    text = _INITIALISM.sub(lambda m: m.group(0).replace('.', ''), text)
    words = _NON_ALNUM.sub(' ', text).split()

    words = ' '.join(tables.abbreviations.get(word, word) for word in words).split()

    stop_tokens = tables.stop_tokens | tables.soccer_stop_tokens if soccer else tables.stop_tokens
    return _remove_tokens(words, stop_tokens)


def strip_soccer_tokens(normalized: str, tables: Optional[LookupTables] = None) -> str:
    """Remove soccer stop tokens from an already normalized string."""
    tables = tables or get_lookup_tables()
    return _remove_tokens(normalized.split(), tables.soccer_stop_tokens)


def _remove_tokens(words: Iterable[str], tokens: frozenset) -> str:
    # Whole-word comparison is the word-boundary match
    return ' '.join(word for word in words if word not in tokens)


def _strip_diacritics(text: str) -> str:
    """
    Remove accents and diacritics.

    Converts 'é' → 'e', 'ñ' → 'n'. Characters without an ASCII base
    (e.g. 'ø') are left for the alphanumeric filter to drop.
    """
    normalized = unicodedata.normalize('NFKD', text)
    return ''.join(c for c in normalized if unicodedata.category(c) != 'Mn')
