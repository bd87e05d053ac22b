"""
Unit tests for team-name normalization and alias resolution.

Test Strategy:
1. Case, diacritic and punctuation insensitivity
2. Abbreviation expansion and stop-token removal
3. Idempotency over a spread of provider strings
4. Alias resolution through the shipped tables
5. Lookup table validation (tables injected as fixtures)

Each test follows the pattern:
- Given: A raw provider string (and optionally custom tables)
- When: The normalizer or resolver runs
- Then: The expected token string comes back
"""
import pytest

from app.core.exceptions import ConfigurationError
from app.services.sync.utils.alias_resolver import AliasResolver
from app.services.sync.utils.lookup_tables import build_lookup_tables
from app.services.sync.utils.name_normalizer import normalize_team_name, strip_soccer_tokens


class TestNormalizeTeamName:
    """Test suite for normalize_team_name."""

    # ─────────────────────────────────────────────────────────────
    # Basic Normalization Tests
    # ─────────────────────────────────────────────────────────────

    def test_lowercases_input(self):
        """Should lowercase the name."""
        assert normalize_team_name("DENVER NUGGETS") == "denver nuggets"

    def test_strips_diacritics(self):
        """Should remove accents."""
        assert normalize_team_name("Atlético Madrid") == "atletico madrid"
        assert normalize_team_name("Montréal Canadiens") == "montreal canadiens"

    def test_punctuation_becomes_whitespace(self):
        """Should turn punctuation into single spaces."""
        assert normalize_team_name("Portland  Trail-Blazers!") == "portland trail blazers"

    def test_empty_and_none_are_total(self):
        """Should return an empty string instead of failing."""
        assert normalize_team_name(None) == ""
        assert normalize_team_name("") == ""
        assert normalize_team_name("   ") == ""

    def test_unknown_input_normalizes_to_itself(self):
        """Should leave unknown names alone apart from formatting."""
        assert normalize_team_name("Harlem Globetrotters") == "harlem globetrotters"

    # ─────────────────────────────────────────────────────────────
    # Abbreviation Tests
    # ─────────────────────────────────────────────────────────────

    def test_expands_city_abbreviation(self):
        """Should expand 'LA' so both spellings agree."""
        assert normalize_team_name("LA Clippers") == "los angeles clippers"
        assert normalize_team_name("LA Clippers") == normalize_team_name("Los Angeles Clippers")

    def test_expands_saint(self):
        """Should expand 'St.' to 'saint'."""
        assert normalize_team_name("St. Louis Blues") == "saint louis blues"

    def test_expands_dotted_initialism(self):
        """Should read 'L.A.' the same as 'LA'."""
        assert normalize_team_name("L.A. Clippers") == "los angeles clippers"

    def test_expansion_is_word_based(self):
        """Should only expand whole words, not substrings."""
        assert normalize_team_name("Lakers") == "lakers"
        assert normalize_team_name("Stars") == "stars"

    # ─────────────────────────────────────────────────────────────
    # Stop Token Tests
    # ─────────────────────────────────────────────────────────────

    def test_removes_stop_tokens(self):
        """Should remove 'FC' everywhere."""
        assert normalize_team_name("Seattle Sounders FC") == "seattle sounders"

    def test_case_diacritic_punctuation_insensitive(self):
        """Should treat 'Ñew York, F.C.' and 'new york fc' as the same team."""
        assert normalize_team_name("Ñew York, F.C.") == normalize_team_name("new york fc")
        assert normalize_team_name("new york fc") == "new york"

    def test_soccer_tokens_only_in_soccer_mode(self):
        """Should keep 'United' unless soccer tokens are requested."""
        assert normalize_team_name("Minnesota United") == "minnesota united"
        assert normalize_team_name("Minnesota United", soccer=True) == "minnesota"

    def test_strip_soccer_tokens(self):
        """Should strip soccer tokens from an already normalized string."""
        assert strip_soccer_tokens("manchester city") == "manchester"

    def test_stop_token_match_is_word_bounded(self):
        """Should not cut 'fc' out of a longer word."""
        assert normalize_team_name("Fcbarcelona") == "fcbarcelona"

    # ─────────────────────────────────────────────────────────────
    # Idempotency Tests
    # ─────────────────────────────────────────────────────────────

    @pytest.mark.parametrize("raw", [
        "LA Clippers",
        "Ñew York, F.C.",
        "St. Louis Blues",
        "NY Utd",
        "Atlético Madrid",
        "L.A. Galaxy",
        "  Boston   Celtics ",
        "",
    ])
    def test_normalization_is_idempotent(self, raw):
        """Should give the same string when applied twice."""
        once = normalize_team_name(raw)
        assert normalize_team_name(once) == once

    @pytest.mark.parametrize("raw", ["NY Utd", "Manchester City FC", "Paris Saint-Germain"])
    def test_soccer_normalization_is_idempotent(self, raw):
        """Should stay idempotent with soccer tokens."""
        once = normalize_team_name(raw, soccer=True)
        assert normalize_team_name(once, soccer=True) == once


class TestAliasResolver:
    """Test suite for AliasResolver."""

    def test_resolves_known_variant(self):
        """Should map a known variant to its canonical name."""
        assert AliasResolver().resolve("okc") == "oklahoma city thunder"

    def test_canonical_value_maps_to_itself(self):
        """Should return a canonical name unchanged."""
        assert AliasResolver().resolve("oklahoma city thunder") == "oklahoma city thunder"

    def test_unknown_name_maps_to_itself(self):
        """Should return unknown names unchanged."""
        assert AliasResolver().resolve("harlem globetrotters") == "harlem globetrotters"

    def test_canonical_name_normalizes_first(self):
        """Should normalize raw input before the lookup."""
        assert AliasResolver().canonical_name("OKC Thunder") == "oklahoma city thunder"
        assert AliasResolver().canonical_name("Oklahoma City Thunder") == "oklahoma city thunder"

    def test_resolution_is_single_step(self):
        """Should not chain aliases."""
        tables = build_lookup_tables({"aliases": {"a": "b", "b": "c"}})
        assert AliasResolver(tables).resolve("a") == "b"


class TestLookupTables:
    """Test suite for lookup table validation."""

    def test_custom_tables_drive_normalization(self):
        """Should use injected tables instead of the shipped artifact."""
        tables = build_lookup_tables({"abbreviations": {"nyc": "new york city"}})
        assert normalize_team_name("NYC FC", tables) == "new york city fc"

    def test_rejects_recursive_abbreviation(self):
        """Should reject an expansion that contains another key."""
        with pytest.raises(ConfigurationError):
            build_lookup_tables({"abbreviations": {"la": "la city"}})

    def test_rejects_unnormalized_alias(self):
        """Should reject alias entries that are not normalized strings."""
        with pytest.raises(ConfigurationError):
            build_lookup_tables({"aliases": {"OKC": "oklahoma city thunder"}})

    def test_shipped_tables_cover_default_sports(self, tables):
        """Should know every default sport and resolve franchise abbreviations."""
        from app.core.config import settings

        for sport_id in settings.DEFAULT_SPORTS:
            assert sport_id in tables.sports
        assert tables.franchise_name("nba", "lal") == "Los Angeles Lakers"
        assert tables.franchise_name("nba", "ZZZ") is None
