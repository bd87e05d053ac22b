"""Confidence scoring for participant-to-team matches.

Calculates confidence scores (0.0 to 1.0) for the fuzzy team resolver.

Confidence levels:
- 1.0: Exact alias match
- max(containment floor, length ratio): one string contains the other
- trigram Jaccard similarity: accepted only above the similarity floor
"""
from typing import Set

MATCH_METHOD_EXACT = 'exact'
MATCH_METHOD_ALIAS = 'alias'
MATCH_METHOD_FUZZY = 'fuzzy'


def trigrams(text: str) -> Set[str]:
    """
    Character trigrams of a string padded with two spaces on each side.

    Examples:
        >>> sorted(trigrams("ab"))
        ['  a', ' ab', 'ab ', 'b  ']
    """
    padded = f"  {text}  "
    return {padded[i:i + 3] for i in range(len(padded) - 2)}


def trigram_similarity(a: str, b: str) -> float:
    """
    Jaccard similarity of the padded trigram sets of two strings.

    Returns 1.0 for identical strings and 0.0 when either is empty.

    Examples:
        >>> trigram_similarity("lakers", "lakers")
        1.0
        >>> trigram_similarity("", "lakers")
        0.0
    """
    if a == b:
        return 1.0
    if not a or not b:
        return 0.0

    grams_a = trigrams(a)
    grams_b = trigrams(b)
    return len(grams_a & grams_b) / len(grams_a | grams_b)


def containment_confidence(a: str, b: str, floor: float = 0.85) -> float:
    """
    Confidence for a containment match, or 0.0 if neither string contains the other.

    The length ratio rewards near-complete containment; the floor keeps
    any containment above the persistence threshold.

    Examples:
        >>> containment_confidence("trail blazers", "portland trail blazers")
        0.85
        >>> containment_confidence("knicks", "nets")
        0.0
    """
    if not a or not b:
        return 0.0
    if a not in b and b not in a:
        return 0.0
    ratio = min(len(a), len(b)) / max(len(a), len(b))
    return max(floor, ratio)
