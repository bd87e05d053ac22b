"""Canonical ordering of team pairs for head-to-head storage."""
from typing import Optional, Tuple


def order_pair(a: str, b: str) -> Tuple[str, str]:
    """
    Order two ids lexicographically so (A, B) and (B, A) give the same key.

    Examples:
        >>> order_pair("b", "a")
        ('a', 'b')
        >>> order_pair("a", "b")
        ('a', 'b')
    """
    return (a, b) if a <= b else (b, a)


def order_optional_pair(a: Optional[str], b: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """Order a pair that may be incomplete; an incomplete pair is stored as (None, None)."""
    if a is None or b is None:
        return None, None
    return order_pair(a, b)
