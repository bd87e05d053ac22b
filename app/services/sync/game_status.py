"""Game status state machine.

    scheduled → live → final

Transitions only move forward. ``final → final`` is allowed so score
corrections can be applied, and any attempt to move a final game back to
an earlier state keeps it final.
"""
import re
from enum import Enum
from typing import Optional

from app.core.logging import get_logger

logger = get_logger(__name__)


class GameStatus(str, Enum):
    SCHEDULED = "scheduled"
    LIVE = "live"
    FINAL = "final"

    @property
    def rank(self) -> int:
        return _RANK[self]


_RANK = {GameStatus.SCHEDULED: 0, GameStatus.LIVE: 1, GameStatus.FINAL: 2}

# Live markers seen in the game feed ("1st Qtr", "Halftime", "3rd Period", "Top 5th")
_LIVE_PATTERN = re.compile(
    r"\b(live|in[ _]?progress|qtr|quarter|half|halftime|period|ot|inning|top|bot|bottom|mid|middle|end)\b"
)


def parse_provider_status(raw: Optional[str]) -> GameStatus:
    """
    Map a provider status string onto the three-state model.

    Anything containing "final" is final. Known live markers are live.
    Unknown or empty values fail closed as scheduled, so an unrecognized
    status can never produce a matchup row.

    Examples:
        >>> parse_provider_status("Final/OT")
        <GameStatus.FINAL: 'final'>
        >>> parse_provider_status("2nd Qtr")
        <GameStatus.LIVE: 'live'>
        >>> parse_provider_status("2024-01-15T00:30:00Z")
        <GameStatus.SCHEDULED: 'scheduled'>
    """
    if not raw:
        return GameStatus.SCHEDULED

    text = raw.strip().lower()
    if "final" in text:
        return GameStatus.FINAL
    if _LIVE_PATTERN.search(text):
        return GameStatus.LIVE
    return GameStatus.SCHEDULED


def can_transition(current: GameStatus, target: GameStatus) -> bool:
    """True when moving from current to target does not go backwards."""
    return target.rank >= current.rank


def advance_status(current: Optional[str], observed: GameStatus) -> GameStatus:
    """
    Next stored status given the stored value and a newly observed one.

    Regressions are ignored: the stored status is kept.
    """
    if current is None:
        return observed

    try:
        stored = GameStatus(current)
    except ValueError:
        logger.warning(f"Unknown stored game status {current!r}; treating as scheduled")
        stored = GameStatus.SCHEDULED

    if can_transition(stored, observed):
        return observed

    logger.debug(f"Ignoring status regression {stored.value} -> {observed.value}")
    return stored
