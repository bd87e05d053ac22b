"""Odds API adapter.

Fetches the two feeds used for matching:
- Events with bookmaker totals: /sports/{key}/odds/?regions=us&markets=totals&bookmakers=draftkings
- Participants: /sports/{key}/participants

Rows are validated into payload models; malformed events are returned
separately with their rejection reason so callers can report them.
"""
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import httpx

from app.core.config import settings
from app.core.exceptions import PayloadValidationError
from app.core.logging import get_logger
from app.services.sync.adapters.base import ProviderClient
from app.services.sync.adapters.payloads import OddsEvent, parse_odds_event, parse_participant
from app.services.sync.utils.lookup_tables import LookupTables, get_lookup_tables

logger = get_logger(__name__)

PROVIDER = "the_odds_api"


@dataclass
class OddsFetchResult:
    events: List[OddsEvent] = field(default_factory=list)
    rejected: List[str] = field(default_factory=list)


class OddsApiAdapter(ProviderClient):
    """
    Adapter for The Odds API.

    Raises ``ProviderRequestError`` (from the base client) when a request is
    abandoned; callers decide whether that fails one sport or the job.
    """

    provider_name = PROVIDER

    def __init__(
        self,
        api_key: Optional[str] = None,
        tables: Optional[LookupTables] = None,
        client: Optional[httpx.AsyncClient] = None,
        **kwargs,
    ):
        super().__init__(base_url=settings.ODDS_API_BASE_URL, client=client, **kwargs)
        self.api_key = api_key if api_key is not None else settings.THE_ODDS_API_KEY
        self.tables = tables or get_lookup_tables()

    def sport_key(self, sport_id: str) -> str:
        return self.tables.sport(sport_id).odds_key

    async def fetch_odds(
        self,
        sport_id: str,
        bookmaker: Optional[str] = None,
        market: Optional[str] = None,
    ) -> OddsFetchResult:
        """
        Fetch current events with one bookmaker's market for a sport.

        Args:
            sport_id: Internal sport id (nba, nfl, ...)
            bookmaker: Bookmaker key (default settings.ODDS_BOOKMAKER)
            market: Market key (default settings.ODDS_MARKET)
        """
        params = {
            "apiKey": self.api_key,
            "regions": settings.ODDS_API_REGIONS,
            "markets": market or settings.ODDS_MARKET,
            "bookmakers": bookmaker or settings.ODDS_BOOKMAKER,
        }
        payload = await self.get_json(f"sports/{self.sport_key(sport_id)}/odds/", params=params)

        result = OddsFetchResult()
        for row in payload if isinstance(payload, list) else []:
            try:
                result.events.append(parse_odds_event(row))
            except PayloadValidationError as e:
                event_id = row.get("id") if isinstance(row, dict) else None
                result.rejected.append(f"event {event_id}: {e.reason}")

        logger.info(
            f"Fetched {len(result.events)} odds events for {sport_id}",
            extra={"sport": sport_id, "rejected": len(result.rejected)},
        )
        return result

    async def fetch_participants(self, sport_id: str) -> Tuple[List[str], List[str]]:
        """
        Fetch participant display names for a sport.

        Returns:
            (names, rejected reasons)
        """
        payload = await self.get_json(
            f"sports/{self.sport_key(sport_id)}/participants",
            params={"apiKey": self.api_key},
        )

        names: List[str] = []
        rejected: List[str] = []
        for item in payload if isinstance(payload, list) else []:
            try:
                names.append(parse_participant(item))
            except PayloadValidationError as e:
                rejected.append(e.reason)

        return names, rejected
