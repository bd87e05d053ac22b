"""Authoritative scoreboard adapter (ESPN site API).

    GET {base}/{sport path}/scoreboard?dates=YYYYMMDD

Only completed events are returned. Teams are keyed by the scoreboard's
own abbreviations; the score verifier remaps internal abbreviations
before comparing.
"""
from datetime import date
from typing import List, Optional

import httpx

from app.core.config import settings
from app.core.exceptions import PayloadValidationError, ProviderRequestError
from app.core.logging import get_logger
from app.services.sync.adapters.base import ProviderClient
from app.services.sync.adapters.payloads import FinalScore, parse_final_score
from app.services.sync.utils.lookup_tables import LookupTables, get_lookup_tables

logger = get_logger(__name__)

PROVIDER = "espn"


class EspnScoreboardAdapter(ProviderClient):
    """Fetch completed games for a sport and date."""

    provider_name = PROVIDER

    def __init__(
        self,
        tables: Optional[LookupTables] = None,
        client: Optional[httpx.AsyncClient] = None,
        **kwargs,
    ):
        super().__init__(base_url=settings.SCOREBOARD_BASE_URL, client=client, **kwargs)
        self.tables = tables or get_lookup_tables()

    async def fetch_final_scores(self, sport_id: str, day: date) -> List[FinalScore]:
        """
        Completed games on a scoreboard date.

        Raises:
            ProviderRequestError: If the sport has no scoreboard or the request is abandoned
        """
        path = self.tables.sport(sport_id).scoreboard_path
        if not path:
            raise ProviderRequestError(f"{PROVIDER}: no scoreboard for sport {sport_id}")

        payload = await self.get_json(f"{path}/scoreboard", params={"dates": day.strftime("%Y%m%d")})

        finals: List[FinalScore] = []
        events = (payload.get("events") or []) if isinstance(payload, dict) else []
        for event in events:
            try:
                final = parse_final_score(event)
            except PayloadValidationError as e:
                logger.debug(f"Skipping malformed scoreboard event: {e.reason}")
                continue
            if final is not None:
                finals.append(final)

        return finals
