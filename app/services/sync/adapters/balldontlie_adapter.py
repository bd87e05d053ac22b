"""Game feed adapter (balldontlie).

Fetches games by date or by season with cursor pagination:

    GET {base}/{sport path}/games?dates[]=2024-01-15&per_page=100&cursor=...

Pagination continues until ``meta.next_cursor`` is absent. Each page goes
through the retrying base client; a page that is finally abandoned ends
that chunk's pagination and is reported through ``FeedPage.error``.
"""
from dataclasses import dataclass, field
from datetime import date
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Tuple

import httpx

from app.core.config import settings
from app.core.exceptions import ProviderRequestError
from app.core.logging import get_logger
from app.services.sync.adapters.base import ProviderClient, chunked
from app.services.sync.utils.lookup_tables import LookupTables, get_lookup_tables

logger = get_logger(__name__)

PROVIDER = "balldontlie"


@dataclass
class FeedPage:
    """One page of raw game rows, or the error that ended pagination."""
    rows: List[Dict[str, Any]] = field(default_factory=list)
    error: Optional[str] = None


class BalldontlieAdapter(ProviderClient):
    """
    Adapter for the balldontlie game feed.

    Usage:
        async with BalldontlieAdapter(api_key=key) as adapter:
            async for page in adapter.iter_games_by_dates("nba", dates):
                ...
    """

    provider_name = PROVIDER

    def __init__(
        self,
        api_key: Optional[str] = None,
        tables: Optional[LookupTables] = None,
        client: Optional[httpx.AsyncClient] = None,
        **kwargs,
    ):
        key = api_key if api_key is not None else settings.BALLDONTLIE_API_KEY
        super().__init__(
            base_url=settings.BALLDONTLIE_BASE_URL,
            headers={"Authorization": key},
            client=client,
            **kwargs,
        )
        self.tables = tables or get_lookup_tables()
        self.per_page = settings.GAME_FEED_PER_PAGE
        self.max_pages = settings.GAME_FEED_MAX_PAGES

    def games_path(self, sport_id: str) -> str:
        path = self.tables.sport(sport_id).game_feed_path
        if not path:
            raise ProviderRequestError(f"{PROVIDER}: no game feed for sport {sport_id}")
        return f"{path}/games"

    async def iter_games_by_dates(
        self,
        sport_id: str,
        dates: Sequence[date],
        dates_per_request: Optional[int] = None,
    ) -> AsyncIterator[FeedPage]:
        """
        Yield pages of games for the given dates.

        Dates are sent in chunks of ``dates_per_request`` as repeated
        ``dates[]`` params; each chunk is paginated independently.
        """
        size = dates_per_request or settings.GAME_FEED_DATES_PER_REQUEST
        for chunk in chunked(list(dates), size):
            params = [("dates[]", d.isoformat()) for d in chunk]
            async for page in self._paginate(sport_id, params):
                yield page

    async def iter_games_by_seasons(
        self,
        sport_id: str,
        seasons: Sequence[int],
    ) -> AsyncIterator[FeedPage]:
        """Yield pages of games for whole seasons."""
        for season in seasons:
            async for page in self._paginate(sport_id, [("seasons[]", str(season))]):
                yield page

    async def _paginate(
        self,
        sport_id: str,
        base_params: List[Tuple[str, str]],
    ) -> AsyncIterator[FeedPage]:
        cursor: Optional[Any] = None
        path = self.games_path(sport_id)

        for page_number in range(1, self.max_pages + 1):
            params = list(base_params) + [("per_page", str(self.per_page))]
            if cursor is not None:
                params.append(("cursor", str(cursor)))

            try:
                payload = await self.get_json(path, params=params)
            except ProviderRequestError as e:
                logger.warning(f"[{PROVIDER}] {sport_id} page {page_number} abandoned: {e}")
                yield FeedPage(error=str(e))
                return

            if not isinstance(payload, dict):
                yield FeedPage(error=f"{PROVIDER}: unexpected payload on page {page_number}")
                return

            yield FeedPage(rows=list(payload.get("data") or []))

            cursor = (payload.get("meta") or {}).get("next_cursor")
            if not cursor:
                return

        logger.warning(f"[{PROVIDER}] {sport_id} stopped after {self.max_pages} pages")
