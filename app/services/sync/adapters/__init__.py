"""Provider adapters.

Each adapter validates its feed into the payload models before anything
reaches the matchers or the ingestion engine.

Available adapters:
- BalldontlieAdapter: paginated game feed
- OddsApiAdapter: odds events and participants
- EspnScoreboardAdapter: authoritative final scores

Base classes:
- ProviderClient: shared retry logic and bounded concurrent batches
"""
from app.services.sync.adapters.base import ProviderClient, fetch_parallel
from app.services.sync.adapters.balldontlie_adapter import BalldontlieAdapter
from app.services.sync.adapters.odds_api_adapter import OddsApiAdapter
from app.services.sync.adapters.espn_adapter import EspnScoreboardAdapter

__all__ = [
    "ProviderClient",
    "fetch_parallel",
    "BalldontlieAdapter",
    "OddsApiAdapter",
    "EspnScoreboardAdapter",
]
