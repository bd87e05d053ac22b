"""Shared pytest fixtures for h2h-edge-sync-api tests."""
import os
import sys
from pathlib import Path
from datetime import datetime
from typing import AsyncGenerator, Dict, Generator, List, Optional

# Settings are read at import time; configure the test environment first
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["BALLDONTLIE_API_KEY"] = "test-bdl-key"
os.environ["THE_ODDS_API_KEY"] = "test-odds-key"
os.environ["PROVIDER_MAX_RETRIES"] = "3"
os.environ["PROVIDER_RETRY_BASE_DELAY"] = "0"
os.environ["PROVIDER_RETRY_MAX_DELAY"] = "0"
os.environ["PROVIDER_BATCH_PAUSE"] = "0"
os.environ["LOG_JSON"] = "false"

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool
from httpx import AsyncClient, ASGITransport

# Add project root to Python path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))


@pytest.fixture(scope="function")
def session_factory() -> Generator[sessionmaker, None, None]:
    """Session factory bound to a fresh in-memory database."""
    from app.models import Base

    # StaticPool keeps a single connection so every session sees the same data
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)

    yield sessionmaker(bind=engine, autocommit=False, autoflush=False)

    engine.dispose()


@pytest.fixture(scope="function")
def db_session(session_factory: sessionmaker) -> Generator[Session, None, None]:
    """Create fresh test database session with isolated in-memory database."""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def tables():
    """The shipped lookup tables."""
    from app.services.sync.utils.lookup_tables import get_lookup_tables
    return get_lookup_tables()


@pytest.fixture(scope="function")
async def async_client(session_factory: sessionmaker) -> AsyncGenerator[AsyncClient, None]:
    """Create async HTTP client for testing FastAPI endpoints."""
    from app.main import app
    from app.core.database import get_db, get_session_factory

    # One session per request, like the real dependency
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as client:
        yield client

    app.dependency_overrides.clear()


# =============================================================================
# PAYLOAD BUILDERS
# =============================================================================

def feed_row(
    game_id: int,
    start: datetime,
    home: str,
    away: str,
    status: str = "Final",
    home_score: Optional[int] = 110,
    away_score: Optional[int] = 100,
    season: int = 2023,
    postseason: bool = False,
) -> Dict:
    """One balldontlie-style game row."""
    return {
        "id": game_id,
        "date": start.date().isoformat(),
        "datetime": start.isoformat() + "Z",
        "season": season,
        "status": status,
        "postseason": postseason,
        "home_team": {"id": 1, "abbreviation": home, "full_name": home},
        "visitor_team": {"id": 2, "abbreviation": away, "full_name": away},
        "home_team_score": home_score,
        "visitor_team_score": away_score,
    }


def odds_event(
    event_id: str,
    home: Optional[str],
    away: Optional[str],
    commence: datetime,
    line: Optional[float] = 220.5,
    bookmaker: str = "draftkings",
) -> Dict:
    """One odds-feed event carrying a single bookmaker's totals line."""
    bookmakers: List[Dict] = []
    if line is not None:
        bookmakers.append({
            "key": bookmaker,
            "title": bookmaker.title(),
            "markets": [{
                "key": "totals",
                "outcomes": [
                    {"name": "Over", "price": -110, "point": line},
                    {"name": "Under", "price": -110, "point": line},
                ],
            }],
        })
    return {
        "id": event_id,
        "sport_key": "basketball_nba",
        "commence_time": commence.isoformat() + "Z",
        "home_team": home,
        "away_team": away,
        "bookmakers": bookmakers,
    }


def scoreboard_event(
    home: str,
    away: str,
    home_score: int,
    away_score: int,
    completed: bool = True,
    start: Optional[datetime] = None,
) -> Dict:
    """One ESPN-style scoreboard event."""
    event = {
        "id": f"{away}@{home}",
        "status": {"type": {"completed": completed}},
        "competitions": [{
            "competitors": [
                {"homeAway": "home", "score": str(home_score), "team": {"abbreviation": home}},
                {"homeAway": "away", "score": str(away_score), "team": {"abbreviation": away}},
            ]
        }],
    }
    if start is not None:
        # ESPN omits seconds: "2024-04-02T02:10Z"
        event["date"] = start.strftime("%Y-%m-%dT%H:%MZ")
    return event


# =============================================================================
# DATA FIXTURES
# =============================================================================

@pytest.fixture
def ingest(db_session: Session, tables):
    """
    Ingest feed rows through the real engine, one unit of work per row.

    Usage:
        games = ingest([feed_row(...), ...], sport_id="nba")
    """
    from app.services.sync.identity_registry import RunCache
    from app.services.sync.ingestion import IngestionEngine, SyncCounters

    def _ingest(rows: List[Dict], sport_id: str = "nba"):
        engine = IngestionEngine(db_session, adapter=None, tables=tables)
        counters = SyncCounters()
        cache = RunCache()
        games = [engine.ingest_row(sport_id, row, counters, cache) for row in rows]
        return [game for game in games if game is not None]

    return _ingest


@pytest.fixture
def head_to_head_history(ingest):
    """Five finished LAL-BOS games with totals 180..220, alternating home side."""
    rows = [
        feed_row(1001, datetime(2023, 1, 10, 0, 30), "LAL", "BOS", home_score=100, away_score=80),
        feed_row(1002, datetime(2023, 2, 10, 0, 30), "BOS", "LAL", home_score=100, away_score=90),
        feed_row(1003, datetime(2023, 3, 10, 0, 30), "LAL", "BOS", home_score=100, away_score=100),
        feed_row(1004, datetime(2023, 11, 10, 0, 30), "BOS", "LAL", home_score=110, away_score=100),
        feed_row(1005, datetime(2023, 12, 10, 0, 30), "LAL", "BOS", home_score=120, away_score=100),
    ]
    return ingest(rows)
