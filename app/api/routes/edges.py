"""
Edge routes for the daily head-to-head percentile edges.

Provides read access to computed DailyEdge rows and to the hit rate of
past over/under classifications.
"""
from datetime import date
from typing import Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from app.api.routes.jobs import resolve_sports
from app.core.database import get_db
from app.core.logging import get_logger
from app.services.edges.edge_service import EdgeService, serialize_edge
from app.utils.timezone import today_local

logger = get_logger(__name__)

router = APIRouter(prefix="/edges", tags=["edges"])


@router.get("")
async def get_edges(
    date_local: Optional[date] = Query(None, alias="date", description="Local date (default: today)"),
    sport: Optional[str] = Query(None, description="Filter by sport"),
    visible_only: bool = Query(False, description="Only edges with enough head-to-head history"),
    db: Session = Depends(get_db),
) -> Dict:
    """
    Daily edges for a local date.

    Returns:
        - date: The local date queried
        - count: Number of edges returned
        - edges: One entry per game with percentiles, line and classification
    """
    day = date_local or today_local()
    sport_id = resolve_sports([sport])[0] if sport else None

    edges = EdgeService(db).edges_for_date(day, sport_id)
    if visible_only:
        edges = [edge for edge in edges if edge.is_visible]

    return {
        "date": day.isoformat(),
        "sport": sport_id,
        "count": len(edges),
        "edges": [serialize_edge(edge) for edge in edges],
    }


@router.get("/accuracy")
async def get_edge_accuracy(
    days: int = Query(30, ge=1, le=365, description="Number of days to analyze"),
    sport: Optional[str] = Query(None, description="Filter by sport"),
    db: Session = Depends(get_db),
) -> Dict:
    """
    Hit rate of graded over/under edges whose games are final.

    Pushes are counted but excluded from the hit rate.
    """
    sport_id = resolve_sports([sport])[0] if sport else None
    try:
        return EdgeService(db).accuracy(days=days, sport_id=sport_id)
    except Exception as e:
        logger.error(f"Error calculating edge accuracy: {e}")
        raise HTTPException(status_code=500, detail=str(e))
