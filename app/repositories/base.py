"""
Base repository class for data access layer.

The repository pattern provides:
1. Separation of data access logic from business logic
2. Single place for query logic (easier to maintain)
3. Easier testing (can mock repositories)

Example:
    class GameRepository(BaseRepository[Game]):
        def find_by_provider_key(self, sport_id: str, key: str) -> Optional[Game]:
            return self.where_first(Game.sport_id == sport_id, Game.provider_game_key == key)
"""
from abc import ABC
from datetime import datetime
from typing import Generic, List, Optional, Type, TypeVar

from sqlalchemy.orm import Session

T = TypeVar("T")


class BaseRepository(Generic[T], ABC):
    """
    Base repository class providing common data access methods.

    Attributes:
        model_type: The SQLAlchemy model class this repository manages
        db: The database session
    """

    def __init__(self, model_type: Type[T], db: Session):
        self.model_type = model_type
        self.db = db

    def where_first(self, *criterion) -> Optional[T]:
        """Filter records using SQLAlchemy expressions and return first match."""
        return self.db.query(self.model_type).filter(*criterion).first()

    def in_date_range(
        self,
        date_field: str,
        start: datetime,
        end: datetime,
        *additional_criterion
    ) -> List[T]:
        """
        Find records within a half-open datetime range.

        Args:
            date_field: Name of the datetime field to filter on
            start: Start (inclusive)
            end: End (exclusive)
            additional_criterion: Additional filter criteria
        """
        column = getattr(self.model_type, date_field)
        query = self.db.query(self.model_type).filter(column >= start, column < end)
        if additional_criterion:
            query = query.filter(*additional_criterion)
        return query.order_by(column).all()
