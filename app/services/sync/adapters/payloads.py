"""Validated payload shapes for the external feeds.

Every provider row is parsed into one of these models at the adapter
boundary. Malformed rows raise ``PayloadValidationError`` with a short
reason string, which the ingestion loop counts and samples instead of
letting bad data reach matching logic.
"""
from datetime import datetime
from typing import Any, List, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from app.core.exceptions import PayloadValidationError
from app.services.sync.game_status import GameStatus, parse_provider_status
from app.utils.timezone import parse_timestamp, to_naive_utc


def _validation_reason(error: ValidationError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ())) or "payload"
    return f"{location}: {first.get('msg', 'invalid')}"


def _coerce_timestamp(value: Any) -> Any:
    if isinstance(value, str):
        return parse_timestamp(value)
    if isinstance(value, datetime):
        return to_naive_utc(value)
    return value


# =============================================================================
# GAME FEED
# =============================================================================

class FeedTeam(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[int] = None
    abbreviation: str = Field(min_length=1)
    full_name: Optional[str] = None
    name: Optional[str] = None
    city: Optional[str] = Field(default=None, validation_alias=AliasChoices("city", "location"))

    @field_validator("abbreviation")
    @classmethod
    def _upper(cls, value: str) -> str:
        return value.strip().upper()


class FeedGame(BaseModel):
    """
    One game from the paginated game feed.

    The feed reports the start time as ``datetime`` (or only ``date`` for
    older seasons) and the away side as ``visitor_team`` or ``away_team``
    depending on the sport.
    """
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: int
    start_time: datetime = Field(validation_alias=AliasChoices("datetime", "date"))
    season: Optional[int] = None
    status: Optional[str] = None
    postseason: bool = False
    home_team: FeedTeam
    away_team: FeedTeam = Field(validation_alias=AliasChoices("visitor_team", "away_team"))
    home_score: Optional[int] = Field(default=None, validation_alias=AliasChoices("home_team_score", "home_score"))
    away_score: Optional[int] = Field(
        default=None, validation_alias=AliasChoices("visitor_team_score", "away_team_score", "away_score")
    )
    week: Optional[int] = None

    @model_validator(mode="before")
    @classmethod
    def _prefer_datetime(cls, data: Any) -> Any:
        # "datetime" may be present but null; fall back to "date"
        if isinstance(data, dict) and not data.get("datetime") and data.get("date"):
            data = {k: v for k, v in data.items() if k != "datetime"}
        return data

    @field_validator("start_time", mode="before")
    @classmethod
    def _parse_start(cls, value: Any) -> Any:
        return _coerce_timestamp(value)

    @field_validator("home_score", "away_score")
    @classmethod
    def _non_negative(cls, value: Optional[int]) -> Optional[int]:
        if value is not None and value < 0:
            raise ValueError("negative score")
        return value

    @property
    def game_status(self) -> GameStatus:
        return parse_provider_status(self.status)

    @property
    def has_scores(self) -> bool:
        return self.home_score is not None and self.away_score is not None

    @property
    def season_year(self) -> int:
        return self.season if self.season is not None else self.start_time.year


def parse_feed_game(row: Any) -> FeedGame:
    """
    Validate one game-feed row.

    Raises:
        PayloadValidationError: With the first validation failure as reason
    """
    try:
        return FeedGame.model_validate(row)
    except ValidationError as e:
        raise PayloadValidationError(_validation_reason(e)) from e


# =============================================================================
# ODDS FEED
# =============================================================================

class OddsOutcome(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: Optional[str] = None
    price: Optional[float] = None
    point: Optional[float] = None


class OddsMarket(BaseModel):
    model_config = ConfigDict(extra="ignore")

    key: str
    outcomes: List[OddsOutcome] = Field(default_factory=list)


class OddsBookmaker(BaseModel):
    model_config = ConfigDict(extra="ignore")

    key: str
    title: Optional[str] = None
    markets: List[OddsMarket] = Field(default_factory=list)


class OddsEvent(BaseModel):
    """One event from the odds feed. Team names may be missing."""
    model_config = ConfigDict(extra="ignore")

    id: str
    sport_key: Optional[str] = None
    commence_time: datetime
    home_team: Optional[str] = None
    away_team: Optional[str] = None
    bookmakers: List[OddsBookmaker] = Field(default_factory=list)

    @field_validator("commence_time", mode="before")
    @classmethod
    def _parse_commence(cls, value: Any) -> Any:
        return _coerce_timestamp(value)

    def totals_line(self, bookmaker: str, market: str = "totals") -> Optional[float]:
        """
        Line offered by one bookmaker for one market.

        Only the named bookmaker and market are consulted; the line is the
        first outcome's point.
        """
        for book in self.bookmakers:
            if book.key != bookmaker:
                continue
            for book_market in book.markets:
                if book_market.key == market and book_market.outcomes:
                    return book_market.outcomes[0].point
        return None


def parse_odds_event(row: Any) -> OddsEvent:
    """
    Validate one odds-feed event.

    Raises:
        PayloadValidationError: With the first validation failure as reason
    """
    try:
        return OddsEvent.model_validate(row)
    except ValidationError as e:
        raise PayloadValidationError(_validation_reason(e)) from e


# =============================================================================
# PARTICIPANTS FEED
# =============================================================================

class Participant(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str = Field(min_length=1, validation_alias=AliasChoices("full_name", "name"))


def parse_participant(item: Union[str, dict, Any]) -> str:
    """
    Participant display name from a bare string or a name-bearing object.

    Raises:
        PayloadValidationError: If no usable name is present
    """
    if isinstance(item, str):
        if not item.strip():
            raise PayloadValidationError("empty participant name")
        return item.strip()
    try:
        return Participant.model_validate(item).name.strip()
    except ValidationError as e:
        raise PayloadValidationError(_validation_reason(e)) from e


# =============================================================================
# AUTHORITATIVE SCOREBOARD
# =============================================================================

class ScoreboardTeam(BaseModel):
    model_config = ConfigDict(extra="ignore")

    abbreviation: str


class ScoreboardCompetitor(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    home_away: str = Field(validation_alias=AliasChoices("homeAway", "home_away"))
    score: Optional[str] = None
    team: ScoreboardTeam


class ScoreboardCompetition(BaseModel):
    model_config = ConfigDict(extra="ignore")

    competitors: List[ScoreboardCompetitor] = Field(default_factory=list)


class ScoreboardStatusType(BaseModel):
    model_config = ConfigDict(extra="ignore")

    completed: bool = False


class ScoreboardStatus(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: ScoreboardStatusType = Field(default_factory=ScoreboardStatusType)


class ScoreboardEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    start_time: Optional[datetime] = Field(default=None, validation_alias="date")
    status: ScoreboardStatus = Field(default_factory=ScoreboardStatus)
    competitions: List[ScoreboardCompetition] = Field(default_factory=list)

    @field_validator("start_time", mode="before")
    @classmethod
    def _parse_start(cls, value: Any) -> Any:
        # Unreadable start times become None
        try:
            return _coerce_timestamp(value)
        except ValueError:
            return None


class FinalScore(BaseModel):
    """
    A completed game from the authoritative scoreboard.

    ``start_time`` is the event's scheduled start in naive UTC, used to
    tell apart games of a series between the same two teams.
    """
    home_abbrev: str
    away_abbrev: str
    home_score: int
    away_score: int
    start_time: Optional[datetime] = None

    @property
    def total(self) -> int:
        return self.home_score + self.away_score


def parse_final_score(row: Any) -> Optional[FinalScore]:
    """
    Completed game from a scoreboard event, or None.

    Incomplete events, events without both sides and events whose scores
    are not integers are skipped (None), not errors.

    Raises:
        PayloadValidationError: If the event structure itself is malformed
    """
    try:
        event = ScoreboardEvent.model_validate(row)
    except ValidationError as e:
        raise PayloadValidationError(_validation_reason(e)) from e

    if not event.status.type.completed or not event.competitions:
        return None

    competitors = event.competitions[0].competitors
    home = next((c for c in competitors if c.home_away == "home"), None)
    away = next((c for c in competitors if c.home_away == "away"), None)
    if home is None or away is None:
        return None

    try:
        home_score = int(home.score)
        away_score = int(away.score)
    except (TypeError, ValueError):
        return None

    return FinalScore(
        home_abbrev=home.team.abbreviation.upper(),
        away_abbrev=away.team.abbreviation.upper(),
        home_score=home_score,
        away_score=away_score,
        start_time=event.start_time,
    )
