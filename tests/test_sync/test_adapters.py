"""
Tests for the provider adapters and the retrying base client.

Test Strategy:
1. 429 and 5xx are retried up to the attempt ceiling
2. Other 4xx abandon the request after one attempt
3. Network errors are retried and then abandoned
4. Cursor pagination continues until no cursor is returned
5. Odds, participants and scoreboard payloads are validated at the boundary
6. Bounded concurrent batches keep order and return abandoned requests in place

All HTTP goes through httpx.MockTransport; retry delays are zero in tests.

Each test follows the pattern:
- Given: A mock transport scripted with responses
- When: The adapter fetches
- Then: Results, attempts and errors match exactly
"""
from datetime import date, datetime

import httpx
import pytest

from app.core.exceptions import ProviderRequestError
from app.services.sync.adapters.balldontlie_adapter import BalldontlieAdapter
from app.services.sync.adapters.base import ProviderClient, chunked, fetch_parallel
from app.services.sync.adapters.espn_adapter import EspnScoreboardAdapter
from app.services.sync.adapters.odds_api_adapter import OddsApiAdapter
from conftest import feed_row, odds_event, scoreboard_event


def mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class ScriptedHandler:
    """Return scripted responses in order and record each request."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response


class TestProviderClient:
    """Test suite for retry behaviour."""

    # ─────────────────────────────────────────────────────────────
    # Retry Tests
    # ─────────────────────────────────────────────────────────────

    @pytest.mark.asyncio
    async def test_retries_rate_limit_then_succeeds(self):
        """Should retry 429 responses and return the eventual payload."""
        handler = ScriptedHandler(
            httpx.Response(429),
            httpx.Response(429),
            httpx.Response(200, json={"ok": True}),
        )
        async with mock_client(handler) as client:
            provider = ProviderClient("https://example.test", client=client, max_retries=5, base_delay=0, max_delay=0)
            payload = await provider.get_json("things")

        assert payload == {"ok": True}
        assert len(handler.requests) == 3

    @pytest.mark.asyncio
    async def test_server_errors_exhaust_retries(self):
        """Should give up after the attempt ceiling on persistent 5xx."""
        handler = ScriptedHandler(httpx.Response(503))
        async with mock_client(handler) as client:
            provider = ProviderClient("https://example.test", client=client, max_retries=3, base_delay=0, max_delay=0)
            with pytest.raises(ProviderRequestError) as exc_info:
                await provider.get_json("things")

        assert exc_info.value.status_code == 503
        assert len(handler.requests) == 3

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self):
        """Should abandon a 404 after a single attempt."""
        handler = ScriptedHandler(httpx.Response(404))
        async with mock_client(handler) as client:
            provider = ProviderClient("https://example.test", client=client, max_retries=5, base_delay=0, max_delay=0)
            with pytest.raises(ProviderRequestError) as exc_info:
                await provider.get_json("things")

        assert exc_info.value.status_code == 404
        assert len(handler.requests) == 1

    @pytest.mark.asyncio
    async def test_network_error_retried(self):
        """Should retry transport errors and then abandon the request."""
        handler = ScriptedHandler(httpx.ConnectError("connection refused"))
        async with mock_client(handler) as client:
            provider = ProviderClient("https://example.test", client=client, max_retries=2, base_delay=0, max_delay=0)
            with pytest.raises(ProviderRequestError):
                await provider.get_json("things")

        assert len(handler.requests) == 2

    @pytest.mark.asyncio
    async def test_invalid_json_abandoned(self):
        """Should abandon a response that is not JSON."""
        handler = ScriptedHandler(httpx.Response(200, text="<html>"))
        async with mock_client(handler) as client:
            provider = ProviderClient("https://example.test", client=client, base_delay=0, max_delay=0)
            with pytest.raises(ProviderRequestError):
                await provider.get_json("things")


class TestFetchParallel:
    """Test suite for bounded concurrent batches."""

    @pytest.mark.asyncio
    async def test_keeps_order_and_returns_errors_in_place(self):
        """Should return results in request order with abandoned requests in place."""
        async def ok(value):
            return value

        async def abandoned():
            raise ProviderRequestError("gone", status_code=404)

        results = await fetch_parallel(
            [lambda: ok(1), abandoned, lambda: ok(3)],
            batch_size=2,
            pause=0,
        )

        assert results[0] == 1
        assert isinstance(results[1], ProviderRequestError)
        assert results[2] == 3

    @pytest.mark.asyncio
    async def test_unexpected_errors_propagate(self):
        """Should re-raise anything that is not an abandoned request."""
        async def broken():
            raise RuntimeError("bug")

        with pytest.raises(RuntimeError):
            await fetch_parallel([broken], pause=0)

    def test_chunked(self):
        """Should split into consecutive chunks."""
        assert chunked([1, 2, 3, 4, 5], 2) == [[1, 2], [3, 4], [5]]


class TestBalldontlieAdapter:
    """Test suite for the paginated game feed."""

    @pytest.mark.asyncio
    async def test_follows_cursor_until_exhausted(self):
        """Should request pages until meta.next_cursor is absent."""
        start = datetime(2024, 1, 15, 19, 0)
        handler = ScriptedHandler(
            httpx.Response(200, json={"data": [feed_row(1, start, "LAL", "BOS")], "meta": {"next_cursor": 77}}),
            httpx.Response(200, json={"data": [feed_row(2, start, "MIA", "NYK")], "meta": {}}),
        )
        async with mock_client(handler) as client:
            adapter = BalldontlieAdapter(api_key="secret", client=client, base_delay=0, max_delay=0)
            pages = [page async for page in adapter.iter_games_by_dates("nba", [date(2024, 1, 15)])]

        assert [len(page.rows) for page in pages] == [1, 1]
        assert all(page.error is None for page in pages)

        first, second = handler.requests
        assert first.url.path == "/v1/games"
        assert first.headers["Authorization"] == "secret"
        assert first.url.params.get_list("dates[]") == ["2024-01-15"]
        assert "cursor" not in first.url.params
        assert second.url.params["cursor"] == "77"

    @pytest.mark.asyncio
    async def test_dates_are_chunked(self):
        """Should send dates in chunks of repeated dates[] params."""
        handler = ScriptedHandler(httpx.Response(200, json={"data": [], "meta": {}}))
        dates = [date(2024, 1, day) for day in range(1, 4)]
        async with mock_client(handler) as client:
            adapter = BalldontlieAdapter(api_key="secret", client=client, base_delay=0, max_delay=0)
            pages = [page async for page in adapter.iter_games_by_dates("nba", dates, dates_per_request=2)]

        assert len(pages) == 2
        assert [r.url.params.get_list("dates[]") for r in handler.requests] == [
            ["2024-01-01", "2024-01-02"],
            ["2024-01-03"],
        ]

    @pytest.mark.asyncio
    async def test_abandoned_page_ends_pagination(self):
        """Should yield an error page and stop when a page is abandoned."""
        handler = ScriptedHandler(
            httpx.Response(200, json={"data": [], "meta": {"next_cursor": 5}}),
            httpx.Response(400),
        )
        async with mock_client(handler) as client:
            adapter = BalldontlieAdapter(api_key="secret", client=client, base_delay=0, max_delay=0)
            pages = [page async for page in adapter.iter_games_by_seasons("nba", [2023])]

        assert len(pages) == 2
        assert pages[1].error is not None
        assert handler.requests[0].url.params["seasons[]"] == "2023"

    @pytest.mark.asyncio
    async def test_sport_paths(self):
        """Should use the per-sport feed path."""
        handler = ScriptedHandler(httpx.Response(200, json={"data": [], "meta": {}}))
        async with mock_client(handler) as client:
            adapter = BalldontlieAdapter(api_key="secret", client=client)
            [page async for page in adapter.iter_games_by_dates("nfl", [date(2024, 1, 14)])]

        assert handler.requests[0].url.path == "/nfl/v1/games"


class TestOddsApiAdapter:
    """Test suite for the odds and participants feeds."""

    @pytest.mark.asyncio
    async def test_fetch_odds_validates_events(self):
        """Should keep valid events and report malformed ones."""
        valid = odds_event("e1", "LA Clippers", "Boston Celtics", datetime(2024, 1, 16, 0, 30))
        malformed = {"id": "e2", "home_team": "Miami Heat"}
        handler = ScriptedHandler(httpx.Response(200, json=[valid, malformed]))

        async with mock_client(handler) as client:
            adapter = OddsApiAdapter(api_key="odds-key", client=client)
            result = await adapter.fetch_odds("nba")

        assert [e.id for e in result.events] == ["e1"]
        assert result.events[0].totals_line("draftkings") == 220.5
        assert len(result.rejected) == 1
        assert result.rejected[0].startswith("event e2:")

        request = handler.requests[0]
        assert request.url.path == "/v4/sports/basketball_nba/odds/"
        assert request.url.params["apiKey"] == "odds-key"
        assert request.url.params["bookmakers"] == "draftkings"
        assert request.url.params["markets"] == "totals"

    @pytest.mark.asyncio
    async def test_fetch_participants(self):
        """Should accept bare strings and name-bearing objects."""
        handler = ScriptedHandler(httpx.Response(200, json=["Lakers", {"full_name": "Boston Celtics"}, {"id": 3}, ""]))

        async with mock_client(handler) as client:
            adapter = OddsApiAdapter(api_key="odds-key", client=client)
            names, rejected = await adapter.fetch_participants("nba")

        assert names == ["Lakers", "Boston Celtics"]
        assert len(rejected) == 2
        assert handler.requests[0].url.path == "/v4/sports/basketball_nba/participants"


class TestEspnScoreboardAdapter:
    """Test suite for the authoritative scoreboard."""

    @pytest.mark.asyncio
    async def test_returns_completed_games_only(self):
        """Should parse completed events and skip the rest."""
        payload = {"events": [
            scoreboard_event("LAL", "BOS", 112, 100),
            scoreboard_event("MIA", "NY", 50, 48, completed=False),
            {"status": {"type": {"completed": True}}, "competitions": []},
        ]}
        handler = ScriptedHandler(httpx.Response(200, json=payload))

        async with mock_client(handler) as client:
            adapter = EspnScoreboardAdapter(client=client)
            finals = await adapter.fetch_final_scores("nba", date(2024, 1, 15))

        assert len(finals) == 1
        assert (finals[0].home_abbrev, finals[0].away_abbrev, finals[0].total) == ("LAL", "BOS", 212)

        request = handler.requests[0]
        assert request.url.path == "/apis/site/v2/sports/basketball/nba/scoreboard"
        assert request.url.params["dates"] == "20240115"

    @pytest.mark.asyncio
    async def test_keeps_event_start_time(self):
        """Should carry the event start as naive UTC, or None when unreadable."""
        timed = scoreboard_event("LAD", "SF", 5, 3, start=datetime(2024, 4, 2, 2, 10))
        garbled = {**scoreboard_event("NYY", "BOS", 4, 2), "date": "tomorrow night"}
        handler = ScriptedHandler(httpx.Response(200, json={"events": [timed, garbled]}))

        async with mock_client(handler) as client:
            finals = await EspnScoreboardAdapter(client=client).fetch_final_scores("mlb", date(2024, 4, 1))

        assert finals[0].start_time == datetime(2024, 4, 2, 2, 10)
        assert finals[1].start_time is None

    @pytest.mark.asyncio
    async def test_sport_without_scoreboard(self):
        """Should abandon the request for a sport with no scoreboard."""
        adapter = EspnScoreboardAdapter(client=mock_client(ScriptedHandler(httpx.Response(200, json={}))))

        with pytest.raises(ProviderRequestError):
            await adapter.fetch_final_scores("soccer", date(2024, 1, 15))
