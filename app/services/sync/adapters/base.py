"""
Base HTTP client shared by the provider adapters.

The base client provides:
- Retry with exponential backoff (tenacity) for network errors, 429 and 5xx
- Immediate abandonment of other 4xx responses
- Bounded concurrent batches with an inter-batch pause

Every abandoned request surfaces as ``ProviderRequestError`` so callers can
record it against the page or date being fetched and keep going.

Usage:
    async with BalldontlieAdapter(api_key="...") as adapter:
        payload = await adapter.get_json("v1/games", params=[("dates[]", "2024-01-15")])
"""
import asyncio
from typing import Any, Awaitable, Callable, List, Mapping, Optional, Sequence

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from app.core import metrics
from app.core.config import settings
from app.core.exceptions import ProviderRequestError
from app.core.logging import get_logger

logger = get_logger(__name__)

RETRYABLE_STATUS_CODES = frozenset({429})


class RetryableStatusError(Exception):
    """A 429 or 5xx response; retried until the attempt ceiling."""

    def __init__(self, status_code: int, url: str):
        super().__init__(f"HTTP {status_code} from {url}")
        self.status_code = status_code
        self.url = url


def is_retryable_status(status_code: int) -> bool:
    return status_code in RETRYABLE_STATUS_CODES or status_code >= 500


class ProviderClient:
    """
    Async JSON client with retry, used as a base by every adapter.

    Attributes:
        provider_name: Label used in logs and metrics
        base_url: Provider base URL
        max_retries: Attempt ceiling per request
        base_delay: First backoff delay in seconds (doubled per attempt)
        max_delay: Backoff cap in seconds
    """

    provider_name = "provider"

    def __init__(
        self,
        base_url: str,
        headers: Optional[Mapping[str, str]] = None,
        client: Optional[httpx.AsyncClient] = None,
        max_retries: Optional[int] = None,
        base_delay: Optional[float] = None,
        max_delay: Optional[float] = None,
        timeout: Optional[float] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.headers = {"Accept": "application/json", **(headers or {})}
        self.max_retries = max_retries if max_retries is not None else settings.PROVIDER_MAX_RETRIES
        self.base_delay = base_delay if base_delay is not None else settings.PROVIDER_RETRY_BASE_DELAY
        self.max_delay = max_delay if max_delay is not None else settings.PROVIDER_RETRY_MAX_DELAY
        self.timeout = timeout if timeout is not None else settings.PROVIDER_TIMEOUT

        self._client = client
        self._owns_client = client is None

    async def __aenter__(self):
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
            self._owns_client = True
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
            self._owns_client = True
        return self._client

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(max(1, self.max_retries)),
            wait=wait_exponential(multiplier=self.base_delay, max=self.max_delay),
            retry=retry_if_exception_type((RetryableStatusError, httpx.TransportError)),
            before_sleep=self._log_retry,
            reraise=True,
        )

    def _log_retry(self, retry_state: RetryCallState) -> None:
        metrics.provider_requests_total.labels(provider=self.provider_name, outcome="retry").inc()
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.info(
            f"[{self.provider_name}] retry {retry_state.attempt_number}/{self.max_retries} after: {exc}"
        )

    async def get_json(
        self,
        path: str,
        params: Optional[Any] = None,
    ) -> Any:
        """
        GET a JSON document with retry.

        Args:
            path: Path relative to base_url, or an absolute URL
            params: Query params (mapping or list of tuples for repeated keys)

        Returns:
            Parsed JSON

        Raises:
            ProviderRequestError: Non-retriable 4xx, exhausted retries or invalid JSON
        """
        url = path if path.startswith("http") else f"{self.base_url}/{path.lstrip('/')}"

        try:
            async for attempt in self._retrying():
                with attempt:
                    response = await self._send(url, params)
        except RetryableStatusError as e:
            self._record_abandoned()
            raise ProviderRequestError(
                f"{self.provider_name}: HTTP {e.status_code} after {self.max_retries} attempts",
                status_code=e.status_code,
                url=url,
            ) from e
        except httpx.TransportError as e:
            self._record_abandoned()
            raise ProviderRequestError(
                f"{self.provider_name}: {type(e).__name__} after {self.max_retries} attempts",
                url=url,
            ) from e

        try:
            payload = response.json()
        except ValueError as e:
            self._record_abandoned()
            raise ProviderRequestError(f"{self.provider_name}: invalid JSON from {url}", url=url) from e

        metrics.provider_requests_total.labels(provider=self.provider_name, outcome="success").inc()
        return payload

    async def _send(self, url: str, params: Optional[Any]) -> httpx.Response:
        response = await self.client.get(url, params=params, headers=self.headers)

        if is_retryable_status(response.status_code):
            raise RetryableStatusError(response.status_code, url)

        if response.status_code >= 400:
            # Other 4xx: abandon this request only
            self._record_abandoned()
            raise ProviderRequestError(
                f"{self.provider_name}: HTTP {response.status_code} for {url}",
                status_code=response.status_code,
                url=url,
            )

        return response

    def _record_abandoned(self) -> None:
        metrics.provider_requests_total.labels(provider=self.provider_name, outcome="abandoned").inc()


async def fetch_parallel(
    factories: Sequence[Callable[[], Awaitable[Any]]],
    batch_size: Optional[int] = None,
    pause: Optional[float] = None,
) -> List[Any]:
    """
    Run request factories in bounded concurrent batches.

    All requests in a batch are awaited together before the next batch
    starts, with a short pause between batches. A ``ProviderRequestError``
    is returned in place of that request's result; any other exception
    propagates.

    Args:
        factories: Zero-argument callables returning awaitables
        batch_size: Requests per batch (default settings.PROVIDER_BATCH_SIZE)
        pause: Seconds between batches (default settings.PROVIDER_BATCH_PAUSE)

    Returns:
        Results in the same order as ``factories``
    """
    size = batch_size or settings.PROVIDER_BATCH_SIZE
    delay = settings.PROVIDER_BATCH_PAUSE if pause is None else pause

    results: List[Any] = []
    for start in range(0, len(factories), size):
        batch = factories[start:start + size]
        outcomes = await asyncio.gather(*(factory() for factory in batch), return_exceptions=True)

        for outcome in outcomes:
            if isinstance(outcome, BaseException) and not isinstance(outcome, ProviderRequestError):
                raise outcome
        results.extend(outcomes)

        if start + size < len(factories) and delay > 0:
            await asyncio.sleep(delay)

    return results


def chunked(items: Sequence[Any], size: int) -> List[Sequence[Any]]:
    """Split a sequence into consecutive chunks of at most ``size``."""
    return [items[i:i + size] for i in range(0, len(items), size)]

