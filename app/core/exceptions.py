"""
Exception types shared by the sync and edge services.

Only failures that stop a unit of work are modelled as exceptions.
"No match found" outcomes are return values, never raised.
"""


class ConfigurationError(Exception):
    """A required secret or setting is missing; the whole job aborts."""


class ProviderRequestError(Exception):
    """
    A provider request was abandoned.

    Raised after retries are exhausted for 429/5xx/network failures, or
    immediately for other 4xx responses. Callers record it against the
    page or date being fetched and carry on.
    """

    def __init__(self, message: str, status_code: int | None = None, url: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.url = url


class PayloadValidationError(Exception):
    """A provider row failed validation at the ingestion boundary."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class VersionOverlapError(Exception):
    """A TeamVersion date range would overlap another version of the same franchise."""
