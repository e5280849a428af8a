"""
Trading 212 brokerage client.

Uses the Trading 212 public API (https://live.trading212.com/api/v0) to read
pies, pie details, the instrument catalogue and the cash balance. Every call
goes through the shared ResilientApiClient and returns an Outcome.
"""

import logging
from typing import Any, Optional

from pie_pilot.models import Outcome, RefreshSettings
from pie_pilot.data.providers.cache import ResponseCache
from pie_pilot.data.providers.http_client import (
    DEFAULT_DELAY,
    DEFAULT_RETRIES,
    ResilientApiClient,
)
from pie_pilot.data.providers.rate_limit import TokenBucketRateLimiter

logger = logging.getLogger(__name__)


class Trading212Client:
    """
    Read-only client for the Trading 212 equity endpoints.

    Requests are cached per user id, so two users sharing one
    ResilientApiClient never see each other's responses.
    """

    BASE_URL = "https://live.trading212.com/api/v0"
    PIES_ENDPOINT = "{base}/equity/pies"
    PIE_ENDPOINT = "{base}/equity/pies/{pie_id}"
    INSTRUMENTS_ENDPOINT = "{base}/equity/metadata/instruments"
    CASH_ENDPOINT = "{base}/equity/account/cash"

    def __init__(
        self,
        api_key: str,
        http_client: ResilientApiClient,
        user_id: Optional[str] = None,
        base_url: Optional[str] = None,
        delay: float = DEFAULT_DELAY,
        retries: int = DEFAULT_RETRIES,
    ):
        """
        Initialize the client.

        Args:
            api_key: Trading 212 API key for this user
            http_client: Shared resilient HTTP client
            user_id: Cache partition for this user's responses
            base_url: Override for the API root (demo environment, tests)
            delay: Initial retry backoff in seconds
            retries: Retries after the first attempt
        """
        if not api_key:
            raise ValueError("Trading 212 API key is required")
        self._api_key = api_key
        self._http = http_client
        self.user_id = user_id
        self.base_url = (base_url or self.BASE_URL).rstrip("/")
        self.delay = delay
        self.retries = retries

    @property
    def headers(self) -> dict[str, str]:
        return {
            "Authorization": self._api_key,
            "Accept": "application/json",
        }

    def _get(self, url: str) -> Outcome[Any]:
        return self._http.request_json(
            url,
            headers=self.headers,
            delay=self.delay,
            retries=self.retries,
            cache_scope=self.user_id,
        )

    def get_pies(self) -> Outcome[Any]:
        """List the user's pies (id plus summary figures per entry)."""
        return self._get(self.PIES_ENDPOINT.format(base=self.base_url))

    def get_pie(self, pie_id: int | str) -> Outcome[Any]:
        """Fetch one pie's settings and instrument holdings."""
        return self._get(self.PIE_ENDPOINT.format(base=self.base_url, pie_id=pie_id))

    def get_instruments(self) -> Outcome[Any]:
        """Fetch the full tradable instrument catalogue."""
        return self._get(self.INSTRUMENTS_ENDPOINT.format(base=self.base_url))

    def get_cash(self) -> Outcome[Any]:
        """Fetch the account cash balance."""
        return self._get(self.CASH_ENDPOINT.format(base=self.base_url))


def create_trading212_client(
    api_key: str,
    cache: ResponseCache,
    settings: Optional[RefreshSettings] = None,
    user_id: Optional[str] = None,
) -> Trading212Client:
    """
    Build a Trading212Client wired to a resilient HTTP client.

    Args:
        api_key: Trading 212 API key
        cache: Response cache store (shared across users, partitioned by id)
        settings: Refresh settings for timeouts, retries and rate limits
        user_id: Cache partition for this user

    Returns:
        Configured Trading212Client
    """
    settings = settings or RefreshSettings()
    http_client = ResilientApiClient(
        cache=cache,
        rate_limiter=TokenBucketRateLimiter(settings.broker_rate_per_second),
        timeout=settings.request_timeout,
    )
    return Trading212Client(
        api_key=api_key,
        http_client=http_client,
        user_id=user_id,
        delay=settings.request_delay,
        retries=settings.request_retries,
    )
