"""
HTTP client with retry, backoff and response caching.

All broker calls go through ResilientApiClient. It never raises to the
caller: every request ends in an Outcome that either carries the response or
a FailureReason.
"""

import logging
import time
from typing import Any, Optional

import requests

from pie_pilot.models import FailureReason, Outcome
from pie_pilot.data.providers.cache import ResponseCache
from pie_pilot.data.providers.rate_limit import TokenBucketRateLimiter

logger = logging.getLogger(__name__)


DEFAULT_TIMEOUT = 10.0
DEFAULT_DELAY = 5.0
DEFAULT_RETRIES = 3


class ResilientApiClient:
    """
    Wrapper around ``requests`` that adds caching and exponential backoff.

    Features:
    - Successful responses are cached per (scope, method, url)
    - Non-2xx responses and transport errors are retried, doubling the delay
    - HTTP 401 stops retrying immediately
    - An optional token bucket paces outgoing requests
    """

    def __init__(
        self,
        cache: ResponseCache,
        rate_limiter: Optional[TokenBucketRateLimiter] = None,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize the client.

        Args:
            cache: Response store shared by all callers of this client
            rate_limiter: Optional limiter acquired before every network call
            timeout: Per-request timeout in seconds
            session: Optional requests session (defaults to module-level requests)
        """
        self.cache = cache
        self.rate_limiter = rate_limiter
        self.timeout = timeout
        self._http = session or requests

    def request(
        self,
        url: str,
        method: str = "GET",
        headers: Optional[dict[str, str]] = None,
        delay: float = DEFAULT_DELAY,
        retries: int = DEFAULT_RETRIES,
        cache_scope: Optional[str] = None,
    ) -> Outcome[requests.Response]:
        """
        Perform a request, serving from cache when possible.

        Args:
            url: Absolute URL
            method: HTTP method
            headers: Request headers
            delay: Seconds to wait before the first retry
            retries: Retries after the first attempt
            cache_scope: Cache partition, usually the user id

        Returns:
            Outcome with the response, or NETWORK / AUTHENTICATION failure
        """
        method = method.upper()
        cache_key = (cache_scope, method, url)

        cached = self.cache.get(cache_key)
        if cached is not None:
            logger.debug("Cache hit for %s %s", method, url)
            return Outcome.success(cached)

        last_error = ""
        for attempt in range(retries + 1):
            if self.rate_limiter is not None:
                self.rate_limiter.acquire()

            try:
                response = self._http.request(
                    method, url, headers=headers, timeout=self.timeout
                )
            except requests.RequestException as e:
                last_error = str(e) or type(e).__name__
            else:
                if response.status_code == 401:
                    logger.error("Authentication rejected for %s %s", method, url)
                    return Outcome.failure(
                        FailureReason.AUTHENTICATION,
                        f"HTTP 401 from {url}",
                    )
                if 200 <= response.status_code < 300:
                    self.cache.set(cache_key, response)
                    return Outcome.success(response)
                last_error = f"HTTP {response.status_code}"

            if attempt < retries:
                logger.warning(
                    "Request %s %s failed (%s), retrying in %.1fs (%d retries left)",
                    method, url, last_error, delay, retries - attempt,
                )
                time.sleep(delay)
                delay *= 2

        logger.error(
            "Request %s %s failed after %d attempts: %s",
            method, url, retries + 1, last_error,
        )
        return Outcome.failure(
            FailureReason.NETWORK,
            f"Failed to fetch {url} after {retries + 1} attempts: {last_error}",
        )

    def request_json(
        self,
        url: str,
        headers: Optional[dict[str, str]] = None,
        delay: float = DEFAULT_DELAY,
        retries: int = DEFAULT_RETRIES,
        cache_scope: Optional[str] = None,
    ) -> Outcome[Any]:
        """GET a URL and decode its JSON body; undecodable bodies fail as MALFORMED_DATA."""
        outcome = self.request(
            url,
            headers=headers,
            delay=delay,
            retries=retries,
            cache_scope=cache_scope,
        )
        if not outcome.ok:
            return Outcome.failure(outcome.reason, outcome.detail)

        try:
            return Outcome.success(outcome.value.json())
        except ValueError as e:
            return Outcome.failure(
                FailureReason.MALFORMED_DATA, f"Invalid JSON response from {url}: {e}"
            )
