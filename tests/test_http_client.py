"""
Tests for the resilient HTTP client.

All network calls are mocked via requests.request.
"""

from unittest.mock import MagicMock, call, patch

import pytest
import requests

from pie_pilot.data.providers.cache import MemoryResponseCache
from pie_pilot.data.providers.http_client import ResilientApiClient
from pie_pilot.models import FailureReason


URL = "https://live.trading212.com/api/v0/equity/pies"


def _response(status_code: int, payload=None) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = payload
    return response


@pytest.fixture
def client() -> ResilientApiClient:
    return ResilientApiClient(MemoryResponseCache())


class TestCaching:
    """Tests for response caching."""

    def test_repeated_request_served_from_cache(self, client):
        """Test two identical requests within the TTL hit the network once."""
        with patch("requests.request") as mock_request:
            mock_request.return_value = _response(200, [{"id": 1}])

            first = client.request(URL)
            second = client.request(URL)

        assert first.ok and second.ok
        assert second.value is first.value
        assert mock_request.call_count == 1

    def test_cache_partitioned_by_scope(self, client):
        """Test the same URL is fetched separately for two users."""
        with patch("requests.request") as mock_request:
            mock_request.return_value = _response(200, [])

            client.request(URL, cache_scope="alice")
            client.request(URL, cache_scope="bob")

        assert mock_request.call_count == 2

    def test_expired_entry_refetched(self):
        """Test an entry older than the TTL is fetched again."""
        clock = [1000.0]
        client = ResilientApiClient(MemoryResponseCache(ttl_seconds=300, clock=lambda: clock[0]))

        with patch("requests.request") as mock_request:
            mock_request.return_value = _response(200, [])

            client.request(URL)
            clock[0] += 300
            client.request(URL)

        assert mock_request.call_count == 2

    def test_failures_not_cached(self, client):
        """Test a failed request is retried from the network next time."""
        with patch("requests.request") as mock_request:
            mock_request.side_effect = [_response(503), _response(200, [])]

            first = client.request(URL, retries=0)
            second = client.request(URL, retries=0)

        assert not first.ok
        assert second.ok
        assert mock_request.call_count == 2


class TestRetries:
    """Tests for retry and backoff behavior."""

    def test_retries_until_success_with_doubling_delay(self, client):
        """Test transient failures are retried with exponential backoff."""
        with patch("requests.request") as mock_request, patch("time.sleep") as mock_sleep:
            mock_request.side_effect = [
                _response(500),
                requests.ConnectionError("connection reset"),
                _response(200, {"free": 10}),
            ]

            outcome = client.request(URL, delay=5, retries=3)

        assert outcome.ok
        assert mock_request.call_count == 3
        assert mock_sleep.call_args_list == [call(5), call(10)]

    def test_exhausted_retries_fail_with_network(self, client):
        """Test retries + 1 attempts are made before failing."""
        with patch("requests.request") as mock_request, patch("time.sleep") as mock_sleep:
            mock_request.return_value = _response(502)

            outcome = client.request(URL, delay=5, retries=3)

        assert not outcome.ok
        assert outcome.reason == FailureReason.NETWORK
        assert "HTTP 502" in outcome.detail
        assert mock_request.call_count == 4
        assert mock_sleep.call_args_list == [call(5), call(10), call(20)]

    def test_timeout_is_retried(self, client):
        """Test request timeouts count as transient failures."""
        with patch("requests.request") as mock_request, patch("time.sleep"):
            mock_request.side_effect = requests.Timeout("read timed out")

            outcome = client.request(URL, retries=1)

        assert outcome.reason == FailureReason.NETWORK
        assert mock_request.call_count == 2

    def test_unauthorized_stops_immediately(self, client):
        """Test HTTP 401 is not retried."""
        with patch("requests.request") as mock_request, patch("time.sleep") as mock_sleep:
            mock_request.return_value = _response(401)

            outcome = client.request(URL, retries=3)

        assert outcome.reason == FailureReason.AUTHENTICATION
        assert mock_request.call_count == 1
        mock_sleep.assert_not_called()

    def test_no_retries(self, client):
        """Test retries=0 makes a single attempt and never sleeps."""
        with patch("requests.request") as mock_request, patch("time.sleep") as mock_sleep:
            mock_request.return_value = _response(500)

            outcome = client.request(URL, retries=0)

        assert outcome.reason == FailureReason.NETWORK
        assert mock_request.call_count == 1
        mock_sleep.assert_not_called()


class TestRequestDetails:
    """Tests for request arguments and JSON decoding."""

    def test_headers_and_timeout_passed(self):
        """Test headers and the configured timeout reach requests."""
        client = ResilientApiClient(MemoryResponseCache(), timeout=7.5)
        headers = {"Authorization": "key", "Accept": "application/json"}

        with patch("requests.request") as mock_request:
            mock_request.return_value = _response(200, [])
            client.request(URL, headers=headers)

        mock_request.assert_called_once_with("GET", URL, headers=headers, timeout=7.5)

    def test_rate_limiter_acquired_per_attempt(self):
        """Test the limiter is consulted before every network attempt."""
        limiter = MagicMock()
        client = ResilientApiClient(MemoryResponseCache(), rate_limiter=limiter)

        with patch("requests.request") as mock_request, patch("time.sleep"):
            mock_request.side_effect = [_response(500), _response(200, [])]
            client.request(URL, retries=2)

        assert limiter.acquire.call_count == 2

    def test_request_json_decodes_body(self, client):
        """Test request_json returns the decoded payload."""
        with patch("requests.request") as mock_request:
            mock_request.return_value = _response(200, {"free": 12.5})

            outcome = client.request_json(URL)

        assert outcome.ok
        assert outcome.value == {"free": 12.5}

    def test_request_json_malformed_body(self, client):
        """Test an undecodable body fails as MALFORMED_DATA."""
        with patch("requests.request") as mock_request:
            response = _response(200)
            response.json.side_effect = ValueError("Expecting value")
            mock_request.return_value = response

            outcome = client.request_json(URL)

        assert outcome.reason == FailureReason.MALFORMED_DATA

    def test_request_json_propagates_failure(self, client):
        """Test request_json keeps the transport failure reason."""
        with patch("requests.request") as mock_request:
            mock_request.return_value = _response(401)

            outcome = client.request_json(URL)

        assert outcome.reason == FailureReason.AUTHENTICATION
