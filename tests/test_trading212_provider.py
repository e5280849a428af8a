"""
Tests for the Trading 212 client.

Unit tests use mocked API responses.
Integration tests (marked with @pytest.mark.integration) require a valid API key.
"""

from unittest.mock import MagicMock, patch

import pytest

from pie_pilot.data.providers.cache import MemoryResponseCache
from pie_pilot.data.providers.http_client import ResilientApiClient
from pie_pilot.data.providers.trading212_provider import (
    Trading212Client,
    create_trading212_client,
)
from pie_pilot.models import FailureReason, RefreshSettings


# =============================================================================
# Unit Tests (mocked API responses)
# =============================================================================


def _response(status_code: int, payload=None) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = payload
    return response


@pytest.fixture
def http_client() -> ResilientApiClient:
    return ResilientApiClient(MemoryResponseCache())


class TestTrading212ClientInit:
    """Tests for Trading212Client initialization."""

    def test_requires_api_key(self, http_client):
        with pytest.raises(ValueError, match="API key is required"):
            Trading212Client(api_key="", http_client=http_client)

    def test_headers(self, http_client):
        client = Trading212Client(api_key="secret", http_client=http_client)
        assert client.headers == {"Authorization": "secret", "Accept": "application/json"}

    def test_custom_base_url(self, http_client):
        client = Trading212Client(
            api_key="secret",
            http_client=http_client,
            base_url="https://demo.trading212.com/api/v0/",
        )
        assert client.base_url == "https://demo.trading212.com/api/v0"


class TestTrading212Endpoints:
    """Tests for the endpoint wrappers."""

    @pytest.mark.parametrize("method, args, path", [
        ("get_pies", (), "/equity/pies"),
        ("get_pie", (42,), "/equity/pies/42"),
        ("get_instruments", (), "/equity/metadata/instruments"),
        ("get_cash", (), "/equity/account/cash"),
    ])
    def test_endpoint_urls(self, http_client, method, args, path):
        """Test each wrapper GETs its endpoint with the auth headers."""
        client = Trading212Client(api_key="secret", http_client=http_client)

        with patch("requests.request") as mock_request:
            mock_request.return_value = _response(200, {"ok": True})
            outcome = getattr(client, method)(*args)

        assert outcome.ok
        assert outcome.value == {"ok": True}
        mock_request.assert_called_once_with(
            "GET",
            Trading212Client.BASE_URL + path,
            headers={"Authorization": "secret", "Accept": "application/json"},
            timeout=10.0,
        )

    def test_users_do_not_share_cached_responses(self, http_client):
        """Test two users on one HTTP client each reach the broker."""
        alice = Trading212Client(api_key="a", http_client=http_client, user_id="alice")
        bob = Trading212Client(api_key="b", http_client=http_client, user_id="bob")

        with patch("requests.request") as mock_request:
            mock_request.side_effect = [
                _response(200, [{"id": 1}]),
                _response(200, [{"id": 2}]),
            ]
            alice_pies = alice.get_pies()
            bob_pies = bob.get_pies()
            alice_again = alice.get_pies()

        assert alice_pies.value == [{"id": 1}]
        assert bob_pies.value == [{"id": 2}]
        assert alice_again.value == [{"id": 1}]
        assert mock_request.call_count == 2

    def test_authentication_failure(self, http_client):
        client = Trading212Client(api_key="wrong", http_client=http_client)

        with patch("requests.request") as mock_request:
            mock_request.return_value = _response(401)
            outcome = client.get_cash()

        assert outcome.reason == FailureReason.AUTHENTICATION


class TestCreateTrading212Client:
    """Tests for the client factory."""

    def test_uses_settings(self):
        settings = RefreshSettings(
            request_delay=1.5,
            request_retries=1,
            request_timeout=3.0,
            broker_rate_per_second=0,
        )
        client = create_trading212_client("secret", MemoryResponseCache(), settings, user_id="u1")

        assert client.user_id == "u1"
        assert client.delay == 1.5
        assert client.retries == 1

        with patch("requests.request") as mock_request, patch("time.sleep") as mock_sleep:
            mock_request.return_value = _response(500)
            outcome = client.get_pies()

        assert outcome.reason == FailureReason.NETWORK
        assert mock_request.call_count == 2
        assert mock_request.call_args.kwargs["timeout"] == 3.0
        mock_sleep.assert_called_once_with(1.5)


# =============================================================================
# Integration Tests (require API key)
# =============================================================================


def has_trading212_api_key() -> bool:
    """Check if Trading 212 API key is available."""
    try:
        from pie_pilot.config import TRADING212_SERVICE, load_api_keys
        keys = load_api_keys()
        return bool(keys.get(TRADING212_SERVICE))
    except Exception:
        return False


@pytest.mark.integration
@pytest.mark.skipif(
    not has_trading212_api_key(),
    reason="TRADING212_API_KEY not set"
)
class TestTrading212Integration:
    """Integration tests that require a valid Trading 212 API key."""

    @pytest.fixture
    def client(self):
        """Create client using the real API key."""
        from pie_pilot.config import EnvCredentialStore, TRADING212_SERVICE
        api_key = EnvCredentialStore().require_api_key("default", TRADING212_SERVICE)
        return create_trading212_client(api_key, MemoryResponseCache())

    def test_fetch_real_cash(self, client):
        outcome = client.get_cash()
        assert outcome.ok
        assert "free" in outcome.value

    def test_fetch_real_pies(self, client):
        outcome = client.get_pies()
        assert outcome.ok
        assert isinstance(outcome.value, list)
