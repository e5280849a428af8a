"""
Tests for dividend yield and trailing performance lookups.
"""

from datetime import date
from decimal import Decimal
from unittest.mock import patch

import pandas as pd
import pytest

from pie_pilot.portfolio.performance import (
    Deadline,
    calculate_performance,
    calculate_window_performance,
    close_at_or_before,
    fetch_instrument_performance,
    round_yield,
)
from pie_pilot.data.providers.yfinance_provider import YFinanceProvider


@pytest.fixture
def history(aapl_history) -> pd.DataFrame:
    return aapl_history


class TestWindowPerformance:
    """Tests for window calculations on a history frame."""

    def test_close_at_or_before(self, history):
        assert close_at_or_before(history, date(2024, 6, 25)) == 100.0
        assert close_at_or_before(history, date(2024, 6, 21)) == 100.0
        assert close_at_or_before(history, date(2023, 1, 1)) is None

    def test_all_windows(self, history, now):
        performance = calculate_performance(history, now)

        assert performance["performance_1day"] == pytest.approx((110 - 104.5) / 104.5 * 100)
        assert performance["performance_1week"] == pytest.approx(10.0)
        assert performance["performance_1month"] == pytest.approx(25.0)
        assert performance["performance_3months"] == pytest.approx(37.5)
        assert performance["performance_1year"] == pytest.approx(120.0)

    def test_missing_boundary_close(self, now):
        """Test a window without a close at its boundary is None."""
        history = pd.DataFrame(
            [(date(2024, 6, 20), 100.0), (date(2024, 6, 28), 110.0)],
            columns=["date", "close"],
        )

        assert calculate_window_performance(history, now, 7) == pytest.approx(10.0)
        assert calculate_window_performance(history, now, 30) is None

    def test_zero_past_close(self, now):
        history = pd.DataFrame(
            [(date(2024, 6, 20), 0.0), (date(2024, 6, 28), 110.0)],
            columns=["date", "close"],
        )

        assert calculate_window_performance(history, now, 7) is None

    def test_empty_history(self, now):
        history = pd.DataFrame(columns=["date", "close"])

        assert all(value is None for value in calculate_performance(history, now).values())


class TestRoundYield:
    """Tests for yield rounding."""

    @pytest.mark.parametrize("value, expected", [
        (0.4449, Decimal("0.44")),
        (0.445, Decimal("0.45")),
        (5, Decimal("5.00")),
        (None, Decimal("0")),
        (0, Decimal("0")),
        (float("inf"), Decimal("0")),
        (float("nan"), Decimal("0")),
    ])
    def test_round_yield(self, value, expected):
        assert round_yield(value) == expected


class TestDeadline:
    """Tests for the refresh deadline."""

    def test_unbounded(self):
        deadline = Deadline()
        assert deadline.expired is False
        assert deadline.remaining() is None

    def test_expires(self):
        clock = [10.0]
        deadline = Deadline(5, clock=lambda: clock[0])

        assert deadline.expired is False
        assert deadline.remaining() == 5.0

        clock[0] = 15.0
        assert deadline.expired is True
        assert deadline.remaining() == 0.0


class TestFetchInstrumentPerformance:
    """Tests for fetch_instrument_performance."""

    def test_enriches_normalized_symbol(self, fake_market_data, now):
        performance = fetch_instrument_performance(fake_market_data, "AAPL_US_EQ", now=now)

        assert performance.dividend_yield == Decimal("0.44")
        assert performance.performance_1week == pytest.approx(10.0)
        assert performance.performance_1year == pytest.approx(120.0)
        assert fake_market_data.calls == [("yield", "AAPL"), ("history", "AAPL")]

    def test_no_history_rows(self, fake_market_data, now):
        """Test a symbol with a quote but no closes keeps its yield."""
        performance = fetch_instrument_performance(fake_market_data, "MSFT_US_EQ", now=now)

        assert performance.dividend_yield == Decimal("0.70")
        assert performance.performance_1day is None

    def test_quote_failure_is_unavailable(self, make_market_data, now):
        market_data = make_market_data(failing=("AAPL",))

        performance = fetch_instrument_performance(market_data, "AAPL_US_EQ", now=now)

        assert performance.dividend_yield == Decimal("0")
        assert performance.performance_1week is None

    def test_history_failure_is_unavailable(self, make_market_data, now):
        """Test a history failure also drops the yield."""
        market_data = make_market_data(yields={"AAPL": 0.44}, failing_history=("AAPL",))

        performance = fetch_instrument_performance(market_data, "AAPL_US_EQ", now=now)

        assert performance.dividend_yield == Decimal("0")
        assert performance.performance_1year is None

    def test_expired_deadline_skips_lookups(self, fake_market_data, now):
        clock = [100.0]
        deadline = Deadline(0, clock=lambda: clock[0])

        performance = fetch_instrument_performance(
            fake_market_data, "AAPL_US_EQ", now=now, deadline=deadline
        )

        assert performance.dividend_yield == Decimal("0")
        assert fake_market_data.calls == []

    def test_infinite_yield_counts_as_zero(self, fake_market_data, now):
        fake_market_data.yields["AAPL"] = float("inf")

        performance = fetch_instrument_performance(fake_market_data, "AAPL_US_EQ", now=now)

        assert performance.dividend_yield == Decimal("0")
        assert performance.performance_1week == pytest.approx(10.0)

    @pytest.mark.parametrize("raw_yield", [float("inf"), "Infinity", float("nan")])
    def test_non_finite_yahoo_yield_is_unavailable(self, raw_yield, now):
        with patch("pie_pilot.data.providers.yfinance_provider.yf") as mock_yf:
            mock_yf.Ticker.return_value.info = {"dividendYield": raw_yield}

            performance = fetch_instrument_performance(
                YFinanceProvider(max_retries=1), "AAPL_US_EQ", now=now
            )

        assert performance.dividend_yield == Decimal("0")
        assert performance.performance_1day is None

    def test_unexpected_provider_error_is_unavailable(self, fake_market_data, now):
        with patch.object(
            fake_market_data, "get_history", side_effect=KeyError("close")
        ):
            performance = fetch_instrument_performance(fake_market_data, "AAPL_US_EQ", now=now)

        assert performance.dividend_yield == Decimal("0")
        assert performance.performance_1year is None
