"""
Pytest fixtures for the pie portfolio engine tests.

Provides a fake broker, a fake market data provider and sample pies used
across test modules.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

import pandas as pd
import pytest

from pie_pilot.data.providers.base import DataProviderError, MarketDataProvider
from pie_pilot.models import (
    FailureReason,
    Outcome,
    PieData,
    PieInstrument,
    RefreshSettings,
)


NOW = datetime(2024, 6, 28, 12, 0, 0)

# Closes chosen so each performance window lands on a known value:
# 1d 104.5 -> 110, 1w 100 -> 110, 1m 88 -> 110, 3m 80 -> 110, 1y 50 -> 110
AAPL_CLOSES = [
    (date(2023, 6, 29), 50.0),
    (date(2024, 3, 30), 80.0),
    (date(2024, 5, 29), 88.0),
    (date(2024, 6, 21), 100.0),
    (date(2024, 6, 27), 104.5),
    (date(2024, 6, 28), 110.0),
]


class FakeMarketData(MarketDataProvider):
    """In-memory market data provider that records every lookup."""

    def __init__(
        self,
        yields: Optional[dict[str, float]] = None,
        closes: Optional[dict[str, list[tuple[date, float]]]] = None,
        failing: tuple[str, ...] = (),
        failing_history: tuple[str, ...] = (),
    ):
        self.yields = yields or {}
        self.closes = closes or {}
        self.failing = set(failing)
        self.failing_history = set(failing_history)
        self.calls: list[tuple[str, str]] = []

    @property
    def name(self) -> str:
        return "Fake"

    def get_dividend_yield(self, symbol: str) -> Optional[float]:
        self.calls.append(("yield", symbol))
        if symbol in self.failing:
            raise DataProviderError(f"No quote for {symbol}")
        return self.yields.get(symbol)

    def get_history(self, symbol: str, start_date: date, end_date: date) -> pd.DataFrame:
        self.calls.append(("history", symbol))
        if symbol in self.failing or symbol in self.failing_history:
            raise DataProviderError(f"No history for {symbol}")
        rows = [
            (d, close) for d, close in self.closes.get(symbol, [])
            if start_date <= d <= end_date
        ]
        return pd.DataFrame(rows, columns=["date", "close"])


class FakeBroker:
    """
    Broker double returning canned payloads as Outcomes.

    A payload of None fails with NETWORK; an Outcome is returned as is.
    """

    def __init__(
        self,
        pies=None,
        details: Optional[dict] = None,
        instruments=None,
        cash=None,
        user_id: Optional[str] = "user-1",
    ):
        self.pies = pies
        self.details = details or {}
        self.instruments = instruments
        self.cash = cash
        self.user_id = user_id
        self.calls: list[str] = []

    def _respond(self, name: str, payload):
        self.calls.append(name)
        if isinstance(payload, Outcome):
            return payload
        if payload is None:
            return Outcome.failure(FailureReason.NETWORK, f"{name} unavailable")
        return Outcome.success(payload)

    def get_pies(self):
        return self._respond("pies", self.pies)

    def get_pie(self, pie_id):
        return self._respond(f"pie:{pie_id}", self.details.get(pie_id))

    def get_instruments(self):
        return self._respond("instruments", self.instruments)

    def get_cash(self):
        return self._respond("cash", self.cash)


def pie_instrument_payload(ticker: str, invested: float, value: float, quantity: float = 1) -> dict:
    """One entry of a pie detail ``instruments`` list."""
    return {
        "ticker": ticker,
        "currentShare": 0.5,
        "expectedShare": 0.5,
        "issues": [],
        "ownedQuantity": quantity,
        "result": {
            "priceAvgInvestedValue": invested,
            "priceAvgValue": value,
        },
    }


@pytest.fixture
def now() -> datetime:
    """Reference time for refreshes."""
    return NOW


@pytest.fixture
def instrument_catalogue() -> list[dict]:
    """Raw catalogue records as returned by the broker."""
    return [
        {
            "ticker": "AAPL_US_EQ",
            "name": "Apple",
            "currencyCode": "USD",
            "type": "STOCK",
            "addedOn": "2018-07-20T12:00:00.000+03:00",
            "maxOpenQuantity": 10000,
            "minTradeQuantity": 0.01,
        },
        {
            "ticker": "MSFT_US_EQ",
            "name": "Microsoft",
            "currencyCode": "USD",
            "type": "STOCK",
            "addedOn": "2018-07-20T12:00:00.000+03:00",
        },
    ]


@pytest.fixture
def pie_details() -> dict:
    """Pie detail payloads keyed by pie id."""
    return {
        1: {
            "settings": {
                "name": "Growth (60%)",
                "creationDate": "2023-01-15T10:00:00",
                "dividendCashAction": "REINVEST",
            },
            "instruments": [
                pie_instrument_payload("AAPL_US_EQ", 300, 360, quantity=2),
                pie_instrument_payload("VODl_EQ", 100, 90, quantity=100),
            ],
        },
        2: {
            "settings": {
                "name": "Income (40%)",
                "creationDate": "2023-02-01T10:00:00",
                "dividendCashAction": "TO_ACCOUNT_CASH",
            },
            "instruments": [
                pie_instrument_payload("MSFT_US_EQ", 400, 420),
            ],
        },
    }


@pytest.fixture
def fake_broker(pie_details, instrument_catalogue) -> FakeBroker:
    """Broker with two pies, a catalogue and free cash."""
    return FakeBroker(
        pies=[{"id": 1}, {"id": 2}],
        details=pie_details,
        instruments=instrument_catalogue,
        cash={"free": 250.5, "total": 1070.5},
    )


@pytest.fixture
def aapl_history() -> pd.DataFrame:
    """AAPL closes as a history frame."""
    return pd.DataFrame(AAPL_CLOSES, columns=["date", "close"])


@pytest.fixture
def fake_market_data() -> FakeMarketData:
    """Market data with yields for every held symbol and AAPL history."""
    return FakeMarketData(
        yields={"AAPL": 0.44, "VOD.L": 5.0, "MSFT": 0.7},
        closes={"AAPL": AAPL_CLOSES},
    )


@pytest.fixture
def make_broker():
    """FakeBroker class for tests that need custom payloads."""
    return FakeBroker


@pytest.fixture
def make_market_data():
    """FakeMarketData class for tests that need custom quotes or history."""
    return FakeMarketData


@pytest.fixture
def quiet_settings() -> RefreshSettings:
    """Settings that skip pacing delays and benchmark lookups."""
    return RefreshSettings(inter_pie_delay=0, include_benchmarks=False)


@pytest.fixture
def make_pie():
    """Factory for a PieData holding a single instrument."""

    def _make_pie(
        name: str,
        invested: str | int,
        current: str | int | None = None,
        dividend_yield: str | int = "0",
        ticker: str = "AAPL_US_EQ",
    ) -> PieData:
        invested_value = Decimal(str(invested))
        current_value = Decimal(str(current)) if current is not None else invested_value
        pie = PieData(
            name=name,
            creation_date="2023-01-15T10:00:00",
            dividend_cash_action="REINVEST",
            instruments=[
                PieInstrument(
                    ticker=ticker,
                    owned_quantity=Decimal("1"),
                    invested_value=invested_value,
                    current_value=current_value,
                    result_value=current_value - invested_value,
                    dividend_yield=Decimal(str(dividend_yield)),
                )
            ],
            fetch_date="2024-06-28 12:00:00",
        )
        pie.recalculate_totals()
        return pie

    return _make_pie
