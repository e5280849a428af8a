"""
Data providers for the broker API and market data.

Provides the resilient HTTP client with its cache and rate limiter, the
Trading 212 client, and a pluggable market data interface.
"""

from pie_pilot.data.providers.base import DataProviderError, MarketDataProvider
from pie_pilot.data.providers.cache import FileCache, MemoryResponseCache, ResponseCache
from pie_pilot.data.providers.http_client import ResilientApiClient
from pie_pilot.data.providers.rate_limit import TokenBucketRateLimiter
from pie_pilot.data.providers.trading212_provider import (
    Trading212Client,
    create_trading212_client,
)
from pie_pilot.data.providers.yfinance_provider import YFinanceProvider

__all__ = [
    "DataProviderError",
    "MarketDataProvider",
    "FileCache",
    "MemoryResponseCache",
    "ResponseCache",
    "ResilientApiClient",
    "TokenBucketRateLimiter",
    "Trading212Client",
    "create_trading212_client",
    "YFinanceProvider",
]
