"""
Instrument catalogue loading and broker-to-market ticker mapping.

The broker uses its own ticker codes (AAPL_US_EQ, VODl_EQ, ...). Market data
lookups need exchange-style symbols, so every holding is mapped through
normalize_ticker before it reaches the market data provider.
"""

import logging
from typing import Any, Iterable, Optional

from pie_pilot.models import FailureReason, InstrumentMetadata, Outcome
from pie_pilot.data.providers.cache import FileCache

logger = logging.getLogger(__name__)


# Broker tickers whose market symbol cannot be derived by the suffix rules.
# Keyed by the raw broker ticker; a match replaces the derived symbol.
TICKER_OVERRIDES = {
    "BRK_B_US_EQ": "BRK-B",
    "ALVd_EQ": "ALV.DE",
    "ABNa_EQ": "ABN.AS",
}


def normalize_ticker(ticker: str) -> str:
    """
    Map a broker ticker to its market data symbol.

    Rules apply in order to the running result:
    1. Strip a trailing "_EQ"
    2. A trailing lowercase "l" (London listing) becomes ".L"
    3. Strip a trailing "_US"
    4. A trailing "1.L" becomes ".L"
    Finally TICKER_OVERRIDES, keyed by the original ticker, wins outright.

    Examples:
        AAPL_US_EQ -> AAPL
        VODl_EQ -> VOD.L
        BRK_B_US_EQ -> BRK-B
    """
    symbol = ticker

    if symbol.endswith("_EQ"):
        symbol = symbol[:-3]
    if symbol.endswith("l"):
        symbol = symbol[:-1] + ".L"
    if symbol.endswith("_US"):
        symbol = symbol[:-3]
    if symbol.endswith("1.L"):
        symbol = symbol[:-3] + ".L"

    return TICKER_OVERRIDES.get(ticker, symbol)


def build_metadata_map(records: Iterable[Any]) -> dict[str, InstrumentMetadata]:
    """
    Index catalogue records by ticker.

    Records that are not objects or lack a ticker are skipped. A repeated
    ticker keeps the last record.
    """
    metadata: dict[str, InstrumentMetadata] = {}
    skipped = 0

    for record in records:
        if not isinstance(record, dict):
            skipped += 1
            continue
        try:
            instrument = InstrumentMetadata.from_api(record)
        except ValueError:
            skipped += 1
            continue
        metadata[instrument.ticker] = instrument

    if skipped:
        logger.warning("Skipped %d malformed instrument records", skipped)

    return metadata


def load_all_metadata(
    broker,
    catalogue_cache: Optional[FileCache] = None,
) -> Outcome[dict[str, InstrumentMetadata]]:
    """
    Load the broker's instrument catalogue as a ticker -> metadata map.

    Args:
        broker: Trading212Client (or compatible) for this user
        catalogue_cache: Optional on-disk cache holding the raw catalogue

    Returns:
        Outcome with the metadata map; fails with the client's reason, or
        MALFORMED_DATA when the payload is not a list
    """
    scope = str(getattr(broker, "user_id", None) or "default")

    if catalogue_cache is not None:
        cached = catalogue_cache.get_catalogue(scope)
        if cached is not None:
            logger.debug("Instrument catalogue served from disk cache")
            return Outcome.success(build_metadata_map(cached))

    outcome = broker.get_instruments()
    if not outcome.ok:
        logger.error("Failed to fetch instruments metadata: %s", outcome.detail)
        return Outcome.failure(outcome.reason, outcome.detail)

    records = outcome.value
    if not isinstance(records, list):
        logger.error("Instruments metadata is not a list")
        return Outcome.failure(
            FailureReason.MALFORMED_DATA,
            f"Expected a list of instruments, got {type(records).__name__}",
        )

    if catalogue_cache is not None:
        catalogue_cache.save_catalogue(records, scope)

    metadata = build_metadata_map(records)
    logger.info("Loaded metadata for %d instruments", len(metadata))
    return Outcome.success(metadata)
