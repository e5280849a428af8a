"""
Pie detail fetching and portfolio aggregation.

This module turns broker pie payloads into PieData with enriched holdings,
and aggregates all pies of an account into one list plus an OverallSummary.
"""

import logging
import time
from concurrent.futures import Executor, ThreadPoolExecutor, wait
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pie_pilot.models import (
    FailureReason,
    InstrumentMetadata,
    InstrumentPerformance,
    OverallSummary,
    Outcome,
    PieData,
    PieInstrument,
    as_decimal,
    format_fetch_date,
    return_percentage,
)
from pie_pilot.analytics.allocation import parse_pie_name
from pie_pilot.data.providers.base import MarketDataProvider
from pie_pilot.portfolio.performance import Deadline, fetch_instrument_performance

logger = logging.getLogger(__name__)


UNNAMED_PIE = "Unnamed Pie"
UNKNOWN_DIVIDEND_ACTION = "unknown"


def build_pie_instrument(
    raw: dict[str, Any],
    metadata: dict[str, InstrumentMetadata],
) -> PieInstrument:
    """
    Build a holding from one entry of a pie's ``instruments`` list.

    Missing monetary fields count as 0. Catalogue fields are copied when the
    ticker is known and left None otherwise.
    """
    result = raw.get("result") or {}
    invested = as_decimal(result.get("priceAvgInvestedValue"))
    current = as_decimal(result.get("priceAvgValue"))
    ticker = str(raw.get("ticker") or "")

    instrument = PieInstrument(
        ticker=ticker,
        owned_quantity=as_decimal(raw.get("ownedQuantity")),
        invested_value=invested,
        current_value=current,
        result_value=current - invested,
        current_share=as_decimal(raw.get("currentShare")),
        expected_share=as_decimal(raw.get("expectedShare")),
        issues=bool(raw.get("issues")),
    )

    if ticker in metadata:
        instrument.apply_metadata(metadata[ticker])

    return instrument


def fetch_pie(
    broker,
    market_data: MarketDataProvider,
    pie_id: int | str,
    metadata: dict[str, InstrumentMetadata],
    now: Optional[datetime] = None,
    executor: Optional[Executor] = None,
    deadline: Optional[Deadline] = None,
) -> Outcome[PieData]:
    """
    Fetch one pie and enrich every holding with metadata and market data.

    Args:
        broker: Trading212Client (or compatible)
        market_data: Market data provider for yields and history
        pie_id: Broker pie identifier
        metadata: Ticker -> catalogue metadata
        now: Reference time for performance windows and fetch_date
        executor: Optional pool for concurrent instrument enrichment
        deadline: Refresh deadline passed to performance lookups

    Returns:
        Outcome with the PieData; fails when the detail request fails or
        the payload cannot be read
    """
    now = now or datetime.now()

    outcome = broker.get_pie(pie_id)
    if not outcome.ok:
        logger.warning("Could not fetch details for pie ID %s: %s", pie_id, outcome.detail)
        return Outcome.failure(outcome.reason, outcome.detail)

    details = outcome.value
    if not isinstance(details, dict):
        logger.error("Pie %s details are not an object", pie_id)
        return Outcome.failure(
            FailureReason.MALFORMED_DATA, f"Pie {pie_id} details are not an object"
        )

    try:
        settings = details.get("settings") or {}
        pie = PieData(
            pie_id=str(pie_id),
            name=str(settings.get("name") or UNNAMED_PIE),
            creation_date=str(settings.get("creationDate") or now.isoformat()),
            dividend_cash_action=str(
                settings.get("dividendCashAction") or UNKNOWN_DIVIDEND_ACTION
            ),
        )
        pie.instruments = [
            build_pie_instrument(raw, metadata)
            for raw in details.get("instruments") or []
            if isinstance(raw, dict)
        ]
    except (AttributeError, TypeError, ValueError) as e:
        logger.error("Error processing pie details for pie ID %s: %s", pie_id, e)
        return Outcome.failure(
            FailureReason.MALFORMED_DATA, f"Pie {pie_id} details are malformed: {e}"
        )

    def lookup(instrument: PieInstrument) -> InstrumentPerformance:
        return fetch_instrument_performance(
            market_data, instrument.ticker, now=now, deadline=deadline
        )

    if executor is not None:
        performances = list(executor.map(lookup, pie.instruments))
    else:
        performances = [lookup(instrument) for instrument in pie.instruments]

    for instrument, performance in zip(pie.instruments, performances):
        instrument.apply_performance(performance)

    parsed = parse_pie_name(pie.name)
    if parsed is not None:
        pie.target_allocation = parsed[1]

    pie.recalculate_totals()
    pie.fetch_date = format_fetch_date(now)
    return Outcome.success(pie)


def summarize_pies(
    pies: list[PieData],
    fetch_date: Optional[str] = None,
) -> OverallSummary:
    """
    Roll pie totals up into an OverallSummary.

    Args:
        pies: Included pies
        fetch_date: Timestamp to stamp (defaults to now)
    """
    total_invested = sum((p.total_invested for p in pies), Decimal("0"))
    total_result = sum((p.total_result for p in pies), Decimal("0"))

    return OverallSummary(
        total_invested_overall=total_invested,
        total_result_overall=total_result,
        return_percentage_overall=return_percentage(total_result, total_invested),
        fetch_date=fetch_date or format_fetch_date(),
    )


def _pie_ids(pies_list: list[Any]) -> list[Any]:
    ids = []
    for entry in pies_list:
        pie_id = entry.get("id") if isinstance(entry, dict) else None
        if not pie_id:
            logger.warning("Pie without ID encountered, skipping")
            continue
        ids.append(pie_id)
    return ids


def fetch_all_pies(
    broker,
    market_data: MarketDataProvider,
    metadata: dict[str, InstrumentMetadata],
    inter_pie_delay: float = 1.0,
    max_workers: int = 1,
    deadline: Optional[Deadline] = None,
    now: Optional[datetime] = None,
    instrument_workers: int = 1,
) -> Outcome[tuple[list[PieData], OverallSummary]]:
    """
    Fetch every pie of the account and build the overall summary.

    With max_workers == 1 pies are fetched one after another with
    ``inter_pie_delay`` seconds between them. With more workers they are
    fetched on a bounded thread pool and pacing is left to the providers'
    rate limiters. Either way failed pies are left out and the result keeps
    the broker's pie order.

    When the deadline passes, pies not yet started are dropped. Pies already
    running finish without further market data lookups.

    Args:
        broker: Trading212Client (or compatible)
        market_data: Market data provider
        metadata: Ticker -> catalogue metadata
        inter_pie_delay: Seconds between sequential pie fetches
        max_workers: Pies fetched concurrently
        deadline: Optional refresh deadline
        now: Reference time for performance windows
        instrument_workers: Instruments enriched concurrently within a pie

    Returns:
        Outcome with (pies, summary); fails when the pie list cannot be read
    """
    now = now or datetime.now()

    outcome = broker.get_pies()
    if not outcome.ok:
        logger.error("Failed to fetch list of pies: %s", outcome.detail)
        return Outcome.failure(outcome.reason, outcome.detail)

    pies_list = outcome.value
    if not isinstance(pies_list, list):
        logger.error("Pies list is not a list")
        return Outcome.failure(
            FailureReason.MALFORMED_DATA,
            f"Expected a list of pies, got {type(pies_list).__name__}",
        )

    pie_ids = _pie_ids(pies_list)

    instrument_pool = (
        ThreadPoolExecutor(max_workers=instrument_workers, thread_name_prefix="instrument")
        if instrument_workers > 1
        else None
    )
    try:
        if max_workers > 1:
            results = _fetch_concurrently(
                broker, market_data, pie_ids, metadata, max_workers, deadline, now, instrument_pool
            )
        else:
            results = _fetch_sequentially(
                broker, market_data, pie_ids, metadata, inter_pie_delay, deadline, now, instrument_pool
            )
    finally:
        if instrument_pool is not None:
            instrument_pool.shutdown(wait=False, cancel_futures=True)

    pies = [pie for pie in results if pie is not None]
    logger.info("Aggregated %d of %d pies", len(pies), len(pie_ids))
    return Outcome.success((pies, summarize_pies(pies, format_fetch_date(now))))


def _fetch_sequentially(
    broker, market_data, pie_ids, metadata, inter_pie_delay, deadline, now, instrument_pool
) -> list[Optional[PieData]]:
    results: list[Optional[PieData]] = []

    for index, pie_id in enumerate(pie_ids):
        if deadline is not None and deadline.expired:
            logger.warning(
                "Refresh deadline passed, dropping %d remaining pies", len(pie_ids) - index
            )
            break

        pie_outcome = fetch_pie(
            broker, market_data, pie_id, metadata,
            now=now, executor=instrument_pool, deadline=deadline,
        )
        results.append(pie_outcome.value if pie_outcome.ok else None)

        if index < len(pie_ids) - 1 and inter_pie_delay > 0:
            time.sleep(inter_pie_delay)

    return results


def _fetch_concurrently(
    broker, market_data, pie_ids, metadata, max_workers, deadline, now, instrument_pool
) -> list[Optional[PieData]]:
    pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="pie")
    try:
        futures = [
            pool.submit(
                fetch_pie, broker, market_data, pie_id, metadata,
                now=now, executor=instrument_pool, deadline=deadline,
            )
            for pie_id in pie_ids
        ]
        timeout = deadline.remaining() if deadline is not None else None
        _, not_done = wait(futures, timeout=timeout)

        if not_done:
            # Pies not yet started are dropped; running pies skip their
            # remaining market data lookups and are still collected
            dropped = [future for future in not_done if future.cancel()]
            logger.warning(
                "Refresh deadline passed, dropping %d pies not yet started", len(dropped)
            )
            wait([future for future in not_done if not future.cancelled()])

        results: list[Optional[PieData]] = []
        for future in futures:
            if future.cancelled():
                continue
            pie_outcome = future.result()
            results.append(pie_outcome.value if pie_outcome.ok else None)
        return results
    finally:
        pool.shutdown(wait=False, cancel_futures=True)
