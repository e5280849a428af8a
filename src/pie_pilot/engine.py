"""
Refresh orchestration for the pie portfolio engine.

PortfolioEngine runs one refresh cycle: cash, instrument catalogue, pies,
then the derived analyses. It always returns a PerformanceMetrics snapshot.
Stages that fail leave their fields empty and record a RefreshIssue instead
of raising.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pie_pilot.config import (
    TRADING212_SERVICE,
    CredentialStore,
    MissingCredentialError,
)
from pie_pilot.models import (
    FailureReason,
    Outcome,
    PerformanceMetrics,
    RefreshSettings,
    as_decimal,
    format_fetch_date,
)
from pie_pilot.analytics.allocation import analyze_allocation, apply_pie_allocations
from pie_pilot.analytics.benchmarks import fetch_benchmarks
from pie_pilot.analytics.rebalance import plan_rebalance
from pie_pilot.data.providers.base import MarketDataProvider
from pie_pilot.data.providers.cache import FileCache, ResponseCache
from pie_pilot.data.providers.rate_limit import TokenBucketRateLimiter
from pie_pilot.data.providers.trading212_provider import create_trading212_client
from pie_pilot.data.providers.yfinance_provider import YFinanceProvider
from pie_pilot.data.snapshots import SnapshotStore
from pie_pilot.logging.refresh_log import RefreshLogger
from pie_pilot.portfolio.instruments import load_all_metadata
from pie_pilot.portfolio.performance import Deadline
from pie_pilot.portfolio.pies import fetch_all_pies

logger = logging.getLogger(__name__)


def parse_free_cash(payload: Any) -> Optional[Decimal]:
    """
    Read free cash from the broker's cash payload.

    A list payload sums the ``cash`` field of its entries; an object payload
    uses its ``free`` field.

    Returns:
        Free cash, or None if the payload has neither shape
    """
    if isinstance(payload, list):
        return sum(
            (as_decimal(entry.get("cash")) for entry in payload if isinstance(entry, dict)),
            Decimal("0"),
        )
    if isinstance(payload, dict):
        return as_decimal(payload.get("free"))
    return None


class PortfolioEngine:
    """
    Runs refresh cycles for one broker account.

    Example:
        engine = PortfolioEngine(broker, YFinanceProvider(), settings)
        metrics = engine.fetch_portfolio_data(budget=Decimal("500"))
    """

    def __init__(
        self,
        broker,
        market_data: MarketDataProvider,
        settings: Optional[RefreshSettings] = None,
        refresh_logger: Optional[RefreshLogger] = None,
        catalogue_cache: Optional[FileCache] = None,
        user_id: Optional[str] = None,
    ):
        """
        Initialize the engine.

        Args:
            broker: Trading212Client (or compatible) for the account
            market_data: Market data provider
            settings: Refresh settings (defaults apply when None)
            refresh_logger: Optional audit log
            catalogue_cache: Optional on-disk instrument catalogue cache
            user_id: User id recorded in the audit log
        """
        self.broker = broker
        self.market_data = market_data
        self.settings = settings or RefreshSettings()
        self.refresh_logger = refresh_logger
        self.catalogue_cache = catalogue_cache
        self.user_id = user_id

    def fetch_free_cash(self) -> Outcome[Decimal]:
        """Fetch the account's free cash."""
        outcome = self.broker.get_cash()
        if not outcome.ok:
            return Outcome.failure(outcome.reason, outcome.detail)

        free_cash = parse_free_cash(outcome.value)
        if free_cash is None:
            return Outcome.failure(
                FailureReason.MALFORMED_DATA,
                f"Unexpected cash payload: {type(outcome.value).__name__}",
            )
        return Outcome.success(free_cash)

    def fetch_portfolio_data(
        self,
        budget: Optional[Decimal] = None,
        country: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> PerformanceMetrics:
        """
        Run one refresh cycle.

        Sequence: cash, metadata, pies (with saved pie targets applied), then
        allocation analysis, rebalance plan, dividend estimate and benchmarks. Cash or metadata failure
        returns the empty snapshot right away.

        Args:
            budget: New capital for the rebalance plan (defaults to the
                configured monthly budget)
            country: User country code (defaults to the configured one)
            now: Reference time (defaults to now)

        Returns:
            PerformanceMetrics; never raises for upstream failures
        """
        now = now or datetime.now()
        if budget is None:
            budget = self.settings.monthly_budget
        budget = as_decimal(budget)
        country = country or self.settings.country
        deadline = Deadline(self.settings.deadline_seconds)

        metrics = PerformanceMetrics(fetch_date=format_fetch_date(now))
        logger.info(
            "Refreshing portfolio for %s (budget %s, country %s)",
            self.user_id or "<default>", budget, country,
        )

        cash = self.fetch_free_cash()
        if not cash.ok:
            logger.error("Failed to fetch cash data: %s", cash.detail)
            metrics.add_issue("cash", cash.reason, cash.detail)
            return self._finish(metrics)
        metrics.free_cash_available = cash.value
        if self.refresh_logger:
            self.refresh_logger.log_cash_fetched(cash.value, self.user_id)

        metadata = load_all_metadata(self.broker, self.catalogue_cache)
        if not metadata.ok:
            metrics.add_issue("metadata", metadata.reason, metadata.detail)
            return self._finish(metrics)
        if self.refresh_logger:
            self.refresh_logger.log_metadata_loaded(len(metadata.value), self.user_id)

        aggregate = fetch_all_pies(
            self.broker,
            self.market_data,
            metadata.value,
            inter_pie_delay=self.settings.inter_pie_delay,
            max_workers=self.settings.max_workers,
            deadline=deadline,
            now=now,
            instrument_workers=self.settings.instrument_workers,
        )
        if not aggregate.ok:
            metrics.add_issue("pies", aggregate.reason, aggregate.detail)
        else:
            pies, summary = aggregate.value
            metrics.portfolio = apply_pie_allocations(pies, self.settings.pie_allocations)
            metrics.overall_summary = summary
            if self.refresh_logger:
                self.refresh_logger.log_pies_aggregated(metrics.portfolio, summary, self.user_id)
            if deadline.expired:
                metrics.add_issue(
                    "pies", FailureReason.TIMEOUT, "Refresh deadline passed, snapshot may be partial"
                )

        if metrics.portfolio is not None and metrics.overall_summary is not None:
            self._analyze(metrics, budget)

        if self.settings.include_benchmarks:
            if deadline.expired:
                metrics.add_issue("benchmarks", FailureReason.TIMEOUT, "Skipped after deadline")
            else:
                metrics.benchmarks = fetch_benchmarks(self.market_data, now)

        return self._finish(metrics)

    def _analyze(self, metrics: PerformanceMetrics, budget: Decimal) -> None:
        analysis = analyze_allocation(
            metrics.portfolio,
            metrics.overall_summary,
            monthly_budget=budget,
            duplicate_policy=self.settings.duplicate_category_policy,
            threshold=self.settings.rebalance_threshold,
        )
        if not analysis.ok:
            metrics.add_issue("allocation", analysis.reason, analysis.detail)
            return

        metrics.allocation_analysis = analysis.value
        if self.refresh_logger:
            self.refresh_logger.log_allocation_analyzed(analysis.value, self.user_id)

        if not analysis.value.target_allocation:
            logger.info("No pie declares a target allocation, skipping rebalance plan")
            return

        plan = plan_rebalance(
            analysis.value.current_values,
            analysis.value.target_allocation,
            budget,
        )
        if not plan.ok:
            metrics.add_issue("rebalance", plan.reason, plan.detail)
            return

        metrics.rebalance_investment_for_target = plan.value
        if self.refresh_logger:
            self.refresh_logger.log_rebalance_planned(plan.value, budget, self.user_id)

    def _finish(self, metrics: PerformanceMetrics) -> PerformanceMetrics:
        if metrics.is_degraded:
            logger.warning(
                "Refresh degraded: %s",
                ", ".join(f"{i.stage}={i.reason.value}" for i in metrics.issues),
            )
        else:
            logger.info("Refresh completed")
        if self.refresh_logger:
            self.refresh_logger.log_refresh_finished(metrics, self.user_id)
        return metrics


def create_market_data(settings: Optional[RefreshSettings] = None) -> YFinanceProvider:
    """Yahoo Finance provider paced by the configured market data rate."""
    settings = settings or RefreshSettings()
    return YFinanceProvider(
        rate_limiter=TokenBucketRateLimiter(settings.market_data_rate_per_second),
    )


def refresh_for_user(
    user_id: str,
    credentials: CredentialStore,
    market_data: MarketDataProvider,
    settings: RefreshSettings,
    cache: ResponseCache,
    store: Optional[SnapshotStore] = None,
    refresh_logger: Optional[RefreshLogger] = None,
    catalogue_cache: Optional[FileCache] = None,
    budget: Optional[Decimal] = None,
    now: Optional[datetime] = None,
) -> PerformanceMetrics:
    """
    Refresh one user's portfolio end to end.

    A user without a Trading 212 key gets an empty snapshot carrying a
    MISSING_CREDENTIAL issue and no request is made.

    Args:
        user_id: User to refresh
        credentials: Source of the user's broker key
        market_data: Market data provider
        settings: Refresh settings
        cache: Response cache shared across users (partitioned by user id)
        store: Optional store receiving the new snapshot
        refresh_logger: Optional audit log
        catalogue_cache: Optional on-disk instrument catalogue cache
        budget: New capital for the rebalance plan
        now: Reference time

    Returns:
        The new PerformanceMetrics snapshot

    Raises:
        SnapshotStoreError: If the store cannot save the snapshot
    """
    try:
        api_key = credentials.require_api_key(user_id, TRADING212_SERVICE)
    except MissingCredentialError as e:
        logger.error("%s", e)
        metrics = PerformanceMetrics(fetch_date=format_fetch_date(now))
        metrics.add_issue("credentials", FailureReason.MISSING_CREDENTIAL, str(e))
        if refresh_logger:
            refresh_logger.log_refresh_finished(metrics, user_id)
        return metrics

    broker = create_trading212_client(api_key, cache, settings, user_id=user_id)
    engine = PortfolioEngine(
        broker,
        market_data,
        settings,
        refresh_logger=refresh_logger,
        catalogue_cache=catalogue_cache,
        user_id=user_id,
    )
    metrics = engine.fetch_portfolio_data(budget=budget, now=now)

    if store is not None:
        store.save(user_id, metrics)

    return metrics
